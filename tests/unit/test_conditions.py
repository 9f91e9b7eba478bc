"""
Unit tests for commercial condition resolution and visibility.
"""

import pytest
from decimal import Decimal

from studio_quotes.engine.conditions import (
    ConditionSelection, ConditionVisibility, apply_discount, payment_split, resolve_active_condition,
    resolve_visible_condition_ids,
)
from studio_quotes.engine.types import AdvanceType, CommercialConditionSpec, NegotiatedTerms
from studio_quotes.exceptions import InvalidInputError, NotFoundError


@pytest.fixture
def conditions():
    return {
        1: CommercialConditionSpec(id=1, name='Contado', discount_percentage=Decimal('10'),
                                   advance_value=Decimal('100')),
        2: CommercialConditionSpec(id=2, name='Anticipo 50%', advance_value=Decimal('50')),
        3: CommercialConditionSpec(id=3, name='Especial', discount_percentage=Decimal('15'),
                                   advance_type=AdvanceType.FIXED_AMOUNT, advance_value=Decimal('300'),
                                   is_public=False, kind='special'),
    }


class TestResolveActiveCondition:
    """Tests for picking the active terms."""

    def test_standard_selection(self, conditions):
        """Test resolving a standard selection."""
        terms = resolve_active_condition(1, None, conditions)
        assert terms.source == 'standard'
        assert terms.condition_id == 1

    def test_negotiated_wins(self, conditions):
        """Test that negotiated terms take precedence."""
        negotiated = NegotiatedTerms(discount_percentage=Decimal('5'))
        terms = resolve_active_condition(None, negotiated, conditions)
        assert terms.source == 'negotiated'
        assert terms.discount_percentage == Decimal('5')

    def test_no_condition(self, conditions):
        """Test a quote without a condition."""
        assert resolve_active_condition(None, None, conditions) is None

    def test_unknown_condition(self, conditions):
        """Test selecting a condition that does not exist."""
        with pytest.raises(NotFoundError):
            resolve_active_condition(42, None, conditions)

    def test_discount_out_of_range(self):
        """Test that a discount over 100 is rejected."""
        negotiated = NegotiatedTerms(discount_percentage=Decimal('120'))
        with pytest.raises(InvalidInputError):
            resolve_active_condition(None, negotiated, {})


class TestDiscountAndSplit:
    """Tests for discount and advance/deferred amounts."""

    def test_reference_discount(self, conditions):
        """Test the discount over the projected subtotal."""
        terms = resolve_active_condition(1, None, conditions)
        result = apply_discount(Decimal('750'), terms)

        assert result.discount_amount == Decimal('75')
        assert result.suggested_price == Decimal('675')

    def test_no_condition_no_discount(self):
        """Test that no condition means no discount."""
        result = apply_discount(Decimal('750'), None)
        assert result.discount_amount == Decimal('0')
        assert result.suggested_price == Decimal('750')

    def test_percentage_advance(self, conditions):
        """Test a percentage advance."""
        split = payment_split(Decimal('1000'), resolve_active_condition(2, None, conditions))
        assert split.advance == Decimal('500')
        assert split.deferred == Decimal('500')

    def test_fixed_advance_not_clamped(self, conditions):
        """Test that a fixed advance is not clamped to the price."""
        split = payment_split(Decimal('200'), resolve_active_condition(3, None, conditions))
        assert split.advance == Decimal('300')
        assert split.deferred == Decimal('0')


class TestConditionVisibility:
    """Tests for conditions offered to the client."""

    def test_defaults_to_public(self, conditions):
        """Test that only public conditions are offered by default."""
        assert ConditionVisibility(conditions).visible_ids == {1, 2}

    def test_adjustment_hides_discounted(self, conditions):
        """Test that an adjustment hides discounted conditions."""
        visibility = ConditionVisibility(conditions, {1, 2, 3})
        assert visibility.apply_adjustment_rule(True) == {2}

    def test_no_adjustment_keeps_all(self, conditions):
        """Test that nothing is hidden without an adjustment."""
        visibility = ConditionVisibility(conditions, {1, 2})
        assert visibility.apply_adjustment_rule(False) == {1, 2}

    def test_readded_survives_rule(self, conditions):
        """Test that a condition shown by hand survives the rule."""
        visibility = ConditionVisibility(conditions, {1, 2})
        visibility.apply_adjustment_rule(True)
        visibility.show(1)
        assert visibility.apply_adjustment_rule(True) == {1, 2}

    def test_hidden_readded_is_forgotten(self, conditions):
        """Test that hiding a re-added condition forgets the re-add."""
        visibility = ConditionVisibility(conditions, {2})
        visibility.show(1)
        visibility.hide(1)
        visibility.visible_ids.add(1)
        assert visibility.apply_adjustment_rule(True) == {2}

    def test_show_unknown(self, conditions):
        """Test showing a condition that does not exist."""
        with pytest.raises(NotFoundError):
            ConditionVisibility(conditions).show(99)

    def test_seeded_readded_survives_rule(self, conditions):
        """Test that re-adds loaded with the quote survive the adjustment rule."""
        visibility = ConditionVisibility(conditions, {2}, readded_ids={1})
        assert visibility.visible_ids == {1, 2}
        assert visibility.apply_adjustment_rule(True) == {1, 2}

    def test_unknown_readded_rejected(self, conditions):
        """Test that a re-add of an unknown condition is rejected."""
        with pytest.raises(NotFoundError):
            ConditionVisibility(conditions, readded_ids={99})


class TestResolveVisibleConditionIds:
    """Tests for the offered conditions stored with a quote."""

    def test_unset_without_adjustment_stays_unset(self, conditions):
        """Test that no list and no adjustment keeps the public default."""
        assert resolve_visible_condition_ids(conditions, None, (), False) is None

    def test_unset_with_adjustment_resolves(self, conditions):
        """Test that an active adjustment narrows the public default."""
        assert resolve_visible_condition_ids(conditions, None, (), True) == {2}

    def test_explicit_list_with_adjustment(self, conditions):
        """Test that discounted conditions leave an explicit list."""
        assert resolve_visible_condition_ids(conditions, {1, 2, 3}, (), True) == {2}

    def test_readded_kept(self, conditions):
        """Test that a re-added discounted condition stays offered."""
        assert resolve_visible_condition_ids(conditions, {2}, {1}, True) == {1, 2}


class TestConditionSelection:
    """Tests for standard and negotiated exclusivity."""

    def test_mutually_exclusive(self):
        """Test that selecting one kind clears the other."""
        selection = ConditionSelection(selected_condition_id=1)
        selection.set_negotiated(NegotiatedTerms())
        assert selection.selected_condition_id is None

        selection.select_standard(2)
        assert selection.negotiated is None
        assert selection.has_condition

    def test_both_rejected(self):
        """Test that both kinds at once are rejected."""
        with pytest.raises(InvalidInputError):
            ConditionSelection(1, NegotiatedTerms())
