"""
Unit tests for courtesy items and special bonus.
"""

import pytest
from decimal import Decimal

from studio_quotes.engine.aggregator import LineTotal, LineTotals
from studio_quotes.engine.negotiation import NegotiationAdjuster, courtesy_impact, projected_subtotal
from studio_quotes.engine.types import ProfitType
from studio_quotes.exceptions import InvalidInputError


def line(key, subtotal, cost=Decimal('0'), expense=Decimal('0')):
    return LineTotal(
        key=key, source='catalog', item_id=None, profit_type=ProfitType.SERVICE,
        unit_price=subtotal, effective_quantity=Decimal('1'),
        line_subtotal=subtotal, line_cost=cost, line_expense=expense,
    )


@pytest.fixture
def totals():
    lines = [line('sesion', Decimal('800'), Decimal('480'), Decimal('160')),
             line('album', Decimal('200'), Decimal('120'), Decimal('40'))]
    return LineTotals(subtotal=Decimal('1000'), total_cost=Decimal('600'), total_expense=Decimal('200'), lines=lines)


class TestProjectedSubtotal:
    """Tests for the projected subtotal."""

    def test_reference_scenario(self):
        """Test subtotal minus courtesy minus bonus."""
        assert projected_subtotal(Decimal('1000'), Decimal('200'), Decimal('50')) == Decimal('750')

    def test_never_negative(self):
        """Test that the projection is floored at zero."""
        assert projected_subtotal(Decimal('100'), Decimal('80'), Decimal('50')) == Decimal('0')


class TestNegotiationAdjuster:
    """Tests for the adjuster and its dirty flag."""

    def test_compute(self, totals):
        """Test computing the projection from line totals."""
        adjuster = NegotiationAdjuster({'album'}, Decimal('50'))
        result = adjuster.compute(totals)

        assert result.courtesy_amount == Decimal('200')
        assert result.projected_subtotal == Decimal('750')
        assert result.adjustment_active
        assert result.courtesy_keys == frozenset({'album'})

    def test_compute_ignores_courtesy_on_missing_line(self, totals):
        """Test that a courtesy flag on a removed line waives nothing."""
        result = NegotiationAdjuster({'gone'}).compute(totals)

        assert result.courtesy_amount == Decimal('0')
        assert result.courtesy_keys == frozenset()
        assert not result.adjustment_active

    def test_loading_does_not_mark_dirty(self):
        """Test that the initial population is not a change."""
        adjuster = NegotiationAdjuster()
        adjuster.set_courtesy('album', True)
        adjuster.set_bonus(Decimal('10'))
        assert adjuster.dirty is False

    def test_changes_after_loading_mark_dirty(self):
        """Test that a change after loading marks the adjuster dirty."""
        adjuster = NegotiationAdjuster()
        adjuster.finish_loading()
        adjuster.set_bonus(Decimal('10'))
        assert adjuster.dirty is True

    def test_toggle_courtesy(self):
        """Test toggling a courtesy flag."""
        adjuster = NegotiationAdjuster()
        assert adjuster.toggle_courtesy('album') is True
        assert adjuster.toggle_courtesy('album') is False
        assert adjuster.courtesy_item_ids == set()

    def test_prune_drops_missing_lines(self):
        """Test that pruning drops flags of removed lines."""
        adjuster = NegotiationAdjuster({'album', 'gone'})
        adjuster.prune(['album', 'sesion'])
        assert adjuster.courtesy_item_ids == {'album'}

    def test_negative_bonus_rejected(self):
        """Test that a negative bonus is rejected."""
        with pytest.raises(InvalidInputError):
            NegotiationAdjuster(special_bonus=Decimal('-1'))


class TestCourtesyImpact:
    """Tests for the utility given away by courtesy lines."""

    def test_waived_revenue_and_utility(self, totals):
        """Test waived revenue and lost utility."""
        impact = courtesy_impact(totals, {'album'})

        assert impact.total_courtesy == Decimal('200')
        assert impact.utility_impact == Decimal('-40')
