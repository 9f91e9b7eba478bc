"""
Integration tests for quote persistence, lifecycle and catalog resync.
"""

import pytest
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from studio_quotes.engine.types import QuoteStatus
from studio_quotes.exceptions import (
    ConcurrentMutationError, DuplicateNameError, ImmutableQuoteError, InvalidInputError, InvalidTransitionError,
    MissingConditionError,
)
from studio_quotes.models import NegotiatedCondition, Quote
from studio_quotes.services import quote_service
from studio_quotes.services.mutation_guard import get_mutation_guard, promise_resource, quote_resource
from studio_quotes.services.quote_service import (
    QuotePayload, create_quote, duplicate_quote, get_breakdown, get_quote, open_editor, quote_to_dict,
    resync_snapshot_from_catalog, transition_quote, update_quote, validate_quote_payload, what_if,
)

PROMISE_ID = 100


def create(session, studio, body):
    result = create_quote(QuotePayload.from_dict(body), session, studio.id, PROMISE_ID)
    assert result.ok, result.errors
    return result.data['id']


def move(session, studio, quote_id, *statuses):
    for status in statuses:
        transition_quote(quote_id, status, session, studio.id)


def stored_state(session, studio, quote_id):
    return quote_service.build_quote_state(get_quote(session, studio.id, quote_id))


class TestValidation:
    """Tests for local, non-raising validation."""

    def test_missing_name_and_lines(self):
        """Test that an empty payload reports both name and lines."""
        result = validate_quote_payload(QuotePayload(name=' '))
        assert not result.ok
        assert set(result.errors) == {'name', 'line_items'}

    def test_courtesy_must_reference_lines(self, quote_body):
        """Test that courtesy flags must point at lines of the quote."""
        body = dict(quote_body, courtesy_item_ids=['ghost'])
        result = validate_quote_payload(QuotePayload.from_dict(body))
        assert 'courtesy_item_ids' in result.errors

    def test_replacement_must_reference_catalog_line(self, quote_body):
        """Test that a custom line can only replace a catalog line of the same quote."""
        custom = {'key': 'snap', 'name': 'Sesión', 'unit_price': 700, 'replaces_key': 'ghost'}
        result = validate_quote_payload(QuotePayload.from_dict(dict(quote_body, custom_items=[custom])))
        assert 'custom_items' in result.errors

    def test_invalid_payload_is_not_saved(self, session, studio, quote_body):
        """Test that a payload failing validation writes nothing."""
        result = create_quote(QuotePayload.from_dict(dict(quote_body, name='')), session, studio.id, PROMISE_ID)

        assert not result.ok
        assert 'name' in result.errors
        assert session.query(Quote).count() == 0

    @pytest.mark.parametrize('field', ['visible_condition_ids', 'readded_condition_ids'])
    def test_non_numeric_condition_ids(self, quote_body, field):
        """Test that non-numeric condition ids surface as invalid input."""
        with pytest.raises(InvalidInputError):
            QuotePayload.from_dict(dict(quote_body, **{field: ['abc']}))


class TestCreateQuote:
    """Tests for quote creation and names."""

    def test_create_and_compute(self, session, studio, quote_body):
        """Test the reference quote's persisted breakdown."""
        quote_id = create(session, studio, quote_body)
        breakdown = get_breakdown(session, studio.id, quote_id)

        assert get_quote(session, studio.id, quote_id).status == 'draft'
        assert breakdown.projected_subtotal == Decimal('750')
        assert breakdown.discount_amount == Decimal('75')
        assert breakdown.suggested_price == Decimal('675')
        assert breakdown.commission == Decimal('33.75')

    def test_duplicate_name_then_rename(self, session, studio, quote_body):
        """Test that a taken name is refused and a renamed retry succeeds."""
        create(session, studio, quote_body)
        payload = QuotePayload.from_dict(quote_body)

        with pytest.raises(DuplicateNameError):
            create_quote(payload, session, studio.id, PROMISE_ID)

        result = create_quote(payload.renamed('Boda completa v2'), session, studio.id, PROMISE_ID)
        assert result.ok

    def test_same_name_other_promise(self, session, studio, quote_body):
        """Test that names only need to be unique within a promise."""
        create(session, studio, quote_body)
        result = create_quote(QuotePayload.from_dict(quote_body), session, studio.id, PROMISE_ID + 1)
        assert result.ok

    def test_concurrent_create_rejected(self, session, studio, quote_body):
        """Test that creation is rejected while the promise is being mutated."""
        guard = get_mutation_guard()
        with guard.hold(promise_resource(PROMISE_ID)):
            with pytest.raises(ConcurrentMutationError):
                create_quote(QuotePayload.from_dict(quote_body), session, studio.id, PROMISE_ID)

    def test_replacement_line_counted_once(self, session, studio, quote_body):
        """Test that a snapshot replacing a catalog line is aggregated instead of it."""
        custom = {'key': 'sesion-snap', 'name': 'Sesión', 'unit_price': 700, 'cost': 480, 'expense': 160,
                  'replaces_key': 'sesion'}
        body = dict(quote_body, custom_items=[custom], courtesy_item_ids=[], special_bonus=0, condition_id=None)
        quote_id = create(session, studio, body)

        breakdown = get_breakdown(session, studio.id, quote_id)
        assert breakdown.subtotal == Decimal('900')
        assert breakdown.total_cost == Decimal('600')
        assert quote_to_dict(get_quote(session, studio.id, quote_id))['custom_items'][0]['replaces_key'] == 'sesion'


class TestConditionVisibility:
    """Tests for the offered conditions stored with a quote."""

    def test_adjustment_hides_discounted_on_create(self, session, studio, quote_body, conditions):
        """Test that discounted conditions are dropped from an explicit list while a bonus is active."""
        visible = [conditions['contado'].id, conditions['anticipo'].id]
        quote_id = create(session, studio, dict(quote_body, visible_condition_ids=visible))

        assert get_quote(session, studio.id, quote_id).visible_condition_ids == [conditions['anticipo'].id]
        assert [s.condition_id for s in what_if(session, studio.id, quote_id)] == [conditions['anticipo'].id]

    def test_default_visibility_resolved_when_adjusted(self, session, studio, quote_body, conditions):
        """Test that the public default is narrowed and stored while courtesy or bonus is active."""
        quote_id = create(session, studio, quote_body)
        quote = get_quote(session, studio.id, quote_id)

        assert quote.visible_condition_ids == [conditions['anticipo'].id]
        editor = open_editor(session, studio.id, quote_id)
        assert quote_to_dict(quote)['visible_condition_ids'] == sorted(editor.visibility.visible_ids)

    def test_default_visibility_kept_without_adjustment(self, session, studio, quote_body):
        """Test that a quote without concessions keeps the public default."""
        quote_id = create(session, studio, dict(quote_body, courtesy_item_ids=[], special_bonus=0))
        assert get_quote(session, studio.id, quote_id).visible_condition_ids is None

    def test_readded_condition_persists(self, session, studio, quote_body, conditions):
        """Test that a condition re-added by hand survives saving and reopening."""
        contado_id = conditions['contado'].id
        quote_id = create(session, studio, dict(quote_body, readded_condition_ids=[contado_id]))

        quote = get_quote(session, studio.id, quote_id)
        assert contado_id in quote.visible_condition_ids
        assert quote.readded_condition_ids == [contado_id]
        assert contado_id in open_editor(session, studio.id, quote_id).visibility.visible_ids
        assert contado_id in [s.condition_id for s in what_if(session, studio.id, quote_id)]

    def test_readded_condition_dropped_on_update(self, session, studio, quote_body, conditions):
        """Test that an update without the re-add hides the discounted condition again."""
        contado_id = conditions['contado'].id
        quote_id = create(session, studio, dict(quote_body, readded_condition_ids=[contado_id]))

        assert update_quote(quote_id, QuotePayload.from_dict(quote_body), session, studio.id).ok
        quote = get_quote(session, studio.id, quote_id)
        assert contado_id not in quote.visible_condition_ids
        assert quote.readded_condition_ids == []


class TestUpdateQuote:
    """Tests for updates and immutability."""

    def test_update_lines_and_order(self, session, studio, quote_body, catalog_items):
        """Test that lines are rewritten in the requested order."""
        quote_id = create(session, studio, quote_body)
        body = dict(quote_body, courtesy_item_ids=[], special_bonus=0, line_order=['album', 'sesion'])

        assert update_quote(quote_id, QuotePayload.from_dict(body), session, studio.id).ok
        quote = get_quote(session, studio.id, quote_id)
        assert [line.line_key for line in quote.lines] == ['album', 'sesion']
        assert get_breakdown(session, studio.id, quote_id).suggested_price == Decimal('900')

    def test_concurrent_update_rejected(self, session, studio, quote_body):
        """Test that an update is rejected while the quote is being mutated."""
        quote_id = create(session, studio, quote_body)
        guard = get_mutation_guard()
        with guard.hold(quote_resource(quote_id)):
            with pytest.raises(ConcurrentMutationError):
                update_quote(quote_id, QuotePayload.from_dict(quote_body), session, studio.id)

    @pytest.mark.parametrize('field', ['closing_price_override', 'condition', 'special_bonus', 'courtesy_item_ids'])
    def test_authorized_quote_is_immutable(self, session, studio, quote_body, conditions, field):
        """Test that every commercial change after authorization fails and leaves the quote as it was."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre', 'autorizada')

        before = stored_state(session, studio, quote_id)
        payload = QuotePayload.from_state(before)
        changed = {
            'closing_price_override': replace(payload, closing_price_override=Decimal('600')),
            'condition': replace(payload, condition_id=conditions['anticipo'].id, negotiated_condition=None),
            'special_bonus': replace(payload, special_bonus=Decimal('80')),
            'courtesy_item_ids': replace(payload, courtesy_item_ids=frozenset()),
        }[field]

        with pytest.raises(ImmutableQuoteError) as exc:
            update_quote(quote_id, changed, session, studio.id)

        assert exc.value.payload['field'] == field
        assert stored_state(session, studio, quote_id) == before

    def test_authorized_quote_accepts_rename(self, session, studio, quote_body):
        """Test that non-commercial fields can still change after authorization."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre', 'autorizada')

        payload = QuotePayload.from_state(stored_state(session, studio, quote_id))
        assert update_quote(quote_id, payload.renamed('Boda autorizada'), session, studio.id).ok
        assert get_quote(session, studio.id, quote_id).name == 'Boda autorizada'

    def test_condition_locked_while_closing(self, session, studio, quote_body, conditions):
        """Test that the frozen condition cannot change while in closing."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre')

        body = dict(quote_body, condition_id=conditions['anticipo'].id)
        with pytest.raises(ImmutableQuoteError):
            update_quote(quote_id, QuotePayload.from_dict(body), session, studio.id)


class TestTransitions:
    """Tests for the closing lifecycle."""

    def test_closing_without_condition(self, session, studio, quote_body):
        """Test that closing requires a condition."""
        quote_id = create(session, studio, dict(quote_body, condition_id=None))
        move(session, studio, quote_id, 'published')

        with pytest.raises(MissingConditionError):
            transition_quote(quote_id, 'en_cierre', session, studio.id)
        assert get_quote(session, studio.id, quote_id).status == 'published'

    def test_invalid_transition(self, session, studio, quote_body):
        """Test that a draft cannot jump to authorized."""
        quote_id = create(session, studio, quote_body)
        with pytest.raises(InvalidTransitionError):
            transition_quote(quote_id, 'autorizada', session, studio.id)

    def test_closing_freezes_condition(self, session, studio, quote_body, conditions):
        """Test that entering closing snapshots the selected condition."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published')
        now = datetime(2026, 3, 14, 12, 0, 0)

        result = transition_quote(quote_id, 'en_cierre', session, studio.id, now=now)

        quote = get_quote(session, studio.id, quote_id)
        assert result == {'id': quote_id, 'status': 'en_cierre', 'previous_status': 'published'}
        assert quote.selected_condition_id is None
        assert quote.negotiated_condition.source_condition_id == conditions['contado'].id
        assert quote.negotiated_condition.frozen_at is not None
        assert get_breakdown(session, studio.id, quote_id).suggested_price == Decimal('675')

    def test_frozen_terms_survive_condition_edit(self, session, studio, quote_body, conditions):
        """Test that editing the catalog condition does not reach a quote in closing."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre')

        conditions['contado'].discount_percentage = Decimal('50')
        session.commit()

        assert get_breakdown(session, studio.id, quote_id).discount_amount == Decimal('75')

    def test_abort_closing_restores_selection(self, session, studio, quote_body, conditions):
        """Test that aborting a closing restores the standard selection."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre', 'draft')

        quote = get_quote(session, studio.id, quote_id)
        assert quote.status == 'draft'
        assert quote.selected_condition_id == conditions['contado'].id
        assert quote.negotiated_condition is None
        assert session.query(NegotiatedCondition).count() == 0

    def test_abort_closing_keeps_adhoc_terms(self, session, studio, quote_body):
        """Test that aborting a closing keeps ad-hoc negotiated terms, unfrozen."""
        body = dict(quote_body, condition_id=None,
                    negotiated_condition={'name': 'Pactada', 'discount_percentage': 5})
        quote_id = create(session, studio, body)
        move(session, studio, quote_id, 'published', 'en_cierre', 'draft')

        negotiated = get_quote(session, studio.id, quote_id).negotiated_condition
        assert negotiated.name == 'Pactada'
        assert negotiated.frozen_at is None

    def test_failed_closing_leaves_no_snapshot(self, session, studio, quote_body, monkeypatch):
        """Test that a failed closing removes its partial snapshot."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published')

        def explode(quote, target):
            raise RuntimeError('status write failed')

        monkeypatch.setattr(quote_service, '_apply_status', explode)
        with pytest.raises(RuntimeError):
            transition_quote(quote_id, 'en_cierre', session, studio.id)

        quote = get_quote(session, studio.id, quote_id)
        assert quote.status == 'published'
        assert quote.selected_condition_id is not None
        assert session.query(NegotiatedCondition).count() == 0

    def test_concurrent_transition_rejected(self, session, studio, quote_body):
        """Test that a transition is rejected while the quote is being mutated."""
        quote_id = create(session, studio, quote_body)
        with get_mutation_guard().hold(quote_resource(quote_id)):
            with pytest.raises(ConcurrentMutationError):
                transition_quote(quote_id, QuoteStatus.PUBLISHED, session, studio.id)
        assert get_quote(session, studio.id, quote_id).status == 'draft'


class TestDuplicateQuote:
    """Tests for copying a quote."""

    def test_copy_is_a_draft(self, session, studio, quote_body):
        """Test that a copy of a quote in closing is an unfrozen draft."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre')

        result = duplicate_quote(quote_id, session, studio.id)
        copy = get_quote(session, studio.id, result.data['id'])

        assert copy.name == 'Boda completa (copia)'
        assert copy.status == 'draft'
        assert copy.negotiated_condition.frozen_at is None
        assert copy.courtesy_keys == {'album'}
        assert get_breakdown(session, studio.id, copy.id).suggested_price == Decimal('675')

    def test_copy_keeps_readded_conditions(self, session, studio, quote_body, conditions):
        """Test that re-added conditions are copied."""
        contado_id = conditions['contado'].id
        quote_id = create(session, studio, dict(quote_body, readded_condition_ids=[contado_id]))

        copy = get_quote(session, studio.id, duplicate_quote(quote_id, session, studio.id).data['id'])
        assert copy.readded_condition_ids == [contado_id]
        assert contado_id in copy.visible_condition_ids

    def test_copy_name_taken(self, session, studio, quote_body):
        """Test that a second copy with the default name is refused."""
        quote_id = create(session, studio, quote_body)
        duplicate_quote(quote_id, session, studio.id)
        with pytest.raises(DuplicateNameError):
            duplicate_quote(quote_id, session, studio.id)


class TestResync:
    """Tests for explicit catalog resync of snapshot lines."""

    def test_catalog_edit_reaches_quote_only_on_resync(self, session, studio, quote_body, catalog_items):
        """Test that catalog edits only reach a quote through an explicit resync."""
        from studio_quotes.services.catalog_service import update_catalog_item

        quote_id = create(session, studio, dict(quote_body, courtesy_item_ids=[], special_bonus=0, condition_id=None))
        resync_snapshot_from_catalog(quote_id, 'album', session, studio.id)
        assert get_breakdown(session, studio.id, quote_id).subtotal == Decimal('1000')

        update_catalog_item(session, studio.id, catalog_items['album'].id, {'cost': 200})
        assert get_breakdown(session, studio.id, quote_id).subtotal == Decimal('1000')

        breakdown = resync_snapshot_from_catalog(quote_id, 'album', session, studio.id)
        assert breakdown.subtotal == Decimal('1100')

    def test_resync_keeps_replacement(self, session, studio, quote_body, catalog_items):
        """Test that a resynced replacement line still stands in for its catalog line."""
        custom = {'key': 'sesion-snap', 'name': 'Sesión', 'unit_price': 700, 'cost': 480, 'expense': 160,
                  'original_item_id': catalog_items['sesion'].id, 'replaces_key': 'sesion'}
        body = dict(quote_body, custom_items=[custom], courtesy_item_ids=[], special_bonus=0, condition_id=None)
        quote_id = create(session, studio, body)

        breakdown = resync_snapshot_from_catalog(quote_id, 'sesion-snap', session, studio.id)
        assert breakdown.subtotal == Decimal('1000')
        assert [line.key for line in breakdown.totals.lines] == ['album', 'sesion-snap']

    def test_resync_refused_when_authorized(self, session, studio, quote_body):
        """Test that an authorized quote cannot be resynced."""
        quote_id = create(session, studio, quote_body)
        move(session, studio, quote_id, 'published', 'en_cierre', 'autorizada')
        with pytest.raises(ImmutableQuoteError):
            resync_snapshot_from_catalog(quote_id, 'album', session, studio.id)
