"""Quote lifecycle: legal transitions and the immutability of authorized quotes."""
from dataclasses import replace
from datetime import datetime
from typing import Optional

from studio_quotes.exceptions import (
    ImmutableQuoteError, InvalidTransitionError, MissingConditionError,
)
from studio_quotes.engine.conditions import ConditionSelection
from studio_quotes.engine.types import ConditionTerms, NegotiatedTerms, QuoteStatus

TRANSITIONS = {
    QuoteStatus.DRAFT: {QuoteStatus.PUBLISHED},
    QuoteStatus.PUBLISHED: {QuoteStatus.DRAFT, QuoteStatus.EN_CIERRE},
    QuoteStatus.EN_CIERRE: {QuoteStatus.AUTORIZADA, QuoteStatus.DRAFT},
    QuoteStatus.AUTORIZADA: set(),
}

COMMERCIAL_FIELDS = (
    'closing_price_override',
    'condition',
    'special_bonus',
    'courtesy_item_ids',
    'line_items',
    'event_duration_hours',
)


def can_transition(current, target) -> bool:
    return QuoteStatus(target) in TRANSITIONS[QuoteStatus(current)]


def check_transition(current, target, has_condition: bool) -> QuoteStatus:
    """
    Validate a lifecycle transition.

    Raises:
        InvalidTransitionError: the transition is not legal from ``current``.
        MissingConditionError: closing without a standard or negotiated condition.
    """
    current = QuoteStatus(current)
    target = QuoteStatus(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    if target == QuoteStatus.EN_CIERRE and not has_condition:
        raise MissingConditionError()
    return target


def ensure_mutable(status, field: str) -> None:
    if QuoteStatus(status) == QuoteStatus.AUTORIZADA:
        raise ImmutableQuoteError(field)


def ensure_condition_editable(status) -> None:
    """The condition is frozen from closing onwards."""
    ensure_mutable(status, 'condition')
    if QuoteStatus(status) == QuoteStatus.EN_CIERRE:
        raise ImmutableQuoteError('condition', QuoteStatus.EN_CIERRE.value)


def freeze_terms(terms: ConditionTerms, now: Optional[datetime] = None) -> NegotiatedTerms:
    """Snapshot the terms in effect when a quote enters closing."""
    return NegotiatedTerms(
        name=terms.name,
        discount_percentage=terms.discount_percentage,
        advance_type=terms.advance_type,
        advance_value=terms.advance_value,
        source_condition_id=terms.condition_id,
        frozen_at=now or datetime.utcnow(),
    )


def unfreeze_selection(frozen: Optional[NegotiatedTerms]) -> ConditionSelection:
    """
    Selection after aborting a closing.

    Terms frozen from a standard condition go back to selecting it; ad-hoc
    negotiated terms stay, unfrozen.
    """
    if frozen is None:
        return ConditionSelection()
    if frozen.source_condition_id is not None:
        return ConditionSelection(selected_condition_id=frozen.source_condition_id)
    return ConditionSelection(negotiated=replace(frozen, frozen_at=None))
