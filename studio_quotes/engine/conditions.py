"""Commercial condition resolution: discount, advance/deferred split, visibility."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set

from studio_quotes.exceptions import InvalidInputError, NotFoundError
from studio_quotes.engine.types import (
    ZERO, HUNDRED, d,
    AdvanceType, CommercialConditionSpec, ConditionTerms, NegotiatedTerms,
)


@dataclass(frozen=True)
class DiscountResult:
    discount_amount: Decimal
    suggested_price: Decimal


@dataclass(frozen=True)
class PaymentSplit:
    advance: Decimal
    deferred: Decimal


def _checked_percentage(value, field_name: str) -> Decimal:
    pct = d(value, field_name)
    if pct < 0 or pct > HUNDRED:
        raise InvalidInputError(f"'{field_name}' debe estar entre 0 y 100: {value}")
    return pct


def terms_from_condition(condition: CommercialConditionSpec) -> ConditionTerms:
    return ConditionTerms(
        name=condition.name,
        discount_percentage=_checked_percentage(condition.discount_percentage, 'discount_percentage'),
        advance_type=AdvanceType(condition.advance_type),
        advance_value=d(condition.advance_value, 'advance_value'),
        source='standard',
        condition_id=condition.id,
    )


def terms_from_negotiated(negotiated: NegotiatedTerms) -> ConditionTerms:
    return ConditionTerms(
        name=negotiated.name,
        discount_percentage=_checked_percentage(negotiated.discount_percentage, 'discount_percentage'),
        advance_type=AdvanceType(negotiated.advance_type),
        advance_value=d(negotiated.advance_value, 'advance_value'),
        source='negotiated',
        condition_id=negotiated.source_condition_id,
    )


def resolve_active_condition(
    selected_condition_id: Optional[int],
    negotiated: Optional[NegotiatedTerms],
    conditions: Dict[int, CommercialConditionSpec],
) -> Optional[ConditionTerms]:
    """Active terms: the negotiated condition, else the standard selection, else None."""
    if negotiated is not None:
        return terms_from_negotiated(negotiated)
    if selected_condition_id is None:
        return None
    condition = conditions.get(selected_condition_id)
    if condition is None:
        raise NotFoundError(f'Condición comercial {selected_condition_id} no encontrada.')
    return terms_from_condition(condition)


def apply_discount(projected_subtotal, terms: Optional[ConditionTerms]) -> DiscountResult:
    projected = d(projected_subtotal)
    if terms is None or terms.discount_percentage <= 0:
        return DiscountResult(discount_amount=ZERO, suggested_price=max(ZERO, projected))
    discount_amount = projected * terms.discount_percentage / HUNDRED
    return DiscountResult(
        discount_amount=discount_amount,
        suggested_price=max(ZERO, projected - discount_amount),
    )


def payment_split(closing_price, terms: Optional[ConditionTerms]) -> PaymentSplit:
    """
    Advance and deferred amounts over the closing price.

    A fixed-amount advance is reported as configured, without clamping
    against the closing price.
    """
    closing = d(closing_price)
    if terms is None:
        advance = ZERO
    elif terms.advance_type == AdvanceType.FIXED_AMOUNT:
        advance = terms.advance_value
    else:
        advance = closing * terms.advance_value / HUNDRED
    return PaymentSplit(advance=advance, deferred=max(ZERO, closing - advance))


def default_visible_condition_ids(conditions: Iterable[CommercialConditionSpec]) -> Set[int]:
    return {c.id for c in conditions if c.is_public}


class ConditionVisibility:
    """
    Conditions offered to the client.

    While a negotiation adjustment is active every condition with a
    discount is hidden, unless the operator re-added it by hand. Re-added
    conditions are always offered.
    """

    def __init__(
        self,
        conditions: Dict[int, CommercialConditionSpec],
        visible_ids: Optional[Iterable[int]] = None,
        readded_ids: Optional[Iterable[int]] = None,
    ):
        self.conditions = conditions
        if visible_ids is None:
            visible_ids = default_visible_condition_ids(conditions.values())
        self.readded_ids: Set[int] = set(readded_ids or ())
        unknown = self.readded_ids - set(conditions)
        if unknown:
            raise NotFoundError(f'Condición comercial {min(unknown)} no encontrada.')
        self.visible_ids: Set[int] = set(visible_ids) | self.readded_ids

    def _discounted(self) -> Set[int]:
        return {cid for cid, c in self.conditions.items() if d(c.discount_percentage) > 0}

    def apply_adjustment_rule(self, adjustment_active: bool) -> Set[int]:
        if adjustment_active:
            self.visible_ids -= (self._discounted() - self.readded_ids)
        return set(self.visible_ids)

    def show(self, condition_id: int) -> None:
        if condition_id not in self.conditions:
            raise NotFoundError(f'Condición comercial {condition_id} no encontrada.')
        self.visible_ids.add(condition_id)
        self.readded_ids.add(condition_id)

    def hide(self, condition_id: int) -> None:
        self.visible_ids.discard(condition_id)
        self.readded_ids.discard(condition_id)


def resolve_visible_condition_ids(
    conditions: Dict[int, CommercialConditionSpec],
    visible_ids: Optional[Iterable[int]],
    readded_ids: Iterable[int],
    adjustment_active: bool,
) -> Optional[Set[int]]:
    """
    Conditions to store as offered, after the adjustment rule.

    ``None`` stays ``None`` (public conditions) while nothing narrows it.
    """
    readded_ids = set(readded_ids)
    if visible_ids is None and not readded_ids and not adjustment_active:
        return None
    visibility = ConditionVisibility(conditions, visible_ids, readded_ids)
    return visibility.apply_adjustment_rule(adjustment_active)


class ConditionSelection:
    """Mutually exclusive standard selection / negotiated condition."""

    def __init__(self, selected_condition_id: Optional[int] = None, negotiated: Optional[NegotiatedTerms] = None):
        if selected_condition_id is not None and negotiated is not None:
            raise InvalidInputError('Una cotización no puede tener condición estándar y pactada a la vez.')
        self.selected_condition_id = selected_condition_id
        self.negotiated = negotiated

    def select_standard(self, condition_id: Optional[int]) -> None:
        self.selected_condition_id = condition_id
        if condition_id is not None:
            self.negotiated = None

    def set_negotiated(self, negotiated: Optional[NegotiatedTerms]) -> None:
        self.negotiated = negotiated
        if negotiated is not None:
            self.selected_condition_id = None

    @property
    def has_condition(self) -> bool:
        return self.selected_condition_id is not None or self.negotiated is not None
