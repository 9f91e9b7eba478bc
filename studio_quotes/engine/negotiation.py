"""Negotiation concessions: courtesy items and special bonus."""
from dataclasses import dataclass
from decimal import Decimal
from typing import FrozenSet, Iterable, Optional, Set

from studio_quotes.exceptions import InvalidInputError
from studio_quotes.engine.aggregator import LineTotals
from studio_quotes.engine.types import ZERO, d


@dataclass(frozen=True)
class NegotiationResult:
    subtotal: Decimal
    courtesy_amount: Decimal
    bonus: Decimal
    projected_subtotal: Decimal
    courtesy_keys: FrozenSet[str] = frozenset()

    @property
    def adjustment_active(self) -> bool:
        return self.courtesy_amount > 0 or self.bonus > 0


@dataclass(frozen=True)
class CourtesyImpact:
    total_courtesy: Decimal
    utility_impact: Decimal


def projected_subtotal(subtotal, courtesy_amount, bonus) -> Decimal:
    return max(ZERO, d(subtotal) - d(courtesy_amount) - d(bonus))


def courtesy_impact(totals: LineTotals, courtesy_item_ids: Iterable[str]) -> CourtesyImpact:
    """Revenue waived by courtesy lines and its effect on utility."""
    courtesy = set(courtesy_item_ids)
    waived = ZERO
    impact = ZERO
    for line in totals.lines:
        if line.key in courtesy:
            waived += line.line_subtotal
            impact -= line.line_subtotal - line.line_cost - line.line_expense
    return CourtesyImpact(total_courtesy=waived, utility_impact=impact)


class NegotiationAdjuster:
    """
    Tracks courtesy flags and the special bonus of a quote.

    ``dirty`` turns true the first time the operator changes line
    selection, courtesy flags or bonus after loading finished; the initial
    population never sets it.
    """

    def __init__(self, courtesy_item_ids: Optional[Iterable[str]] = None, special_bonus=ZERO):
        self.courtesy_item_ids: Set[str] = set(courtesy_item_ids or ())
        self.special_bonus: Decimal = self._checked_bonus(special_bonus)
        self.dirty = False
        self._loaded = False

    @staticmethod
    def _checked_bonus(amount) -> Decimal:
        amount = d(amount, 'special_bonus')
        if amount < 0:
            raise InvalidInputError('El bono especial no puede ser negativo.')
        return amount

    @property
    def loaded(self) -> bool:
        return self._loaded

    def finish_loading(self) -> None:
        self._loaded = True

    def _touch(self) -> None:
        if self._loaded:
            self.dirty = True

    def set_courtesy(self, key: str, is_courtesy: bool) -> None:
        if is_courtesy:
            self.courtesy_item_ids.add(key)
        else:
            self.courtesy_item_ids.discard(key)
        self._touch()

    def toggle_courtesy(self, key: str) -> bool:
        is_courtesy = key not in self.courtesy_item_ids
        self.set_courtesy(key, is_courtesy)
        return is_courtesy

    def set_bonus(self, amount) -> None:
        self.special_bonus = self._checked_bonus(amount)
        self._touch()

    def line_selection_changed(self) -> None:
        self._touch()

    def prune(self, present_keys: Iterable[str]) -> None:
        """Drop courtesy flags of lines no longer present."""
        self.courtesy_item_ids &= set(present_keys)

    def compute(self, totals: LineTotals) -> NegotiationResult:
        """Projected subtotal after waiving courtesy lines and the bonus."""
        by_key = totals.by_key()
        courtesy_keys = frozenset(key for key in self.courtesy_item_ids if key in by_key)
        courtesy_amount = sum((by_key[key].line_subtotal for key in courtesy_keys), ZERO)
        return NegotiationResult(
            subtotal=totals.subtotal,
            courtesy_amount=courtesy_amount,
            bonus=self.special_bonus,
            projected_subtotal=projected_subtotal(totals.subtotal, courtesy_amount, self.special_bonus),
            courtesy_keys=courtesy_keys,
        )
