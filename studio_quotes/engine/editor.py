"""
In-memory editing session for a single quote.

Owns the negotiation dirty flag, condition selection and visibility, and the
closing-price resolver, and recomputes the breakdown after every change.
Commercial mutations are refused once the quote is authorized.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Set

from studio_quotes.exceptions import InvalidInputError, NotFoundError
from studio_quotes.engine.calculator import Breakdown, compute_breakdown
from studio_quotes.engine.closing_price import DEFAULT_SIGNAL_SECONDS, ClosingPriceResolver
from studio_quotes.engine.conditions import ConditionSelection, ConditionVisibility
from studio_quotes.engine.lifecycle import (
    check_transition, ensure_condition_editable, ensure_mutable, freeze_terms, unfreeze_selection,
)
from studio_quotes.engine.negotiation import NegotiationAdjuster
from studio_quotes.engine.profitability import ConditionScenario, what_if
from studio_quotes.engine.types import (
    d,
    CatalogSnapshot, LineItem, NegotiatedTerms, QuoteState, QuoteStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EditorSnapshot:
    state: QuoteState
    dirty: bool


class QuoteEditor:

    def __init__(
        self,
        state: QuoteState,
        catalog: CatalogSnapshot,
        signal_seconds: int = DEFAULT_SIGNAL_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.catalog = catalog
        self._clock = clock
        self.state = state.copy()
        self.adjuster = NegotiationAdjuster(state.courtesy_item_ids, state.special_bonus)
        self.adjuster.prune(line.key for line in state.line_items)
        self.selection = ConditionSelection(state.selected_condition_id, state.negotiated_condition)
        self.visibility = ConditionVisibility(
            catalog.conditions, state.visible_condition_ids, state.readded_condition_ids,
        )
        self.closing = ClosingPriceResolver(state.closing_price_override, signal_seconds)

        self.breakdown = self._compute()
        self.visibility.apply_adjustment_rule(self._adjustment_active(self.breakdown))
        self.state.visible_condition_ids = set(self.visibility.visible_ids)
        self.closing.seed(self.breakdown.suggested_price)
        self.adjuster.finish_loading()

    # -- internals -----------------------------------------------------------

    @staticmethod
    def _adjustment_active(breakdown: Breakdown) -> bool:
        return breakdown.courtesy_amount > 0 or breakdown.bonus > 0

    def _sync_state(self) -> None:
        self.state.courtesy_item_ids = set(self.adjuster.courtesy_item_ids)
        self.state.special_bonus = self.adjuster.special_bonus
        self.state.selected_condition_id = self.selection.selected_condition_id
        self.state.negotiated_condition = self.selection.negotiated
        self.state.closing_price_override = self.closing.override
        self.state.visible_condition_ids = set(self.visibility.visible_ids)
        self.state.readded_condition_ids = set(self.visibility.readded_ids)

    def _compute(self) -> Breakdown:
        self._sync_state()
        return compute_breakdown(self.state, self.catalog)

    def _recompute_upstream(self) -> Breakdown:
        breakdown = self._compute()
        if self.closing.on_upstream_recompute(breakdown.suggested_price, self.adjuster.dirty, self._clock()):
            logger.info(f"[QUOTE] Precio de cierre resincronizado a {breakdown.suggested_price} (quote={self.state.id})")
            breakdown = self._compute()
        self.visibility.apply_adjustment_rule(self._adjustment_active(breakdown))
        self.state.visible_condition_ids = set(self.visibility.visible_ids)
        self.breakdown = breakdown
        return breakdown

    def _line_keys(self) -> List[str]:
        return [line.key for line in self.state.line_items]

    def recompute(self) -> Breakdown:
        """Recompute the breakdown without treating it as an upstream change."""
        self.breakdown = self._compute()
        return self.breakdown

    # -- negotiation ---------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self.adjuster.dirty

    def set_courtesy(self, key: str, is_courtesy: bool = True) -> Breakdown:
        ensure_mutable(self.state.status, 'courtesy_item_ids')
        if key not in self._line_keys():
            raise InvalidInputError(f'El ítem {key} no pertenece a la cotización.')
        self.adjuster.set_courtesy(key, is_courtesy)
        return self._recompute_upstream()

    def set_bonus(self, amount) -> Breakdown:
        ensure_mutable(self.state.status, 'special_bonus')
        self.adjuster.set_bonus(amount)
        return self._recompute_upstream()

    # -- line items ----------------------------------------------------------

    def add_line(self, line: LineItem, index: Optional[int] = None) -> Breakdown:
        ensure_mutable(self.state.status, 'line_items')
        if line.key in self._line_keys():
            raise InvalidInputError(f'Ya existe un ítem con clave {line.key}.')
        if index is None:
            self.state.line_items.append(line)
        else:
            self.state.line_items.insert(index, line)
        self.adjuster.line_selection_changed()
        return self._recompute_upstream()

    def remove_line(self, key: str) -> Breakdown:
        ensure_mutable(self.state.status, 'line_items')
        if key not in self._line_keys():
            raise NotFoundError(f'Ítem {key} no encontrado en la cotización.')
        self.state.line_items = [line for line in self.state.line_items if line.key != key]
        self.adjuster.prune(self._line_keys())
        self.adjuster.line_selection_changed()
        return self._recompute_upstream()

    def reorder_lines(self, keys: List[str]) -> None:
        ensure_mutable(self.state.status, 'line_items')
        if sorted(keys) != sorted(self._line_keys()):
            raise InvalidInputError('El nuevo orden debe contener exactamente los ítems actuales.')
        by_key = {line.key: line for line in self.state.line_items}
        self.state.line_items = [by_key[key] for key in keys]

    def set_event_duration(self, hours) -> Breakdown:
        ensure_mutable(self.state.status, 'event_duration_hours')
        if hours is not None:
            hours = d(hours, 'event_duration_hours')
            if hours <= 0:
                raise InvalidInputError('La duración del evento debe ser mayor a 0.')
        self.state.event_duration_hours = hours
        return self._recompute_upstream()

    # -- conditions ----------------------------------------------------------

    def select_condition(self, condition_id: Optional[int]) -> Breakdown:
        ensure_condition_editable(self.state.status)
        if condition_id is not None and condition_id not in self.catalog.conditions:
            raise NotFoundError(f'Condición comercial {condition_id} no encontrada.')
        self.selection.select_standard(condition_id)
        return self._recompute_upstream()

    def set_negotiated_condition(self, terms: Optional[NegotiatedTerms]) -> Breakdown:
        ensure_condition_editable(self.state.status)
        self.selection.set_negotiated(terms)
        return self._recompute_upstream()

    def show_condition(self, condition_id: int) -> Set[int]:
        self.visibility.show(condition_id)
        self._sync_state()
        return set(self.visibility.visible_ids)

    def hide_condition(self, condition_id: int) -> Set[int]:
        self.visibility.hide(condition_id)
        self._sync_state()
        return set(self.visibility.visible_ids)

    # -- closing price -------------------------------------------------------

    def edit_closing_price(self, value) -> Breakdown:
        ensure_mutable(self.state.status, 'closing_price_override')
        self.closing.edit(value)
        self.breakdown = self._compute()
        return self.breakdown

    @property
    def resync_signal(self):
        return self.closing.signal

    def clear_resync_signal(self) -> bool:
        return self.closing.clear_signal(self._clock())

    # -- lifecycle -----------------------------------------------------------

    def transition(self, target) -> QuoteStatus:
        """
        Move the quote to ``target``.

        Entering closing freezes the active terms into a negotiated
        condition; aborting a closing restores the standard selection the
        terms were frozen from, or unfreezes an ad-hoc negotiated condition.
        """
        current = QuoteStatus(self.state.status)
        target = check_transition(current, target, self.selection.has_condition)
        if target == QuoteStatus.EN_CIERRE:
            self.selection.set_negotiated(freeze_terms(self.breakdown.terms, self._clock()))
        elif current == QuoteStatus.EN_CIERRE and target == QuoteStatus.DRAFT:
            self.selection = unfreeze_selection(self.selection.negotiated)
        self.state.status = target
        self.breakdown = self._compute()
        logger.info(f"[CIERRE] Cotización {self.state.id}: {current.value} -> {target.value}")
        return target

    # -- audit ---------------------------------------------------------------

    def what_if(self) -> List[ConditionScenario]:
        visible = [self.catalog.conditions[cid] for cid in sorted(self.visibility.visible_ids)
                   if cid in self.catalog.conditions]
        return what_if(
            visible,
            self.breakdown.projected_subtotal,
            self.breakdown.total_cost,
            self.breakdown.total_expense,
            self.catalog.config,
        )

    # -- snapshots -----------------------------------------------------------

    def snapshot(self) -> EditorSnapshot:
        self._sync_state()
        return EditorSnapshot(
            state=self.state.copy(),
            dirty=self.adjuster.dirty,
        )

    def restore(self, snapshot: EditorSnapshot) -> Breakdown:
        state = snapshot.state.copy()
        self.state = state
        self.adjuster.courtesy_item_ids = set(state.courtesy_item_ids)
        self.adjuster.special_bonus = state.special_bonus
        self.adjuster.dirty = snapshot.dirty
        self.selection = ConditionSelection(state.selected_condition_id, state.negotiated_condition)
        self.visibility.visible_ids = set(state.visible_condition_ids or ())
        self.visibility.readded_ids = set(state.readded_condition_ids)
        self.closing.override = state.closing_price_override
        self.breakdown = self._compute()
        self.closing.seed(self.breakdown.suggested_price)
        return self.breakdown
