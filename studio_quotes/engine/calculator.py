"""
Full computation chain for a quote.

line items -> aggregation -> negotiation -> condition -> closing price -> audit.
Pure and deterministic: depends only on the quote state and the catalog
snapshot (with its injected pricing config).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from studio_quotes.engine.aggregator import LineTotals, aggregate_line_items
from studio_quotes.engine.closing_price import resolve_closing_price
from studio_quotes.engine.conditions import apply_discount, payment_split, resolve_active_condition
from studio_quotes.engine.negotiation import NegotiationAdjuster, courtesy_impact
from studio_quotes.engine.profitability import ProfitabilityAudit, audit
from studio_quotes.engine.types import (
    ZERO, round_money,
    CatalogSnapshot, ConditionTerms, QuoteState,
)


@dataclass(frozen=True)
class Breakdown:
    subtotal: Decimal
    courtesy_amount: Decimal
    bonus: Decimal
    projected_subtotal: Decimal
    discount_amount: Decimal
    suggested_price: Decimal
    closing_price: Decimal
    total_cost: Decimal
    total_expense: Decimal
    advance: Decimal
    deferred: Decimal
    savings: Decimal
    minimum_price: Decimal
    courtesy_utility_impact: Decimal
    audit: ProfitabilityAudit
    terms: Optional[ConditionTerms]
    totals: LineTotals

    @property
    def commission(self) -> Decimal:
        return self.audit.commission

    @property
    def net_utility(self) -> Decimal:
        return self.audit.net_utility

    @property
    def margin_pct(self) -> Decimal:
        return self.audit.margin_pct

    @property
    def below_cost(self) -> bool:
        """Closing price under cost plus expense; the quote loses money."""
        return self.closing_price < self.minimum_price

    def as_dict(self) -> Dict[str, Any]:
        """Computed-breakdown contract, money rounded to cents."""
        rescue = self.audit.rescue_price
        return {
            'subtotal': round_money(self.subtotal),
            'courtesy_amount': round_money(self.courtesy_amount),
            'bonus': round_money(self.bonus),
            'projected_subtotal': round_money(self.projected_subtotal),
            'discount_amount': round_money(self.discount_amount),
            'suggested_price': round_money(self.suggested_price),
            'closing_price': round_money(self.closing_price),
            'total_cost': round_money(self.total_cost),
            'total_expense': round_money(self.total_expense),
            'commission': round_money(self.commission),
            'net_utility': round_money(self.net_utility),
            'margin_pct': self.margin_pct.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP),
            'advance': round_money(self.advance),
            'deferred': round_money(self.deferred),
            'savings': round_money(self.savings),
            'minimum_price': round_money(self.minimum_price),
            'below_cost': self.below_cost,
            'courtesy_utility_impact': round_money(self.courtesy_utility_impact),
            'utility_without_discount': round_money(self.audit.utility_without_discount),
            'weighted_target_margin_pct': self.audit.weighted_target_margin_pct.quantize(
                Decimal('0.01'), rounding=ROUND_HALF_UP),
            'health': self.audit.health.value,
            'meets_target': self.audit.meets_target,
            'rescue_price': round_money(rescue) if rescue is not None else None,
            'condition': {
                'name': self.terms.name,
                'source': self.terms.source,
                'condition_id': self.terms.condition_id,
                'discount_percentage': self.terms.discount_percentage,
            } if self.terms else None,
        }


def compute_breakdown(state: QuoteState, catalog: CatalogSnapshot) -> Breakdown:
    totals = aggregate_line_items(state.line_items, catalog, state.event_duration_hours)

    negotiation = NegotiationAdjuster(state.courtesy_item_ids, state.special_bonus).compute(totals)
    courtesy_keys = negotiation.courtesy_keys
    projected = negotiation.projected_subtotal

    terms = resolve_active_condition(state.selected_condition_id, state.negotiated_condition, catalog.conditions)
    discount = apply_discount(projected, terms)
    closing = resolve_closing_price(state.closing_price_override, discount.suggested_price)
    split = payment_split(closing, terms)

    return Breakdown(
        subtotal=totals.subtotal,
        courtesy_amount=negotiation.courtesy_amount,
        bonus=negotiation.bonus,
        projected_subtotal=projected,
        discount_amount=discount.discount_amount,
        suggested_price=discount.suggested_price,
        closing_price=closing,
        total_cost=totals.total_cost,
        total_expense=totals.total_expense,
        advance=split.advance,
        deferred=split.deferred,
        savings=max(ZERO, projected - closing),
        minimum_price=totals.total_cost + totals.total_expense,
        courtesy_utility_impact=courtesy_impact(totals, courtesy_keys).utility_impact,
        audit=audit(
            closing,
            projected,
            totals.total_cost,
            totals.total_expense,
            totals.revenue_mix(courtesy_keys),
            catalog.config,
        ),
        terms=terms,
        totals=totals,
    )
