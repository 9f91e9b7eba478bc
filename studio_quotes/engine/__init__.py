"""
Pure pricing and negotiation engine.

Every function here is deterministic over a ``QuoteState`` and a
``CatalogSnapshot``; no I/O, no database access.
"""
from studio_quotes.engine.types import (
    AdvanceType,
    BillingType,
    CatalogItemSnapshot,
    CatalogSnapshot,
    CommercialConditionSpec,
    ConditionTerms,
    ExpenseEntry,
    LineItem,
    MarginConvention,
    NegotiatedTerms,
    PricingConfig,
    ProfitType,
    QuoteState,
    QuoteStatus,
)
from studio_quotes.engine.price_resolver import PriceBreakdown, resolve_price, resolve_unit_price
from studio_quotes.engine.billing import resolve_effective_quantity
from studio_quotes.engine.aggregator import LineTotals, aggregate_line_items, snapshot_from_catalog
from studio_quotes.engine.negotiation import NegotiationAdjuster, courtesy_impact, projected_subtotal
from studio_quotes.engine.conditions import (
    ConditionSelection,
    ConditionVisibility,
    apply_discount,
    payment_split,
    resolve_active_condition,
)
from studio_quotes.engine.closing_price import ClosingPriceResolver, ResyncSignal, resolve_closing_price
from studio_quotes.engine.profitability import Health, ProfitabilityAudit, audit, what_if
from studio_quotes.engine.lifecycle import check_transition, ensure_mutable, freeze_terms, unfreeze_selection
from studio_quotes.engine.calculator import Breakdown, compute_breakdown
from studio_quotes.engine.editor import EditorSnapshot, QuoteEditor

__all__ = [
    'AdvanceType', 'BillingType', 'CatalogItemSnapshot', 'CatalogSnapshot',
    'CommercialConditionSpec', 'ConditionTerms', 'ExpenseEntry', 'LineItem',
    'MarginConvention', 'NegotiatedTerms', 'PricingConfig', 'ProfitType',
    'QuoteState', 'QuoteStatus',
    'PriceBreakdown', 'resolve_price', 'resolve_unit_price',
    'resolve_effective_quantity',
    'LineTotals', 'aggregate_line_items', 'snapshot_from_catalog',
    'NegotiationAdjuster', 'courtesy_impact', 'projected_subtotal',
    'ConditionSelection', 'ConditionVisibility', 'apply_discount', 'payment_split',
    'resolve_active_condition',
    'ClosingPriceResolver', 'ResyncSignal', 'resolve_closing_price',
    'Health', 'ProfitabilityAudit', 'audit', 'what_if',
    'check_transition', 'ensure_mutable', 'freeze_terms', 'unfreeze_selection',
    'Breakdown', 'compute_breakdown',
    'EditorSnapshot', 'QuoteEditor',
]
