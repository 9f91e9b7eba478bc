"""Sums catalog and custom line items into subtotal, cost and expense."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from studio_quotes.exceptions import InvalidInputError
from studio_quotes.engine.billing import resolve_effective_quantity
from studio_quotes.engine.price_resolver import resolve_price
from studio_quotes.engine.types import (
    ZERO, d,
    CatalogItemSnapshot, CatalogSnapshot, LineItem, PricingConfig, ProfitType,
)


@dataclass(frozen=True)
class LineTotal:
    key: str
    source: str
    item_id: Optional[int]
    profit_type: ProfitType
    unit_price: Decimal
    effective_quantity: Decimal
    line_subtotal: Decimal
    line_cost: Decimal
    line_expense: Decimal


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_expense: Decimal = ZERO
    lines: List[LineTotal] = field(default_factory=list)

    def by_key(self) -> Dict[str, LineTotal]:
        return {line.key: line for line in self.lines}

    def revenue_mix(self, excluded_keys: Iterable[str] = ()) -> Dict[ProfitType, Decimal]:
        """Service/product revenue of the lines actually charged."""
        excluded = set(excluded_keys)
        mix = {ProfitType.SERVICE: ZERO, ProfitType.PRODUCT: ZERO}
        for line in self.lines:
            if line.key not in excluded:
                mix[line.profit_type] += line.line_subtotal
        return mix


def _catalog_line(line: LineItem, item: CatalogItemSnapshot, config: PricingConfig, duration) -> LineTotal:
    price = resolve_price(item.cost, item.expense, item.profit_type, config)
    qty = resolve_effective_quantity(item.billing_type, line.quantity, duration)
    return LineTotal(
        key=line.key,
        source='catalog',
        item_id=item.id,
        profit_type=ProfitType(item.profit_type),
        unit_price=price.unit_price,
        effective_quantity=qty,
        line_subtotal=price.unit_price * qty,
        line_cost=d(item.cost) * qty,
        line_expense=item.expense * qty,
    )


def _custom_line(line: LineItem, duration) -> LineTotal:
    unit_price = d(line.unit_price, 'unit_price')
    cost = d(line.cost, 'cost')
    expense = d(line.expense, 'expense')
    if unit_price < 0 or cost < 0 or expense < 0:
        raise InvalidInputError(f"Ítem '{line.name or line.key}' con montos negativos.")
    qty = resolve_effective_quantity(line.billing_type, line.quantity, duration)
    return LineTotal(
        key=line.key,
        source='custom',
        item_id=line.original_item_id,
        profit_type=ProfitType(line.profit_type),
        unit_price=unit_price,
        effective_quantity=qty,
        line_subtotal=unit_price * qty,
        line_cost=cost * qty,
        line_expense=expense * qty,
    )


def aggregate_line_items(line_items: Iterable[LineItem], catalog: CatalogSnapshot, event_duration_hours=None) -> LineTotals:
    """
    Aggregate every line item of a quote.

    Cost and expense accrue for every line, courtesy lines included. A
    catalog line replaced by a custom snapshot (``replaces_key``) is counted
    once, with the custom values; custom lines are always counted.
    """
    line_items = list(line_items)
    replaced = {line.replaces_key for line in line_items if line.is_custom and line.replaces_key}

    lines = []
    for line in line_items:
        if d(line.quantity, 'quantity') < 0:
            raise InvalidInputError(f"Cantidad negativa en '{line.name or line.key}'.")

        if line.is_custom:
            lines.append(_custom_line(line, event_duration_hours))
            continue

        if line.key in replaced:
            continue
        item = catalog.items.get(line.item_id)
        if item is None:
            raise InvalidInputError(f'Ítem de catálogo {line.item_id} no disponible.', {'item_id': line.item_id})
        lines.append(_catalog_line(line, item, catalog.config, event_duration_hours))

    return LineTotals(
        subtotal=sum((line.line_subtotal for line in lines), ZERO),
        total_cost=sum((line.line_cost for line in lines), ZERO),
        total_expense=sum((line.line_expense for line in lines), ZERO),
        lines=lines,
    )


def snapshot_from_catalog(line: LineItem, item: CatalogItemSnapshot, config: PricingConfig) -> LineItem:
    """Rewrite a custom/snapshot line from the current catalog values."""
    price = resolve_price(item.cost, item.expense, item.profit_type, config)
    return LineItem(
        key=line.key,
        quantity=line.quantity,
        item_id=None,
        name=item.name,
        description=item.description,
        unit_price=price.unit_price,
        cost=d(item.cost),
        expense=item.expense,
        billing_type=item.billing_type,
        profit_type=item.profit_type,
        original_item_id=item.id,
        replaces_key=line.replaces_key if line.is_custom else None,
        promote_to_catalog=False,
    )
