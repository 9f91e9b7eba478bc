"""Catalog cost + expense -> unit sale price under a target margin."""
from dataclasses import dataclass
from decimal import Decimal

from studio_quotes.exceptions import InvalidConfigError, InvalidInputError
from studio_quotes.engine.types import (
    ZERO, ONE, HUNDRED, d,
    MarginConvention, PricingConfig, ProfitType,
)


@dataclass(frozen=True)
class PriceBreakdown:
    cost_plus_expense: Decimal
    margin_ratio: Decimal
    base_utility: Decimal
    base_price: Decimal
    markup_amount: Decimal
    unit_price: Decimal


def normalize_ratio(value, field_name: str = 'ratio') -> Decimal:
    """
    Normalize a configured ratio.

    Values greater than 1 are read as percentages (30 -> 0.30); None is 0.

    Raises:
        InvalidConfigError: if the value is negative.
    """
    ratio = d(value, field_name)
    if ratio < 0:
        raise InvalidConfigError(f"'{field_name}' no puede ser negativo: {value}")
    if ratio > ONE:
        ratio = ratio / HUNDRED
    return ratio


def margin_ratio_for(profit_type, config: PricingConfig) -> Decimal:
    """Target margin for a profit type (service vs. product)."""
    if config is None:
        raise InvalidConfigError('Configuración de precios no disponible.')
    if ProfitType(profit_type) == ProfitType.SERVICE:
        return normalize_ratio(config.utility_service_ratio, 'utility_service_ratio')
    return normalize_ratio(config.utility_product_ratio, 'utility_product_ratio')


def resolve_price(cost, expense, profit_type, config: PricingConfig) -> PriceBreakdown:
    """
    Derive the unit sale price for a catalog cost and expense.

    The margin for ``profit_type`` is realized over ``cost + expense`` before
    commission, following the studio's margin convention, and the studio-wide
    markup surcharge is applied on top.

    Raises:
        InvalidInputError: negative cost or expense.
        InvalidConfigError: margin ratio >= 1 or missing config.
    """
    cost = d(cost, 'cost')
    expense = d(expense, 'expense')
    if cost < 0 or expense < 0:
        raise InvalidInputError('Costo y gasto no pueden ser negativos.', {'cost': str(cost), 'expense': str(expense)})

    margin = margin_ratio_for(profit_type, config)
    if margin >= ONE:
        raise InvalidConfigError(f'El margen objetivo debe ser menor a 100% (recibido {margin * HUNDRED}%).')
    markup = normalize_ratio(config.markup_ratio, 'markup_ratio')

    cost_plus_expense = cost + expense
    if MarginConvention(config.margin_convention) == MarginConvention.ON_COST:
        base_price = cost_plus_expense * (ONE + margin)
    else:
        base_price = cost_plus_expense / (ONE - margin) if cost_plus_expense else ZERO

    markup_amount = base_price * markup
    return PriceBreakdown(
        cost_plus_expense=cost_plus_expense,
        margin_ratio=margin,
        base_utility=base_price - cost_plus_expense,
        base_price=base_price,
        markup_amount=markup_amount,
        unit_price=base_price + markup_amount,
    )


def resolve_unit_price(cost, expense, profit_type, config: PricingConfig) -> Decimal:
    return resolve_price(cost, expense, profit_type, config).unit_price
