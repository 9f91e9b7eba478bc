"""Profitability audit: commission, net utility, margin and health."""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from studio_quotes.engine.conditions import apply_discount, payment_split, terms_from_condition
from studio_quotes.engine.price_resolver import normalize_ratio
from studio_quotes.engine.types import (
    ZERO, ONE, HUNDRED, d,
    CommercialConditionSpec, PricingConfig, ProfitType,
)

RED_BELOW = Decimal('15')
AMBER_BELOW = Decimal('25')


class Health(str, Enum):
    RED = 'red'
    AMBER = 'amber'
    GREEN = 'green'


@dataclass(frozen=True)
class ProfitabilityAudit:
    commission: Decimal
    net_utility: Decimal
    margin_pct: Decimal
    utility_without_discount: Decimal
    weighted_target_margin_pct: Decimal
    health: Health
    meets_target: bool
    rescue_price: Optional[Decimal]


@dataclass(frozen=True)
class ConditionScenario:
    condition_id: int
    name: str
    discount_amount: Decimal
    price: Decimal
    commission: Decimal
    net_utility: Decimal
    margin_pct: Decimal
    advance: Decimal
    deferred: Decimal


def net_utility(price, total_cost, total_expense, commission_ratio) -> Decimal:
    price = d(price)
    return price - d(total_cost) - d(total_expense) - price * commission_ratio


def margin_pct(utility, price) -> Decimal:
    price = d(price)
    if price == 0:
        return ZERO
    return d(utility) / price * HUNDRED


def classify_health(margin) -> Health:
    margin = d(margin)
    if margin < RED_BELOW:
        return Health.RED
    if margin < AMBER_BELOW:
        return Health.AMBER
    return Health.GREEN


def weighted_target_margin(revenue_mix: Dict[ProfitType, Decimal], config: PricingConfig) -> Decimal:
    """Revenue-weighted blend of the service/product margin targets, in percent."""
    service_revenue = d(revenue_mix.get(ProfitType.SERVICE))
    product_revenue = d(revenue_mix.get(ProfitType.PRODUCT))
    total = service_revenue + product_revenue
    if total <= 0:
        return ZERO
    service_target = normalize_ratio(config.utility_service_ratio, 'utility_service_ratio')
    product_target = normalize_ratio(config.utility_product_ratio, 'utility_product_ratio')
    return (service_revenue * service_target + product_revenue * product_target) / total * HUNDRED


def rescue_price(total_cost, total_expense, commission_ratio, target_pct) -> Optional[Decimal]:
    """Closing price that reaches ``target_pct`` after commission; None when unreachable."""
    denominator = ONE - d(commission_ratio) - d(target_pct) / HUNDRED
    if denominator <= 0:
        return None
    return (d(total_cost) + d(total_expense)) / denominator


def audit(
    closing_price,
    projected_subtotal,
    total_cost,
    total_expense,
    revenue_mix: Dict[ProfitType, Decimal],
    config: PricingConfig,
) -> ProfitabilityAudit:
    commission_ratio = normalize_ratio(config.commission_ratio, 'commission_ratio')
    closing_price = d(closing_price)

    utility = net_utility(closing_price, total_cost, total_expense, commission_ratio)
    margin = margin_pct(utility, closing_price)
    target = weighted_target_margin(revenue_mix, config)
    return ProfitabilityAudit(
        commission=closing_price * commission_ratio,
        net_utility=utility,
        margin_pct=margin,
        utility_without_discount=net_utility(projected_subtotal, total_cost, total_expense, commission_ratio),
        weighted_target_margin_pct=target,
        health=classify_health(margin),
        meets_target=margin >= target,
        rescue_price=rescue_price(total_cost, total_expense, commission_ratio, target),
    )


def what_if(
    conditions: Iterable[CommercialConditionSpec],
    projected_subtotal,
    total_cost,
    total_expense,
    config: PricingConfig,
) -> List[ConditionScenario]:
    """Commission and utility under each condition, without selecting any."""
    commission_ratio = normalize_ratio(config.commission_ratio, 'commission_ratio')
    scenarios = []
    for condition in conditions:
        terms = terms_from_condition(condition)
        discount = apply_discount(projected_subtotal, terms)
        price = discount.suggested_price
        utility = net_utility(price, total_cost, total_expense, commission_ratio)
        split = payment_split(price, terms)
        scenarios.append(ConditionScenario(
            condition_id=condition.id,
            name=condition.name,
            discount_amount=discount.discount_amount,
            price=price,
            commission=price * commission_ratio,
            net_utility=utility,
            margin_pct=margin_pct(utility, price),
            advance=split.advance,
            deferred=split.deferred,
        ))
    return scenarios
