"""Value objects shared by the pricing engine."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Set

from studio_quotes.exceptions import InvalidInputError

ZERO = Decimal('0')
ONE = Decimal('1')
HUNDRED = Decimal('100')
TWOPLACES = Decimal('0.01')


def d(value, field_name: str = 'valor') -> Decimal:
    """Coerce a number (or numeric string) to Decimal; None becomes 0."""
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError(f"'{field_name}' no es un número válido: {value!r}")


def round_money(value: Decimal) -> Decimal:
    return d(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


class ProfitType(str, Enum):
    SERVICE = 'service'
    PRODUCT = 'product'


class BillingType(str, Enum):
    HOUR = 'HOUR'
    SERVICE = 'SERVICE'
    UNIT = 'UNIT'


class AdvanceType(str, Enum):
    PERCENTAGE = 'percentage'
    FIXED_AMOUNT = 'fixed_amount'


class MarginConvention(str, Enum):
    ON_PRICE = 'on_price'
    ON_COST = 'on_cost'


class QuoteStatus(str, Enum):
    DRAFT = 'draft'
    PUBLISHED = 'published'
    EN_CIERRE = 'en_cierre'
    AUTORIZADA = 'autorizada'


@dataclass(frozen=True)
class PricingConfig:
    """
    Studio-wide pricing configuration.

    Ratios may arrive as percentages (> 1) or ratios (<= 1); resolvers
    normalize them before use.
    """
    utility_service_ratio: Decimal = ZERO
    utility_product_ratio: Decimal = ZERO
    commission_ratio: Decimal = ZERO
    markup_ratio: Decimal = ZERO
    margin_convention: MarginConvention = MarginConvention.ON_PRICE


@dataclass(frozen=True)
class ExpenseEntry:
    label: str
    amount: Decimal


@dataclass(frozen=True)
class CatalogItemSnapshot:
    id: int
    name: str
    cost: Decimal
    profit_type: ProfitType
    billing_type: BillingType
    expense_breakdown: tuple = ()
    description: Optional[str] = None
    status: str = 'active'

    @property
    def expense(self) -> Decimal:
        total = ZERO
        for entry in self.expense_breakdown:
            amount = d(entry.amount, 'expense')
            if amount < 0:
                raise InvalidInputError(f"Gasto negativo en '{self.name}': {entry.label}")
            total += amount
        return total


@dataclass(frozen=True)
class LineItem:
    """
    A quote line: catalog-linked when ``item_id`` is set, otherwise a
    custom/snapshot line carrying its own prices. A snapshot that stands in
    for a catalog line of the same quote names it in ``replaces_key``.
    """
    key: str
    quantity: Decimal = ONE
    item_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    unit_price: Decimal = ZERO
    cost: Decimal = ZERO
    expense: Decimal = ZERO
    billing_type: BillingType = BillingType.SERVICE
    profit_type: ProfitType = ProfitType.SERVICE
    original_item_id: Optional[int] = None
    replaces_key: Optional[str] = None
    promote_to_catalog: bool = False

    @property
    def is_custom(self) -> bool:
        return self.item_id is None


@dataclass(frozen=True)
class CommercialConditionSpec:
    id: int
    name: str
    discount_percentage: Decimal = ZERO
    advance_type: AdvanceType = AdvanceType.PERCENTAGE
    advance_value: Decimal = ZERO
    is_public: bool = True
    kind: str = 'standard'


@dataclass(frozen=True)
class NegotiatedTerms:
    """Per-quote ad-hoc terms ("pactada")."""
    name: str = 'Condición pactada'
    discount_percentage: Decimal = ZERO
    advance_type: AdvanceType = AdvanceType.PERCENTAGE
    advance_value: Decimal = ZERO
    source_condition_id: Optional[int] = None
    frozen_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConditionTerms:
    """Terms of the active condition, whatever its origin."""
    name: str
    discount_percentage: Decimal
    advance_type: AdvanceType
    advance_value: Decimal
    source: str
    condition_id: Optional[int] = None


@dataclass
class QuoteState:
    """In-memory quote the engine computes over."""
    id: Optional[int] = None
    name: str = ''
    description: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    courtesy_item_ids: Set[str] = field(default_factory=set)
    special_bonus: Decimal = ZERO
    closing_price_override: Optional[Decimal] = None
    selected_condition_id: Optional[int] = None
    negotiated_condition: Optional[NegotiatedTerms] = None
    visible_condition_ids: Optional[Set[int]] = None
    readded_condition_ids: Set[int] = field(default_factory=set)
    event_duration_hours: Optional[Decimal] = None
    visible_to_client: bool = False
    status: QuoteStatus = QuoteStatus.DRAFT

    def copy(self) -> 'QuoteState':
        return replace(
            self,
            line_items=list(self.line_items),
            courtesy_item_ids=set(self.courtesy_item_ids),
            visible_condition_ids=set(self.visible_condition_ids) if self.visible_condition_ids is not None else None,
            readded_condition_ids=set(self.readded_condition_ids),
        )


@dataclass(frozen=True)
class CatalogSnapshot:
    """Catalog items and pricing config loaded once per editing session."""
    config: PricingConfig
    items: Dict[int, CatalogItemSnapshot] = field(default_factory=dict)
    conditions: Dict[int, CommercialConditionSpec] = field(default_factory=dict)
