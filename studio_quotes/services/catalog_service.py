"""
Catalog service: pricing config, catalog items and commercial conditions.

The catalog snapshot (items + conditions + pricing config) is loaded once per
editing session and handed to the engine; nothing here re-reads the config
mid-calculation.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from studio_quotes.engine.aggregator import snapshot_from_catalog
from studio_quotes.engine.price_resolver import resolve_price
from studio_quotes.engine.types import (
    d,
    AdvanceType, BillingType, CatalogSnapshot, MarginConvention, PricingConfig, ProfitType,
)
from studio_quotes.exceptions import (
    QuoteEngineError, InvalidConfigError, InvalidInputError, NotFoundError,
)
from studio_quotes.models import (
    CatalogItem, CatalogItemExpense, CommercialCondition, Quote, QuoteLine, Studio, StudioPricingConfig,
)
from studio_quotes.services.mutation_guard import get_mutation_guard, quote_resource

logger = logging.getLogger(__name__)

PRICING_FIELDS = ('utility_service_ratio', 'utility_product_ratio', 'commission_ratio', 'markup_ratio')


def _enum_value(enum_cls, value, field_name: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise InvalidInputError(f"'{field_name}' inválido: {value!r} (valores: {allowed})")


def _non_negative(value, field_name: str) -> Decimal:
    amount = d(value, field_name)
    if amount < 0:
        raise InvalidInputError(f"'{field_name}' no puede ser negativo.", {'field': field_name})
    return amount


def get_studio(session: Session, studio_id: int) -> Studio:
    studio = session.query(Studio).filter(Studio.id == studio_id).first()
    if not studio:
        raise NotFoundError(f'Estudio {studio_id} no encontrado.')
    return studio


# -- Pricing config -----------------------------------------------------------

def get_pricing_config(session: Session, studio_id: int) -> PricingConfig:
    """Active pricing config of a studio, as the engine value object."""
    row = session.query(StudioPricingConfig).filter(StudioPricingConfig.studio_id == studio_id).first()
    if row is None:
        raise InvalidConfigError(f'El estudio {studio_id} no tiene configuración de precios.')
    return row.to_engine()


def save_pricing_config(
    session: Session,
    studio_id: int,
    data: Dict[str, Any],
    default_convention: str = MarginConvention.ON_PRICE.value,
) -> StudioPricingConfig:
    """Create or update the pricing config of a studio."""
    try:
        get_studio(session, studio_id)
        row = session.query(StudioPricingConfig).filter(StudioPricingConfig.studio_id == studio_id).first()
        if row is None:
            row = StudioPricingConfig(studio_id=studio_id, margin_convention=default_convention)
            session.add(row)

        for field in PRICING_FIELDS:
            if field in data:
                value = d(data[field], field)
                if value < 0:
                    raise InvalidConfigError(f"'{field}' no puede ser negativo.")
                setattr(row, field, value)
        if data.get('margin_convention'):
            row.margin_convention = _enum_value(MarginConvention, data['margin_convention'], 'margin_convention')

        # Reject margins the resolver could never price with
        config = row.to_engine()
        resolve_price(Decimal('1'), Decimal('0'), ProfitType.SERVICE, config)
        resolve_price(Decimal('1'), Decimal('0'), ProfitType.PRODUCT, config)

        session.commit()
        logger.info(f"[CATALOG] Configuración de precios guardada (studio={studio_id})")
        return row
    except QuoteEngineError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise


# -- Catalog snapshot ------------------------------------------------------------

def load_catalog_snapshot(session: Session, studio_id: int) -> CatalogSnapshot:
    """
    Catalog items, commercial conditions and pricing config of a studio.

    Archived items stay in the snapshot so existing quotes keep pricing; archived
    conditions stay resolvable but are never public.
    """
    config = get_pricing_config(session, studio_id)
    items = session.query(CatalogItem).filter(CatalogItem.studio_id == studio_id).all()
    conditions = session.query(CommercialCondition).filter(CommercialCondition.studio_id == studio_id).all()

    condition_specs = {}
    for condition in conditions:
        spec = condition.to_spec()
        if condition.status != 'active':
            spec = replace(spec, is_public=False)
        condition_specs[condition.id] = spec

    return CatalogSnapshot(
        config=config,
        items={item.id: item.to_snapshot() for item in items},
        conditions=condition_specs,
    )


def list_catalog_items(session: Session, studio_id: int, include_archived: bool = False) -> List[Dict[str, Any]]:
    """Catalog items with their computed sale price."""
    config = get_pricing_config(session, studio_id)
    query = session.query(CatalogItem).filter(CatalogItem.studio_id == studio_id)
    if not include_archived:
        query = query.filter(CatalogItem.status == 'active')

    result = []
    for item in query.order_by(CatalogItem.name).all():
        snapshot = item.to_snapshot()
        price = resolve_price(snapshot.cost, snapshot.expense, snapshot.profit_type, config)
        result.append({
            'id': item.id,
            'name': item.name,
            'description': item.description,
            'cost': snapshot.cost,
            'expense': snapshot.expense,
            'expense_breakdown': [{'label': e.label, 'amount': e.amount} for e in snapshot.expense_breakdown],
            'profit_type': item.profit_type,
            'billing_type': item.billing_type,
            'status': item.status,
            'margin_ratio': price.margin_ratio,
            'base_price': price.base_price,
            'markup_amount': price.markup_amount,
            'unit_price': price.unit_price,
        })
    return result


# -- Catalog items -----------------------------------------------------------------

def _apply_item_fields(item: CatalogItem, data: Dict[str, Any]) -> None:
    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise InvalidInputError('El nombre del ítem es obligatorio.', {'field': 'name'})
        item.name = name
    if 'description' in data:
        item.description = data.get('description')
    if 'cost' in data:
        item.cost = _non_negative(data['cost'], 'cost')
    if 'profit_type' in data:
        item.profit_type = _enum_value(ProfitType, data['profit_type'], 'profit_type')
    if 'billing_type' in data:
        item.billing_type = _enum_value(BillingType, data['billing_type'], 'billing_type')
    if 'status' in data:
        if data['status'] not in ('active', 'archived'):
            raise InvalidInputError(f"'status' inválido: {data['status']!r}")
        item.status = data['status']
    if 'expense_breakdown' in data:
        item.expenses = [
            CatalogItemExpense(
                label=(entry.get('label') or 'Gasto').strip(),
                amount=_non_negative(entry.get('amount'), 'expense'),
            )
            for entry in data.get('expense_breakdown') or []
        ]


def create_catalog_item(session: Session, studio_id: int, data: Dict[str, Any]) -> CatalogItem:
    """Create a catalog item."""
    try:
        get_studio(session, studio_id)
        item = CatalogItem(studio_id=studio_id, status='active')
        _apply_item_fields(item, dict({'name': ''}, **data))
        session.add(item)
        session.commit()
        logger.info(f"[CATALOG] Ítem creado: {item.name} (id={item.id}, studio={studio_id})")
        return item
    except QuoteEngineError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise


def get_catalog_item(session: Session, studio_id: int, item_id: int) -> CatalogItem:
    item = session.query(CatalogItem).filter(
        CatalogItem.id == item_id,
        CatalogItem.studio_id == studio_id
    ).first()
    if not item:
        raise NotFoundError(f'Ítem de catálogo {item_id} no encontrado.')
    return item


def update_catalog_item(session: Session, studio_id: int, item_id: int, data: Dict[str, Any]) -> CatalogItem:
    """
    Pure catalog mutation.

    Quote snapshots are never touched; a quote picks up the new values only
    through an explicit resync of its snapshot line.
    """
    try:
        item = get_catalog_item(session, studio_id, item_id)
        _apply_item_fields(item, data)
        session.commit()
        logger.info(f"[CATALOG] Ítem actualizado: {item.name} (id={item.id})")
        return item
    except QuoteEngineError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise


def promote_custom_item(session: Session, studio_id: int, quote_id: int, line_key: str, guard=None) -> CatalogItem:
    """
    Turn a custom quote line flagged for promotion into a catalog item.

    The line keeps its own prices and is back-linked to the new item through
    ``original_item_id``.
    """
    guard = guard or get_mutation_guard()
    with guard.hold(quote_resource(quote_id)):
        return _promote_custom_item(session, studio_id, quote_id, line_key)


def _promote_custom_item(session: Session, studio_id: int, quote_id: int, line_key: str) -> CatalogItem:
    try:
        line = session.query(QuoteLine).join(Quote).filter(
            Quote.id == quote_id,
            Quote.studio_id == studio_id,
            QuoteLine.line_key == line_key
        ).first()
        if not line:
            raise NotFoundError(f'Ítem {line_key} no encontrado en la cotización {quote_id}.')
        if not line.is_custom:
            raise InvalidInputError('Solo los ítems personalizados pueden agregarse al catálogo.')
        if not line.promote_to_catalog:
            raise InvalidInputError('El ítem no está marcado para agregarse al catálogo.')

        expense = d(line.expense, 'expense')
        item = CatalogItem(
            studio_id=studio_id,
            name=line.name or line_key,
            description=line.description,
            cost=_non_negative(line.cost, 'cost'),
            profit_type=line.profit_type or ProfitType.SERVICE.value,
            billing_type=line.billing_type or BillingType.SERVICE.value,
            status='active',
        )
        if expense:
            item.expenses = [CatalogItemExpense(label='Gasto', amount=_non_negative(expense, 'expense'))]
        session.add(item)
        session.flush()

        line.original_item_id = item.id
        line.promote_to_catalog = False
        session.commit()
        logger.info(f"[CATALOG] Ítem personalizado '{item.name}' agregado al catálogo (id={item.id}, quote={quote_id})")
        return item
    except QuoteEngineError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise


# -- Commercial conditions -----------------------------------------------------

def create_condition(session: Session, studio_id: int, data: Dict[str, Any]) -> CommercialCondition:
    """Create a reusable commercial condition."""
    try:
        get_studio(session, studio_id)
        name = (data.get('name') or '').strip()
        if not name:
            raise InvalidInputError('El nombre de la condición es obligatorio.', {'field': 'name'})
        discount = _non_negative(data.get('discount_percentage'), 'discount_percentage')
        if discount > 100:
            raise InvalidInputError("'discount_percentage' debe estar entre 0 y 100.")
        kind = data.get('kind') or 'standard'
        if kind not in ('standard', 'special'):
            raise InvalidInputError(f"'kind' inválido: {kind!r}")

        condition = CommercialCondition(
            studio_id=studio_id,
            name=name,
            discount_percentage=discount,
            advance_type=_enum_value(AdvanceType, data.get('advance_type') or AdvanceType.PERCENTAGE.value, 'advance_type'),
            advance_value=_non_negative(data.get('advance_value'), 'advance_value'),
            is_public=bool(data.get('is_public', True)),
            kind=kind,
        )
        session.add(condition)
        session.commit()
        logger.info(f"[CATALOG] Condición creada: {condition.name} (id={condition.id})")
        return condition
    except QuoteEngineError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise


def list_conditions(session: Session, studio_id: int) -> List[CommercialCondition]:
    return session.query(CommercialCondition).filter(
        CommercialCondition.studio_id == studio_id,
        CommercialCondition.status == 'active'
    ).order_by(CommercialCondition.name).all()


def catalog_line_snapshot(catalog: CatalogSnapshot, line, item_id: int):
    """Engine line rewritten from the catalog item ``item_id``."""
    item = catalog.items.get(item_id)
    if item is None:
        raise NotFoundError(f'Ítem de catálogo {item_id} no encontrado.')
    return snapshot_from_catalog(line, item, catalog.config)
