"""
Quote service: persistence, lifecycle and catalog resync of quotes.

Every mutating call holds the in-flight mutation guard of its quote (or of
the promise, when the quote does not exist yet) and follows the
query / mutate / commit protocol, rolling back and re-raising on failure.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from studio_quotes.engine.calculator import Breakdown, compute_breakdown
from studio_quotes.engine.conditions import resolve_visible_condition_ids
from studio_quotes.engine.editor import QuoteEditor
from studio_quotes.engine.lifecycle import check_transition, freeze_terms, unfreeze_selection
from studio_quotes.engine.profitability import ConditionScenario
from studio_quotes.engine.types import (
    ZERO, d,
    AdvanceType, BillingType, CatalogSnapshot, LineItem, NegotiatedTerms, ProfitType, QuoteState, QuoteStatus,
)
from studio_quotes.exceptions import (
    QuoteEngineError, DuplicateNameError, ImmutableQuoteError, InvalidInputError, NotFoundError,
)
from studio_quotes.models import NegotiatedCondition, Quote, QuoteLine
from studio_quotes.services.catalog_service import catalog_line_snapshot, load_catalog_snapshot
from studio_quotes.services.mutation_guard import get_mutation_guard, promise_resource, quote_resource

logger = logging.getLogger(__name__)

COPY_SUFFIX = ' (copia)'


# -- Payload -------------------------------------------------------------------

def _new_key() -> str:
    return uuid.uuid4().hex[:12]


def _optional_decimal(value, field_name: str) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    return d(value, field_name)


def _enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(f"'{field_name}' inválido: {value!r}")


def _int_or_none(value, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"'{field_name}' debe ser un id numérico: {value!r}")


def _id_set(values, field_name: str) -> frozenset:
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise InvalidInputError(f"'{field_name}' debe ser una lista de ids.")
    return frozenset(_int_or_none(value, field_name) for value in values if value not in (None, ''))


def _catalog_line_from_dict(data: Dict[str, Any]) -> LineItem:
    item_id = _int_or_none(data.get('item_id'), 'item_id')
    if item_id is None:
        raise InvalidInputError("Los ítems de catálogo requieren 'item_id'.")
    return LineItem(
        key=str(data.get('key') or _new_key()),
        quantity=d(data.get('quantity', 1), 'quantity'),
        item_id=item_id,
    )


def _custom_line_from_dict(data: Dict[str, Any]) -> LineItem:
    return LineItem(
        key=str(data.get('key') or _new_key()),
        quantity=d(data.get('quantity', 1), 'quantity'),
        name=(data.get('name') or '').strip() or None,
        description=data.get('description'),
        unit_price=d(data.get('unit_price'), 'unit_price'),
        cost=d(data.get('cost'), 'cost'),
        expense=d(data.get('expense'), 'expense'),
        billing_type=_enum(BillingType, data.get('billing_type') or BillingType.SERVICE.value, 'billing_type'),
        profit_type=_enum(ProfitType, data.get('profit_type') or ProfitType.SERVICE.value, 'profit_type'),
        original_item_id=_int_or_none(data.get('original_item_id'), 'original_item_id'),
        replaces_key=str(data['replaces_key']) if data.get('replaces_key') else None,
        promote_to_catalog=bool(data.get('promote_to_catalog', False)),
    )


def negotiated_from_dict(data: Optional[Dict[str, Any]]) -> Optional[NegotiatedTerms]:
    if not data:
        return None
    return NegotiatedTerms(
        name=(data.get('name') or '').strip() or 'Condición pactada',
        discount_percentage=d(data.get('discount_percentage'), 'discount_percentage'),
        advance_type=_enum(AdvanceType, data.get('advance_type') or AdvanceType.PERCENTAGE.value, 'advance_type'),
        advance_value=d(data.get('advance_value'), 'advance_value'),
    )


@dataclass(frozen=True)
class QuotePayload:
    """
    Everything a caller sends to create or update a quote.

    Computed amounts are never part of the payload; a rename-and-retry only
    needs ``renamed()``.
    """
    name: str
    description: Optional[str] = None
    line_items: Tuple[LineItem, ...] = ()
    custom_items: Tuple[LineItem, ...] = ()
    courtesy_item_ids: frozenset = frozenset()
    special_bonus: Decimal = ZERO
    closing_price_override: Optional[Decimal] = None
    condition_id: Optional[int] = None
    negotiated_condition: Optional[NegotiatedTerms] = None
    visible_condition_ids: Optional[frozenset] = None
    readded_condition_ids: frozenset = frozenset()
    event_duration_hours: Optional[Decimal] = None
    visible_to_client: bool = False
    line_order: Tuple[str, ...] = ()

    @property
    def all_lines(self) -> List[LineItem]:
        """Catalog and custom lines, in ``line_order`` when given."""
        lines = list(self.line_items) + list(self.custom_items)
        if not self.line_order:
            return lines
        rank = {key: index for index, key in enumerate(self.line_order)}
        return sorted(lines, key=lambda line: rank.get(line.key, len(rank)))

    def renamed(self, name: str) -> 'QuotePayload':
        return replace(self, name=name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuotePayload':
        """
        Parse a JSON body.

        Raises:
            InvalidInputError: a value has the wrong type (not a validation error).
        """
        visible = data.get('visible_condition_ids')
        return cls(
            name=(data.get('name') or '').strip(),
            description=data.get('description'),
            line_items=tuple(_catalog_line_from_dict(line) for line in data.get('line_items') or []),
            custom_items=tuple(_custom_line_from_dict(line) for line in data.get('custom_items') or []),
            courtesy_item_ids=frozenset(str(key) for key in data.get('courtesy_item_ids') or []),
            special_bonus=d(data.get('special_bonus'), 'special_bonus'),
            closing_price_override=_optional_decimal(data.get('closing_price_override'), 'closing_price_override'),
            condition_id=_int_or_none(data.get('condition_id'), 'condition_id'),
            negotiated_condition=negotiated_from_dict(data.get('negotiated_condition')),
            visible_condition_ids=_id_set(visible, 'visible_condition_ids') if visible is not None else None,
            readded_condition_ids=_id_set(data.get('readded_condition_ids') or [], 'readded_condition_ids'),
            event_duration_hours=_optional_decimal(data.get('event_duration_hours'), 'event_duration_hours'),
            visible_to_client=bool(data.get('visible_to_client', False)),
            line_order=tuple(str(key) for key in data.get('line_order') or []),
        )

    @classmethod
    def from_state(cls, state: QuoteState) -> 'QuotePayload':
        return cls(
            name=state.name,
            description=state.description,
            line_items=tuple(line for line in state.line_items if not line.is_custom),
            custom_items=tuple(line for line in state.line_items if line.is_custom),
            courtesy_item_ids=frozenset(state.courtesy_item_ids),
            special_bonus=state.special_bonus,
            closing_price_override=state.closing_price_override,
            condition_id=state.selected_condition_id,
            negotiated_condition=state.negotiated_condition,
            visible_condition_ids=frozenset(state.visible_condition_ids)
            if state.visible_condition_ids is not None else None,
            readded_condition_ids=frozenset(state.readded_condition_ids),
            event_duration_hours=state.event_duration_hours,
            visible_to_client=state.visible_to_client,
            line_order=tuple(line.key for line in state.line_items),
        )

    def to_state(self, status=QuoteStatus.DRAFT, quote_id: Optional[int] = None) -> QuoteState:
        return QuoteState(
            id=quote_id,
            name=self.name,
            description=self.description,
            line_items=self.all_lines,
            courtesy_item_ids=set(self.courtesy_item_ids),
            special_bonus=self.special_bonus,
            closing_price_override=self.closing_price_override,
            selected_condition_id=self.condition_id,
            negotiated_condition=self.negotiated_condition,
            visible_condition_ids=set(self.visible_condition_ids) if self.visible_condition_ids is not None else None,
            readded_condition_ids=set(self.readded_condition_ids),
            event_duration_hours=self.event_duration_hours,
            visible_to_client=self.visible_to_client,
            status=QuoteStatus(status),
        )


# -- Local validation ------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    errors: Dict[str, str] = field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def invalid(cls, validation: ValidationResult) -> 'SaveResult':
        return cls(ok=False, errors=dict(validation.errors))


def validate_quote_payload(payload: QuotePayload) -> ValidationResult:
    """
    Blocking, field-scoped checks run before any save attempt.

    Never raises; problems come back in ``errors`` keyed by field.
    """
    errors = {}
    if not (payload.name or '').strip():
        errors['name'] = 'El nombre de la cotización es obligatorio.'

    lines = payload.all_lines
    if not lines:
        errors['line_items'] = 'La cotización debe tener al menos un ítem.'
    else:
        keys = [line.key for line in lines]
        catalog_keys = {line.key for line in payload.line_items}
        if len(set(keys)) != len(keys):
            errors['line_items'] = 'Hay ítems con claves repetidas.'
        elif any(line.quantity < 0 for line in lines):
            errors['line_items'] = 'Las cantidades no pueden ser negativas.'
        elif any(min(line.unit_price, line.cost, line.expense) < 0 for line in payload.custom_items):
            errors['custom_items'] = 'Los ítems personalizados no pueden tener montos negativos.'
        elif any(not line.name for line in payload.custom_items):
            errors['custom_items'] = 'Los ítems personalizados requieren nombre.'
        elif any(line.replaces_key and line.replaces_key not in catalog_keys for line in payload.custom_items):
            errors['custom_items'] = 'Un ítem personalizado reemplaza un ítem de catálogo que no está en la cotización.'

        if not payload.courtesy_item_ids <= set(keys):
            errors['courtesy_item_ids'] = 'Hay cortesías sobre ítems que no están en la cotización.'

    if payload.event_duration_hours is not None and payload.event_duration_hours <= 0:
        errors['event_duration_hours'] = 'La duración del evento debe ser mayor a 0.'
    if payload.special_bonus < 0:
        errors['special_bonus'] = 'El bono especial no puede ser negativo.'
    if payload.closing_price_override is not None and payload.closing_price_override < 0:
        errors['closing_price_override'] = 'El precio de cierre no puede ser negativo.'
    if payload.condition_id is not None and payload.negotiated_condition is not None:
        errors['condition'] = 'Elegí una condición estándar o una pactada, no ambas.'
    elif payload.negotiated_condition is not None:
        pct = payload.negotiated_condition.discount_percentage
        if pct < 0 or pct > 100:
            errors['negotiated_condition'] = 'El descuento pactado debe estar entre 0 y 100.'
        elif payload.negotiated_condition.advance_value < 0:
            errors['negotiated_condition'] = 'El anticipo pactado no puede ser negativo.'

    return ValidationResult(ok=not errors, errors=errors)


# -- Model <-> engine --------------------------------------------------------------

def build_quote_state(quote: Quote) -> QuoteState:
    """Engine state of a persisted quote."""
    visible = quote.visible_condition_ids
    return QuoteState(
        id=quote.id,
        name=quote.name,
        description=quote.description,
        line_items=[line.to_line_item() for line in quote.lines],
        courtesy_item_ids=quote.courtesy_keys,
        special_bonus=d(quote.special_bonus),
        closing_price_override=d(quote.closing_price_override) if quote.closing_price_override is not None else None,
        selected_condition_id=quote.selected_condition_id,
        negotiated_condition=quote.negotiated_condition.to_terms() if quote.negotiated_condition else None,
        visible_condition_ids=set(visible) if visible is not None else None,
        readded_condition_ids=set(quote.readded_condition_ids or ()),
        event_duration_hours=d(quote.event_duration_hours) if quote.event_duration_hours is not None else None,
        visible_to_client=quote.visible_to_client,
        status=QuoteStatus(quote.status),
    )


def _write_lines(quote: Quote, lines: Iterable[LineItem], courtesy_keys: Iterable[str]) -> None:
    """Update rows in place by line key so the (quote_id, line_key) constraint never trips."""
    courtesy = set(courtesy_keys)
    existing = {row.line_key: row for row in quote.lines}
    rows = []
    for position, line in enumerate(lines):
        row = existing.get(line.key) or QuoteLine()
        row.apply_line_item(line)
        row.position = position
        row.is_courtesy = line.key in courtesy
        rows.append(row)
    quote.lines = rows


def _write_negotiated(quote: Quote, terms: Optional[NegotiatedTerms]) -> None:
    if terms is None:
        quote.negotiated_condition = None
        return
    row = quote.negotiated_condition
    if row is None:
        quote.negotiated_condition = NegotiatedCondition.from_terms(terms)
        return
    row.name = terms.name
    row.discount_percentage = terms.discount_percentage
    row.advance_type = AdvanceType(terms.advance_type).value
    row.advance_value = terms.advance_value
    row.source_condition_id = terms.source_condition_id
    row.frozen_at = terms.frozen_at


def _resolved_visibility(payload: QuotePayload, catalog: CatalogSnapshot, breakdown: Breakdown) -> Optional[List[int]]:
    """Offered conditions after hiding discounted ones while courtesy or bonus is active."""
    adjustment_active = breakdown.courtesy_amount > 0 or breakdown.bonus > 0
    visible = resolve_visible_condition_ids(
        catalog.conditions, payload.visible_condition_ids, payload.readded_condition_ids, adjustment_active,
    )
    return sorted(visible) if visible is not None else None


def _apply_payload(quote: Quote, payload: QuotePayload, visible_condition_ids: Optional[List[int]]) -> None:
    quote.name = payload.name.strip()
    quote.description = payload.description
    _write_lines(quote, payload.all_lines, payload.courtesy_item_ids)
    quote.special_bonus = payload.special_bonus
    quote.closing_price_override = payload.closing_price_override
    quote.selected_condition_id = payload.condition_id
    _write_negotiated(quote, payload.negotiated_condition)
    quote.visible_condition_ids = visible_condition_ids
    quote.readded_condition_ids = sorted(payload.readded_condition_ids)
    quote.event_duration_hours = payload.event_duration_hours
    quote.visible_to_client = payload.visible_to_client


def _terms_key(terms: Optional[NegotiatedTerms]):
    if terms is None:
        return None
    return (terms.name, d(terms.discount_percentage), AdvanceType(terms.advance_type), d(terms.advance_value))


def _commercial_changes(state: QuoteState, payload: QuotePayload) -> List[str]:
    """Commercial fields that differ between a persisted quote and a payload."""
    changed = []
    if state.closing_price_override != payload.closing_price_override:
        changed.append('closing_price_override')
    if (state.selected_condition_id != payload.condition_id
            or _terms_key(state.negotiated_condition) != _terms_key(payload.negotiated_condition)):
        changed.append('condition')
    if state.special_bonus != payload.special_bonus:
        changed.append('special_bonus')
    if set(state.courtesy_item_ids) != set(payload.courtesy_item_ids):
        changed.append('courtesy_item_ids')
    if {line.key: line for line in state.line_items} != {line.key: line for line in payload.all_lines}:
        changed.append('line_items')
    if state.event_duration_hours != payload.event_duration_hours:
        changed.append('event_duration_hours')
    return changed


# -- Queries -------------------------------------------------------------------------

def get_quote(session: Session, studio_id: int, quote_id: int) -> Quote:
    quote = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.studio_id == studio_id
    ).first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')
    return quote


def list_quotes(session: Session, studio_id: int, promise_id: Optional[int] = None, status: Optional[str] = None) -> List[Quote]:
    query = session.query(Quote).filter(Quote.studio_id == studio_id)
    if promise_id is not None:
        query = query.filter(Quote.promise_id == promise_id)
    if status:
        query = query.filter(Quote.status == status)
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).all()


def _ensure_unique_name(session: Session, promise_id: int, name: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(Quote.id).filter(Quote.promise_id == promise_id, Quote.name == name)
    if exclude_id is not None:
        query = query.filter(Quote.id != exclude_id)
    if query.first() is not None:
        raise DuplicateNameError(name)


def _name_taken(session: Session, promise_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    try:
        _ensure_unique_name(session, promise_id, name, exclude_id)
    except DuplicateNameError:
        return True
    return False


def open_editor(session: Session, studio_id: int, quote_id: int, signal_seconds: int = 3) -> QuoteEditor:
    """Editing session over a persisted quote, with the catalog loaded once."""
    quote = get_quote(session, studio_id, quote_id)
    catalog = load_catalog_snapshot(session, studio_id)
    return QuoteEditor(build_quote_state(quote), catalog, signal_seconds=signal_seconds)


def get_breakdown(session: Session, studio_id: int, quote_id: int) -> Breakdown:
    quote = get_quote(session, studio_id, quote_id)
    return compute_breakdown(build_quote_state(quote), load_catalog_snapshot(session, studio_id))


def what_if(session: Session, studio_id: int, quote_id: int) -> List[ConditionScenario]:
    """Commission and utility under every visible condition, without selecting one."""
    return open_editor(session, studio_id, quote_id).what_if()


def quote_to_dict(quote: Quote) -> Dict[str, Any]:
    negotiated = quote.negotiated_condition
    return {
        'id': quote.id,
        'studio_id': quote.studio_id,
        'promise_id': quote.promise_id,
        'name': quote.name,
        'description': quote.description,
        'status': quote.status,
        'line_items': [
            {'key': line.line_key, 'item_id': line.item_id, 'quantity': line.quantity}
            for line in quote.lines if not line.is_custom
        ],
        'custom_items': [
            {
                'key': line.line_key,
                'name': line.name,
                'description': line.description,
                'quantity': line.quantity,
                'unit_price': line.unit_price,
                'cost': line.cost,
                'expense': line.expense,
                'billing_type': line.billing_type,
                'profit_type': line.profit_type,
                'original_item_id': line.original_item_id,
                'replaces_key': line.replaces_line_key,
                'promote_to_catalog': line.promote_to_catalog,
            }
            for line in quote.lines if line.is_custom
        ],
        'line_order': [line.line_key for line in quote.lines],
        'courtesy_item_ids': sorted(quote.courtesy_keys),
        'special_bonus': quote.special_bonus,
        'closing_price_override': quote.closing_price_override,
        'condition_id': quote.selected_condition_id,
        'negotiated_condition': {
            'name': negotiated.name,
            'discount_percentage': negotiated.discount_percentage,
            'advance_type': negotiated.advance_type,
            'advance_value': negotiated.advance_value,
            'source_condition_id': negotiated.source_condition_id,
            'frozen_at': negotiated.frozen_at.isoformat() if negotiated.frozen_at else None,
        } if negotiated else None,
        'visible_condition_ids': quote.visible_condition_ids,
        'readded_condition_ids': quote.readded_condition_ids or [],
        'event_duration_hours': quote.event_duration_hours,
        'visible_to_client': quote.visible_to_client,
    }


# -- Mutations ---------------------------------------------------------------------

def _check_computable(payload: QuotePayload, catalog: CatalogSnapshot, status=QuoteStatus.DRAFT) -> Breakdown:
    """Unknown catalog items or conditions surface here, before anything is written."""
    return compute_breakdown(payload.to_state(status), catalog)


def create_quote(payload: QuotePayload, session: Session, studio_id: int, promise_id: int, guard=None) -> SaveResult:
    """
    Create a draft quote for a promise.

    Returns ``SaveResult(ok=False, errors)`` on local validation failure and
    ``data={id, status, promise_id}`` on success.

    Raises:
        DuplicateNameError: another quote of the promise uses the name.
    """
    validation = validate_quote_payload(payload)
    if not validation.ok:
        return SaveResult.invalid(validation)

    guard = guard or get_mutation_guard()
    with guard.hold(promise_resource(promise_id)):
        try:
            _ensure_unique_name(session, promise_id, payload.name.strip())
            catalog = load_catalog_snapshot(session, studio_id)
            breakdown = _check_computable(payload, catalog)

            quote = Quote(studio_id=studio_id, promise_id=promise_id, status=QuoteStatus.DRAFT.value)
            _apply_payload(quote, payload, _resolved_visibility(payload, catalog, breakdown))
            session.add(quote)
            session.commit()

            logger.info(f"[QUOTE] Cotización creada: '{quote.name}' (id={quote.id}, promise={promise_id})")
            return SaveResult(ok=True, data={'id': quote.id, 'status': quote.status, 'promise_id': quote.promise_id})
        except IntegrityError:
            session.rollback()
            if _name_taken(session, promise_id, payload.name.strip()):
                raise DuplicateNameError(payload.name.strip())
            raise
        except QuoteEngineError:
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise


def update_quote(quote_id: int, payload: QuotePayload, session: Session, studio_id: int, guard=None) -> SaveResult:
    """
    Replace the editable fields of a quote.

    Once authorized, any change to a commercial field is refused with
    ``ImmutableQuoteError`` and the quote is left untouched. While in closing
    the frozen condition cannot change.
    """
    validation = validate_quote_payload(payload)
    if not validation.ok:
        return SaveResult.invalid(validation)

    guard = guard or get_mutation_guard()
    with guard.hold(quote_resource(quote_id)):
        try:
            quote = get_quote(session, studio_id, quote_id)
            status = QuoteStatus(quote.status)
            current = build_quote_state(quote)

            changes = _commercial_changes(current, payload)
            if status == QuoteStatus.AUTORIZADA and changes:
                raise ImmutableQuoteError(changes[0])
            if status == QuoteStatus.EN_CIERRE and 'condition' in changes:
                raise ImmutableQuoteError('condition', QuoteStatus.EN_CIERRE.value)
            if 'condition' not in changes:
                # Keep provenance and freeze date of the stored terms
                payload = replace(
                    payload,
                    condition_id=current.selected_condition_id,
                    negotiated_condition=current.negotiated_condition,
                )

            _ensure_unique_name(session, quote.promise_id, payload.name.strip(), exclude_id=quote.id)
            catalog = load_catalog_snapshot(session, studio_id)
            breakdown = _check_computable(payload, catalog, status)

            _apply_payload(quote, payload, _resolved_visibility(payload, catalog, breakdown))
            session.commit()

            logger.info(f"[QUOTE] Cotización actualizada: '{quote.name}' (id={quote.id})")
            return SaveResult(ok=True, data={'id': quote.id, 'status': quote.status})
        except IntegrityError:
            session.rollback()
            promise_id = session.query(Quote.promise_id).filter(Quote.id == quote_id).scalar()
            if promise_id is not None and _name_taken(session, promise_id, payload.name.strip(), quote_id):
                raise DuplicateNameError(payload.name.strip())
            raise
        except QuoteEngineError:
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise


def duplicate_quote(quote_id: int, session: Session, studio_id: int, name: Optional[str] = None, guard=None) -> SaveResult:
    """
    Copy a quote into a new draft of the same promise.

    Lines, courtesy flags, bonus, closing price, conditions, visibility and
    duration are copied. A negotiated condition is copied unfrozen.
    """
    guard = guard or get_mutation_guard()
    with guard.hold(quote_resource(quote_id)):
        try:
            source = get_quote(session, studio_id, quote_id)
            state = build_quote_state(source)
            new_name = (name or '').strip() or f"{source.name}{COPY_SUFFIX}"
            negotiated = state.negotiated_condition
            if negotiated is not None:
                negotiated = replace(negotiated, frozen_at=None)

            payload = replace(
                QuotePayload.from_state(state),
                name=new_name,
                negotiated_condition=negotiated,
                visible_to_client=False,
            )
            _ensure_unique_name(session, source.promise_id, new_name)
            catalog = load_catalog_snapshot(session, studio_id)
            breakdown = _check_computable(payload, catalog)

            copy = Quote(studio_id=studio_id, promise_id=source.promise_id, status=QuoteStatus.DRAFT.value)
            _apply_payload(copy, payload, _resolved_visibility(payload, catalog, breakdown))
            session.add(copy)
            session.commit()

            logger.info(f"[QUOTE] Cotización {quote_id} duplicada como '{copy.name}' (id={copy.id})")
            return SaveResult(ok=True, data={'id': copy.id, 'status': copy.status, 'promise_id': copy.promise_id})
        except IntegrityError:
            session.rollback()
            raise DuplicateNameError(new_name)
        except QuoteEngineError:
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise


def _freeze_condition(session: Session, quote: Quote, breakdown: Breakdown, now: datetime) -> NegotiatedCondition:
    """Snapshot the active terms into the quote's negotiated condition row."""
    frozen = freeze_terms(breakdown.terms, now)
    quote.selected_condition_id = None
    _write_negotiated(quote, frozen)
    session.flush()
    return quote.negotiated_condition


def _abort_closing(quote: Quote, session: Session) -> None:
    """Delete the frozen snapshot and restore the selection it was frozen from."""
    current = quote.negotiated_condition.to_terms() if quote.negotiated_condition else None
    selection = unfreeze_selection(current)
    quote.selected_condition_id = selection.selected_condition_id
    _write_negotiated(quote, selection.negotiated)
    session.flush()


def _apply_status(quote: Quote, target: QuoteStatus) -> None:
    quote.status = target.value


def _discard_partial_snapshot(session: Session, quote_id: int, kept_id: Optional[int]) -> int:
    """Delete any negotiated row of ``quote_id`` other than ``kept_id`` left behind by a failed closing."""
    query = session.query(NegotiatedCondition).filter(NegotiatedCondition.quote_id == quote_id)
    if kept_id is not None:
        query = query.filter(NegotiatedCondition.id != kept_id)
    orphans = query.all()
    for orphan in orphans:
        session.delete(orphan)
    if orphans:
        session.commit()
        logger.warning(f"[CIERRE] {len(orphans)} condición(es) congelada(s) huérfana(s) eliminada(s) (quote={quote_id})")
    return len(orphans)


def transition_quote(quote_id: int, target, session: Session, studio_id: int, guard=None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Move a quote through its lifecycle.

    Entering ``en_cierre`` freezes the active terms into a negotiated
    condition; aborting a closing deletes that snapshot. A failed attempt
    leaves the quote exactly as it was, snapshot included.

    Raises:
        InvalidTransitionError: illegal transition.
        MissingConditionError: closing without a standard or negotiated condition.
    """
    target = QuoteStatus(target)
    guard = guard or get_mutation_guard()
    with guard.hold(quote_resource(quote_id)):
        quote = get_quote(session, studio_id, quote_id)
        current = QuoteStatus(quote.status)
        previous_snapshot_id = quote.negotiated_condition.id if quote.negotiated_condition else None
        has_condition = quote.selected_condition_id is not None or quote.negotiated_condition is not None
        check_transition(current, target, has_condition)

        try:
            if target == QuoteStatus.EN_CIERRE:
                breakdown = compute_breakdown(build_quote_state(quote), load_catalog_snapshot(session, studio_id))
                _freeze_condition(session, quote, breakdown, now or datetime.utcnow())
            elif current == QuoteStatus.EN_CIERRE and target == QuoteStatus.DRAFT:
                _abort_closing(quote, session)

            _apply_status(quote, target)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"[CIERRE] Transición {current.value} -> {target.value} fallida (quote={quote_id}): {e}")
            if target == QuoteStatus.EN_CIERRE:
                _discard_partial_snapshot(session, quote_id, previous_snapshot_id)
            raise

        logger.info(f"[CIERRE] Cotización {quote_id}: {current.value} -> {target.value}")
        return {'id': quote.id, 'status': quote.status, 'previous_status': current.value}


def resync_snapshot_from_catalog(quote_id: int, line_key: str, session: Session, studio_id: int, guard=None) -> Breakdown:
    """
    Rewrite one custom/snapshot line from the current catalog item.

    Invoked only when the operator opts into "guardar y sincronizar"; catalog
    edits never reach quotes on their own.
    """
    guard = guard or get_mutation_guard()
    with guard.hold(quote_resource(quote_id)):
        try:
            quote = get_quote(session, studio_id, quote_id)
            if quote.is_authorized:
                raise ImmutableQuoteError('line_items')

            row = next((line for line in quote.lines if line.line_key == line_key), None)
            if row is None:
                raise NotFoundError(f'Ítem {line_key} no encontrado en la cotización {quote_id}.')
            item_id = row.original_item_id if row.is_custom else row.item_id
            if item_id is None:
                raise InvalidInputError('El ítem no está vinculado a ningún ítem del catálogo.')

            catalog = load_catalog_snapshot(session, studio_id)
            row.apply_line_item(catalog_line_snapshot(catalog, row.to_line_item(), item_id))
            session.flush()

            breakdown = compute_breakdown(build_quote_state(quote), catalog)
            session.commit()
            logger.info(f"[QUOTE] Ítem {line_key} sincronizado con el catálogo (quote={quote_id}, item={item_id})")
            return breakdown
        except QuoteEngineError:
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise
