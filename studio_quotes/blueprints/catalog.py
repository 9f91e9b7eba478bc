"""Catalog blueprint - pricing config, catalog items and commercial conditions."""
from flask import Blueprint, request, jsonify, current_app
from studio_quotes.database import get_session
from studio_quotes.exceptions import InvalidInputError
from studio_quotes.services.catalog_service import (
    create_catalog_item,
    create_condition,
    get_pricing_config,
    list_catalog_items,
    list_conditions,
    promote_custom_item,
    save_pricing_config,
    update_catalog_item,
)
import logging

logger = logging.getLogger(__name__)

catalog_bp = Blueprint('catalog', __name__, url_prefix='/studios/<int:studio_id>/catalog')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError('El cuerpo de la solicitud debe ser un objeto JSON.')
    return data


def _config_to_dict(config):
    return {
        'utility_service_ratio': config.utility_service_ratio,
        'utility_product_ratio': config.utility_product_ratio,
        'commission_ratio': config.commission_ratio,
        'markup_ratio': config.markup_ratio,
        'margin_convention': config.margin_convention.value,
    }


def _item_to_dict(item):
    return {
        'id': item.id,
        'name': item.name,
        'description': item.description,
        'cost': item.cost,
        'profit_type': item.profit_type,
        'billing_type': item.billing_type,
        'status': item.status,
        'expense_breakdown': [{'label': e.label, 'amount': e.amount} for e in item.expenses],
    }


def _condition_to_dict(condition):
    return {
        'id': condition.id,
        'name': condition.name,
        'discount_percentage': condition.discount_percentage,
        'advance_type': condition.advance_type,
        'advance_value': condition.advance_value,
        'is_public': condition.is_public,
        'kind': condition.kind,
        'status': condition.status,
    }


@catalog_bp.route('/pricing-config', methods=['GET'])
def pricing_config(studio_id):
    db_session = get_session()
    return jsonify({'status': 'success', 'data': _config_to_dict(get_pricing_config(db_session, studio_id))})


@catalog_bp.route('/pricing-config', methods=['PUT'])
def update_pricing_config(studio_id):
    """Create or update the studio's margins, commission and markup."""
    db_session = get_session()
    row = save_pricing_config(
        db_session, studio_id, _json_body(),
        default_convention=current_app.config.get('DEFAULT_MARGIN_CONVENTION', 'on_price')
    )
    return jsonify({'status': 'success', 'data': _config_to_dict(row.to_engine())})


@catalog_bp.route('/items', methods=['GET'])
def list_items(studio_id):
    """Catalog items with their computed sale price."""
    db_session = get_session()
    include_archived = request.args.get('include_archived', '').lower() in ('1', 'true', 'yes')
    return jsonify({'status': 'success', 'data': list_catalog_items(db_session, studio_id, include_archived)})


@catalog_bp.route('/items', methods=['POST'])
def create_item(studio_id):
    db_session = get_session()
    item = create_catalog_item(db_session, studio_id, _json_body())
    return jsonify({'status': 'success', 'data': _item_to_dict(item)}), 201


@catalog_bp.route('/items/<int:item_id>', methods=['PUT'])
def update_item(studio_id, item_id):
    """Edit a catalog item. Existing quotes keep their snapshots."""
    db_session = get_session()
    item = update_catalog_item(db_session, studio_id, item_id, _json_body())
    return jsonify({'status': 'success', 'data': _item_to_dict(item)})


@catalog_bp.route('/conditions', methods=['GET'])
def conditions(studio_id):
    db_session = get_session()
    return jsonify({
        'status': 'success',
        'data': [_condition_to_dict(c) for c in list_conditions(db_session, studio_id)],
    })


@catalog_bp.route('/conditions', methods=['POST'])
def create_commercial_condition(studio_id):
    db_session = get_session()
    condition = create_condition(db_session, studio_id, _json_body())
    return jsonify({'status': 'success', 'data': _condition_to_dict(condition)}), 201


@catalog_bp.route('/promote', methods=['POST'])
def promote(studio_id):
    """Add a custom quote line flagged for promotion to the catalog."""
    db_session = get_session()
    data = _json_body()
    line_key = (data.get('line_key') or '').strip()
    try:
        quote_id = int(data.get('quote_id'))
    except (TypeError, ValueError):
        raise InvalidInputError("'quote_id' es obligatorio.")
    if not line_key:
        raise InvalidInputError("'line_key' es obligatorio.")

    item = promote_custom_item(db_session, studio_id, quote_id, line_key)
    logger.info(f"[CATALOG] Línea {line_key} de la cotización {quote_id} promovida (item={item.id})")
    return jsonify({'status': 'success', 'data': _item_to_dict(item)}), 201
