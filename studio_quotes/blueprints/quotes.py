"""Quotes blueprint - JSON API over quote persistence, breakdown and lifecycle."""
from flask import Blueprint, request, jsonify, current_app
from studio_quotes.database import get_session
from studio_quotes.engine.types import QuoteStatus, round_money
from studio_quotes.exceptions import InvalidInputError
from studio_quotes.blueprints.metrics import record_transition
from studio_quotes.services.quote_service import (
    QuotePayload,
    create_quote,
    duplicate_quote,
    get_breakdown,
    get_quote,
    list_quotes,
    open_editor,
    quote_to_dict,
    resync_snapshot_from_catalog,
    transition_quote,
    update_quote,
    what_if as compute_what_if,
)

quotes_bp = Blueprint('quotes', __name__, url_prefix='/studios/<int:studio_id>/quotes')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError('El cuerpo de la solicitud debe ser un objeto JSON.')
    return data


def _save_response(result, success_status=200):
    if not result.ok:
        return jsonify({'status': 'error', 'kind': 'Validation', 'errors': result.errors}), 422
    return jsonify({'status': 'success', 'data': result.data}), success_status


def _scenario_to_dict(scenario):
    return {
        'condition_id': scenario.condition_id,
        'name': scenario.name,
        'discount_amount': round_money(scenario.discount_amount),
        'price': round_money(scenario.price),
        'commission': round_money(scenario.commission),
        'net_utility': round_money(scenario.net_utility),
        'margin_pct': round_money(scenario.margin_pct),
        'advance': round_money(scenario.advance),
        'deferred': round_money(scenario.deferred),
    }


@quotes_bp.route('', methods=['GET'])
def list_studio_quotes(studio_id):
    """List quotes of a studio, optionally filtered by promise and status."""
    db_session = get_session()
    promise_id = request.args.get('promise_id', type=int)
    status = request.args.get('status', '').strip() or None
    quotes = list_quotes(db_session, studio_id, promise_id=promise_id, status=status)
    return jsonify({
        'status': 'success',
        'data': [
            {'id': q.id, 'promise_id': q.promise_id, 'name': q.name, 'status': q.status}
            for q in quotes
        ],
    })


@quotes_bp.route('', methods=['POST'])
def create(studio_id):
    """Create a draft quote for a promise."""
    db_session = get_session()
    data = _json_body()
    try:
        promise_id = int(data.get('promise_id'))
    except (TypeError, ValueError):
        raise InvalidInputError("'promise_id' es obligatorio.")

    result = create_quote(QuotePayload.from_dict(data), db_session, studio_id, promise_id)
    return _save_response(result, 201)


@quotes_bp.route('/<int:quote_id>', methods=['GET'])
def detail(studio_id, quote_id):
    """Quote payload plus its computed breakdown and visible conditions."""
    db_session = get_session()
    quote = get_quote(db_session, studio_id, quote_id)
    editor = open_editor(
        db_session, studio_id, quote_id,
        signal_seconds=current_app.config.get('PRICE_RESYNC_SIGNAL_SECONDS', 3)
    )
    data = quote_to_dict(quote)
    data['breakdown'] = editor.breakdown.as_dict()
    data['offered_condition_ids'] = sorted(editor.visibility.visible_ids)
    return jsonify({'status': 'success', 'data': data})


@quotes_bp.route('/<int:quote_id>', methods=['PUT'])
def update(studio_id, quote_id):
    db_session = get_session()
    result = update_quote(quote_id, QuotePayload.from_dict(_json_body()), db_session, studio_id)
    return _save_response(result)


@quotes_bp.route('/<int:quote_id>/duplicate', methods=['POST'])
def duplicate(studio_id, quote_id):
    """Copy a quote into a new draft; body may carry a new ``name``."""
    db_session = get_session()
    result = duplicate_quote(quote_id, db_session, studio_id, name=_json_body().get('name'))
    return _save_response(result, 201)


@quotes_bp.route('/<int:quote_id>/breakdown', methods=['GET'])
def breakdown(studio_id, quote_id):
    db_session = get_session()
    return jsonify({'status': 'success', 'data': get_breakdown(db_session, studio_id, quote_id).as_dict()})


@quotes_bp.route('/<int:quote_id>/what-if', methods=['GET'])
def what_if(studio_id, quote_id):
    """Commission and utility under every visible condition, nothing selected."""
    db_session = get_session()
    return jsonify({
        'status': 'success',
        'data': [_scenario_to_dict(s) for s in compute_what_if(db_session, studio_id, quote_id)],
    })


@quotes_bp.route('/<int:quote_id>/transition', methods=['POST'])
def transition(studio_id, quote_id):
    """Move the quote to ``{"status": ...}``."""
    db_session = get_session()
    target = _json_body().get('status')
    if not target:
        raise InvalidInputError("'status' es obligatorio.")
    try:
        target = QuoteStatus(target)
    except ValueError:
        raise InvalidInputError(f"Estado desconocido: {target!r}")
    result = transition_quote(quote_id, target, db_session, studio_id)
    record_transition(result['previous_status'], result['status'])
    return jsonify({'status': 'success', 'data': {'id': result['id'], 'status': result['status']}})


@quotes_bp.route('/<int:quote_id>/lines/<line_key>/resync', methods=['POST'])
def resync_line(studio_id, quote_id, line_key):
    """Guardar y sincronizar: rewrite one snapshot line from the catalog."""
    db_session = get_session()
    result = resync_snapshot_from_catalog(quote_id, line_key, db_session, studio_id)
    return jsonify({'status': 'success', 'data': result.as_dict()})
