from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from evergreater.errors import AuthenticationError, TransientInfraError, ValidationError
from evergreater.models import to_wire
from evergreater.services.economy import get_ledger


economy = Blueprint('economy', __name__)


def _account_id() -> int:
    if not current_user.is_authenticated:
        raise AuthenticationError()
    return int(current_user.get_id())


def _dispatcher():
    return current_app.extensions['broadcast_dispatcher']


def _push_account(account_id, fields):
    _dispatcher().send_account_delta(account_id, to_wire(fields))


@economy.route('/count', methods=['GET'])
def read_count():
    try:
        count = get_ledger().read_counter()
    except SQLAlchemyError as exc:
        current_app.logger.error(f"[count] read failed: {exc}")
        raise TransientInfraError('read_counter', 'Failed to retrieve count') from exc
    return jsonify({'count': count})


@economy.route('/increment', methods=['POST'])
def increment():
    account_id = _account_id()
    result = get_ledger().print_ticket(account_id)
    fields = {
        'supplies': result.supplies,
        'currency': result.currency,
        'tickets_contributed': result.tickets_contributed,
    }
    _dispatcher().broadcast_counter(result.count)
    _push_account(account_id, fields)
    payload = {'count': result.count}
    payload.update(to_wire(fields))
    return jsonify(payload)


@economy.route('/shop/buy-supplies', methods=['POST'])
def buy_supplies():
    account_id = _account_id()
    cfg = current_app.config
    fields = get_ledger().spend_currency_for(
        account_id,
        int(cfg.get('SUPPLY_PACK_COST', 10)),
        {'supplies': int(cfg.get('SUPPLY_PACK_SIZE', 100))},
    )
    _push_account(account_id, fields)
    return jsonify(to_wire(fields))


@economy.route('/shop/buy-gold', methods=['POST'])
def buy_gold():
    account_id = _account_id()
    data = request.get_json(silent=True) or {}
    quantity = data.get('quantity')
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError('Invalid quantity. Must be a positive integer.')
    unit_cost = int(current_app.config.get('PREMIUM_UNIT_COST', 100))
    fields = get_ledger().spend_currency_for(account_id, quantity * unit_cost, {'premium_currency': quantity})
    _push_account(account_id, fields)
    return jsonify(to_wire(fields))


@economy.route('/shop/buy-autoprinter', methods=['POST'])
def buy_autoprinter():
    account_id = _account_id()
    fields = get_ledger().buy_generator(account_id)
    _push_account(account_id, fields)
    return jsonify(to_wire(fields))
