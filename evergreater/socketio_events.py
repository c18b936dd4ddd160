import json

from flask import current_app, request
from flask_login import current_user
from flask_socketio import emit
from sqlalchemy.exc import SQLAlchemyError

from evergreater import socketio, WS_NAMESPACE
from evergreater.services.economy import get_ledger
from evergreater.services.realtime.binding import verify_binding_token


def _registry():
    return current_app.extensions['connection_registry']


def _dispatcher():
    return current_app.extensions['broadcast_dispatcher']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect(auth=None):
    _registry().connect(_get_sid())
    try:
        count = get_ledger().read_counter()
    except SQLAlchemyError as exc:
        current_app.logger.error(f"[ws-connect] sid={_get_sid()} could not read counter: {exc}")
        return
    emit('message', {'count': count})


def handle_disconnect(reason=None):
    account_id = _registry().disconnect(_get_sid())
    if account_id is not None:
        current_app.logger.info(f"[ws-close] sid={_get_sid()} account={account_id}")


def _parse_frame(data):
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


def _binding_allowed(account_id: int, token) -> bool:
    if not current_app.config.get('SOCKET_REQUIRE_BINDING_PROOF', True):
        return True
    if verify_binding_token(token, account_id):
        return True
    return current_user.is_authenticated and int(current_user.get_id()) == account_id


def handle_message(data):
    frame = _parse_frame(data)
    if frame is None or frame.get('type') != 'authenticate':
        return
    account_id = frame.get('accountId')
    if not isinstance(account_id, int) or isinstance(account_id, bool) or account_id < 1:
        return
    sid = _get_sid()
    if not _binding_allowed(account_id, frame.get('token')):
        current_app.logger.warning(f"[ws-bind] sid={sid} rejected unproven claim for account={account_id}")
        return
    previous = _registry().binding_of(sid)
    if not _registry().bind(sid, account_id):
        return
    if previous is not None and previous != account_id:
        current_app.logger.info(f"[ws-bind] sid={sid} rebound account={previous} -> account={account_id}")
    else:
        current_app.logger.info(f"[ws-bind] sid={sid} account={account_id}")
    _dispatcher().send_authenticated(sid)


def register_socketio_handlers() -> None:
    """Register push channel handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=WS_NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=WS_NAMESPACE)
    socketio.on_event('message', handle_message, namespace=WS_NAMESPACE)
