"""Server-issued proof that a push channel may bind to an account.

The HTTP surface hands out a signed token for the logged-in account; the
socket ``authenticate`` frame must echo it back (or arrive on a handshake
whose session already belongs to that account).
"""

from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

_SALT = 'evergreater.push-binding'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=_SALT)


def issue_binding_token(account_id: int) -> str:
    return _serializer().dumps({'account_id': int(account_id)})


def verify_binding_token(token, account_id: int) -> bool:
    if not isinstance(token, str) or not token:
        return False
    max_age = int(current_app.config.get('SOCKET_TOKEN_MAX_AGE_SEC', 86400))
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        # SignatureExpired is a BadSignature too
        return False
    return isinstance(data, dict) and data.get('account_id') == account_id
