import os
import sys
import pytest

# Ensure the project root (containing the `evergreater` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from config import Config
from evergreater import create_app, db, socketio, WS_NAMESPACE
from evergreater.services.economy.counter import GlobalCounterStore


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = []
    ENABLE_AGGREGATOR = False
    STARTING_SUPPLIES = 100
    SUPPLY_PACK_COST = 10
    SUPPLY_PACK_SIZE = 100
    PREMIUM_UNIT_COST = 100
    SOCKET_REQUIRE_BINDING_PROOF = True
    SOCKET_TOKEN_MAX_AGE_SEC = 3600


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import evergreater.models  # noqa: F401
        db.create_all()
        GlobalCounterStore(db.session).ensure_row()
        db.session.commit()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def _account_factory():
    from evergreater.models import Account
    counter = {'n': 0}

    def _make(email=None, **fields):
        counter['n'] += 1
        account = Account(email=email or f'printer{counter["n"]}@example.com', **fields)
        account.set_password('password')
        db.session.add(account)
        db.session.commit()
        return account.id

    return _make


@pytest.fixture()
def make_account(flask_app):
    """Insert an account directly; returns its id. Password is 'password'."""
    return _account_factory()


@pytest.fixture()
def login(client):
    def _login(email, password='password'):
        res = client.post('/api/auth/login', json={'email': email, 'password': password})
        assert res.status_code == 200, res.get_json()
        return res.get_json()

    return _login


@pytest.fixture()
def connect_socket(flask_app, client):
    """Open push channels on '/ws'; each shares the HTTP client's cookies."""
    opened = []

    def _connect():
        sio = socketio.test_client(flask_app, flask_test_client=client, namespace=WS_NAMESPACE)
        opened.append(sio)
        return sio

    yield _connect
    for sio in opened:
        try:
            if sio.is_connected(WS_NAMESPACE):
                sio.disconnect(namespace=WS_NAMESPACE)
        except Exception:
            pass


@pytest.fixture()
def frames():
    """Return the push payloads a socket test client has received so far."""
    def _frames(sio):
        payloads = []
        for pkt in sio.get_received(WS_NAMESPACE):
            if pkt['name'] != 'message':
                continue
            args = pkt['args']
            payloads.append(args[0] if isinstance(args, list) else args)
        return payloads

    return _frames


@pytest.fixture()
def ledger(flask_app):
    from evergreater.services.economy import get_ledger
    return get_ledger()


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that use several connections."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'evergreater.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 30}}

    application = create_app(FileConfig)
    with application.app_context():
        import evergreater.models  # noqa: F401
        db.create_all()
        GlobalCounterStore(db.session).ensure_row()
        db.session.commit()
        yield application
        db.session.remove()
        db.engine.dispose()


@pytest.fixture()
def add_account(file_app):
    """Like make_account, for the file-backed app."""
    return _account_factory()
