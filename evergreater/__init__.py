from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

WS_NAMESPACE = '/ws'


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS', [])

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from evergreater.errors import register_error_handlers
    register_error_handlers(flask_app)

    from evergreater.main import auth
    flask_app.register_blueprint(auth, url_prefix='/api/auth')

    from evergreater.api.economy import economy
    flask_app.register_blueprint(economy, url_prefix='/api')

    # Realtime services live for the lifetime of this app instance
    from evergreater.services.realtime import ConnectionRegistry, BroadcastDispatcher
    from evergreater.services.economy.aggregator import PeriodicAggregator
    registry = ConnectionRegistry()
    dispatcher = BroadcastDispatcher(socketio, registry, namespace=WS_NAMESPACE, logger=flask_app.logger)
    aggregator = PeriodicAggregator(
        flask_app,
        dispatcher,
        interval=float(flask_app.config.get('AGGREGATOR_INTERVAL_SEC', 4)),
    )
    flask_app.extensions['connection_registry'] = registry
    flask_app.extensions['broadcast_dispatcher'] = dispatcher
    flask_app.extensions['periodic_aggregator'] = aggregator

    from evergreater.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from evergreater.models import Account

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Account, int(user_id))

    @click.command('init-db')
    def init_db_command():
        """Creates missing tables and the global counter row."""
        from evergreater.services.economy.counter import GlobalCounterStore
        with flask_app.app_context():
            db.create_all()
            created = GlobalCounterStore(db.session).ensure_row()
            db.session.commit()
            print('Database initialized with count = 0' if created else 'Database already initialized')

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from evergreater.services.economy.counter import GlobalCounterStore
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            GlobalCounterStore(db.session).ensure_row()

            # Seed accounts
            emails = ['printer1@example.com', 'printer2@example.com', 'printer3@example.com']
            for email in emails:
                account = Account(email=email, supplies=flask_app.config.get('STARTING_SUPPLIES', 100))
                account.set_password('password')
                db.session.add(account)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(init_db_command)
    flask_app.cli.add_command(db_reset_command)

    return flask_app


def start_background_tasks(flask_app):
    """Start the passive income schedule unless disabled or testing."""
    if flask_app.config.get('TESTING') or not flask_app.config.get('ENABLE_AGGREGATOR', True):
        return False
    flask_app.extensions['periodic_aggregator'].start()
    return True


def shutdown_app(flask_app, grace=None):
    """Stop background work and release the database within a grace period."""
    if grace is None:
        grace = float(flask_app.config.get('SHUTDOWN_GRACE_SEC', 10))
    aggregator = flask_app.extensions.get('periodic_aggregator')
    if aggregator is not None:
        aggregator.stop(timeout=grace)
    registry = flask_app.extensions.get('connection_registry')
    if registry is not None:
        registry.clear()
    with flask_app.app_context():
        db.session.remove()
        db.engine.dispose()
    flask_app.logger.info('[shutdown] background tasks stopped, database pool drained')
