import os
import signal
import sys

from evergreater import create_app, db, shutdown_app, socketio, start_background_tasks
from evergreater.services.economy.counter import GlobalCounterStore

app = create_app()


def _boot():
    with app.app_context():
        db.create_all()
        GlobalCounterStore(db.session).ensure_row()
        db.session.commit()


def _terminate(signum, frame):
    sys.exit(0)


if __name__ == '__main__':
    _boot()
    start_background_tasks(app)
    signal.signal(signal.SIGTERM, _terminate)
    try:
        # Use SocketIO server to enable websockets in dev
        socketio.run(app, port=int(os.environ.get('PORT', '4000')), debug=True, use_reloader=False)
    finally:
        shutdown_app(app)
