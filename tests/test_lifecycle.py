import time

from evergreater import db, shutdown_app, start_background_tasks
from evergreater.models import Account, GlobalCounter
from evergreater.services.economy import get_ledger


def test_background_tasks_skipped_when_testing(flask_app):
    assert start_background_tasks(flask_app) is False
    assert not flask_app.extensions['periodic_aggregator'].running


def test_background_tasks_skipped_when_disabled(flask_app):
    flask_app.config['TESTING'] = False
    flask_app.config['ENABLE_AGGREGATOR'] = False
    assert start_background_tasks(flask_app) is False
    assert not flask_app.extensions['periodic_aggregator'].running


def test_aggregator_runs_until_shutdown(file_app, add_account):
    account_id = add_account(generator_count=1, supplies=50)
    file_app.config['TESTING'] = False
    file_app.config['ENABLE_AGGREGATOR'] = True
    aggregator = file_app.extensions['periodic_aggregator']
    aggregator.interval = 0.05
    file_app.extensions['connection_registry'].connect('idle-tab')

    assert start_background_tasks(file_app) is True
    assert aggregator.running

    deadline = time.monotonic() + 5
    while get_ledger().read_counter() == 0 and time.monotonic() < deadline:
        time.sleep(0.05)
    assert get_ledger().read_counter() > 0

    started = time.monotonic()
    shutdown_app(file_app, grace=2)
    assert time.monotonic() - started < 2
    assert not aggregator.running
    assert len(file_app.extensions['connection_registry']) == 0

    # Nothing fires once stopped
    settled = get_ledger().snapshot(account_id)['tickets_contributed']
    time.sleep(0.2)
    assert get_ledger().snapshot(account_id)['tickets_contributed'] == settled


def test_init_db_creates_counter_once(flask_app):
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Database already initialized' in result.output

    GlobalCounter.__table__.drop(db.engine)
    result = runner.invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Database initialized with count = 0' in result.output
    assert get_ledger().read_counter() == 0


def test_db_reset_seeds_accounts(flask_app, make_account):
    make_account(email='old@example.com')
    result = flask_app.test_cli_runner().invoke(args=['db-reset'])
    assert result.exit_code == 0
    emails = sorted(a.email for a in db.session.execute(db.select(Account)).scalars())
    assert emails == ['printer1@example.com', 'printer2@example.com', 'printer3@example.com']


def test_infra_failure_is_an_opaque_500(client, make_account, login, caplog):
    account_id = make_account(email='p@example.com', supplies=5)
    login('p@example.com')
    GlobalCounter.__table__.drop(db.engine)

    res = client.post('/api/increment')

    assert res.status_code == 500
    assert res.get_json() == {'error': 'Internal server error'}
    assert 'operation=print_ticket' in caplog.text
    # The supply spent before the failure was rolled back
    assert get_ledger().snapshot(account_id)['supplies'] == 5
