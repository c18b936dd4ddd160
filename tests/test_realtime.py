import logging

from evergreater.services.economy.aggregator import PeriodicAggregator
from evergreater.services.realtime import BroadcastDispatcher, ConnectionRegistry


class RecordingSocketIO:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def emit(self, event, payload, to=None, namespace=None):
        if to in self.failing:
            raise ConnectionResetError('socket closing')
        self.sent.append((to, event, payload))


def _dispatcher(registry, failing=()):
    sio = RecordingSocketIO(failing)
    return sio, BroadcastDispatcher(sio, registry, namespace='/ws', logger=logging.getLogger('test'))


def test_registry_binding_lifecycle():
    registry = ConnectionRegistry()
    registry.connect('a')
    registry.connect('b')
    registry.connect('c')
    assert registry.binding_of('a') is None
    assert registry.bind('a', 7)
    assert registry.bind('b', 7)
    assert registry.bind('c', 8)
    # Rebinding overwrites
    assert registry.bind('c', 9)
    assert sorted(registry.channels_for(7)) == ['a', 'b']
    assert registry.channels_for(8) == []
    assert registry.bound_accounts() == {7, 9}

    assert registry.disconnect('a') == 7
    assert registry.channels_for(7) == ['b']
    assert not registry.bind('a', 7)
    assert registry.binding_of('a') is None
    assert len(registry) == 2

    registry.clear()
    assert len(registry) == 0


def test_broadcast_reaches_every_open_channel():
    registry = ConnectionRegistry()
    for sid in ('a', 'b', 'c'):
        registry.connect(sid)
    registry.bind('a', 1)
    sio, dispatcher = _dispatcher(registry)
    assert dispatcher.broadcast_counter(12) == 3
    assert sorted(to for to, _, _ in sio.sent) == ['a', 'b', 'c']
    assert all(event == 'message' and payload == {'count': 12} for _, event, payload in sio.sent)


def test_account_delta_only_reaches_bound_channels():
    registry = ConnectionRegistry()
    for sid in ('a', 'b', 'c'):
        registry.connect(sid)
    registry.bind('a', 1)
    registry.bind('b', 1)
    registry.bind('c', 2)
    sio, dispatcher = _dispatcher(registry)
    assert dispatcher.send_account_delta(1, {'supplies': 4}) == 2
    assert sorted(to for to, _, _ in sio.sent) == ['a', 'b']
    assert dispatcher.send_account_delta(3, {'supplies': 4}) == 0
    assert dispatcher.send_account_delta(1, {}) == 0


def test_failed_send_drops_channel_and_continues():
    registry = ConnectionRegistry()
    for sid in ('a', 'b'):
        registry.connect(sid)
        registry.bind(sid, 1)
    sio, dispatcher = _dispatcher(registry, failing={'a'})
    assert dispatcher.send_account_delta(1, {'currency': 3}) == 1
    assert [to for to, _, _ in sio.sent] == ['b']
    assert registry.channels() == ['b']


class ExplodingLedger:
    def run_aggregation_tick(self):
        raise RuntimeError('database went away')


def test_failed_firing_is_logged_and_next_one_runs(flask_app, make_account, monkeypatch):
    from evergreater.services.economy import aggregator as aggregator_module
    from evergreater.services.economy import get_ledger

    account_id = make_account(generator_count=1, supplies=5)
    aggregator = flask_app.extensions['periodic_aggregator']

    monkeypatch.setattr(aggregator_module, 'get_ledger', lambda: ExplodingLedger())
    assert aggregator.run_once() is None

    monkeypatch.setattr(aggregator_module, 'get_ledger', get_ledger)
    result = aggregator.run_once()
    assert result.per_account_produced == {account_id: 1}


def test_schedule_keeps_firing_until_stopped(flask_app):
    registry = ConnectionRegistry()
    _, dispatcher = _dispatcher(registry)
    aggregator = PeriodicAggregator(flask_app, dispatcher, interval=0)
    calls = []

    def fake_run_once():
        calls.append(len(calls))
        if len(calls) == 1:
            return None
        if len(calls) == 3:
            aggregator._stopping.set()

    aggregator.run_once = fake_run_once
    aggregator._run()
    assert calls == [0, 1, 2]


def test_stop_without_start_is_noop(flask_app):
    aggregator = flask_app.extensions['periodic_aggregator']
    aggregator.stop(timeout=0.1)
    assert not aggregator.running
