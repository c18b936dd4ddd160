import logging


class BroadcastDispatcher:
    """Pushes counter and per-account updates to registered channels.

    Sends are best-effort: a failing channel is dropped from the registry
    and the caller is never blocked or retried.
    """

    def __init__(self, socketio, registry, namespace='/ws', logger=None):
        self.socketio = socketio
        self.registry = registry
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)

    def _send(self, sid, payload) -> bool:
        try:
            self.socketio.emit('message', payload, to=sid, namespace=self.namespace)
            return True
        except Exception as exc:
            self.registry.disconnect(sid)
            self.logger.warning(f"[push-drop] sid={sid} removed after failed send: {exc}")
            return False

    def broadcast_counter(self, value: int) -> int:
        payload = {'count': value}
        return sum(1 for sid in self.registry.channels() if self._send(sid, payload))

    def send_account_delta(self, account_id: int, fields: dict) -> int:
        if not fields:
            return 0
        payload = {'accountUpdate': dict(fields)}
        return sum(1 for sid in self.registry.channels_for(account_id) if self._send(sid, payload))

    def send_authenticated(self, sid) -> bool:
        return self._send(sid, {'authenticated': True})
