import threading
from typing import Dict, List, Optional, Set


class ConnectionRegistry:
    """Live push channels and the account each one is bound to.

    Shared between socket handlers and the aggregator's background task,
    so every access goes through one lock. A channel is ``Open(unbound)``
    after ``connect``, ``Open(bound)`` after ``bind`` and gone after
    ``disconnect``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._bindings: Dict[str, Optional[int]] = {}

    def connect(self, sid: str) -> None:
        with self._lock:
            self._bindings[sid] = None

    def bind(self, sid: str, account_id: int) -> bool:
        """Bind an open channel to an account, replacing any earlier binding."""
        with self._lock:
            if sid not in self._bindings:
                return False
            self._bindings[sid] = account_id
            return True

    def disconnect(self, sid: str) -> Optional[int]:
        with self._lock:
            return self._bindings.pop(sid, None)

    def binding_of(self, sid: str) -> Optional[int]:
        with self._lock:
            return self._bindings.get(sid)

    def channels(self) -> List[str]:
        with self._lock:
            return list(self._bindings)

    def channels_for(self, account_id: int) -> List[str]:
        with self._lock:
            return [sid for sid, bound in self._bindings.items() if bound == account_id]

    def bound_accounts(self) -> Set[int]:
        with self._lock:
            return {bound for bound in self._bindings.values() if bound is not None}

    def clear(self) -> None:
        with self._lock:
            self._bindings.clear()

    def __len__(self):
        with self._lock:
            return len(self._bindings)
