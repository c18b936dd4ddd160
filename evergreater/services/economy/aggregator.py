import threading
import time
from typing import Optional

from evergreater import socketio
from evergreater.errors import ValidationError
from evergreater.models import to_wire
from .ledger import TickResult, get_ledger


class PeriodicAggregator:
    """Turn every account's generators into production on a fixed interval.

    Runs as a Socket.IO background task owned by the app. A failed firing
    is logged and the schedule carries on; only ``stop`` ends the loop.
    """

    # Longest single sleep so stop() is noticed promptly
    _SLEEP_SLICE_SEC = 0.5

    def __init__(self, app, dispatcher, interval=4.0):
        self.app = app
        self.dispatcher = dispatcher
        self.interval = float(interval)
        self._stopping = threading.Event()
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._stopping.is_set()

    def start(self) -> None:
        if self._task is not None:
            return
        self._stopping.clear()
        self._task = socketio.start_background_task(self._run)
        self.app.logger.info(f"[tick-schedule] every {self.interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopping.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            task.join(timeout)
        except TypeError:
            # Greenlet-style tasks take no timeout
            task.join()
        self.app.logger.info('[tick-schedule] stopped')

    def _sleep(self, seconds):
        deadline = time.monotonic() + seconds
        while not self._stopping.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            socketio.sleep(min(self._SLEEP_SLICE_SEC, remaining))

    def _run(self):
        while not self._stopping.is_set():
            self._sleep(self.interval)
            if self._stopping.is_set():
                break
            self.run_once()

    def run_once(self) -> Optional[TickResult]:
        """One firing: apply the tick, then push the results."""
        with self.app.app_context():
            try:
                result = get_ledger().run_aggregation_tick()
            except Exception:
                self.app.logger.exception('[tick-error] aggregation tick failed; next firing will retry')
                return None

            if result.total_produced <= 0:
                return result

            self.app.logger.info(
                f"[tick] produced={result.total_produced} accounts={len(result.per_account_produced)} count={result.counter}"
            )
            try:
                self.dispatcher.broadcast_counter(result.counter)
                ledger = get_ledger()
                for account_id in sorted(self.dispatcher.registry.bound_accounts()):
                    try:
                        fields = ledger.snapshot(account_id)
                    except ValidationError:
                        self.app.logger.warning(f"[tick] bound account={account_id} no longer exists")
                        continue
                    self.dispatcher.send_account_delta(account_id, to_wire(fields))
            except Exception:
                self.app.logger.exception('[tick-error] pushing tick results failed')
            return result
