import asyncio
import logging
from enum import Enum
from typing import Dict, Optional

from timetrack.client.api import TimeTrackerAPI
from timetrack.client.retry import RetryPolicy
from timetrack.client.timer_engine import ClientTimerEngine, ServerSnapshot
from timetrack.exceptions import NetworkError, TimeTrackingError

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STALE = "stale"
    ERROR = "error"


class SyncScheduler:
    """
    Keeps a ClientTimerEngine close to the server.

    While the timer runs, a fast poll (30s) and an independent hard resync
    (120s) both fetch the elapsed-time snapshot and reconcile it. Both loops
    are stopped whenever the timer leaves RUNNING and by `stop()`. A manual
    `resync()` can be called at any time and leaves the loops alone.
    """

    def __init__(self, engine: ClientTimerEngine, api: TimeTrackerAPI, retry_policy: RetryPolicy = None,
                 fast_poll_seconds: float = 30.0, hard_resync_seconds: float = 120.0,
                 stale_after_seconds: float = 120.0, sleep=asyncio.sleep):
        self.engine = engine
        self.api = api
        self.retry_policy = retry_policy or RetryPolicy()
        self.intervals = {"fast_poll": fast_poll_seconds, "hard_resync": hard_resync_seconds}
        self.stale_after_seconds = stale_after_seconds
        self._sleep = sleep
        self._loops: Dict[str, asyncio.Task] = {}
        self._last_call_failed = False
        self.last_error: Optional[TimeTrackingError] = None
        self._stopped = False
        engine.add_listener(self._on_engine_change)

    @property
    def project_id(self) -> str:
        return self.engine.project_id

    @property
    def active_loops(self) -> int:
        return sum(1 for task in self._loops.values() if not task.done())

    def record_success(self):
        self._last_call_failed = False
        self.last_error = None

    def record_failure(self, error: TimeTrackingError):
        self._last_call_failed = True
        self.last_error = error

    def connection_status(self, now: int = None) -> ConnectionStatus:
        if self._last_call_failed:
            return ConnectionStatus.ERROR
        last_sync = self.engine.state.last_server_sync_timestamp
        if last_sync is None:
            return ConnectionStatus.CONNECTING
        now = self.engine.clock() if now is None else now
        if now - last_sync > self.stale_after_seconds * 1000:
            return ConnectionStatus.STALE
        return ConnectionStatus.CONNECTED

    async def resync(self) -> Optional[ServerSnapshot]:
        """
        Fetches and reconciles the server snapshot.
        Network failures are retried with backoff; once retries are exhausted the
        engine keeps its last state and the status turns to `error`. Snapshots
        that were in flight while a local mutation happened are dropped.
        """
        if self.engine.pending_mutations:
            logger.debug(f"Skipping sync for {self.project_id}, mutation in flight")
            return None

        revision = self.engine.revision
        try:
            data = await self.retry_policy.run(lambda: self.api.get_elapsed_time(self.project_id), sleep=self._sleep)
        except NetworkError as e:
            self.record_failure(e)
            logger.warning(f"Sync for {self.project_id} failed: {e}")
            return None
        except TimeTrackingError as e:
            self.record_failure(e)
            raise

        self.record_success()
        if self.engine.revision != revision or self.engine.pending_mutations:
            logger.debug(f"Discarding stale snapshot for {self.project_id}")
            return None

        snapshot = ServerSnapshot.from_payload(data)
        self.engine.reconcile(snapshot)
        return snapshot

    def _on_engine_change(self, engine: ClientTimerEngine):
        self.refresh()

    def refresh(self):
        if self.engine.is_running and not self._stopped:
            for name, interval in self.intervals.items():
                task = self._loops.get(name)
                if task is None or task.done():
                    self._loops[name] = asyncio.get_running_loop().create_task(self._poll_loop(name, interval))
        else:
            self._cancel_loops()

    def _cancel_loops(self):
        for task in self._loops.values():
            task.cancel()
        self._loops.clear()

    async def _poll_loop(self, name: str, interval: float):
        while True:
            await asyncio.sleep(interval)
            logger.debug(f"{name} for {self.project_id}")
            try:
                await self.resync()
            except TimeTrackingError as e:
                logger.warning(f"{name} for {self.project_id} rejected: {e}")

    def stop(self):
        self._stopped = True
        self._cancel_loops()
