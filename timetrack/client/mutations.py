import asyncio
import logging
from typing import Awaitable, Callable, Optional

from timetrack.client.api import TimeTrackerAPI
from timetrack.client.sync_scheduler import SyncScheduler
from timetrack.client.timer_engine import ClientTimerEngine, ServerSnapshot
from timetrack.exceptions import NetworkError, TimeTrackingError

logger = logging.getLogger(__name__)


class MutationCoordinator:
    """
    Applies check-in, pause/resume and check-out to the local clock before the
    request completes. A successful response is reconciled into the engine;
    a failure restores the exact state saved before the mutation and re-raises
    the error with the server's message. Mutations on one project run one at a time.
    """

    def __init__(self, engine: ClientTimerEngine, api: TimeTrackerAPI, scheduler: SyncScheduler):
        self.engine = engine
        self.api = api
        self.scheduler = scheduler
        self._lock = asyncio.Lock()

    @property
    def project_id(self) -> str:
        return self.engine.project_id

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def check_in(self, sub_task_id: Optional[str] = None) -> dict:
        return await self._mutate(
            "check-in",
            self.engine.begin_check_in,
            lambda: self.api.check_in(self.project_id, sub_task_id),
        )

    async def pause_or_resume(self) -> dict:
        async with self._lock:
            if self.engine.is_running:
                apply = self.engine.begin_pause
            elif self.engine.is_paused:
                apply = self.engine.begin_resume
            else:
                apply = None
            return await self._apply_and_call(
                "pause/resume", apply, lambda: self.api.pause_or_resume(self.project_id))

    async def check_out(self) -> dict:
        return await self._mutate(
            "check-out",
            self.engine.begin_check_out,
            lambda: self.api.check_out(self.project_id),
        )

    async def _mutate(self, name: str, apply: Callable[[], None], call: Callable[[], Awaitable[dict]]) -> dict:
        async with self._lock:
            return await self._apply_and_call(name, apply, call)

    async def _apply_and_call(self, name: str, apply: Optional[Callable[[], None]],
                              call: Callable[[], Awaitable[dict]]) -> dict:
        saved = self.engine.save()
        self.engine.pending_mutations += 1
        try:
            if apply is not None:
                apply()
            data = await call()
        except TimeTrackingError as e:
            self.engine.restore(saved)
            if isinstance(e, NetworkError):
                self.scheduler.record_failure(e)
            logger.warning(f"{name} for {self.project_id} failed, rolled back: {e.message}")
            raise
        except asyncio.CancelledError:
            self.engine.restore(saved)
            raise
        finally:
            self.engine.pending_mutations -= 1

        self.scheduler.record_success()
        self.engine.reconcile(ServerSnapshot.from_payload(data))
        return data
