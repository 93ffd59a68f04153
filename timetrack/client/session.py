import asyncio
import logging
from typing import Callable, Dict, Optional

from timetrack.client.api import TimeTrackerAPI
from timetrack.client.config import ClientSettings
from timetrack.client.mutations import MutationCoordinator
from timetrack.client.retry import RetryPolicy
from timetrack.client.sync_scheduler import ConnectionStatus, SyncScheduler
from timetrack.client.timer_engine import ClientTimerEngine, TimerState, now_ms

logger = logging.getLogger(__name__)


class TimerController:
    """Engine, scheduler and mutation coordinator for one tracked project."""

    def __init__(self, project_id: str, api: TimeTrackerAPI, settings: ClientSettings,
                 clock: Callable[[], int] = now_ms, sleep=asyncio.sleep,
                 on_check_out: Callable[["TimerController"], None] = None):
        self.project_id = project_id
        self._on_check_out = on_check_out
        self.engine = ClientTimerEngine(project_id, clock=clock, tick_seconds=settings.TICK_SECONDS)
        self.scheduler = SyncScheduler(
            self.engine,
            api,
            retry_policy=RetryPolicy(
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                max_delay=settings.RETRY_MAX_DELAY_SECONDS,
                jitter=settings.RETRY_JITTER_SECONDS,
            ),
            fast_poll_seconds=settings.FAST_POLL_SECONDS,
            hard_resync_seconds=settings.HARD_RESYNC_SECONDS,
            stale_after_seconds=settings.STALE_AFTER_SECONDS,
            sleep=sleep,
        )
        self.mutations = MutationCoordinator(self.engine, api, self.scheduler)
        self.disposed = False

    @property
    def elapsed(self) -> int:
        return self.engine.elapsed

    @property
    def timer_state(self) -> TimerState:
        return self.engine.timer_state

    @property
    def formatted_time(self) -> str:
        return self.engine.formatted_time

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.scheduler.connection_status()

    def needs_sync(self, max_age_seconds: float) -> bool:
        last_sync = self.engine.state.last_server_sync_timestamp
        return last_sync is None or self.engine.clock() - last_sync > max_age_seconds * 1000

    async def check_in(self, sub_task_id: Optional[str] = None) -> dict:
        return await self.mutations.check_in(sub_task_id)

    async def pause_or_resume(self) -> dict:
        return await self.mutations.pause_or_resume()

    async def check_out(self) -> dict:
        data = await self.mutations.check_out()
        if self._on_check_out is not None:
            self._on_check_out(self)
        return data

    async def sync_with_server(self):
        return await self.scheduler.resync()

    def dispose(self):
        self.scheduler.stop()
        self.engine.dispose()
        self.disposed = True


class TimerSession:
    """
    Session-scoped owner of the per-project timer controllers.
    Tracking the same project again returns the existing controller, so a view
    that goes away and comes back keeps its clock. A successful check-out
    disposes that project's controller; disposing a project, or closing the
    session, cancels every tick and sync loop it owns.
    """

    def __init__(self, api: TimeTrackerAPI = None, settings: ClientSettings = None,
                 clock: Callable[[], int] = now_ms, sleep=asyncio.sleep):
        self.settings = settings or ClientSettings()
        self.api = api or TimeTrackerAPI(
            self.settings.API_BASE_URL,
            token=self.settings.API_TOKEN or None,
            timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
        )
        self.clock = clock
        self._sleep = sleep
        self._controllers: Dict[str, TimerController] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def get(self, project_id: str) -> Optional[TimerController]:
        return self._controllers.get(project_id)

    @property
    def tracked_projects(self):
        return list(self._controllers)

    async def track(self, project_id: str) -> TimerController:
        """Returns the project's controller, syncing with the server if it has not synced recently."""
        controller = self._controllers.get(project_id)
        if controller is None:
            controller = TimerController(project_id, self.api, self.settings, clock=self.clock, sleep=self._sleep,
                                         on_check_out=self._release)
            self._controllers[project_id] = controller
            logger.info(f"Tracking project {project_id}")

        if controller.needs_sync(self.settings.FAST_POLL_SECONDS):
            await controller.sync_with_server()
        return controller

    def dispose(self, project_id: str):
        controller = self._controllers.pop(project_id, None)
        if controller is not None:
            controller.dispose()
            logger.info(f"Stopped tracking project {project_id}")

    def _release(self, controller: TimerController):
        if self._controllers.get(controller.project_id) is controller:
            self.dispose(controller.project_id)

    async def close(self):
        for project_id in list(self._controllers):
            self.dispose(project_id)
        await self.api.aclose()
