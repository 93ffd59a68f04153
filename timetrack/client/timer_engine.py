import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def parse_timestamp_ms(value) -> Optional[int]:
    """ISO-8601 string (or epoch milliseconds) to epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def format_clock(seconds) -> str:
    if not seconds:
        return "00:00:00"
    seconds = abs(int(seconds))
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CHECKED_OUT = "checked_out"


@dataclass
class ClientTimerState:
    """Predictive, non-durable timer state. Timestamps are epoch milliseconds."""
    timer_state: TimerState = TimerState.IDLE
    elapsed_time_seconds: int = 0
    local_start_timestamp: Optional[int] = None
    paused_duration_seconds: int = 0
    last_pause_timestamp: Optional[int] = None
    sync_drift_seconds: int = 0
    last_server_sync_timestamp: Optional[int] = None
    server_check_in_timestamp: Optional[int] = None


@dataclass(frozen=True)
class ServerSnapshot:
    is_running: bool = False
    is_checked_out: bool = False
    elapsed_time: int = 0
    paused_duration: int = 0
    check_in_time: Optional[int] = None
    last_paused: Optional[int] = None
    total_duration: Optional[int] = None

    @classmethod
    def from_payload(cls, data: dict) -> "ServerSnapshot":
        """Builds a snapshot from any timer payload: elapsed time, check-in entry,
        pause/resume or check-out responses."""
        data = data or {}
        elapsed = data.get("elapsedTime")
        if elapsed is None:
            elapsed = data.get("effectiveElapsedTime") or 0
        return cls(
            is_running=bool(data.get("isRunning")),
            is_checked_out=bool(data.get("isCheckedOut")),
            elapsed_time=max(0, int(elapsed)),
            paused_duration=max(0, int(data.get("pausedDuration") or 0)),
            check_in_time=parse_timestamp_ms(data.get("checkInTime") or data.get("checkIn")),
            last_paused=parse_timestamp_ms(data.get("lastPaused")),
            total_duration=data.get("totalDuration"),
        )


class ClientTimerEngine:
    """
    Single-writer predictive clock for one project.

    While running, a tick loop extrapolates elapsed time from the local anchor
    `local_start_timestamp`. Server snapshots are reconciled by rebasing that
    anchor so the extrapolation equals the server value at the instant of sync;
    the difference from the previous prediction is kept in `sync_drift_seconds`.
    Every mutation of the state happens synchronously, so ticks and rebases
    never interleave on the event loop.
    """

    def __init__(self, project_id: str, clock: Callable[[], int] = now_ms, tick_seconds: float = 1.0):
        self.project_id = project_id
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.state = ClientTimerState()
        self.revision = 0  # bumped by every local transition
        self.pending_mutations = 0
        self._tick_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[["ClientTimerEngine"], None]] = []
        self._disposed = False

    @property
    def timer_state(self) -> TimerState:
        return self.state.timer_state

    @property
    def is_running(self) -> bool:
        return self.state.timer_state == TimerState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.state.timer_state == TimerState.PAUSED

    @property
    def is_checked_out(self) -> bool:
        return self.state.timer_state == TimerState.CHECKED_OUT

    @property
    def is_idle(self) -> bool:
        return self.state.timer_state == TimerState.IDLE

    @property
    def elapsed(self) -> int:
        return self.state.elapsed_time_seconds

    @property
    def formatted_time(self) -> str:
        return format_clock(self.state.elapsed_time_seconds)

    @property
    def is_ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def add_listener(self, listener: Callable[["ClientTimerEngine"], None]):
        self._listeners.append(listener)

    def _notify(self):
        for listener in list(self._listeners):
            listener(self)

    def current_elapsed(self, now: int = None) -> int:
        state = self.state
        if state.timer_state == TimerState.RUNNING and state.local_start_timestamp is not None:
            now = self.clock() if now is None else now
            return max(0, (now - state.local_start_timestamp) // 1000)
        return state.elapsed_time_seconds

    def tick(self, now: int = None) -> int:
        if self.is_running:
            self.state.elapsed_time_seconds = self.current_elapsed(now)
            self._notify()
        return self.state.elapsed_time_seconds

    def reconcile(self, snapshot: ServerSnapshot, now: int = None) -> TimerState:
        """Replaces every derived timing field with values taken from `snapshot`."""
        now = self.clock() if now is None else now
        state = self.state
        previous = state.timer_state

        if snapshot.is_checked_out:
            total = snapshot.total_duration if snapshot.total_duration is not None else snapshot.elapsed_time
            state.timer_state = TimerState.CHECKED_OUT
            state.elapsed_time_seconds = max(0, int(total))
            state.local_start_timestamp = None
            state.last_pause_timestamp = None
            state.paused_duration_seconds = snapshot.paused_duration
            state.sync_drift_seconds = 0
            state.server_check_in_timestamp = snapshot.check_in_time
        elif snapshot.is_running and snapshot.check_in_time is not None:
            predicted = self.current_elapsed(now)
            state.sync_drift_seconds = snapshot.elapsed_time - predicted
            state.timer_state = TimerState.RUNNING
            state.local_start_timestamp = now - snapshot.elapsed_time * 1000
            state.elapsed_time_seconds = snapshot.elapsed_time
            state.paused_duration_seconds = snapshot.paused_duration
            state.last_pause_timestamp = None
            state.server_check_in_timestamp = snapshot.check_in_time
        elif snapshot.check_in_time is not None:
            state.timer_state = TimerState.PAUSED
            state.elapsed_time_seconds = snapshot.elapsed_time
            state.local_start_timestamp = None
            state.last_pause_timestamp = snapshot.last_paused if snapshot.last_paused is not None else now
            state.paused_duration_seconds = snapshot.paused_duration
            state.sync_drift_seconds = 0
            state.server_check_in_timestamp = snapshot.check_in_time
        else:
            state.timer_state = TimerState.IDLE
            state.elapsed_time_seconds = 0
            state.local_start_timestamp = None
            state.last_pause_timestamp = None
            state.paused_duration_seconds = 0
            state.sync_drift_seconds = 0
            state.server_check_in_timestamp = None

        state.last_server_sync_timestamp = now
        if previous != state.timer_state:
            logger.info(f"Timer {self.project_id}: {previous.value} -> {state.timer_state.value} (server)")
        elif state.sync_drift_seconds:
            logger.debug(f"Timer {self.project_id}: corrected drift of {state.sync_drift_seconds}s")

        self._update_tick_loop()
        self._notify()
        return state.timer_state

    # Optimistic transitions, applied before the server confirms.

    def _transitioned(self, previous: TimerState):
        self.revision += 1
        logger.info(f"Timer {self.project_id}: {previous.value} -> {self.state.timer_state.value} (local)")
        self._update_tick_loop()
        self._notify()

    def begin_check_in(self, now: int = None):
        now = self.clock() if now is None else now
        previous = self.state.timer_state
        self.state = ClientTimerState(
            timer_state=TimerState.RUNNING,
            local_start_timestamp=now,
            server_check_in_timestamp=now,
            last_server_sync_timestamp=self.state.last_server_sync_timestamp,
        )
        self._transitioned(previous)

    def begin_pause(self, now: int = None):
        now = self.clock() if now is None else now
        previous = self.state.timer_state
        self.state.elapsed_time_seconds = self.current_elapsed(now)
        self.state.timer_state = TimerState.PAUSED
        self.state.last_pause_timestamp = now
        self.state.local_start_timestamp = None
        self._transitioned(previous)

    def begin_resume(self, now: int = None):
        now = self.clock() if now is None else now
        previous = self.state.timer_state
        state = self.state
        if state.last_pause_timestamp is not None:
            state.paused_duration_seconds += max(0, (now - state.last_pause_timestamp) // 1000)
        state.timer_state = TimerState.RUNNING
        state.local_start_timestamp = now - state.elapsed_time_seconds * 1000
        state.last_pause_timestamp = None
        self._transitioned(previous)

    def begin_check_out(self, now: int = None):
        now = self.clock() if now is None else now
        previous = self.state.timer_state
        self.state.elapsed_time_seconds = self.current_elapsed(now)
        self.state.timer_state = TimerState.CHECKED_OUT
        self._transitioned(previous)

    def save(self) -> ClientTimerState:
        return replace(self.state)

    def restore(self, saved: ClientTimerState):
        """Rolls back to a state taken with `save`, drift and timestamps included."""
        previous = self.state.timer_state
        self.state = replace(saved)
        self.revision += 1
        logger.info(f"Timer {self.project_id}: rolled back {previous.value} -> {saved.timer_state.value}")
        self._update_tick_loop()
        self._notify()

    def _update_tick_loop(self):
        if self.is_running and not self._disposed:
            if not self.is_ticking:
                self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        else:
            self._stop_ticking()

    def _stop_ticking(self):
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    async def _tick_loop(self):
        self.tick()
        while True:
            await asyncio.sleep(self.tick_seconds)
            self.tick()

    def dispose(self):
        self._disposed = True
        self._stop_ticking()
        self._listeners.clear()
