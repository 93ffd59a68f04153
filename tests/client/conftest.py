import pytest

from timetrack.exceptions import NetworkError

T0_MS = 1_772_442_000_000  # 2026-03-02T09:00:00Z


class FakeMsClock:
    def __init__(self, start=T0_MS):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


class FakeAPI:
    """Scripted stand-in for TimeTrackerAPI: each call pops the next queued result."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    def queue(self, name, *results):
        self.responses.setdefault(name, []).extend(results)

    async def _answer(self, name, *args):
        self.calls.append((name,) + args)
        queued = self.responses.get(name) or []
        result = queued.pop(0) if queued else NetworkError("no scripted response")
        if isinstance(result, Exception):
            raise result
        return result

    async def get_elapsed_time(self, project_id):
        return await self._answer("get_elapsed_time", project_id)

    async def check_in(self, project_id, sub_task_id=None):
        return await self._answer("check_in", project_id)

    async def pause_or_resume(self, project_id):
        return await self._answer("pause_or_resume", project_id)

    async def check_out(self, project_id):
        return await self._answer("check_out", project_id)

    async def aclose(self):
        self.calls.append(("aclose",))


async def no_sleep(delay):
    no_sleep.delays.append(delay)

no_sleep.delays = []


@pytest.fixture
def ms_clock():
    return FakeMsClock()


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
def sleeps():
    no_sleep.delays = []
    return no_sleep


def running_payload(elapsed, paused=0):
    return {"isRunning": True, "isCheckedOut": False, "elapsedTime": elapsed, "pausedDuration": paused,
            "checkInTime": "2026-03-02T08:00:00+00:00", "lastPaused": None}


def paused_payload(elapsed, paused=0):
    return {"isRunning": False, "isCheckedOut": False, "elapsedTime": elapsed, "pausedDuration": paused,
            "checkInTime": "2026-03-02T08:00:00+00:00", "lastPaused": "2026-03-02T08:30:00+00:00"}


def idle_payload():
    return {"isRunning": False, "isCheckedOut": False, "elapsedTime": 0, "pausedDuration": 0,
            "checkInTime": None, "lastPaused": None, "totalDuration": None}


def checked_out_payload(total):
    return {"isRunning": False, "isCheckedOut": True, "totalDuration": total, "elapsedTime": total,
            "formattedTime": "", "checkOutTime": "2026-03-02T10:00:00+00:00"}
