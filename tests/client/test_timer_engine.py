import asyncio

from timetrack.client.timer_engine import (ClientTimerEngine, ServerSnapshot, TimerState, format_clock,
                                           parse_timestamp_ms)

from tests.client.conftest import (checked_out_payload, idle_payload, paused_payload, running_payload)


def snapshot(payload):
    return ServerSnapshot.from_payload(payload)


async def test_reconcile_running_matches_server_at_sync(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)

    engine.reconcile(snapshot(running_payload(125, paused=10)))

    assert engine.timer_state == TimerState.RUNNING
    assert engine.current_elapsed() == 125
    assert engine.state.paused_duration_seconds == 10
    assert engine.state.last_server_sync_timestamp == ms_clock.now
    engine.dispose()


async def test_elapsed_grows_one_second_per_second_between_syncs(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(100)))

    ms_clock.advance(7.5)

    assert engine.tick() == 107
    engine.dispose()


async def test_drift_is_recorded_and_absorbed(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(100)))
    ms_clock.advance(30)

    engine.reconcile(snapshot(running_payload(127)))

    assert engine.state.sync_drift_seconds == -3
    assert engine.current_elapsed() == 127
    ms_clock.advance(1)
    assert engine.current_elapsed() == 128
    engine.dispose()


async def test_reconcile_is_idempotent(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(60)))
    first = engine.save()

    engine.reconcile(snapshot(running_payload(60)))

    assert engine.state.local_start_timestamp == first.local_start_timestamp
    assert engine.state.elapsed_time_seconds == first.elapsed_time_seconds
    assert engine.state.sync_drift_seconds == 0
    engine.dispose()


async def test_reconcile_paused_freezes_elapsed(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(60)))

    engine.reconcile(snapshot(paused_payload(45, paused=5)))
    ms_clock.advance(100)

    assert engine.timer_state == TimerState.PAUSED
    assert engine.tick() == 45
    assert engine.state.last_pause_timestamp == parse_timestamp_ms("2026-03-02T08:30:00+00:00")
    assert not engine.is_ticking


async def test_reconcile_checked_out_stops_ticking(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(60)))
    assert engine.is_ticking

    engine.reconcile(snapshot(checked_out_payload(3600)))

    assert engine.timer_state == TimerState.CHECKED_OUT
    assert engine.elapsed == 3600
    assert not engine.is_ticking


async def test_reconcile_idle_clears_everything(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(60)))

    engine.reconcile(snapshot(idle_payload()))

    assert engine.timer_state == TimerState.IDLE
    assert engine.elapsed == 0
    assert engine.state.local_start_timestamp is None
    assert engine.state.sync_drift_seconds == 0
    assert not engine.is_ticking


async def test_optimistic_pause_and_resume(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.begin_check_in()
    ms_clock.advance(30)

    engine.begin_pause()
    assert engine.timer_state == TimerState.PAUSED
    assert engine.elapsed == 30

    ms_clock.advance(60)
    engine.begin_resume()
    assert engine.state.paused_duration_seconds == 60
    assert engine.current_elapsed() == 30

    ms_clock.advance(60)
    assert engine.tick() == 90
    assert engine.revision == 3
    engine.dispose()


async def test_restore_returns_exact_snapshot(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.reconcile(snapshot(running_payload(60)))
    saved = engine.save()
    ms_clock.advance(5)

    engine.begin_check_out()
    engine.restore(saved)

    assert engine.state == saved
    assert engine.is_ticking
    engine.dispose()


async def test_tick_loop_updates_elapsed():
    engine = ClientTimerEngine("p1", tick_seconds=0.01)
    seen = []
    engine.add_listener(lambda e: seen.append(e.elapsed))

    engine.begin_check_in()
    await asyncio.sleep(0.05)

    assert len(seen) >= 3
    engine.dispose()
    assert not engine.is_ticking


async def test_dispose_prevents_restart(ms_clock):
    engine = ClientTimerEngine("p1", clock=ms_clock)
    engine.dispose()

    engine.reconcile(snapshot(running_payload(10)))

    assert not engine.is_ticking


def test_snapshot_from_check_in_entry():
    entry = {"isRunning": True, "isCheckedOut": False, "effectiveElapsedTime": 0, "pausedDuration": 0,
             "checkIn": "2026-03-02T09:00:00+00:00"}

    parsed = ServerSnapshot.from_payload(entry)

    assert parsed.is_running
    assert parsed.elapsed_time == 0
    assert parsed.check_in_time == 1_772_442_000_000


def test_format_clock():
    assert format_clock(0) == "00:00:00"
    assert format_clock(3725) == "01:02:05"
