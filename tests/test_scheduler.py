# tests/test_scheduler.py
import asyncio
import random

import pytest

from conftest import no_sleep, yield_sleep
from salesbot.engine import ScriptEngine
from salesbot.scheduler import WORDS, Job, JobTable, RunScheduler
from salesbot.script_store import ScriptLoadError, ScriptStore
from salesbot.run_state import ContinuousRunState

SCRIPT = {
    "defaults": {"jitterMs": {"min": 0, "max": 0}, "delayMs": {"min": 2000, "max": 5000}},
    "steps": [
        {"id": "S1", "on": "start", "messages": ["Hello {{name}}"], "expect": {"type": "yes_no", "yes": "S2"}},
        {"id": "S2", "messages": ["Bye"]},
    ],
}


def _scheduler(transport, *, sleep=no_sleep, script=SCRIPT, jobs=None):
    store = ScriptStore()
    if script is not None:
        store.load_data(script)
    engine = ScriptEngine(store, transport, sleep=sleep, rng=random.Random(0))
    return RunScheduler(engine, transport, jobs, sleep=sleep, rng=random.Random(0))


# ---------------- job table ----------------
def test_job_table_ownership_rules():
    jobs = JobTable()
    first = Job("A", ContinuousRunState(3000))
    jobs.put(first)
    second = Job("A", ContinuousRunState(5000))
    jobs.put(second)

    assert len(jobs) == 1
    assert not jobs.is_current(first)
    assert jobs.update(first, ContinuousRunState(9000)) is False
    assert jobs.discard(first) is False
    assert jobs.get("A") is second

    assert jobs.update(second, ContinuousRunState(7000)) is True
    assert jobs.get("A").state.interval_ms == 7000
    assert jobs.discard(second) is True
    assert "A" not in jobs


def test_injected_backing_map_is_used():
    backing = {}
    jobs = JobTable(backing)
    jobs.put(Job("A", ContinuousRunState(3000)))
    assert "A" in backing


# ---------------- continuous mode ----------------
def test_continuous_interval_is_clamped(transport):
    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        assert sched.start_continuous("A", 10).interval_ms == 2000
        assert sched.start_continuous("A", 10**7).interval_ms == 60000
        assert sched.status("A") == {"mode": "continuous", "interval_ms": 60000}
        sched.stop("A")

    asyncio.run(scenario())


def test_continuous_mode_emits_words_until_stopped(transport):
    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        sched.start_continuous("A", 3000)
        task = sched.jobs.get("A").task
        for _ in range(30):
            await asyncio.sleep(0)
        assert sched.stop("A") is True
        await asyncio.gather(task, return_exceptions=True)
        count = len(transport.sent)
        for _ in range(10):
            await asyncio.sleep(0)
        return count

    count = asyncio.run(scenario())
    assert count >= 1
    assert len(transport.sent) == count
    assert all(word in WORDS for word in transport.texts("A"))


def test_transport_failure_in_continuous_mode_removes_job(transport):
    transport.fail_for.add("A")

    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        sched.start_continuous("A", 2000)
        await sched.join("A")
        assert sched.status("A") is None
        assert sched.active_count == 0

    asyncio.run(scenario())


# ---------------- restart / stop ----------------
def test_restart_leaves_exactly_one_run(transport):
    async def scenario():
        sched = _scheduler(transport)
        sched.start_script_run("A", {"name": "Ann"})
        first = sched.jobs.get("A")
        sched.start_script_run("A", {"name": "Ann"})
        second = sched.jobs.get("A")
        await asyncio.gather(first.task, return_exceptions=True)
        await sched.join("A")

        assert first.task.cancelled()
        assert second is not first
        assert sched.active_count == 1
        assert transport.texts("A") == ["Hello Ann"]

    asyncio.run(scenario())


def test_switching_modes_replaces_the_run(transport):
    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        sched.start_continuous("A", 3000)
        sched.start_script_run("A", {"name": "Ann"})
        assert sched.status("A")["mode"] == "script"
        assert sched.active_count == 1
        await sched.shutdown()

    asyncio.run(scenario())


def test_stop_is_idempotent(transport):
    async def scenario():
        sched = _scheduler(transport)
        assert sched.stop("nobody") is False
        sched.start_script_run("A", {"name": "Ann"})
        assert sched.stop("A") is True
        assert sched.stop("A") is False
        assert sched.status("A") is None

    asyncio.run(scenario())


def test_stop_interrupts_an_in_flight_sleep(transport):
    gate = asyncio.Event()

    async def gated_sleep(_seconds):
        await gate.wait()

    async def scenario():
        sched = _scheduler(transport, sleep=gated_sleep, script={
            "defaults": {"jitterMs": {"min": 5, "max": 5}, "delayMs": {"min": 0, "max": 0}},
            "steps": [{"id": "S1", "messages": ["one", "two"]}],
        })
        sched.start_script_run("A", {})
        task = sched.jobs.get("A").task
        await asyncio.sleep(0)  # task is now parked in the jitter sleep
        sched.stop("A")
        gate.set()
        await asyncio.gather(task, return_exceptions=True)
        assert task.cancelled()

    asyncio.run(scenario())
    assert transport.sent == []


def test_runs_in_different_conversations_are_independent(transport):
    transport.fail_for.add("B")

    async def scenario():
        sched = _scheduler(transport)
        sched.start_script_run("A", {"name": "Ann"})
        sched.start_script_run("B", {"name": "Bob"})
        await sched.join("A")
        await sched.join("B")
        assert sched.status("A")["awaiting"] == "yes_no"
        assert sched.status("B") is None

    asyncio.run(scenario())


# ---------------- script options / replies ----------------
def test_delay_options_override_defaults_and_clamp(transport):
    async def scenario():
        sched = _scheduler(transport)
        state = sched.start_script_run("A", {"name": "Ann"})
        assert (state.delay.min_ms, state.delay.max_ms) == (2000, 5000)
        state = sched.start_script_run("A", {"name": "Ann"}, delay_min_ms=-10, delay_max_ms=120000)
        assert (state.delay.min_ms, state.delay.max_ms) == (0, 60000)
        await sched.shutdown()

    asyncio.run(scenario())


def test_script_run_requires_loaded_script(transport):
    async def scenario():
        sched = _scheduler(transport, script=None)
        with pytest.raises(ScriptLoadError):
            sched.start_script_run("A", {})
        assert sched.status("A") is None

    asyncio.run(scenario())


def test_replies_are_ignored_unless_awaiting(transport):
    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        assert await sched.handle_incoming("nobody", "да") is False

        sched.start_continuous("C", 3000)
        assert await sched.handle_incoming("C", "да") is False

        sched.start_script_run("A", {"name": "Ann"})
        # still emitting: nothing is awaited yet
        assert await sched.handle_incoming("A", "да") is False
        await sched.join("A")
        assert await sched.handle_incoming("A", "да") is True
        # the first reply already cleared 'awaiting'
        assert await sched.handle_incoming("A", "да") is False
        await sched.join("A")
        await sched.shutdown()

    asyncio.run(scenario())
    assert transport.texts("A") == ["Hello Ann", "Bye", "Готово."]


def test_shutdown_stops_everything(transport):
    async def scenario():
        sched = _scheduler(transport, sleep=yield_sleep)
        sched.start_continuous("A", 3000)
        sched.start_continuous("B", 3000)
        await sched.shutdown()
        assert sched.active_count == 0

    asyncio.run(scenario())
