# salesbot/scheduler.py
"""
Run Scheduler
-------------
Owns the per-conversation job table and the asyncio task behind each run.

✓ At most one run per conversation: every start cancels the previous run first
✓ Continuous mode: a random word every interval (+ jitter), stops on send failure
✓ Script mode: delegates to ScriptEngine, parks between steps while awaiting a reply
✓ All table mutations happen on the loop thread with no await between check and swap
"""

from __future__ import annotations

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterator, List, Mapping, Optional, Sequence

from salesbot.engine import ScriptEngine
from salesbot.run_state import (
    ContinuousRunState,
    DelayConfig,
    RunState,
    ScriptRunState,
    clamp_interval,
    next_transition,
)
from salesbot.runtime import get_logger
from salesbot.telegram_sender import TransportError

logger = get_logger("scheduler")

CONTINUOUS_JITTER_MS = (0, 250)
WORDS = (
    "apple", "river", "stone", "bright", "silent", "future", "mirror", "cloud",
    "ocean", "forest", "signal", "coffee", "window", "travel", "dream", "planet",
    "silver", "gold", "shadow", "light", "simple", "random", "focus", "energy",
    "market", "helper", "message", "reply", "launch", "build",
)


# ───────────────────────────── JOB TABLE ─────────────────────────────
@dataclass
class Job:
    conversation_id: Hashable
    state: RunState
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    task: Optional[asyncio.Task] = None


class JobTable:
    """conversation id → Job. Scoped to one scheduler; swap in another mapping if needed."""

    def __init__(self, backing: Optional[Dict[Hashable, Job]] = None):
        self._jobs: Dict[Hashable, Job] = backing if backing is not None else {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, conversation_id: Hashable) -> bool:
        return conversation_id in self._jobs

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._jobs))

    def get(self, conversation_id: Hashable) -> Optional[Job]:
        return self._jobs.get(conversation_id)

    def put(self, job: Job) -> None:
        self._jobs[job.conversation_id] = job

    def pop(self, conversation_id: Hashable) -> Optional[Job]:
        return self._jobs.pop(conversation_id, None)

    def is_current(self, job: Job) -> bool:
        cur = self._jobs.get(job.conversation_id)
        return cur is not None and cur.run_id == job.run_id

    def update(self, job: Job, state: RunState) -> bool:
        """Replace the job's state; ignored for a superseded job."""
        if not self.is_current(job):
            return False
        job.state = state
        return True

    def discard(self, job: Job) -> bool:
        """Remove the job only if it still owns its conversation."""
        if not self.is_current(job):
            return False
        del self._jobs[job.conversation_id]
        return True


# ───────────────────────────── SCHEDULER ─────────────────────────────
class RunScheduler:
    def __init__(
        self,
        engine: ScriptEngine,
        transport=None,
        jobs: Optional[JobTable] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        words: Sequence[str] = WORDS,
    ):
        self.engine = engine
        self.transport = transport or engine.transport
        self.jobs = jobs if jobs is not None else JobTable()
        self._sleep = sleep
        self.rng = rng or random.Random()
        self.words = tuple(words)

    @property
    def active_count(self) -> int:
        return len(self.jobs)

    # ---- lifecycle ----
    def _cancel(self, job: Job) -> None:
        task = job.task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _launch(self, job: Job, coro) -> None:
        self.jobs.put(job)
        job.task = asyncio.create_task(coro, name=f"run-{job.conversation_id}-{job.run_id[:8]}")

    def stop(self, conversation_id: Hashable) -> bool:
        """Cancel and forget the conversation's run. Stopping nothing is fine."""
        job = self.jobs.pop(conversation_id)
        if job is None:
            return False
        self._cancel(job)
        logger.info(f"🛑 chat={conversation_id}: {job.state.mode} run stopped")
        return True

    def status(self, conversation_id: Hashable) -> Optional[Dict[str, Any]]:
        job = self.jobs.get(conversation_id)
        return job.state.public() if job else None

    # ---- continuous mode ----
    def start_continuous(self, conversation_id: Hashable, interval_ms: int = 3000) -> ContinuousRunState:
        self.stop(conversation_id)
        state = ContinuousRunState(interval_ms=clamp_interval(interval_ms))
        job = Job(conversation_id=conversation_id, state=state)
        self._launch(job, self._continuous_loop(job))
        logger.info(f"▶️ chat={conversation_id}: continuous mode every {state.interval_ms}ms")
        return state

    async def _continuous_loop(self, job: Job) -> None:
        interval = job.state.interval_ms / 1000.0
        while self.jobs.is_current(job):
            await self._sleep(interval)
            await self._sleep(self.rng.randint(*CONTINUOUS_JITTER_MS) / 1000.0)
            if not self.jobs.is_current(job):
                return
            try:
                await self.transport.send_message(job.conversation_id, self.rng.choice(self.words))
            except TransportError as e:
                logger.error(
                    f"❌ chat={job.conversation_id}: sendMessage failed, stopping job "
                    f"(code={e.error_code}, description={e.description})"
                )
                self.jobs.discard(job)
                return

    # ---- script mode ----
    def start_script_run(
        self,
        conversation_id: Hashable,
        vars: Optional[Mapping[str, Any]] = None,
        *,
        delay_min_ms: Optional[int] = None,
        delay_max_ms: Optional[int] = None,
    ) -> ScriptRunState:
        """Start the script from its start step. Raises ScriptLoadError if no script is loaded."""
        self.stop(conversation_id)
        store = self.engine.store
        delay = DelayConfig.resolve(store.defaults.delay_ms, delay_min_ms, delay_max_ms)
        start = store.start_step
        state = ScriptRunState.begin(start.id if start else None, vars or {}, delay)
        job = Job(conversation_id=conversation_id, state=state)
        self._launch(job, self.engine.run(self.jobs, job))
        logger.info(
            f"▶️ chat={conversation_id}: script run from '{state.current_step_id}' "
            f"(delay {delay.min_ms}-{delay.max_ms}ms)"
        )
        return state

    async def handle_incoming(self, conversation_id: Hashable, text: str) -> bool:
        """Feed a user reply to the run if it is awaiting one. Returns True when consumed."""
        job = self.jobs.get(conversation_id)
        if job is None or not isinstance(job.state, ScriptRunState) or job.state.awaiting is None:
            return False

        transition = next_transition(
            job.state,
            text,
            conversation_id=conversation_id,
            now=self.engine.clock(),
            default_agent=self.engine.default_agent,
        )
        # Clearing 'awaiting' before any await keeps a second quick reply from re-triggering
        self.jobs.update(job, transition.state)
        job.task = asyncio.create_task(
            self.engine.resume(self.jobs, job, transition),
            name=f"reply-{conversation_id}-{job.run_id[:8]}",
        )
        return True

    # ---- helpers ----
    async def join(self, conversation_id: Hashable) -> None:
        """Wait for the conversation's current task (if any) to settle."""
        job = self.jobs.get(conversation_id)
        task = job.task if job else None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks: List[asyncio.Task] = []
        for cid in list(self.jobs):
            job = self.jobs.get(cid)
            if job and job.task:
                tasks.append(job.task)
            self.stop(cid)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["RunScheduler", "JobTable", "Job", "WORDS"]
