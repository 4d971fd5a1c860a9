# salesbot/engine.py
"""
Script Execution Engine
-----------------------
Walks script steps for one conversation:
  • emits each step's messages with jitter + randomized pacing
  • parks the run in 'awaiting-response' when a step expects a reply
  • on a reply, follows the pure transition from run_state and keeps going
  • any failure is logged, the user gets a short notice, the run is removed
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

from salesbot.lead_recorder import LeadRecord, RecorderError
from salesbot.run_state import (
    DEFAULT_AGENT_NAME,
    NOTICES,
    Transition,
    after_emission,
    rand_between,
)
from salesbot.runtime import get_logger, iso_now
from salesbot.script_store import ScriptStore, Step, StepNotFoundError
from salesbot.telegram_sender import TransportError
from salesbot.templates import render_template

logger = get_logger("engine")

Sleep = Callable[[float], Awaitable[Any]]


class ScriptEngine:
    def __init__(
        self,
        store: ScriptStore,
        transport,
        recorder=None,
        *,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], str] = iso_now,
        default_agent: str = DEFAULT_AGENT_NAME,
    ):
        self.store = store
        self.transport = transport
        self.recorder = recorder
        self._sleep = sleep
        self.rng = rng or random.Random()
        self.clock = clock
        self.default_agent = default_agent

    # ---------------------------------------------------------------
    # Entry points (each runs as the job's task)
    # ---------------------------------------------------------------
    async def run(self, jobs, job) -> None:
        """Start a script run at the script's start step."""
        try:
            step = self.store.find_step(job.state.current_step_id)
            if step is None:
                logger.warning(f"⚠️ chat={job.conversation_id}: script has no start step")
                await self._send(jobs, job, NOTICES["script_missing"])
                jobs.discard(job)
                return
            await self._emit_and_settle(jobs, job, step, finish=False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(jobs, job, e)

    async def resume(self, jobs, job, transition: Transition) -> None:
        """Carry out a reply transition computed by next_transition()."""
        try:
            if transition.lead is not None:
                await self._record(transition.lead)

            if transition.emit_step_id is None:
                if transition.notice:
                    await self._send(jobs, job, transition.notice)
                jobs.discard(job)
                return

            try:
                step = self.store.get_step(transition.emit_step_id)
            except StepNotFoundError as e:
                logger.warning(f"⚠️ chat={job.conversation_id}: {e}")
                await self._send(jobs, job, NOTICES["step_missing"])
                jobs.discard(job)
                return

            await self._emit_and_settle(jobs, job, step, finish=transition.finish_after_emit)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail(jobs, job, e)

    # ---------------------------------------------------------------
    # Emission
    # ---------------------------------------------------------------
    async def _sleep_ms(self, ms: int) -> None:
        if ms > 0:
            await self._sleep(ms / 1000.0)

    async def emit_step(self, jobs, job, step: Step) -> int:
        """Send a step's messages; returns how many were sent."""
        jitter = self.store.defaults.jitter_ms
        sent = 0
        for template in step.messages:
            await self._sleep_ms(rand_between(self.rng, jitter.min, jitter.max))
            text = render_template(template, job.state.vars)
            if text:
                await self._send(jobs, job, text)
                sent += 1
            await self._sleep_ms(job.state.delay.draw(self.rng))
        return sent

    async def _emit_and_settle(self, jobs, job, step: Step, *, finish: bool) -> None:
        await self.emit_step(jobs, job, step)
        if finish:
            await self._send(jobs, job, NOTICES["done"])
            jobs.discard(job)
            return

        transition = after_emission(job.state, step)
        if transition.notice:
            jobs.update(job, transition.state)
            await self._send(jobs, job, transition.notice)
            jobs.discard(job)
        else:
            jobs.update(job, transition.state)
            logger.info(f"⏳ chat={job.conversation_id}: awaiting {step.expect.type} on step '{step.id}'")

    async def _send(self, jobs, job, text: str) -> None:
        # Nothing goes out once the run was stopped or superseded
        if not jobs.is_current(job):
            raise asyncio.CancelledError()
        await self.transport.send_message(job.conversation_id, text)

    # ---------------------------------------------------------------
    # Side effects
    # ---------------------------------------------------------------
    async def _record(self, lead: LeadRecord) -> None:
        if self.recorder is None:
            logger.warning(f"⚠️ No lead recorder configured; lead for chat={lead.conversation_id} not saved")
            return
        try:
            await asyncio.to_thread(self.recorder.upsert, lead)
        except RecorderError as e:
            logger.error(f"❌ Lead save failed (run continues): {e}", exc_info=True)
        except Exception as e:
            # lead capture never aborts the run
            logger.error(f"❌ Lead recorder crashed (run continues): {e!r}", exc_info=True)

    async def _fail(self, jobs, job, err: Exception) -> None:
        if isinstance(err, TransportError):
            logger.error(
                f"❌ chat={job.conversation_id}: send failed, stopping run "
                f"(code={err.error_code}, description={err.description})"
            )
        else:
            logger.error(f"❌ chat={job.conversation_id}: script run failed: {err}", exc_info=True)
        if jobs.is_current(job):
            try:
                await self.transport.send_message(job.conversation_id, NOTICES["failed"])
            except TransportError as notify_err:
                logger.warning(f"⚠️ Failure notice not delivered to chat={job.conversation_id}: {notify_err}")
        jobs.discard(job)
