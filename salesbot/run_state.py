# salesbot/run_state.py
"""
Run State
---------
Immutable per-conversation run values, timing clamps and the pure reply
transition used by the script engine. Every transition returns a new
state; the job table swaps it in.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from salesbot.intent import NO_LABEL, YES_LABEL, classify_yes_no
from salesbot.lead_recorder import STATUS_PROCESSED, LeadRecord
from salesbot.script_store import Bounds, Expect, Step

# -----------------------------
# Constants
# -----------------------------
MODE_CONTINUOUS = "continuous"
MODE_SCRIPT = "script"

PHASE_EMITTING = "emitting"
PHASE_AWAITING = "awaiting-response"
PHASE_DONE = "done"
PHASE_ERROR = "error"

INTERVAL_MIN_MS = 2000
INTERVAL_MAX_MS = 60000
DELAY_MIN_MS = 0
DELAY_MAX_MS = 60000
DEFAULT_AGENT_NAME = "Никита"

NOTICES = {
    "done": "Готово.",
    "ack": "Ок, понял.",
    "script_missing": "Скрипт не найден/пустой.",
    "step_missing": "Следующий шаг не найден.",
    "failed": "Ошибка при прогоне скрипта.",
}


# -----------------------------
# Timing helpers
# -----------------------------
def clamp_ms(ms: Union[int, float], lo: int, hi: int) -> int:
    return int(max(lo, min(hi, int(ms))))


def clamp_interval(ms: Union[int, float]) -> int:
    return clamp_ms(ms, INTERVAL_MIN_MS, INTERVAL_MAX_MS)


def clamp_delay(ms: Union[int, float]) -> int:
    return clamp_ms(ms, DELAY_MIN_MS, DELAY_MAX_MS)


def rand_between(rng: random.Random, lo: int, hi: int) -> int:
    if lo > hi:
        lo, hi = hi, lo
    return rng.randint(lo, hi)


@dataclass(frozen=True)
class DelayConfig:
    min_ms: int
    max_ms: int

    @classmethod
    def resolve(
        cls,
        defaults: Optional[Bounds],
        min_ms: Optional[int] = None,
        max_ms: Optional[int] = None,
    ) -> "DelayConfig":
        """Explicit bounds win over script defaults; both are clamped to [0, 60000]."""
        lo = min_ms if min_ms is not None else (defaults.min if defaults else 2000)
        hi = max_ms if max_ms is not None else (defaults.max if defaults else 5000)
        lo, hi = clamp_delay(lo), clamp_delay(hi)
        if lo > hi:
            lo, hi = hi, lo
        return cls(min_ms=lo, max_ms=hi)

    def draw(self, rng: random.Random) -> int:
        return clamp_delay(rand_between(rng, self.min_ms, self.max_ms))


# -----------------------------
# States
# -----------------------------
@dataclass(frozen=True)
class ContinuousRunState:
    interval_ms: int
    mode: str = MODE_CONTINUOUS

    def public(self) -> Dict[str, Any]:
        return {"mode": self.mode, "interval_ms": self.interval_ms}


@dataclass(frozen=True)
class ScriptRunState:
    current_step_id: Optional[str]
    vars: Mapping[str, str]
    delay: DelayConfig
    awaiting: Optional[Expect] = None
    phase: str = PHASE_EMITTING
    mode: str = field(default=MODE_SCRIPT)

    @classmethod
    def begin(cls, step_id: Optional[str], vars: Mapping[str, Any], delay: DelayConfig) -> "ScriptRunState":
        frozen = MappingProxyType({str(k): "" if v is None else str(v) for k, v in (vars or {}).items()})
        return cls(current_step_id=step_id, vars=frozen, delay=delay)

    def public(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "current_step_id": self.current_step_id,
            "phase": self.phase,
            "awaiting": self.awaiting.type if self.awaiting else None,
            "vars": dict(self.vars),
            "delay": {"min_ms": self.delay.min_ms, "max_ms": self.delay.max_ms},
        }


RunState = Union[ContinuousRunState, ScriptRunState]


# -----------------------------
# Transitions
# -----------------------------
@dataclass(frozen=True)
class Transition:
    state: ScriptRunState
    notice: Optional[str] = None
    emit_step_id: Optional[str] = None
    finish_after_emit: bool = False
    lead: Optional[LeadRecord] = None


def after_emission(state: ScriptRunState, step: Step) -> Transition:
    """Where a run goes once a step's messages are out."""
    if step.expect:
        return Transition(state=replace(state, current_step_id=step.id, awaiting=step.expect, phase=PHASE_AWAITING))
    return Transition(state=replace(state, current_step_id=step.id, phase=PHASE_DONE), notice=NOTICES["done"])


def next_transition(
    state: ScriptRunState,
    text: str,
    *,
    conversation_id: Any = None,
    now: str = "",
    default_agent: str = DEFAULT_AGENT_NAME,
) -> Transition:
    """Next state for a reply received while the run awaits a response."""
    expect = state.awaiting
    if expect is None:
        return Transition(state=state)

    if expect.type == "yes_no":
        label = classify_yes_no(text)
        if label == YES_LABEL:
            target = expect.yes
        elif label == NO_LABEL and expect.no:
            target = expect.no
        else:
            return Transition(state=replace(state, awaiting=None, phase=PHASE_DONE), notice=NOTICES["ack"])
        return Transition(
            state=replace(state, current_step_id=target, awaiting=None, phase=PHASE_EMITTING),
            emit_step_id=target,
        )

    # free_text: the reply is the captured contact
    contact = (text or "").strip()
    lead = None
    if contact:
        lead = LeadRecord(
            timestamp=now,
            client_name=state.vars.get("client_name") or "",
            contact=contact,
            conversation_id=conversation_id,
            status=STATUS_PROCESSED,
            agent=state.vars.get("my_name") or default_agent,
        )
    return Transition(
        state=replace(state, current_step_id=expect.next, awaiting=None, phase=PHASE_EMITTING),
        emit_step_id=expect.next,
        finish_after_emit=True,
        lead=lead,
    )
