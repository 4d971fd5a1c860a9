# salesbot/script_store.py
"""
Script Store
------------
Loads the declarative sales script (JSON), validates its structure and
keeps an id-indexed copy in memory until the next reload.

Script shape:
    {
      "defaults": {"jitterMs": {"min": 0, "max": 250}, "delayMs": {"min": 2000, "max": 5000}},
      "steps": [
        {"id": "intro", "on": "start", "messages": ["Hi {{client_name}}"],
         "expect": {"type": "yes_no", "yes": "pitch"}},
        {"id": "pitch", "messages": ["..."], "expect": {"type": "free_text", "next": "bye"}},
        {"id": "bye", "messages": ["..."]}
      ]
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from salesbot.runtime import get_logger

logger = get_logger("script_store")

DEFAULT_JITTER_MS = (0, 250)
DEFAULT_DELAY_MS = (2000, 5000)


# -----------------------------
# Errors
# -----------------------------
class ScriptLoadError(RuntimeError):
    """Script definition is unreadable or malformed, or nothing is loaded yet."""


class StepNotFoundError(LookupError):
    """A branch points at a step id the script does not define."""

    def __init__(self, step_id: Optional[str]) -> None:
        super().__init__(f"Step not found: {step_id!r}")
        self.step_id = step_id


# -----------------------------
# Schema
# -----------------------------
class Bounds(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int = Field(ge=0)
    max: int = Field(ge=0)


class Defaults(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    jitter_ms: Bounds = Field(
        default_factory=lambda: Bounds(min=DEFAULT_JITTER_MS[0], max=DEFAULT_JITTER_MS[1]),
        alias="jitterMs",
    )
    delay_ms: Bounds = Field(
        default_factory=lambda: Bounds(min=DEFAULT_DELAY_MS[0], max=DEFAULT_DELAY_MS[1]),
        alias="delayMs",
    )


class Expect(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["yes_no", "free_text"]
    yes: Optional[str] = None
    no: Optional[str] = None
    next: Optional[str] = None

    @model_validator(mode="after")
    def _check_targets(self) -> "Expect":
        if self.type == "yes_no" and not self.yes:
            raise ValueError("yes_no expectation requires a 'yes' target")
        if self.type == "free_text" and not self.next:
            raise ValueError("free_text expectation requires a 'next' target")
        return self


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    messages: List[str] = Field(default_factory=list)
    on: Optional[str] = None
    expect: Optional[Expect] = None


class Script(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: List[Step]
    defaults: Defaults = Field(default_factory=Defaults)

    @model_validator(mode="after")
    def _unique_ids(self) -> "Script":
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id {step.id!r}")
            seen.add(step.id)
        return self


@dataclass(frozen=True)
class _Loaded:
    script: Script
    index: Dict[str, Step]
    source: str


# -----------------------------
# Store
# -----------------------------
class ScriptStore:
    """In-memory holder of the current script; reload swaps it atomically."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._current: Optional[_Loaded] = None

    # ---- loading ----
    def load(self, path: Optional[str] = None) -> Script:
        src = path or self.path
        if not src:
            raise ScriptLoadError("No script path configured")
        try:
            with open(src, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ScriptLoadError(f"Cannot read script {src}: {e}") from e
        except json.JSONDecodeError as e:
            raise ScriptLoadError(f"Script {src} is not valid JSON: {e}") from e
        return self.load_data(data, source=os.path.basename(src))

    def load_data(self, data: Any, source: str = "<memory>") -> Script:
        try:
            script = Script.model_validate(data)
        except ValidationError as e:
            raise ScriptLoadError(f"Script {source} has invalid structure: {e}") from e
        self._current = _Loaded(script=script, index={s.id: s for s in script.steps}, source=source)
        logger.info(f"📜 Script loaded from {source}: {len(script.steps)} steps")
        return script

    # ---- access ----
    @property
    def loaded(self) -> bool:
        return self._current is not None

    @property
    def source(self) -> Optional[str]:
        return self._current.source if self._current else None

    def _require(self) -> _Loaded:
        if self._current is None:
            raise ScriptLoadError("Script is not loaded")
        return self._current

    @property
    def script(self) -> Script:
        return self._require().script

    @property
    def defaults(self) -> Defaults:
        return self._require().script.defaults

    @property
    def start_step(self) -> Optional[Step]:
        steps = self._require().script.steps
        for step in steps:
            if step.on == "start":
                return step
        return steps[0] if steps else None

    def find_step(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        return self._require().index.get(step_id)

    def get_step(self, step_id: Optional[str]) -> Step:
        step = self.find_step(step_id)
        if step is None:
            raise StepNotFoundError(step_id)
        return step

    def describe(self) -> str:
        cur = self._require()
        start = self.start_step
        lines = [f"Скрипт загружен из {cur.source}", f"Шагов: {len(cur.script.steps)}"]
        if start:
            lines.append(f"Старт: {start.id}")
        for step in cur.script.steps:
            exp = step.expect.type if step.expect else "—"
            lines.append(f"• {step.id}: {len(step.messages)} сообщ., ожидание: {exp}")
        return "\n".join(lines)


__all__ = [
    "ScriptStore",
    "Script",
    "Step",
    "Expect",
    "Defaults",
    "Bounds",
    "ScriptLoadError",
    "StepNotFoundError",
]
