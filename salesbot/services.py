# salesbot/services.py
"""Wires store, transport, recorder, engine, scheduler and commands together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from salesbot.commands import CommandDispatcher
from salesbot.config import Settings, settings as load_settings
from salesbot.engine import ScriptEngine
from salesbot.lead_recorder import AirtableLeadRecorder
from salesbot.runtime import get_logger
from salesbot.scheduler import RunScheduler
from salesbot.script_store import ScriptLoadError, ScriptStore
from salesbot.telegram_sender import TelegramTransport

logger = get_logger("services")


@dataclass
class Services:
    settings: Settings
    store: ScriptStore
    transport: Any
    recorder: Any
    engine: ScriptEngine
    scheduler: RunScheduler
    dispatcher: CommandDispatcher

    def load_script(self) -> bool:
        """Best-effort initial load; script runs fail with a notice until one succeeds."""
        try:
            self.store.load()
            return True
        except ScriptLoadError as e:
            logger.error(f"❌ Initial script load failed: {e}")
            return False

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()


def build_services(
    s: Optional[Settings] = None,
    *,
    store: Optional[ScriptStore] = None,
    transport: Any = None,
    recorder: Any = None,
    sleep: Any = None,
    rng: Any = None,
) -> Services:
    s = s or load_settings()
    store = store or ScriptStore(s.SCRIPT_PATH)
    transport = transport or TelegramTransport.from_settings(s)
    if recorder is None:
        recorder = AirtableLeadRecorder.from_settings(s)
        if not recorder.configured:
            logger.warning("⚠️ Airtable lead table not configured; leads will fail to save")
    timing = {"sleep": sleep} if sleep is not None else {}
    engine = ScriptEngine(store, transport, recorder, rng=rng, default_agent=s.DEFAULT_AGENT_NAME, **timing)
    scheduler = RunScheduler(engine, transport, rng=rng, **timing)
    dispatcher = CommandDispatcher(
        scheduler,
        store,
        transport,
        recorder,
        default_interval_ms=s.CONTINUOUS_INTERVAL_MS,
        default_agent=s.DEFAULT_AGENT_NAME,
    )
    return Services(
        settings=s,
        store=store,
        transport=transport,
        recorder=recorder,
        engine=engine,
        scheduler=scheduler,
        dispatcher=dispatcher,
    )
