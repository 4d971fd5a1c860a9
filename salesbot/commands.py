# salesbot/commands.py
"""
Operator Commands
-----------------
Maps Telegram text to scheduler / script store / recorder operations.

    /start                 help
    /words_start           continuous mode (~3s)
    /interval <sec>        continuous mode with a custom interval
    /stop                  stop whatever runs in this chat
    /status                current run summary
    /script_show           load (if needed) and summarise the script
    /script_reload         re-read the script definition
    /sheet_test            recorder smoke test
    /test_lead k=v ...     run the script as if this chat were the client

Anything that is not a command goes to the scheduler as a possible reply.
"""

from __future__ import annotations

import asyncio
import math
import re
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

from salesbot.lead_recorder import STATUS_TEST, LeadRecord, RecorderError
from salesbot.run_state import INTERVAL_MAX_MS, clamp_interval
from salesbot.runtime import get_logger, iso_now
from salesbot.scheduler import RunScheduler
from salesbot.script_store import ScriptLoadError, ScriptStore

logger = get_logger("commands")

HELP_TEXT = (
    "Режимы:\n"
    "- /words_start — тестовый режим (рандомные слова)\n"
    "- /test_lead ... — прогон скрипта (как будто клиент)\n"
    "- /script_show — скрипт\n"
    "- /stop — остановить"
)

LEAD_VAR_DEFAULTS = {
    "client_name": "",
    "my_name": "Никита",
    "my_role": "помощник",
    "location_type": "метро",
    "location_value": "не указано",
}

_VAR_TOKEN = re.compile(r"^([a-zA-Z0-9_]+)=(.+)$")


# -----------------------------
# Parsing helpers
# -----------------------------
def parse_command(text: str) -> Optional[Tuple[str, str]]:
    """'/cmd@bot args' → ('cmd', 'args'); None when text is not a command."""
    stripped = (text or "").strip()
    if not stripped.startswith("/"):
        return None
    head, _, rest = stripped.partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    if not name:
        return None
    return name, rest.strip()


def parse_vars(args: str, defaults: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """'client_name=Анна my_name=Иван' → dict, with lead defaults filled in."""
    out: Dict[str, str] = {}
    for token in (args or "").split():
        m = _VAR_TOKEN.match(token)
        if m:
            out[m.group(1)] = m.group(2)
    for key, value in (defaults or {}).items():
        out.setdefault(key, value)
    return out


def parse_interval_seconds(args: str) -> Optional[float]:
    parts = (args or "").split()
    if not parts:
        return None
    try:
        sec = float(parts[0])
    except ValueError:
        return None
    if not math.isfinite(sec) or sec <= 0:
        return None
    # huge values would overflow once converted to ms
    return min(sec, INTERVAL_MAX_MS / 1000)


# -----------------------------
# Dispatcher
# -----------------------------
class CommandDispatcher:
    def __init__(
        self,
        scheduler: RunScheduler,
        store: ScriptStore,
        transport,
        recorder=None,
        *,
        default_interval_ms: int = 3000,
        default_agent: str = "Никита",
    ):
        self.scheduler = scheduler
        self.store = store
        self.transport = transport
        self.recorder = recorder
        self.default_interval_ms = default_interval_ms
        self.default_agent = default_agent
        self._handlers: Dict[str, Callable[[Hashable, str], Awaitable[None]]] = {
            "start": self.cmd_start,
            "help": self.cmd_start,
            "words_start": self.cmd_words_start,
            "stop": self.cmd_stop,
            "interval": self.cmd_interval,
            "status": self.cmd_status,
            "script_show": self.cmd_script_show,
            "script_reload": self.cmd_script_reload,
            "sheet_test": self.cmd_sheet_test,
            "test_lead": self.cmd_test_lead,
        }

    async def reply(self, chat_id: Hashable, text: str) -> None:
        await self.transport.send_message(chat_id, text)

    async def dispatch(self, chat_id: Hashable, text: Optional[str]) -> Dict[str, Any]:
        """Route one inbound text. Returns a small summary for logs / HTTP responses."""
        if not text:
            return {"handled": False, "kind": "empty"}

        parsed = parse_command(text)
        if parsed is None:
            consumed = await self.scheduler.handle_incoming(chat_id, text)
            return {"handled": consumed, "kind": "reply"}

        name, args = parsed
        handler = self._handlers.get(name)
        if handler is None:
            return {"handled": False, "kind": "command", "command": name}
        await handler(chat_id, args)
        return {"handled": True, "kind": "command", "command": name}

    def _ensure_script(self) -> None:
        if not self.store.loaded:
            self.store.load()

    # ---- handlers ----
    async def cmd_start(self, chat_id: Hashable, args: str) -> None:
        await self.reply(chat_id, HELP_TEXT)

    async def cmd_words_start(self, chat_id: Hashable, args: str) -> None:
        state = self.scheduler.start_continuous(chat_id, self.default_interval_ms)
        await self.reply(
            chat_id,
            f"OK. Random words every ~{state.interval_ms / 1000:g} seconds. "
            "/stop to stop, /interval <sec> to change.",
        )

    async def cmd_stop(self, chat_id: Hashable, args: str) -> None:
        self.scheduler.stop(chat_id)
        await self.reply(chat_id, "Остановлено.")

    async def cmd_interval(self, chat_id: Hashable, args: str) -> None:
        sec = parse_interval_seconds(args)
        if sec is None:
            await self.reply(chat_id, "Usage: /interval 3  (seconds). Min is 2 seconds.")
            return
        ms = clamp_interval(round(sec * 1000))
        self.scheduler.start_continuous(chat_id, ms)
        await self.reply(chat_id, f"Interval set to ~{ms / 1000:g}s")

    async def cmd_status(self, chat_id: Hashable, args: str) -> None:
        status = self.scheduler.status(chat_id)
        if not status:
            await self.reply(chat_id, "Ничего не запущено.")
            return
        if status["mode"] == "continuous":
            await self.reply(chat_id, f"Words: running. Interval: {status['interval_ms'] / 1000:g}s")
            return
        await self.reply(
            chat_id,
            f"Script: step={status['current_step_id']}, awaiting={status['awaiting'] or 'none'}",
        )

    async def cmd_script_show(self, chat_id: Hashable, args: str) -> None:
        try:
            self._ensure_script()
        except ScriptLoadError as e:
            logger.error(f"❌ Script load failed: {e}")
            await self.reply(chat_id, "Скрипт не загружен: ошибка чтения, подробности в логах.")
            return
        await self.reply(chat_id, self.store.describe())

    async def cmd_script_reload(self, chat_id: Hashable, args: str) -> None:
        try:
            self.store.load()
        except ScriptLoadError as e:
            logger.error(f"❌ Script reload failed: {e}")
            note = " Остался предыдущий скрипт." if self.store.loaded else ""
            await self.reply(chat_id, "Скрипт не перезагружен: ошибка в файле." + note)
            return
        await self.reply(chat_id, self.store.describe())

    async def cmd_sheet_test(self, chat_id: Hashable, args: str) -> None:
        if self.recorder is None:
            await self.reply(chat_id, "Sheets: recorder is not configured.")
            return
        record = LeadRecord(
            timestamp=iso_now(),
            client_name="TEST",
            contact="ok",
            conversation_id=chat_id,
            status=STATUS_TEST,
            agent=self.default_agent,
        )
        try:
            await asyncio.to_thread(self.recorder.upsert, record)
        except RecorderError as e:
            logger.error(f"❌ sheet_test failed: {e}", exc_info=True)
            await self.reply(chat_id, "Sheets: ERROR — see logs.")
            return
        await self.reply(chat_id, "Sheets: OK (header ensured, upsert done).")

    async def cmd_test_lead(self, chat_id: Hashable, args: str) -> None:
        self.scheduler.stop(chat_id)
        try:
            self._ensure_script()
            self.scheduler.start_script_run(chat_id, parse_vars(args, LEAD_VAR_DEFAULTS))
        except ScriptLoadError as e:
            logger.error(f"❌ test_lead: script unavailable: {e}")
            await self.reply(chat_id, "Скрипт не найден/пустой.")
