"""
Salesbot runtime helpers
------------------------
One-time logging setup, per-module loggers under the ``salesbot``
namespace, a startup settings summary and UTC clock helpers.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

LOG_LEVEL_ENV = "SALESBOT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER = "salesbot"

_configured = False


# ────────────────────────────────────────────────
# LOGGING
# ────────────────────────────────────────────────
def resolve_level(level: Optional[Union[int, str]] = None) -> int:
    """Level from the argument, else SALESBOT_LOG_LEVEL; unknown names mean INFO."""
    raw = level if level is not None else os.getenv(LOG_LEVEL_ENV, "INFO")
    if isinstance(raw, int):
        return raw
    named = logging.getLevelName(str(raw).strip().upper())
    return named if isinstance(named, int) else logging.INFO


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    global _configured
    resolved = resolve_level(level)
    if not _configured:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
        _configured = True
    logging.getLogger(ROOT_LOGGER).setLevel(resolved)


def get_logger(name: str) -> logging.Logger:
    if not _configured:
        configure_logging()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_startup_summary(s) -> None:
    """Log which integrations are configured; secrets are reported as set/missing only."""
    get_logger("startup").info(
        f"🚀 Config: bot_token={'set' if s.BOT_TOKEN else 'missing'} "
        f"webhook={'on' if s.PUBLIC_URL else 'off'} dry_run={s.TELEGRAM_DRY_RUN} "
        f"airtable={'set' if (s.AIRTABLE_API_KEY and s.LEADS_BASE) else 'missing'} "
        f"leads_table={s.LEADS_TABLE} redis={'on' if s.REDIS_URL else 'memory'} "
        f"script={s.SCRIPT_PATH}"
    )


# ────────────────────────────────────────────────
# TIME
# ────────────────────────────────────────────────
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """ISO8601 UTC timestamp with a Z suffix, second precision."""
    return utc_now().isoformat(timespec="seconds").replace("+00:00", "Z")
