# salesbot/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

# -----------------------------
# .env Loader
# -----------------------------
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ROOT_DIR = os.path.abspath(os.path.join(BASE_DIR, ".."))
ENV_PATH = os.path.join(ROOT_DIR, ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)

DEFAULT_SCRIPT_PATH = os.path.join(ROOT_DIR, "avito_script.json")


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except Exception:
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except Exception:
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if (v and str(v).strip() != "") else default


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    BOT_TOKEN: Optional[str]
    TELEGRAM_API_BASE: str
    TELEGRAM_TIMEOUT_SEC: float
    TELEGRAM_DRY_RUN: bool
    WEBHOOK_SECRET: Optional[str]
    PUBLIC_URL: Optional[str]
    SCRIPT_PATH: str
    AIRTABLE_API_KEY: Optional[str]
    LEADS_BASE: Optional[str]
    LEADS_TABLE: str
    DEFAULT_AGENT_NAME: str
    CONTINUOUS_INTERVAL_MS: int
    REDIS_URL: Optional[str]
    REDIS_TLS: bool
    POLL_TIMEOUT_SEC: int


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings(
        BOT_TOKEN=env_str("BOT_TOKEN"),
        TELEGRAM_API_BASE=env_str("TELEGRAM_API_BASE", "https://api.telegram.org"),
        TELEGRAM_TIMEOUT_SEC=env_float("TELEGRAM_TIMEOUT_SEC", 15.0),
        TELEGRAM_DRY_RUN=env_bool("TELEGRAM_DRY_RUN", False),
        WEBHOOK_SECRET=env_str("WEBHOOK_SECRET"),
        PUBLIC_URL=env_str("PUBLIC_URL"),
        SCRIPT_PATH=env_str("SCRIPT_PATH", DEFAULT_SCRIPT_PATH),
        AIRTABLE_API_KEY=env_str("AIRTABLE_API_KEY"),
        LEADS_BASE=env_str("LEADS_BASE") or env_str("AIRTABLE_LEADS_BASE_ID"),
        LEADS_TABLE=env_str("LEADS_TABLE", "Leads"),
        DEFAULT_AGENT_NAME=env_str("DEFAULT_AGENT_NAME", "Никита"),
        CONTINUOUS_INTERVAL_MS=env_int("CONTINUOUS_INTERVAL_MS", 3000),
        REDIS_URL=env_str("REDIS_URL") or env_str("UPSTASH_REDIS_URL"),
        REDIS_TLS=env_bool("REDIS_TLS", True),
        POLL_TIMEOUT_SEC=env_int("POLL_TIMEOUT_SEC", 30),
    )
