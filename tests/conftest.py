import asyncio
import os
import sys

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from salesbot.config import settings
from salesbot.telegram_sender import TransportError


@pytest.fixture(autouse=True)
def _reset_env():
    for key in [
        "BOT_TOKEN",
        "TELEGRAM_DRY_RUN",
        "SCRIPT_PATH",
        "LEADS_TABLE",
        "WEBHOOK_SECRET",
        "PUBLIC_URL",
        "AIRTABLE_API_KEY",
        "LEADS_BASE",
        "AIRTABLE_LEADS_BASE_ID",
        "REDIS_URL",
        "UPSTASH_REDIS_URL",
        "SALESBOT_LOG_LEVEL",
    ]:
        os.environ.pop(key, None)
    settings.cache_clear()
    yield
    settings.cache_clear()


class FakeTransport:
    """Collects outbound messages; can be told to fail for a chat."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send_message(self, chat_id, text):
        if chat_id in self.fail_for:
            raise TransportError("Telegram sendMessage failed", error_code=403, description="Forbidden: bot was blocked by the user")
        self.sent.append((chat_id, text))
        return {"message_id": len(self.sent)}

    def texts(self, chat_id=None):
        return [t for c, t in self.sent if chat_id is None or c == chat_id]


class StubRecorder:
    def __init__(self, error=None):
        self.records = []
        self.error = error

    def upsert(self, record):
        if self.error is not None:
            raise self.error
        self.records.append(record)
        return {"ok": True}


async def no_sleep(_seconds):
    return None


async def yield_sleep(_seconds):
    await asyncio.sleep(0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def recorder():
    return StubRecorder()
