# salesbot/webhook.py
"""
Telegram Webhook
----------------
Receives Bot API updates, checks the secret header, drops redelivered
update_ids and hands message text to the command dispatcher.
"""

from __future__ import annotations

import traceback
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import redis
from fastapi import APIRouter, Header, HTTPException, Request

from salesbot.runtime import get_logger
from salesbot.telegram_sender import TransportError

logger = get_logger("webhook")

router = APIRouter()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
DEDUPE_TTL_SEC = 24 * 60 * 60
REDIS_SOCKET_TIMEOUT_SEC = 3


# === UPDATE DE-DUPLICATION ===
class UpdateDedupe:
    """Redis-backed seen-set for update_ids with a bounded in-memory fallback."""

    def __init__(self, redis_url: Optional[str] = None, *, tls: bool = True, max_mem_size: int = 10000):
        self.r = None
        if redis_url:
            try:
                self.r = redis.from_url(
                    redis_url, ssl=tls, decode_responses=True, socket_timeout=REDIS_SOCKET_TIMEOUT_SEC
                )
            except Exception:
                traceback.print_exc()
        self._mem: "OrderedDict[str, None]" = OrderedDict()
        self._max_mem_size = max_mem_size

    def seen(self, update_id: Any) -> bool:
        """True if update_id was seen before; marks it seen otherwise."""
        if update_id is None:
            return False
        key = f"telegram:update:{update_id}"

        if self.r is not None:
            try:
                ok = self.r.set(key, "1", nx=True, ex=DEDUPE_TTL_SEC)
                return not bool(ok)
            except Exception:
                logger.warning("⚠️ Redis dedupe unavailable, using memory", exc_info=True)

        if key in self._mem:
            return True
        self._mem[key] = None
        if len(self._mem) > self._max_mem_size:
            self._mem.popitem(last=False)
        return False


# === PAYLOAD HELPERS ===
def extract_message(update: Dict[str, Any]) -> Optional[Tuple[Any, str]]:
    """(chat_id, text) for text messages; None for anything else."""
    msg = update.get("message") or update.get("edited_message")
    if not isinstance(msg, dict):
        return None
    chat = msg.get("chat") or {}
    chat_id = chat.get("id")
    text = msg.get("text")
    if chat_id is None or not isinstance(text, str):
        return None
    return chat_id, text


def _is_authorized(expected: Optional[str], header_token: Optional[str]) -> bool:
    if not expected:
        return True  # auth disabled
    return header_token == expected


async def process_update(app_state, update: Dict[str, Any]) -> Dict[str, Any]:
    if app_state.dedupe.seen(update.get("update_id")):
        return {"ok": True, "duplicate": True}

    extracted = extract_message(update)
    if extracted is None:
        return {"ok": True, "ignored": True}

    chat_id, text = extracted
    try:
        result = await app_state.dispatcher.dispatch(chat_id, text)
    except TransportError as e:
        # Telegram would redeliver on a non-2xx; the failure is ours to log
        logger.error(f"❌ Reply to chat={chat_id} failed: code={e.error_code} description={e.description}")
        return {"ok": False, "error": "reply_failed"}
    return {"ok": True, **result}


# === ROUTES ===
@router.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
):
    if not _is_authorized(request.app.state.webhook_secret, x_telegram_bot_api_secret_token):
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        update = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(update, dict):
        raise HTTPException(status_code=400, detail="Update must be a JSON object")
    return await process_update(request.app.state, update)
