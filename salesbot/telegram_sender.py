# salesbot/telegram_sender.py
"""
📡 Telegram Sender — Bot API transport
- sendMessage / getUpdates / setWebhook / deleteWebhook over httpx
- Provider errors are raised as TransportError with Telegram's code + description
- TELEGRAM_DRY_RUN logs outbound text instead of calling the API
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from salesbot.runtime import get_logger

logger = get_logger("telegram_sender")

MAX_TEXT_LEN = 4096


# =========================
# Errors
# =========================
class TransportError(RuntimeError):
    """Delivery failed; carries the provider-reported code and description."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[int] = None,
        description: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.description = description
        self.payload = payload

    def __str__(self) -> str:  # pragma: no cover - string formatting helper
        base = super().__str__()
        if self.error_code is None and not self.description:
            return base
        return f"{base} | code={self.error_code} description={self.description}"


# =========================
# Small helpers
# =========================
def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _validate_message_payload(payload: Dict[str, Any]) -> None:
    """Ensure required sendMessage fields are present and sane."""
    problems: List[str] = []

    if not _has_value(payload.get("chat_id")):
        problems.append("chat_id is required")

    text = payload.get("text")
    if not _has_value(text):
        problems.append("text is required")
    elif len(str(text)) > MAX_TEXT_LEN:
        problems.append(f"text exceeds {MAX_TEXT_LEN} characters (Telegram limit)")

    if problems:
        raise TransportError("Invalid Telegram payload: " + "; ".join(problems), payload=dict(payload))


# =========================
# Transport
# =========================
class TelegramTransport:
    """Async Bot API client. One instance per process; close with aclose()."""

    def __init__(
        self,
        token: Optional[str],
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        dry_run: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.dry_run = dry_run
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, s) -> "TelegramTransport":
        return cls(
            s.BOT_TOKEN,
            api_base=s.TELEGRAM_API_BASE,
            timeout=s.TELEGRAM_TIMEOUT_SEC,
            dry_run=s.TELEGRAM_DRY_RUN,
        )

    def _url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    async def _call(self, method: str, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> Any:
        if not self.token:
            raise TransportError("BOT_TOKEN is not configured", payload=payload)
        try:
            kwargs: Dict[str, Any] = {"json": payload}
            if timeout is not None:
                kwargs["timeout"] = timeout
            resp = await self._client.post(self._url(method), **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Telegram {method} request failed: {e}", payload=payload) from e

        try:
            data = resp.json()
        except ValueError:
            raise TransportError(
                f"Telegram {method} HTTP {resp.status_code}: non-JSON response",
                error_code=resp.status_code,
                description=(resp.text or "").strip()[:200],
                payload=payload,
            )

        if not data.get("ok"):
            raise TransportError(
                f"Telegram {method} failed",
                error_code=data.get("error_code", resp.status_code),
                description=data.get("description"),
                payload=payload,
            )
        return data.get("result")

    # ---- public API ----
    async def send_message(self, chat_id: Any, text: str) -> Dict[str, Any]:
        payload = {"chat_id": chat_id, "text": text}
        _validate_message_payload(payload)
        if self.dry_run:
            logger.info(f"[DRY RUN] → {chat_id}: {text}")
            return {"dry_run": True, "chat": {"id": chat_id}, "text": text}
        return await self._call("sendMessage", payload)

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # HTTP timeout must outlive the long-poll window
        return await self._call("getUpdates", payload, timeout=timeout + 10) or []

    async def set_webhook(self, url: str, secret: Optional[str] = None) -> Any:
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret:
            payload["secret_token"] = secret
        return await self._call("setWebhook", payload)

    async def delete_webhook(self) -> Any:
        return await self._call("deleteWebhook", {"drop_pending_updates": False})

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["TelegramTransport", "TransportError", "MAX_TEXT_LEN"]
