"""
⚙️  Long-polling runner
-----------------------
Alternative to the webhook for local runs: drops any registered webhook,
pulls updates with getUpdates and feeds them through the same
dispatcher. Ctrl-C / SIGTERM stop every run before exiting.

    python -m salesbot.poller
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

from salesbot.runtime import configure_logging, get_logger, log_startup_summary
from salesbot.services import Services, build_services
from salesbot.telegram_sender import TransportError
from salesbot.webhook import UpdateDedupe, process_update

logger = get_logger("poller")

ERROR_BACKOFF_SEC = 5.0


class _PollState:
    """The attributes process_update() expects from app.state."""

    def __init__(self, services: Services, dedupe: UpdateDedupe):
        self.dispatcher = services.dispatcher
        self.dedupe = dedupe


async def poll_once(services: Services, state: _PollState, offset: Optional[int], timeout: int) -> Optional[int]:
    """Fetch one batch, process it, return the next offset."""
    updates = await services.transport.get_updates(offset=offset, timeout=timeout)
    for update in updates:
        update_id = update.get("update_id")
        if isinstance(update_id, int):
            offset = update_id + 1
        await process_update(state, update)
    return offset


async def poll_forever(services: Services, stop: asyncio.Event) -> None:
    s = services.settings
    state = _PollState(services, UpdateDedupe(s.REDIS_URL, tls=s.REDIS_TLS))
    offset: Optional[int] = None
    while not stop.is_set():
        try:
            offset = await poll_once(services, state, offset, s.POLL_TIMEOUT_SEC)
        except TransportError as e:
            logger.error(f"❌ getUpdates failed: code={e.error_code} description={e.description}")
            await asyncio.sleep(ERROR_BACKOFF_SEC)


async def main() -> None:
    configure_logging()

    services = build_services()
    log_startup_summary(services.settings)
    services.load_script()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    try:
        await services.transport.delete_webhook()
    except TransportError as e:
        logger.warning(f"⚠️ deleteWebhook failed: {e}")

    logger.info("🚀 Polling for updates")
    poll_task = asyncio.create_task(poll_forever(services, stop))
    await stop.wait()
    poll_task.cancel()
    await asyncio.gather(poll_task, return_exceptions=True)
    await services.aclose()
    logger.info("👋 Poller stopped")


if __name__ == "__main__":
    asyncio.run(main())
