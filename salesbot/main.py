from __future__ import annotations

"""
Salesbot — FastAPI entrypoint
- Telegram webhook (/telegram/webhook) + health endpoints
- Loads the script at startup; a bad script only blocks script runs
- Registers the webhook with Telegram when PUBLIC_URL is set
- Stops every run and closes the HTTP client on shutdown

Run: uvicorn salesbot.main:app --port $PORT
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI

from salesbot.runtime import configure_logging, get_logger, log_startup_summary
from salesbot.services import Services, build_services
from salesbot.telegram_sender import TransportError
from salesbot.webhook import UpdateDedupe, router as webhook_router

VERSION = "1.0.0"

logger = get_logger("main")


def _iso_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    services: Optional[Services] = None,
    *,
    dedupe: Optional[UpdateDedupe] = None,
    register_webhook: bool = True,
) -> FastAPI:
    configure_logging()

    svc = services or build_services()
    s = svc.settings
    log_startup_summary(s)

    app = FastAPI(title="Salesbot", version=VERSION)
    app.state.services = svc
    app.state.dispatcher = svc.dispatcher
    app.state.webhook_secret = s.WEBHOOK_SECRET
    app.state.dedupe = dedupe or UpdateDedupe(s.REDIS_URL, tls=s.REDIS_TLS)
    app.include_router(webhook_router)

    @app.on_event("startup")
    async def startup_checks():
        if not svc.store.loaded:
            svc.load_script()
        if register_webhook and s.PUBLIC_URL:
            url = f"{s.PUBLIC_URL.rstrip('/')}/telegram/webhook"
            try:
                await svc.transport.set_webhook(url, s.WEBHOOK_SECRET)
                logger.info(f"🔗 Webhook registered: {url}")
            except TransportError as e:
                logger.error(f"❌ setWebhook failed: code={e.error_code} description={e.description}")

    @app.on_event("shutdown")
    async def shutdown():
        await svc.aclose()
        logger.info("👋 Salesbot stopped")

    def _health_payload():
        return {
            "ok": True,
            "timestamp": _iso_ts(),
            "version": VERSION,
            "script_loaded": svc.store.loaded,
            "script_source": svc.store.source,
            "active_runs": svc.scheduler.active_count,
        }

    @app.get("/ping")
    async def ping():
        return {"ok": True, "pong": True, "time": _iso_ts()}

    @app.get("/health")
    async def health():
        return _health_payload()

    @app.get("/healthz")
    async def healthz():
        return _health_payload()

    return app


app = create_app()
