# alarmserver/main.py
"""
FastAPI application entry point.
Wires the store, relay and alarm pipeline, global error handling and routers.
"""

import time
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from alarmserver.config import settings
from alarmserver.database import SessionLocal, create_tables
from alarmserver.routers import events, health
from alarmserver.services.event_dispatcher import build_pipeline
from alarmserver.services.relay import HttpRelay, Relay
from alarmserver.services.store import SqlStore, Store
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(store: Optional[Store] = None, relay: Optional[Relay] = None) -> FastAPI:
    app = FastAPI(
        title="Hikvision Alarm Server",
        description="Turns camera alarm webhooks into debounced alarm states, snapshots and relay messages.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Request Timing Middleware ────────────────────────────────────────────
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = round((time.time() - start) * 1000, 2)
        logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
        return response

    # ── Global Exception Handler ─────────────────────────────────────────────
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        if request.method == "POST":
            # Camera webhook: acknowledge anyway so the camera does not retry
            return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "error"})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Routers ──────────────────────────────────────────────────────────────
    # Health first: the webhook route catches every other path
    app.include_router(health.router, prefix="/api/v1", tags=["💚 Health"])
    app.include_router(events.router, tags=["📡 Camera Alarms"])

    # ── Startup ──────────────────────────────────────────────────────────────
    @app.on_event("startup")
    async def startup():
        logger.info("🚀 Alarm server starting up...")
        app.state.store = store
        app.state.relay = relay
        if app.state.store is None:
            create_tables()
            logger.info("✅ Database tables ready")
            app.state.store = SqlStore(SessionLocal, settings.STORAGE_DIR)
        if app.state.relay is None:
            app.state.relay = HttpRelay(settings.RELAY_TARGETS, timeout=settings.RELAY_TIMEOUT_SECONDS)
        app.state.pipeline = build_pipeline(settings, app.state.store, app.state.relay)
        logger.info(f"⏱  Alarm timeout {settings.ALARM_TIMEOUT_SECONDS}s, "
                    f"connection timeout {settings.CONNECTION_TIMEOUT_SECONDS}s")
        logger.info(f"📡 Relay targets: {list(settings.RELAY_TARGETS.keys())}")
        logger.info(f"🌐 Listening on http://{settings.BACKEND_IP}:{settings.BACKEND_PORT}")

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("🛑 Alarm server shutting down...")
        await app.state.pipeline.shutdown()
        if isinstance(app.state.relay, HttpRelay):
            await app.state.relay.aclose()
        logger.info("✅ All alarm states cleared")

    return app


app = create_app()
