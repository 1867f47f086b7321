"""kindred-moments — ephemeral, location-scoped shared moments.

This is the application entry point.  It wires the MomentStore,
MoodAggregator, ChatLog, PresenceHub, ExpiryScheduler and the HTTP and
WebSocket endpoints together.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from kindred_moments.api.errors import register_exception_handlers
from kindred_moments.api.identity import create_identity_router
from kindred_moments.api.moments import create_moments_router
from kindred_moments.api.moods import create_moods_router
from kindred_moments.api.posts import create_posts_router
from kindred_moments.api.ws_moment import create_moment_socket_router
from kindred_moments.config import Settings, settings
from kindred_moments.core.expiry_scheduler import ExpiryScheduler
from kindred_moments.core.moment_service import MomentService
from kindred_moments.services.presence_hub import PresenceHub
from kindred_moments.store.chat_log import ChatLog
from kindred_moments.store.geo_index import GeoIndex
from kindred_moments.store.moment_store import MomentStore
from kindred_moments.store.mood_aggregator import MoodAggregator

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


def build_app(config: Settings, run_scheduler: bool = True) -> FastAPI:
    """Assemble one fully wired application from *config*."""

    # ── State ────────────────────────────────────────────────────────────

    store = MomentStore(
        geo_index=GeoIndex(cell_size=config.geocell_size_degrees),
        window=timedelta(hours=config.moment_window_hours),
        join_radius_m=config.join_radius_meters,
        max_post_length=config.max_post_length,
        timeout=config.store_timeout_seconds,
    )
    moods = MoodAggregator(store)
    chat_log = ChatLog()
    hub = PresenceHub(
        store,
        chat_log,
        max_chat_length=config.max_chat_length,
        history_limit=config.chat_history_limit,
    )
    service = MomentService(store, moods, hub, discovery_radius_m=config.discovery_radius_km * 1000)

    # ── Expiry ───────────────────────────────────────────────────────────

    scheduler = ExpiryScheduler(
        store,
        moods,
        hub,
        chat_log,
        archive_after=timedelta(hours=config.archive_after_hours),
        retention=timedelta(days=config.retention_days),
        inactivity=timedelta(minutes=config.inactivity_minutes),
        batch_size=config.sweep_batch_size,
        max_batches=config.sweep_max_batches,
        sweep_interval=timedelta(minutes=config.sweep_interval_minutes),
        deep_interval=timedelta(hours=config.deep_cleanup_interval_hours),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    # ── App ──────────────────────────────────────────────────────────────

    app = FastAPI(
        title=config.app_name,
        description="Ephemeral, location-scoped shared moments",
        version="1.0.0",
        debug=config.debug,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.moods = moods
    app.state.chat_log = chat_log
    app.state.hub = hub
    app.state.service = service
    app.state.scheduler = scheduler

    register_exception_handlers(app)

    # ── Routes ───────────────────────────────────────────────────────────

    app.include_router(create_identity_router())
    app.include_router(create_moments_router(service))
    app.include_router(create_posts_router(service))
    app.include_router(create_moods_router(service))
    app.include_router(create_moment_socket_router(hub))

    # ── Health ───────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        last = scheduler.last_report
        return {
            "status": "ok",
            **store.stats().to_dict(),
            "chat_messages": chat_log.count(),
            "connections": hub.connection_count,
            "rooms": hub.room_count,
            "scheduler_running": scheduler.running,
            "last_sweep_at": scheduler.last_sweep_at.isoformat() if scheduler.last_sweep_at else None,
            "last_sweep": last.to_dict() if last else None,
        }

    logger.info("Application %s assembled", config.app_name)
    return app


app = build_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kindred_moments.main:app", host=settings.host, port=settings.port)
