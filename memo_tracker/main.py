from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial

import structlog
from fastapi import FastAPI

from memo_tracker.api.dashboards import router as dashboards_router
from memo_tracker.api.memos import router as memos_router
from memo_tracker.api.metrics import router as metrics_router
from memo_tracker.config import Settings, get_settings
from memo_tracker.db.session import get_engine, get_sessionmaker, wait_for_database
from memo_tracker.models.schemas import HealthResponse
from memo_tracker.observability.app_metrics import create_app_metrics
from memo_tracker.observability.logging import configure_logging
from memo_tracker.observability.metrics import Registry
from memo_tracker.observability.middleware import RequestTimingMiddleware
from memo_tracker.observability.process import ProcessMetrics
from memo_tracker.observability.refresher import PeriodicRefresher
from memo_tracker.services.memo_service import load_active_memo_count


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    await wait_for_database(
        settings.db_connect_attempts,
        settings.db_connect_retry_seconds,
        engine=app.state.engine,
    )

    refresher: PeriodicRefresher = app.state.refresher
    refresher.start()
    structlog.get_logger("app").info("startup_complete")
    try:
        yield
    finally:
        await refresher.stop()


def create_app(
    settings: Settings | None = None,
    active_memo_loader: Callable[[], float] | None = None,
) -> FastAPI:
    """Build the app with its own metric registry.

    Everything that records or exposes metrics gets the registry (or one of
    its instruments) from here, and every database user gets the engine bound
    to `settings.database_url`; nothing reaches for a global.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = get_engine(settings.database_url)
    session_factory = get_sessionmaker(engine)

    registry = Registry()
    metrics = create_app_metrics(registry)
    process_metrics = ProcessMetrics(registry) if settings.enable_process_metrics else None
    refresher = PeriodicRefresher(
        gauge=metrics.active_memos,
        fetch=active_memo_loader
        or partial(load_active_memo_count, settings.active_memo_status, session_factory),
        interval_seconds=settings.metrics_refresh_interval_seconds,
    )

    app = FastAPI(title="Memo Tracker", version="0.1.0", lifespan=_lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = session_factory
    app.state.registry = registry
    app.state.metrics = metrics
    app.state.process_metrics = process_metrics
    app.state.refresher = refresher

    app.add_middleware(
        RequestTimingMiddleware,
        histogram=metrics.http_request_duration,
        unmatched_route_label=settings.metrics_unmatched_route_label,
    )

    app.include_router(dashboards_router)
    app.include_router(memos_router)
    app.include_router(metrics_router)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="healthy", timestamp=datetime.now(timezone.utc))

    return app


app = create_app()
