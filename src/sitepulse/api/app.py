"""
FastAPI Application Factory & Configuration.

This module builds the gateway application. It is responsible for:
1.  **Services**: Constructing the snapshot sampler, the position relay and
    the connection trackers, and exposing them on ``app.state``.
2.  **Lifecycle**: Starting the sampler timer (and its producers) on startup,
    stopping both and tearing down relay subscriptions on shutdown.
3.  **Middleware & Errors**: CORS and global handlers that turn every error
    into structured JSON.
4.  **Routing**: Mounting the stats, live and usage-sync routers.

Design Pattern
--------------
We use an **Application Factory** pattern (`create_app`). Every collaborator
can be injected, so tests spin up isolated apps around fakes while
production wiring comes from :class:`Settings`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sitepulse import __version__
from sitepulse.api.connections import ConnectionTracker, ResumeCursors
from sitepulse.api.routers import codex, live, stats
from sitepulse.core.counters import HostCounters
from sitepulse.core.relay import PositionRelay
from sitepulse.core.sampler import RuntimeCounts, SnapshotSampler
from sitepulse.core.settings import Settings, get_logger, load_settings
from sitepulse.producers import CodexUsageStore, build_default_producers
from sitepulse.producers.base import SnapshotProducer

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    sampler: SnapshotSampler | None = None,
    relay: PositionRelay | None = None,
    producers: Sequence[SnapshotProducer] | None = None,
) -> FastAPI:
    """
    Construct and configure the gateway application.

    Parameters
    ----------
    settings:
        Configuration; defaults to the cached :func:`load_settings`.
    sampler:
        Pre-built sampler. When omitted one is built from ``settings`` with
        host counters, the relay's runtime counts and ``producers``.
    relay:
        Pre-built position relay; defaults to one configured from ``settings``.
    producers:
        External producers; defaults to :func:`build_default_producers` when
        ``PRODUCERS_ENABLED`` is true, else none.

    Returns
    -------
    FastAPI
        The configured ASGI application ready to be served by Uvicorn.
    """
    settings = settings or load_settings()
    tracker = ConnectionTracker()

    if relay is None:
        relay = PositionRelay(
            retention_seconds=settings.resume_retention_seconds,
            max_buffered=settings.resume_max_events,
            queue_maxsize=settings.queue_maxsize,
            resume_enabled=settings.resume_enabled,
        )
    position_relay = relay

    if producers is None:
        producers = build_default_producers(settings) if settings.producers_enabled else []

    if sampler is None:
        sampler = SnapshotSampler(
            capacity=settings.history_size,
            producers=producers,
            counters=HostCounters(),
            runtime_counts=lambda: RuntimeCounts(
                pending_connections=tracker.count(),
                pending_requests=tracker.count("stream"),
                pending_websockets=tracker.count("live"),
                subscriber_count=position_relay.subscriber_count(),
            ),
        )
    snapshot_sampler = sampler

    codex_store = next((p for p in producers if isinstance(p, CodexUsageStore)), None)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        ASGI Lifespan context manager.

        - **Startup**: Start the sampler timer; failure here aborts startup.
        - **Shutdown**: Stop the sampler (and producers), drop subscriptions.
        """
        logger.info(
            "Starting sitepulse %s (%s), sampling every %.2fs",
            __version__,
            settings.environment,
            settings.sample_interval_seconds,
        )
        snapshot_sampler.start(settings.sample_interval_seconds)

        yield

        logger.info("Shutting down sitepulse")
        await snapshot_sampler.stop()
        position_relay.close()

    app = FastAPI(
        title="sitepulse",
        description="Live site statistics and cursor relay",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.sampler = snapshot_sampler
    app.state.relay = position_relay
    app.state.tracker = tracker
    app.state.resume_cursors = ResumeCursors(settings.resume_retention_seconds)
    app.state.codex_store = codex_store

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Global Exception Handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Catch-all handler to ensure unhandled exceptions return structured JSON.

        Instead of a generic 500 HTML page, we return:
        {
            "error": "Internal Server Error",
            "detail": "..." (str(exc))
        }
        """
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": str(exc),
                "path": request.url.path,
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        """Map Python ValueErrors to HTTP 400 Bad Request."""
        return JSONResponse(
            status_code=400,
            content={
                "error": "Bad Request",
                "detail": str(exc),
            },
        )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    app.include_router(stats.router)
    app.include_router(live.router)
    app.include_router(codex.router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, str]:
        """Simple liveness probe."""
        return {"status": "ok", "environment": settings.environment, "version": __version__}

    return app


__all__ = ["create_app"]
