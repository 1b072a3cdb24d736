"""
API Routes for Live Site Statistics.

Endpoints
---------
- `GET /api/stats`: Latest snapshot.
- `GET /api/stats/history`: Retained snapshots, newest last.
- `GET /api/stats/stream`: Server-Sent Events, one `stats` event per tick.

The routes only read from the injected :class:`SnapshotSampler`; sampling
happens on the sampler's own timer, never per request.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from sitepulse.api.connections import ConnectionState, ConnectionTracker
from sitepulse.api.dependencies import get_sampler, get_settings, get_tracker
from sitepulse.api.sse import snapshot_events
from sitepulse.core.contracts.snapshot import Snapshot
from sitepulse.core.sampler import SnapshotSampler
from sitepulse.core.settings import Settings, get_logger

router = APIRouter(prefix="/api/stats", tags=["Stats"])
logger = get_logger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-store",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("", response_model=Snapshot, summary="Latest snapshot")
async def get_stats(sampler: SnapshotSampler = Depends(get_sampler)) -> Snapshot:
    return sampler.get_latest()


@router.get("/history", response_model=list[Snapshot], summary="Snapshot history")
async def get_history(
    response: Response,
    sampler: SnapshotSampler = Depends(get_sampler),
) -> list[Snapshot]:
    """
    Return the History Ring, oldest first.

    Returns
    -------
    list[Snapshot]
        At most `STATS_HISTORY_SIZE` entries. Served with `Cache-Control:
        no-store` so dashboards always backfill from the live ring.
    """
    response.headers["Cache-Control"] = "no-store"
    return list(sampler.get_history())


@router.get("/stream", summary="Snapshot event stream")
async def stream_stats(
    request: Request,
    sampler: SnapshotSampler = Depends(get_sampler),
    tracker: ConnectionTracker = Depends(get_tracker),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """
    Open a Server-Sent Events stream of snapshots.

    The current snapshot is sent immediately; afterwards each sampler tick
    produces exactly one `stats` event. A `: keepalive` comment is sent when
    no tick arrives within `STATS_HEARTBEAT_SECONDS`.
    """

    async def body() -> AsyncIterator[str]:
        with tracker.track("stream") as connection:
            connection.advance(ConnectionState.OPEN)
            logger.debug("Stats stream %s opened", connection.connection_id)
            async for chunk in snapshot_events(
                sampler,
                heartbeat_seconds=settings.heartbeat_seconds,
                is_disconnected=request.is_disconnected,
            ):
                yield chunk

    return StreamingResponse(body(), media_type="text/event-stream", headers=STREAM_HEADERS)


__all__ = ["router"]
