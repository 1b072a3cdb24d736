"""
API Routes for Usage Sync.

Endpoints
---------
- `POST /api/codex/sync`: Ingest a usage payload from the local sync job.

Authentication
--------------
The sync job sends `Authorization: Bearer <CODEX_SYNC_TOKEN>`. Without a
configured token the endpoint is disabled (503) rather than open.
"""

from __future__ import annotations

import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status

from sitepulse.api.dependencies import get_codex_store, get_settings
from sitepulse.core.contracts.producers import CodexUsageSnapshot, CodexUsageSyncPayload
from sitepulse.core.settings import Settings, get_logger
from sitepulse.producers.codex_usage import CodexUsageStore

router = APIRouter(prefix="/api/codex", tags=["Usage"])
logger = get_logger(__name__)


def require_sync_token(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject the request unless it carries the configured bearer token."""
    expected = settings.codex_sync_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Usage sync is not configured",
        )
    if authorization is None or not secrets.compare_digest(
        authorization.encode("utf-8"), f"Bearer {expected}".encode("utf-8")
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post(
    "/sync",
    response_model=CodexUsageSnapshot,
    dependencies=[Depends(require_sync_token)],
    summary="Persist a usage payload",
)
async def sync_usage(
    payload: CodexUsageSyncPayload,
    store: CodexUsageStore | None = Depends(get_codex_store),
) -> CodexUsageSnapshot:
    """
    Persist the payload atomically and return the resulting snapshot.

    Returns
    -------
    CodexUsageSnapshot
        The view the stats stream will carry from the next tick on.
    """
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Usage store is disabled",
        )
    snapshot = await store.persist(payload)
    logger.info("Usage sync stored %d daily points", len(snapshot.daily))
    return snapshot


__all__ = ["require_sync_token", "router"]
