"""
API Routes for the Live Cursor Channel.

Endpoints
---------
- `GET /api/cursor/identity`: Returns (and on first contact mints) the
  caller's cursor identity, stored in an HttpOnly cookie.
- `WS /api/live`: Bidirectional position channel on the `cursors` topic.

Identity Guard
--------------
A browser may only move its own cursor: inbound events whose `id` differs
from the connection's identity are dropped. Malformed frames are dropped the
same way. Neither closes the socket.

Resume
------
Each connection subscribes with a resume marker: the `last_event_id` query
parameter when present, otherwise the marker remembered for the same
identity if that was recent enough. A marker is remembered as soon as a
connection subscribes and advances with every frame sent, so even a browser
that never received anything can catch up after a reconnect. Events published while the browser
was away are replayed before live traffic.
"""

from __future__ import annotations

import asyncio
import re
import secrets

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from sitepulse.api.connections import ConnectionState, ConnectionTracker, ResumeCursors
from sitepulse.api.dependencies import (
    get_relay,
    get_resume_cursors,
    get_settings,
    get_tracker,
)
from sitepulse.core.contracts.position import parse_position
from sitepulse.core.relay import CURSOR_TOPIC, PositionRelay, Subscription
from sitepulse.core.settings import Settings, get_logger

router = APIRouter(prefix="/api", tags=["Live"])
logger = get_logger(__name__)

IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
COOKIE_MAX_AGE = 60 * 60 * 24 * 365


def mint_identity() -> str:
    return secrets.token_urlsafe(16)


def valid_identity(value: str | None) -> str | None:
    """Return ``value`` if it looks like an identity we could have minted."""
    if value and IDENTITY_PATTERN.match(value):
        return value
    return None


def identity_cookie(name: str, value: str, *, secure: bool) -> str:
    parts = [f"{name}={value}", "Path=/", f"Max-Age={COOKIE_MAX_AGE}", "HttpOnly", "SameSite=Lax"]
    if secure:
        parts.append("Secure")
    return "; ".join(parts)


# --------------------------------------------------------------------------- #
# Identity
# --------------------------------------------------------------------------- #


@router.get("/cursor/identity", summary="Get or mint the cursor identity")
async def cursor_identity(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> dict[str, str]:
    cursor_id = valid_identity(request.cookies.get(settings.cursor_cookie_name))
    if cursor_id is None:
        cursor_id = mint_identity()
        logger.debug("Minted cursor identity %s", cursor_id)
    response.set_cookie(
        settings.cursor_cookie_name,
        cursor_id,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.is_prod,
    )
    return {"cursorId": cursor_id}


# --------------------------------------------------------------------------- #
# Position channel
# --------------------------------------------------------------------------- #


@router.websocket("/live")
async def live_channel(
    websocket: WebSocket,
    last_event_id: int | None = None,
    settings: Settings = Depends(get_settings),
    relay: PositionRelay = Depends(get_relay),
    tracker: ConnectionTracker = Depends(get_tracker),
    cursors: ResumeCursors = Depends(get_resume_cursors),
) -> None:
    """
    Relay cursor positions between all connected browsers.

    Lifecycle
    ---------
    1. CONNECTING: resolve identity, subscribe to the relay (before the
       handshake completes, so nothing published after `accept` is missed).
    2. OPEN: a forward task drains the subscription into the socket while
       this coroutine reads inbound frames and publishes them.
    3. CLOSED: the subscription is cancelled and the forward task awaited. The
       remembered marker stays behind for a later resume.
    """
    identity = valid_identity(websocket.cookies.get(settings.cursor_cookie_name))
    headers: list[tuple[bytes, bytes]] = []
    if identity is None:
        identity = mint_identity()
        cookie = identity_cookie(settings.cursor_cookie_name, identity, secure=settings.is_prod)
        headers.append((b"set-cookie", cookie.encode("latin-1")))

    resume_from = last_event_id if last_event_id is not None else cursors.recall(identity)

    with tracker.track("live", identity) as connection:
        stop = asyncio.Event()
        subscription = relay.subscribe(
            CURSOR_TOPIC,
            subscriber_id=identity,
            last_event_id=resume_from,
            signal=stop,
        )
        cursors.remember(identity, subscription.last_seq)
        forward: asyncio.Task[None] | None = None
        try:
            await websocket.accept(headers=headers)
            connection.advance(ConnectionState.OPEN)
            logger.info("Live channel opened for %s (resume from %s)", identity, resume_from)

            forward = asyncio.create_task(_forward(websocket, subscription, cursors, identity))
            await _receive(websocket, relay, identity)
        finally:
            stop.set()
            relay.unsubscribe(subscription)
            if forward is not None:
                forward.cancel()
                await asyncio.gather(forward, return_exceptions=True)
            logger.info("Live channel closed for %s", identity)


async def _receive(websocket: WebSocket, relay: PositionRelay, identity: str) -> None:
    """Read frames until the client disconnects, publishing the valid ones."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        raw = message.get("text")
        if raw is None:
            raw = message.get("bytes")
        if raw is None:
            continue

        event = parse_position(raw)
        if event is None:
            logger.debug("Dropping malformed frame from %s", identity)
            continue
        if event.id != identity:
            logger.debug("Dropping frame from %s claiming id %r", identity, event.id)
            continue

        relay.publish(CURSOR_TOPIC, event, sender_id=identity)


async def _forward(
    websocket: WebSocket,
    subscription: Subscription,
    cursors: ResumeCursors,
    identity: str,
) -> None:
    """Drain ``subscription`` into the socket until it is cancelled or closed."""
    try:
        async for relayed in subscription:
            await websocket.send_json(relayed.event.to_wire())
            cursors.remember(identity, relayed.seq)
    except asyncio.CancelledError:
        raise
    except Exception:
        # Socket went away mid-send; the receive loop sees the disconnect.
        logger.debug("Forwarding to %s stopped", identity, exc_info=True)
    finally:
        subscription.close()


__all__ = ["identity_cookie", "mint_identity", "router", "valid_identity"]
