"""Server-Sent Events (SSE) endpoint."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ticketdeck.api.dependencies import EventManagerDep
from ticketdeck.api.models import APIResponse, EventResponse
from ticketdeck.events import EventType

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

router = APIRouter(prefix="/events", tags=["events"])


def _parse_types(types: str | None) -> frozenset[EventType] | None:
    if not types:
        return None
    try:
        return frozenset(EventType(t.strip()) for t in types.split(",") if t.strip())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


@router.get("/stream")
async def event_stream(
    event_manager: EventManagerDep,
    types: str | None = Query(default=None, description="Comma-separated event types"),
) -> StreamingResponse:
    """Subscribe to Server-Sent Events stream.

    Events are filtered by type if ``types`` is given, otherwise all events
    are sent. A heartbeat keeps the connection alive.
    """
    subscriber = event_manager.subscribe(_parse_types(types))

    async def generate() -> AsyncGenerator[str, None]:
        try:
            while True:
                try:
                    # Wait for event with timeout for heartbeat
                    event = await asyncio.wait_for(
                        subscriber.queue.get(),
                        timeout=event_manager.heartbeat_interval,
                    )
                    yield event.to_sse()
                except TimeoutError:
                    yield event_manager.create_heartbeat_event().to_sse()
        except asyncio.CancelledError:
            # Client disconnected
            pass
        finally:
            event_manager.unsubscribe(subscriber.id)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/recent", response_model=APIResponse[list[EventResponse]])
def recent_events(
    event_manager: EventManagerDep,
    event_type: str | None = Query(default=None, alias="type", description="Event type"),
) -> APIResponse[list[EventResponse]]:
    """Recently emitted events, oldest first. ``type=notice`` lists notices."""
    selected = _parse_types(event_type)
    events = event_manager.history()
    if selected is not None:
        events = [e for e in events if e.event_type in selected]
    return APIResponse(data=[EventResponse(**e.to_dict()) for e in events])
