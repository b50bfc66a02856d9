"""Server-sent event stream of document and event table changes."""

from __future__ import annotations

import json
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ..services.changes import ChangeNotification, change_feed

router = APIRouter(prefix="/api", tags=["changes"])

HEARTBEAT_SECONDS = 15.0


def format_sse(notification: ChangeNotification) -> str:
    """Render one notification as an SSE frame."""

    payload = json.dumps(notification.to_dict(), separators=(",", ":"))
    return f"id: {notification.sequence}\nevent: change\ndata: {payload}\n\n"


async def _event_source(request: Request) -> AsyncIterator[str]:
    yield "retry: 3000\n\n"
    stream = change_feed.stream(heartbeat=HEARTBEAT_SECONDS)
    try:
        async for notification in stream:
            if await request.is_disconnected():
                break
            if notification is None:
                yield ": keep-alive\n\n"
            else:
                yield format_sse(notification)
    finally:
        await stream.aclose()


@router.get("/changes")
async def stream_changes(request: Request) -> StreamingResponse:
    """Notify subscribers whenever documents or events change; clients re-query."""

    return StreamingResponse(
        _event_source(request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


__all__ = ["router", "format_sse"]
