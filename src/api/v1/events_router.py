from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from services.event_bus import EventMessage, event_bus
from services.jobs import job_registry

logger = logging.getLogger("vfrplanner.api.events")

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SECONDS = 20.0


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Server-sent events stream of window search progress",
)
async def stream_events() -> StreamingResponse:
    logger.debug("Event stream opened")

    async def _event_source() -> AsyncIterator[bytes]:
        subscription = await event_bus.subscribe()
        try:
            yield EventMessage(type="init", data={"jobs": await job_registry.list()}).to_sse()
            while True:
                try:
                    message = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SECONDS)
                    yield message.to_sse()
                except asyncio.TimeoutError:
                    yield b": keep-alive\n\n"
        finally:
            await subscription.close()
            logger.debug("Event stream closed")

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_source(), media_type="text/event-stream", headers=headers)


__all__ = ["router"]
