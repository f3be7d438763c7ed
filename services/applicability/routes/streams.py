"""
Stream Routes
=============

Server-sent events of screening updates for one organization.

Each event carries the update's generation as its id, so a client can
ignore anything older than what it has already shown.

Version: 0.1.0
"""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from shared.logging import get_logger

from services.applicability.dependencies import get_streamer
from services.applicability.services.streamer import ResultStreamer, ScreeningUpdate


logger = get_logger(__name__)

router = APIRouter()


def format_event(update: ScreeningUpdate) -> str:
    """Render an update as one SSE frame."""
    payload = json.dumps(update.to_event(), default=str)
    return f"id: {update.generation}\nevent: screening\ndata: {payload}\n\n"


@router.get("/{organization_id}")
async def stream_screening_updates(
    organization_id: str,
    streamer: ResultStreamer = Depends(get_streamer),
) -> StreamingResponse:
    """Stream re-screening results as they are pushed."""
    subscription = streamer.subscribe(organization_id)
    logger.info("stream_opened", organization_id=organization_id)

    async def events() -> AsyncIterator[str]:
        try:
            async for update in subscription:
                yield format_event(update)
        finally:
            streamer.unsubscribe(organization_id, subscription)
            logger.info("stream_closed", organization_id=organization_id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
