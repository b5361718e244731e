"""Server-Sent Events endpoint for live broadcasts."""

import logging

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_manager = None


def init_events(manager) -> None:
    global _manager
    _manager = manager


@router.get("/events")
async def events():
    """One long-lived stream per subscriber; closes when the client disconnects."""
    return StreamingResponse(
        _manager.subscribe(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
