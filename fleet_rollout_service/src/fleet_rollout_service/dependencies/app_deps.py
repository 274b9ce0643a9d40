from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from ..services.tick_scheduler import TickScheduler

ACTOR_HEADER = "X-Actor-Id"


def get_optional_actor_id(
    x_actor_id: Optional[str] = Header(None, alias=ACTOR_HEADER),
) -> Optional[UUID]:
    """
    The calling user's ID, as forwarded by the upstream auth layer.

    Returns None when the header is absent; a malformed value is a 400.
    """
    if x_actor_id is None:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{ACTOR_HEADER} must be a UUID.",
        )


def get_actor_id(
    x_actor_id: Optional[str] = Header(None, alias=ACTOR_HEADER),
) -> UUID:
    """Like get_optional_actor_id, but the header is required."""
    actor_id = get_optional_actor_id(x_actor_id)
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{ACTOR_HEADER} header is required.",
        )
    return actor_id


def get_tick_scheduler(request: Request) -> Optional[TickScheduler]:
    """The app's tick scheduler, or None when background workers are disabled."""
    return getattr(request.app.state, "tick_scheduler", None)
