from typing import Optional

from fastapi import Header, HTTPException, status

MAX_ACTOR_LEN = 100


async def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> str:
    """
    Admin identity for audit fields (changed_by, applied_by, processed_by).
    Authentication happens upstream; this only requires the gateway to pass the id on.
    """
    actor = (x_actor_id or "").strip()
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required",
        )
    if len(actor) > MAX_ACTOR_LEN:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"X-Actor-Id must be at most {MAX_ACTOR_LEN} characters",
        )
    return actor
