from fastapi import APIRouter, Request
from schemas.calls import PresenceResponse
from logging_config import get_logger

logger = get_logger(__name__)

presence_router = APIRouter(prefix="/presence", tags=["presence"])


@presence_router.get("/{user_id}", response_model=PresenceResponse)
async def get_presence(user_id: str, request: Request):
    """Whether the user has a live signaling connection, and which call they are in."""
    presence = request.app.state.coordinator.presence(user_id)
    logger.debug(f"Presence of {user_id}: online={presence['online']}")
    return PresenceResponse(**presence)
