from fastapi import APIRouter, HTTPException, Query, Request
from schemas.calls import CallHistoryResponse, CallRecord, CloseRoomResponse, RoomDetailsResponse, RoomListResponse
import redis
from constants import CALL_HISTORY_LIMIT
from signaling.errors import RoomNotFound
from logging_config import get_logger

logger = get_logger(__name__)

calls_router = APIRouter(prefix="/calls", tags=["calls"])


@calls_router.get("/", response_model=RoomListResponse)
async def list_rooms(request: Request):
    coordinator = request.app.state.coordinator
    rooms = coordinator.list_rooms()
    logger.debug(f"Listing {len(rooms)} active call rooms")
    return RoomListResponse(rooms=[RoomDetailsResponse(**room) for room in rooms], count=len(rooms))


@calls_router.get("/history/{user_id}", response_model=CallHistoryResponse)
async def get_call_history(
    user_id: str,
    request: Request,
    limit: int = Query(CALL_HISTORY_LIMIT, ge=1, le=CALL_HISTORY_LIMIT, description="Maximum number of calls to return"),
):
    """
    Recent finished calls of a user, newest first.

    Call history lives in Redis; the endpoint answers 503 when Redis is disabled.
    """
    backend = request.app.state.backend
    if backend is None:
        raise HTTPException(status_code=503, detail="Call history is not available")

    try:
        history = backend.get_call_history(user_id, limit=limit)
    except redis.RedisError as e:
        logger.error(f"Error reading call history for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to read call history")

    calls = []
    for entry in history:
        try:
            calls.append(CallRecord(**entry))
        except (TypeError, ValueError):
            logger.warning(f"Skipping incomplete call record in history of {user_id}")
    logger.info(f"Call history for {user_id}: {len(calls)} calls")
    return CallHistoryResponse(user_id=user_id, calls=calls)


@calls_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    room = request.app.state.coordinator.describe_room(room_id)
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomDetailsResponse(**room)


@calls_router.post("/{room_id}/close", response_model=CloseRoomResponse)
async def close_room(room_id: str, request: Request):
    # Ends the call for every participant; each one receives a call-ended event.
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Close room request for {room_id} from {client_host}")
    try:
        await request.app.state.coordinator.close_room(room_id, reason="closed")
    except RoomNotFound:
        logger.warning(f"Close room failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")
    return CloseRoomResponse(room_id=room_id, message="Room closed successfully")
