from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import json
import time
from routers.calls import calls_router
from routers.presence import presence_router
from schemas.calls import HealthResponse
from schemas.signals import Rejection
from backend import RedisBackend
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, REDIS_ENABLED
from signaling.coordinator import SignalingCoordinator
from signaling.errors import DuplicateConnection, TransportError
from signaling.transport import CLOSE_NORMAL, CLOSE_POLICY_VIOLATION, WebSocketTransport
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(coordinator: Optional[SignalingCoordinator] = None, backend: Optional[RedisBackend] = None) -> FastAPI:
    """Build the signaling app.

    Each app owns its coordinator. When none is given one is created, backed by
    Redis unless REDIS_ENABLED is off.
    """
    if backend is None and REDIS_ENABLED:
        backend = RedisBackend()
    if coordinator is None:
        coordinator = SignalingCoordinator(backend=backend)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if backend is not None and backend.ping():
            logger.info("Redis call event backend is reachable")
        elif backend is not None:
            logger.warning("Redis is unreachable, call history and notifications will be skipped")
        coordinator.start()
        logger.info("Signaling coordinator started")
        yield
        await coordinator.stop()

    app = FastAPI(title="CallSignal", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.backend = backend
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(calls_router)
    app.include_router(presence_router)

    @app.get("/")
    async def root():
        return {"service": "CallSignal", "websocket": "/signal/ws", "docs": "/docs"}

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok",
            uptime_seconds=round(time.time() - app.state.started_at, 3),
            connections=len(coordinator.registry),
            rooms=len(coordinator.rooms),
            redis=backend.ping() if backend is not None else None,
        )

    @app.websocket("/signal/ws")
    async def signal_endpoint(websocket: WebSocket, user_id: Optional[str] = None):
        """Signaling socket of one user.

        The identity is trusted as given: either the ``user_id`` query parameter
        or the ``X-User-Id`` header set by the authenticating proxy.
        """
        identity = (user_id or websocket.headers.get("x-user-id") or "").strip()
        if not identity:
            logger.info("WebSocket connection rejected: no user identity")
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Missing user identity")
            return

        await websocket.accept()
        try:
            connection = await coordinator.connect(identity, WebSocketTransport(websocket))
        except DuplicateConnection as e:
            await websocket.send_text(json.dumps(Rejection(code=e.code, message=e.message).wire()))
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Duplicate connection")
            return
        logger.info(f"WebSocket connection accepted for {identity} ({connection.connection_id[:8]})")

        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", CLOSE_NORMAL), frame.get("reason"))
                if frame.get("text") is not None:
                    await coordinator.handle_text(connection, frame["text"])
                elif frame.get("bytes") is not None:
                    await coordinator.handle_binary(connection, frame["bytes"])
        except WebSocketDisconnect as e:
            logger.info(f"WebSocket disconnected for {identity} (code {e.code})")
            await coordinator.disconnect(connection, reason="closed", code=CLOSE_NORMAL)
        except Exception as e:
            if connection.is_open:
                logger.error(f"WebSocket error for {identity}: {e}", exc_info=True)
                await coordinator.supervisor.transport_failed(connection, TransportError(str(e)))
            else:
                logger.debug(f"Receive loop of {identity} ended after disconnect: {e}")
        finally:
            await coordinator.disconnect(connection)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
