from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import RedisBackend, create_redis_client
from constants import (
    DISCONNECT_GRACE_SECONDS,
    DRAFT_LIMIT,
    FRONTEND_URL,
    LOG_FILE,
    LOG_LEVEL,
    MAX_ROOM_MEMBERS,
    ROOM_TTL_MINUTES,
    USER_COOKIE_NAME,
)
from disconnect_timer import DisconnectTimers
from gateway import ClientSession, MatchingGateway
from repositories import MediaRepository, RedisMediaRepository, RedisRoomRepository, RoomRepository
from schemas.rooms import ConnectionData
from services.matching import build_matching_service
import uuid
import json
import asyncio
from typing import Dict, Optional
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

# In-memory connection tracking per room
# Format: {room_id: {connection_id: websocket}}
# NOTE: This is intentionally in-memory per instance. Each FastAPI instance tracks only its own
# WebSocket connections. Redis pub/sub distributes broadcasts across all instances, and each
# instance forwards them to its local connections.
room_connections: Dict[str, Dict[str, WebSocket]] = {}

# Background tasks for Redis pub/sub listeners per room
# Format: {room_id: task}
room_pubsub_tasks: Dict[str, asyncio.Task] = {}


def configure(
    app: FastAPI,
    backend: RedisBackend,
    media_repository: Optional[MediaRepository] = None,
    room_repository: Optional[RoomRepository] = None,
    grace_seconds: float = DISCONNECT_GRACE_SECONDS,
):
    """Wire the matching services onto ``app.state``."""
    media_repository = media_repository or RedisMediaRepository(backend.redis_client)
    room_repository = room_repository or RedisRoomRepository(backend.redis_client)
    matching = build_matching_service(
        backend,
        media_repository,
        room_repository,
        draft_limit=DRAFT_LIMIT,
        max_members=MAX_ROOM_MEMBERS,
    )
    timers = DisconnectTimers(grace_seconds)
    app.state.backend = backend
    app.state.matching = matching
    app.state.room_repository = room_repository
    app.state.max_members = MAX_ROOM_MEMBERS
    app.state.disconnect_timers = timers
    app.state.gateway = MatchingGateway(matching, backend.publish_message, timers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not hasattr(app.state, "gateway"):
        configure(app, RedisBackend(create_redis_client(), ttl_seconds=ROOM_TTL_MINUTES * 60))
    logger.info("Matching services ready")
    yield
    app.state.disconnect_timers.clear_all()
    for task in list(room_pubsub_tasks.values()):
        task.cancel()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


async def listen_to_redis_channel(backend: RedisBackend, room_id: str):
    """Background task to listen for messages from Redis pub/sub and broadcast to local connections."""
    logger.info(f"Starting Redis pub/sub listener for room: {room_id}")
    pubsub = None
    try:
        pubsub = backend.subscribe_to_room(room_id)
        loop = asyncio.get_running_loop()

        while True:
            # Check if room still has connections (if not, we can exit)
            if not room_connections.get(room_id):
                logger.info(f"No more connections in room {room_id}, stopping listener")
                break

            # Run blocking get_message() in thread pool with timeout
            message = await loop.run_in_executor(
                None, lambda: pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
            )
            if message is None or message.get("type") != "message":
                continue

            data = message["data"]
            local = list(room_connections.get(room_id, {}).items())
            logger.debug(f"Broadcasting message to {len(local)} local connections in room {room_id}")
            results = await asyncio.gather(*(ws.send_text(data) for _, ws in local), return_exceptions=True)
            for (conn_id, _), result in zip(local, results):
                if isinstance(result, Exception):
                    logger.warning(f"Error sending to connection {conn_id} in room {room_id}: {result}")

    except asyncio.CancelledError:
        logger.info(f"Redis listener task cancelled for room: {room_id}")
    except Exception as e:
        logger.error(f"Error in Redis listener for room {room_id}: {e}", exc_info=True)
    finally:
        if pubsub:
            try:
                pubsub.close()
                logger.debug(f"Closed pub/sub connection for room: {room_id}")
            except Exception as e:
                logger.error(f"Error closing pub/sub for room {room_id}: {e}")
        if room_pubsub_tasks.get(room_id) is asyncio.current_task():
            del room_pubsub_tasks[room_id]


async def attach_connection(backend: RedisBackend, room_id: str, connection_id: str, websocket: WebSocket):
    room_connections.setdefault(room_id, {})[connection_id] = websocket
    logger.debug(f"Added connection {connection_id} to room {room_id} (local connections: {len(room_connections[room_id])})")
    if room_id not in room_pubsub_tasks or room_pubsub_tasks[room_id].done():
        room_pubsub_tasks[room_id] = asyncio.create_task(listen_to_redis_channel(backend, room_id))
        # Give the listener a moment to subscribe to Redis channel
        await asyncio.sleep(0.1)


async def detach_connection(room_id: Optional[str], connection_id: str):
    if not room_id or room_id not in room_connections:
        return
    room_connections[room_id].pop(connection_id, None)
    logger.debug(f"Removed connection {connection_id} from local tracking for room {room_id}")
    if not room_connections[room_id]:
        del room_connections[room_id]
        task = room_pubsub_tasks.pop(room_id, None)
        if task:
            task.cancel()
            logger.debug(f"Cancelled pub/sub task for room {room_id}")


async def send_frame(websocket: WebSocket, frame: dict):
    await websocket.send_text(json.dumps(frame))


@app.websocket("/matching/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: str = None):
    """Matching WebSocket.

    Identity comes from the anonymous user cookie, then the ``user_id`` query
    parameter; a fresh id is issued when neither is present.
    Frames from the client: {"event": str, "data": dict, "id": ack id}.
    """
    state = websocket.app.state
    gateway: MatchingGateway = state.gateway
    backend: RedisBackend = state.backend

    known_user = websocket.cookies.get(USER_COOKIE_NAME) or user_id
    session = ClientSession(user_id=known_user or str(uuid.uuid4()), connection_id=str(uuid.uuid4()))

    await websocket.accept()
    logger.info(f"WebSocket connection accepted for user {session.user_id} ({session.connection_id})")
    await send_frame(websocket, {
        "type": "connection_established",
        "data": ConnectionData(user_id=session.user_id, is_new=not known_user).to_wire(),
    })

    resumed = gateway.handle_reconnect(session)
    if resumed:
        await attach_connection(backend, resumed, session.connection_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                frame = None
            if not isinstance(frame, dict):
                await send_frame(websocket, {"type": "exception", "status": "error", "event": None,
                                             "message": "Frames must be JSON objects", "code": "INVALID_PAYLOAD"})
                continue

            event = frame.get("event")
            previous_room = session.room_id
            try:
                ack = gateway.dispatch(session, event, frame.get("data"))
            except Exception as e:
                logger.error(f"[WS] Event: {event} - {e}", exc_info=True)
                await send_frame(websocket, {"type": "exception", "status": "error", "event": event,
                                             "message": "Internal server error", "code": "INTERNAL_ERROR"})
                continue

            if session.room_id != previous_room:
                await detach_connection(previous_room, session.connection_id)
                if session.room_id:
                    await attach_connection(backend, session.room_id, session.connection_id, websocket)

            await send_frame(websocket, {"type": "ack", "id": frame.get("id"), "event": event, **ack})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {session.user_id} in room {session.room_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {session.connection_id}: {e}", exc_info=True)
    finally:
        room_id = session.room_id
        await detach_connection(room_id, session.connection_id)
        try:
            gateway.handle_disconnect(session)
        except Exception as e:
            logger.error(f"Failed to handle disconnect of {session.user_id} from room {room_id}: {e}", exc_info=True)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
