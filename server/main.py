"""FastAPI WebSocket server for the Quartet card game."""

import asyncio
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from config import config
from handlers import HANDLERS, ConnectionContext
from logging_config import connection_context, setup_logging
from room import Room, RoomManager
from snapshots import snapshot_for_host, snapshot_for_player
from stores import FileRoomStore, RedisRoomStore
from templates import TemplateStore

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


template_store = TemplateStore(config.TEMPLATES_DIR)
room_manager = RoomManager(
    template_store=template_store,
    ttl_minutes=config.ROOM_TTL_MINUTES,
    max_players=config.MAX_PLAYERS_PER_ROOM,
)

_background_tasks: list[asyncio.Task] = []


# =============================================================================
# Background Tasks
# =============================================================================

async def _periodic_flush():
    """Persist rooms touched since the previous pass."""
    interval = max(config.SAVE_DEBOUNCE_MS, 50) / 1000
    while True:
        try:
            await asyncio.sleep(interval)
            await room_manager.flush()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Room flush failed: {e}")


async def _periodic_cleanup():
    """Expire rooms that have been idle past the TTL with nobody connected."""
    while True:
        try:
            await asyncio.sleep(config.CLEANUP_INTERVAL_SECONDS)
            removed = await room_manager.cleanup_expired()
            if removed:
                logger.info(f"Cleanup removed {len(removed)} room(s)")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Room cleanup failed: {e}")


async def _init_room_store():
    """Redis when REDIS_URL is set, JSON files otherwise."""
    if config.REDIS_URL:
        try:
            return await RedisRoomStore.create(
                config.REDIS_URL,
                ttl=timedelta(minutes=config.ROOM_TTL_MINUTES),
            )
        except Exception as e:
            logger.warning(f"Redis connection failed: {e} - falling back to file storage")
    logger.info(f"Room records stored in {config.ROOMS_DIR}")
    return FileRoomStore(config.ROOMS_DIR)


async def _stop_background_tasks():
    for task in _background_tasks:
        task.cancel()
    for task in _background_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _background_tasks.clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    room_manager.store = await _init_room_store()
    restored = await room_manager.load()
    logger.info(f"Restored {restored} room(s)")

    from routers.health import set_health_dependencies
    set_health_dependencies(
        room_store=room_manager.store,
        template_store=template_store,
        room_manager=room_manager,
    )

    _background_tasks.append(asyncio.create_task(_periodic_flush()))
    _background_tasks.append(asyncio.create_task(_periodic_cleanup()))

    logger.info(f"Quartet server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _stop_background_tasks()
    await room_manager.flush()
    await room_manager.store.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Quartet Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Routers
# =============================================================================

from routers.rooms import router as rooms_router, set_room_manager
from routers.templates import router as templates_router, set_template_store
from routers.health import router as health_router
set_room_manager(room_manager)
set_template_store(template_store)
app.include_router(rooms_router)
app.include_router(templates_router)
app.include_router(health_router)


# =============================================================================
# WebSocket
# =============================================================================

async def broadcast_room_state(room: Room):
    """
    Send every connected client its view of the room.

    Callers hold ``room.lock``, so all views come from the same state.
    """
    if room.host_websocket is not None:
        await room.send_to_host({
            "type": "room_state",
            "snapshot": snapshot_for_host(room).to_wire(),
        })
    for pid, player in room.players.items():
        if player.websocket is None:
            continue
        await room.send_to(pid, {
            "type": "room_state",
            "snapshot": snapshot_for_player(room, pid).to_wire(),
        })


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    ctx = ConnectionContext(websocket=websocket, connection_id=connection_id)

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        broadcast_room_state=broadcast_room_state,
    )

    with connection_context(connection_id):
        logger.debug(f"WebSocket connected as {connection_id}")
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Ignoring malformed message")
                    continue
                if not isinstance(data, dict) or not isinstance(data.get("type"), str):
                    continue
                handler = HANDLERS.get(data["type"])
                if handler:
                    await handler(data, ctx, **handler_deps)
        except WebSocketDisconnect:
            logger.debug("WebSocket disconnected")
        finally:
            await room_manager.disconnect(connection_id, on_change=broadcast_room_state)


# Serve static files if client directory exists
client_path = config.CLIENT_DIR
if os.path.exists(client_path):
    @app.get("/")
    async def serve_index():
        return FileResponse(os.path.join(client_path, "index.html"))

    # Mount static files for everything else (JS, CSS, images, etc.)
    app.mount("/", StaticFiles(directory=client_path), name="static")


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Quartet server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
