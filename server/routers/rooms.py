"""
Rooms API router.

Room creation and read-only room lookups for the host dashboard. Everything
that changes a room after creation goes over the WebSocket.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from room import RoomManager
from snapshots import player_roster, room_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_room_manager: Optional[RoomManager] = None


def set_room_manager(manager: RoomManager) -> None:
    """Set the room manager instance (called from main.py)."""
    global _room_manager
    _room_manager = manager


def get_room_manager() -> RoomManager:
    if _room_manager is None:
        raise HTTPException(status_code=503, detail="Room manager not initialized")
    return _room_manager


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/rooms")
@router.get("/rooms/create")
async def create_room():
    """Create an empty room and return the links for host and players."""
    room = get_room_manager().create_room()
    return {
        "roomId": room.code,
        "hostUrl": f"/host.html?roomId={room.code}",
        "playerUrl": f"/room.html?roomId={room.code}",
    }


@router.get("/rooms/{code}/summary")
async def get_room_summary(code: str):
    """Room status for the host dashboard. Unknown rooms report exists=false."""
    room = get_room_manager().get_room(code)
    if room is None:
        return {"exists": False, "roomId": code.upper()}
    return room_summary(room)


@router.get("/rooms/{code}/players")
async def get_room_players(code: str):
    room = get_room_manager().get_room(code)
    if room is None:
        return JSONResponse(status_code=404, content={"roomId": code.upper(), "exists": False})
    return {"roomId": room.code, "phase": room.phase.value, "players": player_roster(room)}


@router.post("/client-log")
async def client_log(payload: Optional[dict[str, Any]] = None):
    """Diagnostic messages reported by browsers."""
    logger.info(f"Client log: {payload or {}}")
    return {"ok": True}
