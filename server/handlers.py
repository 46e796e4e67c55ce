"""WebSocket message handlers for the Quartet card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Every mutation happens while holding the room's lock, and the resulting
state is broadcast before the lock is released, so all recipients see the
same post-mutation state.

Rejected requests answer the caller with ``error_msg``. Failed credential
checks on in-game actions (give, end turn) are dropped silently instead,
so unauthenticated callers learn nothing about which ids or secrets exist.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from game import GamePhase, valid_type_ids
from logging_config import get_logger, player_id_var, room_code_var
from room import RoomError
from snapshots import snapshot_for_host, snapshot_for_player

logger = get_logger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    room_code: Optional[str] = None
    player_id: Optional[str] = None


async def send_error(ctx: ConnectionContext, code: str) -> None:
    await ctx.websocket.send_json({"type": "error_msg", "error": code})


async def close_evicted(websocket: Optional[WebSocket]) -> None:
    """Close a connection that was replaced by a newer one for the same player."""
    if websocket is None:
        return
    try:
        await websocket.close(code=4000, reason="Connected elsewhere")
    except Exception as e:
        logger.debug(f"Evicted socket already closed: {e}")


def _remember(ctx: ConnectionContext, room_code: str, player_id: Optional[str] = None) -> None:
    ctx.room_code = room_code
    room_code_var.set(room_code)
    if player_id is not None:
        ctx.player_id = player_id
        player_id_var.set(player_id)


# ---------------------------------------------------------------------------
# Joining
# ---------------------------------------------------------------------------

async def handle_host_join(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            room_manager.set_host(room.code, ctx.connection_id, ctx.websocket)
            _remember(ctx, room.code)
            await ctx.websocket.send_json({
                "type": "room_state",
                "snapshot": snapshot_for_host(room).to_wire(),
            })
    except RoomError as e:
        await send_error(ctx, e.code)
        return
    logger.info("Host joined", extra={"room_code": room.code})


async def handle_player_join(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    evicted = None
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            result = room_manager.add_player(room.code, data.get("name"))
            player = result.player
            evicted = room_manager.bind_player_socket(room, player, ctx.connection_id, ctx.websocket)
            _remember(ctx, room.code, player.id)

            await ctx.websocket.send_json({
                "type": "claimed" if result.reclaimed else "joined",
                "playerId": player.id,
                "secret": player.secret,
                "snapshot": snapshot_for_player(room, player.id).to_wire(),
            })
            await broadcast_room_state(room)
    except RoomError as e:
        await send_error(ctx, e.code)
        return

    log = logger.with_context(room_code=room.code, player_id=player.id)
    if result.reclaimed:
        log.info(f"Claim: {player.name} rebound to connection {ctx.connection_id[:8]}")
    else:
        log.info(f"Player joined: {player.name}")
    await close_evicted(evicted)


async def handle_resume(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            result = room_manager.resume_player(
                room.code,
                data.get("playerId"),
                data.get("secret"),
                ctx.connection_id,
                ctx.websocket,
            )
            if not result.ok:
                await ctx.websocket.send_json({"type": "resume_fail", "reason": result.reason})
                return
            _remember(ctx, room.code, result.player.id)
            await ctx.websocket.send_json({
                "type": "resume_ok",
                "snapshot": snapshot_for_player(room, result.player.id).to_wire(),
            })
            await broadcast_room_state(room)
    except RoomError as e:
        await ctx.websocket.send_json({"type": "resume_fail", "reason": e.code})
        return
    await close_evicted(result.evicted)


# ---------------------------------------------------------------------------
# Host actions
# ---------------------------------------------------------------------------

async def handle_game_start(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            if not room_manager.is_host(room, ctx.connection_id):
                raise RoomError("not_host")
            spinner = room_manager.start_game(room.code, data.get("templateId"))
            await room.broadcast({"type": "game_started", "spinner": spinner.to_dict()})
            await broadcast_room_state(room)
    except RoomError as e:
        await send_error(ctx, e.code)


async def handle_host_remove_player(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            if not room_manager.is_host(room, ctx.connection_id):
                raise RoomError("not_host")
            removed = room.get_player(data.get("playerId"))
            if removed is None:
                raise RoomError("player_not_found")
            removed_socket = removed.websocket
            room_manager.remove_player(room.code, removed.id)
            if removed_socket is not None:
                await room._send(removed_socket, {"type": "removed"})
            await broadcast_room_state(room)
    except RoomError as e:
        await send_error(ctx, e.code)


async def handle_game_new(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            if not room_manager.is_host(room, ctx.connection_id):
                raise RoomError("not_host")
            room_manager.new_game(room.code)
            await broadcast_room_state(room)
    except RoomError as e:
        await send_error(ctx, e.code)
        return
    logger.info("New game", extra={"room_code": room.code})


# ---------------------------------------------------------------------------
# Player actions
# ---------------------------------------------------------------------------

async def handle_give_to_active(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            game = room.game
            if game.phase != GamePhase.ACTIVE:
                return
            player = room_manager.authorize_player(room, data.get("playerId"), data.get("secret"), ctx.connection_id)
            if player is None or player.id == game.active_player_id:
                return
            raw_types = data.get("types")
            type_ids = valid_type_ids(raw_types if isinstance(raw_types, list) else [])
            if not type_ids:
                return

            result = game.give_to_active(player.id, type_ids)
            room_manager.touch(room)
            await broadcast_room_state(room)
            if game.phase == GamePhase.FINISHED:
                await room.broadcast({"type": "game_finished"})
    except RoomError as e:
        await send_error(ctx, e.code)
        return

    logger.with_context(room_code=room.code, player_id=player.id).debug(
        f"Gave {result.moved_total} card(s) to {game.active_player_id}: {result.moved_by_type}"
    )


async def handle_end_turn(data: dict, ctx: ConnectionContext, *, room_manager, broadcast_room_state, **kw) -> None:
    try:
        async with room_manager.locked(data.get("roomId")) as room:
            game = room.game
            if game.phase != GamePhase.ACTIVE:
                return
            if data.get("playerId") != game.active_player_id:
                return
            player = room_manager.authorize_player(room, data.get("playerId"), data.get("secret"), ctx.connection_id)
            if player is None:
                return

            outcome = game.end_turn()
            room_manager.touch(room)
            await broadcast_room_state(room)
            if outcome.finished:
                await room.broadcast({"type": "game_finished"})
    except RoomError as e:
        await send_error(ctx, e.code)
        return

    log = logger.with_context(room_code=room.code, player_id=player.id)
    log.info(
        f"Turn ended: penalty={outcome.penalty_drawn} round_ended={outcome.round_ended} "
        f"next={game.active_player_id} deck={len(game.deck)}"
    )
    if outcome.finished:
        log.info(f"Game finished with {game.total_sets()} sets")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

async def handle_client_log(data: dict, ctx: ConnectionContext, **kw) -> None:
    logger.info(f"Client log: {data.get('payload')}", extra={"connection_id": ctx.connection_id})


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "host_join": handle_host_join,
    "player_join": handle_player_join,
    "resume": handle_resume,
    "game_start": handle_game_start,
    "give_to_active": handle_give_to_active,
    "end_turn": handle_end_turn,
    "host_remove_player": handle_host_remove_player,
    "game_new": handle_game_new,
    "client_log": handle_client_log,
}
