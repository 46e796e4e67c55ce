"""
Room management for multiplayer Quartet games.

This module handles room creation, player identity and reconnection,
socket binding, and idle-room expiry.

A Room contains:
    - A short unique code for joining (e.g., "K3QZ7A")
    - A collection of RoomPlayers (connection-level identity)
    - A Game instance with the actual game state
    - The host connection, which drives the shared screen
    - The card-face template chosen at game start

Identity model:
    Each player is issued a secret once, on creation. Resuming a session
    requires the player id and that secret. A player who rejoins with the
    same name (case-insensitive) reclaims the existing identity instead of
    creating a new one. Dropped connections never remove players; only the
    host can do that.
"""

import asyncio
import logging
import random
import secrets
import string
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import WebSocket

from constants import DEFAULT_PLAYER_NAME, MAX_NAME_LENGTH, MAX_PLAYERS, ROOM_CODE_LENGTH, ROOM_TTL_MINUTES
from game import Game, GameError, GamePhase, Player, SetTally, Spinner

logger = logging.getLogger(__name__)


class RoomError(Exception):
    """A room-level request was rejected. ``code`` is the wire error code."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def normalize_name(name) -> str:
    """Key used for name-based identity reclaim."""
    return str(name or "").strip().lower()


def clean_display_name(name) -> str:
    cleaned = str(name or "").strip()[:MAX_NAME_LENGTH]
    return cleaned or DEFAULT_PLAYER_NAME


@dataclass
class RoomPlayer:
    """
    A player in a game room (connection-level representation).

    This is separate from game.Player - RoomPlayer tracks identity and
    WebSocket binding, while game.Player tracks hand, sets and seat.

    Attributes:
        id: Unique player identifier, stable across reconnects.
        name: Display name.
        secret: Reconnection credential, issued once and never rotated.
        connection_id: Currently bound connection (None while offline).
        websocket: The bound WebSocket (None while offline).
    """

    id: str
    name: str
    secret: str
    connection_id: Optional[str] = None
    websocket: Optional[WebSocket] = None

    @property
    def online(self) -> bool:
        return self.connection_id is not None


@dataclass
class Binding:
    """Reverse index entry: which room/player a connection belongs to."""

    room_code: str
    player_id: str


@dataclass
class JoinResult:
    room: "Room"
    player: RoomPlayer
    reclaimed: bool = False
    dealt: int = 0


@dataclass
class ResumeResult:
    ok: bool
    reason: Optional[str] = None
    room: Optional["Room"] = None
    player: Optional[RoomPlayer] = None
    evicted: Optional[WebSocket] = None


@dataclass
class Room:
    """
    A game room that hosts one Quartet session at a time.

    Attributes:
        code: Room code for joining.
        players: Player id -> RoomPlayer.
        game: The Game instance containing actual game state.
        template_id: Card-face template chosen at game start.
        host_connection_id: Connection bound as host (None if disconnected).
        host_websocket: The host's WebSocket.
        last_activity_at: Epoch seconds of the last mutating action.
        lock: asyncio.Lock serializing all mutations of this room.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    template_id: Optional[str] = None
    host_connection_id: Optional[str] = None
    host_websocket: Optional[WebSocket] = None
    last_activity_at: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def phase(self) -> GamePhase:
        return self.game.phase

    def get_player(self, player_id: Optional[str]) -> Optional[RoomPlayer]:
        if not isinstance(player_id, str):
            return None
        return self.players.get(player_id)

    def find_player_by_name(self, name) -> Optional[RoomPlayer]:
        # Compare against the stored form: truncated, with the default applied.
        target = normalize_name(clean_display_name(name))
        for player in self.players.values():
            if normalize_name(player.name) == target:
                return player
        return None

    def has_connections(self) -> bool:
        """True while the host or any player has a bound connection."""
        if self.host_connection_id:
            return True
        return any(p.online for p in self.players.values())

    def connection_count(self) -> int:
        count = 1 if self.host_connection_id else 0
        return count + sum(1 for p in self.players.values() if p.online)

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    @staticmethod
    async def _send(websocket: Optional[WebSocket], message: dict) -> bool:
        if websocket is None:
            return False
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send {message.get('type')}: {e}")
            return False

    async def send_to_host(self, message: dict) -> bool:
        return await self._send(self.host_websocket, message)

    async def send_to(self, player_id: str, message: dict) -> bool:
        """Send a message to one player, if connected."""
        player = self.players.get(player_id)
        if player is None:
            return False
        return await self._send(player.websocket, message)

    async def broadcast(self, message: dict) -> None:
        """Send the same message to the host and every connected player."""
        await self.send_to_host(message)
        for player in self.players.values():
            await self._send(player.websocket, message)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_record(self) -> dict:
        """Serialize durable state. Connections are never persisted."""
        game = self.game
        return {
            "roomId": self.code,
            "phase": game.phase.value,
            "templateId": self.template_id,
            "deck": list(game.deck),
            "players": [
                {
                    "id": rp.id,
                    "name": rp.name,
                    "secret": rp.secret,
                    "seat": game.players[rp.id].seat,
                    "handCounts": {str(k): v for k, v in game.players[rp.id].hand_counts.items()},
                    "setsCount": game.players[rp.id].sets_count,
                }
                for rp in self.players.values()
            ],
            "order": list(game.order),
            "turnOrder": list(game.turn_order),
            "turnIndex": game.turn_index,
            "activePlayerId": game.active_player_id,
            "publicSets": {
                pid: {
                    "setsCount": tally.sets_count,
                    "byType": {str(k): v for k, v in tally.by_type.items()},
                }
                for pid, tally in game.public_sets.items()
            },
            "lastActivityAt": self.last_activity_at,
            "startedAt": game.started_at,
        }

    @classmethod
    def from_record(cls, data: dict) -> "Room":
        """Rebuild a room from ``to_record`` output, all players offline."""
        game = Game(
            phase=GamePhase(data.get("phase") or GamePhase.LOBBY.value),
            order=list(data.get("order") or []),
            turn_order=list(data.get("turnOrder") or []),
            turn_index=int(data.get("turnIndex") or 0),
            active_player_id=data.get("activePlayerId"),
            deck=[int(c) for c in data.get("deck") or []],
            started_at=data.get("startedAt"),
        )
        room = cls(
            code=data["roomId"],
            game=game,
            template_id=data.get("templateId"),
            last_activity_at=float(data.get("lastActivityAt") or time.time()),
        )
        for p in data.get("players") or []:
            room.players[p["id"]] = RoomPlayer(id=p["id"], name=p["name"], secret=p["secret"])
            game.players[p["id"]] = Player(
                id=p["id"],
                name=p["name"],
                hand_counts={int(k): int(v) for k, v in (p.get("handCounts") or {}).items() if int(v) > 0},
                sets_count=int(p.get("setsCount") or 0),
                seat=p.get("seat"),
            )
        for pid, info in (data.get("publicSets") or {}).items():
            game.public_sets[pid] = SetTally(
                sets_count=int(info.get("setsCount") or 0),
                by_type={int(k): int(v) for k, v in (info.get("byType") or {}).items()},
            )
        if game.phase == GamePhase.ACTIVE:
            # The in-flight turn's gift record is not persisted; it restarts.
            game.start_turn_tracker()
        return room


class RoomManager:
    """
    Manages all rooms and the connection <-> player index.

    A single RoomManager instance is used by the server. Every room mutation
    goes through it, and callers hold ``room.lock`` while doing so.

    Args:
        store: Optional room store (see stores/) for persistence.
        template_store: Template lookup used to validate game starts.
        ttl_minutes: Idle time after which unconnected rooms expire.
        max_players: Room capacity.
    """

    def __init__(
        self,
        store=None,
        template_store=None,
        ttl_minutes: int = ROOM_TTL_MINUTES,
        max_players: int = MAX_PLAYERS,
    ) -> None:
        self.rooms: dict[str, Room] = {}
        self.bindings: dict[str, Binding] = {}
        self.store = store
        self.template_store = template_store
        self.ttl_seconds = ttl_minutes * 60
        self.max_players = max_players
        self._dirty: set[str] = set()

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code."""
        alphabet = string.ascii_uppercase + string.digits
        for _ in range(max_attempts):
            code = "".join(random.choices(alphabet, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(self) -> Room:
        code = self._generate_code()
        room = Room(code=code)
        self.rooms[code] = room
        self.touch(room)
        logger.info(f"Room {code} created", extra={"room_code": code})
        return room

    def get_room(self, code) -> Optional[Room]:
        """Get a room by its code (case-insensitive)."""
        return self.rooms.get(str(code or "").strip().upper())

    def require_room(self, code) -> Room:
        room = self.get_room(code)
        if room is None:
            raise RoomError("room_not_found")
        return room

    @asynccontextmanager
    async def locked(self, code) -> AsyncIterator[Room]:
        """
        Hold a room's lock for the duration of a mutation.

        Raises:
            RoomError: ``room_not_found``, including when the room expired
                while we were waiting for the lock.
        """
        room = self.require_room(code)
        async with room.lock:
            if self.rooms.get(room.code) is not room:
                raise RoomError("room_not_found")
            yield room

    def touch(self, room: Room) -> None:
        """Record activity and queue the room for persistence."""
        room.last_activity_at = time.time()
        self._dirty.add(room.code)

    # -------------------------------------------------------------------------
    # Host & Players
    # -------------------------------------------------------------------------

    def set_host(self, code, connection_id: str, websocket: Optional[WebSocket] = None) -> Optional[Room]:
        """Bind a connection as the room's host. Returns None if no such room."""
        room = self.get_room(code)
        if room is None:
            return None
        room.host_connection_id = connection_id
        room.host_websocket = websocket
        self.touch(room)
        return room

    def is_host(self, room: Room, connection_id: str) -> bool:
        return room.host_connection_id is not None and room.host_connection_id == connection_id

    def add_player(self, code, name) -> JoinResult:
        """
        Create a player, or reclaim the one already using this name.

        A new player joining an active game is dealt in immediately.

        Raises:
            RoomError: ``room_not_found`` or ``room_full``.
        """
        room = self.require_room(code)

        existing = room.find_player_by_name(name)
        if existing is not None:
            self.touch(room)
            return JoinResult(room=room, player=existing, reclaimed=True)

        if len(room.players) >= self.max_players:
            raise RoomError("room_full")

        player_id = uuid.uuid4().hex[:10]
        room_player = RoomPlayer(
            id=player_id,
            name=clean_display_name(name),
            secret=secrets.token_urlsafe(12),
        )
        room.players[player_id] = room_player
        game_player = Player(id=player_id, name=room_player.name)

        dealt = 0
        if room.game.phase == GamePhase.ACTIVE:
            dealt = room.game.add_late_player(game_player)
            logger.info(
                f"Late join in {room.code}: {room_player.name} seat={game_player.seat} "
                f"dealt={dealt} deck_left={len(room.game.deck)}",
                extra={"room_code": room.code, "player_id": player_id},
            )
        else:
            room.game.add_player(game_player)

        self.touch(room)
        return JoinResult(room=room, player=room_player, dealt=dealt)

    def bind_player_socket(
        self,
        room: Room,
        player: RoomPlayer,
        connection_id: str,
        websocket: Optional[WebSocket] = None,
    ) -> Optional[WebSocket]:
        """
        Bind a connection to a player.

        A different connection already bound to the player is unbound first.

        Returns:
            The evicted WebSocket, which the caller should close.
        """
        evicted = None
        if player.connection_id and player.connection_id != connection_id:
            self.bindings.pop(player.connection_id, None)
            evicted = player.websocket

        previous = self.bindings.get(connection_id)
        if previous and (previous.room_code, previous.player_id) != (room.code, player.id):
            self._unbind(connection_id)

        player.connection_id = connection_id
        player.websocket = websocket
        self.bindings[connection_id] = Binding(room_code=room.code, player_id=player.id)
        return evicted

    def resume_player(
        self,
        code,
        player_id,
        secret,
        connection_id: str,
        websocket: Optional[WebSocket] = None,
    ) -> ResumeResult:
        """
        Rebind a returning player who presents their id and secret.

        An unknown player id and a wrong secret fail with the same reason.
        """
        room = self.get_room(code)
        if room is None:
            return ResumeResult(ok=False, reason="room_not_found")

        player = room.get_player(player_id)
        if player is None or not isinstance(secret, str) or not secrets.compare_digest(player.secret, secret):
            return ResumeResult(ok=False, reason="bad_secret")

        evicted = self.bind_player_socket(room, player, connection_id, websocket)
        self.touch(room)
        return ResumeResult(ok=True, room=room, player=player, evicted=evicted)

    def authorize_player(self, room: Room, player_id, secret, connection_id: str) -> Optional[RoomPlayer]:
        """The player if the secret matches and the caller owns the binding."""
        player = room.get_player(player_id)
        if player is None or not isinstance(secret, str):
            return None
        if not secrets.compare_digest(player.secret, secret):
            return None
        if player.connection_id != connection_id:
            return None
        return player

    def _unbind(self, connection_id: str) -> Optional[Room]:
        binding = self.bindings.pop(connection_id, None)
        if binding is None:
            return None
        room = self.rooms.get(binding.room_code)
        if room is None:
            return None
        player = room.get_player(binding.player_id)
        if player and player.connection_id == connection_id:
            player.connection_id = None
            player.websocket = None
        return room

    def _rooms_for_connection(self, connection_id: str) -> list[Room]:
        rooms = []
        binding = self.bindings.get(connection_id)
        if binding is not None:
            room = self.rooms.get(binding.room_code)
            if room is None:
                self.bindings.pop(connection_id, None)
            else:
                rooms.append(room)
        for room in self.rooms.values():
            if room.host_connection_id == connection_id and room not in rooms:
                rooms.append(room)
        return rooms

    def _release(self, room: Room, connection_id: str) -> bool:
        """Drop the connection's player and host bindings in one room. Caller holds ``room.lock``."""
        changed = False
        binding = self.bindings.get(connection_id)
        if binding is not None and binding.room_code == room.code:
            self._unbind(connection_id)
            changed = True
        if room.host_connection_id == connection_id:
            room.host_connection_id = None
            room.host_websocket = None
            changed = True
        if changed:
            self.touch(room)
        return changed

    async def disconnect(
        self,
        connection_id: str,
        on_change: Optional[Callable[[Room], Awaitable[None]]] = None,
    ) -> list[Room]:
        """
        Forget a closed connection.

        Game state is untouched; players simply show as offline. Each room
        is updated under its lock, and ``on_change`` runs under the same
        lock so the refreshed views all come from one state.

        Returns:
            Rooms whose connection status changed.
        """
        affected = []
        for room in self._rooms_for_connection(connection_id):
            async with room.lock:
                if not self._release(room, connection_id):
                    continue
                affected.append(room)
                if on_change is not None and self.rooms.get(room.code) is room:
                    await on_change(room)
        return affected

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, code, template_id) -> Spinner:
        """
        Start the room's game with the given card template.

        All checks run before anything is mutated.

        Raises:
            RoomError: ``room_not_found``, ``bad_phase``, ``need_2_players``
                or ``template_not_found``.
        """
        room = self.require_room(code)
        if room.game.phase != GamePhase.LOBBY:
            raise RoomError("bad_phase")
        if len(room.players) < 2:
            raise RoomError("need_2_players")
        if not template_id or self.template_store is None:
            raise RoomError("template_not_found")
        if self.template_store.load_template(str(template_id)) is None:
            raise RoomError("template_not_found")

        try:
            spinner = room.game.start_game()
        except GameError as e:
            raise RoomError(e.code) from e
        room.template_id = str(template_id)
        self.touch(room)
        logger.info(
            f"Game started in {room.code}: players={len(room.game.order)} "
            f"first={room.game.active_player_id}",
            extra={"room_code": room.code},
        )
        return spinner

    def new_game(self, code) -> Room:
        room = self.require_room(code)
        room.game.reset()
        self.touch(room)
        return room

    def remove_player(self, code, player_id) -> Room:
        """
        Remove a player for good (host action).

        Raises:
            RoomError: ``room_not_found``.
        """
        room = self.require_room(code)
        player = room.players.pop(player_id, None) if isinstance(player_id, str) else None
        if player is None:
            return room
        if player.connection_id:
            self.bindings.pop(player.connection_id, None)
        room.game.remove_player(player.id)
        self.touch(room)
        logger.info(f"Player {player.name} removed from {room.code}", extra={"room_code": room.code, "player_id": player.id})
        return room

    # -------------------------------------------------------------------------
    # Expiry & Persistence
    # -------------------------------------------------------------------------

    def is_expired(self, room: Room, now: Optional[float] = None) -> bool:
        """Idle past the TTL AND nobody connected."""
        now = time.time() if now is None else now
        return now - room.last_activity_at > self.ttl_seconds and not room.has_connections()

    async def cleanup_expired(self, now: Optional[float] = None) -> list[str]:
        """
        Purge idle rooms. Each room is checked under its own lock.

        Returns:
            Codes of the rooms removed.
        """
        removed = []
        for code, room in list(self.rooms.items()):
            async with room.lock:
                if not self.is_expired(room, now):
                    continue
                self.rooms.pop(code, None)
                self._dirty.discard(code)
            removed.append(code)
            logger.info(f"Room {code} expired", extra={"room_code": code})
            if self.store is not None:
                try:
                    await self.store.delete(code)
                except Exception as e:
                    logger.error(f"Failed to delete stored room {code}: {e}", extra={"room_code": code})
        return removed

    async def flush(self) -> int:
        """
        Persist rooms touched since the last flush.

        Returns:
            Number of rooms saved.
        """
        if self.store is None or not self._dirty:
            self._dirty.clear()
            return 0
        saved = 0
        for code in list(self._dirty):
            self._dirty.discard(code)
            room = self.rooms.get(code)
            if room is None:
                continue
            async with room.lock:
                record = room.to_record()
            try:
                await self.store.save(code, record)
                saved += 1
            except Exception as e:
                self._dirty.add(code)
                logger.error(f"Failed to persist room {code}: {e}", extra={"room_code": code})
        return saved

    async def load(self, now: Optional[float] = None) -> int:
        """
        Restore rooms from the store, dropping records past the TTL.

        Returns:
            Number of rooms restored.
        """
        if self.store is None:
            return 0
        now = time.time() if now is None else now
        loaded = 0
        for record in await self.store.load_all():
            code = record.get("roomId") if isinstance(record, dict) else None
            if not code:
                continue
            try:
                if now - float(record.get("lastActivityAt") or 0) > self.ttl_seconds:
                    await self.store.delete(code)
                    logger.info(f"Stored room {code} expired", extra={"room_code": code})
                    continue
                room = Room.from_record(record)
            except Exception as e:
                logger.error(f"Failed to load room {code}: {e}", extra={"room_code": code})
                continue
            self.rooms[room.code] = room
            loaded += 1
            logger.info(
                f"Room {room.code} restored: phase={room.phase.value} players={len(room.players)}",
                extra={"room_code": room.code},
            )
        return loaded

    def summary(self) -> dict:
        """Counts for the metrics endpoint."""
        return {
            "rooms": len(self.rooms),
            "players": sum(len(r.players) for r in self.rooms.values()),
            "games_in_progress": sum(1 for r in self.rooms.values() if r.phase == GamePhase.ACTIVE),
            "connections": sum(r.connection_count() for r in self.rooms.values()),
        }
