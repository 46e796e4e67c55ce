"""
Room state projections sent to clients.

Two views are built on demand from the same Room and never stored:

    HostView    - the shared screen; every player's full hand is visible.
    PlayerView  - one player's phone; other players only show hand totals,
                  the requester's own hand comes in the ``me`` block.

A player view must never carry another player's hand contents.
Field names are camelCase on the wire.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from game import SetTally
from room import Room


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class SetTallyView(WireModel):
    sets_count: int = 0
    by_type: dict[str, int] = {}


class PlayerSummary(WireModel):
    id: str
    name: str
    seat: Optional[int] = None
    hand_total: int = 0
    sets_count: int = 0
    online: bool = False


class HostPlayerView(PlayerSummary):
    hand: dict[str, int] = {}


class MeView(WireModel):
    id: Optional[str] = None
    hand: dict[str, int] = {}


class RoomViewBase(WireModel):
    room_id: str
    phase: str
    template_id: Optional[str] = None
    order: list[str] = []
    turn_order: list[str] = []
    active_player_id: Optional[str] = None
    deck_count: int = 0
    public_sets: dict[str, SetTallyView] = {}


class HostView(RoomViewBase):
    players: list[HostPlayerView] = []


class PlayerView(RoomViewBase):
    players: list[PlayerSummary] = []
    me: MeView


def _hand(counts: dict[int, int]) -> dict[str, int]:
    return {str(type_id): count for type_id, count in counts.items() if count > 0}


def _tally(tally: SetTally) -> SetTallyView:
    return SetTallyView(
        sets_count=tally.sets_count,
        by_type={str(type_id): n for type_id, n in tally.by_type.items()},
    )


def _room_fields(room: Room) -> dict:
    game = room.game
    return dict(
        room_id=room.code,
        phase=game.phase.value,
        template_id=room.template_id,
        order=list(game.order),
        turn_order=list(game.turn_order),
        active_player_id=game.active_player_id,
        deck_count=len(game.deck),
        public_sets={pid: _tally(t) for pid, t in game.public_sets.items()},
    )


def snapshot_for_host(room: Room) -> HostView:
    players = []
    for rp in room.players.values():
        gp = room.game.players.get(rp.id)
        hand = gp.hand_counts if gp else {}
        players.append(HostPlayerView(
            id=rp.id,
            name=rp.name,
            seat=gp.seat if gp else None,
            hand=_hand(hand),
            hand_total=sum(hand.values()),
            sets_count=gp.sets_count if gp else 0,
            online=rp.online,
        ))
    return HostView(players=players, **_room_fields(room))


def snapshot_for_player(room: Room, player_id: Optional[str]) -> PlayerView:
    players = []
    for rp in room.players.values():
        gp = room.game.players.get(rp.id)
        players.append(PlayerSummary(
            id=rp.id,
            name=rp.name,
            seat=gp.seat if gp else None,
            hand_total=gp.hand_total() if gp else 0,
            sets_count=gp.sets_count if gp else 0,
            online=rp.online,
        ))
    me = room.game.get_player(player_id)
    return PlayerView(
        players=players,
        me=MeView(id=player_id, hand=_hand(me.hand_counts) if me else {}),
        **_room_fields(room),
    )


def room_summary(room: Room) -> dict:
    """Lightweight room status for the host dashboard."""
    active = room.game.active_player()
    return {
        "exists": True,
        "roomId": room.code,
        "phase": room.phase.value,
        "playersCount": len(room.players),
        "activeName": active.name if active else None,
        "deckCount": len(room.game.deck),
        "lastActivityAt": room.last_activity_at,
    }


def player_roster(room: Room) -> list[dict]:
    """Players sorted by seat (unseated last), then name."""
    roster = [
        {
            "id": rp.id,
            "name": rp.name,
            "seat": room.game.players[rp.id].seat if rp.id in room.game.players else None,
            "online": rp.online,
        }
        for rp in room.players.values()
    ]
    roster.sort(key=lambda p: (p["seat"] if p["seat"] is not None else 999, p["name"].lower()))
    return roster
