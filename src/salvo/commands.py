"""Inbound client messages as a tagged union of frozen dataclasses.

``parse_message`` turns a decoded JSON envelope ``{"type": ..., ...}`` into
exactly one command object or raises :class:`CommandParseError`.  Nothing here
looks at room state; that is the protocol handler's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .coord_utils import in_bounds
from .fleet import ShipSpec
from .room import Weapon

MAX_NAME_LEN = 32
MAX_CHAT_LEN = 500


class CommandParseError(Exception):
    """Raised when an envelope cannot be parsed as a valid command."""


class UnknownCommandError(CommandParseError):
    """Raised for a well-formed envelope whose ``type`` we do not handle."""


@dataclass(frozen=True)
class CreateRoom:
    player_name: str = ""


@dataclass(frozen=True)
class JoinRoom:
    room_id: str
    player_name: str = ""


@dataclass(frozen=True)
class PlayerReady:
    pass


@dataclass(frozen=True)
class PlaceShips:
    ships: tuple[ShipSpec, ...]


@dataclass(frozen=True)
class FireShot:
    x: int
    y: int
    weapon: Weapon = Weapon.NORMAL


@dataclass(frozen=True)
class UseSuperWeapon:
    pass


@dataclass(frozen=True)
class LeaveRoom:
    pass


@dataclass(frozen=True)
class Chat:
    text: str


@dataclass(frozen=True)
class PlayerInfo:
    player_name: str


@dataclass(frozen=True)
class RematchRequest:
    pass


@dataclass(frozen=True)
class RematchAccept:
    pass


Command = Union[
    CreateRoom,
    JoinRoom,
    PlayerReady,
    PlaceShips,
    FireShot,
    UseSuperWeapon,
    LeaveRoom,
    Chat,
    PlayerInfo,
    RematchRequest,
    RematchAccept,
]


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _int(obj: dict, key: str) -> int:
    value = obj.get(key)
    # bool is an int subclass; reject it explicitly
    if not isinstance(value, int) or isinstance(value, bool):
        raise CommandParseError(f"{key} must be an integer")
    return value


def _name(obj: dict, key: str = "playerName") -> str:
    value = obj.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CommandParseError(f"{key} must be a string")
    return value.strip()[:MAX_NAME_LEN]


def _ship(raw: Any) -> ShipSpec:
    if not isinstance(raw, dict):
        raise CommandParseError("each ship must be an object")
    cells = raw.get("coordinates", raw.get("cells"))
    if not isinstance(cells, list):
        raise CommandParseError("ship coordinates must be a list")
    coords = []
    for cell in cells:
        if not isinstance(cell, dict):
            raise CommandParseError("ship cells must be {x, y} objects")
        coords.append((_int(cell, "x"), _int(cell, "y")))
    ship_type = raw.get("type")
    if ship_type is not None and not isinstance(ship_type, (str, int)):
        raise CommandParseError("ship type must be a string")
    return ShipSpec(type=str(ship_type) if ship_type is not None else None, cells=tuple(coords))


def _shot(obj: dict) -> FireShot:
    x, y = _int(obj, "x"), _int(obj, "y")
    if not in_bounds(x, y):
        raise CommandParseError(f"({x}, {y}) is not on the board")
    raw_weapon = obj.get("weapon") or Weapon.NORMAL.value
    try:
        weapon = Weapon(str(raw_weapon).lower())
    except ValueError:
        raise CommandParseError(f"Unknown weapon: {raw_weapon}") from None
    return FireShot(x=x, y=y, weapon=weapon)


# ---------------------------------------------------------------------------
# Public parser
# ---------------------------------------------------------------------------


def parse_message(obj: Any) -> Command:
    if not isinstance(obj, dict):
        raise CommandParseError("Message must be a JSON object")
    kind = obj.get("type")
    if not isinstance(kind, str) or not kind:
        raise CommandParseError("Message has no type")
    kind = kind.upper()

    if kind == "CREATE_ROOM":
        return CreateRoom(player_name=_name(obj))
    elif kind == "JOIN_ROOM":
        room_id = obj.get("roomId")
        if isinstance(room_id, bool) or not isinstance(room_id, (str, int)):
            raise CommandParseError("roomId must be a string")
        return JoinRoom(room_id=str(room_id).strip().upper(), player_name=_name(obj))
    elif kind == "PLAYER_READY":
        return PlayerReady()
    elif kind == "SHIPS_PLACED":
        ships = obj.get("ships")
        if not isinstance(ships, list):
            raise CommandParseError("ships must be a list")
        return PlaceShips(ships=tuple(_ship(s) for s in ships))
    elif kind in ("SHOT", "FIRE_SHOT"):
        return _shot(obj)
    elif kind == "USE_SUPER_WEAPON":
        return UseSuperWeapon()
    elif kind == "LEAVE_ROOM":
        return LeaveRoom()
    elif kind == "CHAT":
        text = obj.get("message")
        if not isinstance(text, str) or not text.strip():
            raise CommandParseError("CHAT requires a non-empty message")
        return Chat(text=text.strip()[:MAX_CHAT_LEN])
    elif kind == "PLAYER_INFO":
        return PlayerInfo(player_name=_name(obj))
    elif kind == "REMATCH_REQUEST":
        return RematchRequest()
    elif kind == "REMATCH_ACCEPT":
        return RematchAccept()
    else:
        raise UnknownCommandError(f"Unknown message type: {kind}")
