"""Outbound event model used by the protocol handler to stay transport-agnostic.

The handler never writes bytes: it emits :class:`Event` objects addressed to a
connection id, and the transport adapter serialises them with ``to_wire()``.
Tests subscribe a recording callback instead of a socket.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict


class EventType(str, Enum):
    """Every message kind the server can send."""

    CONNECTION_ESTABLISHED = "CONNECTION_ESTABLISHED"
    ROOM_CREATED = "ROOM_CREATED"
    ROOM_JOINED = "ROOM_JOINED"
    PLAYER_CONNECTED = "PLAYER_CONNECTED"
    PLAYER_INFO = "PLAYER_INFO"
    PLAYER_READY = "PLAYER_READY"
    SHIPS_PLACED = "SHIPS_PLACED"
    GAME_START = "GAME_START"
    PLAYER_TURN = "PLAYER_TURN"
    SHOT_RESULT = "SHOT_RESULT"
    SPECIAL_WEAPON_USED = "SPECIAL_WEAPON_USED"
    GAME_OVER = "GAME_OVER"
    CHAT_MESSAGE = "CHAT_MESSAGE"
    PLAYER_LEFT = "PLAYER_LEFT"
    PLAYER_DISCONNECTED = "PLAYER_DISCONNECTED"
    ROOM_LEFT = "ROOM_LEFT"
    REMATCH_REQUEST = "REMATCH_REQUEST"
    ROOM_CLOSED = "ROOM_CLOSED"
    ERROR = "ERROR"


@dataclass(slots=True, frozen=True)
class Event:
    """Frozen event addressed to one connection."""

    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.payload}

    @property
    def is_chat(self) -> bool:
        return self.type is EventType.CHAT_MESSAGE

    @property
    def is_error(self) -> bool:
        return self.type is EventType.ERROR


# send(connection_id, event): provided by the transport, or a recorder in tests
Sender = Callable[[str, Event], None]
