"""Error taxonomy shared by the room state machine and the protocol handler.

Every rejection a client can provoke is a :class:`GameError` carrying one
:class:`ErrorCode`.  Guards raise it at the point where the rule lives; the
protocol handler catches it once and reports it to the offending connection
as an ``ERROR`` message.  None of these are fatal to the server.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Machine-readable rejection reasons sent as ``ERROR.code``."""

    # protocol violations
    MALFORMED_MESSAGE = "MALFORMED_MESSAGE"
    UNKNOWN_MESSAGE = "UNKNOWN_MESSAGE"
    INVALID_ROOM_CODE = "INVALID_ROOM_CODE"
    NOT_IN_ROOM = "NOT_IN_ROOM"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    GAME_NOT_IN_BATTLE = "GAME_NOT_IN_BATTLE"
    GAME_NOT_IN_PLACEMENT = "GAME_NOT_IN_PLACEMENT"
    GAME_NOT_FINISHED = "GAME_NOT_FINISHED"
    ALREADY_SHOT_THERE = "ALREADY_SHOT_THERE"
    NO_OPPONENT = "NO_OPPONENT"
    NO_REMATCH_REQUESTED = "NO_REMATCH_REQUESTED"

    # capacity / lookup
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    ROOM_FULL = "ROOM_FULL"
    GAME_ALREADY_STARTED = "GAME_ALREADY_STARTED"
    ALREADY_IN_ROOM = "ALREADY_IN_ROOM"
    ALREADY_IN_THIS_ROOM = "ALREADY_IN_THIS_ROOM"

    # fleet validation
    WRONG_SHIP_COUNT = "WRONG_SHIP_COUNT"
    OUT_OF_BOUNDS = "OUT_OF_BOUNDS"
    OVERLAP = "OVERLAP"
    ADJACENCY_VIOLATION = "ADJACENCY_VIOLATION"
    INVALID_SHAPE = "INVALID_SHAPE"

    # resources
    WEAPON_UNAVAILABLE = "WEAPON_UNAVAILABLE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


_MESSAGES = {
    ErrorCode.MALFORMED_MESSAGE: "Malformed message",
    ErrorCode.UNKNOWN_MESSAGE: "Unknown message type",
    ErrorCode.INVALID_ROOM_CODE: "Room codes are 4 digits",
    ErrorCode.NOT_IN_ROOM: "You are not in a room",
    ErrorCode.NOT_YOUR_TURN: "Not your turn",
    ErrorCode.GAME_NOT_IN_BATTLE: "The battle has not started",
    ErrorCode.GAME_NOT_IN_PLACEMENT: "Ships can only be placed before the battle",
    ErrorCode.GAME_NOT_FINISHED: "The game is still running",
    ErrorCode.ALREADY_SHOT_THERE: "You already fired there",
    ErrorCode.NO_OPPONENT: "There is no opponent in the room",
    ErrorCode.NO_REMATCH_REQUESTED: "Your opponent has not asked for a rematch",
    ErrorCode.ROOM_NOT_FOUND: "Room not found",
    ErrorCode.ROOM_FULL: "Room is full",
    ErrorCode.GAME_ALREADY_STARTED: "The game in this room has already started",
    ErrorCode.ALREADY_IN_ROOM: "You are already in a room",
    ErrorCode.ALREADY_IN_THIS_ROOM: "You are already in this room",
    ErrorCode.WRONG_SHIP_COUNT: "Fleet does not match the ship configuration",
    ErrorCode.OUT_OF_BOUNDS: "Ship lies outside the board",
    ErrorCode.OVERLAP: "Ships overlap",
    ErrorCode.ADJACENCY_VIOLATION: "Ships may not touch each other",
    ErrorCode.INVALID_SHAPE: "Ships must be straight unbroken lines",
    ErrorCode.WEAPON_UNAVAILABLE: "Weapon unavailable",
    ErrorCode.INTERNAL_ERROR: "Internal server error",
}


class GameError(Exception):
    """A rejected request; never leaves room state modified."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message or _MESSAGES.get(code, code.value)
        super().__init__(f"{code.value}: {self.message}")


class PlacementError(GameError):
    """Raised by fleet validation; ``code`` is one of the placement reasons."""
