"""Session registry: live rooms by code and the room each connection sits in."""

from __future__ import annotations

import contextlib
import logging
import random
import re
import threading
import time
from typing import Callable, Iterator, Optional

from . import config as _cfg
from .fleet import Ruleset
from .room import Room

logger = logging.getLogger(__name__)

ROOM_CODE_RE = re.compile(rf"^[{_cfg.ROOM_CODE_ALPHABET}]{{{_cfg.ROOM_CODE_LENGTH}}}$")


def valid_room_code(code: object) -> bool:
    return isinstance(code, str) and ROOM_CODE_RE.match(code) is not None


class SessionRegistry:
    """Owns every live Room for its whole lifetime.

    The registry lock only guards the two maps.  It is never held while a
    published room's lock is being acquired, so callers look a room up first
    and then lock it, re-checking ``room.closed``.
    """

    def __init__(
        self,
        ruleset: Ruleset | None = None,
        *,
        rng: random.Random | None = None,
        code_factory: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ruleset = ruleset or Ruleset.named()
        self._rng = rng or random.Random()
        self._code_factory = code_factory or self._random_code
        self._clock = clock
        self._lock = threading.Lock()
        self._rooms: dict[str, Room] = {}
        self._by_connection: dict[str, Room] = {}

    def _random_code(self) -> str:
        return "".join(self._rng.choice(_cfg.ROOM_CODE_ALPHABET) for _ in range(_cfg.ROOM_CODE_LENGTH))

    # -------------------- rooms --------------------
    def _new_room(self) -> Room:
        # caller holds self._lock; the room is not yet published
        if len(self._rooms) >= len(_cfg.ROOM_CODE_ALPHABET) ** _cfg.ROOM_CODE_LENGTH:
            raise RuntimeError("room code space exhausted")
        code = self._code_factory()
        while code in self._rooms:
            logger.debug("Room code %s collided, regenerating", code)
            code = self._code_factory()
        return Room(code, self.ruleset, rng=self._rng, clock=self._clock)

    def create_room(self) -> Room:
        """Register an empty Room under a code no live room is using."""
        with self._lock:
            room = self._new_room()
            self._rooms[room.code] = room
        logger.info("Room %s created (%d live)", room.code, len(self._rooms))
        return room

    @contextlib.contextmanager
    def open_room(self, owner_id: str, owner_name: str) -> Iterator[Room]:
        """Create a room with *owner_id* in seat 1 and hold its lock for the block.

        The owner is seated and bound before the code becomes visible, and a
        join on the new code waits until the block has announced the room.
        """
        with self._lock:
            room = self._new_room()
            room.attach(owner_id, owner_name)
            # nobody else can see the room yet, so this never blocks
            room.lock.acquire()
            self._rooms[room.code] = room
            self._by_connection[owner_id] = room
        logger.info("Room %s opened by %s (%d live)", room.code, owner_id, len(self._rooms))
        try:
            yield room
        finally:
            room.lock.release()

    def find_room_by_code(self, code: str) -> Optional[Room]:
        with self._lock:
            return self._rooms.get(code)

    def find_room_by_connection(self, connection_id: str) -> Optional[Room]:
        with self._lock:
            return self._by_connection.get(connection_id)

    def remove_room(self, code: str) -> Optional[Room]:
        with self._lock:
            room = self._rooms.pop(code, None)
            if room is None:
                return None
            room.closed = True
            for conn_id in [c for c, r in self._by_connection.items() if r is room]:
                del self._by_connection[conn_id]
        logger.info("Room %s removed (%d live)", code, len(self._rooms))
        return room

    def rooms(self) -> list[Room]:
        with self._lock:
            return list(self._rooms.values())

    # -------------------- connections --------------------
    def bind(self, connection_id: str, room: Room) -> None:
        with self._lock:
            self._by_connection[connection_id] = room

    def unbind(self, connection_id: str) -> None:
        with self._lock:
            self._by_connection.pop(connection_id, None)

    def now(self) -> float:
        return self._clock()
