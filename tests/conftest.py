import logging
import random
from typing import Any, Callable, Iterable

import pytest

from salvo.events import Event
from salvo.handler import ProtocolHandler
from salvo.registry import SessionRegistry
from salvo.stats import StatsBook

# Suppress INFO & DEBUG logs from the server modules during tests
logging.basicConfig(level=logging.WARNING)


# A legal "standard" fleet (1x4, 2x3, 3x2, 4x1, no ship touching another).
# Rows 5-9 stay empty so tests have water to shoot at.
STANDARD_LAYOUT = [
    ("Battleship", [(0, 0), (1, 0), (2, 0), (3, 0)]),
    ("Cruiser", [(5, 0), (6, 0), (7, 0)]),
    ("Cruiser", [(0, 2), (1, 2), (2, 2)]),
    ("Destroyer", [(4, 2), (5, 2)]),
    ("Destroyer", [(7, 2), (8, 2)]),
    ("Destroyer", [(0, 4), (1, 4)]),
    ("Patrol", [(3, 4)]),
    ("Patrol", [(5, 4)]),
    ("Patrol", [(7, 4)]),
    ("Patrol", [(9, 4)]),
]

FLEET_CELLS = [cell for _, cells in STANDARD_LAYOUT for cell in cells]
WATER_CELLS = [(x, y) for y in range(5, 10) for x in range(10)]


def fleet_wire(layout=STANDARD_LAYOUT) -> list[dict]:
    return [{"type": t, "coordinates": [{"x": x, "y": y} for x, y in cells]} for t, cells in layout]


class FirstChoice(random.Random):
    """Deterministic rng: ``choice`` always picks the first element (seat 1 moves first)."""

    def choice(self, seq):
        return seq[0]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Outbox:
    """Recording ``send`` callback standing in for the socket transport."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Event]] = []

    def __call__(self, player_id: str, event: Event) -> None:
        self.sent.append((player_id, event))

    def to(self, player_id: str, kind: str | None = None) -> list[dict[str, Any]]:
        return [
            e.to_wire() for pid, e in self.sent if pid == player_id and (kind is None or e.type.value == kind)
        ]

    def last(self, player_id: str, kind: str | None = None) -> dict[str, Any]:
        msgs = self.to(player_id, kind)
        assert msgs, f"no {kind or 'message'} sent to {player_id}"
        return msgs[-1]

    def errors(self, player_id: str) -> list[str]:
        return [m["code"] for m in self.to(player_id, "ERROR")]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def handler_factory(outbox: Outbox, clock: FakeClock) -> Callable[..., ProtocolHandler]:
    """Build a ProtocolHandler with deterministic codes, first turn and clock."""

    def _factory(
        codes: Iterable[str] = ("1234", "5678", "9012", "3456"),
        unlock_wins: int = 10,
        **kwargs: Any,
    ) -> ProtocolHandler:
        code_iter = iter(codes)
        registry = SessionRegistry(rng=FirstChoice(), code_factory=lambda: next(code_iter), clock=clock)
        return ProtocolHandler(outbox, registry, StatsBook(unlock_wins=unlock_wins), **kwargs)

    return _factory


@pytest.fixture
def handler(handler_factory) -> ProtocolHandler:
    return handler_factory()


@pytest.fixture
def paired(handler: ProtocolHandler, outbox: Outbox):
    """Two connections sharing room "1234"; seat 1 holds the first turn."""
    a = handler.connect()
    b = handler.connect()
    handler.handle(a, {"type": "CREATE_ROOM", "playerName": "Alice"})
    handler.handle(b, {"type": "JOIN_ROOM", "roomId": "1234", "playerName": "Bob"})
    return a, b


@pytest.fixture
def battle(handler: ProtocolHandler, outbox: Outbox, paired):
    """``paired`` with both fleets declared; the room is in BATTLE, seat 1 to move."""
    a, b = paired
    handler.handle(a, {"type": "SHIPS_PLACED", "ships": fleet_wire()})
    handler.handle(b, {"type": "SHIPS_PLACED", "ships": fleet_wire()})
    outbox.clear()
    return a, b
