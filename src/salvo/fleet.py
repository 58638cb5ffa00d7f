"""
fleet.py

Core data structures for a Battleship fleet and the rules that govern it:
 - Ship: occupied coordinates plus the set of those already hit
 - Fleet: one player's ships on a 10x10 board
 - Ruleset: how many ships of each size a fleet holds and whether they may touch
 - validate_placement(): turns a declared ship list into a Fleet or rejects it
 - resolve_shot() / is_fleet_destroyed(): the shot protocol's hit and win logic

The server is authoritative for fleets: clients only ever declare positions,
all hits are computed here.
"""

from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from . import config as _cfg
from .coord_utils import Coord, in_bounds, neighbourhood
from .errors import ErrorCode, PlacementError

BOARD_SIZE = _cfg.BOARD_SIZE


@dataclass(frozen=True)
class Ruleset:
    """Fleet composition: ``sizes`` maps ship length to how many are required."""

    name: str
    sizes: dict[int, int]
    no_touch: bool

    @classmethod
    def named(cls, name: str = _cfg.RULESET) -> "Ruleset":
        try:
            raw = _cfg.RULESETS[name]
        except KeyError:
            raise ValueError(f"Unknown ruleset: {name!r}") from None
        return cls(name=name, sizes=dict(raw["sizes"]), no_touch=raw["no_touch"])

    @property
    def ship_count(self) -> int:
        return sum(self.sizes.values())

    @property
    def total_cells(self) -> int:
        return sum(size * count for size, count in self.sizes.items())

    def ship_config(self) -> list[dict[str, int]]:
        """Wire form sent with ROOM_CREATED / ROOM_JOINED, largest ships first."""
        return [{"size": size, "count": count} for size, count in sorted(self.sizes.items(), reverse=True)]


@dataclass(frozen=True)
class ShipSpec:
    """A ship as declared by a client, before validation."""

    type: Optional[str]
    cells: tuple[Coord, ...]


@dataclass
class Ship:
    type: str
    coordinates: tuple[Coord, ...]
    hits: set[Coord] = field(default_factory=set)

    @property
    def size(self) -> int:
        return len(self.coordinates)

    @property
    def sunk(self) -> bool:
        return len(self.hits) == len(self.coordinates)

    def cells_wire(self) -> list[dict[str, int]]:
        return [{"x": x, "y": y} for x, y in self.coordinates]


@dataclass
class Fleet:
    ships: list[Ship]

    def ship_at(self, coord: Coord) -> Optional[Ship]:
        for ship in self.ships:
            if coord in ship.coordinates:
                return ship
        return None

    @property
    def cells(self) -> set[Coord]:
        return {c for ship in self.ships for c in ship.coordinates}

    def to_wire(self) -> list[dict]:
        """Same shape clients use for SHIPS_PLACED."""
        return [{"type": s.type, "coordinates": s.cells_wire()} for s in self.ships]


@dataclass(frozen=True)
class ShotOutcome:
    hit: bool
    sunk_ship: Optional[Ship] = None


# ---------------------------------------------------------------------------
# Placement validation
# ---------------------------------------------------------------------------


def _is_straight_line(cells: Sequence[Coord]) -> bool:
    xs = {x for x, _ in cells}
    ys = {y for _, y in cells}
    if len(xs) == 1:
        run = sorted(ys)
    elif len(ys) == 1:
        run = sorted(xs)
    else:
        return False
    return run == list(range(run[0], run[0] + len(run)))


def validate_placement(specs: Iterable[ShipSpec], ruleset: Ruleset) -> Fleet:
    """Return a fresh Fleet for *specs* or raise PlacementError.

    Checks run in order: board bounds, ship shape, per-size counts, overlap
    and finally (for no-touch rulesets) adjacency, so a fleet that breaks
    exactly one rule is reported with that rule's reason.
    """
    specs = list(specs)

    for spec in specs:
        if any(not in_bounds(x, y) for x, y in spec.cells):
            raise PlacementError(ErrorCode.OUT_OF_BOUNDS)

    for spec in specs:
        if not spec.cells or len(set(spec.cells)) != len(spec.cells):
            raise PlacementError(ErrorCode.INVALID_SHAPE)
        if not _is_straight_line(spec.cells):
            raise PlacementError(ErrorCode.INVALID_SHAPE)

    counts = Counter(len(spec.cells) for spec in specs)
    if counts != Counter(ruleset.sizes) or sum(len(s.cells) for s in specs) != ruleset.total_cells:
        raise PlacementError(ErrorCode.WRONG_SHIP_COUNT)

    owner: dict[Coord, int] = {}
    for idx, spec in enumerate(specs):
        for cell in spec.cells:
            if cell in owner:
                raise PlacementError(ErrorCode.OVERLAP)
            owner[cell] = idx

    if ruleset.no_touch:
        for idx, spec in enumerate(specs):
            for x, y in spec.cells:
                for n in neighbourhood(x, y):
                    if owner.get(n, idx) != idx:
                        raise PlacementError(ErrorCode.ADJACENCY_VIOLATION)

    ships = [
        Ship(type=spec.type or _cfg.SHIP_NAMES.get(len(spec.cells), f"Ship{len(spec.cells)}"), coordinates=spec.cells)
        for spec in specs
    ]
    return Fleet(ships)


# ---------------------------------------------------------------------------
# Shot resolution
# ---------------------------------------------------------------------------


def resolve_shot(fleet: Fleet, coord: Coord) -> ShotOutcome:
    """Mark *coord* as hit on whichever ship occupies it.

    This is the only place hit-state changes.  ``sunk_ship`` is set only by
    the shot that completes a ship, never by a repeat hit on a wreck.
    """
    ship = fleet.ship_at(coord)
    if ship is None:
        return ShotOutcome(hit=False)
    was_sunk = ship.sunk
    ship.hits.add(coord)
    return ShotOutcome(hit=True, sunk_ship=ship if ship.sunk and not was_sunk else None)


def is_fleet_destroyed(fleet: Fleet) -> bool:
    """Return True if every ship in the fleet has been sunk."""
    return all(ship.sunk for ship in fleet.ships)


def ship_presence(fleet: Fleet, coord: Coord) -> bool:
    """Recon probe: does any ship occupy *coord*?  Never mutates the fleet."""
    return fleet.ship_at(coord) is not None


def sink_all(fleet: Fleet) -> None:
    """Heavy weapon: mark every cell of every ship as hit."""
    for ship in fleet.ships:
        for coord in ship.coordinates:
            resolve_shot(fleet, coord)


def surrounding_cells(ship: Ship) -> list[Coord]:
    """In-bounds water cells touching *ship*, revealed to the attacker once it sinks."""
    around: set[Coord] = set()
    for x, y in ship.coordinates:
        around.update(neighbourhood(x, y))
    return sorted(around.difference(ship.coordinates))


# ---------------------------------------------------------------------------
# Random placement
# ---------------------------------------------------------------------------


def _can_place(cells: list[Coord], taken: set[Coord], no_touch: bool) -> bool:
    for x, y in cells:
        if not in_bounds(x, y):
            return False
        probe = neighbourhood(x, y) if no_touch else [(x, y)]
        if any(c in taken for c in probe):
            return False
    return True


def random_fleet(ruleset: Ruleset, rng: random.Random | None = None) -> Fleet:
    """Randomly position a legal fleet for *ruleset* (largest ships first)."""
    rng = rng or random.Random()
    sizes = [size for size, count in sorted(ruleset.sizes.items(), reverse=True) for _ in range(count)]
    while True:
        taken: set[Coord] = set()
        specs: list[ShipSpec] = []
        for size in sizes:
            for _attempt in range(500):
                horizontal = rng.randint(0, 1) == 0
                x = rng.randint(0, BOARD_SIZE - 1)
                y = rng.randint(0, BOARD_SIZE - 1)
                cells = [(x + i, y) if horizontal else (x, y + i) for i in range(size)]
                if _can_place(cells, taken, ruleset.no_touch):
                    taken.update(cells)
                    specs.append(ShipSpec(type=None, cells=tuple(cells)))
                    break
            else:
                # boxed in; start the whole fleet over
                break
        if len(specs) == len(sizes):
            return validate_placement(specs, ruleset)
