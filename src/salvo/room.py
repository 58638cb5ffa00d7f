"""Room state machine: two seats, a phase, a turn pointer and both fleets.

Phases::

    WAITING ──second player attaches──▶ PLACING ──both fleets declared──▶ BATTLE
       ▲                                   │                                │
       └──────── a player leaves ──────────┘                 fleet destroyed│/ forfeit
                                                                            ▼
    PLACING ◀──────────────────── rematch accepted ─────────────────── FINISHED

All methods expect the caller to hold ``room.lock``; the protocol handler takes
it once per inbound message so that two connections never interleave inside a
room.  Rejections raise :class:`~salvo.errors.GameError` before anything is
modified.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from . import config as _cfg
from .coord_utils import Coord, neighbourhood
from .errors import ErrorCode, GameError
from .fleet import (
    Fleet,
    Ruleset,
    Ship,
    ShipSpec,
    is_fleet_destroyed,
    resolve_shot,
    ship_presence,
    sink_all,
    validate_placement,
)

logger = logging.getLogger(__name__)

MAX_PLAYERS = 2


class Phase(str, enum.Enum):
    WAITING = "WAITING"
    PLACING = "PLACING"
    BATTLE = "BATTLE"
    FINISHED = "FINISHED"


class Weapon(str, enum.Enum):
    """Shot kinds; values are the wire names used in ``SHOT.weapon``."""

    NORMAL = "normal"
    AREA = "bomb"
    RECON = "radar"


class FinishReason(str, enum.Enum):
    FLEET_DESTROYED = "FLEET_DESTROYED"
    HEAVY_WEAPON = "HEAVY_WEAPON"
    FORFEIT = "FORFEIT"


@dataclass
class Player:
    id: str
    seat: int
    name: str
    fleet: Optional[Fleet] = None
    shots: set[Coord] = field(default_factory=set)
    ready: bool = False
    rematch: bool = False
    weapons: dict[Weapon, int] = field(default_factory=dict)

    @property
    def fleet_declared(self) -> bool:
        return self.fleet is not None

    def reset_for_game(self, bombs: int, radars: int) -> None:
        self.fleet = None
        self.shots = set()
        self.ready = False
        self.rematch = False
        self.weapons = {Weapon.AREA: bombs, Weapon.RECON: radars}

    def remaining_wire(self) -> dict[str, int]:
        return {"bomb": self.weapons.get(Weapon.AREA, 0), "radar": self.weapons.get(Weapon.RECON, 0)}


@dataclass
class CellResult:
    x: int
    y: int
    hit: bool
    sunk_ship: Optional[Ship] = None


@dataclass
class ShotReport:
    """What a shot-family action did; the handler turns it into events."""

    weapon: Weapon
    shooter: Player
    target: Player
    results: list[CellResult] = field(default_factory=list)
    probes: list[tuple[Coord, bool]] = field(default_factory=list)
    finished: bool = False


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def require_phase(room: "Room", *phases: Phase, code: ErrorCode) -> None:
    if room.phase not in phases:
        raise GameError(code)


def require_turn(room: "Room", player_id: str) -> None:
    if room.current_turn != player_id:
        raise GameError(ErrorCode.NOT_YOUR_TURN)


# ---------------------------------------------------------------------------
# Room
# ---------------------------------------------------------------------------


class Room:
    """A single match between at most two connections."""

    def __init__(
        self,
        code: str,
        ruleset: Ruleset,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        bombs: int = _cfg.BOMB_CHARGES,
        radars: int = _cfg.RADAR_CHARGES,
    ) -> None:
        self.code = code
        self.ruleset = ruleset
        self.lock = threading.RLock()
        # set once the registry drops the room; re-checked after taking the lock
        self.closed = False
        self._rng = rng or random.Random()
        self._clock = clock
        self._bombs = bombs
        self._radars = radars

        self.players: dict[int, Player] = {}
        self.phase = Phase.WAITING
        self.current_turn: str | None = None
        self.winner_id: str | None = None
        self.finish_reason: FinishReason | None = None
        self.finished_at: float | None = None
        self.last_activity = clock()

    # -------------------- lookups --------------------
    @property
    def occupants(self) -> list[Player]:
        return [self.players[seat] for seat in sorted(self.players)]

    def is_empty(self) -> bool:
        return not self.players

    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    def player(self, player_id: str) -> Optional[Player]:
        for p in self.players.values():
            if p.id == player_id:
                return p
        return None

    def opponent_of(self, player_id: str) -> Optional[Player]:
        for p in self.players.values():
            if p.id != player_id:
                return p
        return None

    def _require_player(self, player_id: str) -> Player:
        player = self.player(player_id)
        if player is None:
            raise GameError(ErrorCode.NOT_IN_ROOM)
        return player

    def touch(self) -> None:
        self.last_activity = self._clock()

    # -------------------- membership --------------------
    def attach(self, player_id: str, name: str) -> Player:
        """Seat a new player; the second arrival starts fleet placement."""
        if self.player(player_id) is not None:
            raise GameError(ErrorCode.ALREADY_IN_THIS_ROOM)
        if self.is_full():
            raise GameError(ErrorCode.ROOM_FULL)
        require_phase(self, Phase.WAITING, code=ErrorCode.GAME_ALREADY_STARTED)

        seat = next(s for s in range(1, MAX_PLAYERS + 1) if s not in self.players)
        player = Player(id=player_id, seat=seat, name=name)
        player.reset_for_game(self._bombs, self._radars)
        self.players[seat] = player
        logger.info("Room %s: %s took seat %d", self.code, player_id, seat)
        if self.is_full():
            self._start_placement()
        self.touch()
        return player

    def detach(self, player_id: str) -> tuple[Optional[Player], Optional[Player]]:
        """Remove *player_id*; returns ``(removed, forfeit_winner)``.

        Leaving mid-battle hands the win to whoever stays.  Leaving before the
        battle puts the room back to WAITING so someone else can join.
        """
        player = self.player(player_id)
        if player is None:
            return None, None
        del self.players[player.seat]
        remaining = self.opponent_of(player_id)
        forfeit_winner = None

        if self.phase is Phase.BATTLE and remaining is not None:
            self.finish(remaining.id, FinishReason.FORFEIT)
            forfeit_winner = remaining
        elif self.phase in (Phase.WAITING, Phase.PLACING):
            self.phase = Phase.WAITING
            self.current_turn = None
            if remaining is not None:
                remaining.reset_for_game(self._bombs, self._radars)
        elif remaining is not None:
            remaining.rematch = False

        self.touch()
        return player, forfeit_winner

    def _start_placement(self) -> None:
        for p in self.players.values():
            p.reset_for_game(self._bombs, self._radars)
        self.phase = Phase.PLACING
        self.current_turn = self._rng.choice([p.id for p in self.occupants])
        self.winner_id = None
        self.finish_reason = None
        self.finished_at = None
        logger.info("Room %s: placement started, %s moves first", self.code, self.current_turn)

    def mark_ready(self, player_id: str) -> Player:
        player = self._require_player(player_id)
        player.ready = True
        self.touch()
        return player

    # -------------------- placement --------------------
    def declare_fleet(self, player_id: str, specs: Iterable[ShipSpec]) -> bool:
        """Validate and store a fleet; returns True if this started the battle."""
        player = self._require_player(player_id)
        require_phase(self, Phase.PLACING, code=ErrorCode.GAME_NOT_IN_PLACEMENT)
        player.fleet = validate_placement(specs, self.ruleset)
        self.touch()
        if len(self.players) == MAX_PLAYERS and all(p.fleet_declared for p in self.players.values()):
            self.phase = Phase.BATTLE
            logger.info("Room %s: battle started", self.code)
            return True
        return False

    # -------------------- battle --------------------
    def _require_shooter(self, player_id: str) -> tuple[Player, Player]:
        shooter = self._require_player(player_id)
        # the first turn is drawn when placement starts, so PLACING reports turn first
        require_phase(self, Phase.PLACING, Phase.BATTLE, code=ErrorCode.GAME_NOT_IN_BATTLE)
        require_turn(self, player_id)
        require_phase(self, Phase.BATTLE, code=ErrorCode.GAME_NOT_IN_BATTLE)
        target = self.opponent_of(player_id)
        if target is None or target.fleet is None:
            raise GameError(ErrorCode.NO_OPPONENT)
        return shooter, target

    def check_shooter(self, player_id: str) -> None:
        """Run the turn and phase guards without acting."""
        self._require_shooter(player_id)

    def fire(self, player_id: str, coord: Coord, weapon: Weapon = Weapon.NORMAL) -> ShotReport:
        shooter, target = self._require_shooter(player_id)
        if weapon is not Weapon.NORMAL and shooter.weapons.get(weapon, 0) <= 0:
            raise GameError(ErrorCode.WEAPON_UNAVAILABLE)

        report = ShotReport(weapon=weapon, shooter=shooter, target=target)
        fleet = target.fleet
        assert fleet is not None

        if weapon is Weapon.RECON:
            shooter.weapons[weapon] -= 1
            report.probes = [(c, ship_presence(fleet, c)) for c in neighbourhood(*coord)]
            self.touch()
            return report

        if weapon is Weapon.AREA:
            footprint = [c for c in neighbourhood(*coord) if c not in shooter.shots]
            if not footprint:
                raise GameError(ErrorCode.ALREADY_SHOT_THERE)
            shooter.weapons[weapon] -= 1
        else:
            if coord in shooter.shots:
                raise GameError(ErrorCode.ALREADY_SHOT_THERE)
            footprint = [coord]

        for cell in footprint:
            outcome = resolve_shot(fleet, cell)
            shooter.shots.add(cell)
            report.results.append(CellResult(cell[0], cell[1], outcome.hit, outcome.sunk_ship))
            if is_fleet_destroyed(fleet):
                self.finish(shooter.id, FinishReason.FLEET_DESTROYED)
                report.finished = True
                break
        else:
            self.current_turn = target.id

        self.touch()
        return report

    def obliterate(self, player_id: str) -> ShotReport:
        """Heavy weapon: sink the whole opposing fleet and end the game."""
        shooter, target = self._require_shooter(player_id)
        assert target.fleet is not None
        sink_all(target.fleet)
        self.finish(shooter.id, FinishReason.HEAVY_WEAPON)
        self.touch()
        return ShotReport(weapon=Weapon.NORMAL, shooter=shooter, target=target, finished=True)

    def finish(self, winner_id: str, reason: FinishReason) -> None:
        self.phase = Phase.FINISHED
        self.current_turn = None
        self.winner_id = winner_id
        self.finish_reason = reason
        self.finished_at = self._clock()
        logger.info("Room %s: %s won (%s)", self.code, winner_id, reason.value)

    # -------------------- rematch --------------------
    def request_rematch(self, player_id: str) -> Player:
        player = self._require_player(player_id)
        require_phase(self, Phase.FINISHED, code=ErrorCode.GAME_NOT_FINISHED)
        if self.opponent_of(player_id) is None:
            raise GameError(ErrorCode.NO_OPPONENT)
        player.rematch = True
        self.touch()
        return player

    def accept_rematch(self, player_id: str) -> None:
        self._require_player(player_id)
        require_phase(self, Phase.FINISHED, code=ErrorCode.GAME_NOT_FINISHED)
        opponent = self.opponent_of(player_id)
        if opponent is None:
            raise GameError(ErrorCode.NO_OPPONENT)
        if not opponent.rematch:
            raise GameError(ErrorCode.NO_REMATCH_REQUESTED)
        self._start_placement()
        self.touch()

    # -------------------- housekeeping --------------------
    def expired(self, now: float, finished_grace: float, idle_timeout: float) -> str | None:
        """Return why the room should be reaped at *now*, or None."""
        if self.phase is Phase.FINISHED and self.finished_at is not None and now - self.finished_at >= finished_grace:
            return "finished"
        if now - self.last_activity >= idle_timeout:
            return "idle"
        return None
