"""Per-connection message dispatch for the relay server.

The handler is the only component that sees both the session registry and the
rooms.  For every inbound envelope it:

1. parses it into a command (``commands.parse_message``),
2. looks up the caller's room and takes that room's lock,
3. runs the matching room operation, which either mutates state or raises a
   ``GameError`` before touching anything,
4. emits outbound ``Event`` objects to one or both occupants.

Errors are reported to the caller only.  The transport hands us connection
ids and a ``send`` callback; it never sees rooms.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from . import config as _cfg
from .commands import (
    Chat,
    Command,
    CommandParseError,
    CreateRoom,
    FireShot,
    JoinRoom,
    LeaveRoom,
    PlaceShips,
    PlayerInfo,
    PlayerReady,
    RematchAccept,
    RematchRequest,
    UnknownCommandError,
    UseSuperWeapon,
    parse_message,
)
from .coord_utils import format_coord
from .errors import ErrorCode, GameError
from .events import Event, EventType, Sender
from .fleet import surrounding_cells
from .registry import SessionRegistry, valid_room_code
from .room import CellResult, Phase, Player, Room, ShotReport, Weapon
from .stats import StatsBook

logger = logging.getLogger(__name__)


class ProtocolHandler:
    """Owns the registry and stats book; one instance per server process."""

    def __init__(
        self,
        send: Sender,
        registry: SessionRegistry | None = None,
        stats: StatsBook | None = None,
        *,
        finished_grace: float = _cfg.FINISHED_GRACE,
        idle_timeout: float = _cfg.IDLE_TIMEOUT,
    ) -> None:
        self._send = send
        self.registry = registry or SessionRegistry()
        self.stats = stats or StatsBook()
        self.finished_grace = finished_grace
        self.idle_timeout = idle_timeout
        self._ids = itertools.count(100000)

    # ------------------------------------------------------------------
    # Transport entry points
    # ------------------------------------------------------------------
    def new_player_id(self) -> str:
        return f"PID{next(self._ids)}"

    def connect(self, player_id: str | None = None) -> str:
        """Greet a fresh connection, allocating its player id if not given."""
        player_id = player_id or self.new_player_id()
        stats = self.stats.get(player_id)
        logger.info("Connection %s established", player_id)
        self._unicast(player_id, EventType.CONNECTION_ESTABLISHED, playerId=player_id, stats=stats.to_wire())
        return player_id

    def handle(self, player_id: str, obj: Any) -> None:
        """Process one decoded envelope from *player_id*."""
        try:
            cmd = parse_message(obj)
        except UnknownCommandError as e:
            self._error(player_id, ErrorCode.UNKNOWN_MESSAGE, str(e))
            return
        except CommandParseError as e:
            self._error(player_id, ErrorCode.MALFORMED_MESSAGE, str(e))
            return

        logger.debug("%s -> %r", player_id, cmd)
        try:
            self.dispatch(player_id, cmd)
        except GameError as e:
            logger.debug("Rejected %s from %s: %s", type(cmd).__name__, player_id, e.code.value)
            self._error(player_id, e.code, e.message)
        except Exception:  # noqa: BLE001
            logger.exception("Handling %r from %s failed", cmd, player_id)
            self._error(player_id, ErrorCode.INTERNAL_ERROR)

    def disconnect(self, player_id: str) -> None:
        """Connection closed: leave the room (forfeiting a battle) and forget stats."""
        logger.info("Connection %s closed", player_id)
        try:
            self._leave(player_id, disconnected=True)
        finally:
            self.stats.drop(player_id)

    def reap(self, now: float | None = None) -> int:
        """Drop rooms past their finished grace period or idle too long."""
        now = self.registry.now() if now is None else now
        reaped = 0
        for room in self.registry.rooms():
            with room.lock:
                if room.closed:
                    continue
                reason = room.expired(now, self.finished_grace, self.idle_timeout)
                if reason is None:
                    continue
                for p in room.occupants:
                    self._unicast(p.id, EventType.ROOM_CLOSED, roomId=room.code, reason=reason)
                self.registry.remove_room(room.code)
                reaped += 1
                logger.info("Room %s reaped (%s)", room.code, reason)
        return reaped

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def dispatch(self, player_id: str, cmd: Command) -> None:  # noqa: C901
        if isinstance(cmd, CreateRoom):
            self._create_room(player_id, cmd)
        elif isinstance(cmd, JoinRoom):
            self._join_room(player_id, cmd)
        elif isinstance(cmd, PlaceShips):
            self._place_ships(player_id, cmd)
        elif isinstance(cmd, FireShot):
            self._fire(player_id, cmd)
        elif isinstance(cmd, UseSuperWeapon):
            self._heavy_weapon(player_id)
        elif isinstance(cmd, LeaveRoom):
            self._leave(player_id, disconnected=False)
        elif isinstance(cmd, Chat):
            self._chat(player_id, cmd)
        elif isinstance(cmd, PlayerInfo):
            self._player_info(player_id, cmd)
        elif isinstance(cmd, PlayerReady):
            self._player_ready(player_id)
        elif isinstance(cmd, RematchRequest):
            self._rematch_request(player_id)
        elif isinstance(cmd, RematchAccept):
            self._rematch_accept(player_id)
        else:  # pragma: no cover
            raise GameError(ErrorCode.UNKNOWN_MESSAGE)

    @contextlib.contextmanager
    def _caller_room(self, player_id: str) -> Iterator[Room]:
        room = self.registry.find_room_by_connection(player_id)
        if room is None:
            raise GameError(ErrorCode.NOT_IN_ROOM)
        with room.lock:
            if room.closed or room.player(player_id) is None:
                raise GameError(ErrorCode.NOT_IN_ROOM)
            yield room

    # ------------------------------------------------------------------
    # Lobby operations
    # ------------------------------------------------------------------
    def _display_name(self, player_id: str, requested: str, seat: int) -> str:
        stats = self.stats.get(player_id)
        if requested:
            stats.player_name = requested
        return stats.player_name or f"Player {seat}"

    def _create_room(self, player_id: str, cmd: CreateRoom) -> None:
        if self.registry.find_room_by_connection(player_id) is not None:
            raise GameError(ErrorCode.ALREADY_IN_ROOM)
        name = self._display_name(player_id, cmd.player_name, 1)
        with self.registry.open_room(player_id, name) as room:
            player = room.player(player_id)
            assert player is not None
            self._unicast(
                player_id,
                EventType.ROOM_CREATED,
                roomId=room.code,
                playerNumber=player.seat,
                playerId=player_id,
                shipConfig=room.ruleset.ship_config(),
                opponentConnected=False,
            )

    def _join_room(self, player_id: str, cmd: JoinRoom) -> None:
        if not valid_room_code(cmd.room_id):
            raise GameError(ErrorCode.INVALID_ROOM_CODE)
        room = self.registry.find_room_by_code(cmd.room_id)
        if room is None:
            raise GameError(ErrorCode.ROOM_NOT_FOUND)
        current = self.registry.find_room_by_connection(player_id)
        if current is room:
            raise GameError(ErrorCode.ALREADY_IN_THIS_ROOM)
        if current is not None:
            raise GameError(ErrorCode.ALREADY_IN_ROOM)

        with room.lock:
            if room.closed:
                raise GameError(ErrorCode.ROOM_NOT_FOUND)
            seat = 2 if 1 in room.players else 1
            player = room.attach(player_id, self._display_name(player_id, cmd.player_name, seat))
            self.registry.bind(player_id, room)
            opponent = room.opponent_of(player_id)
            self._unicast(
                player_id,
                EventType.ROOM_JOINED,
                roomId=room.code,
                playerNumber=player.seat,
                playerId=player_id,
                shipConfig=room.ruleset.ship_config(),
                opponentConnected=opponent is not None,
            )
            if opponent is not None:
                self._unicast(opponent.id, EventType.PLAYER_CONNECTED, playerNumber=player.seat, playerName=player.name)
                self._unicast(player_id, EventType.PLAYER_CONNECTED, playerNumber=opponent.seat, playerName=opponent.name)
            if room.phase is Phase.PLACING:
                self._announce_start(room)

    def _leave(self, player_id: str, *, disconnected: bool) -> None:
        room = self.registry.find_room_by_connection(player_id)
        if room is None:
            if disconnected:
                return
            raise GameError(ErrorCode.NOT_IN_ROOM)

        with room.lock:
            self.registry.unbind(player_id)
            if room.closed:
                return
            removed, forfeit_winner = room.detach(player_id)
            if removed is None:
                return
            gone = EventType.PLAYER_DISCONNECTED if disconnected else EventType.PLAYER_LEFT
            self._broadcast(room, gone, playerNumber=removed.seat, playerName=removed.name)
            if forfeit_winner is not None:
                self._game_over(room, loser_id=removed.id)
            if room.is_empty():
                self.registry.remove_room(room.code)
            if not disconnected:
                self._unicast(player_id, EventType.ROOM_LEFT, roomId=room.code)

    def _player_info(self, player_id: str, cmd: PlayerInfo) -> None:
        if not cmd.player_name:
            return
        self.stats.get(player_id).player_name = cmd.player_name
        if self.registry.find_room_by_connection(player_id) is None:
            return
        with self._caller_room(player_id) as room:
            player = room.player(player_id)
            assert player is not None
            player.name = cmd.player_name
            self._to_opponent(room, player_id, EventType.PLAYER_INFO, playerNumber=player.seat, playerName=player.name)

    def _player_ready(self, player_id: str) -> None:
        with self._caller_room(player_id) as room:
            player = room.mark_ready(player_id)
            self._to_opponent(room, player_id, EventType.PLAYER_READY, playerNumber=player.seat)

    def _chat(self, player_id: str, cmd: Chat) -> None:
        with self._caller_room(player_id) as room:
            player = room.player(player_id)
            opponent = room.opponent_of(player_id)
            if player is None or opponent is None:
                raise GameError(ErrorCode.NO_OPPONENT)
            room.touch()
            self._unicast(
                opponent.id,
                EventType.CHAT_MESSAGE,
                playerNumber=player.seat,
                playerName=player.name,
                message=cmd.text,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            logger.info("Room %s chat from P%d", room.code, player.seat)

    def _rematch_request(self, player_id: str) -> None:
        with self._caller_room(player_id) as room:
            player = room.request_rematch(player_id)
            self._to_opponent(room, player_id, EventType.REMATCH_REQUEST, playerNumber=player.seat)

    def _rematch_accept(self, player_id: str) -> None:
        with self._caller_room(player_id) as room:
            room.accept_rematch(player_id)
            logger.info("Room %s rematch accepted", room.code)
            self._announce_start(room, rematch=True)

    # ------------------------------------------------------------------
    # Game operations
    # ------------------------------------------------------------------
    def _place_ships(self, player_id: str, cmd: PlaceShips) -> None:
        with self._caller_room(player_id) as room:
            started = room.declare_fleet(player_id, cmd.ships)
            player = room.player(player_id)
            assert player is not None
            self._broadcast(room, EventType.SHIPS_PLACED, playerNumber=player.seat)
            if started:
                self._announce_turn(room)

    def _fire(self, player_id: str, cmd: FireShot) -> None:
        with self._caller_room(player_id) as room:
            report = room.fire(player_id, (cmd.x, cmd.y), cmd.weapon)
            logger.debug(
                "Room %s: P%d %s at %s", room.code, report.shooter.seat, cmd.weapon.value, format_coord(cmd.x, cmd.y)
            )
            if cmd.weapon is Weapon.NORMAL:
                self._announce_shot(room, report.shooter, report.results[0])
            elif cmd.weapon is Weapon.AREA:
                self._broadcast(
                    room,
                    EventType.SPECIAL_WEAPON_USED,
                    playerNumber=report.shooter.seat,
                    weapon=Weapon.AREA.value,
                    x=cmd.x,
                    y=cmd.y,
                    hits=[self._cell_wire(r) for r in report.results],
                    remaining=report.shooter.remaining_wire(),
                )
            else:
                self._broadcast(
                    room,
                    EventType.SPECIAL_WEAPON_USED,
                    playerNumber=report.shooter.seat,
                    weapon=Weapon.RECON.value,
                    x=cmd.x,
                    y=cmd.y,
                    results=[{"x": x, "y": y, "hasShip": present} for (x, y), present in report.probes],
                    remaining=report.shooter.remaining_wire(),
                )

            if report.finished:
                self._game_over(room, loser_id=report.target.id)
            elif cmd.weapon is not Weapon.RECON:
                self._announce_turn(room)

    def _heavy_weapon(self, player_id: str) -> None:
        with self._caller_room(player_id) as room:
            room.check_shooter(player_id)
            if not self.stats.consume_heavy_weapon(player_id):
                raise GameError(ErrorCode.WEAPON_UNAVAILABLE, "Heavy weapon is locked")
            report: ShotReport = room.obliterate(player_id)
            logger.info("Room %s: P%d used the heavy weapon", room.code, report.shooter.seat)
            self._broadcast(room, EventType.SPECIAL_WEAPON_USED, playerNumber=report.shooter.seat, weapon="nuclear")
            self._game_over(room, loser_id=report.target.id)

    # ------------------------------------------------------------------
    # Announcements
    # ------------------------------------------------------------------
    @staticmethod
    def _cell_wire(result: CellResult) -> dict:
        wire: dict[str, Any] = {
            "x": result.x,
            "y": result.y,
            "hit": result.hit,
            "sunk": result.sunk_ship is not None,
            "shipType": result.sunk_ship.type if result.sunk_ship else None,
        }
        if result.sunk_ship is not None:
            wire["shipCells"] = result.sunk_ship.cells_wire()
            wire["surrounding"] = [{"x": x, "y": y} for x, y in surrounding_cells(result.sunk_ship)]
        return wire

    def _announce_start(self, room: Room, *, rematch: bool = False) -> None:
        for p in room.occupants:
            opponent = room.opponent_of(p.id)
            self._unicast(
                p.id,
                EventType.GAME_START,
                yourTurn=room.current_turn == p.id,
                roomId=room.code,
                playerNumber=p.seat,
                opponentName=opponent.name if opponent else None,
                rematch=rematch,
            )

    def _announce_turn(self, room: Room) -> None:
        for p in room.occupants:
            self._unicast(p.id, EventType.PLAYER_TURN, yourTurn=room.current_turn == p.id)

    def _announce_shot(self, room: Room, shooter: Player, result: CellResult) -> None:
        for p in room.occupants:
            self._unicast(
                p.id,
                EventType.SHOT_RESULT,
                playerNumber=shooter.seat,
                yourTurn=room.current_turn == p.id,
                **self._cell_wire(result),
            )

    def _game_over(self, room: Room, *, loser_id: Optional[str]) -> None:
        winner = room.player(room.winner_id or "")
        if winner is None:
            return
        self.stats.record_result(winner.id, loser_id)
        reason = room.finish_reason.value if room.finish_reason else None
        for p in room.occupants:
            opponent = room.opponent_of(p.id)
            self._unicast(
                p.id,
                EventType.GAME_OVER,
                winnerId=winner.id,
                winner=winner.seat,
                winnerName=winner.name,
                reason=reason,
                playerNumber=p.seat,
                opponentShips=opponent.fleet.to_wire() if opponent and opponent.fleet else [],
                stats=self.stats.get(p.id).to_wire(),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _unicast(self, player_id: str, kind: EventType, **payload: Any) -> None:
        self._send(player_id, Event(kind, payload))

    def _broadcast(self, room: Room, kind: EventType, **payload: Any) -> None:
        for p in room.occupants:
            self._send(p.id, Event(kind, dict(payload)))

    def _to_opponent(self, room: Room, player_id: str, kind: EventType, **payload: Any) -> None:
        opponent = room.opponent_of(player_id)
        if opponent is not None:
            self._unicast(opponent.id, kind, **payload)

    def _error(self, player_id: str, code: ErrorCode, message: str | None = None) -> None:
        err = GameError(code, message)
        self._unicast(player_id, EventType.ERROR, code=code.value, message=err.message)
