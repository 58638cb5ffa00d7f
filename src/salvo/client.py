"""Minimal terminal client: typed commands in, server events printed out.

Commands::

    create [name]        open a new room
    join <code> [name]   join a room by its 4-digit code
    name <name>          change your display name
    ready                tell your opponent you are ready
    auto                 place a random legal fleet
    fire <coord>         normal shot, e.g. ``fire B5``
    bomb <coord>         3x3 area shot
    radar <coord>        3x3 recon (does not end your turn)
    nuke                 heavy weapon, once unlocked
    chat <text>          message your opponent
    rematch / accept     ask for / accept a rematch
    leave                leave the room
    quit                 close the client
"""

from __future__ import annotations

import argparse
import logging
import os
import random
import socket
import sys
import threading
from typing import Any, Callable, Dict, Optional

from . import config as _cfg
from .commands import CommandParseError
from .common import FrameError, IncompleteError, PacketType, enable_encryption, recv_pkt, send_pkt
from .coord_utils import coord_to_xy, format_coord
from .fleet import Ruleset, random_fleet

HOST = _cfg.DEFAULT_HOST
PORT = _cfg.DEFAULT_PORT

logger = logging.getLogger(__name__)


class ClientState:
    """What the client learned from the server so far."""

    def __init__(self) -> None:
        self.player_number: Optional[int] = None
        self.room_id: Optional[str] = None
        # sizes -> counts, refreshed from ROOM_CREATED / ROOM_JOINED
        self.ship_sizes: dict[int, int] = dict(Ruleset.named().sizes)

    def ruleset(self) -> Ruleset:
        # placing without touching is legal under every ruleset
        return Ruleset(name="server", sizes=dict(self.ship_sizes), no_touch=True)


def _coord_arg(parts: list[str], verb: str) -> tuple[int, int]:
    if len(parts) < 2:
        raise CommandParseError(f"{verb} requires a coordinate, e.g. {verb} B5")
    try:
        return coord_to_xy(parts[1])
    except ValueError as e:
        raise CommandParseError(str(e)) from None


def build_message(line: str, state: ClientState, rng: random.Random | None = None) -> Dict[str, Any]:
    """Turn one typed line into a protocol envelope."""
    raw = line.strip()
    if not raw:
        raise CommandParseError("Empty command")
    parts = raw.split(maxsplit=2)
    verb = parts[0].lower()

    if verb == "create":
        return {"type": "CREATE_ROOM", "playerName": " ".join(parts[1:])}
    if verb == "join":
        if len(parts) < 2:
            raise CommandParseError("join requires a room code")
        return {"type": "JOIN_ROOM", "roomId": parts[1], "playerName": parts[2] if len(parts) > 2 else ""}
    if verb == "name":
        return {"type": "PLAYER_INFO", "playerName": " ".join(parts[1:])}
    if verb == "ready":
        return {"type": "PLAYER_READY"}
    if verb == "auto":
        return {"type": "SHIPS_PLACED", "ships": random_fleet(state.ruleset(), rng).to_wire()}
    if verb == "fire":
        x, y = _coord_arg(parts, verb)
        return {"type": "SHOT", "x": x, "y": y, "weapon": "normal"}
    if verb in ("bomb", "radar"):
        x, y = _coord_arg(parts, verb)
        return {"type": "SHOT", "x": x, "y": y, "weapon": verb}
    if verb == "nuke":
        return {"type": "USE_SUPER_WEAPON"}
    if verb == "chat":
        text = raw[len(parts[0]) :].strip()
        if not text:
            raise CommandParseError("chat requires a message")
        return {"type": "CHAT", "message": text}
    if verb == "rematch":
        return {"type": "REMATCH_REQUEST"}
    if verb == "accept":
        return {"type": "REMATCH_ACCEPT"}
    if verb == "leave":
        return {"type": "LEAVE_ROOM"}
    raise CommandParseError(f"Unknown command: {raw}")


# ------------------------------------------------------------
# Event rendering
# ------------------------------------------------------------


def describe(obj: dict, state: ClientState) -> Optional[str]:
    """Return a one-line rendering of a server event (and update *state*)."""
    kind = obj.get("type")
    if kind in ("ROOM_CREATED", "ROOM_JOINED"):
        state.room_id = obj.get("roomId")
        state.player_number = obj.get("playerNumber")
        config = obj.get("shipConfig") or []
        if config:
            state.ship_sizes = {int(c["size"]): int(c["count"]) for c in config}
        verb = "Created" if kind == "ROOM_CREATED" else "Joined"
        return f"{verb} room {state.room_id} as player {state.player_number}"
    if kind == "CONNECTION_ESTABLISHED":
        stats = obj.get("stats") or {}
        return f"Connected as {obj.get('playerId')} (wins {stats.get('wins', 0)})"
    if kind == "PLAYER_CONNECTED":
        return f"Player {obj.get('playerNumber')} ({obj.get('playerName')}) is here"
    if kind == "GAME_START":
        turn = "you move first" if obj.get("yourTurn") else "opponent moves first"
        return f"Game on against {obj.get('opponentName')}: place your fleet ('auto'), {turn}"
    if kind == "PLAYER_TURN":
        return "YOUR TURN" if obj.get("yourTurn") else "Opponent's turn"
    if kind == "SHOT_RESULT":
        who = "You" if obj.get("playerNumber") == state.player_number else "Opponent"
        line = f"{who} fired at {format_coord(obj['x'], obj['y'])}: {'HIT' if obj.get('hit') else 'miss'}"
        if obj.get("sunk"):
            line += f", sunk {obj.get('shipType')}"
        return line
    if kind == "SPECIAL_WEAPON_USED":
        who = "You" if obj.get("playerNumber") == state.player_number else "Opponent"
        weapon = obj.get("weapon")
        if weapon == "radar":
            found = [format_coord(r["x"], r["y"]) for r in obj.get("results", []) if r.get("hasShip")]
            return f"{who} used radar: ships at {', '.join(found) or 'nothing'}"
        if weapon == "bomb":
            hits = [format_coord(h["x"], h["y"]) for h in obj.get("hits", []) if h.get("hit")]
            return f"{who} dropped a bomb: hits at {', '.join(hits) or 'nothing'}"
        return f"{who} used the {weapon} weapon"
    if kind == "GAME_OVER":
        won = obj.get("winner") == state.player_number
        return f"{'YOU WON' if won else 'YOU LOST'} ({obj.get('reason')})"
    if kind == "CHAT_MESSAGE":
        return f"[CHAT] P{obj.get('playerNumber')}: {obj.get('message')}"
    if kind in ("PLAYER_LEFT", "PLAYER_DISCONNECTED"):
        return f"Player {obj.get('playerNumber')} left"
    if kind == "ERROR":
        return f"ERR {obj.get('code')}: {obj.get('message')}"
    if kind in ("ROOM_LEFT", "ROOM_CLOSED"):
        state.room_id = None
        return f"Room {obj.get('roomId')} closed" if kind == "ROOM_CLOSED" else "You left the room"
    return None


def _recv_loop(sock: socket.socket, state: ClientState, stop_evt: threading.Event, emit: Callable[[str], None]) -> None:
    """Continuously print messages from the server."""
    br = sock.makefile("rb")
    try:
        while not stop_evt.is_set():
            try:
                ptype, seq, obj = recv_pkt(br)
            except IncompleteError:
                break
            except FrameError as exc:
                logger.warning("recv_pkt() frame error: %s", exc)
                break
            except OSError:
                break
            logger.debug("Recv %s seq=%d %r", ptype.name, seq, obj)
            if isinstance(obj, dict):
                line = describe(obj, state)
                if line:
                    emit(line)
    finally:
        stop_evt.set()


# ----------------------------- main -------------------------------


def main() -> None:  # pragma: no cover
    """Interactive CLI client."""
    parser = argparse.ArgumentParser(description="Salvo terminal client")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--secure", nargs="?", const=_cfg.DEFAULT_KEY_HEX, help="Enable AES-GCM, optionally with hex key")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    if args.debug:
        os.environ["SALVO_DEBUG"] = "1"
    logging.basicConfig(
        level=logging.DEBUG if args.debug or _cfg.DEBUG else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if args.secure is not None:
        enable_encryption(bytes.fromhex(args.secure))

    state = ClientState()
    stop_evt = threading.Event()
    with socket.create_connection((args.host, args.port)) as s:
        wbuf = s.makefile("wb")
        threading.Thread(target=_recv_loop, args=(s, state, stop_evt, lambda line: print(f"\r{line}")), daemon=True).start()
        seq = 0
        try:
            for user_input in sys.stdin:
                if stop_evt.is_set():
                    print("Disconnected from server.")
                    break
                if user_input.strip().lower() == "quit":
                    break
                try:
                    msg = build_message(user_input, state)
                except CommandParseError as e:
                    print(f"ERR {e}")
                    continue
                send_pkt(wbuf, PacketType.GAME, seq, msg)
                seq += 1
        except KeyboardInterrupt:
            logger.info("Client exiting")
        finally:
            stop_evt.set()


if __name__ == "__main__":  # pragma: no cover
    main()
