"""Threaded TCP relay server.

Every accepted socket gets its own daemon thread that decodes frames and feeds
them to the shared :class:`~salvo.handler.ProtocolHandler`.  Outbound events are
routed back by player id.  A reaper thread periodically drops finished and
idle rooms.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import signal
import socket
import struct
import sys
import threading
from typing import Optional

from . import config as _cfg
from .common import FrameError, IncompleteError, PacketType, enable_encryption, recv_pkt, send_pkt
from .events import Event
from .handler import ProtocolHandler

HOST = _cfg.DEFAULT_HOST
PORT = _cfg.DEFAULT_PORT

# Initialize module-level logger
logger = logging.getLogger(__name__)


class Connection:
    """One client socket plus a write lock; sends may come from any room thread."""

    def __init__(self, sock: socket.socket, addr: tuple, send_timeout: float = _cfg.SEND_TIMEOUT) -> None:
        self.sock = sock
        self.addr = addr
        # Enable TCP keepalive to detect dead peers
        with contextlib.suppress(OSError):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        # Bound writes only; reads stay blocking so idle players are not dropped
        secs, frac = divmod(send_timeout, 1)
        with contextlib.suppress(OSError):
            sock.setsockopt(
                socket.SOL_SOCKET, socket.SO_SNDTIMEO, struct.pack("ll", int(secs), int(frac * 1_000_000))
            )
        self.rfile = sock.makefile("rb")
        self.wfile = sock.makefile("wb")
        self._wlock = threading.Lock()
        self._seq = 0

    def send(self, event: Event) -> bool:
        if event.is_chat:
            ptype = PacketType.CHAT
        elif event.is_error:
            ptype = PacketType.ERROR
        else:
            ptype = PacketType.GAME
        with self._wlock:
            try:
                send_pkt(self.wfile, ptype, self._seq, event.to_wire())
            except (OSError, ValueError) as e:
                # wake the reader thread so this client goes down the disconnect path
                logger.debug("Send to %s failed: %s", self.addr, e)
                with contextlib.suppress(OSError):
                    self.sock.shutdown(socket.SHUT_RDWR)
                return False
            self._seq += 1
        return True

    def close(self) -> None:
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        for f in (self.rfile, self.wfile, self.sock):
            with contextlib.suppress(OSError):
                f.close()


class RelayServer:
    """Accept loop, per-connection reader threads and the room reaper."""

    def __init__(
        self,
        host: str = HOST,
        port: int = PORT,
        handler: Optional[ProtocolHandler] = None,
        *,
        reap_interval: float = _cfg.REAP_INTERVAL,
        send_timeout: float = _cfg.SEND_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.reap_interval = reap_interval
        self.send_timeout = send_timeout
        self.handler = handler or ProtocolHandler(self._deliver)
        self._conns: dict[str, Connection] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sock: socket.socket | None = None
        self.address: tuple[str, int] | None = None

    # -------------------- outbound --------------------
    def _deliver(self, player_id: str, event: Event) -> None:
        with self._lock:
            conn = self._conns.get(player_id)
        if conn is None:
            logger.debug("Dropping %s for departed %s", event.type.value, player_id)
            return
        if not conn.send(event):
            logger.debug("Send of %s to %s failed", event.type.value, player_id)

    # -------------------- lifecycle --------------------
    def bind(self) -> tuple[str, int]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        sock.listen()
        self._sock = sock
        self.address = sock.getsockname()[:2]
        logger.info("Relay server listening on %s:%d", *self.address)
        return self.address

    def start(self) -> tuple[str, int]:
        """Bind and serve from a background thread (used by tests)."""
        address = self.bind()
        threading.Thread(target=self.serve_forever, name="salvo-accept", daemon=True).start()
        return address

    def serve_forever(self) -> None:
        if self._sock is None:
            self.bind()
        assert self._sock is not None
        threading.Thread(target=self._reap_loop, name="salvo-reaper", daemon=True).start()
        while not self._stop.is_set():
            try:
                sock, addr = self._sock.accept()
            except OSError:
                if self._stop.is_set():
                    break
                raise
            logger.info("Connection from %s", addr)
            conn = Connection(sock, addr, self.send_timeout)
            threading.Thread(target=self._serve_client, args=(conn,), daemon=True).start()

    def shutdown(self) -> None:
        self._stop.set()
        if self._sock is not None:
            # shutdown() wakes a thread blocked in accept() on Linux; close() alone does not
            with contextlib.suppress(OSError):
                self._sock.shutdown(socket.SHUT_RDWR)
            with contextlib.suppress(OSError):
                self._sock.close()
        with self._lock:
            conns = list(self._conns.values())
        for conn in conns:
            conn.close()

    def _reap_loop(self) -> None:
        while not self._stop.wait(self.reap_interval):
            try:
                self.handler.reap()
            except Exception:  # noqa: BLE001
                logger.exception("Room reaper failed")

    # -------------------- inbound --------------------
    def _serve_client(self, conn: Connection) -> None:
        player_id = self.handler.new_player_id()
        with self._lock:
            self._conns[player_id] = conn
        try:
            self.handler.connect(player_id)
            while not self._stop.is_set():
                ptype, seq, obj = recv_pkt(conn.rfile)
                logger.debug("recv %s seq=%d from %s: %r", ptype.name, seq, player_id, obj)
                self.handler.handle(player_id, obj)
        except IncompleteError:
            logger.debug("%s closed the connection", player_id)
        except FrameError as e:
            logger.warning("Dropping %s after bad frame: %s", player_id, e)
        except OSError as e:
            logger.debug("Socket error for %s: %s", player_id, e)
        finally:
            with self._lock:
                self._conns.pop(player_id, None)
            self.handler.disconnect(player_id)
            conn.close()


def main() -> None:  # pragma: no cover – side-effect entrypoint
    """Run the relay server until interrupted."""
    parser = argparse.ArgumentParser(description="Salvo battleship relay server")
    parser.add_argument("--host", default=HOST, help="Address to bind.")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on.")
    parser.add_argument(
        "--secure",
        nargs="?",
        const=_cfg.DEFAULT_KEY_HEX,
        metavar="HEXKEY",
        help="Encrypt frames with AES-GCM (optionally with the given hex key).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity.",
    )
    parser.add_argument(
        "-s",
        "--silent",
        "-q",
        "--quiet",
        dest="silent",
        action="store_true",
        help="Suppress all output.",
    )
    args = parser.parse_args()

    if args.debug:
        os.environ["SALVO_DEBUG"] = "1"

    # Determine log level from CLI flags:
    if args.silent:
        level = logging.ERROR
    elif args.debug or _cfg.DEBUG:
        level = logging.DEBUG
    elif args.verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.secure:
        enable_encryption(bytes.fromhex(args.secure))
        logger.info("AES-GCM encryption ENABLED")

    server = RelayServer(args.host, args.port)

    # install graceful shutdown handler
    def _shutdown(signum, frame):
        # ensure the "C" echo doesn't get stuck on our log line
        sys.stderr.write("\n")
        logger.info("Received signal %s, shutting down", signum)
        server.shutdown()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    server.serve_forever()


if __name__ == "__main__":  # pragma: no cover
    main()
