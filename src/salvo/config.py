"""Central configuration for runtime-tunable parameters.

All constants can be overridden via environment variables so that the
production relay server runs with sensible defaults, while the automated
test-suite can shorten timers or switch rulesets when necessary.
"""

from __future__ import annotations

import os

# ===========================================================================
# Network Defaults
# ===========================================================================
# SALVO_HOST: Default host address for the server to bind to and clients to connect to.
#   Defaults to "127.0.0.1".
#   Example: export SALVO_HOST=0.0.0.0
DEFAULT_HOST: str = os.getenv("SALVO_HOST", "127.0.0.1")

# SALVO_PORT: Default port for the server to listen on and clients to connect to.
#   Falls back to PORT (as set by most hosting platforms), then 61337.
#   Example: export SALVO_PORT=5001
DEFAULT_PORT: int = int(os.getenv("SALVO_PORT", os.getenv("PORT", "61337")))


# ===========================================================================
# Game Constants
# ===========================================================================
BOARD_SIZE: int = 10

# Room codes are exactly this many decimal digits, e.g. "0427".
ROOM_CODE_LENGTH: int = 4
ROOM_CODE_ALPHABET: str = "0123456789"

# Fleet rulesets: per size-class counts plus whether ships may touch.
#   "standard": 1x4, 2x3, 3x2, 4x1; ships may not touch, not even diagonally.
#   "classic":  Carrier 5, Battleship 4, Cruiser 3, Submarine 3, Destroyer 2;
#                ships only must not overlap.
RULESETS: dict[str, dict] = {
    "standard": {"sizes": {4: 1, 3: 2, 2: 3, 1: 4}, "no_touch": True},
    "classic": {"sizes": {5: 1, 4: 1, 3: 2, 2: 1}, "no_touch": False},
}

# SALVO_RULESET: name of the ruleset every room is created with.
#   Example: export SALVO_RULESET=classic
RULESET: str = os.getenv("SALVO_RULESET", "standard")

# Human-readable names for each ship size, reported as ``shipType``.
SHIP_NAMES: dict[int, str] = {
    5: "Carrier",
    4: "Battleship",
    3: "Cruiser",
    2: "Destroyer",
    1: "Patrol",
}


# ===========================================================================
# Special Weapons
# ===========================================================================
# SALVO_BOMBS / SALVO_RADARS: per-game charges of the area and recon weapons.
BOMB_CHARGES: int = int(os.getenv("SALVO_BOMBS", "2"))
RADAR_CHARGES: int = int(os.getenv("SALVO_RADARS", "1"))

# SALVO_UNLOCK_WINS: lifetime wins needed to unlock the heavy weapon.
#   The weapon unlocks again at every further multiple of this number.
UNLOCK_WINS: int = int(os.getenv("SALVO_UNLOCK_WINS", "10"))


# ===========================================================================
# Room Housekeeping
# ===========================================================================
# SALVO_FINISHED_GRACE: seconds a finished room is kept for rematches before it is reaped.
FINISHED_GRACE: float = float(os.getenv("SALVO_FINISHED_GRACE", "60"))

# SALVO_IDLE_TIMEOUT: seconds without any activity after which a room is reaped.
IDLE_TIMEOUT: float = float(os.getenv("SALVO_IDLE_TIMEOUT", "1800"))

# SALVO_REAP_INTERVAL: how often (seconds) the server sweeps for expired rooms.
REAP_INTERVAL: float = float(os.getenv("SALVO_REAP_INTERVAL", "15"))

# SALVO_SEND_TIMEOUT: seconds a write to one client may block before that client is dropped.
SEND_TIMEOUT: float = float(os.getenv("SALVO_SEND_TIMEOUT", "10"))


# ===========================================================================
# Debugging and Logging
# ===========================================================================
# SALVO_DEBUG: If "1", enables detailed debug logging across modules.
#   Defaults to "0" (disabled).
DEBUG: bool = os.getenv("SALVO_DEBUG", "0") == "1"


# ===========================================================================
# Cryptography Defaults
# ===========================================================================
# SALVO_KEY: AES encryption key as a hex string, used by ``--secure`` without an explicit key.
DEFAULT_KEY_HEX: str = os.getenv("SALVO_KEY", "00112233445566778899AABBCCDDEEFF")
DEFAULT_KEY: bytes = bytes.fromhex(DEFAULT_KEY_HEX)
