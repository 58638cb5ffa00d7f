"""Volatile per-player statistics (wins, losses, heavy-weapon unlock)."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from . import config as _cfg


@dataclass
class PlayerStats:
    player_name: str = ""
    wins: int = 0
    losses: int = 0
    games: int = 0
    heavy_weapon_unlocked: bool = False

    def to_wire(self) -> dict:
        return {
            "playerName": self.player_name,
            "wins": self.wins,
            "losses": self.losses,
            "totalGames": self.games,
            "superWeapon": self.heavy_weapon_unlocked,
        }


class StatsBook:
    """Stats keyed by connection id; lives only as long as the process."""

    def __init__(self, unlock_wins: int = _cfg.UNLOCK_WINS) -> None:
        self.unlock_wins = unlock_wins
        self._lock = threading.Lock()
        self._stats: dict[str, PlayerStats] = {}

    def get(self, player_id: str) -> PlayerStats:
        with self._lock:
            return self._stats.setdefault(player_id, PlayerStats())

    def drop(self, player_id: str) -> None:
        with self._lock:
            self._stats.pop(player_id, None)

    def record_result(self, winner_id: str, loser_id: str | None) -> None:
        """Count one finished game; unlock the heavy weapon on every *unlock_wins*-th win."""
        with self._lock:
            winner = self._stats.setdefault(winner_id, PlayerStats())
            winner.games += 1
            winner.wins += 1
            if self.unlock_wins > 0 and winner.wins % self.unlock_wins == 0:
                winner.heavy_weapon_unlocked = True
            if loser_id is not None:
                loser = self._stats.setdefault(loser_id, PlayerStats())
                loser.games += 1
                loser.losses += 1

    def consume_heavy_weapon(self, player_id: str) -> bool:
        """Clear the unlock flag; returns False if it was not set."""
        with self._lock:
            stats = self._stats.get(player_id)
            if stats is None or not stats.heavy_weapon_unlocked:
                return False
            stats.heavy_weapon_unlocked = False
            return True
