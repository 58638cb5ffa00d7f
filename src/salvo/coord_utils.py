import re
from typing import Iterator, Tuple

from .config import BOARD_SIZE

# Regex for valid coordinates A1–J10 (column letter, 1-based row)
COORD_RE = re.compile(r"^[A-J](10|[1-9])$")

Coord = Tuple[int, int]


def coord_to_xy(coord: str) -> Coord:
    """
    Convert a coordinate like 'A1' through 'J10' to a zero-based (x, y) tuple.
    """
    coord = coord.strip().upper()
    if not COORD_RE.match(coord):
        raise ValueError(f"Invalid coordinate: {coord}")
    x = ord(coord[0]) - ord("A")
    y = int(coord[1:]) - 1
    return x, y


def format_coord(x: int, y: int) -> str:
    """
    Convert zero-based (x, y) to coordinate string like 'A1'.
    """
    return f"{chr(ord('A') + x)}{y + 1}"


def in_bounds(x: int, y: int, size: int = BOARD_SIZE) -> bool:
    return 0 <= x < size and 0 <= y < size


def neighbourhood(x: int, y: int, size: int = BOARD_SIZE) -> Iterator[Coord]:
    """Yield the 3x3 block centred on (x, y), clipped to the board."""
    for dx in (-1, 0, 1):
        for dy in (-1, 0, 1):
            nx, ny = x + dx, y + dy
            if in_bounds(nx, ny, size):
                yield nx, ny
