"""Low-level packet framing utilities.

Frame layout (16-byte header + JSON payload):
0-1  : 0x5A17       magic bytes
2    : version (1)
3    : PacketType (enum)
4-7  : seq u32 (big-endian)
8-11 : len u32 (payload length)
12-15: CRC-32 over header[0:12]+payload
16-  : UTF-8 JSON payload

When a key has been enabled (``--secure``) frames switch to the AEAD layout
from :mod:`salvo.encryption` and the CRC is replaced by the GCM tag.
"""

from __future__ import annotations

import enum
import json
import struct
import zlib
from typing import IO, Any, Final, Tuple

from cryptography.exceptions import InvalidTag

from . import config as _cfg
from . import encryption as _aead

MAGIC: Final[int] = _aead.MAGIC
VERSION: Final[int] = _aead.VERSION

HEADER_STRUCT = struct.Struct(">HBBIII")
HEADER_LEN: Final[int] = HEADER_STRUCT.size
MAX_PAYLOAD: Final[int] = 1024 * 1024

# Default AES key (for calls to enable_encryption without an explicit key)
DEFAULT_KEY = _cfg.DEFAULT_KEY


def enable_encryption(key: bytes = DEFAULT_KEY) -> None:
    """Switch every subsequent frame to AES-GCM with *key*."""
    if len(key) not in (16, 24, 32):
        raise ValueError("AES key must be 16/24/32 bytes")
    _aead.enable_encryption(key)


def disable_encryption() -> None:
    """Disable AEAD encryption, reverting to CRC framing."""
    _aead.disable_encryption()


class PacketType(int, enum.Enum):
    """Enumerate wire-protocol packet categories."""

    GAME = 0
    CHAT = 1
    ERROR = 3


class FrameError(Exception):
    """Base for framing problems."""


class CrcError(FrameError):
    """Raised when a CRC-32 check fails while decoding a frame."""


class IncompleteError(FrameError):
    """Raised when the stream closes before a full frame could be read."""


# ---------------------------------------------------------------------------
# Public pack / unpack
# ---------------------------------------------------------------------------


def pack(ptype: PacketType | int, seq: int, obj: Any) -> bytes:
    """Serialize *obj* as JSON inside one frame."""
    payload = json.dumps(obj, separators=(",", ":")).encode()
    if len(payload) > MAX_PAYLOAD:
        raise ValueError(f"Payload too large: {len(payload)} bytes")
    if _aead.is_enabled():
        return _aead.pack(int(ptype), seq, payload)
    head = struct.pack(">HBBII", MAGIC, VERSION, int(ptype), seq & 0xFFFFFFFF, len(payload))
    crc = zlib.crc32(head + payload) & 0xFFFFFFFF
    return head + struct.pack(">I", crc) + payload


def _read_exact(r: IO[bytes], n: int, what: str) -> bytes:
    data = r.read(n)
    if data is None or len(data) < n:
        raise IncompleteError(f"Incomplete {what}")
    return data


def _decode(ptype_val: int, payload: bytes) -> Tuple[PacketType, Any]:
    try:
        ptype = PacketType(ptype_val)
    except ValueError:
        raise FrameError(f"unknown packet type {ptype_val}") from None
    try:
        return ptype, json.loads(payload)
    except ValueError as e:
        raise FrameError(f"payload is not JSON: {e}") from None


def unpack(r: IO[bytes]) -> Tuple[PacketType, int, Any]:
    """Blocking read of the next frame from *r*; returns ``(ptype, seq, obj)``."""
    if _aead.is_enabled():
        header = _read_exact(r, _aead.HEADER_STRUCT.size, "header")
        magic, version, _ptype, _seq, _nonce, length = _aead.HEADER_STRUCT.unpack(header)
        if magic != MAGIC or version != VERSION:
            raise FrameError("magic/version mismatch")
        if length > MAX_PAYLOAD + 16:
            raise FrameError(f"frame too large: {length} bytes")
        frame = header + _read_exact(r, length, "payload")
        try:
            _, _, ptype_val, seq, plaintext = _aead.unpack(frame)
        except InvalidTag:
            raise FrameError("AEAD authentication failed") from None
        ptype, obj = _decode(ptype_val, plaintext)
        return ptype, seq, obj

    header = _read_exact(r, HEADER_LEN, "header")
    magic, version, ptype_val, seq, length, crc = HEADER_STRUCT.unpack(header)
    if magic != MAGIC or version != VERSION:
        raise FrameError("magic/version mismatch")
    if length > MAX_PAYLOAD:
        raise FrameError(f"frame too large: {length} bytes")
    payload = _read_exact(r, length, "payload")
    if zlib.crc32(header[:12] + payload) & 0xFFFFFFFF != crc:
        raise CrcError(f"CRC mismatch on seq {seq}")
    ptype, obj = _decode(ptype_val, payload)
    return ptype, seq, obj


# ---------------------------------------------------------------------------
# Convenience wrappers for file-like objects
# ---------------------------------------------------------------------------


def send_pkt(w: IO[bytes], ptype: PacketType, seq: int, obj: Any) -> None:
    """Write a single framed packet to buffered writer *w* and flush."""
    w.write(pack(ptype, seq, obj))
    w.flush()


def recv_pkt(r: IO[bytes]) -> Tuple[PacketType, int, Any]:
    """Blocking helper that returns the next `(ptype, seq, obj)` tuple from *r*."""
    return unpack(r)


__all__ = [
    "PacketType",
    "FrameError",
    "CrcError",
    "IncompleteError",
    "enable_encryption",
    "disable_encryption",
    "pack",
    "unpack",
    "send_pkt",
    "recv_pkt",
]
