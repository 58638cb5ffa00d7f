# encryption abstraction module

import os
import struct

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# AEAD header format: magic (2 bytes), version (1 byte), packet type (1 byte), sequence (4 bytes), nonce (12 bytes), length (4 bytes)
HEADER_STRUCT = struct.Struct(">HBBI12sI")

MAGIC = 0x5A17
VERSION = 1

_secret_key: bytes | None = None


def enable_encryption(key: bytes) -> None:
    """Set the symmetric encryption key for AEAD operations"""
    global _secret_key
    _secret_key = key


def disable_encryption() -> None:
    global _secret_key
    _secret_key = None


def is_enabled() -> bool:
    return _secret_key is not None


def pack(ptype: int, seq: int, payload: bytes) -> bytes:
    """AEAD pack: header + ciphertext+tag"""
    if _secret_key is None:
        raise ValueError("Encryption key not set")
    nonce = os.urandom(12)
    aesgcm = AESGCM(_secret_key)
    # bind the clear header fields to the ciphertext
    aad = struct.pack(">HBBI", MAGIC, VERSION, ptype, seq & 0xFFFFFFFF)
    ciphertext = aesgcm.encrypt(nonce, payload, aad)
    header = HEADER_STRUCT.pack(MAGIC, VERSION, ptype, seq & 0xFFFFFFFF, nonce, len(ciphertext))
    return header + ciphertext


def unpack(frame: bytes) -> tuple[int, int, int, int, bytes]:
    """AEAD unpack: returns (magic, version, ptype, seq, plaintext)"""
    if _secret_key is None:
        raise ValueError("Encryption key not set")
    header_size = HEADER_STRUCT.size
    magic, version, ptype, seq, nonce, length = HEADER_STRUCT.unpack(frame[:header_size])
    ciphertext = frame[header_size : header_size + length]
    aesgcm = AESGCM(_secret_key)
    aad = struct.pack(">HBBI", magic, version, ptype, seq)
    plaintext = aesgcm.decrypt(nonce, ciphertext, aad)
    return magic, version, ptype, seq, plaintext
