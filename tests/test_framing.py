import struct
import zlib
from io import BytesIO

import pytest

import salvo.common as common
from salvo.common import (
    HEADER_LEN,
    CrcError,
    FrameError,
    IncompleteError,
    PacketType,
    pack,
    recv_pkt,
    send_pkt,
    unpack,
)


@pytest.fixture
def aead_key():
    key = bytes(range(16))
    common.enable_encryption(key)
    try:
        yield key
    finally:
        common.disable_encryption()


def test_pack_unpack_roundtrip():
    obj = {"type": "SHOT", "x": 3, "y": 7, "nested": [1, {"weapon": "bomb"}]}
    ptype, seq_out, obj_out = unpack(BytesIO(pack(PacketType.GAME, 12345, obj)))
    assert ptype == PacketType.GAME
    assert seq_out == 12345
    assert obj_out == obj


def test_header_and_crc_fields():
    obj = {"type": "CHAT_MESSAGE", "message": "hello"}
    data = pack(PacketType.CHAT, 1, obj)

    magic, version, ptype_byte, seq_u32, length = struct.unpack(">HBBII", data[:12])
    assert magic == common.MAGIC == 0x5A17
    assert version == common.VERSION
    assert ptype_byte == PacketType.CHAT.value
    assert seq_u32 == 1
    payload = data[HEADER_LEN:]
    assert length == len(payload)
    crc_expected = struct.unpack(">I", data[12:16])[0]
    assert zlib.crc32(data[:12] + payload) & 0xFFFFFFFF == crc_expected


def test_magic_mismatch_raises_FrameError():
    data = pack(PacketType.GAME, 0, {"x": 1})
    with pytest.raises(FrameError):
        unpack(BytesIO(b"\x00\x00" + data[2:]))


def test_version_mismatch_raises_FrameError():
    data = pack(PacketType.GAME, 0, {"x": 1})
    with pytest.raises(FrameError):
        unpack(BytesIO(data[:2] + b"\x02" + data[3:]))


def test_unknown_packet_type_raises_FrameError():
    payload = b'{"x":1}'
    head = struct.pack(">HBBII", common.MAGIC, common.VERSION, 9, 0, len(payload))
    crc = zlib.crc32(head + payload) & 0xFFFFFFFF
    with pytest.raises(FrameError):
        unpack(BytesIO(head + struct.pack(">I", crc) + payload))


def test_non_json_payload_raises_FrameError():
    payload = b"not json"
    head = struct.pack(">HBBII", common.MAGIC, common.VERSION, 0, 0, len(payload))
    crc = zlib.crc32(head + payload) & 0xFFFFFFFF
    with pytest.raises(FrameError) as exc:
        unpack(BytesIO(head + struct.pack(">I", crc) + payload))
    assert not isinstance(exc.value, CrcError)


def test_oversized_length_raises_FrameError():
    head = struct.pack(">HBBIII", common.MAGIC, common.VERSION, 0, 0, common.MAX_PAYLOAD + 1, 0)
    with pytest.raises(FrameError):
        unpack(BytesIO(head))


def test_incomplete_header_raises_IncompleteError():
    data = pack(PacketType.GAME, 0, {"x": 1})
    with pytest.raises(IncompleteError):
        unpack(BytesIO(data[: HEADER_LEN - 1]))


def test_incomplete_payload_raises_IncompleteError():
    data = pack(PacketType.GAME, 0, {"x": 1})
    cut = HEADER_LEN + (len(data) - HEADER_LEN) // 2
    with pytest.raises(IncompleteError):
        unpack(BytesIO(data[:cut]))


def test_crc_mismatch_raises_CrcError():
    corrupt = bytearray(pack(PacketType.GAME, 5, {"foo": "bar"}))
    corrupt[HEADER_LEN] ^= 0xFF
    with pytest.raises(CrcError):
        unpack(BytesIO(corrupt))


def test_multiple_frames_stream():
    buf = BytesIO()
    send_pkt(buf, PacketType.GAME, 1, {"msg": 1})
    send_pkt(buf, PacketType.ERROR, 2, {"code": "NOT_YOUR_TURN"})
    buf.seek(0)
    assert recv_pkt(buf) == (PacketType.GAME, 1, {"msg": 1})
    assert recv_pkt(buf) == (PacketType.ERROR, 2, {"code": "NOT_YOUR_TURN"})


def test_encryption_roundtrip(aead_key):
    obj = {"type": "SHIPS_PLACED", "playerNumber": 2}
    data = pack(PacketType.GAME, 42, obj)
    assert b"SHIPS_PLACED" not in data
    assert unpack(BytesIO(data)) == (PacketType.GAME, 42, obj)


def test_encrypted_tamper_raises_FrameError(aead_key):
    data = bytearray(pack(PacketType.GAME, 7, {"secret": "data"}))
    data[-1] ^= 0x01
    with pytest.raises(FrameError):
        unpack(BytesIO(bytes(data)))


def test_encrypted_header_bound_to_ciphertext(aead_key):
    data = bytearray(pack(PacketType.GAME, 7, {"secret": "data"}))
    # flip the packet type byte; the tag covers it
    data[3] = PacketType.CHAT.value
    with pytest.raises(FrameError):
        unpack(BytesIO(bytes(data)))


def test_bad_key_length_rejected():
    with pytest.raises(ValueError):
        common.enable_encryption(b"short")
