"""
Bitcoin consensus serialization primitives.
"""

from __future__ import annotations

import hashlib


class SerializationError(Exception):
    pass


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_bytes(data: bytes, offset: int, length: int) -> tuple[bytes, int]:
    end = offset + length
    if length < 0 or end > len(data):
        raise SerializationError(
            f"Unexpected end of data: need {length} bytes at offset {offset}, have {len(data)}"
        )
    return data[offset:end], end


def read_uint(data: bytes, offset: int, size: int) -> tuple[int, int]:
    raw, offset = read_bytes(data, offset, size)
    return int.from_bytes(raw, "little"), offset


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first, offset = read_uint(data, offset, 1)

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return read_uint(data, offset, 2)
    if first == 0xFE:
        return read_uint(data, offset, 4)
    return read_uint(data, offset, 8)


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise SerializationError(f"Cannot encode negative varint: {value}")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_var_bytes(data: bytes, offset: int) -> tuple[bytes, int]:
    length, offset = read_varint(data, offset)
    return read_bytes(data, offset, length)


def encode_var_bytes(value: bytes) -> bytes:
    return encode_varint(len(value)) + value


def hash_to_hex(digest: bytes) -> str:
    """Internal byte order hash to display (reversed) hex"""
    return digest[::-1].hex()


def hex_to_hash(value: str) -> bytes:
    """Display hex to internal byte order"""
    raw = bytes.fromhex(value)
    if len(raw) != 32:
        raise SerializationError(f"Invalid hash length: {len(raw)}")
    return raw[::-1]
