from __future__ import annotations

import zlib


def crc32(data: bytes) -> int:
    """Standard CRC-32 (reflected 0xEDB88320) as an unsigned 32-bit value."""
    return zlib.crc32(data) & 0xFFFFFFFF


def verify_crc32(data: bytes, expected: int) -> bool:
    return crc32(data) == (expected & 0xFFFFFFFF)
