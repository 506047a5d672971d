"""
Tests for the CRC-32 helpers.
"""

import zlib

from phdsync.checksum import crc32, verify_crc32


class TestCrc32:
    """Known vectors for the standard reflected CRC-32."""

    def test_empty_input(self):
        assert crc32(b"") == 0x00000000

    def test_check_vector(self):
        assert crc32(b"123456789") == 0xCBF43926

    def test_pangram(self):
        assert crc32(b"The quick brown fox jumps over the lazy dog") == 0x414FA339

    def test_result_is_unsigned(self):
        value = crc32(bytes(range(256)) * 4)
        assert 0 <= value <= 0xFFFFFFFF
        assert value == zlib.crc32(bytes(range(256)) * 4) & 0xFFFFFFFF

    def test_verify(self):
        assert verify_crc32(b"123456789", 0xCBF43926)
        assert not verify_crc32(b"123456780", 0xCBF43926)
