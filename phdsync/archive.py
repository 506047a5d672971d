"""ZIP-compatible container codec.

Only the subset needed for `.phd` files is implemented: stored and raw
DEFLATE entries, no encryption, no zip64. Every fixed-width record is a
dataclass with an `encode`/`decode` pair so that offset arithmetic stays in
this module.
"""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import ClassVar, Mapping

from phdsync.checksum import crc32, verify_crc32
from phdsync.errors import ArchiveFormatError


LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_DIRECTORY_SIGNATURE = 0x06054B50
DATA_DESCRIPTOR_SIGNATURE = 0x08074B50

STORED = 0
DEFLATED = 8

ZIP_VERSION = 20
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8_NAME = 0x0800

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_SIGNATURE = struct.Struct("<I")


def _signature_at(buffer: bytes, offset: int) -> int | None:
    if offset + _SIGNATURE.size > len(buffer):
        return None
    return _SIGNATURE.unpack_from(buffer, offset)[0]


def _require(buffer: bytes, offset: int, size: int, what: str) -> None:
    if offset < 0 or offset + size > len(buffer):
        raise ArchiveFormatError(
            f"Truncated {what} at offset {offset}: need {size} bytes, {max(0, len(buffer) - offset)} available"
        )


@dataclass(slots=True, frozen=True)
class LocalFileHeader:
    STRUCT: ClassVar[struct.Struct] = struct.Struct("<I5H3I2H")

    method: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    name_length: int
    extra_length: int = 0
    flags: int = 0
    version_needed: int = ZIP_VERSION
    mod_time: int = 0
    mod_date: int = 0

    def encode(self) -> bytes:
        return self.STRUCT.pack(
            LOCAL_HEADER_SIGNATURE,
            self.version_needed,
            self.flags,
            self.method,
            self.mod_time,
            self.mod_date,
            self.crc32,
            self.compressed_size,
            self.uncompressed_size,
            self.name_length,
            self.extra_length,
        )

    @classmethod
    def decode(cls, buffer: bytes, offset: int = 0) -> "LocalFileHeader":
        _require(buffer, offset, cls.STRUCT.size, "local file header")
        (
            signature,
            version_needed,
            flags,
            method,
            mod_time,
            mod_date,
            crc,
            compressed_size,
            uncompressed_size,
            name_length,
            extra_length,
        ) = cls.STRUCT.unpack_from(buffer, offset)
        if signature != LOCAL_HEADER_SIGNATURE:
            raise ArchiveFormatError(f"Bad local header signature 0x{signature:08x} at offset {offset}")
        return cls(
            method=method,
            crc32=crc,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            name_length=name_length,
            extra_length=extra_length,
            flags=flags,
            version_needed=version_needed,
            mod_time=mod_time,
            mod_date=mod_date,
        )


@dataclass(slots=True, frozen=True)
class CentralDirectoryRecord:
    STRUCT: ClassVar[struct.Struct] = struct.Struct("<I6H3I5H2I")

    method: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    name_length: int
    local_header_offset: int
    extra_length: int = 0
    comment_length: int = 0
    flags: int = 0
    version_made_by: int = ZIP_VERSION
    version_needed: int = ZIP_VERSION
    mod_time: int = 0
    mod_date: int = 0
    disk_start: int = 0
    internal_attributes: int = 0
    external_attributes: int = 0

    @property
    def trailing_length(self) -> int:
        return self.name_length + self.extra_length + self.comment_length

    def encode(self) -> bytes:
        return self.STRUCT.pack(
            CENTRAL_DIRECTORY_SIGNATURE,
            self.version_made_by,
            self.version_needed,
            self.flags,
            self.method,
            self.mod_time,
            self.mod_date,
            self.crc32,
            self.compressed_size,
            self.uncompressed_size,
            self.name_length,
            self.extra_length,
            self.comment_length,
            self.disk_start,
            self.internal_attributes,
            self.external_attributes,
            self.local_header_offset,
        )

    @classmethod
    def decode(cls, buffer: bytes, offset: int = 0) -> "CentralDirectoryRecord":
        _require(buffer, offset, cls.STRUCT.size, "central directory record")
        (
            signature,
            version_made_by,
            version_needed,
            flags,
            method,
            mod_time,
            mod_date,
            crc,
            compressed_size,
            uncompressed_size,
            name_length,
            extra_length,
            comment_length,
            disk_start,
            internal_attributes,
            external_attributes,
            local_header_offset,
        ) = cls.STRUCT.unpack_from(buffer, offset)
        if signature != CENTRAL_DIRECTORY_SIGNATURE:
            raise ArchiveFormatError(f"Bad directory signature 0x{signature:08x} at offset {offset}")
        return cls(
            method=method,
            crc32=crc,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            name_length=name_length,
            local_header_offset=local_header_offset,
            extra_length=extra_length,
            comment_length=comment_length,
            flags=flags,
            version_made_by=version_made_by,
            version_needed=version_needed,
            mod_time=mod_time,
            mod_date=mod_date,
            disk_start=disk_start,
            internal_attributes=internal_attributes,
            external_attributes=external_attributes,
        )


@dataclass(slots=True, frozen=True)
class EndOfCentralDirectory:
    STRUCT: ClassVar[struct.Struct] = struct.Struct("<I4H2IH")

    entries_on_disk: int
    total_entries: int
    directory_size: int
    directory_offset: int
    disk_number: int = 0
    directory_disk: int = 0
    comment_length: int = 0

    def encode(self) -> bytes:
        return self.STRUCT.pack(
            END_OF_DIRECTORY_SIGNATURE,
            self.disk_number,
            self.directory_disk,
            self.entries_on_disk,
            self.total_entries,
            self.directory_size,
            self.directory_offset,
            self.comment_length,
        )

    @classmethod
    def decode(cls, buffer: bytes, offset: int = 0) -> "EndOfCentralDirectory":
        _require(buffer, offset, cls.STRUCT.size, "end of central directory")
        (
            signature,
            disk_number,
            directory_disk,
            entries_on_disk,
            total_entries,
            directory_size,
            directory_offset,
            comment_length,
        ) = cls.STRUCT.unpack_from(buffer, offset)
        if signature != END_OF_DIRECTORY_SIGNATURE:
            raise ArchiveFormatError(f"Bad end-of-directory signature 0x{signature:08x} at offset {offset}")
        return cls(
            entries_on_disk=entries_on_disk,
            total_entries=total_entries,
            directory_size=directory_size,
            directory_offset=directory_offset,
            disk_number=disk_number,
            directory_disk=directory_disk,
            comment_length=comment_length,
        )

    @classmethod
    def locate(cls, buffer: bytes) -> int:
        """Offset of the trailer, searching back over an optional archive comment."""
        earliest = max(0, len(buffer) - cls.STRUCT.size - _U16_MAX)
        position = len(buffer) - cls.STRUCT.size
        while position >= earliest:
            if _signature_at(buffer, position) == END_OF_DIRECTORY_SIGNATURE:
                return position
            position -= 1
        raise ArchiveFormatError("End of central directory not found")


@dataclass(slots=True)
class ArchiveEntry:
    name: str
    raw: bytes
    compressed: bytes
    method: int
    checksum: int
    offset: int = 0

    @property
    def encoded_name(self) -> bytes:
        return self.name.encode("utf-8")

    @property
    def flags(self) -> int:
        return 0 if self.name.isascii() else FLAG_UTF8_NAME


@dataclass(slots=True, frozen=True)
class ArchiveEntryInfo:
    name: str
    method: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    offset: int


def _compress(data: bytes, method: int) -> bytes:
    if method == STORED:
        return data
    if method == DEFLATED:
        compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
        return compressor.compress(data) + compressor.flush()
    raise ValueError(f"Unsupported compression method: {method}")


def build_entry(name: str, content: str | bytes, method: int = DEFLATED) -> ArchiveEntry:
    raw = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    return ArchiveEntry(
        name=name,
        raw=raw,
        compressed=_compress(raw, method),
        method=method,
        checksum=crc32(raw),
    )


def write_archive(files: Mapping[str, str | bytes], *, method: int = DEFLATED) -> bytes:
    """Serialize `files` (name -> content, in order) into one archive buffer."""
    entries = [build_entry(name, content, method) for name, content in files.items()]
    if len(entries) > _U16_MAX:
        raise ArchiveFormatError(f"Too many entries for a non-zip64 archive: {len(entries)}")

    chunks: list[bytes] = []
    offset = 0
    for entry in entries:
        name_bytes = entry.encoded_name
        if len(name_bytes) > _U16_MAX:
            raise ArchiveFormatError(f"Entry name too long: {entry.name[:40]}...")
        entry.offset = offset
        header = LocalFileHeader(
            method=entry.method,
            crc32=entry.checksum,
            compressed_size=len(entry.compressed),
            uncompressed_size=len(entry.raw),
            name_length=len(name_bytes),
            flags=entry.flags,
        )
        chunks.extend((header.encode(), name_bytes, entry.compressed))
        offset += LocalFileHeader.STRUCT.size + len(name_bytes) + len(entry.compressed)

    directory_offset = offset
    directory_size = 0
    for entry in entries:
        name_bytes = entry.encoded_name
        record = CentralDirectoryRecord(
            method=entry.method,
            crc32=entry.checksum,
            compressed_size=len(entry.compressed),
            uncompressed_size=len(entry.raw),
            name_length=len(name_bytes),
            local_header_offset=entry.offset,
            flags=entry.flags,
        )
        chunks.extend((record.encode(), name_bytes))
        directory_size += CentralDirectoryRecord.STRUCT.size + len(name_bytes)

    if directory_offset + directory_size > _U32_MAX:
        raise ArchiveFormatError("Archive exceeds 4 GiB; zip64 is not supported")

    trailer = EndOfCentralDirectory(
        entries_on_disk=len(entries),
        total_entries=len(entries),
        directory_size=directory_size,
        directory_offset=directory_offset,
    )
    chunks.append(trailer.encode())
    return b"".join(chunks)


def _decode_name(raw_name: bytes, flags: int) -> str:
    if flags & FLAG_UTF8_NAME:
        return raw_name.decode("utf-8", errors="replace")
    try:
        return raw_name.decode("utf-8")
    except UnicodeDecodeError:
        return raw_name.decode("cp437")


def _decode_payload(
    name: str,
    payload: bytes,
    *,
    method: int,
    expected_crc: int,
    expected_size: int,
) -> bytes:
    if method == STORED:
        data = bytes(payload)
    elif method == DEFLATED:
        decompressor = zlib.decompressobj(-15)
        try:
            data = decompressor.decompress(payload) + decompressor.flush()
        except zlib.error as exc:
            raise ArchiveFormatError(f"Corrupt DEFLATE stream in {name}: {exc}") from exc
    else:
        raise ArchiveFormatError(f"Unsupported compression method {method} for {name}")

    if len(data) != expected_size:
        raise ArchiveFormatError(
            f"Size mismatch in {name}: expected {expected_size} bytes, got {len(data)}"
        )
    if not verify_crc32(data, expected_crc):
        raise ArchiveFormatError(
            f"CRC mismatch in {name}: expected 0x{expected_crc:08x}, got 0x{crc32(data):08x}"
        )
    return data


def list_entries(buffer: bytes) -> list[ArchiveEntryInfo]:
    """Entries as recorded in the central directory trailer."""
    trailer = EndOfCentralDirectory.decode(buffer, EndOfCentralDirectory.locate(buffer))
    entries: list[ArchiveEntryInfo] = []
    offset = trailer.directory_offset
    for _ in range(trailer.total_entries):
        record = CentralDirectoryRecord.decode(buffer, offset)
        name_start = offset + CentralDirectoryRecord.STRUCT.size
        _require(buffer, name_start, record.trailing_length, "directory entry name")
        name = _decode_name(buffer[name_start : name_start + record.name_length], record.flags)
        entries.append(
            ArchiveEntryInfo(
                name=name,
                method=record.method,
                crc32=record.crc32,
                compressed_size=record.compressed_size,
                uncompressed_size=record.uncompressed_size,
                offset=record.local_header_offset,
            )
        )
        offset = name_start + record.trailing_length
    return entries


def read_entry(buffer: bytes, name: str) -> bytes | None:
    """Decompressed bytes of entry `name`, or None when no local record has that name.

    Local records are scanned from the start of the buffer; the directory
    trailer is only consulted for records that defer their sizes to a data
    descriptor.
    """
    directory: dict[int, ArchiveEntryInfo] | None = None
    offset = 0
    while _signature_at(buffer, offset) == LOCAL_HEADER_SIGNATURE:
        header = LocalFileHeader.decode(buffer, offset)
        name_start = offset + LocalFileHeader.STRUCT.size
        _require(buffer, name_start, header.name_length + header.extra_length, "entry name")
        entry_name = _decode_name(buffer[name_start : name_start + header.name_length], header.flags)
        data_start = name_start + header.name_length + header.extra_length

        compressed_size = header.compressed_size
        uncompressed_size = header.uncompressed_size
        expected_crc = header.crc32
        if header.flags & FLAG_DATA_DESCRIPTOR:
            if directory is None:
                directory = {info.offset: info for info in list_entries(buffer)}
            info = directory.get(offset)
            if info is None:
                raise ArchiveFormatError(
                    f"Entry {entry_name} defers its sizes but has no directory record"
                )
            compressed_size = info.compressed_size
            uncompressed_size = info.uncompressed_size
            expected_crc = info.crc32

        _require(buffer, data_start, compressed_size, f"payload of {entry_name}")
        data_end = data_start + compressed_size
        if entry_name == name:
            return _decode_payload(
                entry_name,
                buffer[data_start:data_end],
                method=header.method,
                expected_crc=expected_crc,
                expected_size=uncompressed_size,
            )

        offset = data_end
        if header.flags & FLAG_DATA_DESCRIPTOR:
            offset += 16 if _signature_at(buffer, offset) == DATA_DESCRIPTOR_SIGNATURE else 12
    return None
