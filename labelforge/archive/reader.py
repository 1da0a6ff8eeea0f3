"""Images ZIP reader.

The central directory is authoritative: local headers written by streaming
zip tools may carry zero sizes, so every entry is located through its
directory record and the trailer found by scanning back from the end.
"""
from __future__ import annotations

import io
import logging
import struct
import zipfile
import zlib
from typing import Callable, Iterator, NamedTuple

from labelforge.errors import (
    CorruptArchive,
    DuplicateArchiveEntry,
    EmptyArchive,
    UnsupportedCodec,
)
from labelforge.naming import is_image_name, normalize_image_name

LOGGER = logging.getLogger(__name__)

EOCD_SIGNATURE = b"PK\x05\x06"
CENTRAL_SIGNATURE = 0x02014B50
LOCAL_SIGNATURE = 0x04034B50

_EOCD = struct.Struct("<4sHHHHIIH")
_CENTRAL = struct.Struct("<IHHHHHHIIIHHHHHII")
_LOCAL = struct.Struct("<IHHHHHIIIHH")
_MAX_COMMENT = 0xFFFF
_ZIP64_MARKER = 0xFFFFFFFF

METHOD_STORED = 0
METHOD_DEFLATED = 8

_FLAG_ENCRYPTED = 0x1
_FLAG_UTF8 = 0x800


class DirectoryEntry(NamedTuple):
    name: str
    method: int
    flags: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    local_offset: int


def _find_trailer(buffer: bytes) -> int:
    if len(buffer) < _EOCD.size:
        raise CorruptArchive("Failed to read ZIP file.", details="buffer is smaller than the directory trailer")
    start = len(buffer) - _EOCD.size
    stop = max(0, start - _MAX_COMMENT)
    offset = buffer.rfind(EOCD_SIGNATURE, stop, start + len(EOCD_SIGNATURE))
    if offset < 0:
        raise CorruptArchive("Failed to read ZIP file.", details="end of central directory record not found")
    return offset


def _decode_name(raw: bytes, flags: int) -> str:
    if flags & _FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")


def iter_directory(buffer: bytes) -> Iterator[DirectoryEntry]:
    trailer_offset = _find_trailer(buffer)
    _, _, _, _, total_entries, directory_size, directory_offset, _ = _EOCD.unpack_from(buffer, trailer_offset)
    if directory_offset == _ZIP64_MARKER or total_entries == 0xFFFF:
        raise CorruptArchive("Failed to read ZIP file.", details="ZIP64 archives are not supported")
    if directory_offset + directory_size > trailer_offset:
        raise CorruptArchive("Failed to read ZIP file.", details="central directory overlaps the trailer")

    offset = directory_offset
    for index in range(total_entries):
        if offset + _CENTRAL.size > trailer_offset:
            raise CorruptArchive("Failed to read ZIP file.", details=f"directory record {index} is truncated")
        (
            signature,
            _made_by,
            _needed,
            flags,
            method,
            _mtime,
            _mdate,
            crc,
            compressed_size,
            uncompressed_size,
            name_length,
            extra_length,
            comment_length,
            _disk,
            _internal_attr,
            _external_attr,
            local_offset,
        ) = _CENTRAL.unpack_from(buffer, offset)
        if signature != CENTRAL_SIGNATURE:
            raise CorruptArchive("Failed to read ZIP file.", details=f"bad signature on directory record {index}")
        name_start = offset + _CENTRAL.size
        raw_name = buffer[name_start : name_start + name_length]
        offset = name_start + name_length + extra_length + comment_length
        yield DirectoryEntry(
            name=_decode_name(raw_name, flags),
            method=method,
            flags=flags,
            crc32=crc,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            local_offset=local_offset,
        )


def _read_payload(buffer: bytes, entry: DirectoryEntry) -> bytes:
    if entry.compressed_size == _ZIP64_MARKER or entry.local_offset == _ZIP64_MARKER:
        raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details="ZIP64 entries are not supported")
    if entry.local_offset + _LOCAL.size > len(buffer):
        raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details="local header is out of range")
    header = _LOCAL.unpack_from(buffer, entry.local_offset)
    if header[0] != LOCAL_SIGNATURE:
        raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details="bad local header signature")
    name_length, extra_length = header[9], header[10]
    start = entry.local_offset + _LOCAL.size + name_length + extra_length
    end = start + entry.compressed_size
    if end > len(buffer):
        raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details="entry data is truncated")
    return buffer[start:end]


def _decompress(entry: DirectoryEntry, payload: bytes) -> bytes:
    if entry.flags & _FLAG_ENCRYPTED:
        raise UnsupportedCodec(f'ZIP entry "{entry.name}" is encrypted.', details={"entry": entry.name})
    if entry.method == METHOD_STORED:
        data = payload
    elif entry.method == METHOD_DEFLATED:
        try:
            inflater = zlib.decompressobj(-zlib.MAX_WBITS)
            data = inflater.decompress(payload) + inflater.flush()
        except zlib.error as exc:
            raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details=str(exc)) from exc
    else:
        raise UnsupportedCodec(
            f'ZIP entry "{entry.name}" uses unsupported compression method {entry.method}.',
            details={"entry": entry.name, "method": entry.method},
        )
    if zlib.crc32(data) != entry.crc32:
        raise CorruptArchive(f'Failed to read ZIP entry "{entry.name}".', details="CRC-32 mismatch")
    return data


def _store(images: dict[str, bytes], name: str, data: bytes, source: str, on_duplicate: str) -> None:
    if name in images:
        if on_duplicate == "fail":
            raise DuplicateArchiveEntry(
                f'Images ZIP contains more than one file named "{name}".',
                details={"entry": source},
            )
        LOGGER.warning("duplicate image name %s in archive, keeping %s", name, source)
    images[name] = data


def _finish(images: dict[str, bytes]) -> dict[str, bytes]:
    if not images:
        raise EmptyArchive("Images ZIP did not contain any .png/.jpg/.jpeg files.")
    return images


def parse_images_zip(buffer: bytes, on_duplicate: str = "overwrite") -> dict[str, bytes]:
    """Parse an in-memory ZIP into ``{normalized name: image bytes}``.

    Only stored and raw-deflate entries are accepted. Directory markers and
    non-image files are skipped before their data is touched.
    """
    images: dict[str, bytes] = {}
    for entry in iter_directory(buffer):
        if entry.name.endswith(("/", "\\")):
            continue
        normalized = normalize_image_name(entry.name)
        if not normalized or not is_image_name(normalized):
            continue
        data = _decompress(entry, _read_payload(buffer, entry))
        _store(images, normalized, data, entry.name, on_duplicate)
    LOGGER.debug("parsed images zip: %d image(s)", len(images))
    return _finish(images)


def parse_images_zip_stdlib(buffer: bytes, on_duplicate: str = "overwrite") -> dict[str, bytes]:
    """Same contract as :func:`parse_images_zip`, delegated to ``zipfile``."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(buffer))
    except zipfile.BadZipFile as exc:
        raise CorruptArchive("Failed to read ZIP file.", details=str(exc)) from exc

    images: dict[str, bytes] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            normalized = normalize_image_name(info.filename)
            if not normalized or not is_image_name(normalized):
                continue
            if info.compress_type not in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
                raise UnsupportedCodec(
                    f'ZIP entry "{info.filename}" uses unsupported compression method {info.compress_type}.',
                    details={"entry": info.filename, "method": info.compress_type},
                )
            try:
                data = archive.read(info)
            except (zipfile.BadZipFile, zlib.error) as exc:
                raise CorruptArchive(f'Failed to read ZIP entry "{info.filename}".', details=str(exc)) from exc
            except RuntimeError as exc:
                raise UnsupportedCodec(str(exc), details={"entry": info.filename}) from exc
            _store(images, normalized, data, info.filename, on_duplicate)
    return _finish(images)


ARCHIVE_READERS: dict[str, Callable[..., dict[str, bytes]]] = {
    "builtin": parse_images_zip,
    "zipfile": parse_images_zip_stdlib,
}


def get_archive_reader(codec: str) -> Callable[..., dict[str, bytes]]:
    try:
        return ARCHIVE_READERS[codec.lower()]
    except KeyError as exc:
        raise ValueError(f"unknown archive codec: {codec!r}") from exc
