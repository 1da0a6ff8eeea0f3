from __future__ import annotations

import io
import zipfile

# 固定时间戳，保证同样的输入得到逐字节相同的 ZIP
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class ArchiveWriter:
    """In-memory ZIP builder; entries land in the order they are appended."""

    def __init__(self, compresslevel: int = 9) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED, compresslevel=compresslevel)
        self._names: list[str] = []
        self._closed = False

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def append(self, name: str, data: bytes | str) -> None:
        if self._closed:
            raise RuntimeError("archive already finalized")
        info = zipfile.ZipInfo(name, date_time=_FIXED_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        self._zip.writestr(info, data)
        self._names.append(name)

    def finalize(self) -> bytes:
        if not self._closed:
            self._zip.close()
            self._closed = True
        return self._buffer.getvalue()


def build_zip(entries: dict[str, bytes], *, compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    """Pack ``entries`` in insertion order with a single compression method."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression) as archive:
        for name, data in entries.items():
            info = zipfile.ZipInfo(name, date_time=_FIXED_DATE_TIME)
            info.compress_type = compression
            archive.writestr(info, data)
    return buffer.getvalue()
