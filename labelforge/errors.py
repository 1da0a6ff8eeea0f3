from __future__ import annotations

from typing import Any


class LabelForgeError(Exception):
    """Base class for caller-fixable failures.

    ``details`` carries parser diagnostics and is surfaced to HTTP callers
    next to the short message.
    """

    status_code = 400
    category = "error"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InputValidationError(LabelForgeError):
    category = "input_validation"


class ParseFailure(LabelForgeError):
    category = "parse_failure"


class TableParseError(ParseFailure):
    pass


class ImageDecodeError(ParseFailure):
    pass


class CorruptArchive(ParseFailure):
    pass


class UnsupportedCodec(ParseFailure):
    pass


class EmptyArchive(ParseFailure):
    pass


class DuplicateArchiveEntry(ParseFailure):
    pass


class RowResolutionError(LabelForgeError):
    category = "row_resolution"


class RowImageMissing(RowResolutionError):
    def __init__(self, row_index: int, filename: str) -> None:
        super().__init__(f'Row {row_index + 1}: missing image "{filename}" in uploaded ZIP.')
        self.row_index = row_index
        self.filename = filename


class RowImageColumnEmpty(RowResolutionError):
    def __init__(self, row_index: int, column: str) -> None:
        super().__init__(f'Row {row_index + 1} is missing image filename in column "{column}".')
        self.row_index = row_index
        self.column = column


class InsufficientImages(RowResolutionError):
    def __init__(self, needed: int, available: int) -> None:
        super().__init__(f"Images ZIP has {available} image(s) but {needed} row(s) need one each.")
        self.needed = needed
        self.available = available


class LimitExceeded(LabelForgeError):
    category = "limit_exceeded"


class TooManyRows(LimitExceeded):
    def __init__(self, row_count: int, limit: int) -> None:
        super().__init__(f"CSV exceeds MAX_ROWS ({limit}).", details={"rows": row_count, "limit": limit})
        self.row_count = row_count
        self.limit = limit


class PayloadTooLarge(LimitExceeded):
    def __init__(self, field: str, size: int, limit: int) -> None:
        super().__init__(f"{field} exceeds {_format_bytes(limit)} limit.", details={"size": size, "limit": limit})
        self.field = field
        self.size = size
        self.limit = limit


def _format_bytes(value: int) -> str:
    mib = value / (1024 * 1024)
    if mib >= 1 and float(mib).is_integer():
        return f"{int(mib)}MB"
    if value >= 1024 * 1024:
        return f"{mib:.1f}MB"
    return f"{value} bytes"


def error_payload(exc: LabelForgeError) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": exc.message}
    if exc.details is not None:
        payload["details"] = exc.details
    return payload
