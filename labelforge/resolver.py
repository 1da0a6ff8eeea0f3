from __future__ import annotations

from abc import ABC, abstractmethod

from labelforge.errors import InputValidationError, InsufficientImages, RowImageColumnEmpty, RowImageMissing
from labelforge.models import AssignMode, Row, SourceConfig, SourceMode
from labelforge.naming import normalize_image_name


class RowResolver(ABC):
    """Yields the background image bytes for one row; picked once per run."""

    @abstractmethod
    def resolve(self, index: int, row: Row) -> bytes:
        raise NotImplementedError

    def check(self, rows: list[Row]) -> None:
        """Fail before rendering when the rows cannot all be served."""


class SingleTemplateResolver(RowResolver):
    def __init__(self, template: bytes) -> None:
        self._template = template

    def resolve(self, index: int, row: Row) -> bytes:
        return self._template


class ArchiveByColumnResolver(RowResolver):
    def __init__(self, images: dict[str, bytes], column: str) -> None:
        self._images = images
        self._column = column

    def resolve(self, index: int, row: Row) -> bytes:
        filename = str(row.get(self._column) or "").strip()
        if not filename:
            raise RowImageColumnEmpty(index, self._column)
        image = self._images.get(normalize_image_name(filename))
        if image is None:
            raise RowImageMissing(index, filename)
        return image

    def check(self, rows: list[Row]) -> None:
        for index, row in enumerate(rows):
            self.resolve(index, row)


class ArchiveByOrderResolver(RowResolver):
    def __init__(self, images: dict[str, bytes]) -> None:
        self._images = images
        self._names = sorted(images)

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def resolve(self, index: int, row: Row) -> bytes:
        if index >= len(self._names):
            raise InsufficientImages(index + 1, len(self._names))
        return self._images[self._names[index]]

    def check(self, rows: list[Row]) -> None:
        if len(rows) > len(self._names):
            raise InsufficientImages(len(rows), len(self._names))


def build_resolver(source: SourceConfig, images: dict[str, bytes] | None = None) -> RowResolver:
    """``images`` is the parsed archive map, required for archive modes."""
    if source.mode is SourceMode.SINGLE_TEMPLATE:
        if not source.template:
            raise InputValidationError("Template PNG is required in Template PNG mode.")
        return SingleTemplateResolver(source.template)
    if images is None:
        raise InputValidationError("Images ZIP is required in Images ZIP mode.")
    if source.assign is AssignMode.BY_ORDER:
        return ArchiveByOrderResolver(images)
    return ArchiveByColumnResolver(images, source.image_column)
