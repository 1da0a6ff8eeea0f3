from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from labelforge.constants import (
    ALIGN_CENTER,
    ALIGN_LEFT,
    ALIGN_RIGHT,
    ASSIGN_FILENAME,
    ASSIGN_ROW_ORDER,
    DEFAULT_IMAGE_COLUMN,
    DEFAULT_TEXT_COLOR,
    DEFAULT_ZONE_BG_COLOR,
    SOURCE_TEMPLATE,
    SOURCE_ZIP,
)

Row = dict[str, str]
Mapping = dict[str, str]


class Align(str, Enum):
    LEFT = ALIGN_LEFT
    CENTER = ALIGN_CENTER
    RIGHT = ALIGN_RIGHT

    @classmethod
    def parse(cls, value: object) -> "Align":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.LEFT

    @property
    def text_anchor(self) -> str:
        if self is Align.CENTER:
            return "middle"
        if self is Align.RIGHT:
            return "end"
        return "start"


class SourceMode(str, Enum):
    SINGLE_TEMPLATE = SOURCE_TEMPLATE
    ARCHIVE = SOURCE_ZIP


class AssignMode(str, Enum):
    BY_COLUMN = ASSIGN_FILENAME
    BY_ORDER = ASSIGN_ROW_ORDER


@dataclass(slots=True, frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(slots=True)
class Zone:
    id: str
    rect: Rect
    font_size: int
    align: Align = Align.LEFT
    color: str = DEFAULT_TEXT_COLOR
    name: str = ""
    bg_enabled: bool = False
    bg_color: str = DEFAULT_ZONE_BG_COLOR


@dataclass(slots=True)
class SourceConfig:
    """Where each row's background comes from; selected once per run."""

    mode: SourceMode
    template: bytes | None = None
    archive: bytes | None = None
    assign: AssignMode = AssignMode.BY_COLUMN
    image_column: str = DEFAULT_IMAGE_COLUMN


@dataclass(slots=True)
class Table:
    columns: list[str]
    rows: list[Row] = field(default_factory=list)


@dataclass(slots=True)
class TextGroup:
    zone_id: str
    anchor_x: float
    baseline_y: float
    line_height: int
    font_size: int
    align: Align
    color: str
    lines: list[str]
    background: Rect | None = None
    background_color: str | None = None


@dataclass(slots=True)
class Overlay:
    width: int
    height: int
    groups: list[TextGroup] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    archive: bytes
    table: bytes
    row_count: int
