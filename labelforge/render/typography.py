from __future__ import annotations

import math
import platform
from dataclasses import dataclass
from pathlib import Path

from PIL import ImageFont

from labelforge.constants import CHAR_WIDTH_RATIO, ELLIPSIS, LINE_HEIGHT_RATIO, ZONE_PADDING
from labelforge.models import Rect


def _system_font_candidates() -> list[Path]:
    system = platform.system().lower()
    if "windows" in system:
        return [
            Path(r"C:\Windows\Fonts\arial.ttf"),
            Path(r"C:\Windows\Fonts\segoeui.ttf"),
            Path(r"C:\Windows\Fonts\msyh.ttc"),
        ]
    if "darwin" in system:
        return [
            Path("/System/Library/Fonts/Supplemental/Arial.ttf"),
            Path("/Library/Fonts/Arial.ttf"),
            Path("/System/Library/Fonts/Helvetica.ttc"),
        ]
    return [
        Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
        Path("/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf"),
        Path("/usr/share/fonts/TTF/DejaVuSans.ttf"),
        Path("/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc"),
    ]


def load_font(font_path: Path | None, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    candidates: list[Path] = []
    if font_path:
        candidates.append(font_path)
    candidates.extend(_system_font_candidates())
    for candidate in candidates:
        if candidate.exists():
            try:
                return ImageFont.truetype(str(candidate), size=size)
            except OSError:
                continue
    # Pillow >= 10.1 ships a scalable default face
    return ImageFont.load_default(size=size)


@dataclass(slots=True, frozen=True)
class LineMetrics:
    char_width: float
    chars_per_line: int
    line_height: int
    max_lines: int
    usable_width: float
    usable_height: float


def line_height_for(font_size: float) -> int:
    return int(math.floor(font_size * LINE_HEIGHT_RATIO + 0.5))


def approx_text_width(text: str, font_size: float) -> float:
    return len(text) * font_size * CHAR_WIDTH_RATIO


def line_metrics(rect: Rect, font_size: float, padding: float = ZONE_PADDING) -> LineMetrics:
    usable_width = max(1.0, rect.width - padding * 2)
    usable_height = rect.height - padding * 2
    char_width = font_size * CHAR_WIDTH_RATIO
    chars_per_line = max(1, int(math.floor(usable_width / char_width)))
    line_height = max(1, line_height_for(font_size))
    max_lines = max(1, int(math.floor(usable_height / line_height)))
    return LineMetrics(
        char_width=char_width,
        chars_per_line=chars_per_line,
        line_height=line_height,
        max_lines=max_lines,
        usable_width=usable_width,
        usable_height=usable_height,
    )


def wrap_words(text: str, chars_per_line: int) -> list[str]:
    """Greedy word wrap on whitespace; oversized words are cut into chunks."""
    limit = max(1, chars_per_line)
    lines: list[str] = []
    current = ""
    for word in (text or "").split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            lines.append(current)
            current = ""
        if len(word) > limit:
            for start in range(0, len(word), limit):
                lines.append(word[start : start + limit])
        else:
            current = word
    if current:
        lines.append(current)
    if not lines:
        lines.append("")
    return lines


def clamp_lines(lines: list[str], max_lines: int) -> list[str]:
    limit = max(1, max_lines)
    if len(lines) <= limit:
        return list(lines)
    clipped = lines[:limit]
    last = clipped[-1]
    # 省略号替换末尾字符，不增加行长
    clipped[-1] = last[: len(last) - 1] + ELLIPSIS if last else ""
    return clipped


def layout_text(text: str, rect: Rect, font_size: float, padding: float = ZONE_PADDING) -> list[str]:
    """Fit ``text`` into ``rect`` and return the visible lines, top to bottom.

    Widths come from a fixed per-character estimate rather than glyph
    metrics, so the result depends only on the string length, the zone
    size and the font size. Empty input yields ``[""]``.
    """
    metrics = line_metrics(rect, font_size, padding)
    lines = wrap_words(text, metrics.chars_per_line)
    return clamp_lines(lines, metrics.max_lines)
