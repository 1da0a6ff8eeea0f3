# Zone overlay: build the text layer description, emit it as SVG, or rasterize it with PIL.
from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable
from xml.sax.saxutils import escape

from PIL import Image, ImageColor, ImageDraw

from labelforge.constants import DEFAULT_TEXT_COLOR, DEFAULT_ZONE_BG_COLOR, ZONE_BG_RADIUS, ZONE_PADDING
from labelforge.decoders.image_decoder import decode_image, encode_png, image_dimensions
from labelforge.models import Align, Mapping, Overlay, Row, TextGroup, Zone
from labelforge.render.typography import layout_text, line_height_for, load_font

_CSS_RGBA = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([0-9]*\.?[0-9]+)\s*)?\)$",
    re.IGNORECASE,
)
_SVG_FONT_FAMILY = "Arial, sans-serif"
_PIL_ANCHORS = {Align.LEFT: "ls", Align.CENTER: "ms", Align.RIGHT: "rs"}
_SVG_ESCAPES = {'"': "&quot;", "'": "&apos;"}


def zone_text(zone: Zone, mapping: Mapping, row: Row) -> str:
    column = mapping.get(zone.id)
    if not column:
        return ""
    value = row.get(column)
    if value is None:
        return ""
    return str(value).strip()


def anchor_x(zone: Zone, padding: float) -> float:
    rect = zone.rect
    if zone.align is Align.RIGHT:
        return rect.x + rect.width - padding
    if zone.align is Align.CENTER:
        return rect.x + rect.width / 2
    return rect.x + padding


def build_text_group(zone: Zone, text: str, padding: float = ZONE_PADDING) -> TextGroup:
    lines = layout_text(text, zone.rect, zone.font_size, padding)
    return TextGroup(
        zone_id=zone.id,
        anchor_x=anchor_x(zone, padding),
        baseline_y=zone.rect.y + padding + zone.font_size,
        line_height=line_height_for(zone.font_size),
        font_size=zone.font_size,
        align=zone.align,
        color=zone.color or DEFAULT_TEXT_COLOR,
        lines=lines,
        background=zone.rect if zone.bg_enabled else None,
        background_color=(zone.bg_color or DEFAULT_ZONE_BG_COLOR) if zone.bg_enabled else None,
    )


def build_overlay(
    width: int,
    height: int,
    zones: Iterable[Zone],
    mapping: Mapping,
    row: Row,
    padding: float = ZONE_PADDING,
) -> Overlay:
    """One text group per zone, in zone order. Unmapped zones render empty text."""
    groups = [build_text_group(zone, zone_text(zone, mapping, row), padding) for zone in zones]
    return Overlay(width=width, height=height, groups=groups)


def _num(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.4f}".rstrip("0").rstrip(".")


def overlay_to_svg(overlay: Overlay) -> str:
    blocks: list[str] = []
    for group in overlay.groups:
        if group.background is not None:
            rect = group.background
            blocks.append(
                f'<rect x="{_num(rect.x)}" y="{_num(rect.y)}" width="{_num(rect.width)}" '
                f'height="{_num(rect.height)}" rx="{ZONE_BG_RADIUS}" ry="{ZONE_BG_RADIUS}" '
                f'fill="{escape(group.background_color or DEFAULT_ZONE_BG_COLOR, _SVG_ESCAPES)}"/>'
            )
        x = _num(group.anchor_x)
        tspans = "".join(
            f'<tspan x="{x}" dy="{0 if index == 0 else group.line_height}">{escape(line, _SVG_ESCAPES)}</tspan>'
            for index, line in enumerate(group.lines)
        )
        blocks.append(
            f'<text x="{x}" y="{_num(group.baseline_y)}" font-size="{group.font_size}" '
            f'fill="{escape(group.color, _SVG_ESCAPES)}" text-anchor="{group.align.text_anchor}" '
            f'font-family="{_SVG_FONT_FAMILY}">{tspans}</text>'
        )
    body = "\n".join(blocks)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{overlay.width}" height="{overlay.height}">{body}</svg>'
    )


def _css_rgba(text: str) -> tuple[int, int, int, int] | None:
    match = _CSS_RGBA.match(text)
    if not match:
        return None
    red, green, blue = (min(255, int(part)) for part in match.groups()[:3])
    alpha_text = match.group(4)
    alpha = 255 if alpha_text is None else int(round(max(0.0, min(1.0, float(alpha_text))) * 255))
    return red, green, blue, alpha


def _pil_color(text: str) -> tuple[int, int, int, int] | None:
    try:
        return ImageColor.getcolor(text, "RGBA")  # type: ignore[return-value]
    except ValueError:
        return None


def parse_color(value: str | None, fallback: str = DEFAULT_TEXT_COLOR) -> tuple[int, int, int, int]:
    """Parse hex, named and CSS ``rgb()``/``rgba()`` colors (fractional alpha allowed).

    An unparseable ``value`` yields ``fallback``, which goes through the same
    parsers; black when that fails too.
    """
    for text in ((value or "").strip(), fallback.strip()):
        color = _css_rgba(text) or _pil_color(text)
        if color is not None:
            return color
    return 0, 0, 0, 255


def rasterize_overlay(overlay: Overlay, font_path: Path | None = None) -> Image.Image:
    layer = Image.new("RGBA", (overlay.width, overlay.height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    fonts: dict[int, object] = {}
    for group in overlay.groups:
        if group.background is not None:
            rect = group.background
            draw.rounded_rectangle(
                [rect.x, rect.y, rect.x + rect.width, rect.y + rect.height],
                radius=ZONE_BG_RADIUS,
                fill=parse_color(group.background_color, DEFAULT_ZONE_BG_COLOR),
            )
        font = fonts.get(group.font_size)
        if font is None:
            font = fonts[group.font_size] = load_font(font_path, group.font_size)
        fill = parse_color(group.color)
        anchor = _PIL_ANCHORS[group.align]
        y = group.baseline_y
        for line in group.lines:
            if line:
                draw.text((group.anchor_x, y), line, font=font, fill=fill, anchor=anchor)  # type: ignore[arg-type]
            y += group.line_height
    return layer


def composite(background: bytes, overlay: Overlay, font_path: Path | None = None) -> bytes:
    """Composite ``overlay`` at the origin of ``background`` and return PNG bytes.

    The overlay must be sized to the background's natural resolution; no
    scaling happens here.
    """
    base = decode_image(background)
    if base.size != (overlay.width, overlay.height):
        raise ValueError(
            f"overlay size {overlay.width}x{overlay.height} does not match background {base.width}x{base.height}"
        )
    canvas = base.convert("RGBA")
    canvas.alpha_composite(rasterize_overlay(overlay, font_path))
    if base.mode != "RGBA":
        canvas = canvas.convert(base.mode)
    return encode_png(canvas)


def render_row(
    background: bytes,
    zones: list[Zone],
    mapping: Mapping,
    row: Row,
    *,
    padding: float = ZONE_PADDING,
    font_path: Path | None = None,
) -> bytes:
    width, height = image_dimensions(background)
    overlay = build_overlay(width, height, zones, mapping, row, padding)
    return composite(background, overlay, font_path)
