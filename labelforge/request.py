"""Turn raw request inputs (uploaded blobs plus JSON form fields) into a render job."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from labelforge.config import PipelineSettings
from labelforge.constants import DEFAULT_ZONE_BG_COLOR, MAX_FONT_SIZE, MIN_FONT_SIZE
from labelforge.errors import InputValidationError
from labelforge.models import Align, AssignMode, Mapping, Rect, SourceConfig, SourceMode, Table, Zone
from labelforge.pipeline import check_payload_sizes
from labelforge.table import parse_table

_ARCHIVE_MODES = {"zip", "archive", "images_zip"}
_ORDER_MODES = {"roworder", "row_order", "order"}


@dataclass(slots=True)
class RenderJob:
    table: Table
    zones: list[Zone]
    mapping: Mapping
    source: SourceConfig


def parse_json_field(value: str, name: str) -> Any:
    try:
        return json.loads(value)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"Invalid {name} payload.", details=str(exc)) from exc


def _number(data: dict[str, Any], keys: tuple[str, ...], index: int) -> float:
    for key in keys:
        if key in data and data[key] is not None:
            try:
                value = float(data[key])
            except (TypeError, ValueError) as exc:
                raise InputValidationError(f"Zone {index + 1} has a non-numeric {key}.") from exc
            if not math.isfinite(value):
                raise InputValidationError(f"Zone {index + 1} has a non-finite {key}.")
            return value
    raise InputValidationError(f"Zone {index + 1} is missing {keys[0]}.")


def _font_size(value: Any, fallback: int) -> int:
    try:
        parsed = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        parsed = fallback
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, parsed))


def zone_from_dict(data: Any, index: int, settings: PipelineSettings) -> Zone:
    if not isinstance(data, dict):
        raise InputValidationError(f"Zone {index + 1} must be an object.")
    zone_id = str(data.get("id") or "").strip()
    if not zone_id:
        raise InputValidationError(f"Zone {index + 1} is missing an id.")
    rect = Rect(
        x=_number(data, ("x",), index),
        y=_number(data, ("y",), index),
        width=_number(data, ("w", "width"), index),
        height=_number(data, ("h", "height"), index),
    )
    if rect.width <= 0 or rect.height <= 0:
        raise InputValidationError(f"Zone {index + 1} must have a positive width and height.")
    return Zone(
        id=zone_id,
        rect=rect,
        font_size=_font_size(data.get("fontSize", data.get("font_size")), settings.default_font_size),
        align=Align.parse(data.get("align")),
        color=str(data.get("color") or settings.default_color),
        name=str(data.get("name") or ""),
        bg_enabled=bool(data.get("bgEnabled", data.get("bg_enabled", False))),
        bg_color=str(data.get("bgColor") or data.get("bg_color") or DEFAULT_ZONE_BG_COLOR),
    )


def parse_zones(payload: str, settings: PipelineSettings) -> list[Zone]:
    raw = parse_json_field(payload, "zones")
    if not isinstance(raw, list) or not raw:
        raise InputValidationError("At least one zone is required.")
    zones = [zone_from_dict(item, index, settings) for index, item in enumerate(raw)]
    seen: set[str] = set()
    for zone in zones:
        if zone.id in seen:
            raise InputValidationError(f'Zone id "{zone.id}" is used more than once.')
        seen.add(zone.id)
    return zones


def parse_mapping(payload: str) -> Mapping:
    raw = parse_json_field(payload, "mapping")
    if not isinstance(raw, dict):
        raise InputValidationError("Invalid mapping payload.", details="mapping must be a JSON object")
    return {str(zone_id): str(column) for zone_id, column in raw.items() if column is not None}


def parse_source_mode(value: str | None) -> SourceMode:
    text = (value or "").strip().lower()
    return SourceMode.ARCHIVE if text in _ARCHIVE_MODES else SourceMode.SINGLE_TEMPLATE


def parse_assign_mode(value: str | None) -> AssignMode:
    text = (value or "").strip().lower()
    return AssignMode.BY_ORDER if text in _ORDER_MODES else AssignMode.BY_COLUMN


def build_job(
    *,
    csv: bytes | None,
    zones: str | None,
    mapping: str | None,
    settings: PipelineSettings,
    template: bytes | None = None,
    images_zip: bytes | None = None,
    source_mode: str | None = None,
    assign_mode: str | None = None,
    image_column: str | None = None,
) -> RenderJob:
    """Validate and decode one request; sizes are checked before anything is parsed."""
    if csv is None or zones is None or mapping is None:
        raise InputValidationError("Missing csv, zones, or mapping.")

    source = SourceConfig(
        mode=parse_source_mode(source_mode),
        template=template,
        archive=images_zip,
        assign=parse_assign_mode(assign_mode),
        image_column=(image_column or "").strip() or settings.image_column,
    )
    check_payload_sizes(source, settings, table_size=len(csv))

    parsed_zones = parse_zones(zones, settings)
    parsed_mapping = parse_mapping(mapping)
    table = parse_table(csv)

    if source.mode is SourceMode.SINGLE_TEMPLATE and not source.template:
        raise InputValidationError("Template PNG is required in Template PNG mode.")
    if source.mode is SourceMode.ARCHIVE and not source.archive:
        raise InputValidationError("Images ZIP is required in Images ZIP mode.")
    return RenderJob(table=table, zones=parsed_zones, mapping=parsed_mapping, source=source)
