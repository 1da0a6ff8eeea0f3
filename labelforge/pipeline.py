from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from labelforge.archive.reader import get_archive_reader
from labelforge.archive.writer import ArchiveWriter
from labelforge.config import PipelineSettings
from labelforge.errors import InputValidationError, PayloadTooLarge, TooManyRows
from labelforge.models import AssignMode, BatchResult, Mapping, Row, SourceConfig, SourceMode, Table, Zone
from labelforge.naming import output_entry_name
from labelforge.render.overlay import render_row
from labelforge.resolver import RowResolver, build_resolver
from labelforge.table import serialize_table

LOGGER = logging.getLogger(__name__)


def check_payload_sizes(
    source: SourceConfig,
    settings: PipelineSettings,
    table_size: int | None = None,
) -> None:
    if source.template is not None and len(source.template) > settings.max_template_bytes:
        raise PayloadTooLarge("Template", len(source.template), settings.max_template_bytes)
    if source.archive is not None and len(source.archive) > settings.max_archive_bytes:
        raise PayloadTooLarge("Images ZIP", len(source.archive), settings.max_archive_bytes)
    if table_size is not None and table_size > settings.max_table_bytes:
        raise PayloadTooLarge("CSV", table_size, settings.max_table_bytes)


def check_row_limit(rows: Sequence[Row], settings: PipelineSettings) -> None:
    if len(rows) > settings.max_rows:
        raise TooManyRows(len(rows), settings.max_rows)


def validate_job(
    rows: Sequence[Row],
    zones: Sequence[Zone],
    source: SourceConfig,
    settings: PipelineSettings,
    columns: Sequence[str] | None = None,
) -> None:
    if not zones:
        raise InputValidationError("At least one zone is required.")
    if not rows:
        raise InputValidationError("CSV has no rows.")
    check_row_limit(rows, settings)
    by_column = source.mode is SourceMode.ARCHIVE and source.assign is AssignMode.BY_COLUMN
    if by_column and columns is not None and source.image_column not in columns:
        raise InputValidationError(f'Image filename column "{source.image_column}" does not exist in CSV.')


def prepare_resolver(source: SourceConfig, settings: PipelineSettings) -> RowResolver:
    images = None
    if source.mode is SourceMode.ARCHIVE:
        if not source.archive:
            raise InputValidationError("Images ZIP is required in Images ZIP mode.")
        reader = get_archive_reader(settings.archive_codec)
        images = reader(source.archive, on_duplicate=settings.duplicate_names)
        LOGGER.info("images zip: %d image(s)", len(images))
    return build_resolver(source, images)


def render_rows(
    rows: Sequence[Row],
    zones: Sequence[Zone],
    mapping: Mapping,
    resolver: RowResolver,
    settings: PipelineSettings,
) -> list[bytes]:
    """Render every row; the returned list is in row order whatever ``jobs`` is."""
    zone_list = list(zones)

    def render_one(index: int) -> bytes:
        row = rows[index]
        background = resolver.resolve(index, row)
        output = render_row(
            background,
            zone_list,
            mapping,
            row,
            padding=settings.zone_padding,
            font_path=settings.font_path,
        )
        LOGGER.debug("rendered row %d (%d bytes)", index + 1, len(output))
        return output

    jobs = max(1, min(settings.jobs, len(rows)))
    if jobs == 1:
        return [render_one(index) for index in range(len(rows))]
    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="labelforge-render") as executor:
        return list(executor.map(render_one, range(len(rows))))


def run(
    rows: Sequence[Row],
    zones: Sequence[Zone],
    mapping: Mapping,
    source: SourceConfig,
    settings: PipelineSettings | None = None,
    *,
    columns: Sequence[str] | None = None,
) -> BatchResult:
    """Render all rows and pack them, with the row table, into one ZIP.

    Every limit and every row's background is checked before the first
    render; any failure aborts the whole batch.
    """
    settings = settings or PipelineSettings()
    started = time.perf_counter()
    check_payload_sizes(source, settings)
    validate_job(rows, zones, source, settings, columns)
    resolver = prepare_resolver(source, settings)
    resolver.check(list(rows))
    LOGGER.info("batch start: rows=%d zones=%d mode=%s", len(rows), len(zones), _describe_mode(source))

    images = render_rows(rows, zones, mapping, resolver, settings)

    table_columns = list(columns) if columns is not None else _columns_from_rows(rows)
    table_bytes = serialize_table(Table(columns=table_columns, rows=list(rows)))
    writer = ArchiveWriter()
    for index, data in enumerate(images):
        writer.append(output_entry_name(index), data)
    writer.append(settings.table_name, table_bytes)
    archive = writer.finalize()
    LOGGER.info(
        "batch done: rows=%d archive=%d bytes (%.2fs)",
        len(images),
        len(archive),
        time.perf_counter() - started,
    )
    return BatchResult(archive=archive, table=table_bytes, row_count=len(images))


def preview(
    rows: Sequence[Row],
    zones: Sequence[Zone],
    mapping: Mapping,
    source: SourceConfig,
    settings: PipelineSettings | None = None,
    *,
    row_index: int = 0,
    columns: Sequence[str] | None = None,
) -> bytes:
    """Render a single row and return its PNG bytes directly."""
    settings = settings or PipelineSettings()
    check_payload_sizes(source, settings)
    validate_job(rows, zones, source, settings, columns)
    if not 0 <= row_index < len(rows):
        raise InputValidationError(f"Row {row_index + 1} does not exist; CSV has {len(rows)} row(s).")
    resolver = prepare_resolver(source, settings)
    row = rows[row_index]
    background = resolver.resolve(row_index, row)
    LOGGER.info("preview row %d mode=%s", row_index + 1, _describe_mode(source))
    return render_row(
        background,
        list(zones),
        mapping,
        row,
        padding=settings.zone_padding,
        font_path=settings.font_path,
    )


def _columns_from_rows(rows: Sequence[Row]) -> list[str]:
    columns: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for name in row:
            if name not in seen:
                seen.add(name)
                columns.append(name)
    return columns


def _describe_mode(source: SourceConfig) -> str:
    if source.mode is SourceMode.SINGLE_TEMPLATE:
        return source.mode.value
    return f"{source.mode.value}/{source.assign.value}"
