import io
import zipfile

import pytest
from PIL import Image

from labelforge import pipeline
from labelforge.archive.writer import build_zip
from labelforge.config import PipelineSettings
from labelforge.errors import (
    InputValidationError,
    InsufficientImages,
    PayloadTooLarge,
    RowImageMissing,
    TooManyRows,
)
from labelforge.models import AssignMode, Rect, SourceConfig, SourceMode, Table, Zone
from labelforge.render.overlay import render_row
from labelforge.table import serialize_table

ZONES = [
    Zone(id="name", rect=Rect(2, 2, 60, 20), font_size=8),
    Zone(id="unit", rect=Rect(2, 22, 60, 20), font_size=8),
]
MAPPING = {"name": "name", "unit": "unit"}


def _rows(count: int) -> list[dict[str, str]]:
    return [{"name": f"Row {index + 1}", "unit": f"U{index}", "image_file": f"bg{index}.png"} for index in range(count)]


def _backgrounds(make_png, count: int) -> dict[str, bytes]:
    # distinct widths let the output order be checked from image sizes
    return {f"Backgrounds/BG{index}.PNG": make_png(70 + index, 50) for index in range(count)}


def _sizes(archive: bytes) -> list[tuple[int, int]]:
    sizes = []
    with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
        for name in bundle.namelist():
            if name.endswith(".png"):
                with Image.open(io.BytesIO(bundle.read(name))) as image:
                    sizes.append(image.size)
    return sizes


def test_run_writes_numbered_images_then_table(make_png) -> None:
    rows = _rows(5)
    source = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=make_png(80, 50))

    result = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(jobs=1))

    with zipfile.ZipFile(io.BytesIO(result.archive)) as bundle:
        names = bundle.namelist()
        first = bundle.read("images/0001.png")
        table = bundle.read("output.csv")
    assert names == [f"images/{index:04d}.png" for index in range(1, 6)] + ["output.csv"]
    assert result.row_count == 5
    assert first == render_row(source.template, ZONES, MAPPING, rows[0])
    expected_table = serialize_table(Table(columns=["name", "unit", "image_file"], rows=rows))
    assert table == result.table == expected_table


def test_parallel_run_matches_sequential_order(make_png) -> None:
    rows = _rows(5)
    source = SourceConfig(
        mode=SourceMode.ARCHIVE,
        archive=build_zip(_backgrounds(make_png, 5)),
        assign=AssignMode.BY_COLUMN,
    )

    sequential = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(jobs=1))
    parallel = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(jobs=4))

    assert parallel.archive == sequential.archive
    assert _sizes(parallel.archive) == [(70 + index, 50) for index in range(5)]


def test_by_order_batch_assigns_sorted_backgrounds(make_png) -> None:
    rows = _rows(3)
    images = {"c.png": make_png(73, 40), "a.png": make_png(71, 40), "b.png": make_png(72, 40)}
    source = SourceConfig(mode=SourceMode.ARCHIVE, archive=build_zip(images), assign=AssignMode.BY_ORDER)

    result = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(jobs=2))

    assert _sizes(result.archive) == [(71, 40), (72, 40), (73, 40)]


def test_too_many_rows_fails_before_any_render(make_png, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(pipeline, "render_row", lambda *args, **kwargs: calls.append(args) or b"")
    source = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=make_png(10, 10))

    with pytest.raises(TooManyRows) as exc_info:
        pipeline.run(_rows(51), ZONES, MAPPING, source, PipelineSettings(max_rows=50))

    assert exc_info.value.limit == 50
    assert "50" in str(exc_info.value)
    assert calls == []


def test_missing_row_image_aborts_whole_batch(make_png, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(pipeline, "render_row", lambda *args, **kwargs: calls.append(args) or b"")
    rows = _rows(3)
    rows[2]["image_file"] = "absent.png"
    source = SourceConfig(mode=SourceMode.ARCHIVE, archive=build_zip(_backgrounds(make_png, 3)))

    with pytest.raises(RowImageMissing) as exc_info:
        pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings())

    assert exc_info.value.row_index == 2
    assert calls == []


def test_by_order_with_too_few_images_fails(make_png) -> None:
    source = SourceConfig(
        mode=SourceMode.ARCHIVE,
        archive=build_zip(_backgrounds(make_png, 2)),
        assign=AssignMode.BY_ORDER,
    )

    with pytest.raises(InsufficientImages):
        pipeline.run(_rows(3), ZONES, MAPPING, source, PipelineSettings())


def test_oversized_template_is_rejected(make_png) -> None:
    source = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=make_png(50, 50))

    with pytest.raises(PayloadTooLarge) as exc_info:
        pipeline.run(_rows(1), ZONES, MAPPING, source, PipelineSettings(max_template_bytes=10))

    assert exc_info.value.field == "Template"


def test_check_payload_sizes_covers_archive_and_table() -> None:
    settings = PipelineSettings(max_archive_bytes=4, max_table_bytes=4)

    with pytest.raises(PayloadTooLarge):
        pipeline.check_payload_sizes(SourceConfig(mode=SourceMode.ARCHIVE, archive=b"12345"), settings)
    with pytest.raises(PayloadTooLarge):
        pipeline.check_payload_sizes(SourceConfig(mode=SourceMode.SINGLE_TEMPLATE), settings, table_size=5)
    pipeline.check_payload_sizes(SourceConfig(mode=SourceMode.ARCHIVE, archive=b"1234"), settings, table_size=4)


def test_validate_job_rejects_empty_inputs_and_missing_image_column() -> None:
    settings = PipelineSettings()
    template = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=b"x")
    by_column = SourceConfig(mode=SourceMode.ARCHIVE, archive=b"x", image_column="image_file")

    with pytest.raises(InputValidationError, match="zone"):
        pipeline.validate_job(_rows(1), [], template, settings)
    with pytest.raises(InputValidationError, match="no rows"):
        pipeline.validate_job([], ZONES, template, settings)
    with pytest.raises(InputValidationError, match="image_file"):
        pipeline.validate_job(_rows(1), ZONES, by_column, settings, columns=["name", "unit"])


def test_preview_renders_selected_row_only(make_png) -> None:
    rows = _rows(3)
    template = make_png(80, 50)
    source = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=template)

    output = pipeline.preview(rows, ZONES, MAPPING, source, PipelineSettings(), row_index=1)

    assert output.startswith(b"\x89PNG")
    assert output == render_row(template, ZONES, MAPPING, rows[1])


def test_preview_by_order_uses_first_sorted_image(make_png) -> None:
    images = {"z.png": make_png(90, 30), "m.png": make_png(60, 30)}
    source = SourceConfig(mode=SourceMode.ARCHIVE, archive=build_zip(images), assign=AssignMode.BY_ORDER)

    output = pipeline.preview(_rows(1), ZONES, MAPPING, source, PipelineSettings())

    with Image.open(io.BytesIO(output)) as image:
        assert image.size == (60, 30)


def test_preview_rejects_out_of_range_row(make_png) -> None:
    source = SourceConfig(mode=SourceMode.SINGLE_TEMPLATE, template=make_png(10, 10))

    with pytest.raises(InputValidationError):
        pipeline.preview(_rows(2), ZONES, MAPPING, source, PipelineSettings(), row_index=2)


def test_zipfile_codec_gives_same_batch(make_png) -> None:
    rows = _rows(2)
    source = SourceConfig(mode=SourceMode.ARCHIVE, archive=build_zip(_backgrounds(make_png, 2)))

    builtin = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(archive_codec="builtin"))
    stdlib = pipeline.run(rows, ZONES, MAPPING, source, PipelineSettings(archive_codec="zipfile"))

    assert builtin.archive == stdlib.archive
