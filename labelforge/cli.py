from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import NoReturn

import typer

from labelforge import pipeline
from labelforge.archive.reader import get_archive_reader
from labelforge.config import PipelineSettings, load_config, write_default_config
from labelforge.errors import LabelForgeError
from labelforge.request import RenderJob, build_job

app = typer.Typer(add_completion=False, no_args_is_help=True, help="LabelForge batch label renderer.")
LOGGER = logging.getLogger("labelforge")


def _setup_logging(level: str | None, config: Path | None = None) -> str:
    level = level or str(load_config(config).get("log_level") or "info")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    return level


def _read_optional(path: Path | None) -> bytes | None:
    return path.read_bytes() if path is not None else None


def _settings(config: Path | None, max_rows: int | None, jobs: int | None) -> PipelineSettings:
    cfg = load_config(config)
    if max_rows is not None:
        cfg["max_rows"] = max_rows
    if jobs is not None:
        cfg["jobs"] = jobs
    return PipelineSettings.from_config(cfg)


def _fail(message: str) -> NoReturn:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(1)


def _load_job(
    settings: PipelineSettings,
    csv_path: Path,
    zones_path: Path,
    mapping_path: Path,
    template: Path | None,
    images_zip: Path | None,
    assign: str,
    image_column: str | None,
) -> RenderJob:
    if template is None and images_zip is None:
        _fail("Either --template or --images-zip is required.")
    return build_job(
        csv=csv_path.read_bytes(),
        zones=zones_path.read_text(encoding="utf-8"),
        mapping=mapping_path.read_text(encoding="utf-8"),
        settings=settings,
        template=_read_optional(template),
        images_zip=_read_optional(images_zip),
        source_mode="zip" if images_zip is not None else "template",
        assign_mode="rowOrder" if assign.lower() in {"order", "roworder"} else "filename",
        image_column=image_column,
    )


@app.command()
def generate(
    csv_path: Path = typer.Option(..., "--csv", exists=True, dir_okay=False, help="CSV with a header row."),
    zones_path: Path = typer.Option(..., "--zones", exists=True, dir_okay=False, help="JSON list of zones."),
    mapping_path: Path = typer.Option(..., "--mapping", exists=True, dir_okay=False, help="JSON zone id -> column."),
    template: Path | None = typer.Option(None, "--template", exists=True, dir_okay=False, help="Single background PNG."),
    images_zip: Path | None = typer.Option(None, "--images-zip", exists=True, dir_okay=False, help="ZIP of backgrounds."),
    assign: str = typer.Option("column", "--assign", help="column|order (Images ZIP mode only)."),
    image_column: str | None = typer.Option(None, "--image-column", help="Column holding each row's image filename."),
    out: Path = typer.Option(Path("labelforge.zip"), "--out", help="Output ZIP path."),
    max_rows: int | None = typer.Option(None, "--max-rows", min=1),
    jobs: int | None = typer.Option(None, "--jobs", min=1, help="Parallel render workers."),
    config: Path | None = typer.Option(None, "--config", help="Alternate config.yaml."),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Render every CSV row onto its background and write one ZIP."""
    _setup_logging(log_level, config)
    settings = _settings(config, max_rows, jobs)
    t0 = time.perf_counter()
    try:
        job = _load_job(settings, csv_path, zones_path, mapping_path, template, images_zip, assign, image_column)
        result = pipeline.run(
            job.table.rows,
            job.zones,
            job.mapping,
            job.source,
            settings,
            columns=job.table.columns,
        )
    except LabelForgeError as exc:
        _fail(f"Generate failed: {exc.message}")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(result.archive)
    LOGGER.info("archive written: %s", out)
    typer.echo(f"Done. rows={result.row_count} -> {out} ({time.perf_counter() - t0:.2f}s)")


@app.command()
def preview(
    csv_path: Path = typer.Option(..., "--csv", exists=True, dir_okay=False),
    zones_path: Path = typer.Option(..., "--zones", exists=True, dir_okay=False),
    mapping_path: Path = typer.Option(..., "--mapping", exists=True, dir_okay=False),
    template: Path | None = typer.Option(None, "--template", exists=True, dir_okay=False),
    images_zip: Path | None = typer.Option(None, "--images-zip", exists=True, dir_okay=False),
    assign: str = typer.Option("column", "--assign", help="column|order"),
    image_column: str | None = typer.Option(None, "--image-column"),
    row: int = typer.Option(1, "--row", min=1, help="1-based row to render."),
    out: Path = typer.Option(Path("preview.png"), "--out"),
    config: Path | None = typer.Option(None, "--config"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Render a single row to a PNG."""
    _setup_logging(log_level, config)
    settings = _settings(config, None, None)
    try:
        job = _load_job(settings, csv_path, zones_path, mapping_path, template, images_zip, assign, image_column)
        output = pipeline.preview(
            job.table.rows,
            job.zones,
            job.mapping,
            job.source,
            settings,
            row_index=row - 1,
            columns=job.table.columns,
        )
    except LabelForgeError as exc:
        _fail(f"Preview failed: {exc.message}")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(output)
    typer.echo(f"Preview written: {out}")


@app.command("inspect-archive")
def inspect_archive(
    file: Path = typer.Argument(..., exists=True, resolve_path=True, dir_okay=False),
    codec: str = typer.Option("builtin", "--codec", help="builtin|zipfile"),
) -> None:
    """List the images a ZIP would provide, by normalized name."""
    try:
        images = get_archive_reader(codec)(file.read_bytes())
    except ValueError as exc:
        _fail(str(exc))
    except LabelForgeError as exc:
        _fail(f"Archive unreadable: {exc.message}")
    payload = {"file": str(file), "images": {name: len(data) for name, data in sorted(images.items())}}
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@app.command("init-config")
def init_config(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    path = write_default_config(force=force)
    typer.echo(f"Config initialized: {path}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Run the HTTP API (POST /api/preview, POST /api/generate)."""
    level = _setup_logging(log_level)
    import uvicorn

    uvicorn.run("labelforge.server:create_app", factory=True, host=host, port=port, log_level=level.lower())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
