from __future__ import annotations

import logging

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from labelforge import pipeline
from labelforge.config import PipelineSettings, load_settings
from labelforge.errors import LabelForgeError, error_payload
from labelforge.naming import sanitize_filename
from labelforge.request import RenderJob, build_job

LOGGER = logging.getLogger(__name__)

_NO_STORE = {"Cache-Control": "no-store"}


async def _read(upload: UploadFile | None) -> bytes | None:
    if upload is None:
        return None
    return await upload.read()


def create_app(settings: PipelineSettings | None = None) -> FastAPI:
    app = FastAPI(title="LabelForge API", version="0.1.0")
    app.state.settings = settings or load_settings()

    @app.exception_handler(LabelForgeError)
    async def _labelforge_error(_: Request, exc: LabelForgeError) -> JSONResponse:
        LOGGER.info("request rejected (%s): %s", exc.category, exc.message)
        return JSONResponse(error_payload(exc), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("unexpected failure: %s", exc)
        return JSONResponse({"error": "Server error"}, status_code=500)

    async def _job(
        template: UploadFile | None,
        images_zip: UploadFile | None,
        csv: UploadFile | None,
        zones: str | None,
        mapping: str | None,
        source_mode: str | None,
        zip_assign_mode: str | None,
        image_column: str | None,
    ) -> RenderJob:
        return build_job(
            csv=await _read(csv),
            zones=zones,
            mapping=mapping,
            settings=app.state.settings,
            template=await _read(template),
            images_zip=await _read(images_zip),
            source_mode=source_mode,
            assign_mode=zip_assign_mode,
            image_column=image_column,
        )

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/preview")
    async def preview_endpoint(
        template: UploadFile | None = File(None),
        imagesZip: UploadFile | None = File(None),
        csv: UploadFile | None = File(None),
        zones: str | None = Form(None),
        mapping: str | None = Form(None),
        sourceMode: str | None = Form(None),
        zipAssignMode: str | None = Form(None),
        imageColumn: str | None = Form(None),
    ) -> Response:
        job = await _job(template, imagesZip, csv, zones, mapping, sourceMode, zipAssignMode, imageColumn)
        output = await run_in_threadpool(
            pipeline.preview,
            job.table.rows,
            job.zones,
            job.mapping,
            job.source,
            app.state.settings,
            columns=job.table.columns,
        )
        return Response(content=output, media_type="image/png", headers=_NO_STORE)

    @app.post("/api/generate")
    async def generate_endpoint(
        template: UploadFile | None = File(None),
        imagesZip: UploadFile | None = File(None),
        csv: UploadFile | None = File(None),
        zones: str | None = Form(None),
        mapping: str | None = Form(None),
        sourceMode: str | None = Form(None),
        zipAssignMode: str | None = Form(None),
        imageColumn: str | None = Form(None),
    ) -> Response:
        job = await _job(template, imagesZip, csv, zones, mapping, sourceMode, zipAssignMode, imageColumn)
        settings: PipelineSettings = app.state.settings
        result = await run_in_threadpool(
            pipeline.run,
            job.table.rows,
            job.zones,
            job.mapping,
            job.source,
            settings,
            columns=job.table.columns,
        )
        headers = {
            **_NO_STORE,
            "Content-Disposition": f'attachment; filename="{sanitize_filename(settings.output_name, "labelforge.zip")}"',
        }
        return Response(content=result.archive, media_type="application/zip", headers=headers)

    return app
