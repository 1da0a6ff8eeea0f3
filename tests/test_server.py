import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient

from labelforge import pipeline
from labelforge.archive.writer import build_zip
from labelforge.config import PipelineSettings
from labelforge.server import create_app

ZONES = json.dumps([{"id": "title", "x": 4, "y": 4, "w": 80, "h": 30, "fontSize": 12}])
MAPPING = json.dumps({"title": "name"})
CSV = b"name,image_file\nAcme,one.png\nBeta,two.png\n"


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(PipelineSettings(jobs=2)))


def _form(**extra: str) -> dict[str, str]:
    return {"zones": ZONES, "mapping": MAPPING, **extra}


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_preview_returns_png(client: TestClient, make_png) -> None:
    response = client.post(
        "/api/preview",
        data=_form(),
        files={"template": ("t.png", make_png(100, 40), "image/png"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == "no-store"
    assert response.content.startswith(b"\x89PNG")


def test_generate_from_images_zip(client: TestClient, make_png) -> None:
    archive = build_zip({"one.png": make_png(100, 40), "two.png": make_png(100, 40)})

    response = client.post(
        "/api/generate",
        data=_form(sourceMode="zip", zipAssignMode="filename", imageColumn="image_file"),
        files={"imagesZip": ("bg.zip", archive, "application/zip"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="labelforge.zip"' in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as bundle:
        assert bundle.namelist() == ["images/0001.png", "images/0002.png", "output.csv"]
        assert bundle.read("output.csv") == b"name,image_file\r\nAcme,one.png\r\nBeta,two.png\r\n"


def test_missing_fields_are_rejected(client: TestClient) -> None:
    response = client.post("/api/generate", data={"zones": ZONES})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing csv, zones, or mapping."}


def test_missing_row_image_names_the_row(client: TestClient, make_png) -> None:
    archive = build_zip({"one.png": make_png(100, 40)})

    response = client.post(
        "/api/generate",
        data=_form(sourceMode="zip"),
        files={"imagesZip": ("bg.zip", archive, "application/zip"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 400
    assert response.json()["error"] == 'Row 2: missing image "two.png" in uploaded ZIP.'


def test_row_limit_is_reported_with_details(make_png) -> None:
    client = TestClient(create_app(PipelineSettings(max_rows=1)))

    response = client.post(
        "/api/generate",
        data=_form(),
        files={"template": ("t.png", make_png(100, 40), "image/png"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "CSV exceeds MAX_ROWS (1).", "details": {"rows": 2, "limit": 1}}


def test_unexpected_failure_is_a_generic_500(monkeypatch, make_png) -> None:
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(pipeline, "run", explode)
    client = TestClient(create_app(PipelineSettings()), raise_server_exceptions=False)

    response = client.post(
        "/api/generate",
        data=_form(),
        files={"template": ("t.png", make_png(100, 40), "image/png"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Server error"}


def test_non_finite_zone_is_a_client_error(client: TestClient, make_png) -> None:
    zones = '[{"id": "title", "x": 4, "y": 4, "w": 80, "h": NaN}]'

    response = client.post(
        "/api/preview",
        data={"zones": zones, "mapping": MAPPING},
        files={"template": ("t.png", make_png(100, 40), "image/png"), "csv": ("rows.csv", CSV, "text/csv")},
    )

    assert response.status_code == 400
    assert "non-finite" in response.json()["error"]
