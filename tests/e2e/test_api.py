import io
from urllib.parse import urlparse

import pytest
from httpx import AsyncClient, ASGITransport
from pypdf import PdfReader
from unittest.mock import AsyncMock

from toolbox.core.storage import get_store
from toolbox.main import app
from toolbox.modules.artifacts.models import Namespace


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_readiness(client):
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["checks"]["storage"] is True
    assert "ffmpeg" in data["checks"]


@pytest.mark.asyncio
async def test_list_operations(client):
    response = await client.get("/api/operations")
    assert response.status_code == 200
    operations = [op["operation"] for op in response.json()["operations"]]
    assert len(operations) == 16
    assert "pdf-merger" in operations


@pytest.mark.asyncio
async def test_unknown_operation(client):
    response = await client.post("/api/youtube-downloader", json={"url": "https://example.com"})
    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "Operation 'youtube-downloader' is not implemented."
    assert data["code"] == 404


@pytest.mark.asyncio
async def test_unknown_nested_path(client):
    response = await client.get("/api/some/deep/path")
    assert response.status_code == 404
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_empty_operation_id(client):
    response = await client.post("/api/")
    assert response.status_code == 404
    assert response.json()["error"] == "No operation given. GET /api/operations lists the available ones."


@pytest.mark.asyncio
async def test_corrupt_upload_error_hides_storage_location(client):
    response = await client.post(
        "/api/image-blur",
        files=[("files", ("cat.png", b"not an image", "image/png"))],
    )
    assert response.status_code == 500
    assert response.json()["error"] == "Unsupported or corrupt image."
    for directory in get_store().directories.values():
        assert str(directory) not in response.text


@pytest.mark.asyncio
async def test_pdf_merge_then_download(client, make_pdf):
    response = await client.post(
        "/api/pdf-merger",
        files=[
            ("files", ("first.pdf", make_pdf([100, 110]), "application/pdf")),
            ("files", ("second.pdf", make_pdf([200]), "application/pdf")),
        ],
    )
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "PDFs merged successfully!"
    assert data["fileUrl"].startswith("http://test/outputs/")

    download = await client.get(urlparse(data["fileUrl"]).path)
    assert download.status_code == 200
    assert len(PdfReader(io.BytesIO(download.content)).pages) == 3


@pytest.mark.asyncio
async def test_merge_needs_two_files(client, make_pdf):
    response = await client.post(
        "/api/pdf-merger",
        files=[("files", ("only.pdf", make_pdf([100]), "application/pdf"))],
    )
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Please upload at least 2 files to pdf-merger."
    assert data["stage"] == "rejected"
    assert data["operation"] == "pdf-merger"
    assert data["request_id"]


@pytest.mark.asyncio
async def test_forwarded_proto_in_file_url(client, make_image):
    response = await client.post(
        "/api/image-blur",
        files=[("files", ("cat.png", make_image(), "image/png"))],
        data={"radius": "3"},
        headers={"X-Forwarded-Proto": "https"},
    )
    assert response.status_code == 200
    assert response.json()["fileUrl"].startswith("https://test/outputs/")


@pytest.mark.asyncio
async def test_color_picker_returns_text(client, make_image):
    response = await client.post(
        "/api/image-color-picker",
        files=[("files", ("red.png", make_image(color=(200, 10, 10)), "image/png"))],
    )
    assert response.status_code == 200
    data = response.json()
    assert data["text"] == "#c80808"
    assert "fileUrl" not in data


@pytest.mark.asyncio
async def test_crop_missing_parameter_writes_nothing(client, make_image, files_in):
    intake = get_store().directories[Namespace.INTAKE]
    before = files_in(intake)

    response = await client.post(
        "/api/image-cropper",
        files=[("files", ("cat.png", make_image(), "image/png"))],
        data={"width": "10", "height": "10", "left": "0"},
    )

    assert response.status_code == 400
    assert response.json()["details"]["parameter"] == "top"
    assert files_in(intake) == before


@pytest.mark.asyncio
async def test_files_outside_upload_field_are_ignored(client, make_image):
    response = await client.post(
        "/api/image-grayscale",
        files=[("attachment", ("cat.png", make_image(), "image/png"))],
    )
    assert response.status_code == 400
    assert response.json()["error"] == "No file uploaded."


@pytest.mark.asyncio
async def test_invalid_json_body(client):
    response = await client.post(
        "/api/pdf-rotator",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Request body is not valid JSON."


@pytest.mark.asyncio
async def test_missing_output_file(client):
    response = await client.get("/outputs/0-deadbeef-gone.pdf")
    assert response.status_code == 404
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_unexpected_error_is_generic_500():
    async with app.router.lifespan_context(app):
        app.state.coordinator.process = AsyncMock(side_effect=RuntimeError("secret internals"))
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/api/pdf-rotator", json={})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert "secret internals" not in response.text


@pytest.mark.asyncio
async def test_metrics_endpoint(client, make_pdf):
    await client.post("/api/pdf-rotator", files=[("files", ("a.pdf", make_pdf([100]), "application/pdf"))])

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "toolbox_operations_total" in response.text
    assert 'operation="pdf-rotator"' in response.text
