import io
import os
import tempfile
from pathlib import Path

# Settings are read at import time; point the store at throwaway directories first
_DATA_DIR = Path(tempfile.mkdtemp(prefix="toolbox-tests-"))
os.environ.setdefault("INTAKE_DIR", str(_DATA_DIR / "uploads"))
os.environ.setdefault("OUTPUT_DIR", str(_DATA_DIR / "outputs"))
os.environ.setdefault("LOG_FORMAT_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image
from pypdf import PdfWriter
from typing import AsyncGenerator, List

from toolbox.main import app
from toolbox.core.reclamation import ReclamationScheduler
from toolbox.core.resolver import ReferenceResolver
from toolbox.core.storage import LocalArtifactStore
from toolbox.engines.transforms.registry import build_default_registry
from toolbox.pipeline.coordinator import PipelineCoordinator


# =============================================================================
# Sample files
# =============================================================================

def make_pdf(widths: List[int], height: int = 300) -> bytes:
    """One blank page per width, so page order can be checked on the output."""
    writer = PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=height)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_image(size=(40, 30), color=(200, 10, 10), mode="RGB", fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def files_in(directory: Path) -> List[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file()) if directory.exists() else []


# =============================================================================
# Pipeline fixtures
# =============================================================================

@pytest.fixture
def store(tmp_path) -> LocalArtifactStore:
    store = LocalArtifactStore(tmp_path / "intake", tmp_path / "output")
    store.ensure_directories()
    return store


@pytest.fixture
async def scheduler(store) -> AsyncGenerator[ReclamationScheduler, None]:
    scheduler = ReclamationScheduler(store, retention_seconds=3600)
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def coordinator(store, scheduler) -> PipelineCoordinator:
    return PipelineCoordinator(
        registry=build_default_registry(),
        store=store,
        scheduler=scheduler,
        resolver=ReferenceResolver(),
        transform_timeout=30,
        early_cleanup=True,
        max_upload_bytes=5 * 1024 * 1024,
    )


# =============================================================================
# API client
# =============================================================================

@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest.fixture(name="make_pdf")
def make_pdf_fixture():
    return make_pdf


@pytest.fixture(name="make_image")
def make_image_fixture():
    return make_image


@pytest.fixture(name="files_in")
def files_in_fixture():
    return files_in
