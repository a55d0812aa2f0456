import io

import pytest

from toolbox.core.exceptions import NotFound, ValidationFailure
from toolbox.core.storage import LocalArtifactStore, sanitize_filename
from toolbox.modules.artifacts.models import Namespace


@pytest.mark.parametrize("raw,expected", [
    ("photo.png", "photo.png"),
    ("../../etc/passwd", "passwd"),
    ("C:\\Users\\me\\clip.mp4", "clip.mp4"),
    ("my file (1).pdf", "my_file_1.pdf"),
    (".hidden", "hidden"),
    ("", "file"),
    ("???", "file"),
])
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_caps_length_and_keeps_extension():
    name = sanitize_filename("a" * 300 + ".jpeg")
    assert len(name) == 120
    assert name.endswith(".jpeg")


def test_allocate_gives_distinct_names_for_same_upload(store):
    first = store.allocate("report.pdf", Namespace.INTAKE)
    second = store.allocate("report.pdf", Namespace.INTAKE)

    assert first.name != second.name
    assert first.name.endswith("-report.pdf")
    assert first.path.parent == store.directories[Namespace.INTAKE]
    assert not first.path.exists()


@pytest.mark.asyncio
async def test_materialize_bytes_and_stream(store):
    from_bytes = await store.materialize(b"hello", "a.txt", Namespace.INTAKE)
    from_stream = await store.materialize(io.BytesIO(b"x" * 3000), "b.txt", Namespace.OUTPUT)

    assert from_bytes.path.read_bytes() == b"hello"
    assert from_bytes.size_bytes == 5
    assert from_stream.size_bytes == 3000
    assert from_stream.path.parent == store.directories[Namespace.OUTPUT]


@pytest.mark.asyncio
async def test_materialize_over_limit_leaves_nothing_behind(store, files_in):
    with pytest.raises(ValidationFailure):
        await store.materialize(io.BytesIO(b"x" * 2048), "big.bin", Namespace.INTAKE, max_bytes=1024)

    assert files_in(store.directories[Namespace.INTAKE]) == []


@pytest.mark.asyncio
async def test_remove_is_idempotent(store):
    artifact = await store.materialize(b"data", "a.bin", Namespace.INTAKE)

    assert store.remove(artifact) is True
    assert store.remove(artifact) is False
    assert not store.exists(artifact)


@pytest.mark.asyncio
async def test_open_after_remove_is_not_found(store):
    artifact = await store.materialize(b"data", "a.bin", Namespace.OUTPUT)
    with store.open(artifact) as f:
        assert f.read() == b"data"

    store.remove(artifact)
    with pytest.raises(NotFound):
        store.open(artifact)


def test_public_path_only_for_outputs(tmp_path):
    store = LocalArtifactStore(tmp_path / "in", tmp_path / "out", public_output_path="outputs/")
    output = store.allocate("x.png", Namespace.OUTPUT)

    assert store.public_path(output) == f"/outputs/{output.name}"
    with pytest.raises(ValueError):
        store.public_path(store.allocate("x.png", Namespace.INTAKE))


def test_refresh_missing_output(store):
    artifact = store.allocate("never-written.pdf", Namespace.OUTPUT)
    with pytest.raises(NotFound):
        store.refresh(artifact)


def test_redact_strips_store_directories(store):
    intake = store.directories[Namespace.INTAKE]
    output = store.directories[Namespace.OUTPUT]
    text = f"cannot identify image file '{intake / 'a.png'}' near {output}"

    assert store.redact(text) == "cannot identify image file 'a.png' near output"
