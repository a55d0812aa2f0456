import asyncio

import pytest
from unittest.mock import MagicMock

from toolbox.core.exceptions import StorageFailure
from toolbox.core.reclamation import ReclamationScheduler, reclaim
from toolbox.modules.artifacts.models import Namespace


@pytest.mark.asyncio
async def test_artifact_survives_until_deadline_then_is_removed(store):
    scheduler = ReclamationScheduler(store, retention_seconds=0.2)
    artifact = await store.materialize(b"payload", "a.bin", Namespace.OUTPUT)

    scheduler.register(artifact)
    await asyncio.sleep(0.05)
    assert store.exists(artifact)
    assert scheduler.pending == 1

    await asyncio.sleep(0.4)
    assert not store.exists(artifact)
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_duplicate_registration_is_harmless(store):
    scheduler = ReclamationScheduler(store, retention_seconds=0.01)
    artifact = await store.materialize(b"payload", "a.bin", Namespace.INTAKE)

    scheduler.register_all([artifact, artifact])
    await asyncio.sleep(0.1)

    assert not store.exists(artifact)
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_already_deleted_file_is_not_an_error(store):
    scheduler = ReclamationScheduler(store, retention_seconds=0.01)
    artifact = await store.materialize(b"payload", "a.bin", Namespace.INTAKE)

    scheduler.register(artifact)
    assert reclaim(store, artifact, trigger="early") is True
    await asyncio.sleep(0.1)

    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_shutdown_drops_pending_entries_and_keeps_files(store):
    scheduler = ReclamationScheduler(store, retention_seconds=0.05)
    artifact = await store.materialize(b"payload", "a.bin", Namespace.OUTPUT)
    scheduler.register(artifact)

    scheduler.shutdown()
    await asyncio.sleep(0.1)

    assert scheduler.pending == 0
    assert store.exists(artifact)
    with pytest.raises(RuntimeError):
        scheduler.register(artifact)


def test_reclaim_swallows_storage_errors(store):
    broken = MagicMock()
    broken.remove.side_effect = StorageFailure("disk gone")
    artifact = store.allocate("a.bin", Namespace.INTAKE)

    assert reclaim(broken, artifact, trigger="scheduled") is False
