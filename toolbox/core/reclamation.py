"""
Reclamation Scheduler

Deferred deletion of artifacts after a fixed retention window, driven by
the event loop timer. The schedule lives only in process memory: entries
still pending at shutdown are dropped and their files stay on disk.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from toolbox.core.config import settings
from toolbox.core.exceptions import StorageFailure
from toolbox.core.logging import get_logger
from toolbox.core.metrics import pending_reclamations_gauge, record_reclaimed
from toolbox.core.storage import IArtifactStore
from toolbox.modules.artifacts.models import Artifact

logger = get_logger(__name__)


class RetentionEntry:
    """One scheduled deletion. An artifact may have several."""

    __slots__ = ("id", "artifact", "deadline", "handle")

    def __init__(self, entry_id: int, artifact: Artifact, deadline: datetime):
        self.id = entry_id
        self.artifact = artifact
        self.deadline = deadline
        self.handle: Optional[asyncio.TimerHandle] = None


class ReclamationScheduler:
    """
    Deletes every registered artifact once, after its retention window.

    Registration must happen on the running event loop. Removal goes through
    the store's idempotent remove(), so duplicate registrations and files
    already deleted by early cleanup are both harmless.
    """

    def __init__(
        self,
        store: IArtifactStore,
        retention_seconds: Optional[float] = None
    ):
        self.store = store
        self.retention_seconds = (
            settings.RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._entries: Dict[int, RetentionEntry] = {}
        self._next_id = 0
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._entries)

    def register(
        self,
        artifact: Artifact,
        retention_seconds: Optional[float] = None
    ) -> RetentionEntry:
        """Schedule deletion of an artifact, measured from now."""
        if self._closed:
            raise RuntimeError("Reclamation scheduler is shut down")

        delay = self.retention_seconds if retention_seconds is None else retention_seconds
        loop = asyncio.get_running_loop()

        self._next_id += 1
        entry = RetentionEntry(
            self._next_id,
            artifact,
            datetime.utcnow() + timedelta(seconds=delay)
        )
        entry.handle = loop.call_later(max(delay, 0.0), self._fire, entry.id)
        self._entries[entry.id] = entry
        pending_reclamations_gauge.set(len(self._entries))

        logger.debug(
            "reclamation_scheduled",
            artifact=str(artifact),
            retention_seconds=delay
        )
        return entry

    def register_all(
        self,
        artifacts: List[Artifact],
        retention_seconds: Optional[float] = None
    ) -> List[RetentionEntry]:
        return [self.register(a, retention_seconds) for a in artifacts]

    def _fire(self, entry_id: int):
        entry = self._entries.pop(entry_id, None)
        pending_reclamations_gauge.set(len(self._entries))
        if entry is None:
            return
        reclaim(self.store, entry.artifact, trigger="scheduled")

    def shutdown(self):
        """Cancel every pending deletion. Files are left in place."""
        self._closed = True
        dropped = len(self._entries)
        for entry in self._entries.values():
            if entry.handle is not None:
                entry.handle.cancel()
        self._entries.clear()
        pending_reclamations_gauge.set(0)
        if dropped:
            logger.info("reclamation_pending_dropped", count=dropped)


def reclaim(store: IArtifactStore, artifact: Artifact, trigger: str) -> bool:
    """
    Best-effort delete. Absence is not an error; IO errors are logged
    and swallowed so one bad file never breaks the caller.
    """
    try:
        removed = store.remove(artifact)
    except StorageFailure as e:
        record_reclaimed(trigger, "error")
        logger.error(
            "artifact_reclaim_failed",
            artifact=str(artifact),
            trigger=trigger,
            error=e.message
        )
        return False

    record_reclaimed(trigger, "removed" if removed else "absent")
    logger.info(
        "artifact_reclaimed" if removed else "artifact_already_absent",
        artifact=str(artifact),
        trigger=trigger
    )
    return removed
