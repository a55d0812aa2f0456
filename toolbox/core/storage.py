"""
Artifact Store - The Bridge Pattern

Two namespaces of files on a local volume: intake (fresh uploads) and
output (processed, servable). The store owns naming, existence checks and
deletion. Deletion is idempotent because early cleanup and scheduled
reclamation can race on the same name.
"""

import os
import re
import uuid
import time
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, BinaryIO, Union

from toolbox.core.config import settings
from toolbox.core.exceptions import NotFound, StorageFailure, ValidationFailure
from toolbox.core.logging import get_logger
from toolbox.core.metrics import record_materialized
from toolbox.modules.artifacts.models import Artifact, Namespace

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_MAX_NAME_LENGTH = 120
_COPY_CHUNK_SIZE = 1024 * 1024


def sanitize_filename(filename: str) -> str:
    """Strip directories and anything outside [A-Za-z0-9._-] from a client filename."""
    base = Path(filename.replace("\\", "/")).name if filename else ""
    base = re.sub(r"\s+", "_", base.strip())
    base = _UNSAFE_CHARS.sub("", base).lstrip(".")
    if not base:
        return "file"
    if len(base) > _MAX_NAME_LENGTH:
        stem, ext = os.path.splitext(base)
        base = stem[: _MAX_NAME_LENGTH - len(ext)] + ext
    return base


class IArtifactStore(ABC):
    """Interface for artifact storage operations - The Bridge"""

    @abstractmethod
    def allocate(self, original_name: str, namespace: Namespace) -> Artifact:
        """
        Reserve a unique name in a namespace without writing anything.

        Args:
            original_name: Client-supplied or derived filename
            namespace: Target namespace

        Returns:
            Artifact whose path does not exist yet
        """
        pass

    @abstractmethod
    async def materialize(
        self,
        content: Union[bytes, BinaryIO],
        original_name: str,
        namespace: Namespace,
        max_bytes: Optional[int] = None
    ) -> Artifact:
        """
        Persist content under a collision-resistant name.

        Raises:
            StorageFailure: directory unwritable or disk full
            ValidationFailure: content larger than max_bytes
        """
        pass

    @abstractmethod
    def open(self, artifact: Artifact) -> BinaryIO:
        """Open an artifact for reading. Raises NotFound if already reclaimed."""
        pass

    @abstractmethod
    def remove(self, artifact: Artifact) -> bool:
        """
        Delete an artifact.

        Returns:
            True if a file was deleted, False if it was already absent
        """
        pass

    @abstractmethod
    def exists(self, artifact: Artifact) -> bool:
        """Check if an artifact is still on the store."""
        pass

    @abstractmethod
    def refresh(self, artifact: Artifact) -> Artifact:
        """Record the on-disk size of an artifact written by a transform."""
        pass

    @abstractmethod
    def public_path(self, artifact: Artifact) -> str:
        """Servable path of an output artifact, relative to the site root."""
        pass

    @abstractmethod
    def redact(self, text: str) -> str:
        """Strip store locations from text that is sent to a client."""
        pass


class LocalArtifactStore(IArtifactStore):
    """Local filesystem implementation with one directory per namespace."""

    def __init__(
        self,
        intake_dir: Union[str, Path],
        output_dir: Union[str, Path],
        public_output_path: str = "/outputs"
    ):
        self.directories = {
            Namespace.INTAKE: Path(intake_dir).resolve(),
            Namespace.OUTPUT: Path(output_dir).resolve(),
        }
        self.public_output_path = "/" + public_output_path.strip("/")

    def ensure_directories(self):
        """Create the namespace directories. Called once at process start."""
        for namespace, directory in self.directories.items():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageFailure(
                    f"Cannot create {namespace.value} directory: {e.strerror or e}",
                    details={"namespace": namespace.value}
                )

    def is_writable(self) -> bool:
        return all(
            d.is_dir() and os.access(d, os.W_OK) for d in self.directories.values()
        )

    def _unique_name(self, original_name: str) -> str:
        """Submission time plus a random token, then the sanitized name."""
        timestamp = time.time_ns() // 1_000_000
        token = uuid.uuid4().hex[:12]
        return f"{timestamp}-{token}-{sanitize_filename(original_name)}"

    def allocate(self, original_name: str, namespace: Namespace) -> Artifact:
        name = self._unique_name(original_name)
        return Artifact(
            name=name,
            namespace=namespace,
            path=self.directories[namespace] / name,
            original_name=original_name,
        )

    async def materialize(
        self,
        content: Union[bytes, BinaryIO],
        original_name: str,
        namespace: Namespace,
        max_bytes: Optional[int] = None
    ) -> Artifact:
        artifact = self.allocate(original_name, namespace)
        size = await asyncio.to_thread(self._write, artifact.path, content, max_bytes)
        artifact.size_bytes = size
        record_materialized(namespace.value)
        logger.info(
            "artifact_materialized",
            artifact=str(artifact),
            size_bytes=size
        )
        return artifact

    def _write(
        self,
        path: Path,
        content: Union[bytes, BinaryIO],
        max_bytes: Optional[int]
    ) -> int:
        written = 0
        try:
            # Names are unique, an existing file means a naming collision
            with open(path, "xb") as f:
                if isinstance(content, (bytes, bytearray, memoryview)):
                    if max_bytes is not None and len(content) > max_bytes:
                        raise _TooLarge()
                    f.write(content)
                    written = len(content)
                else:
                    while True:
                        chunk = content.read(_COPY_CHUNK_SIZE)
                        if not chunk:
                            break
                        written += len(chunk)
                        if max_bytes is not None and written > max_bytes:
                            raise _TooLarge()
                        f.write(chunk)
        except _TooLarge:
            path.unlink(missing_ok=True)
            raise ValidationFailure(
                f"Uploaded file exceeds the maximum size of {max_bytes} bytes.",
                details={"max_bytes": max_bytes}
            )
        except FileExistsError:
            raise StorageFailure(
                "Artifact name collision",
                details={"path_name": path.name}
            )
        except OSError as e:
            path.unlink(missing_ok=True)
            raise StorageFailure(
                f"Failed to write artifact: {e.strerror or e}",
                details={"path_name": path.name}
            )
        return written

    def open(self, artifact: Artifact) -> BinaryIO:
        try:
            return open(artifact.path, "rb")
        except FileNotFoundError:
            raise NotFound(f"Artifact {artifact} no longer exists")
        except OSError as e:
            raise StorageFailure(f"Failed to open artifact: {e.strerror or e}")

    def remove(self, artifact: Artifact) -> bool:
        try:
            artifact.path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailure(
                f"Failed to delete artifact {artifact}: {e.strerror or e}"
            )

    def exists(self, artifact: Artifact) -> bool:
        return artifact.path.is_file()

    def refresh(self, artifact: Artifact) -> Artifact:
        try:
            artifact.size_bytes = artifact.path.stat().st_size
        except FileNotFoundError:
            raise NotFound(f"Artifact {artifact} was not written")
        return artifact

    def public_path(self, artifact: Artifact) -> str:
        if artifact.namespace is not Namespace.OUTPUT:
            raise ValueError(f"Only output artifacts are servable, got {artifact}")
        return f"{self.public_output_path}/{artifact.name}"

    def redact(self, text: str) -> str:
        for namespace, directory in self.directories.items():
            text = text.replace(f"{directory}{os.sep}", "").replace(str(directory), namespace.value)
        return text


class _TooLarge(Exception):
    pass


class StoreFactory:
    """Factory for the process-wide artifact store."""

    _instance: Optional[LocalArtifactStore] = None

    @classmethod
    def get_store(cls) -> LocalArtifactStore:
        if cls._instance is None:
            cls._instance = LocalArtifactStore(
                intake_dir=settings.INTAKE_DIR,
                output_dir=settings.OUTPUT_DIR,
                public_output_path=settings.PUBLIC_OUTPUT_PATH,
            )
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_store() -> LocalArtifactStore:
    """Get the store instance - ready for FastAPI Depends()."""
    return StoreFactory.get_store()
