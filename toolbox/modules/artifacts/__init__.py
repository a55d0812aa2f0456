"""Artifact pipeline data model."""

from toolbox.modules.artifacts.models import (
    Artifact,
    Namespace,
    ProcessingRequest,
    ProcessingResult,
    RequestContext,
    RequestState,
    Upload,
)

__all__ = [
    "Artifact",
    "Namespace",
    "ProcessingRequest",
    "ProcessingResult",
    "RequestContext",
    "RequestState",
    "Upload",
]
