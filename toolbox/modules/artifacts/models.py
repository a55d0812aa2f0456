"""
Artifact Pipeline Models

Artifacts on the store plus the ephemeral request/result objects that
flow through the pipeline coordinator. Nothing here is persisted.
"""

from enum import Enum
from pathlib import Path
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field


class Namespace(str, Enum):
    """Logical separation of files on the store."""
    INTAKE = "intake"    # Uploaded, not yet processed
    OUTPUT = "output"    # Processed and servable


class RequestState(str, Enum):
    """Per-request pipeline states. Terminal on first failure or success."""
    RECEIVED = "received"
    VALIDATED = "validated"
    INPUTS_MATERIALIZED = "inputs_materialized"
    DISPATCHED = "dispatched"
    OUTPUT_MATERIALIZED = "output_materialized"
    RESOLVED = "resolved"
    COMPLETE = "complete"
    REJECTED = "rejected"
    FAILED = "failed"


class Artifact(BaseModel):
    """A file tracked by the artifact store, unique within its namespace."""
    name: str
    namespace: Namespace
    path: Path
    original_name: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    size_bytes: Optional[int] = None  # Known only after materialization

    def __str__(self) -> str:
        return f"{self.namespace.value}/{self.name}"


class Upload(BaseModel):
    """One file part of an inbound request, not yet on the store."""
    filename: str
    content: Any  # bytes or a readable binary file object
    size_bytes: Optional[int] = None


class RequestContext(BaseModel):
    """Origin of the request, used to build externally reachable URLs."""
    scheme: str = "http"
    host: str = "localhost"
    forwarded_proto: Optional[str] = None
    forwarded_host: Optional[str] = None


class ProcessingRequest(BaseModel):
    """One call to /api/<operation-id>."""
    operation: str
    uploads: List[Upload] = Field(default_factory=list)
    params: Dict[str, Any] = Field(default_factory=dict)
    context: RequestContext = Field(default_factory=RequestContext)


class ProcessingResult(BaseModel):
    """Exactly one per request: a servable artifact, a text result, or both."""
    operation: str
    output: Optional[Artifact] = None
    file_url: Optional[str] = None
    text: Optional[str] = None
    message: Optional[str] = None
    duration_ms: int = 0

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.message:
            body["message"] = self.message
        if self.file_url:
            body["fileUrl"] = self.file_url
        if self.text is not None:
            body["text"] = self.text
        return body
