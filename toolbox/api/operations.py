"""
Operation Endpoints

POST /api/{operation_id} - Run one registered transform:
- multipart/form-data: files under the upload field, parameters as other fields
- application/json: parameters only

Success: {"message", "fileUrl", "text"?}. Failure: {"error", ...}.
Unknown ids under /api/* get a structured 404.
"""

import json
from typing import Dict, Any, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from toolbox.core.config import settings
from toolbox.core.exceptions import UnknownOperation, ValidationFailure
from toolbox.core.logging import get_logger
from toolbox.core.resolver import context_from_request
from toolbox.api.dependencies import get_coordinator, get_registry
from toolbox.engines.transforms.registry import TransformRegistry
from toolbox.modules.artifacts.models import ProcessingRequest, Upload
from toolbox.pipeline.coordinator import PipelineCoordinator

logger = get_logger(__name__)
router = APIRouter()

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/operations")
async def list_operations(registry: TransformRegistry = Depends(get_registry)):
    """Every registered operation with its input arity and parameter contract."""
    return {"operations": registry.describe()}


@router.post("/{operation_id}")
async def run_operation(
    operation_id: str,
    request: Request,
    coordinator: PipelineCoordinator = Depends(get_coordinator)
):
    """
    Run a transform and return a URL to its output.

    The output stays downloadable until the retention window elapses.
    """
    # Reject unknown ids before the body is parsed and spooled
    coordinator.registry.get(operation_id)

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if content_type in _FORM_TYPES:
        form = await request.form()
        try:
            uploads, params = _split_form(form.multi_items())
            result = await coordinator.process(
                ProcessingRequest(
                    operation=operation_id,
                    uploads=uploads,
                    params=params,
                    context=context_from_request(request),
                )
            )
        finally:
            await form.close()
    else:
        params = await _json_params(request)
        result = await coordinator.process(
            ProcessingRequest(
                operation=operation_id,
                params=params,
                context=context_from_request(request),
            )
        )

    return JSONResponse(content=result.to_response())


@router.api_route(
    "/{unknown_path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False
)
async def unknown_operation(unknown_path: str):
    raise UnknownOperation(unknown_path)


# =============================================================================
# Body Parsing
# =============================================================================

def _split_form(items) -> tuple:
    uploads: List[Upload] = []
    params: Dict[str, Any] = {}
    for key, value in items:
        if isinstance(value, UploadFile):
            if key != settings.UPLOAD_FIELD_NAME:
                logger.warning("upload_field_ignored", field=key)
                continue
            uploads.append(
                Upload(
                    filename=value.filename or "file",
                    content=value.file,
                    size_bytes=value.size,
                )
            )
        else:
            params[key] = value
    return uploads, params


async def _json_params(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationFailure("Request body is not valid JSON.")
    if not isinstance(payload, dict):
        raise ValidationFailure("JSON body must be an object.")
    return payload
