"""
Metrics Endpoint

GET /metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from toolbox.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - toolbox_operations_total (per operation and outcome)
    - toolbox_transform_latency_seconds
    - toolbox_artifacts_materialized_total / toolbox_artifacts_reclaimed_total
    - toolbox_pending_reclamations
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
