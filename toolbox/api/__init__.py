"""
API Router Module

POST /api/{operation_id} - run one transform
GET  /api/operations     - registry listing
GET  /metrics            - Prometheus scrape target
"""

from fastapi import APIRouter

from toolbox.api.operations import router as operations_router
from toolbox.api.metrics import router as metrics_router

api_router = APIRouter(prefix="/api")
api_router.include_router(operations_router, tags=["operations"])

__all__ = ["api_router", "metrics_router"]
