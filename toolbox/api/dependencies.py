"""
FastAPI Dependencies

The pipeline objects are built once in the application lifespan and kept
on app.state; these helpers hand them to route handlers.
"""

from fastapi import Request

from toolbox.engines.transforms.registry import TransformRegistry
from toolbox.pipeline.coordinator import PipelineCoordinator


def get_coordinator(request: Request) -> PipelineCoordinator:
    return request.app.state.coordinator


def get_registry(request: Request) -> TransformRegistry:
    return request.app.state.coordinator.registry
