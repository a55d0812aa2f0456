"""
File Toolbox - Main Application

FastAPI application with:
- Uniform /api/<operation-id> contract for video, image and PDF transforms
- Ephemeral artifacts: intake/output namespaces, timed reclamation
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse

from toolbox.core.config import settings
from toolbox.core.logging import setup_logging, get_logger
from toolbox.core.exceptions import register_exception_handlers
from toolbox.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from toolbox.core.reclamation import ReclamationScheduler
from toolbox.core.resolver import ReferenceResolver
from toolbox.core.storage import get_store
from toolbox.engines.ffmpeg import check_ffmpeg
from toolbox.engines.transforms.registry import build_default_registry
from toolbox.pipeline.coordinator import PipelineCoordinator
from toolbox.modules.artifacts.models import Namespace
from toolbox.api import api_router, metrics_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    store = get_store()
    store.ensure_directories()
    logger.info(
        "artifact_store_ready",
        intake_dir=str(store.directories[Namespace.INTAKE]),
        output_dir=str(store.directories[Namespace.OUTPUT])
    )

    scheduler = ReclamationScheduler(store, retention_seconds=settings.RETENTION_SECONDS)
    app.state.scheduler = scheduler
    app.state.coordinator = PipelineCoordinator(
        registry=build_default_registry(),
        store=store,
        scheduler=scheduler,
        resolver=ReferenceResolver(settings.PUBLIC_BASE_URL),
    )

    app.state.ffmpeg_available = await check_ffmpeg()
    if app.state.ffmpeg_available:
        logger.info("ffmpeg_found", binary=settings.FFMPEG_BINARY)
    else:
        logger.warning(
            "ffmpeg_not_found",
            binary=settings.FFMPEG_BINARY,
            message="Video tools will fail until FFmpeg is installed"
        )

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )
    logger.info("application_ready", operations=len(app.state.coordinator.registry))

    yield

    # Shutdown: pending deletions are not persisted
    logger.info("application_shutting_down", pending_reclamations=scheduler.pending)
    scheduler.shutdown()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Stateless file conversion tools behind one contract.

    - **Video**: compress, convert, merge, GIF, speed change, MP3 (FFmpeg)
    - **Image**: compress, resize, convert, crop, blur, grayscale, colour picker (Pillow)
    - **PDF**: merge, split, rotate (pypdf)

    `POST /api/<operation-id>` with files under the `files` form field.
    Outputs are served from `/outputs/` until the retention window elapses.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps label cardinality bounded
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
# The docs routes under /api/ are registered by FastAPI itself, ahead of the /api catch-all
app.include_router(api_router)
app.include_router(metrics_router, tags=["metrics"])


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"{settings.APP_NAME} API is running!",
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "operations": "/api/operations",
        "metrics": "/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - artifact directories writable, encoder present."""
    store = get_store()
    checks = {
        "storage": store.is_writable(),
        "ffmpeg": bool(getattr(request.app.state, "ffmpeg_available", False)),
    }

    # Image and PDF tools work without ffmpeg
    is_ready = checks["storage"]

    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "ready": is_ready,
            "checks": checks,
            "pending_reclamations": request.app.state.scheduler.pending,
        }
    )


# =============================================================================
# Static Files
# =============================================================================

# Processed outputs, reachable until reclaimed
app.mount(
    settings.PUBLIC_OUTPUT_PATH,
    StaticFiles(directory=get_store().directories[Namespace.OUTPUT], check_dir=False),
    name="outputs"
)


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "toolbox.main:app",
        host="0.0.0.0",
        port=5000,
        reload=True,
        log_level="info"
    )
