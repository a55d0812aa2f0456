"""
Pipeline Coordinator

Drives one processing request through:

    received -> validated -> inputs_materialized -> dispatched
             -> output_materialized -> resolved -> complete

or received -> rejected when the request does not match the strategy's
declared contract. Validation happens before anything is written. Every
file the request touches (inputs, scratch files, output) is handed to the
reclamation scheduler, on success and on failure alike.
"""

import asyncio
import time
import uuid
from typing import Optional, List, Dict, Any

from toolbox.core.config import settings
from toolbox.core.exceptions import (
    ToolboxBaseException,
    TransformFailure,
    ValidationFailure,
)
from toolbox.core.logging import get_logger, LogContext
from toolbox.core.metrics import record_operation, track_transform_latency
from toolbox.core.reclamation import ReclamationScheduler, reclaim
from toolbox.core.resolver import ReferenceResolver
from toolbox.core.storage import IArtifactStore
from toolbox.engines.transforms.base import Transform, TransformContext
from toolbox.engines.transforms.registry import TransformRegistry
from toolbox.modules.artifacts.models import (
    Artifact,
    Namespace,
    ProcessingRequest,
    ProcessingResult,
    RequestState,
    Upload,
)

logger = get_logger(__name__)


class PipelineCoordinator:
    """Turns one ProcessingRequest into exactly one ProcessingResult or failure."""

    def __init__(
        self,
        registry: TransformRegistry,
        store: IArtifactStore,
        scheduler: ReclamationScheduler,
        resolver: ReferenceResolver,
        transform_timeout: Optional[float] = None,
        early_cleanup: Optional[bool] = None,
        max_upload_bytes: Optional[int] = None
    ):
        self.registry = registry
        self.store = store
        self.scheduler = scheduler
        self.resolver = resolver
        self.transform_timeout = (
            settings.TRANSFORM_TIMEOUT_SECONDS if transform_timeout is None else transform_timeout
        )
        self.early_cleanup = (
            settings.EARLY_INTAKE_CLEANUP if early_cleanup is None else early_cleanup
        )
        self.max_upload_bytes = (
            settings.MAX_UPLOAD_BYTES if max_upload_bytes is None else max_upload_bytes
        )

    async def process(self, request: ProcessingRequest) -> ProcessingResult:
        transform = self.registry.get(request.operation)
        request_id = uuid.uuid4().hex[:16]

        with LogContext(
            request_id=request_id,
            operation=transform.operation,
            stage=RequestState.RECEIVED.value
        ) as log_ctx:
            start = time.time()
            logger.info(
                "request_received",
                inputs=len(request.uploads),
                params=sorted(request.params)
            )

            try:
                params = self.validate(transform, request)
            except ValidationFailure as e:
                log_ctx.set_stage(RequestState.REJECTED.value)
                e.stage = RequestState.REJECTED.value
                record_operation(transform.operation, "rejected")
                logger.info("request_rejected", reason=e.message)
                raise
            log_ctx.set_stage(RequestState.VALIDATED.value)

            touched: List[Artifact] = []
            scratch: List[Artifact] = []
            try:
                result = await self._execute(transform, request, params, touched, scratch, log_ctx)
            except ToolboxBaseException as e:
                e.stage = e.stage or log_ctx.stage
                self._redact(e)
                record_operation(
                    transform.operation,
                    "rejected" if isinstance(e, ValidationFailure) else "failed"
                )
                logger.warning(
                    "request_failed",
                    error=e.message,
                    error_type=type(e).__name__,
                    failed_in=e.stage
                )
                raise
            except Exception:
                record_operation(transform.operation, "failed")
                raise
            finally:
                # Runs for success, failure and cancellation alike
                self.scheduler.register_all(touched + scratch)

            if self.early_cleanup:
                for artifact in touched + scratch:
                    if artifact.namespace is Namespace.INTAKE:
                        reclaim(self.store, artifact, trigger="early")

            result.duration_ms = int((time.time() - start) * 1000)
            log_ctx.set_stage(RequestState.COMPLETE.value)
            record_operation(transform.operation, "success")
            logger.info(
                "request_completed",
                duration_ms=result.duration_ms,
                output=str(result.output) if result.output else None
            )
            return result

    def validate(self, transform: Transform, request: ProcessingRequest) -> Dict[str, Any]:
        """Check arity, upload sizes and parameters. Never touches the filesystem."""
        count = len(request.uploads)
        if count < transform.min_inputs:
            if transform.min_inputs > 1:
                message = f"Please upload at least {transform.min_inputs} files to {transform.operation}."
            else:
                message = "No file uploaded."
            raise ValidationFailure(message, details={"received_files": count})

        if transform.max_inputs is not None and count > transform.max_inputs:
            raise ValidationFailure(
                f"{transform.operation} accepts exactly {transform.max_inputs} file.",
                details={"received_files": count}
            )

        for upload in request.uploads:
            if upload.size_bytes is not None and upload.size_bytes > self.max_upload_bytes:
                raise ValidationFailure(
                    f"'{upload.filename}' exceeds the maximum size of {self.max_upload_bytes} bytes.",
                    details={"max_bytes": self.max_upload_bytes}
                )

        return transform.parse_params(request.params)

    async def _execute(
        self,
        transform: Transform,
        request: ProcessingRequest,
        params: Dict[str, Any],
        touched: List[Artifact],
        scratch: List[Artifact],
        log_ctx: LogContext
    ) -> ProcessingResult:
        inputs = await self._materialize_inputs(request.uploads, touched)
        log_ctx.set_stage(RequestState.INPUTS_MATERIALIZED.value)

        output: Optional[Artifact] = None
        if transform.produces_output:
            output = self.store.allocate(transform.output_name(inputs, params), Namespace.OUTPUT)
            touched.append(output)

        ctx = TransformContext(
            operation=transform.operation,
            inputs=inputs,
            params=params,
            output=output,
            store=self.store,
            scratch=scratch,
        )

        log_ctx.set_stage(RequestState.DISPATCHED.value)
        text = await self._dispatch(transform, ctx)

        file_url = None
        if output is not None:
            if not self.store.exists(output):
                raise TransformFailure(f"{transform.operation} finished without writing an output file.")
            self.store.refresh(output)
            log_ctx.set_stage(RequestState.OUTPUT_MATERIALIZED.value)
            logger.info("output_materialized", artifact=str(output), size_bytes=output.size_bytes)

            file_url = self.resolver.resolve(request.context, self.store.public_path(output))
            log_ctx.set_stage(RequestState.RESOLVED.value)

        return ProcessingResult(
            operation=transform.operation,
            output=output,
            file_url=file_url,
            text=text,
            message=transform.success_message,
        )

    def _redact(self, error: ToolboxBaseException):
        """Encoder and library messages may name files by absolute path."""
        error.message = self.store.redact(error.message)
        error.details = {
            key: self.store.redact(value) if isinstance(value, str) else value
            for key, value in error.details.items()
        }

    async def _materialize_inputs(self, uploads: List[Upload], touched: List[Artifact]) -> List[Artifact]:
        inputs = []
        for upload in uploads:
            artifact = await self.store.materialize(
                upload.content,
                upload.filename,
                Namespace.INTAKE,
                max_bytes=self.max_upload_bytes
            )
            touched.append(artifact)
            inputs.append(artifact)
        return inputs

    async def _dispatch(self, transform: Transform, ctx: TransformContext) -> Optional[str]:
        start = time.time()
        try:
            with track_transform_latency(transform.operation):
                text = await asyncio.wait_for(transform.run(ctx), timeout=self.transform_timeout)
        except asyncio.TimeoutError:
            raise TransformFailure(
                f"{transform.operation} did not finish within {self.transform_timeout:g} seconds.",
                details={"timeout_seconds": self.transform_timeout}
            )
        except ToolboxBaseException:
            raise
        except Exception as e:
            logger.exception("transform_crashed", error=str(e), error_type=type(e).__name__)
            raise TransformFailure(f"{transform.operation} failed unexpectedly.")

        logger.info(
            "transform_completed",
            duration_ms=int((time.time() - start) * 1000)
        )
        return text
