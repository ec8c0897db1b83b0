"""
Transcode job controller.

Drives one request through validation, scratch preparation, execution with
an ordered backend fallback, packaging and cleanup:

    VALIDATING -> PREPARING -> EXECUTING_LOCAL -> [EXECUTING_EMBEDDED]
               -> FINALIZING -> CLEANING_UP -> DONE | FAILED
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple

from ..config import MediaShiftConfig
from ..errors import EncodingError, MediaShiftError, ValidationError
from .backends import Backend, BackendKind, ExecutionContext
from .commands import CommandBuilder
from .models import (
    CommandPlan,
    ExecutionOutcome,
    Failure,
    FailureKind,
    ProgressCallback,
    ProgressReporter,
    StagingLayout,
    Success,
    TranscodeRequest,
    TranscodeResult,
)
from .operations import OperationSpec, get_operation, size_ceiling_bytes, source_format
from .packager import pack
from .resources import TempResource, TempResourceManager, build_layout
from .validation import validate_output

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    VALIDATING = "validating"
    PREPARING = "preparing"
    EXECUTING_LOCAL = "executing_local"
    EXECUTING_EMBEDDED = "executing_embedded"
    FINALIZING = "finalizing"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


_EXECUTING_STATE = {
    BackendKind.LOCAL_PROCESS: JobState.EXECUTING_LOCAL,
    BackendKind.EMBEDDED_ENGINE: JobState.EXECUTING_EMBEDDED,
}


@dataclass
class JobTrace:
    """State history and backend attempts of one job."""
    job_id: str
    states: List[JobState] = field(default_factory=list)
    attempts: List[Tuple[BackendKind, ExecutionOutcome]] = field(default_factory=list)

    @property
    def state(self) -> Optional[JobState]:
        return self.states[-1] if self.states else None

    def enter(self, state: JobState) -> None:
        logger.debug(f"[Job {self.job_id}] {self.state.value if self.state else 'new'} -> {state.value}")
        self.states.append(state)

    def attempt_summary(self) -> List[str]:
        summary = []
        for kind, outcome in self.attempts:
            if isinstance(outcome, Failure):
                summary.append(f"{kind.value}: {outcome.kind.value}: {outcome.message}")
            else:
                summary.append(f"{kind.value}: success")
        return summary


@dataclass(frozen=True)
class ValidatedJob:
    spec: OperationSpec
    plan: CommandPlan
    layout: StagingLayout


class TranscodeController:
    """Runs requests against an ordered list of execution backends."""

    def __init__(
        self,
        resources: TempResourceManager,
        backends: Sequence[Backend],
        builder: Optional[CommandBuilder] = None,
        size_limits_mb: Optional[Mapping[str, int]] = None,
    ):
        if not backends:
            raise ValueError("At least one backend is required")
        self.resources = resources
        self.backends = list(backends)
        self.builder = builder or CommandBuilder()
        self.size_limits_mb = dict(size_limits_mb or {})

    @classmethod
    def from_config(cls, config: MediaShiftConfig) -> "TranscodeController":
        from .embedded import EmbeddedEngine, EmbeddedEngineBackend
        from .engine import LocalProcessBackend

        transcoding = config.transcoding
        backends: List[Backend] = [LocalProcessBackend.from_config(transcoding)]
        if transcoding.enable_embedded_engine:
            engine = EmbeddedEngine.instance(threads=transcoding.embedded_engine_threads)
            backends.append(EmbeddedEngineBackend(engine))

        return cls(
            resources=TempResourceManager(transcoding.scratch_root),
            backends=backends,
            size_limits_mb=config.limits.max_upload_mb,
        )

    def validate(self, request: TranscodeRequest) -> ValidatedJob:
        """Reject a request before any resource is touched."""
        spec = get_operation(request.operation)

        if not request.sources:
            raise ValidationError("No file provided")
        if len(request.sources) < spec.min_files:
            raise ValidationError(f"{spec.kind.value} needs at least {spec.min_files} files")
        if len(request.sources) > spec.max_files:
            raise ValidationError(f"{spec.kind.value} accepts at most {spec.max_files} file(s)")

        formats = []
        for source in request.sources:
            if source.size == 0:
                raise ValidationError(f"File {source.filename!r} is empty")
            fmt = source_format(source.filename, source.content_type, spec)
            if fmt is None:
                raise ValidationError(
                    f"Unsupported file type for {spec.kind.value}: {source.filename!r}. "
                    f"Supported formats: {', '.join(spec.extensions)}"
                )
            formats.append(fmt)

        if spec.uniform_extension and len(set(formats)) > 1:
            raise ValidationError("All images must have the same format")

        ceiling = size_ceiling_bytes(spec, self.size_limits_mb)
        if request.total_size > ceiling:
            raise ValidationError(f"File too large. Maximum size is {ceiling // (1024 * 1024)}MB")

        plan = self.builder.build(spec.kind.value, request.options, source_format=formats[0])
        layout = build_layout(request.sources, formats[0], plan.output_extension)
        return ValidatedJob(spec=spec, plan=plan, layout=layout)

    async def run(
        self,
        request: TranscodeRequest,
        job_id: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        trace: Optional[JobTrace] = None,
    ) -> TranscodeResult:
        job_id = job_id or uuid.uuid4().hex[:12]
        trace = trace or JobTrace(job_id)
        reporter = ProgressReporter(progress)

        try:
            trace.enter(JobState.VALIDATING)
            job = self.validate(request)

            trace.enter(JobState.PREPARING)
            resource = self.resources.acquire(job_id, job.spec.kind.value)
            try:
                result = await self._prepare_and_execute(job_id, request, job, resource, reporter, trace)
            finally:
                trace.enter(JobState.CLEANING_UP)
                self.resources.release(resource)
        except BaseException:
            trace.enter(JobState.FAILED)
            raise

        reporter.report(1.0)
        trace.enter(JobState.DONE)
        logger.info(
            f"[Job {job_id}] {job.spec.kind.value} done: "
            f"{result.original_size} -> {result.output_size} bytes"
        )
        return result

    async def _prepare_and_execute(
        self,
        job_id: str,
        request: TranscodeRequest,
        job: ValidatedJob,
        resource: TempResource,
        reporter: ProgressReporter,
        trace: JobTrace,
    ) -> TranscodeResult:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.resources.stage, resource, job.layout)

        success: Optional[Success] = None
        last_failure: Optional[Failure] = None

        for backend in self.backends:
            trace.enter(_EXECUTING_STATE[backend.kind])
            context = ExecutionContext(
                job_id=job_id,
                layout=job.layout,
                resource=resource,
                progress=reporter.child(),
            )
            outcome = await self._attempt(backend, job.plan, context)
            trace.attempts.append((backend.kind, outcome))

            if isinstance(outcome, Success):
                success = outcome
                break

            last_failure = outcome
            logger.warning(
                f"[Job {job_id}] {backend.kind.value} failed ({outcome.kind.value}): {outcome.message}"
            )

        if success is None:
            raise EncodingError(
                f"Conversion failed: {_failure_message(trace, last_failure)}",
                attempts=trace.attempt_summary(),
            )

        trace.enter(JobState.FINALIZING)
        return pack(success, request.source.filename, job.plan, request.total_size)

    async def _attempt(self, backend: Backend, plan: CommandPlan, context: ExecutionContext) -> ExecutionOutcome:
        """One backend run; exceptions and unusable output both count as failures."""
        try:
            outcome = await backend.execute(plan, context)
        except asyncio.CancelledError:
            raise
        except MediaShiftError as e:
            outcome = Failure(FailureKind.EXCEPTION, e.message)
        except Exception as e:
            logger.exception(f"[Job {context.job_id}] {backend.kind.value} raised")
            outcome = Failure(FailureKind.EXCEPTION, str(e) or type(e).__name__)

        if isinstance(outcome, Success):
            valid, reason = validate_output(outcome.data, plan.output_extension)
            if not valid:
                return Failure(FailureKind.INVALID_OUTPUT, reason)
        return outcome


# Reasons without diagnostic detail worth showing
_GENERIC_REASONS = {
    FailureKind.SPAWN_FAILED: "no encoder is available",
    FailureKind.ENGINE_UNAVAILABLE: "no encoder is available",
    FailureKind.NO_OUTPUT: "the encoder produced no output",
    FailureKind.TIMEOUT: "the conversion took too long",
    FailureKind.STALLED: "the conversion stopped making progress",
}


def _failure_message(trace: JobTrace, last_failure: Optional[Failure]) -> str:
    """Caller-facing reason; prefers encoder diagnostics over availability noise."""
    if last_failure is None:
        return "no encoder ran"
    if last_failure.kind in _GENERIC_REASONS:
        for _, outcome in reversed(trace.attempts):
            if isinstance(outcome, Failure) and outcome.kind not in _GENERIC_REASONS:
                return outcome.message
        return _GENERIC_REASONS[last_failure.kind]
    return last_failure.message
