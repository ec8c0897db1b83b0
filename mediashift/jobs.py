"""
Job tracking and concurrency control for MediaShift
"""

import asyncio
import uuid
import logging
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, List, Callable, Any
from dataclasses import dataclass, field

from .config import MediaShiftConfig, get_config
from .errors import MediaShiftError
from .transcoding import (
    ProgressEvent,
    TranscodeController,
    TranscodeRequest,
    TranscodeResult,
)
from .transcoding.controller import JobTrace

logger = logging.getLogger(__name__)

# Finished jobs kept for status queries
MAX_JOB_HISTORY = 200


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


@dataclass
class Job:
    """Represents one conversion request."""
    id: str
    operation: str
    filename: str
    original_size: int
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    output_size: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    trace: Optional[JobTrace] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "operation": self.operation,
            "filename": self.filename,
            "status": self.status.value,
            "progress": round(self.progress * 100, 1),
            "original_size": self.original_size,
            "output_size": self.output_size,
            "error": self.error_kind,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobStats:
    """Statistics for job processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.total_bytes_in: int = 0
        self.total_bytes_out: int = 0
        self.total_processing_time: float = 0.0
        self.operations: Dict[str, int] = {}
        self.start_time: datetime = datetime.utcnow()

    def record_job_complete(self, job: Job, success: bool) -> None:
        """Record job completion stats."""
        self.total_jobs_processed += 1
        self.operations[job.operation] = self.operations.get(job.operation, 0) + 1

        if success:
            self.successful_jobs += 1
            self.total_bytes_in += job.original_size
            self.total_bytes_out += job.output_size or 0
        else:
            self.failed_jobs += 1

        if job.started_at and job.completed_at:
            self.total_processing_time += (job.completed_at - job.started_at).total_seconds()

    @property
    def average_processing_time(self) -> float:
        """Average wall time of a successful job, in seconds."""
        if self.total_processing_time > 0 and self.successful_jobs > 0:
            return self.total_processing_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        """Service uptime in seconds."""
        return (datetime.utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_jobs_processed": self.total_jobs_processed,
            "successful_jobs": self.successful_jobs,
            "failed_jobs": self.failed_jobs,
            "total_bytes_in": self.total_bytes_in,
            "total_bytes_out": self.total_bytes_out,
            "average_processing_time": round(self.average_processing_time, 2),
            "operations": dict(self.operations),
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


class JobManager:
    """Runs conversion jobs with a global concurrency cap and lifecycle tracking."""

    def __init__(
        self,
        config: Optional[MediaShiftConfig] = None,
        controller: Optional[TranscodeController] = None,
    ):
        self.config = config or get_config()
        self.controller = controller or TranscodeController.from_config(self.config)
        self.jobs: "OrderedDict[str, Job]" = OrderedDict()
        self.stats = JobStats()
        self.progress_callbacks: List[Callable[[str, float], None]] = []
        self.status_callbacks: List[Callable[[str, JobStatus], None]] = []
        self._semaphore = asyncio.Semaphore(max(1, self.config.transcoding.max_concurrent_jobs))
        self._active = 0

    async def start(self) -> None:
        """Prepare the scratch area and clear out what a previous process left behind."""
        resources = self.controller.resources
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, resources.ensure_root)

        max_age = self.config.transcoding.orphan_max_age_hours * 3600
        removed = await loop.run_in_executor(None, resources.sweep_orphans, max_age)
        logger.info(
            f"Job manager started (max {self.config.transcoding.max_concurrent_jobs} concurrent jobs, "
            f"{removed} orphaned scratch dir(s) removed)"
        )

    async def stop(self) -> None:
        logger.info(f"Job manager stopping with {self._active} active job(s)")
        for backend in self.controller.backends:
            engine = getattr(backend, "engine", None)
            if engine is not None:
                engine.shutdown()

    def _notify_progress(self, job_id: str, fraction: float) -> None:
        """Notify all registered progress callbacks."""
        for callback in self.progress_callbacks:
            try:
                callback(job_id, fraction)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

    def _notify_status(self, job_id: str, status: JobStatus) -> None:
        """Notify all registered status callbacks."""
        for callback in self.status_callbacks:
            try:
                callback(job_id, status)
            except Exception as e:
                logger.error(f"Status callback error: {e}")

    def register_progress_callback(self, callback: Callable[[str, float], None]) -> None:
        """Register a progress callback."""
        self.progress_callbacks.append(callback)

    def register_status_callback(self, callback: Callable[[str, JobStatus], None]) -> None:
        """Register a status callback."""
        self.status_callbacks.append(callback)

    def _track(self, job: Job) -> None:
        self.jobs[job.id] = job
        while len(self.jobs) > MAX_JOB_HISTORY:
            self.jobs.popitem(last=False)

    async def submit(self, request: TranscodeRequest, job_id: Optional[str] = None) -> TranscodeResult:
        """Run one request to completion and return its result."""
        job = Job(
            id=job_id or uuid.uuid4().hex[:12],
            operation=request.operation,
            filename=request.source.filename if request.sources else "",
            original_size=request.total_size,
        )
        job.trace = JobTrace(job.id)
        self._track(job)
        self._notify_status(job.id, JobStatus.QUEUED)

        def on_progress(event: ProgressEvent) -> None:
            job.progress = event.fraction
            self._notify_progress(job.id, event.fraction)

        async with self._semaphore:
            self._active += 1
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.utcnow()
            self._notify_status(job.id, JobStatus.PROCESSING)

            try:
                result = await self.controller.run(request, job_id=job.id, progress=on_progress, trace=job.trace)
            except MediaShiftError as e:
                self._finish(job, JobStatus.ERROR, error=e)
                raise
            except Exception as e:
                logger.exception(f"Unexpected error processing job {job.id}: {e}")
                self._finish(job, JobStatus.ERROR, error=e)
                raise
            finally:
                self._active -= 1

        job.output_size = result.output_size
        self._finish(job, JobStatus.READY)
        return result

    def _finish(self, job: Job, status: JobStatus, error: Optional[BaseException] = None) -> None:
        job.status = status
        job.completed_at = datetime.utcnow()
        if error is not None:
            job.error_kind = getattr(error, "kind", "internal_error")
            job.error_message = str(error)
        self.stats.record_job_complete(job, status == JobStatus.READY)
        self._notify_status(job.id, status)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def get_active_count(self) -> int:
        """Get the number of jobs currently converting."""
        return self._active

    def get_all_jobs(self) -> List[Job]:
        return list(self.jobs.values())


# Global job manager instance
_job_manager: Optional[JobManager] = None


def get_job_manager() -> JobManager:
    """Get the global job manager instance."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager()
    return _job_manager


def set_job_manager(manager: Optional[JobManager]) -> None:
    """Set the global job manager instance."""
    global _job_manager
    _job_manager = manager
