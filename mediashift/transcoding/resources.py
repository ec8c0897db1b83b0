"""
Per-job scratch directories under a shared scratch root.
"""

import itertools
import logging
import re
import secrets
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..errors import ResourceError
from .models import SourceFile, StagingLayout

logger = logging.getLogger(__name__)

# <operation>_<ms timestamp>_<counter>_<8 hex>
SCRATCH_DIR_PATTERN = re.compile(r"^[a-z0-9-]+_\d+_\d+_[0-9a-f]{8}$")

MAX_ACQUIRE_ATTEMPTS = 16


@dataclass
class TempResource:
    """A scratch directory owned by exactly one job."""
    id: str
    job_id: str
    path: Path
    released: bool = False

    def file(self, name: str) -> Path:
        return self.path / name


def build_layout(
    sources: Sequence[SourceFile],
    source_format: str,
    output_extension: str,
) -> StagingLayout:
    """
    Name the staged inputs and the output for one job.

    A single source is staged as `input.<ext>`; several sources are staged as
    a numbered frame sequence and referenced through a `%03d` pattern.
    """
    output_name = f"output.{output_extension}"
    if len(sources) == 1:
        name = f"input.{source_format}"
        return StagingLayout(inputs=((name, sources[0].data),), input_ref=name, output_name=output_name)

    inputs = tuple(
        (f"frame_{index:03d}.{source_format}", source.data)
        for index, source in enumerate(sources, start=1)
    )
    return StagingLayout(
        inputs=inputs,
        input_ref=f"frame_%03d.{source_format}",
        output_name=output_name,
    )


class TempResourceManager:
    """Creates, stages and removes job scratch directories."""

    def __init__(self, scratch_root: str, clock: Callable[[], float] = time.time):
        self.scratch_root = Path(scratch_root).expanduser()
        self._clock = clock
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    def _next_id(self, operation: str) -> str:
        with self._counter_lock:
            sequence = next(self._counter)
        millis = int(self._clock() * 1000)
        return f"{operation}_{millis}_{sequence}_{secrets.token_hex(4)}"

    def ensure_root(self) -> Path:
        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Cannot create scratch root {self.scratch_root}: {e}")
        return self.scratch_root

    def acquire(self, job_id: str, operation: str) -> TempResource:
        """Create a fresh directory that no other job can be handed."""
        root = self.ensure_root()

        for _ in range(MAX_ACQUIRE_ATTEMPTS):
            resource_id = self._next_id(operation)
            path = root / resource_id
            try:
                path.mkdir(exist_ok=False)
            except FileExistsError:
                logger.debug(f"[Scratch] Name collision on {resource_id}, retrying")
                continue
            except OSError as e:
                raise ResourceError(f"Cannot create scratch directory {path}: {e}")

            logger.debug(f"[Scratch] Acquired {path} for job {job_id}")
            return TempResource(id=resource_id, job_id=job_id, path=path)

        raise ResourceError(f"Could not allocate a unique scratch directory for job {job_id}")

    def stage(self, resource: TempResource, layout: StagingLayout) -> None:
        """Write every input of the layout into the job's directory."""
        try:
            for name, data in layout.inputs:
                resource.file(name).write_bytes(data)
        except OSError as e:
            raise ResourceError(f"Cannot stage inputs for job {resource.job_id}: {e}")

    def read_output(self, resource: TempResource, name: str) -> Optional[bytes]:
        """Bytes of an output file, or None if it was never produced."""
        path = resource.file(name)
        if not path.is_file():
            return None
        return path.read_bytes()

    def release(self, resource: TempResource) -> None:
        """
        Remove the job's directory. Safe to call more than once; a directory
        that is already gone is not an error and removal errors are only logged.
        """
        if resource.released:
            return
        resource.released = True

        if not resource.path.exists():
            return
        try:
            shutil.rmtree(resource.path)
            logger.debug(f"[Scratch] Released {resource.path}")
        except OSError as e:
            logger.warning(f"[Scratch] Failed to remove {resource.path}: {e}")

    def sweep_orphans(self, max_age_seconds: float) -> int:
        """Remove job directories older than `max_age_seconds` left behind by a previous process."""
        if not self.scratch_root.exists():
            return 0

        cutoff = self._clock() - max_age_seconds
        removed: List[str] = []

        for item in self.scratch_root.iterdir():
            if not item.is_dir() or not SCRATCH_DIR_PATTERN.match(item.name):
                continue
            try:
                if item.stat().st_mtime >= cutoff:
                    continue
                shutil.rmtree(item)
                removed.append(item.name)
                logger.info(f"[Cleanup] Removed orphaned scratch dir: {item.name}")
            except OSError as e:
                logger.warning(f"[Cleanup] Failed to remove orphaned dir {item.name}: {e}")

        if removed:
            logger.info(f"[Cleanup] Cleaned up {len(removed)} orphaned scratch dir(s)")
        return len(removed)
