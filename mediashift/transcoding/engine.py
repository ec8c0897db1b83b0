"""
Local-process backend: runs the system ffmpeg binary against files staged in
the job's scratch directory.
"""

import asyncio
import codecs
import re
import shutil
import signal
import subprocess
import sys
import time
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple

from ..config import TranscodingConfig
from .backends import BackendKind, ExecutionContext
from .error_classifier import ErrorClassifier, get_error_classifier
from .models import (
    CommandPlan,
    ExecutionOutcome,
    Failure,
    FailureKind,
    ProgressReporter,
    Success,
)

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
_TIME_HMS_RE = re.compile(r"time=\s*(\d+):(\d+):(\d+\.?\d*)")
_TIME_MS_RE = re.compile(r"time=\s*(\d+):(\d+\.?\d*)")

# Bounded stderr tail kept for diagnostics
_STDERR_TAIL = 100

# ffmpeg status lines end in \r and may never be followed by \n
_LINE_BREAK = re.compile(r"[\r\n]")
_STDERR_CHUNK = 4096


def parse_timestamp(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_duration(line: str) -> Optional[float]:
    """Input duration from ffmpeg's stream header, in seconds."""
    match = _DURATION_RE.search(line)
    if not match:
        return None
    try:
        return parse_timestamp(*match.groups())
    except (ValueError, TypeError):
        return None


def parse_progress_time(line: str) -> Optional[float]:
    """
    Encoded position from an ffmpeg status line, in seconds.

    Handles HH:MM:SS.ms and MM:SS.ms forms; `time=N/A` yields None.
    """
    match = _TIME_HMS_RE.search(line)
    if match:
        try:
            return parse_timestamp(*match.groups())
        except (ValueError, TypeError):
            return None

    match = _TIME_MS_RE.search(line)
    if match:
        try:
            m, s = match.groups()
            return int(m) * 60 + float(s)
        except (ValueError, TypeError):
            return None
    return None


def is_progress_line(line: str) -> bool:
    return "frame=" in line or "size=" in line


def split_status_lines(text: str) -> Tuple[List[str], str]:
    """
    Split buffered stderr on either line terminator.

    Returns the complete non-blank lines and the unterminated remainder,
    which the caller prepends to the next chunk.
    """
    parts = _LINE_BREAK.split(text)
    remainder = parts.pop()
    return [part for part in parts if part.strip()], remainder


@dataclass
class FFmpegRun:
    """Outcome of one ffmpeg process."""
    return_code: int
    error_output: str
    saw_progress: bool = False
    stalled: bool = False
    timed_out: bool = False
    spawn_error: Optional[str] = None


class LocalProcessBackend:
    """Runs a CommandPlan with the ffmpeg executable on this host."""

    kind = BackendKind.LOCAL_PROCESS

    def __init__(
        self,
        ffmpeg_path: str = "auto",
        process_timeout: float = 600,
        stall_timeout: float = 120,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.process_timeout = process_timeout
        self.stall_timeout = stall_timeout
        self.classifier = classifier or get_error_classifier()

    @classmethod
    def from_config(cls, config: TranscodingConfig) -> "LocalProcessBackend":
        return cls(
            ffmpeg_path=config.ffmpeg_path,
            process_timeout=config.process_timeout,
            stall_timeout=config.stall_timeout,
        )

    def find_ffmpeg(self) -> Optional[str]:
        """Find ffmpeg executable."""
        if self.ffmpeg_path != "auto":
            return self.ffmpeg_path
        return shutil.which("ffmpeg")

    async def execute(self, plan: CommandPlan, context: ExecutionContext) -> ExecutionOutcome:
        ffmpeg = self.find_ffmpeg()
        if not ffmpeg:
            return Failure(FailureKind.SPAWN_FAILED, "FFmpeg executable not found")

        input_path = context.resource.file(context.layout.input_ref)
        output_path = context.resource.file(context.layout.output_name)
        cmd = [ffmpeg] + plan.to_args(str(input_path), str(output_path))

        limit = _time_limit(plan)
        run = await self._run_ffmpeg(cmd, context.progress, limit)

        if run.spawn_error is not None:
            return Failure(FailureKind.SPAWN_FAILED, f"Failed to start FFmpeg: {run.spawn_error}")
        if run.timed_out:
            return Failure(FailureKind.TIMEOUT, f"FFmpeg exceeded {self.process_timeout:.0f}s")
        if run.stalled:
            return Failure(FailureKind.STALLED, f"FFmpeg made no progress for {self.stall_timeout:.0f}s")
        if run.return_code != 0:
            reason = self.classifier.summarize(run.error_output)
            logger.warning(f"[Transcode] FFmpeg exited with {run.return_code} for job {context.job_id}: {reason}")
            return Failure(FailureKind.NONZERO_EXIT, reason)

        if run.error_output.strip() and not run.saw_progress:
            # Exit 0 wins; an unfamiliar stderr shape is only worth noting
            logger.warning(
                f"[Transcode] FFmpeg output for job {context.job_id} had no progress markers: "
                f"{self.classifier.summarize(run.error_output)}"
            )

        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, _read_if_present, output_path)
        if not data:
            return Failure(FailureKind.NO_OUTPUT, "FFmpeg finished but produced no output")
        return Success(data)

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """
        Gracefully terminate FFmpeg process with platform-specific signals.

        Uses SIGINT on Unix (allows FFmpeg to finalize) and CTRL_BREAK_EVENT on Windows.
        Falls back to SIGTERM/kill if graceful termination fails.
        """
        if process.returncode is not None:
            return

        try:
            try:
                if sys.platform == "win32":
                    process.send_signal(signal.CTRL_BREAK_EVENT)
                else:
                    process.send_signal(signal.SIGINT)
            except (ProcessLookupError, OSError):
                pass

            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
                logger.debug("[Transcode] FFmpeg terminated gracefully")
                return
            except asyncio.TimeoutError:
                pass

            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=3.0)
                logger.debug("[Transcode] FFmpeg terminated with SIGTERM")
                return
            except (asyncio.TimeoutError, ProcessLookupError, OSError):
                pass

            try:
                process.kill()
                await process.wait()
                logger.warning("[Transcode] FFmpeg killed forcefully")
            except (ProcessLookupError, OSError):
                pass

        except Exception as e:
            logger.warning(f"[Transcode] Error during process termination: {e}")

    async def _run_ffmpeg(
        self,
        cmd: List[str],
        progress: ProgressReporter,
        time_limit: Optional[float] = None,
    ) -> FFmpegRun:
        """
        Run FFmpeg process with progress tracking.

        Uses separate async tasks for stdout and stderr to prevent deadlocks,
        and a monitor task that enforces the overall and stall timeouts.
        """
        logger.info(f"[Transcode] Running FFmpeg: {' '.join(cmd[:12])}...")

        try:
            kwargs: Dict[str, Any] = {
                "stdin": asyncio.subprocess.DEVNULL,
                "stdout": asyncio.subprocess.PIPE,
                "stderr": asyncio.subprocess.PIPE,
            }
            if sys.platform == "win32":
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except (OSError, ValueError) as e:
            logger.error(f"[Transcode] Failed to start FFmpeg: {e}")
            return FFmpegRun(return_code=-1, error_output=str(e), spawn_error=str(e))

        stderr_lines: List[str] = []
        started = time.monotonic()
        last_progress_time = started
        duration: Optional[float] = None
        saw_progress = False
        stalled = False
        timed_out = False

        async def read_stdout():
            try:
                while True:
                    chunk = await process.stdout.read(4096)
                    if not chunk:
                        break
            except Exception as e:
                logger.debug(f"[Transcode] stdout reader error: {e}")

        def handle_line(line: str) -> None:
            nonlocal last_progress_time, duration, saw_progress
            stderr_lines.append(line)
            if len(stderr_lines) > _STDERR_TAIL:
                stderr_lines.pop(0)

            if duration is None:
                duration = parse_duration(line)

            if is_progress_line(line):
                saw_progress = True
                last_progress_time = time.monotonic()
                position = parse_progress_time(line)
                total = _effective_duration(duration, time_limit)
                if position is not None and total:
                    progress.report(min(0.99, position / total))

        async def read_stderr():
            decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
            pending = ""
            try:
                while True:
                    chunk = await process.stderr.read(_STDERR_CHUNK)
                    if not chunk:
                        break
                    lines, pending = split_status_lines(pending + decoder.decode(chunk))
                    for line in lines:
                        handle_line(line)

                pending += decoder.decode(b"", final=True)
                if pending.strip():
                    handle_line(pending)
            except Exception as e:
                logger.debug(f"[Transcode] stderr reader error: {e}")

        async def monitor():
            nonlocal stalled, timed_out
            while process.returncode is None:
                now = time.monotonic()
                if self.process_timeout and now - started > self.process_timeout:
                    timed_out = True
                    logger.error(f"[Transcode] FFmpeg exceeded {self.process_timeout:.0f}s, terminating")
                    await self._graceful_terminate(process)
                    return

                if self.stall_timeout and now - last_progress_time > self.stall_timeout:
                    stalled = True
                    logger.error(f"[Transcode] FFmpeg stalled for {self.stall_timeout:.0f}s, terminating")
                    await self._graceful_terminate(process)
                    return

                await asyncio.sleep(min(1.0, self.stall_timeout or 1.0))

        stdout_task = asyncio.create_task(read_stdout())
        stderr_task = asyncio.create_task(read_stderr())
        monitor_task = asyncio.create_task(monitor())

        try:
            await asyncio.gather(stdout_task, stderr_task)
            await process.wait()
        except asyncio.CancelledError:
            await self._graceful_terminate(process)
            raise
        finally:
            monitor_task.cancel()
            try:
                await monitor_task
            except asyncio.CancelledError:
                pass

        return_code = process.returncode
        if return_code is None:
            return_code = -1

        return FFmpegRun(
            return_code=return_code,
            error_output="\n".join(stderr_lines),
            saw_progress=saw_progress,
            stalled=stalled,
            timed_out=timed_out,
        )


def _time_limit(plan: CommandPlan) -> Optional[float]:
    value = plan.value_of("-t")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _effective_duration(duration: Optional[float], time_limit: Optional[float]) -> Optional[float]:
    if duration and time_limit:
        return min(duration, time_limit)
    return duration or time_limit


def _read_if_present(path) -> Optional[bytes]:
    if not path.is_file():
        return None
    return path.read_bytes()
