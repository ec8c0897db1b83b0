"""
MediaShift Test Configuration and Fixtures

Provides:
- Synthetic test media encoded in memory with PyAV
- Scratch roots under pytest's tmp_path (auto-cleaned)
- Fake execution backends for exercising the controller without an encoder
"""

import shutil
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from mediashift.config import MediaShiftConfig, set_config
from mediashift.transcoding import (
    BackendKind,
    CommandPlan,
    ExecutionContext,
    Failure,
    FailureKind,
    SourceFile,
    Success,
    TempResourceManager,
    TranscodeRequest,
)

from media import sources_for


# =============================================================================
# SAMPLE PAYLOADS
# =============================================================================

# Leading bytes that satisfy the output signature check for each container
MP4_BYTES = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2" + b"\x00" * 64
GIF_BYTES = b"GIF89a" + b"\x00" * 64
MP3_BYTES = b"ID3\x03\x00\x00\x00\x00\x00\x00" + b"\xff\xfb" * 32
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def make_request(
    operation: str = "compress-video",
    filename: str = "clip.mp4",
    data: bytes = b"fake video payload",
    content_type: str = "video/mp4",
    **options: str,
) -> TranscodeRequest:
    return TranscodeRequest(
        operation=operation,
        sources=(SourceFile(filename=filename, data=data, content_type=content_type),),
        options=options,
    )


# =============================================================================
# FAKE BACKENDS
# =============================================================================

class FakeBackend:
    """
    Scripted backend. `behaviour` is a Success, a Failure, an exception to
    raise, or a callable taking (plan, context) for anything fancier.
    """

    def __init__(self, kind: BackendKind, behaviour, progress: Optional[List[float]] = None):
        self.kind = kind
        self.behaviour = behaviour
        self.progress = progress or []
        self.calls: List[ExecutionContext] = []
        self.plans: List[CommandPlan] = []
        self.seen_inputs: List[List[str]] = []

    async def execute(self, plan: CommandPlan, context: ExecutionContext):
        self.calls.append(context)
        self.plans.append(plan)
        self.seen_inputs.append(sorted(p.name for p in context.resource.path.iterdir()))
        for fraction in self.progress:
            context.progress.report(fraction)

        if isinstance(self.behaviour, BaseException):
            raise self.behaviour
        if callable(self.behaviour) and not isinstance(self.behaviour, (Success, Failure)):
            return self.behaviour(plan, context)
        return self.behaviour


def local_ok(data: bytes = MP4_BYTES, **kwargs) -> FakeBackend:
    return FakeBackend(BackendKind.LOCAL_PROCESS, Success(data), **kwargs)


def local_fail(kind: FailureKind = FailureKind.NONZERO_EXIT, message: str = "Invalid data found") -> FakeBackend:
    return FakeBackend(BackendKind.LOCAL_PROCESS, Failure(kind, message))


def embedded_ok(data: bytes = MP4_BYTES, **kwargs) -> FakeBackend:
    return FakeBackend(BackendKind.EMBEDDED_ENGINE, Success(data), **kwargs)


def embedded_fail(kind: FailureKind = FailureKind.ENGINE_ERROR, message: str = "Encoder rejected the parameters") -> FakeBackend:
    return FakeBackend(BackendKind.EMBEDDED_ENGINE, Failure(kind, message))


class CountingResourceManager(TempResourceManager):
    """TempResourceManager that records acquire/release calls."""

    def __init__(self, scratch_root: str, clock: Optional[Callable[[], float]] = None):
        if clock is None:
            super().__init__(scratch_root)
        else:
            super().__init__(scratch_root, clock=clock)
        self.acquired = []
        self.released = []

    def acquire(self, job_id: str, operation: str):
        resource = super().acquire(job_id, operation)
        self.acquired.append(resource)
        return resource

    def release(self, resource) -> None:
        self.released.append(resource)
        super().release(resource)


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture
def scratch_root(tmp_path) -> Path:
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def resources(scratch_root) -> CountingResourceManager:
    return CountingResourceManager(str(scratch_root))


@pytest.fixture
def test_config(scratch_root):
    """
    Set a test configuration with a temp scratch root and no embedded engine.
    """
    config = MediaShiftConfig()
    config.transcoding.scratch_root = str(scratch_root)
    config.transcoding.max_concurrent_jobs = 2
    config.transcoding.stall_timeout = 30  # Shorter for tests
    config.transcoding.enable_embedded_engine = False
    config.logging.level = "WARNING"  # Less noise in tests

    set_config(config)
    yield config
    set_config(None)


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Writes synthetic test media to disk.
    Clips are encoded in memory with PyAV (see media.py), so no FFmpeg
    executable and no downloads are needed.
    """

    __test__ = False

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def generate(self, sample: str) -> Path:
        """Write one sample (see media.SAMPLES) and return its path."""
        filename, data, _ = sources_for(sample)[0]
        output_path = self.output_dir / filename
        if not output_path.exists():
            output_path.write_bytes(data)
        return output_path


@pytest.fixture(scope="session")
def media_generator(tmp_path_factory) -> TestMediaGenerator:
    """Session-scoped media generator."""
    return TestMediaGenerator(tmp_path_factory.mktemp("mediashift_test_media"))


@pytest.fixture(scope="session")
def quick_test_video(media_generator) -> Path:
    """One-second test pattern clip with a tone."""
    return media_generator.generate("mp4")


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg"):
        pytest.skip("FFmpeg not available")
