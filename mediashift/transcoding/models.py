"""
Data models for the transcoding core.

Requests, plans and outcomes are immutable values; the only mutable object
here is ProgressReporter, which belongs to a single execution.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Mapping, Optional, Tuple, Union

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    COMPRESS_VIDEO = "compress-video"
    COMPRESS_AUDIO = "compress-audio"
    COMPRESS_WAV = "compress-wav"
    COMPRESS_GIF = "compress-gif"
    CONVERT_VIDEO = "convert-video"
    CONVERT_AUDIO = "convert-audio"
    EXTRACT_AUDIO = "extract-audio"
    VIDEO_TO_GIF = "video-to-gif"
    GIF_TO_VIDEO = "gif-to-video"
    IMAGE_SEQUENCE_TO_GIF = "image-sequence-to-gif"
    RASTER_CONVERT = "raster-convert"


@dataclass(frozen=True)
class SourceFile:
    """One uploaded file."""
    filename: str
    data: bytes
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[-1].lower()


@dataclass(frozen=True)
class TranscodeRequest:
    """A single inbound conversion request. Never mutated after creation."""
    operation: str
    sources: Tuple[SourceFile, ...]
    options: Mapping[str, str] = field(default_factory=dict)

    @property
    def source(self) -> SourceFile:
        return self.sources[0]

    @property
    def total_size(self) -> int:
        return sum(s.size for s in self.sources)


class _Ref(str, Enum):
    """Symbolic file references, resolved only when a plan is serialised."""
    INPUT = "<input>"
    OUTPUT = "<output>"


INPUT = _Ref.INPUT
OUTPUT = _Ref.OUTPUT


class DirectiveStage(int, Enum):
    """Fixed precedence of directive groups inside a plan."""
    GLOBAL = 0
    INPUT = 1
    CODEC = 2
    QUALITY = 3
    FILTER = 4
    OUTPUT = 5


@dataclass(frozen=True)
class Directive:
    """A single encoder flag with an optional value."""
    flag: Optional[str]
    value: Union[str, _Ref, None]
    stage: DirectiveStage

    def to_args(self, input_ref: str, output_ref: str) -> List[str]:
        args: List[str] = []
        if self.flag is not None:
            args.append(self.flag)
        if self.value is INPUT:
            args.append(input_ref)
        elif self.value is OUTPUT:
            args.append(output_ref)
        elif self.value is not None:
            args.append(self.value)
        return args


@dataclass(frozen=True)
class CommandPlan:
    """
    Ordered encoder directives for one job.

    Stages must be non-decreasing; later flags may override earlier ones in
    ffmpeg's argument grammar, so a plan is never reordered after it is built.
    """
    operation: OperationKind
    directives: Tuple[Directive, ...]
    output_extension: str
    output_mime_type: str

    def __post_init__(self):
        previous = DirectiveStage.GLOBAL
        for directive in self.directives:
            if directive.stage < previous:
                raise ConfigurationError(
                    f"Directive {directive.flag!r} ({directive.stage.name}) emitted after "
                    f"{previous.name} stage for {self.operation.value}"
                )
            previous = directive.stage

        outputs = [d for d in self.directives if d.value is OUTPUT]
        if len(outputs) != 1 or self.directives[-1].value is not OUTPUT:
            raise ConfigurationError(
                f"Plan for {self.operation.value} must end with exactly one output reference"
            )

    def to_args(self, input_ref: str, output_ref: str) -> List[str]:
        """Flatten the plan into an argument list (without the program name)."""
        args: List[str] = []
        for directive in self.directives:
            args.extend(directive.to_args(input_ref, output_ref))
        return args

    def flags(self) -> List[str]:
        return [d.flag for d in self.directives if d.flag is not None]

    def value_of(self, flag: str) -> Optional[str]:
        """Value of the last directive carrying `flag`, if any."""
        for directive in reversed(self.directives):
            if directive.flag == flag:
                value = directive.value
                return value.value if isinstance(value, _Ref) else value
        return None

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags()


@dataclass(frozen=True)
class StagingLayout:
    """Backend-independent file names for one job."""
    inputs: Tuple[Tuple[str, bytes], ...]
    input_ref: str
    output_name: str

    @property
    def input_names(self) -> List[str]:
        return [name for name, _ in self.inputs]


class FailureKind(str, Enum):
    SPAWN_FAILED = "spawn_failed"
    NONZERO_EXIT = "nonzero_exit"
    NO_OUTPUT = "no_output"
    INVALID_OUTPUT = "invalid_output"
    TIMEOUT = "timeout"
    STALLED = "stalled"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    ENGINE_ERROR = "engine_error"
    EXCEPTION = "exception"


@dataclass(frozen=True)
class Success:
    data: bytes

    @property
    def byte_length(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str


ExecutionOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class ProgressEvent:
    fraction: float


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """
    Clamps progress to [0, 1] and drops regressions so listeners only ever
    see a non-decreasing sequence. Callback errors are logged, not raised.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._fraction = 0.0
        self._started = False

    @property
    def fraction(self) -> float:
        return self._fraction

    def report(self, fraction: float) -> None:
        fraction = min(1.0, max(0.0, fraction))
        if self._started and fraction <= self._fraction:
            return
        self._started = True
        self._fraction = fraction
        if self._callback:
            try:
                self._callback(ProgressEvent(fraction))
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")

    def child(self) -> "ProgressReporter":
        """A reporter for one execution that feeds this one."""
        return ProgressReporter(lambda event: self.report(event.fraction))


@dataclass(frozen=True)
class TranscodeResult:
    """Final value handed back to the caller."""
    data: bytes
    mime_type: str
    filename: str
    original_size: int
    output_size: int

    @property
    def size_change_percent(self) -> float:
        if self.original_size == 0:
            return 0.0
        return round((self.output_size - self.original_size) / self.original_size * 100, 1)
