"""
Transcoding core for MediaShift.
Command planning, scratch management, execution backends and job control.
"""

from .models import (
    OperationKind,
    SourceFile,
    TranscodeRequest,
    TranscodeResult,
    CommandPlan,
    Directive,
    DirectiveStage,
    StagingLayout,
    FailureKind,
    Success,
    Failure,
    ProgressEvent,
    ProgressReporter,
)
from .operations import OPERATIONS, OperationSpec, OptionSpec, get_operation
from .commands import CommandBuilder
from .resources import TempResource, TempResourceManager, build_layout
from .backends import Backend, BackendKind, ExecutionContext
from .engine import LocalProcessBackend
from .embedded import EmbeddedEngine, EmbeddedEngineBackend, EngineInvocation
from .controller import JobState, JobTrace, TranscodeController
from .packager import pack
from .validation import validate_output

__all__ = [
    # Models
    "OperationKind",
    "SourceFile",
    "TranscodeRequest",
    "TranscodeResult",
    "CommandPlan",
    "Directive",
    "DirectiveStage",
    "StagingLayout",
    "FailureKind",
    "Success",
    "Failure",
    "ProgressEvent",
    "ProgressReporter",
    # Operations
    "OPERATIONS",
    "OperationSpec",
    "OptionSpec",
    "get_operation",
    # Classes
    "CommandBuilder",
    "TempResource",
    "TempResourceManager",
    "build_layout",
    "Backend",
    "BackendKind",
    "ExecutionContext",
    "LocalProcessBackend",
    "EmbeddedEngine",
    "EmbeddedEngineBackend",
    "EngineInvocation",
    # Control
    "JobState",
    "JobTrace",
    "TranscodeController",
    "pack",
    "validate_output",
]
