"""
Execution backend protocol shared by the local ffmpeg process and the
embedded libav engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .models import CommandPlan, ExecutionOutcome, ProgressReporter, StagingLayout
from .resources import TempResource


class BackendKind(str, Enum):
    LOCAL_PROCESS = "local_process"
    EMBEDDED_ENGINE = "embedded_engine"


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a backend needs besides the plan itself."""
    job_id: str
    layout: StagingLayout
    resource: TempResource
    progress: ProgressReporter


class Backend(Protocol):
    kind: BackendKind

    async def execute(self, plan: CommandPlan, context: ExecutionContext) -> ExecutionOutcome:
        ...
