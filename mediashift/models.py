"""
Pydantic response models for the MediaShift HTTP API
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from .jobs import JobStatus


class ErrorResponse(BaseModel):
    error: str
    detail: str


class OptionInfo(BaseModel):
    allowed: str
    default: Optional[str] = None
    required: bool = False


class FileLimits(BaseModel):
    min: int = 1
    max: int = 1


class OperationInfo(BaseModel):
    operation: str
    description: str
    supported_formats: List[str]
    max_size_mb: int
    files: FileLimits
    parameters: Dict[str, OptionInfo] = Field(default_factory=dict)


class OperationsResponse(BaseModel):
    operations: List[OperationInfo]


class JobStatusResponse(BaseModel):
    job_id: str
    operation: str
    filename: str
    status: JobStatus
    progress: float = 0.0
    original_size: int = 0
    output_size: Optional[int] = None
    error: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    current_jobs: int = 0


class EngineInfo(BaseModel):
    enabled: bool
    loaded: bool


class CapabilitiesResponse(BaseModel):
    ffmpeg_path: Optional[str] = None
    embedded_engine: EngineInfo
    operations: List[str]


class StatsResponse(BaseModel):
    total_jobs_processed: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    active_jobs: int = 0
    total_bytes_in: int = 0
    total_bytes_out: int = 0
    average_processing_time: float = 0.0
    operations: Dict[str, int] = Field(default_factory=dict)
    uptime_seconds: float = 0.0


class WebSocketMessage(BaseModel):
    type: str
    job_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
