from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)


class ProxyJob(BaseModel):
    """One queued regeneration of a video's thumbnail, sprite and proxy."""
    id: str
    video_key: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(0, ge=0, le=100)
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None

    class Config:
        extra = "ignore"


class QueueStatus(BaseModel):
    """Snapshot of the proxy queue for status displays."""
    is_processing: bool = False
    current_job: Optional[ProxyJob] = None
    queue: List[ProxyJob] = Field(default_factory=list)
    completed: int = 0
    failed: int = 0
    total: int = 0
