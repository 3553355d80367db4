from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ScanStatus(str, Enum):
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


class ScanPhase(str, Enum):
    COUNTING = "counting"
    PROCESSING = "processing"
    DONE = "done"


class ScanSession(BaseModel):
    """One invocation of the orchestrator over a root path."""
    id: str
    root_path: str
    status: ScanStatus = ScanStatus.SCANNING
    videos_found: int = 0
    started_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None


class ScanProgress(BaseModel):
    """
    Progress event published while a scan runs.
    During counting only total_videos moves; during processing the
    processed/skipped/failed counters do.
    """
    scan_id: str
    phase: ScanPhase
    total_videos: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    current_file: str = ""
    message: str = ""


class ScanResult(BaseModel):
    """Final tallies returned by ScanOrchestrator.run_scan()."""
    session: ScanSession
    total_videos: int = 0
    videos_processed: int = 0
    videos_skipped: int = 0
    videos_failed: int = 0

    @property
    def videos_found(self) -> int:
        return self.videos_processed + self.videos_skipped
