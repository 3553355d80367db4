from .video_record import VideoRecord, make_video_key
from .media import VideoMetadata, SpriteConfig
from .proxy_job import JobStatus, ProxyJob, QueueStatus
from .scan import ScanStatus, ScanPhase, ScanSession, ScanProgress, ScanResult
from .selection import Selection
