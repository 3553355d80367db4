from .file_system import DirectoryWalker, validate_root, is_video_file
from .fingerprint import compute_fingerprint
from .media_probe import MediaProbe
from .manager import ScanOrchestrator, ConcurrencyLimiter
