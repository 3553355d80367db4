# Catalog Scanner Core Package

from .events import ProgressStream
from .process_runner import run_process, gather_first_error
from .video_processor import AssetGenerator, compute_sprite_config, WeightedProgress, ffmpeg_available
from .proxy_queue import ProxyQueue
from .maintenance import purge_directory, clear_cache
