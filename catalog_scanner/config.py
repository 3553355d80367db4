import os
import json
import logging
from typing import Any, Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# ==============================================================================
# CONSTANTS & PATHS
# ==============================================================================

# Hidden per-root data directory. Everything derived from a scan lives here
# so the catalog travels with the footage.
DATA_DIR_NAME = ".vcb-data"
DATABASE_FILE_NAME = "catalog.db"
PROXY_DIR_NAME = "proxies"
SETTINGS_FILE_NAME = "settings.json"
LOG_FILE_NAME = "scanner.log"

# Video file extensions to scan for (matched case-insensitively).
VIDEO_EXTENSIONS = ('.mov', '.mp4', '.m4v', '.avi', '.mkv', '.webm')

# OS / tooling artifact folders that are never descended into.
# Anything starting with "." is skipped as well (see file_system.should_skip).
SKIP_DIR_NAMES = frozenset({
    "node_modules",
    "__MACOSX",
    ".Trash",
    ".Spotlight-V100",
    ".fseventsd",
})

# Fingerprint reads at most this many bytes from the start of a file.
FINGERPRINT_PREFIX_BYTES = 64 * 1024

# ==============================================================================
# SETTINGS MODEL
# ==============================================================================

class ScannerSettings(BaseSettings):
    """
    Tunables for scanning and asset generation.
    Loads from env vars (VCB_*) or defaults; a settings.json inside the
    data directory is merged in by load_settings().
    """
    scan_concurrency: int = Field(4, ge=1)
    progress_buffer: int = Field(256, ge=1)

    ffmpeg_path: str = Field("ffmpeg")
    ffprobe_path: str = Field("ffprobe")

    thumbnail_width: int = Field(384)
    thumbnail_quality: int = Field(5)

    sprite_tile_width: int = Field(160)
    sprite_tile_height: int = Field(90)

    proxy_height: int = Field(360)
    proxy_fps: int = Field(10)
    proxy_codec: str = Field("libx265")
    proxy_crf: int = Field(28)
    proxy_preset: str = Field("fast")
    proxy_audio_bitrate: str = Field("96k")

    class Config:
        env_prefix = "VCB_"
        extra = "ignore"


def load_settings(settings_file: Optional[str] = None, **overrides: Any) -> ScannerSettings:
    """
    Build settings from defaults, the environment, the optional JSON file
    and explicit keyword overrides (later sources win).
    Keys starting with "_" in the file are comments and are dropped.
    """
    file_data: Dict[str, Any] = {}
    if settings_file and os.path.exists(settings_file):
        try:
            with open(settings_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if isinstance(raw, dict):
                file_data = {k: v for k, v in raw.items() if not k.startswith("_")}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Could not read {settings_file}: {e}")

    file_data.update(overrides)
    # Init kwargs take precedence over VCB_* env vars in pydantic-settings.
    return ScannerSettings(**file_data)


# ==============================================================================
# PER-ROOT LAYOUT
# ==============================================================================

class CatalogPaths:
    """Resolves where a scanned root keeps its database and derived assets."""

    def __init__(self, root: str):
        self.root = os.path.abspath(os.path.expanduser(root))

    @property
    def data_dir(self) -> str:
        return os.path.join(self.root, DATA_DIR_NAME)

    @property
    def database_file(self) -> str:
        return os.path.join(self.data_dir, DATABASE_FILE_NAME)

    @property
    def proxy_dir(self) -> str:
        return os.path.join(self.data_dir, PROXY_DIR_NAME)

    @property
    def settings_file(self) -> str:
        return os.path.join(self.data_dir, SETTINGS_FILE_NAME)

    @property
    def log_file(self) -> str:
        return os.path.join(self.data_dir, LOG_FILE_NAME)

    def ensure_directories(self) -> None:
        for d in [self.data_dir, self.proxy_dir]:
            if not os.path.exists(d):
                os.makedirs(d, exist_ok=True)

    def thumbnail_path(self, key: str) -> str:
        return os.path.join(self.proxy_dir, f"{key}_thumb.jpg")

    def sprite_path(self, key: str) -> str:
        return os.path.join(self.proxy_dir, f"{key}_sprite.jpg")

    def proxy_path(self, key: str) -> str:
        return os.path.join(self.proxy_dir, f"{key}_proxy.mp4")
