import json
import logging
from typing import Any, Dict, Optional

from ..config import ScannerSettings
from ..core.process_runner import run_process
from ..exceptions import ProbeError, ProcessStartError
from ..models.media import VideoMetadata

logger = logging.getLogger(__name__)

DEFAULT_FRAME_RATE = 30.0


def parse_frame_rate(value: Optional[str]) -> float:
    """
    Parse an ffprobe rate such as "30000/1001" or "25".
    Missing, malformed or zero-denominator values fall back to 30.
    """
    if not value:
        return DEFAULT_FRAME_RATE
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            den_f = float(den)
            if den_f == 0:
                return DEFAULT_FRAME_RATE
            rate = float(num) / den_f
        else:
            rate = float(value)
    except (TypeError, ValueError):
        return DEFAULT_FRAME_RATE
    return rate if rate > 0 else DEFAULT_FRAME_RATE


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(raw: Dict[str, Any]) -> VideoMetadata:
    """Build VideoMetadata from ffprobe's -show_format -show_streams JSON."""
    streams = raw.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    fmt = raw.get("format") or {}

    # Safe extraction with defaults
    return VideoMetadata(
        duration=_as_float(fmt.get("duration")),
        width=_as_int(video.get("width")) if video else None,
        height=_as_int(video.get("height")) if video else None,
        codec=(video.get("codec_name") if video else None) or "unknown",
        frame_rate=parse_frame_rate(video.get("r_frame_rate") if video else None),
        bit_rate=_as_int(fmt.get("bit_rate")) or 0,
    )


class MediaProbe:
    """
    Asynchronous wrapper around ffprobe.
    """
    def __init__(self, settings: Optional[ScannerSettings] = None):
        self.settings = settings or ScannerSettings()

    def build_command(self, filepath: str) -> list:
        return [
            self.settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            filepath,
        ]

    async def probe(self, filepath: str) -> VideoMetadata:
        """
        Extract duration, dimensions, codec, frame rate and bit rate.
        Raises ProbeError on any failure.
        """
        logger.debug(f"🔍 Probing {filepath}")
        try:
            result = await run_process(self.build_command(filepath))
        except ProcessStartError as e:
            raise ProbeError(str(e)) from e

        if result.returncode != 0:
            raise ProbeError(f"ffprobe exited with code {result.returncode}: {result.stderr.strip()}")

        try:
            raw = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output for {filepath}: {e}") from e
        if not isinstance(raw, dict):
            raise ProbeError(f"Unexpected ffprobe output for {filepath}")

        return parse_probe_output(raw)
