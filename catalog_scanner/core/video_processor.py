import logging
import math
import os
import re
import shutil
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..config import CatalogPaths, ScannerSettings
from ..exceptions import AssetGenerationError, OutputMissingError, ProcessStartError
from ..models.media import SpriteConfig
from .process_runner import gather_first_error, run_process

logger = logging.getLogger(__name__)

# (max duration in seconds, seconds per frame, columns, rows or None = derive)
SPRITE_TIERS = [
    (60, 1, 10, None),      # Short videos: 1 frame per second, up to 60 frames
    (300, 3, 10, 10),       # 1-5 min: a frame every 3 seconds
    (1800, 12, 15, 10),     # 5-30 min: a frame every 12 seconds
    (math.inf, 30, 20, 10), # Long videos: a frame every 30 seconds, max 200 frames
]

# Share of a job's progress owned by each stage. Proxy encoding dominates.
STAGE_WEIGHTS = {"thumbnail": 5, "sprite": 15, "proxy": 80}

_OUT_TIME_RE = re.compile(r"^out_time_(us|ms)=(\d+)$")

ProgressCallback = Callable[[str, int], None]


def thumbnail_timestamp(duration: float) -> float:
    """10% into the video, but never later than 5 seconds."""
    return max(0.0, min(duration * 0.1, 5.0))


def compute_sprite_config(duration: float, tile_width: int = 160, tile_height: int = 90) -> SpriteConfig:
    """
    Size the hover-scrub grid for a video of `duration` seconds.
    The cadence coarsens with length so the sheet stays bounded.
    """
    if duration <= 0:
        raise ValueError(f"Cannot build a sprite sheet for duration {duration}")

    for max_duration, step, columns, rows in SPRITE_TIERS:
        if duration <= max_duration:
            break
    if rows is None:
        rows = math.ceil(min(duration, 60) / columns)

    total_frames = min(math.ceil(duration / step), columns * rows)
    return SpriteConfig(
        width=tile_width,
        height=tile_height,
        columns=columns,
        rows=rows,
        interval=duration / total_frames,
        total_frames=total_frames,
    )


def sprite_sample_step(duration: float) -> int:
    """Seconds between sampled frames for the ffmpeg fps filter."""
    for max_duration, step, _, _ in SPRITE_TIERS:
        if duration <= max_duration:
            return step
    return SPRITE_TIERS[-1][1]


def parse_progress_line(line: str, duration: float) -> Optional[int]:
    """
    Turn an ffmpeg `-progress` line into a percentage of `duration`.
    Both out_time_us and out_time_ms carry microseconds.
    Returns None for lines that carry no position.
    """
    match = _OUT_TIME_RE.match(line.strip())
    if not match or duration <= 0:
        return None
    elapsed = int(match.group(2)) / 1_000_000
    return round(min(elapsed / duration * 100, 100))


class WeightedProgress:
    """
    Folds per-stage progress into one 0-100 score using STAGE_WEIGHTS.
    Thumbnail and sprite count only once finished; the proxy counts
    proportionally. The combined value never goes down.
    """

    def __init__(self, weights: Optional[Dict[str, int]] = None):
        self.weights = weights or STAGE_WEIGHTS
        self._stages: Dict[str, int] = {name: 0 for name in self.weights}
        self._value = 0

    def update(self, stage: str, percent: int) -> int:
        if stage not in self._stages:
            return self._value
        percent = max(0, min(100, int(percent)))
        if stage != "proxy" and percent < 100:
            percent = 0
        self._stages[stage] = max(self._stages[stage], percent)
        total = sum(self.weights[s] * p / 100 for s, p in self._stages.items())
        self._value = max(self._value, round(total))
        return self._value

    @property
    def value(self) -> int:
        return self._value


@dataclass
class PreviewAssets:
    thumbnail_path: str
    sprite_path: str
    sprite_config: SpriteConfig


@dataclass
class GeneratedAssets:
    proxy_path: str
    sprite_path: str
    thumbnail_path: str
    sprite_config: SpriteConfig


def ffmpeg_available(ffmpeg_path: str = "ffmpeg") -> bool:
    return shutil.which(ffmpeg_path) is not None


class AssetGenerator:
    """
    Produces thumbnail, sprite sheet and proxy files with ffmpeg.
    Each operation is its own process and its own failure domain.
    """

    def __init__(self, settings: Optional[ScannerSettings] = None):
        self.settings = settings or ScannerSettings()

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def thumbnail_command(self, input_path: str, output_path: str, timestamp: float) -> list:
        s = self.settings
        return [
            s.ffmpeg_path, "-y",
            "-ss", f"{timestamp:.3f}",
            "-i", input_path,
            "-vframes", "1",
            "-vf", f"scale={s.thumbnail_width}:-1",
            "-q:v", str(s.thumbnail_quality),
            "-loglevel", "error",
            output_path,
        ]

    def sprite_command(self, input_path: str, output_path: str, duration: float, cfg: SpriteConfig) -> list:
        s = self.settings
        w, h = cfg.width, cfg.height
        vf = (
            f"fps=1/{sprite_sample_step(duration)},"
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,"
            f"tile={cfg.columns}x{cfg.rows}"
        )
        return [
            s.ffmpeg_path, "-y",
            "-i", input_path,
            "-vf", vf,
            "-frames:v", "1",
            "-q:v", str(s.thumbnail_quality),
            "-loglevel", "error",
            output_path,
        ]

    def proxy_command(self, input_path: str, output_path: str) -> list:
        s = self.settings
        cmd = [
            s.ffmpeg_path, "-y",
            "-i", input_path,
            "-vf", f"scale=-2:{s.proxy_height},fps={s.proxy_fps}",
            "-c:v", s.proxy_codec,
            "-crf", str(s.proxy_crf),
            "-preset", s.proxy_preset,
        ]
        if s.proxy_codec in ("libx265", "hevc"):
            cmd += ["-tag:v", "hvc1"]  # Safari/iOS compatibility
        cmd += [
            "-g", "30",
            "-c:a", "aac",
            "-b:a", s.proxy_audio_bitrate,
            "-movflags", "+faststart",
            "-progress", "pipe:1",
            "-nostats",
            "-loglevel", "error",
            output_path,
        ]
        return cmd

    # ------------------------------------------------------------------
    # Single operations
    # ------------------------------------------------------------------

    async def _run_ffmpeg(self, label: str, cmd: list, output_path: str, on_line=None) -> None:
        # A file left by an earlier run must not pass the output check.
        try:
            os.remove(output_path)
        except FileNotFoundError:
            pass
        try:
            result = await run_process(cmd, on_stdout_line=on_line)
        except ProcessStartError as e:
            raise AssetGenerationError(str(e)) from e
        if result.returncode != 0:
            raise AssetGenerationError(
                f"ffmpeg {label} exited with code {result.returncode}: {result.stderr.strip()}"
            )
        # Exit code 0 is not proof of output.
        if not os.path.exists(output_path):
            raise OutputMissingError(f"{label.capitalize()} file not created at {output_path}")

    async def generate_thumbnail(self, input_path: str, output_path: str, timestamp: float) -> str:
        await self._run_ffmpeg("thumbnail", self.thumbnail_command(input_path, output_path, timestamp), output_path)
        return output_path

    async def generate_sprite_sheet(self, input_path: str, output_path: str, duration: float) -> SpriteConfig:
        cfg = compute_sprite_config(duration, self.settings.sprite_tile_width, self.settings.sprite_tile_height)
        await self._run_ffmpeg("sprite sheet", self.sprite_command(input_path, output_path, duration, cfg), output_path)
        return cfg

    async def generate_proxy(
        self,
        input_path: str,
        output_path: str,
        duration: float,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Encode the scrub/playback proxy, reporting percent done as ffmpeg streams progress."""
        def handle_line(line: str) -> None:
            pct = parse_progress_line(line, duration)
            if pct is not None and on_progress:
                on_progress(pct)

        await self._run_ffmpeg("proxy", self.proxy_command(input_path, output_path), output_path, handle_line)
        return output_path

    # ------------------------------------------------------------------
    # Combined operations
    # ------------------------------------------------------------------

    async def generate_previews(self, key: str, input_path: str, paths: CatalogPaths, duration: float) -> PreviewAssets:
        """Thumbnail + sprite in parallel, used during a scan."""
        paths.ensure_directories()
        thumb_path = paths.thumbnail_path(key)
        sprite_path = paths.sprite_path(key)
        _, cfg = await gather_first_error(
            self.generate_thumbnail(input_path, thumb_path, thumbnail_timestamp(duration)),
            self.generate_sprite_sheet(input_path, sprite_path, duration),
        )
        return PreviewAssets(thumbnail_path=thumb_path, sprite_path=sprite_path, sprite_config=cfg)

    async def generate_all(
        self,
        key: str,
        input_path: str,
        paths: CatalogPaths,
        duration: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GeneratedAssets:
        """
        Thumbnail, sprite and proxy in parallel, used by the proxy queue.
        `on_progress(stage, percent)` fires as each stage advances.
        """
        paths.ensure_directories()
        thumb_path = paths.thumbnail_path(key)
        sprite_path = paths.sprite_path(key)
        proxy_path = paths.proxy_path(key)

        def report(stage: str, pct: int) -> None:
            if on_progress:
                on_progress(stage, pct)

        async def thumbnail():
            await self.generate_thumbnail(input_path, thumb_path, thumbnail_timestamp(duration))
            report("thumbnail", 100)

        async def sprite():
            cfg = await self.generate_sprite_sheet(input_path, sprite_path, duration)
            report("sprite", 100)
            return cfg

        async def proxy():
            await self.generate_proxy(input_path, proxy_path, duration, lambda p: report("proxy", p))
            report("proxy", 100)

        report("all", 0)
        _, cfg, _ = await gather_first_error(thumbnail(), sprite(), proxy())
        logger.debug(f"🎬 Generated proxy assets for {os.path.basename(input_path)}")
        return GeneratedAssets(
            proxy_path=proxy_path,
            sprite_path=sprite_path,
            thumbnail_path=thumb_path,
            sprite_config=cfg,
        )
