from typing import Optional
from pydantic import BaseModel


class VideoMetadata(BaseModel):
    """Probe result for a single video file."""
    duration: float = 0.0
    width: Optional[int] = None
    height: Optional[int] = None
    codec: str = "unknown"
    frame_rate: float = 30.0
    bit_rate: int = 0


class SpriteConfig(BaseModel):
    """
    Layout of a hover-scrub sprite sheet.
    Not persisted on its own; it describes the generated image.
    """
    width: int          # Width of each tile
    height: int         # Height of each tile
    columns: int        # Tiles per row
    rows: int           # Total rows
    interval: float     # Seconds between consecutive tiles
    total_frames: int   # Tiles actually filled
