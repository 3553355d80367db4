import hashlib
import os
from pydantic import BaseModel, Field
from typing import Optional


def make_video_key(path: str) -> str:
    """Stable record key: a pure function of the absolute path."""
    return hashlib.md5(os.path.abspath(path).encode()).hexdigest()


class VideoRecord(BaseModel):
    """
    Represents a single indexed video file in the catalog.
    Upserted by key on every scan pass that (re)processes the file.
    """
    key: str = Field(..., description="MD5 of the absolute file path")
    path: str = Field(..., description="Absolute path to the video file")
    name: str = Field(..., description="File name without directory")
    size: int = Field(0, description="File size in bytes")
    duration: float = Field(0.0, description="Duration in seconds")
    width: Optional[int] = None
    height: Optional[int] = None
    created_at: str = Field(..., description="ISO-8601 creation time of the source file")
    directory: str = Field(..., description="Containing directory")

    # Change detection
    fingerprint: Optional[str] = None
    source_mtime: Optional[str] = None
    scanned_at: Optional[str] = None

    # Derived assets
    has_proxy: bool = False
    has_sprite: bool = False
    proxy_path: Optional[str] = None
    sprite_path: Optional[str] = None
    thumbnail_path: Optional[str] = None

    class Config:
        extra = "ignore"  # Robustness against schema drift
