import asyncio
import os
import stat
import sys

import pytest

from catalog_scanner.config import CatalogPaths
from catalog_scanner.core.video_processor import GeneratedAssets, PreviewAssets, compute_sprite_config
from catalog_scanner.database.sqlite_store import CatalogStore
from catalog_scanner.exceptions import AssetGenerationError, ProbeError
from catalog_scanner.models.media import VideoMetadata
from catalog_scanner.models.video_record import VideoRecord, make_video_key


@pytest.fixture
def store(tmp_path):
    """A file-backed catalog store in a throwaway data directory."""
    s = CatalogStore(str(tmp_path / "store" / "catalog.db"))
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def library(tmp_path):
    """An empty root directory to scan."""
    root = tmp_path / "library"
    root.mkdir()
    return root


def write_video(path, content=b"fake video data"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def make_record(path, **overrides):
    path = os.path.abspath(str(path))
    fields = dict(
        key=make_video_key(path),
        path=path,
        name=os.path.basename(path),
        size=100,
        duration=60.0,
        width=1920,
        height=1080,
        created_at="2024-01-01T00:00:00.000Z",
        directory=os.path.dirname(path),
        fingerprint="abc",
    )
    fields.update(overrides)
    return VideoRecord(**fields)


def make_tool(directory, name, body):
    """Write an executable Python script that stands in for ffmpeg/ffprobe."""
    path = os.path.join(str(directory), name)
    with open(path, "w") as f:
        f.write(f"#!{sys.executable}\n")
        f.write(body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeProbe:
    """MediaProbe stand-in that records calls and peak concurrency."""

    def __init__(self, duration=12.0, fail_on=(), delay=0.01):
        self.duration = duration
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.peak = 0

    async def probe(self, path):
        self.calls.append(path)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if os.path.basename(path) in self.fail_on:
                raise ProbeError(f"ffprobe exited with code 1: {path}")
            return VideoMetadata(duration=self.duration, width=1280, height=720, codec="h264")
        finally:
            self.active -= 1


class FakeGenerator:
    """AssetGenerator stand-in; fails for the file names / keys it is told to."""

    def __init__(self, fail_names=(), fail_keys=(), proxy_steps=(10, 50, 90)):
        self.fail_names = set(fail_names)
        self.fail_keys = set(fail_keys)
        self.proxy_steps = proxy_steps
        self.preview_calls = []
        self.all_calls = []
        self.active = 0
        self.peak = 0

    async def generate_previews(self, key, input_path, paths, duration):
        self.preview_calls.append(input_path)
        await asyncio.sleep(0)
        if os.path.basename(input_path) in self.fail_names:
            raise AssetGenerationError("ffmpeg sprite sheet exited with code 1: broken")
        return PreviewAssets(
            thumbnail_path=paths.thumbnail_path(key),
            sprite_path=paths.sprite_path(key),
            sprite_config=compute_sprite_config(duration),
        )

    async def generate_all(self, key, input_path, paths, duration, on_progress=None):
        self.all_calls.append(key)
        self.active += 1
        self.peak = max(self.peak, self.active)
        report = on_progress or (lambda stage, pct: None)
        try:
            report("all", 0)
            await asyncio.sleep(0)
            report("thumbnail", 100)
            for pct in self.proxy_steps:
                report("proxy", pct)
                await asyncio.sleep(0)
            if key in self.fail_keys:
                raise AssetGenerationError("ffmpeg proxy exited with code 1: encoder error")
            report("sprite", 100)
            report("proxy", 100)
            return GeneratedAssets(
                proxy_path=paths.proxy_path(key),
                sprite_path=paths.sprite_path(key),
                thumbnail_path=paths.thumbnail_path(key),
                sprite_config=compute_sprite_config(duration),
            )
        finally:
            self.active -= 1


@pytest.fixture
def paths(library):
    return CatalogPaths(str(library))
