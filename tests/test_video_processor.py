import asyncio
import os
import time

import pytest

from catalog_scanner.config import CatalogPaths, ScannerSettings
from catalog_scanner.core.video_processor import (
    AssetGenerator,
    WeightedProgress,
    compute_sprite_config,
    parse_progress_line,
    thumbnail_timestamp,
)
from catalog_scanner.exceptions import AssetGenerationError, OutputMissingError

from conftest import make_tool

# Writes its last argument as the output file; prints -progress lines for proxies.
FAKE_FFMPEG = """
import sys, time
args = sys.argv[1:]
out = args[-1]
if "-progress" in args:
    for us in (2500000, 5000000, 10000000):
        print(f"out_time_us={us}")
        print("progress=continue", flush=True)
    print("progress=end")
open(out, "wb").write(b"asset")
"""


def _generator(tool):
    return AssetGenerator(ScannerSettings(ffmpeg_path=tool))


# --- Sprite sizing ---

def test_sprite_config_short_video():
    cfg = compute_sprite_config(30)
    assert (cfg.columns, cfg.rows) == (10, 3)
    assert cfg.total_frames == 30
    assert cfg.interval == pytest.approx(1.0)
    assert (cfg.width, cfg.height) == (160, 90)


def test_sprite_config_short_video_partial_row():
    cfg = compute_sprite_config(45.5)
    assert (cfg.columns, cfg.rows) == (10, 5)
    assert cfg.total_frames == 46
    assert cfg.interval == pytest.approx(45.5 / 46)


def test_sprite_config_two_minutes():
    cfg = compute_sprite_config(120)
    assert (cfg.columns, cfg.rows) == (10, 10)
    assert cfg.total_frames == 40
    assert cfg.interval == pytest.approx(3.0)


def test_sprite_config_one_hour():
    cfg = compute_sprite_config(3600)
    assert (cfg.columns, cfg.rows) == (20, 10)
    assert cfg.total_frames == 120
    assert cfg.interval == pytest.approx(30.0)


def test_sprite_config_caps_frames_at_grid_size():
    cfg = compute_sprite_config(7200)
    assert cfg.total_frames == 200
    assert cfg.interval == pytest.approx(36.0)


def test_sprite_config_tier_boundaries():
    assert compute_sprite_config(60).rows == 6
    assert compute_sprite_config(300).columns == 10
    assert compute_sprite_config(1800).columns == 15


@pytest.mark.parametrize("duration", [0, -5])
def test_sprite_config_rejects_non_positive_duration(duration):
    with pytest.raises(ValueError):
        compute_sprite_config(duration)


def test_thumbnail_timestamp():
    assert thumbnail_timestamp(20) == pytest.approx(2.0)
    assert thumbnail_timestamp(600) == pytest.approx(5.0)


# --- Progress ---

def test_parse_progress_line():
    assert parse_progress_line("out_time_us=5000000", 10) == 50
    assert parse_progress_line("out_time_ms=2500000", 10) == 25
    assert parse_progress_line("out_time_us=99000000", 10) == 100
    assert parse_progress_line("frame=120", 10) is None
    assert parse_progress_line("out_time_us=5000000", 0) is None


def test_weighted_progress_combines_stages():
    wp = WeightedProgress()
    assert wp.update("thumbnail", 50) == 0  # only counts when finished
    assert wp.update("proxy", 50) == 40
    assert wp.update("thumbnail", 100) == 45
    assert wp.update("sprite", 100) == 60
    assert wp.update("proxy", 10) == 60  # never decreases
    assert wp.update("proxy", 100) == 100
    assert wp.update("all", 0) == 100


def test_weighted_progress_is_monotonic():
    wp = WeightedProgress()
    seen = [wp.update(stage, pct) for stage, pct in [
        ("proxy", 30), ("proxy", 20), ("sprite", 100), ("proxy", 25), ("thumbnail", 100), ("proxy", 90),
    ]]
    assert seen == sorted(seen)


# --- Command builders ---

def test_proxy_command_defaults():
    cmd = AssetGenerator(ScannerSettings()).proxy_command("in.mov", "out.mp4")
    assert cmd[-1] == "out.mp4"
    assert "scale=-2:360,fps=10" in cmd
    assert cmd[cmd.index("-c:v") + 1] == "libx265"
    assert cmd[cmd.index("-crf") + 1] == "28"
    assert cmd[cmd.index("-tag:v") + 1] == "hvc1"
    assert cmd[cmd.index("-b:a") + 1] == "96k"
    assert "+faststart" in cmd
    assert cmd[cmd.index("-progress") + 1] == "pipe:1"


def test_proxy_command_without_hevc_has_no_tag():
    cmd = AssetGenerator(ScannerSettings(proxy_codec="libx264")).proxy_command("in.mov", "out.mp4")
    assert "-tag:v" not in cmd


def test_sprite_command_tiles_grid():
    gen = AssetGenerator(ScannerSettings())
    cmd = gen.sprite_command("in.mov", "sprite.jpg", 30, compute_sprite_config(30))
    vf = cmd[cmd.index("-vf") + 1]
    assert vf.startswith("fps=1/1,")
    assert "tile=10x3" in vf
    assert "pad=160:90" in vf


def test_thumbnail_command():
    cmd = AssetGenerator(ScannerSettings()).thumbnail_command("in.mov", "t.jpg", 2.0)
    assert cmd[cmd.index("-ss") + 1] == "2.000"
    assert "scale=384:-1" in cmd


# --- Running a stand-in ffmpeg ---

def test_generate_proxy_reports_progress(tmp_path):
    gen = _generator(make_tool(tmp_path, "ffmpeg", FAKE_FFMPEG))
    out = str(tmp_path / "p.mp4")
    seen = []
    asyncio.run(gen.generate_proxy("in.mov", out, 10.0, seen.append))
    assert seen == [25, 50, 100]
    assert os.path.exists(out)


def test_exit_zero_without_output_raises(tmp_path):
    gen = _generator(make_tool(tmp_path, "ffmpeg", "pass\n"))
    with pytest.raises(OutputMissingError):
        asyncio.run(gen.generate_thumbnail("in.mov", str(tmp_path / "t.jpg"), 1.0))


def test_stale_output_does_not_count_as_success(tmp_path):
    gen = _generator(make_tool(tmp_path, "ffmpeg", "pass\n"))
    stale = tmp_path / "t.jpg"
    stale.write_bytes(b"left over from an earlier run")
    with pytest.raises(OutputMissingError):
        asyncio.run(gen.generate_thumbnail("in.mov", str(stale), 1.0))
    assert not stale.exists()


def test_nonzero_exit_carries_stderr(tmp_path):
    tool = make_tool(tmp_path, "ffmpeg", "import sys\nsys.stderr.write('Invalid data found')\nsys.exit(1)\n")
    gen = _generator(tool)
    with pytest.raises(AssetGenerationError, match="Invalid data found") as exc:
        asyncio.run(gen.generate_thumbnail("in.mov", str(tmp_path / "t.jpg"), 1.0))
    assert not isinstance(exc.value, OutputMissingError)


def test_missing_ffmpeg_raises_generation_error(tmp_path):
    gen = _generator(str(tmp_path / "no-ffmpeg"))
    with pytest.raises(AssetGenerationError):
        asyncio.run(gen.generate_thumbnail("in.mov", str(tmp_path / "t.jpg"), 1.0))


def test_generate_previews_writes_both_assets(tmp_path):
    gen = _generator(make_tool(tmp_path, "ffmpeg", FAKE_FFMPEG))
    paths = CatalogPaths(str(tmp_path / "lib"))
    previews = asyncio.run(gen.generate_previews("k1", "in.mov", paths, 30.0))
    assert previews.thumbnail_path == paths.thumbnail_path("k1")
    assert os.path.exists(previews.thumbnail_path)
    assert os.path.exists(previews.sprite_path)
    assert previews.sprite_config.total_frames == 30


def test_generate_previews_first_error_cancels_sibling(tmp_path):
    # The sprite run fails at once; the thumbnail run would sleep for a long time.
    body = (
        "import sys, time\n"
        "args = ' '.join(sys.argv)\n"
        "if 'tile=' in args:\n"
        "    sys.stderr.write('sprite failed')\n"
        "    sys.exit(1)\n"
        "time.sleep(30)\n"
        "open(sys.argv[-1], 'wb').write(b'x')\n"
    )
    gen = _generator(make_tool(tmp_path, "ffmpeg", body))
    paths = CatalogPaths(str(tmp_path / "lib"))

    start = time.monotonic()
    with pytest.raises(AssetGenerationError, match="sprite failed"):
        asyncio.run(gen.generate_previews("k1", "in.mov", paths, 30.0))
    assert time.monotonic() - start < 15
    assert not os.path.exists(paths.thumbnail_path("k1"))


def test_generate_all_reports_every_stage(tmp_path):
    gen = _generator(make_tool(tmp_path, "ffmpeg", FAKE_FFMPEG))
    paths = CatalogPaths(str(tmp_path / "lib"))
    events = []
    assets = asyncio.run(gen.generate_all("k1", "in.mov", paths, 10.0, lambda s, p: events.append((s, p))))

    assert events[0] == ("all", 0)
    assert ("thumbnail", 100) in events
    assert ("sprite", 100) in events
    assert ("proxy", 50) in events
    assert events.count(("proxy", 100)) >= 1
    for path in (assets.proxy_path, assets.sprite_path, assets.thumbnail_path):
        assert os.path.exists(path)

    wp = WeightedProgress()
    assert [wp.update(s, p) for s, p in events][-1] == 100
