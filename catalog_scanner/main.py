import argparse
import asyncio
import logging
import os
import sys

from .config import CatalogPaths, load_settings
from .core.events import ProgressStream
from .core.maintenance import clear_cache, purge_directory
from .core.proxy_queue import ProxyQueue
from .core.video_processor import AssetGenerator, ffmpeg_available
from .database import open_catalog
from .exceptions import CatalogError
from .models.scan import ScanPhase
from .scanner.file_system import validate_root
from .scanner.manager import ScanOrchestrator
from .utils import format_duration, format_file_size

logger = logging.getLogger("catalog_scanner")

LAST_ROOT_SETTING = "last_root"


def setup_logging(verbose: bool, log_file: str = None):
    """Sets up logging to the console and, if given, a file in the data directory."""
    log_level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )
    # Silence chatty libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(args_list=None):
    p = argparse.ArgumentParser(prog="catalog-scan", description="Video Catalog Scanner")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Index videos under a directory and build previews")
    scan.add_argument("root", help="Directory to scan")
    scan.add_argument("--concurrency", type=int, help="Files processed in parallel")
    scan.add_argument("--proxies", action="store_true", help="Queue proxies for every video still missing one after the scan")

    proxy = sub.add_parser("proxy", help="Generate playback proxies")
    proxy.add_argument("root", help="Scanned root directory")
    proxy.add_argument("keys", nargs="*", help="Video keys (default: every video without a proxy)")
    proxy.add_argument("--force", action="store_true", help="Regenerate even if a proxy exists")
    proxy.add_argument("--requeue-stuck", action="store_true", help="Re-queue jobs left in 'processing'")

    status = sub.add_parser("status", help="Show catalog and proxy queue status")
    status.add_argument("root", help="Scanned root directory")
    status.add_argument("--list", action="store_true", help="List indexed videos")
    status.add_argument("--sort", default="date-desc", help="Sort order for --list")
    status.add_argument("--favorites", action="store_true", help="List favorite videos with their notes")

    fav = sub.add_parser("favorite", help="Mark a video as favorite and attach notes")
    fav.add_argument("root", help="Scanned root directory")
    fav.add_argument("key", help="Video key")
    fav.add_argument("--off", action="store_true", help="Remove the favorite mark instead")
    fav.add_argument("--notes", help="Replace the notes for this video")

    purge = sub.add_parser("purge", help="Forget a directory's videos and delete their assets")
    purge.add_argument("root", help="Scanned root directory")
    purge.add_argument("directory", help="Directory whose entries should be removed")

    clear = sub.add_parser("clear-cache", help="Delete the catalog database and all assets")
    clear.add_argument("root", help="Scanned root directory")

    return p.parse_args(args_list)


def _print_progress(event):
    if event.phase == ScanPhase.COUNTING:
        print(f"\r  🔍 {event.total_videos} videos found...", end="", flush=True)
    elif event.phase == ScanPhase.PROCESSING:
        done = event.processed + event.skipped + event.failed
        print(f"\r  ⚙️  [{done}/{event.total_videos}] {event.current_file[:60]:<60}", end="", flush=True)
    else:
        print(f"\n  {event.message}")


async def _scan(root: str, args) -> int:
    paths = CatalogPaths(root)
    settings = load_settings(paths.settings_file, **({"scan_concurrency": args.concurrency} if args.concurrency else {}))
    store = open_catalog(root)
    try:
        store.set_setting(LAST_ROOT_SETTING, paths.root)
        orchestrator = ScanOrchestrator(store, settings=settings)
        stream = ProgressStream(settings.progress_buffer)

        async def consume():
            async for event in stream:
                _print_progress(event)

        printer = asyncio.create_task(consume())
        try:
            result = await orchestrator.run_scan(root, stream)
        finally:
            stream.close()
            await printer

        print(f"📊 Processed {result.videos_processed}, skipped {result.videos_skipped}, "
              f"failed {result.videos_failed} of {result.total_videos}")

        if args.proxies:
            queue = ProxyQueue(store, AssetGenerator(settings), paths)
            queue.enqueue(all_missing=True)
            await queue.join()
        return 0 if result.videos_failed == 0 else 1
    finally:
        store.close()


async def _proxy(args) -> int:
    paths = CatalogPaths(args.root)
    settings = load_settings(paths.settings_file)
    store = open_catalog(args.root)
    try:
        queue = ProxyQueue(store, AssetGenerator(settings), paths)
        if args.requeue_stuck:
            queue.requeue_stuck()
        if args.keys:
            added = queue.enqueue(args.keys, force=args.force)
        else:
            added = queue.enqueue(all_missing=True)
        print(f"📥 Queued {added} job(s)")
        await queue.join()
        await queue.drain()
        status = queue.status()
        print(f"✅ {status.completed} complete, {status.failed} failed, {status.total} total")
        return 0 if status.failed == 0 else 1
    finally:
        store.close()


def _status(args) -> int:
    store = open_catalog(args.root)
    try:
        videos = store.get_all_videos(args.sort)
        with_proxy = sum(1 for v in videos if v.has_proxy)
        total_size = sum(v.size for v in videos)
        print(f"📁 {CatalogPaths(args.root).root} (last scanned root: {store.get_setting(LAST_ROOT_SETTING) or 'never'})")
        print(f"🎞️  {len(videos)} videos ({format_file_size(total_size)}), {with_proxy} with proxy")

        q = store.get_queue_status()
        current = f", processing {q.current_job.video_key} ({q.current_job.progress}%)" if q.current_job else ""
        print(f"📋 Queue: {len(q.queue)} queued, {q.completed} complete, {q.failed} failed{current}")

        if args.list:
            for v in videos:
                flags = ("P" if v.has_proxy else "-") + ("S" if v.has_sprite else "-")
                print(f"  {flags} {format_duration(v.duration):>9} {format_file_size(v.size):>10}  {v.path}")

        if args.favorites:
            favorites = store.get_favorites()
            print(f"⭐ {len(favorites)} favorite(s)")
            for sel in favorites:
                video = store.get_video(sel.video_key)
                notes = f"  # {sel.notes}" if sel.notes else ""
                print(f"  {sel.video_key}  {video.path}{notes}")
        return 0
    finally:
        store.close()


def _favorite(args) -> int:
    store = open_catalog(args.root)
    try:
        if store.get_video(args.key) is None:
            print(f"❌ Unknown video key {args.key}")
            return 1
        sel = store.upsert_selection(args.key, not args.off, args.notes)
        mark = "⭐ Favorite" if sel.is_favorite else "☆ Not a favorite"
        print(f"{mark}: {store.get_video(args.key).name}")
        return 0
    finally:
        store.close()


def _purge(args) -> int:
    store = open_catalog(args.root)
    try:
        removed = purge_directory(store, args.directory)
        print(f"🧹 Removed {removed} videos")
        return 0
    finally:
        store.close()


def run_cli(args_list=None) -> int:
    args = parse_args(args_list)

    root = args.root
    log_file = CatalogPaths(root).log_file if os.path.isdir(root) and args.command != "clear-cache" else None
    setup_logging(args.verbose, log_file)

    if args.command in ("scan", "proxy") and not ffmpeg_available(load_settings().ffmpeg_path):
        logger.warning("⚠️ ffmpeg not found on PATH; preview generation will fail.")

    try:
        if args.command != "clear-cache":
            validate_root(root)
        if args.command == "scan":
            return asyncio.run(_scan(root, args))
        if args.command == "proxy":
            return asyncio.run(_proxy(args))
        if args.command == "status":
            return _status(args)
        if args.command == "purge":
            return _purge(args)
        if args.command == "favorite":
            return _favorite(args)
        if args.command == "clear-cache":
            return 0 if clear_cache(args.root) else 1
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted.")
        return 130
    except CatalogError as e:
        print(f"❌ Error: {e}")
        return 1
    return 2


def main():
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
