import logging
import os
import shutil
from typing import Optional

from ..config import DATA_DIR_NAME, PROXY_DIR_NAME, CatalogPaths
from ..database.sqlite_store import CatalogStore

logger = logging.getLogger(__name__)

ASSET_SUFFIXES = ("_thumb.jpg", "_sprite.jpg", "_proxy.mp4")


def is_safe_to_delete(path: str, expected_parent: str, suffixes=ASSET_SUFFIXES) -> bool:
    """Strict check to ensure the file is where we expect and named correctly."""
    abs_path = os.path.abspath(path)
    abs_parent = os.path.abspath(expected_parent)

    # Check if file is actually inside the expected directory
    if os.path.dirname(abs_path) != abs_parent:
        return False

    return os.path.basename(abs_path).lower().endswith(suffixes)


def _asset_dir_for(path: str) -> Optional[str]:
    """The proxies directory an asset should live in, or None if it is elsewhere."""
    parent = os.path.dirname(os.path.abspath(path))
    if os.path.basename(parent) != PROXY_DIR_NAME:
        return None
    if os.path.basename(os.path.dirname(parent)) != DATA_DIR_NAME:
        return None
    return parent


def remove_asset(path: Optional[str]) -> bool:
    """Delete one derived asset file. Returns True if something was removed."""
    if not path or not os.path.exists(path):
        return False
    parent = _asset_dir_for(path)
    if parent is None or not is_safe_to_delete(path, parent):
        logger.warning(f"⚠️ [Safety] Skipping unexpected file: {path}")
        return False
    try:
        os.remove(path)
    except OSError as e:
        logger.error(f"❌ Failed to delete {path}: {e}")
        return False
    return True


def purge_directory(store: CatalogStore, directory: str) -> int:
    """
    Remove every catalog record under `directory` together with its
    thumbnail, sprite sheet and proxy. Returns the number of records removed.
    """
    directory = os.path.abspath(os.path.expanduser(directory))
    logger.info(f"🧹 Purging catalog entries under {directory}...")

    removed = store.delete_videos_by_directory(directory)
    files = 0
    for video in removed:
        for asset in (video.thumbnail_path, video.sprite_path, video.proxy_path):
            if remove_asset(asset):
                files += 1

    logger.info(f"✅ Purge complete. Removed {len(removed)} videos and {files} asset files.")
    return len(removed)


def clear_cache(root: str) -> bool:
    """
    Delete the whole data directory of `root` (database and all assets).
    Close any open store on it first. Returns False if there was nothing to delete.
    """
    paths = CatalogPaths(root)
    data_dir = paths.data_dir

    if not os.path.isdir(data_dir):
        logger.info(f"ℹ️ No cache found at {data_dir}")
        return False

    if os.path.islink(data_dir):
        logger.error(f"❌ [Safety] {data_dir} is a symlink. Aborting cache clear.")
        return False
    # Double check that the data dir is one we created
    if not (os.path.isfile(paths.database_file) or os.path.isdir(paths.proxy_dir)):
        logger.error(f"❌ [Safety] {data_dir} holds no catalog database or proxies. Aborting cache clear.")
        return False

    logger.info(f"🧹 Clearing cache in {data_dir}...")
    shutil.rmtree(data_dir)
    logger.info("✅ Cache cleared.")
    return True
