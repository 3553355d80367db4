import errno
import logging
import os
from typing import Iterator, List

from ..config import SKIP_DIR_NAMES, VIDEO_EXTENSIONS
from ..exceptions import InvalidRootError

logger = logging.getLogger(__name__)


def should_skip(name: str) -> bool:
    """Hidden entries (including our own data dir) and OS/tooling artifacts."""
    return name.startswith(".") or name in SKIP_DIR_NAMES


def is_video_file(filename: str) -> bool:
    return os.path.splitext(filename)[1].lower() in VIDEO_EXTENSIONS


def validate_root(path: str) -> str:
    """
    Check that `path` is a readable directory and return its absolute form.
    Raises InvalidRootError with a human-readable reason otherwise.
    """
    abs_path = os.path.abspath(os.path.expanduser(path))
    try:
        if not os.path.isdir(abs_path):
            if not os.path.exists(abs_path):
                raise InvalidRootError(path, "Directory does not exist")
            raise InvalidRootError(path, "Path is not a directory")
        # Listing proves we have read permission.
        with os.scandir(abs_path):
            pass
    except PermissionError:
        raise InvalidRootError(path, "Permission denied")
    except FileNotFoundError:
        raise InvalidRootError(path, "Directory does not exist")
    except OSError as e:
        if e.errno == errno.EACCES:
            raise InvalidRootError(path, "Permission denied")
        raise InvalidRootError(path, e.strerror or str(e))
    return abs_path


class DirectoryWalker:
    """
    Lazy depth-first enumeration of video files under a root.

    A plain generator, so it can be consumed from a worker thread or
    directly. Each walk() call starts over; nothing is cached between walks.
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(os.path.expanduser(root))

    def __iter__(self) -> Iterator[str]:
        return self.walk()

    def walk(self) -> Iterator[str]:
        yield from self._walk_dir(self.root)

    def _walk_dir(self, directory: str) -> Iterator[str]:
        try:
            with os.scandir(directory) as it:
                entries: List[os.DirEntry] = list(it)
        except OSError as e:
            # One unreadable folder must not end the walk.
            logger.warning(f"⚠️ Error scanning directory {directory}: {e}")
            return

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())

        for entry in entries:
            if should_skip(entry.name):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    yield from self._walk_dir(entry.path)
                elif entry.is_file() and is_video_file(entry.name):
                    yield entry.path
            except OSError as e:
                logger.warning(f"⚠️ Cannot stat {entry.path}: {e}")
