import hashlib
import os

from ..config import FINGERPRINT_PREFIX_BYTES
from ..utils import iso_timestamp


def compute_fingerprint(path: str) -> str:
    """
    Fast change-detection token for a file.

    MD5 over the first 64 KiB of content, the decimal file size and the
    ISO-8601 modification time. Never reads past the prefix, so two files
    sharing prefix, size and mtime collide; that trade-off buys constant
    cost on multi-gigabyte footage. Raises OSError if the file is unreadable.
    """
    stats = os.stat(path)
    with open(path, "rb") as f:
        head = f.read(FINGERPRINT_PREFIX_BYTES)

    h = hashlib.md5()
    h.update(head)
    h.update(str(stats.st_size).encode("ascii"))
    h.update(iso_timestamp(stats.st_mtime).encode("ascii"))
    return h.hexdigest()
