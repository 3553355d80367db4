"""
SQLite-backed catalog store.

One database per scanned root, kept at <root>/.vcb-data/catalog.db:
    videos       - one row per indexed file, keyed by make_video_key(path)
    proxy_queue  - durable FIFO of asset regeneration jobs
    scans        - scan session history
    selections   - favorite flag and notes per video
    settings     - simple key/value pairs

All statements go through a single connection guarded by a re-entrant
lock, so a scan and the proxy queue can share one store. Single-record
writes are single-statement upserts; batch inserts run in one
BEGIN/COMMIT transaction and roll back as a whole on failure.
"""
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from ..exceptions import StoreError
from ..models.proxy_job import JobStatus, ProxyJob, QueueStatus
from ..models.scan import ScanSession, ScanStatus
from ..models.selection import Selection
from ..models.video_record import VideoRecord
from ..utils import utc_now


# All VideoRecord fields -> SQLite columns, in tuple order.
_COLUMNS = [
    ("key", "TEXT PRIMARY KEY"),
    ("path", "TEXT UNIQUE NOT NULL"),
    ("name", "TEXT NOT NULL"),
    ("size", "INTEGER NOT NULL"),
    ("duration", "REAL NOT NULL"),
    ("width", "INTEGER"),
    ("height", "INTEGER"),
    ("created_at", "TEXT NOT NULL"),
    ("directory", "TEXT NOT NULL"),
    ("has_proxy", "INTEGER DEFAULT 0"),
    ("has_sprite", "INTEGER DEFAULT 0"),
    ("proxy_path", "TEXT"),
    ("sprite_path", "TEXT"),
    ("thumbnail_path", "TEXT"),
    ("fingerprint", "TEXT"),
    ("source_mtime", "TEXT"),
    ("scanned_at", "TEXT"),
]

_COLUMN_NAMES = [name for name, _ in _COLUMNS]

_UPSERT_SQL = (
    f"INSERT INTO videos ({', '.join(_COLUMN_NAMES)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)}) "
    f"ON CONFLICT(key) DO UPDATE SET "
    + ", ".join(f"{name} = excluded.{name}" for name in _COLUMN_NAMES[1:])
)

SORT_OPTIONS = {
    "date-asc": "created_at ASC",
    "date-desc": "created_at DESC",
    "duration-asc": "duration ASC",
    "duration-desc": "duration DESC",
    "name-asc": "name ASC",
    "name-desc": "name DESC",
}
DEFAULT_SORT = "date-desc"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CatalogStore:
    """
    Durable keyed storage for video records, proxy jobs and scan sessions.
    Thread-safe, auto-commits every statement outside explicit transactions.
    """

    def __init__(self, db_file: str):
        self.db_file = db_file
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def _ensure_connection(self) -> sqlite3.Connection:
        """Lazy-init the connection and create schema if needed."""
        if self._conn is not None:
            return self._conn

        if self.db_file != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_file)), exist_ok=True)
        try:
            conn = sqlite3.connect(
                self.db_file,
                check_same_thread=False,
                isolation_level=None,  # autocommit
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open catalog database {self.db_file}: {e}") from e

        conn.row_factory = sqlite3.Row
        # Performance pragmas
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        self._conn = conn
        self._create_tables()
        return conn

    def _create_tables(self) -> None:
        cols = ", ".join(f"{name} {typedef}" for name, typedef in _COLUMNS)
        self._conn.execute(f"CREATE TABLE IF NOT EXISTS videos ({cols})")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_directory ON videos(directory)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_created_at ON videos(created_at)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_fingerprint ON videos(fingerprint)")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS proxy_queue (
                id TEXT PRIMARY KEY,
                video_key TEXT NOT NULL REFERENCES videos(key) ON DELETE CASCADE,
                status TEXT NOT NULL DEFAULT 'queued',
                progress INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                error TEXT
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_proxy_queue_status ON proxy_queue(status)")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS scans (
                id TEXT PRIMARY KEY,
                root_path TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'scanning',
                videos_found INTEGER DEFAULT 0,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                error TEXT
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS selections (
                id TEXT PRIMARY KEY,
                video_key TEXT UNIQUE NOT NULL REFERENCES videos(key) ON DELETE CASCADE,
                is_favorite INTEGER DEFAULT 0,
                notes TEXT DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        with self._lock:
            conn = self._ensure_connection()
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.Error as e:
                raise StoreError(f"{e} (while running: {sql.split()[0]} ...)") from e

    def _fetchone(self, sql: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params).fetchall()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing block: COMMIT on success, ROLLBACK on any exception."""
        with self._lock:
            conn = self._ensure_connection()
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def upsert_video(self, record: VideoRecord) -> VideoRecord:
        """Insert or overwrite the record with the same key."""
        self._execute(_UPSERT_SQL, self._record_to_tuple(record))
        return self.get_video(record.key)

    def upsert_videos_batch(self, records: Sequence[VideoRecord]) -> List[VideoRecord]:
        """
        Upsert many records in one transaction.
        Either every record is written or, on any failure, none are.
        """
        try:
            with self._transaction() as conn:
                for record in records:
                    conn.execute(_UPSERT_SQL, self._record_to_tuple(record))
        except sqlite3.Error as e:
            raise StoreError(f"Batch insert of {len(records)} videos rolled back: {e}") from e
        return [v for v in (self.get_video(r.key) for r in records) if v is not None]

    def get_video(self, key: str) -> Optional[VideoRecord]:
        row = self._fetchone("SELECT * FROM videos WHERE key = ?", (key,))
        return self._row_to_record(row) if row else None

    def get_video_by_path(self, path: str) -> Optional[VideoRecord]:
        row = self._fetchone("SELECT * FROM videos WHERE path = ?", (path,))
        return self._row_to_record(row) if row else None

    def get_videos_by_directory(self, directory: str, sort_by: str = DEFAULT_SORT) -> List[VideoRecord]:
        """Videos directly in `directory` or anywhere below it."""
        directory = directory.rstrip(os.sep) or os.sep
        prefix = _escape_like(directory.rstrip(os.sep) + os.sep) + "%"
        rows = self._fetchall(
            f"SELECT * FROM videos WHERE directory = ? OR directory LIKE ? ESCAPE '\\' "
            f"ORDER BY {self._order_clause(sort_by)}",
            (directory, prefix),
        )
        return [self._row_to_record(r) for r in rows]

    def get_all_videos(self, sort_by: str = DEFAULT_SORT) -> List[VideoRecord]:
        rows = self._fetchall(f"SELECT * FROM videos ORDER BY {self._order_clause(sort_by)}")
        return [self._row_to_record(r) for r in rows]

    def count_videos(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM videos")[0]

    def update_previews(self, key: str, thumbnail_path: str, sprite_path: str) -> None:
        """Record the thumbnail and sprite produced during a scan."""
        self._execute(
            "UPDATE videos SET thumbnail_path = ?, sprite_path = ?, has_sprite = 1 WHERE key = ?",
            (thumbnail_path, sprite_path, key),
        )

    def update_video_assets(self, key: str, proxy_path: str, sprite_path: str, thumbnail_path: str) -> None:
        """Record the full asset set produced by the proxy queue."""
        self._execute(
            """UPDATE videos
               SET has_proxy = 1, has_sprite = 1, proxy_path = ?, sprite_path = ?, thumbnail_path = ?
               WHERE key = ?""",
            (proxy_path, sprite_path, thumbnail_path, key),
        )

    def clear_fingerprint(self, key: str) -> None:
        """Forget the stored fingerprint so the next scan reprocesses the file."""
        self._execute("UPDATE videos SET fingerprint = NULL WHERE key = ?", (key,))

    def delete_videos_by_directory(self, directory: str) -> List[VideoRecord]:
        """Delete every record under `directory`; returns what was removed."""
        with self._lock:
            doomed = self.get_videos_by_directory(directory)
            if doomed:
                try:
                    with self._transaction() as conn:
                        conn.executemany("DELETE FROM videos WHERE key = ?", [(v.key,) for v in doomed])
                except sqlite3.Error as e:
                    raise StoreError(f"Purge of {directory} rolled back: {e}") from e
        return doomed

    # ------------------------------------------------------------------
    # Proxy queue
    # ------------------------------------------------------------------

    def enqueue_proxy_job(self, video_key: str) -> ProxyJob:
        job_id = uuid.uuid4().hex
        self._execute(
            "INSERT INTO proxy_queue (id, video_key, status, progress, created_at) VALUES (?, ?, 'queued', 0, ?)",
            (job_id, video_key, utc_now()),
        )
        return self.get_proxy_job(job_id)

    def get_proxy_job(self, job_id: str) -> Optional[ProxyJob]:
        row = self._fetchone("SELECT * FROM proxy_queue WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    def get_next_queued_job(self) -> Optional[ProxyJob]:
        """Oldest queued job; insertion order breaks created_at ties."""
        row = self._fetchone(
            "SELECT * FROM proxy_queue WHERE status = 'queued' ORDER BY created_at ASC, rowid ASC LIMIT 1"
        )
        return self._row_to_job(row) if row else None

    def has_open_job(self, video_key: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM proxy_queue WHERE video_key = ? AND status IN ('queued', 'processing') LIMIT 1",
            (video_key,),
        )
        return row is not None

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        """Move a job to `status`; stamps started_at/completed_at as appropriate."""
        status = JobStatus(status)
        sets = ["status = ?"]
        vals: list = [status.value]

        if progress is not None:
            sets.append("progress = ?")
            vals.append(max(0, min(100, int(progress))))

        if status == JobStatus.PROCESSING:
            sets.append("started_at = ?")
            vals.append(utc_now())
        elif status.is_terminal:
            sets.append("completed_at = ?")
            vals.append(utc_now())
            sets.append("error = ?")
            vals.append(error)

        vals.append(job_id)
        self._execute(f"UPDATE proxy_queue SET {', '.join(sets)} WHERE id = ?", vals)

    def update_job_progress(self, job_id: str, progress: int) -> bool:
        """
        Raise a processing job's progress. Never lowers it.
        Returns True when the stored value changed.
        """
        progress = max(0, min(100, int(progress)))
        cursor = self._execute(
            "UPDATE proxy_queue SET progress = ? WHERE id = ? AND status = 'processing' AND progress < ?",
            (progress, job_id, progress),
        )
        return cursor.rowcount > 0

    def requeue_processing_jobs(self) -> int:
        """Put jobs stranded in 'processing' back to 'queued'. Returns how many moved."""
        cursor = self._execute(
            "UPDATE proxy_queue SET status = 'queued', progress = 0, started_at = NULL WHERE status = 'processing'"
        )
        return cursor.rowcount

    def get_queue_status(self) -> QueueStatus:
        with self._lock:
            queued = self._fetchall(
                "SELECT * FROM proxy_queue WHERE status = 'queued' ORDER BY created_at ASC, rowid ASC"
            )
            current = self._fetchone("SELECT * FROM proxy_queue WHERE status = 'processing' LIMIT 1")
            counts = {
                row["status"]: row["n"]
                for row in self._fetchall("SELECT status, COUNT(*) AS n FROM proxy_queue GROUP BY status")
            }
        current_job = self._row_to_job(current) if current else None
        return QueueStatus(
            is_processing=current_job is not None,
            current_job=current_job,
            queue=[self._row_to_job(r) for r in queued],
            completed=counts.get(JobStatus.COMPLETE.value, 0),
            failed=counts.get(JobStatus.ERROR.value, 0),
            total=sum(counts.values()),
        )

    # ------------------------------------------------------------------
    # Scan sessions
    # ------------------------------------------------------------------

    def create_scan(self, root_path: str) -> ScanSession:
        scan_id = uuid.uuid4().hex
        self._execute(
            "INSERT INTO scans (id, root_path, status, videos_found, started_at) VALUES (?, ?, 'scanning', 0, ?)",
            (scan_id, root_path, utc_now()),
        )
        return self.get_scan(scan_id)

    def update_scan_progress(self, scan_id: str, videos_found: int) -> None:
        self._execute("UPDATE scans SET videos_found = ? WHERE id = ?", (videos_found, scan_id))

    def complete_scan(self, scan_id: str, videos_found: int) -> None:
        self._execute(
            "UPDATE scans SET status = 'complete', videos_found = ?, completed_at = ? WHERE id = ?",
            (videos_found, utc_now(), scan_id),
        )

    def fail_scan(self, scan_id: str, error: str) -> None:
        self._execute(
            "UPDATE scans SET status = 'error', completed_at = ?, error = ? WHERE id = ?",
            (utc_now(), error, scan_id),
        )

    def get_scan(self, scan_id: str) -> Optional[ScanSession]:
        row = self._fetchone("SELECT * FROM scans WHERE id = ?", (scan_id,))
        if not row:
            return None
        return ScanSession(
            id=row["id"],
            root_path=row["root_path"],
            status=ScanStatus(row["status"]),
            videos_found=row["videos_found"] or 0,
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def upsert_selection(self, video_key: str, is_favorite: bool, notes: Optional[str] = None) -> Selection:
        """
        Set the favorite flag of a video, creating its selection if needed.
        Notes are replaced when given and kept as they are when None.
        Raises StoreError for a key that is not in the catalog.
        """
        now = utc_now()
        self._execute(
            """INSERT INTO selections (id, video_key, is_favorite, notes, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(video_key) DO UPDATE SET
                   is_favorite = excluded.is_favorite,
                   notes = COALESCE(?, notes),
                   updated_at = excluded.updated_at""",
            (uuid.uuid4().hex, video_key, int(is_favorite), notes or "", now, now, notes),
        )
        return self.get_selection(video_key)

    def get_selection(self, video_key: str) -> Optional[Selection]:
        row = self._fetchone("SELECT * FROM selections WHERE video_key = ?", (video_key,))
        return self._row_to_selection(row) if row else None

    def get_favorites(self) -> List[Selection]:
        rows = self._fetchall(
            "SELECT * FROM selections WHERE is_favorite = 1 ORDER BY created_at ASC, rowid ASC"
        )
        return [self._row_to_selection(r) for r in rows]

    def get_all_selections(self) -> List[Selection]:
        rows = self._fetchall("SELECT * FROM selections ORDER BY created_at ASC, rowid ASC")
        return [self._row_to_selection(r) for r in rows]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> Optional[str]:
        row = self._fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self._execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _order_clause(sort_by: str) -> str:
        return SORT_OPTIONS.get(sort_by, SORT_OPTIONS[DEFAULT_SORT])

    def _row_to_record(self, row: sqlite3.Row) -> VideoRecord:
        return VideoRecord(
            key=row["key"],
            path=row["path"],
            name=row["name"],
            size=row["size"] or 0,
            duration=row["duration"] or 0.0,
            width=row["width"],
            height=row["height"],
            created_at=row["created_at"],
            directory=row["directory"],
            fingerprint=row["fingerprint"],
            source_mtime=row["source_mtime"],
            scanned_at=row["scanned_at"],
            has_proxy=bool(row["has_proxy"]),
            has_sprite=bool(row["has_sprite"]),
            proxy_path=row["proxy_path"],
            sprite_path=row["sprite_path"],
            thumbnail_path=row["thumbnail_path"],
        )

    def _record_to_tuple(self, record: VideoRecord) -> tuple:
        """Convert a VideoRecord to a tuple matching _COLUMNS order."""
        return (
            record.key,
            record.path,
            record.name,
            record.size,
            record.duration,
            record.width,
            record.height,
            record.created_at,
            record.directory,
            int(record.has_proxy),
            int(record.has_sprite),
            record.proxy_path,
            record.sprite_path,
            record.thumbnail_path,
            record.fingerprint,
            record.source_mtime,
            record.scanned_at,
        )

    def _row_to_job(self, row: sqlite3.Row) -> ProxyJob:
        return ProxyJob(
            id=row["id"],
            video_key=row["video_key"],
            status=JobStatus(row["status"]),
            progress=row["progress"] or 0,
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            error=row["error"],
        )

    def _row_to_selection(self, row: sqlite3.Row) -> Selection:
        return Selection(
            id=row["id"],
            video_key=row["video_key"],
            is_favorite=bool(row["is_favorite"]),
            notes=row["notes"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
