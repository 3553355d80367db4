import asyncio
import logging
import os
import time
from enum import Enum
from typing import List, Optional

from ..config import CatalogPaths, ScannerSettings
from ..core.events import ProgressStream
from ..core.process_runner import gather_first_error
from ..core.video_processor import AssetGenerator
from ..database.sqlite_store import CatalogStore
from ..exceptions import InvalidRootError, ScanInProgressError, StoreError
from ..models.scan import ScanPhase, ScanProgress, ScanResult, ScanSession, ScanStatus
from ..models.video_record import VideoRecord, make_video_key
from ..utils import iso_timestamp, utc_now
from .file_system import DirectoryWalker, validate_root
from .fingerprint import compute_fingerprint
from .media_probe import MediaProbe

logger = logging.getLogger(__name__)


class UnitOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ConcurrencyLimiter:
    """
    Async context manager admitting at most `width` holders at once.
    Tracks the current and peak number of holders.
    """

    def __init__(self, width: int):
        self.width = width
        self._sem = asyncio.Semaphore(width)
        self.active = 0
        self.peak = 0

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self._sem.acquire()
        self.active += 1
        self.peak = max(self.peak, self.active)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.active -= 1
        self._sem.release()


class ScanOrchestrator:
    """
    Orchestrates a scan of one root:
    1. Validation (hard failure before anything runs)
    2. Count phase (DirectoryWalker, nothing persisted)
    3. Process phase (fingerprint -> skip, or probe + upsert + previews)
    4. Session completion

    One scan at a time per orchestrator; a second request while one is
    running raises ScanInProgressError.
    """

    def __init__(
        self,
        store: CatalogStore,
        probe: Optional[MediaProbe] = None,
        generator: Optional[AssetGenerator] = None,
        settings: Optional[ScannerSettings] = None,
    ):
        self.store = store
        self.settings = settings or ScannerSettings()
        self.probe = probe or MediaProbe(self.settings)
        self.generator = generator or AssetGenerator(self.settings)
        self._scan_lock = asyncio.Lock()
        self._session: Optional[ScanSession] = None
        self.limiter: Optional[ConcurrencyLimiter] = None

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    @property
    def current_session(self) -> Optional[ScanSession]:
        """The running session, or the last one once it has finished."""
        return self._session

    async def run_scan(self, root: str, stream: Optional[ProgressStream] = None) -> ScanResult:
        """
        Full scan pipeline. Progress events go to `stream` (closed on exit).
        Raises InvalidRootError for a bad root, ScanInProgressError if busy.
        """
        if self._scan_lock.locked():
            raise ScanInProgressError("A scan is already in progress")

        async with self._scan_lock:
            try:
                return await self._run(root, stream)
            finally:
                if stream is not None:
                    stream.close()

    async def _run(self, root: str, stream: Optional[ProgressStream]) -> ScanResult:
        start_time = time.time()
        session = self.store.create_scan(os.path.abspath(os.path.expanduser(root)))
        self._session = session

        try:
            root_abs = validate_root(root)
        except InvalidRootError as e:
            logger.error(f"❌ Scan not started: {e}")
            self._fail_session(session, str(e))
            raise

        paths = CatalogPaths(root_abs)
        logger.info(f"🚀 Starting scan on: {root_abs}")

        # Phase 1: count
        self._publish(stream, ScanProgress(
            scan_id=session.id,
            phase=ScanPhase.COUNTING,
            current_file="Counting videos...",
            message="Scanning for videos...",
        ))
        video_paths = await self._count_videos(root_abs, session.id, stream)
        total = len(video_paths)
        logger.info(f"🔍 Found {total} video files under {root_abs}")

        # Phase 2: process
        limiter = ConcurrencyLimiter(self.settings.scan_concurrency)
        self.limiter = limiter
        tally = {outcome: 0 for outcome in UnitOutcome}

        async def run_unit(path: str) -> None:
            async with limiter:
                outcome = await self._process_file(path, paths)
            tally[outcome] += 1
            found = tally[UnitOutcome.PROCESSED] + tally[UnitOutcome.SKIPPED]
            session.videos_found = found
            self.store.update_scan_progress(session.id, found)
            self._publish(stream, ScanProgress(
                scan_id=session.id,
                phase=ScanPhase.PROCESSING,
                total_videos=total,
                processed=tally[UnitOutcome.PROCESSED],
                skipped=tally[UnitOutcome.SKIPPED],
                failed=tally[UnitOutcome.FAILED],
                current_file=os.path.basename(path),
                message="Extracting video metadata...",
            ))

        try:
            await gather_first_error(*(run_unit(p) for p in video_paths))
        except asyncio.CancelledError:
            self._fail_session(session, "Scan cancelled")
            raise
        except Exception as e:
            logger.error(f"❌ Scan aborted: {e}")
            self._fail_session(session, str(e))
            raise

        # Phase 3: complete
        found = session.videos_found
        self.store.complete_scan(session.id, found)
        session.status = ScanStatus.COMPLETE
        session.completed_at = utc_now()

        skipped = tally[UnitOutcome.SKIPPED]
        message = (
            f"Scan complete! {skipped} videos were already indexed."
            if skipped > 0 else f"Scan complete! Found {found} videos."
        )
        self._publish(stream, ScanProgress(
            scan_id=session.id,
            phase=ScanPhase.DONE,
            total_videos=total,
            processed=tally[UnitOutcome.PROCESSED],
            skipped=skipped,
            failed=tally[UnitOutcome.FAILED],
            message=message,
        ))
        duration = time.time() - start_time
        logger.info(
            f"✅ Scan completed in {duration:.2f}s. Processed {tally[UnitOutcome.PROCESSED]}, "
            f"skipped {skipped}, failed {tally[UnitOutcome.FAILED]}."
        )

        return ScanResult(
            session=session,
            total_videos=total,
            videos_processed=tally[UnitOutcome.PROCESSED],
            videos_skipped=skipped,
            videos_failed=tally[UnitOutcome.FAILED],
        )

    async def _count_videos(self, root: str, scan_id: str, stream: Optional[ProgressStream]) -> List[str]:
        """Walk once in a worker thread, publishing a counting event per hit."""
        loop = asyncio.get_running_loop()

        def walk() -> List[str]:
            found: List[str] = []
            for path in DirectoryWalker(root).walk():
                found.append(path)
                if stream is not None:
                    event = ScanProgress(
                        scan_id=scan_id,
                        phase=ScanPhase.COUNTING,
                        total_videos=len(found),
                        current_file=path,
                        message="Scanning for videos...",
                    )
                    loop.call_soon_threadsafe(stream.publish, event)
            return found

        return await asyncio.to_thread(walk)

    async def _process_file(self, path: str, paths: CatalogPaths) -> UnitOutcome:
        """
        One unit of work. Never raises: every failure is logged and the
        file is reported as FAILED so sibling units and the session go on.
        """
        name = os.path.basename(path)
        try:
            fingerprint = await asyncio.to_thread(compute_fingerprint, path)
            stats = await asyncio.to_thread(os.stat, path)
        except OSError as e:
            logger.warning(f"⚠️ Cannot read {path}: {e}")
            return UnitOutcome.FAILED

        try:
            existing = self.store.get_video_by_path(path)
            if existing and existing.fingerprint == fingerprint:
                # File unchanged, skip processing
                return UnitOutcome.SKIPPED

            metadata = await self.probe.probe(path)

            record = VideoRecord(
                key=make_video_key(path),
                path=path,
                name=name,
                size=stats.st_size,
                duration=metadata.duration,
                width=metadata.width,
                height=metadata.height,
                created_at=iso_timestamp(getattr(stats, "st_birthtime", stats.st_ctime)),
                directory=os.path.dirname(path),
                fingerprint=fingerprint,
                source_mtime=iso_timestamp(stats.st_mtime),
                scanned_at=utc_now(),
            )
            self.store.upsert_video(record)
        except Exception as e:
            logger.error(f"❌ Error processing video {path}: {e}")
            return UnitOutcome.FAILED

        if metadata.duration > 0:
            try:
                previews = await self.generator.generate_previews(record.key, path, paths, metadata.duration)
                self.store.update_previews(record.key, previews.thumbnail_path, previews.sprite_path)
            except Exception as e:
                logger.error(f"❌ Failed to generate thumbnail/sprite for {path}: {e}")
                # Forget the fingerprint so the next pass tries this file again.
                try:
                    self.store.clear_fingerprint(record.key)
                except StoreError as store_error:
                    logger.error(f"❌ Could not reset fingerprint for {path}: {store_error}")
                return UnitOutcome.FAILED

        return UnitOutcome.PROCESSED

    def _fail_session(self, session: ScanSession, message: str) -> None:
        """Mark the session failed in the store and in memory."""
        try:
            self.store.fail_scan(session.id, message)
        except StoreError as e:
            logger.error(f"❌ Could not record scan failure for {session.id}: {e}")
        session.status = ScanStatus.ERROR
        session.error = message
        session.completed_at = utc_now()

    @staticmethod
    def _publish(stream: Optional[ProgressStream], event: ScanProgress) -> None:
        if stream is not None:
            stream.publish(event)
