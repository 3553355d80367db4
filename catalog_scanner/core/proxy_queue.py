import asyncio
import logging
from typing import Iterable, List, Optional

from ..config import CatalogPaths
from ..database.sqlite_store import CatalogStore
from ..models.proxy_job import JobStatus, ProxyJob, QueueStatus
from ..models.video_record import VideoRecord
from .video_processor import AssetGenerator, WeightedProgress

logger = logging.getLogger(__name__)


class ProxyQueue:
    """
    Durable FIFO of proxy-generation jobs backed by the catalog store.

    Jobs are processed one at a time by a single worker loop. Each job runs
    thumbnail, sprite and proxy generation concurrently and writes a
    weighted progress value back to the store as ffmpeg reports it.
    """

    def __init__(self, store: CatalogStore, generator: Optional[AssetGenerator], paths: CatalogPaths):
        self.store = store
        self.generator = generator or AssetGenerator()
        self.paths = paths
        self._loop_lock = asyncio.Lock()
        self._worker: Optional[asyncio.Task] = None
        self.current_job_id: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._loop_lock.locked()

    def enqueue(self, video_keys: Optional[Iterable[str]] = None, all_missing: bool = False,
                force: bool = False) -> int:
        """
        Queue proxy generation. Returns the number of jobs added.

        With `all_missing` every video without a proxy is queued. Otherwise
        only the given keys: unknown keys are ignored and videos that already
        have a proxy are skipped unless `force` is set. A video with a job
        still queued or processing is never queued twice.
        """
        if all_missing:
            candidates = [v for v in self.store.get_all_videos() if not v.has_proxy]
        else:
            candidates = self._resolve(video_keys or [], force)

        added = 0
        for video in candidates:
            if self.store.has_open_job(video.key):
                continue
            self.store.enqueue_proxy_job(video.key)
            added += 1

        if added:
            logger.info(f"📥 Queued {added} proxy job(s)")
            self.ensure_worker()
        return added

    def _resolve(self, video_keys: Iterable[str], force: bool) -> List[VideoRecord]:
        videos = []
        for key in video_keys:
            video = self.store.get_video(key)
            if video is None:
                logger.warning(f"⚠️ Ignoring unknown video key {key}")
                continue
            if video.has_proxy and not force:
                continue
            videos.append(video)
        return videos

    def ensure_worker(self) -> Optional[asyncio.Task]:
        """
        Start the background worker unless one is already alive.
        Outside a running event loop nothing is started; call drain() instead.
        """
        if self._worker is not None and not self._worker.done():
            return self._worker
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return None
        self._worker = asyncio.create_task(self.drain())
        return self._worker

    async def join(self) -> None:
        """Wait for the background worker, if any, to finish."""
        if self._worker is not None:
            await self._worker

    async def drain(self) -> int:
        """Process queued jobs until none remain. Returns how many were handled."""
        async with self._loop_lock:
            handled = 0
            while True:
                job = self.store.get_next_queued_job()
                if job is None:
                    # No await between this check and returning, so an
                    # enqueue cannot slip in unnoticed.
                    break
                await self._process_job(job)
                handled += 1
            if handled:
                logger.info(f"✅ Proxy queue drained ({handled} job(s))")
            return handled

    async def _process_job(self, job: ProxyJob) -> None:
        """
        Claim and run one job. Any failure after the claim, including a
        failed store write, ends the job as 'error' and the loop moves on.
        """
        self.store.update_job_status(job.id, JobStatus.PROCESSING, progress=0)
        self.current_job_id = job.id
        try:
            await self._run_job(job)
        except Exception as e:
            logger.error(f"❌ Proxy job {job.id} failed: {e}")
            self.store.update_job_status(job.id, JobStatus.ERROR, error=str(e))
        finally:
            self.current_job_id = None

    async def _run_job(self, job: ProxyJob) -> None:
        video = self.store.get_video(job.video_key)
        if video is None:
            logger.error(f"❌ Proxy job {job.id}: video {job.video_key} not found")
            self.store.update_job_status(job.id, JobStatus.ERROR, error="Video not found")
            return

        logger.info(f"🎬 Generating proxy for {video.name}")
        progress = WeightedProgress()

        def on_progress(stage: str, percent: int) -> None:
            self.store.update_job_progress(job.id, progress.update(stage, percent))

        assets = await self.generator.generate_all(
            video.key, video.path, self.paths, video.duration, on_progress
        )
        self.store.update_video_assets(
            video.key, assets.proxy_path, assets.sprite_path, assets.thumbnail_path
        )
        self.store.update_job_status(job.id, JobStatus.COMPLETE, progress=100)

    def status(self) -> QueueStatus:
        return self.store.get_queue_status()

    def requeue_stuck(self) -> int:
        """
        Move jobs left in 'processing' (e.g. after a crash) back to 'queued'.
        Only call this when no worker is running.
        """
        moved = self.store.requeue_processing_jobs()
        if moved:
            logger.info(f"🔁 Re-queued {moved} stuck proxy job(s)")
        return moved
