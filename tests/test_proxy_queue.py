import asyncio

from catalog_scanner.core.proxy_queue import ProxyQueue
from catalog_scanner.database.sqlite_store import CatalogStore
from catalog_scanner.exceptions import StoreError
from catalog_scanner.models.proxy_job import JobStatus

from conftest import FakeGenerator, make_record


def _add_videos(store, library, names, **overrides):
    return [store.upsert_video(make_record(library / n, **overrides)).key for n in names]


def _jobs_by_key(store):
    status = store.get_queue_status()
    rows = store._fetchall("SELECT id, video_key FROM proxy_queue ORDER BY rowid")
    return {r["video_key"]: store.get_proxy_job(r["id"]) for r in rows}, status


def test_jobs_run_in_fifo_order(store, library, paths):
    keys = _add_videos(store, library, ["a.mp4", "b.mp4", "c.mp4"])
    gen = FakeGenerator()
    queue = ProxyQueue(store, gen, paths)

    # Outside an event loop nothing starts on its own.
    assert queue.enqueue(keys) == 3
    assert gen.all_calls == []

    handled = asyncio.run(queue.drain())

    assert handled == 3
    assert gen.all_calls == keys
    jobs, status = _jobs_by_key(store)
    assert all(j.status == JobStatus.COMPLETE and j.progress == 100 for j in jobs.values())
    assert (status.completed, status.total) == (3, 3)
    for key in keys:
        video = store.get_video(key)
        assert video.has_proxy and video.has_sprite
        assert video.proxy_path == paths.proxy_path(key)


def test_failed_job_does_not_stop_the_queue(store, library, paths):
    keys = _add_videos(store, library, ["a.mp4", "b.mp4", "c.mp4"])
    gen = FakeGenerator(fail_keys={keys[1]})
    queue = ProxyQueue(store, gen, paths)
    queue.enqueue(keys)

    asyncio.run(queue.drain())

    jobs, status = _jobs_by_key(store)
    assert jobs[keys[0]].status == JobStatus.COMPLETE
    assert jobs[keys[2]].status == JobStatus.COMPLETE
    failed = jobs[keys[1]]
    assert failed.status == JobStatus.ERROR
    assert "encoder error" in failed.error
    assert failed.completed_at is not None
    # Asset state of the failed video is untouched.
    assert not store.get_video(keys[1]).has_proxy
    assert (status.completed, status.failed) == (2, 1)


def test_store_failure_after_generation_does_not_stop_the_queue(store, library, paths, monkeypatch):
    keys = _add_videos(store, library, ["a.mp4", "b.mp4"])
    queue = ProxyQueue(store, FakeGenerator(), paths)
    queue.enqueue(keys)
    real = CatalogStore.update_video_assets

    def flaky(self, video_key, *args, **kwargs):
        if video_key == keys[0]:
            raise StoreError("database is locked")
        return real(self, video_key, *args, **kwargs)

    monkeypatch.setattr(CatalogStore, "update_video_assets", flaky)
    handled = asyncio.run(queue.drain())

    assert handled == 2
    assert queue.current_job_id is None
    jobs, status = _jobs_by_key(store)
    assert jobs[keys[0]].status == JobStatus.ERROR
    assert "database is locked" in jobs[keys[0]].error
    assert jobs[keys[1]].status == JobStatus.COMPLETE
    assert store.get_video(keys[1]).has_proxy
    assert status.current_job is None
    assert (status.completed, status.failed) == (1, 1)


def test_progress_written_is_monotonic(store, library, paths, monkeypatch):
    keys = _add_videos(store, library, ["a.mp4"])
    gen = FakeGenerator(proxy_steps=(10, 60, 30, 90))
    queue = ProxyQueue(store, gen, paths)
    written = []
    real = CatalogStore.update_job_progress

    def spy(self, job_id, progress):
        written.append(progress)
        return real(self, job_id, progress)

    monkeypatch.setattr(CatalogStore, "update_job_progress", spy)
    queue.enqueue(keys)
    asyncio.run(queue.drain())

    assert written == sorted(written)
    assert written[-1] == 100
    jobs, _ = _jobs_by_key(store)
    assert jobs[keys[0]].progress == 100


def test_only_one_worker_loop(store, library, paths):
    keys = _add_videos(store, library, ["a.mp4", "b.mp4", "c.mp4"])
    gen = FakeGenerator()
    queue = ProxyQueue(store, gen, paths)

    async def run():
        queue.enqueue(keys[:1])
        worker = queue.ensure_worker()
        assert worker is not None
        await asyncio.sleep(0)
        queue.enqueue(keys[1:])
        assert queue.ensure_worker() is worker
        # An inline drain waits for the running loop instead of starting a second one.
        extra = await queue.drain()
        await queue.join()
        return extra

    extra = asyncio.run(run())

    assert gen.peak == 1
    assert sorted(gen.all_calls) == sorted(keys)
    assert len(gen.all_calls) == 3
    assert extra == 0


def test_enqueue_skips_unknown_existing_and_duplicate(store, library, paths):
    fresh, done = _add_videos(store, library, ["fresh.mp4", "done.mp4"])
    store.update_video_assets(done, "/p.mp4", "/s.jpg", "/t.jpg")
    queue = ProxyQueue(store, FakeGenerator(), paths)

    assert queue.enqueue(["unknown-key", fresh, done]) == 1
    # Already queued
    assert queue.enqueue([fresh]) == 0
    # force regenerates a video that already has a proxy
    assert queue.enqueue([done], force=True) == 1


def test_enqueue_all_missing(store, library, paths):
    a, b, c = _add_videos(store, library, ["a.mp4", "b.mp4", "c.mp4"])
    store.update_video_assets(b, "/p.mp4", "/s.jpg", "/t.jpg")
    gen = FakeGenerator()
    queue = ProxyQueue(store, gen, paths)

    assert queue.enqueue(all_missing=True) == 2
    asyncio.run(queue.drain())
    assert sorted(gen.all_calls) == sorted([a, c])


def test_missing_video_marks_job_error(store, library, paths, monkeypatch):
    keys = _add_videos(store, library, ["a.mp4"])
    gen = FakeGenerator()
    queue = ProxyQueue(store, gen, paths)
    queue.enqueue(keys)

    monkeypatch.setattr(store, "get_video", lambda key: None)
    asyncio.run(queue.drain())

    jobs, _ = _jobs_by_key(store)
    assert jobs[keys[0]].status == JobStatus.ERROR
    assert jobs[keys[0]].error == "Video not found"
    assert gen.all_calls == []


def test_drain_with_nothing_queued(store, paths):
    queue = ProxyQueue(store, FakeGenerator(), paths)
    assert asyncio.run(queue.drain()) == 0
    assert not queue.is_running


def test_stuck_jobs_need_manual_requeue(store, library, paths):
    keys = _add_videos(store, library, ["a.mp4"])
    job = store.enqueue_proxy_job(keys[0])
    store.update_job_status(job.id, JobStatus.PROCESSING, progress=0)
    gen = FakeGenerator()
    queue = ProxyQueue(store, gen, paths)

    # A job left in 'processing' is not picked up again on its own.
    assert asyncio.run(queue.drain()) == 0
    assert store.get_proxy_job(job.id).status == JobStatus.PROCESSING

    assert queue.requeue_stuck() == 1
    assert asyncio.run(queue.drain()) == 1
    assert store.get_proxy_job(job.id).status == JobStatus.COMPLETE


def test_status_reports_queue(store, library, paths):
    keys = _add_videos(store, library, ["a.mp4", "b.mp4"])
    queue = ProxyQueue(store, FakeGenerator(), paths)
    queue.enqueue(keys)

    status = queue.status()
    assert not status.is_processing
    assert [j.video_key for j in status.queue] == keys
    assert status.total == 2
