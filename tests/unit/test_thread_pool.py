"""
Unit tests for the worker pool.
"""

import threading

import pytest

from gws.core import ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(min_workers=1, max_workers=2, queue_size=1)
    pool.start()
    yield pool
    pool.shutdown(timeout=2.0)


class TestThreadPool:
    """Tests for ThreadPool."""

    def test_runs_tasks(self, pool):
        done = threading.Event()

        assert pool.submit(done.set) is True
        assert done.wait(2.0)

    def test_full_queue_rejects(self, pool):
        release = threading.Event()
        started = threading.Event()

        def block():
            started.set()
            release.wait(5.0)

        pool.submit(block)
        started.wait(2.0)
        accepted = [pool.submit(release.wait, 5.0) for _ in range(4)]
        release.set()

        assert False in accepted

    def test_failing_task_keeps_worker(self, pool):
        def broken():
            raise RuntimeError("boom")

        done = threading.Event()
        pool.submit(broken)
        pool.submit(done.set, block=True)

        assert done.wait(2.0)

    def test_submit_requires_start(self):
        with pytest.raises(RuntimeError):
            ThreadPool().submit(print)

    def test_stats(self, pool):
        stats = pool.stats

        assert stats["workers"] >= 1
        assert set(stats) == {"workers", "busy", "queued", "completed", "failed"}

    def test_counts_completed_and_failed(self, pool):
        def broken():
            raise ValueError("nope")

        pool.submit(broken, block=True)
        pool.submit(print, "", block=True)
        pool.shutdown(timeout=2.0)

        assert pool.stats["completed"] == 1
        assert pool.stats["failed"] == 1
        assert not pool.running

    @pytest.mark.parametrize("low, high", [(0, 4), (5, 2)])
    def test_invalid_sizes(self, low, high):
        with pytest.raises(ValueError):
            ThreadPool(min_workers=low, max_workers=high)
