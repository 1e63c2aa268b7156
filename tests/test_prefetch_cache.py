# tests/test_prefetch_cache.py

import threading
import time
from concurrent.futures import wait

import pytest

from core.errors import LoadFailure
from core.prefetch_cache import PrefetchCache
from core.sequence_index import SequenceIndex


@pytest.fixture
def sequence_100(tmp_path):
    """Sequence of 100 placeholder images (the loaders never decode them)"""
    for i in range(100):
        (tmp_path / f"img_{i:03d}.png").write_bytes(b"\0")
    sequence = SequenceIndex()
    sequence.load(str(tmp_path))
    return sequence


class CountingLoader:
    """Loader that records calls and can be held until released"""

    def __init__(self, blocked: bool = False, fail_on=()):
        self.calls = []
        self.release = threading.Event()
        self.fail_on = set(fail_on)
        self._lock = threading.Lock()
        if not blocked:
            self.release.set()

    def __call__(self, identifier: str):
        with self._lock:
            self.calls.append(identifier)
        assert self.release.wait(timeout=5)
        if any(identifier.endswith(name) for name in self.fail_on):
            raise OSError("cannot decode")
        return f"payload:{identifier}"

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.calls)


def _wait_window(cache: PrefetchCache, positions):
    futures = [cache.get_or_load(p) for p in positions]
    wait(futures, timeout=5)
    return futures


def test_hit_returns_completed_future(sequence_100):
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=2) as cache:
        first = cache.get_or_load(3).result(timeout=5)
        second = cache.get_or_load(3)

        assert second.done()
        assert second.result() == first
        assert loader.count == 1
        assert cache.try_get_cached(3) == first


def test_concurrent_requests_share_one_load(sequence_100):
    """Two requests for 5 before completion trigger a single load"""
    loader = CountingLoader(blocked=True)
    with PrefetchCache(sequence_100, loader, radius=2) as cache:
        a = cache.get_or_load(5)
        b = cache.get_or_load(5)
        assert a is b
        assert cache.pending_positions() == {5}

        loader.release.set()
        assert a.result(timeout=5) == b.result(timeout=5)
        assert loader.count == 1
        assert cache.pending_positions() == set()
        assert cache.cached_positions() == {5}


def test_concurrent_threads_share_one_load(sequence_100):
    loader = CountingLoader(blocked=True)
    results = []

    with PrefetchCache(sequence_100, loader, radius=2, max_workers=8) as cache:
        def request():
            results.append(cache.get_or_load(7))

        threads = [threading.Thread(target=request) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        loader.release.set()
        payloads = {f.result(timeout=5) for f in results}

    assert len(payloads) == 1
    assert loader.count == 1


def test_try_get_cached_never_loads(sequence_100):
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=2) as cache:
        assert cache.try_get_cached(10) is None
        assert loader.count == 0
        assert cache.pending_positions() == set()


def test_failure_reaches_all_waiters_and_is_not_cached(sequence_100):
    loader = CountingLoader(blocked=True, fail_on={"img_004.png"})
    with PrefetchCache(sequence_100, loader, radius=2) as cache:
        a = cache.get_or_load(4)
        b = cache.get_or_load(4)
        loader.release.set()

        with pytest.raises(LoadFailure) as first:
            a.result(timeout=5)
        with pytest.raises(LoadFailure) as second:
            b.result(timeout=5)

        assert first.value is second.value
        assert first.value.position == 4
        assert isinstance(first.value.__cause__, OSError)
        assert loader.count == 1
        assert 4 not in cache.cached_positions()
        assert cache.pending_positions() == set()

        # A later request retries
        with pytest.raises(LoadFailure):
            cache.get_or_load(4).result(timeout=5)
        assert loader.count == 2
        assert cache.stats()['failures'] == 2


def test_none_payload_is_a_failure(sequence_100):
    with PrefetchCache(sequence_100, lambda identifier: None, radius=1) as cache:
        with pytest.raises(LoadFailure):
            cache.get_or_load(0).result(timeout=5)


def test_out_of_range_position(sequence_100):
    with PrefetchCache(sequence_100, CountingLoader(), radius=1) as cache:
        with pytest.raises(IndexError):
            cache.get_or_load(100)
        with pytest.raises(IndexError):
            cache.get_or_load(-1)


def test_window_wraps_with_true_modulo(sequence_100):
    with PrefetchCache(sequence_100, CountingLoader(), radius=2, loop_around=True) as cache:
        assert cache.window(0) == [0, 1, 99, 2, 98]
        assert cache.window(99) == [99, 0, 98, 1, 97]
        assert cache.window(-1) == [99, 0, 98, 1, 97]


def test_window_drops_out_of_range_without_loop(sequence_100):
    with PrefetchCache(sequence_100, CountingLoader(), radius=2, loop_around=False) as cache:
        assert cache.window(0) == [0, 1, 2]
        assert sorted(cache.window(99)) == [97, 98, 99]
        assert sorted(cache.window(50)) == [48, 49, 50, 51, 52]


def test_window_smaller_than_radius(tmp_path):
    for name in ["a.png", "b.png", "c.png"]:
        (tmp_path / name).write_bytes(b"\0")
    sequence = SequenceIndex()
    sequence.load(str(tmp_path))

    with PrefetchCache(sequence, CountingLoader(), radius=5, loop_around=True) as cache:
        assert sorted(cache.window(1)) == [0, 1, 2]


def test_preload_and_trim_keep_only_window(sequence_100):
    """With R=2 a stale entry at 50 is evicted, leaving 8..12"""
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=2, loop_around=True) as cache:
        cache.get_or_load(50).result(timeout=5)

        scheduled = cache.preload_around(10)
        assert sorted(scheduled) == [8, 9, 10, 11, 12]
        _wait_window(cache, scheduled)

        cache.trim(10)
        assert cache.cached_positions() == {8, 9, 10, 11, 12}
        assert len(cache) <= cache.capacity


def test_preload_wraps_at_start(sequence_100):
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=2, loop_around=True) as cache:
        scheduled = cache.preload_around(0)
        _wait_window(cache, scheduled)

        assert cache.cached_positions() == {98, 99, 0, 1, 2}


def test_cache_size_stays_bounded_while_navigating(sequence_100):
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=3, loop_around=True) as cache:
        for center in range(0, 100, 7):
            _wait_window(cache, cache.preload_around(center))
            assert len(cache) <= cache.capacity
            assert set(cache.window(center)) <= cache.cached_positions()


def test_trim_is_noop_under_capacity(sequence_100):
    with PrefetchCache(sequence_100, CountingLoader(), radius=2) as cache:
        cache.get_or_load(50).result(timeout=5)
        cache.get_or_load(80).result(timeout=5)

        assert cache.trim(10) == 0
        assert cache.cached_positions() == {50, 80}


def test_preload_failures_are_swallowed(sequence_100, caplog):
    loader = CountingLoader(fail_on={"img_011.png"})
    cache = PrefetchCache(sequence_100, loader, radius=1)

    with caplog.at_level("WARNING", logger="core.prefetch_cache"):
        scheduled = cache.preload_around(10)
        assert sorted(scheduled) == [9, 10, 11]
        cache.get_or_load(9).result(timeout=5)
        cache.get_or_load(10).result(timeout=5)
        assert cache.cached_positions() == {9, 10}

        # Waiting for the pool also waits for the failure callback
        cache.close(wait=True)

    assert any("Preload failed" in r.getMessage() for r in caplog.records)


def test_closed_cache_rejects_new_loads(sequence_100):
    cache = PrefetchCache(sequence_100, CountingLoader(), radius=1)
    cache.get_or_load(0).result(timeout=5)
    cache.close(wait=True)

    assert cache.cached_positions() == set()
    with pytest.raises(RuntimeError):
        cache.get_or_load(1)
    assert cache.preload_around(5) == [5, 6, 4]


def test_stats_count_hits_and_misses(sequence_100):
    with PrefetchCache(sequence_100, CountingLoader(), radius=1) as cache:
        cache.get_or_load(1).result(timeout=5)
        cache.get_or_load(1).result(timeout=5)
        cache.try_get_cached(1)

        stats = cache.stats()
        assert stats['misses'] == 1
        assert stats['hits'] == 2
        assert stats['loads'] == 1
        assert stats['capacity'] == 3


def _wait_idle(cache: PrefetchCache, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while cache.pending_positions() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert cache.pending_positions() == set()


def test_jump_outside_window_keeps_loaded_position(sequence_100):
    """A load far from the window is kept and not decoded again by the next preload"""
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=2, loop_around=True) as cache:
        _wait_window(cache, cache.preload_around(10))

        cache.get_or_load(50).result(timeout=5)
        assert cache.cached_positions() == {50}

        _wait_window(cache, cache.preload_around(50))
        assert cache.cached_positions() == {48, 49, 50, 51, 52}
        assert sum(1 for c in loader.calls if c.endswith("img_050.png")) == 1


def test_stale_preloads_are_not_kept(sequence_100):
    """Preloads that finish after the window moved away are dropped"""
    loader = CountingLoader(blocked=True)
    with PrefetchCache(sequence_100, loader, radius=2, max_workers=8) as cache:
        cache.preload_around(10)
        current = cache.get_or_load(50)

        loader.release.set()
        assert current.result(timeout=5) == f"payload:{sequence_100[50]}"
        _wait_idle(cache)

        assert cache.cached_positions() == {50}
        assert loader.count == 6


def test_foreground_failure_is_not_logged_as_preload(sequence_100, caplog):
    loader = CountingLoader(blocked=True, fail_on={"img_004.png"})
    cache = PrefetchCache(sequence_100, loader, radius=1)

    with caplog.at_level("WARNING", logger="core.prefetch_cache"):
        current = cache.get_or_load(4)
        assert cache.preload_around(4) == [4, 5, 3]

        loader.release.set()
        with pytest.raises(LoadFailure):
            current.result(timeout=5)
        cache.close(wait=True)

    assert not any("Preload failed" in r.getMessage() for r in caplog.records)
    assert loader.count == 3


def test_preload_without_center(sequence_100):
    loader = CountingLoader()
    with PrefetchCache(sequence_100, loader, radius=1) as cache:
        assert cache.preload_around(20, include_center=False) == [21, 19]
        _wait_idle(cache)
        assert cache.cached_positions() == {19, 21}
