# core/prefetch_cache.py

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from core.errors import LoadFailure
from core.sequence_index import SequenceIndex
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)


class PrefetchCache:
    """
    Sliding-window payload cache around the active position.

    Loads run on a thread pool. Concurrent requests for the same position
    share one Future, and after every completed load anything outside the
    window is evicted, so at most 2 * radius + 1 payloads stay resident.

    Positions are relative to the sequence's current visible ordering;
    build a new cache whenever that ordering changes.
    """

    def __init__(self,
                 sequence: SequenceIndex,
                 loader: Callable[[str], Any],
                 radius: int = 20,
                 loop_around: bool = True,
                 max_workers: int = 4,
                 metrics: Optional[PerformanceLogger] = None):
        self.sequence = sequence
        self.loader = loader
        self.radius = max(0, radius)
        self.loop_around = loop_around
        self.metrics = metrics

        self._entries: Dict[int, Any] = {}
        self._pending: Dict[int, Future] = {}
        self._speculative: Set[int] = set()
        self._lock = threading.Lock()
        self._center: Optional[int] = None
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="prefetch"
        )
        self._closed = False

        # Simple telemetry
        self.hits = 0
        self.misses = 0
        self.loads = 0
        self.failures = 0
        self.evictions = 0

    @property
    def capacity(self) -> int:
        return self.radius * 2 + 1

    # ------------------------------------------------------------------
    # Lookup

    def get_or_load(self, position: int) -> Future:
        """
        Get the payload for a position as a Future.

        A cached payload comes back as an already completed Future. If a load
        for the position is in flight, its Future is returned. Otherwise a
        new load is started; a new load outside the active window moves the
        window to the requested position. A failed load raises LoadFailure
        from result() for every waiter and is not cached.
        """
        future, _ = self._request(position, speculative=False)
        return future

    def _request(self, position: int, speculative: bool) -> Tuple[Future, bool]:
        with self._lock:
            if position in self._entries:
                self.hits += 1
                done = Future()
                done.set_result(self._entries[position])
                return done, False

            pending = self._pending.get(position)
            if pending is not None:
                if not speculative:
                    self._speculative.discard(position)
                return pending, False

            if self._closed:
                raise RuntimeError("PrefetchCache is closed")

            if not 0 <= position < len(self.sequence):
                raise IndexError(f"Position {position} out of range")

            identifier = self.sequence[position]
            self.misses += 1
            if speculative:
                self._speculative.add(position)
            elif self._center is None or position not in self.window(self._center):
                self._center = position
            future = self._executor.submit(self._load, position, identifier)
            self._pending[position] = future
            return future, True

    def try_get_cached(self, position: int) -> Optional[Any]:
        """Cached payload or None, never starts a load"""
        with self._lock:
            payload = self._entries.get(position)
            if payload is not None:
                self.hits += 1
            return payload

    def _load(self, position: int, identifier: str) -> Any:
        start = time.perf_counter()
        try:
            payload = self.loader(identifier)
            if payload is None:
                raise ValueError("loader returned no payload")
        except Exception as e:
            with self._lock:
                self._pending.pop(position, None)
                self._speculative.discard(position)
                self.failures += 1
            raise LoadFailure(position, identifier, f"{identifier}: {e}") from e

        elapsed = time.perf_counter() - start
        with self._lock:
            self._pending.pop(position, None)
            self.loads += 1
            center = self._center if self._center is not None else position
            if position in self._speculative and position not in self.window(center):
                # Preload for a window that has since moved on
                logger.debug("Dropping stale preload of %d outside window around %d",
                             position, center)
            else:
                self._entries[position] = payload
                self._trim_locked(center)
            self._speculative.discard(position)

        if self.metrics is not None:
            self.metrics.log_metric('load', elapsed, position=position)
        logger.debug("Loaded position %d in %.1fms", position, elapsed * 1000)
        return payload

    # ------------------------------------------------------------------
    # Window

    def window(self, center: int) -> List[int]:
        """
        Positions that belong to the window around center, nearest first.

        With loop_around the positions wrap modulo the sequence length,
        otherwise out-of-range positions are dropped.
        """
        count = len(self.sequence)
        if count == 0:
            return []

        positions = []
        seen = set()
        for offset in self._offsets():
            position = self._wrap(center + offset, count)
            if position is not None and position not in seen:
                seen.add(position)
                positions.append(position)
        return positions

    def _offsets(self) -> List[int]:
        offsets = [0]
        for distance in range(1, self.radius + 1):
            offsets.extend((distance, -distance))
        return offsets

    def _wrap(self, position: int, count: int) -> Optional[int]:
        if self.loop_around:
            # Python's % is a true modulo for negative operands
            return position % count
        if 0 <= position < count:
            return position
        return None

    def preload_around(self, center: int, include_center: bool = True) -> List[int]:
        """
        Make center the active window and warm it in the background.

        Failures of loads started here are logged and never reach the
        caller. Loads that are already in flight keep their own error
        handling.

        Args:
            center: Window center
            include_center: False when the caller loads center itself

        Returns:
            The positions requested
        """
        positions = self.window(center)
        if not positions:
            return []

        with self._lock:
            self._center = center

        if not include_center:
            positions = [p for p in positions if p != center % len(self.sequence)]

        for position in positions:
            try:
                future, started = self._request(position, speculative=True)
            except RuntimeError:
                logger.debug("Skipping preload of %d, cache closed", position)
                break
            if started:
                future.add_done_callback(self._log_speculative_failure)
        return positions

    @staticmethod
    def _log_speculative_failure(future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("Preload failed: %s", error)

    def trim(self, center: int) -> int:
        """
        Evict cached positions outside the window around center.

        Only runs when the cache holds more than 2 * radius + 1 entries.

        Returns:
            The number of evicted entries
        """
        with self._lock:
            return self._trim_locked(center)

    def _trim_locked(self, center: int) -> int:
        if len(self._entries) <= self.capacity:
            return 0

        valid = set(self.window(center))
        stale = [position for position in self._entries if position not in valid]
        for position in stale:
            del self._entries[position]

        self.evictions += len(stale)
        if stale:
            logger.debug("Evicted %d entries outside window around %d", len(stale), center)
        return len(stale)

    # ------------------------------------------------------------------
    # Introspection and lifecycle

    def cached_positions(self) -> Set[int]:
        with self._lock:
            return set(self._entries)

    def pending_positions(self) -> Set[int]:
        with self._lock:
            return set(self._pending)

    def stats(self) -> dict:
        with self._lock:
            return {
                'cached': len(self._entries),
                'pending': len(self._pending),
                'capacity': self.capacity,
                'hits': self.hits,
                'misses': self.misses,
                'loads': self.loads,
                'failures': self.failures,
                'evictions': self.evictions
            }

    def clear(self):
        with self._lock:
            self._entries.clear()

    def close(self, wait: bool = False):
        """
        Stop accepting loads.

        Loads already running finish in the background and their results
        are dropped with the cache.
        """
        with self._lock:
            self._closed = True
            self._entries.clear()
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
