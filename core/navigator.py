# core/navigator.py

import logging
from typing import Any, Callable, Optional

from config import ViewerConfig
from core.errors import InvalidState
from core.filters import (DetectionCache, FilterMode, Predicate, build_predicate,
                          combine_predicates, parse_filter_mode)
from core.image_loader import make_loader
from core.prefetch_cache import PrefetchCache
from core.sequence_index import SequenceIndex
from core.sort_options import SortDirection, SortField, parse_sort_direction, parse_sort_field
from utils.file_utils import supported_extensions
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)


class ImageNavigator:
    """
    Ties a SequenceIndex to a PrefetchCache the way a viewer drives them.

    Every change to the visible ordering (open, sort, filter, removal) or to
    the cache settings replaces the cache, because cached positions are only
    valid for the ordering they were loaded under.
    """

    def __init__(self,
                 config: Optional[ViewerConfig] = None,
                 loader: Optional[Callable[[str], Any]] = None,
                 detection_cache: Optional[DetectionCache] = None,
                 metrics: Optional[PerformanceLogger] = None):
        self.config = (config or ViewerConfig()).normalize()
        self.loader = loader or make_loader(self.config.loader.max_image_dimension)
        self.detection_cache = detection_cache if detection_cache is not None else DetectionCache()
        self.metrics = metrics

        self.sequence = SequenceIndex(
            supported_extensions(self.config.navigation.include_vector_formats)
        )
        self.cache: Optional[PrefetchCache] = None

    # ------------------------------------------------------------------
    # Properties

    @property
    def loop_around(self) -> bool:
        return self.config.navigation.loop_around

    @property
    def position(self) -> int:
        return self.sequence.current_position

    @property
    def current_identifier(self) -> str:
        return self.sequence.current_identifier

    def status(self) -> str:
        """Short status line, e.g. '3 / 120 (filtered from 400)'"""
        if not self.sequence.has_items:
            return "No images"
        text = f"{self.position + 1} / {self.sequence.count}"
        if self.sequence.count != self.sequence.total_count:
            text += f" (filtered from {self.sequence.total_count})"
        return text

    # ------------------------------------------------------------------
    # Loading and view changes

    def open(self, path: str, preferred: Optional[str] = None) -> int:
        """
        Load a directory (or the directory of a file) and show its first image.

        Raises:
            NotFound: if nothing can be shown; the previous view is kept
        """
        nav = self.config.navigation
        self.sequence.load(
            path,
            parse_sort_field(nav.sort_field),
            parse_sort_direction(nav.sort_direction),
            preferred,
        )
        self._apply_configured_filters()
        self._rebuild_cache()
        logger.info("Opened %s: %s", self.sequence.directory, self.status())
        return self.position

    def set_sort(self, field: SortField, direction: SortDirection) -> int:
        self.sequence.resort(field, direction)
        self.config.navigation.sort_field = field.value
        self.config.navigation.sort_direction = direction.value
        self._rebuild_cache()
        return self.position

    def set_filter(self, mode: FilterMode, match_text: str = "", threshold: float = 0.3) -> int:
        """
        Replace the object filter and rebuild the view.

        Returns:
            The number of visible images
        """
        flt = self.config.filters
        flt.object_filter_mode = parse_filter_mode(mode).value
        flt.object_filter_text = match_text or ""
        flt.object_filter_threshold = threshold
        visible = self._apply_configured_filters()
        self._rebuild_cache()
        return visible

    def clear_filter(self) -> int:
        return self.set_filter(FilterMode.ALLOW_ALL)

    def refresh_filters(self) -> int:
        """Re-evaluate filters after new detection results arrived"""
        visible = self._apply_configured_filters()
        self._rebuild_cache()
        return visible

    def remove(self, identifier: str) -> bool:
        """
        Drop an image that was deleted or moved away.

        The cache is only rebuilt when something was removed.

        Returns:
            False when nothing matched or no images remain
        """
        before = self.sequence.total_count
        remaining = self.sequence.remove_by_identifier(identifier)
        if self.sequence.total_count == before:
            return remaining

        self.detection_cache.discard(identifier)
        self._rebuild_cache()
        return remaining

    def update_settings(self, preload_radius: Optional[int] = None,
                        loop_around: Optional[bool] = None):
        nav = self.config.navigation
        if preload_radius is not None:
            nav.preload_radius = max(0, preload_radius)
        if loop_around is not None:
            nav.loop_around = loop_around
        self._rebuild_cache()

    def _build_predicate(self) -> Predicate:
        flt = self.config.filters
        nsfw = build_predicate(self.detection_cache, parse_filter_mode(flt.nsfw_filter_mode),
                               flt.nsfw_label, flt.nsfw_threshold)
        objects = build_predicate(self.detection_cache, parse_filter_mode(flt.object_filter_mode),
                                  flt.object_filter_text, flt.object_filter_threshold)
        return combine_predicates(nsfw, objects)

    def _apply_configured_filters(self) -> int:
        if not self.sequence.total_count:
            return 0
        return self.sequence.apply_predicate(self._build_predicate())

    def _rebuild_cache(self):
        if self.cache is not None:
            self.cache.close()
            self.cache = None

        if not self.sequence.has_items:
            return

        self.cache = PrefetchCache(
            self.sequence,
            self.loader,
            radius=self.config.navigation.preload_radius,
            loop_around=self.loop_around,
            max_workers=self.config.loader.max_workers,
            metrics=self.metrics,
        )

    # ------------------------------------------------------------------
    # Display

    def show(self, position: Optional[int] = None, timeout: Optional[float] = None) -> Any:
        """
        Payload for a position (the current one by default).

        Returns immediately on a cache hit. On a miss the neighbours start
        loading while this waits for the requested image.

        Raises:
            InvalidState: if the sequence is empty
            LoadFailure: if the image cannot be decoded
        """
        if self.cache is None or not self.sequence.has_items:
            raise InvalidState("No images to show")

        if position is None:
            position = self.position

        payload = self.cache.try_get_cached(position)
        if payload is not None:
            self.cache.preload_around(position)
            return payload

        future = self.cache.get_or_load(position)
        # Neighbours load while the requested image decodes
        self.cache.preload_around(position, include_center=False)
        return future.result(timeout=timeout)

    # ------------------------------------------------------------------
    # Navigation

    def next(self) -> int:
        return self.sequence.move_next(self.loop_around)

    def previous(self) -> int:
        return self.sequence.move_previous(self.loop_around)

    def first(self) -> bool:
        return self.sequence.jump_to_first()

    def last(self) -> bool:
        return self.sequence.jump_to_last()

    def half_forward(self) -> bool:
        return self.sequence.jump_half_towards_end()

    def half_back(self) -> bool:
        return self.sequence.jump_half_towards_start()

    # ------------------------------------------------------------------
    # Lifecycle

    def close(self):
        if self.cache is not None:
            self.cache.close()
            self.cache = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
