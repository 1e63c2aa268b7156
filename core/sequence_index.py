# core/sequence_index.py

import logging
import os
import time
from typing import List, Optional

from core.catalog import CatalogEntry, sort_entries
from core.errors import InvalidState, NotFound
from core.filters import DetectionCache, FilterMode, Predicate, allow_all, build_predicate
from core.sort_options import SortDirection, SortField
from utils.file_utils import RASTER_EXTENSIONS, get_image_files, resolve_directory

logger = logging.getLogger(__name__)


class SequenceIndex:
    """
    Ordered, filterable list of image identifiers with a cursor.

    AllItems holds every supported file from the last load in sort order;
    VisibleItems is the subset that passes the active filter. Positions
    always refer to VisibleItems. Navigation on an empty sequence is a
    no-op. Mutations are expected to come from a single owner.
    """

    def __init__(self, extensions=RASTER_EXTENSIONS):
        self.extensions = frozenset(e.lower() for e in extensions)
        self._all_items: List[str] = []
        self._items: List[str] = []
        self._entries = {}
        self._current = 0
        self._predicate: Predicate = allow_all
        self.directory: Optional[str] = None
        self.sort_field = SortField.FILE_NAME
        self.sort_direction = SortDirection.ASCENDING

    # ------------------------------------------------------------------
    # Loading

    def load(self,
             path: str,
             sort_field: SortField = SortField.FILE_NAME,
             sort_direction: SortDirection = SortDirection.ASCENDING,
             preferred: Optional[str] = None) -> int:
        """
        Enumerate and sort the images of a directory.

        Args:
            path: A directory, or a file whose directory should be loaded
            sort_field: Ordering key
            sort_direction: Ascending or descending
            preferred: Identifier to place the cursor on (case-insensitive);
                       defaults to the file when path is a file

        Returns:
            The initial cursor position

        Raises:
            NotFound: if the path is missing or holds no supported images.
                      The previous state is kept.
        """
        start = time.perf_counter()

        try:
            directory, selected_file = resolve_directory(path)
        except FileNotFoundError as e:
            raise NotFound(str(path), str(e)) from e

        if preferred is None and selected_file is not None:
            preferred = str(selected_file)
        elif preferred:
            preferred = os.path.abspath(preferred)

        entries = [
            CatalogEntry.from_dir_entry(dir_entry)
            for dir_entry in get_image_files(str(directory), self.extensions)
        ]
        if not entries:
            raise NotFound(str(directory))

        entries = sort_entries(entries, sort_field, sort_direction)
        items = [entry.identifier for entry in entries]
        current = self._find(items, preferred) if preferred else -1

        # Commit only after everything above succeeded
        self.directory = str(directory)
        self.sort_field = sort_field
        self.sort_direction = sort_direction
        self._entries = {entry.identifier: entry for entry in entries}
        self._all_items = items
        self._items = list(items)
        self._predicate = allow_all
        self._current = max(current, 0)

        logger.debug(
            "Loaded %d images from %s sorted by %s %s in %.1fms",
            len(items), directory, sort_field.value, sort_direction.value,
            (time.perf_counter() - start) * 1000,
        )
        return self._current

    def resort(self, sort_field: SortField, sort_direction: SortDirection) -> int:
        """
        Reload the current directory with a new ordering.

        Keeps the identifier under the cursor and re-applies the active
        filter.
        """
        if self.directory is None:
            raise InvalidState("No directory has been loaded")

        preferred = self._items[self._current] if self._items else None
        predicate = self._predicate
        self.load(self.directory, sort_field, sort_direction, preferred)
        if predicate is not allow_all:
            self.apply_predicate(predicate, preferred)
        return self._current

    # ------------------------------------------------------------------
    # Accessors

    @property
    def items(self) -> List[str]:
        return list(self._items)

    @property
    def all_items(self) -> List[str]:
        return list(self._all_items)

    @property
    def count(self) -> int:
        return len(self._items)

    @property
    def total_count(self) -> int:
        return len(self._all_items)

    @property
    def has_items(self) -> bool:
        return bool(self._items)

    @property
    def current_position(self) -> int:
        return self._current

    @property
    def current_identifier(self) -> str:
        if not self._items:
            raise InvalidState("The sequence is empty")
        return self._items[self._current]

    @property
    def is_filtered(self) -> bool:
        return self._predicate is not allow_all

    def entry(self, position: int) -> CatalogEntry:
        """Catalog entry for display metadata"""
        identifier = self._items[position]
        entry = self._entries.get(identifier)
        if entry is None:
            entry = self._entries[identifier] = CatalogEntry(identifier)
        return entry

    def index_of(self, identifier: str) -> int:
        """Visible position of an identifier, or -1"""
        return self._find(self._items, identifier)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, position: int) -> str:
        return self._items[position]

    # ------------------------------------------------------------------
    # Navigation

    def move_next(self, loop: bool) -> int:
        if not self._items:
            return self._current

        if self._current + 1 >= len(self._items):
            if loop:
                self._current = 0
        else:
            self._current += 1
        return self._current

    def move_previous(self, loop: bool) -> int:
        if not self._items:
            return self._current

        if self._current - 1 < 0:
            if loop:
                self._current = len(self._items) - 1
        else:
            self._current -= 1
        return self._current

    def jump_to_first(self) -> bool:
        if not self._items:
            return False
        self._current = 0
        return True

    def jump_to_last(self) -> bool:
        if not self._items:
            return False
        self._current = len(self._items) - 1
        return True

    def jump_half_towards_end(self) -> bool:
        """
        Move half of the remaining distance towards the last image.

        Reaches the end in O(log n) calls and never overshoots.
        """
        if not self._items:
            return False

        remaining = (len(self._items) - 1) - self._current
        if remaining <= 0:
            return False

        step = max(1, (remaining + 1) // 2)
        self._current = min(self._current + step, len(self._items) - 1)
        return True

    def jump_half_towards_start(self) -> bool:
        """Move half of the remaining distance towards the first image"""
        if not self._items:
            return False

        remaining = self._current
        if remaining <= 0:
            return False

        step = max(1, (remaining + 1) // 2)
        self._current = max(self._current - step, 0)
        return True

    # ------------------------------------------------------------------
    # Mutation

    def remove_by_identifier(self, identifier: str) -> bool:
        """
        Remove an image from both the full and the visible list.

        If the removed position is at or before the cursor, the cursor moves
        one step left (floored at 0).

        Returns:
            True if an image was removed and images remain, False if nothing
            matched or the sequence is now empty
        """
        all_index = self._find(self._all_items, identifier)
        if all_index < 0:
            return False

        removed = self._all_items.pop(all_index)
        self._entries.pop(removed, None)

        index = self._find(self._items, identifier)
        if index >= 0:
            self._items.pop(index)
            if index <= self._current:
                self._current = max(self._current - 1, 0)

        if not self._items:
            self._current = 0
            logger.info("No images remain after removing %s", removed)
            return False

        self._current = min(self._current, len(self._items) - 1)
        return True

    def apply_filter(self,
                     provider: DetectionCache,
                     mode: FilterMode,
                     match_text: str,
                     threshold: float) -> int:
        """
        Restrict the visible images to those passing a label filter.

        Returns:
            The number of visible images
        """
        return self.apply_predicate(build_predicate(provider, mode, match_text, threshold))

    def apply_predicate(self, predicate: Predicate, keep: Optional[str] = None) -> int:
        """
        Recompute the visible images from the full list.

        The identifier under the cursor (or keep, if given) stays selected
        when it still passes; otherwise the position is clamped into range.
        """
        if keep is None and self._items:
            keep = self._items[self._current]

        self._items = [item for item in self._all_items if predicate(item)]
        self._predicate = predicate

        if not self._items:
            self._current = 0
        else:
            index = self._items.index(keep) if keep in self._items else -1
            if index >= 0:
                self._current = index
            else:
                self._current = min(self._current, len(self._items) - 1)

        logger.debug("Filter left %d of %d images visible",
                     len(self._items), len(self._all_items))
        return len(self._items)

    def clear_filter(self) -> int:
        return self.apply_predicate(allow_all)

    @staticmethod
    def _find(items: List[str], identifier: Optional[str]) -> int:
        if not identifier:
            return -1
        wanted = os.path.normcase(identifier).casefold()
        for index, item in enumerate(items):
            if item == identifier or os.path.normcase(item).casefold() == wanted:
                return index
        return -1
