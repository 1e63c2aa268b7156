# core/catalog.py

import os
from datetime import datetime
from functools import cached_property
from typing import Callable, Dict, List, Optional, Tuple

from core.sort_options import SortDirection, SortField


class CatalogEntry:
    """
    An image identifier with lazily read file metadata.

    Nothing touches the filesystem until a metadata property is accessed;
    a stat result already cached by os.scandir is reused when available.
    """

    def __init__(self, identifier: str, dir_entry: Optional[os.DirEntry] = None):
        self.identifier = identifier
        self._dir_entry = dir_entry

    @classmethod
    def from_dir_entry(cls, dir_entry: os.DirEntry) -> 'CatalogEntry':
        return cls(os.path.abspath(dir_entry.path), dir_entry)

    @cached_property
    def _stat(self) -> os.stat_result:
        if self._dir_entry is not None:
            return self._dir_entry.stat()
        return os.stat(self.identifier)

    @cached_property
    def name(self) -> str:
        return os.path.basename(self.identifier)

    @property
    def created(self) -> float:
        # st_birthtime where the platform records it, inode change time otherwise
        return getattr(self._stat, 'st_birthtime', self._stat.st_ctime)

    @property
    def modified(self) -> float:
        return self._stat.st_mtime

    @property
    def size(self) -> int:
        return self._stat.st_size

    def to_dict(self) -> Dict:
        """Display metadata"""
        return {
            'path': self.identifier,
            'name': self.name,
            'file_size': self.size,
            'created_date': datetime.fromtimestamp(self.created),
            'modified_date': datetime.fromtimestamp(self.modified),
        }

    def __repr__(self) -> str:
        return f"CatalogEntry({self.identifier!r})"


_PRIMARY_KEYS: Dict[SortField, Callable[[CatalogEntry], object]] = {
    SortField.FILE_NAME: lambda e: e.name.casefold(),
    SortField.CREATION_TIME: lambda e: e.created,
    SortField.LAST_WRITE_TIME: lambda e: e.modified,
    SortField.FILE_SIZE: lambda e: e.size,
}


def sort_key(field: SortField) -> Callable[[CatalogEntry], Tuple]:
    """
    Total ordering key for a sort field.

    Equal primary keys fall back to the case-folded name and then the
    identifier, so enumeration order never leaks into the result.
    """
    primary = _PRIMARY_KEYS[field]

    def key(entry: CatalogEntry) -> Tuple:
        return (primary(entry), entry.name.casefold(), entry.identifier)

    return key


def sort_entries(entries: List[CatalogEntry],
                 field: SortField,
                 direction: SortDirection) -> List[CatalogEntry]:
    return sorted(
        entries,
        key=sort_key(field),
        reverse=direction is SortDirection.DESCENDING,
    )
