# core/sort_options.py

from enum import Enum
from typing import Optional


class SortField(Enum):
    FILE_NAME = "FileName"
    CREATION_TIME = "CreationTime"
    LAST_WRITE_TIME = "LastWriteTime"
    FILE_SIZE = "FileSize"


class SortDirection(Enum):
    ASCENDING = "Ascending"
    DESCENDING = "Descending"


def _lookup(enum_cls, value: Optional[str], default):
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value

    wanted = str(value).strip().replace("_", "").replace("-", "").lower()
    for member in enum_cls:
        if wanted in (member.value.lower(), member.name.replace("_", "").lower()):
            return member
    return default


def parse_sort_field(value: Optional[str]) -> SortField:
    """Parse a config value, falling back to FileName"""
    return _lookup(SortField, value, SortField.FILE_NAME)


def parse_sort_direction(value: Optional[str]) -> SortDirection:
    """Parse a config value, falling back to Ascending"""
    return _lookup(SortDirection, value, SortDirection.ASCENDING)
