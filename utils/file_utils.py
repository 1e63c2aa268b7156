"""
File operation utilities
"""

import os
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple

RASTER_EXTENSIONS = frozenset({
    '.jpg', '.jpeg', '.jpe', '.jfif', '.png', '.bmp', '.dib',
    '.gif', '.tiff', '.tif', '.webp',
})
VECTOR_EXTENSIONS = frozenset({'.svg'})


def supported_extensions(include_vector: bool = False) -> FrozenSet[str]:
    """Extension allow-list, lower case with leading dot"""
    if include_vector:
        return RASTER_EXTENSIONS | VECTOR_EXTENSIONS
    return RASTER_EXTENSIONS


def is_supported_image(name: str, extensions: FrozenSet[str] = RASTER_EXTENSIONS) -> bool:
    """Case-insensitive extension check"""
    return os.path.splitext(name)[1].lower() in extensions


def resolve_directory(path: str) -> Tuple[Path, Optional[Path]]:
    """
    Split a user supplied path into (directory, file).

    A directory resolves to itself with no file; a file resolves to its
    parent directory and the file itself. Paths are made absolute without
    following symlinks, so identifiers keep the form the caller used.

    Raises:
        FileNotFoundError: if the path does not exist
    """
    resolved = Path(os.path.abspath(os.path.expanduser(path)))
    if resolved.is_dir():
        return resolved, None
    if resolved.is_file():
        return resolved.parent, resolved
    raise FileNotFoundError(f"Path does not exist: {path}")


def get_image_files(directory: str,
                    extensions: FrozenSet[str] = RASTER_EXTENSIONS) -> List[os.DirEntry]:
    """
    Get the image files directly inside a directory.

    Returns scandir entries so stat results can be read lazily and reused.
    """
    with os.scandir(directory) as it:
        return [
            entry for entry in it
            if entry.is_file() and is_supported_image(entry.name, extensions)
        ]


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
