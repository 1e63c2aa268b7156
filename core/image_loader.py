# core/image_loader.py

import logging
import time
from functools import partial
from typing import Callable

from PIL import Image

logger = logging.getLogger(__name__)

# Guard against decompression bombs
Image.MAX_IMAGE_PIXELS = 200_000_000


def load_image(path: str, max_dimension: int = 0) -> Image.Image:
    """
    Decode the first frame of an image file.

    The returned image is fully loaded and detached from the file, so it can
    be shared between threads and cached without holding a file handle.

    Args:
        path: Image file path
        max_dimension: Downscale so the longer side fits, 0 keeps full size
    """
    start = time.perf_counter()

    with Image.open(path) as img:
        img.seek(0)
        img.load()
        frame = img.copy()

    if max_dimension > 0 and max(frame.size) > max_dimension:
        frame.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    logger.debug("Decoded %s %s in %.1fms", path, frame.size,
                 (time.perf_counter() - start) * 1000)
    return frame


def make_loader(max_dimension: int = 0) -> Callable[[str], Image.Image]:
    """Payload loader bound to a maximum dimension"""
    return partial(load_image, max_dimension=max_dimension)
