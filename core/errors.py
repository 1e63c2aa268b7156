# core/errors.py

from typing import Optional


class NavigatorError(Exception):
    """Base class for navigation and caching errors"""


class NotFound(NavigatorError):
    """
    Raised when a load yields no supported images.

    The sequence that raised it keeps its previous state.
    """

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"No supported images found in '{path}'")


class InvalidState(NavigatorError):
    """Raised when an item is requested from an empty sequence"""


class LoadFailure(NavigatorError):
    """
    Raised when the payload loader fails for a position.

    Every waiter on the same in-flight load receives the same instance.
    """

    def __init__(self, position: int, identifier: str, message: Optional[str] = None):
        self.position = position
        self.identifier = identifier
        super().__init__(message or f"Failed to load position {position}: {identifier}")
