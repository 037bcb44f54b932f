"""
Square drawing surface shared by the composer and the recording backends.

Pixels are stored as a BGR ``uint8`` array, matching OpenCV's convention.
Only the session holding the lease may draw.
"""

import logging
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class CanvasLeaseError(RuntimeError):
    """Raised when a session draws on a canvas leased to another session."""


class Canvas:
    """In-memory canvas with a single-writer lease."""

    def __init__(self, width: int, height: Optional[int] = None):
        height = width if height is None else height
        if width <= 0 or height <= 0:
            raise ValueError("Canvas dimensions must be positive")
        self.pixels = np.zeros((height, width, 3), dtype=np.uint8)
        self._owner: Optional[str] = None

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    def clear(self, color: Tuple[int, int, int] = (0, 0, 0)):
        self.pixels[:] = color

    def snapshot(self) -> np.ndarray:
        return self.pixels.copy()

    def acquire(self, owner: str):
        """Lease the canvas to ``owner``. Fails if another owner holds it."""
        if self._owner is not None and self._owner != owner:
            raise CanvasLeaseError(f"Canvas is leased by session {self._owner}")
        self._owner = owner
        logger.debug(f"Canvas leased to session {owner}")

    def release(self, owner: str):
        if self._owner == owner:
            self._owner = None
            logger.debug(f"Canvas released by session {owner}")

    def ensure_owner(self, owner: str):
        if self._owner != owner:
            raise CanvasLeaseError(
                f"Session {owner} cannot draw, canvas is leased by {self._owner}"
            )
