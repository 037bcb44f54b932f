"""
Background video source for postcard composition.

This module handles:
1. Buffering a short looping clip through imageio's ffmpeg reader
2. Reporting natural dimensions once a frame is available
3. Play/pause state and looping frame lookup by elapsed time
"""

import cv2
import numpy as np
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union
import imageio

from .exceptions import MissingElementsError, PlaybackError

logger = logging.getLogger(__name__)


class BackgroundVideo:
    """A looping, muted background clip held as pre-decoded BGR frames."""

    def __init__(self, frames: Optional[List[np.ndarray]] = None, fps: float = 30.0,
                 natural_size: Optional[Tuple[int, int]] = None,
                 source: Optional[Path] = None):
        self.frames: List[np.ndarray] = list(frames or [])
        self.fps = fps if fps and fps > 0 else 30.0
        self.source = source
        self._playing = False
        if natural_size is None and self.frames:
            natural_size = (self.frames[0].shape[1], self.frames[0].shape[0])
        self._natural_size = natural_size or (0, 0)

    @classmethod
    def from_frames(cls, frames: List[np.ndarray], fps: float = 30.0) -> "BackgroundVideo":
        return cls(frames=frames, fps=fps)

    @classmethod
    def open(cls, source: Union[str, Path], max_dimension: int = 512,
             max_frames: int = 300) -> "BackgroundVideo":
        """
        Decode a background clip, downscaling frames to fit the canvas.

        Args:
            source: Path to the video file
            max_dimension: Longest side of the buffered frames
            max_frames: Upper bound on buffered frames

        Returns:
            BackgroundVideo ready to play
        """
        path = Path(source)
        if not path.exists():
            raise MissingElementsError(f"Background video not found: {path}")

        reader = None
        try:
            reader = imageio.get_reader(str(path), 'ffmpeg')
            meta = reader.get_meta_data()
            fps = meta.get('fps', 30.0)
            natural_size = tuple(meta.get('size', (0, 0)))

            frames = []
            for frame in reader:
                frames.append(cls._downscale(frame, max_dimension))
                if len(frames) >= max_frames:
                    logger.debug(f"Background buffer capped at {max_frames} frames")
                    break
        except Exception as e:
            logger.error(f"Failed to open background video {path}: {e}")
            raise MissingElementsError(f"Background video unreadable: {path}", e) from e
        finally:
            if reader is not None:
                reader.close()

        logger.info(f"Background: {natural_size} @ {fps} fps, {len(frames)} frames buffered")
        if not frames:
            natural_size = (0, 0)
        return cls(frames=frames, fps=fps, natural_size=natural_size, source=path)

    @staticmethod
    def _downscale(frame: np.ndarray, max_dimension: int) -> np.ndarray:
        """Convert an imageio RGB frame to BGR, shrinking it to ``max_dimension``."""
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        else:
            frame = cv2.cvtColor(frame[..., :3], cv2.COLOR_RGB2BGR)

        h, w = frame.shape[:2]
        scale = max_dimension / max(h, w)
        if scale < 1:
            frame = cv2.resize(frame, (max(1, round(w * scale)), max(1, round(h * scale))),
                               interpolation=cv2.INTER_AREA)
        return frame

    @property
    def natural_width(self) -> int:
        return self._natural_size[0] if self.frames else 0

    @property
    def natural_height(self) -> int:
        return self._natural_size[1] if self.frames else 0

    @property
    def is_playing(self) -> bool:
        return self._playing

    def play(self):
        """Start playback. Raises PlaybackError when there is nothing to play."""
        if not self.frames:
            raise PlaybackError("Background video has no buffered frames")
        self._playing = True

    def pause(self):
        self._playing = False

    def frame_at(self, elapsed_ms: float) -> Optional[np.ndarray]:
        """Return the looping frame for ``elapsed_ms``, or the poster frame when paused."""
        if not self.frames:
            return None
        if not self._playing:
            return self.frames[0]
        index = int(max(elapsed_ms, 0) / 1000 * self.fps) % len(self.frames)
        return self.frames[index]
