"""
Recording backend interface shared by the library encoder and the native recorder.
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..canvas import Canvas
from ..exceptions import AlreadyFinishedError, EncoderError, MissingElementsError
from ..models import BackendKind, EncodedArtifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncoderConfig:
    """Output cadence, quality and dimensions requested from a backend."""

    fps: int
    width: int
    height: int
    bitrate: Optional[int] = None
    codec_profile: str = "baseline"


class HandleState(str, Enum):
    OPEN = "open"
    FINISHING = "finishing"
    FINISHED = "finished"
    ABORTED = "aborted"


@dataclass
class EncoderHandle:
    """Resources a backend allocated for one recording."""

    kind: BackendKind
    canvas: Canvas
    config: EncoderConfig
    output_path: Optional[Path] = None
    mime_type: str = "video/mp4"
    state: HandleState = HandleState.OPEN
    frames_captured: int = 0

    def begin_finish(self):
        """Claim the handle for flushing. A second claim fails."""
        if self.state is not HandleState.OPEN:
            raise AlreadyFinishedError(f"{self.kind.value} handle is already {self.state.value}")
        self.state = HandleState.FINISHING

    @property
    def duration_ms(self) -> float:
        return self.frames_captured / self.config.fps * 1000


class RecordingBackend(ABC):
    """Turns frames drawn on a canvas into an encoded video."""

    kind: BackendKind

    def __init__(self, work_dir: Optional[Path] = None):
        self.work_dir = Path(work_dir) if work_dir else None

    @abstractmethod
    async def prepare(self, canvas: Canvas, config: EncoderConfig) -> EncoderHandle:
        """Allocate encoder resources. Raises UnsupportedEnvironmentError or EncoderError."""

    @abstractmethod
    def capture_frame(self, handle: EncoderHandle):
        """Append the frame currently on the canvas, where the backend needs explicit steps."""

    @abstractmethod
    async def finish(self, handle: EncoderHandle) -> EncodedArtifact:
        """Flush and close, returning the artifact. Raises AlreadyFinishedError on reuse."""

    @abstractmethod
    def abort(self, handle: EncoderHandle):
        """Release resources without producing output. Never raises."""

    def _check_canvas(self, canvas: Optional[Canvas], config: EncoderConfig):
        if canvas is None:
            raise MissingElementsError("No canvas to record from")
        if canvas.size != (config.width, config.height):
            raise EncoderError(
                f"Canvas is {canvas.size}, encoder expects {config.width}x{config.height}"
            )

    def _new_output_path(self, suffix: str) -> Path:
        directory = self.work_dir or Path(tempfile.gettempdir())
        directory.mkdir(parents=True, exist_ok=True)
        handle, name = tempfile.mkstemp(prefix="postcard-", suffix=suffix, dir=directory)
        os.close(handle)
        return Path(name)

    def _collect_artifact(self, handle: EncoderHandle) -> EncodedArtifact:
        """Read the finished output file and remove it."""
        path = handle.output_path
        try:
            data = path.read_bytes() if path is not None and path.exists() else b""
        finally:
            self._discard_output(handle)

        if not data:
            raise EncoderError(f"{self.kind.value} produced no output "
                               f"({handle.frames_captured} frames captured)")

        artifact = EncodedArtifact(data=data, mime_type=handle.mime_type, duration_ms=handle.duration_ms)
        logger.info(f"{self.kind.value} finished: {artifact.size_mb:.2f}MB, "
                    f"{handle.frames_captured} frames, {artifact.mime_type}")
        return artifact

    @staticmethod
    def _discard_output(handle: EncoderHandle):
        if handle.output_path is not None:
            try:
                handle.output_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove {handle.output_path}: {e}")

    async def _flush(self, handle: EncoderHandle, close: Callable[[], None]):
        """
        Run the blocking writer close on a worker thread.

        If the caller is cancelled mid-flush the thread keeps running, so the
        output is removed once it completes. A failed close removes it at once.
        """
        loop = asyncio.get_running_loop()
        flush = loop.run_in_executor(None, close)
        try:
            await asyncio.shield(flush)
        except asyncio.CancelledError:
            handle.state = HandleState.ABORTED
            flush.add_done_callback(lambda future: self._discard_after_flush(handle, future))
            raise
        except Exception:
            handle.state = HandleState.ABORTED
            self._discard_output(handle)
            raise

    def _discard_after_flush(self, handle: EncoderHandle, future: asyncio.Future):
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"{self.kind.value} writer failed after cancellation: {future.exception()}")
        self._discard_output(handle)
        logger.info(f"{self.kind.value} output discarded after cancelled finish")
