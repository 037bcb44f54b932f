"""
Stream recorder backed by OpenCV's platform video writer.

The writer samples the canvas on its own cadence. The first ``capture_frame``
starts the sampling and later calls do nothing: whatever the composer last
drew is what gets recorded. The container is whatever the platform writer
supports first from a preference list.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import cv2

from .base import EncoderConfig, EncoderHandle, HandleState, RecordingBackend
from ..canvas import Canvas
from ..exceptions import EncoderError, UnsupportedEnvironmentError
from ..models import BackendKind, EncodedArtifact

logger = logging.getLogger(__name__)

# (fourcc, file suffix, mime type), most messaging-friendly first
DEFAULT_FORMATS: Tuple[Tuple[str, str, str], ...] = (
    ("avc1", ".mp4", 'video/mp4; codecs="avc1.42E01E"'),
    ("mp4v", ".mp4", "video/mp4"),
    ("VP80", ".webm", "video/webm; codecs=vp8"),
)


@dataclass
class NativeHandle(EncoderHandle):
    writer: Any = None
    sampler: Optional[asyncio.Task] = None
    sampler_error: Optional[BaseException] = None


class NativeMediaRecorder(RecordingBackend):
    """Self-clocked recorder: frames are sampled from the canvas at the target fps."""

    kind = BackendKind.NATIVE_MEDIA_RECORDER

    def __init__(self, work_dir: Optional[Path] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 formats: Optional[Sequence[Tuple[str, str, str]]] = None):
        super().__init__(work_dir)
        self._sleep = sleep
        self.formats: List[Tuple[str, str, str]] = list(formats or DEFAULT_FORMATS)

    def _open_writer(self, config: EncoderConfig):
        """Try each format until the platform writer opens one."""
        for fourcc, suffix, mime_type in self.formats:
            path = self._new_output_path(suffix)
            try:
                writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*fourcc),
                                         float(config.fps), (config.width, config.height))
            except cv2.error:
                path.unlink(missing_ok=True)
                raise
            if writer.isOpened():
                logger.info(f"Native recorder using {fourcc} ({mime_type})")
                return writer, path, mime_type
            writer.release()
            path.unlink(missing_ok=True)
            logger.debug(f"Native recorder format {fourcc} not supported")
        return None, None, None

    async def prepare(self, canvas: Canvas, config: EncoderConfig) -> NativeHandle:
        self._check_canvas(canvas, config)
        try:
            writer, path, mime_type = self._open_writer(config)
        except (OSError, cv2.error) as e:
            raise EncoderError(f"Could not open native video writer: {e}", e) from e
        if writer is None:
            raise UnsupportedEnvironmentError("No video writer format is supported on this platform")

        if config.bitrate:
            logger.debug(f"Native recorder ignores requested bitrate {config.bitrate}")

        return NativeHandle(
            kind=self.kind,
            canvas=canvas,
            config=config,
            output_path=path,
            mime_type=mime_type,
            writer=writer,
        )

    async def _sample(self, handle: NativeHandle):
        interval = 1.0 / handle.config.fps
        while handle.state is HandleState.OPEN:
            try:
                handle.writer.write(handle.canvas.pixels)
            except cv2.error as e:
                handle.sampler_error = e
                logger.error(f"Native recorder failed to write frame: {e}")
                return
            handle.frames_captured += 1
            await self._sleep(interval)

    def capture_frame(self, handle: NativeHandle):
        # Sampling starts once the first frame has been composed
        if handle.state is HandleState.OPEN and handle.sampler is None:
            handle.sampler = asyncio.create_task(self._sample(handle))

    async def _stop_sampler(self, handle: NativeHandle):
        sampler = handle.sampler
        if sampler is None or sampler.done():
            return
        sampler.cancel()
        await asyncio.wait([sampler])

    async def finish(self, handle: NativeHandle) -> EncodedArtifact:
        handle.begin_finish()
        try:
            await self._stop_sampler(handle)
        except asyncio.CancelledError:
            handle.state = HandleState.ABORTED
            self._release_and_discard(handle)
            raise

        try:
            await self._flush(handle, handle.writer.release)
        except cv2.error as e:
            raise EncoderError(f"Native recorder failed to close: {e}", e) from e

        if handle.sampler_error is not None:
            handle.state = HandleState.ABORTED
            self._discard_output(handle)
            raise EncoderError(f"Native recorder failed: {handle.sampler_error}", handle.sampler_error)

        if handle.state is HandleState.ABORTED:
            self._discard_output(handle)
            raise EncoderError("Native recorder was aborted during finish")

        handle.state = HandleState.FINISHED
        return self._collect_artifact(handle)

    def abort(self, handle: Optional[NativeHandle]):
        if handle is None or handle.state in (HandleState.FINISHED, HandleState.ABORTED):
            return

        flushing = handle.state is HandleState.FINISHING
        handle.state = HandleState.ABORTED
        if handle.sampler is not None and not handle.sampler.done():
            handle.sampler.cancel()
        if flushing:
            logger.warning("Native recorder aborted while flushing")
            return

        self._release_and_discard(handle)
        logger.info("Native recorder aborted")

    def _release_and_discard(self, handle: NativeHandle):
        try:
            handle.writer.release()
        except cv2.error as e:
            logger.debug(f"Ignoring writer error during abort: {e}")
        self._discard_output(handle)
