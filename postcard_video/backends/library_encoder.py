"""
H.264 encoder driven frame by frame through imageio's ffmpeg writer.

This is the preferred backend: it gives full control over profile, bitrate
and GOP size, but needs an ffmpeg binary reachable through imageio-ffmpeg.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import cv2
import imageio
import imageio_ffmpeg

from .base import EncoderConfig, EncoderHandle, HandleState, RecordingBackend
from ..canvas import Canvas
from ..exceptions import EncoderError, UnsupportedEnvironmentError
from ..models import BackendKind, EncodedArtifact

logger = logging.getLogger(__name__)

H264_BASELINE_MIME = 'video/mp4; codecs="avc1.42E01E"'


@dataclass
class LibraryHandle(EncoderHandle):
    writer: Any = None


class LibraryEncoder(RecordingBackend):
    """Explicitly stepped encoder: every ``capture_frame`` appends one frame."""

    kind = BackendKind.LIBRARY_ENCODER

    @staticmethod
    def is_available() -> bool:
        """True when imageio-ffmpeg can locate an ffmpeg executable."""
        try:
            imageio_ffmpeg.get_ffmpeg_exe()
            return True
        except RuntimeError:
            return False

    @staticmethod
    def ffmpeg_params(config: EncoderConfig) -> List[str]:
        """Encoder flags for messaging-friendly H.264 output."""
        params = [
            "-profile:v", config.codec_profile,
            "-level", "3.0",
            "-g", str(config.fps),
            "-sc_threshold", "0",
            "-preset", "ultrafast",
            "-movflags", "+faststart",
        ]
        if config.bitrate:
            params += ["-maxrate", str(config.bitrate), "-bufsize", str(config.bitrate * 2)]
        return params

    async def prepare(self, canvas: Canvas, config: EncoderConfig) -> LibraryHandle:
        self._check_canvas(canvas, config)
        if not self.is_available():
            raise UnsupportedEnvironmentError("ffmpeg executable not available for the library encoder")

        try:
            output_path = self._new_output_path(".mp4")
        except OSError as e:
            raise EncoderError(f"Could not create encoder output file: {e}", e) from e
        writer_kwargs = {
            "format": "FFMPEG",
            "mode": "I",
            "fps": config.fps,
            "codec": "libx264",
            "pixelformat": "yuv420p",
            "macro_block_size": 2,
            "ffmpeg_log_level": "error",
            "ffmpeg_params": self.ffmpeg_params(config),
        }
        if config.bitrate:
            writer_kwargs["bitrate"] = config.bitrate
            writer_kwargs["quality"] = None

        try:
            writer = imageio.get_writer(str(output_path), **writer_kwargs)
        except Exception as e:
            Path(output_path).unlink(missing_ok=True)
            raise EncoderError(f"Could not create ffmpeg writer: {e}", e) from e

        logger.info(f"Library encoder prepared: {config.width}x{config.height} @ {config.fps} fps, "
                    f"bitrate={config.bitrate}, profile={config.codec_profile}")
        return LibraryHandle(
            kind=self.kind,
            canvas=canvas,
            config=config,
            output_path=output_path,
            mime_type=H264_BASELINE_MIME,
            writer=writer,
        )

    def capture_frame(self, handle: LibraryHandle):
        if handle.state is not HandleState.OPEN:
            raise EncoderError(f"Cannot capture into a {handle.state.value} handle")
        # imageio expects RGB
        frame = cv2.cvtColor(handle.canvas.pixels, cv2.COLOR_BGR2RGB)
        try:
            handle.writer.append_data(frame)
        except Exception as e:
            raise EncoderError(f"ffmpeg rejected frame {handle.frames_captured}: {e}", e) from e
        handle.frames_captured += 1

    async def finish(self, handle: LibraryHandle) -> EncodedArtifact:
        handle.begin_finish()
        try:
            await self._flush(handle, handle.writer.close)
        except Exception as e:
            raise EncoderError(f"ffmpeg failed to flush: {e}", e) from e

        if handle.state is HandleState.ABORTED:
            # Aborted while flushing
            self._discard_output(handle)
            raise EncoderError("Library encoder was aborted during finish")

        handle.state = HandleState.FINISHED
        return self._collect_artifact(handle)

    def abort(self, handle: Optional[LibraryHandle]):
        if handle is None or handle.state in (HandleState.FINISHED, HandleState.ABORTED):
            return

        flushing = handle.state is HandleState.FINISHING
        handle.state = HandleState.ABORTED
        if flushing:
            # The executor thread still owns the writer; finish cleans up after it
            logger.warning("Library encoder aborted while flushing")
            return

        try:
            handle.writer.close()
        except Exception as e:
            logger.debug(f"Ignoring writer error during abort: {e}")
        self._discard_output(handle)
        logger.info("Library encoder aborted")
