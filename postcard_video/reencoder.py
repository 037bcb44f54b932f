"""
Optional platform optimisation pass for finished postcards.

Transcodes an artifact to the profile's target size, frame rate and bitrate.
The original artifact is kept whenever the transcode fails or its result
would exceed the profile's size limit.
"""

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Optional

import cv2
import imageio

from .config import Config
from .models import EncodedArtifact
from .validator import CompatibilityProfile

logger = logging.getLogger(__name__)


class ArtifactReencoder:
    """Re-encodes artifacts with imageio's ffmpeg reader and writer."""

    def __init__(self, config: Config, work_dir: Optional[Path] = None):
        self.config = config
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir())

    async def reencode(self, artifact: EncodedArtifact,
                       profile: CompatibilityProfile) -> EncodedArtifact:
        """
        Optimise ``artifact`` for ``profile``.

        Args:
            artifact: Validated artifact
            profile: Target whose width/height/fps/bitrate drive the transcode

        Returns:
            The re-encoded artifact, or the original one when it cannot be improved
        """
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self._transcode, artifact, profile)
        except Exception as e:
            logger.warning(f"Re-encode failed, keeping original artifact: {e}")
            return artifact

        if not data:
            logger.warning("Re-encode produced no output, keeping original artifact")
            return artifact

        if len(data) > profile.max_size_bytes:
            logger.warning(f"Re-encoded file is {len(data)} bytes, over the {profile.name} limit, "
                           f"keeping original artifact")
            return artifact

        result = EncodedArtifact(data=data, mime_type="video/mp4", duration_ms=artifact.duration_ms)
        logger.info(f"Re-encoded artifact: {artifact.size_mb:.2f}MB -> {result.size_mb:.2f}MB")
        return result

    def _transcode(self, artifact: EncodedArtifact, profile: CompatibilityProfile) -> bytes:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.work_dir) as tmp:
            source = Path(tmp) / f"source.{artifact.container or 'mp4'}"
            target = Path(tmp) / "optimized.mp4"
            source.write_bytes(artifact.data)

            reader = imageio.get_reader(str(source), 'ffmpeg')
            try:
                source_fps = reader.get_meta_data().get('fps') or profile.target_fps
                step = max(source_fps / profile.target_fps, 1.0)

                writer = imageio.get_writer(
                    str(target),
                    format="FFMPEG",
                    mode="I",
                    fps=profile.target_fps,
                    codec="libx264",
                    bitrate=profile.target_bitrate,
                    quality=None,
                    pixelformat="yuv420p",
                    macro_block_size=2,
                    ffmpeg_log_level="error",
                    ffmpeg_params=["-profile:v", self.config.codec_profile,
                                   "-movflags", "+faststart"],
                )
                try:
                    next_index = 0.0
                    for index, frame in enumerate(reader):
                        if index < next_index:
                            continue
                        next_index += step
                        size = (profile.target_width, profile.target_height)
                        if (frame.shape[1], frame.shape[0]) != size:
                            frame = cv2.resize(frame, size, interpolation=cv2.INTER_AREA)
                        writer.append_data(frame)
                finally:
                    writer.close()
            finally:
                reader.close()

            return target.read_bytes() if target.exists() else b""
