"""
Loading of composition assets: the postcard overlay, frame art and background.

Images may come from local paths or HTTP(S) URLs and are decoded with OpenCV
keeping their alpha channel. Loading is the awaited gate that must complete
before a recording session can start.
"""

import asyncio
import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np
import requests

from .background import BackgroundVideo
from .exceptions import MissingElementsError
from .models import CompositionInputs

logger = logging.getLogger(__name__)


def load_image(source: Union[str, Path], timeout: float = 30.0) -> np.ndarray:
    """
    Fetch and decode an image into a BGR or BGRA array.

    Args:
        source: Local path or http(s) URL
        timeout: Request timeout for remote sources

    Returns:
        Decoded image
    """
    source = str(source)
    if source.startswith(("http://", "https://")):
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise MissingElementsError(f"Could not fetch image {source}", e) from e
        data = response.content
    else:
        path = Path(source)
        if not path.exists():
            raise MissingElementsError(f"Image not found: {path}")
        data = path.read_bytes()

    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise MissingElementsError(f"Could not decode image {source}")

    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.dtype != np.uint8:
        image = cv2.convertScaleAbs(image, alpha=255.0 / np.iinfo(image.dtype).max)

    logger.debug(f"Loaded image {source}: {image.shape[1]}x{image.shape[0]}")
    return image


async def load_composition_inputs(overlay_source: Union[str, Path],
                                  frame_art_source: Union[str, Path],
                                  background_source: Union[str, Path],
                                  greeting_text: str = "",
                                  canvas_size: int = 512,
                                  background_max_frames: int = 300) -> CompositionInputs:
    """Decode both images and buffer the background clip concurrently."""
    loop = asyncio.get_running_loop()
    overlay, frame_art, background = await asyncio.gather(
        loop.run_in_executor(None, load_image, overlay_source),
        loop.run_in_executor(None, load_image, frame_art_source),
        loop.run_in_executor(None, BackgroundVideo.open, background_source,
                             canvas_size, background_max_frames),
    )
    logger.info("Composition inputs loaded")
    return CompositionInputs(
        overlay_image=overlay,
        frame_art_image=frame_art,
        background=background,
        greeting_text=greeting_text,
        canvas_size=canvas_size,
    )
