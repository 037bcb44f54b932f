"""
Frame composition for the postcard video recorder.

This module draws one postcard frame onto the square canvas:
background clip (letterboxed), postcard overlay, frame art and the
word-wrapped greeting, in that order.
"""

import cv2
import numpy as np
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from PIL import Image, ImageDraw, ImageFont

from .canvas import Canvas
from .config import Config
from .models import CompositionInputs

logger = logging.getLogger(__name__)

BOLD_FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf", "LiberationSans-Bold.ttf")


def fit_within(src_w: int, src_h: int, box_w: float, box_h: float) -> Tuple[int, int]:
    """Largest size with the source aspect ratio that fits inside the box."""
    scale = min(box_w / src_w, box_h / src_h)
    return max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale)))


def blend_onto(dst: np.ndarray, src: np.ndarray, x: int, y: int):
    """Draw ``src`` (BGR or BGRA) onto ``dst`` at (x, y), clipping to the destination."""
    h, w = src.shape[:2]
    dst_h, dst_w = dst.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + w, dst_w), min(y + h, dst_h)
    if x0 >= x1 or y0 >= y1:
        return

    region = src[y0 - y:y1 - y, x0 - x:x1 - x]
    if region.shape[2] == 4:
        alpha = region[..., 3:4].astype(np.float32) / 255.0
        target = dst[y0:y1, x0:x1].astype(np.float32)
        blended = region[..., :3].astype(np.float32) * alpha + target * (1.0 - alpha)
        dst[y0:y1, x0:x1] = np.clip(blended + 0.5, 0, 255).astype(np.uint8)
    else:
        dst[y0:y1, x0:x1] = region[..., :3]


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    """
    Greedy word wrap.

    A word wider than ``max_width`` on its own still gets a line of its own.
    """
    lines = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if measure(candidate) > max_width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def load_bold_font(font_path: Optional[Path], size: int) -> ImageFont.ImageFont:
    """Load a bold TrueType font, falling back to Pillow's bundled default."""
    candidates = [str(font_path)] if font_path else []
    candidates.extend(BOLD_FONT_CANDIDATES)
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.warning("No bold TrueType font found, using Pillow's default font")
    return ImageFont.load_default(size=size)


class FrameComposer:
    """Renders postcard frames. Reads the composition inputs, never mutates them."""

    def __init__(self, config: Config):
        self.config = config
        self.font = load_bold_font(config.font_path, config.font_size)

        # Static layers are prepared once per CompositionInputs
        self._prepared_for: Optional[CompositionInputs] = None
        self._layers: Dict[str, Tuple[np.ndarray, int, int]] = {}

    def render_frame(self, canvas: Canvas, inputs: CompositionInputs, elapsed_ms: float):
        """
        Draw the frame for ``elapsed_ms`` onto the canvas.

        Args:
            canvas: Canvas sized canvas_size x canvas_size
            inputs: Loaded composition inputs
            elapsed_ms: Time since recording began
        """
        size = inputs.canvas_size
        if canvas.size != (size, size):
            raise ValueError(f"Canvas is {canvas.size}, expected {size}x{size}")

        if self._prepared_for is not inputs:
            self._prepare_layers(inputs)

        canvas.clear()
        self._draw_background(canvas, inputs, elapsed_ms)

        for name in ("overlay", "frame_art", "greeting"):
            layer = self._layers.get(name)
            if layer is not None:
                image, x, y = layer
                blend_onto(canvas.pixels, image, x, y)

    def _draw_background(self, canvas: Canvas, inputs: CompositionInputs, elapsed_ms: float):
        background = inputs.background
        # Nothing buffered yet: skip the layer for this frame
        if background.natural_width <= 0 or background.natural_height <= 0:
            return

        frame = background.frame_at(elapsed_ms)
        if frame is None:
            return

        size = inputs.canvas_size
        w, h = fit_within(frame.shape[1], frame.shape[0], size, size)
        if (w, h) != (frame.shape[1], frame.shape[0]):
            frame = cv2.resize(frame, (w, h), interpolation=cv2.INTER_LINEAR)
        blend_onto(canvas.pixels, frame, (size - w) // 2, (size - h) // 2)

    def _prepare_layers(self, inputs: CompositionInputs):
        """Resize the static images and rasterise the greeting once."""
        size = inputs.canvas_size
        self._layers = {}

        overlay = inputs.overlay_image
        box = size * self.config.overlay_scale
        w, h = fit_within(overlay.shape[1], overlay.shape[0], box, box)
        self._layers["overlay"] = (
            cv2.resize(overlay, (w, h), interpolation=cv2.INTER_AREA),
            (size - w) // 2,
            (size - h) // 2,
        )

        frame_art = cv2.resize(inputs.frame_art_image, (size, size), interpolation=cv2.INTER_AREA)
        self._layers["frame_art"] = (frame_art, 0, 0)

        if inputs.greeting_text.strip():
            self._layers["greeting"] = (self._render_greeting(inputs.greeting_text, size), 0, 0)

        self._prepared_for = inputs
        logger.debug(f"Prepared composition layers: {sorted(self._layers)}")

    def _render_greeting(self, text: str, size: int) -> np.ndarray:
        """Rasterise the wrapped, centre-aligned greeting as a BGRA layer."""
        lines = wrap_text(text, size - self.config.text_margin, self.font.getlength)

        layer = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        line_height = self.config.line_height
        base_y = size - self.config.text_bottom_offset
        for index, line in enumerate(lines):
            y = base_y + (index - len(lines) / 2) * line_height
            draw.text((size / 2, y), line, font=self.font, fill=(255, 255, 255, 255), anchor="mm")

        return cv2.cvtColor(np.asarray(layer), cv2.COLOR_RGBA2BGRA)
