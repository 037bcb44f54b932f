"""Frame composition tests on a small canvas."""

import numpy as np
import pytest

from postcard_video.background import BackgroundVideo
from postcard_video.canvas import Canvas
from postcard_video.compositor import FrameComposer, blend_onto, fit_within, wrap_text
from postcard_video.models import CompositionInputs

from conftest import CANVAS_SIZE

RED = [0, 0, 255]
GREEN = [0, 255, 0]
BLUE = [255, 0, 0]


def has_white(pixels: np.ndarray) -> bool:
    return bool(np.any(pixels.min(axis=2) > 200))


class TestWrapText:

    def test_wraps_at_width(self):
        assert wrap_text("aa bb cc", 5, len) == ["aa bb", "cc"]

    def test_overlong_word_gets_its_own_line(self):
        assert wrap_text("a supercalifragilistic b", 5, len) == ["a", "supercalifragilistic", "b"]

    def test_empty_text(self):
        assert wrap_text("   ", 10, len) == []


class TestHelpers:

    def test_fit_within_preserves_aspect(self):
        assert fit_within(200, 100, 50, 50) == (50, 25)

    def test_blend_respects_alpha(self):
        dst = np.zeros((4, 4, 3), dtype=np.uint8)
        src = np.zeros((2, 2, 4), dtype=np.uint8)
        src[0, 0] = (255, 255, 255, 255)
        blend_onto(dst, src, 1, 1)
        assert dst[1, 1].tolist() == [255, 255, 255]
        assert dst[2, 2].tolist() == [0, 0, 0]

    def test_blend_clips_outside(self):
        dst = np.zeros((4, 4, 3), dtype=np.uint8)
        blend_onto(dst, np.full((4, 4, 3), 9, dtype=np.uint8), 2, 2)
        assert dst[3, 3].tolist() == [9, 9, 9]
        assert dst[1, 1].tolist() == [0, 0, 0]


class TestFrameComposer:

    def test_layers_are_drawn_in_order(self, config, inputs, canvas):
        inputs.background.play()
        FrameComposer(config).render_frame(canvas, inputs, 0)

        assert canvas.pixels[CANVAS_SIZE // 2, CANVAS_SIZE // 2].tolist() == RED
        assert canvas.pixels[0, CANVAS_SIZE // 2].tolist() == BLUE
        assert canvas.pixels[CANVAS_SIZE - 1, 0].tolist() == GREEN

    def test_overlay_scaled_to_proportion_of_canvas(self, config, inputs, canvas):
        FrameComposer(config).render_frame(canvas, inputs, 0)
        red_rows = np.where((canvas.pixels[:, :, 2] == 255) & (canvas.pixels[:, :, 1] == 0))[0]
        assert red_rows.max() - red_rows.min() + 1 == pytest.approx(CANVAS_SIZE * 0.8, abs=1)

    def test_unbuffered_background_is_skipped(self, config, inputs, canvas):
        empty = CompositionInputs(inputs.overlay_image, inputs.frame_art_image, BackgroundVideo(),
                                  canvas_size=CANVAS_SIZE)
        FrameComposer(config).render_frame(canvas, empty, 0)

        assert canvas.pixels[CANVAS_SIZE - 1, 0].tolist() == [0, 0, 0]
        assert canvas.pixels[CANVAS_SIZE // 2, CANVAS_SIZE // 2].tolist() == RED

    def test_wide_background_is_letterboxed(self, config, inputs, canvas):
        wide = BackgroundVideo.from_frames([np.full((16, 64, 3), 200, dtype=np.uint8)])
        clip = CompositionInputs(inputs.overlay_image, inputs.frame_art_image, wide,
                                 canvas_size=CANVAS_SIZE)
        FrameComposer(config).render_frame(canvas, clip, 0)

        assert canvas.pixels[CANVAS_SIZE - 1, 0].tolist() == [0, 0, 0]
        assert canvas.pixels[CANVAS_SIZE // 2, 0].tolist() == [200, 200, 200]

    def test_greeting_is_rendered_when_present(self, config, inputs, canvas):
        composer = FrameComposer(config)
        composer.render_frame(canvas, inputs, 0)
        assert not has_white(canvas.pixels)

        greeting = CompositionInputs(inputs.overlay_image, inputs.frame_art_image, inputs.background,
                                     greeting_text="Happy Diwali", canvas_size=CANVAS_SIZE)
        composer.render_frame(canvas, greeting, 0)
        assert has_white(canvas.pixels)

    def test_greeting_length_is_limited(self, inputs):
        with pytest.raises(ValueError):
            CompositionInputs(inputs.overlay_image, inputs.frame_art_image, inputs.background,
                              greeting_text="x" * 76, canvas_size=CANVAS_SIZE)

    def test_inputs_are_not_mutated(self, config, inputs, canvas):
        overlay = inputs.overlay_image.copy()
        frame_art = inputs.frame_art_image.copy()

        FrameComposer(config).render_frame(canvas, inputs, 500)

        assert np.array_equal(inputs.overlay_image, overlay)
        assert np.array_equal(inputs.frame_art_image, frame_art)

    def test_canvas_size_mismatch(self, config, inputs):
        with pytest.raises(ValueError):
            FrameComposer(config).render_frame(Canvas(32), inputs, 0)


class TestBackgroundVideo:

    def test_loops_by_elapsed_time(self):
        frames = [np.full((2, 2, 3), i, dtype=np.uint8) for i in range(3)]
        video = BackgroundVideo.from_frames(frames, fps=10)
        video.play()
        assert video.frame_at(0)[0, 0, 0] == 0
        assert video.frame_at(100)[0, 0, 0] == 1
        assert video.frame_at(300)[0, 0, 0] == 0

    def test_paused_shows_first_frame(self):
        frames = [np.full((2, 2, 3), i, dtype=np.uint8) for i in range(3)]
        video = BackgroundVideo.from_frames(frames, fps=10)
        assert video.frame_at(200)[0, 0, 0] == 0

    def test_empty_video_reports_zero_size(self):
        video = BackgroundVideo()
        assert (video.natural_width, video.natural_height) == (0, 0)
        assert video.frame_at(0) is None
