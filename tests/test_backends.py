"""Recording backend tests: handle lifecycle, mocked writers and real encoders where available."""

import asyncio
import time
from unittest.mock import MagicMock

import cv2
import pytest

from postcard_video.backends.base import EncoderConfig, EncoderHandle, HandleState
from postcard_video.backends.library_encoder import H264_BASELINE_MIME, LibraryEncoder, LibraryHandle
from postcard_video.backends import native_recorder
from postcard_video.backends.native_recorder import NativeHandle, NativeMediaRecorder
from postcard_video.canvas import Canvas
from postcard_video.exceptions import (AlreadyFinishedError, EncoderError, MissingElementsError,
                                       UnsupportedEnvironmentError)
from postcard_video.models import BackendKind

SIZE = 64


@pytest.fixture
def encoder_config():
    return EncoderConfig(fps=10, width=SIZE, height=SIZE, bitrate=200000)


@pytest.fixture
def canvas():
    return Canvas(SIZE)


def paint(canvas: Canvas, step: int):
    canvas.pixels[:] = (step * 20 % 255, 80, 160)


class TestEncoderHandle:

    def test_second_finish_claim_fails(self, canvas, encoder_config):
        handle = EncoderHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config)
        handle.begin_finish()
        with pytest.raises(AlreadyFinishedError):
            handle.begin_finish()

    def test_duration_from_frames(self, canvas, encoder_config):
        handle = EncoderHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               frames_captured=25)
        assert handle.duration_ms == 2500


class TestLibraryEncoder:

    def test_ffmpeg_flags(self, encoder_config):
        params = LibraryEncoder.ffmpeg_params(encoder_config)
        assert params[params.index("-profile:v") + 1] == "baseline"
        assert params[params.index("-g") + 1] == "10"
        assert "+faststart" in params
        assert params[params.index("-maxrate") + 1] == "200000"

    async def test_prepare_without_ffmpeg_is_unsupported(self, monkeypatch, canvas, encoder_config, tmp_path):
        monkeypatch.setattr(LibraryEncoder, "is_available", staticmethod(lambda: False))
        with pytest.raises(UnsupportedEnvironmentError):
            await LibraryEncoder(tmp_path).prepare(canvas, encoder_config)

    async def test_prepare_requires_canvas(self, encoder_config, tmp_path):
        with pytest.raises(MissingElementsError):
            await LibraryEncoder(tmp_path).prepare(None, encoder_config)

    async def test_prepare_rejects_mismatched_canvas(self, encoder_config, tmp_path):
        with pytest.raises(EncoderError):
            await LibraryEncoder(tmp_path).prepare(Canvas(32), encoder_config)

    def test_abort_closes_writer_and_removes_output(self, canvas, encoder_config, tmp_path):
        output = tmp_path / "partial.mp4"
        output.write_bytes(b"partial")
        writer = MagicMock()
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               output_path=output, writer=writer)
        encoder = LibraryEncoder(tmp_path)

        encoder.abort(handle)
        encoder.abort(handle)

        writer.close.assert_called_once()
        assert handle.state is HandleState.ABORTED
        assert not output.exists()

    async def test_cancelled_finish_removes_output_once_flushed(self, canvas, encoder_config, tmp_path):
        output = tmp_path / "postcard-library.mp4"
        output.write_bytes(b"partial")
        writer = MagicMock()
        writer.close.side_effect = lambda: time.sleep(0.3)
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               output_path=output, writer=writer)
        encoder = LibraryEncoder(tmp_path)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(encoder.finish(handle), 0.05)
        encoder.abort(handle)
        await asyncio.sleep(0.5)

        assert handle.state is HandleState.ABORTED
        assert list(tmp_path.iterdir()) == []
        writer.close.assert_called_once()

    async def test_failed_flush_removes_output(self, canvas, encoder_config, tmp_path):
        output = tmp_path / "postcard-library.mp4"
        output.write_bytes(b"partial")
        writer = MagicMock()
        writer.close.side_effect = OSError("broken pipe")
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               output_path=output, writer=writer)

        with pytest.raises(EncoderError):
            await LibraryEncoder(tmp_path).finish(handle)

        assert handle.state is HandleState.ABORTED
        assert not output.exists()

    async def test_concurrent_finish_produces_one_artifact(self, canvas, encoder_config, tmp_path):
        output = tmp_path / "postcard-library.mp4"
        output.write_bytes(b"\x00" * 2048)
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               output_path=output, writer=MagicMock(), frames_captured=10)
        encoder = LibraryEncoder(tmp_path)

        results = await asyncio.gather(encoder.finish(handle), encoder.finish(handle), return_exceptions=True)

        artifacts = [r for r in results if not isinstance(r, BaseException)]
        errors = [r for r in results if isinstance(r, BaseException)]
        assert len(artifacts) == 1
        assert artifacts[0].size_bytes == 2048
        assert len(errors) == 1 and isinstance(errors[0], AlreadyFinishedError)
        handle.writer.close.assert_called_once()

    async def test_unwritable_output_is_encoder_error(self, monkeypatch, canvas, encoder_config, tmp_path):
        monkeypatch.setattr(LibraryEncoder, "is_available", staticmethod(lambda: True))
        encoder = LibraryEncoder(tmp_path)

        def no_space(suffix):
            raise OSError("No space left on device")

        monkeypatch.setattr(encoder, "_new_output_path", no_space)
        with pytest.raises(EncoderError):
            await encoder.prepare(canvas, encoder_config)

    def test_capture_after_abort_fails(self, canvas, encoder_config, tmp_path):
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               writer=MagicMock(), state=HandleState.ABORTED)
        with pytest.raises(EncoderError):
            LibraryEncoder(tmp_path).capture_frame(handle)

    def test_capture_converts_to_rgb(self, canvas, encoder_config, tmp_path):
        writer = MagicMock()
        handle = LibraryHandle(kind=BackendKind.LIBRARY_ENCODER, canvas=canvas, config=encoder_config,
                               writer=writer)
        canvas.pixels[:] = (255, 0, 0)

        LibraryEncoder(tmp_path).capture_frame(handle)

        frame = writer.append_data.call_args[0][0]
        assert frame[0, 0].tolist() == [0, 0, 255]
        assert handle.frames_captured == 1

    @pytest.mark.skipif(not LibraryEncoder.is_available(), reason="ffmpeg not available")
    async def test_encodes_h264_mp4(self, canvas, encoder_config, tmp_path):
        encoder = LibraryEncoder(tmp_path)
        handle = await encoder.prepare(canvas, encoder_config)
        for step in range(10):
            paint(canvas, step)
            encoder.capture_frame(handle)

        artifact = await encoder.finish(handle)

        assert artifact.mime_type == H264_BASELINE_MIME
        assert artifact.container == "mp4"
        assert artifact.size_bytes > 0
        assert artifact.duration_ms == 1000
        assert list(tmp_path.iterdir()) == []
        with pytest.raises(AlreadyFinishedError):
            await encoder.finish(handle)
        encoder.abort(handle)


class TestNativeMediaRecorder:

    def mocked_handle(self, canvas, encoder_config, output, writer):
        return NativeHandle(kind=BackendKind.NATIVE_MEDIA_RECORDER, canvas=canvas, config=encoder_config,
                            output_path=output, writer=writer)

    async def test_sampling_starts_with_first_composed_frame(self, canvas, encoder_config, tmp_path):
        written = []
        writer = MagicMock()
        writer.write.side_effect = lambda frame: written.append(frame.copy())
        handle = self.mocked_handle(canvas, encoder_config, tmp_path / "postcard-native.mp4", writer)
        recorder = NativeMediaRecorder(tmp_path)

        paint(canvas, 3)
        recorder.capture_frame(handle)
        sampler = handle.sampler
        recorder.capture_frame(handle)
        await asyncio.sleep(0)

        assert handle.sampler is sampler
        assert written[0][0, 0].tolist() == [60, 80, 160]
        recorder.abort(handle)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert sampler.done()

    async def test_failed_release_removes_output(self, canvas, encoder_config, tmp_path):
        output = tmp_path / "postcard-native.mp4"
        output.write_bytes(b"partial")
        writer = MagicMock()
        writer.release.side_effect = cv2.error("release failed")
        handle = self.mocked_handle(canvas, encoder_config, output, writer)
        recorder = NativeMediaRecorder(tmp_path)

        with pytest.raises(EncoderError):
            await recorder.finish(handle)
        recorder.abort(handle)

        assert handle.state is HandleState.ABORTED
        assert not output.exists()
        writer.release.assert_called_once()

    async def test_writer_error_in_prepare_is_encoder_error(self, monkeypatch, canvas, encoder_config, tmp_path):
        def broken_writer(*args):
            raise cv2.error("no writer")

        monkeypatch.setattr(native_recorder.cv2, "VideoWriter", broken_writer)
        with pytest.raises(EncoderError):
            await NativeMediaRecorder(tmp_path).prepare(canvas, encoder_config)
        assert list(tmp_path.iterdir()) == []

    async def test_no_supported_format_is_unsupported(self, canvas, encoder_config, tmp_path):
        recorder = NativeMediaRecorder(tmp_path, formats=[("XXXX", ".none", "video/none")])
        with pytest.raises(UnsupportedEnvironmentError):
            await recorder.prepare(canvas, encoder_config)
        assert list(tmp_path.iterdir()) == []

    async def test_records_sampled_canvas(self, canvas, encoder_config, tmp_path):
        recorder = NativeMediaRecorder(tmp_path)
        try:
            handle = await recorder.prepare(canvas, encoder_config)
        except UnsupportedEnvironmentError:
            pytest.skip("No OpenCV video writer available")

        for step in range(5):
            paint(canvas, step)
            recorder.capture_frame(handle)
            await asyncio.sleep(0.05)
        artifact = await recorder.finish(handle)

        assert artifact.size_bytes > 0
        assert handle.frames_captured >= 1
        assert handle.state is HandleState.FINISHED
        with pytest.raises(AlreadyFinishedError):
            await recorder.finish(handle)
        recorder.abort(handle)
        assert handle.state is HandleState.FINISHED

    async def test_abort_stops_sampler(self, canvas, encoder_config, tmp_path):
        recorder = NativeMediaRecorder(tmp_path)
        try:
            handle = await recorder.prepare(canvas, encoder_config)
        except UnsupportedEnvironmentError:
            pytest.skip("No OpenCV video writer available")
        assert handle.sampler is None
        recorder.capture_frame(handle)
        await asyncio.sleep(0)

        recorder.abort(handle)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert handle.state is HandleState.ABORTED
        assert handle.sampler.done()
        assert not handle.output_path.exists()

    async def test_sampler_uses_injected_sleep(self, canvas, encoder_config, tmp_path):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            await asyncio.sleep(0)

        recorder = NativeMediaRecorder(tmp_path, sleep=fake_sleep)
        try:
            handle = await recorder.prepare(canvas, encoder_config)
        except UnsupportedEnvironmentError:
            pytest.skip("No OpenCV video writer available")
        recorder.capture_frame(handle)
        for _ in range(3):
            await asyncio.sleep(0)
        await recorder.finish(handle)

        assert delays
        assert all(delay == pytest.approx(0.1) for delay in delays)
