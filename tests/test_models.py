"""Tests for the canvas lease, frame ticker and value objects."""

import pytest

from postcard_video.canvas import Canvas, CanvasLeaseError
from postcard_video.models import (BackendKind, EncodedArtifact, Failed, FailureCause, RecordingMode,
                                   RecordingSession, Succeeded)
from postcard_video.scheduler import FrameTicker

from conftest import VirtualClock


class TestCanvas:

    def test_single_writer_lease(self):
        canvas = Canvas(8)
        canvas.acquire("a")
        with pytest.raises(CanvasLeaseError):
            canvas.acquire("b")
        with pytest.raises(CanvasLeaseError):
            canvas.ensure_owner("b")

        canvas.release("b")
        assert canvas.owner == "a"
        canvas.release("a")
        canvas.acquire("b")
        canvas.ensure_owner("b")

    def test_clear_and_snapshot(self):
        canvas = Canvas(4)
        canvas.clear((1, 2, 3))
        snapshot = canvas.snapshot()
        canvas.clear()
        assert snapshot[0, 0].tolist() == [1, 2, 3]
        assert canvas.pixels[0, 0].tolist() == [0, 0, 0]


class TestFrameTicker:

    async def test_ticks_at_refresh_rate(self):
        ticker = FrameTicker(60.0, clock=VirtualClock())
        stamps = []
        async for timestamp in ticker.ticks():
            stamps.append(timestamp)
            if len(stamps) == 4:
                break

        assert stamps == sorted(stamps)
        assert stamps[1] - stamps[0] == pytest.approx(1000 / 60)

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            FrameTicker(0)


class TestValueObjects:

    def test_artifact_must_not_be_empty(self):
        with pytest.raises(ValueError):
            EncodedArtifact(data=b"", mime_type="video/mp4")

    def test_artifact_container(self):
        artifact = EncodedArtifact(data=b"\x00", mime_type='video/mp4; codecs="avc1.42E01E"')
        assert artifact.container == "mp4"
        assert artifact.size_bytes == 1

    def test_artifact_save(self, tmp_path):
        artifact = EncodedArtifact(data=b"\x00\x01", mime_type="video/mp4")
        path = artifact.save(tmp_path / "out" / "card.mp4")
        assert path.read_bytes() == b"\x00\x01"

    def test_session_target_frames(self):
        automatic = RecordingSession(BackendKind.LIBRARY_ENCODER, RecordingMode.AUTOMATIC, 24, 10000)
        manual = RecordingSession(BackendKind.NATIVE_MEDIA_RECORDER, RecordingMode.MANUAL, 15, None)
        assert automatic.target_frames == 240
        assert manual.target_frames is None
        assert automatic.session_id != manual.session_id

    def test_terminal_states(self):
        assert Failed(FailureCause.TIMEOUT).is_terminal
        assert Succeeded.is_terminal

    def test_alternate_backend(self):
        assert BackendKind.LIBRARY_ENCODER.alternate is BackendKind.NATIVE_MEDIA_RECORDER
        assert BackendKind.NATIVE_MEDIA_RECORDER.alternate is BackendKind.LIBRARY_ENCODER
