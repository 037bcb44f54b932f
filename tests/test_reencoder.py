"""Re-encode step tests: the original artifact survives every failure mode."""

import pytest

from postcard_video.config import Config
from postcard_video.models import EncodedArtifact
from postcard_video.reencoder import ArtifactReencoder
from postcard_video.validator import MESSAGING_PLATFORM_SHARE, CompatibilityProfile


@pytest.fixture
def original():
    return EncodedArtifact(data=b"\x01" * 50_000, mime_type="video/mp4", duration_ms=10000)


@pytest.fixture
def reencoder(tmp_path):
    return ArtifactReencoder(Config(), tmp_path)


class TestArtifactReencoder:

    async def test_smaller_result_replaces_original(self, monkeypatch, reencoder, original):
        monkeypatch.setattr(reencoder, "_transcode", lambda artifact, profile: b"\x02" * 20_000)

        result = await reencoder.reencode(original, MESSAGING_PLATFORM_SHARE)

        assert result is not original
        assert result.size_bytes == 20_000
        assert result.mime_type == "video/mp4"
        assert result.duration_ms == 10000

    async def test_result_over_limit_keeps_original(self, monkeypatch, reencoder, original):
        tight = CompatibilityProfile(name="tight", max_size_bytes=10_000, min_size_bytes=1000)
        monkeypatch.setattr(reencoder, "_transcode", lambda artifact, profile: b"\x02" * 20_000)

        assert await reencoder.reencode(original, tight) is original

    async def test_transcode_error_keeps_original(self, monkeypatch, reencoder, original):
        def broken(artifact, profile):
            raise OSError("ffmpeg crashed")

        monkeypatch.setattr(reencoder, "_transcode", broken)

        assert await reencoder.reencode(original, MESSAGING_PLATFORM_SHARE) is original

    async def test_empty_output_keeps_original(self, monkeypatch, reencoder, original):
        monkeypatch.setattr(reencoder, "_transcode", lambda artifact, profile: b"")
        assert await reencoder.reencode(original, MESSAGING_PLATFORM_SHARE) is original

    async def test_unreadable_input_keeps_original(self, reencoder, original):
        assert await reencoder.reencode(original, MESSAGING_PLATFORM_SHARE) is original
