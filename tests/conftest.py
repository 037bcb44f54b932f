"""Shared fixtures: a virtual clock, fake recording backends and small composition inputs."""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pytest

from postcard_video.backends.base import EncoderHandle, HandleState, RecordingBackend
from postcard_video.background import BackgroundVideo
from postcard_video.canvas import Canvas
from postcard_video.capabilities import PlatformCapabilities
from postcard_video.compositor import FrameComposer
from postcard_video.config import Config
from postcard_video.exceptions import UnsupportedEnvironmentError
from postcard_video.models import BackendKind, CompositionInputs, EncodedArtifact
from postcard_video.orchestrator import RecordingOrchestrator
from postcard_video.scheduler import FrameTicker

CANVAS_SIZE = 64


class VirtualClock:
    """Clock whose sleep advances time instantly and yields to the event loop."""

    def __init__(self):
        self.now = 0.0

    def now_ms(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.now += seconds * 1000
        await asyncio.sleep(0)


@dataclass
class FakeHandle(EncoderHandle):
    owners: List[Optional[str]] = field(default_factory=list)
    frames_at_finish: Optional[int] = None


class FakeBackend(RecordingBackend):
    """In-memory backend recording every call the orchestrator makes."""

    def __init__(self, kind: BackendKind, mime_type: str = "video/mp4", size: int = 5000,
                 fail_prepare: bool = False, hang_finish: bool = False):
        super().__init__()
        self.kind = kind
        self.mime_type = mime_type
        self.size = size
        self.fail_prepare = fail_prepare
        self.hang_finish = hang_finish
        self.prepare_calls = 0
        self.abort_calls = 0
        self.handles: List[FakeHandle] = []

    async def prepare(self, canvas, config):
        self.prepare_calls += 1
        if self.fail_prepare:
            raise UnsupportedEnvironmentError(f"{self.kind.value} unavailable")
        handle = FakeHandle(kind=self.kind, canvas=canvas, config=config, mime_type=self.mime_type)
        self.handles.append(handle)
        return handle

    def capture_frame(self, handle):
        handle.owners.append(handle.canvas.owner)
        handle.frames_captured += 1

    async def finish(self, handle):
        handle.begin_finish()
        if self.hang_finish:
            await asyncio.sleep(3600)
        handle.frames_at_finish = handle.frames_captured
        handle.state = HandleState.FINISHED
        return EncodedArtifact(data=b"\x00" * self.size, mime_type=self.mime_type,
                               duration_ms=handle.duration_ms)

    def abort(self, handle):
        self.abort_calls += 1
        if handle is not None and handle.state in (HandleState.OPEN, HandleState.FINISHING):
            handle.state = HandleState.ABORTED


class StaticProbe:
    def __init__(self, is_mobile: bool = False, supports_library_encoder: bool = True):
        self.capabilities = PlatformCapabilities(is_mobile=is_mobile,
                                                 supports_library_encoder=supports_library_encoder)

    def probe(self) -> PlatformCapabilities:
        return self.capabilities


@pytest.fixture
def config():
    return Config(canvas_size=CANVAS_SIZE, upload_enabled=False)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def inputs():
    overlay = np.zeros((40, 40, 3), dtype=np.uint8)
    overlay[:] = (0, 0, 255)
    frame_art = np.zeros((CANVAS_SIZE, CANVAS_SIZE, 4), dtype=np.uint8)
    frame_art[:4, :] = (255, 0, 0, 255)
    frames = [np.full((CANVAS_SIZE, CANVAS_SIZE, 3), (0, 255, 0), dtype=np.uint8) for _ in range(5)]
    return CompositionInputs(
        overlay_image=overlay,
        frame_art_image=frame_art,
        background=BackgroundVideo.from_frames(frames, fps=10),
        canvas_size=CANVAS_SIZE,
    )


@pytest.fixture
def canvas():
    return Canvas(CANVAS_SIZE)


@pytest.fixture
def library():
    return FakeBackend(BackendKind.LIBRARY_ENCODER)


@pytest.fixture
def native():
    return FakeBackend(BackendKind.NATIVE_MEDIA_RECORDER)


@pytest.fixture
def make_orchestrator(config, clock, library, native):
    """Build an orchestrator over the fake backends; keyword arguments override the defaults."""

    def factory(cfg: Optional[Config] = None, probe: Optional[StaticProbe] = None, **kwargs):
        cfg = cfg or config
        return RecordingOrchestrator(
            cfg,
            FrameComposer(cfg),
            {BackendKind.LIBRARY_ENCODER: library, BackendKind.NATIVE_MEDIA_RECORDER: native},
            probe=probe or StaticProbe(),
            ticker=FrameTicker(cfg.refresh_hz, clock=clock),
            **kwargs,
        )

    return factory
