"""
Data models for the postcard video recorder.

Holds the immutable composition inputs, the mutable recording session, the
encoded artifact value object and the tagged union of orchestrator states.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Optional, Tuple, Union

import numpy as np

if TYPE_CHECKING:
    from .background import BackgroundVideo


MAX_GREETING_LENGTH = 75


class BackendKind(str, Enum):
    """The two interchangeable encoding strategies."""

    LIBRARY_ENCODER = "library_encoder"
    NATIVE_MEDIA_RECORDER = "native_media_recorder"

    @property
    def alternate(self) -> "BackendKind":
        if self is BackendKind.LIBRARY_ENCODER:
            return BackendKind.NATIVE_MEDIA_RECORDER
        return BackendKind.LIBRARY_ENCODER


class RecordingMode(str, Enum):
    """Fixed-length automatic recording or caller-driven manual recording."""

    AUTOMATIC = "auto"
    MANUAL = "manual"


class RecordingStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureCause(str, Enum):
    UNSUPPORTED_ENVIRONMENT = "unsupported_environment"
    MISSING_ELEMENTS = "missing_elements"
    ENCODER_ERROR = "encoder_error"
    TIMEOUT = "timeout"
    INCOMPATIBLE_OUTPUT = "incompatible_output"


class VerdictReason(str, Enum):
    TOO_LARGE = "too_large"
    WRONG_FORMAT = "wrong_format"
    SUSPECTED_CORRUPT = "suspected_corrupt"
    TOO_LONG = "too_long"


@dataclass(frozen=True, eq=False)
class CompositionInputs:
    """Everything needed to draw a postcard frame. Never mutated after loading."""

    overlay_image: np.ndarray       # AI-generated postcard, BGR or BGRA
    frame_art_image: np.ndarray     # decorative border, BGR or BGRA
    background: "BackgroundVideo"
    greeting_text: str = ""
    canvas_size: int = 512

    def __post_init__(self):
        if len(self.greeting_text) > MAX_GREETING_LENGTH:
            raise ValueError(
                f"Greeting is {len(self.greeting_text)} characters, "
                f"maximum is {MAX_GREETING_LENGTH}"
            )
        if self.canvas_size <= 0:
            raise ValueError("Canvas size must be positive")

    def is_loaded(self) -> bool:
        """True when both images are decoded and a background handle is present."""
        for image in (self.overlay_image, self.frame_art_image):
            if image is None or image.size == 0 or image.ndim != 3:
                return False
        return self.background is not None


@dataclass(frozen=True)
class EncodedArtifact:
    """An encoded video produced by one successful recording session."""

    data: bytes
    mime_type: str
    duration_ms: Optional[float] = None

    def __post_init__(self):
        if not self.data:
            raise ValueError("Encoded artifact must not be empty")

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def container(self) -> str:
        """Container subtype from the mime type, e.g. ``mp4`` for ``video/mp4; codecs=...``."""
        base = self.mime_type.split(";", 1)[0].strip().lower()
        return base.split("/", 1)[-1]

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    def save(self, path: Union[str, Path]) -> Path:
        """Write the bytes to disk for local playback or download."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.data)
        return target


@dataclass(frozen=True)
class CompatibilityVerdict:
    ok: bool
    reason: Optional[VerdictReason] = None
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UploadResult:
    """Durable location of an artifact on the media host."""

    secure_url: str
    public_id: str
    original_url: Optional[str] = None


def _new_session_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class RecordingSession:
    """Per-attempt recording bookkeeping. Mutated only by the orchestrator."""

    backend_kind: BackendKind
    mode: RecordingMode
    target_fps: int
    target_duration_ms: Optional[int]
    min_duration_ms: int = 0
    max_duration_ms: Optional[int] = None
    fallback_attempt: bool = False
    session_id: str = field(default_factory=_new_session_id)
    status: RecordingStatus = RecordingStatus.STARTING
    frames_emitted: int = 0
    elapsed_ms: float = 0.0
    output: Optional[EncodedArtifact] = None

    @property
    def target_frames(self) -> Optional[int]:
        """Frame count that ends an automatic recording, ``None`` for manual ones."""
        if self.target_duration_ms is None:
            return None
        return int(self.target_fps * (self.target_duration_ms / 1000))


# Orchestrator states. Each carries only the data valid in that state.

@dataclass(frozen=True)
class Idle:
    status: ClassVar[RecordingStatus] = RecordingStatus.IDLE
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Starting:
    session: RecordingSession
    status: ClassVar[RecordingStatus] = RecordingStatus.STARTING
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Recording:
    session: RecordingSession
    started_at_ms: float
    status: ClassVar[RecordingStatus] = RecordingStatus.RECORDING
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Stopping:
    session: RecordingSession
    status: ClassVar[RecordingStatus] = RecordingStatus.STOPPING
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Validating:
    session: RecordingSession
    artifact: EncodedArtifact
    status: ClassVar[RecordingStatus] = RecordingStatus.VALIDATING
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Succeeded:
    session: RecordingSession
    artifact: EncodedArtifact
    warnings: Tuple[str, ...] = ()
    upload: Optional[UploadResult] = None
    upload_error: Optional[str] = None
    status: ClassVar[RecordingStatus] = RecordingStatus.SUCCEEDED
    is_terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class Failed:
    cause: FailureCause
    message: str = ""
    session: Optional[RecordingSession] = None
    status: ClassVar[RecordingStatus] = RecordingStatus.FAILED
    is_terminal: ClassVar[bool] = True


RecordingState = Union[Idle, Starting, Recording, Stopping, Validating, Succeeded, Failed]
