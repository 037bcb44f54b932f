"""
Error taxonomy for the postcard video recorder.

Every recording failure carries a ``FailureCause`` so the orchestrator can
turn it into a ``Failed(cause)`` state without inspecting exception types.
"""

from typing import Optional

from .models import FailureCause


class RecordingError(Exception):
    """Base class for errors raised while producing a postcard video."""

    cause: FailureCause = FailureCause.ENCODER_ERROR

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)


class UnsupportedEnvironmentError(RecordingError):
    """Raised when the runtime lacks the capability a backend needs."""

    cause = FailureCause.UNSUPPORTED_ENVIRONMENT


class MissingElementsError(RecordingError):
    """Raised when the canvas, images or background source are not available."""

    cause = FailureCause.MISSING_ELEMENTS


class EncoderError(RecordingError):
    """Raised when an encoder fails to accept frames or to flush its output."""

    cause = FailureCause.ENCODER_ERROR


class AlreadyFinishedError(EncoderError):
    """Raised when ``finish`` is called on a handle that is no longer open."""


class RecordingTimeoutError(RecordingError):
    """Raised when an encoder does not finish within the configured ceiling."""

    cause = FailureCause.TIMEOUT


class IncompatibleOutputError(RecordingError):
    """Raised when no backend produced output the target profile accepts."""

    cause = FailureCause.INCOMPATIBLE_OUTPUT


class UploadFailedError(Exception):
    """Raised by an upload relay. Never fatal to a finished recording."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PlaybackError(Exception):
    """Raised when the background video refuses to start playing."""
