"""
Recording backends: the stepped library encoder and the self-clocked native recorder.
"""

from .base import EncoderConfig, EncoderHandle, HandleState, RecordingBackend
from .library_encoder import LibraryEncoder
from .native_recorder import NativeMediaRecorder

__all__ = [
    "EncoderConfig",
    "EncoderHandle",
    "HandleState",
    "RecordingBackend",
    "LibraryEncoder",
    "NativeMediaRecorder",
]
