"""
Package initialization for the festive postcard video recorder.
"""

# Import main classes for easy access
from .config import Config, load_config
from .canvas import Canvas
from .background import BackgroundVideo
from .assets import load_composition_inputs, load_image
from .compositor import FrameComposer
from .backends import LibraryEncoder, NativeMediaRecorder, RecordingBackend
from .validator import CompatibilityValidator, CompatibilityProfile, get_profile
from .orchestrator import RecordingOrchestrator, RecordingHandle
from .upload_relay import SignedUploadRelay
from .models import (BackendKind, CompositionInputs, EncodedArtifact, FailureCause,
                     RecordingMode, RecordingSession)

__version__ = "1.0.0"
__author__ = "Festive Postcard Video"

__all__ = [
    'Config',
    'load_config',
    'Canvas',
    'BackgroundVideo',
    'load_composition_inputs',
    'load_image',
    'FrameComposer',
    'LibraryEncoder',
    'NativeMediaRecorder',
    'RecordingBackend',
    'CompatibilityValidator',
    'CompatibilityProfile',
    'get_profile',
    'RecordingOrchestrator',
    'RecordingHandle',
    'SignedUploadRelay',
    'BackendKind',
    'CompositionInputs',
    'EncodedArtifact',
    'FailureCause',
    'RecordingMode',
    'RecordingSession',
]
