"""
Audio module - microphone capture, recorder state machine, PCM packing and
audio file loading.
"""

from .capture import BaseMediaCapture, BaseMediaStream, SoundDeviceCapture
from .file_source import load_audio_file
from .processor import AudioProcessor
from .recorder import CaptureSession, Recorder

__all__ = [
    "AudioProcessor",
    "BaseMediaCapture",
    "BaseMediaStream",
    "CaptureSession",
    "Recorder",
    "SoundDeviceCapture",
    "load_audio_file",
]
