"""Data models for murmur."""

from .backend import (
    OUTPUT_PLACEHOLDER,
    BackendChoice,
    BackendProfile,
    NamedBackend,
    OverrideBackend,
)
from .events import Notice, ProcessExit
from .session import RecordingSession, SessionState
from .transcription import TranscriptionResult

__all__ = [
    "OUTPUT_PLACEHOLDER",
    "BackendChoice",
    "BackendProfile",
    "NamedBackend",
    "OverrideBackend",
    "Notice",
    "ProcessExit",
    "RecordingSession",
    "SessionState",
    "TranscriptionResult",
]
