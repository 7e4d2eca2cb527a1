"""Transcription module for murmur."""

from .client import TranscriptionClient
from ..models.transcription import TranscriptionResult

__all__ = [
    "TranscriptionClient",
    "TranscriptionResult",
]
