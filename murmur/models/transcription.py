"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class TranscriptionResult:
    """Text decoded from the inference server's response."""
    text: str
    model: str = ""
    processing_time: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
