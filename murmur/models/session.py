"""Session-related data models."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .backend import BackendProfile


class SessionState(Enum):
    """Lifecycle states of a recording session."""
    IDLE = "idle"
    RECORDING = "recording"
    CANCELLED = "cancelled"
    AWAITING_TRANSCRIPTION = "awaiting_transcription"
    TRANSCRIBING = "transcribing"
    DONE = "done"


@dataclass
class RecordingSession:
    """One record-then-transcribe unit of work and the resources it owns."""
    session_id: str
    profile: BackendProfile
    raw_file_path: str
    completion_callback: Callable[[str], None]
    session_tag: Any = None
    processed_file_path: Optional[str] = None
    state: SessionState = SessionState.IDLE
    continue_to_transcription: bool = False
    cleanup_started: bool = False
    started_at: datetime = field(default_factory=datetime.now)

    # Owned handles, released by cleanup
    status_timer: Any = None
    grace_timer: Optional[asyncio.TimerHandle] = None
    transcription_task: Optional[asyncio.Task] = None
    display: Any = None

    last_output: str = ""
    error: Optional[Exception] = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_done(self) -> bool:
        return self.state == SessionState.DONE

    async def wait(self) -> None:
        """Wait until the session has been cleaned up."""
        await self.finished.wait()
