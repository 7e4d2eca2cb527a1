"""State-machine based recording session orchestration."""

import asyncio
import logging
from typing import Any, Callable, Optional

from ..config import MurmurConfig
from ..errors import (
    AlreadyBusyError,
    BackendExitMismatchError,
    InvalidBackendError,
    MurmurError,
    ServerUnreachableError,
    SpawnFailedError,
    TranscriptionError,
)
from ..models.backend import BackendChoice
from ..models.events import ProcessExit
from ..models.session import RecordingSession, SessionState
from ..process.supervisor import ProcessSupervisor
from ..recording.backends import BackendSelector, parse_choice
from ..recording.processing import AudioProcessor
from ..storage.file_manager import FileManager
from ..transcription.client import TranscriptionClient
from ..ui.status_display import status_lines
from .notifier import Notifier
from .status_timer import StatusTimer

logger = logging.getLogger(__name__)

# Pause between the confirm key and the stop signal so the capture tool can flush its file
GRACE_DELAY = 0.2

_STOPPABLE = (SessionState.RECORDING, SessionState.AWAITING_TRANSCRIPTION)
_AWAITING_EXIT = _STOPPABLE + (SessionState.CANCELLED,)


class SessionCoordinator:
    """Runs one recording session at a time from start to cleanup.

    The capture tool's exit is the only event that can start transcription;
    confirm() just asks the tool to stop. Every path out of a session goes
    through _cleanup(), which releases the session's resources once.
    """

    def __init__(self,
                 config: MurmurConfig,
                 supervisor: Optional[ProcessSupervisor] = None,
                 client: Optional[TranscriptionClient] = None,
                 selector: Optional[BackendSelector] = None,
                 file_manager: Optional[FileManager] = None,
                 processor: Optional[AudioProcessor] = None,
                 notifier: Optional[Notifier] = None):
        """Initialize session coordinator.

        Args:
            config: Application configuration
            supervisor: Process supervisor, built from config if None
            client: Transcription client, built from config if None
            selector: Backend selector, built from config if None
            file_manager: Store directory manager, built from config if None
            processor: Post-processing stage, built from config if None
            notifier: User-visible notice channel
        """
        self.config = config
        self.notifier = notifier or Notifier()
        self.supervisor = supervisor or ProcessSupervisor(
            self.notifier, kill_timeout=config.get('recording.kill_timeout')
        )
        self.client = client or TranscriptionClient.from_config(config)
        self.selector = selector or BackendSelector.from_config(config)
        self.file_manager = file_manager or FileManager(config.get_store_directory())
        self.processor = processor or AudioProcessor.from_config(config, self.supervisor)
        self.model = config.get('server.model', "whisper-small")
        self.refresh_interval = float(config.get('ui.refresh_interval', 0.2))

        self.session: Optional[RecordingSession] = None
        self._starting = False

    @property
    def state(self) -> SessionState:
        if self.session is None:
            return SessionState.IDLE
        return self.session.state

    async def start(self,
                    completion_callback: Callable[[str], None],
                    choice: Optional[BackendChoice] = None,
                    display: Any = None,
                    session_tag: Any = None) -> Optional[RecordingSession]:
        """Start recording.

        Args:
            completion_callback: Receives the transcript on success, never on failure
            choice: Backend choice; falls back to recording.command, then probing
            display: StatusDisplay for the session, closed by cleanup
            session_tag: Correlation key for the capture process (default: session id)

        Returns:
            The running session, or None if nothing was started
        """
        if self.session is not None or self._starting:
            self.notifier.notify("A recording session is already active", level="warning",
                                 code=AlreadyBusyError.code)
            return None

        self._starting = True
        try:
            return await self._start(completion_callback, choice, display, session_tag)
        finally:
            self._starting = False

    async def _start(self, completion_callback, choice, display, session_tag) -> Optional[RecordingSession]:
        if not await self.client.check_health():
            self.notifier.error(ServerUnreachableError(
                f"Transcription server not available at {self.client.base_url}"
            ))
            return None

        try:
            if choice is None:
                choice = parse_choice(self.config.get('recording.command'))
            profile = self.selector.select_backend(choice)
        except InvalidBackendError as e:
            self.notifier.error(e)
            return None

        if self.config.get('storage.cleanup', True):
            self.file_manager.prune_recordings(int(self.config.get('storage.max_files', 10)))

        session_id = self.file_manager.new_session_id()
        raw_path, processed_path = self.file_manager.new_recording_paths(
            session_id, processed=self.processor.enabled
        )
        session = RecordingSession(
            session_id=session_id,
            profile=profile,
            raw_file_path=raw_path,
            processed_file_path=processed_path,
            completion_callback=completion_callback,
            session_tag=session_tag if session_tag is not None else session_id,
            display=display,
        )
        self.session = session
        self._transition(session, SessionState.RECORDING)

        session.status_timer = StatusTimer(self.refresh_interval, lambda counter: self._on_tick(session, counter))
        session.status_timer.start()

        args = self.selector.build_args(profile, raw_path)
        try:
            await self.supervisor.spawn(
                profile.executable,
                args,
                session_tag=session.session_tag,
                on_exit=lambda exit: self._on_process_exit(session, exit),
                on_stdout=lambda chunk: self._on_output(session, chunk),
                on_stderr=lambda chunk: self._on_output(session, chunk),
            )
        except (AlreadyBusyError, SpawnFailedError) as e:
            self._fail(session, e)
            return session

        if session.state == SessionState.CANCELLED:
            # Cancelled while the process was starting; it was not registered yet
            self.supervisor.stop()

        logger.info(f"Recording session {session_id} started with {profile.name}")
        return session

    def confirm(self) -> bool:
        """Finish recording and transcribe once the capture tool has exited."""
        session = self.session
        if session is None or session.state != SessionState.RECORDING:
            return False

        session.continue_to_transcription = True
        self._transition(session, SessionState.AWAITING_TRANSCRIPTION)
        session.grace_timer = asyncio.get_running_loop().call_later(
            GRACE_DELAY, self._request_stop, session
        )
        return True

    def _request_stop(self, session: RecordingSession) -> None:
        session.grace_timer = None
        if session.cleanup_started or session.state != SessionState.AWAITING_TRANSCRIPTION:
            return
        logger.info(f"Stopping recording for session {session.session_id}")
        self.supervisor.stop()

    def cancel(self) -> bool:
        """Abandon the session; the completion callback will not be called."""
        session = self.session
        if session is None or session.cleanup_started:
            return False

        if session.state in _STOPPABLE:
            session.continue_to_transcription = False
            if session.grace_timer is not None:
                session.grace_timer.cancel()
                session.grace_timer = None
            self._transition(session, SessionState.CANCELLED)
            logger.info(f"Recording session {session.session_id} cancelled")
            self.supervisor.stop()
            return True

        if session.state == SessionState.TRANSCRIBING:
            logger.info(f"Transcription for session {session.session_id} abandoned")
            self._cleanup(session)
            return True

        return False

    def teardown(self) -> bool:
        """The host surface holding the session was destroyed."""
        logger.debug("Status display torn down")
        return self.cancel()

    def _on_tick(self, session: RecordingSession, counter: int) -> None:
        if session.cleanup_started:
            return
        display = session.display
        if display is None:
            return
        if not display.is_valid():
            if session.state in _STOPPABLE:
                self.teardown()
            return
        display.update(status_lines(
            self.model,
            counter,
            str(self.file_manager.store_dir),
            session.last_output,
            transcribing=session.state == SessionState.TRANSCRIBING,
        ))

    def _on_output(self, session: RecordingSession, chunk: bytes) -> None:
        text = chunk.decode("utf-8", errors="replace").replace("\r", "\n")
        lines = [line.strip() for line in text.split("\n") if line.strip()]
        if lines:
            session.last_output = lines[-1][:70]

    def _on_process_exit(self, session: RecordingSession, exit: ProcessExit) -> None:
        if session.cleanup_started or session.state not in _AWAITING_EXIT:
            return

        if session.state == SessionState.CANCELLED:
            self._cleanup(session)
            return

        if exit.exit_code != session.profile.expected_exit_code:
            self._fail(session, BackendExitMismatchError(
                session.profile.name,
                exit.exit_code,
                session.profile.expected_exit_code,
                signal=exit.signal,
                stderr=exit.stderr,
                stdout=exit.stdout,
            ))
            return

        if not session.continue_to_transcription:
            logger.info(f"Recording for session {session.session_id} ended without confirmation")
            self._cleanup(session)
            return

        self._transition(session, SessionState.TRANSCRIBING)
        session.transcription_task = asyncio.get_running_loop().create_task(self._transcribe(session))
        session.transcription_task.add_done_callback(self._log_task_failure)

    async def _transcribe(self, session: RecordingSession) -> None:
        audio_path = session.raw_file_path
        try:
            if session.processed_file_path is not None and self.processor.enabled:
                audio_path = await self.processor.process(session.raw_file_path, session.processed_file_path)
            result = await self.client.transcribe(audio_path, self.model)
        except MurmurError as e:
            self._fail(session, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected transcription failure for session {session.session_id}")
            error = TranscriptionError(f"Transcription failed: {e!r}")
            error.__cause__ = e
            self._fail(session, error)
            return

        if session.cleanup_started:
            return
        try:
            session.completion_callback(result.text)
        finally:
            self._cleanup(session)

    def _fail(self, session: RecordingSession, error: MurmurError) -> None:
        if session.cleanup_started:
            return
        session.error = error
        self.notifier.error(error)
        self._cleanup(session)

    def _cleanup(self, session: RecordingSession) -> None:
        """Release everything the session owns; only the first call does anything."""
        if session.cleanup_started:
            return
        session.cleanup_started = True

        if session.grace_timer is not None:
            session.grace_timer.cancel()
            session.grace_timer = None
        if session.status_timer is not None:
            session.status_timer.close()

        task = session.transcription_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self.file_manager.remove_file(session.raw_file_path)
        self.file_manager.remove_file(session.processed_file_path)

        if session.display is not None and session.display.is_valid():
            session.display.close()

        # Catches capture tools that outlived their handle
        self.supervisor.stop()

        self._transition(session, SessionState.DONE)
        if self.session is session:
            self.session = None
        session.finished.set()
        logger.info(f"Recording session {session.session_id} cleaned up")

    def _transition(self, session: RecordingSession, new_state: SessionState) -> None:
        old_state = session.state
        if old_state == new_state:
            return
        session.state = new_state
        self.notifier.state_changed(session.session_id, old_state, new_state)

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Transcription task failed: {error!r}", exc_info=error)
