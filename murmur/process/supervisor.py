"""Process supervision for capture and processing tools.

Every subprocess is spawned on the running asyncio loop. Its stdout and stderr
are drained by reader tasks into growing buffers, and a watcher task turns the
process exit into a single call of the caller's exit callback. Handles are
tracked per supervisor instance, keyed by pid, with an optional session tag
of which at most one may be live at a time.
"""

import asyncio
import logging
import signal
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import AlreadyBusyError, SpawnFailedError
from ..models.events import ProcessExit

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
# Detached grandchildren can keep a pipe open after the process itself exited
READER_DRAIN_TIMEOUT = 1.0

ExitCallback = Callable[[ProcessExit], None]
StreamSink = Callable[[bytes], None]


class ProcessHandle:
    """One live subprocess owned by a ProcessSupervisor."""

    def __init__(self, process: asyncio.subprocess.Process, session_tag: Any = None):
        self.process = process
        self.pid = process.pid
        self.session_tag = session_tag
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.readers: List[asyncio.Task] = []
        self.watcher: Optional[asyncio.Task] = None
        self.exit: Optional[ProcessExit] = None
        self.loop = asyncio.get_running_loop()
        self._closing = False
        self._exit_handled = False

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        """Release the handle; later calls are no-ops."""
        if self._closing:
            return
        self._closing = True
        logger.debug(f"Closed process handle {self.pid}")

    def send_signal(self, sig: int) -> bool:
        """Send sig to the process if it is still running.

        Returns:
            True if the signal was delivered
        """
        if self.process.returncode is not None:
            return False
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            logger.debug(f"Process {self.pid} already gone, signal {sig} not sent")
            return False
        return True

    async def wait(self) -> Optional[ProcessExit]:
        """Wait until the exit callback has run."""
        if self.watcher is not None:
            await asyncio.shield(self.watcher)
        return self.exit


class ProcessSupervisor:
    """Spawns, tracks and stops subprocesses."""

    def __init__(self, notifier=None, kill_timeout: Optional[float] = None):
        """Initialize supervisor.

        Args:
            notifier: Notice channel used by is_busy
            kill_timeout: Seconds after stop() before a still-running process is
                sent SIGKILL. None waits for the process indefinitely.
        """
        self.notifier = notifier
        self.kill_timeout = kill_timeout
        self._handles: Dict[int, ProcessHandle] = {}
        self._pending_tags = set()

    @property
    def handles(self) -> List[ProcessHandle]:
        return list(self._handles.values())

    def _find(self, session_tag: Any) -> Optional[ProcessHandle]:
        if session_tag is None:
            return None
        for handle in self._handles.values():
            if handle.session_tag == session_tag:
                return handle
        return None

    def is_busy(self, session_tag: Any) -> bool:
        """Check whether a registered process carries session_tag."""
        handle = self._find(session_tag)
        if handle is None:
            return False
        message = f"Another recording process [{handle.pid}] is already running for {session_tag}"
        if self.notifier is not None:
            self.notifier.notify(message, level="warning", code=AlreadyBusyError.code)
        else:
            logger.warning(message)
        return True

    async def spawn(self,
                    executable: str,
                    args: Sequence[str],
                    session_tag: Any = None,
                    on_exit: Optional[ExitCallback] = None,
                    on_stdout: Optional[StreamSink] = None,
                    on_stderr: Optional[StreamSink] = None) -> ProcessHandle:
        """Start a process and supervise it until it exits.

        Args:
            executable: Program to run
            args: Arguments, without the program itself
            session_tag: Correlation key; at most one live process per tag
            on_exit: Called exactly once with the ProcessExit
            on_stdout: Receives every stdout chunk as it arrives
            on_stderr: Receives every stderr chunk as it arrives

        Returns:
            The registered ProcessHandle

        Raises:
            AlreadyBusyError: A process with the same tag is live
            SpawnFailedError: The process could not be started
        """
        if session_tag is not None:
            existing = self._find(session_tag)
            if existing is not None or session_tag in self._pending_tags:
                raise AlreadyBusyError(session_tag, existing.pid if existing else None)
            self._pending_tags.add(session_tag)

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnFailedError(f"Failed to start recording process {executable}: {e}") from e
        finally:
            self._pending_tags.discard(session_tag)

        handle = ProcessHandle(process, session_tag)
        self._handles[handle.pid] = handle
        logger.info(f"Started {executable} [{handle.pid}] for {session_tag}")
        logger.debug(f"Command: {executable} {' '.join(args)}")

        handle.watcher = handle.loop.create_task(
            self._supervise(handle, on_exit, on_stdout, on_stderr)
        )
        handle.watcher.add_done_callback(self._log_watcher_failure)
        return handle

    async def _supervise(self,
                         handle: ProcessHandle,
                         on_exit: Optional[ExitCallback],
                         on_stdout: Optional[StreamSink],
                         on_stderr: Optional[StreamSink]) -> None:
        handle.readers = [
            handle.loop.create_task(self._read_stream(handle, "stdout", handle.stdout, on_stdout)),
            handle.loop.create_task(self._read_stream(handle, "stderr", handle.stderr, on_stderr)),
        ]
        returncode = await handle.process.wait()
        done, _ = await asyncio.wait(handle.readers, timeout=READER_DRAIN_TIMEOUT)
        for reader in done:
            if not reader.cancelled() and reader.exception() is not None:
                logger.error(f"Output reader for [{handle.pid}] failed: {reader.exception()!r}")
        self._handle_exit(handle, returncode, on_exit)

    async def _read_stream(self,
                           handle: ProcessHandle,
                           name: str,
                           buffer: bytearray,
                           sink: Optional[StreamSink]) -> None:
        stream = getattr(handle.process, name)
        while True:
            try:
                chunk = await stream.read(CHUNK_SIZE)
            except OSError as e:
                logger.error(f"Error reading {name} of [{handle.pid}]: {e}")
                return
            if not chunk:
                return
            buffer.extend(chunk)
            if sink is not None:
                sink(chunk)

    def _handle_exit(self, handle: ProcessHandle, returncode: int, on_exit: Optional[ExitCallback]) -> None:
        """Tear down a finished process; runs its body at most once per handle."""
        if handle._exit_handled:
            return
        handle._exit_handled = True

        for reader in handle.readers:
            if not reader.done():
                reader.cancel()
        if not handle.is_closing():
            handle.close()

        if returncode < 0:
            # Killed by an uncaught signal: report it the way a shell does
            exit_code, term_signal = 128 - returncode, -returncode
        else:
            exit_code, term_signal = returncode, 0

        handle.exit = ProcessExit(
            pid=handle.pid,
            exit_code=exit_code,
            signal=term_signal,
            stdout=bytes(handle.stdout),
            stderr=bytes(handle.stderr),
        )
        logger.info(f"Process [{handle.pid}] exited with code {exit_code} (signal {term_signal})")
        try:
            if on_exit is not None:
                on_exit(handle.exit)
        finally:
            self._remove_handle(handle)

    def _remove_handle(self, handle: ProcessHandle) -> None:
        if self._handles.get(handle.pid) is handle:
            del self._handles[handle.pid]

    def stop(self, sig: int = signal.SIGTERM) -> None:
        """Signal every registered process and clear the registry.

        Does not wait; exits are reported through each process's exit callback.
        """
        if not self._handles:
            return

        for handle in list(self._handles.values()):
            if handle.is_closing():
                continue
            if handle.send_signal(sig):
                logger.info(f"Sent signal {sig} to [{handle.pid}]")
                if self.kill_timeout is not None and sig != signal.SIGKILL:
                    handle.loop.call_later(self.kill_timeout, self._force_kill, handle)

        self._handles.clear()

    def _force_kill(self, handle: ProcessHandle) -> None:
        if handle._exit_handled or handle.returncode is not None:
            return
        logger.warning(f"Process [{handle.pid}] ignored stop signal for {self.kill_timeout}s, killing")
        handle.send_signal(signal.SIGKILL)

    @staticmethod
    def _log_watcher_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Process supervision failed: {error!r}", exc_info=error)
