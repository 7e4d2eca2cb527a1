"""Error types for recording sessions and the transcription server."""

from typing import Optional


class MurmurError(Exception):
    """Base class for all session failures."""

    code = "MURMUR_ERROR"


class AlreadyBusyError(MurmurError):
    """A process is already registered for the requested session tag."""

    code = "ALREADY_BUSY"

    def __init__(self, session_tag, pid=None):
        self.session_tag = session_tag
        self.pid = pid
        super().__init__(
            f"Another recording process [{pid}] is already running for {session_tag}"
        )


class SpawnFailedError(MurmurError):
    """The OS could not start the capture tool."""

    code = "SPAWN_FAILED"


class InvalidBackendError(MurmurError):
    """Unknown or malformed recording backend selection."""

    code = "INVALID_BACKEND"


class BackendExitMismatchError(MurmurError):
    """The capture tool exited with a code other than its success code."""

    code = "BACKEND_EXIT_MISMATCH"

    def __init__(self, backend: str, exit_code: int, expected: int,
                 signal: int = 0, stderr: bytes = b"", stdout: bytes = b""):
        self.backend = backend
        self.exit_code = exit_code
        self.expected = expected
        self.signal = signal
        self.stderr = stderr
        self.stdout = stdout
        message = (
            f"Recording failed with code: {exit_code} "
            f"(expected {expected} from {backend}, signal {signal})"
        )
        details = (stderr or stdout).decode("utf-8", errors="replace").strip()
        if details:
            message += f"\n{details}"
        super().__init__(message)


class ServerUnreachableError(MurmurError):
    """The inference server did not answer the health probe."""

    code = "SERVER_UNREACHABLE"


class ProcessingFailedError(MurmurError):
    """The sox post-processing stage failed."""

    code = "PROCESSING_FAILED"


class TranscriptionError(MurmurError):
    """Base class for transcription-stage failures."""

    code = "TRANSCRIPTION_ERROR"

    def __init__(self, message: str, body: Optional[str] = None):
        self.body = body
        super().__init__(message)


class RequestFailedError(TranscriptionError):
    """The transcription request could not be performed."""

    code = "REQUEST_FAILED"


class NoResponseError(TranscriptionError):
    """The server answered with an empty body."""

    code = "NO_RESPONSE"


class DecodeFailedError(TranscriptionError):
    """The server body is not JSON or lacks the text field."""

    code = "DECODE_FAILED"
