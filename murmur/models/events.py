"""Event models passed to process and notice callbacks."""

from dataclasses import dataclass


@dataclass
class ProcessExit:
    """Final state of a supervised process."""
    pid: int
    exit_code: int
    signal: int = 0  # terminating signal, 0 on a normal exit
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass
class Notice:
    """A user-visible message."""
    level: str  # "info" | "warning" | "error"
    message: str
    code: str = ""
