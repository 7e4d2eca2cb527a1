"""Pytest configuration and fixtures for murmur tests."""

import pytest
import sys
import tempfile
import textwrap
import logging
from pathlib import Path
from typing import List, Optional

from murmur.config import MurmurConfig
from murmur.errors import MurmurError
from murmur.models.events import ProcessExit
from murmur.models.transcription import TranscriptionResult
from murmur.ui.status_display import StatusDisplay


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without real processes or sockets")
    config.addinivalue_line("markers", "integration: tests spawning real processes and servers")
    config.addinivalue_line("markers", "slow: tests waiting on real timeouts")


FAKE_RECORDER = textwrap.dedent("""
    import signal
    import sys
    import time

    output_path, exit_code = sys.argv[1], int(sys.argv[2])

    def finish(signum, frame):
        with open(output_path, "ab") as f:
            f.write(b"data")
        sys.exit(exit_code)

    signal.signal(signal.SIGTERM, finish)
    with open(output_path, "wb") as f:
        f.write(b"RIFF")
    sys.stderr.write("In:0.00% 00:00:00.10 [00:00:00.00] Out:1.60k\\n")
    sys.stderr.flush()
    while True:
        time.sleep(0.05)
""")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def test_config(temp_data_dir):
    """Configuration with the store inside the temp directory."""
    return MurmurConfig.from_dict({
        "storage": {"dir": str(Path(temp_data_dir) / "store")},
        "ui": {"refresh_interval": 0.05},
    })


@pytest.fixture
def fake_recorder(temp_data_dir):
    """Python script standing in for a capture tool.

    Usage: fake_recorder <output path> <exit code on SIGTERM>
    """
    script = Path(temp_data_dir) / "fake_recorder.py"
    script.write_text(FAKE_RECORDER)
    return [sys.executable, str(script)]


class FakeDisplay(StatusDisplay):
    """Status display recording what the session did to it."""

    def __init__(self):
        self.valid = True
        self.updates: List[List[str]] = []
        self.close_calls = 0

    def is_valid(self) -> bool:
        return self.valid

    def update(self, lines: List[str]) -> None:
        self.updates.append(list(lines))

    def close(self) -> None:
        self.close_calls += 1
        self.valid = False


class FakeTranscriptionClient:
    """Transcription client with canned answers."""

    def __init__(self, healthy: bool = True, text: str = "test", error: Optional[Exception] = None):
        self.healthy = healthy
        self.text = text
        self.error = error
        self.base_url = "http://127.0.0.1:8009"
        self.health_checks = 0
        self.requests = []

    async def check_health(self) -> bool:
        self.health_checks += 1
        return self.healthy

    async def transcribe(self, file_path: str, model: str) -> TranscriptionResult:
        self.requests.append((file_path, model, Path(file_path).exists()))
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, model=model)


class FakeSupervisor:
    """Supervisor that records spawns and lets tests deliver exits by hand."""

    def __init__(self, spawn_error: Optional[MurmurError] = None):
        self.spawn_error = spawn_error
        self.spawned = []
        self.stop_calls = 0
        self.on_exit = None
        self.on_stderr = None

    async def spawn(self, executable, args, session_tag=None, on_exit=None, on_stdout=None, on_stderr=None):
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.append((executable, list(args), session_tag))
        self.on_exit = on_exit
        self.on_stderr = on_stderr
        return object()

    def stop(self, sig=None) -> None:
        self.stop_calls += 1

    def exit(self, exit_code: int, signal: int = 0, stderr: bytes = b"") -> None:
        self.on_exit(ProcessExit(pid=4242, exit_code=exit_code, signal=signal, stderr=stderr))


@pytest.fixture
def fake_display():
    return FakeDisplay()


@pytest.fixture
def fake_client():
    return FakeTranscriptionClient()


@pytest.fixture
def fake_supervisor():
    return FakeSupervisor()
