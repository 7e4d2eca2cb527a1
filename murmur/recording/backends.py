"""Recording backend profiles and selection."""

import logging
import shutil
import subprocess
from typing import Any, Callable, Dict, List, Optional

from ..errors import InvalidBackendError
from ..models.backend import (
    OUTPUT_PLACEHOLDER,
    BackendChoice,
    BackendProfile,
    NamedBackend,
    OverrideBackend,
)

logger = logging.getLogger(__name__)

BACKEND_NAMES = ("sox", "arecord", "ffmpeg")


def default_profiles(sample_rate: int = 16000,
                     channels: int = 1,
                     max_duration: int = 3600) -> Dict[str, BackendProfile]:
    """Build the built-in profiles for the given capture format."""
    rate, ch, duration = str(sample_rate), str(channels), str(max_duration)
    return {
        "sox": BackendProfile(
            name="sox",
            executable="sox",
            argument_template=(
                "--buffer", "32",
                "-c", ch,
                "-r", rate,
                "-b", "16",
                "-e", "signed-integer",
                "-d", OUTPUT_PLACEHOLDER,
                "trim", "0", duration,
            ),
            expected_exit_code=0,
        ),
        "arecord": BackendProfile(
            name="arecord",
            executable="arecord",
            argument_template=(
                "-c", ch,
                "-f", "S16_LE",
                "-r", rate,
                "-d", duration,
                OUTPUT_PLACEHOLDER,
            ),
            expected_exit_code=1,
        ),
        "ffmpeg": BackendProfile(
            name="ffmpeg",
            executable="ffmpeg",
            argument_template=(
                "-y",
                "-f", "avfoundation",
                "-i", ":0",
                "-ac", ch,
                "-ar", rate,
                "-t", duration,
                OUTPUT_PLACEHOLDER,
            ),
            expected_exit_code=255,
        ),
    }


def count_avfoundation_devices(timeout: float = 5.0) -> int:
    """Count the avfoundation entries ffmpeg reports in its device list."""
    try:
        completed = subprocess.run(
            ["ffmpeg", "-devices", "-v", "quiet"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"ffmpeg device probe failed: {e}")
        return 0
    output = completed.stdout + completed.stderr
    return sum(1 for line in output.splitlines() if "avfoundation" in line.lower())


def parse_choice(value: Any) -> Optional[BackendChoice]:
    """Convert a configured recording command into a backend choice.

    A string names a profile, a list is a full command vector.
    """
    if value is None or isinstance(value, (NamedBackend, OverrideBackend)):
        return value
    if isinstance(value, str):
        if not value.strip():
            raise InvalidBackendError("Invalid recording command: empty name")
        return NamedBackend(value.strip())
    if isinstance(value, (list, tuple)):
        tokens = [str(token) for token in value]
        if not tokens or not tokens[0]:
            raise InvalidBackendError(f"Invalid recording command: {value!r}")
        return OverrideBackend(executable=tokens[0], args=tuple(tokens[1:]))
    raise InvalidBackendError(f"Invalid recording command: {value!r}")


class BackendSelector:
    """Chooses a capture backend and builds its command line."""

    def __init__(self,
                 profiles: Optional[Dict[str, BackendProfile]] = None,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 device_counter: Callable[[], int] = count_avfoundation_devices):
        """Initialize selector.

        Args:
            profiles: Profile table, defaults to the built-in sox/arecord/ffmpeg set
            which: Executable lookup used by probing
            device_counter: Returns the number of ffmpeg capture devices
        """
        self.profiles = profiles if profiles is not None else default_profiles()
        self._which = which
        self._device_counter = device_counter
        self._probed: Optional[str] = None

    @classmethod
    def from_config(cls, config, **kwargs) -> "BackendSelector":
        profiles = default_profiles(
            sample_rate=config.get('recording.sample_rate', 16000),
            channels=config.get('recording.channels', 1),
            max_duration=config.get('recording.max_duration', 3600),
        )
        return cls(profiles=profiles, **kwargs)

    def probe(self) -> str:
        """Pick a backend from the installed tools.

        sox is the fallback, ffmpeg wins if it sees exactly one avfoundation
        device, and arecord wins over both when installed. The result is cached.
        """
        if self._probed is not None:
            return self._probed

        backend = "sox"
        if self._which("ffmpeg") and self._device_counter() == 1:
            backend = "ffmpeg"
        if self._which("arecord"):
            backend = "arecord"

        logger.info(f"Auto-detected recording backend: {backend}")
        self._probed = backend
        return backend

    def select_backend(self, choice: Optional[BackendChoice] = None) -> BackendProfile:
        """Resolve a backend choice into a profile.

        Raises:
            InvalidBackendError: Unknown profile name or malformed override
        """
        if choice is None:
            return self.profiles[self.probe()]

        if isinstance(choice, NamedBackend):
            profile = self.profiles.get(choice.name)
            if profile is None:
                raise InvalidBackendError(f"Invalid recording command: {choice.name}")
            return profile

        if isinstance(choice, OverrideBackend):
            if not choice.executable:
                raise InvalidBackendError("Invalid recording command: empty executable")
            known = self.profiles.get(choice.executable)
            if known is not None:
                expected = known.expected_exit_code
                if choice.expected_exit_code is not None:
                    expected = choice.expected_exit_code
                name = known.name
            else:
                expected = choice.expected_exit_code if choice.expected_exit_code is not None else 0
                name = choice.executable
            if OUTPUT_PLACEHOLDER not in choice.args:
                logger.warning(f"Recording command for {choice.executable} has no {OUTPUT_PLACEHOLDER} placeholder")
            return BackendProfile(
                name=name,
                executable=choice.executable,
                argument_template=tuple(choice.args),
                expected_exit_code=expected,
            )

        raise InvalidBackendError(f"Invalid recording command: {choice!r}")

    @staticmethod
    def build_args(profile: BackendProfile, output_path: str) -> List[str]:
        """Return a fresh argument vector with the output placeholder substituted."""
        return [output_path if token == OUTPUT_PLACEHOLDER else token
                for token in profile.argument_template]
