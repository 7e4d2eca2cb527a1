"""Recording backend models."""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

# Token in an argument template that is replaced by the output file path
OUTPUT_PLACEHOLDER = "rec.wav"


@dataclass(frozen=True)
class BackendProfile:
    """Static description of one capture tool."""
    name: str
    executable: str
    argument_template: Tuple[str, ...]
    expected_exit_code: int  # code emitted on an intentional stop, not necessarily 0


@dataclass(frozen=True)
class NamedBackend:
    """Select one of the built-in profiles by name."""
    name: str


@dataclass(frozen=True)
class OverrideBackend:
    """Run a full command vector instead of a profile template."""
    executable: str
    args: Tuple[str, ...] = ()
    expected_exit_code: Optional[int] = None


BackendChoice = Union[NamedBackend, OverrideBackend]
