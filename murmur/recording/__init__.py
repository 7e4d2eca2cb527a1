"""Capture backends and post-processing."""

from .backends import BACKEND_NAMES, BackendSelector, default_profiles, parse_choice
from .processing import AudioProcessor, build_sox_command

__all__ = [
    "BACKEND_NAMES",
    "BackendSelector",
    "default_profiles",
    "parse_choice",
    "AudioProcessor",
    "build_sox_command",
]
