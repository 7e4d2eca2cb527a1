"""Subprocess supervision for murmur."""

from .supervisor import ProcessHandle, ProcessSupervisor

__all__ = [
    "ProcessHandle",
    "ProcessSupervisor",
]
