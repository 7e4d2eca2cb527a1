"""File management for per-session recordings in the store directory."""

import logging
import random
import string
from pathlib import Path
from datetime import datetime
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)

RECORDING_PREFIX = "rec_"
RECORDING_SUFFIX = ".wav"
PROCESSED_SUFFIX = "_processed.wav"


class FileManager:
    """Hands out, removes and prunes recording files in one store directory."""

    def __init__(self, store_dir: str):
        """Initialize file manager with store directory.

        The directory is created on first use, not here.

        Args:
            store_dir: Directory holding temporary recordings
        """
        self.store_dir = Path(store_dir)
        logger.info(f"FileManager initialized with store_dir: {self.store_dir}")

    def ensure_store_directory(self) -> Path:
        """Create the store directory if it does not exist yet."""
        if not self.store_dir.exists():
            self.store_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created murmur store: {self.store_dir}")
        return self.store_dir

    def new_session_id(self) -> str:
        """Create a session ID from a timestamp and a random suffix."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
        return f"{timestamp}_{random_suffix}"

    def new_recording_paths(self, session_id: str, processed: bool = False) -> Tuple[str, Optional[str]]:
        """Return (raw_path, processed_path) for a session.

        Args:
            session_id: Session identifier
            processed: Whether a post-processing stage will need an output file

        Returns:
            Raw recording path and the processed path, or None for the latter
        """
        store = self.ensure_store_directory()
        raw_path = store / f"{RECORDING_PREFIX}{session_id}{RECORDING_SUFFIX}"
        processed_path = None
        if processed:
            processed_path = str(store / f"{RECORDING_PREFIX}{session_id}{PROCESSED_SUFFIX}")
        logger.debug(f"Recording paths for {session_id}: {raw_path}, {processed_path}")
        return str(raw_path), processed_path

    def remove_file(self, file_path: Optional[str]) -> bool:
        """Delete a recording if it exists.

        Returns:
            True if a file was deleted
        """
        if not file_path:
            return False
        path = Path(file_path)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"Error deleting recording {path}: {e}")
            return False
        logger.debug(f"Deleted recording: {path}")
        return True

    def list_recordings(self) -> List[Path]:
        """List recordings in the store, newest first."""
        if not self.store_dir.exists():
            return []
        recordings = [
            path for path in self.store_dir.iterdir()
            if path.is_file() and path.name.startswith(RECORDING_PREFIX) and path.suffix == RECORDING_SUFFIX
        ]
        recordings.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return recordings

    def prune_recordings(self, max_files: int) -> int:
        """Delete the oldest leftover recordings beyond max_files.

        Args:
            max_files: Number of recordings to keep

        Returns:
            Number of recordings deleted
        """
        recordings = self.list_recordings()
        removed = 0
        for path in recordings[max(max_files, 0):]:
            if self.remove_file(str(path)):
                removed += 1
        if removed:
            logger.info(f"Pruned {removed} old recordings from {self.store_dir}")
        return removed
