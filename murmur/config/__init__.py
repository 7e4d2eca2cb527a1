"""Simple YAML configuration loader for murmur."""

import copy
import os
import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "murmur.yaml"

DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "127.0.0.1",
        "port": 8009,
        "model": "whisper-small",
        "timeout": 30,
        "health_timeout": 5,
    },
    "recording": {
        "command": None,  # Auto-detect (sox, arecord, or ffmpeg)
        "sample_rate": 16000,
        "channels": 1,
        "max_duration": 3600,
        "kill_timeout": 5.0,
        "processing": {
            "enabled": False,
            "voice": {"enabled": True, "highpass": 200, "lowpass": 3000, "normalize": -3},
            "compressor": {"enabled": True, "attack": 0.3, "release": 1.0, "threshold": -20, "gain": 5},
            "silence": {"enabled": True, "duration": 0.1, "rms_threshold": -50},
        },
    },
    "ui": {
        "refresh_interval": 0.2,
    },
    "storage": {
        "dir": None,  # $TMPDIR/murmur
        "cleanup": True,
        "max_files": 10,
    },
    "logging": {
        "level": "INFO",
        "file_path": None,  # <storage dir>/murmur.log
        "console_output": True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return base updated recursively with override; override wins."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Look for murmur.yaml in start (default: cwd) and its parents."""
    directory = (start or Path.cwd()).absolute()
    for candidate_dir in [directory, *directory.parents]:
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


class MurmurConfig:
    """murmur configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, looks for murmur.yaml
                        in current directory and parent directories, and falls
                        back to the built-in defaults when there is none.
        """
        if config_path is not None:
            self.config_file: Optional[Path] = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
        else:
            self.config_file = find_config_file()

        if self.config_file is None:
            logger.info("No configuration file found, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
        else:
            logger.info(f"Loading configuration from: {self.config_file}")
            self.config = self._load_config()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "MurmurConfig":
        """Build a configuration from an in-memory mapping merged over defaults."""
        instance = cls.__new__(cls)
        instance.config_file = None
        instance.config = _deep_merge(DEFAULTS, values)
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        except OSError as e:
            raise ValueError(f"Failed to load configuration: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _deep_merge(DEFAULTS, loaded)
        self._resolve_paths(config)
        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        store_dir = config['storage'].get('dir')
        if store_dir and not os.path.isabs(os.path.expanduser(store_dir)):
            config['storage']['dir'] = str(config_dir / store_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(os.path.expanduser(log_path)):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'server.port').

        Args:
            key_path: Dot-separated key path (e.g., 'recording.sample_rate')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return default if value is None else value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'server.model')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict or not isinstance(config_dict[key], dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_store_directory(self) -> str:
        """Get the directory holding per-session recordings."""
        store_dir = self.get('storage.dir')
        if not store_dir:
            base = os.getenv("TMPDIR") or os.getenv("TEMP") or tempfile.gettempdir()
            store_dir = os.path.join(base, "murmur")
        return str(Path(store_dir).expanduser().absolute())

    def get_log_file_path(self) -> str:
        log_path = self.get('logging.file_path')
        if not log_path:
            return os.path.join(self.get_store_directory(), "murmur.log")
        return str(Path(log_path).expanduser())
