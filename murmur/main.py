"""Command-line entry point for murmur."""

import sys
import signal
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from . import __version__
from .config import MurmurConfig
from .models.backend import BackendChoice, NamedBackend
from .models.events import Notice
from .services.notifier import Notifier
from .services.session_coordinator import SessionCoordinator
from .ui.keyboard_input import CANCEL_KEYS, CONFIRM_KEYS, KeyboardInputHandler
from .ui.status_display import RichStatusDisplay

logger = logging.getLogger(__name__)

NOTICE_STYLES = {
    "info": "blue",
    "warning": "yellow",
    "error": "bold red",
}


async def run_dictation(config: MurmurConfig,
                        choice: Optional[BackendChoice] = None,
                        duration: Optional[float] = None,
                        console: Optional[Console] = None) -> Optional[str]:
    """Record one dictation in the terminal and return its transcript.

    Args:
        config: Application configuration
        choice: Backend choice, None for recording.command or auto-detection
        duration: Finish automatically after this many seconds
        console: Console for the status panel and notices

    Returns:
        The transcript, or None if the session was cancelled or failed
    """
    loop = asyncio.get_running_loop()
    console = console or Console(stderr=True)
    notifier = Notifier()

    def show_notice(notice: Notice) -> None:
        console.print(notice.message, style=NOTICE_STYLES.get(notice.level, ""))

    notifier.subscribe(show_notice)
    coordinator = SessionCoordinator(config, notifier=notifier)
    transcripts = []

    display = RichStatusDisplay(f"Murmur Recording [{coordinator.model}]", console=console).open()
    session = await coordinator.start(transcripts.append, choice=choice, display=display)
    if session is None:
        display.close()
        notifier.unsubscribe(show_notice)
        return None

    def on_key(key: str) -> None:
        if key in CONFIRM_KEYS:
            coordinator.confirm()
        elif key in CANCEL_KEYS:
            coordinator.cancel()

    keyboard = None
    if sys.stdin.isatty():
        keyboard = KeyboardInputHandler(on_key, loop)
        keyboard.start()

    auto_confirm = None
    if duration:
        auto_confirm = loop.call_later(duration, coordinator.confirm)

    try:
        loop.add_signal_handler(signal.SIGINT, coordinator.cancel)
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform")

    try:
        await session.wait()
    finally:
        if auto_confirm is not None:
            auto_confirm.cancel()
        if keyboard is not None:
            keyboard.stop()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
        notifier.unsubscribe(show_notice)

    return transcripts[0] if transcripts else None


def setup_logging(config: MurmurConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get_log_file_path()
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - stderr, stdout carries the transcript
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"murmur {__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="murmur - voice dictation through a local whisper.cpp server",
        epilog="Keys: Enter=finish and transcribe, Esc/q/Ctrl-C=cancel"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for murmur.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: logging.level from config)"
    )

    parser.add_argument(
        "--backend",
        type=str,
        choices=["sox", "arecord", "ffmpeg"],
        help="Recording backend (default: recording.command from config, else auto-detect)"
    )

    parser.add_argument("--model", type=str, help="Transcription model (overrides config)")
    parser.add_argument("--host", type=str, help="Transcription server host (overrides config)")
    parser.add_argument("--port", type=int, help="Transcription server port (overrides config)")

    parser.add_argument(
        "--duration",
        type=float,
        help="Finish recording automatically after this many seconds"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"murmur {__version__}"
    )
    return parser


def main() -> None:
    """Main entry point for murmur."""
    args = build_parser().parse_args()

    try:
        config = MurmurConfig(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)

    for key_path, value in (('server.model', args.model),
                            ('server.host', args.host),
                            ('server.port', args.port)):
        if value is not None:
            config.set(key_path, value)

    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))

    choice = NamedBackend(args.backend) if args.backend else None
    try:
        text = asyncio.run(run_dictation(config, choice=choice, duration=args.duration))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!", file=sys.stderr)
        sys.exit(130)

    if text is None:
        sys.exit(1)
    print(text)


if __name__ == "__main__":
    main()
