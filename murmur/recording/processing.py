"""sox post-processing of captured recordings."""

import asyncio
import logging
from typing import Any, Dict, List

from ..errors import MurmurError, ProcessingFailedError
from ..models.events import ProcessExit

logger = logging.getLogger(__name__)


def build_sox_command(input_path: str,
                      output_path: str,
                      settings: Dict[str, Any],
                      sample_rate: int = 16000,
                      channels: int = 1) -> List[str]:
    """Build the sox command line for the configured effects chain.

    Args:
        input_path: Raw recording
        output_path: Processed recording to write
        settings: The recording.processing configuration section
        sample_rate: Output sample rate
        channels: Output channel count

    Returns:
        Full command vector, starting with "sox"
    """
    command = ["sox", input_path, "-c", str(channels), "-r", str(sample_rate), output_path]

    voice = settings.get("voice") or {}
    compressor = settings.get("compressor") or {}
    silence = settings.get("silence") or {}

    if voice.get("enabled"):
        command += ["highpass", str(voice.get("highpass", 200))]
        command += ["lowpass", str(voice.get("lowpass", 3000))]

    if compressor.get("enabled"):
        threshold = float(compressor.get("threshold", -20))
        command += [
            "compand",
            f"{float(compressor.get('attack', 0.3)):g},{float(compressor.get('release', 1.0)):g}",
            f"{threshold:g},{threshold:g},{threshold + 10:g},{threshold + 10:g},0,{threshold + 20:g}",
            str(compressor.get("gain", 5)),
        ]

    if silence.get("enabled"):
        duration = f"{float(silence.get('duration', 0.1)):g}"
        threshold = f"{float(silence.get('rms_threshold', -50)):g}d"
        # Trim the leading silence, then the trailing one by trimming the reversed audio
        command += ["silence", "1", duration, threshold]
        command += ["reverse", "silence", "1", duration, threshold, "reverse"]

    if voice.get("enabled"):
        command += ["norm", str(voice.get("normalize", -3))]

    return command


class AudioProcessor:
    """Runs the sox effects chain through a ProcessSupervisor."""

    def __init__(self, supervisor, settings: Dict[str, Any], sample_rate: int = 16000, channels: int = 1):
        self.supervisor = supervisor
        self.settings = settings or {}
        self.sample_rate = sample_rate
        self.channels = channels

    @classmethod
    def from_config(cls, config, supervisor) -> "AudioProcessor":
        return cls(
            supervisor,
            config.get('recording.processing', {}),
            sample_rate=config.get('recording.sample_rate', 16000),
            channels=config.get('recording.channels', 1),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("enabled"))

    async def process(self, input_path: str, output_path: str) -> str:
        """Write a processed copy of input_path to output_path.

        Raises:
            ProcessingFailedError: sox could not be started or failed
        """
        command = build_sox_command(input_path, output_path, self.settings,
                                    self.sample_rate, self.channels)
        logger.info(f"Processing recording: {' '.join(command)}")

        finished: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_exit(exit: ProcessExit) -> None:
            if not finished.done():
                finished.set_result(exit)

        try:
            await self.supervisor.spawn(command[0], command[1:], on_exit=on_exit)
        except MurmurError as e:
            raise ProcessingFailedError(f"Failed to execute SoX command: {e}") from e

        exit = await finished
        if exit.exit_code != 0:
            details = exit.stderr.decode("utf-8", errors="replace").strip()
            raise ProcessingFailedError(f"Audio processing failed with code {exit.exit_code}: {details}")
        return output_path
