"""HTTP client for the whisper.cpp transcription server."""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional

import aiohttp

from ..errors import DecodeFailedError, NoResponseError, RequestFailedError
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)

# Multipart form field carrying the recording
AUDIO_FIELD = "audio_file"


class TranscriptionClient:
    """Talks to the inference server's /models and /transcribe endpoints.

    Audio is always uploaded as multipart/form-data with the WAV file in the
    ``audio_file`` field.
    """

    def __init__(self,
                 host: str = "127.0.0.1",
                 port: int = 8009,
                 timeout: float = 30.0,
                 health_timeout: float = 5.0):
        """Initialize transcription client.

        Args:
            host: Inference server host
            port: Inference server port
            timeout: Total timeout for a transcription request in seconds
            health_timeout: Total timeout for the health probe in seconds
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.base_url = f"http://{host}:{port}"

        logger.info(f"TranscriptionClient initialized for {self.base_url}")

    @classmethod
    def from_config(cls, config) -> "TranscriptionClient":
        return cls(
            host=config.get('server.host', "127.0.0.1"),
            port=int(config.get('server.port', 8009)),
            timeout=float(config.get('server.timeout', 30)),
            health_timeout=float(config.get('server.health_timeout', 5)),
        )

    async def check_health(self) -> bool:
        """Return True if GET /models answers with any well-formed JSON document, null included."""
        url = f"{self.base_url}/models"
        timeout = aiohttp.ClientTimeout(total=self.health_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    raw = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Server health check failed for {url}: {e!r}")
            return False

        try:
            json.loads(raw.decode("utf-8"))
        except ValueError:
            # UnicodeDecodeError is a ValueError too
            logger.warning(f"Server health check got a non-JSON body from {url}")
            return False
        return True

    async def transcribe(self, file_path: str, model: str) -> TranscriptionResult:
        """Upload a recording and return the server's transcript.

        Args:
            file_path: WAV file to transcribe
            model: Model name, part of the endpoint path

        Returns:
            TranscriptionResult with the decoded text

        Raises:
            RequestFailedError: The file could not be read or the request did not complete
            NoResponseError: The server returned an empty body
            DecodeFailedError: The body is not JSON or has no text field
        """
        url = f"{self.base_url}/transcribe/{model}"
        path = Path(file_path)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        started = time.monotonic()

        try:
            audio = path.read_bytes()
        except OSError as e:
            raise RequestFailedError(f"Failed to read recording {path}: {e}") from e

        form = aiohttp.FormData()
        form.add_field(AUDIO_FIELD, audio, filename=path.name, content_type="audio/wav")

        logger.info(f"Submitting {path.name} ({len(audio)} bytes) to {url}")
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=form) as response:
                    status = response.status
                    raw = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RequestFailedError(f"Failed to execute transcription request: {e!r}") from e

        try:
            body = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            preview = raw[:200].decode("utf-8", errors="replace")
            raise DecodeFailedError(
                f"Failed to decode server response (HTTP {status}): {preview}", body=preview
            ) from e

        if not body.strip():
            raise NoResponseError(f"No response from server (HTTP {status})")

        text = self._extract_text(body, status)
        processing_time = time.monotonic() - started
        logger.info(f"Transcribed {path.name} in {processing_time:.2f}s ({len(text)} chars)")
        return TranscriptionResult(text=text, model=model, processing_time=processing_time)

    @staticmethod
    def _extract_text(body: str, status: int) -> str:
        try:
            decoded: Any = json.loads(body)
        except ValueError as e:
            raise DecodeFailedError(f"Failed to decode server response: {body}", body=body) from e

        text: Optional[Any] = decoded.get("text") if isinstance(decoded, dict) else None
        if not isinstance(text, str):
            raise DecodeFailedError(
                f"Failed to decode server response (HTTP {status}): {body}", body=body
            )
        return text
