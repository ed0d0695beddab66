"""Audio transcription via a remote streaming recognizer."""

import asyncio
import logging
import time

import httpx

from voice_scribe._types import NO_SPEECH_TEXT, CapturedAudio, Transcript, TranscriptSource
from voice_scribe.errors import (
    RecognizerError,
    RecognizerUnavailable,
    TranscriptionError,
    TranscriptionTimeout,
)
from voice_scribe.response_parser import parse_transcript

logger = logging.getLogger(__name__)


class TranscriptionClient:
    """Uploads finished recordings to the recognizer and decodes the reply.

    The HTTP client is created lazily on the first request. Every request is
    bounded by ``timeout`` seconds end to end; no retries are attempted.
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        timeout: float = 30.0,
        api_version: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize transcription client.

        Args:
            endpoint: Recognizer URL receiving the audio
            token: Bearer token for the recognizer
            timeout: Hard limit in seconds for one request
            api_version: Optional ``v`` query parameter
            client: Pre-built httpx client (tests, connection sharing)
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout
        self.api_version = api_version
        self._client = client
        self._client_owned = client is None
        self._client_lock = asyncio.Lock()

        logger.info("TranscriptionClient initialized: endpoint=%s, timeout=%.1fs", endpoint, timeout)

    async def _ensure_client_initialized(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
                logger.debug("HTTP client created for %s", self.endpoint)
            return self._client

    async def transcribe(self, audio: CapturedAudio) -> Transcript:
        """Send a recording to the recognizer.

        Args:
            audio: Finalized recording to upload

        Returns:
            Voice transcript; ``speech_detected`` is False when the recognizer
            returned nothing usable

        Raises:
            TranscriptionTimeout: If the request exceeds the timeout
            RecognizerError: On a non-2xx response
            RecognizerUnavailable: If the recognizer cannot be reached
            TranscriptionError: If the audio cannot be read
        """
        client = await self._ensure_client_initialized()

        try:
            body = await asyncio.get_running_loop().run_in_executor(None, audio.read_bytes)
        except OSError as e:
            raise TranscriptionError(f"Failed to read audio file: {e}") from e

        logger.info(
            "Sending %d bytes of %s to recognizer", len(body), audio.mime_type
        )
        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                client.post(
                    self.endpoint,
                    content=body,
                    headers=self._headers(audio),
                    params=self._params(),
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("Transcription timed out after %.1f seconds", self.timeout)
            raise TranscriptionTimeout(self.timeout) from e
        except httpx.HTTPError as e:
            logger.error("Recognizer request failed: %s", e)
            raise RecognizerUnavailable(f"Recognizer unavailable: {e}") from e

        if not response.is_success:
            logger.error(
                "Recognizer returned %d: %.200s", response.status_code, response.text
            )
            raise RecognizerError(response.status_code, response.text)

        text = parse_transcript(response.text)
        logger.info(
            "Transcription completed in %.2fs: %d characters",
            time.perf_counter() - start_time,
            len(text),
        )

        if not text:
            logger.warning("Recognizer returned no speech")
            return Transcript(
                text=NO_SPEECH_TEXT, source=TranscriptSource.VOICE, speech_detected=False
            )
        return Transcript(text=text, source=TranscriptSource.VOICE)

    def _headers(self, audio: CapturedAudio) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": audio.mime_type,
        }

    def _params(self) -> dict[str, str]:
        return {"v": self.api_version} if self.api_version else {}

    async def shutdown(self) -> None:
        """Close the HTTP client if this instance created it."""
        logger.info("TranscriptionClient shutting down")
        if self._client is not None and self._client_owned:
            await self._client.aclose()
        self._client = None
