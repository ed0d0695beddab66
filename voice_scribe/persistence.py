"""HTTP client for the transcript storage backend.

The backend exposes three routes under its base URL:

- ``POST /text`` with JSON ``{"text": ...}``
- ``POST /upload`` with multipart fields ``text`` and ``audio``
- ``GET /history`` returning stored records, most recent first

Both POST routes answer 201 with ``{"message", "data"}``; errors carry an
``error`` field.
"""

import asyncio
import logging

import httpx

from voice_scribe._types import CapturedAudio
from voice_scribe.errors import PersistenceFailed

logger = logging.getLogger(__name__)


class PersistenceClient:
    """Async wrapper around httpx for the storage backend."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL of the backend API, including the ``/api`` prefix.
            timeout: Per-request timeout in seconds.
            client: Pre-built httpx client; its base URL is used as is.
        """
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._client_owned = client is None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute a request, mapping every failure to PersistenceFailed."""
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise PersistenceFailed("Backend request timed out") from None
        except httpx.HTTPError as exc:
            raise PersistenceFailed(f"Backend unreachable: {exc}") from None

        if not resp.is_success:
            try:
                detail = resp.json().get("error", resp.text)
            except Exception:
                detail = resp.text or f"HTTP {resp.status_code}"
            raise PersistenceFailed(str(detail), status_code=resp.status_code)
        return resp

    @staticmethod
    def _decode(resp: httpx.Response):
        try:
            return resp.json()
        except ValueError:
            raise PersistenceFailed(
                f"Backend returned a non-JSON body: {resp.text[:80]}",
                status_code=resp.status_code,
            ) from None

    async def save_text(self, text: str) -> dict:
        """Store a typed message."""
        resp = await self._request("POST", "/text", json={"text": text})
        logger.info("Saved text (%d characters)", len(text))
        return self._decode(resp)

    async def save_voice_note(self, text: str, audio: CapturedAudio) -> dict:
        """Store a transcript together with its recording."""
        try:
            content = await asyncio.get_running_loop().run_in_executor(None, audio.read_bytes)
        except OSError as e:
            raise PersistenceFailed(f"Failed to read audio file: {e}") from e
        ext = audio.extension
        resp = await self._request(
            "POST",
            "/upload",
            data={"text": text},
            files={"audio": (f"recording.{ext}", content, f"audio/{ext}")},
        )
        logger.info("Saved voice note (%d characters, %d bytes)", len(text), len(content))
        return self._decode(resp)

    async def history(self) -> list[dict]:
        """Fetch stored records, most recent first."""
        resp = await self._request("GET", "/history")
        return self._decode(resp)

    async def close(self) -> None:
        if self._client_owned:
            await self._client.aclose()
