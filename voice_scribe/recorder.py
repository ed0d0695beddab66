"""Audio capture and recording."""

import asyncio
import logging
import tempfile
import time
import wave
from collections import deque
from pathlib import Path
from typing import Callable

import numpy as np
import sounddevice

from voice_scribe._types import (
    CapturedAudio,
    Discarded,
    RecordingSession,
    SessionState,
)
from voice_scribe.audio_session import AudioSession
from voice_scribe.errors import CaptureFailed, PermissionDenied

logger = logging.getLogger(__name__)

SAMPLE_DTYPE = "int16"
SAMPLE_WIDTH_BYTES = 2


class AudioCaptureController:
    """Owns the microphone recording lifecycle.

    Streams 16-bit PCM from sounddevice into a buffer while a session is open,
    then writes a WAV file on stop. At most one session is open at a time;
    start and stop are serialized and blocking PortAudio calls run in the
    default executor so the event loop stays responsive.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 4096,
        min_duration: float = 1.0,
        device: int | str | None = None,
        audio_session: AudioSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize capture controller.

        Args:
            sample_rate: Sample rate in Hz
            channels: Number of channels
            chunk_size: Frames per stream callback
            min_duration: Recordings shorter than this many seconds are discarded
            device: Audio device index or name (None for default)
            audio_session: Platform audio session; built from the settings above if omitted
            clock: Monotonic time source
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if min_duration < 0:
            raise ValueError("min_duration must be non-negative")

        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.min_duration = min_duration
        self.device = device
        self.audio_session = audio_session or AudioSession(
            sample_rate=sample_rate, channels=channels, device=device, dtype=SAMPLE_DTYPE
        )
        self._clock = clock

        self._session: RecordingSession | None = None
        self._buffer = deque()
        self._lock = asyncio.Lock()

        logger.info(
            "AudioCaptureController initialized: %d Hz, %d channels, device=%s, min_duration=%.2fs",
            sample_rate,
            channels,
            device if device is not None else "default",
            min_duration,
        )

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    async def start_recording(self) -> RecordingSession | None:
        """Open a new recording session.

        Returns:
            The open session, or None if one was already open

        Raises:
            PermissionDenied: If microphone access is refused
            CaptureFailed: If the device or stream cannot be opened
        """
        async with self._lock:
            if self._session is not None:
                logger.warning(
                    "Recording already in progress (session %s), ignoring start",
                    self._session.session_id,
                )
                return None

            loop = asyncio.get_running_loop()
            granted = await loop.run_in_executor(None, self.audio_session.request_permission)
            if not granted:
                raise PermissionDenied()

            try:
                self.audio_session.configure()
                stream = await loop.run_in_executor(None, self._open_stream)
            except Exception as e:
                self.audio_session.release()
                logger.error("Failed to start audio stream: %s", e)
                raise CaptureFailed(f"Failed to start recording: {e}") from e

            self._session = RecordingSession(started_at=self._clock(), stream=stream)
            logger.info("Recording session %s opened", self._session.session_id)
            return self._session

    async def stop_recording(self) -> CapturedAudio | Discarded | None:
        """Finalize the open session.

        Returns:
            CapturedAudio for a usable recording, Discarded if it was shorter
            than min_duration, or None if no session was open

        Raises:
            CaptureFailed: If no audio was captured or the file cannot be written
        """
        async with self._lock:
            session = self._session
            if session is None:
                logger.warning("No active recording, ignoring stop")
                return None

            session.state = SessionState.FINALIZING
            duration = self._clock() - session.started_at
            loop = asyncio.get_running_loop()

            try:
                await loop.run_in_executor(None, self._close_stream, session.stream)

                if duration < self.min_duration:
                    logger.info(
                        "Recording %s discarded: %.3fs is below %.3fs minimum",
                        session.session_id,
                        duration,
                        self.min_duration,
                    )
                    return Discarded(duration=duration)

                if not self._buffer:
                    raise CaptureFailed("No audio frames captured")

                frames = np.concatenate(list(self._buffer))
                path = await loop.run_in_executor(None, self._write_wav, frames)
            except CaptureFailed:
                raise
            except Exception as e:
                logger.error("Failed to stop recording: %s", e)
                raise CaptureFailed(f"Failed to stop recording: {e}") from e
            finally:
                session.state = SessionState.CLOSED
                session.stream = None
                self._session = None
                self._buffer.clear()
                self.audio_session.release()

            audio = CapturedAudio(
                path=path, size_bytes=path.stat().st_size, duration=duration
            )
            logger.info(
                "Recording %s saved to %s (%.2fs, %d bytes)",
                session.session_id,
                path,
                duration,
                audio.size_bytes,
            )
            return audio

    def close(self) -> None:
        """Abandon any open session and release the microphone."""
        session = self._session
        if session is not None:
            logger.info("Abandoning open recording session %s", session.session_id)
            try:
                self._close_stream(session.stream)
            except Exception as e:
                logger.warning("Error closing stream: %s", e)
            finally:
                session.state = SessionState.CLOSED
                session.stream = None
                self._session = None

        self._buffer.clear()
        self.audio_session.release()

    def _open_stream(self):
        self._buffer.clear()
        stream = sounddevice.InputStream(
            device=self._resolve_device_selection(),
            samplerate=self.sample_rate,
            channels=self.channels,
            blocksize=self.chunk_size,
            callback=self._callback,
            dtype=SAMPLE_DTYPE,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        return stream

    @staticmethod
    def _close_stream(stream) -> None:
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _callback(self, indata, frames, time_info, status):
        """Stream callback invoked on audio data arrival."""
        if status:
            logger.warning("Audio stream status: %s", status)

        self._buffer.append(indata.copy())

    def _write_wav(self, frames: np.ndarray) -> Path:
        """Write 16-bit PCM frames to a temporary WAV file.

        Raises:
            RuntimeError: If file write fails
        """
        temp_file = tempfile.NamedTemporaryFile(mode="w+b", suffix=".wav", delete=False)
        path = Path(temp_file.name)
        temp_file.close()

        try:
            with wave.open(str(path), "wb") as wav_file:
                wav_file.setnchannels(self.channels)
                wav_file.setsampwidth(SAMPLE_WIDTH_BYTES)
                wav_file.setframerate(self.sample_rate)
                wav_file.writeframes(frames.astype(np.int16).tobytes())
        except Exception as e:
            path.unlink(missing_ok=True)
            logger.error("Failed to write WAV file: %s", e)
            raise RuntimeError(f"Failed to write WAV file: {e}") from e

        return path

    def _resolve_device_selection(self) -> int | None:
        """Resolve configured device selection to a sounddevice index."""

        if self.device is None or isinstance(self.device, int):
            return self.device

        try:
            device_list = sounddevice.query_devices()
            if isinstance(device_list, dict):
                device_list = [device_list]
        except Exception as e:
            logger.warning(
                "Unable to enumerate audio devices for '%s': %s; using default",
                self.device,
                e,
            )
            return None

        target = self.device.strip().lower()
        partial_match = None

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) <= 0:
                continue

            normalized = dev_info.get("name", "").strip().lower()
            if normalized == target:
                return idx
            if partial_match is None and target in normalized:
                partial_match = idx

        if partial_match is not None:
            logger.debug("Resolved audio device '%s' to index %d", self.device, partial_match)
            return partial_match

        logger.warning("Audio device '%s' not found. Using default input.", self.device)
        return None
