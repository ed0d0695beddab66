"""Process-wide audio configuration held for the duration of a recording."""

import logging

import sounddevice

from voice_scribe.errors import CaptureFailed

logger = logging.getLogger(__name__)


class AudioSession:
    """Microphone permission check plus PortAudio default settings.

    sounddevice keeps its defaults in module-level state, so the capture
    controller acquires this object before opening a stream and releases it
    afterwards. Tests substitute a fake with the same four methods.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        device: int | str | None = None,
        dtype: str = "int16",
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self.dtype = dtype

        self._permission_granted = False
        self._active = False
        self._saved_samplerate = None

    @property
    def active(self) -> bool:
        return self._active

    def request_permission(self) -> bool:
        """Check whether the input device can be opened with our settings.

        Returns:
            True if capture is allowed, False if the device refused access

        Raises:
            CaptureFailed: If no input device exists at all
        """
        if self._permission_granted:
            return True

        try:
            devices = sounddevice.query_devices()
        except Exception as e:
            raise CaptureFailed(f"Unable to query audio devices: {e}") from e

        if isinstance(devices, dict):
            devices = [devices]
        if not any(d.get("max_input_channels", 0) > 0 for d in devices):
            raise CaptureFailed("No audio input device available")

        try:
            sounddevice.check_input_settings(
                device=self.device,
                channels=self.channels,
                dtype=self.dtype,
                samplerate=self.sample_rate,
            )
        except sounddevice.PortAudioError as e:
            logger.warning("Microphone access refused: %s", e)
            return False
        except ValueError as e:
            raise CaptureFailed(f"Unsupported input settings: {e}") from e

        self._permission_granted = True
        logger.debug("Microphone permission granted")
        return True

    def configure(self) -> None:
        """Pin PortAudio's default sample rate for the length of a recording.

        Only module-level defaults change, so other sounddevice calls in this
        process (device queries, playback) agree with the capture format. The
        capture stream itself is opened with explicit settings and does not
        read these defaults.
        """
        if self._active:
            return
        self._saved_samplerate = sounddevice.default.samplerate
        sounddevice.default.samplerate = self.sample_rate
        self._active = True
        logger.debug("Audio session configured for %d Hz capture", self.sample_rate)

    def release(self) -> None:
        """Restore the default sample rate saved by configure()."""
        if not self._active:
            return
        try:
            sounddevice.default.samplerate = self._saved_samplerate
        finally:
            self._saved_samplerate = None
            self._active = False
        logger.debug("Audio session released")
