"""Tests for audio capture controller."""

import asyncio
import wave
from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest

from voice_scribe._types import CapturedAudio, Discarded, SessionState
from voice_scribe.errors import CaptureFailed, PermissionDenied
from voice_scribe.recorder import AudioCaptureController


@pytest.fixture
def audio_session():
    """Create a fake platform audio session that grants permission."""
    session = MagicMock()
    session.request_permission.return_value = True
    return session


def make_controller(audio_session, times=(0.0, 2.0), **kwargs):
    """Build a controller whose clock returns the given timestamps."""
    clock = Mock(side_effect=list(times))
    return AudioCaptureController(audio_session=audio_session, clock=clock, **kwargs)


def feed(controller, seconds=1.0, sample_rate=16000):
    """Push a block of silence through the stream callback."""
    block = np.zeros((int(seconds * sample_rate), 1), dtype=np.int16)
    controller._callback(block, len(block), None, None)


class TestAudioCaptureControllerInit:
    """Tests for controller initialization."""

    def test_init_default_params(self, audio_session):
        """Test default capture format is 16 kHz mono."""
        controller = AudioCaptureController(audio_session=audio_session)
        assert controller.sample_rate == 16000
        assert controller.channels == 1
        assert controller.min_duration == 1.0
        assert controller.is_recording is False

    def test_init_invalid_sample_rate(self, audio_session):
        """Test initialization fails with invalid sample rate."""
        with pytest.raises(ValueError, match="sample_rate must be positive"):
            AudioCaptureController(sample_rate=0, audio_session=audio_session)

    def test_init_invalid_channels(self, audio_session):
        """Test initialization fails with invalid channel count."""
        with pytest.raises(ValueError, match="channels must be 1 or 2"):
            AudioCaptureController(channels=3, audio_session=audio_session)

    def test_init_invalid_min_duration(self, audio_session):
        """Test initialization fails with negative threshold."""
        with pytest.raises(ValueError, match="min_duration must be non-negative"):
            AudioCaptureController(min_duration=-1, audio_session=audio_session)


class TestStartRecording:
    """Tests for opening sessions."""

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_start_opens_int16_stream(self, mock_input_stream, audio_session):
        """Test start opens a 16-bit PCM stream and configures the session."""
        stream = MagicMock()
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session)

        session = await controller.start_recording()

        assert session is not None
        assert session.state == SessionState.OPEN
        assert controller.is_recording
        kwargs = mock_input_stream.call_args[1]
        assert kwargs["samplerate"] == 16000
        assert kwargs["channels"] == 1
        assert kwargs["dtype"] == "int16"
        assert kwargs["callback"] == controller._callback
        stream.start.assert_called_once()
        audio_session.configure.assert_called_once()

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_second_start_is_noop(self, mock_input_stream, audio_session):
        """Test starting twice keeps the first session only."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session)

        first = await controller.start_recording()
        second = await controller.start_recording()

        assert second is None
        assert controller.session is first
        mock_input_stream.assert_called_once()

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_permission_denied(self, mock_input_stream, audio_session):
        """Test refused permission raises and opens nothing."""
        audio_session.request_permission.return_value = False
        controller = make_controller(audio_session)

        with pytest.raises(PermissionDenied):
            await controller.start_recording()

        mock_input_stream.assert_not_called()
        audio_session.configure.assert_not_called()
        assert controller.is_recording is False

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_stream_failure_releases_session(self, mock_input_stream, audio_session):
        """Test stream creation errors release the audio session."""
        mock_input_stream.side_effect = RuntimeError("Device busy")
        controller = make_controller(audio_session)

        with pytest.raises(CaptureFailed, match="Device busy"):
            await controller.start_recording()

        audio_session.release.assert_called_once()
        assert controller.is_recording is False

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_stream_start_failure_closes_stream(self, mock_input_stream, audio_session):
        """Test a stream that fails to start is closed."""
        stream = MagicMock()
        stream.start.side_effect = RuntimeError("Invalid sample rate")
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session)

        with pytest.raises(CaptureFailed):
            await controller.start_recording()

        stream.close.assert_called_once()
        assert controller.is_recording is False


class TestStopRecording:
    """Tests for finalizing sessions."""

    @pytest.mark.asyncio
    async def test_stop_without_session_returns_none(self, audio_session):
        """Test stop with nothing open is a no-op."""
        controller = make_controller(audio_session)
        assert await controller.stop_recording() is None

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_short_recording_discarded(self, mock_input_stream, audio_session):
        """Test recordings under the threshold are discarded."""
        stream = MagicMock()
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session, times=(10.0, 10.4))

        await controller.start_recording()
        feed(controller, seconds=0.4)
        result = await controller.stop_recording()

        assert isinstance(result, Discarded)
        assert result.duration == pytest.approx(0.4)
        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        audio_session.release.assert_called_once()
        assert controller.is_recording is False

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_stop_writes_wav(self, mock_input_stream, audio_session):
        """Test a long enough recording is written as 16-bit WAV."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session, times=(0.0, 1.5))

        session = await controller.start_recording()
        feed(controller, seconds=1.5)
        result = await controller.stop_recording()

        try:
            assert isinstance(result, CapturedAudio)
            assert result.mime_type == "audio/wav"
            assert result.extension == "wav"
            assert result.duration == pytest.approx(1.5)
            assert result.size_bytes == result.path.stat().st_size
            with wave.open(str(result.path), "rb") as wav_file:
                assert wav_file.getnchannels() == 1
                assert wav_file.getsampwidth() == 2
                assert wav_file.getframerate() == 16000
                assert wav_file.getnframes() == 24000
            assert session.state == SessionState.CLOSED
        finally:
            result.release()
        assert not result.path.exists()

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_exact_threshold_is_kept(self, mock_input_stream, audio_session):
        """Test a recording of exactly min_duration is not discarded."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session, times=(0.0, 1.0))

        await controller.start_recording()
        feed(controller, seconds=1.0)
        result = await controller.stop_recording()

        assert isinstance(result, CapturedAudio)
        result.release()

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_no_frames_raises(self, mock_input_stream, audio_session):
        """Test stop raises when the stream delivered nothing."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session)

        await controller.start_recording()
        with pytest.raises(CaptureFailed, match="No audio frames captured"):
            await controller.stop_recording()

        audio_session.release.assert_called_once()
        assert controller.is_recording is False

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_stream_stop_error_still_releases(self, mock_input_stream, audio_session):
        """Test stream errors during stop release every resource."""
        stream = MagicMock()
        stream.stop.side_effect = RuntimeError("Device unplugged")
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session)

        await controller.start_recording()
        feed(controller)
        with pytest.raises(CaptureFailed, match="Device unplugged"):
            await controller.stop_recording()

        stream.close.assert_called_once()
        audio_session.release.assert_called_once()
        assert controller.is_recording is False

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_restart_after_stop(self, mock_input_stream, audio_session):
        """Test a new session can open after the previous one closed."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session, times=(0.0, 0.1, 5.0))

        await controller.start_recording()
        await controller.stop_recording()
        session = await controller.start_recording()

        assert session is not None
        assert mock_input_stream.call_count == 2


class TestClose:
    """Tests for abandoning sessions."""

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_close_abandons_open_session(self, mock_input_stream, audio_session):
        """Test close releases an open stream."""
        stream = MagicMock()
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session)

        session = await controller.start_recording()
        controller.close()

        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        audio_session.release.assert_called()
        assert session.state == SessionState.CLOSED
        assert controller.is_recording is False


class TestOverlappingCalls:
    """Tests for concurrent start/stop requests."""

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_concurrent_starts_open_one_stream(self, mock_input_stream, audio_session):
        """Test two starts issued together open a single stream."""
        mock_input_stream.return_value = MagicMock()
        controller = make_controller(audio_session)

        results = await asyncio.gather(
            controller.start_recording(), controller.start_recording()
        )

        mock_input_stream.assert_called_once()
        assert results.count(None) == 1
        assert controller.session in results
        audio_session.configure.assert_called_once()

    @pytest.mark.asyncio
    @patch("voice_scribe.recorder.sounddevice.InputStream")
    async def test_concurrent_stops_finalize_once(self, mock_input_stream, audio_session):
        """Test two stops issued together write one recording."""
        stream = MagicMock()
        mock_input_stream.return_value = stream
        controller = make_controller(audio_session)
        await controller.start_recording()
        feed(controller, seconds=2.0)

        results = await asyncio.gather(
            controller.stop_recording(), controller.stop_recording()
        )

        captured = [r for r in results if isinstance(r, CapturedAudio)]
        assert len(captured) == 1
        assert results.count(None) == 1
        stream.close.assert_called_once()
        audio_session.release.assert_called_once()
        captured[0].release()


class TestDevices:
    """Tests for device selection."""

    @patch("voice_scribe.recorder.sounddevice.query_devices")
    def test_resolve_device_by_partial_name(self, mock_query, audio_session):
        """Test device names resolve to indices."""
        mock_query.return_value = [
            {"name": "Built-in Microphone", "max_input_channels": 2},
            {"name": "USB Audio Device", "max_input_channels": 1},
        ]
        controller = AudioCaptureController(device="usb", audio_session=audio_session)
        assert controller._resolve_device_selection() == 1

    @patch("voice_scribe.recorder.sounddevice.query_devices")
    def test_resolve_unknown_device_uses_default(self, mock_query, audio_session):
        """Test unknown names fall back to the default input."""
        mock_query.return_value = [{"name": "Mic", "max_input_channels": 1}]
        controller = AudioCaptureController(device="nope", audio_session=audio_session)
        assert controller._resolve_device_selection() is None
