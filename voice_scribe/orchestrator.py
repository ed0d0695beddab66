"""Central async state machine orchestrating capture, transcription and storage."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from voice_scribe._types import CapturedAudio, Discarded, Transcript, TranscriptSource
from voice_scribe.errors import (
    CaptureFailed,
    PermissionDenied,
    PersistenceFailed,
    TranscriptionError,
    TranscriptionTimeout,
    VoiceScribeError,
)
from voice_scribe.persistence import PersistenceClient
from voice_scribe.recorder import AudioCaptureController
from voice_scribe.state_machine import (
    Effect,
    Event,
    InvalidTransition,
    PipelineState,
    transition,
)
from voice_scribe.transcriber import TranscriptionClient

logger = logging.getLogger(__name__)

MESSAGES = {
    "DEFAULT": "Press and hold the mic button to speak",
    "RECORDING": "Recording... Release to stop",
    "PROCESSING": "Converting speech to text...",
    "READY": "Press & hold to record",
    "ERROR": "Error converting speech",
    "PERMISSION_DENIED": "Microphone permission needed",
    "TIMEOUT": "Request timeout - please try again",
}

_STATUS_FOR_STATE = {
    PipelineState.IDLE: MESSAGES["READY"],
    PipelineState.RECORDING: MESSAGES["RECORDING"],
    PipelineState.PROCESSING: MESSAGES["PROCESSING"],
}


@dataclass(frozen=True)
class PipelineSnapshot:
    """What the UI renders: mode, current text, status line."""

    state: PipelineState
    transcript: str
    status: str


Listener = Callable[[PipelineSnapshot], None]


class VoicePipelineController:
    """Coordinates capture controller, transcription client and persistence.

    Every request is first run through the pure transition table; requests
    that are illegal in the current state are logged and ignored. Capture and
    recognition failures bring the pipeline back to IDLE with a message, and
    storage failures are only logged.
    """

    def __init__(
        self,
        capture: AudioCaptureController,
        transcriber: TranscriptionClient,
        persistence: PersistenceClient | None = None,
    ):
        """Initialize pipeline with components.

        Args:
            capture: Microphone capture controller
            transcriber: Recognizer client
            persistence: Storage backend client, or None to skip storage
        """
        self.capture = capture
        self.transcriber = transcriber
        self.persistence = persistence

        self.state = PipelineState.IDLE
        self.transcript: Transcript | None = None
        self.status_message = MESSAGES["DEFAULT"]

        self._audio: CapturedAudio | None = None
        self._transcription_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

        logger.info("VoicePipelineController initialized in IDLE state")

    @property
    def transcript_text(self) -> str:
        return self.transcript.text if self.transcript else ""

    @property
    def audio(self) -> CapturedAudio | None:
        """Recording behind the current voice transcript, if retained."""
        return self._audio

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(self.state, self.transcript_text, self.status_message)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start_recording(self) -> None:
        """Handle a press: IDLE -> RECORDING once the microphone is capturing."""
        effects = self._dispatch(Event.START_REQUESTED)
        if Effect.OPEN_SESSION not in effects:
            return
        await self._run_effects(effects)

        try:
            session = await self.capture.start_recording()
        except CaptureFailed as e:
            logger.error("Failed to start recording: %s", e)
            await self._run_effects(self._dispatch(Event.CAPTURE_FAILED), error=e)
            return

        if session is None:
            logger.debug("Capture controller already had an open session")
            return

        self.transcript = None
        self._dispatch(Event.RECORDING_STARTED)
        self._notify()

    async def stop_recording(self) -> None:
        """Handle a release: finalize audio and hand it to the recognizer.

        Transcription runs in a background task; use wait_until_idle() to
        await its outcome.
        """
        effects = self._dispatch(Event.STOP_REQUESTED)
        if Effect.FINALIZE_SESSION not in effects:
            return

        try:
            result = await self.capture.stop_recording()
        except CaptureFailed as e:
            logger.error("Failed to stop recording: %s", e)
            await self._run_effects(self._dispatch(Event.CAPTURE_FAILED), error=e)
            return

        if result is None or isinstance(result, Discarded):
            self._dispatch(Event.AUDIO_DISCARDED)
            self._notify()
            return

        self._audio = result
        effects = self._dispatch(Event.AUDIO_CAPTURED)
        self._notify()
        if Effect.TRANSCRIBE in effects:
            self._transcription_task = asyncio.create_task(self._transcribe(result))

    async def submit_text(self, text: str) -> Transcript | None:
        """Publish and store typed text.

        Returns:
            The typed transcript, or None if the text was blank
        """
        cleaned = (text or "").strip()
        if not cleaned:
            logger.warning("Rejecting empty text submission")
            return None

        transcript = Transcript(text=cleaned, source=TranscriptSource.TYPED)
        await self._run_effects(self._dispatch(Event.TEXT_SUBMITTED), transcript=transcript)
        return transcript

    async def clear_transcript(self) -> None:
        """Reset the transcript and drop the retained recording (IDLE only)."""
        await self._run_effects(self._dispatch(Event.CLEAR_REQUESTED))

    async def wait_until_idle(self) -> None:
        """Wait for an in-flight transcription to resolve."""
        task = self._transcription_task
        if task is not None and not task.done():
            await task

    async def shutdown(self) -> None:
        """Cancel in-flight work and release every resource."""
        logger.info("Pipeline shutdown starting")

        task = self._transcription_task
        if task and not task.done():
            logger.debug("Cancelling transcription task")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await asyncio.get_running_loop().run_in_executor(None, self.capture.close)

        try:
            await self.transcriber.shutdown()
        except Exception as e:
            logger.warning("Error shutting down transcriber: %s", e)

        if self.persistence is not None:
            try:
                await self.persistence.close()
            except Exception as e:
                logger.warning("Error closing persistence client: %s", e)

        self._release_audio()
        self.state = PipelineState.IDLE
        logger.info("Pipeline shutdown complete")

    async def _transcribe(self, audio: CapturedAudio) -> None:
        """PROCESSING -> IDLE with whatever the recognizer produced."""
        try:
            transcript = await self.transcriber.transcribe(audio)
        except VoiceScribeError as e:
            logger.error("Transcription failed: %s", e)
            await self._run_effects(self._dispatch(Event.TRANSCRIPTION_FAILED), error=e)
            return
        except Exception as e:
            logger.error("Unexpected transcription error: %s", e, exc_info=True)
            error = TranscriptionError(str(e) or type(e).__name__)
            await self._run_effects(self._dispatch(Event.TRANSCRIPTION_FAILED), error=error)
            return

        event = Event.TRANSCRIPT_READY if transcript.speech_detected else Event.NO_SPEECH
        await self._run_effects(self._dispatch(event), transcript=transcript)

    def _dispatch(self, event: Event) -> tuple[Effect, ...]:
        try:
            next_state, effects = transition(self.state, event)
        except InvalidTransition as e:
            logger.warning("Ignoring request: %s", e)
            return ()

        if next_state != self.state:
            logger.info(
                "State transition: %s -> %s", self.state.name, next_state.name
            )
            self.state = next_state
            self.status_message = _STATUS_FOR_STATE[next_state]
        return effects

    async def _run_effects(
        self,
        effects: tuple[Effect, ...],
        *,
        transcript: Transcript | None = None,
        error: Exception | None = None,
    ) -> None:
        for effect in effects:
            if effect is Effect.RELEASE_AUDIO:
                self._release_audio()
            elif effect is Effect.CLEAR_TRANSCRIPT:
                self.transcript = None
                self.status_message = MESSAGES["DEFAULT"]
            elif effect is Effect.PUBLISH_TRANSCRIPT:
                self.transcript = transcript
                logger.info("Transcript ready (%s): %d characters", transcript.source.value, len(transcript.text))
            elif effect is Effect.REPORT_ERROR:
                self._report_error(error)
            elif effect is Effect.PERSIST:
                # Listeners see the transcript before the upload starts.
                self._notify()
                await self._persist(transcript)
        self._notify()

    def _report_error(self, error: Exception) -> None:
        if isinstance(error, PermissionDenied):
            self.status_message = MESSAGES["PERMISSION_DENIED"]
        elif isinstance(error, CaptureFailed):
            self.status_message = error.message
        elif isinstance(error, TranscriptionTimeout):
            self.status_message = MESSAGES["ERROR"]
            self.transcript = Transcript(
                text=MESSAGES["TIMEOUT"], source=TranscriptSource.VOICE, speech_detected=False
            )
        else:
            message = getattr(error, "message", str(error))
            self.status_message = MESSAGES["ERROR"]
            self.transcript = Transcript(
                text=f"Error: {message}", source=TranscriptSource.VOICE, speech_detected=False
            )

    async def _persist(self, transcript: Transcript) -> None:
        if self.persistence is None:
            return
        try:
            if transcript.source is TranscriptSource.VOICE and self._audio is not None:
                await self.persistence.save_voice_note(transcript.text, self._audio)
            else:
                await self.persistence.save_text(transcript.text)
        except PersistenceFailed as e:
            logger.error("Failed to persist transcript: %s", e)

    def _release_audio(self) -> None:
        if self._audio is not None:
            self._audio.release()
            self._audio = None

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Pipeline listener failed: %s", e)
