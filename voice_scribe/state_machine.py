"""Pure transition table for the voice pipeline.

``transition`` maps the current state and an event to the next state plus the
side effects the controller must perform. It does no I/O, so every legal and
illegal path can be checked directly in tests.
"""

from enum import Enum


class PipelineState(Enum):
    """State observed by the UI."""

    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


class Event(Enum):
    """Inputs to the pipeline state machine."""

    START_REQUESTED = "start_requested"
    RECORDING_STARTED = "recording_started"
    STOP_REQUESTED = "stop_requested"
    AUDIO_DISCARDED = "audio_discarded"
    AUDIO_CAPTURED = "audio_captured"
    CAPTURE_FAILED = "capture_failed"
    TRANSCRIPT_READY = "transcript_ready"
    NO_SPEECH = "no_speech"
    TRANSCRIPTION_FAILED = "transcription_failed"
    TEXT_SUBMITTED = "text_submitted"
    CLEAR_REQUESTED = "clear_requested"


class Effect(Enum):
    """Side effects requested by a transition."""

    RELEASE_AUDIO = "release_audio"
    OPEN_SESSION = "open_session"
    FINALIZE_SESSION = "finalize_session"
    TRANSCRIBE = "transcribe"
    PUBLISH_TRANSCRIPT = "publish_transcript"
    PERSIST = "persist"
    REPORT_ERROR = "report_error"
    CLEAR_TRANSCRIPT = "clear_transcript"


class InvalidTransition(Exception):
    """Event is not accepted in the current state."""

    def __init__(self, state: PipelineState, event: Event) -> None:
        self.state = state
        self.event = event
        super().__init__(f"{event.value} is not valid in {state.value} state")


_S = PipelineState
_E = Event
_F = Effect

TRANSITIONS: dict[tuple[PipelineState, Event], tuple[PipelineState, tuple[Effect, ...]]] = {
    (_S.IDLE, _E.START_REQUESTED): (_S.IDLE, (_F.RELEASE_AUDIO, _F.OPEN_SESSION)),
    (_S.IDLE, _E.RECORDING_STARTED): (_S.RECORDING, ()),
    (_S.IDLE, _E.CAPTURE_FAILED): (_S.IDLE, (_F.REPORT_ERROR,)),
    (_S.RECORDING, _E.STOP_REQUESTED): (_S.RECORDING, (_F.FINALIZE_SESSION,)),
    (_S.RECORDING, _E.AUDIO_DISCARDED): (_S.IDLE, ()),
    (_S.RECORDING, _E.AUDIO_CAPTURED): (_S.PROCESSING, (_F.TRANSCRIBE,)),
    (_S.RECORDING, _E.CAPTURE_FAILED): (_S.IDLE, (_F.REPORT_ERROR,)),
    (_S.PROCESSING, _E.TRANSCRIPT_READY): (_S.IDLE, (_F.PUBLISH_TRANSCRIPT, _F.PERSIST)),
    (_S.PROCESSING, _E.NO_SPEECH): (_S.IDLE, (_F.PUBLISH_TRANSCRIPT,)),
    (_S.PROCESSING, _E.TRANSCRIPTION_FAILED): (_S.IDLE, (_F.REPORT_ERROR,)),
    (_S.IDLE, _E.CLEAR_REQUESTED): (_S.IDLE, (_F.CLEAR_TRANSCRIPT, _F.RELEASE_AUDIO)),
}

# Typed input bypasses recording and is accepted in every state.
for _state in PipelineState:
    TRANSITIONS[(_state, _E.TEXT_SUBMITTED)] = (_state, (_F.PUBLISH_TRANSCRIPT, _F.PERSIST))


def transition(
    state: PipelineState, event: Event
) -> tuple[PipelineState, tuple[Effect, ...]]:
    """Return the next state and effects for ``event`` in ``state``.

    Raises:
        InvalidTransition: If the event is not accepted in ``state``
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


def is_allowed(state: PipelineState, event: Event) -> bool:
    return (state, event) in TRANSITIONS
