"""Shared types and dataclasses for cross-module use."""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

NO_SPEECH_TEXT = "Could not understand audio"


class SessionState(Enum):
    """Lifecycle of a single microphone recording."""

    OPEN = "open"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class RecordingSession:
    """An open microphone stream owned by the capture controller."""

    started_at: float
    stream: Any = None
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.OPEN


@dataclass
class CapturedAudio:
    """Finalized recording written to disk, ready for upload."""

    path: Path
    size_bytes: int
    duration: float
    mime_type: str = "audio/wav"

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".").lower() or "wav"

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def release(self) -> None:
        """Delete the backing file if it still exists."""
        try:
            if self.path.exists():
                self.path.unlink()
                logger.debug("Deleted captured audio: %s", self.path)
        except OSError as e:
            logger.warning("Error deleting captured audio %s: %s", self.path, e)


@dataclass
class Discarded:
    """Recording too short to be worth transcribing."""

    duration: float


@dataclass
class TranscriptFragment:
    """A partial or final recognition result from the recognizer."""

    text: str
    is_final: bool
    sequence_index: int


class TranscriptSource(Enum):
    """Where a transcript came from."""

    VOICE = "voice"
    TYPED = "typed"


@dataclass
class Transcript:
    """Resolved text of one utterance or typed message."""

    text: str
    source: TranscriptSource
    speech_detected: bool = True
