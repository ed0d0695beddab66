"""Exception hierarchy for the capture and transcription pipeline.

Every exception carries a ``message`` fit for display in the UI, so the
pipeline can turn any failure into a status line without inspecting its type.
"""


class VoiceScribeError(Exception):
    """Base exception for all voice-scribe errors."""

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        self.message = message
        super().__init__(message)


class CaptureFailed(VoiceScribeError):
    """Microphone could not be opened, read, or finalized."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PermissionDenied(CaptureFailed):
    """Microphone access was refused."""

    def __init__(self, reason: str = "Microphone permission needed") -> None:
        super().__init__(reason)


class TranscriptionError(VoiceScribeError):
    """Recognizer request did not produce a transcript."""


class TranscriptionTimeout(TranscriptionError):
    """Recognizer did not answer within the request timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Transcription timed out after {timeout} seconds")


class RecognizerError(TranscriptionError):
    """Recognizer answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP error! status: {status_code}")


class RecognizerUnavailable(TranscriptionError):
    """Recognizer could not be reached."""


class PersistenceFailed(VoiceScribeError):
    """Storing a transcript in the backend failed."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)
