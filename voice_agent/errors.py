"""
Voice agent error taxonomy.

ConfigError and RoomConnectionError abort start(). The PipelineError family is
raised by the provider clients and the room connector and is only ever caught
by the orchestrator, which turns it into a state transition and a stats update.
"""
from typing import Optional


class VoiceAgentError(Exception):
    """Base error; carries the provider HTTP status and error body when known."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (status={self.status})"
        return self.message


class ConfigError(VoiceAgentError):
    """Missing or invalid configuration (e.g. no API key)."""


class RoomConnectionError(VoiceAgentError):
    """LiveKit room connect/disconnect failure."""


class PipelineError(VoiceAgentError):
    """A single pipeline stage failed."""

    stage = "pipeline"


class TranscriptionError(PipelineError):
    stage = "transcribe"


class GenerationError(PipelineError):
    stage = "generate"


class SynthesisError(PipelineError):
    stage = "synthesize"


class PlaybackError(PipelineError):
    stage = "publish"


class ErrorCategory:
    """Stable error categories for logs and events."""

    AUTH_FAILED = "provider.auth_failed"
    BAD_REQUEST = "provider.bad_request"
    RATE_LIMITED = "provider.rate_limited"
    SERVER_ERROR = "provider.server_error"
    NETWORK_ERROR = "provider.network_error"
    TIMEOUT = "provider.timeout"
    PLAYBACK_FAILED = "room.playback_failed"
    UNKNOWN_ERROR = "unknown_error"


def classify_error(error: BaseException) -> str:
    """Map an error onto a stable category; never raises."""
    status = getattr(error, "status", None)
    if isinstance(status, int):
        if status in (401, 403):
            return ErrorCategory.AUTH_FAILED
        if status == 429:
            return ErrorCategory.RATE_LIMITED
        if status >= 500:
            return ErrorCategory.SERVER_ERROR
        if 400 <= status < 500:
            return ErrorCategory.BAD_REQUEST

    if isinstance(error, PlaybackError):
        return ErrorCategory.PLAYBACK_FAILED

    error_str = str(error).lower()
    if "timeout" in error_str or "timed out" in error_str:
        return ErrorCategory.TIMEOUT
    if "network" in error_str or "connection" in error_str:
        return ErrorCategory.NETWORK_ERROR

    return ErrorCategory.UNKNOWN_ERROR


def redact_detail(detail: Optional[str], limit: int = 500) -> Optional[str]:
    """Trim provider error bodies for logging; drop anything that looks like a secret."""
    if not detail:
        return detail
    lowered = detail.lower()
    if "sk-" in lowered or "secret" in lowered or "password" in lowered:
        return "[redacted: potential secret]"
    return detail[:limit]
