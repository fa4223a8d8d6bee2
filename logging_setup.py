"""
Shared logging infrastructure for the voice agent worker and its control plane.

Features:
- JSON-formatted structured logs (one object per line)
- Keyword arguments become top-level fields
- Session ID correlation across all logs of one agent session
- Component and severity tagging
- PII-aware logging helpers
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Component(str, Enum):
    """System components for log tagging."""
    VOICE_AGENT = "voice_agent"
    ORCHESTRATOR = "orchestrator"
    CAPTURE = "capture"
    ROOM = "room"
    STT = "stt"
    LLM = "llm"
    TTS = "tts"
    CONTROL_PLANE = "control_plane"
    REGISTRY = "registry"


# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "session_id", "message",
})


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output fields:
    - ISO8601 timestamp
    - Severity level
    - Component identifier
    - Session ID (if available in extra)
    - Message and additional fields

    Latency values (latency_ms) get an "ms" suffix and are highlighted when
    colors are enabled (FORCE_COLOR=1, or a TTY without NO_COLOR).
    """

    ORANGE = '\033[38;5;208m'
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "session_id"):
            log_data["session_id"] = record.session_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        json_output = json.dumps(log_data, ensure_ascii=False, default=str)

        if isinstance(log_data.get("latency_ms"), int) and self._use_color():
            json_output = re.sub(
                r'("latency_ms"\s*:\s*)(\d+)',
                rf'\1{self.ORANGE}\2 ms{self.RESET}',
                json_output,
            )

        return json_output

    @staticmethod
    def _use_color() -> bool:
        if os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes"):
            return False
        if os.environ.get("FORCE_COLOR", "").lower() in ("1", "true", "yes"):
            return True
        try:
            return sys.stdout.isatty()
        except (AttributeError, OSError):
            return False


class StructuredLogger:
    """
    Wrapper around Python's logging with structured JSON output.

    Usage:
        logger = StructuredLogger("orchestrator", session_id="room-123")
        logger.info("Pipeline run started", samples=48000)
        logger.error("Transcription failed", status=500)
        logger.debug_pii("Transcript", text="hello")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {
            "component": self.component,
            **kwargs
        }

        if self.session_id:
            extra["session_id"] = self.session_id

        if pii:
            extra["pii"] = pii

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra
        )

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """
        Log debug with PII fields explicitly marked.

        Example:
            logger.debug_pii("User said", transcript="my name is John")
        """
        self._log(logging.DEBUG, message, pii=pii_fields)

    def set_debug(self, enabled: bool) -> None:
        """Toggle DEBUG output for this component's logger."""
        self.logger.setLevel(logging.DEBUG if enabled else logging.NOTSET)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Create a new logger instance bound to a session ID."""
        return StructuredLogger(
            self.component,
            session_id=session_id,
            logger_name=self.logger.name
        )


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    """
    Configure the root logger once at process startup.

    Records from third-party loggers (livekit, aiohttp, uvicorn) go through the
    same handler, so they carry component "unknown" in JSON mode.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(
    component: str | Component,
    session_id: Optional[str] = None
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.ROOM, session_id="room-123")
        logger.info("Connected")
    """
    return StructuredLogger(component, session_id=session_id)
