"""
Structured JSON event emission (shared).

Used by the voice agent worker and the control plane. Every event carries the
same envelope (ts, session_id, component, event_type, severity, correlation_id,
pii) and is written to stdout as one JSON line and kept in the event store.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import event_store


class Component(str, Enum):
    """Event producing components."""

    VOICE_AGENT = "voice_agent"
    CONTROL_PLANE = "control_plane"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured JSON events."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        """
        Emit a structured JSON event.

        Args:
            event_type: Stable event type string (e.g., "agent.state_changed")
            session_id: Opaque session identifier (the room name for agents)
            severity: Event severity level
            correlation_id: Optional correlation ID (pipeline run, command)
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Additional event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        event_store.store(event)

    def state_changed(self, session_id: str, from_state: str, to_state: str) -> None:
        """Emit agent.state_changed event."""
        self.emit(
            "agent.state_changed",
            session_id,
            severity=Severity.DEBUG,
            from_state=from_state,
            to_state=to_state,
        )

    def pipeline_error(
        self,
        session_id: str,
        correlation_id: str,
        stage: str,
        category: str,
        status: Optional[int] = None,
    ) -> None:
        """Emit pipeline.error event (contained provider/playback failure)."""
        self.emit(
            "pipeline.error",
            session_id,
            severity=Severity.ERROR,
            correlation_id=correlation_id,
            stage=stage,
            category=category,
            status=status,
        )

    def transcript(
        self,
        session_id: str,
        correlation_id: str,
        text: str,
        latency_ms: int,
    ) -> None:
        """Emit stt.final; the transcript itself is flagged as PII."""
        payload: Dict[str, Any] = {"transcript_length": len(text), "latency_ms": latency_ms}
        pii = None
        if text:
            payload["transcript_text"] = text
            pii = {"contains_pii": True, "fields": ["transcript_text"], "handling": "none"}
        self.emit(
            "stt.final",
            session_id,
            correlation_id=correlation_id,
            pii=pii,
            **payload,
        )


# Global event emitter for the voice agent
voice_agent_emitter = EventEmitter(Component.VOICE_AGENT)
