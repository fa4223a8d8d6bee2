"""
Session telemetry: monotonic counters and timestamps.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from .state import AgentState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AgentStats:
    messages_processed: int = 0
    total_speech_time: float = 0.0  # seconds
    total_listen_time: float = 0.0  # seconds
    errors: int = 0
    frames_dropped: int = 0
    connection_start_time: datetime = field(default_factory=_utcnow)
    last_activity_time: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "messages_processed": self.messages_processed,
            "total_speech_time": round(self.total_speech_time, 3),
            "total_listen_time": round(self.total_listen_time, 3),
            "errors": self.errors,
            "frames_dropped": self.frames_dropped,
            "connection_start_time": self.connection_start_time.isoformat(),
            "last_activity_time": self.last_activity_time.isoformat(),
        }


class StatsTracker:
    """
    Owns the AgentStats of one session.

    Counters only grow; the stats object is created once per session.
    """

    def __init__(
        self,
        *,
        now: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._now = now
        self._monotonic = monotonic
        started = now()
        self._stats = AgentStats(connection_start_time=started, last_activity_time=started)
        self._listening_since: Optional[float] = None

    def touch(self) -> None:
        self._stats.last_activity_time = self._now()

    def record_message(self) -> None:
        self._stats.messages_processed += 1
        self.touch()

    def record_error(self) -> None:
        self._stats.errors += 1

    def record_speech(self, seconds: float) -> None:
        if seconds > 0:
            self._stats.total_speech_time += seconds

    def record_dropped_frame(self) -> None:
        self._stats.frames_dropped += 1

    def mark_connected(self) -> None:
        self._stats.connection_start_time = self._now()

    def on_state_change(self, old: AgentState, new: AgentState) -> None:
        """Accumulate time spent in LISTENING."""
        if old == AgentState.LISTENING and new != AgentState.LISTENING:
            self._close_listen_window()
        elif new == AgentState.LISTENING and old != AgentState.LISTENING:
            self._listening_since = self._monotonic()

    def _close_listen_window(self) -> None:
        if self._listening_since is not None:
            self._stats.total_listen_time += max(0.0, self._monotonic() - self._listening_since)
            self._listening_since = None

    def snapshot(self) -> AgentStats:
        """Read-only copy; includes the currently open listening window."""
        stats = replace(self._stats)
        if self._listening_since is not None:
            stats.total_listen_time += max(0.0, self._monotonic() - self._listening_since)
        return stats
