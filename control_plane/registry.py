"""
Agent session registry.

One AgentSession per room. A session is created by spawn_agent (status
"pending", token minted), becomes "active" once a worker is started for it and
"disconnected" when the worker stops or fails. Disconnected sessions are kept
for a short grace period so a client can still read their final status.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from livekit import api

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity
from voice_agent.config import AgentConfig, Voice, parse_voice
from voice_agent.instructions import get_greeting_text, get_instructions
from voice_agent.state import AgentState
from voice_agent.worker import VoiceAgentWorker
from .config import get_config
from .tokens import generate_agent_token, new_agent_identity

logger = get_logger(Component.REGISTRY)
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)

DISCONNECTED_RETENTION_SECONDS = 60.0
MAX_UPTIME_SECONDS = 3600.0
_WORKER_DOWN = (AgentState.DISCONNECTED, AgentState.ERROR)


class AgentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


@dataclass
class AgentSession:
    """An AI agent assigned to one LiveKit room."""

    room_name: str
    agent_identity: str
    token: str
    created_at: datetime
    voice: Voice = Voice.ALLOY
    system_prompt: Optional[str] = None
    status: AgentStatus = AgentStatus.PENDING

    worker: Optional[VoiceAgentWorker] = field(default=None, repr=False)
    started_at: Optional[float] = None  # monotonic
    disconnected_at: Optional[float] = None  # monotonic

    def uptime_seconds(self, now: Optional[float] = None) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.disconnected_at if self.disconnected_at is not None else (now or time.monotonic())
        return max(0.0, end - self.started_at)


def should_restart(
    session: Optional[AgentSession],
    max_uptime_seconds: float = MAX_UPTIME_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """True for an active agent that has been up longer than max_uptime_seconds."""
    if session is None or session.status != AgentStatus.ACTIVE:
        return False
    uptime = session.uptime_seconds(now)
    return uptime is not None and uptime > max_uptime_seconds


async def _remove_participant(room_name: str, identity: str) -> None:
    """Remove the agent participant from the room via the LiveKit room service."""
    cfg = get_config()
    lk = api.LiveKitAPI(
        url=cfg.livekit_http_url,
        api_key=cfg.livekit_api_key,
        api_secret=cfg.livekit_api_secret,
    )
    try:
        await lk.room.remove_participant(api.RoomParticipantIdentity(room=room_name, identity=identity))
    finally:
        await lk.aclose()


class AgentRegistry:
    """In-memory registry of agent sessions, keyed by room name."""

    def __init__(
        self,
        *,
        retention_seconds: float = DISCONNECTED_RETENTION_SECONDS,
        worker_factory: Callable[..., Any] = VoiceAgentWorker,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._sessions: Dict[str, AgentSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.retention_seconds = retention_seconds
        self._worker_factory = worker_factory
        self._monotonic = monotonic

    def _purge(self) -> None:
        for room, s in list(self._sessions.items()):
            # A worker whose room connection dropped reports DISCONNECTED itself.
            if s.status == AgentStatus.ACTIVE and s.worker is not None and s.worker.get_state() in _WORKER_DOWN:
                self.update_status(room, AgentStatus.DISCONNECTED)
        now = self._monotonic()
        expired = [
            room for room, s in self._sessions.items()
            if s.status == AgentStatus.DISCONNECTED
            and s.disconnected_at is not None
            and now - s.disconnected_at >= self.retention_seconds
        ]
        for room in expired:
            del self._sessions[room]
            task = self._tasks.pop(room, None)
            if task is not None and not task.done():
                task.cancel()

    def spawn_agent(
        self,
        room_name: str,
        *,
        voice: Voice | str | None = None,
        system_prompt: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> AgentSession:
        """Mint an agent token for room_name and register a pending session."""
        voice = voice if isinstance(voice, Voice) else parse_voice(voice)
        identity = agent_name or new_agent_identity()
        token = generate_agent_token(room_name, identity=identity, voice=voice, system_prompt=system_prompt)

        session = AgentSession(
            room_name=room_name,
            agent_identity=identity,
            token=token,
            created_at=datetime.now(timezone.utc),
            voice=voice,
            system_prompt=system_prompt,
        )
        self._sessions[room_name] = session
        logger.info("Agent spawned", room=room_name, agent_identity=identity, voice=voice.value)
        emitter.emit("agent.spawned", room_name, agent_identity=identity, voice=voice.value)
        return session

    def get_session(self, room_name: str) -> Optional[AgentSession]:
        self._purge()
        return self._sessions.get(room_name)

    def list_sessions(self, status: Optional[AgentStatus] = None) -> List[AgentSession]:
        self._purge()
        sessions = list(self._sessions.values())
        if status:
            sessions = [s for s in sessions if s.status == status]
        return sessions

    def update_status(self, room_name: str, status: AgentStatus) -> None:
        session = self._sessions.get(room_name)
        if session is None:
            return
        old = session.status
        session.status = status
        if status == AgentStatus.ACTIVE:
            session.started_at = self._monotonic()
            session.disconnected_at = None
        elif status == AgentStatus.DISCONNECTED and session.disconnected_at is None:
            session.disconnected_at = self._monotonic()
        if old != status:
            logger.debug("Agent status changed", room=room_name, from_status=old.value, to_status=status.value)

    def should_restart(self, room_name: str, max_uptime_seconds: float = MAX_UPTIME_SECONDS) -> bool:
        return should_restart(self.get_session(room_name), max_uptime_seconds, now=self._monotonic())

    def is_agent_available(self, room_name: str) -> bool:
        session = self.get_session(room_name)
        return session is not None and session.status == AgentStatus.ACTIVE

    def connection_details(self, room_name: str) -> Optional[Dict[str, str]]:
        """Server URL and token a worker needs to join the room."""
        session = self.get_session(room_name)
        if session is None:
            return None
        return {"server_url": get_config().livekit_url, "token": session.token}

    async def start_worker(
        self,
        room_name: str,
        *,
        system_prompt: Optional[str] = None,
        voice: Voice | str | None = None,
        debug: bool = False,
    ) -> AgentSession:
        """
        Start a VoiceAgentWorker for a spawned session in the background.

        Raises KeyError if no session exists for the room, RuntimeError if a
        worker is already running for it.
        """
        session = self.get_session(room_name)
        if session is None:
            raise KeyError(room_name)
        if session.status == AgentStatus.ACTIVE and session.worker is not None:
            raise RuntimeError(f"Worker already running for room {room_name}")

        if voice is not None:
            session.voice = voice if isinstance(voice, Voice) else parse_voice(voice)
        config = AgentConfig(
            server_url=get_config().livekit_url,
            session_token=session.token,
            system_prompt=system_prompt or session.system_prompt or get_instructions(),
            voice=session.voice,
            greeting_text=get_greeting_text(),
            debug=debug,
        )
        worker = self._worker_factory(config, session_id=room_name)
        session.worker = worker
        self.update_status(room_name, AgentStatus.ACTIVE)
        self._tasks[room_name] = asyncio.create_task(self._run_worker(session, worker))
        return session

    async def _run_worker(self, session: AgentSession, worker: VoiceAgentWorker) -> None:
        """Start the worker, keep it until it stops (room gone or removed), then release it."""
        room = session.room_name
        try:
            await worker.start()
            logger.info("Voice agent worker running", room=room)
            await worker.wait_closed()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Voice agent worker failed to start",
                room=room,
                error=str(e),
                error_type=type(e).__name__,
            )
            emitter.emit(
                "agent.worker_failed",
                room,
                severity=Severity.ERROR,
                error_class=type(e).__name__,
            )
        finally:
            await worker.stop()
            if self._tasks.get(room) is asyncio.current_task():
                del self._tasks[room]
            if session.worker is worker and self._sessions.get(room) is session:
                self.update_status(room, AgentStatus.DISCONNECTED)
            logger.info("Voice agent worker stopped", room=room)

    async def remove_agent(self, room_name: str) -> bool:
        """
        Stop the room's worker and remove the agent participant from the room.

        Returns False when there is no session or the room service call failed.
        """
        session = self.get_session(room_name)
        if session is None:
            return False

        task = self._tasks.pop(room_name, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if session.worker is not None:
            await session.worker.stop()
            session.worker = None
        self.update_status(room_name, AgentStatus.DISCONNECTED)

        try:
            await _remove_participant(room_name, session.agent_identity)
        except Exception as e:
            logger.error(
                "Failed to remove agent participant",
                room=room_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self._sessions.pop(room_name, None)
        logger.info("Agent removed from room", room=room_name)
        return True

    def clear(self) -> None:
        self._sessions.clear()
        self._tasks.clear()


# Global registry
agent_registry = AgentRegistry()
