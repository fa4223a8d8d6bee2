"""
Agent control API.

This module exposes:
- Write API: spawn an agent for a room, start its worker, set its status, remove it
- Read API: list agents, agent details (state, stats, restart hint), query events, voices

Commands emit auditable events: control.command_received / control.command_applied.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from logging_setup import get_logger, Component
from observability.events import Component as ObsComponent, EventEmitter, Severity
from observability.event_store import event_store
from voice_agent.config import Voice, available_voices, is_openai_configured
from .config import is_livekit_configured
from .registry import AgentSession, AgentStatus, agent_registry
from .validation import format_uptime, validate_room_name, validate_system_prompt


router = APIRouter(prefix="/agents", tags=["agents"])
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)
logger = get_logger(Component.CONTROL_PLANE)


class SpawnAgentRequest(BaseModel):
    room_name: str = Field(..., description="LiveKit room the agent joins")
    system_prompt: Optional[str] = None
    voice: Optional[Voice] = None
    agent_name: Optional[str] = Field(None, description="Participant identity (generated when omitted)")


class StartWorkerRequest(BaseModel):
    system_prompt: Optional[str] = None
    voice: Optional[Voice] = None
    debug: bool = False


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="pending, active or disconnected")


class CommandResponse(BaseModel):
    status: str


class AgentSummary(BaseModel):
    room_name: str
    agent_identity: str
    status: str
    voice: str
    created_at: str
    uptime: Optional[str] = None


class AgentDetail(AgentSummary):
    state: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    history_length: Optional[int] = None
    needs_restart: bool = False


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


def _summary(session: AgentSession) -> AgentSummary:
    uptime = session.uptime_seconds()
    return AgentSummary(
        room_name=session.room_name,
        agent_identity=session.agent_identity,
        status=session.status.value,
        voice=session.voice.value,
        created_at=session.created_at.isoformat(),
        uptime=format_uptime(uptime) if uptime is not None else None,
    )


def _check_room_name(room_name: str) -> None:
    valid, error = validate_room_name(room_name)
    if not valid:
        raise HTTPException(status_code=400, detail=error)


def _check_system_prompt(prompt: Optional[str]) -> None:
    if prompt is None:
        return
    valid, error = validate_system_prompt(prompt)
    if not valid:
        raise HTTPException(status_code=400, detail=error)


def _command_received(command: str, room_name: str, correlation_id: str) -> None:
    emitter.emit(
        "control.command_received",
        session_id=room_name,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command=command,
    )


def _command_applied(command: str, room_name: str, correlation_id: str, error: Optional[Exception] = None) -> None:
    fields: Dict[str, Any] = {"command": command, "result": "ok" if error is None else "error"}
    if error is not None:
        fields["error_class"] = type(error).__name__
    emitter.emit(
        "control.command_applied",
        session_id=room_name,
        severity=Severity.INFO if error is None else Severity.ERROR,
        correlation_id=correlation_id,
        **fields,
    )


# --- Write API ---


@router.post("", response_model=AgentSummary)
async def spawn_agent(req: SpawnAgentRequest) -> AgentSummary:
    """Register an agent for a room and mint its LiveKit token."""
    _check_room_name(req.room_name)
    _check_system_prompt(req.system_prompt)
    if not is_livekit_configured():
        raise HTTPException(status_code=503, detail="LiveKit not configured")

    correlation_id = _new_correlation_id()
    _command_received("agent.spawn", req.room_name, correlation_id)
    try:
        session = agent_registry.spawn_agent(
            req.room_name,
            voice=req.voice,
            system_prompt=req.system_prompt,
            agent_name=req.agent_name,
        )
    except Exception as e:
        logger.error("Failed to spawn agent", room=req.room_name, error=str(e), error_type=type(e).__name__)
        _command_applied("agent.spawn", req.room_name, correlation_id, error=e)
        raise HTTPException(status_code=500, detail="spawn_failed")

    _command_applied("agent.spawn", req.room_name, correlation_id)
    return _summary(session)


@router.post("/{room_name}/worker", response_model=AgentSummary)
async def start_worker(room_name: str, req: StartWorkerRequest) -> AgentSummary:
    """Start the voice agent worker for a spawned agent (runs in the background)."""
    _check_room_name(room_name)
    _check_system_prompt(req.system_prompt)
    if not is_openai_configured():
        raise HTTPException(status_code=503, detail="OpenAI not configured. Set OPENAI_API_KEY.")

    correlation_id = _new_correlation_id()
    _command_received("agent.start_worker", room_name, correlation_id)
    try:
        session = await agent_registry.start_worker(
            room_name,
            system_prompt=req.system_prompt,
            voice=req.voice,
            debug=req.debug,
        )
    except KeyError:
        raise HTTPException(status_code=404, detail="No agent session for this room. Call POST /agents first.")
    except RuntimeError:
        raise HTTPException(status_code=409, detail="Worker already running")

    _command_applied("agent.start_worker", room_name, correlation_id)
    return _summary(session)


@router.patch("/{room_name}", response_model=AgentSummary)
async def update_agent_status(room_name: str, req: UpdateStatusRequest) -> AgentSummary:
    """Set the agent's status (pending, active, disconnected)."""
    try:
        status = AgentStatus(req.status.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid status. Must be pending, active, or disconnected")
    if agent_registry.get_session(room_name) is None:
        raise HTTPException(status_code=404, detail="Agent not found")

    correlation_id = _new_correlation_id()
    _command_received("agent.update_status", room_name, correlation_id)
    agent_registry.update_status(room_name, status)
    _command_applied("agent.update_status", room_name, correlation_id)
    return _summary(agent_registry.get_session(room_name))


@router.delete("/{room_name}", response_model=CommandResponse)
async def remove_agent(room_name: str) -> CommandResponse:
    """Stop the agent's worker and remove it from the room."""
    if agent_registry.get_session(room_name) is None:
        raise HTTPException(status_code=404, detail="Agent not found")

    correlation_id = _new_correlation_id()
    _command_received("agent.remove", room_name, correlation_id)
    removed = await agent_registry.remove_agent(room_name)
    if not removed:
        _command_applied("agent.remove", room_name, correlation_id, error=RuntimeError("remove_failed"))
        raise HTTPException(status_code=502, detail="remove_failed")

    _command_applied("agent.remove", room_name, correlation_id)
    return CommandResponse(status="ok")


# --- Read API ---


@router.get("", response_model=List[AgentSummary])
async def list_agents(
    status: Optional[str] = Query(None, description="Filter by status (pending, active, disconnected)"),
) -> List[AgentSummary]:
    status_filter: Optional[AgentStatus] = None
    if status:
        try:
            status_filter = AgentStatus(status.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    return [_summary(s) for s in agent_registry.list_sessions(status=status_filter)]


@router.get("/voices")
async def list_voices() -> List[Dict[str, str]]:
    return available_voices()


@router.get("/{room_name}", response_model=AgentDetail)
async def get_agent(room_name: str) -> AgentDetail:
    session = agent_registry.get_session(room_name)
    if session is None:
        raise HTTPException(status_code=404, detail="Agent not found")

    detail = AgentDetail(**_summary(session).model_dump())
    detail.needs_restart = agent_registry.should_restart(room_name)
    if session.worker is not None:
        detail.state = session.worker.get_state().value
        detail.stats = session.worker.get_stats().to_dict()
        detail.history_length = len(session.worker.get_conversation_history())
    return detail


@router.get("/{room_name}/events")
async def get_agent_events(
    room_name: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """Events emitted for the room's agent session, oldest first."""
    since_dt: Optional[datetime] = None
    if since:
        try:
            # "+" in the offset may arrive URL-decoded as a space
            since_dt = datetime.fromisoformat(since.replace(" ", "+").replace("Z", "+00:00"))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid since timestamp: {since}")
        if since_dt.tzinfo is None:
            raise HTTPException(status_code=400, detail=f"since must include a timezone: {since}")

    events = event_store.query(session_id=room_name, event_type=event_type, since=since_dt, limit=limit)
    return {
        "room_name": room_name,
        "events": events,
        "count": len(events),
    }
