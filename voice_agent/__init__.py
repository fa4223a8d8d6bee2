"""
Realtime voice agent worker.

Joins a LiveKit room, buffers remote participant audio and answers every few
seconds of speech: STT -> LLM -> TTS -> publish, one turn at a time.
"""

from .config import AgentConfig, Voice
from .errors import (
    ConfigError,
    GenerationError,
    PlaybackError,
    RoomConnectionError,
    SynthesisError,
    TranscriptionError,
    VoiceAgentError,
)
from .state import AgentState
from .telemetry import AgentStats
from .worker import VoiceAgentWorker, spawn_voice_agent_worker

__all__ = [
    "AgentConfig",
    "AgentState",
    "AgentStats",
    "ConfigError",
    "GenerationError",
    "PlaybackError",
    "RoomConnectionError",
    "SynthesisError",
    "TranscriptionError",
    "Voice",
    "VoiceAgentError",
    "VoiceAgentWorker",
    "spawn_voice_agent_worker",
]
