"""
Voice agent configuration.

Loads worker configuration from environment variables.
"""
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .instructions import get_greeting_text, get_instructions


class Voice(str, Enum):
    """Synthesis voices offered by the speech provider."""

    ALLOY = "alloy"
    ECHO = "echo"
    FABLE = "fable"
    ONYX = "onyx"
    NOVA = "nova"
    SHIMMER = "shimmer"

    @property
    def display_name(self) -> str:
        return _VOICE_LABELS[self]


_VOICE_LABELS = {
    Voice.ALLOY: "Alloy (Neutral)",
    Voice.ECHO: "Echo (Male)",
    Voice.FABLE: "Fable (British)",
    Voice.ONYX: "Onyx (Deep)",
    Voice.NOVA: "Nova (Female)",
    Voice.SHIMMER: "Shimmer (Soft)",
}


def available_voices() -> List[Dict[str, str]]:
    return [{"value": v.value, "label": v.display_name} for v in Voice]


def parse_voice(value: Optional[str]) -> Voice:
    if not value:
        return Voice.ALLOY
    try:
        return Voice(value.strip().lower())
    except ValueError:
        raise ConfigError(f"Unknown voice: {value!r}") from None


def load_local_env() -> None:
    """
    Load .env_local / .env.local from the project root (local dev convenience).

    Never overrides variables already present in the environment.
    """
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _clean_env(key: str) -> Optional[str]:
    """Read an env var, stripping trailing comments and whitespace ("3.0  # s" -> "3.0")."""
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool = False) -> bool:
    value = _clean_env(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class AgentConfig:
    """Configuration for one voice agent worker session."""

    # LiveKit
    server_url: str
    session_token: str

    # Conversation
    system_prompt: str
    voice: Voice = Voice.ALLOY
    greeting_text: str = "Hello! I'm your AI assistant. How can I help you today?"

    # OpenAI (falls back to OPENAI_API_KEY at start())
    api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    stt_model: str = "whisper-1"
    language: str = "en"
    llm_model: str = "gpt-4-turbo-preview"
    temperature: float = 0.7
    max_tokens: int = 150  # keep replies short enough for speech
    tts_model: str = "tts-1"

    # Audio
    sample_rate: int = 16000
    flush_threshold_seconds: float = 3.0
    max_buffer_seconds: Optional[float] = None
    ingest_queue_size: int = 256

    history_window: int = 10

    # Deadlines
    request_timeout_seconds: float = 30.0
    playback_timeout_seconds: float = 60.0

    debug: bool = False

    def __post_init__(self):
        if isinstance(self.voice, str) and not isinstance(self.voice, Voice):
            self.voice = parse_voice(self.voice)
        if not self.system_prompt or not self.system_prompt.strip():
            raise ConfigError("system_prompt is required")
        if self.flush_threshold_seconds <= 0:
            raise ConfigError("flush_threshold_seconds must be > 0")
        if self.sample_rate <= 0:
            raise ConfigError("sample_rate must be > 0")

    def resolve_api_key(self) -> Optional[str]:
        return self.api_key or os.environ.get("OPENAI_API_KEY") or None

    @classmethod
    def from_env(cls, *, flow: Optional[str] = None) -> "AgentConfig":
        """
        Load configuration from environment variables.

        System prompt and greeting come from AGENT_SYSTEM_PROMPT / AGENT_GREETING
        when set, otherwise from the prompt scenario (flow or AGENT_SCENARIO).
        """
        server_url = _clean_env("LIVEKIT_URL")
        if not server_url:
            raise ConfigError("LIVEKIT_URL is required")
        max_buffer = _parse_float_env("AGENT_MAX_BUFFER_SECONDS", 0.0)
        return cls(
            server_url=server_url,
            session_token=os.environ.get("LIVEKIT_AGENT_TOKEN", ""),
            system_prompt=os.environ.get("AGENT_SYSTEM_PROMPT") or get_instructions(flow=flow),
            voice=parse_voice(os.environ.get("AGENT_VOICE")),
            greeting_text=os.environ.get("AGENT_GREETING") or get_greeting_text(flow=flow),
            api_key=os.environ.get("OPENAI_API_KEY"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            stt_model=os.environ.get("OPENAI_STT_MODEL", "whisper-1"),
            language=os.environ.get("AGENT_LANGUAGE", "en"),
            llm_model=os.environ.get("OPENAI_LLM_MODEL", "gpt-4-turbo-preview"),
            temperature=_parse_float_env("OPENAI_TEMPERATURE", 0.7),
            max_tokens=_parse_int_env("OPENAI_MAX_TOKENS", 150),
            tts_model=os.environ.get("OPENAI_TTS_MODEL", "tts-1"),
            sample_rate=_parse_int_env("AGENT_SAMPLE_RATE", 16000),
            flush_threshold_seconds=_parse_float_env("AGENT_FLUSH_SECONDS", 3.0),
            max_buffer_seconds=max_buffer or None,
            ingest_queue_size=_parse_int_env("AGENT_INGEST_QUEUE_SIZE", 256),
            history_window=_parse_int_env("AGENT_HISTORY_WINDOW", 10),
            request_timeout_seconds=_parse_float_env("AGENT_REQUEST_TIMEOUT_SECONDS", 30.0),
            playback_timeout_seconds=_parse_float_env("AGENT_PLAYBACK_TIMEOUT_SECONDS", 60.0),
            debug=_parse_bool_env("AGENT_DEBUG"),
        )


def is_openai_configured() -> bool:
    return bool(os.environ.get("OPENAI_API_KEY"))
