"""
Tests for voice agent configuration.

Verifies:
- Configuration loading from environment
- Validation of required fields
- Defaults and voice catalogue
"""
import pytest

from voice_agent.config import (
    AgentConfig,
    Voice,
    available_voices,
    is_openai_configured,
    parse_voice,
)
from voice_agent.errors import ConfigError

_ENV_KEYS = [
    "LIVEKIT_URL", "LIVEKIT_AGENT_TOKEN", "OPENAI_API_KEY", "AGENT_VOICE", "AGENT_DEBUG",
    "AGENT_SYSTEM_PROMPT", "AGENT_GREETING", "AGENT_SCENARIO", "OPENAI_BASE_URL",
    "OPENAI_LLM_MODEL", "OPENAI_TEMPERATURE", "AGENT_FLUSH_SECONDS", "AGENT_MAX_BUFFER_SECONDS",
    "AGENT_HISTORY_WINDOW",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_config_from_env_all_fields(monkeypatch):
    monkeypatch.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")
    monkeypatch.setenv("LIVEKIT_AGENT_TOKEN", "jwt-token")
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("AGENT_VOICE", "Nova")
    monkeypatch.setenv("AGENT_DEBUG", "true")
    monkeypatch.setenv("AGENT_SYSTEM_PROMPT", "Be terse.")
    monkeypatch.setenv("AGENT_GREETING", "Hi.")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://proxy.example.com/v1/")
    monkeypatch.setenv("OPENAI_LLM_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("OPENAI_TEMPERATURE", "0.2  # cooler")
    monkeypatch.setenv("AGENT_FLUSH_SECONDS", "2.5")
    monkeypatch.setenv("AGENT_MAX_BUFFER_SECONDS", "20")
    monkeypatch.setenv("AGENT_HISTORY_WINDOW", "6")

    config = AgentConfig.from_env()

    assert config.server_url == "wss://test.livekit.cloud"
    assert config.session_token == "jwt-token"
    assert config.api_key == "test-openai-key"
    assert config.voice == Voice.NOVA
    assert config.debug is True
    assert config.system_prompt == "Be terse."
    assert config.greeting_text == "Hi."
    assert config.openai_base_url == "https://proxy.example.com/v1"
    assert config.llm_model == "gpt-4o-mini"
    assert config.temperature == 0.2
    assert config.flush_threshold_seconds == 2.5
    assert config.max_buffer_seconds == 20.0
    assert config.history_window == 6


def test_config_from_env_defaults(monkeypatch):
    monkeypatch.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")

    config = AgentConfig.from_env()

    assert config.voice == Voice.ALLOY
    assert config.debug is False
    assert config.api_key is None
    assert config.stt_model == "whisper-1"
    assert config.language == "en"
    assert config.llm_model == "gpt-4-turbo-preview"
    assert config.temperature == 0.7
    assert config.max_tokens == 150
    assert config.tts_model == "tts-1"
    assert config.sample_rate == 16000
    assert config.flush_threshold_seconds == 3.0
    assert config.max_buffer_seconds is None
    assert config.history_window == 10
    assert "A Startup Biz" in config.system_prompt


def test_config_invalid_number_falls_back(monkeypatch):
    monkeypatch.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")
    monkeypatch.setenv("AGENT_FLUSH_SECONDS", "soon")
    assert AgentConfig.from_env().flush_threshold_seconds == 3.0


def test_config_missing_livekit_url():
    with pytest.raises(ConfigError):
        AgentConfig.from_env()


def test_config_scenario_flow(monkeypatch):
    monkeypatch.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")
    config = AgentConfig.from_env(flow="consultation")
    assert "consultation" in config.greeting_text


def test_blank_system_prompt_rejected():
    with pytest.raises(ConfigError):
        AgentConfig(server_url="wss://x", session_token="t", system_prompt="   ")


def test_non_positive_threshold_rejected():
    with pytest.raises(ConfigError):
        AgentConfig(server_url="wss://x", session_token="t", system_prompt="s", flush_threshold_seconds=0)


def test_voice_string_is_parsed():
    config = AgentConfig(server_url="wss://x", session_token="t", system_prompt="s", voice="echo")
    assert config.voice is Voice.ECHO


def test_resolve_api_key_prefers_config(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")
    config = AgentConfig(server_url="wss://x", session_token="t", system_prompt="s", api_key="cfg-key")
    assert config.resolve_api_key() == "cfg-key"
    config.api_key = None
    assert config.resolve_api_key() == "env-key"


def test_resolve_api_key_missing():
    config = AgentConfig(server_url="wss://x", session_token="t", system_prompt="s")
    assert config.resolve_api_key() is None
    assert is_openai_configured() is False


def test_parse_voice():
    assert parse_voice(None) == Voice.ALLOY
    assert parse_voice(" SHIMMER ") == Voice.SHIMMER
    with pytest.raises(ConfigError):
        parse_voice("robot")


def test_available_voices():
    voices = available_voices()
    assert len(voices) == 6
    assert {"value": "fable", "label": "Fable (British)"} in voices


def test_config_sample_rate_from_env(monkeypatch):
    monkeypatch.setenv("LIVEKIT_URL", "wss://test.livekit.cloud")
    monkeypatch.setenv("AGENT_SAMPLE_RATE", "8000")
    assert AgentConfig.from_env().sample_rate == 8000


def test_config_rejects_non_positive_sample_rate():
    with pytest.raises(ConfigError):
        AgentConfig(server_url="wss://lk", session_token="jwt", system_prompt="x", sample_rate=0)
