"""
LiveKit access tokens for AI agent participants.
"""
import json
import time
from datetime import timedelta
from typing import Optional

from livekit import api

from voice_agent.config import Voice, parse_voice
from voice_agent.instructions import get_instructions
from .config import get_config

AGENT_DISPLAY_NAME = "AI Support Assistant"
AGENT_TOKEN_TTL = timedelta(hours=2)


def new_agent_identity() -> str:
    return f"ai-agent-{int(time.time() * 1000)}"


def generate_agent_token(
    room_name: str,
    identity: Optional[str] = None,
    voice: Voice | str | None = None,
    system_prompt: Optional[str] = None,
) -> str:
    """
    Mint a JWT that lets the agent join room_name.

    Grants join/publish/subscribe/data for that room only (no room admin). The
    voice and system prompt travel in the participant metadata.
    """
    cfg = get_config()
    voice = voice if isinstance(voice, Voice) else parse_voice(voice)
    metadata = {
        "type": "ai_agent",
        "voice": voice.value,
        "systemPrompt": system_prompt or get_instructions(),
    }

    token = (
        api.AccessToken(cfg.livekit_api_key, cfg.livekit_api_secret)
        .with_identity(identity or new_agent_identity())
        .with_name(AGENT_DISPLAY_NAME)
        .with_ttl(AGENT_TOKEN_TTL)
        .with_metadata(json.dumps(metadata))
        .with_grants(api.VideoGrants(
            room_join=True,
            room=room_name,
            can_publish=True,
            can_subscribe=True,
            can_publish_data=True,
        ))
    )
    return token.to_jwt()
