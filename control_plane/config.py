"""
Configuration management for the Control Plane.
Loads LiveKit credentials from environment variables.
"""
import os
from typing import Optional

from voice_agent.config import load_local_env


class Config:
    """Control Plane configuration."""

    livekit_url: str
    livekit_api_key: str
    livekit_api_secret: str

    def __init__(self):
        load_local_env()

        self.livekit_url = os.getenv("LIVEKIT_URL", "")
        self.livekit_api_key = os.getenv("LIVEKIT_API_KEY", "")
        self.livekit_api_secret = os.getenv("LIVEKIT_API_SECRET", "")

        if not self.livekit_url:
            raise ValueError("LIVEKIT_URL is required")
        if not self.livekit_api_key:
            raise ValueError("LIVEKIT_API_KEY is required")
        if not self.livekit_api_secret:
            raise ValueError("LIVEKIT_API_SECRET is required")

    @property
    def livekit_http_url(self) -> str:
        """Room service endpoint (the signalling URL with an http scheme)."""
        url = self.livekit_url
        if url.startswith("wss://"):
            return "https://" + url[len("wss://"):]
        if url.startswith("ws://"):
            return "http://" + url[len("ws://"):]
        return url


_config: Optional[Config] = None


def get_config() -> Config:
    """Load the configuration on first use so importing never requires credentials."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def is_livekit_configured() -> bool:
    return all(os.getenv(k) for k in ("LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET"))


def reset_config() -> None:
    global _config
    _config = None
