"""Input validation for the agent control API."""
import re
from typing import Optional, Tuple

ROOM_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_ROOM_NAME_LENGTH = 100
MAX_SYSTEM_PROMPT_LENGTH = 2000


def validate_room_name(room_name: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Returns (valid, error message)."""
    if not room_name or not room_name.strip():
        return False, "Room name is required"
    if len(room_name) > MAX_ROOM_NAME_LENGTH:
        return False, "Room name must be less than 100 characters"
    if not ROOM_NAME_RE.match(room_name):
        return False, "Room name can only contain letters, numbers, hyphens, and underscores"
    return True, None


def validate_system_prompt(prompt: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not prompt or not prompt.strip():
        return False, "System prompt is required"
    if len(prompt) > MAX_SYSTEM_PROMPT_LENGTH:
        return False, "System prompt must be less than 2000 characters"
    return True, None


def format_uptime(seconds: float) -> str:
    """Human readable duration: "42s", "3m 5s", "2h 7m 0s"."""
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
