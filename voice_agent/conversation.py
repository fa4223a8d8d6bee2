"""
In-memory conversation history for one agent session.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_api(self) -> Dict[str, str]:
        """Chat completion message shape."""
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """
    Append-only message list whose first element is the system prompt.

    The system message is created once here and never replaced; callers only
    ever append user/assistant messages.
    """

    def __init__(self, system_prompt: str, window: int = 10):
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = window
        self._messages: List[ConversationMessage] = [
            ConversationMessage(role=Role.SYSTEM, content=system_prompt)
        ]

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def system_message(self) -> ConversationMessage:
        return self._messages[0]

    def append(self, role: Role, content: str) -> ConversationMessage:
        if role == Role.SYSTEM:
            raise ValueError("the system prompt is fixed at construction")
        message = ConversationMessage(role=role, content=content)
        self._messages.append(message)
        return message

    def context(self) -> List[ConversationMessage]:
        """System prompt followed by the last `window` non-system messages."""
        return [self._messages[0]] + self._messages[1:][-self.window:]

    def snapshot(self) -> List[ConversationMessage]:
        return list(self._messages)
