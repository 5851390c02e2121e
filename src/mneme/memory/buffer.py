"""Short-term conversational buffer."""

from collections import deque
from typing import Any, Iterable

from .models import BufferEntry

ROLES = ("user", "assistant")


class ShortTermBuffer:
    """The most recent messages of a session, evicted first-in first-out.

    Lives only as long as the session and is never written to the vector
    store.
    """

    def __init__(self, max_size: int = 5) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: deque[BufferEntry] = deque(maxlen=max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> list[BufferEntry]:
        return list(self._entries)

    def append(self, role: str, content: str) -> None:
        """Add a message; empty content is ignored.

        Raises:
            ValueError: If ``role`` is not 'user' or 'assistant'.
        """
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        if not content or not content.strip():
            return
        self._entries.append(BufferEntry(role=role, content=content))

    def add_turn(self, user_message: str, assistant_response: str) -> None:
        """Add a user message and the reply it got."""
        self.append("user", user_message)
        self.append("assistant", assistant_response)

    def extend(self, messages: Iterable[dict[str, Any]]) -> None:
        """Add chat-style messages, skipping invalid or empty ones."""
        for message in messages:
            role = message.get("role")
            content = message.get("content") or message.get("message") or ""
            if role in ROLES and isinstance(content, str):
                self.append(role, content)

    @classmethod
    def from_messages(
        cls, messages: Iterable[dict[str, Any]], max_size: int = 5
    ) -> "ShortTermBuffer":
        """Build a buffer from a client-supplied history, keeping the last entries."""
        buffer = cls(max_size)
        buffer.extend(messages)
        return buffer

    def clear(self) -> None:
        self._entries.clear()

    def to_messages(self) -> list[dict[str, str]]:
        """Entries as chat messages, oldest first."""
        return [entry.to_message() for entry in self._entries]

    def render(self) -> str:
        """Entries as 'ROLE: content' lines for a prompt."""
        return "\n".join(f"{e.role.upper()}: {e.content}" for e in self._entries)
