"""Data models for the memory system."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


class FactType(str, Enum):
    """Closed set of fact categories understood by the context assembler."""

    PERSONAL_DETAIL = "personal_detail"
    PREFERENCE = "preference"
    POSSESSION = "possession"
    FACT = "fact"
    CONTEXT = "context"
    RELATIONSHIP = "relationship"
    EVENT = "event"
    OPINION = "opinion"
    SKILL = "skill"

    @classmethod
    def coerce(cls, value: Any) -> "FactType":
        """Map a loosely formatted type name onto the enum, defaulting to FACT.

        Args:
            value: Type name as produced by a model, e.g. 'Personal Detail'.

        Returns:
            The matching FactType, or FactType.FACT when unknown.
        """
        if isinstance(value, cls):
            return value
        name = re.sub(r"[\s\-]+", "_", str(value or "").strip().lower())
        try:
            return cls(name)
        except ValueError:
            return cls.FACT


def key_identity(key: str) -> str:
    """Return the identity used to compare fact keys.

    'favoriteColor', 'favorite_color' and 'Favorite Color' share an identity.
    """
    return re.sub(r"[^0-9a-z]", "", key.casefold())


def utc_now() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Fact:
    """A durable, user-scoped unit of knowledge.

    Attributes:
        type: Category of the fact.
        key: Short label, the natural identity within a user's facts.
        value: Free-text content.
        user_id: Owning user.
        origin_message: The user utterance the fact came from.
        id: Opaque unique id, assigned at creation.
        timestamp: ISO creation time.
    """

    type: FactType
    key: str
    value: str
    user_id: str
    origin_message: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=utc_now)

    @property
    def text(self) -> str:
        """Text that gets embedded for this fact."""
        return f"{self.key}: {self.value}"

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a vector store payload."""
        return {
            "userId": self.user_id,
            "factKey": self.key,
            "factKeyId": key_identity(self.key),
            "factValue": self.value,
            "factType": self.type.value,
            "timestamp": self.timestamp,
            "originMessage": self.origin_message,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "key": self.key,
            "value": self.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "origin_message": self.origin_message,
        }

    @classmethod
    def from_payload(cls, point_id: Any, payload: dict[str, Any]) -> "Fact":
        """Rebuild a fact from a vector store point."""
        return cls(
            id=str(point_id),
            type=FactType.coerce(payload.get("factType")),
            key=str(payload.get("factKey", "")),
            value=str(payload.get("factValue", "")),
            user_id=str(payload.get("userId", "")),
            origin_message=str(payload.get("originMessage", "")),
            timestamp=str(payload.get("timestamp", "")),
        )


@dataclass(frozen=True)
class CandidateFact:
    """An extraction result not yet accepted for storage."""

    type: FactType
    key: str
    value: str

    @property
    def text(self) -> str:
        return f"{self.key}: {self.value}"


@dataclass(frozen=True)
class SearchResult:
    """A fact returned by similarity search with its score."""

    fact: Fact
    score: float


@dataclass
class MemoryContext:
    """Facts retrieved for a query and their rendered block."""

    facts: list[Fact] = field(default_factory=list)
    context_text: str = ""


@dataclass(frozen=True)
class ConversationTurn:
    """One user message and the reply it received."""

    user_message: str
    assistant_response: str
    user_id: str


@dataclass(frozen=True)
class BufferEntry:
    """One message in the short-term buffer."""

    role: str
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Ok:
    """Extraction output parsed successfully (possibly zero candidates)."""

    candidates: list[CandidateFact]


@dataclass(frozen=True)
class ParseError:
    """Extraction output could not be parsed."""

    reason: str
    raw: str = ""


ParseResult = Union[Ok, ParseError]
