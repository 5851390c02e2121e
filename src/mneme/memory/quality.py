"""Heuristics that keep low-information candidates out of long-term memory."""

import re

COMMON_WORDS = frozenset(
    ["the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"]
)

ACTIONABLE_PATTERNS = [
    re.compile(r"prefers?|likes?|dislikes?|wants?|needs?", re.IGNORECASE),
    re.compile(r"owns?|has|possess(?:es)?", re.IGNORECASE),
    re.compile(r"works? at|employed by|position", re.IGNORECASE),
    re.compile(r"lives? in|located|address", re.IGNORECASE),
    re.compile(r"birthday|anniversary|date", re.IGNORECASE),
    re.compile(r"goal|objective|plan", re.IGNORECASE),
]

FILLER_PATTERNS = [
    re.compile(
        r"^(thank you|thanks|hello|hi|goodbye|bye|yes|no|ok|okay|alright|sure|fine)\.?$",
        re.IGNORECASE,
    ),
    re.compile(r"^(what|how|when|where|why)\s*\?$", re.IGNORECASE),
]

LOW_VALUE_PATTERNS = FILLER_PATTERNS + [re.compile(r"^.{1,4}$")]


def uniqueness(text: str) -> float:
    """Share of words that are not stop words, in [0, 1]."""
    words = text.lower().split()
    if not words:
        return 0.0
    meaningful = [w for w in words if w not in COMMON_WORDS]
    return min(len(meaningful) / len(words), 1.0)


def actionability(text: str) -> float:
    """How many actionable patterns the text mentions, capped at 1."""
    matches = sum(1 for pattern in ACTIONABLE_PATTERNS if pattern.search(text))
    return min(matches / 3, 1.0)


def fact_quality(text: str) -> float:
    """Quality score combining length, lexical uniqueness and actionability."""
    length = min(len(text) / 100, 1.0)
    return length * 0.3 + uniqueness(text) * 0.4 + actionability(text) * 0.3


def is_low_value(text: str) -> bool:
    """Filler like 'ok' or 'thanks', bare question words, very short text."""
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in LOW_VALUE_PATTERNS)


def is_filler(text: str) -> bool:
    """Greetings, acknowledgements and bare question words."""
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in FILLER_PATTERNS)


class QualityGate:
    """Accepts or rejects extraction candidates before storage."""

    def __init__(
        self,
        min_length: int = 5,
        max_length: int = 500,
        threshold: float = 0.3,
    ) -> None:
        self.min_length = min_length
        self.max_length = max_length
        self.threshold = threshold

    def rejection_reason(self, key: str, value: str) -> str | None:
        """Why a candidate should be dropped, or None to accept it."""
        key = key.strip()
        value = value.strip()
        if not key or not value:
            return "missing key or value"

        text = f"{key}: {value}"
        if len(text) < self.min_length:
            return "too short"
        if len(value) > self.max_length:
            return "too long"
        if is_filler(value) or is_low_value(text):
            return "low value"

        score = fact_quality(text)
        if score < self.threshold:
            return f"quality {score:.2f} below {self.threshold}"
        return None
