"""Date sanitization for generated replies.

A model asked about the user will happily invent birthdays and "last
month"s. Any calendar date or vague relative-time phrase in a reply that is
not among the user's recorded dates is replaced with a placeholder.
"""

import re

PLACEHOLDER = "[No date on record]"

_MONTHS = (
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sept|Sep|Oct|Nov|Dec)\.?"
)
_DAY = r"\d{1,2}(?:st|nd|rd|th)?"

DATE_PATTERNS = [
    # March 15, March 15th, March 15th, 1990
    rf"{_MONTHS}\s+{_DAY}(?:,?\s+\d{{4}})?",
    # 15 March, 15th of March 1990
    rf"{_DAY}\s+(?:of\s+)?{_MONTHS}(?:,?\s+\d{{4}})?",
    # 2024-03-15
    r"\d{4}-\d{2}-\d{2}",
    # 03/15/2024, 15.03.24
    r"\d{1,2}[/.]\d{1,2}[/.]\d{2,4}",
]

VAGUE_PHRASES = [
    "the day before yesterday",
    "yesterday",
    "the other day",
    "a few days ago",
    "a couple of days ago",
    "earlier this week",
    "earlier this month",
    "earlier this year",
    "last night",
    "last week",
    "last weekend",
    "last month",
    "last year",
    "a week ago",
    "a month ago",
    "a year ago",
    "recently",
]

_VAGUE = "|".join(re.escape(p) for p in sorted(VAGUE_PHRASES, key=len, reverse=True))

DATE_RE = re.compile(
    r"\b(?:" + "|".join(DATE_PATTERNS) + "|" + _VAGUE + r")\b",
    re.IGNORECASE,
)


def find_dates(text: str) -> list[str]:
    """All date-like and vague temporal phrases in ``text``, in order."""
    return [m.group(0) for m in DATE_RE.finditer(text)]


def sanitize_dates(text: str, known_dates: list[str] | None = None) -> str:
    """Replace dates and temporal phrases not on record with PLACEHOLDER.

    A match is kept when it case-insensitively equals one of ``known_dates``.
    Pure and idempotent.

    Args:
        text: Generated reply.
        known_dates: Dates recorded in the user's facts.

    Returns:
        The sanitized text.
    """
    known = {d.strip().casefold() for d in known_dates or [] if d and d.strip()}

    def _replace(match: re.Match) -> str:
        found = match.group(0)
        return found if found.casefold() in known else PLACEHOLDER

    return DATE_RE.sub(_replace, text)
