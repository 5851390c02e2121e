"""Fact extraction from conversation turns using an LLM."""

import json
import logging
import re
from typing import Any

from groq import AsyncGroq

from ..logging import JSONLLogger, get_logger
from .models import (
    CandidateFact,
    ConversationTurn,
    Fact,
    FactType,
    Ok,
    ParseError,
    ParseResult,
)
from .quality import QualityGate

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are an expert at extracting structured facts from conversations.

Extract key facts about the user from this conversation turn as a JSON array.
Only include facts that are:
- Specific and memorable
- About the user's preferences, possessions, experiences, relationships or personal details
- Not general knowledge, greetings or small talk

Format each fact as:
{{"type": "<type>", "key": "<brief camelCase identifier>", "value": "<detailed content>"}}

Types:
- personal_detail: name, age, location, birthday
- preference: likes, dislikes, choices
- possession: things the user owns or has
- fact: specific information about the user's life, work, experiences
- context: situational information, current state
- relationship: people in the user's life
- event: things that happened or will happen, with their dates
- opinion: views the user holds
- skill: things the user can do

If there are no facts, return [].

User message: {user_message}
Assistant response: {assistant_response}

Return only the JSON array, no other text:"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


def parse_candidates(content: str) -> ParseResult:
    """Parse a model response into fact candidates.

    The response may be a bare JSON array, an object with a "facts" array,
    or either of those wrapped in prose or a markdown code block.

    Args:
        content: Raw model output.

    Returns:
        Ok with the well-formed candidates (items without a key or value are
        skipped), or ParseError when no JSON array can be recovered.
    """
    text = _CODE_FENCE.sub("", content.strip())
    if not text:
        return ParseError("empty response", content)

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_ARRAY.search(text)
        if match is None:
            return ParseError("no JSON array in response", content)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            return ParseError(f"invalid JSON: {e}", content)

    if isinstance(data, dict) and isinstance(data.get("facts"), list):
        data = data["facts"]
    if not isinstance(data, list):
        return ParseError(f"expected a JSON array, got {type(data).__name__}", content)

    candidates = []
    for item in data:
        if not isinstance(item, dict):
            logger.debug(f"Skipping invalid fact item: {item!r}")
            continue
        key = item.get("key")
        value = item.get("value")
        if not isinstance(key, str) or not isinstance(value, str):
            logger.debug(f"Skipping fact item without key or value: {item!r}")
            continue
        if not key.strip() or not value.strip():
            continue
        candidates.append(
            CandidateFact(
                type=FactType.coerce(item.get("type")),
                key=key.strip(),
                value=value.strip(),
            )
        )
    return Ok(candidates)


class FactExtractor:
    """Extracts facts from conversation turns using an LLM."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        gate: QualityGate | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
            gate: Quality gate applied to candidates, defaults to QualityGate().
            events: JSONL event logger, defaults to the global one.
        """
        self.client = llm_client
        self.model = model
        self.gate = gate or QualityGate()
        self.events = events or get_logger()

    async def extract(self, turn: ConversationTurn) -> list[Fact]:
        """Extract facts from a conversation turn.

        Never raises: completion failures and unparseable output both yield
        an empty list.

        Args:
            turn: The user message, the reply it got, and the owning user.

        Returns:
            Accepted facts with fresh ids, ready to be stored.
        """
        if not turn.user_message.strip():
            return []

        prompt = EXTRACTION_PROMPT.format(
            user_message=turn.user_message,
            assistant_response=turn.assistant_response,
        )

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.1,  # Low temperature for consistent extraction
                max_tokens=500,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning(f"Fact extraction failed: {e}")
            return []

        result = parse_candidates(content)
        if isinstance(result, ParseError):
            logger.warning(f"Failed to parse extraction response: {result.reason}")
            self.events.log(
                "extraction_parse_error",
                user_id=turn.user_id,
                reason=result.reason,
                raw=result.raw[:500],
            )
            return []

        return self.accept(result.candidates, turn)

    def accept(self, candidates: list[CandidateFact], turn: ConversationTurn) -> list[Fact]:
        """Apply the quality gate and turn survivors into facts."""
        facts = []
        for candidate in candidates:
            reason = self.gate.rejection_reason(candidate.key, candidate.value)
            if reason is not None:
                logger.info(f"Rejected fact {candidate.key!r}: {reason}")
                self.events.log_fact_rejected(turn.user_id, candidate.key, reason)
                continue
            facts.append(
                Fact(
                    type=candidate.type,
                    key=candidate.key,
                    value=candidate.value,
                    user_id=turn.user_id,
                    origin_message=turn.user_message,
                )
            )
        return facts
