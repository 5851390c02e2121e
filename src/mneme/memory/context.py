"""Rendering retrieved facts into a bounded, prompt-ready block."""

import math

from .models import Fact, FactType

PRUNE_MARKER = "...[context pruned]...\n"

# Section order is fixed so that prompts are reproducible across turns
SECTIONS: list[tuple[FactType, str]] = [
    (FactType.PERSONAL_DETAIL, "Personal Details:"),
    (FactType.PREFERENCE, "Preferences:"),
    (FactType.POSSESSION, "Possessions:"),
    (FactType.FACT, "Facts:"),
    (FactType.CONTEXT, "Context:"),
    (FactType.RELATIONSHIP, "Relationships:"),
    (FactType.EVENT, "Events:"),
    (FactType.OPINION, "Opinions:"),
    (FactType.SKILL, "Skills:"),
]


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return math.ceil(len(text) / 4)


def prune_context(text: str, max_tokens: int) -> str:
    """Keep the most recent part of ``text`` within ``max_tokens``.

    When pruning happens the result starts with PRUNE_MARKER, and the marker
    counts against the budget.
    """
    if estimate_tokens(text) <= max_tokens:
        return text
    budget = max_tokens * 4 - len(PRUNE_MARKER)
    if budget <= 0:
        return PRUNE_MARKER[: max_tokens * 4]
    return PRUNE_MARKER + text[-budget:]


def group_by_type(facts: list[Fact]) -> dict[FactType, list[Fact]]:
    """Group facts by type, keeping their relative order."""
    groups: dict[FactType, list[Fact]] = {}
    for fact in facts:
        groups.setdefault(fact.type, []).append(fact)
    return groups


class ContextAssembler:
    """Groups facts under fixed headers and caps the result to a token budget."""

    def __init__(self, max_tokens: int = 8000) -> None:
        self.max_tokens = max_tokens

    def render(self, facts: list[Fact]) -> str:
        """Render facts grouped by type, without budgeting."""
        groups = group_by_type(facts)
        sections = []
        for fact_type, header in SECTIONS:
            group = groups.get(fact_type)
            if not group:
                continue
            lines = [header] + [f"- {fact.key}: {fact.value}" for fact in group]
            sections.append("\n".join(lines))
        return "\n\n".join(sections)

    def assemble(self, facts: list[Fact]) -> str:
        """Render facts and prune the block to the token budget.

        Returns:
            The context block, or an empty string when there are no facts.
        """
        if not facts:
            return ""
        return prune_context(self.render(facts), self.max_tokens)
