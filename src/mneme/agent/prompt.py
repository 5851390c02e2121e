"""Prompt builders for the chat session."""

SYSTEM_PROMPT_BASE = """You are a helpful assistant with a long-term memory of the user.

Use what you remember about the user when it is relevant, and do not claim to
remember anything that is not listed below.

Important:
- Never invent dates. Only mention a date if it appears in the user's memory
- If you do not know something about the user, say so or ask"""

MEMORY_SECTION = """
<user_memory>
{memory_block}
</user_memory>"""

RECENT_SECTION = """
<recent_conversation>
{buffer_text}
</recent_conversation>"""

SUMMARY_PROMPT = """Summarize this conversation in two or three sentences.
Focus on what was learned about the user and what was decided or left open.
Do not add greetings or commentary.

{conversation}

Summary:"""


def build_system_prompt(memory_block: str = "", buffer_text: str = "") -> str:
    """Build the system prompt with the user's memory and the recent turns.

    Args:
        memory_block: Context block rendered from the user's facts.
        buffer_text: Short-term buffer rendered as 'ROLE: content' lines.

    Returns:
        Complete system prompt string.
    """
    prompt = SYSTEM_PROMPT_BASE

    if memory_block.strip():
        prompt += "\n" + MEMORY_SECTION.format(memory_block=memory_block.strip())

    if buffer_text.strip():
        prompt += "\n" + RECENT_SECTION.format(buffer_text=buffer_text.strip())

    return prompt


def build_summary_prompt(conversation: str) -> str:
    """Prompt asking the model to summarize a rendered conversation."""
    return SUMMARY_PROMPT.format(conversation=conversation)
