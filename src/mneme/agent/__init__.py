"""Per-turn chat orchestration on top of the memory pipeline."""

from .loop import ChatSession, SessionConfig, TurnResult
from .prompt import build_system_prompt

__all__ = ["ChatSession", "SessionConfig", "TurnResult", "build_system_prompt"]
