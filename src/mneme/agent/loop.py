"""Chat session: one user turn through memory, completion and sanitization."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from groq import AsyncGroq

from ..errors import ConfigurationError
from ..logging import JSONLLogger, get_logger
from ..memory.buffer import ShortTermBuffer
from ..memory.dates import sanitize_dates
from ..memory.models import Fact
from .prompt import build_summary_prompt, build_system_prompt

if TYPE_CHECKING:
    from ..config import MemorySettings
    from ..memory import MemoryManager

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    """Configuration for a chat session."""

    model: str = "llama-3.1-70b-versatile"
    temperature: float = 0.7
    max_tokens: int = 1024
    completion_timeout: float = 30.0
    max_buffer_size: int = 5
    durable: bool = False

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> SessionConfig:
        return cls(
            model=settings.model,
            completion_timeout=settings.completion_timeout,
            max_buffer_size=settings.max_buffer_size,
        )


@dataclass
class TurnResult:
    """Result of one chat turn."""

    response: str
    facts_used: list[Fact] = field(default_factory=list)
    stored_facts: list[Fact] = field(default_factory=list)
    duration_ms: float = 0.0


class ChatSession:
    """Runs user turns: recall, reply, sanitize, remember.

    Fact extraction for a turn runs as a detached task by default, so the
    reply is returned without waiting for the memory write. Failures of
    those tasks are logged and never reach the caller.
    """

    def __init__(
        self,
        memory: MemoryManager,
        user_id: str,
        config: SessionConfig | None = None,
        groq_client: AsyncGroq | None = None,
        buffer: ShortTermBuffer | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        self.memory = memory
        self.user_id = user_id
        self.config = config or SessionConfig()
        self.client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        self.buffer = buffer or ShortTermBuffer(self.config.max_buffer_size)
        self.events = events or get_logger()
        self.transcript: list[dict[str, str]] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of memory writes still running in the background."""
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background memory write failed for {self.user_id}: {exc}")
            self.events.log("background_task_failed", user_id=self.user_id, error=str(exc))

    async def drain(self) -> None:
        """Wait for every background memory write to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _known_dates(self) -> list[str]:
        try:
            return await self.memory.known_dates(self.user_id)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Could not load known dates for {self.user_id}: {e}")
            return []

    async def _complete(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                **kwargs,
            ),
            timeout=self.config.completion_timeout,
        )
        return response.choices[0].message.content or ""

    async def restore(self, limit: int | None = None) -> int:
        """Seed the buffer from the user's most recent facts.

        Returns:
            Number of entries added.
        """
        entries = await self.memory.restore_history(
            self.user_id, limit or self.buffer.max_size
        )
        self.buffer.extend(entry.to_message() for entry in entries)
        return len(entries)

    async def run(self, message: str, durable: bool | None = None) -> TurnResult:
        """Answer a user message with the user's memory in context.

        Args:
            message: The user message.
            durable: Await the memory write and propagate its failures.
                Defaults to the session config.

        Returns:
            TurnResult with the sanitized reply and the facts it used.
        """
        durable = self.config.durable if durable is None else durable
        start = time.time()

        context, known = await asyncio.gather(
            self.memory.retrieve_context(message, self.user_id),
            self._known_dates(),
        )

        messages = [
            {
                "role": "system",
                "content": build_system_prompt(context.context_text, self.buffer.render()),
            },
            {"role": "user", "content": message},
        ]
        raw = await self._complete(
            messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        reply = sanitize_dates(raw, known)

        self.buffer.add_turn(message, reply)
        self.transcript.append({"role": "user", "content": message})
        self.transcript.append({"role": "assistant", "content": reply})

        stored: list[Fact] = []
        if durable:
            stored = await self.memory.record_turn(self.user_id, message, reply, durable=True)
        else:
            self._spawn(self.memory.record_turn(self.user_id, message, reply))

        duration_ms = (time.time() - start) * 1000
        self.events.log(
            "turn_complete",
            user_id=self.user_id,
            count=len(context.facts),
            duration_ms=duration_ms,
        )
        return TurnResult(
            response=reply,
            facts_used=context.facts,
            stored_facts=stored,
            duration_ms=duration_ms,
        )

    async def on_session_end(self) -> Fact | None:
        """Hook called when a session ends to store a conversation summary.

        Waits for pending memory writes, summarizes the transcript with the
        completion service and stores the summary as a context fact.

        Returns:
            The stored summary fact, or None if nothing was stored.
        """
        await self.drain()
        if not self.transcript:
            return None

        conversation = "\n".join(
            f"{m['role'].upper()}: {m['content']}" for m in self.transcript
        )
        try:
            summary = await self._complete(
                [{"role": "user", "content": build_summary_prompt(conversation)}],
                temperature=0.3,
                max_tokens=200,
            )
        except Exception as e:
            logger.warning(f"Conversation summary failed for {self.user_id}: {e}")
            return None
        finally:
            self.transcript = []
            self.buffer.clear()

        return await self.memory.store_summary(self.user_id, summary)
