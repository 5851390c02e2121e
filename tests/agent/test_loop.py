"""Tests for ChatSession."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from mneme.agent.loop import ChatSession, SessionConfig
from mneme.errors import StoreUnavailable
from mneme.memory.dates import PLACEHOLDER
from mneme.memory.models import BufferEntry, Fact, FactType, MemoryContext


def make_response(content: str) -> Mock:
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def memory() -> AsyncMock:
    """A MemoryManager stand-in with one remembered fact."""
    fact = Fact(FactType.PERSONAL_DETAIL, "birthday", "March 15th", "alice")
    memory = AsyncMock()
    memory.retrieve_context = AsyncMock(
        return_value=MemoryContext(
            facts=[fact], context_text="Personal Details:\n- birthday: March 15th"
        )
    )
    memory.known_dates = AsyncMock(return_value=["March 15th"])
    memory.record_turn = AsyncMock(return_value=[])
    memory.store_summary = AsyncMock(return_value=None)
    return memory


@pytest.fixture
def client() -> AsyncMock:
    client = AsyncMock()
    client.chat.completions.create = AsyncMock(
        return_value=make_response("Your birthday is March 15th. We spoke yesterday.")
    )
    return client


@pytest.fixture
def session(memory: AsyncMock, client: AsyncMock) -> ChatSession:
    return ChatSession(memory, "alice", groq_client=client)


class TestRun:
    """Tests for a single turn."""

    @pytest.mark.asyncio
    async def test_reply_sanitized(self, session: ChatSession):
        """Recorded dates survive and invented ones are replaced."""
        result = await session.run("When is my birthday?")

        assert result.response == f"Your birthday is March 15th. We spoke {PLACEHOLDER}."
        assert [f.key for f in result.facts_used] == ["birthday"]

    @pytest.mark.asyncio
    async def test_prompt_carries_memory_and_buffer(
        self, session: ChatSession, client: AsyncMock
    ):
        """The system prompt includes memory and earlier turns."""
        await session.run("Hi")
        await session.run("When is my birthday?")

        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "- birthday: March 15th" in messages[0]["content"]
        assert "USER: Hi" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "When is my birthday?"}

    @pytest.mark.asyncio
    async def test_buffer_updated(self, session: ChatSession):
        """Each turn adds both sides to the buffer."""
        await session.run("Hi")
        assert [e.role for e in session.buffer] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_buffer_bounded(self, memory: AsyncMock, client: AsyncMock):
        """The buffer keeps only the configured number of entries."""
        session = ChatSession(
            memory, "alice", SessionConfig(max_buffer_size=3), groq_client=client
        )
        for i in range(4):
            await session.run(f"message {i}")
        assert len(session.buffer) == 3

    @pytest.mark.asyncio
    async def test_write_is_detached(self, session: ChatSession, memory: AsyncMock):
        """The memory write runs in the background with the sanitized reply."""
        result = await session.run("I drive a Tesla")
        await session.drain()

        memory.record_turn.assert_awaited_once_with("alice", "I drive a Tesla", result.response)
        assert session.pending == 0

    @pytest.mark.asyncio
    async def test_reply_not_blocked_by_write(self, session: ChatSession, memory: AsyncMock):
        """A slow write does not delay the reply."""
        gate = asyncio.Event()

        async def slow_write(*args, **kwargs):
            await gate.wait()
            return []

        memory.record_turn = AsyncMock(side_effect=slow_write)

        result = await session.run("I drive a Tesla")

        assert result.response
        assert session.pending == 1
        gate.set()
        await session.drain()
        assert session.pending == 0

    @pytest.mark.asyncio
    async def test_background_failure_logged(
        self, session: ChatSession, memory: AsyncMock, read_events
    ):
        """A failed background write is logged, never raised."""
        memory.record_turn = AsyncMock(side_effect=StoreUnavailable("upsert", 3))

        await session.run("I drive a Tesla")
        await session.drain()

        failures = [e for e in read_events() if e["event"] == "background_task_failed"]
        assert failures[0]["user_id"] == "alice"

    @pytest.mark.asyncio
    async def test_durable_awaits_write(self, session: ChatSession, memory: AsyncMock):
        """Durable turns wait for the write and return the stored facts."""
        stored = [Fact(FactType.POSSESSION, "car", "Tesla", "alice")]
        memory.record_turn = AsyncMock(return_value=stored)

        result = await session.run("I drive a Tesla", durable=True)

        assert result.stored_facts == stored
        assert memory.record_turn.await_args.kwargs == {"durable": True}
        assert session.pending == 0

    @pytest.mark.asyncio
    async def test_durable_failure_raises(self, session: ChatSession, memory: AsyncMock):
        """Durable turns surface write failures."""
        memory.record_turn = AsyncMock(side_effect=StoreUnavailable("upsert", 3))

        with pytest.raises(StoreUnavailable):
            await session.run("I drive a Tesla", durable=True)

    @pytest.mark.asyncio
    async def test_known_dates_failure_degrades(
        self, session: ChatSession, memory: AsyncMock
    ):
        """Without known dates every date is replaced."""
        memory.known_dates = AsyncMock(side_effect=RuntimeError("down"))

        result = await session.run("When is my birthday?")

        assert "March 15th" not in result.response

    @pytest.mark.asyncio
    async def test_turn_logged(self, session: ChatSession, read_events):
        """Completed turns are logged with the number of facts used."""
        await session.run("Hi")
        entry = [e for e in read_events() if e["event"] == "turn_complete"][0]
        assert entry["count"] == 1


class TestSessionLifecycle:
    """Tests for restore and session end."""

    @pytest.mark.asyncio
    async def test_restore(self, session: ChatSession, memory: AsyncMock):
        """Recent facts seed the buffer."""
        memory.restore_history = AsyncMock(
            return_value=[BufferEntry("user", "car: Tesla"), BufferEntry("user", "drink: tea")]
        )

        assert await session.restore() == 2
        assert [e.content for e in session.buffer] == ["car: Tesla", "drink: tea"]
        memory.restore_history.assert_awaited_once_with("alice", 5)

    @pytest.mark.asyncio
    async def test_session_end_stores_summary(
        self, session: ChatSession, memory: AsyncMock, client: AsyncMock
    ):
        """The transcript is summarized and stored."""
        await session.run("I drive a Tesla")
        client.chat.completions.create = AsyncMock(
            return_value=make_response("The user drives a Tesla.")
        )

        await session.on_session_end()

        memory.store_summary.assert_awaited_once_with("alice", "The user drives a Tesla.")
        assert session.transcript == []
        assert len(session.buffer) == 0

    @pytest.mark.asyncio
    async def test_session_end_without_turns(
        self, session: ChatSession, memory: AsyncMock, client: AsyncMock
    ):
        """An empty session stores nothing."""
        assert await session.on_session_end() is None
        client.chat.completions.create.assert_not_called()
        memory.store_summary.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_end_summary_failure(
        self, session: ChatSession, memory: AsyncMock, client: AsyncMock
    ):
        """A failed summary is skipped."""
        await session.run("I drive a Tesla")
        client.chat.completions.create = AsyncMock(side_effect=Exception("API error"))

        assert await session.on_session_end() is None
        memory.store_summary.assert_not_called()
