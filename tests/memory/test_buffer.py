"""Tests for the short-term buffer."""

import pytest

from mneme.memory.buffer import ShortTermBuffer


class TestShortTermBuffer:
    """Tests for ShortTermBuffer."""

    def test_evicts_oldest(self):
        """Only the most recent entries are kept."""
        buffer = ShortTermBuffer(max_size=3)
        for i in range(5):
            buffer.append("user", f"message {i}")

        assert len(buffer) == 3
        assert [e.content for e in buffer] == ["message 2", "message 3", "message 4"]

    def test_add_turn(self):
        """A turn adds a user and an assistant entry."""
        buffer = ShortTermBuffer()
        buffer.add_turn("Hi there", "Hello!")
        assert buffer.to_messages() == [
            {"role": "user", "content": "Hi there"},
            {"role": "assistant", "content": "Hello!"},
        ]

    def test_empty_content_ignored(self):
        """Blank messages are not buffered."""
        buffer = ShortTermBuffer()
        buffer.append("user", "   ")
        assert len(buffer) == 0

    def test_invalid_role(self):
        """Unknown roles raise ValueError."""
        with pytest.raises(ValueError):
            ShortTermBuffer().append("system", "hi")

    def test_invalid_size(self):
        """The buffer holds at least one entry."""
        with pytest.raises(ValueError):
            ShortTermBuffer(max_size=0)

    def test_from_messages_skips_invalid(self):
        """Client histories are validated and trimmed."""
        buffer = ShortTermBuffer.from_messages(
            [
                {"role": "user", "content": "one"},
                {"role": "bot", "content": "skipped"},
                {"role": "assistant", "message": "two"},
                {"role": "user", "content": ""},
                {"role": "user", "content": "three"},
            ],
            max_size=2,
        )
        assert [e.content for e in buffer] == ["two", "three"]

    def test_render(self):
        """Entries render as 'ROLE: content' lines."""
        buffer = ShortTermBuffer()
        buffer.add_turn("I like tea", "Noted!")
        assert buffer.render() == "USER: I like tea\nASSISTANT: Noted!"

    def test_clear(self):
        """clear empties the buffer."""
        buffer = ShortTermBuffer()
        buffer.append("user", "hi")
        buffer.clear()
        assert buffer.entries == []
