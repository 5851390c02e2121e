"""Tests for fact quality heuristics."""

import pytest

from mneme.memory.quality import (
    QualityGate,
    actionability,
    fact_quality,
    is_filler,
    is_low_value,
    uniqueness,
)


class TestScores:
    """Tests for the scoring helpers."""

    def test_uniqueness_ignores_stop_words(self):
        """Stop words lower uniqueness."""
        assert uniqueness("the and of") == 0.0
        assert uniqueness("prefers remote work") == 1.0
        assert uniqueness("") == 0.0

    def test_actionability_counts_patterns(self):
        """Each actionable pattern adds a third, capped at one."""
        assert actionability("blue sky") == 0.0
        assert actionability("prefers tea") == pytest.approx(1 / 3)
        assert actionability("likes tea, owns a car, lives in Paris, birthday soon") == 1.0

    def test_quality_weights(self):
        """Quality is a weighted sum of length, uniqueness and actionability."""
        text = "x" * 100
        assert fact_quality(text) == pytest.approx(0.3 + 0.4)

    @pytest.mark.parametrize("text", ["ok", "Thanks.", "hello", "what?", "abc"])
    def test_low_value(self, text):
        """Filler and very short text are low value."""
        assert is_low_value(text)

    def test_filler_excludes_short_values(self):
        """Short but meaningful values are not filler."""
        assert not is_filler("red")
        assert is_filler("Okay")


class TestQualityGate:
    """Tests for the rejection rules."""

    @pytest.fixture
    def gate(self) -> QualityGate:
        return QualityGate(min_length=5, max_length=50, threshold=0.3)

    def test_accepts_specific_facts(self, gate: QualityGate):
        """Specific facts pass."""
        assert gate.rejection_reason("workPreference", "prefers working remotely") is None
        assert gate.rejection_reason("favoriteColor", "red") is None

    def test_missing_parts(self, gate: QualityGate):
        """Blank key or value is rejected."""
        assert gate.rejection_reason("", "value") == "missing key or value"
        assert gate.rejection_reason("key", "  ") == "missing key or value"

    def test_too_short(self, gate: QualityGate):
        """The rendered text must meet the minimum length."""
        assert gate.rejection_reason("a", "b") == "too short"

    def test_too_long(self, gate: QualityGate):
        """Values over the maximum are rejected."""
        assert gate.rejection_reason("story", "word " * 20) == "too long"

    def test_filler_values(self, gate: QualityGate):
        """Greetings and acknowledgements are rejected."""
        assert gate.rejection_reason("greeting", "Hello") == "low value"
        assert gate.rejection_reason("answer", "thanks") == "low value"

    def test_low_quality(self):
        """Stop-word-only content falls below the threshold."""
        gate = QualityGate(threshold=0.5)
        reason = gate.rejection_reason("of", "the and of the")
        assert reason is not None
        assert reason.startswith("quality")
