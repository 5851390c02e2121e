"""Tests for date sanitization."""

import pytest

from mneme.memory.dates import PLACEHOLDER, find_dates, sanitize_dates


class TestFindDates:
    """Tests for date detection."""

    @pytest.mark.parametrize(
        "phrase",
        [
            "March 15th",
            "March 15, 1990",
            "15 March",
            "15th of March 1990",
            "2024-03-15",
            "03/15/2024",
            "Sept. 3",
            "yesterday",
            "last month",
            "the other day",
        ],
    )
    def test_detects(self, phrase):
        """Calendar dates and vague phrases are found."""
        assert find_dates(f"It was {phrase} I think.") == [phrase]

    def test_plain_text(self):
        """Text without dates has no matches."""
        assert find_dates("I drive a Tesla Model 3 and like tea.") == []


class TestSanitizeDates:
    """Tests for sanitize_dates."""

    def test_unknown_dates_replaced(self):
        """Dates not on record become the placeholder."""
        text = "Your birthday is June 2nd and we met last week."
        assert sanitize_dates(text, []) == (
            f"Your birthday is {PLACEHOLDER} and we met {PLACEHOLDER}."
        )

    def test_known_dates_kept_case_insensitively(self):
        """Recorded dates survive regardless of case."""
        text = "Your birthday is march 15th."
        assert sanitize_dates(text, ["March 15th"]) == text

    def test_no_known_dates_argument(self):
        """known_dates is optional."""
        assert sanitize_dates("See you yesterday") == f"See you {PLACEHOLDER}"

    def test_idempotent(self):
        """Sanitizing twice changes nothing more."""
        known = ["2024-03-15"]
        text = "On 2024-03-15 and 2023-01-01, recently, Jan 5."
        once = sanitize_dates(text, known)
        assert sanitize_dates(once, known) == once
        assert "2024-03-15" in once
        assert "2023-01-01" not in once

    def test_text_without_dates_unchanged(self):
        """Text without temporal phrases passes through."""
        text = "You prefer working remotely."
        assert sanitize_dates(text, []) == text
