"""Tests for the raw poll validation gate."""

import pytest

from respect_monitor.pipeline.validate_poll import (
    fieldwork_start_parses,
    parse_loose_date,
    validate_raw_poll,
)


@pytest.fixture
def poll():
    return {
        "id": "yougov_2025_01",
        "pollster": "YouGov",
        "question": "Should the government take tougher measures against small boat crossings?",
        "options": ["Support", "Oppose", "Don't know"],
        "results": [0.55, 0.30, 0.15],
        "fieldwork_dates": "2025-01-03 to 2025-01-05",
        "published_at": "2025-01-10",
        "url": "https://yougov.co.uk/example",
        "sample_size": 2100,
    }


class TestValidPoll:
    """Well-formed polls pass with no errors."""

    def test_valid(self, poll):
        result = validate_raw_poll(poll)
        assert result.valid
        assert result.errors == []

    def test_sum_within_tolerance(self, poll):
        poll["results"] = [0.55, 0.30, 0.16]
        assert validate_raw_poll(poll).valid

    def test_optional_fields_may_be_null(self, poll):
        poll["url"] = None
        poll["sample_size"] = None
        assert validate_raw_poll(poll).valid


class TestRejections:
    """Each rule violation is reported; nothing is coerced."""

    def test_results_sum_off(self, poll):
        poll["results"] = [0.5, 0.2, 0.1]
        result = validate_raw_poll(poll)
        assert not result.valid
        assert any("sum to ~1" in e for e in result.errors)

    def test_length_mismatch(self, poll):
        poll["results"] = [0.6, 0.4]
        result = validate_raw_poll(poll)
        assert not result.valid
        assert "options.length (3) must equal results.length (2)" in result.errors

    def test_too_few_options(self, poll):
        poll["options"] = ["Yes"]
        poll["results"] = [1.0]
        result = validate_raw_poll(poll)
        assert "options must be an array with at least 2 items" in result.errors
        assert "results must be an array with at least 2 items" in result.errors

    def test_result_out_of_range(self, poll):
        poll["results"] = [1.2, -0.1, -0.1]
        result = validate_raw_poll(poll)
        assert "each result must be a number between 0 and 1" in result.errors

    def test_bad_sample_size(self, poll):
        poll["sample_size"] = 0
        assert "sample_size must be a positive integer when provided" in validate_raw_poll(poll).errors
        poll["sample_size"] = 10.5
        assert not validate_raw_poll(poll).valid

    def test_fractional_sample_size(self, poll):
        poll["sample_size"] = 1.5
        assert not validate_raw_poll(poll).valid

    def test_sum_above_tolerance(self, poll):
        poll["options"] = ["A", "B"]
        poll["results"] = [0.5, 0.6]
        result = validate_raw_poll(poll)
        assert result.errors == ["results must sum to ~1 (got 1.100)"]

    def test_bad_fieldwork(self, poll):
        poll["fieldwork_dates"] = "sometime last winter"
        result = validate_raw_poll(poll)
        assert "fieldwork_dates must be parseable (e.g. YYYY-MM-DD or range)" in result.errors

    def test_bad_published_at(self, poll):
        poll["published_at"] = "yesterday"
        assert "published_at must be a valid ISO date" in validate_raw_poll(poll).errors

    def test_missing_pollster(self, poll):
        del poll["pollster"]
        result = validate_raw_poll(poll)
        assert not result.valid
        assert "pollster is required" in result.errors

    def test_missing_id(self, poll):
        del poll["id"]
        result = validate_raw_poll(poll)
        assert not result.valid
        assert "id is required" in result.errors

    def test_empty_dates_rejected(self, poll):
        poll["fieldwork_dates"] = ""
        poll["published_at"] = "  "
        result = validate_raw_poll(poll)
        assert "fieldwork_dates must be parseable (e.g. YYYY-MM-DD or range)" in result.errors
        assert "published_at must be a valid ISO date" in result.errors

    def test_missing_dates_rejected(self, poll):
        del poll["fieldwork_dates"]
        del poll["published_at"]
        assert not validate_raw_poll(poll).valid

    def test_not_an_object(self):
        result = validate_raw_poll(["not", "a", "poll"])
        assert result.errors == ["poll must be an object"]


class TestDates:

    def test_loose_formats(self):
        assert parse_loose_date("2025-01-03") is not None
        assert parse_loose_date("3 Jan 2025") is not None
        assert parse_loose_date("2025-01-03T10:00:00Z") is not None
        assert parse_loose_date("") is None
        assert parse_loose_date("soon") is None

    def test_fieldwork_ranges(self):
        assert fieldwork_start_parses("2025-01-03 to 2025-01-05")
        assert fieldwork_start_parses("2025-01-03-2025-01-05")
        assert fieldwork_start_parses("3 Jan 2025 – 5 Jan 2025")
        assert not fieldwork_start_parses("week two")
