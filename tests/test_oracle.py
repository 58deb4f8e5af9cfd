"""Tests for oracle reply parsing and the OpenAI-backed oracle."""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from respect_monitor.pipeline.models import RawMediaItem
from respect_monitor.pipeline.oracle import (
    EXTRACTED_CONFIDENCE,
    OpenAIOracle,
    OracleError,
    manifesto_doc_id,
    parse_classification_response,
    positions_to_stances,
)


def reply(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def oracle_with(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = reply(content)
    return OpenAIOracle(client=client), client


def media(item_id, title):
    return RawMediaItem(id=item_id, outlet="BBC", title=title, published_at="2025-03-01")


class TestParseClassification:
    """Only in-range, in-catalog labels survive."""

    def test_valid(self):
        raw = json.dumps({"classifications": [
            {"index": 0, "respect_id": "security_border"},
            {"index": 1, "respect_id": "humanitarian"},
        ]})
        assert parse_classification_response(raw, 2) == {0: "security_border", 1: "humanitarian"}

    def test_invalid_json(self):
        with pytest.raises(OracleError):
            parse_classification_response("not json", 2)

    def test_missing_list(self):
        with pytest.raises(OracleError):
            parse_classification_response(json.dumps({"classifications": "nope"}), 2)
        with pytest.raises(OracleError):
            parse_classification_response(json.dumps([1, 2]), 2)

    def test_bad_entries_skipped(self):
        raw = json.dumps({"classifications": [
            {"index": True, "respect_id": "humanitarian"},
            {"index": 5, "respect_id": "humanitarian"},
            {"index": 0, "respect_id": "vibes"},
            {"index": "1", "respect_id": "humanitarian"},
            "junk",
            {"index": 1, "respect_id": "rule_of_law"},
            {"index": 1, "respect_id": "humanitarian"},
        ]})
        assert parse_classification_response(raw, 2) == {1: "rule_of_law"}


class TestPositionsToStances:

    def test_conversion(self):
        positions = [
            {
                "subject_id": "small_boats",
                "primary_respect": "humanitarian",
                "secondary_respects": ["vibes", "rule_of_law"],
                "authoritative_sources": ["Safe routes now", "  "],
            },
            {"subject_id": "housing", "primary_respect": "mixed_indeterminate"},
            {"subject_id": "x", "primary_respect": "vibes"},
            "junk",
        ]
        stances = positions_to_stances(positions, "lab", "lab_manifesto_20250301", party_label="Labour")
        assert len(stances) == 1
        s = stances[0]
        assert s.subject_id == "small_boats"
        assert s.primary_confidence == EXTRACTED_CONFIDENCE
        assert s.secondary_respect == "rule_of_law"
        assert s.secondary_confidence == pytest.approx(0.45)
        assert [e.quote for e in s.evidence] == ["Safe routes now"]
        assert s.evidence[0].doc_id == "lab_manifesto_20250301"
        assert s.status == "proposed"

    def test_no_secondary(self):
        stances = positions_to_stances([{"subject_id": "a", "primary_respect": "security_border"}], "ref", "d")
        assert stances[0].secondary_respect is None
        assert stances[0].secondary_confidence is None

    def test_doc_id(self):
        assert manifesto_doc_id("lab", datetime(2024, 5, 1, tzinfo=timezone.utc)) == "lab_manifesto_20240501"


class TestOpenAIOracle:
    """Client calls and error wrapping, with a mocked client."""

    def test_classify(self):
        oracle, client = oracle_with(json.dumps({"classifications": [{"index": 0, "respect_id": "humanitarian"}]}))
        labels = oracle.classify("small_boats", [media("m1", "Charity rescue"), media("m2", "Other")])
        assert labels == {0: "humanitarian"}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Charity rescue" in kwargs["messages"][1]["content"]

    def test_classify_empty_skips_call(self):
        oracle, client = oracle_with("{}")
        assert oracle.classify("small_boats", []) == {}
        client.chat.completions.create.assert_not_called()

    def test_transport_error_wrapped(self):
        oracle, _ = oracle_with(error=RuntimeError("connection reset"))
        with pytest.raises(OracleError):
            oracle.classify("small_boats", [media("m1", "A")])

    def test_no_choices(self):
        oracle, client = oracle_with("{}")
        client.chat.completions.create.return_value = MagicMock(choices=[])
        with pytest.raises(OracleError):
            oracle.classify("small_boats", [media("m1", "A")])

    def test_extract(self):
        positions = [{"subject_id": "small_boats", "primary_respect": "security_border"}]
        oracle, _ = oracle_with(json.dumps({"positions": positions}))
        result = oracle.extract("lab", "Labour", {"small_boats": "text"}, [{"id": "small_boats", "label": "Small boats"}])
        assert result == positions

    def test_extract_missing_positions(self):
        oracle, _ = oracle_with(json.dumps({"other": []}))
        with pytest.raises(OracleError):
            oracle.extract("lab", "Labour", {}, [{"id": "small_boats"}])

    def test_summarize(self):
        oracle, client = oracle_with("  Labour leads with protection.  ")
        text = oracle.summarize("Labour", "humanitarian", None, ["Safe routes"])
        assert text == "Labour leads with protection."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert "response_format" not in kwargs
        assert kwargs["max_tokens"] == 200

    def test_summarize_empty_is_none(self):
        oracle, _ = oracle_with("   ")
        assert oracle.summarize("Labour", "humanitarian", "rule_of_law") is None
