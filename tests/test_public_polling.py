"""Tests for public polling aggregation."""

from datetime import datetime, timezone

import pytest

from respect_monitor.pipeline.models import ClassifiedItem, RawPollItem, RespectShare
from respect_monitor.pipeline.public_polling import (
    INSUFFICIENT_SUMMARY,
    NO_POLLS_SUMMARY,
    TREND_INSUFFICIENT,
    TREND_PRESENT,
    aggregate_polling,
    map_option,
    map_poll_options,
    months_before,
    split_summary,
    to_pct,
)

NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


def poll(poll_id, options, results, question="Immigration question?"):
    return RawPollItem(
        id=poll_id,
        pollster="YouGov",
        question=question,
        options=options,
        results=results,
        fieldwork_dates="2025-01-03 to 2025-01-05",
        published_at="2025-01-10",
        sample_size=2000,
    )


def classified(poll_id, confidence=0.65, respect_id="security_border"):
    return ClassifiedItem(
        item_type="poll",
        subject_id="small_boats",
        item_id=poll_id,
        respect_id=respect_id,
        confidence=confidence,
    )


class TestOptionMapping:
    """First matching pattern wins; unmatched options use the default."""

    def test_patterns(self):
        assert map_option("Support tougher measures") == "security_border"
        assert map_option("Protect refugees") == "humanitarian"
        assert map_option("Follow the ECHR") == "rule_of_law"
        assert map_option("Take back sovereignty") == "sovereignty_control"

    def test_unmatched_goes_to_default(self):
        assert map_option("Oppose") == "security_border"
        assert map_option("Don't know") == "security_border"

    def test_options_summed_per_framing(self):
        p = poll("p1", ["Support tougher measures", "Oppose", "Protect refugees"], [0.5, 0.2, 0.3])
        mapped = map_poll_options(p)
        assert mapped["security_border"] == pytest.approx(0.7)
        assert mapped["humanitarian"] == pytest.approx(0.3)


class TestFormatting:

    def test_to_pct_rounds_half_up(self):
        assert to_pct(0.586) == 59
        assert to_pct(0.125) == 13
        assert to_pct(0.0) == 0
        assert to_pct(1.0) == 100

    def test_split_summary(self):
        ranked = [RespectShare("security_border", 0.58), RespectShare("humanitarian", 0.42)]
        assert split_summary(ranked, 3) == "58% security border vs 42% humanitarian"

    def test_split_summary_short(self):
        assert split_summary([], 0) == NO_POLLS_SUMMARY
        assert split_summary([RespectShare("security_border", 1.0)], 1) == INSUFFICIENT_SUMMARY

    def test_months_before_clamps_day(self):
        assert months_before(NOW, 6).strftime("%Y-%m-%d") == "2024-09-30"
        assert months_before(datetime(2025, 1, 15), 2).strftime("%Y-%m-%d") == "2024-11-15"


class TestAggregatePolling:
    """Shares, prior and question-level breakdown."""

    def test_single_poll_dominated_by_default_framing(self):
        p = poll("p1", ["Support tougher measures", "Oppose"], [0.6, 0.4])
        agg = aggregate_polling("small_boats", [classified("p1")], [p], now=NOW)
        assert agg.public_prior.respect_id == "security_border"
        assert agg.public_prior.share == pytest.approx(1.0)
        assert agg.split_summary == INSUFFICIENT_SUMMARY
        assert agg.trend_summary == TREND_INSUFFICIENT

    def test_support_oppose_poll(self):
        p = poll("p1", ["Support tougher measures", "Oppose"], [0.58, 0.42])
        agg = aggregate_polling("small_boats", [classified("p1")], [p], now=NOW)
        assert agg.public_prior.respect_id == "security_border"
        assert agg.public_prior.share >= 0.58
        assert agg.question_level[0].result_pct == 100

    def test_split_across_framings(self):
        p = poll("p1", ["Stop the boats", "Protect refugees"], [0.58, 0.42])
        agg = aggregate_polling("small_boats", [classified("p1", 1.0)], [p], now=NOW)
        assert [s.respect_id for s in agg.shares] == ["security_border", "humanitarian"]
        assert agg.split_summary == "58% security border vs 42% humanitarian"
        assert sum(s.share for s in agg.shares) == pytest.approx(1.0)

    def test_confidence_scales_contribution(self):
        a = poll("a", ["Stop the boats", "Stop crossings"], [0.5, 0.5])
        b = poll("b", ["Protect refugees", "Safe routes"], [0.5, 0.5])
        agg = aggregate_polling("small_boats", [classified("a", 0.3), classified("b", 0.9)], [a, b], now=NOW)
        shares = {s.respect_id: s.share for s in agg.shares}
        assert agg.public_prior.respect_id == "humanitarian"
        assert shares["humanitarian"] == pytest.approx(0.75)
        assert agg.trend_summary == TREND_PRESENT

    def test_no_polls(self):
        agg = aggregate_polling("small_boats", [], [], now=NOW)
        assert agg.public_prior == RespectShare("security_border", 0.0)
        assert agg.shares == []
        assert agg.split_summary == NO_POLLS_SUMMARY
        assert agg.source_ids == []

    def test_unclassified_poll_not_counted(self):
        p = poll("p1", ["Protect refugees", "Oppose"], [0.7, 0.3])
        agg = aggregate_polling("small_boats", [], [p], now=NOW)
        assert agg.shares == []
        assert agg.source_ids == ["p1"]

    def test_question_level(self):
        p = poll("p1", ["Stop the boats", "Protect refugees"], [0.42, 0.58])
        agg = aggregate_polling("small_boats", [classified("p1")], [p], now=NOW)
        q = agg.question_level[0]
        assert q.mapped_respect == "humanitarian"
        assert q.result_pct == 58
        assert [o.pct for o in q.option_results] == [42, 58]
        assert q.sample_size == 2000

    def test_window(self):
        agg = aggregate_polling("small_boats", [], [], window_months=6, now=NOW)
        assert agg.to_dict()["window"] == {"from": "2024-09-30", "to": "2025-03-31"}
        assert agg.supporting_polls == []
