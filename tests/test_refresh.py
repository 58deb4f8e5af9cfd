"""End-to-end tests for the subject refresh pipeline."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from respect_monitor.config.subjects import UnknownSubjectError
from respect_monitor.ingest.coordinator import CollectionResult, MediaIngest
from respect_monitor.pipeline.models import ActorStance, RawMediaItem, RawMetricItem
from respect_monitor.pipeline.oracle import OracleError, StanceOracle
from respect_monitor.pipeline.refresh import (
    AGGREGATE_MEDIA,
    AGGREGATE_METRICS,
    AGGREGATE_PUBLIC,
    load_actor_stances,
    load_valid_polls,
    main,
    merge_stances,
    refresh_subject,
)
from respect_monitor.pipeline.storage import InvalidRecordError, JsonArrayStore, StorageError

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

MANIFESTO = "Our plan will stop small boats crossing the Channel and smash the smuggling gangs. " * 6


def headline(item_id, title, outlet="BBC"):
    return RawMediaItem(
        id=item_id,
        outlet=outlet,
        title=title,
        published_at="2025-03-14T10:00:00+00:00",
        url=f"https://example.com/{item_id}",
    )


class FakeCoordinator:
    def __init__(self, items=None, metrics=None, source_kind="rss", errors=None):
        self.items = items or []
        self.metrics = metrics or []
        self.source_kind = source_kind
        self.errors = errors or {}
        self.subjects = []

    def collect(self, subject, now=None):
        self.subjects.append(subject.id)
        return CollectionResult(
            media=MediaIngest(items=list(self.items), sources=[], source_kind=self.source_kind),
            metrics=list(self.metrics),
            metric_sources=[],
            fetch_summary={"errors": self.errors},
        )


class FakeStanceOracle(StanceOracle):
    def __init__(self, positions=None, error=None, summary="Leads with deterrence."):
        self.positions = positions or []
        self.error = error
        self.summary = summary
        self.extract_calls = []

    def extract(self, party_id, party_label, excerpts_by_subject, subjects):
        self.extract_calls.append((party_id, excerpts_by_subject))
        if self.error:
            raise self.error
        return self.positions

    def summarize(self, party_label, primary_respect, secondary_respect, evidence_quotes=()):
        return self.summary


@pytest.fixture
def store(tmp_path):
    return JsonArrayStore(tmp_path)


@pytest.fixture
def coordinator():
    return FakeCoordinator(
        items=[
            headline("s1", "Home Office crackdown deter gangs"),
            headline("s2", "Ministers crackdown deter gangs"),
            headline("h1", "Refugee dignity charity rescue"),
        ],
        metrics=[RawMetricItem(
            metric_id="channel_crossings", label="Channel crossings", unit="count",
            latest_value=120, previous_value=100, period="quarter", updated_at="2025-03-01",
            source_ref="metric_small_boats_official",
        )],
    )


@pytest.fixture
def stances():
    return [
        ActorStance(subject_id="small_boats", actor_id="lab", actor_label="Labour",
                    primary_respect="humanitarian_protection", primary_confidence=0.8),
        ActorStance(subject_id="small_boats", actor_id="reform", actor_label="Reform UK",
                    primary_respect="security_border", primary_confidence=0.9),
        ActorStance(subject_id="housing", actor_id="lab", primary_respect="security_border",
                    primary_confidence=0.5),
    ]


def seed_polls(store):
    store.append_record("raw_polls", "small_boats", {
        "id": "yougov_1", "pollster": "YouGov", "question": "Should the government take tougher measures?",
        "options": ["Support tougher measures", "Oppose"], "results": [0.6, 0.4],
        "fieldwork_dates": "2025-01-03 to 2025-01-05", "published_at": "2025-01-10",
    })
    store.append_record("raw_polls", "small_boats", {
        "id": "broken", "pollster": "YouGov", "question": "Q?",
        "options": ["A", "B"], "results": [0.9, 0.4],
        "fieldwork_dates": "2025-01-03", "published_at": "2025-01-10",
    })


class TestRefreshSubject:
    """Full refresh with fake collection and no oracle."""

    def test_outputs_persisted(self, store, coordinator, stances):
        seed_polls(store)
        vm = refresh_subject("small_boats", store, stances, coordinator=coordinator, now=NOW)

        assert vm.dominant_respect.dominant.respect_id == "security_border"
        assert vm.dominant_respect.status == "proposed"
        assert vm.as_of == NOW.isoformat()
        assert vm.media_framing.volume == 3
        assert vm.media_framing.media_source == "rss"
        assert vm.public_polling.source_ids == ["yougov_1"]
        assert len(vm.reality_metrics.metrics) == 1

        assert store.get_latest("aggregates", "small_boats", record_kind=AGGREGATE_MEDIA)["volume"] == 3
        assert store.get_latest("aggregates", "small_boats", record_kind=AGGREGATE_PUBLIC) is not None
        assert store.get_latest("aggregates", "small_boats", record_kind=AGGREGATE_METRICS) is not None
        assert len(store.get_all("dominance_snapshots", "small_boats")) == 1
        stored_vm = store.get_latest("view_models", "small_boats")
        assert stored_vm["subject"] == {"id": "small_boats", "label": "Small boats", "parent_id": "migration"}
        assert stored_vm["dominant_respect"]["dominant"]["respect_id"] == "security_border"

    def test_party_cards(self, store, coordinator, stances):
        vm = refresh_subject("small_boats", store, stances, coordinator=coordinator, now=NOW)
        cards = {c.party_id: c for c in vm.party_cards}
        assert set(cards) == {"lab", "reform"}
        assert cards["lab"].relation_to_dominant == "challenges"
        assert cards["reform"].relation_to_dominant == "matches"
        assert cards["lab"].summary_of_findings is None

    def test_sources_index(self, store, coordinator, stances):
        seed_polls(store)
        vm = refresh_subject("small_boats", store, stances, coordinator=coordinator, now=NOW)
        index = vm.sources_index
        assert index["institutional_illegal_migration_act"]["role"] == "institutional_constraint"
        assert index["yougov_1"]["role"] == "polling_evidence"
        assert "broken" not in index
        assert index["party_lab_manifesto"]["role"] == "party_stance_authoritative"

    def test_staleness(self, store, coordinator):
        vm = refresh_subject("small_boats", store, coordinator=coordinator, now=NOW)
        assert vm.staleness.media_updated_at
        assert vm.staleness.metrics_updated_at
        assert vm.staleness.polling_updated_at == ""

    def test_staleness_uses_reference_time(self, store, coordinator):
        seed_polls(store)
        vm = refresh_subject("small_boats", store, coordinator=coordinator, now=NOW)
        assert vm.staleness.media_updated_at == NOW.isoformat()
        assert vm.staleness.polling_updated_at == NOW.isoformat()
        assert vm.staleness.metrics_updated_at == NOW.isoformat()

    def test_stored_poll_without_id_dropped(self, store, coordinator):
        seed_polls(store)
        store.append_record("raw_polls", "small_boats", {
            "pollster": "YouGov", "question": "Should the government take tougher measures?",
            "options": ["Support tougher measures", "Oppose"], "results": [0.58, 0.42],
            "fieldwork_dates": "2025-01-03 to 2025-01-05", "published_at": "2025-01-10",
        })
        assert [p.id for p in load_valid_polls(store, "small_boats")] == ["yougov_1"]
        vm = refresh_subject("small_boats", store, coordinator=coordinator, now=NOW)
        assert vm.public_polling.source_ids == ["yougov_1"]

    def test_append_raw_poll_rejects_missing_id(self, store):
        with pytest.raises(InvalidRecordError):
            store.append_raw_poll("small_boats", {
                "pollster": "YouGov", "question": "Should the government take tougher measures?",
                "options": ["Support tougher measures", "Oppose"], "results": [0.58, 0.42],
                "fieldwork_dates": "2025-01-03 to 2025-01-05", "published_at": "2025-01-10",
            })
        assert store.get_all("raw_polls", "small_boats") == []

    def test_stored_media_merged_first(self, store, coordinator):
        curated = headline("s1", "Curated security story")
        curated.respect_id = "humanitarian"
        store.append_record("raw_media", "small_boats", curated, source="import")
        vm = refresh_subject("small_boats", store, coordinator=coordinator, now=NOW)
        assert vm.media_framing.volume == 3
        assert vm.sources_index["s1"]["title"] == "Curated security story"

    def test_empty_collection(self, store):
        vm = refresh_subject("small_boats", store, coordinator=FakeCoordinator(), now=NOW)
        assert vm.media_framing.volume == 0
        assert vm.public_polling.public_prior.share == 0.0
        # institutional term alone
        assert vm.dominant_respect.dominant.respect_id == "security_border"
        assert vm.dominant_respect.dominant.score == pytest.approx(0.2)

    def test_unknown_subject(self, store):
        with pytest.raises(UnknownSubjectError):
            refresh_subject("no_such_subject", store, coordinator=FakeCoordinator())

    def test_storage_error_propagates(self, store, coordinator, tmp_path):
        (tmp_path / "small_boats").mkdir()
        (tmp_path / "small_boats" / "raw_polls.json").write_text("not json")
        with pytest.raises(StorageError):
            refresh_subject("small_boats", store, coordinator=coordinator, now=NOW)


class TestStanceExtraction:
    """Manifesto extraction and party summaries through the stance oracle."""

    def test_extracted_stance_replaces_existing(self, store, coordinator, stances):
        oracle = FakeStanceOracle(positions=[
            {"subject_id": "small_boats", "primary_respect": "security_border",
             "authoritative_sources": ["Stop the boats"]},
        ])
        vm = refresh_subject("small_boats", store, stances, coordinator=coordinator,
                             stance_oracle=oracle, manifesto_texts={"lab": MANIFESTO}, now=NOW)
        lab = [c for c in vm.party_cards if c.party_id == "lab"][0]
        assert lab.primary_respect.respect_id == "security_border"
        assert lab.party_label == "Labour"
        assert lab.evidence_source_ids[0].startswith("party_lab_lab_manifesto_20250315")
        assert lab.summary_of_findings == "Leads with deterrence."
        assert "small boats" in oracle.extract_calls[0][1]["small_boats"]

    def test_short_manifesto_skipped(self, store, coordinator, stances):
        oracle = FakeStanceOracle()
        refresh_subject("small_boats", store, stances, coordinator=coordinator,
                        stance_oracle=oracle, manifesto_texts={"lab": "Too short."}, now=NOW)
        assert oracle.extract_calls == []

    def test_oracle_failure_keeps_existing(self, store, coordinator, stances):
        oracle = FakeStanceOracle(error=OracleError("timeout"), summary=None)
        vm = refresh_subject("small_boats", store, stances, coordinator=coordinator,
                             stance_oracle=oracle, manifesto_texts={"lab": MANIFESTO}, now=NOW)
        lab = [c for c in vm.party_cards if c.party_id == "lab"][0]
        assert lab.primary_respect.respect_id == "humanitarian"
        assert lab.summary_of_findings is None

    def test_merge_stances(self, stances):
        replacement = ActorStance(subject_id="small_boats", actor_id="lab",
                                  primary_respect="rule_of_law", primary_confidence=0.7)
        merged = merge_stances(stances, [replacement])
        assert len(merged) == 3
        assert merged[0].primary_respect == "rule_of_law"


class TestStanceFileAndCli:

    def test_load_wrapped_stances(self, tmp_path):
        path = tmp_path / "stances.json"
        path.write_text(json.dumps({"party_positions": [
            {"subject_id": "small_boats", "actor_id": "lab", "primary_respect": "humanitarian_protection",
             "primary_confidence": 0.8, "vulnerabilities": "Soft on enforcement",
             "evidence": [{"doc_id": "manifesto", "quote": "Safe routes"}]},
        ]}))
        stances = load_actor_stances(path)
        assert stances[0].vulnerabilities == ["Soft on enforcement"]
        assert stances[0].evidence[0].quote == "Safe routes"

    def test_load_plain_list(self, tmp_path):
        path = tmp_path / "stances.json"
        path.write_text(json.dumps([
            {"subject_id": "small_boats", "actor_id": "reform", "primary_respect": "security_border",
             "primary_confidence": 0.9, "unknown_field": 1},
        ]))
        assert load_actor_stances(path)[0].actor_id == "reform"

    def test_main(self, tmp_path, coordinator, capsys):
        with patch('respect_monitor.pipeline.refresh.IngestionCoordinator', return_value=coordinator):
            code = main(["--subject", "small_boats", "--data-dir", str(tmp_path), "--no-llm"])
        assert code == 0
        out = capsys.readouterr().out
        assert "Subject: Small boats (small_boats)" in out
        assert "Dominant: security_border" in out
        assert JsonArrayStore(tmp_path).get_latest("view_models", "small_boats") is not None
