"""
Pipeline data models: raw items -> classified items -> aggregates -> dominance -> view model.

Everything here is a plain dataclass so records serialize straight to JSON
through ``to_dict()``. Raw items and actor stances also have ``from_dict()``
because they are read back from storage or from stance files.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from typing import Optional, List, Dict, Any


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---- Raw items (collector output) ----

@dataclass
class RawMediaItem:
    id: str
    outlet: str
    title: str
    published_at: str  # ISO 8601
    media_type: Optional[str] = None  # broadcast | broadsheet | tabloid | wire | online
    lede: Optional[str] = None
    url: Optional[str] = None
    retrieved_at: Optional[str] = None
    respect_id: Optional[str] = None  # pre-labelled framing, skips classification

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawMediaItem":
        return cls(**_known_fields(cls, data))


@dataclass
class RawPollItem:
    id: str
    pollster: str
    question: str
    options: List[str]
    results: List[float]
    fieldwork_dates: str
    published_at: str
    url: Optional[str] = None
    sample_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawPollItem":
        return cls(**_known_fields(cls, data))


@dataclass
class RawMetricItem:
    metric_id: str
    label: str
    unit: str
    latest_value: float
    previous_value: float
    period: str
    updated_at: str
    source_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawMetricItem":
        return cls(**_known_fields(cls, data))


@dataclass
class ClassifiedItem:
    item_type: str  # media | poll | metric
    subject_id: str
    item_id: str
    respect_id: str
    confidence: float
    rationale: List[str] = field(default_factory=list)
    extracted_phrases: List[str] = field(default_factory=list)
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---- Aggregates ----

@dataclass
class RespectShare:
    respect_id: str
    share: float


@dataclass
class DateWindow:
    start: str  # YYYY-MM-DD
    end: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.start, "to": self.end}


@dataclass
class MediaExemplar:
    source_id: str
    outlet: str
    title: str
    published_at: str
    url: Optional[str] = None
    respect_id: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class MediaTypeBreakdown:
    media_type: str
    n: int
    weight: float  # n / total volume
    shares: List[RespectShare] = field(default_factory=list)


@dataclass
class MediaFramingAggregate:
    window: DateWindow
    dominant: RespectShare
    shares: List[RespectShare]
    top_phrases: List[str]
    exemplars: List[MediaExemplar]
    source_ids: List[str]
    volume: int
    media_type_breakdown: List[MediaTypeBreakdown]
    media_source: Optional[str] = None  # news_api | rss

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["window"] = self.window.to_dict()
        return d


@dataclass
class SupportingPoll:
    source_id: str
    pollster: str
    question: str
    published_at: str
    fieldwork_dates: Optional[str] = None
    url: Optional[str] = None


@dataclass
class PollOptionResult:
    option: str
    pct: int


@dataclass
class PollQuestion:
    source_id: str
    pollster: str
    fieldwork_dates: str
    question: str
    mapped_respect: str
    result_pct: int
    sample_size: Optional[int] = None
    url: Optional[str] = None
    option_results: List[PollOptionResult] = field(default_factory=list)


@dataclass
class PublicPollingAggregate:
    window: DateWindow
    public_prior: RespectShare
    shares: List[RespectShare]
    split_summary: str
    trend_summary: str
    supporting_polls: List[SupportingPoll]
    source_ids: List[str]
    question_level: List[PollQuestion]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["window"] = self.window.to_dict()
        return d


@dataclass
class MetricReading:
    respect_id: str
    text: str


@dataclass
class RealityMetricEntry:
    metric_id: str
    label: str
    unit: str
    latest: float
    previous: float
    delta: float
    delta_pct: float
    direction: str  # up | down | flat
    readings: List[MetricReading] = field(default_factory=list)
    source_id: Optional[str] = None


@dataclass
class RealityMetricsAggregate:
    updated_at: str
    metrics: List[RealityMetricEntry]
    source_ids: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---- Dominance ----

@dataclass
class DominanceContributor:
    type: str  # media | public | institutional
    respect_id: str
    weight: float
    value_share: Optional[float] = None
    note: Optional[str] = None
    source_ids: List[str] = field(default_factory=list)


@dataclass
class RankedRespect:
    respect_id: str
    score: float


@dataclass
class DominanceSnapshot:
    as_of: str
    dominant: RankedRespect
    contributors: List[DominanceContributor]
    status: str  # proposed | validated
    split_dominance: bool
    alternative: List[RankedRespect]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---- Actor stances (read-only input) ----

@dataclass
class StanceEvidence:
    doc_id: str
    quote: str = ""
    section: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ActorStance:
    """Party position on a subject, in the stance-extraction vocabulary."""
    subject_id: str
    actor_id: str
    primary_respect: str
    primary_confidence: float
    secondary_respect: Optional[str] = None
    secondary_confidence: Optional[float] = None
    evidence: List[StanceEvidence] = field(default_factory=list)
    status: str = "proposed"  # proposed | validated | contested | rejected
    actor_label: Optional[str] = None
    attack_line: Optional[str] = None
    commitments: List[str] = field(default_factory=list)
    vulnerabilities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActorStance":
        kwargs = _known_fields(cls, data)
        kwargs["evidence"] = [
            e if isinstance(e, StanceEvidence) else StanceEvidence(**_known_fields(StanceEvidence, e))
            for e in data.get("evidence") or []
        ]
        vulnerabilities = data.get("vulnerabilities") or []
        if isinstance(vulnerabilities, str):
            vulnerabilities = [vulnerabilities]
        kwargs["vulnerabilities"] = list(vulnerabilities)
        kwargs["commitments"] = list(data.get("commitments") or [])
        return cls(**kwargs)


# ---- View model ----

@dataclass
class RespectConfidence:
    respect_id: str
    confidence: float


@dataclass
class FitReasons:
    public: str
    media: str
    reality: str


@dataclass
class PartyFit:
    public: str  # ok | warn
    media: str
    reality: str
    reasons: FitReasons


@dataclass
class PartyCard:
    party_id: str
    party_label: str
    primary_respect: RespectConfidence
    secondary_respect: Optional[RespectConfidence]
    relation_to_dominant: str  # matches | challenges | reframes
    summary_of_findings: Optional[str]
    evidence_source_ids: List[str]
    fit: PartyFit
    attack_line_against_dominant: Optional[str] = None
    commitments: List[str] = field(default_factory=list)
    vulnerabilities: List[str] = field(default_factory=list)


@dataclass
class SubjectRef:
    id: str
    label: str
    parent_id: Optional[str] = None


@dataclass
class Staleness:
    media_updated_at: str = ""
    polling_updated_at: str = ""
    metrics_updated_at: str = ""


@dataclass
class SubjectViewModel:
    subject: SubjectRef
    as_of: str
    dominant_respect: DominanceSnapshot
    party_cards: List[PartyCard]
    media_framing: MediaFramingAggregate
    public_polling: PublicPollingAggregate
    reality_metrics: RealityMetricsAggregate
    sources_index: Dict[str, Any]
    staleness: Staleness

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": asdict(self.subject),
            "as_of": self.as_of,
            "dominant_respect": self.dominant_respect.to_dict(),
            "party_cards": [asdict(c) for c in self.party_cards],
            "media_framing": self.media_framing.to_dict(),
            "public_polling": self.public_polling.to_dict(),
            "reality_metrics": self.reality_metrics.to_dict(),
            "sources_index": {
                k: (v.to_dict() if hasattr(v, "to_dict") else dict(v))
                for k, v in self.sources_index.items()
            },
            "staleness": asdict(self.staleness),
        }
