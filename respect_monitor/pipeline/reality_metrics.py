"""
Reality metrics: deltas, direction and fixed per-framing readings.

The readings are the only interpretive content a metric carries, so the
template wording is part of the output contract.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from respect_monitor.pipeline.models import (
    MetricReading,
    RawMetricItem,
    RealityMetricEntry,
    RealityMetricsAggregate,
)

logger = logging.getLogger(__name__)

# Framings annotated on every metric, in output order.
READING_RESPECTS = ("security_border", "humanitarian", "rule_of_law")


def _security_border(metric: RawMetricItem, direction: str) -> str:
    if direction == "down":
        return "Deterrence working; still a threat, need to sustain."
    return "Routes riskier; deterrence message."


def _humanitarian(metric: RawMetricItem, direction: str) -> str:
    if direction == "up":
        return "Safe routes would save lives; humanitarian frame gains."
    return "Route more dangerous; need safe pathways."


def _rule_of_law(metric: RawMetricItem, direction: str) -> str:
    return "System failure intensifies legal risk."


def _capacity_delivery(metric: RawMetricItem, direction: str) -> str:
    trend = "worsening" if metric.latest_value > metric.previous_value else "improving"
    return f"Backlog and processing: {metric.label} {trend}."


READING_TEMPLATES: Dict[str, Callable[[RawMetricItem, str], str]] = {
    "security_border": _security_border,
    "humanitarian": _humanitarian,
    "rule_of_law": _rule_of_law,
    "capacity_delivery": _capacity_delivery,
}


def direction_of(delta: float) -> str:
    if delta > 0:
        return "up"
    if delta < 0:
        return "down"
    return "flat"


def reading_for(respect_id: str, metric: RawMetricItem, direction: str) -> MetricReading:
    """Template reading for a framing, or the generic "{id}: metric {direction}." sentence."""
    template = READING_TEMPLATES.get(respect_id)
    text = template(metric, direction) if template else f"{respect_id}: metric {direction}."
    return MetricReading(respect_id=respect_id, text=text)


def metric_entry(metric: RawMetricItem, respects: Sequence[str] = READING_RESPECTS) -> RealityMetricEntry:
    delta = metric.latest_value - metric.previous_value
    delta_pct = 0.0 if metric.previous_value == 0 else delta / metric.previous_value * 100
    direction = direction_of(delta)
    return RealityMetricEntry(
        metric_id=metric.metric_id,
        label=metric.label,
        unit=metric.unit,
        latest=metric.latest_value,
        previous=metric.previous_value,
        delta=delta,
        delta_pct=delta_pct,
        direction=direction,
        readings=[reading_for(rid, metric, direction) for rid in respects],
        source_id=metric.source_ref,
    )


def aggregate_metrics(
    raw_metrics: Sequence[RawMetricItem],
    now: Optional[datetime] = None,
) -> RealityMetricsAggregate:
    """
    Annotate each metric and stamp the aggregate with the newest updated_at.

    Args:
        raw_metrics: Metric readings from the metrics collector
        now: Used as updated_at when there are no metrics

    Returns:
        RealityMetricsAggregate
    """
    metrics: List[RealityMetricEntry] = [metric_entry(m) for m in raw_metrics]
    if raw_metrics:
        # ISO strings are zero-padded, so the lexicographic max is the latest
        updated_at = max(m.updated_at for m in raw_metrics)
    else:
        updated_at = (now or datetime.now(timezone.utc)).isoformat()

    source_ids: List[str] = []
    for m in raw_metrics:
        if m.source_ref and m.source_ref not in source_ids:
            source_ids.append(m.source_ref)

    logger.info(f"Reality metrics: {len(metrics)} metrics, updated_at {updated_at}")
    return RealityMetricsAggregate(updated_at=updated_at, metrics=metrics, source_ids=source_ids)
