"""Reality metrics collector.

Indicator values are curated in config/subjects.yaml under ``metrics.items``.
The official publication page is probed on every run: when it answers, the
values are cited to it; when it does not, they are cited to a fallback ref
marked as curated.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import requests

from respect_monitor.config.subjects import SubjectConfig
from respect_monitor.pipeline.models import RawMetricItem
from respect_monitor.pipeline.sources import SourceRef, create_source_ref
from .base_fetcher import REQUEST_TIMEOUT, BaseFetcher, _session

logger = logging.getLogger(__name__)


def official_ref_id(subject_id: str) -> str:
    return f"metric_{subject_id}_official"


def fallback_ref_id(subject_id: str) -> str:
    return f"metric_{subject_id}_curated"


class MetricsFetcher(BaseFetcher):
    """Curated metric values, cited to the official page when it is reachable."""

    def __init__(self, subject: SubjectConfig):
        super().__init__(
            {'id': f"metrics_{subject.id}", 'name': f"{subject.label} metrics", 'type': 'metrics'},
            subject,
        )
        self.metrics_config = subject.metrics or {}

    def probe(self) -> bool:
        """True when the official page answers with a non-error status."""
        page_url = self.metrics_config.get('page_url')
        if not page_url:
            return False
        try:
            response = _session.get(page_url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"Metrics page unreachable for {self.subject.id}: {e}")
            return False

    def _source_ref(self, reachable: bool, retrieved_at: str) -> SourceRef:
        title = self.metrics_config.get('title') or f"{self.subject.label} statistics"
        publisher = self.metrics_config.get('publisher')
        if reachable:
            return create_source_ref(
                official_ref_id(self.subject.id),
                title,
                "official_stat",
                "reality_metric",
                publisher=publisher,
                retrieved_at=retrieved_at,
                url=self.metrics_config.get('page_url'),
            )
        return create_source_ref(
            fallback_ref_id(self.subject.id),
            f"{title} (curated)",
            "official_stat",
            "reality_metric",
            publisher=publisher,
            retrieved_at=retrieved_at,
            url=self.metrics_config.get('page_url'),
            note="Official page unreachable; curated values",
        )

    def _fetch_impl(self, since: Optional[datetime] = None) -> List[RawMetricItem]:
        entries = self.metrics_config.get('items') or []
        if not entries:
            return []

        retrieved_at = datetime.now(timezone.utc).isoformat()
        ref = self._source_ref(self.probe(), retrieved_at)
        self.sources.append(ref)

        items = []
        for entry in entries:
            try:
                items.append(RawMetricItem(
                    metric_id=str(entry['metric_id']),
                    label=str(entry.get('label', entry['metric_id'])),
                    unit=str(entry.get('unit', 'count')),
                    latest_value=float(entry['latest_value']),
                    previous_value=float(entry['previous_value']),
                    period=str(entry.get('period', 'latest')),
                    updated_at=str(entry.get('updated_at') or retrieved_at),
                    source_ref=ref.id,
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed metric for {self.subject.id}: {e}")
        return items
