"""
Parallel collection of media headlines and reality metrics for one subject.

Fetchers run in a thread pool with a wall-clock budget per source. A source
that fails or runs over its budget contributes no items and one entry in
fetch_summary["errors"]; the refresh carries on with whatever arrived.

Media source selection:
- The keyed API connectors (News API, Guardian, GNews) run first, alongside
  the metrics fetcher. Connectors without a configured key are skipped.
- If any API connector returned items, those are the media for this refresh
  (source_kind "news_api").
- Otherwise the RSS feeds are fetched (source_kind "rss").
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from respect_monitor.config.loader import load_yaml_config
from respect_monitor.config.subjects import SubjectConfig
from respect_monitor.pipeline.media_framing import dedupe_media
from respect_monitor.pipeline.models import RawMediaItem, RawMetricItem
from respect_monitor.pipeline.sources import SourceRef
from .base_fetcher import BaseFetcher, load_ingest_config
from .fetch_metrics import MetricsFetcher
from .fetch_news_api import GNewsFetcher, GuardianFetcher, KeyedNewsFetcher, NewsApiFetcher
from .fetch_rss import RSSFetcher

logger = logging.getLogger(__name__)

SOURCES_FILE = "sources.yaml"
DEFAULT_SOURCE_TIMEOUT_SECONDS = 30
DEFAULT_MAX_WORKERS = 8

FETCHER_TYPES: Dict[str, Type[BaseFetcher]] = {
    'rss': RSSFetcher,
    'news_api': NewsApiFetcher,
    'guardian': GuardianFetcher,
    'gnews': GNewsFetcher,
}

API_SOURCE_TYPES = ('news_api', 'guardian', 'gnews')


@dataclass
class MediaIngest:
    """Media items for one refresh plus their citations and where they came from."""
    items: List[RawMediaItem] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    source_kind: str = "rss"  # news_api | rss


@dataclass
class CollectionResult:
    media: MediaIngest
    metrics: List[RawMetricItem] = field(default_factory=list)
    metric_sources: List[SourceRef] = field(default_factory=list)
    fetch_summary: Dict[str, Any] = field(default_factory=dict)


def _new_summary() -> Dict[str, Any]:
    return {
        "sources_attempted": 0,
        "sources_succeeded": 0,
        "sources_failed": 0,
        "sources_skipped": 0,
        "errors": {},
    }


class IngestionCoordinator:
    """Runs the configured fetchers for a subject."""

    def __init__(
        self,
        sources: Optional[Sequence[Dict[str, Any]]] = None,
        ingest_config: Optional[Dict[str, Any]] = None,
        fetcher_types: Optional[Dict[str, Type[BaseFetcher]]] = None,
        metrics_fetcher_type: Type[BaseFetcher] = MetricsFetcher,
    ):
        if sources is None:
            sources = load_yaml_config(SOURCES_FILE).get('sources') or []
        self.sources = [s for s in sources if s.get('enabled', True)]
        self.ingest_config = load_ingest_config() if ingest_config is None else ingest_config
        self.fetcher_types = dict(FETCHER_TYPES if fetcher_types is None else fetcher_types)
        self.metrics_fetcher_type = metrics_fetcher_type

        self.source_timeout = float(self.ingest_config.get('source_timeout_seconds', DEFAULT_SOURCE_TIMEOUT_SECONDS))
        self.max_workers = int(self.ingest_config.get('max_workers', DEFAULT_MAX_WORKERS))

    def build_fetchers(self, subject: SubjectConfig, types: Sequence[str]) -> List[BaseFetcher]:
        fetchers = []
        for source in self.sources:
            source_type = source.get('type')
            if source_type not in types:
                continue
            fetcher_cls = self.fetcher_types.get(source_type)
            if fetcher_cls is None:
                logger.warning(f"No fetcher for source type {source_type} ({source.get('id')})")
                continue
            fetchers.append(fetcher_cls(source, subject))
        return fetchers

    def run_parallel(
        self,
        fetchers: Sequence[BaseFetcher],
        since: Optional[datetime],
        fetch_summary: Dict[str, Any],
    ) -> Dict[str, BaseFetcher]:
        """
        Run fetchers concurrently, at most max_workers at a time.

        Each source's timeout is measured from when that source starts, so a
        source queued behind a slow one still gets its full budget. A source
        that runs over its budget frees its slot for the next queued source.

        Returns:
            Dict of source_id -> fetcher, for fetchers that finished in time.
            Each returned fetcher carries .items and .sources from its run.
        """
        if not fetchers:
            return {}

        finished: Dict[str, BaseFetcher] = {}
        queue = list(fetchers)
        running: Dict[Future, Tuple[BaseFetcher, float]] = {}
        slots = max(1, self.max_workers)
        # one thread per source so a hung fetch never blocks a queued one
        executor = ThreadPoolExecutor(max_workers=len(fetchers))
        fetch_summary["sources_attempted"] += len(fetchers)
        try:
            while queue or running:
                while queue and len(running) < slots:
                    fetcher = queue.pop(0)
                    running[executor.submit(fetcher.fetch, since)] = (fetcher, time.monotonic())

                next_deadline = min(started for _, started in running.values()) + self.source_timeout
                done, _ = wait(
                    running,
                    timeout=max(0.0, next_deadline - time.monotonic()),
                    return_when=FIRST_COMPLETED,
                )

                for future in done:
                    fetcher, _ = running.pop(future)
                    try:
                        items, error = future.result()
                    except Exception as e:
                        items, error = [], str(e)
                    if error:
                        fetch_summary["sources_failed"] += 1
                        fetch_summary["errors"][fetcher.source_id] = error
                        logger.warning(f"{fetcher.source_id}: {error}")
                        continue
                    fetch_summary["sources_succeeded"] += 1
                    fetcher.items = items
                    finished[fetcher.source_id] = fetcher

                now = time.monotonic()
                for future, (fetcher, started) in list(running.items()):
                    if future.done() or now - started < self.source_timeout:
                        continue
                    running.pop(future)
                    future.cancel()
                    fetch_summary["sources_failed"] += 1
                    fetch_summary["errors"][fetcher.source_id] = f"Timed out after {self.source_timeout:g}s"
                    logger.warning(f"{fetcher.source_id}: timed out after {self.source_timeout:g}s")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return finished

    def collect(self, subject: SubjectConfig, now: Optional[datetime] = None) -> CollectionResult:
        """
        Collect media and metrics for a subject.

        Args:
            subject: Subject configuration (keywords, search query, metrics block)
            now: Reference time for the media window

        Returns:
            CollectionResult with an explicit MediaIngest.source_kind
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=subject.media_window_days)
        fetch_summary = _new_summary()

        api_fetchers = []
        for fetcher in self.build_fetchers(subject, API_SOURCE_TYPES):
            if isinstance(fetcher, KeyedNewsFetcher) and not fetcher.is_configured():
                fetch_summary["sources_skipped"] += 1
                logger.info(f"{fetcher.source_id}: {fetcher.key_env} not set, skipping")
                continue
            api_fetchers.append(fetcher)

        metrics_fetcher = self.metrics_fetcher_type(subject) if subject.metrics else None
        first_wave = list(api_fetchers) + ([metrics_fetcher] if metrics_fetcher is not None else [])
        finished = self.run_parallel(first_wave, since, fetch_summary)

        metrics: List[RawMetricItem] = []
        metric_sources: List[SourceRef] = []
        if metrics_fetcher is not None and metrics_fetcher.source_id in finished:
            metrics = list(metrics_fetcher.items)
            metric_sources = list(metrics_fetcher.sources)

        api_items: List[RawMediaItem] = []
        api_sources: List[SourceRef] = []
        for fetcher in api_fetchers:
            if fetcher.source_id in finished:
                api_items.extend(fetcher.items)
                api_sources.extend(fetcher.sources)

        if api_items:
            media = MediaIngest(items=dedupe_media(api_items), sources=api_sources, source_kind="news_api")
            logger.info(f"Media from APIs: {len(media.items)} articles for {subject.id}")
        else:
            if api_fetchers:
                logger.warning("All news APIs returned 0 articles; falling back to RSS")
            rss_finished = self.run_parallel(self.build_fetchers(subject, ('rss',)), since, fetch_summary)
            rss_items: List[RawMediaItem] = []
            rss_sources: List[SourceRef] = []
            for fetcher in rss_finished.values():
                rss_items.extend(fetcher.items)
                rss_sources.extend(fetcher.sources)
            media = MediaIngest(items=dedupe_media(rss_items), sources=rss_sources, source_kind="rss")
            logger.info(f"Media from RSS: {len(media.items)} headlines for {subject.id}")

        return CollectionResult(
            media=media,
            metrics=metrics,
            metric_sources=metric_sources,
            fetch_summary=fetch_summary,
        )
