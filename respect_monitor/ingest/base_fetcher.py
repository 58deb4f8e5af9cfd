"""Abstract base class for media and metrics fetchers with retry logic."""

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from respect_monitor.config.loader import ConfigError, load_yaml_config
from respect_monitor.config.subjects import SubjectConfig
from respect_monitor.pipeline.models import RawMediaItem
from respect_monitor.pipeline.sources import SourceRef, create_source_ref, now_iso

logger = logging.getLogger(__name__)

INGEST_CONFIG_FILE = "ingest.yaml"

# Default retry configuration (can be overridden by config/ingest.yaml)
DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_BACKOFF_SECONDS = 1
DEFAULT_BACKOFF_MULTIPLIER = 2
DEFAULT_REQUEST_TIMEOUT = (10, 20)
DEFAULT_MAX_ITEMS_PER_SOURCE = 100

MAX_LEDE_LENGTH = 500
SOURCE_TITLE_LENGTH = 80


def load_ingest_config() -> Dict[str, Any]:
    """
    Load ingestion guardrail configuration from config/ingest.yaml.

    Returns:
        Config dict or empty dict if the file is missing or unreadable
    """
    try:
        return load_yaml_config(INGEST_CONFIG_FILE)
    except ConfigError as e:
        logger.warning(f"Failed to load ingest config: {e}")
        return {}


def get_retry_config() -> Dict[str, Any]:
    """
    Get retry configuration, preferring config/ingest.yaml over defaults.

    Returns:
        Dict with max_retries, initial_backoff_seconds, backoff_multiplier
    """
    retry_config = load_ingest_config().get('retry', {}) or {}
    return {
        'max_retries': retry_config.get('max_retries', DEFAULT_MAX_RETRIES),
        'initial_backoff_seconds': retry_config.get('initial_backoff_seconds', DEFAULT_INITIAL_BACKOFF_SECONDS),
        'backoff_multiplier': retry_config.get('backoff_multiplier', DEFAULT_BACKOFF_MULTIPLIER),
    }


_ingest_config = load_ingest_config()
_retry_config = get_retry_config()
MAX_RETRIES = max(1, int(_retry_config['max_retries']))
INITIAL_BACKOFF_SECONDS = _retry_config['initial_backoff_seconds']
BACKOFF_MULTIPLIER = _retry_config['backoff_multiplier']
REQUEST_TIMEOUT = tuple(_ingest_config.get('request_timeout') or DEFAULT_REQUEST_TIMEOUT)
MAX_ITEMS_PER_SOURCE = int(_ingest_config.get('max_items_per_source', DEFAULT_MAX_ITEMS_PER_SOURCE))

# Session-level retry for network transients; shared by the HTTP fetchers
_retry = Retry(total=1, allowed_methods=["GET"], backoff_factor=1, status_forcelist=[502, 503, 504])
_session = requests.Session()
_session.mount("https://", HTTPAdapter(max_retries=_retry))


class FetchError(Exception):
    """Exception raised when a fetch fails after retries."""
    def __init__(self, source_id: str, message: str, original_error: Optional[Exception] = None):
        self.source_id = source_id
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_id}: {message}")


class BaseFetcher(ABC):
    """Abstract base for all fetchers with built-in retry logic.

    Subclasses implement _fetch_impl and may append citations to self.sources
    while fetching.
    """

    def __init__(self, source_config: Dict[str, Any], subject: Optional[SubjectConfig] = None):
        self.source_id = source_config['id']
        self.name = source_config.get('name', self.source_id)
        self.type = source_config.get('type', 'unknown')
        self.config = source_config
        self.subject = subject
        self.sources: List[SourceRef] = []
        self.items: List[Any] = []

    @abstractmethod
    def _fetch_impl(self, since: Optional[datetime] = None) -> List[Any]:
        """
        Internal fetch implementation - to be overridden by subclasses.

        Args:
            since: Only fetch items published after this time (None = fetch all)

        Returns:
            List of raw items

        Raises:
            Exception on fetch failure
        """
        pass

    def fetch(self, since: Optional[datetime] = None) -> Tuple[List[Any], Optional[str]]:
        """
        Fetch with automatic retries and exponential backoff.

        Args:
            since: Only fetch items published after this time (None = fetch all)

        Returns:
            Tuple of (items, error_message)
            - On success: (items, None)
            - On failure: ([], error_message)
        """
        last_error = None
        backoff = INITIAL_BACKOFF_SECONDS

        for attempt in range(1, MAX_RETRIES + 1):
            self.sources = []
            try:
                items = self._fetch_impl(since)
                return items[:MAX_ITEMS_PER_SOURCE], None
            except Exception as e:
                last_error = str(e)
                if attempt < MAX_RETRIES:
                    logger.warning(f"Retry {attempt}/{MAX_RETRIES} for {self.source_id} in {backoff}s: {e}")
                    time.sleep(backoff)
                    backoff *= BACKOFF_MULTIPLIER
                else:
                    logger.error(f"Failed after {MAX_RETRIES} attempts for {self.source_id}: {e}")

        self.sources = []
        return [], last_error

    def matches_subject(self, *texts: Optional[str]) -> bool:
        """True when any subject keyword appears in the given texts (no keywords = keep all)."""
        if self.subject is None or not self.subject.keywords:
            return True
        haystack = " ".join(t for t in texts if t).lower()
        return any(k.lower() in haystack for k in self.subject.keywords)

    def create_media_item(
        self,
        outlet: str,
        title: str,
        published_at: str,
        url: Optional[str] = None,
        lede: Optional[str] = None,
    ) -> RawMediaItem:
        """
        Create a RawMediaItem and register its news_headline citation.

        Args:
            outlet: Publication name
            title: Headline
            published_at: ISO 8601 timestamp
            url: Article URL
            lede: Optional standfirst or summary

        Returns:
            RawMediaItem with a stable id derived from the URL (or title)
        """
        retrieved_at = now_iso()
        key = url or f"{title}|{outlet}|{published_at[:10]}"
        item_id = f"{self.source_id}_{hashlib.md5(key.encode()).hexdigest()[:10]}"
        item = RawMediaItem(
            id=item_id,
            outlet=outlet,
            title=title.strip(),
            published_at=published_at,
            lede=lede[:MAX_LEDE_LENGTH] if lede else None,
            url=url or None,
            retrieved_at=retrieved_at,
        )
        self.sources.append(create_source_ref(
            item_id,
            item.title[:SOURCE_TITLE_LENGTH],
            "news_headline",
            "media_framing",
            publisher=outlet,
            published_at=published_at[:10],
            retrieved_at=retrieved_at,
            url=item.url,
        ))
        return item


def to_utc_iso(value: Optional[datetime]) -> str:
    return (value or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()
