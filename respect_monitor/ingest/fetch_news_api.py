"""Keyed news search connectors: News API, Guardian Open Platform and GNews.

Each connector is skipped by the coordinator when its key is not configured.
Response shapes:

    News API  {"status": "ok", "articles": [{"source": {"name"}, "title", "description", "url", "publishedAt"}]}
    Guardian  {"response": {"status": "ok", "results": [{"webTitle", "webUrl", "webPublicationDate", "fields": {"trailText"}}]}}
    GNews     {"articles": [{"title", "description", "url", "publishedAt", "source": {"name"}}]}
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from respect_monitor.config.secrets import get_optional_key
from respect_monitor.pipeline.models import RawMediaItem
from .base_fetcher import REQUEST_TIMEOUT, BaseFetcher, FetchError, _session
from .fetch_rss import strip_html

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_LOOKBACK_DAYS = 14


class KeyedNewsFetcher(BaseFetcher):
    """Shared plumbing for API connectors that need a key and a search query."""

    default_key_env = ""

    @property
    def key_env(self) -> str:
        return self.config.get('key_env', self.default_key_env)

    @property
    def api_key(self) -> Optional[str]:
        return get_optional_key(self.key_env)

    def is_configured(self) -> bool:
        return self.api_key is not None

    def _query(self) -> str:
        if self.subject is not None and self.subject.search_query:
            return self.subject.search_query
        return self.config.get('query', 'migration')

    def _since(self, since: Optional[datetime]) -> datetime:
        if since is None:
            days = self.subject.media_window_days if self.subject is not None else DEFAULT_LOOKBACK_DAYS
            since = datetime.now(timezone.utc) - timedelta(days=days)
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return since

    def _get_json(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = _session.get(self.config['url'], params=params, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise FetchError(self.source_id, f"{self.name} request failed: {e}", e) from e
        except ValueError as e:
            raise FetchError(self.source_id, f"{self.name} returned invalid JSON", e) from e

    def _fetch_impl(self, since: Optional[datetime] = None) -> List[RawMediaItem]:
        key = self.api_key
        if key is None:
            raise FetchError(self.source_id, f"{self.key_env} not configured")
        data = self._get_json(self._params(key, self._since(since)))
        items = []
        for article in self._articles(data):
            item = self._to_item(article)
            if item is not None:
                items.append(item)
        logger.info(f"{self.source_id}: {len(items)} articles")
        return items

    def _params(self, key: str, since: datetime) -> Dict[str, Any]:
        raise NotImplementedError

    def _articles(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _to_item(self, article: Dict[str, Any]) -> Optional[RawMediaItem]:
        title = (article.get('title') or '').strip()
        if not title or title == '[Removed]':
            return None
        outlet = (article.get('source') or {}).get('name') or self.name
        return self.create_media_item(
            outlet=outlet,
            title=title,
            published_at=article.get('publishedAt') or datetime.now(timezone.utc).isoformat(),
            url=article.get('url'),
            lede=strip_html(article.get('description') or '') or None,
        )


class NewsApiFetcher(KeyedNewsFetcher):
    """newsapi.org /v2/everything."""

    default_key_env = "NEWS_API_KEY"

    def _params(self, key: str, since: datetime) -> Dict[str, Any]:
        return {
            'q': self._query(),
            'from': since.strftime('%Y-%m-%d'),
            'language': 'en',
            'sortBy': 'publishedAt',
            'pageSize': self.config.get('page_size', DEFAULT_PAGE_SIZE),
            'apiKey': key,
        }

    def _articles(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        if data.get('status') != 'ok':
            raise FetchError(self.source_id, f"News API error: {data.get('message', data.get('status'))}")
        return data.get('articles') or []


class GuardianFetcher(KeyedNewsFetcher):
    """Guardian Open Platform /search."""

    default_key_env = "GUARDIAN_API_KEY"

    def _params(self, key: str, since: datetime) -> Dict[str, Any]:
        return {
            'q': self._query(),
            'from-date': since.strftime('%Y-%m-%d'),
            'order-by': 'newest',
            'page-size': self.config.get('page_size', DEFAULT_PAGE_SIZE),
            'show-fields': 'trailText',
            'api-key': key,
        }

    def _articles(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        body = data.get('response') or {}
        if body.get('status') != 'ok':
            raise FetchError(self.source_id, f"Guardian API error: {body.get('message', body.get('status'))}")
        return body.get('results') or []

    def _to_item(self, article: Dict[str, Any]) -> Optional[RawMediaItem]:
        return super()._to_item({
            'title': article.get('webTitle'),
            'url': article.get('webUrl'),
            'publishedAt': article.get('webPublicationDate'),
            'description': (article.get('fields') or {}).get('trailText'),
            'source': {'name': 'The Guardian'},
        })


class GNewsFetcher(KeyedNewsFetcher):
    """gnews.io /api/v4/search."""

    default_key_env = "GNEWS_API_KEY"

    def _params(self, key: str, since: datetime) -> Dict[str, Any]:
        return {
            'q': self._query(),
            'lang': 'en',
            'country': 'gb',
            'max': self.config.get('page_size', DEFAULT_PAGE_SIZE),
            'from': since.strftime('%Y-%m-%dT%H:%M:%SZ'),
            'apikey': key,
        }

    def _articles(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        if data.get('errors'):
            raise FetchError(self.source_id, f"GNews error: {data['errors']}")
        return data.get('articles') or []
