"""RSS/Atom headline fetcher for media framing."""

from datetime import datetime, timezone
from typing import List, Optional

import feedparser
from bs4 import BeautifulSoup

from respect_monitor.pipeline.models import RawMediaItem
from .base_fetcher import BaseFetcher


def strip_html(text: str) -> str:
    if not text:
        return ""
    return BeautifulSoup(text, 'html.parser').get_text(separator=' ', strip=True)


def entry_published(entry) -> Optional[datetime]:
    if getattr(entry, 'published_parsed', None):
        return datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)
    if getattr(entry, 'updated_parsed', None):
        return datetime(*entry.updated_parsed[:6], tzinfo=timezone.utc)
    return None


class RSSFetcher(BaseFetcher):
    """Fetcher for RSS/Atom feeds, filtered to the subject's keywords."""

    def _fetch_impl(self, since: Optional[datetime] = None) -> List[RawMediaItem]:
        items = []
        seen_urls = set()

        for feed_url in self.config.get('urls', []):
            feed = feedparser.parse(feed_url)

            if feed.bozo and not feed.entries:
                raise Exception(f"Feed parse error: {feed.bozo_exception}")

            for entry in feed.entries:
                pub_date = entry_published(entry)
                if since and pub_date and pub_date < since:
                    continue

                title = strip_html(entry.get('title', ''))
                if not title:
                    continue
                lede = strip_html(entry.get('summary', ''))
                if not self.matches_subject(title, lede):
                    continue

                url = entry.get('link', '')
                if url and url in seen_urls:
                    continue
                seen_urls.add(url)

                items.append(self.create_media_item(
                    outlet=self.name,
                    title=title,
                    published_at=(pub_date or datetime.now(timezone.utc)).isoformat(),
                    url=url,
                    lede=lede or None,
                ))

        return items
