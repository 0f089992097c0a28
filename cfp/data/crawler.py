"""Crawler boundary: the pipeline only sees a URL in and a CrawledData record out."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

import structlog

from cfp.core.exceptions import CrawlError
from cfp.core.models import CrawledData

logger = structlog.get_logger(__name__)


class Crawler(Protocol):
    async def crawl(self, url: str) -> CrawledData:
        """Return crawled data for ``url`` or raise ``CrawlError``."""
        ...


def _url_key(url: str) -> str:
    return url.strip().rstrip("/").lower()


class StaticCrawler:
    """
    Serves pre-crawled records, keyed by URL.

    Used by the CLI (records loaded from JSON) and by tests. A mapping value
    may also be an exception instance, which is raised for that URL.
    """

    def __init__(self, records: Optional[Dict[str, Union[CrawledData, Exception]]] = None):
        self._records = {_url_key(url): record for url, record in (records or {}).items()}
        self.calls = 0

    @classmethod
    def from_json_file(cls, path: Path) -> "StaticCrawler":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        items = raw if isinstance(raw, list) else [raw]
        records = {}
        for item in items:
            crawled = CrawledData.model_validate(item)
            records[crawled.source_url] = crawled
        return cls(records)

    def add(self, url: str, record: Union[CrawledData, Exception]) -> None:
        self._records[_url_key(url)] = record

    async def crawl(self, url: str) -> CrawledData:
        self.calls += 1
        record = self._records.get(_url_key(url))
        if record is None:
            raise CrawlError(f"No crawl data available for {url}", details={"url": url})
        if isinstance(record, Exception):
            raise record
        logger.debug("crawl_served", url=url)
        return record
