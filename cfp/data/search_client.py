"""
Google Custom Search client used by the notability gate.

An empty result list is a valid answer; HTTP and transport failures are
raised as ``SearchProviderError`` so the caller's retry envelope can decide.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

import httpx
import structlog
import tldextract
from httpx import HTTPStatusError, TimeoutException

from cfp.core.config import SearchConfig
from cfp.core.exceptions import ConfigurationError, SearchProviderError
from cfp.core.models import SearchResult
from cfp.utils.reliability import with_circuit_breaker

logger = structlog.get_logger(__name__)

CSE_ENDPOINT = "https://www.googleapis.com/customsearch/v1"

# Offline public-suffix snapshot; no network fetch at import time
_extract = tldextract.TLDExtract(suffix_list_urls=())


def registered_domain(url: str) -> str:
    """``https://www.news.example.co.uk/x`` -> ``example.co.uk``."""
    parts = _extract(url)
    if parts.domain and parts.suffix:
        return f"{parts.domain}.{parts.suffix}".lower()
    return (parts.domain or "").lower()


class SearchProvider(Protocol):
    async def search(self, query: str, num_results: int = 10) -> List[SearchResult]: ...


class GoogleSearchClient:
    """Async Google Custom Search JSON API client."""

    def __init__(self, config: SearchConfig, http_client: Optional[httpx.AsyncClient] = None):
        if not config.google_api_key or not config.google_cse_id:
            raise ConfigurationError(
                "Google Custom Search requires GOOGLE_API_KEY and GOOGLE_CSE_ID"
            )
        self.config = config
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds)
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    @with_circuit_breaker(
        name="google_cse",
        failure_threshold=5,
        recovery_timeout=60.0,
        expected_exception=SearchProviderError,
    )
    async def search(self, query: str, num_results: int = 10) -> List[SearchResult]:
        """
        Run one search query.

        Args:
            query: Search query string
            num_results: Results wanted (the API caps a page at 10)

        Returns:
            Ordered list of results, possibly empty
        """
        params = {
            "key": self.config.google_api_key,
            "cx": self.config.google_cse_id,
            "q": query,
            "num": min(10, max(1, num_results)),
        }

        logger.debug("Making Google Custom Search request", query=query)
        try:
            response = await self.http_client.get(CSE_ENDPOINT, params=params)
            response.raise_for_status()
        except HTTPStatusError as e:
            logger.error(
                "Google Custom Search API error",
                status_code=e.response.status_code,
                response_text=e.response.text[:500],
                query=query,
            )
            raise SearchProviderError(
                f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                details={"query": query},
            )
        except TimeoutException as e:
            logger.error("Google search timeout", query=query, error=str(e))
            raise SearchProviderError(f"Request timeout: {e}", details={"query": query})
        except httpx.TransportError as e:
            logger.error("Google search transport error", query=query, error=str(e))
            raise SearchProviderError(f"Transport error: {e}", details={"query": query})

        results = []
        for item in response.json().get("items", [])[:num_results]:
            link = item.get("link")
            if not link:
                continue
            results.append(
                SearchResult(
                    title=(item.get("title") or "")[:500],
                    url=link,
                    snippet=item.get("snippet") or "",
                )
            )

        logger.info("Google search completed", query=query, items_found=len(results))
        return results
