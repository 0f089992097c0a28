"""
Wikidata SPARQL lookups used as the last QID resolution tier.

Calls are bounded by a short timeout and never retried: any failure is
reported as "unresolved" so the caller can simply omit the claim.
"""

from __future__ import annotations

from typing import Optional

import httpx
import structlog
from httpx import HTTPStatusError, TimeoutException

from cfp.core.config import KnowledgeGraphConfig
from cfp.core.models import QidAttributeType

logger = structlog.get_logger(__name__)

SPARQL_ENDPOINT = "https://query.wikidata.org/sparql"

# Class QIDs the label must be an instance (or subclass instance) of
_CLASS_FOR_TYPE = {
    QidAttributeType.CITY: "Q515",
    QidAttributeType.INDUSTRY: "Q268592",
}


def _escape_literal(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def build_query(
    attribute_type: QidAttributeType, label: str, region_qid: Optional[str] = None
) -> Optional[str]:
    """Build the SPARQL query for ``label`` or None when the type is not queryable."""
    class_qid = _CLASS_FOR_TYPE.get(attribute_type)
    if class_qid is None:
        return None

    literal = _escape_literal(label.strip().title())
    lines = [
        "SELECT ?item WHERE {",
        f'  ?item rdfs:label "{literal}"@en ;',
        f"        wdt:P31/wdt:P279* wd:{class_qid} .",
    ]
    if attribute_type == QidAttributeType.CITY:
        lines.append("  ?item wdt:P17 wd:Q30 .")
        if region_qid:
            lines.append(f"  ?item wdt:P131+ wd:{region_qid} .")
    lines.append("} LIMIT 1")
    return "\n".join(lines)


class WikidataSparqlClient:
    """Thin async client for the Wikidata query service."""

    def __init__(self, config: KnowledgeGraphConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.sparql_timeout),
            headers={
                "User-Agent": config.user_agent,
                "Accept": "application/sparql-results+json",
            },
        )
        self.calls = 0

    async def aclose(self) -> None:
        await self.client.aclose()

    async def find_qid(
        self, attribute_type: QidAttributeType, label: str, region_qid: Optional[str] = None
    ) -> Optional[str]:
        """Return the first matching QID, or None on no match or any failure."""
        query = build_query(attribute_type, label, region_qid)
        if query is None:
            return None

        self.calls += 1
        try:
            response = await self.client.get(
                SPARQL_ENDPOINT, params={"query": query, "format": "json"}
            )
            response.raise_for_status()
            bindings = response.json().get("results", {}).get("bindings", [])
        except HTTPStatusError as e:
            logger.warning(
                "sparql_http_error",
                attribute_type=attribute_type.value,
                label=label,
                status_code=e.response.status_code,
            )
            return None
        except TimeoutException:
            logger.warning("sparql_timeout", attribute_type=attribute_type.value, label=label)
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "sparql_failed", attribute_type=attribute_type.value, label=label, error=str(e)
            )
            return None

        if not bindings:
            logger.debug("sparql_no_match", attribute_type=attribute_type.value, label=label)
            return None

        uri = bindings[0].get("item", {}).get("value", "")
        qid = uri.rsplit("/", 1)[-1]
        return qid if qid.startswith("Q") else None
