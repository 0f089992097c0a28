"""
Four-tier QID resolution cache.

Lookup order for ``(attribute type, normalized text)``:

1. in-process map
2. persistent key-value store
3. embedded static tables
4. Wikidata SPARQL, only when the caller allows it

Hits from tiers 2-4 are promoted into tier 1; hits from tiers 3-4 are also
written to tier 2, so repeated lookups converge on the in-process map.
Entries are never invalidated except through ``correct``.
"""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

import structlog

from cfp.core.models import QidAttributeType, QidCacheEntry
from cfp.knowledge_graph.qid_tables import STATE_ABBREVIATIONS, STATIC_TABLES
from cfp.knowledge_graph.sparql_client import WikidataSparqlClient

logger = structlog.get_logger(__name__)

TIER_MEMORY = "memory"
TIER_STORE = "store"
TIER_TABLE = "table"
TIER_SPARQL = "sparql"
TIER_MANUAL = "manual"


def normalize_key(text: str) -> str:
    """Lowercase, drop punctuation other than ``,`` and ``-``, collapse whitespace."""
    lowered = text.lower().strip()
    lowered = re.sub(r"[^a-z0-9,\s-]", "", lowered)
    lowered = re.sub(r"\s*,\s*", ", ", lowered)
    return re.sub(r"\s+", " ", lowered).strip(" ,")


def cache_key(attribute_type: QidAttributeType, text: str) -> str:
    return f"{QidAttributeType(attribute_type).value}:{normalize_key(text)}"


def city_lookup_text(city: str, region: Optional[str] = None) -> str:
    """Format a city as ``"city, st"`` so it matches the embedded city table."""
    if not region:
        return city
    region_key = normalize_key(region)
    region_key = STATE_ABBREVIATIONS.get(region_key, region_key)
    return f"{city}, {region_key}"


class QidStore(Protocol):
    """Persistent key-value tier."""

    def get(self, key: str) -> Optional[QidCacheEntry]: ...

    def set(self, entry: QidCacheEntry) -> None: ...


class InMemoryQidStore:
    """Dictionary-backed store, handy for tests and ephemeral runs."""

    def __init__(self):
        self._data: Dict[str, QidCacheEntry] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[QidCacheEntry]:
        return self._data.get(key)

    def set(self, entry: QidCacheEntry) -> None:
        self._data[cache_key(entry.attribute_type, entry.key)] = entry
        self.writes += 1

    def __len__(self) -> int:
        return len(self._data)


class JsonFileQidStore(InMemoryQidStore):
    """JSON file persisted after each write."""

    def __init__(self, state_path: Path):
        super().__init__()
        self.state_path = Path(state_path)
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> Dict[str, QidCacheEntry]:
        if not self.state_path.exists():
            return {}
        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
            return {key: QidCacheEntry.model_validate(value) for key, value in raw.items()}
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load QID store", path=str(self.state_path), error=str(exc))
            return {}

    def _save(self) -> None:
        raw = {key: entry.model_dump(mode="json") for key, entry in self._data.items()}
        tmp_path = self.state_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(raw, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.state_path)

    def set(self, entry: QidCacheEntry) -> None:
        with self._lock:
            super().set(entry)
            self._save()


class QidResolutionCache:
    """Resolve free-text attributes to QIDs through the tier hierarchy."""

    def __init__(
        self,
        store: Optional[QidStore] = None,
        sparql_client: Optional[WikidataSparqlClient] = None,
        static_tables: Optional[Dict[QidAttributeType, Dict[str, str]]] = None,
    ):
        self.store = store
        self.sparql_client = sparql_client
        self.static_tables = static_tables if static_tables is not None else STATIC_TABLES

        self._memory: Dict[str, QidCacheEntry] = {}
        self._lock = threading.Lock()
        self.hits: Dict[str, int] = {
            TIER_MEMORY: 0,
            TIER_STORE: 0,
            TIER_TABLE: 0,
            TIER_SPARQL: 0,
        }
        self.misses = 0

    async def resolve(
        self,
        attribute_type: QidAttributeType,
        text: Optional[str],
        allow_external: bool = False,
        region_qid: Optional[str] = None,
    ) -> Optional[str]:
        """
        Resolve ``text`` of ``attribute_type`` to a QID.

        Args:
            attribute_type: Kind of attribute (city, industry, ...)
            text: Free-text value; empty values resolve to None
            allow_external: Permit the SPARQL tier on a local miss
            region_qid: Narrows SPARQL city lookups to a region

        Returns:
            The QID, or None when every permitted tier misses
        """
        if not text or not normalize_key(text):
            return None

        attribute_type = QidAttributeType(attribute_type)
        normalized = normalize_key(text)
        key = cache_key(attribute_type, normalized)

        entry = self._memory.get(key)
        if entry is not None:
            self.hits[TIER_MEMORY] += 1
            return entry.qid

        if self.store is not None:
            entry = self.store.get(key)
            if entry is not None:
                self.hits[TIER_STORE] += 1
                self._remember(key, entry)
                return entry.qid

        qid = self.static_tables.get(attribute_type, {}).get(normalized)
        if qid:
            self.hits[TIER_TABLE] += 1
            self._promote(attribute_type, normalized, qid, TIER_TABLE)
            return qid

        if allow_external and self.sparql_client is not None:
            lookup_label = normalized.split(",")[0]
            qid = await self.sparql_client.find_qid(attribute_type, lookup_label, region_qid)
            if qid:
                self.hits[TIER_SPARQL] += 1
                self._promote(attribute_type, normalized, qid, TIER_SPARQL)
                logger.info(
                    "qid_resolved_externally",
                    attribute_type=attribute_type.value,
                    key=normalized,
                    qid=qid,
                )
                return qid

        self.misses += 1
        logger.debug("qid_unresolved", attribute_type=attribute_type.value, key=normalized)
        return None

    async def resolve_city(
        self, city: Optional[str], region: Optional[str] = None, allow_external: bool = False
    ) -> Optional[str]:
        """Resolve a city, qualified by its region when known."""
        if not city:
            return None
        region_qid = None
        if region:
            region_qid = await self.resolve(QidAttributeType.REGION, region)
        return await self.resolve(
            QidAttributeType.CITY,
            city_lookup_text(city, region),
            allow_external=allow_external,
            region_qid=region_qid,
        )

    def correct(self, attribute_type: QidAttributeType, text: str, qid: str) -> QidCacheEntry:
        """Manually override a mapping in tiers 1 and 2."""
        normalized = normalize_key(text)
        entry = self._promote(QidAttributeType(attribute_type), normalized, qid, TIER_MANUAL)
        logger.info(
            "qid_mapping_corrected", attribute_type=entry.attribute_type, key=normalized, qid=qid
        )
        return entry

    def _remember(self, key: str, entry: QidCacheEntry) -> None:
        with self._lock:
            self._memory[key] = entry

    def _promote(
        self, attribute_type: QidAttributeType, normalized: str, qid: str, source: str
    ) -> QidCacheEntry:
        entry = QidCacheEntry(attribute_type=attribute_type, key=normalized, qid=qid, source=source)
        self._remember(cache_key(attribute_type, normalized), entry)
        if self.store is not None:
            self.store.set(entry)
        return entry

    @property
    def size(self) -> int:
        return len(self._memory)

    def get_stats(self) -> Dict[str, object]:
        """Per-tier hit counts and overall local hit rate."""
        total = sum(self.hits.values()) + self.misses
        local = total - self.hits[TIER_SPARQL] - self.misses
        return {
            **{f"{tier}_hits": count for tier, count in self.hits.items()},
            "misses": self.misses,
            "entries": self.size,
            "local_hit_rate": local / total if total else 0.0,
        }
