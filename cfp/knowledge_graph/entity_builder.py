"""
Knowledge-graph entity construction.

Turns a business, its crawled data and the notability references into an
``EntityDraft``. Attributes that need a QID (industry, legal form,
headquarters, region, country) are emitted only when the resolution cache
returns one; unresolved free text is dropped rather than published unlinked.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlsplit

import structlog
from dateutil import parser as date_parser

from cfp.core.models import (
    Business,
    Claim,
    CrawledData,
    EntityDraft,
    Location,
    NotabilityReference,
    QidAttributeType,
    Reference,
    utcnow,
)
from cfp.knowledge_graph.qid_cache import QidResolutionCache

logger = structlog.get_logger(__name__)

BUSINESS_QID = "Q4830453"
EARTH_QID = "Q2"
MAX_DESCRIPTION_LENGTH = 250

# Property ids
P_INSTANCE_OF = "P31"
P_OFFICIAL_WEBSITE = "P856"
P_OFFICIAL_NAME = "P1448"
P_INDUSTRY = "P452"
P_LEGAL_FORM = "P1454"
P_HEADQUARTERS = "P159"
P_LOCATED_IN = "P131"
P_COUNTRY = "P17"
P_COORDINATES = "P625"
P_PHONE = "P1329"
P_EMAIL = "P968"
P_STREET_ADDRESS = "P6375"
P_INCEPTION = "P571"
P_EMPLOYEES = "P1128"
P_TWITTER = "P2002"
P_FACEBOOK = "P2013"
P_INSTAGRAM = "P2003"
P_LINKEDIN_COMPANY = "P4264"
P_YOUTUBE_CHANNEL = "P2397"

# Reference snaks
P_REFERENCE_URL = "P854"
P_RETRIEVED = "P813"
P_TITLE = "P1476"

# Wikibase time precisions
PRECISION_DAY = 11
PRECISION_MONTH = 10
PRECISION_YEAR = 9

# platform key -> (property, host suffixes, path pattern yielding the handle)
SOCIAL_PLATFORMS = {
    "twitter": (P_TWITTER, ("twitter.com", "x.com"), r"^/@?([A-Za-z0-9_]{1,15})/?$"),
    "facebook": (P_FACEBOOK, ("facebook.com", "fb.com"), r"^/([A-Za-z0-9.\-]{3,})/?$"),
    "instagram": (P_INSTAGRAM, ("instagram.com",), r"^/([A-Za-z0-9_.]{1,30})/?$"),
    "linkedin": (P_LINKEDIN_COMPANY, ("linkedin.com",), r"^/company/([A-Za-z0-9\-_%]+)/?$"),
    "youtube": (P_YOUTUBE_CHANNEL, ("youtube.com",), r"^/channel/(UC[A-Za-z0-9_\-]{22})/?$"),
}
_PLATFORM_ALIASES = {"x": "twitter", "fb": "facebook", "ig": "instagram"}
_RESERVED_PATHS = {"share", "sharer", "home", "intent", "pages", "profile.php", "groups"}


def social_handle(platform: str, url: str) -> Optional[str]:
    """Extract the bare handle from a profile URL, or None when it is not a profile URL."""
    platform = _PLATFORM_ALIASES.get(platform, platform)
    spec = SOCIAL_PLATFORMS.get(platform)
    if spec is None or not url:
        return None
    _, hosts, pattern = spec
    parts = urlsplit(url if "://" in url else f"https://{url}")
    host = parts.netloc.lower()
    if host.startswith("www.") or host.startswith("m."):
        host = host.split(".", 1)[1]
    if host not in hosts:
        return None
    match = re.match(pattern, parts.path)
    if not match or match.group(1).lower() in _RESERVED_PATHS:
        return None
    return match.group(1)


def parse_inception(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse a founding date into a Wikibase time value.

    Only the components actually written are kept: ``"1998"`` yields year
    precision, ``"March 1998"`` month precision, ``"1998-03-14"`` day precision.
    """
    if not text:
        return None
    text = text.strip()
    match = re.fullmatch(r"(?:founded\s+(?:in\s+)?|est\.?\s*|since\s+)?(\d{4})", text, re.IGNORECASE)
    if match:
        return {"time": f"+{match.group(1)}-00-00T00:00:00Z", "precision": PRECISION_YEAR}

    try:
        first = date_parser.parse(text, default=datetime(2000, 1, 1), fuzzy=True)
        second = date_parser.parse(text, default=datetime(2001, 2, 2), fuzzy=True)
    except (ValueError, OverflowError):
        return None
    if first.year != second.year:
        return None
    if first.month != second.month:
        return {"time": f"+{first.year:04d}-00-00T00:00:00Z", "precision": PRECISION_YEAR}
    if first.day != second.day:
        return {
            "time": f"+{first.year:04d}-{first.month:02d}-00T00:00:00Z",
            "precision": PRECISION_MONTH,
        }
    return {"time": f"+{first:%Y-%m-%d}T00:00:00Z", "precision": PRECISION_DAY}


def build_description(label: str, crawled: Optional[CrawledData], location: Location) -> str:
    description = (crawled.description or "").strip() if crawled else ""
    description = re.sub(r"\s+", " ", description)
    if not description or description.lower() == label.lower():
        where = location.display()
        description = f"Business in {where}" if where else "Business"
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[: MAX_DESCRIPTION_LENGTH - 3].rstrip() + "..."
    return description


class EntityBuilder:
    """Builds an ``EntityDraft`` from business data and resolved QIDs."""

    def __init__(self, qid_cache: QidResolutionCache, allow_external_lookup: bool = False):
        self.qid_cache = qid_cache
        self.allow_external_lookup = allow_external_lookup

    async def build(
        self,
        business: Business,
        crawled: Optional[CrawledData] = None,
        references: Sequence[NotabilityReference] = (),
    ) -> EntityDraft:
        """
        Build the entity for one publish attempt.

        Args:
            business: Business record
            crawled: Crawled data, the source of most claims
            references: Notability references cited on the core claims

        Returns:
            A fully constructed EntityDraft
        """
        base_ref = Reference(
            url=crawled.source_url if crawled else business.url,
            retrieved_at=crawled.crawled_at if crawled else utcnow(),
        )
        notability_refs = [
            Reference(url=ref.url, title=ref.title, retrieved_at=utcnow()) for ref in references
        ]
        location = self._location(business, crawled)

        label = (crawled.name if crawled and crawled.name else business.name).strip()
        draft = EntityDraft(
            label=label,
            description=build_description(label, crawled, location),
            aliases=[business.name] if business.name.strip().lower() != label.lower() else [],
        )

        # Minimal claim set
        draft.add_claim(
            Claim(
                property_id=P_INSTANCE_OF,
                datatype="wikibase-item",
                value=BUSINESS_QID,
                references=[base_ref, *notability_refs],
            )
        )
        draft.add_claim(Claim(property_id=P_OFFICIAL_WEBSITE, datatype="url", value=business.url))
        draft.add_claim(
            Claim(
                property_id=P_OFFICIAL_NAME,
                datatype="monolingualtext",
                value={"text": label, "language": draft.language},
                references=[base_ref, *notability_refs],
            )
        )

        await self._add_resolved_claims(draft, crawled, location, base_ref)
        if crawled is not None:
            self._add_crawled_claims(draft, crawled, base_ref)
        if location.coordinates is not None:
            draft.add_claim(
                Claim(
                    property_id=P_COORDINATES,
                    datatype="globe-coordinate",
                    value={
                        "latitude": location.coordinates.latitude,
                        "longitude": location.coordinates.longitude,
                        "precision": 0.0001,
                        "globe": f"http://www.wikidata.org/entity/{EARTH_QID}",
                    },
                    references=[base_ref],
                )
            )

        logger.info(
            "entity_built",
            business_id=business.id,
            claims=draft.claim_count,
            properties=sorted(draft.claims),
        )
        return draft

    def _location(self, business: Business, crawled: Optional[CrawledData]) -> Location:
        location = business.location
        if crawled is None or crawled.location is None:
            return location
        return Location(
            city=location.city or crawled.location.city,
            region=location.region or crawled.location.region,
            country=location.country or crawled.location.country,
            coordinates=location.coordinates or crawled.location.coordinates,
        )

    async def _add_resolved_claims(
        self,
        draft: EntityDraft,
        crawled: Optional[CrawledData],
        location: Location,
        base_ref: Reference,
    ) -> None:
        cache = self.qid_cache
        external = self.allow_external_lookup
        resolved: List[tuple] = []

        if crawled is not None:
            industry_text = crawled.industry or crawled.category
            resolved.append(
                (P_INDUSTRY, await cache.resolve(QidAttributeType.INDUSTRY, industry_text, external))
            )
            resolved.append(
                (P_LEGAL_FORM, await cache.resolve(QidAttributeType.LEGAL_FORM, crawled.legal_form))
            )

        resolved.append(
            (P_HEADQUARTERS, await cache.resolve_city(location.city, location.region, external))
        )
        resolved.append((P_LOCATED_IN, await cache.resolve(QidAttributeType.REGION, location.region)))
        resolved.append((P_COUNTRY, await cache.resolve(QidAttributeType.COUNTRY, location.country)))

        for property_id, qid in resolved:
            if qid:
                draft.add_claim(
                    Claim(
                        property_id=property_id,
                        datatype="wikibase-item",
                        value=qid,
                        references=[base_ref],
                    )
                )

    def _add_crawled_claims(self, draft: EntityDraft, crawled: CrawledData, ref: Reference) -> None:
        def add(property_id: str, datatype: str, value: Any) -> None:
            draft.add_claim(
                Claim(property_id=property_id, datatype=datatype, value=value, references=[ref])
            )

        if crawled.phone and crawled.phone.strip():
            add(P_PHONE, "string", crawled.phone.strip())
        if crawled.email and "@" in crawled.email:
            email = crawled.email.strip()
            add(P_EMAIL, "url", email if email.startswith("mailto:") else f"mailto:{email}")
        if crawled.address and crawled.address.strip():
            add(P_STREET_ADDRESS, "monolingualtext", {"text": crawled.address.strip(), "language": "en"})

        inception = parse_inception(crawled.founded)
        if inception:
            add(P_INCEPTION, "time", inception)
        if crawled.employee_count:
            add(P_EMPLOYEES, "quantity", {"amount": f"+{crawled.employee_count}", "unit": "1"})

        emitted = set()
        for platform, url in crawled.social_links.items():
            handle = social_handle(platform, url)
            if handle is None:
                continue
            property_id = SOCIAL_PLATFORMS[_PLATFORM_ALIASES.get(platform, platform)][0]
            if property_id in emitted:
                continue
            emitted.add(property_id)
            add(property_id, "external-id", handle)


def _time_value(moment: datetime) -> Dict[str, Any]:
    return {
        "time": f"+{moment:%Y-%m-%d}T00:00:00Z",
        "timezone": 0,
        "before": 0,
        "after": 0,
        "precision": PRECISION_DAY,
        "calendarmodel": "http://www.wikidata.org/entity/Q1985727",
    }


def _datavalue(datatype: str, value: Any) -> Dict[str, Any]:
    if datatype == "wikibase-item":
        return {
            "type": "wikibase-entityid",
            "value": {"entity-type": "item", "id": value, "numeric-id": int(value[1:])},
        }
    if datatype == "monolingualtext":
        return {"type": "monolingualtext", "value": value}
    if datatype == "globe-coordinate":
        return {"type": "globecoordinate", "value": {**value, "altitude": None}}
    if datatype == "time":
        return {
            "type": "time",
            "value": {
                "time": value["time"],
                "timezone": 0,
                "before": 0,
                "after": 0,
                "precision": value["precision"],
                "calendarmodel": "http://www.wikidata.org/entity/Q1985727",
            },
        }
    if datatype == "quantity":
        return {"type": "quantity", "value": value}
    return {"type": "string", "value": value}


def _snak(property_id: str, datatype: str, value: Any) -> Dict[str, Any]:
    return {
        "snaktype": "value",
        "property": property_id,
        "datatype": datatype,
        "datavalue": _datavalue(datatype, value),
    }


def _reference_json(reference: Reference, language: str) -> Dict[str, Any]:
    snaks = {
        P_REFERENCE_URL: [_snak(P_REFERENCE_URL, "url", reference.url)],
        P_RETRIEVED: [
            {
                "snaktype": "value",
                "property": P_RETRIEVED,
                "datatype": "time",
                "datavalue": {"type": "time", "value": _time_value(reference.retrieved_at)},
            }
        ],
    }
    order = [P_REFERENCE_URL, P_RETRIEVED]
    if reference.title:
        snaks[P_TITLE] = [
            _snak(P_TITLE, "monolingualtext", {"text": reference.title[:400], "language": language})
        ]
        order.append(P_TITLE)
    return {"snaks": snaks, "snaks-order": order}


def serialize_entity(draft: EntityDraft) -> Dict[str, Any]:
    """Render a draft as the ``data`` payload of a ``wbeditentity`` request."""
    language = draft.language
    claims = []
    for property_id, statements in draft.claims.items():
        for claim in statements:
            statement = {
                "mainsnak": _snak(property_id, claim.datatype, claim.value),
                "type": "statement",
                "rank": "normal",
            }
            if claim.references:
                statement["references"] = [
                    _reference_json(ref, language) for ref in claim.references
                ]
            claims.append(statement)

    payload: Dict[str, Any] = {
        "labels": {language: {"language": language, "value": draft.label}},
        "descriptions": {language: {"language": language, "value": draft.description}},
        "claims": claims,
    }
    if draft.aliases:
        payload["aliases"] = {
            language: [{"language": language, "value": alias} for alias in draft.aliases]
        }
    return payload
