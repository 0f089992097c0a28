"""
Data models and type definitions for the CFP pipeline.

Provides type-safe data structures with validation for businesses, crawl output,
fingerprint runs, knowledge-graph drafts and notability verdicts.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessStatus(str, Enum):
    """Lifecycle states of a business in the CFP pipeline."""

    PENDING = "pending"
    CRAWLING = "crawling"
    CRAWLED = "crawled"
    GENERATING = "generating"
    FINGERPRINTED = "fingerprinted"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    ERROR = "error"


class SubscriptionTier(str, Enum):
    """Account tiers; only paid tiers are eligible for auto-publish."""

    FREE = "free"
    PRO = "pro"
    AGENCY = "agency"


class PromptCategory(str, Enum):
    """Prompt categories in the fingerprint matrix."""

    FACTUAL = "factual"
    OPINION = "opinion"
    RECOMMENDATION = "recommendation"


class Sentiment(str, Enum):
    """Sentiment classification of a single response."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class MarketPosition(str, Enum):
    """Where the target sits on the competitive leaderboard."""

    LEADING = "leading"
    COMPETITIVE = "competitive"
    EMERGING = "emerging"
    UNKNOWN = "unknown"


class VisibilityTrend(str, Enum):
    """Direction of the visibility score between the two latest runs."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class QidAttributeType(str, Enum):
    """Free-text attribute kinds resolvable to a QID."""

    CITY = "city"
    INDUSTRY = "industry"
    LEGAL_FORM = "legal_form"
    REGION = "region"
    COUNTRY = "country"


class SourceType(str, Enum):
    """Reference source categories, in citation preference order."""

    GOVERNMENT = "government"
    NEWS = "news"
    ACADEMIC = "academic"
    DATABASE = "database"
    DIRECTORY = "directory"
    REVIEW = "review"
    OTHER = "other"
    COMPANY = "company"


# Base Models


class BaseEntity(BaseModel):
    """Base class for all mutable entities."""

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)


class FrozenModel(BaseModel):
    """Base class for records that are never mutated after creation."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)


# Business Models


class Coordinates(FrozenModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Location(FrozenModel):
    """Structured business location."""

    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = "US"
    coordinates: Optional[Coordinates] = None

    def display(self) -> str:
        """Human readable ``City, Region`` string (empty when unknown)."""
        return ", ".join(part for part in (self.city, self.region) if part)


class Business(BaseEntity):
    """A business moving through the CFP pipeline."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=500)
    url: str = Field(..., min_length=1)
    location: Location = Field(default_factory=Location)
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    status: BusinessStatus = Field(default=BusinessStatus.PENDING)
    qid: Optional[str] = None

    # Error bookkeeping
    error_message: Optional[str] = None
    error_stage: Optional[str] = None
    last_good_status: Optional[BusinessStatus] = None
    pipeline_attempts: int = Field(default=0, ge=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        """Require an absolute http(s) URL."""
        v = v.strip()
        if not urlsplit(v).scheme:
            v = f"https://{v}"
        if urlsplit(v).scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme: {v}")
        return v

    @field_validator("qid")
    @classmethod
    def validate_qid(cls, v):
        if v is not None and not (v.startswith("Q") and v[1:].isdigit()):
            raise ValueError(f"Invalid QID: {v}")
        return v


class CrawledData(FrozenModel):
    """Structured output of the external crawler."""

    source_url: str
    name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    founded: Optional[str] = None
    employee_count: Optional[int] = Field(default=None, ge=0)
    social_links: Dict[str, str] = Field(default_factory=dict)
    category: Optional[str] = None
    industry: Optional[str] = None
    legal_form: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    location: Optional[Location] = None
    structured_data: Dict[str, Any] = Field(default_factory=dict)
    crawled_at: datetime = Field(default_factory=utcnow)

    @field_validator("social_links", mode="before")
    @classmethod
    def normalize_platforms(cls, v):
        """Lowercase platform keys and drop empty links."""
        if not v:
            return {}
        return {str(k).strip().lower(): str(url).strip() for k, url in v.items() if url}


# Fingerprint Models


class FingerprintResult(FrozenModel):
    """One model response in a fingerprint run."""

    model: str
    category: PromptCategory
    prompt: str
    mentioned: bool = False
    sentiment: Sentiment = Sentiment.NEUTRAL
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rank: Optional[int] = Field(default=None, ge=1)
    competitors: List[str] = Field(default_factory=list)
    response_text: str = ""
    tokens_used: int = 0
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class LeaderboardEntry(FrozenModel):
    name: str
    rank: Optional[int] = Field(default=None, ge=1)
    mention_count: int = Field(..., ge=0)
    market_share: float = Field(..., ge=0.0, le=1.0)
    avg_position: Optional[float] = None
    appears_with_target: int = 0
    is_target: bool = False


class CompetitiveLeaderboard(FrozenModel):
    """Competitor tally across recommendation-category responses."""

    target: LeaderboardEntry
    competitors: List[LeaderboardEntry] = Field(default_factory=list)
    market_position: MarketPosition = MarketPosition.UNKNOWN
    recommendation_successes: int = 0

    @property
    def total_share(self) -> float:
        return self.target.market_share + sum(c.market_share for c in self.competitors)


class FingerprintAnalysis(FrozenModel):
    """Aggregate of one fingerprint run; superseded, never mutated."""

    run_id: str
    business_id: str
    business_name: str
    visibility_score: int = Field(..., ge=0, le=100)
    mention_rate: float = Field(..., ge=0.0, le=1.0)
    sentiment_score: float = Field(..., ge=-1.0, le=1.0)
    avg_rank: Optional[float] = None
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    leaderboard: CompetitiveLeaderboard
    results: List[FingerprintResult] = Field(default_factory=list)
    success_count: int = 0
    total_calls: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_counts(self):
        if self.success_count > self.total_calls:
            raise ValueError("success_count cannot exceed total_calls")
        return self


# Knowledge Graph Models


class QidCacheEntry(FrozenModel):
    attribute_type: QidAttributeType
    key: str
    qid: str
    source: str
    resolved_at: datetime = Field(default_factory=utcnow)


class Reference(FrozenModel):
    """Provenance attached to a claim."""

    url: str
    retrieved_at: datetime = Field(default_factory=utcnow)
    title: Optional[str] = None


class Claim(FrozenModel):
    """Typed property statement with its references."""

    property_id: str
    datatype: str
    value: Any
    references: List[Reference] = Field(default_factory=list)


class EntityDraft(BaseModel):
    """Knowledge-graph entity under construction."""

    label: str
    description: str
    language: str = "en"
    aliases: List[str] = Field(default_factory=list)
    claims: Dict[str, List[Claim]] = Field(default_factory=dict)

    def add_claim(self, claim: Claim) -> None:
        self.claims.setdefault(claim.property_id, []).append(claim)

    @property
    def claim_count(self) -> int:
        return sum(len(claims) for claims in self.claims.values())


class SearchResult(FrozenModel):
    title: str = ""
    url: str
    snippet: str = ""

    @property
    def domain(self) -> str:
        host = urlsplit(self.url).netloc.lower()
        return host[4:] if host.startswith("www.") else host


class NotabilityReference(FrozenModel):
    """A search result as judged by the notability rubric."""

    title: str
    url: str
    snippet: str = ""
    source_domain: str = ""
    source_type: SourceType = SourceType.OTHER
    trust_score: int = Field(default=60, ge=0, le=100)
    is_serious: bool = False
    is_independent: bool = False
    is_publicly_available: bool = True
    reasoning: str = ""


class NotabilityVerdict(FrozenModel):
    passed: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    summary: str = ""
    references: List[NotabilityReference] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    serious_reference_count: int = 0
    search_result_count: int = 0
    assessed_at: datetime = Field(default_factory=utcnow)


class PublishResult(FrozenModel):
    qid: str
    created: bool
    mode: str
    revision_id: Optional[int] = None
