"""
Notability gate for knowledge-graph publication.

Searches for independent public references about a business, asks an LLM to
grade each reference against a "serious and publicly available" rubric, and
turns the grades into a pass/fail verdict. A fresh verdict is computed for
every publish attempt.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from tenacity import RetryError

from cfp.core.config import LLMConfig, SearchConfig
from cfp.core.exceptions import CFPError, SearchProviderError
from cfp.core.models import (
    Location,
    NotabilityReference,
    NotabilityVerdict,
    SearchResult,
    SourceType,
)
from cfp.data.llm_client import LLMClient
from cfp.data.search_client import SearchProvider, registered_domain
from cfp.utils.json_utils import coerce_json_payload
from cfp.utils.names import clean_business_name, strip_legal_suffix
from cfp.utils.reliability import LLM_RETRY, RetryPolicy, call_with_retry

logger = structlog.get_logger(__name__)

SEARCH_RETRY = RetryPolicy("search", max_attempts=2, backoff_base=1.0, backoff_max=8.0)

SOURCE_TYPE_RANK = {
    SourceType.GOVERNMENT: 1,
    SourceType.NEWS: 2,
    SourceType.ACADEMIC: 3,
    SourceType.DATABASE: 4,
    SourceType.DIRECTORY: 5,
    SourceType.REVIEW: 6,
    SourceType.OTHER: 7,
    SourceType.COMPANY: 8,
}

TRUST_SCORES = {
    SourceType.GOVERNMENT: 90,
    SourceType.NEWS: 85,
    SourceType.ACADEMIC: 85,
    SourceType.DATABASE: 80,
    SourceType.DIRECTORY: 75,
    SourceType.REVIEW: 70,
    SourceType.OTHER: 60,
    SourceType.COMPANY: 50,
}

SERIOUS_SOURCE_TYPES = {
    SourceType.GOVERNMENT,
    SourceType.NEWS,
    SourceType.ACADEMIC,
    SourceType.DATABASE,
    SourceType.DIRECTORY,
    SourceType.REVIEW,
}

MAX_CITED_REFERENCES = 5
FALLBACK_CONFIDENCE = 0.6

REASON_RATE_LIMITED = "rate_limited"
REASON_NO_RESULTS = "no_search_results"
REASON_INSUFFICIENT = "insufficient_serious_references"
REASON_LOW_CONFIDENCE = "low_confidence"
REASON_HEURISTIC = "heuristic_assessment"

_DIRECTORY_HINTS = ("yelp", "yellowpages", "manta", "bbb.org", "directory", "mapquest", "google")
_NEWS_HINTS = ("news", "times", "tribune", "herald", "journal", "gazette", "post", "chronicle")
_DATABASE_HINTS = ("database", "chamber", "opencorporates", "crunchbase", "dnb.com")


class DailyQueryBudget:
    """Per-UTC-day search query allowance shared across assessments."""

    def __init__(self, daily_limit: int):
        self.daily_limit = daily_limit
        self._day: Optional[date] = None
        self._used = 0
        self._lock = threading.Lock()

    def _roll(self) -> None:
        today = datetime.now(timezone.utc).date()
        if self._day != today:
            self._day = today
            self._used = 0

    def try_consume(self, count: int = 1) -> bool:
        with self._lock:
            self._roll()
            if self._used + count > self.daily_limit:
                return False
            self._used += count
            return True

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return max(0, self.daily_limit - self._used)


@dataclass
class ReferenceAssessment:
    """Rubric output for the whole candidate list."""

    confidence: float
    judgments: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)
    heuristic: bool = False


def detect_source_type(result: SearchResult, business_domain: str = "") -> SourceType:
    """Classify a reference by its domain when no model judgment is available."""
    domain = result.domain
    if business_domain and (domain == business_domain or domain.endswith("." + business_domain)):
        return SourceType.COMPANY
    if domain.endswith(".gov") or ".gov." in domain:
        return SourceType.GOVERNMENT
    if domain.endswith(".edu") or ".edu." in domain or ".ac." in domain:
        return SourceType.ACADEMIC
    if any(hint in domain for hint in _DATABASE_HINTS):
        return SourceType.DATABASE
    if any(hint in domain for hint in _DIRECTORY_HINTS):
        return SourceType.DIRECTORY
    if "review" in domain or "tripadvisor" in domain or "trustpilot" in domain:
        return SourceType.REVIEW
    if any(hint in domain for hint in _NEWS_HINTS):
        return SourceType.NEWS
    return SourceType.OTHER


def build_search_queries(name: str, location: Optional[Location]) -> List[Tuple[str, int]]:
    """Query strategies as (query, result count) pairs."""
    location_text = ""
    if location is not None:
        location_text = " ".join(part for part in (location.city, location.region) if part)

    queries = [(f'"{name}" {location_text}'.strip(), 10)]
    short_name = strip_legal_suffix(name)
    if short_name.lower() != name.lower():
        queries.append((f'"{short_name}" {location_text}'.strip(), 5))
    queries.append((f'"{short_name}" (site:*.gov OR site:*.edu)', 5))
    return queries


def build_assessment_prompt(name: str, results: List[SearchResult]) -> str:
    listing = "\n".join(
        f"{i}. {r.title}\n   URL: {r.url}\n   Source: {r.domain}\n   Snippet: {r.snippet}"
        for i, r in enumerate(results, start=1)
    )
    return f"""Assess whether these references meet Wikidata's "serious and publicly available" standard for a local business.

Business: {name}

References:
{listing}

A reference is SERIOUS when it comes from a reputable source category: news outlets, government
records or registrations, academic publications, official business databases or chambers of
commerce, established business directories, or established review platforms.
A reference is INDEPENDENT when it is published by a third party, not by the business itself.
A reference is PUBLICLY AVAILABLE when anyone can read it without a paywall or login.

For each reference return:
- index: the reference number shown above
- isSerious, isIndependent, isPubliclyAvailable: booleans
- sourceType: "news" | "government" | "academic" | "database" | "directory" | "review" | "company" | "other"
- trustScore: 0-100
- reasoning: one sentence

Also return:
- confidence: 0-1, how confident you are in the overall assessment
- summary: one or two sentences
- recommendations: list of concrete ways to strengthen the reference set

Return ONLY valid JSON:
{{"confidence": number, "summary": string, "references": [{{"index": number, "isSerious": boolean, "isIndependent": boolean, "isPubliclyAvailable": boolean, "sourceType": string, "trustScore": number, "reasoning": string}}], "recommendations": [string]}}"""


def parse_assessment(payload: Dict[str, Any], result_count: int) -> ReferenceAssessment:
    """Turn the model's JSON into a ReferenceAssessment, ignoring out-of-range indexes."""
    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    judgments: Dict[int, Dict[str, Any]] = {}
    for item in payload.get("references") or []:
        if not isinstance(item, dict):
            continue
        try:
            position = int(item.get("index")) - 1
        except (TypeError, ValueError):
            continue
        if 0 <= position < result_count:
            judgments[position] = item

    recommendations = [str(r) for r in payload.get("recommendations") or [] if r]
    return ReferenceAssessment(
        confidence=min(max(confidence, 0.0), 1.0),
        judgments=judgments,
        summary=str(payload.get("summary") or ""),
        recommendations=recommendations,
    )


def _source_type(value: Any, default: SourceType) -> SourceType:
    try:
        return SourceType(str(value).lower())
    except ValueError:
        return default


class NotabilityGate:
    """Search-then-judge notability assessment."""

    def __init__(
        self,
        search_client: SearchProvider,
        llm_client: LLMClient,
        search_config: Optional[SearchConfig] = None,
        llm_config: Optional[LLMConfig] = None,
        query_budget: Optional[DailyQueryBudget] = None,
        search_retry: RetryPolicy = SEARCH_RETRY,
        llm_retry: RetryPolicy = LLM_RETRY,
    ):
        self.search_client = search_client
        self.llm_client = llm_client
        self.search_config = search_config or SearchConfig()
        self.llm_config = llm_config or LLMConfig()
        self.query_budget = query_budget or DailyQueryBudget(self.search_config.daily_query_limit)
        self.search_retry = search_retry
        self.llm_retry = llm_retry
        self.llm_calls = 0

    async def assess(
        self, name: str, location: Optional[Location] = None, website: Optional[str] = None
    ) -> NotabilityVerdict:
        """
        Assess whether a business has enough serious independent references.

        Args:
            name: Business name
            location: Optional location used to qualify the search
            website: The business's own site, so self-published pages are not counted

        Returns:
            NotabilityVerdict (never raises for an unfavourable outcome)

        Raises:
            SearchProviderError: every search query failed
        """
        name = clean_business_name(name)
        log = logger.bind(business_name=name)
        log.info("notability_assessment_started")

        queries = build_search_queries(name, location)
        if not self.query_budget.try_consume(len(queries)):
            log.warning("notability_rate_limited", remaining=self.query_budget.remaining)
            return NotabilityVerdict(
                passed=False,
                confidence=0.0,
                summary="Daily search quota exhausted; assessment postponed",
                reasons=[REASON_RATE_LIMITED],
                suggestions=["Retry after the daily search quota resets"],
            )

        results = await self._collect_results(queries)
        if not results:
            log.info("notability_no_results")
            return NotabilityVerdict(
                passed=False,
                confidence=1.0,
                summary="No public references found",
                reasons=[REASON_NO_RESULTS],
                suggestions=[
                    "Get listed in established business directories and review platforms",
                    "Seek local news coverage or government business registrations",
                ],
            )

        assessment = await self._assess_references(name, results, website)
        verdict = self._build_verdict(results, assessment, website)
        log.info(
            "notability_assessment_completed",
            passed=verdict.passed,
            serious=verdict.serious_reference_count,
            confidence=verdict.confidence,
            heuristic=assessment.heuristic,
        )
        return verdict

    async def _collect_results(self, queries: List[Tuple[str, int]]) -> List[SearchResult]:
        outcomes = await asyncio.gather(
            *(
                call_with_retry(self.search_retry, self.search_client.search, query, count)
                for query, count in queries
            ),
            return_exceptions=True,
        )

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        for failure in failures:
            logger.warning("notability_search_failed", error=str(failure))
        if failures and len(failures) == len(outcomes):
            raise SearchProviderError(
                "All notability search queries failed", details={"queries": [q for q, _ in queries]}
            )

        seen = set()
        merged: List[SearchResult] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                continue
            for result in outcome:
                key = result.url.rstrip("/").lower()
                if key in seen:
                    continue
                seen.add(key)
                merged.append(result)
        return merged[: self.search_config.max_results]

    async def _assess_references(
        self, name: str, results: List[SearchResult], website: Optional[str]
    ) -> ReferenceAssessment:
        prompt = build_assessment_prompt(name, results)
        self.llm_calls += 1
        try:
            response = await call_with_retry(
                self.llm_retry,
                self.llm_client.complete,
                self.llm_config.notability_model,
                prompt,
                temperature=self.llm_config.notability_temperature,
            )
            return parse_assessment(coerce_json_payload(response.text), len(results))
        except (RetryError, CFPError, ValueError) as e:
            logger.warning("notability_llm_fallback", error=str(e), error_type=type(e).__name__)
            return self._heuristic_assessment(results, website)

    def _heuristic_assessment(
        self, results: List[SearchResult], website: Optional[str]
    ) -> ReferenceAssessment:
        business_domain = registered_domain(website) if website else ""
        judgments = {}
        for i, result in enumerate(results):
            source_type = detect_source_type(result, business_domain)
            judgments[i] = {
                "isSerious": source_type in SERIOUS_SOURCE_TYPES,
                "isIndependent": source_type != SourceType.COMPANY,
                "isPubliclyAvailable": True,
                "sourceType": source_type.value,
                "trustScore": TRUST_SCORES[source_type],
                "reasoning": f"Classified by domain as {source_type.value}",
            }
        return ReferenceAssessment(
            confidence=FALLBACK_CONFIDENCE,
            judgments=judgments,
            summary="Assessed from reference domains only",
            recommendations=["Re-run the assessment when the language model is available"],
            heuristic=True,
        )

    def _build_verdict(
        self,
        results: List[SearchResult],
        assessment: ReferenceAssessment,
        website: Optional[str],
    ) -> NotabilityVerdict:
        business_domain = registered_domain(website) if website else ""
        references = []
        for i, result in enumerate(results):
            judgment = assessment.judgments.get(i, {})
            detected = detect_source_type(result, business_domain)
            source_type = _source_type(judgment.get("sourceType"), detected)
            independent = bool(judgment.get("isIndependent", detected != SourceType.COMPANY))
            if detected == SourceType.COMPANY:
                independent = False
            try:
                trust = int(judgment.get("trustScore", TRUST_SCORES[source_type]))
            except (TypeError, ValueError):
                trust = TRUST_SCORES[source_type]
            references.append(
                NotabilityReference(
                    title=result.title or result.url,
                    url=result.url,
                    snippet=result.snippet,
                    source_domain=result.domain,
                    source_type=source_type,
                    trust_score=min(max(trust, 0), 100),
                    is_serious=bool(judgment.get("isSerious", False)),
                    is_independent=independent,
                    is_publicly_available=bool(judgment.get("isPubliclyAvailable", True)),
                    reasoning=str(judgment.get("reasoning") or ""),
                )
            )

        serious = [
            r for r in references if r.is_serious and r.is_independent and r.is_publicly_available
        ]
        serious.sort(key=lambda r: (SOURCE_TYPE_RANK[SourceType(r.source_type)], -r.trust_score))

        min_serious = self.search_config.min_serious_references
        min_confidence = self.search_config.min_confidence
        reasons = []
        if len(serious) < min_serious:
            reasons.append(REASON_INSUFFICIENT)
        if assessment.confidence < min_confidence:
            reasons.append(REASON_LOW_CONFIDENCE)
        if assessment.heuristic:
            reasons.append(REASON_HEURISTIC)
        passed = len(serious) >= min_serious and assessment.confidence >= min_confidence

        suggestions = list(assessment.recommendations)
        if REASON_INSUFFICIENT in reasons:
            suggestions.append(
                f"Found {len(serious)} serious independent references; at least {min_serious} "
                "are needed (news coverage, government records or established directories)"
            )

        summary = assessment.summary or (
            f"{len(serious)} serious independent references out of {len(results)} results"
        )
        return NotabilityVerdict(
            passed=passed,
            confidence=assessment.confidence,
            summary=summary,
            references=serious[:MAX_CITED_REFERENCES],
            reasons=reasons,
            suggestions=[] if passed else suggestions,
            serious_reference_count=len(serious),
            search_result_count=len(results),
        )
