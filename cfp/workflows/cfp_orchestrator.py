"""
Crawl -> Fingerprint -> Publish orchestration.

Drives one business through
``pending -> crawling -> crawled -> generating -> fingerprinted -> publishing -> published``
with ``error`` reachable from every active state. Crawl and fingerprint run
concurrently: fingerprinting starts from the business record alone and is
re-run with crawled context when the crawl changes the prompts. Both must
finish before ``generating``.

Status changes go through compare-and-set, so a stale stage can never
overwrite a newer status.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Set, Union

from structlog.contextvars import bound_contextvars

from cfp.core.config import PipelineConfig, Settings, get_settings
from cfp.core.exceptions import (
    EntityAlreadyExistsError,
    InvalidTransitionError,
    KnowledgeGraphError,
)
from cfp.core.logging import get_logger
from cfp.core.models import (
    Business,
    BusinessStatus,
    CrawledData,
    FingerprintAnalysis,
    NotabilityVerdict,
    PublishResult,
    SubscriptionTier,
    VisibilityTrend,
)
from cfp.data.crawler import Crawler
from cfp.data.llm_client import OpenRouterClient
from cfp.data.repository import BusinessRepository, CrawledDataStore, FingerprintStore
from cfp.data.search_client import GoogleSearchClient
from cfp.fingerprint.engine import FingerprintEngine
from cfp.knowledge_graph.entity_builder import EntityBuilder
from cfp.knowledge_graph.notability import DailyQueryBudget, NotabilityGate
from cfp.knowledge_graph.publisher import WikidataPublisher
from cfp.knowledge_graph.qid_cache import JsonFileQidStore, QidResolutionCache
from cfp.knowledge_graph.sparql_client import WikidataSparqlClient
from cfp.utils.reliability import call_with_retry
from cfp.workflows.stages import (
    STAGE_CRAWL,
    STAGE_FINGERPRINT,
    STAGE_NOTABILITY,
    STAGE_PERSIST,
    STAGE_PUBLISH,
    STAGE_TIMEOUT,
    RetryPolicies,
    StageResult,
    run_stage,
)

logger = get_logger(__name__)

S = BusinessStatus

ALLOWED_TRANSITIONS: Dict[BusinessStatus, Set[BusinessStatus]] = {
    S.PENDING: {S.CRAWLING, S.ERROR},
    S.CRAWLING: {S.CRAWLED, S.ERROR},
    S.CRAWLED: {S.GENERATING, S.ERROR},
    S.GENERATING: {S.FINGERPRINTED, S.ERROR},
    S.FINGERPRINTED: {S.PUBLISHING, S.ERROR},
    S.PUBLISHING: {S.PUBLISHED, S.ERROR},
    S.PUBLISHED: set(),
    S.ERROR: {S.PENDING},
}

ACTIVE_STATUSES = (S.CRAWLING, S.CRAWLED, S.GENERATING, S.PUBLISHING)
STAGE_BY_STATUS = {
    S.CRAWLING: STAGE_CRAWL,
    S.CRAWLED: STAGE_FINGERPRINT,
    S.GENERATING: STAGE_PERSIST,
    S.PUBLISHING: STAGE_PUBLISH,
}
AUTO_PUBLISH_TIERS = (SubscriptionTier.PRO, SubscriptionTier.AGENCY)

REASON_NOT_FINGERPRINTED = "status_not_fingerprinted"
REASON_TIER = "tier_not_eligible"
REASON_NO_VERDICT = "no_notability_verdict"
REASON_NOT_NOTABLE = "notability_failed"


def can_transition(current: Union[BusinessStatus, str], new: Union[BusinessStatus, str]) -> bool:
    return BusinessStatus(new) in ALLOWED_TRANSITIONS[BusinessStatus(current)]


@dataclass(frozen=True)
class PublishDecision:
    publish: bool
    reasons: List[str] = field(default_factory=list)


def should_publish(
    status: Union[BusinessStatus, str], verdict: Optional[NotabilityVerdict]
) -> PublishDecision:
    """Publish gate shared by auto and manual publishing."""
    reasons = []
    if BusinessStatus(status) != S.FINGERPRINTED:
        reasons.append(REASON_NOT_FINGERPRINTED)
    if verdict is None:
        reasons.append(REASON_NO_VERDICT)
    elif not verdict.passed:
        reasons.append(REASON_NOT_NOTABLE)
        reasons.extend(verdict.reasons)
    return PublishDecision(publish=not reasons, reasons=reasons)


def should_auto_publish(
    status: Union[BusinessStatus, str],
    tier: Union[SubscriptionTier, str],
    verdict: Optional[NotabilityVerdict],
) -> PublishDecision:
    """
    Decide whether a freshly fingerprinted business is published automatically.

    Pure function of its inputs: the status must be ``fingerprinted``, the
    tier ``pro`` or ``agency``, and the notability verdict must pass.
    """
    decision = should_publish(status, verdict)
    if SubscriptionTier(tier) in AUTO_PUBLISH_TIERS:
        return decision
    return PublishDecision(publish=False, reasons=[REASON_TIER, *decision.reasons])


@dataclass
class StatusReport:
    """Externally visible state of one business."""

    business_id: str
    status: BusinessStatus
    error_message: Optional[str] = None
    error_stage: Optional[str] = None
    last_good_status: Optional[BusinessStatus] = None
    qid: Optional[str] = None
    pipeline_attempts: int = 0
    visibility_score: Optional[int] = None
    trend: Optional[VisibilityTrend] = None
    publish_skip_reasons: List[str] = field(default_factory=list)


class CFPOrchestrator:
    """
    Runs the CFP pipeline for individual businesses.

    Features:
    - Compare-and-set status transitions, forward-only or to ``error``
    - Per-stage retry envelopes plus a bounded pipeline-level retry
    - Whole-business timeout that cancels in-flight calls
    - Global limit on concurrently processed businesses
    """

    def __init__(
        self,
        repository: BusinessRepository,
        crawler: Crawler,
        engine: FingerprintEngine,
        notability: NotabilityGate,
        entity_builder: EntityBuilder,
        publisher: WikidataPublisher,
        fingerprint_store: Optional[FingerprintStore] = None,
        crawled_store: Optional[CrawledDataStore] = None,
        config: Optional[PipelineConfig] = None,
        policies: Optional[RetryPolicies] = None,
        auto_retry: bool = True,
    ):
        self.repository = repository
        self.crawler = crawler
        self.engine = engine
        self.notability = notability
        self.entity_builder = entity_builder
        self.publisher = publisher
        self.fingerprint_store = fingerprint_store or FingerprintStore()
        self.crawled_store = crawled_store or CrawledDataStore()
        self.config = config or PipelineConfig()
        self.policies = policies or RetryPolicies()
        self.auto_retry = auto_retry

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None
        self._active: Set[str] = set()
        self._retry_tasks: Dict[str, asyncio.Task] = {}
        self._skip_reasons: Dict[str, List[str]] = {}

    # ------------------------------------------------------------------ #
    # Public surface
    # ------------------------------------------------------------------ #

    async def start_processing(self, business_id: str) -> BusinessStatus:
        """
        Run the pipeline for a pending business and return its final status.

        A business that is not ``pending``, or already has a run in flight,
        is left alone and its current status returned.
        """
        business = self.repository.get(business_id)
        if business.status != S.PENDING or business_id in self._active:
            logger.info(
                "start_ignored", business_id=business_id, status=business.status
            )
            return BusinessStatus(business.status)

        self._active.add(business_id)
        try:
            async with self._slots():
                with bound_contextvars(business_id=business_id):
                    await self._run_with_timeout(business_id)
        finally:
            self._active.discard(business_id)
        return self.get_status(business_id).status

    def get_status(self, business_id: str) -> StatusReport:
        business = self.repository.get(business_id)
        latest = self.fingerprint_store.latest(business_id)
        return StatusReport(
            business_id=business_id,
            status=BusinessStatus(business.status),
            error_message=business.error_message,
            error_stage=business.error_stage,
            last_good_status=(
                BusinessStatus(business.last_good_status) if business.last_good_status else None
            ),
            qid=business.qid,
            pipeline_attempts=business.pipeline_attempts,
            visibility_score=latest.visibility_score if latest else None,
            trend=self.fingerprint_store.trend(business_id) if latest else None,
            publish_skip_reasons=list(self._skip_reasons.get(business_id, [])),
        )

    async def reset_and_retry(self, business_id: str) -> BusinessStatus:
        """Move an errored business back to ``pending`` with a fresh attempt budget and rerun it."""
        return await self._reset(business_id, fresh_budget=True)

    async def manual_publish(self, business_id: str) -> BusinessStatus:
        """
        Publish on request, regardless of tier.

        The notability gate still applies. Already-published businesses are
        a no-op; businesses that have not reached ``fingerprinted`` are
        rejected.
        """
        business = self.repository.get(business_id)
        if business.status in (S.PUBLISHED, S.PUBLISHING) or business_id in self._active:
            return BusinessStatus(business.status)
        if business.status != S.FINGERPRINTED:
            raise InvalidTransitionError(
                f"Business {business_id} is {business.status}; only fingerprinted businesses "
                "can be published",
                details={"status": business.status},
            )

        self._active.add(business_id)
        try:
            async with self._slots():
                with bound_contextvars(business_id=business_id):
                    await self._guarded(
                        business_id, self._publish_if_notable(business_id, manual=True)
                    )
        finally:
            self._active.discard(business_id)
        return self.get_status(business_id).status

    async def aclose(self) -> None:
        """Close the HTTP clients owned by the collaborators."""
        for client in (
            self.publisher,
            self.entity_builder.qid_cache.sparql_client,
            self.notability.search_client,
            self.engine.llm_client,
        ):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

    async def wait_for_retries(self) -> None:
        """Await scheduled pipeline retries (including retries they schedule)."""
        while self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks.values()), return_exceptions=True)

    def _slots(self) -> asyncio.Semaphore:
        # Semaphores bind to a loop on 3.9; build one per running loop
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_businesses))
            self._semaphore_loop = loop
        return self._semaphore

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    async def _run_with_timeout(self, business_id: str) -> None:
        await self._guarded(business_id, self._run_pipeline(business_id))

    async def _guarded(self, business_id: str, run: Awaitable[None]) -> None:
        """Await ``run`` under the business timeout; nothing escapes with the business in flight."""
        try:
            await asyncio.wait_for(run, timeout=self.config.business_timeout_seconds)
        except asyncio.TimeoutError:
            await self._handle_timeout(business_id)
        except Exception as e:
            logger.error("pipeline_unexpected_error", error=str(e), exc_info=True)
            business = self.repository.get(business_id)
            if business.status not in ACTIVE_STATUSES:
                raise
            await self._fail(
                business_id,
                StageResult.failure(STAGE_BY_STATUS[BusinessStatus(business.status)], e),
                last_good_status=S.FINGERPRINTED if business.status == S.PUBLISHING else None,
            )

    async def _run_pipeline(self, business_id: str) -> None:
        business = self.repository.get(business_id)
        attempts = business.pipeline_attempts + 1
        if not await self._transition(
            business_id, S.PENDING, S.CRAWLING, pipeline_attempts=attempts
        ):
            return
        logger.info("pipeline_started", attempt=attempts, url=business.url, tier=business.tier)

        crawl_task = asyncio.create_task(self._crawl(business))
        fingerprint_task = asyncio.create_task(
            run_stage(STAGE_FINGERPRINT, self.policies.fingerprint, self.engine.run, business, None)
        )
        try:
            crawl = await crawl_task
            if not crawl.ok:
                fingerprint_task.cancel()
                await self._fail(business_id, crawl)
                return

            fingerprint = await fingerprint_task
            if fingerprint.ok and self._prompts_changed(business, crawl.value):
                logger.info("fingerprint_rerun_with_crawled_context")
                fingerprint = await run_stage(
                    STAGE_FINGERPRINT,
                    self.policies.fingerprint,
                    self.engine.run,
                    business,
                    crawl.value,
                )
            if not fingerprint.ok:
                await self._fail(business_id, fingerprint)
                return
        finally:
            for task in (crawl_task, fingerprint_task):
                if not task.done():
                    task.cancel()

        if not await self._transition(business_id, S.CRAWLED, S.GENERATING):
            return

        persisted = await run_stage(
            STAGE_PERSIST, self.policies.storage, self._save_analysis, fingerprint.value
        )
        if not persisted.ok:
            await self._fail(business_id, persisted)
            return

        if not await self._transition(
            business_id,
            S.GENERATING,
            S.FINGERPRINTED,
            error_message=None,
            error_stage=None,
            last_good_status=None,
        ):
            return
        logger.info(
            "business_fingerprinted", visibility_score=fingerprint.value.visibility_score
        )

        business = self.repository.get(business_id)
        if SubscriptionTier(business.tier) in AUTO_PUBLISH_TIERS:
            await self._publish_if_notable(business_id, manual=False)
        else:
            self._skip_reasons[business_id] = [REASON_TIER]
            logger.info("auto_publish_skipped", reasons=[REASON_TIER])

    async def _crawl(self, business: Business) -> StageResult:
        result = await run_stage(STAGE_CRAWL, self.policies.crawl, self.crawler.crawl, business.url)
        if result.ok:
            self.crawled_store.save(business.id, result.value)
            await self._transition(business.id, S.CRAWLING, S.CRAWLED)
        return result

    def _prompts_changed(self, business: Business, crawled: Optional[CrawledData]) -> bool:
        generator = self.engine.prompt_generator
        provisional = [p.text for p in generator.generate(business, None)]
        informed = [p.text for p in generator.generate(business, crawled)]
        return provisional != informed

    async def _save_analysis(self, analysis: FingerprintAnalysis) -> FingerprintAnalysis:
        self.fingerprint_store.save(analysis)
        return analysis

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def _publish_if_notable(self, business_id: str, manual: bool) -> None:
        business = self.repository.get(business_id)
        verdict_stage = await run_stage(
            STAGE_NOTABILITY,
            self.policies.notability,
            self.notability.assess,
            business.name,
            business.location,
            business.url,
        )
        verdict: Optional[NotabilityVerdict] = verdict_stage.value if verdict_stage.ok else None

        business = self.repository.get(business_id)
        if manual:
            decision = should_publish(business.status, verdict)
        else:
            decision = should_auto_publish(business.status, business.tier, verdict)

        if not decision.publish:
            self._skip_reasons[business_id] = decision.reasons
            logger.info(
                "publish_skipped",
                manual=manual,
                reasons=decision.reasons,
                notability_error=verdict_stage.error,
            )
            return

        self._skip_reasons.pop(business_id, None)
        await self._publish(business_id, verdict)

    async def _publish(self, business_id: str, verdict: NotabilityVerdict) -> None:
        if not await self._transition(business_id, S.FINGERPRINTED, S.PUBLISHING):
            return

        published = await run_stage(
            STAGE_PUBLISH, self.policies.publish, self._build_and_publish, business_id, verdict
        )
        if not published.ok:
            await self._fail(business_id, published, last_good_status=S.FINGERPRINTED)
            return

        result: PublishResult = published.value
        await self._transition(
            business_id,
            S.PUBLISHING,
            S.PUBLISHED,
            qid=result.qid,
            error_message=None,
            error_stage=None,
            last_good_status=None,
        )
        logger.info("business_published", qid=result.qid, created=result.created)

    async def _build_and_publish(
        self, business_id: str, verdict: NotabilityVerdict
    ) -> PublishResult:
        business = self.repository.get(business_id)
        draft = await self.entity_builder.build(
            business, self.crawled_store.get(business_id), verdict.references
        )
        return await self._publish_entity(draft, business.qid)

    async def _publish_entity(self, draft, existing_qid: Optional[str]) -> PublishResult:
        try:
            return await self.publisher.publish(draft, existing_qid=existing_qid)
        except EntityAlreadyExistsError as e:
            qid = e.existing_qid or await self.publisher.find_existing(draft.label)
            if not qid:
                raise KnowledgeGraphError(
                    "Entity reported as existing but its QID could not be found", status_code=409
                ) from e
            logger.info("entity_already_exists", qid=qid)
            return PublishResult(qid=qid, created=False, mode=self.publisher.mode)

    # ------------------------------------------------------------------ #
    # Status bookkeeping
    # ------------------------------------------------------------------ #

    async def _transition(
        self,
        business_id: str,
        expected: Union[BusinessStatus, Iterable[BusinessStatus]],
        new: BusinessStatus,
        **fields: Any,
    ) -> bool:
        expected_set = {expected} if isinstance(expected, BusinessStatus) else set(expected)
        for status in expected_set:
            if not can_transition(status, new):
                raise InvalidTransitionError(f"Transition {status.value} -> {new.value} not allowed")

        changed = await call_with_retry(
            self.policies.storage, self._write_status, business_id, expected_set, new, fields
        )
        if changed:
            logger.info("status_changed", to=new.value)
        else:
            logger.warning("status_change_lost", to=new.value)
        return changed

    async def _write_status(
        self, business_id: str, expected: Set[BusinessStatus], new: BusinessStatus, fields: Dict
    ) -> bool:
        return self.repository.compare_and_set_status(business_id, expected, new, **fields)

    async def _fail(
        self,
        business_id: str,
        result: StageResult,
        last_good_status: Optional[BusinessStatus] = None,
    ) -> None:
        business = self.repository.get(business_id)
        attempt = business.pipeline_attempts
        ceiling = self.config.max_attempts
        will_retry = result.retryable and attempt < ceiling

        if will_retry:
            suffix = f"will retry (attempt {attempt + 1}/{ceiling})"
        elif result.retryable:
            suffix = f"retries exhausted after {attempt} attempts, manual action required"
        else:
            suffix = "not retryable, manual action required"
        message = f"{result.stage} failed: {result.error}; {suffix}"

        changed = await self._transition(
            business_id,
            ACTIVE_STATUSES,
            S.ERROR,
            error_message=message,
            error_stage=result.stage,
            last_good_status=last_good_status,
        )
        logger.error("stage_failed", stage=result.stage, error=result.error, will_retry=will_retry)
        if changed and will_retry and self.auto_retry:
            self._schedule_retry(business_id)

    async def _handle_timeout(self, business_id: str) -> None:
        business = self.repository.get(business_id)
        if business.status not in ACTIVE_STATUSES:
            logger.warning("timeout_outside_active_stage", status=business.status)
            return
        last_good = S.FINGERPRINTED if business.status == S.PUBLISHING else None
        result = StageResult(
            stage=STAGE_TIMEOUT,
            ok=False,
            error=f"business exceeded {self.config.business_timeout_seconds:g}s timeout "
            f"while {business.status}",
            retryable=True,
        )
        await self._fail(business_id, result, last_good_status=last_good)

    def _schedule_retry(self, business_id: str) -> None:
        async def retry_later() -> None:
            try:
                await asyncio.sleep(self.config.retry_delay_seconds)
                # The failed run may still be unwinding
                while business_id in self._active:
                    await asyncio.sleep(0.01)
                await self._reset(business_id, fresh_budget=False)
            finally:
                if self._retry_tasks.get(business_id) is task:
                    del self._retry_tasks[business_id]

        task = asyncio.create_task(retry_later())
        self._retry_tasks[business_id] = task

    async def _reset(self, business_id: str, fresh_budget: bool) -> BusinessStatus:
        business = self.repository.get(business_id)
        if business.status != S.ERROR:
            logger.info("reset_ignored", business_id=business_id, status=business.status)
            return BusinessStatus(business.status)

        fields: Dict[str, Any] = {
            "error_message": None,
            "error_stage": None,
            "last_good_status": None,
        }
        if fresh_budget:
            fields["pipeline_attempts"] = 0
        if not await self._transition(business_id, S.ERROR, S.PENDING, **fields):
            return self.get_status(business_id).status
        logger.info("business_reset", business_id=business_id, fresh_budget=fresh_budget)
        return await self.start_processing(business_id)


def create_cfp_orchestrator(
    crawler: Crawler,
    settings: Optional[Settings] = None,
    auto_retry: bool = True,
) -> CFPOrchestrator:
    """
    Factory function to wire the orchestrator from settings.

    Args:
        crawler: Source of crawled data
        settings: Application settings (defaults to the global instance)
        auto_retry: Whether retryable failures are re-run automatically

    Returns:
        Configured orchestrator with JSON-backed stores
    """
    settings = settings or get_settings()
    kg_config = settings.knowledge_graph

    sparql_client = WikidataSparqlClient(kg_config) if kg_config.sparql_enabled else None
    qid_cache = QidResolutionCache(
        store=JsonFileQidStore(Path(kg_config.qid_cache_path)), sparql_client=sparql_client
    )

    llm_client = OpenRouterClient(settings.llm)
    engine = FingerprintEngine(llm_client, settings.llm)
    notability = NotabilityGate(
        GoogleSearchClient(settings.search),
        llm_client,
        search_config=settings.search,
        llm_config=settings.llm,
        query_budget=DailyQueryBudget(settings.search.daily_query_limit),
    )

    store_path = Path(settings.pipeline.business_store_path)
    return CFPOrchestrator(
        repository=BusinessRepository(store_path),
        crawler=crawler,
        engine=engine,
        notability=notability,
        entity_builder=EntityBuilder(qid_cache, allow_external_lookup=kg_config.sparql_enabled),
        publisher=WikidataPublisher(kg_config),
        fingerprint_store=FingerprintStore(store_path.with_name("fingerprints.json")),
        crawled_store=CrawledDataStore(store_path.with_name("crawled.json")),
        config=settings.pipeline,
        auto_retry=auto_retry,
    )
