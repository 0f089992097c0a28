"""
Fan-out/fan-in fingerprinting engine.

Runs every configured model against every prompt category concurrently,
bounded by a semaphore, and aggregates whatever succeeds. A failed or slow
call is recorded with an error marker and never blocks its siblings.
"""

import asyncio
import time
import uuid
from typing import List, Optional, Sequence

import structlog
from tenacity import RetryError

from cfp.core.config import LLMConfig
from cfp.core.exceptions import NoSuccessfulResponsesError
from cfp.core.models import Business, CrawledData, FingerprintAnalysis, FingerprintResult
from cfp.data.llm_client import LLMClient
from cfp.fingerprint.analyzer import HeuristicResponseAnalyzer, ResponseAnalyzer
from cfp.fingerprint.prompts import PromptGenerator, PromptSpec
from cfp.fingerprint.scoring import build_analysis
from cfp.utils.reliability import LLM_RETRY, RetryPolicy, call_with_retry

logger = structlog.get_logger(__name__)


def _describe_error(exc: BaseException) -> str:
    if isinstance(exc, RetryError):
        last = exc.last_attempt.exception()
        if last is not None:
            return f"{type(last).__name__}: {last} (retries exhausted)"
    return f"{type(exc).__name__}: {exc}"


class FingerprintEngine:
    """
    Queries M models x 3 prompt categories and aggregates the responses.

    Features:
    - Bounded parallelism shared by all calls of one run
    - Per-call retry envelope for transient provider errors
    - Partial results tolerated; zero successes is a hard failure
    """

    def __init__(
        self,
        llm_client: LLMClient,
        config: Optional[LLMConfig] = None,
        analyzer: Optional[ResponseAnalyzer] = None,
        prompt_generator: Optional[PromptGenerator] = None,
        retry_policy: RetryPolicy = LLM_RETRY,
    ):
        """
        Initialize the engine.

        Args:
            llm_client: Provider client used for every call
            config: Model list and concurrency limit
            analyzer: Response classifier (heuristic by default)
            prompt_generator: Prompt builder
            retry_policy: Retry envelope applied to each call
        """
        self.llm_client = llm_client
        self.config = config or LLMConfig()
        self.analyzer = analyzer or HeuristicResponseAnalyzer()
        self.prompt_generator = prompt_generator or PromptGenerator()
        self.retry_policy = retry_policy

    @property
    def models(self) -> List[str]:
        return list(self.config.models)

    async def run(
        self, business: Business, crawled: Optional[CrawledData] = None
    ) -> FingerprintAnalysis:
        """
        Execute one fingerprint run.

        Args:
            business: Business being fingerprinted
            crawled: Crawled context, or None for a provisional run

        Returns:
            FingerprintAnalysis over all M x P calls

        Raises:
            NoSuccessfulResponsesError: every call failed
        """
        run_id = uuid.uuid4().hex
        prompts = self.prompt_generator.generate(business, crawled)
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        log = logger.bind(business_id=business.id, run_id=run_id)
        log.info(
            "fingerprint_started",
            models=len(self.models),
            prompts=len(prompts),
            provisional=crawled is None,
        )

        tasks = [
            self._query(semaphore, model, spec, business.name)
            for model in self.models
            for spec in prompts
        ]
        results: Sequence[FingerprintResult] = await asyncio.gather(*tasks)

        successes = sum(1 for r in results if r.succeeded)
        if successes == 0:
            log.error("fingerprint_failed", total_calls=len(results))
            raise NoSuccessfulResponsesError(
                f"All {len(results)} fingerprint calls failed",
                details={"errors": [r.error for r in results][:5]},
            )

        analysis = build_analysis(run_id, business.id, business.name, results)
        log.info(
            "fingerprint_completed",
            successes=successes,
            total_calls=len(results),
            visibility_score=analysis.visibility_score,
            market_position=analysis.leaderboard.market_position,
        )
        return analysis

    async def _query(
        self, semaphore: asyncio.Semaphore, model: str, spec: PromptSpec, business_name: str
    ) -> FingerprintResult:
        async with semaphore:
            started = time.perf_counter()
            try:
                response = await call_with_retry(
                    self.retry_policy,
                    self.llm_client.complete,
                    model,
                    spec.text,
                    temperature=spec.temperature,
                    max_tokens=self.config.max_tokens,
                )
            except Exception as e:
                logger.warning(
                    "fingerprint_call_failed",
                    model=model,
                    category=spec.category.value,
                    error=_describe_error(e),
                )
                return FingerprintResult(
                    model=model,
                    category=spec.category,
                    prompt=spec.text,
                    error=_describe_error(e),
                    latency_ms=(time.perf_counter() - started) * 1000,
                )

        classification = self.analyzer.classify(response.text, business_name, spec.category)
        return FingerprintResult(
            model=model,
            category=spec.category,
            prompt=spec.text,
            mentioned=classification.mentioned,
            sentiment=classification.sentiment,
            confidence=classification.confidence,
            rank=classification.rank,
            competitors=classification.competitors,
            response_text=response.text,
            tokens_used=response.tokens_used,
            latency_ms=response.latency_ms,
        )
