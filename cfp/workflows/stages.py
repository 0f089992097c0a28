"""
Stage units of work.

A stage wraps one external operation in its retry envelope and reports the
outcome as a ``StageResult`` value instead of raising, so the orchestrator's
state machine reads as straight-line code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog
from tenacity import RetryError

from cfp.core.exceptions import CFPError, is_transient
from cfp.utils.reliability import (
    CRAWL_RETRY,
    LLM_RETRY,
    PUBLISH_RETRY,
    STORAGE_RETRY,
    RetryPolicy,
    call_with_retry,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

STAGE_CRAWL = "crawl"
STAGE_FINGERPRINT = "fingerprint"
STAGE_PERSIST = "persist"
STAGE_NOTABILITY = "notability"
STAGE_PUBLISH = "publish"
STAGE_TIMEOUT = "timeout"

FINGERPRINT_RETRY = RetryPolicy("fingerprint", max_attempts=2, backoff_base=2.0, backoff_max=30.0)


@dataclass(frozen=True)
class RetryPolicies:
    """Retry envelopes for each stage; tests inject near-zero backoffs."""

    crawl: RetryPolicy = CRAWL_RETRY
    fingerprint: RetryPolicy = FINGERPRINT_RETRY
    llm: RetryPolicy = LLM_RETRY
    storage: RetryPolicy = STORAGE_RETRY
    publish: RetryPolicy = PUBLISH_RETRY
    notability: RetryPolicy = LLM_RETRY


@dataclass
class StageResult(Generic[T]):
    """Outcome of one stage: a value, or an error with its retryability."""

    stage: str
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    retryable: bool = False
    exhausted: bool = False

    @classmethod
    def success(cls, stage: str, value: T) -> "StageResult[T]":
        return cls(stage=stage, ok=True, value=value)

    @classmethod
    def failure(cls, stage: str, exc: BaseException) -> "StageResult[T]":
        exhausted = False
        cause = exc
        if isinstance(exc, RetryError):
            exhausted = True
            cause = exc.last_attempt.exception() or exc
        if isinstance(cause, CFPError):
            message = cause.message
        elif str(cause):
            message = f"{type(cause).__name__}: {cause}"
        else:
            message = ""
        return cls(
            stage=stage,
            ok=False,
            error=message or type(cause).__name__,
            retryable=is_transient(cause),
            exhausted=exhausted,
        )


async def run_stage(
    stage: str, policy: RetryPolicy, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> StageResult:
    """
    Await ``func`` inside ``policy``'s retry envelope.

    Every failure comes back as a failed ``StageResult``. Errors outside the
    CFP hierarchy are not retryable and are logged with their traceback.
    """
    try:
        value = await call_with_retry(policy, func, *args, **kwargs)
    except RetryError as e:
        result = StageResult.failure(stage, e)
        logger.warning("stage_retries_exhausted", stage=stage, error=result.error)
        return result
    except Exception as e:
        result = StageResult.failure(stage, e)
        if not isinstance(e, CFPError) and not is_transient(e):
            logger.error(
                "stage_unexpected_error", stage=stage, error=result.error, exc_info=True
            )
            return result
        logger.warning(
            "stage_failed", stage=stage, error=result.error, retryable=result.retryable
        )
        return result
    return StageResult.success(stage, value)
