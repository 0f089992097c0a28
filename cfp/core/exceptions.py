"""
Custom exceptions for the CFP pipeline.

Provides a hierarchy of exceptions so stages can tell transient failures
(worth retrying) apart from permanent input failures.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx


class CFPError(Exception):
    """Base exception for all CFP errors."""

    transient = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CFPError):
    """Raised when there are configuration issues."""
    pass


class DataAccessError(CFPError):
    """Base class for data access errors."""
    pass


class ExternalServiceError(DataAccessError):
    """External service is unavailable or returning errors."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(f"{service}: {message}", **kwargs)
        self.service = service
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        # 4xx other than 408/429 will not improve on retry
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (408, 429)


class LLMProviderError(ExternalServiceError):
    """LLM provider (OpenRouter) errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__("openrouter", message, status_code=status_code, **kwargs)


class SearchProviderError(ExternalServiceError):
    """Google Custom Search API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__("google_cse", message, status_code=status_code, **kwargs)


class KnowledgeGraphError(ExternalServiceError):
    """Wikidata API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__("wikidata", message, status_code=status_code, **kwargs)


class EntityAlreadyExistsError(KnowledgeGraphError):
    """The knowledge graph already holds an entity for this business."""

    transient = False

    def __init__(self, message: str, existing_qid: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing_qid = existing_qid


class RateLimitError(DataAccessError):
    """Rate limiting errors."""

    transient = True

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class CircuitBreakerError(DataAccessError):
    """Circuit breaker is open, preventing calls."""
    pass


class TimeoutError(DataAccessError):
    """Operation timeout errors."""

    transient = True


class CrawlError(CFPError):
    """The crawler could not produce crawled data for a URL."""

    def __init__(self, message: str, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.transient = retryable


class FingerprintError(CFPError):
    """Fingerprinting stage errors."""
    pass


class NoSuccessfulResponsesError(FingerprintError):
    """Every model call in a fingerprint run failed."""

    transient = True


class ValidationError(CFPError):
    """Data validation errors."""
    pass


class WorkflowError(CFPError):
    """Workflow execution errors."""
    pass


class InvalidTransitionError(WorkflowError):
    """A status change that the state machine does not allow."""
    pass


class BusinessNotFoundError(WorkflowError):
    """No business is stored under the requested id."""
    pass


def is_transient(exc: BaseException) -> bool:
    """Return True when retrying ``exc`` has a chance of succeeding."""
    if isinstance(exc, CFPError):
        return bool(exc.transient)
    # Raw asyncio / httpx timeouts and connection resets
    return isinstance(exc, (asyncio.TimeoutError, httpx.TransportError))
