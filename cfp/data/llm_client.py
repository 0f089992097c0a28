"""
OpenRouter chat-completion client.

OpenRouter speaks the OpenAI wire protocol, so the official ``openai`` SDK is
pointed at its base URL. Provider errors are mapped onto the CFP exception
hierarchy so callers can tell transient failures from permanent ones.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import openai
import structlog
from openai import AsyncOpenAI

from cfp.core.config import LLMConfig
from cfp.core.exceptions import ConfigurationError, LLMProviderError, RateLimitError
from cfp.core.exceptions import TimeoutError as CFPTimeoutError
from cfp.utils.reliability import AdaptiveRateLimiter

logger = structlog.get_logger(__name__)


@dataclass
class LLMResponse:
    """A single complete model response."""

    text: str
    model: str
    tokens_used: int = 0
    latency_ms: float = 0.0


class LLMClient(Protocol):
    async def complete(
        self,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse: ...


class OpenRouterClient:
    """Async OpenRouter client with rate limiting and error mapping."""

    def __init__(
        self,
        config: LLMConfig,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None and not config.api_key:
            raise ConfigurationError("OPENROUTER_API_KEY environment variable required")

        self.config = config
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(
            calls_per_second=config.calls_per_second, burst_size=max(config.max_concurrency, 1)
        )
        # Retries belong to the caller's envelope, not the SDK
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
            default_headers={"HTTP-Referer": config.app_url, "X-Title": "CFP Pipeline"},
        )

    async def aclose(self) -> None:
        await self.client.close()

    async def complete(
        self,
        model: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """
        Request one chat completion.

        Raises:
            RateLimitError: provider returned 429
            TimeoutError: call exceeded the configured timeout
            LLMProviderError: any other provider failure or an empty answer
        """
        if not await self.rate_limiter.acquire(timeout=self.config.timeout_seconds):
            raise RateLimitError("Local LLM rate limit wait exceeded", details={"model": model})

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        started = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens or self.config.max_tokens,
                ),
                timeout=self.config.timeout_seconds,
            )
        except openai.RateLimitError as e:
            self.rate_limiter.on_error()
            raise RateLimitError(f"{model}: rate limited", details={"model": model}) from e
        except (openai.APITimeoutError, asyncio.TimeoutError) as e:
            self.rate_limiter.on_error()
            raise CFPTimeoutError(
                f"{model}: no response within {self.config.timeout_seconds}s",
                details={"model": model},
            ) from e
        except openai.APIStatusError as e:
            self.rate_limiter.on_error()
            raise LLMProviderError(
                f"{model}: {e.message}", status_code=e.status_code, details={"model": model}
            ) from e
        except openai.APIConnectionError as e:
            self.rate_limiter.on_error()
            raise LLMProviderError(f"{model}: connection failed", details={"model": model}) from e

        latency_ms = (time.perf_counter() - started) * 1000
        choice = completion.choices[0] if completion.choices else None
        text = (choice.message.content or "").strip() if choice else ""
        if not text:
            self.rate_limiter.on_error()
            raise LLMProviderError(f"{model}: empty response", details={"model": model})

        self.rate_limiter.on_success()
        tokens = completion.usage.total_tokens if completion.usage else 0
        logger.debug("llm_completion", model=model, tokens=tokens, latency_ms=round(latency_ms))
        return LLMResponse(text=text, model=model, tokens_used=tokens, latency_ms=latency_ms)
