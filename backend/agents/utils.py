"""LLM client utilities and helper functions for the reasoning provider.

This module provides:
- LLMClient: Wrapper around LiteLLM with retry logic and fallback model
  support, for both one-shot and streamed completions
- MockLLMClient: Scripted client for tests
- extract_json_from_response: Pull a JSON object out of free-form model text
"""

import asyncio
import json
import re
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings

logger = structlog.get_logger()

# Transient provider errors worth retrying.
RETRYABLE_ERRORS = (RateLimitError, ServiceUnavailableError, Timeout)

_T = TypeVar("_T")


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        model: Model that produced the response
        finish_reason: Why the model stopped (stop, length, etc.)
        input_tokens: Prompt tokens reported by the provider
        output_tokens: Completion tokens reported by the provider
        latency_ms: Wall-clock latency of the call
        raw_response: The original ModelResponse from LiteLLM
    """

    content: str
    model: str
    finish_reason: str = "stop"
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    raw_response: ModelResponse | None = field(default=None, repr=False)


class LLMClient:
    """Wrapper around LiteLLM with retry logic and fallback.

    The LLMClient provides:
    - Multi-provider support via LiteLLM
    - Automatic retry on transient failures with exponential backoff
    - Fallback model support when the primary model fails after retries
    - Streamed completions for worker output

    Attributes:
        default_model: Default model to use if not specified
        fallback_model: Optional fallback model if primary fails after retries
        retry_attempts: Number of retry attempts for failed calls
        retry_delay: Base delay between retry attempts in seconds
    """

    def __init__(
        self,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.default_model = default_model or settings.planner_model
        self.fallback_model = fallback_model or settings.llm_fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.4,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Make an LLM call with retry logic and fallback.

        Retries on: RateLimitError (429), ServiceUnavailableError (500/502/503),
        Timeout errors.
        Does NOT retry on: AuthenticationError (401/403), BadRequestError (400).

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with content and usage

        Raises:
            AuthenticationError: If API key is invalid
            BadRequestError: If request is malformed
            Exception: After all retries and fallback exhausted
        """
        model = model or self.default_model
        start_time = time.time()

        async def request(target_model: str) -> LLMResponse:
            response = await self._make_request(
                messages=messages,
                model=target_model,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            latency_ms = int((time.time() - start_time) * 1000)
            return self._parse_response(response, target_model, latency_ms)

        llm_response = await self._with_retries(model, request)
        logger.info(
            "llm_call_complete",
            model=llm_response.model,
            input_tokens=llm_response.input_tokens,
            output_tokens=llm_response.output_tokens,
            latency_ms=llm_response.latency_ms,
        )
        return llm_response

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.4,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        """Stream the text deltas of a completion.

        Only opening the stream is retried; once tokens flow, a failure
        propagates to the consumer.

        Yields:
            Non-empty content deltas in arrival order
        """
        model = model or self.default_model

        async def open_stream(target_model: str) -> Any:
            return await self._make_request(
                messages=messages,
                model=target_model,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )

        response = await self._with_retries(model, open_stream)
        chunk_count = 0
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                chunk_count += 1
                yield delta
        logger.debug("llm_stream_complete", model=model, chunks=chunk_count)

    async def _with_retries(
        self, model: str, request: Callable[[str], Awaitable[_T]]
    ) -> _T:
        """Run ``request(model)`` with backoff, then once on the fallback model."""
        last_exception: Exception | None = None

        for attempt in range(self.retry_attempts + 1):
            try:
                return await request(model)
            except RETRYABLE_ERRORS as e:
                last_exception = e
                if attempt < self.retry_attempts:
                    delay = min(self.retry_delay * (2 ** attempt), 4.0)
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.retry_attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await self._async_sleep(delay)
                else:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=self.retry_attempts + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

        if self.fallback_model and self.fallback_model != model:
            logger.warning(
                "llm_fallback_attempt",
                primary_model=model,
                fallback_model=self.fallback_model,
                primary_error=str(last_exception),
            )
            try:
                return await request(self.fallback_model)
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )
                last_exception = last_exception or fallback_error

        raise last_exception or Exception("LLM call failed after all retries")

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float,
        max_tokens: int | None,
        stream: bool = False,
    ) -> Any:
        """Make the actual LiteLLM request."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "timeout": settings.llm_request_timeout_seconds,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if stream:
            kwargs["stream"] = True

        return await acompletion(**kwargs)

    def _parse_response(
        self,
        response: ModelResponse,
        model: str,
        latency_ms: int,
    ) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=model,
            finish_reason=choice.finish_reason or "unknown",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
            raw_response=response,
        )

    async def _async_sleep(self, seconds: float) -> None:
        """Async sleep for retry delay.

        Extracted to a method for easier testing/mocking.
        """
        await asyncio.sleep(seconds)


def _extract_balanced_json_objects(text: str) -> list[str]:
    """Extract balanced JSON object candidates from arbitrary text."""
    candidates: list[str] = []
    n = len(text)

    for start in range(n):
        if text[start] != "{":
            continue

        depth = 0
        in_string = False
        escaped = False

        for end in range(start, n):
            ch = text[end]

            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
                continue

            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidates.append(text[start : end + 1])
                    break

    return candidates


def find_balanced_object(text: str, start: int) -> str | None:
    """Return the balanced ``{...}`` span opening at ``text[start]``, if any."""
    if start >= len(text) or text[start] != "{":
        return None
    candidates = _extract_balanced_json_objects(text[start:])
    if candidates and text.startswith(candidates[0], start):
        return candidates[0]
    return None


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Extract JSON from an LLM response that may contain extra text.

    Tries, in order: the whole response, fenced code blocks, and balanced
    ``{...}`` spans in the free-form text.

    Args:
        response: The full LLM response text

    Returns:
        Parsed JSON dict if found, None otherwise
    """
    def try_parse(candidate: str) -> dict[str, Any] | None:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    parsed = try_parse(response.strip())
    if parsed is not None:
        return parsed

    fence_pattern = r"```(?:json)?\s*([\s\S]*?)\s*```"
    for match in re.finditer(fence_pattern, response, re.IGNORECASE):
        fenced_body = match.group(1).strip()
        parsed = try_parse(fenced_body)
        if parsed is not None:
            return parsed
        for candidate in _extract_balanced_json_objects(fenced_body):
            parsed = try_parse(candidate)
            if parsed is not None:
                return parsed

    for candidate in _extract_balanced_json_objects(response):
        parsed = try_parse(candidate)
        if parsed is not None:
            return parsed

    return None


class MockLLMClient(LLMClient):
    """Mock LLM client for testing without API calls.

    ``call`` returns the scripted responses in order. ``stream`` splits the
    next scripted response into the given chunk size.

    Usage:
        >>> client = MockLLMClient(responses=['{"plan": []}'])
        >>> response = await client.call(messages=[...])
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        chunk_size: int = 8,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.chunk_size = chunk_size
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    def _next(self, messages: list[dict[str, Any]], model: str | None) -> str:
        self.call_history.append({
            "messages": messages,
            "model": model or self.default_model,
        })
        if self._response_index >= len(self.responses):
            raise IndexError("No more mock responses available")
        response = self.responses[self._response_index]
        self._response_index += 1
        if isinstance(response, Exception):
            raise response
        return response

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.4,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        content = self._next(messages, model)
        logger.debug("mock_llm_call", content_preview=content[:50])
        return LLMResponse(content=content, model=model or self.default_model)

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float = 0.4,
        max_tokens: int | None = None,
    ) -> AsyncGenerator[str, None]:
        content = self._next(messages, model)
        for start in range(0, len(content), self.chunk_size):
            yield content[start : start + self.chunk_size]

    def reset(self) -> None:
        """Reset the mock to start returning responses from the beginning."""
        self._response_index = 0
        self.call_history.clear()
