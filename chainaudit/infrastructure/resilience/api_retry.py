"""Service for executing AI provider calls with rate limiting and retries.

Implements exponential backoff for transient provider errors such as rate
limits (429) or temporary server issues (5xx). Authentication and
argument errors are propagated immediately.
"""

import logging
import asyncio
import time
from typing import Any, Callable, Coroutine, Optional

from openai import (
    APIError as OpenAIAPIError,
    AuthenticationError as OpenAIAuthenticationError,
    RateLimitError as OpenAIRateLimitError,
)
from groq import (
    APIError as GroqAPIError,
    AuthenticationError as GroqAuthenticationError,
    RateLimitError as GroqRateLimitError,
)

from chainaudit.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS = (OpenAIRateLimitError, OpenAIAPIError, GroqRateLimitError, GroqAPIError)
# Checked first: AuthenticationError subclasses APIError in both SDKs
NON_RETRYABLE_EXCEPTIONS = (OpenAIAuthenticationError, GroqAuthenticationError, ValueError, TypeError)

class MaxRetryError(Exception):
    """Exception raised when max retries are exceeded."""
    def __init__(self, original_exception: Exception, attempts: int):
        self.original_exception = original_exception
        self.attempts = attempts
        super().__init__(f"Max retries ({attempts}) exceeded. Last error: {original_exception}")

class ApiRetryService:
    """Handles provider call execution with rate limiting and retries."""

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 2,
        initial_backoff_s: float = 1.0,
        backoff_factor: float = 2.0,
    ):
        """Initializes the ApiRetryService.

        Args:
            rate_limiter: Optional limiter awaited before every attempt.
            max_retries: Maximum number of retry attempts after the first call.
            initial_backoff_s: Initial delay in seconds for the first retry.
            backoff_factor: Multiplier for the backoff delay.
        """
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        logger.debug(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}"
        )

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        provider_name: str = "unknown",
        **kwargs: Any
    ) -> Any:
        """Executes an async provider call with rate limiting and retries.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            provider_name: Provider label for logging.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            MaxRetryError: If every attempt failed with a retryable error.
            Exception: If a non-retryable exception occurs.
        """
        last_exception: Optional[Exception] = None
        current_backoff = self.initial_backoff_s
        endpoint = getattr(func, "__name__", "call")

        for attempt in range(self.max_retries + 1):
            try:
                if self.rate_limiter is not None:
                    await self.rate_limiter.wait_for_permission()
                start_time = time.perf_counter()
                result = await func(*args, **kwargs)
                latency_ms = (time.perf_counter() - start_time) * 1000
                if hasattr(result, 'latency_ms') and result.latency_ms is None:
                    result.latency_ms = latency_ms
                return result

            except NON_RETRYABLE_EXCEPTIONS as e:
                logger.error(f"Non-retryable error calling {provider_name}.{endpoint} on attempt {attempt + 1}: {e}")
                raise

            except RETRYABLE_EXCEPTIONS as e:
                last_exception = e
                if attempt >= self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for {provider_name}.{endpoint}. Last error: {e}")
                    break
                logger.warning(
                    f"Retryable error calling {provider_name}.{endpoint} on attempt {attempt + 1}/{self.max_retries + 1}: "
                    f"{type(e).__name__}. Waiting {current_backoff:.2f}s..."
                )
                await asyncio.sleep(current_backoff)
                current_backoff *= self.backoff_factor

        raise MaxRetryError(last_exception or Exception("Unknown error after retries"), self.max_retries)
