"""Concrete implementation of the AIModel interface using the OpenAI SDK.

Any OpenAI-compatible endpoint works; by default the client talks to
OpenRouter, which serves the free models the ensemble is configured with.
"""

import logging
import os
import asyncio
import time
from typing import Any, List, Optional

from openai import OpenAI, APIError, APIResponseValidationError, AuthenticationError, RateLimitError

from chainaudit.domain.interfaces.ai_model import AIModel
from chainaudit.domain.models.ai import ChatMessage, StructuredAIResponse
from chainaudit.domain.models.common import TokenUsage

logger = logging.getLogger(__name__)

class GptClient(AIModel):
    """OpenAI-compatible implementation of the AIModel interface."""

    DEFAULT_MODEL = "z-ai/glm-4.5-air:free"
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
    ):
        """Initializes the client.

        Args:
            api_key: API key. Reads from OPENROUTER_API_KEY env var if None.
            model: The default model to use.
            base_url: OpenAI-compatible endpoint (OpenRouter by default).
            timeout: Per-request timeout in seconds.
        """
        effective_api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not effective_api_key:
            raise ValueError("OpenRouter API key not provided and not found in environment variables.")

        self.base_url = base_url or self.DEFAULT_BASE_URL
        try:
            self.client = OpenAI(api_key=effective_api_key, base_url=self.base_url, timeout=timeout)
        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {e}", exc_info=True)
            raise RuntimeError(f"OpenAI client initialization failed: {e}") from e

        self.model = model or self.DEFAULT_MODEL
        logger.info(f"GptClient initialized for {self.base_url} (default model: {self.model})")

    def _parse_openai_response(self, response: Any) -> StructuredAIResponse:
        """Parses the response object from an OpenAI-compatible API call."""
        try:
            choice = response.choices[0]
            content = choice.message.content or ""

            token_usage = None
            if response.usage:
                token_usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens,
                    completion_tokens=response.usage.completion_tokens,
                    total_tokens=response.usage.total_tokens
                )

            return StructuredAIResponse(
                content=content,
                token_usage=token_usage,
                model_name=response.model,
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse OpenAI response structure: {e}")
            logger.debug(f"Raw OpenAI response object: {response}")
            raise ValueError(f"Invalid response structure from OpenAI-compatible API: {e}") from e

    async def send_messages(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> StructuredAIResponse:
        """Sends messages to the requested model asynchronously."""
        effective_model = model or self.model
        logger.debug(f"Sending {len(messages)} messages to model: {effective_model}")
        request_kwargs = {"model": effective_model, "messages": messages}
        if max_tokens is not None:
            request_kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        start_time = time.perf_counter()
        try:
            # The SDK call is synchronous; keep the event loop free
            response = await asyncio.to_thread(self.client.chat.completions.create, **request_kwargs)
        except AuthenticationError as e:
            logger.error(f"OpenAI-compatible authentication error: {e}")
            raise
        except RateLimitError as e:
            logger.warning(f"Rate limit hit for {effective_model}: {e}")
            raise
        except APIResponseValidationError as e:
            logger.error(f"Response validation error for {effective_model}: {e}")
            raise
        except APIError as e:
            logger.warning(f"API error for {effective_model}: {e}")
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        structured_response = self._parse_openai_response(response)
        structured_response.latency_ms = latency_ms
        if not structured_response.model_name:
            structured_response.model_name = effective_model
        logger.debug(f"Received response from {effective_model} in {latency_ms:.2f}ms. Usage: {structured_response.token_usage}")
        return structured_response
