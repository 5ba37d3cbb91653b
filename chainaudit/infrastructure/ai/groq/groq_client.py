"""Concrete implementation of the AIModel interface using the Groq API.

Hides the specifics of the Groq client library and translates requests/
responses between the domain model and the Groq API format.
"""

import logging
import os
import asyncio
import time
from typing import Any, List, Optional

from groq import Groq as GroqSDKClient, APIError, AuthenticationError, RateLimitError

from chainaudit.domain.interfaces.ai_model import AIModel
from chainaudit.domain.models.ai import ChatMessage, StructuredAIResponse
from chainaudit.domain.models.common import TokenUsage

logger = logging.getLogger(__name__)

class GroqClient(AIModel):
    """Groq implementation of the AIModel interface."""

    DEFAULT_MODEL = "llama-3.3-70b-versatile"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, timeout: float = 120.0):
        """Initializes the Groq client.

        Args:
            api_key: Groq API key. Reads from GROQ_API_KEY env var if None.
            model: The default Groq model to use.
            timeout: Per-request timeout in seconds.
        """
        effective_api_key = api_key or os.getenv("GROQ_API_KEY")
        if not effective_api_key:
            raise ValueError("Groq API key not provided and not found in environment variables.")

        try:
            self.client = GroqSDKClient(api_key=effective_api_key, timeout=timeout)
        except Exception as e:
            logger.error(f"Failed to initialize Groq client: {e}", exc_info=True)
            raise RuntimeError(f"Groq client initialization failed: {e}") from e

        self.model = model or self.DEFAULT_MODEL
        logger.info(f"GroqClient initialized for model: {self.model}")

    def _parse_groq_response(self, response: Any) -> StructuredAIResponse:
        """Parses the response object from Groq API call."""
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
                model_name=getattr(response, "model", None),
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse Groq response structure: {e}")
            raise ValueError(f"Invalid response structure from Groq: {e}") from e

    async def send_messages(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> StructuredAIResponse:
        """Sends messages to the Groq model asynchronously."""
        effective_model = model or self.model
        logger.debug(f"Sending {len(messages)} messages to Groq model: {effective_model}")
        request_kwargs = {"model": effective_model, "messages": messages}
        if max_tokens is not None:
            request_kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        start_time = time.perf_counter()
        try:
            response = await asyncio.to_thread(self.client.chat.completions.create, **request_kwargs)
        except AuthenticationError as e:
            logger.error(f"Groq Authentication Error: {e}")
            raise
        except RateLimitError as e:
            logger.warning(f"Groq Rate Limit Error encountered: {e}")
            raise
        except APIError as e:
            logger.warning(f"Groq API Error encountered: {e}")
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        structured_response = self._parse_groq_response(response)
        structured_response.latency_ms = latency_ms
        if not structured_response.model_name:
            structured_response.model_name = effective_model
        return structured_response
