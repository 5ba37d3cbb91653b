"""Interface for AI Language Models (LLMs).

Defines the single completion operation the ensemble relies on, so that
different providers (OpenRouter, Groq) can be mixed in one ensemble.
"""

import abc
from typing import List, Optional

from ..models.ai import ChatMessage, StructuredAIResponse


class AIModel(abc.ABC):
    """Abstract Base Class for AI language model interactions."""

    @abc.abstractmethod
    async def send_messages(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> StructuredAIResponse:
        """Sends a list of messages to the AI model asynchronously.

        Args:
            messages: The conversation to complete.
            model: Model identifier; the client's default when None.
            max_tokens: Upper bound on generated tokens.
            temperature: Sampling temperature.

        Returns:
            A StructuredAIResponse containing the AI's reply and metadata.

        Raises:
            Exception: Provider SDK errors (authentication, rate limit, API errors).
        """
        pass
