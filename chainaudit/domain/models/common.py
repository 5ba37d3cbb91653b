"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like platform identifiers, model
identifiers and prompts, keeping signatures readable and consistent.
"""

from typing import NewType, TypedDict

# === Core Value Objects ===

PlatformId = NewType("PlatformId", str)        # e.g. 'ethereum', 'cardano', 'sui'
FilePath = NewType("FilePath", str)            # Path or filename of a contract
ModelId = NewType("ModelId", str)              # AI model identifier, e.g. 'z-ai/glm-4.5-air:free'
PromptText = NewType("PromptText", str)        # Prompt sent to an AI model
MessageRole = NewType("MessageRole", str)      # 'system', 'user', 'assistant'

# Upper bound for a single contract accepted by an analyzer (10 MiB)
DEFAULT_MAX_CONTRACT_SIZE = 10 * 1024 * 1024
DEFAULT_ANALYSIS_TIMEOUT_S = 120.0
DEFAULT_HEALTH_CHECK_TIMEOUT_S = 5.0

# --- Structured Data ---
class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
