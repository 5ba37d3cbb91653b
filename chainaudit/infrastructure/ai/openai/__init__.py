"""OpenAI-compatible (OpenRouter) completion client."""
