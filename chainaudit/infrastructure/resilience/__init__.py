"""Rate limiting and retry helpers for AI provider calls."""
