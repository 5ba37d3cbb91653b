"""AI provider clients."""
