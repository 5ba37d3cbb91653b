"""Per-platform analyzer implementations."""
