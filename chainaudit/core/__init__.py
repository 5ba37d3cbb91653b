"""Core orchestration layer."""
