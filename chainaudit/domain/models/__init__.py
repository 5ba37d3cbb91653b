"""Data shapes shared by analyzers, the AI ensemble and the orchestration services."""
