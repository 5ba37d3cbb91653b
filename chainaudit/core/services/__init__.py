"""Orchestration services: AI ensemble, registry, factory, fallback and health."""
