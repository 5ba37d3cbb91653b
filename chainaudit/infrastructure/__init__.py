"""Infrastructure adapters: external tools, AI providers, config, logging and CLI."""
