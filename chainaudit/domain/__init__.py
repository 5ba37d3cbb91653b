"""Domain layer: platform-neutral models, ports and events."""
