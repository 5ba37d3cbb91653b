"""Domain events raised while analyses are retried or degraded."""
