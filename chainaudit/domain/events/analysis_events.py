"""Domain Events related to analysis attempts and graceful degradation.

Raised by the fallback service whenever an analysis attempt fails, is
retried, falls back to a lower-fidelity strategy or completes.
"""

from dataclasses import dataclass, field
import time
from typing import Optional

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

@dataclass
class AnalysisAttemptFailed(DomainEvent):
    """An analysis attempt ended with a PlatformError."""
    platform: str
    strategy: str
    attempt_number: int
    error_code: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """A transient failure will be retried after a delay."""
    platform: str
    attempt_number: int
    delay_seconds: float
    error_code: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class FallbackTriggered(DomainEvent):
    """Analysis degrades from one strategy to the next."""
    platform: str
    from_strategy: str
    to_strategy: str
    reason: str
    error_code: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class AnalysisCompleted(DomainEvent):
    """Final outcome of an analysis wrapped by the fallback service."""
    platform: str
    strategy: str
    degradation_level: str
    success: bool
    execution_time: float
    timestamp: float = field(default_factory=time.time)
