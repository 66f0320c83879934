"""Domain Events related to API calls, sessions and resilience.

TelemetryEvent is handed to the request-timing callbacks; the remaining
events describe retries, refreshes and degraded results.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- Request Telemetry ---

@dataclass
class TelemetryEvent(DomainEvent):
    """Timing record for one dispatch attempt."""
    endpoint: str
    method: str
    status: Optional[int]
    duration_ms: float
    success: bool
    degraded: bool = False
    request_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


# --- Resilience Events ---

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    endpoint: str
    attempt_number: int
    delay_ms: float
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class MockFallbackUsed(DomainEvent):
    """Event triggered when a failed call was answered with a substitute value."""
    endpoint: str
    reason: str
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


# --- Session Events ---

@dataclass
class TokenRefreshed(DomainEvent):
    """Event triggered when the credential pair was replaced via refresh."""
    succeeded: bool
    timestamp: float = field(default_factory=time.time)


@dataclass
class SessionExpired(DomainEvent):
    """Event triggered when the local session was torn down after an auth failure."""
    endpoint: str
    reason: str
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
