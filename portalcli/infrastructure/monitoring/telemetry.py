"""Request-timing telemetry.

Fans TelemetryEvents out to registered start/finish/error callbacks and
keeps the last RING_SIZE events in memory for inspection.
"""

import logging
from collections import deque
from typing import Callable, Deque, List, Optional

from portalcli.domain.events.api_events import DomainEvent, TelemetryEvent

logger = logging.getLogger(__name__)

RING_SIZE = 100

TelemetryCallback = Callable[[TelemetryEvent], None]


class TelemetryHook:
    """Collects per-attempt request events and notifies listeners."""

    def __init__(
        self,
        on_request_start: Optional[TelemetryCallback] = None,
        on_request_finish: Optional[TelemetryCallback] = None,
        on_request_error: Optional[TelemetryCallback] = None,
        ring_size: int = RING_SIZE,
    ):
        self._start_listeners: List[TelemetryCallback] = []
        self._finish_listeners: List[TelemetryCallback] = []
        self._error_listeners: List[TelemetryCallback] = []
        self._events: Deque[TelemetryEvent] = deque(maxlen=ring_size)

        if on_request_start:
            self._start_listeners.append(on_request_start)
        if on_request_finish:
            self._finish_listeners.append(on_request_finish)
        if on_request_error:
            self._error_listeners.append(on_request_error)

    # --- Registration ---

    def add_start_listener(self, callback: TelemetryCallback) -> None:
        self._start_listeners.append(callback)

    def add_finish_listener(self, callback: TelemetryCallback) -> None:
        self._finish_listeners.append(callback)

    def add_error_listener(self, callback: TelemetryCallback) -> None:
        self._error_listeners.append(callback)

    # --- Emission ---

    def request_started(self, event: TelemetryEvent) -> None:
        self._notify(self._start_listeners, event)

    def request_finished(self, event: TelemetryEvent) -> None:
        self._events.append(event)
        self._notify(self._finish_listeners, event)

    def request_failed(self, event: TelemetryEvent) -> None:
        self._events.append(event)
        self._notify(self._error_listeners, event)

    def dispatch(self, event: DomainEvent) -> None:
        """Records a non-timing domain event (retries, refreshes, fallbacks)."""
        logger.debug(f"EVENT: {event}")

    def recent(self) -> List[TelemetryEvent]:
        """Snapshot of the ring buffer, oldest first."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    @staticmethod
    def _notify(listeners: List[TelemetryCallback], event: TelemetryEvent) -> None:
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                # A broken listener must not fail the call it observes
                logger.warning(f"Telemetry listener {listener!r} raised: {e}", exc_info=True)
