"""Mock fallback policy.

Decides whether a failed call may be answered with a caller-supplied
substitute value. The switch is set explicitly by the host (configuration
or constructor), never guessed from the environment.
"""

import logging

logger = logging.getLogger(__name__)


class MockFallbackResolver:
    """Explicit on/off switch for degraded successes."""

    def __init__(self, permitted: bool = False):
        self._permitted = bool(permitted)
        if self._permitted:
            logger.info("Mock fallback enabled: failed calls with a substitute value will return degraded data.")

    def permitted(self) -> bool:
        return self._permitted
