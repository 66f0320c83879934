"""Exception hierarchy for the portal client.

The request pipeline reports remote failures as Failure outcomes rather
than raising; these exceptions surface through Failure.raise_for_error(),
the login/register flows, and configuration loading.
"""

from typing import Optional


class PortalClientError(Exception):
    """Base class for every error raised by portalcli."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class ConfigurationError(PortalClientError):
    """Raised when required settings are missing or malformed."""


# --- Authentication ---

class AuthenticationError(PortalClientError):
    """Raised when credentials could not be exchanged for a session."""


class AuthenticationRequiredError(AuthenticationError):
    """No usable credential exists and none could be obtained."""


class AuthenticationExpiredError(AuthenticationError):
    """The session could not be refreshed, or was still rejected after refresh."""


# --- Transport and remote errors ---

class NetworkError(PortalClientError):
    """Connection failure or timeout."""


class ServerError(PortalClientError):
    """The remote service answered with a 5xx status."""


class ClientError(PortalClientError):
    """The remote service rejected the request with a 4xx status other than 401."""


class MaxRetryError(NetworkError, ServerError):
    """Exception raised when the retry budget is spent on transient failures.

    Catchable as either NetworkError or ServerError, whichever kept failing.
    """

    def __init__(self, message: str, attempts: int, status: Optional[int] = None):
        self.attempts = attempts
        self.retries = max(attempts - 1, 0)
        super().__init__(f"Max retries ({self.retries}) exceeded. Last error: {message}", status=status)
