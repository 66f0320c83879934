"""portalcli: resilient async client for the admin portal REST API.

Exposes the high-level ApiClient facade together with the outcome types
callers match on.
"""

from portalcli.core.services.api_client import ApiClient
from portalcli.domain.models.call import CallOutcome, ErrorKind, Failure, Success

__all__ = ["ApiClient", "CallOutcome", "ErrorKind", "Failure", "Success"]
