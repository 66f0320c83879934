"""Interface for local credential persistence.

Defines the contract for storing the active CredentialPair and the
Principal derived from it. Implementations never touch the network and
never validate token shape.
"""

import abc
from typing import Optional

from ..models.auth import CredentialPair, Principal
from ..models.common import StorageKey

CREDENTIALS_KEY = StorageKey("portalcli.credentials")
PRINCIPAL_KEY = StorageKey("portalcli.principal")


class CredentialStore(abc.ABC):
    """Abstract Base Class for the durable session record."""

    @abc.abstractmethod
    def save(self, pair: CredentialPair) -> None:
        """Replaces the stored credential pair wholesale.

        Args:
            pair: The new access/refresh token couple.
        """
        pass

    @abc.abstractmethod
    def load(self) -> Optional[CredentialPair]:
        """Returns the stored credential pair, or None when logged out."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Removes both the credential pair and the principal.

        Must be idempotent: clearing an empty store is not an error.
        """
        pass

    @abc.abstractmethod
    def save_principal(self, principal: Principal) -> None:
        """Caches the principal decoded from the current access token."""
        pass

    @abc.abstractmethod
    def load_principal(self) -> Optional[Principal]:
        """Returns the cached principal, or None."""
        pass
