"""Concrete implementations of the CredentialStore interface.

DiskCredentialStore keeps the session in a diskcache.Cache directory so it
survives process restarts; InMemoryCredentialStore is used for ephemeral
sessions and tests.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import diskcache as dc

from portalcli.domain.interfaces.credential_store import (
    CREDENTIALS_KEY,
    PRINCIPAL_KEY,
    CredentialStore,
)
from portalcli.domain.models.auth import CredentialPair, Principal
from portalcli.infrastructure.config.settings import DEFAULT_CREDENTIAL_DIR

logger = logging.getLogger(__name__)


class DiskCredentialStore(CredentialStore):
    """Credential store backed by a diskcache directory."""

    def __init__(self, directory: Union[str, Path] = DEFAULT_CREDENTIAL_DIR):
        """Opens (creating if needed) the cache directory.

        Args:
            directory: Where the session records live.
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        # No default expiry: the session lives until logout or refresh failure
        self._cache = dc.Cache(str(self.directory), timeout=1)
        logger.debug(f"Credential store opened at: {self._cache.directory}")

    def save(self, pair: CredentialPair) -> None:
        self._cache.set(CREDENTIALS_KEY, pair.to_dict())
        logger.debug("Stored credential pair.")

    def load(self) -> Optional[CredentialPair]:
        record = self._cache.get(CREDENTIALS_KEY)
        if record is None:
            return None
        try:
            return CredentialPair.from_dict(record)
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed credential record: {e}")
            return None

    def clear(self) -> None:
        # Both records go in one transaction so no reader sees half a session
        with self._cache.transact():
            self._cache.delete(CREDENTIALS_KEY)
            self._cache.delete(PRINCIPAL_KEY)
        logger.debug("Cleared credential store.")

    def save_principal(self, principal: Principal) -> None:
        self._cache.set(PRINCIPAL_KEY, principal.to_dict())

    def load_principal(self) -> Optional[Principal]:
        record = self._cache.get(PRINCIPAL_KEY)
        if record is None:
            return None
        try:
            return Principal.from_dict(record)
        except (KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed principal record: {e}")
            return None

    def close(self) -> None:
        self._cache.close()


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store."""

    def __init__(self):
        self._records: Dict[str, Any] = {}

    def save(self, pair: CredentialPair) -> None:
        self._records[CREDENTIALS_KEY] = pair

    def load(self) -> Optional[CredentialPair]:
        return self._records.get(CREDENTIALS_KEY)

    def clear(self) -> None:
        self._records.pop(CREDENTIALS_KEY, None)
        self._records.pop(PRINCIPAL_KEY, None)

    def save_principal(self, principal: Principal) -> None:
        self._records[PRINCIPAL_KEY] = principal

    def load_principal(self) -> Optional[Principal]:
        return self._records.get(PRINCIPAL_KEY)
