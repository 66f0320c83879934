"""Token lifecycle management.

Decides whether the stored access token is still usable, exchanges the
refresh token for a new pair, and runs the login/register/logout flows
against the remote auth endpoints. Concurrent refreshes collapse into one
in-flight exchange shared by every waiter.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt

from portalcli.domain.events.api_events import TokenRefreshed
from portalcli.domain.exceptions import AuthenticationError
from portalcli.domain.interfaces.credential_store import CredentialStore
from portalcli.domain.models.auth import AuthEndpoints, CredentialPair, Principal, development_principal
from portalcli.domain.models.common import AccessToken, RefreshToken, TokenClaims
from portalcli.infrastructure.monitoring.telemetry import TelemetryHook

logger = logging.getLogger(__name__)

# Logout notification is best effort; don't hold the caller for the full request timeout
LOGOUT_NOTIFY_TIMEOUT_S = 5.0


def decode_claims(token: str) -> TokenClaims:
    """Decodes a JWT payload without verifying its signature.

    The client is not the token's audience and holds no signing key; it only
    reads the expiry and identity claims.

    Raises:
        jwt.PyJWTError: If the token is not a well-formed JWT.
    """
    return TokenClaims(jwt.decode(
        token,
        options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
    ))


def _pair_from_body(body: Any, fallback_refresh: Optional[str] = None) -> CredentialPair:
    """Reads a token response ({access_token, refresh_token} or camelCase).

    Raises:
        ValueError: If no access token (or no refresh token to keep) is present.
    """
    if not isinstance(body, dict):
        raise ValueError("Token response is not a JSON object")
    access = body.get("access_token") or body.get("accessToken")
    refresh = body.get("refresh_token") or body.get("refreshToken") or fallback_refresh
    if not access or not refresh:
        raise ValueError("Token response is missing access_token or refresh_token")
    return CredentialPair(access_token=AccessToken(str(access)), refresh_token=RefreshToken(str(refresh)))


class TokenLifecycleManager:
    """Owns the session's credential pair and its transitions."""

    def __init__(
        self,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        endpoints: AuthEndpoints = AuthEndpoints(),
        leeway_s: float = 0,
        dev_login_fallback: bool = False,
        telemetry: Optional[TelemetryHook] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the manager.

        Args:
            store: Where the credential pair and principal are persisted.
            http_client: Client bound to the service base URL.
            endpoints: Paths of the auth endpoints.
            leeway_s: Treat tokens expiring within this many seconds as stale.
            dev_login_fallback: On login failure, store a synthesized
                development principal instead of raising. Never enable in
                production.
            telemetry: Receives TokenRefreshed events.
            clock: Source of the current unix time.
        """
        self.store = store
        self.endpoints = endpoints
        self.leeway_s = leeway_s
        self.dev_login_fallback = dev_login_fallback
        self._http = http_client
        self._telemetry = telemetry
        self._clock = clock
        self._refresh_task: Optional["asyncio.Task[bool]"] = None
        # Bumped on every login/logout; an in-flight refresh started under an
        # older session must not write its result.
        self._generation = 0
        self.refresh_count = 0

        if dev_login_fallback:
            logger.warning("Development login fallback is ENABLED: failed logins will create a local session.")

    # --- Token inspection ---

    def current_access_token(self) -> Optional[AccessToken]:
        pair = self.store.load()
        return pair.access_token if pair else None

    def is_usable(self) -> bool:
        """True when a stored access token exists and has not expired.

        Never raises: a missing pair or an undecodable token is unusable.
        Tokens without an 'exp' claim do not expire.
        """
        token = self.current_access_token()
        if not token:
            return False
        try:
            claims = decode_claims(token)
        except jwt.PyJWTError as e:
            logger.warning(f"Stored access token could not be decoded: {e}")
            return False
        expiration = claims.get("exp")
        if expiration is None:
            return True
        try:
            return float(expiration) > self._clock() + self.leeway_s
        except (TypeError, ValueError):
            logger.warning(f"Stored access token has a malformed exp claim: {expiration!r}")
            return False

    def current_principal(self) -> Optional[Principal]:
        """The cached principal, re-derived from the access token when missing."""
        principal = self.store.load_principal()
        if principal is not None:
            return principal
        token = self.current_access_token()
        if not token:
            return None
        try:
            principal = Principal.from_claims(decode_claims(token))
        except (jwt.PyJWTError, ValueError) as e:
            logger.warning(f"Could not derive principal from access token: {e}")
            return None
        self.store.save_principal(principal)
        return principal

    # --- Refresh ---

    async def refresh(self) -> bool:
        """Exchanges the refresh token for a new credential pair.

        Callers arriving while an exchange is in flight share its result.
        On failure the stored pair is left untouched.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._exchange_refresh_token())
        else:
            logger.debug("Joining in-flight token refresh.")
        # shield: one waiter being cancelled must not cancel the shared exchange
        return await asyncio.shield(self._refresh_task)

    async def _exchange_refresh_token(self) -> bool:
        generation = self._generation
        pair = self.store.load()
        if pair is None or not pair.refresh_token:
            logger.info("Token refresh skipped: no refresh token stored.")
            return False

        self.refresh_count += 1
        logger.info("Attempting to refresh access token.")
        try:
            response = await self._http.post(
                self.endpoints.refresh, json={"refresh_token": pair.refresh_token}
            )
        except httpx.RequestError as e:
            logger.warning(f"Token refresh failed: {type(e).__name__}: {e}")
            return self._refresh_result(False)

        if not response.is_success:
            logger.warning(f"Token refresh rejected with status {response.status_code}.")
            return self._refresh_result(False)

        try:
            new_pair = _pair_from_body(response.json(), fallback_refresh=pair.refresh_token)
        except ValueError as e:
            logger.warning(f"Token refresh returned an unusable body: {e}")
            return self._refresh_result(False)

        if generation != self._generation:
            logger.info("Discarding refreshed tokens: the session changed while refreshing.")
            return self._refresh_result(False)

        self._store_session(new_pair)
        logger.info("Token refresh successful.")
        return self._refresh_result(True)

    def _refresh_result(self, succeeded: bool) -> bool:
        if self._telemetry:
            self._telemetry.dispatch(TokenRefreshed(succeeded=succeeded))
        return succeeded

    # --- Session transitions ---

    def _store_session(self, pair: CredentialPair) -> Optional[Principal]:
        """Saves a new pair and the principal decoded from it.

        A token without a readable identity drops any previously cached
        principal so it never outlives the pair it was decoded from.
        """
        try:
            principal: Optional[Principal] = Principal.from_claims(decode_claims(pair.access_token))
        except (jwt.PyJWTError, ValueError) as e:
            logger.warning(f"Access token carries no readable identity: {e}")
            principal = None
        if principal is None:
            self.store.clear()
        self.store.save(pair)
        if principal is not None:
            self.store.save_principal(principal)
        return principal

    async def _exchange_credentials(self, endpoint: str, payload: Dict[str, Any]) -> Principal:
        try:
            response = await self._http.post(endpoint, json=payload)
        except httpx.RequestError as e:
            raise AuthenticationError(f"Could not reach {endpoint}: {e}") from e

        if response.status_code in (400, 401, 403):
            raise AuthenticationError("Invalid credentials", status=response.status_code)
        if not response.is_success:
            raise AuthenticationError(
                f"Authentication service returned {response.status_code}", status=response.status_code
            )

        try:
            pair = _pair_from_body(response.json())
            principal = Principal.from_claims(decode_claims(pair.access_token))
        except (ValueError, jwt.PyJWTError) as e:
            raise AuthenticationError(f"Malformed token response: {e}") from e

        self._generation += 1
        self.store.clear()
        self.store.save(pair)
        self.store.save_principal(principal)
        return principal

    async def login(self, identifier: str, secret: str) -> Principal:
        """Exchanges user credentials for a session and returns its principal.

        Raises:
            AuthenticationError: If the exchange fails and the development
                fallback is disabled.
        """
        logger.info(f"Login attempt for user '{identifier}'.")
        try:
            principal = await self._exchange_credentials(
                self.endpoints.login, {"username": identifier, "password": secret}
            )
        except AuthenticationError as e:
            if not self.dev_login_fallback:
                logger.error(f"Login failed for user '{identifier}': {e}")
                raise
            logger.warning(
                f"Login failed for user '{identifier}' ({e}); using development principal "
                "because the development login fallback is enabled."
            )
            principal = development_principal(identifier)
            self._generation += 1
            self.store.clear()
            self.store.save_principal(principal)
            return principal

        logger.info(f"Login successful for user '{identifier}'.")
        return principal

    async def register(self, payload: Dict[str, Any]) -> Principal:
        """Creates an account and stores the session the service returns.

        Raises:
            AuthenticationError: If registration fails.
        """
        logger.info("Registration attempt.")
        principal = await self._exchange_credentials(self.endpoints.register, payload)
        logger.info(f"Registration successful for '{principal.name}'.")
        return principal

    async def request_password_reset(self, identifier: str) -> bool:
        """Asks the service to start a password reset. Never sends a bearer token."""
        try:
            response = await self._http.post(self.endpoints.reset_password, json={"username": identifier})
        except httpx.RequestError as e:
            logger.warning(f"Password reset request failed: {e}")
            return False
        return response.is_success

    async def logout(self) -> None:
        """Clears the local session, then best-effort notifies the service.

        Idempotent and never raises.
        """
        pair = self.store.load()
        self._generation += 1
        self.store.clear()
        logger.info("Local session cleared.")
        if pair is None:
            return

        try:
            await self._http.post(
                self.endpoints.logout,
                json={},
                headers={"Authorization": f"Bearer {pair.access_token}"},
                timeout=LOGOUT_NOTIFY_TIMEOUT_S,
            )
        except httpx.RequestError as e:
            logger.warning(f"Error calling logout endpoint (ignored): {e}")
