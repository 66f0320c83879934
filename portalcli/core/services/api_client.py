"""High-level API client for the admin portal.

Wraps the request pipeline with verb helpers and paginated listing, and
owns the HTTP connection pool. ApiClient.create() is the composition root
that wires store, token manager, policy, telemetry and fallback together.
"""

import logging
import random
from typing import Any, Mapping, Optional, Union

import httpx

from portalcli.core.services.token_manager import TokenLifecycleManager
from portalcli.domain.interfaces.credential_store import CredentialStore
from portalcli.domain.models.auth import AuthEndpoints, Principal
from portalcli.domain.models.call import NO_MOCK, CallOutcome, Page, RetryPolicy, Success
from portalcli.infrastructure.config.settings import ClientSettings
from portalcli.infrastructure.http.query_builder import PageOptions, build_query_params
from portalcli.infrastructure.http.request_pipeline import (
    ClientContext,
    Params,
    RequestPipeline,
    SessionExpiredCallback,
)
from portalcli.infrastructure.monitoring.telemetry import TelemetryHook
from portalcli.infrastructure.resilience.mock_fallback import MockFallbackResolver
from portalcli.infrastructure.storage.credential_store import DiskCredentialStore

logger = logging.getLogger(__name__)

USER_AGENT = "portalcli"


class ApiClient:
    """Verb-level facade over the RequestPipeline."""

    def __init__(
        self,
        pipeline: RequestPipeline,
        http_client: httpx.AsyncClient,
        owned_store: Optional[DiskCredentialStore] = None,
    ):
        self.pipeline = pipeline
        self._http = http_client
        # Only a store this client opened is closed with it
        self._owned_store = owned_store

    @classmethod
    def create(
        cls,
        settings: ClientSettings,
        store: Optional[CredentialStore] = None,
        telemetry: Optional[TelemetryHook] = None,
        on_session_expired: Optional[SessionExpiredCallback] = None,
        endpoints: AuthEndpoints = AuthEndpoints(),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
    ) -> "ApiClient":
        """Builds a fully wired client from settings.

        Args:
            settings: Resolved client configuration.
            store: Credential store (defaults to a disk store under
                settings.credential_dir).
            telemetry: Telemetry hook (a fresh one when omitted).
            on_session_expired: Called after the session is torn down.
            endpoints: Auth endpoint paths.
            transport: Optional httpx transport (e.g. httpx.MockTransport).
            rng: Random source for backoff jitter.
        """
        http_client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.timeout_s),
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )
        owned_store = None
        if store is None:
            store = owned_store = DiskCredentialStore(settings.credential_dir)
        telemetry = telemetry or TelemetryHook()
        token_manager = TokenLifecycleManager(
            store=store,
            http_client=http_client,
            endpoints=endpoints,
            leeway_s=settings.token_leeway_s,
            dev_login_fallback=settings.dev_login_fallback,
            telemetry=telemetry,
        )
        context = ClientContext(
            store=store,
            token_manager=token_manager,
            policy=RetryPolicy(max_retries=settings.max_retries, base_delay_ms=settings.base_delay_ms),
            telemetry=telemetry,
            fallback=MockFallbackResolver(settings.mock_fallback_permitted),
            endpoints=endpoints,
            on_session_expired=on_session_expired,
        )
        logger.info(f"ApiClient initialized for {settings.base_url}")
        return cls(RequestPipeline(http_client, context, rng=rng), http_client, owned_store=owned_store)

    # --- Lifecycle ---

    async def aclose(self) -> None:
        try:
            await self._http.aclose()
        finally:
            if self._owned_store is not None:
                self._owned_store.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Accessors ---

    @property
    def auth(self) -> TokenLifecycleManager:
        return self.pipeline.token_manager

    @property
    def telemetry(self) -> TelemetryHook:
        return self.pipeline.context.telemetry

    # --- Session convenience ---

    async def login(self, identifier: str, secret: str) -> Principal:
        return await self.auth.login(identifier, secret)

    async def logout(self) -> None:
        await self.auth.logout()

    async def current_user(self) -> CallOutcome:
        """Fetches the authenticated user's profile from the service."""
        return await self.get(self.pipeline.context.endpoints.me)

    # --- Verbs ---

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: Params = None,
        requires_auth: bool = True,
        mock_value: Any = NO_MOCK,
    ) -> CallOutcome:
        return await self.pipeline.execute(
            endpoint, method=method, body=body, requires_auth=requires_auth,
            mock_value=mock_value, params=params,
        )

    async def get(self, endpoint: str, params: Params = None, **kwargs: Any) -> CallOutcome:
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> CallOutcome:
        return await self.request("POST", endpoint, body=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs: Any) -> CallOutcome:
        return await self.request("PUT", endpoint, body=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs: Any) -> CallOutcome:
        return await self.request("PATCH", endpoint, body=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs: Any) -> CallOutcome:
        return await self.request("DELETE", endpoint, **kwargs)

    async def get_paginated(
        self,
        endpoint: str,
        options: Union[PageOptions, Mapping[str, Any], None] = None,
        mock_value: Any = NO_MOCK,
        requires_auth: bool = True,
    ) -> CallOutcome:
        """Fetches one page of a listing.

        A successful outcome carries a Page; a mock_value may be a Page or a
        raw page body.
        """
        params = build_query_params(options or PageOptions())
        outcome = await self.request(
            "GET", endpoint, params=params, requires_auth=requires_auth, mock_value=mock_value
        )
        if isinstance(outcome, Success) and isinstance(outcome.payload, dict):
            return Success(Page.from_payload(outcome.payload), status=outcome.status, degraded=outcome.degraded)
        return outcome
