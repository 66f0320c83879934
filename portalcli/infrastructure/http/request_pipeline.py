"""Request pipeline: executes one logical API call end to end.

Checks the session before dispatch, attaches the bearer token, retries
transient failures with backoff, runs the single 401 refresh-and-retry
flow, and finally lets the mock fallback answer a failed call. Remote
failures come back as Failure outcomes; nothing here raises for them.
"""

import asyncio
import inspect
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx

from portalcli.core.services.token_manager import TokenLifecycleManager
from portalcli.domain.events.api_events import (
    MockFallbackUsed,
    RetryScheduled,
    SessionExpired,
    TelemetryEvent,
)
from portalcli.domain.interfaces.credential_store import CredentialStore
from portalcli.domain.models.auth import AuthEndpoints
from portalcli.domain.models.call import (
    NO_MOCK,
    AttemptContext,
    AttemptResult,
    CallOutcome,
    ErrorKind,
    Failure,
    RetryPolicy,
    Success,
)
from portalcli.domain.models.common import Endpoint, HttpMethod, normalize_method
from portalcli.infrastructure.http.query_builder import QueryParams, with_query
from portalcli.infrastructure.monitoring.logger_setup import redact
from portalcli.infrastructure.monitoring.telemetry import TelemetryHook
from portalcli.infrastructure.resilience.backoff import decide
from portalcli.infrastructure.resilience.mock_fallback import MockFallbackResolver

logger = logging.getLogger(__name__)

SessionExpiredCallback = Callable[[], Union[None, Awaitable[None]]]
Params = Union[QueryParams, Dict[str, Any], None]


@dataclass
class ClientContext:
    """Collaborators shared by every call made through one pipeline."""
    store: CredentialStore
    token_manager: TokenLifecycleManager
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    telemetry: TelemetryHook = field(default_factory=TelemetryHook)
    fallback: MockFallbackResolver = field(default_factory=MockFallbackResolver)
    endpoints: AuthEndpoints = field(default_factory=AuthEndpoints)
    on_session_expired: Optional[SessionExpiredCallback] = None


@dataclass
class _Attempt:
    """Result of one dispatch: a response or a transport error."""
    response: Optional[httpx.Response] = None
    error: Optional[httpx.RequestError] = None

    @property
    def result(self) -> AttemptResult:
        if self.response is not None:
            return AttemptResult(status=self.response.status_code)
        return AttemptResult(transport_error=f"{type(self.error).__name__}: {self.error}")


def _decode_payload(response: httpx.Response) -> Any:
    """JSON bodies are parsed, empty bodies become {}, anything else is text."""
    if not response.content:
        return {}
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Response declared JSON but could not be parsed ({len(response.content)} bytes).")
    return response.text


def _error_detail(response: httpx.Response) -> str:
    """The service's 'message' field when present, else the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


class RequestPipeline:
    """Orchestrates single logical calls against the remote service."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        context: ClientContext,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the pipeline.

        Args:
            http_client: Client bound to the service base URL, carrying the
                per-dispatch timeout.
            context: Store, token manager, policy, telemetry and fallback.
            sleep: Awaitable used for backoff delays (seconds).
            rng: Random source for backoff jitter.
        """
        self._http = http_client
        self.context = context
        self._sleep = sleep
        self._rng = rng
        logger.debug(
            f"RequestPipeline initialized: max_retries={context.policy.max_retries}, "
            f"base_delay={context.policy.base_delay_ms}ms, mock_fallback={context.fallback.permitted()}"
        )

    @property
    def token_manager(self) -> TokenLifecycleManager:
        return self.context.token_manager

    async def execute(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        requires_auth: bool = True,
        mock_value: Any = NO_MOCK,
        params: Params = None,
    ) -> CallOutcome:
        """Runs one logical call and returns its outcome.

        Args:
            endpoint: Path relative to the base URL.
            method: HTTP verb.
            body: JSON-serializable request body, or None.
            requires_auth: Fail fast when no usable session can be obtained.
            mock_value: Substitute payload returned (as a degraded success)
                if the call fails and mock fallback is permitted.
            params: Query parameters (mapping or ordered pairs).

        Returns:
            Success or Failure. Cancelling the awaiting task cancels any
            in-flight request or backoff sleep.
        """
        verb = normalize_method(method)
        path = Endpoint(endpoint)
        attempt_context = AttemptContext()
        logger.debug(
            f"[{attempt_context.request_id}] {verb} {path} requires_auth={requires_auth} "
            f"body={redact(body) if body is not None else None}"
        )

        outcome = await self._run(path, verb, body, requires_auth, params, attempt_context)

        if isinstance(outcome, Failure) and mock_value is not NO_MOCK:
            return self._substitute(path, verb, outcome, mock_value, attempt_context)
        return outcome

    # --- Call phases ---

    async def _run(
        self,
        endpoint: Endpoint,
        method: HttpMethod,
        body: Any,
        requires_auth: bool,
        params: Params,
        attempt_context: AttemptContext,
    ) -> CallOutcome:
        if requires_auth and not self.token_manager.is_usable():
            logger.info(f"[{attempt_context.request_id}] Access token stale or missing; refreshing before dispatch.")
            await self.token_manager.refresh()
            if not self.token_manager.is_usable():
                logger.warning(f"[{attempt_context.request_id}] No usable credential for {method} {endpoint}.")
                return Failure(ErrorKind.AUTHENTICATION_REQUIRED, "Authentication required")

        headers, bearer_sent = self._build_headers(endpoint, body)

        while True:
            attempt = await self._dispatch(endpoint, method, body, params, headers, attempt_context)
            result = attempt.result

            if result.is_unauthorized:
                return await self._handle_unauthorized(
                    endpoint, method, body, params, bearer_sent, attempt, attempt_context
                )

            if attempt.response is not None and not result.is_server_error:
                return self._interpret(attempt.response, attempt_context)

            decision = decide(result, attempt_context, self.context.policy, self._rng)
            if not decision.should_retry:
                return self._final_failure(attempt, attempt_context)

            self.context.telemetry.dispatch(RetryScheduled(
                endpoint=endpoint,
                attempt_number=attempt_context.retry_count + 1,
                delay_ms=decision.delay_ms,
                request_id=attempt_context.request_id,
            ))
            logger.warning(
                f"[{attempt_context.request_id}] {method} {endpoint} failed ({self._describe(attempt)}); "
                f"retry {attempt_context.retry_count + 1}/{self.context.policy.max_retries} "
                f"in {decision.delay_ms:.0f}ms"
            )
            await self._sleep(decision.delay_ms / 1000)
            attempt_context.next_retry()

    async def _handle_unauthorized(
        self,
        endpoint: Endpoint,
        method: HttpMethod,
        body: Any,
        params: Params,
        bearer_sent: bool,
        attempt: _Attempt,
        attempt_context: AttemptContext,
    ) -> CallOutcome:
        """The 401 flow: at most one refresh and one re-dispatch per call."""
        if self.context.endpoints.is_refresh_endpoint(endpoint):
            return await self._expire_session(endpoint, "Refresh token rejected", attempt_context)

        if not bearer_sent:
            # Nothing to refresh: the request carried no session
            return Failure(ErrorKind.AUTHENTICATION_REQUIRED, _error_detail(attempt.response), status=401)

        if attempt_context.refreshed:
            return await self._expire_session(endpoint, "Still unauthorized after refresh", attempt_context)

        attempt_context.refreshed = True
        logger.info(f"[{attempt_context.request_id}] {method} {endpoint} returned 401; refreshing token once.")
        if not await self.token_manager.refresh():
            return await self._expire_session(endpoint, "Token refresh failed", attempt_context)

        headers, _ = self._build_headers(endpoint, body)
        retry = await self._dispatch(endpoint, method, body, params, headers, attempt_context)
        if retry.result.is_unauthorized:
            return await self._expire_session(endpoint, "Still unauthorized after refresh", attempt_context)
        if retry.response is None:
            return Failure(ErrorKind.NETWORK_ERROR, self._describe(retry), attempts=attempt_context.retry_count + 1)
        return self._interpret(retry.response, attempt_context)

    async def _expire_session(self, endpoint: Endpoint, reason: str, attempt_context: AttemptContext) -> Failure:
        """Tears the local session down and reports AUTHENTICATION_EXPIRED."""
        logger.warning(f"[{attempt_context.request_id}] Session expired on {endpoint}: {reason}")
        await self.token_manager.logout()
        self.context.telemetry.dispatch(SessionExpired(
            endpoint=endpoint, reason=reason, request_id=attempt_context.request_id
        ))
        callback = self.context.on_session_expired
        if callback is not None:
            result = callback()
            if inspect.isawaitable(result):
                await result
        return Failure(ErrorKind.AUTHENTICATION_EXPIRED, f"Session expired. Please login again. ({reason})", status=401)

    # --- Dispatch ---

    def _build_headers(self, endpoint: Endpoint, body: Any) -> Tuple[Dict[str, str], bool]:
        """Headers for one dispatch, and whether a bearer token was attached."""
        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        if self.context.endpoints.is_auth_endpoint(endpoint):
            return headers, False
        if not self.token_manager.is_usable():
            # A known-stale token would only turn into a misleading 401
            return headers, False
        token = self.token_manager.current_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
            return headers, True
        return headers, False

    async def _dispatch(
        self,
        endpoint: Endpoint,
        method: HttpMethod,
        body: Any,
        params: Params,
        headers: Dict[str, str],
        attempt_context: AttemptContext,
    ) -> _Attempt:
        telemetry = self.context.telemetry
        telemetry.request_started(TelemetryEvent(
            endpoint=endpoint, method=method, status=None, duration_ms=0.0,
            success=False, request_id=attempt_context.request_id,
        ))
        started = time.perf_counter()
        try:
            response = await self._http.request(
                method,
                with_query(endpoint, params),
                json=body,
                headers=headers,
            )
        except httpx.RequestError as e:
            duration_ms = (time.perf_counter() - started) * 1000
            telemetry.request_failed(TelemetryEvent(
                endpoint=endpoint, method=method, status=None, duration_ms=duration_ms,
                success=False, request_id=attempt_context.request_id, error=type(e).__name__,
            ))
            return _Attempt(error=e)

        duration_ms = (time.perf_counter() - started) * 1000
        telemetry.request_finished(TelemetryEvent(
            endpoint=endpoint, method=method, status=response.status_code, duration_ms=duration_ms,
            success=response.is_success, request_id=attempt_context.request_id,
        ))
        logger.debug(
            f"[{attempt_context.request_id}] {method} {endpoint} -> {response.status_code} in {duration_ms:.1f}ms"
        )
        return _Attempt(response=response)

    # --- Outcome mapping ---

    def _interpret(self, response: httpx.Response, attempt_context: AttemptContext) -> CallOutcome:
        status = response.status_code
        attempts = attempt_context.retry_count + 1
        if response.is_success:
            return Success(_decode_payload(response), status=status)
        if status >= 500:
            return Failure(ErrorKind.SERVER_ERROR, _error_detail(response), status=status, attempts=attempts)
        # 3xx (redirects are not followed) and 4xx other than 401
        return Failure(ErrorKind.CLIENT_ERROR, _error_detail(response), status=status, attempts=attempts)

    def _final_failure(self, attempt: _Attempt, attempt_context: AttemptContext) -> Failure:
        attempts = attempt_context.retry_count + 1
        status = attempt.response.status_code if attempt.response is not None else None
        detail = self._describe(attempt)
        if attempt_context.retry_count > 0:
            logger.error(f"[{attempt_context.request_id}] Giving up after {attempts} attempts: {detail}")
            return Failure(ErrorKind.RETRY_EXHAUSTED, detail, status=status, attempts=attempts)
        kind = ErrorKind.SERVER_ERROR if status is not None else ErrorKind.NETWORK_ERROR
        return Failure(kind, detail, status=status, attempts=attempts)

    @staticmethod
    def _describe(attempt: _Attempt) -> str:
        if attempt.response is not None:
            return f"HTTP {attempt.response.status_code}: {_error_detail(attempt.response)}"
        return attempt.result.transport_error or "transport error"

    def _substitute(
        self,
        endpoint: Endpoint,
        method: HttpMethod,
        failure: Failure,
        mock_value: Any,
        attempt_context: AttemptContext,
    ) -> CallOutcome:
        if not self.context.fallback.permitted():
            return failure
        logger.warning(
            f"[{attempt_context.request_id}] Using mock data for {method} {endpoint} "
            f"after {failure.kind.value}: {failure.detail}"
        )
        self.context.telemetry.dispatch(MockFallbackUsed(
            endpoint=endpoint, reason=failure.kind.value, request_id=attempt_context.request_id
        ))
        self.context.telemetry.request_finished(TelemetryEvent(
            endpoint=endpoint, method=method, status=None, duration_ms=attempt_context.elapsed_ms(),
            success=True, degraded=True, request_id=attempt_context.request_id,
        ))
        return Success(mock_value, status=None, degraded=True)
