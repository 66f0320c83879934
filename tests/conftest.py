import json
import os
import random
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import jwt
import pytest
import pytest_asyncio
from typer.testing import CliRunner

from portalcli.core.services.token_manager import TokenLifecycleManager
from portalcli.domain.models.auth import AuthEndpoints, CredentialPair
from portalcli.domain.models.call import RetryPolicy
from portalcli.infrastructure.config import settings
from portalcli.infrastructure.http.request_pipeline import ClientContext, RequestPipeline
from portalcli.infrastructure.monitoring.telemetry import TelemetryHook
from portalcli.infrastructure.resilience.mock_fallback import MockFallbackResolver
from portalcli.infrastructure.storage.credential_store import InMemoryCredentialStore

BASE_URL = "https://portal.test"
SIGNING_KEY = "test-signing-key"

Handler = Callable[[httpx.Request], httpx.Response]


def make_token(sub: str = "user-1", expires_in: Optional[float] = 3600, **claims: Any) -> str:
    """Mints an HS256 JWT; expires_in=None omits the exp claim."""
    payload: Dict[str, Any] = {"sub": sub, "name": claims.pop("name", "Test User"), **claims}
    if expires_in is not None:
        payload["exp"] = int(time.time() + expires_in)
    return jwt.encode(payload, SIGNING_KEY, algorithm="HS256")


def json_response(status: int, body: Any = None) -> httpx.Response:
    return httpx.Response(status, json=body if body is not None else {})


def token_body(access: str, refresh: Optional[str] = "refresh-2") -> Dict[str, str]:
    body = {"access_token": access}
    if refresh is not None:
        body["refresh_token"] = refresh
    return body


class FakeSleep:
    """Records backoff delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds * 1000)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Handler):
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def bodies(self, path: str) -> List[Any]:
        return [json.loads(r.content or b"null") for r in self.requests if r.url.path == path]


class PipelineHarness:
    """Wires a RequestPipeline to a RecordingTransport and an in-memory store."""

    def __init__(
        self,
        handler: Handler,
        policy: RetryPolicy = RetryPolicy(max_retries=3, base_delay_ms=1000),
        mock_fallback: bool = False,
        on_session_expired: Optional[Callable[[], Any]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.transport = RecordingTransport(handler)
        self.http = httpx.AsyncClient(base_url=BASE_URL, transport=self.transport)
        self.store = InMemoryCredentialStore()
        self.telemetry = TelemetryHook()
        self.sleep = FakeSleep()
        self.token_manager = TokenLifecycleManager(self.store, self.http, telemetry=self.telemetry)
        self.context = ClientContext(
            store=self.store,
            token_manager=self.token_manager,
            policy=policy,
            telemetry=self.telemetry,
            fallback=MockFallbackResolver(mock_fallback),
            endpoints=AuthEndpoints(),
            on_session_expired=on_session_expired,
        )
        self.pipeline = RequestPipeline(
            self.http, self.context, sleep=sleep or self.sleep, rng=random.Random(42)
        )

    def sign_in(self, access: Optional[str] = None, refresh: str = "refresh-1") -> CredentialPair:
        pair = CredentialPair(access_token=access or make_token(), refresh_token=refresh)
        self.store.save(pair)
        return pair

    async def aclose(self) -> None:
        await self.http.aclose()


@pytest_asyncio.fixture
async def harness_factory():
    """Builds PipelineHarness instances and closes their clients afterwards."""
    created: List[PipelineHarness] = []

    def factory(handler: Handler, **kwargs: Any) -> PipelineHarness:
        harness = PipelineHarness(handler, **kwargs)
        created.append(harness)
        return harness

    yield factory

    for harness in created:
        await harness.aclose()


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_configuration(monkeypatch, tmp_path):
    """Keeps real config files and PORTAL_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith("PORTAL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(settings, "find_dotenv_path", lambda: None)
    settings.reset_configuration()
    settings.clear_test_config()
    settings.load_configuration(config_file=tmp_path / "missing-config.yaml")
    yield
    settings.reset_configuration()
    settings.clear_test_config()


@pytest.fixture
def mint_token():
    """Returns make_token so tests can mint JWTs without importing conftest."""
    return make_token
