import json

import httpx
import pytest

from portalcli.core.services.api_client import USER_AGENT, ApiClient
from portalcli.domain.models.auth import CredentialPair
from portalcli.domain.models.call import ErrorKind, Page, Success
from portalcli.infrastructure.config.settings import ClientSettings
from portalcli.infrastructure.storage.credential_store import DiskCredentialStore, InMemoryCredentialStore

BASE_URL = "https://portal.test"


def _settings(tmp_path, **overrides):
    values = dict(base_url=BASE_URL, max_retries=0, base_delay_ms=1, credential_dir=tmp_path / "creds")
    values.update(overrides)
    return ClientSettings(**values)


@pytest.mark.asyncio
async def test_create_wires_a_working_client(tmp_path, mint_token):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": 3})

    store = InMemoryCredentialStore()
    store.save(CredentialPair(mint_token(), "r"))

    async with ApiClient.create(_settings(tmp_path), store=store, transport=httpx.MockTransport(handler)) as client:
        outcome = await client.get("/api/users/3")

    assert outcome == Success({"id": 3}, status=200)
    assert str(seen[0].url) == f"{BASE_URL}/api/users/3"
    assert seen[0].headers["user-agent"] == USER_AGENT


@pytest.mark.asyncio
async def test_default_store_is_on_disk_and_closed_with_client(tmp_path, mocker):
    client = ApiClient.create(_settings(tmp_path), transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert isinstance(client.auth.store, DiskCredentialStore)
    assert client.auth.store.directory == tmp_path / "creds"
    close_spy = mocker.spy(client.auth.store, "close")

    await client.aclose()

    close_spy.assert_called_once()


@pytest.mark.asyncio
async def test_injected_store_is_left_open(tmp_path, mocker):
    store = DiskCredentialStore(tmp_path / "shared")
    close_spy = mocker.spy(store, "close")
    client = ApiClient.create(_settings(tmp_path), store=store,
                              transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    await client.aclose()

    close_spy.assert_not_called()
    store.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("verb", ["post", "put", "patch"])
async def test_body_verbs_send_json(tmp_path, mint_token, verb):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"saved": True})

    store = InMemoryCredentialStore()
    store.save(CredentialPair(mint_token(), "r"))
    async with ApiClient.create(_settings(tmp_path), store=store, transport=httpx.MockTransport(handler)) as client:
        outcome = await getattr(client, verb)("/api/users", {"name": "Ada"})

    assert outcome.ok
    assert seen[0].method == verb.upper()
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == {"name": "Ada"}


@pytest.mark.asyncio
async def test_get_paginated_returns_page(tmp_path, mint_token):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"content": [{"id": 1}], "totalElements": 41, "totalPages": 3,
                                         "number": 1, "size": 20})

    store = InMemoryCredentialStore()
    store.save(CredentialPair(mint_token(), "r"))
    async with ApiClient.create(_settings(tmp_path), store=store, transport=httpx.MockTransport(handler)) as client:
        outcome = await client.get_paginated(
            "/api/users", {"page": 1, "pageSize": 20, "sort": ["name", "-createdAt"], "filter": {"status": "active"}}
        )

    assert isinstance(outcome.payload, Page)
    assert outcome.payload.total_items == 41
    assert seen[0].url.params.multi_items() == [
        ("page", "1"), ("size", "20"), ("sort", "name"), ("sort", "-createdAt"), ("filter[status]", "active"),
    ]
    assert seen[0].url.query.endswith(b"&filter[status]=active")


@pytest.mark.asyncio
async def test_get_paginated_with_null_totals(tmp_path):
    body = {"content": [], "totalElements": None, "totalPages": None}
    async with ApiClient.create(_settings(tmp_path), store=InMemoryCredentialStore(),
                                transport=httpx.MockTransport(lambda r: httpx.Response(200, json=body))) as client:
        outcome = await client.get_paginated("/api/users", requires_auth=False)

    assert isinstance(outcome, Success)
    assert outcome.payload == Page(items=[], total_items=0, total_pages=1, page=0, page_size=0)


@pytest.mark.asyncio
async def test_get_paginated_mock_page(tmp_path):
    mock_page = Page(items=["demo"], total_items=1, total_pages=1, page=0, page_size=1)
    settings = _settings(tmp_path, mock_fallback_permitted=True)
    async with ApiClient.create(settings, store=InMemoryCredentialStore(),
                                transport=httpx.MockTransport(lambda r: httpx.Response(500))) as client:
        outcome = await client.get_paginated("/api/users", mock_value=mock_page)

    assert outcome.degraded is True
    assert outcome.payload is mock_page


@pytest.mark.asyncio
async def test_failure_passes_through_get_paginated(tmp_path):
    async with ApiClient.create(_settings(tmp_path), store=InMemoryCredentialStore(),
                                transport=httpx.MockTransport(lambda r: httpx.Response(500))) as client:
        outcome = await client.get_paginated("/api/users", requires_auth=False)

    assert outcome.kind is ErrorKind.SERVER_ERROR
