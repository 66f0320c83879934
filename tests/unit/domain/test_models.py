import pytest

from portalcli.domain.exceptions import (
    AuthenticationExpiredError,
    ClientError,
    MaxRetryError,
    NetworkError,
    ServerError,
)
from portalcli.domain.models.auth import AuthEndpoints, CredentialPair, GUEST_ROLE, Principal
from portalcli.domain.models.call import ErrorKind, Failure, Page, RetryPolicy, Success
from portalcli.domain.models.common import normalize_method


# --- Principal ---

def test_principal_from_plain_claims():
    principal = Principal.from_claims({
        "sub": "17", "name": "Grace", "email": "grace@example.com",
        "roles": ["admin", "auditor"], "permissions": ["users:read"],
    })
    assert principal.id == "17"
    assert principal.role == "admin"
    assert principal.roles == ["admin", "auditor"]
    assert principal.has_permission("USERS:READ")


def test_principal_from_keycloak_claims():
    principal = Principal.from_claims({
        "sub": "abc",
        "preferred_username": "grace",
        "realm_access": {"roles": ["editor", "editor"]},
        "scope": "openid profile",
    })
    assert principal.name == "grace"
    assert principal.roles == ["editor"]
    assert principal.permissions == ["openid", "profile"]


def test_principal_without_roles_is_guest():
    principal = Principal.from_claims({"sub": "x"})
    assert principal.roles == [GUEST_ROLE]
    assert principal.name == "x"


def test_principal_requires_subject():
    with pytest.raises(ValueError):
        Principal.from_claims({"name": "nobody"})


def test_principal_dict_round_trip():
    principal = Principal(id="1", name="A", roles=["admin"], role="admin")
    assert Principal.from_dict(principal.to_dict()) == principal


def test_credential_pair_repr_hides_tokens():
    pair = CredentialPair("secret-access", "secret-refresh")
    assert "secret" not in repr(pair)


# --- Auth endpoints ---

@pytest.mark.parametrize("endpoint, expected", [
    ("/api/auth/login", True),
    ("/api/auth/refresh/", True),
    ("/api/auth/register?invite=1", True),
    ("/api/auth/reset-password", True),
    ("/api/auth/logout", False),
    ("/api/auth/me", False),
    ("/api/users", False),
])
def test_auth_endpoint_classification(endpoint, expected):
    assert AuthEndpoints().is_auth_endpoint(endpoint) is expected


# --- Outcomes ---

def test_success_unwrap():
    assert Success({"a": 1}).unwrap() == {"a": 1}


@pytest.mark.parametrize("kind, exc_type", [
    (ErrorKind.AUTHENTICATION_EXPIRED, AuthenticationExpiredError),
    (ErrorKind.CLIENT_ERROR, ClientError),
    (ErrorKind.SERVER_ERROR, ServerError),
    (ErrorKind.NETWORK_ERROR, NetworkError),
])
def test_failure_maps_to_exception(kind, exc_type):
    with pytest.raises(exc_type):
        Failure(kind, "detail", status=400).unwrap()


def test_retry_exhausted_is_catchable_as_both_families():
    error = Failure(ErrorKind.RETRY_EXHAUSTED, "HTTP 503", status=503, attempts=4).to_exception()
    assert isinstance(error, MaxRetryError)
    assert isinstance(error, NetworkError)
    assert isinstance(error, ServerError)
    assert error.attempts == 4
    assert error.retries == 3
    assert str(error).startswith("Max retries (3) exceeded")


def test_retry_policy_rejects_negative_values():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


def test_normalize_method():
    assert normalize_method(" patch ") == "PATCH"
    with pytest.raises(ValueError):
        normalize_method("CONNECT")


# --- Page ---

def test_page_from_spring_payload():
    page = Page.from_payload({
        "content": [{"id": 1}, {"id": 2}],
        "totalElements": 12, "totalPages": 6, "number": 2, "size": 2,
    })
    assert page.items == [{"id": 1}, {"id": 2}]
    assert (page.total_items, page.total_pages, page.page, page.page_size) == (12, 6, 2, 2)


def test_page_from_data_total_payload():
    page = Page.from_payload({"data": ["a", "b", "c"], "total": 3})
    assert page.items == ["a", "b", "c"]
    assert page.total_items == 3
    assert page.page_size == 3


def test_page_tolerates_null_counters():
    page = Page.from_payload({
        "content": [{"id": 1}], "totalElements": None, "totalPages": None, "number": None, "size": None,
    })
    assert (page.total_items, page.total_pages, page.page, page.page_size) == (1, 1, 0, 1)


def test_page_null_total_falls_through_to_alternate_key():
    page = Page.from_payload({"data": [], "total": None, "totalItems": 40, "page": None, "currentPage": 3})
    assert page.total_items == 40
    assert page.page == 3
