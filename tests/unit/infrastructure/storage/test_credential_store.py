import pytest

from portalcli.domain.interfaces.credential_store import CREDENTIALS_KEY
from portalcli.domain.models.auth import CredentialPair, Principal
from portalcli.infrastructure.storage.credential_store import DiskCredentialStore, InMemoryCredentialStore


@pytest.fixture
def disk_store(tmp_path):
    store = DiskCredentialStore(tmp_path / "credentials")
    yield store
    store.close()


@pytest.fixture(params=["memory", "disk"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryCredentialStore()
        return
    disk = DiskCredentialStore(tmp_path / "credentials")
    yield disk
    disk.close()


def test_empty_store(store):
    assert store.load() is None
    assert store.load_principal() is None


def test_save_and_load(store):
    pair = CredentialPair("access-1", "refresh-1")
    principal = Principal(id="1", name="Ada")
    store.save(pair)
    store.save_principal(principal)

    assert store.load() == pair
    assert store.load_principal() == principal


def test_save_replaces_previous_pair(store):
    store.save(CredentialPair("a1", "r1"))
    store.save(CredentialPair("a2", "r2"))
    assert store.load() == CredentialPair("a2", "r2")


def test_clear_is_idempotent(store):
    store.save(CredentialPair("a", "r"))
    store.save_principal(Principal(id="1", name="Ada"))

    store.clear()
    store.clear()

    assert store.load() is None
    assert store.load_principal() is None


def test_disk_store_survives_reopen(tmp_path):
    directory = tmp_path / "credentials"
    first = DiskCredentialStore(directory)
    first.save(CredentialPair("a", "r"))
    first.close()

    second = DiskCredentialStore(directory)
    try:
        assert second.load() == CredentialPair("a", "r")
    finally:
        second.close()


def test_disk_store_ignores_malformed_record(disk_store):
    disk_store._cache.set(CREDENTIALS_KEY, {"access_token": "only-half"})
    assert disk_store.load() is None
