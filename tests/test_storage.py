"""Tests for the namespaced key-value store."""

import json
import pytest
from bitcoinalerts.errors import StoreError
from bitcoinalerts.network_store import NetworkStateStore
from bitcoinalerts.storage import NETWORK_NAMESPACE, NOTIFICATION_NAMESPACE, Storage


@pytest.fixture(params=["sqlite", "json"])
def storage(request, tmp_path):
    store = Storage(
        backend=request.param,
        db_path=str(tmp_path / "state" / "alerts.db"),
        json_path=str(tmp_path / "state" / "alerts.json"),
    )
    yield store
    store.close()


def test_get_missing_key(storage):
    assert storage.get(NETWORK_NAMESPACE, "nope") is None


def test_put_overwrites(storage):
    storage.put(NETWORK_NAMESPACE, "k", "1")
    storage.put(NETWORK_NAMESPACE, "k", "2")
    assert storage.get(NETWORK_NAMESPACE, "k") == "2"


def test_namespaces_are_isolated(storage):
    storage.put(NETWORK_NAMESPACE, "k", "network")
    storage.put(NOTIFICATION_NAMESPACE, "k", "notification")
    assert storage.items(NETWORK_NAMESPACE) == {"k": "network"}
    assert storage.items(NOTIFICATION_NAMESPACE) == {"k": "notification"}


def test_delete_missing_is_noop(storage):
    storage.put(NETWORK_NAMESPACE, "k", "v")
    storage.delete(NETWORK_NAMESPACE, "k")
    storage.delete(NETWORK_NAMESPACE, "k")
    assert storage.get(NETWORK_NAMESPACE, "k") is None


def test_sqlite_persists_across_instances(tmp_path):
    db_path = str(tmp_path / "alerts.db")
    store = Storage(backend="sqlite", db_path=db_path)
    store.put(NETWORK_NAMESPACE, "last_processed_block", "840000")
    store.close()

    reopened = Storage(backend="sqlite", db_path=db_path)
    assert reopened.get(NETWORK_NAMESPACE, "last_processed_block") == "840000"
    reopened.close()


def test_json_file_written_atomically(tmp_path):
    json_path = tmp_path / "alerts.json"
    store = Storage(backend="json", json_path=str(json_path))
    store.put(NOTIFICATION_NAMESPACE, "abc", "payload")

    with open(json_path) as f:
        on_disk = json.load(f)
    assert on_disk[NOTIFICATION_NAMESPACE] == {"abc": "payload"}
    assert not (tmp_path / "alerts.json.tmp").exists()

    reopened = Storage(backend="json", json_path=str(json_path))
    assert reopened.get(NOTIFICATION_NAMESPACE, "abc") == "payload"
    assert reopened.items(NETWORK_NAMESPACE) == {}


def test_unknown_backend(tmp_path):
    with pytest.raises(ValueError):
        Storage(backend="redis")


def test_network_store_typed_values(storage):
    network = NetworkStateStore(storage)
    assert network.get_last_processed_block() is None
    assert network.get_last_supply() is None

    network.set_last_processed_block(840000)
    network.set_last_difficulty(88.1)
    network.set_last_supply(19_687_500.0)
    network.set_last_hashrate_ath(612.5)

    assert network.get_last_processed_block() == 840000
    assert network.get_last_difficulty() == 88.1
    assert network.get_last_supply() == 19_687_500.0
    assert network.get_last_hashrate_ath() == 612.5


def test_network_store_corrupt_value(storage):
    storage.put(NETWORK_NAMESPACE, "last_supply", "not-a-number")
    with pytest.raises(StoreError):
        NetworkStateStore(storage).get_last_supply()


def test_json_failed_write_leaves_state_unchanged(tmp_path, monkeypatch):
    json_path = tmp_path / "alerts.json"
    store = Storage(backend="json", json_path=str(json_path))
    store.put(NETWORK_NAMESPACE, "last_processed_block", "839999")
    store.put(NOTIFICATION_NAMESPACE, "abc", "payload")

    def fail_replace(src, dst):
        raise OSError("No space left on device")

    monkeypatch.setattr("bitcoinalerts.storage.os.replace", fail_replace)

    with pytest.raises(StoreError):
        store.put(NETWORK_NAMESPACE, "last_processed_block", "840000")
    with pytest.raises(StoreError):
        store.put(NETWORK_NAMESPACE, "last_supply", "19687500.0")
    with pytest.raises(StoreError):
        store.delete(NOTIFICATION_NAMESPACE, "abc")

    assert store.get(NETWORK_NAMESPACE, "last_processed_block") == "839999"
    assert store.get(NETWORK_NAMESPACE, "last_supply") is None
    assert store.items(NOTIFICATION_NAMESPACE) == {"abc": "payload"}

    monkeypatch.undo()
    reopened = Storage(backend="json", json_path=str(json_path))
    assert reopened.items(NETWORK_NAMESPACE) == {"last_processed_block": "839999"}
