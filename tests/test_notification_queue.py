"""Tests for the content-addressed notification queue."""

import hashlib
import json
import pytest
from bitcoinalerts.errors import StoreError
from bitcoinalerts.notification_queue import NotificationQueue, Target, notification_id
from bitcoinalerts.storage import NOTIFICATION_NAMESPACE, Storage


@pytest.fixture
def storage(tmp_path):
    store = Storage(backend="sqlite", db_path=str(tmp_path / "alerts.db"))
    yield store
    store.close()


@pytest.fixture
def queue(storage):
    return NotificationQueue(storage)


def test_notification_id_is_truncated_sha512():
    expected = hashlib.sha512("ntfy:hello:<b>hello</b>".encode("utf-8")).hexdigest()[:32]
    assert notification_id(Target.NTFY, "hello", "<b>hello</b>") == expected
    assert len(expected) == 32


def test_notification_id_depends_on_target():
    assert notification_id(Target.NTFY, "m", "m") != notification_id(Target.NOSTR, "m", "m")


def test_enqueue_is_idempotent(queue, storage):
    first = queue.enqueue(Target.NTFY, "⛓️ Reached block 840,000 ⛓️", "⛓️ Reached block 840,000 ⛓️")
    second = queue.enqueue(Target.NTFY, "⛓️ Reached block 840,000 ⛓️", "⛓️ Reached block 840,000 ⛓️")
    assert first == second
    assert len(storage.items(NOTIFICATION_NAMESPACE)) == 1
    assert len(queue.list_pending(Target.NTFY)) == 1


def test_list_pending_filters_by_target(queue):
    queue.enqueue(Target.NTFY, "a", "a")
    queue.enqueue(Target.NOSTR, "a", "a")
    queue.enqueue(Target.MATRIX, "b", "<i>b</i>")

    pending = queue.list_pending(Target.MATRIX)
    assert len(pending) == 1
    assert pending[0].target == Target.MATRIX
    assert pending[0].plain_text == "b"
    assert pending[0].html == "<i>b</i>"

    assert [n.target for n in queue.list_pending("nostr")] == [Target.NOSTR]


def test_delete_twice_is_noop(queue):
    notification = queue.enqueue(Target.NTFY, "x", "x")
    queue.delete(notification)
    queue.delete(notification)
    assert queue.list_pending(Target.NTFY) == []


def test_delete_only_touches_one_target(queue):
    ntfy_id = queue.enqueue(Target.NTFY, "x", "x")
    queue.enqueue(Target.NOSTR, "x", "x")
    queue.delete(ntfy_id)
    assert queue.list_pending(Target.NTFY) == []
    assert len(queue.list_pending(Target.NOSTR)) == 1


def test_corrupt_rows_are_skipped(queue, storage):
    good = queue.enqueue(Target.NTFY, "⛓️ Reached block 840,000 ⛓️", "⛓️ Reached block 840,000 ⛓️")
    queue.enqueue(Target.NOSTR, "x", "x")
    storage.put(NOTIFICATION_NAMESPACE, "deadbeef", "{not json")
    storage.put(NOTIFICATION_NAMESPACE, "cafebabe", json.dumps({"target": "ntfy", "plain_text": "no html"}))
    storage.put(NOTIFICATION_NAMESPACE, "feedface", json.dumps(["ntfy", "x", "x"]))
    storage.put(NOTIFICATION_NAMESPACE, "0badf00d", json.dumps({"target": "telegram", "plain_text": "x", "html": "x"}))

    assert [n.id for n in queue.list_pending(Target.NTFY)] == [good]
    assert len(queue.list_pending(Target.NOSTR)) == 1
    assert storage.get(NOTIFICATION_NAMESPACE, "deadbeef") == "{not json"
    assert storage.get(NOTIFICATION_NAMESPACE, "cafebabe") is not None


def test_unreadable_store_raises(queue, storage):
    storage.close()
    with pytest.raises(StoreError):
        queue.list_pending(Target.NTFY)


def test_unknown_target_rejected(queue):
    with pytest.raises(ValueError):
        queue.enqueue("telegram", "x", "x")
