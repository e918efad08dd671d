import json
import sqlite3
import threading
from datetime import datetime

import pytest

from cardbank.apns import (
    CONSUMER_GROUP,
    STREAM,
    DeviceRegistry,
    LogNotificationSender,
    NotificationConsumer,
    create_app,
    init_schema,
)
from cardbank.messages import FeedItem


@pytest.fixture
def registry():
    db = sqlite3.connect(":memory:")
    init_schema(db)
    yield DeviceRegistry(db)
    db.close()


class FakeRedis:
    def __init__(self, responses=None, group_error=None, stop=None):
        self.responses = list(responses or [])
        self.group_error = group_error
        self.groups = []
        self.acks = []
        self.reads = 0
        self.stop = stop

    def xgroup_create(self, name, groupname, id="$", mkstream=False):
        self.groups.append((name, groupname, id, mkstream))
        if self.group_error is not None:
            raise self.group_error

    def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        self.reads += 1
        if self.stop is not None:
            self.stop.set()
        return self.responses.pop(0) if self.responses else []

    def xack(self, name, groupname, *ids):
        self.acks.append((name, groupname, ids))
        return len(ids)


class FakeFeed:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    def get_feed_items_by_id(self, ids):
        self.calls.append(list(ids))
        if self.error is not None:
            raise self.error
        return self.items


class FakeSender:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def send(self, token, message):
        self.sent.append((token, message))
        if token in self.failing:
            raise RuntimeError("send failed")


def payload(feed_item_id, account_id):
    return {"payload": json.dumps({"feed_item_id": feed_item_id, "account_id": account_id})}


def test_register_device_and_tokens(registry):
    device = registry.register_device("user-1", "token")
    assert device["user_id"] == "user-1"
    assert device["token"] == "token"
    datetime.fromisoformat(device["created_at"].replace("Z", "+00:00"))
    assert registry.tokens_for_user("user-1") == ["token"]
    assert registry.tokens_for_user("user-2") == []


def test_register_same_pair_keeps_device(registry):
    first = registry.register_device("user-1", "token")
    second = registry.register_device("user-1", "token")
    assert first["device_id"] == second["device_id"]
    assert registry.tokens_for_user("user-1") == ["token"]


def test_register_requires_fields(registry):
    with pytest.raises(ValueError):
        registry.register_device("", "token")
    with pytest.raises(ValueError):
        registry.register_device("user-1", "")


def test_http_register(registry):
    client = create_app(registry).test_client()
    resp = client.post("/devices", data=json.dumps({"user_id": "user-1", "token": "token"}))
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["user_id"] == "user-1"
    assert body["token"] == "token"
    assert registry.tokens_for_user("user-1") == ["token"]


def test_http_register_missing_fields(registry):
    client = create_app(registry).test_client()
    resp = client.post("/devices", data=json.dumps({"user_id": "user-1"}))
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "user_id and token are required"}


def test_http_register_invalid_body(registry):
    client = create_app(registry).test_client()
    resp = client.post("/devices", data="{not json")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "invalid request body"}


def test_process_message_sends_to_all_devices(registry):
    registry.register_device("acc-1", "token-a")
    registry.register_device("acc-1", "token-b")
    redis = FakeRedis()
    feed = FakeFeed([FeedItem(id="fi-1", account_id="acc-1", content="Coffee")])
    sender = FakeSender(failing={"token-a"})
    consumer = NotificationConsumer(redis, feed, registry, sender)

    assert consumer.process_message("1-0", payload("fi-1", "acc-1")) is True
    assert feed.calls == [["fi-1"]]
    assert sender.sent == [("token-a", "Coffee"), ("token-b", "Coffee")]
    assert redis.acks == [(STREAM, CONSUMER_GROUP, ("1-0",))]


def test_process_message_without_payload_is_acked(registry):
    redis = FakeRedis()
    feed = FakeFeed()
    consumer = NotificationConsumer(redis, feed, registry, FakeSender())
    assert consumer.process_message(b"2-0", {b"other": b"x"}) is True
    assert redis.acks == [(STREAM, CONSUMER_GROUP, ("2-0",))]
    assert feed.calls == []


def test_process_message_bad_json_is_acked(registry):
    redis = FakeRedis()
    feed = FakeFeed()
    consumer = NotificationConsumer(redis, feed, registry, FakeSender())
    assert consumer.process_message("3-0", {"payload": "{oops"}) is True
    assert len(redis.acks) == 1
    assert feed.calls == []


def test_feed_error_leaves_message_unacked(registry):
    redis = FakeRedis()
    consumer = NotificationConsumer(
        redis, FakeFeed(error=RuntimeError("down")), registry, FakeSender()
    )
    assert consumer.process_message("4-0", payload("fi-1", "acc-1")) is False
    assert redis.acks == []


def test_missing_feed_item_is_acked(registry):
    redis = FakeRedis()
    sender = FakeSender()
    consumer = NotificationConsumer(redis, FakeFeed([]), registry, sender)
    assert consumer.process_message("5-0", payload("fi-x", "acc-1")) is True
    assert sender.sent == []
    assert len(redis.acks) == 1


def test_no_devices_is_acked(registry):
    redis = FakeRedis()
    sender = FakeSender()
    feed = FakeFeed([FeedItem(id="fi-1", account_id="acc-none", content="Hi")])
    consumer = NotificationConsumer(redis, feed, registry, sender)
    assert consumer.process_message("6-0", payload("fi-1", "acc-none")) is True
    assert sender.sent == []


def test_token_lookup_error_leaves_unacked():
    class BrokenRegistry:
        def tokens_for_user(self, user_id):
            raise RuntimeError("db down")

    redis = FakeRedis()
    feed = FakeFeed([FeedItem(id="fi-1", account_id="acc-1", content="Hi")])
    consumer = NotificationConsumer(redis, feed, BrokenRegistry(), FakeSender())
    assert consumer.process_message("7-0", payload("fi-1", "acc-1")) is False
    assert redis.acks == []


def test_ensure_group_tolerates_busygroup(registry):
    redis = FakeRedis(group_error=RuntimeError("BUSYGROUP Consumer Group name already exists"))
    consumer = NotificationConsumer(redis, FakeFeed(), registry, FakeSender())
    consumer.ensure_group()
    assert redis.groups == [(STREAM, CONSUMER_GROUP, "0", True)]


def test_ensure_group_raises_other_errors(registry):
    redis = FakeRedis(group_error=RuntimeError("connection refused"))
    consumer = NotificationConsumer(redis, FakeFeed(), registry, FakeSender())
    with pytest.raises(RuntimeError):
        consumer.ensure_group()


def test_poll_once_processes_batch(registry):
    registry.register_device("acc-1", "token")
    response = [
        [
            STREAM.encode(),
            [(b"1-0", {b"payload": json.dumps({"feed_item_id": "fi-1"}).encode()}), (b"1-1", {})],
        ]
    ]
    redis = FakeRedis(responses=[response])
    feed = FakeFeed([FeedItem(id="fi-1", account_id="acc-1", content="Hello")])
    sender = FakeSender()
    consumer = NotificationConsumer(redis, feed, registry, sender)

    assert consumer.poll_once() == 2
    assert sender.sent == [("token", "Hello")]
    assert [ack[2] for ack in redis.acks] == [("1-0",), ("1-1",)]
    assert consumer.poll_once() == 0


def test_run_stops_when_event_set(registry):
    stop = threading.Event()
    redis = FakeRedis(stop=stop)
    consumer = NotificationConsumer(redis, FakeFeed(), registry, FakeSender())
    consumer.run(stop)
    assert redis.reads == 1
    assert len(redis.groups) == 1


def test_log_sender_returns_nothing():
    assert LogNotificationSender().send("token", "message") is None