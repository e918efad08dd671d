"""Push notifications: device registration and delivery of feed events to devices."""

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from http import HTTPStatus

from flask import Flask, Response, request

logger = logging.getLogger(__name__)

STREAM = "feed:item.created"
CONSUMER_GROUP = "apns-consumer-group"
CONSUMER_NAME = "apns-instance-1"

SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    device_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    token TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, token)
);
"""


def init_schema(db):
    """Create the devices table in ``db`` if it does not exist."""
    db.executescript(SCHEMA)
    db.commit()


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _text(value):
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode()
    return value


class DeviceRegistry:
    """Stores the device tokens of users.

    ``db`` is a DB-API connection using the qmark parameter style (such as
    ``sqlite3``).
    """

    def __init__(self, db):
        self.db = db

    def register_device(self, user_id, token):
        """Register ``token`` for ``user_id`` and return the stored device record.

        Registering a known pair refreshes its creation time.
        """
        if not user_id or not token:
            raise ValueError("user_id and token are required")
        created_at = _now()
        cursor = self.db.cursor()
        try:
            cursor.execute(
                "INSERT INTO devices (user_id, token, created_at) VALUES (?, ?, ?) "
                "ON CONFLICT (user_id, token) DO UPDATE SET created_at = excluded.created_at",
                (user_id, token, created_at),
            )
            cursor.execute(
                "SELECT device_id, user_id, token, created_at FROM devices "
                "WHERE user_id = ? AND token = ?",
                (user_id, token),
            )
            device_id, stored_user, stored_token, stored_at = cursor.fetchone()
        finally:
            cursor.close()
        self.db.commit()
        logger.info("Registered device token for user %s: %s", stored_user, stored_token)
        return {
            "device_id": device_id,
            "user_id": stored_user,
            "token": stored_token,
            "created_at": stored_at,
        }

    def tokens_for_user(self, user_id):
        """Return the device tokens registered for ``user_id``."""
        cursor = self.db.cursor()
        try:
            cursor.execute(
                "SELECT token FROM devices WHERE user_id = ? ORDER BY device_id", (user_id,)
            )
            return [row[0] for row in cursor.fetchall()]
        finally:
            cursor.close()


class LogNotificationSender:
    """Delivers notifications by writing them to the log."""

    def send(self, token, message):
        logger.info("Sending APNS notification to token %s with message: %s", token, message)


class NotificationConsumer:
    """Reads feed item events from a Redis stream and notifies the owner's devices.

    ``feed_client`` offers ``get_feed_items_by_id(ids) -> list[FeedItem]``;
    ``sender`` offers ``send(token, message)``.
    """

    block_ms = 1000
    batch_size = 10

    def __init__(self, redis_client, feed_client, registry, sender):
        self.redis_client = redis_client
        self.feed_client = feed_client
        self.registry = registry
        self.sender = sender

    def ensure_group(self):
        """Create the consumer group, tolerating one that already exists."""
        try:
            self.redis_client.xgroup_create(STREAM, CONSUMER_GROUP, id="0", mkstream=True)
        except Exception as err:
            if "BUSYGROUP" not in str(err):
                raise
        logger.info("Redis consumer group '%s' created or already exists", CONSUMER_GROUP)

    def _ack(self, message_id):
        try:
            self.redis_client.xack(STREAM, CONSUMER_GROUP, message_id)
        except Exception as err:
            logger.error("failed to acknowledge message %s: %s", message_id, err)
            return False
        logger.info("Acknowledged message %s", message_id)
        return True

    def process_message(self, message_id, values):
        """Handle one stream entry; return True if it was acknowledged.

        Entries that can never be processed are acknowledged; entries whose
        processing failed for a transient reason are left for redelivery.
        """
        message_id = _text(message_id)
        fields = {_text(key): value for key, value in (values or {}).items()}
        payload = fields.get("payload")
        try:
            payload = _text(payload)
        except UnicodeDecodeError:
            payload = None
        if not isinstance(payload, str):
            logger.warning("message %s has no 'payload' field or it's not a string", message_id)
            return self._ack(message_id)

        try:
            event = json.loads(payload)
        except ValueError as err:
            logger.warning("failed to unmarshal event payload for message %s: %s", message_id, err)
            return self._ack(message_id)
        if event is None:
            event = {}
        feed_item_id = event.get("feed_item_id", "") if isinstance(event, Mapping) else None
        if feed_item_id is None:
            feed_item_id = ""
        if not isinstance(feed_item_id, str):
            logger.warning("invalid event payload for message %s", message_id)
            return self._ack(message_id)

        try:
            items = list(self.feed_client.get_feed_items_by_id([feed_item_id]))
        except Exception as err:
            logger.error("failed to get feed item %s from Feed service: %s", feed_item_id, err)
            return False
        if not items:
            logger.warning("feed item %s not found in Feed service", feed_item_id)
            return self._ack(message_id)

        item = items[0]
        try:
            tokens = self.registry.tokens_for_user(item.account_id)
        except Exception as err:
            logger.error("failed to get device tokens for user %s: %s", item.account_id, err)
            return False
        if not tokens:
            logger.info("no active device tokens found for user %s", item.account_id)
            return self._ack(message_id)

        for token in tokens:
            try:
                self.sender.send(token, item.content)
            except Exception as err:
                logger.error("failed to send APNS notification to token %s: %s", token, err)
            else:
                logger.info("Successfully sent APNS notification to token %s", token)

        return self._ack(message_id)

    def poll_once(self):
        """Read one batch from the stream, process it and return the number of entries."""
        response = self.redis_client.xreadgroup(
            CONSUMER_GROUP,
            CONSUMER_NAME,
            {STREAM: ">"},
            count=self.batch_size,
            block=self.block_ms,
        )
        if not response:
            return 0
        streams = response.items() if isinstance(response, Mapping) else response
        handled = 0
        for stream_name, entries in streams:
            for entry in entries or []:
                message_id, values = entry
                logger.info("Received message %s from stream %s", _text(message_id), _text(stream_name))
                self.process_message(message_id, values)
                handled += 1
        return handled

    def run(self, stop):
        """Consume events until the ``stop`` event is set."""
        logger.info("Starting Redis event consumer...")
        self.ensure_group()
        while not stop.is_set():
            try:
                self.poll_once()
            except Exception as err:
                logger.error("error reading from Redis stream %s: %s", STREAM, err)
                stop.wait(1.0)


def _respond(status, body):
    return Response(json.dumps(body), status=int(status), mimetype="application/json")


def create_app(registry):
    """Build the Flask application for device registration."""
    app = Flask(__name__)

    @app.post("/devices")
    def register_device():
        try:
            raw = request.get_data().decode()
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, Mapping):
                raise ValueError("expected a JSON object")
            user_id = data.get("user_id") or ""
            token = data.get("token") or ""
            if not isinstance(user_id, str) or not isinstance(token, str):
                raise ValueError("fields must be strings")
        except ValueError:
            return _respond(HTTPStatus.BAD_REQUEST, {"error": "invalid request body"})
        if not user_id or not token:
            return _respond(HTTPStatus.BAD_REQUEST, {"error": "user_id and token are required"})
        try:
            device = registry.register_device(user_id, token)
        except Exception as err:
            logger.error("failed to register device token: %s", err)
            return _respond(
                HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "failed to register device token"}
            )
        return _respond(HTTPStatus.CREATED, device)

    return app