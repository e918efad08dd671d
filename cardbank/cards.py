"""Card issuing and status management, with an HTTP front end."""

import json
import logging
import uuid
from collections.abc import Mapping
from http import HTTPStatus

from flask import Flask, Response, request

from cardbank.gateway import HttpResult
from cardbank.messages import Card, to_dict
from cardbank.rpc import RpcError, StatusCode

logger = logging.getLogger(__name__)

VALID_STATUSES = frozenset({"ACTIVE", "INACTIVE", "FROZEN", "CLOSED"})
DEFAULT_STATUS = "ACTIVE"

CARD_CREATED_STREAM = "card:created"
CARD_STATUS_CHANGED_STREAM = "card:status_changed"

SCHEMA = """
CREATE TABLE IF NOT EXISTS cards (
    card_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('ACTIVE', 'INACTIVE', 'FROZEN', 'CLOSED')),
    last_four TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);
"""

_SELECT_CARD = "SELECT card_id, user_id, status, last_four FROM cards WHERE card_id = ?"


def init_schema(db):
    """Create the cards table in ``db`` if it does not exist."""
    db.executescript(SCHEMA)
    db.commit()


def _card_from_row(row):
    card_id, user_id, status, last_four = row
    return Card(id=card_id, user_id=user_id, status=status, last_four=last_four or "")


class CardsService:
    """Creates cards, looks them up and changes their status.

    ``db`` is a DB-API connection using the qmark parameter style (such as
    ``sqlite3``); ``publisher`` offers ``publish(stream, payload)``, or is None
    to publish nothing.
    """

    def __init__(self, db, publisher):
        self.db = db
        self.publisher = publisher

    def _publish(self, stream, payload, card_id):
        if self.publisher is None:
            return
        try:
            self.publisher.publish(stream, payload)
        except Exception as err:
            logger.error("failed to publish %s event: %s", stream, err)
        else:
            logger.info("Published %s event for card %s", stream, card_id)

    def _fetch(self, card_id):
        cursor = self.db.cursor()
        try:
            cursor.execute(_SELECT_CARD, (card_id,))
            return cursor.fetchone()
        finally:
            cursor.close()

    def create_card(self, user_id):
        """Issue a new active card for ``user_id`` and return it."""
        card_id = str(uuid.uuid4())
        try:
            cursor = self.db.cursor()
            try:
                cursor.execute(
                    "INSERT INTO cards (card_id, user_id, status, created_at) "
                    "VALUES (?, ?, ?, CURRENT_TIMESTAMP)",
                    (card_id, user_id, DEFAULT_STATUS),
                )
            finally:
                cursor.close()
            self.db.commit()
            row = self._fetch(card_id)
        except Exception as err:
            logger.error("failed to insert card: %s", err)
            raise RpcError(StatusCode.INTERNAL, "failed to create card") from err
        if row is None:
            raise RpcError(StatusCode.INTERNAL, "failed to create card")
        card = _card_from_row(row)
        self._publish(
            CARD_CREATED_STREAM,
            {"card_id": card.id, "user_id": card.user_id, "status": card.status},
            card.id,
        )
        return card

    def get_card(self, card_id):
        """Return the card with ``card_id``."""
        try:
            row = self._fetch(card_id)
        except Exception as err:
            logger.error("failed to get card: %s", err)
            raise RpcError(StatusCode.INTERNAL, "failed to get card") from err
        if row is None:
            logger.info("card not found: %s", card_id)
            raise RpcError(StatusCode.NOT_FOUND, "card not found")
        return _card_from_row(row)

    def update_card_status(self, card_id, new_status):
        """Set a card's status and return the updated card."""
        if new_status not in VALID_STATUSES:
            raise RpcError(StatusCode.INVALID_ARGUMENT, f"invalid card status: {new_status}")
        try:
            cursor = self.db.cursor()
            try:
                cursor.execute(
                    "UPDATE cards SET status = ?, updated_at = CURRENT_TIMESTAMP "
                    "WHERE card_id = ?",
                    (new_status, card_id),
                )
                updated = cursor.rowcount
            finally:
                cursor.close()
            self.db.commit()
            row = self._fetch(card_id) if updated else None
        except Exception as err:
            logger.error("failed to update card status: %s", err)
            raise RpcError(StatusCode.INTERNAL, "failed to update card status") from err
        if row is None:
            logger.info("card not found for update: %s", card_id)
            raise RpcError(StatusCode.NOT_FOUND, "card not found")
        card = _card_from_row(row)
        self._publish(
            CARD_STATUS_CHANGED_STREAM,
            {"card_id": card.id, "user_id": card.user_id, "new_status": card.status},
            card.id,
        )
        return card


def _read_object(body):
    """Decode a JSON object body, or raise ValueError."""
    text = body.decode() if isinstance(body, (bytes, bytearray)) else (body or "")
    if not text.strip():
        return {}
    data = json.loads(text)
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    return data


def _string_field(data, name):
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return value


def _error(status, message):
    return HttpResult(int(status), {"error": message})


def _failure(err, passthrough):
    if isinstance(err, RpcError):
        if err.code in passthrough:
            return _error(passthrough[err.code], err.message)
        if err.code == StatusCode.INTERNAL:
            return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")
        return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "unknown gRPC error")
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")


def _respond(result):
    return Response(json.dumps(result.body), status=result.status, mimetype="application/json")


def create_app(service):
    """Build the Flask application serving the cards HTTP API."""
    app = Flask(__name__)

    @app.post("/cards")
    def create_card():
        try:
            user_id = _string_field(_read_object(request.get_data()), "user_id")
        except ValueError:
            return _respond(_error(HTTPStatus.BAD_REQUEST, "invalid request body"))
        try:
            card = service.create_card(user_id)
        except Exception as err:
            return _respond(_failure(err, {StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST}))
        return _respond(HttpResult(int(HTTPStatus.CREATED), to_dict(card)))

    @app.get("/cards/<card_id>")
    def get_card(card_id):
        try:
            card = service.get_card(card_id)
        except Exception as err:
            return _respond(_failure(err, {StatusCode.NOT_FOUND: HTTPStatus.NOT_FOUND}))
        return _respond(HttpResult(int(HTTPStatus.OK), to_dict(card)))

    @app.patch("/cards/<card_id>/status")
    def update_card_status(card_id):
        try:
            new_status = _string_field(_read_object(request.get_data()), "status")
        except ValueError:
            return _respond(_error(HTTPStatus.BAD_REQUEST, "invalid request body"))
        try:
            card = service.update_card_status(card_id, new_status)
        except Exception as err:
            return _respond(
                _failure(
                    err,
                    {
                        StatusCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
                        StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
                    },
                )
            )
        return _respond(HttpResult(int(HTTPStatus.OK), to_dict(card)))

    return app