"""HTTP routes of the public API, including the crypto payment gateway endpoints."""

import json
import logging
import re
from collections.abc import Mapping
from http import HTTPStatus

from flask import Flask, Response, request

from cardbank.gateway import HttpResult
from cardbank.messages import (
    CreateSessionRequest,
    CreateWalletRequest,
    EstimatePaymentAmountRequest,
    from_dict,
    to_dict,
)
from cardbank.rpc import RpcError, StatusCode

logger = logging.getLogger(__name__)

USER_ID_ENVIRON_KEY = "cardbank.user_id"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_SIGNED_DECIMAL = re.compile(r"[+-]?[0-9]+")


def _error(status, message):
    return HttpResult(int(status), {"error": message})


def _message_of(err):
    """Return the status message of a downstream error."""
    if isinstance(err, RpcError):
        return err.message
    return str(err)


def _decode_body(body, cls):
    """Build a request message from a JSON body, or raise ValueError."""
    if body is None:
        data = {}
    elif isinstance(body, Mapping):
        data = body
    elif isinstance(body, (bytes, bytearray, str)):
        text = body.decode() if isinstance(body, (bytes, bytearray)) else body
        data = json.loads(text) if text.strip() else {}
    else:
        raise ValueError("unsupported request body")
    try:
        return from_dict(cls, data)
    except TypeError as err:
        raise ValueError(str(err)) from err


def _parse_limit(limit):
    """Return the session limit as a signed 32-bit integer, or raise ValueError."""
    if limit is None or limit == "":
        return 0
    if isinstance(limit, bool):
        raise ValueError("invalid limit")
    if isinstance(limit, int):
        value = limit
    elif isinstance(limit, str) and limit.isascii() and _SIGNED_DECIMAL.fullmatch(limit):
        value = int(limit)
    else:
        raise ValueError("invalid limit")
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError("invalid limit")
    return value


class DiscoHandlers:
    """Serves payment session, estimate and wallet requests via the payment gateway.

    The client exposes:
    ``create_session(CreateSessionRequest) -> CreateSessionResponse``,
    ``get_session_by_id(session_id) -> GetSessionResponse``,
    ``list_sessions(user_id, status, limit, cursor) -> ListSessionsResponse``,
    ``estimate_payment_amount(EstimatePaymentAmountRequest) -> EstimatePaymentAmountResponse``
    and ``create_wallet(CreateWalletRequest) -> CreateWalletResponse``.
    """

    def __init__(self, disco_client):
        self.disco_client = disco_client

    def create_session(self, body, user_id=None):
        """Create a payment session; an authenticated user id overrides the body's."""
        try:
            req = _decode_body(body, CreateSessionRequest)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid request body")
        if user_id:
            req.user_id = user_id
        try:
            resp = self.disco_client.create_session(req)
        except Exception as err:
            logger.error("failed to call CreateSession on disco gateway: %s", err)
            return _error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to create disco session: {_message_of(err)}",
            )
        return HttpResult(int(HTTPStatus.CREATED), to_dict(resp))

    def get_session(self, session_id):
        """Return a payment session by its id."""
        if not session_id:
            return _error(HTTPStatus.BAD_REQUEST, "session_id path parameter is required")
        try:
            resp = self.disco_client.get_session_by_id(session_id)
        except Exception as err:
            logger.error("failed to call GetSessionById on disco gateway: %s", err)
            if isinstance(err, RpcError) and err.code == StatusCode.NOT_FOUND:
                return _error(HTTPStatus.NOT_FOUND, err.message)
            return _error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to get disco session: {_message_of(err)}",
            )
        return HttpResult(int(HTTPStatus.OK), to_dict(resp))

    def list_sessions(self, user_id="", status="", limit=None, cursor=""):
        """List a user's payment sessions, optionally filtered by status."""
        try:
            parsed_limit = _parse_limit(limit)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid limit parameter")
        try:
            resp = self.disco_client.list_sessions(
                user_id or "", status or "", parsed_limit, cursor or ""
            )
        except Exception as err:
            logger.error("failed to call ListSessions on disco gateway: %s", err)
            return _error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to list disco sessions: {_message_of(err)}",
            )
        return HttpResult(int(HTTPStatus.OK), to_dict(resp))

    def estimate_payment(self, body):
        """Estimate how much of a source currency pays a target amount."""
        try:
            req = _decode_body(body, EstimatePaymentAmountRequest)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid request body")
        try:
            resp = self.disco_client.estimate_payment_amount(req)
        except Exception as err:
            logger.error("failed to call EstimatePaymentAmount on disco gateway: %s", err)
            return _error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to estimate disco payment: {_message_of(err)}",
            )
        return HttpResult(int(HTTPStatus.OK), to_dict(resp))

    def create_wallet(self, body, user_id=None):
        """Create a wallet; an authenticated user id overrides the body's."""
        try:
            req = _decode_body(body, CreateWalletRequest)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid request body")
        if user_id:
            req.user_id = user_id
        try:
            resp = self.disco_client.create_wallet(req)
        except Exception as err:
            logger.error("failed to call CreateWallet on disco gateway: %s", err)
            return _error(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to create disco wallet: {_message_of(err)}",
            )
        return HttpResult(int(HTTPStatus.CREATED), to_dict(resp))


def _respond(result):
    return Response(json.dumps(result.body), status=result.status, mimetype="application/json")


def _authenticated_user():
    """Return the user id an authentication layer stored in the WSGI environ."""
    user_id = request.environ.get(USER_ID_ENVIRON_KEY)
    return user_id if isinstance(user_id, str) and user_id else None


def create_app(gateway, disco):
    """Build the Flask application serving the public API."""
    app = Flask(__name__)

    @app.get("/account/balance/<account_id>")
    def get_balance(account_id):
        return _respond(gateway.get_balance(account_id))

    @app.get("/feed/<account_id>")
    def get_feed(account_id):
        return _respond(
            gateway.get_feed(
                account_id, request.args.get("limit"), request.args.get("before_id", "")
            )
        )

    @app.post("/cards/<card_id>/freeze")
    def freeze_card(card_id):
        return _respond(gateway.freeze_card(card_id))

    @app.post("/payments/disco/session")
    def create_disco_session():
        return _respond(disco.create_session(request.get_data(), _authenticated_user()))

    @app.get("/payments/disco/session/<session_id>")
    def get_disco_session(session_id):
        return _respond(disco.get_session(session_id))

    @app.get("/payments/disco/sessions")
    def list_disco_sessions():
        user_id = _authenticated_user() or request.args.get("user_id", "")
        return _respond(
            disco.list_sessions(
                user_id,
                request.args.get("status", ""),
                request.args.get("limit"),
                request.args.get("cursor", ""),
            )
        )

    @app.post("/payments/disco/estimate")
    def estimate_disco_payment():
        return _respond(disco.estimate_payment(request.get_data()))

    @app.post("/payments/disco/wallet")
    def create_disco_wallet():
        return _respond(disco.create_wallet(request.get_data(), _authenticated_user()))

    return app