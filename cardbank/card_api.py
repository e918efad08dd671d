"""HTTP entry point for card network authorisation requests."""

import json
import logging
from http import HTTPStatus

from flask import Flask, Response, request

from cardbank.gateway import HttpResult
from cardbank.messages import CardAuthRequest, from_dict
from cardbank.rpc import RpcError, StatusCode, http_status_for

logger = logging.getLogger(__name__)

# Business failures from downstream are reported to the card network as 400.
_PASSTHROUGH = {
    StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    StatusCode.NOT_FOUND: HTTPStatus.BAD_REQUEST,
}


def _error(status, message):
    return HttpResult(int(status), {"error": message})


def _decode(body):
    """Build a CardAuthRequest from a JSON body, or raise ValueError."""
    if body is None:
        data = {}
    elif isinstance(body, dict):
        data = body
    else:
        text = body.decode() if isinstance(body, (bytes, bytearray)) else body
        data = json.loads(text) if text.strip() else {}
    try:
        return from_dict(CardAuthRequest, data)
    except TypeError as err:
        raise ValueError(str(err)) from err


class CardApi:
    """Forwards card authorisation requests to the card processing service.

    The client offers ``authorize_card_transaction(CardAuthRequest) -> CardAuthReply``.
    """

    def __init__(self, card_processing_client):
        self.card_processing_client = card_processing_client

    def card_auth(self, body):
        """Authorise a card transaction described by a JSON body."""
        try:
            req = _decode(body)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid request body")
        try:
            reply = self.card_processing_client.authorize_card_transaction(req)
        except RpcError as err:
            if err.code in _PASSTHROUGH:
                return _error(http_status_for(err.code, _PASSTHROUGH), err.message)
            if err.code == StatusCode.INTERNAL:
                return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")
            return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "unknown gRPC error")
        except Exception as err:
            logger.error("unexpected gRPC error from card-processing: %s", err)
            return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")
        return HttpResult(
            int(HTTPStatus.OK),
            {"approved": reply.approved, "reason": reply.decline_reason},
        )


def create_app(api):
    """Build the Flask application serving card authorisation."""
    app = Flask(__name__)

    @app.post("/cardAuth")
    def card_auth():
        result = api.card_auth(request.get_data())
        return Response(json.dumps(result.body), status=result.status, mimetype="application/json")

    return app