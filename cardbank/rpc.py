"""Status codes and errors shared by the services, with their HTTP mapping."""

from collections.abc import Iterable, Mapping
from enum import IntEnum
from http import HTTPStatus


class StatusCode(IntEnum):
    """Canonical RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


_CODE_LABELS = {StatusCode.OK: "OK", StatusCode.CANCELLED: "Canceled"}

_DEFAULT_HTTP = {
    StatusCode.OK: HTTPStatus.OK,
    StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    StatusCode.FAILED_PRECONDITION: HTTPStatus.BAD_REQUEST,
    StatusCode.OUT_OF_RANGE: HTTPStatus.BAD_REQUEST,
    StatusCode.UNAUTHENTICATED: HTTPStatus.UNAUTHORIZED,
    StatusCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    StatusCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    StatusCode.ALREADY_EXISTS: HTTPStatus.CONFLICT,
    StatusCode.ABORTED: HTTPStatus.CONFLICT,
    StatusCode.RESOURCE_EXHAUSTED: HTTPStatus.TOO_MANY_REQUESTS,
    StatusCode.UNIMPLEMENTED: HTTPStatus.NOT_IMPLEMENTED,
    StatusCode.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    StatusCode.DEADLINE_EXCEEDED: HTTPStatus.GATEWAY_TIMEOUT,
}


def _label(code: StatusCode) -> str:
    if code in _CODE_LABELS:
        return _CODE_LABELS[code]
    return "".join(part.capitalize() for part in code.name.split("_"))


class RpcError(Exception):
    """An error carrying an RPC status code and a human-readable message."""

    def __init__(self, code, message):
        self.code = StatusCode(code)
        self.message = message
        super().__init__(str(self))

    def __str__(self):
        return f"rpc error: code = {_label(self.code)} desc = {self.message}"

    def __repr__(self):
        return f"RpcError({self.code.name}, {self.message!r})"


def http_status_for(code, allowed):
    """Return the HTTP status for an RPC code.

    ``allowed`` names the codes a handler passes through: either an iterable of
    codes, each mapped to its usual HTTP status, or a mapping from code to the
    HTTP status to use. Any other code maps to 500.
    """
    code = StatusCode(code)
    if isinstance(allowed, Mapping):
        normalised = {StatusCode(key): HTTPStatus(value) for key, value in allowed.items()}
        return normalised.get(code, HTTPStatus.INTERNAL_SERVER_ERROR)
    if not isinstance(allowed, Iterable):
        raise TypeError("allowed must be an iterable of codes or a mapping")
    if code in {StatusCode(item) for item in allowed}:
        return _DEFAULT_HTTP.get(code, HTTPStatus.INTERNAL_SERVER_ERROR)
    return HTTPStatus.INTERNAL_SERVER_ERROR