from http import HTTPStatus

import pytest

from cardbank.rpc import RpcError, StatusCode, http_status_for


def test_error_string_matches_wire_form():
    err = RpcError(StatusCode.NOT_FOUND, "account not found")
    assert str(err) == "rpc error: code = NotFound desc = account not found"


def test_error_keeps_code_and_message():
    err = RpcError(StatusCode.INTERNAL, "failed to authorize transaction")
    assert err.code is StatusCode.INTERNAL
    assert err.message == "failed to authorize transaction"


def test_error_accepts_integer_code():
    err = RpcError(int(StatusCode.NOT_FOUND), "card not found")
    assert err.code is StatusCode.NOT_FOUND


def test_error_rejects_unknown_code():
    with pytest.raises(ValueError):
        RpcError(999, "bad")


def test_error_can_be_raised_and_caught():
    err = RpcError(StatusCode.INVALID_ARGUMENT, "invalid card status: X")
    with pytest.raises(RpcError) as info:
        raise err
    assert info.value is err
    assert str(info.value) == "rpc error: code = InvalidArgument desc = invalid card status: X"


def test_wire_code_five_is_not_found():
    err = RpcError(5, "session not found")
    assert err.code is StatusCode.NOT_FOUND
    assert str(err) == "rpc error: code = NotFound desc = session not found"


def test_allowed_not_found_maps_to_404():
    allowed = {StatusCode.NOT_FOUND, StatusCode.INTERNAL}
    assert http_status_for(StatusCode.NOT_FOUND, allowed) == HTTPStatus.NOT_FOUND


def test_allowed_invalid_argument_maps_to_400():
    allowed = [StatusCode.NOT_FOUND, StatusCode.INVALID_ARGUMENT, StatusCode.INTERNAL]
    assert http_status_for(StatusCode.INVALID_ARGUMENT, allowed) == HTTPStatus.BAD_REQUEST


def test_internal_maps_to_500():
    assert http_status_for(StatusCode.INTERNAL, {StatusCode.INTERNAL}) == HTTPStatus.INTERNAL_SERVER_ERROR


def test_code_outside_allowed_maps_to_500():
    allowed = {StatusCode.NOT_FOUND, StatusCode.INTERNAL}
    assert http_status_for(StatusCode.INVALID_ARGUMENT, allowed) == HTTPStatus.INTERNAL_SERVER_ERROR


def test_mapping_overrides_default_status():
    allowed = {
        StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
        StatusCode.NOT_FOUND: HTTPStatus.BAD_REQUEST,
    }
    assert http_status_for(StatusCode.NOT_FOUND, allowed) == HTTPStatus.BAD_REQUEST
    assert http_status_for(StatusCode.UNAVAILABLE, allowed) == HTTPStatus.INTERNAL_SERVER_ERROR


def test_empty_allowed_always_500():
    for code in StatusCode:
        assert http_status_for(code, ()) == HTTPStatus.INTERNAL_SERVER_ERROR


def test_non_iterable_allowed_rejected():
    with pytest.raises(TypeError):
        http_status_for(StatusCode.NOT_FOUND, 5)