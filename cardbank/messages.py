"""Message types exchanged between the services and their JSON form."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from typing import get_args, get_origin


@dataclass
class Card:
    id: str = ""
    user_id: str = ""
    status: str = ""
    last_four: str = ""


@dataclass
class FeedItem:
    id: str = ""
    account_id: str = ""
    type: str = ""
    timestamp: str = ""
    content: str = ""
    ref_id: str = ""


@dataclass
class Transaction:
    id: str = ""
    account_id: str = ""
    amount: int = 0
    currency: str = ""
    status: str = ""
    merchant_id: str = ""
    merchant_raw: str = ""
    category: str = ""


@dataclass
class TransactionInput:
    account_id: str = ""
    card_id: str = ""
    amount: int = 0
    currency: str = ""
    merchant_id: str = ""
    merchant_raw: str = ""
    status: str = ""


@dataclass
class MerchantData:
    merchant_id: str = ""
    name: str = ""
    category: str = ""
    logo_url: str = ""
    mcc: int = 0


@dataclass
class BalanceResponse:
    account_id: str = ""
    current_balance: int = 0


@dataclass
class DebitResult:
    success: bool = False
    new_balance: int = 0
    error_message: str = ""


@dataclass
class CardAuthRequest:
    card_id: str = ""
    amount: int = 0
    currency: str = ""
    merchant_id: str = ""
    merchant_name: str = ""


@dataclass
class CardAuthReply:
    approved: bool = False
    decline_reason: str = ""


@dataclass
class CreateSessionRequest:
    user_id: str = ""
    currency: str = ""
    amount: int = 0
    redirect_url: str = ""


@dataclass
class CreateSessionResponse:
    session_id: str = ""
    status: str = ""
    payment_url: str = ""


@dataclass
class GetSessionResponse:
    session_id: str = ""
    status: str = ""
    user_id: str = ""


@dataclass
class ListSessionsResponse:
    sessions: list[GetSessionResponse] = field(default_factory=list)
    next_cursor: str = ""


@dataclass
class CreateWalletRequest:
    user_id: str = ""


@dataclass
class CreateWalletResponse:
    wallet_address: str = ""


@dataclass
class EstimatePaymentAmountRequest:
    target_currency: str = ""
    target_amount: int = 0
    source_currency: str = ""


@dataclass
class EstimatePaymentAmountResponse:
    estimated_amount: int = 0
    source_currency: str = ""


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list)) and not value:
        return True
    if isinstance(value, (bool, int)) and not value:
        return True
    return False


def _encode(value):
    if is_dataclass(value) and not isinstance(value, type):
        return to_dict(value)
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


def to_dict(message):
    """Return the JSON-ready dict of a message, leaving out zero-valued fields."""
    if not is_dataclass(message) or isinstance(message, type):
        raise TypeError(f"not a message: {message!r}")
    return {
        f.name: _encode(getattr(message, f.name))
        for f in fields(message)
        if not _is_empty(getattr(message, f.name))
    }


def _convert(tp, value, name):
    origin = get_origin(tp)
    if origin is list:
        if not isinstance(value, list):
            raise TypeError(f"field {name!r}: expected a list")
        (item_type,) = get_args(tp)
        return [_convert(item_type, item, name) for item in value]
    if isinstance(tp, type) and is_dataclass(tp):
        return from_dict(tp, value)
    if tp is bool:
        if not isinstance(value, bool):
            raise TypeError(f"field {name!r}: expected a boolean")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"field {name!r}: expected an integer")
        return value
    if tp is str:
        if not isinstance(value, str):
            raise TypeError(f"field {name!r}: expected a string")
        return value
    raise TypeError(f"field {name!r}: unsupported type {tp!r}")


def _lookup(data: Mapping, name: str):
    if name in data:
        return data[name]
    folded = name.casefold()
    for key, value in data.items():
        if isinstance(key, str) and key.casefold() == folded:
            return value
    return None


def from_dict(cls, data):
    """Build a message of type ``cls`` from decoded JSON.

    Unknown keys are ignored, missing or null fields keep their zero value,
    keys match case-insensitively, and a value of the wrong type raises
    TypeError.
    """
    if not (isinstance(cls, type) and is_dataclass(cls)):
        raise TypeError(f"not a message type: {cls!r}")
    if not isinstance(data, Mapping):
        raise TypeError(f"expected an object for {cls.__name__}")
    kwargs = {}
    for f in fields(cls):
        value = _lookup(data, f.name)
        if value is None:
            continue
        kwargs[f.name] = _convert(f.type, value, f.name)
    return cls(**kwargs)