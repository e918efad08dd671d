"""Public HTTP gateway logic that fronts the balance, feed and card services."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from cardbank.messages import MerchantData, Transaction, to_dict
from cardbank.rpc import RpcError, StatusCode, http_status_for

logger = logging.getLogger(__name__)

_UINT32_MAX = 2**32 - 1
_TRANSACTION_TYPE = "TRANSACTION"
_FROZEN = "FROZEN"


@dataclass(frozen=True)
class HttpResult:
    """An HTTP status code and the JSON-ready body to send with it."""

    status: int
    body: Any


def _error(status, message):
    return HttpResult(int(status), {"error": message})


def _rpc_failure(err, passthrough, service):
    """Map a downstream failure to an HTTP result.

    Codes in ``passthrough`` carry the downstream message to the client;
    INTERNAL and unexpected codes are hidden behind a generic message.
    """
    if not isinstance(err, RpcError):
        logger.error("unexpected gRPC error from %s service: %s", service, err)
        return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")
    if err.code in passthrough:
        return _error(http_status_for(err.code, passthrough), err.message)
    if err.code == StatusCode.INTERNAL:
        return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal server error")
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "unknown gRPC error")


def _parse_limit(limit):
    """Return the feed limit as an unsigned 32-bit integer, or raise ValueError."""
    if limit is None or limit == "":
        return 0
    if isinstance(limit, bool):
        raise ValueError("invalid limit")
    if isinstance(limit, int):
        value = limit
    elif isinstance(limit, str):
        if not limit.isascii() or not limit.isdigit():
            raise ValueError("invalid limit")
        value = int(limit)
    else:
        raise ValueError("invalid limit")
    if not 0 <= value <= _UINT32_MAX:
        raise ValueError("invalid limit")
    return value


def _transaction_view(txn: Transaction):
    return {
        "id": txn.id,
        "amount": txn.amount,
        "currency": txn.currency,
        "status": txn.status,
        "merchant_raw": txn.merchant_raw,
        "category": txn.category,
    }


def _merchant_view(merchant: MerchantData):
    return {
        "id": merchant.merchant_id,
        "name": merchant.name,
        "category": merchant.category,
        "logo_url": merchant.logo_url,
    }


class ApiGateway:
    """Serves account, feed and card requests by calling the backing services.

    The clients are objects exposing:
    ``balance_client.get_balance(account_id) -> BalanceResponse``,
    ``feed_client.list_feed_items(account_id, limit, before_id) -> list[FeedItem]``,
    ``transactions_client.get_transaction(transaction_id) -> Transaction``,
    ``merchant_client.get_merchant(merchant_id) -> MerchantData`` and
    ``cards_client.update_card_status(card_id, new_status) -> Card``.
    Failures are reported by raising, preferably ``RpcError``.
    """

    def __init__(self, balance_client, feed_client, transactions_client, merchant_client, cards_client):
        self.balance_client = balance_client
        self.feed_client = feed_client
        self.transactions_client = transactions_client
        self.merchant_client = merchant_client
        self.cards_client = cards_client

    def get_balance(self, account_id):
        """Return the balance of an account."""
        if not account_id:
            return _error(HTTPStatus.BAD_REQUEST, "account_id path parameter is required")
        try:
            balance = self.balance_client.get_balance(account_id)
        except Exception as err:
            return _rpc_failure(err, {StatusCode.NOT_FOUND}, "balance")
        return HttpResult(int(HTTPStatus.OK), to_dict(balance))

    def get_feed(self, account_id, limit=None, before_id=""):
        """Return an account's feed, enriched with transaction and merchant details."""
        if not account_id:
            return _error(HTTPStatus.BAD_REQUEST, "account_id path parameter is required")
        try:
            parsed_limit = _parse_limit(limit)
        except ValueError:
            return _error(HTTPStatus.BAD_REQUEST, "invalid limit parameter")

        try:
            items = list(self.feed_client.list_feed_items(account_id, parsed_limit, before_id or ""))
        except Exception as err:
            logger.error("failed to get feed items for account %s: %s", account_id, err)
            return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "failed to get feed items")

        transaction_ids = [
            item.ref_id for item in items if item.type == _TRANSACTION_TYPE and item.ref_id
        ]
        transactions = self._fetch_transactions(transaction_ids)
        merchants = self._fetch_merchants(
            txn.merchant_id for txn in transactions.values() if txn.merchant_id
        )

        enriched = [self._enrich(item, transactions, merchants) for item in items]
        return HttpResult(int(HTTPStatus.OK), {"items": enriched or None})

    def _fetch_transactions(self, transaction_ids: Iterable[str]):
        found = {}
        for transaction_id in transaction_ids:
            try:
                txn = self.transactions_client.get_transaction(transaction_id)
            except Exception as err:
                logger.warning(
                    "failed to get transaction %s for feed item: %s", transaction_id, err
                )
                continue
            found[txn.id] = txn
        return found

    def _fetch_merchants(self, merchant_ids: Iterable[str]):
        found = {}
        for merchant_id in merchant_ids:
            try:
                merchant = self.merchant_client.get_merchant(merchant_id)
            except Exception as err:
                logger.warning("failed to get merchant %s for transaction: %s", merchant_id, err)
                continue
            found[merchant.merchant_id] = merchant
        return found

    @staticmethod
    def _enrich(item, transactions, merchants):
        entry = {
            "id": item.id,
            "account_id": item.account_id,
            "type": item.type,
            "timestamp": item.timestamp,
            "content": item.content,
            "ref_id": item.ref_id,
        }
        if item.type != _TRANSACTION_TYPE or not item.ref_id:
            return entry
        txn = transactions.get(item.ref_id)
        if txn is None:
            return entry
        entry["transaction"] = _transaction_view(txn)
        if txn.merchant_id and txn.merchant_id in merchants:
            entry["merchant"] = _merchant_view(merchants[txn.merchant_id])
        return entry

    def freeze_card(self, card_id):
        """Set a card's status to FROZEN and return the updated card."""
        if not card_id:
            return _error(HTTPStatus.BAD_REQUEST, "card ID path parameter is required")
        try:
            card = self.cards_client.update_card_status(card_id, _FROZEN)
        except Exception as err:
            return _rpc_failure(
                err, {StatusCode.NOT_FOUND, StatusCode.INVALID_ARGUMENT}, "cards"
            )
        return HttpResult(int(HTTPStatus.OK), to_dict(card))