"""Authorisation of card transactions against card status and account balance."""

import logging

from cardbank.messages import CardAuthReply, TransactionInput
from cardbank.rpc import RpcError, StatusCode

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "ACTIVE"
AUTHORIZED_STATUS = "AUTHORIZED"


class CardProcessingService:
    """Approves or declines card transactions.

    The clients are objects exposing:
    ``cards_client.get_card(card_id) -> Card``,
    ``balance_client.authorize_debit(account_id, amount) -> DebitResult`` and
    ``transactions_client.record_transaction(TransactionInput) -> Transaction``.
    Failures are reported by raising, preferably ``RpcError``.
    """

    def __init__(self, cards_client, balance_client, transactions_client):
        self.cards_client = cards_client
        self.balance_client = balance_client
        self.transactions_client = transactions_client

    def authorize_card_transaction(self, request):
        """Authorise a ``CardAuthRequest`` and return a ``CardAuthReply``.

        Business declines come back as a reply with ``approved`` false; failures
        of the backing services raise ``RpcError`` with code INTERNAL.
        """
        logger.info("Received AuthorizeCardTransaction request: %r", request)

        try:
            card = self.cards_client.get_card(request.card_id)
        except RpcError as err:
            if err.code == StatusCode.NOT_FOUND:
                logger.info("card not found: %s", request.card_id)
                return CardAuthReply(approved=False, decline_reason="card not found")
            logger.error("failed to get card %s: %s", request.card_id, err)
            raise RpcError(StatusCode.INTERNAL, "failed to authorize transaction") from err
        except Exception as err:
            logger.error("failed to get card %s: %s", request.card_id, err)
            raise RpcError(StatusCode.INTERNAL, "failed to authorize transaction") from err

        if card.status != ACTIVE_STATUS:
            logger.info("card %s is not active (status: %s)", request.card_id, card.status)
            return CardAuthReply(
                approved=False, decline_reason=f"card is {card.status.lower()}"
            )

        account_id = card.user_id

        try:
            debit = self.balance_client.authorize_debit(account_id, request.amount)
        except Exception as err:
            logger.error("failed to authorize debit for account %s: %s", account_id, err)
            raise RpcError(StatusCode.INTERNAL, "failed to authorize transaction") from err

        if not debit.success:
            logger.info(
                "debit not authorized for account %s: %s", account_id, debit.error_message
            )
            return CardAuthReply(approved=False, decline_reason=debit.error_message)

        record = TransactionInput(
            account_id=account_id,
            card_id=request.card_id,
            amount=request.amount,
            currency=request.currency,
            merchant_id=request.merchant_id,
            merchant_raw=request.merchant_name,
            status=AUTHORIZED_STATUS,
        )
        try:
            self.transactions_client.record_transaction(record)
        except Exception as err:
            # The debit has already gone through; the mismatch is left to monitoring.
            logger.error("failed to record transaction for account %s: %s", account_id, err)
            raise RpcError(
                StatusCode.INTERNAL, "failed to record transaction after debit"
            ) from err

        logger.info(
            "Transaction authorized and recorded for account %s, card %s, amount %d %s",
            account_id,
            request.card_id,
            request.amount,
            request.currency,
        )
        return CardAuthReply(approved=True)