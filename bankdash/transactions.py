"""
Transaction Submitter — deposits, withdrawals and transfers.

Submission is confirmed, never optimistic:
  1. validate locally; a bad request never reaches the network
  2. POST to the endpoint for the request's kind
  3. on success refetch the full account list, then report success
  4. on failure report once and re-raise; nothing is retried, since a
     repeated money movement cannot be taken back

The echoed transaction is kept for display only.  Balances always come from
the refetch, so fees, holds or later rejections applied by the server are
reflected exactly.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from bankdash.accounts import AccountCache
from bankdash.errors import AuthError, BankdashError, ServerError, ValidationError
from bankdash.models import (
    DepositRequest,
    TransactionOutcome,
    TransactionRecord,
    TransactionRequest,
    TransferRequest,
    WithdrawalRequest,
)
from bankdash.notifications import NotificationSink
from bankdash.session import SessionStore

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "deposit": "/transactions/deposit",
    "withdraw": "/transactions/withdraw",
    "transfer": "/transactions/transfer",
}

LABELS = {
    "deposit": "Deposit",
    "withdraw": "Withdrawal",
    "transfer": "Transfer",
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_request(request: TransactionRequest) -> None:
    """Raise ``ValidationError`` describing the first problem found."""
    if isinstance(request, TransferRequest):
        if _is_blank(request.from_account_id) or _is_blank(request.to_account_id):
            raise ValidationError("Please select source and destination accounts")
        if str(request.from_account_id).strip() == str(request.to_account_id).strip():
            raise ValidationError("Source and destination accounts cannot be the same")
    elif _is_blank(request.account_id):
        raise ValidationError("Please select an account")

    amount = request.amount
    if amount is None:
        raise ValidationError("Please enter an amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero")


class TransactionSubmitter:
    """Sends money movements and keeps the account cache honest afterwards."""

    def __init__(self, session: SessionStore, cache: AccountCache, sink: NotificationSink):
        self._session = session
        self._cache = cache
        self._sink = sink

    async def submit(self, request: TransactionRequest) -> TransactionOutcome:
        label = LABELS[request.kind]

        try:
            validate_request(request)
        except ValidationError as e:
            self._sink.warning(e.message())
            raise

        try:
            raw = await self._session.request("POST", ENDPOINTS[request.kind], json=request.payload())
        except AuthError as e:
            self._sink.error(e.message("Your session has expired. Please log in again."))
            raise
        except BankdashError as e:
            logger.warning("%s rejected: %s", label, e)
            self._sink.error(e.message(f"{label} failed"))
            raise

        record: TransactionRecord | None = None
        try:
            record = TransactionRecord.model_validate(raw)
        except PydanticValidationError:
            logger.debug("%s response carried no transaction record", label)
        logger.info("%s of %s accepted", label, request.amount)

        refreshed = True
        try:
            accounts = await self._cache.invalidate_and_refresh()
        except BankdashError as e:
            logger.warning("Balances not refreshed after %s: %s", label.lower(), e)
            refreshed = False
            accounts = self._cache.accounts

        self._sink.success(f"{label} successful!")
        return TransactionOutcome(request=request, record=record, accounts=accounts, refreshed=refreshed)

    async def deposit(
        self,
        account_id: int | str | None,
        amount: Any,
        description: str | None = None,
        reference: str | None = None,
    ) -> TransactionOutcome:
        request = self._build(
            DepositRequest, account_id=account_id, amount=amount,
            description=description, reference=reference,
        )
        return await self.submit(request)

    async def withdraw(
        self,
        account_id: int | str | None,
        amount: Any,
        description: str | None = None,
        reference: str | None = None,
    ) -> TransactionOutcome:
        request = self._build(
            WithdrawalRequest, account_id=account_id, amount=amount,
            description=description, reference=reference,
        )
        return await self.submit(request)

    async def transfer(
        self,
        from_account_id: int | str | None,
        to_account_id: int | str | None,
        amount: Any,
        description: str | None = None,
        reference: str | None = None,
    ) -> TransactionOutcome:
        request = self._build(
            TransferRequest, from_account_id=from_account_id, to_account_id=to_account_id,
            amount=amount, description=description, reference=reference,
        )
        return await self.submit(request)

    async def history(self, account_id: int | str | None) -> list[TransactionRecord]:
        """Transactions touching ``account_id``, as the server lists them."""
        if _is_blank(account_id) or str(account_id).strip() in (".", ".."):
            self._sink.warning("Please select an account")
            raise ValidationError("Please select an account")

        path = "/transactions/history/" + quote(str(account_id), safe="")
        try:
            raw = await self._session.request("GET", path)
            if not isinstance(raw, list):
                raise ServerError("Malformed transaction history")
            try:
                return [TransactionRecord.model_validate(item) for item in raw]
            except PydanticValidationError as e:
                raise ServerError("Malformed transaction history") from e
        except BankdashError as e:
            self._sink.error(e.message("Failed to load transaction history"))
            raise

    def _build(self, model: type[Any], **fields: Any) -> TransactionRequest:
        try:
            return model(**fields)
        except PydanticValidationError as e:
            self._sink.warning("Please enter a valid amount")
            raise ValidationError("Please enter a valid amount") from e
