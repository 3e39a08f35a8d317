"""
Core data models for bankdash.

Defines the wire shapes exchanged with the banking API (camelCase on the
wire, snake_case in Python), the money-movement requests, the records the
client displays, and the client configuration.
"""

from __future__ import annotations

import enum
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AccountType(str, enum.Enum):
    SAVINGS = "SAVINGS"
    CHECKING = "CHECKING"
    CREDIT = "CREDIT"


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationLevel(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ---------------------------------------------------------------------------
# Server-owned records (read-only snapshots)
# ---------------------------------------------------------------------------

_WIRE = {"populate_by_name": True, "frozen": True}


class UserIdentity(BaseModel):
    """The authenticated user, fetched once per session from /users/me."""
    id: int | str
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    username: str
    email: str = ""

    model_config = _WIRE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Account(BaseModel):
    """One account as of the last successful fetch."""
    id: int | str
    account_number: str = Field(..., alias="accountNumber")
    account_type: Union[AccountType, str] = Field(..., alias="accountType")
    balance: Decimal = Decimal("0")
    is_active: bool = Field(True, alias="isActive")

    model_config = _WIRE


class AccountRef(BaseModel):
    """Account reference embedded in a transaction record."""
    id: int | str
    account_number: str | None = Field(None, alias="accountNumber")

    model_config = _WIRE


class TransactionRecord(BaseModel):
    """A server-returned transaction, displayed but never built locally."""
    id: int | str
    transaction_id: str | None = Field(None, alias="transactionId")
    transaction_type: Union[TransactionType, str] = Field(..., alias="transactionType")
    amount: Decimal
    description: str | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime | None = Field(None, alias="createdAt")
    from_account: AccountRef | None = Field(None, alias="fromAccount")
    to_account: AccountRef | None = Field(None, alias="toAccount")

    model_config = _WIRE

    def direction(self, account_id: int | str) -> str:
        """``"-"`` when money left ``account_id``, ``"+"`` when it arrived."""
        if self.transaction_type == TransactionType.WITHDRAWAL:
            return "-"
        if self.transaction_type == TransactionType.TRANSFER:
            if self.from_account is not None and str(self.from_account.id) == str(account_id):
                return "-"
        return "+"


class LoginResponse(BaseModel):
    access_token: str = Field(..., alias="accessToken")
    token_type: str = Field("Bearer", alias="tokenType")
    expires_in: int | None = Field(None, alias="expiresIn", description="Milliseconds")

    model_config = _WIRE


# ---------------------------------------------------------------------------
# Money-movement requests — checked by the submitter, not on construction
# ---------------------------------------------------------------------------

class _RequestBase(BaseModel):
    amount: Decimal | None = None
    description: str | None = None
    reference: str | None = None

    model_config = _WIRE

    def payload(self) -> dict[str, Any]:
        """JSON body for the API. Amounts travel as decimal strings."""
        body = self.model_dump(by_alias=True, exclude={"kind"}, exclude_none=True)
        body["amount"] = str(self.amount)
        body.setdefault("description", "")
        return body


class DepositRequest(_RequestBase):
    kind: Literal["deposit"] = "deposit"
    account_id: int | str | None = Field(None, alias="accountId")


class WithdrawalRequest(_RequestBase):
    kind: Literal["withdraw"] = "withdraw"
    account_id: int | str | None = Field(None, alias="accountId")


class TransferRequest(_RequestBase):
    kind: Literal["transfer"] = "transfer"
    from_account_id: int | str | None = Field(None, alias="fromAccountId")
    to_account_id: int | str | None = Field(None, alias="toAccountId")


TransactionRequest = Union[DepositRequest, WithdrawalRequest, TransferRequest]


# ---------------------------------------------------------------------------
# Client-side results
# ---------------------------------------------------------------------------

class Notification(BaseModel):
    level: NotificationLevel
    message: str
    created_at: float = Field(default_factory=time.time)


class TransactionOutcome(BaseModel):
    """Result of a confirmed submission.

    ``accounts`` is the cache snapshot after the post-submission refetch;
    ``refreshed`` is False when that refetch failed and balances may be stale.
    """
    request: TransactionRequest = Field(..., discriminator="kind")
    record: TransactionRecord | None = None
    accounts: tuple[Account, ...] = ()
    refreshed: bool = True


class AccountSummary(BaseModel):
    total_balance: Decimal = Decimal("0")
    account_count: int = 0


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------

class CircuitBreakerConfig(BaseModel):
    enabled: bool = True
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # seconds before probing again


class ClientConfig(BaseModel):
    """Top-level client configuration."""
    base_url: str = "http://localhost:8080/api"
    timeout: float = 30.0
    poll_interval: float = 30.0  # seconds between background refreshes
    storage_path: str | None = Field(
        None,
        description="JSON file for the persisted token (None = keep it in memory)",
    )
    token_key: str = "authToken"
    log_level: str = "INFO"
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
