"""
Account Cache — the signed-in user's accounts as of the last fetch.

The cache is a read-through snapshot.  It is either empty and unfetched or
holds exactly what the last ``GET /accounts`` returned; nothing ever edits a
balance locally.  After a mutation the whole list is fetched again, because
only the server knows what a deposit or transfer really did.

At most one list request is outstanding per session: concurrent callers of
``refresh`` share the in-flight fetch.  A fetch that lands after its session
ended is dropped instead of repopulating the cache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from bankdash.errors import AuthError, BankdashError, NoSessionError, ServerError, ValidationError
from bankdash.models import Account, AccountSummary, AccountType
from bankdash.notifications import NotificationSink
from bankdash.session import Session, SessionListener, SessionStore

logger = logging.getLogger(__name__)


class AccountCache(SessionListener):
    """Owns the account snapshot; the only writer of it."""

    def __init__(self, session: SessionStore, sink: NotificationSink):
        self._session = session
        self._sink = sink

        self._accounts: tuple[Account, ...] = ()
        self._fetched = False
        self._last_refreshed_at: float | None = None
        self._inflight: asyncio.Task | None = None
        self._inflight_epoch: int | None = None

        self._refresh_count = 0
        self._discarded_count = 0
        self._failure_count = 0

        session.subscribe(self)

    # ── read accessors (never fetch) ─────────────────────────────────────

    @property
    def accounts(self) -> tuple[Account, ...]:
        return self._accounts

    @property
    def is_fetched(self) -> bool:
        return self._fetched

    @property
    def is_refreshing(self) -> bool:
        return self._running_fetch() is not None

    @property
    def last_refreshed_at(self) -> float | None:
        return self._last_refreshed_at

    def get(self, account_id: int | str) -> Account | None:
        for account in self._accounts:
            if str(account.id) == str(account_id):
                return account
        return None

    def summary(self) -> AccountSummary:
        return AccountSummary(
            total_balance=sum((a.balance for a in self._accounts), Decimal("0")),
            account_count=len(self._accounts),
        )

    # ── fetching ─────────────────────────────────────────────────────────

    async def refresh(self) -> tuple[Account, ...]:
        """
        Replace the snapshot with the server's current account list.

        Joins the refresh already in flight for this session, if any.
        Raises ``NoSessionError`` when logged out.
        """
        if not self._session.is_authenticated:
            raise NoSessionError("Cannot load accounts without a session")

        task = self._running_fetch()
        if task is None:
            epoch = self._session.epoch
            task = asyncio.create_task(self._fetch(epoch))
            task.add_done_callback(self._fetch_done)
            self._inflight = task
            self._inflight_epoch = epoch
        return await asyncio.shield(task)

    async def invalidate_and_refresh(self) -> tuple[Account, ...]:
        """
        Full refetch after a mutation.

        A refresh that started before the mutation may predate it, so it is
        waited out and a new one issued.
        """
        earlier = self._running_fetch()
        if earlier is not None:
            try:
                await asyncio.shield(earlier)
            except BankdashError:
                pass  # reported by the fetch itself
        return await self.refresh()

    async def create_account(self, account_type: AccountType | str) -> Account | None:
        """
        Open a new account of ``account_type`` and refetch the list.

        Returns the created account as echoed by the server, or None when the
        echo could not be read.
        """
        value = account_type.value if isinstance(account_type, AccountType) else (account_type or "").strip()
        if not value:
            self._sink.warning("Please select an account type")
            raise ValidationError("Account type is required")

        try:
            raw = await self._session.request("POST", "/accounts", json={"accountType": value.upper()})
        except BankdashError as e:
            self._sink.error(e.message("Failed to create account"))
            raise

        account: Account | None = None
        try:
            account = Account.model_validate(raw)
        except PydanticValidationError:
            logger.debug("Create-account response carried no account: %r", raw)

        logger.info("Created %s account", value.upper())
        try:
            await self.invalidate_and_refresh()
        except BankdashError:
            pass  # reported by the fetch itself
        self._sink.success("Account created successfully!")
        return account

    def clear(self) -> None:
        self._accounts = ()
        self._fetched = False
        self._last_refreshed_at = None
        self._inflight = None
        self._inflight_epoch = None

    # ── SessionListener ──────────────────────────────────────────────────

    def session_started(self, session: Session) -> None:
        self.clear()

    def session_ended(self) -> None:
        self.clear()

    # ── internals ────────────────────────────────────────────────────────

    def _running_fetch(self) -> asyncio.Task | None:
        """The in-flight fetch for the current session, if any."""
        task = self._inflight
        if task is None or task.done() or self._inflight_epoch != self._session.epoch:
            return None
        return task

    async def _fetch(self, epoch: int) -> tuple[Account, ...]:
        try:
            raw = await self._session.request("GET", "/accounts")
            if not isinstance(raw, list):
                raise ServerError("Malformed account list")
            try:
                accounts = tuple(Account.model_validate(item) for item in raw)
            except PydanticValidationError as e:
                raise ServerError("Malformed account list") from e
        except NoSessionError:
            raise
        except AuthError as e:
            self._failure_count += 1
            if e.ended_session or self._session.is_current(epoch):
                self._sink.error(e.message("Your session has expired. Please log in again."))
            raise
        except BankdashError as e:
            self._failure_count += 1
            if self._session.is_current(epoch):
                self._sink.error(e.message("Failed to load accounts"))
            raise

        if not self._session.is_current(epoch):
            self._discarded_count += 1
            logger.debug("Discarding account list from ended session (epoch=%d)", epoch)
            return self._accounts

        self._accounts = accounts
        self._fetched = True
        self._last_refreshed_at = time.time()
        self._refresh_count += 1
        logger.debug("Account cache replaced: %d account(s)", len(accounts))
        return accounts

    def _fetch_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
            self._inflight_epoch = None
        if not task.cancelled():
            task.exception()  # mark retrieved; awaiting callers re-raise it

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "accounts": len(self._accounts),
            "fetched": self._fetched,
            "refreshing": self.is_refreshing,
            "refresh_count": self._refresh_count,
            "discarded_count": self._discarded_count,
            "failure_count": self._failure_count,
        }
