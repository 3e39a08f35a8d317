"""
BankingClient — wires the components together and owns their lifecycle.

    async with BankingClient(config) as client:
        await client.login("alice", "s3cret")
        await client.transactions.withdraw(account_id=1, amount="50.00")
        print(client.accounts.summary())

The Session Store gates everything: the Account Cache and the Refresh
Scheduler subscribe to it, so a login starts polling and any logout or
auth rejection clears the cache and stops polling.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from bankdash.accounts import AccountCache
from bankdash.circuit_breaker import CircuitBreaker
from bankdash.errors import BankdashError
from bankdash.models import ClientConfig
from bankdash.notifications import NotificationLog, NotificationSink
from bankdash.scheduler import RefreshScheduler
from bankdash.session import Session, SessionStore
from bankdash.storage import JsonFileStorage, MemoryStorage, TokenStorage
from bankdash.transactions import TransactionSubmitter
from bankdash.transport import Transport

logger = logging.getLogger(__name__)


class BankingClient:
    """
    Args:
        config:         Client configuration (defaults if omitted)
        storage:        Token storage; defaults to a JSON file when
                        ``config.storage_path`` is set, memory otherwise
        sink:           Notification sink; defaults to a ``NotificationLog``
        http_transport: Optional ``httpx`` transport, e.g. ``MockTransport``
        clock:          Monotonic clock for token expiry
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        storage: TokenStorage | None = None,
        sink: NotificationSink | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ClientConfig()

        breaker = None
        if self.config.circuit_breaker.enabled:
            breaker = CircuitBreaker(
                failure_threshold=self.config.circuit_breaker.failure_threshold,
                recovery_timeout=self.config.circuit_breaker.recovery_timeout,
            )
        self.transport = Transport(
            self.config.base_url,
            timeout=self.config.timeout,
            circuit_breaker=breaker,
            transport=http_transport,
        )

        if storage is None:
            if self.config.storage_path:
                storage = JsonFileStorage(self.config.storage_path)
            else:
                storage = MemoryStorage()
        self.storage = storage
        self.notifications = sink if sink is not None else NotificationLog()

        self.session = SessionStore(
            self.transport, self.storage, self.notifications,
            token_key=self.config.token_key, clock=clock,
        )
        self.accounts = AccountCache(self.session, self.notifications)
        self.transactions = TransactionSubmitter(self.session, self.accounts, self.notifications)
        self.scheduler = RefreshScheduler(self.session, self.accounts, interval=self.config.poll_interval)

    async def __aenter__(self) -> BankingClient:
        await self.transport.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def startup(self) -> Session | None:
        """Restore a persisted session, if any, and load its accounts."""
        await self.transport.connect()
        session = await self.session.restore()
        if session is not None:
            await self._load_accounts()
        return session

    async def login(self, username: str, password: str) -> Session:
        session = await self.session.login(username, password)
        await self._load_accounts()
        return session

    def logout(self) -> None:
        self.session.logout()

    async def shutdown(self) -> None:
        """Stop polling and close the HTTP client.  The session is kept."""
        self.scheduler.stop()
        await self.transport.disconnect()
        logger.info("Banking client shut down.")

    async def _load_accounts(self) -> None:
        try:
            await self.accounts.refresh()
        except BankdashError as e:
            logger.warning("Initial account load failed: %s", e)

    def status(self) -> dict[str, Any]:
        user = self.session.user
        return {
            "authenticated": self.session.is_authenticated,
            "user": user.username if user else None,
            "epoch": self.session.epoch,
            "accounts": self.accounts.stats,
            "scheduler": self.scheduler.stats,
            "transport": self.transport.stats,
        }
