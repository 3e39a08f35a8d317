"""
Session Store — owns the credential token and the signed-in user.

A session is published only once the server has confirmed who the token
belongs to, and it is replaced wholesale: callers never see a token without
a user or a user without a token.  Every authenticated request goes through
``SessionStore.request`` so that an auth rejection anywhere tears the session
down in one place.

Each start or end of a session bumps ``epoch``.  Work that began under an
older epoch (a refresh still in flight at logout, say) compares its epoch on
completion and discards its result.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from bankdash.errors import (
    AuthError,
    BankdashError,
    NoSessionError,
    ServerError,
    SessionExpiredError,
    ValidationError,
)
from bankdash.models import LoginResponse, UserIdentity
from bankdash.notifications import NotificationSink
from bankdash.storage import TokenStorage
from bankdash.transport import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    token: str
    user: UserIdentity
    epoch: int
    expires_at: float | None = None  # clock() reading, None = no known expiry

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class SessionListener:
    """Hooks called after a session starts or ends. Both default to no-ops."""

    def session_started(self, session: Session) -> None:
        pass

    def session_ended(self) -> None:
        pass


class SessionStore:
    """
    Single writer of the session.

    Args:
        transport:  HTTP boundary to the banking API
        storage:    Durable storage for the token
        sink:       Where user-visible outcomes are reported
        token_key:  Storage key of the persisted token
        clock:      Monotonic clock used for token expiry
    """

    def __init__(
        self,
        transport: Transport,
        storage: TokenStorage,
        sink: NotificationSink,
        token_key: str = "authToken",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._transport = transport
        self._storage = storage
        self._sink = sink
        self._token_key = token_key
        self._clock = clock

        self._session: Session | None = None
        self._epoch = 0
        self._listeners: list[SessionListener] = []

    # ── accessors ────────────────────────────────────────────────────────

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def token(self) -> str | None:
        return self._session.token if self._session else None

    @property
    def user(self) -> UserIdentity | None:
        return self._session.user if self._session else None

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def is_current(self, epoch: int) -> bool:
        return self._session is not None and self._epoch == epoch

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    # ── transitions ──────────────────────────────────────────────────────

    async def login(self, username: str, password: str) -> Session:
        """Exchange credentials for a token, confirm the identity, publish."""
        if not username or not password:
            self._sink.warning("Please enter your username and password")
            raise ValidationError("Username and password are required")

        try:
            raw = await self._transport.request(
                "POST", "/auth/login", json={"username": username, "password": password},
            )
            login = LoginResponse.model_validate(raw)
        except ServerError as e:
            self._sink.error(e.message("Login failed"))
            if e.is_server_fault:
                raise
            raise AuthError(e.detail) from e
        except PydanticValidationError as e:
            self._sink.error("Login failed")
            raise ServerError("Malformed login response") from e
        except BankdashError as e:
            self._sink.error(e.message("Login failed"))
            raise

        expires_at = None
        if login.expires_in and login.expires_in > 0:
            expires_at = self._clock() + login.expires_in / 1000

        try:
            session = await self._confirm(login.access_token, expires_at)
        except AuthError as e:
            self._sink.error(e.message("Login failed"))
            raise

        logger.info("Logged in as %s (epoch=%d)", session.user.username, session.epoch)
        self._sink.success("Login successful!")
        return session

    async def validate_existing(self, token: str) -> Session:
        """
        Rebuild a session from a previously persisted token.

        Any failure, rejection or otherwise, tears down exactly as logout
        would and raises ``AuthError``.
        """
        session = await self._confirm(token, None)
        logger.info("Restored session for %s (epoch=%d)", session.user.username, session.epoch)
        return session

    async def restore(self) -> Session | None:
        """Startup hook: validate the persisted token, if there is one."""
        token = self._storage.get(self._token_key)
        if not token:
            return None
        try:
            return await self.validate_existing(token)
        except AuthError as e:
            logger.info("Persisted token rejected: %s", e)
            self._sink.warning("Your session has expired. Please log in again.")
            return None

    async def signup(
        self,
        first_name: str,
        last_name: str,
        username: str,
        email: str,
        password: str,
        phone: str | None = None,
    ) -> None:
        """Register a new user.  Does not log them in."""
        body: dict[str, Any] = {
            "firstName": first_name,
            "lastName": last_name,
            "username": username,
            "email": email,
            "password": password,
        }
        missing = [k for k, v in body.items() if not v]
        if missing:
            self._sink.warning("Please fill in all required fields")
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if phone:
            body["phone"] = phone

        try:
            await self._transport.request("POST", "/auth/signup", json=body)
        except BankdashError as e:
            self._sink.error(e.message("Registration failed"))
            raise
        logger.info("Registered user %s", username)
        self._sink.success("Registration successful! Please login.")

    def logout(self) -> None:
        """Drop the session and the persisted token. Safe to call repeatedly."""
        had_session = self._session is not None
        self._teardown()
        if had_session:
            self._sink.info("Logged out successfully")

    # ── authenticated requests ───────────────────────────────────────────

    async def request(self, method: str, path: str, json: Any = None) -> Any:
        """
        Send an authenticated request with the current token.

        Fails before sending when there is no session or the token has
        expired.  An auth rejection from the server ends the session that
        sent the request.
        """
        session = self._session
        if session is None:
            raise NoSessionError()
        if session.is_expired(self._clock()):
            logger.info("Token for %s expired, ending session", session.user.username)
            self._teardown()
            raise SessionExpiredError()

        try:
            return await self._transport.request(method, path, token=session.token, json=json)
        except AuthError as e:
            if self._session is session:
                logger.warning("%s %s rejected the token, ending session", method, path)
                self._teardown()
                e.ended_session = True
            raise

    # ── internals ────────────────────────────────────────────────────────

    async def _confirm(self, token: str, expires_at: float | None) -> Session:
        try:
            raw = await self._transport.request("GET", "/users/me", token=token)
            user = UserIdentity.model_validate(raw)
        except (BankdashError, PydanticValidationError) as e:
            self._teardown()
            if isinstance(e, AuthError):
                raise
            detail = e.detail if isinstance(e, BankdashError) else None
            raise AuthError(detail or "Could not verify your session") from e

        return self._publish(token, user, expires_at)

    def _publish(self, token: str, user: UserIdentity, expires_at: float | None) -> Session:
        if self._session is not None:
            self._end()
        self._epoch += 1
        session = Session(token=token, user=user, epoch=self._epoch, expires_at=expires_at)
        self._session = session
        self._storage.set(self._token_key, session.token)
        for listener in self._listeners:
            listener.session_started(session)
        return session

    def _teardown(self) -> None:
        self._storage.delete(self._token_key)
        if self._session is not None:
            self._end()
        else:
            for listener in self._listeners:
                listener.session_ended()

    def _end(self) -> None:
        self._session = None
        self._epoch += 1
        logger.info("Session ended (epoch=%d)", self._epoch)
        for listener in self._listeners:
            listener.session_ended()
