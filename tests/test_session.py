"""
Tests for the Session Store: login, startup validation, logout and teardown.
"""

import httpx
import pytest

from bankdash.client import BankingClient
from bankdash.errors import AuthError, NoSessionError, ServerError, SessionExpiredError, ValidationError
from bankdash.models import NotificationLevel
from bankdash.scheduler import SchedulerState
from bankdash.storage import MemoryStorage


def _assert_consistent(client: BankingClient):
    """Token and user are both present or both absent."""
    assert (client.session.token is None) == (client.session.user is None)


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_login_publishes_confirmed_session(client, bank):
    session = await client.login("alice", "secret")

    assert session.user.username == "alice"
    assert session.user.full_name == "Alice Johnson"
    assert client.session.token == session.token
    assert client.storage.get("authToken") == session.token
    assert bank.count("GET", "/users/me") == 1
    assert client.scheduler.state == SchedulerState.POLLING
    assert [n.message for n in client.notifications.events] == ["Login successful!"]
    _assert_consistent(client)


@pytest.mark.asyncio
async def test_login_loads_accounts(client, bank):
    await client.login("alice", "secret")
    assert client.accounts.is_fetched
    assert [a.id for a in client.accounts.accounts] == ["A1", "A2"]


@pytest.mark.asyncio
async def test_bad_credentials(client, bank):
    with pytest.raises(AuthError) as exc:
        await client.login("alice", "wrong")

    assert exc.value.detail == "Bad credentials"
    assert client.session.session is None
    assert client.storage.get("authToken") is None
    assert client.scheduler.state == SchedulerState.IDLE
    events = client.notifications.events
    assert len(events) == 1
    assert events[0].level == NotificationLevel.ERROR
    assert events[0].message == "Bad credentials"
    _assert_consistent(client)


@pytest.mark.asyncio
async def test_login_requires_credentials(client, bank):
    with pytest.raises(ValidationError):
        await client.login("alice", "")
    assert bank.calls == []


@pytest.mark.asyncio
async def test_login_rejected_with_400_is_auth_error(client, bank):
    bank.overrides[("POST", "/auth/login")] = httpx.Response(400, json={"message": "Account locked"})
    with pytest.raises(AuthError) as exc:
        await client.login("alice", "secret")
    assert exc.value.detail == "Account locked"


@pytest.mark.asyncio
async def test_login_identity_check_failure_leaves_no_session(client, bank):
    bank.overrides[("GET", "/users/me")] = httpx.Response(401, json={"message": "Token invalid"})

    with pytest.raises(AuthError):
        await client.login("alice", "secret")

    assert client.session.session is None
    assert client.storage.get("authToken") is None
    assert len(client.notifications.of_level(NotificationLevel.ERROR)) == 1
    assert client.notifications.of_level(NotificationLevel.SUCCESS) == []


@pytest.mark.asyncio
async def test_second_login_replaces_session_and_bumps_epoch(client, bank):
    first = await client.login("alice", "secret")
    second = await client.login("alice", "secret")

    assert second.token != first.token
    assert second.epoch > first.epoch
    assert client.session.token == second.token
    assert client.scheduler.state == SchedulerState.POLLING


# ---------------------------------------------------------------------------
# startup validation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_restore_with_valid_token(bank, config):
    bank.tokens["tok-saved"] = "alice"
    client = BankingClient(config, storage=MemoryStorage({"authToken": "tok-saved"}), http_transport=bank.transport())

    session = await client.startup()

    assert session is not None
    assert session.user.username == "alice"
    assert client.scheduler.state == SchedulerState.POLLING
    assert client.accounts.is_fetched


@pytest.mark.asyncio
async def test_restore_with_rejected_token(bank, config):
    """A persisted token the server no longer accepts leaves the user logged out."""
    storage = MemoryStorage({"authToken": "tok-stale"})
    client = BankingClient(config, storage=storage, http_transport=bank.transport())

    session = await client.startup()

    assert session is None
    assert client.session.session is None
    assert storage.get("authToken") is None
    assert client.scheduler.state == SchedulerState.IDLE
    assert bank.count("GET", "/accounts") == 0
    assert client.notifications.of_level(NotificationLevel.SUCCESS) == []
    _assert_consistent(client)


@pytest.mark.asyncio
async def test_validate_existing_network_failure_tears_down(bank, config):
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    storage = MemoryStorage({"authToken": "tok-saved"})
    client = BankingClient(config, storage=storage, http_transport=httpx.MockTransport(unreachable))

    with pytest.raises(AuthError):
        await client.session.validate_existing("tok-saved")

    assert client.session.session is None
    assert storage.get("authToken") is None


@pytest.mark.asyncio
async def test_startup_without_token_makes_no_calls(client, bank):
    assert await client.startup() is None
    assert bank.calls == []
    assert client.notifications.events == []


# ---------------------------------------------------------------------------
# logout and teardown
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_logout_clears_everything(client, bank):
    await client.login("alice", "secret")
    epoch = client.session.epoch

    client.logout()

    assert client.session.session is None
    assert client.storage.get("authToken") is None
    assert client.accounts.accounts == ()
    assert not client.accounts.is_fetched
    assert client.scheduler.state == SchedulerState.IDLE
    assert client.session.epoch > epoch
    assert client.notifications.events[-1].message == "Logged out successfully"


@pytest.mark.asyncio
async def test_logout_twice_matches_logout_once(client, bank):
    await client.login("alice", "secret")

    client.logout()
    state_once = (
        client.session.session, client.accounts.accounts,
        client.scheduler.state, client.session.epoch, len(client.notifications.events),
    )
    client.logout()
    state_twice = (
        client.session.session, client.accounts.accounts,
        client.scheduler.state, client.session.epoch, len(client.notifications.events),
    )

    assert state_once == state_twice


def test_logout_when_never_logged_in(client):
    client.logout()
    assert client.session.session is None
    assert client.notifications.events == []


@pytest.mark.asyncio
async def test_auth_rejection_on_any_call_ends_session(client, bank):
    await client.login("alice", "secret")
    bank.revoke_tokens()

    with pytest.raises(AuthError):
        await client.accounts.refresh()

    assert client.session.session is None
    assert client.storage.get("authToken") is None
    assert client.scheduler.state == SchedulerState.IDLE
    assert client.accounts.accounts == ()


@pytest.mark.asyncio
async def test_request_without_session_fails_fast(client, bank):
    with pytest.raises(NoSessionError):
        await client.session.request("GET", "/accounts")
    assert bank.calls == []


@pytest.mark.asyncio
async def test_expired_token_is_never_sent(bank, config):
    now = [0.0]
    client = BankingClient(config, http_transport=bank.transport(), clock=lambda: now[0])
    bank.expires_in = 60_000  # one minute, in milliseconds

    await client.login("alice", "secret")
    calls_before = len(bank.calls)
    now[0] = 61.0

    with pytest.raises(SessionExpiredError):
        await client.session.request("GET", "/accounts")

    assert len(bank.calls) == calls_before
    assert client.session.session is None
    assert client.scheduler.state == SchedulerState.IDLE


# ---------------------------------------------------------------------------
# signup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_signup_does_not_log_in(client, bank):
    await client.session.signup("Bob", "Smith", "bob", "bob@example.com", "pw")

    assert "bob" in bank.passwords
    assert client.session.session is None
    assert client.notifications.events[-1].message == "Registration successful! Please login."


@pytest.mark.asyncio
async def test_signup_duplicate_username(client, bank):
    with pytest.raises(ServerError) as exc:
        await client.session.signup("Alice", "J", "alice", "a@example.com", "pw")

    assert exc.value.detail == "Username is already taken!"
    assert client.notifications.events[-1].message == "Username is already taken!"


@pytest.mark.asyncio
async def test_signup_missing_fields(client, bank):
    with pytest.raises(ValidationError):
        await client.session.signup("", "Smith", "bob", "bob@example.com", "pw")
    assert bank.calls == []
