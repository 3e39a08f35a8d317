"""
Pytest configuration and fixtures.

``FakeBank`` plays the banking API behind an ``httpx.MockTransport`` so the
real Transport, Session Store and friends run end to end without sockets.
"""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Any

import httpx
import pytest

from bankdash.client import BankingClient
from bankdash.models import ClientConfig

BASE_URL = "http://bank.test/api"


class FakeBank:
    """In-memory banking API with just enough ledger to answer like a real one."""

    def __init__(self):
        self.passwords = {"alice": "secret"}
        self.identities = {
            "alice": {
                "id": 7,
                "firstName": "Alice",
                "lastName": "Johnson",
                "username": "alice",
                "email": "alice@example.com",
            },
        }
        self.tokens: dict[str, str] = {}
        self.accounts: dict[str, list[dict[str, Any]]] = {
            "alice": [
                {"id": "A1", "accountNumber": "ACC-0001", "accountType": "CHECKING", "balance": Decimal("100.00")},
                {"id": "A2", "accountNumber": "ACC-0002", "accountType": "SAVINGS", "balance": Decimal("250.00")},
            ],
        }
        self.history: list[dict[str, Any]] = []
        self.expires_in: int | None = None

        self.calls: list[tuple[str, str]] = []
        self.overrides: dict[tuple[str, str], httpx.Response] = {}
        self.gate: asyncio.Event | None = None  # holds GET /accounts until set
        self.waiting = 0

    # ── helpers for tests ────────────────────────────────────────────────

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def balance(self, account_id: str, username: str = "alice") -> Decimal:
        return self._find(username, account_id)["balance"]

    def revoke_tokens(self) -> None:
        self.tokens.clear()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ── request handling ─────────────────────────────────────────────────

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        method = request.method
        self.calls.append((method, path))

        if (method, path) in self.overrides:
            return self.overrides[(method, path)]

        if path == "/auth/login" and method == "POST":
            return self._login(_body(request))
        if path == "/auth/signup" and method == "POST":
            return self._signup(_body(request))

        username = self._authenticate(request)
        if username is None:
            return httpx.Response(401, json={"message": "Full authentication is required"})

        if path == "/users/me" and method == "GET":
            return httpx.Response(200, json=self.identities[username])
        if path == "/accounts" and method == "GET":
            if self.gate is not None:
                self.waiting += 1
                await self.gate.wait()
                self.waiting -= 1
            return httpx.Response(200, json=[_account_json(a) for a in self.accounts[username]])
        if path == "/accounts" and method == "POST":
            return self._create_account(username, _body(request))
        if path.startswith("/transactions/") and method == "POST":
            return self._move_money(username, path.rsplit("/", 1)[-1], _body(request))
        if path.startswith("/transactions/history/") and method == "GET":
            account_id = path.rsplit("/", 1)[-1]
            records = [r for r in self.history if account_id in _touched(r)]
            return httpx.Response(200, json=records)

        return httpx.Response(404, json={"message": "Not found"})

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        username = body.get("username")
        if self.passwords.get(username) != body.get("password"):
            return httpx.Response(401, json={"message": "Bad credentials"})
        token = f"tok-{username}-{len(self.tokens) + 1}"
        self.tokens[token] = username
        payload: dict[str, Any] = {"accessToken": token, "tokenType": "Bearer"}
        if self.expires_in is not None:
            payload["expiresIn"] = self.expires_in
        return httpx.Response(200, json=payload)

    def _signup(self, body: dict[str, Any]) -> httpx.Response:
        if body["username"] in self.passwords:
            return httpx.Response(400, json={"success": False, "message": "Username is already taken!"})
        self.passwords[body["username"]] = body["password"]
        return httpx.Response(200, json={"success": True, "message": "User registered successfully"})

    def _authenticate(self, request: httpx.Request) -> str | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None
        return self.tokens.get(header[len("Bearer "):])

    def _find(self, username: str, account_id: Any) -> dict[str, Any]:
        for account in self.accounts[username]:
            if str(account["id"]) == str(account_id):
                return account
        raise KeyError(account_id)

    def _create_account(self, username: str, body: dict[str, Any]) -> httpx.Response:
        accounts = self.accounts.setdefault(username, [])
        account = {
            "id": f"A{len(accounts) + 1}",
            "accountNumber": f"ACC-{len(accounts) + 1:04d}",
            "accountType": body["accountType"],
            "balance": Decimal("0.00"),
        }
        accounts.append(account)
        return httpx.Response(200, json=_account_json(account))

    def _move_money(self, username: str, kind: str, body: dict[str, Any]) -> httpx.Response:
        amount = Decimal(str(body["amount"]))
        try:
            if kind == "transfer":
                source = self._find(username, body["fromAccountId"])
                target = self._find(username, body["toAccountId"])
            elif kind == "withdraw":
                source, target = self._find(username, body["accountId"]), None
            else:
                source, target = None, self._find(username, body["accountId"])
        except KeyError:
            return httpx.Response(404, json={"message": "Account not found"})

        if source is not None and source["balance"] < amount:
            return httpx.Response(400, json={"message": "Insufficient funds"})
        if source is not None:
            source["balance"] -= amount
        if target is not None:
            target["balance"] += amount

        record = {
            "id": len(self.history) + 1,
            "transactionId": f"TXN-{len(self.history) + 1:06d}",
            "transactionType": {"deposit": "DEPOSIT", "withdraw": "WITHDRAWAL"}.get(kind, "TRANSFER"),
            "amount": str(amount),
            "description": body.get("description", ""),
            "status": "COMPLETED",
            "createdAt": "2024-01-15T10:30:00",
            "fromAccount": {"id": source["id"]} if source else None,
            "toAccount": {"id": target["id"]} if target else None,
        }
        self.history.append(record)
        return httpx.Response(200, json=record)


def _body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}")


def _touched(record: dict[str, Any]) -> set[str]:
    return {str(side["id"]) for side in (record.get("fromAccount"), record.get("toAccount")) if side}


def _account_json(account: dict[str, Any]) -> dict[str, Any]:
    return {**account, "balance": float(account["balance"])}


async def wait_until(predicate, attempts: int = 100) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def bank() -> FakeBank:
    return FakeBank()


@pytest.fixture
def config() -> ClientConfig:
    # Long interval: background ticks stay out of the way unless a test drives them.
    return ClientConfig(base_url=BASE_URL, poll_interval=3600)


@pytest.fixture
def client(bank: FakeBank, config: ClientConfig) -> BankingClient:
    return BankingClient(config, http_transport=bank.transport())
