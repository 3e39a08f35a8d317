"""
Transport — the HTTP boundary to the banking API.

Wraps an ``httpx.AsyncClient`` and turns every response into either parsed
JSON or one of the bankdash error classes.  No ``httpx`` exception escapes
this module.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bankdash.circuit_breaker import CircuitBreaker
from bankdash.errors import AuthError, NetworkError, ServerError

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 403)


def extract_message(response: httpx.Response) -> str | None:
    """Pull the server's human-readable message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def classify_response(response: httpx.Response) -> Any:
    """Return the decoded JSON of a 2xx response or raise the matching error."""
    if response.status_code in AUTH_FAILURE_STATUSES:
        raise AuthError(extract_message(response))
    if not response.is_success:
        raise ServerError(extract_message(response), status_code=response.status_code)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        raise ServerError("Malformed response from server", status_code=response.status_code)


class Transport:
    """
    Authenticated JSON-over-HTTP calls against the banking API.

    ``transport`` is handed straight to ``httpx.AsyncClient`` and lets tests
    mount an ``httpx.MockTransport`` in place of the network.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self._timeout = timeout
        self._circuit_breaker = circuit_breaker
        self._transport = transport
        self._session: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> httpx.AsyncClient:
        if self._session is not None:
            return self._session
        self._session = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )
        logger.info("Transport connected to %s", self.base_url)
        return self._session

    async def disconnect(self):
        if self._session is not None:
            await self._session.aclose()
            self._session = None

    async def request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json: Any = None,
    ) -> Any:
        """
        Send one request.  ``token`` adds the bearer header; login and signup
        go out without one.
        """
        if self._circuit_breaker is not None:
            return await self._circuit_breaker.call(self._send, method, path, token, json)
        return await self._send(method, path, token, json)

    async def _send(self, method: str, path: str, token: str | None, json: Any) -> Any:
        session = await self.connect()

        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await session.request(method, path, headers=headers, json=json)
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out: %s", method, path, e)
            raise NetworkError("Request timed out") from e
        except httpx.RequestError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise NetworkError() from e

        logger.debug("%s %s → %d", method, path, response.status_code)
        return classify_response(response)

    @property
    def stats(self) -> dict[str, Any]:
        data: dict[str, Any] = {"base_url": self.base_url, "connected": self.connected}
        if self._circuit_breaker is not None:
            data["circuit_breaker"] = self._circuit_breaker.stats
        return data
