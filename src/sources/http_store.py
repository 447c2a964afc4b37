"""
HTTP durable store (aiohttp)

REST client for the cards API:
    POST   {api_url}/cards                     -> created row
    PATCH  {api_url}/cards/{id}                -> updated row
    DELETE {api_url}/cards/{id}                -> 204
    GET    {api_url}/projects/{id}/cards       -> {"cards": [rows]}

Status codes map onto StoreErrorKind; network errors and timeouts are
TRANSIENT.
"""

import asyncio
import logging
from typing import Any

import aiohttp

from models import Card

from sources.durable_store import DurableStore, StoreError, StoreErrorKind

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0

_STATUS_KINDS = {
    404: StoreErrorKind.NOT_FOUND,
    401: StoreErrorKind.FORBIDDEN,
    403: StoreErrorKind.FORBIDDEN,
    409: StoreErrorKind.CONFLICT,
    412: StoreErrorKind.CONFLICT,
    422: StoreErrorKind.CONFLICT,
    408: StoreErrorKind.TRANSIENT,
    429: StoreErrorKind.TRANSIENT,
}


def error_kind_for_status(status: int) -> StoreErrorKind:
    """Map an HTTP error status to a StoreErrorKind."""
    if status in _STATUS_KINDS:
        return _STATUS_KINDS[status]
    if status >= 500:
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.CONFLICT


class HttpDurableStore(DurableStore):
    """
    DurableStore over the cards REST API.

    Args:
        api_url: Base URL (e.g. http://localhost:9101/api)
        token: Bearer token sent on every request
        timeout: Total per-request timeout in seconds
        session: Existing ClientSession (not closed by this store)
    """

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers(), timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload: dict | None = None) -> Any:
        url = f"{self.api_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, json=payload) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    kind = error_kind_for_status(resp.status)
                    logger.debug(f"{method} {url} -> {resp.status} ({kind.value})")
                    raise StoreError(kind, f"{method} {path}: {resp.status} {text[:200]}", status=resp.status)
                if resp.status == 204:
                    return None
                return await resp.json()
        except StoreError:
            raise
        except asyncio.TimeoutError as e:
            raise StoreError(StoreErrorKind.TRANSIENT, f"{method} {path}: timed out") from e
        except aiohttp.ClientError as e:
            raise StoreError(StoreErrorKind.TRANSIENT, f"{method} {path}: {e}") from e

    @staticmethod
    def _card(data: Any) -> Card:
        # Some endpoints wrap the row: {"card": {...}}
        if isinstance(data, dict) and isinstance(data.get("card"), dict):
            data = data["card"]
        if not isinstance(data, dict):
            raise StoreError(StoreErrorKind.TRANSIENT, f"unexpected response body: {data!r}")
        return Card.from_row(data)

    async def create_card(self, payload: dict[str, Any]) -> Card:
        return self._card(await self._request("POST", "/cards", payload))

    async def update_card(self, card_id: str, partial: dict[str, Any]) -> Card:
        return self._card(await self._request("PATCH", f"/cards/{card_id}", partial))

    async def delete_card(self, card_id: str) -> None:
        await self._request("DELETE", f"/cards/{card_id}")

    async def get_cards_by_project(self, project_id: str) -> list[Card]:
        data = await self._request("GET", f"/projects/{project_id}/cards")
        rows = data.get("cards", []) if isinstance(data, dict) else data
        return [Card.from_row(row) for row in rows or []]

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
