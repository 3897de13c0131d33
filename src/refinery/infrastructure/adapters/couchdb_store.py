"""
CouchDB Record Store: infrastructure adapter for the CouchDB HTTP API.

Implements RecordStore over httpx. Revision tokens are CouchDB `_rev` values,
so stale writes come back from the server as 409 and surface as Conflict.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from refinery.domain.constants import FIND_PAGE_SIZE, REQUEST_TIMEOUT
from refinery.domain.errors import Conflict, RecordNotFound, StoreError
from refinery.domain.ports import RecordStore
from refinery.domain.records import Record, StoredCard
from refinery.domain.scheduling.models import CardState
from refinery.infrastructure.documents import record_from_document, record_to_document


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CouchDbRecordStore(RecordStore):
    """Adapter for a CouchDB (or PouchDB server) database of records."""

    def __init__(
        self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Args:
            url: Database URL, e.g. http://localhost:5984/refinery
            user: Optional basic-auth user.
            password: Optional basic-auth password.
            timeout: Per-request timeout in seconds.
            client: Pre-built client (tests inject one with a MockTransport).
        """
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self._auth = httpx.BasicAuth(user, password or "") if user else None
        self._timeout = timeout
        self._client = client
        self._clock = clock
        self.logger.debug(f"CouchDbRecordStore initialized with url={self.url}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, auth=self._auth)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_responsive(self) -> bool:
        """Check that the database exists and answers."""
        try:
            resp = await self._get_client().get(self.url)
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        target = f"{self.url}/{path}" if path else self.url
        try:
            return await self._get_client().request(method, target, **kwargs)
        except httpx.HTTPError as e:
            self.logger.error(f"CouchDB {method} {target} failed: {e}")
            raise StoreError(f"CouchDB request failed: {e}") from e

    def _raise_for_status(self, resp: httpx.Response, record_id: str, revision: str | None):
        if resp.status_code == 404:
            raise RecordNotFound(record_id)
        if resp.status_code == 409:
            raise Conflict(record_id, revision)
        if resp.status_code >= 400:
            self.logger.error(f"CouchDB answered {resp.status_code} for {record_id}: {resp.text}")
            raise StoreError(
                f"CouchDB answered {resp.status_code} for {record_id}", status=resp.status_code
            )

    async def _get_document(self, record_id: str) -> dict[str, Any]:
        resp = await self._request("GET", quote(record_id, safe=""))
        self._raise_for_status(resp, record_id, None)
        return resp.json()

    async def _put_document(self, doc: dict[str, Any], revision: str | None) -> str:
        record_id = doc["_id"]
        resp = await self._request("PUT", quote(record_id, safe=""), json=doc)
        self._raise_for_status(resp, record_id, revision)
        data = resp.json()
        if not data.get("ok") or "rev" not in data:
            raise StoreError(f"Unexpected CouchDB response for {record_id}: {data}")
        return data["rev"]

    async def get_record(self, record_id: str) -> Record:
        return record_from_document(await self._get_document(record_id))

    async def add_record(self, record: Record) -> Record:
        doc = record_to_document(replace(record, revision=None))
        revision = await self._put_document(doc, None)
        return replace(record, revision=revision)

    async def deck_cards(self, deck_id: str) -> dict[str, StoredCard]:
        """Page through a Mango `_find` query on flashcard.deck."""
        cards: dict[str, StoredCard] = {}
        bookmark: str | None = None

        while True:
            query: dict[str, Any] = {
                "selector": {"flashcard.deck": deck_id},
                "limit": FIND_PAGE_SIZE,
            }
            if bookmark:
                query["bookmark"] = bookmark

            resp = await self._request("POST", "_find", json=query)
            self._raise_for_status(resp, f"_find:{deck_id}", None)
            data = resp.json()

            docs = data.get("docs", [])
            for doc in docs:
                record = record_from_document(doc)
                cards[record.record_id] = record.as_card()

            if len(docs) < FIND_PAGE_SIZE:
                break
            bookmark = data.get("bookmark")
            if not bookmark:
                break

        self.logger.debug(f"[couchdb] deck '{deck_id}' has {len(cards)} cards")
        return cards

    async def update_card(
        self,
        card_id: str,
        state: CardState,
        revision: str | None,
        suspended: bool | None = None,
        tags: tuple[str, ...] | None = None,
    ) -> str:
        # Writing with the caller's token lets the server reject stale updates
        record = record_from_document(await self._get_document(card_id))
        updated = record.with_card(state, self._clock(), suspended=suspended, tags=tags)
        doc = record_to_document(replace(updated, revision=revision))
        return await self._put_document(doc, revision)
