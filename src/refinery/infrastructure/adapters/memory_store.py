"""
Memory Record Store: in-process adapter with CouchDB-style revision tokens.

Keeps documents (not Records) so every read goes through the same codec as
the CouchDB adapter. Used by the test suite and the `memory` backend.

With a `path`, the documents are loaded from a JSON snapshot on construction
and the snapshot is rewritten after every write, so one-shot CLI commands
see each other's cards.
"""

import copy
import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from refinery.domain.errors import Conflict, RecordNotFound, StoreError
from refinery.domain.ports import RecordStore
from refinery.domain.records import Record, StoredCard
from refinery.domain.scheduling.models import CardState
from refinery.infrastructure.documents import record_from_document, record_to_document

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _next_revision(doc: dict[str, Any], previous: str | None) -> str:
    head = previous.split("-", 1)[0] if previous else "0"
    generation = int(head) + 1 if head.isdigit() else 1
    body = {k: v for k, v in doc.items() if k != "_rev"}
    digest = hashlib.md5(json.dumps(body, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{generation}-{digest}"


def _load_snapshot(path: Path) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise StoreError(f"Cannot read memory store snapshot {path}: {e}") from e
    if not isinstance(data, list) or not all(isinstance(d, dict) and "_id" in d for d in data):
        raise StoreError(f"Memory store snapshot {path} must be a list of documents")
    logger.debug(f"Loaded {len(data)} documents from {path}")
    return data


class MemoryRecordStore(RecordStore):
    """Dict-backed RecordStore. Single event loop only."""

    def __init__(
        self,
        documents: Iterable[dict[str, Any]] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        path: Path | None = None,
    ):
        self._docs: dict[str, dict[str, Any]] = {}
        self._clock = clock
        self.path = path
        if path is not None and path.exists():
            for doc in _load_snapshot(path):
                self._insert(doc)
        for doc in documents or []:
            self._insert(copy.deepcopy(doc))

    def _insert(self, doc: dict[str, Any]) -> str:
        doc_id = doc["_id"]
        if doc_id in self._docs:
            raise Conflict(doc_id, doc.get("_rev"))
        doc["_rev"] = doc.get("_rev") or _next_revision(doc, None)
        self._docs[doc_id] = doc
        return doc["_rev"]

    def _save(self) -> None:
        if self.path is None:
            return
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(list(self._docs.values()), indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise StoreError(f"Cannot write memory store snapshot {self.path}: {e}") from e
        logger.debug(f"Saved {len(self._docs)} documents to {self.path}")

    def documents(self) -> list[dict[str, Any]]:
        """Deep copy of every stored document."""
        return copy.deepcopy(list(self._docs.values()))

    async def get_record(self, record_id: str) -> Record:
        doc = self._docs.get(record_id)
        if doc is None:
            raise RecordNotFound(record_id)
        return record_from_document(copy.deepcopy(doc))

    async def add_record(self, record: Record) -> Record:
        doc = record_to_document(replace(record, revision=None))
        revision = self._insert(doc)
        self._save()
        return replace(record, revision=revision)

    async def deck_cards(self, deck_id: str) -> dict[str, StoredCard]:
        cards: dict[str, StoredCard] = {}
        for doc in self._docs.values():
            if doc.get("flashcard", {}).get("deck") != deck_id:
                continue
            record = record_from_document(copy.deepcopy(doc))
            cards[record.record_id] = record.as_card()
        return cards

    async def update_card(
        self,
        card_id: str,
        state: CardState,
        revision: str | None,
        suspended: bool | None = None,
        tags: tuple[str, ...] | None = None,
    ) -> str:
        current = self._docs.get(card_id)
        if current is None:
            raise RecordNotFound(card_id)
        if current["_rev"] != revision:
            logger.debug(f"Stale revision for {card_id}: {revision} != {current['_rev']}")
            raise Conflict(card_id, revision)

        record = record_from_document(copy.deepcopy(current))
        updated = record.with_card(state, self._clock(), suspended=suspended, tags=tags)
        doc = record_to_document(replace(updated, revision=None))
        doc["_rev"] = _next_revision(doc, revision)
        self._docs[card_id] = doc
        self._save()
        return doc["_rev"]
