"""
Record model: a highlighted passage, the reader's note, and its flashcard.

Pure data with no I/O. Stores convert documents to records through the
codec in `refinery.infrastructure.documents`.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from refinery.domain.scheduling.models import CardState

PageMapType = Literal["epubcfi", "pdf"]


@dataclass(frozen=True)
class PageMap:
    """Back-reference from a record to the spot in the book or PDF it came from."""

    pagemap_type: PageMapType
    pagemap_value: str


@dataclass(frozen=True)
class Flashcard:
    """Flashcard metadata of a record."""

    deck: str
    state: CardState
    suspended: bool = False
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoredCard:
    """
    The slice of a record the queue builder and the engine need.

    Attributes:
        card_id: Id of the owning record.
        deck_id: Deck the card belongs to.
        created: Creation timestamp of the record.
        state: Current scheduling state.
        suspended: Excluded from queues when True.
        revision: Store concurrency token for the record.
    """

    card_id: str
    deck_id: str
    created: datetime
    state: CardState
    suspended: bool = False
    revision: str | None = None


@dataclass(frozen=True)
class Record:
    record_id: str
    highlight: str
    note: str
    source: str
    created: datetime
    modified: datetime
    flashcard: Flashcard
    rich_content: str = ""
    page_map: PageMap | None = None
    notebook: str | None = None
    linked: tuple[str, ...] = ()
    revision: str | None = None
    # Unknown document keys, kept so a round trip through the store loses nothing
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def as_card(self) -> StoredCard:
        return StoredCard(
            card_id=self.record_id,
            deck_id=self.flashcard.deck,
            created=self.created,
            state=self.flashcard.state,
            suspended=self.flashcard.suspended,
            revision=self.revision,
        )

    def with_card(
        self,
        state: CardState,
        modified: datetime,
        suspended: bool | None = None,
        tags: tuple[str, ...] | None = None,
    ) -> "Record":
        flashcard = replace(
            self.flashcard,
            state=state,
            suspended=self.flashcard.suspended if suspended is None else suspended,
            tags=self.flashcard.tags if tags is None else tuple(tags),
        )
        return replace(self, flashcard=flashcard, modified=modified)

