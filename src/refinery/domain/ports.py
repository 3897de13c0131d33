"""
Ports (interfaces) for record persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod

from .records import Record, StoredCard
from .scheduling.models import CardState


class RecordStore(ABC):
    """
    Port for reading and writing records in the document store.

    Implementations:
        - MemoryRecordStore: In-process dict, used by tests and dry runs.
        - CouchDbRecordStore: CouchDB HTTP API via httpx.
    """

    @abstractmethod
    async def get_record(self, record_id: str) -> Record:
        """
        Fetch a single record.

        Raises:
            RecordNotFound: No record with this id.
        """

    @abstractmethod
    async def add_record(self, record: Record) -> Record:
        """
        Insert a new record.

        Returns:
            The record carrying the revision token assigned by the store.

        Raises:
            Conflict: A record with the same id already exists.
        """

    @abstractmethod
    async def deck_cards(self, deck_id: str) -> dict[str, StoredCard]:
        """
        Snapshot of every card in a deck, keyed by card id.
        """

    @abstractmethod
    async def update_card(
        self,
        card_id: str,
        state: CardState,
        revision: str | None,
        suspended: bool | None = None,
        tags: tuple[str, ...] | None = None,
    ) -> str:
        """
        Replace the scheduling state of a card.

        Args:
            card_id: Record id.
            state: New scheduling state.
            revision: Revision token the caller read the record with.
            suspended: New suspended flag, unchanged if None.
            tags: New tag set, unchanged if None.

        Returns:
            The new revision token.

        Raises:
            Conflict: `revision` is stale.
            RecordNotFound: No record with this id.
        """

    async def aclose(self) -> None:
        """Release connections. Adapters without any keep this no-op."""
        return None
