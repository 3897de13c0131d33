"""Service for creating new records with stable ids."""

from datetime import datetime

from ulid import ULID

from refinery.domain.constants import RECORD_ID_PREFIX
from refinery.domain.records import Flashcard, PageMap, Record
from refinery.domain.scheduling.config import AlgorithmConfig
from refinery.domain.scheduling.models import new_card_state


def generate_record_id() -> str:
    """Generate a stable, time-sortable record id using ULID."""
    return f"{RECORD_ID_PREFIX}{ULID()}"


def construct_record(
    highlight: str,
    note: str,
    source: str,
    deck: str,
    config: AlgorithmConfig,
    now: datetime,
    page_map: PageMap | None = None,
    notebook: str | None = None,
    rich_content: str = "",
) -> Record:
    """
    Build a new record whose flashcard starts as a NEW card of `deck`.

    Args:
        highlight: The highlighted passage.
        note: The note attached to the passage (may be empty).
        source: Where the passage came from (book title, app).
        deck: Deck the flashcard belongs to.
        config: The deck's scheduling policy, for the initial easiness factor.
        now: Creation time. The card is due immediately.
    """
    return Record(
        record_id=generate_record_id(),
        highlight=highlight,
        note=note,
        source=source,
        created=now,
        modified=now,
        flashcard=Flashcard(deck=deck, state=new_card_state(config, now)),
        rich_content=rich_content,
        page_map=page_map,
        notebook=notebook,
    )
