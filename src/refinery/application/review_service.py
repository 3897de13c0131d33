"""
Review Service: application layer orchestrator.

Coordinates the record store, the deck registry and the scheduling engine:
reads a snapshot, asks the pure components for a decision, writes back with
the record's revision token. Conflicts are never retried here.
"""

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from refinery.application.deck_config import DeckRegistry
from refinery.application.id_service import construct_record
from refinery.application.scheduling.engine import SchedulingEngine, is_due
from refinery.application.scheduling.queue_builder import QueueBuildResult, build_queue_plan
from refinery.domain.constants import LEECH_TAG
from refinery.domain.errors import Conflict
from refinery.domain.ports import RecordStore
from refinery.domain.records import PageMap, Record
from refinery.domain.scheduling.config import LeechAction
from refinery.domain.scheduling.models import CardState, CardStatus, Grade

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GradeOutcome:
    """
    Result of grading a stored card.

    `counted_as_due` is False when the card was graded ahead of schedule, so
    callers working from a cached queue know not to count it against the
    daily review cap.
    """

    card_id: str
    grade: Grade
    state: CardState
    leech_action: LeechAction | None
    counted_as_due: bool
    suspended: bool
    revision: str


class ReviewService:
    """
    Application service for queues and grading.

    Follows Dependency Inversion: depends on the RecordStore abstraction,
    not concrete adapter implementations.
    """

    def __init__(
        self,
        store: RecordStore,
        decks: DeckRegistry,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            store: The repository (port) for records.
            decks: Deck to algorithm lookup.
            rng: Random source shared by fuzz and shuffles. Seed it for
                reproducible runs.
            clock: Source of "now" when a call does not pass one.
        """
        self._store = store
        self._decks = decks
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._engines: dict[str, SchedulingEngine] = {}

    def engine_for(self, deck_id: str) -> SchedulingEngine:
        engine = self._engines.get(deck_id)
        if engine is None:
            engine = SchedulingEngine(self._decks.algorithm_for(deck_id), rng=self._rng)
            self._engines[deck_id] = engine
        return engine

    async def build_queue(
        self,
        deck_id: str,
        now: datetime | None = None,
        rng: random.Random | None = None,
    ) -> QueueBuildResult:
        """Today's queue for a deck. `rng` overrides the service's random source."""
        config = self._decks.algorithm_for(deck_id)
        cards = await self._store.deck_cards(deck_id)
        return build_queue_plan(
            cards,
            config,
            now or self._clock(),
            rng=rng if rng is not None else self._rng,
        )

    async def due_cards(self, deck_id: str, now: datetime | None = None) -> list[str]:
        """Every due, non-suspended, already-reviewed card, earliest due first. No caps."""
        self._decks.algorithm_for(deck_id)
        now = now or self._clock()
        cards = await self._store.deck_cards(deck_id)
        due = [
            c
            for c in cards.values()
            if not c.suspended and c.state.status is not CardStatus.NEW and is_due(c.state, now)
        ]
        due.sort(key=lambda c: (c.state.next_revision, c.card_id))
        return [c.card_id for c in due]

    async def grade_card(
        self,
        card_id: str,
        grade: Any,
        now: datetime | None = None,
    ) -> GradeOutcome:
        """
        Grade a stored card and write the new state back.

        Raises:
            InvalidGrade: Before any I/O, if `grade` is not a valid grade.
            RecordNotFound: Unknown card id.
            Conflict: The record changed since it was read. Propagated as is.
        """
        grade = Grade.parse(grade)
        now = now or self._clock()

        record = await self._store.get_record(card_id)
        flashcard = record.flashcard
        result = self.engine_for(flashcard.deck).grade(flashcard.state, grade, now)

        suspended = flashcard.suspended
        tags = flashcard.tags
        if result.leech_action is LeechAction.SUSPEND:
            suspended = True
        elif result.leech_action is LeechAction.TAG and LEECH_TAG not in tags:
            tags = tags + (LEECH_TAG,)
        if result.leech_action is not None:
            logger.warning(
                f"Card {card_id} is a leech after {result.state.lapse_count} fails "
                f"({result.leech_action.name.lower()})"
            )

        try:
            revision = await self._store.update_card(
                card_id, result.state, record.revision, suspended=suspended, tags=tags
            )
        except Conflict:
            logger.warning(f"Card {card_id} changed since it was read; grade not applied")
            raise

        logger.info(
            f"Graded {card_id} {grade.name.lower()}: {result.state.status.value}, "
            f"next {result.state.next_revision.isoformat()}"
        )
        return GradeOutcome(
            card_id=card_id,
            grade=grade,
            state=result.state,
            leech_action=result.leech_action,
            counted_as_due=is_due(flashcard.state, now),
            suspended=suspended,
            revision=revision,
        )

    async def add_card(
        self,
        deck_id: str,
        highlight: str,
        note: str = "",
        source: str = "manual",
        page_map: PageMap | None = None,
        notebook: str | None = None,
        rich_content: str = "",
        now: datetime | None = None,
    ) -> Record:
        """Create a record with a NEW flashcard in `deck_id` and store it."""
        record = construct_record(
            highlight,
            note,
            source,
            deck_id,
            self._decks.algorithm_for(deck_id),
            now or self._clock(),
            page_map=page_map,
            notebook=notebook,
            rich_content=rich_content,
        )
        stored = await self._store.add_record(record)
        logger.info(f"Added {stored.record_id} to deck '{deck_id}'")
        return stored

    async def aclose(self) -> None:
        await self._store.aclose()
