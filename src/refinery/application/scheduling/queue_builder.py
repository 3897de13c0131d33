"""
Queue builder for daily study sessions.

Builds ordered study queues by:
1. Partitioning a deck snapshot into new, due-review and not-due cards
2. Ordering each partition (due date for reviews, deck order rule for new cards)
3. Applying the per-day caps
4. Concatenating reviews first, then new cards

Reviews come first because they are time-sensitive and new cards are not.
"""

import logging
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from refinery.application.scheduling.engine import is_due
from refinery.domain.records import StoredCard
from refinery.domain.scheduling.config import AlgorithmConfig, NewCardOrder
from refinery.domain.scheduling.models import CardStatus

logger = logging.getLogger(__name__)


@dataclass
class QueueBuildResult:
    """Result of queue building operation."""

    review_queue: list[str]  # Due learning/review/leech cards, earliest due first
    new_queue: list[str]  # New cards in deck order
    not_due: int  # Reviewed cards not yet due
    suspended: int  # Suspended cards, never queued
    capped_reviews: int  # Due reviews left out by rev.maxPerDay
    capped_new: int  # New cards left out by new.maxPerDay

    @property
    def ordered(self) -> list[str]:
        """Card ids in presentation order: reviews, then new cards."""
        return self.review_queue + self.new_queue


def build_queue_plan(
    cards: Iterable[StoredCard] | Mapping[str, StoredCard],
    config: AlgorithmConfig,
    now: datetime,
    rng: random.Random | None = None,
) -> QueueBuildResult:
    """
    Build today's queue for one deck.

    Args:
        cards: Snapshot of the deck's cards, as an iterable or a card-id mapping.
        config: The deck's scheduling policy.
        now: Reference time for due checks.
        rng: Random source for the `random` new-card order. Pass a seeded
            generator for reproducible queues.

    Returns:
        QueueBuildResult with the capped queues and diagnostics.
    """
    config.validate()
    if isinstance(cards, Mapping):
        cards = cards.values()

    new_cards: list[StoredCard] = []
    due_cards: list[StoredCard] = []
    not_due = 0
    suspended = 0

    for card in cards:
        if card.suspended:
            suspended += 1
        elif card.state.status is CardStatus.NEW:
            new_cards.append(card)
        elif is_due(card.state, now):
            due_cards.append(card)
        else:
            not_due += 1

    due_cards.sort(key=lambda c: (c.state.next_revision, c.card_id))
    new_cards = _order_new_cards(new_cards, config.new.order, rng)

    rev_cap = config.rev.max_per_day
    new_cap = config.new.max_per_day
    result = QueueBuildResult(
        review_queue=[c.card_id for c in due_cards[:rev_cap]],
        new_queue=[c.card_id for c in new_cards[:new_cap]],
        not_due=not_due,
        suspended=suspended,
        capped_reviews=max(0, len(due_cards) - rev_cap),
        capped_new=max(0, len(new_cards) - new_cap),
    )

    logger.debug(
        f"[queue] reviews={len(result.review_queue)} new={len(result.new_queue)} "
        f"not_due={not_due} suspended={suspended} "
        f"capped={result.capped_reviews}/{result.capped_new}"
    )
    return result


def build_queue(
    cards: Iterable[StoredCard] | Mapping[str, StoredCard],
    config: AlgorithmConfig,
    now: datetime,
    rng: random.Random | None = None,
) -> list[str]:
    """Ordered card ids to present: capped due reviews first, then capped new cards."""
    return build_queue_plan(cards, config, now, rng).ordered


def _order_new_cards(
    cards: list[StoredCard],
    order: NewCardOrder,
    rng: random.Random | None,
) -> list[StoredCard]:
    """
    Apply the deck's new-card order.

    Cards are put in canonical id order first so a shuffle with a given seed
    does not depend on the order the store returned them in.
    """
    ordered = sorted(cards, key=lambda c: c.card_id)

    if order is NewCardOrder.RANDOM:
        if rng is None:
            rng = random.Random()
        rng.shuffle(ordered)
        return ordered

    ordered.sort(key=lambda c: c.created)  # stable: ties keep id order
    return ordered
