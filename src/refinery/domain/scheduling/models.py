"""
Domain models for flashcard scheduling.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any

from refinery.domain.errors import InvalidGrade, InvalidRecord
from refinery.domain.scheduling.config import AlgorithmConfig, LeechAction

_GRADE_ALIASES = {"again": "FAIL"}


class Grade(IntEnum):
    """User feedback on a review. FAIL is the only negative grade."""

    FAIL = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def is_success(self) -> bool:
        return self is not Grade.FAIL

    @classmethod
    def parse(cls, value: Any) -> "Grade":
        """Accept a Grade, its integer code or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise InvalidGrade(value) from None
        if isinstance(value, str):
            key = value.strip()
            if key.isdecimal():
                try:
                    return cls.parse(int(key))
                except ValueError:
                    raise InvalidGrade(value) from None
            name = _GRADE_ALIASES.get(key.lower(), key.upper())
            if name in cls.__members__:
                return cls[name]
        raise InvalidGrade(value)


class CardStatus(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    LEECH = "leech"


@dataclass(frozen=True)
class CardState:
    """
    Scheduling state embedded in a record.

    Attributes:
        easiness_factor: Multiplier for interval growth on review successes.
        past_revisions: Review timestamps, oldest first. Append-only.
        next_revision: When the card becomes due.
        lapse_count: Consecutive fails since the last success.
        status: Stage of the card. LEECH depends on the deck's threshold,
            so it is stored rather than derived.
    """

    easiness_factor: float
    next_revision: datetime
    past_revisions: tuple[datetime, ...] = ()
    lapse_count: int = 0
    status: CardStatus = CardStatus.NEW

    def __post_init__(self):
        if isinstance(self.past_revisions, list):
            object.__setattr__(self, "past_revisions", tuple(self.past_revisions))
        self._check_invariants()

    def _check_invariants(self) -> None:
        ef = self.easiness_factor
        if not isinstance(ef, (int, float)) or isinstance(ef, bool) or ef <= 0:
            raise InvalidRecord(f"easiness_factor must be positive, got {ef!r}")
        if (
            not isinstance(self.lapse_count, int)
            or isinstance(self.lapse_count, bool)
            or self.lapse_count < 0
        ):
            raise InvalidRecord(f"lapse_count must be a non-negative integer, got {self.lapse_count!r}")
        if not isinstance(self.status, CardStatus):
            raise InvalidRecord(f"status must be a CardStatus, got {self.status!r}")

        revisions = self.past_revisions
        if any(later < earlier for earlier, later in zip(revisions, revisions[1:])):
            raise InvalidRecord("past_revisions must be in review order")
        if revisions and self.next_revision < revisions[-1]:
            raise InvalidRecord("next_revision precedes the last revision")

        if self.status is CardStatus.NEW and revisions:
            raise InvalidRecord("a NEW card cannot have past revisions")
        if self.status is not CardStatus.NEW and not revisions:
            raise InvalidRecord(f"a {self.status.name} card must have at least one revision")

    @property
    def review_count(self) -> int:
        return len(self.past_revisions)

    @property
    def last_reviewed(self) -> datetime | None:
        return self.past_revisions[-1] if self.past_revisions else None

    @property
    def last_interval(self) -> timedelta:
        """Interval the card was last scheduled with (zero if never reviewed)."""
        if not self.past_revisions:
            return timedelta(0)
        return self.next_revision - self.past_revisions[-1]


@dataclass(frozen=True)
class GradeResult:
    """
    Outcome of grading a card.

    `leech_action` is set only on the review that makes (or keeps) the card a
    leech. Acting on it is the caller's job.
    """

    state: CardState
    leech_action: LeechAction | None = None

    @property
    def interval(self) -> timedelta:
        return self.state.last_interval


def new_card_state(config: AlgorithmConfig, now: datetime) -> CardState:
    """State of a freshly created card: immediately eligible, no history."""
    return CardState(
        easiness_factor=config.new.initial_factor,
        next_revision=now,
        past_revisions=(),
        lapse_count=0,
        status=CardStatus.NEW,
    )
