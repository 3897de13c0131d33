"""
Scheduling engine: the grading decision for a single card.

SM-2 family rules driven by the deck's AlgorithmConfig:
1. Fail -> relearning step (or multiplied interval once the steps run out),
   leech detection after `failsUntilLeech` consecutive fails
2. Success on a new / relearning card -> first interval from `startingIntervals`
3. Success on a review card -> easiness update, growth, cap, fuzz, min space

This is a pure computation module with no I/O.
"""

import logging
import random
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from refinery.domain.constants import EASY_EASE_BONUS, HARD_EASE_PENALTY
from refinery.domain.errors import InvalidConfig, InvalidRecord
from refinery.domain.scheduling.config import AlgorithmConfig
from refinery.domain.scheduling.models import CardState, CardStatus, Grade, GradeResult

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

EASE_ADJUSTMENTS = {
    Grade.HARD: -HARD_EASE_PENALTY,
    Grade.GOOD: 0.0,
    Grade.EASY: EASY_EASE_BONUS,
}


def is_due(state: CardState, now: datetime) -> bool:
    """True when the card's next revision is at or before `now`."""
    return state.next_revision <= now


def adjust_easiness(easiness_factor: float, grade: Grade, floor: float) -> float:
    """
    Apply the grade's easiness adjustment, clamped to `floor`.

    The floor only stops a decrease; it never raises a factor that already
    sits below it.
    """
    adjusted = easiness_factor + EASE_ADJUSTMENTS[grade]
    return max(adjusted, min(easiness_factor, floor))


class SchedulingEngine:
    """
    Grades cards of one deck.

    Stateless apart from the injected random source used for fuzz. Every call
    returns a new CardState; the input state is never modified.
    """

    def __init__(self, config: AlgorithmConfig, rng: random.Random | None = None):
        """
        Args:
            config: The deck's scheduling policy.
            rng: Random source for fuzz. A private, unseeded generator is
                created if not provided.
        """
        config.validate()
        self.config = config
        self._rng = rng if rng is not None else random.Random()

    def grade(self, state: CardState, grade: Any, now: datetime) -> GradeResult:
        """
        Compute the state after reviewing `state` with `grade` at `now`.

        Grading ahead of schedule is allowed.

        Raises:
            InvalidGrade: `grade` is not Fail, Hard, Good or Easy.
            InvalidConfig: The config violates a bound, or relearning is
                reached with no relearning delays configured.
            InvalidRecord: `now` precedes the card's last revision, or the next
                revision falls outside the representable date range.
        """
        grade = Grade.parse(grade)
        self.config.validate()

        last = state.last_reviewed
        if last is not None and now < last:
            raise InvalidRecord(f"Review at {now.isoformat()} precedes last revision {last.isoformat()}")

        try:
            if grade is Grade.FAIL:
                return self._grade_fail(state, now)
            if state.status is CardStatus.REVIEW:
                return GradeResult(self._grade_review(state, grade, now))
            return GradeResult(self._graduate(state, grade, now))
        except OverflowError as e:
            raise InvalidRecord(
                f"Next revision after a review at {now.isoformat()} is out of range"
            ) from e

    def is_due(self, state: CardState, now: datetime) -> bool:
        return is_due(state, now)

    def relearning_interval(self, state: CardState, lapse_count: int) -> timedelta:
        """Interval after the `lapse_count`-th consecutive fail."""
        fail = self.config.fail
        if not fail.delays:
            raise InvalidConfig("fail.delays is empty but the card has reached relearning")

        step = lapse_count - 1
        if step < len(fail.delays):
            return timedelta(minutes=fail.delays[step])

        multiplied = state.last_interval * fail.multiply_interval
        return max(timedelta(days=fail.min_leech_interval), multiplied)

    def starting_interval(self, grade: Grade) -> timedelta:
        """First real interval: low bound for Hard, high for Easy, midpoint for Good."""
        low, high = self.config.new.starting_intervals
        if grade is Grade.HARD:
            days = low
        elif grade is Grade.EASY:
            days = high
        else:
            days = (low + high) / 2
        return timedelta(days=days)

    def review_interval(self, state: CardState, easiness_factor: float) -> timedelta:
        """Grown, capped, fuzzed and min-spaced interval for a review success."""
        rev = self.config.rev
        base = state.last_interval / ONE_DAY * easiness_factor * rev.multiply_interval
        base = min(base, rev.max_interval)
        days = max(self.fuzz(base), rev.min_space)
        return timedelta(days=days)

    def fuzz(self, interval_days: float) -> float:
        """Multiply by a uniform draw from [1 - fuzz, 1 + fuzz]."""
        fuzz = self.config.rev.fuzz
        if fuzz == 0:
            return interval_days
        return interval_days * self._rng.uniform(1 - fuzz, 1 + fuzz)

    def _grade_fail(self, state: CardState, now: datetime) -> GradeResult:
        fail = self.config.fail
        lapse_count = state.lapse_count + 1
        interval = self.relearning_interval(state, lapse_count)

        is_leech = lapse_count >= fail.fails_until_leech
        new_state = replace(
            state,
            past_revisions=state.past_revisions + (now,),
            next_revision=now + interval,
            lapse_count=lapse_count,
            status=CardStatus.LEECH if is_leech else CardStatus.LEARNING,
        )
        if is_leech:
            logger.debug(f"Leech threshold reached after {lapse_count} fails")
            return GradeResult(new_state, fail.leech_action)
        return GradeResult(new_state)

    def _graduate(self, state: CardState, grade: Grade, now: datetime) -> CardState:
        interval = self.starting_interval(grade)
        logger.debug(f"Graduating {state.status.value} card with {interval}")
        return replace(
            state,
            past_revisions=state.past_revisions + (now,),
            next_revision=now + interval,
            lapse_count=0,
            status=CardStatus.REVIEW,
        )

    def _grade_review(self, state: CardState, grade: Grade, now: datetime) -> CardState:
        easiness_factor = adjust_easiness(state.easiness_factor, grade, self.config.rev.ease_floor)
        interval = self.review_interval(state, easiness_factor)
        return replace(
            state,
            easiness_factor=easiness_factor,
            past_revisions=state.past_revisions + (now,),
            next_revision=now + interval,
            lapse_count=0,
            status=CardStatus.REVIEW,
        )
