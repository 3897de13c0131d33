"""Tests for refinery.application.scheduling.engine."""

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from refinery.application.scheduling.engine import SchedulingEngine, adjust_easiness, is_due
from refinery.domain.errors import InvalidConfig, InvalidGrade, InvalidRecord
from refinery.domain.scheduling.config import AlgorithmConfig, LeechAction, ReviewPolicy
from refinery.domain.scheduling.models import CardStatus, Grade, new_card_state


def days(delta: timedelta) -> float:
    return delta / timedelta(days=1)


@pytest.fixture
def engine(scenario_config):
    return SchedulingEngine(scenario_config, rng=random.Random(0))


def with_fail(config: AlgorithmConfig, **changes) -> AlgorithmConfig:
    return replace(config, fail=replace(config.fail, **changes))


def with_rev(config: AlgorithmConfig, **changes) -> AlgorithmConfig:
    return replace(config, rev=replace(config.rev, **changes))


# ---------- New cards ----------


def test_new_card_good_uses_midpoint_interval(engine, scenario_config, now):
    state = new_card_state(scenario_config, now)

    result = engine.grade(state, Grade.GOOD, now)

    assert result.state.status is CardStatus.REVIEW
    assert result.state.next_revision == now + timedelta(days=2.5)
    assert result.state.easiness_factor == 2.5
    assert result.state.past_revisions == (now,)
    assert result.leech_action is None
    assert result.interval == timedelta(days=2.5)


@pytest.mark.parametrize("grade, expected_days", [(Grade.HARD, 1), (Grade.EASY, 4)])
def test_new_card_interval_bounds(engine, scenario_config, now, grade, expected_days):
    state = new_card_state(scenario_config, now)

    result = engine.grade(state, grade, now)

    assert result.interval == timedelta(days=expected_days)
    assert result.state.easiness_factor == 2.5


def test_grade_accepts_names(engine, scenario_config, now):
    state = new_card_state(scenario_config, now)
    assert engine.grade(state, "good", now) == engine.grade(state, Grade.GOOD, now)


def test_leech_card_success_graduates(engine, review_state, now):
    state = review_state(now, interval_days=1, lapse_count=3, status=CardStatus.LEECH)

    result = engine.grade(state, Grade.GOOD, now)

    assert result.state.status is CardStatus.REVIEW
    assert result.state.lapse_count == 0
    assert result.interval == timedelta(days=2.5)


# ---------- Fails and leeches ----------


def test_review_card_first_fail_uses_first_delay(engine, review_state, now):
    state = review_state(now, interval_days=10, easiness_factor=2.0)

    result = engine.grade(state, Grade.FAIL, now)

    assert result.state.lapse_count == 1
    assert result.state.status is CardStatus.LEARNING
    assert result.state.next_revision == now + timedelta(minutes=1)
    assert result.state.easiness_factor == 2.0
    assert result.leech_action is None


def test_third_consecutive_fail_makes_a_leech(engine, review_state, now):
    state = review_state(now, interval_days=10)

    first = engine.grade(state, Grade.FAIL, now)
    t2 = first.state.next_revision
    second = engine.grade(first.state, Grade.FAIL, t2)
    t3 = second.state.next_revision
    third = engine.grade(second.state, Grade.FAIL, t3)

    assert second.state.next_revision == t2 + timedelta(minutes=10)
    assert second.state.status is CardStatus.LEARNING
    assert third.state.lapse_count == 3
    assert third.state.status is CardStatus.LEECH
    assert third.leech_action is LeechAction.SUSPEND
    # Delays exhausted: 10 minutes * 0.5 is below the one-day floor
    assert third.state.next_revision == t3 + timedelta(days=1)


def test_new_card_becomes_leech_on_third_fail(engine, scenario_config, now):
    state = new_card_state(scenario_config, now)
    results = []
    for _ in range(3):
        result = engine.grade(state, Grade.FAIL, state.next_revision)
        results.append(result)
        state = result.state

    assert [r.state.status for r in results] == [
        CardStatus.LEARNING,
        CardStatus.LEARNING,
        CardStatus.LEECH,
    ]
    assert [r.leech_action for r in results] == [None, None, LeechAction.SUSPEND]


def test_fail_past_threshold_signals_again(engine, review_state, now):
    state = review_state(now, interval_days=1, lapse_count=3, status=CardStatus.LEECH)

    result = engine.grade(state, Grade.FAIL, now)

    assert result.state.lapse_count == 4
    assert result.state.status is CardStatus.LEECH
    assert result.leech_action is LeechAction.SUSPEND


def test_tag_leech_action(scenario_config, review_state, now):
    engine = SchedulingEngine(with_fail(scenario_config, leech_action=LeechAction.TAG))
    state = review_state(now, lapse_count=2, status=CardStatus.LEARNING)

    result = engine.grade(state, Grade.FAIL, now)

    assert result.leech_action is LeechAction.TAG


def test_exhausted_delays_multiply_last_interval(scenario_config, review_state, now):
    engine = SchedulingEngine(with_fail(scenario_config, fails_until_leech=8))
    state = review_state(now, interval_days=10, lapse_count=2, status=CardStatus.LEARNING)

    result = engine.grade(state, Grade.FAIL, now)

    assert result.state.lapse_count == 3
    assert result.interval == timedelta(days=5)
    assert result.leech_action is None


def test_zero_delay_is_due_immediately(scenario_config, review_state, now):
    engine = SchedulingEngine(with_fail(scenario_config, delays=(0, 10)))
    state = review_state(now)

    result = engine.grade(state, Grade.FAIL, now)

    assert result.state.next_revision == now
    assert is_due(result.state, now)


def test_empty_delays_raise_on_relearning(scenario_config, review_state, now):
    engine = SchedulingEngine(with_fail(scenario_config, delays=()))

    with pytest.raises(InvalidConfig, match="fail.delays"):
        engine.grade(review_state(now), Grade.FAIL, now)


def test_empty_delays_do_not_affect_successes(scenario_config, review_state, now):
    engine = SchedulingEngine(with_fail(scenario_config, delays=()))
    result = engine.grade(review_state(now), Grade.GOOD, now)
    assert result.state.status is CardStatus.REVIEW


# ---------- Review successes ----------


@pytest.mark.parametrize(
    "grade, ease, interval",
    [
        (Grade.HARD, 1.85, 37.0),
        (Grade.GOOD, 2.0, 40.0),
        (Grade.EASY, 2.15, 43.0),
    ],
)
def test_review_success(engine, review_state, now, grade, ease, interval):
    state = review_state(now, interval_days=10, easiness_factor=2.0)

    result = engine.grade(state, grade, now)

    assert result.state.status is CardStatus.REVIEW
    assert result.state.easiness_factor == pytest.approx(ease)
    assert days(result.interval) == pytest.approx(interval)
    assert result.state.lapse_count == 0


def test_ease_never_increases_on_hard_or_good(engine, review_state, now):
    state = review_state(now, easiness_factor=2.4)
    assert engine.grade(state, Grade.HARD, now).state.easiness_factor <= 2.4
    assert engine.grade(state, Grade.GOOD, now).state.easiness_factor == 2.4


def test_ease_floor_stops_decrease(engine, review_state, now):
    state = review_state(now, easiness_factor=1.35)
    assert engine.grade(state, Grade.HARD, now).state.easiness_factor == 1.3


def test_ease_floor_never_raises_a_factor():
    assert adjust_easiness(1.2, Grade.HARD, 1.3) == 1.2
    assert adjust_easiness(1.2, Grade.GOOD, 1.3) == 1.2
    assert adjust_easiness(1.2, Grade.EASY, 1.3) == pytest.approx(1.35)


def test_max_interval_caps_growth(engine, review_state, now):
    state = review_state(now, interval_days=300, easiness_factor=2.5)

    result = engine.grade(state, Grade.GOOD, now)

    assert days(result.interval) == pytest.approx(365)


def test_min_space_floor(scenario_config, review_state, now):
    config = with_rev(scenario_config, min_space=5, multiply_interval=1)
    engine = SchedulingEngine(config)
    state = review_state(now, interval_days=0.5, easiness_factor=1.3)

    result = engine.grade(state, Grade.GOOD, now)

    assert days(result.interval) == pytest.approx(5)


def test_fuzz_stays_in_range(scenario_config, review_state, now):
    engine = SchedulingEngine(with_rev(scenario_config, fuzz=0.1), rng=random.Random(42))
    state = review_state(now, interval_days=10, easiness_factor=2.0)

    intervals = [days(engine.grade(state, Grade.GOOD, now).interval) for _ in range(200)]

    assert all(36.0 - 1e-9 <= d <= 44.0 + 1e-9 for d in intervals)
    assert len(set(intervals)) > 1


def test_fuzz_is_reproducible_with_seed(scenario_config, review_state, now):
    config = with_rev(scenario_config, fuzz=0.1)
    state = review_state(now)

    a = SchedulingEngine(config, rng=random.Random(3)).grade(state, Grade.GOOD, now)
    b = SchedulingEngine(config, rng=random.Random(3)).grade(state, Grade.GOOD, now)

    assert a == b


def test_early_review_is_allowed(engine, review_state, now):
    state = review_state(now + timedelta(days=5), interval_days=10)
    assert not is_due(state, now)

    result = engine.grade(state, Grade.GOOD, now)

    assert result.state.next_revision == now + timedelta(days=40)
    assert result.state.past_revisions[-1] == now


# ---------- Errors ----------


def test_invalid_grade(engine, review_state, now):
    with pytest.raises(InvalidGrade):
        engine.grade(review_state(now), 5, now)


def test_review_before_last_revision(engine, review_state, now):
    state = review_state(now, interval_days=10)
    with pytest.raises(InvalidRecord, match="precedes"):
        engine.grade(state, Grade.GOOD, now - timedelta(days=11))


def test_repeated_easy_grades_stay_at_the_cap(scenario_config, review_state, now):
    engine = SchedulingEngine(with_rev(scenario_config, max_interval=36500))
    state = review_state(now, interval_days=10, easiness_factor=2.5)
    at = now

    for _ in range(20):
        result = engine.grade(state, Grade.EASY, at)
        state, at = result.state, result.state.next_revision

    assert days(result.interval) == pytest.approx(36500)
    assert state.next_revision.year < 9999


def test_next_revision_past_the_calendar_is_invalid(engine, review_state):
    late = datetime(9999, 6, 1, tzinfo=timezone.utc)
    state = review_state(late, interval_days=300)

    with pytest.raises(InvalidRecord, match="out of range"):
        engine.grade(state, Grade.GOOD, late)


def test_huge_relearning_interval_is_invalid(scenario_config, review_state, now):
    config = with_fail(scenario_config, fails_until_leech=9, multiply_interval=1e9)
    engine = SchedulingEngine(config)
    state = review_state(now, interval_days=3000, lapse_count=2, status=CardStatus.LEARNING)

    with pytest.raises(InvalidRecord, match="out of range"):
        engine.grade(state, Grade.FAIL, now)


def test_invalid_config_rejected_at_construction():
    with pytest.raises(InvalidConfig, match="maxInterval"):
        SchedulingEngine(AlgorithmConfig(rev=ReviewPolicy(max_interval=0, min_space=0.5)))


def test_input_state_unchanged(engine, review_state, now):
    state = review_state(now)
    before = replace(state)

    engine.grade(state, Grade.FAIL, now)

    assert state == before


def test_is_due_boundary(review_state, now):
    state = review_state(now)
    assert is_due(state, now)
    assert not is_due(state, now - timedelta(seconds=1))
