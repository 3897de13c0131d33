"""
Per-deck scheduling policy.

These are pure, immutable data structures. Every bound is checked when the
value is built, so a config that exists is a config the engine can use.
`AlgorithmConfig.from_dict` accepts the camelCase layout of the master YAML
config (the `phlower.algorithms` entries).
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from refinery.domain.constants import DEFAULT_EASE_FLOOR, MAX_INTERVAL_DAYS
from refinery.domain.errors import InvalidConfig


class NewCardOrder(str, Enum):
    """How new cards are ordered before the daily cap is applied."""

    RANDOM = "random"
    BY_CREATION_DATE = "by-creation-date"


class LeechAction(IntEnum):
    """Response requested from the caller when a card becomes a leech."""

    SUSPEND = 0
    TAG = 1


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_non_negative_int(section: str, name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidConfig(f"{section}.{name} must be a non-negative integer, got {value!r}")


def _check_positive(section: str, name: str, value: Any) -> None:
    if not _is_number(value) or value <= 0:
        raise InvalidConfig(f"{section}.{name} must be positive, got {value!r}")


def _check_non_negative(section: str, name: str, value: Any) -> None:
    if not _is_number(value) or value < 0:
        raise InvalidConfig(f"{section}.{name} must be non-negative, got {value!r}")


def _check_at_most_max_interval(section: str, name: str, value: float) -> None:
    if value > MAX_INTERVAL_DAYS:
        raise InvalidConfig(
            f"{section}.{name} must be at most {MAX_INTERVAL_DAYS} days, got {value!r}"
        )


def _check_range(section: str, name: str, value: Any, *, positive: bool) -> None:
    if not isinstance(value, tuple) or len(value) != 2:
        raise InvalidConfig(f"{section}.{name} must be a [min, max] pair, got {value!r}")
    check = _check_positive if positive else _check_non_negative
    check(section, f"{name}[0]", value[0])
    check(section, f"{name}[1]", value[1])
    if value[0] > value[1]:
        raise InvalidConfig(f"{section}.{name} has min > max: {list(value)}")


def _as_tuple(value: Any) -> Any:
    return tuple(value) if isinstance(value, list) else value


@dataclass(frozen=True)
class NewCardPolicy:
    """
    Limits and starting values for cards that were never reviewed.

    Attributes:
        max_per_day: New cards introduced per queue build.
        starting_delays: (min, max) minutes. Carried for config compatibility.
        starting_intervals: (min, max) days for the first real interval.
        initial_factor: Easiness factor given to a freshly created card.
        order: Ordering applied to new cards before capping.
    """

    max_per_day: int = 20
    starting_delays: tuple[float, float] = (1, 10)
    starting_intervals: tuple[float, float] = (1, 4)
    initial_factor: float = 2.5
    order: NewCardOrder = NewCardOrder.BY_CREATION_DATE

    def __post_init__(self):
        object.__setattr__(self, "starting_delays", _as_tuple(self.starting_delays))
        object.__setattr__(self, "starting_intervals", _as_tuple(self.starting_intervals))
        self.validate()

    def validate(self) -> None:
        _check_non_negative_int("new", "maxPerDay", self.max_per_day)
        _check_range("new", "startingDelays", self.starting_delays, positive=False)
        _check_range("new", "startingIntervals", self.starting_intervals, positive=True)
        _check_positive("new", "initialFactor", self.initial_factor)
        if not isinstance(self.order, NewCardOrder):
            raise InvalidConfig(f"new.order must be a NewCardOrder, got {self.order!r}")


@dataclass(frozen=True)
class FailPolicy:
    """
    Relearning and leech handling after a failed review.

    Attributes:
        fails_until_leech: Consecutive fails that turn a card into a leech.
        min_leech_interval: Floor (days) for the multiplied post-lapse interval.
        delays: Relearning steps in minutes, indexed by consecutive-fail count.
        leech_action: What the caller should do with a new leech.
        multiply_interval: Factor applied to the previous interval after the steps run out.
    """

    fails_until_leech: int = 8
    min_leech_interval: float = 1
    delays: tuple[float, ...] = (10,)
    leech_action: LeechAction = LeechAction.SUSPEND
    multiply_interval: float = 0.5

    def __post_init__(self):
        object.__setattr__(self, "delays", _as_tuple(self.delays))
        self.validate()

    def validate(self) -> None:
        if (
            not isinstance(self.fails_until_leech, int)
            or isinstance(self.fails_until_leech, bool)
            or self.fails_until_leech < 1
        ):
            raise InvalidConfig(
                f"fail.failsUntilLeech must be an integer >= 1, got {self.fails_until_leech!r}"
            )
        _check_positive("fail", "minLeechInterval", self.min_leech_interval)
        _check_at_most_max_interval("fail", "minLeechInterval", self.min_leech_interval)
        if not isinstance(self.delays, tuple):
            raise InvalidConfig(f"fail.delays must be a sequence, got {self.delays!r}")
        for i, delay in enumerate(self.delays):
            _check_non_negative("fail", f"delays[{i}]", delay)
        if not isinstance(self.leech_action, LeechAction):
            raise InvalidConfig(f"fail.leechAction must be a LeechAction, got {self.leech_action!r}")
        _check_non_negative("fail", "multiplyInterval", self.multiply_interval)


@dataclass(frozen=True)
class ReviewPolicy:
    """
    Interval growth for cards in the review stage.

    Attributes:
        max_per_day: Due reviews presented per queue build.
        fuzz: Half-width of the uniform interval perturbation (0.1 = +/-10%).
        multiply_interval: Global interval multiplier.
        max_interval: Cap in days, applied before fuzz.
        initial_ease_factor_multiplier: Carried for config compatibility.
        min_space: Smallest review interval in days.
        ease_floor: Lowest easiness factor a review success can produce.
    """

    max_per_day: int = 200
    fuzz: float = 0.05
    multiply_interval: float = 1.0
    max_interval: float = MAX_INTERVAL_DAYS
    initial_ease_factor_multiplier: float = 1.0
    min_space: float = 1
    ease_floor: float = DEFAULT_EASE_FLOOR

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        _check_non_negative_int("rev", "maxPerDay", self.max_per_day)
        if not _is_number(self.fuzz) or not 0 <= self.fuzz < 1:
            raise InvalidConfig(f"rev.fuzz must be in [0, 1), got {self.fuzz!r}")
        _check_positive("rev", "multiplyInterval", self.multiply_interval)
        _check_positive("rev", "maxInterval", self.max_interval)
        _check_at_most_max_interval("rev", "maxInterval", self.max_interval)
        _check_positive("rev", "initialEaseFactorMultiplier", self.initial_ease_factor_multiplier)
        _check_positive("rev", "minSpace", self.min_space)
        _check_positive("rev", "easeFloor", self.ease_floor)
        if self.min_space > self.max_interval:
            raise InvalidConfig(
                f"rev.minSpace ({self.min_space}) exceeds rev.maxInterval ({self.max_interval})"
            )


@dataclass(frozen=True)
class AlgorithmConfig:
    """Complete scheduling policy for one deck."""

    cfg_id: str = "default"
    new: NewCardPolicy = field(default_factory=NewCardPolicy)
    fail: FailPolicy = field(default_factory=FailPolicy)
    rev: ReviewPolicy = field(default_factory=ReviewPolicy)

    # Session options read by front ends, not by the scheduler
    timer: bool = False
    max_time_spent_on_card: float = 60
    autoplay_audio: bool = False
    replay_audio_when_flipped: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Re-check every bound. Raises InvalidConfig on the first violation."""
        self.new.validate()
        self.fail.validate()
        self.rev.validate()
        if self.new.initial_factor < self.rev.ease_floor:
            raise InvalidConfig(
                f"new.initialFactor ({self.new.initial_factor}) is below "
                f"rev.easeFloor ({self.rev.ease_floor})"
            )
        _check_non_negative("session", "maxTimeSpentOnCard", self.max_time_spent_on_card)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlgorithmConfig":
        """
        Build a config from the camelCase mapping used in the master YAML file.

        Every key of the `new`, `fail` and `rev` sections is required except
        `rev.easeFloor`. Session options are optional.
        """
        if not isinstance(data, Mapping):
            raise InvalidConfig(f"Algorithm config must be a mapping, got {type(data).__name__}")

        new = _section(data, "new")
        fail = _section(data, "fail")
        rev = _section(data, "rev")

        order_raw = _key(new, "new", "order")
        try:
            order = NewCardOrder(order_raw)
        except ValueError:
            raise InvalidConfig(
                f"new.order must be 'random' or 'by-creation-date', got {order_raw!r}"
            ) from None

        action_raw = _key(fail, "fail", "leechAction")
        try:
            leech_action = LeechAction(action_raw)
        except ValueError:
            raise InvalidConfig(
                f"fail.leechAction must be 0 (suspend) or 1 (tag), got {action_raw!r}"
            ) from None

        delays = _key(fail, "fail", "delays")
        if not isinstance(delays, (list, tuple)):
            raise InvalidConfig(f"fail.delays must be a list, got {delays!r}")

        return cls(
            cfg_id=str(data.get("cfgId", "default")),
            new=NewCardPolicy(
                max_per_day=_key(new, "new", "maxPerDay"),
                starting_delays=_pair(new, "new", "startingDelays"),
                starting_intervals=_pair(new, "new", "startingIntervals"),
                initial_factor=_key(new, "new", "initialFactor"),
                order=order,
            ),
            fail=FailPolicy(
                fails_until_leech=_key(fail, "fail", "failsUntilLeech"),
                min_leech_interval=_key(fail, "fail", "minLeechInterval"),
                delays=tuple(delays),
                leech_action=leech_action,
                multiply_interval=_key(fail, "fail", "multiplyInterval"),
            ),
            rev=ReviewPolicy(
                max_per_day=_key(rev, "rev", "maxPerDay"),
                fuzz=_key(rev, "rev", "fuzz"),
                multiply_interval=_key(rev, "rev", "multiplyInterval"),
                max_interval=_key(rev, "rev", "maxInterval"),
                initial_ease_factor_multiplier=_key(rev, "rev", "initialEaseFactorMultiplier"),
                min_space=_key(rev, "rev", "minSpace"),
                ease_floor=rev.get("easeFloor", DEFAULT_EASE_FLOOR),
            ),
            timer=bool(data.get("timer", False)),
            max_time_spent_on_card=data.get("maxTimeSpentOnCard", 60),
            autoplay_audio=bool(data.get("autoplayAudio", False)),
            replay_audio_when_flipped=bool(data.get("replayAudioWhenFlipped", False)),
        )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name)
    if not isinstance(section, Mapping):
        raise InvalidConfig(f"Algorithm config is missing the '{name}' section")
    return section


def _key(section: Mapping[str, Any], section_name: str, key: str) -> Any:
    if key not in section:
        raise InvalidConfig(f"{section_name}.{key} is required")
    return section[key]


def _pair(section: Mapping[str, Any], section_name: str, key: str) -> tuple[Any, ...]:
    value = _key(section, section_name, key)
    if not isinstance(value, (list, tuple)):
        raise InvalidConfig(f"{section_name}.{key} must be a [min, max] pair, got {value!r}")
    return tuple(value)
