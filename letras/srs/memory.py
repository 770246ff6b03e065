"""FSRS (Free Spaced Repetition Scheduler) memory model.

Pure functions of (state, rating, time) following the published FSRS-4.5
equations. Reference: https://github.com/open-spaced-repetition/fsrs4anki

Key concepts:
- Stability (S): days until retrievability decays to 90%.
- Difficulty (D): intrinsic hardness of the item, bounded to [1, 10].
- Retrievability (R): probability of recall after t days, R = (1 + F*t/S)^DECAY.
- Rating: 1=Again (lapse), 2=Hard, 3=Good, 4=Easy.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import IntEnum

from letras.config import settings
from letras.errors import InvalidRating, InvalidState

# FSRS-4.5 default parameters
# w[0..3]: initial stability for Again/Hard/Good/Easy
# w[4..5]: initial difficulty intercept and slope
# w[6]: difficulty step per rating
# w[7]: difficulty mean reversion (unused, see _next_difficulty)
# w[8..10]: recall stability growth
# w[11..14]: post-lapse stability
# w[15..16]: hard penalty / easy bonus
DEFAULT_WEIGHTS = (
    0.4872, 1.4003, 3.7145, 13.8206,
    5.1618, 1.2298, 0.8975, 0.031,
    1.6474, 0.1367, 1.0461,
    2.1072, 0.0793, 0.3246, 1.587,
    0.2272, 2.8755,
)

SECONDS_PER_DAY = 86400


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: object) -> "Rating":
        """Validate a raw rating, raising ``InvalidRating`` outside 1-4."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidRating(f"Rating must be an integer between 1 and 4, got {value!r}")
        try:
            return cls(value)
        except ValueError:
            raise InvalidRating(f"Rating must be between 1 and 4, got {value}") from None


@dataclass(frozen=True)
class GrowthCurve:
    """Parameters of the forgetting curve and the stability updates."""

    decay: float = -0.5
    difficulty_step: float = DEFAULT_WEIGHTS[6]
    recall_base: float = DEFAULT_WEIGHTS[8]
    recall_stability_exponent: float = DEFAULT_WEIGHTS[9]
    recall_retrievability_weight: float = DEFAULT_WEIGHTS[10]
    lapse_base: float = DEFAULT_WEIGHTS[11]
    lapse_difficulty_exponent: float = DEFAULT_WEIGHTS[12]
    lapse_stability_exponent: float = DEFAULT_WEIGHTS[13]
    lapse_retrievability_weight: float = DEFAULT_WEIGHTS[14]
    hard_penalty: float = DEFAULT_WEIGHTS[15]
    easy_bonus: float = DEFAULT_WEIGHTS[16]

    @property
    def factor(self) -> float:
        """Curve scale chosen so that R(t=S, S) == 0.9."""
        return 0.9 ** (1 / self.decay) - 1


def _initial_difficulties(weights: Sequence[float]) -> tuple[float, float, float, float]:
    # D0(G) = w4 - (G - 3) * w5
    return tuple(weights[4] - (g - 3) * weights[5] for g in range(1, 5))  # type: ignore[return-value]


@dataclass(frozen=True)
class MemoryConfig:
    """Tunable constants of the memory model."""

    initial_stability_by_rating: tuple[float, float, float, float] = DEFAULT_WEIGHTS[0:4]  # type: ignore[assignment]
    initial_difficulty_by_rating: tuple[float, float, float, float] = _initial_difficulties(DEFAULT_WEIGHTS)
    lapse_penalty: float = 0.5  # post-lapse stability is at most this fraction of the old one
    growth_curve_params: GrowthCurve = field(default_factory=GrowthCurve)
    difficulty_bounds: tuple[float, float] = (1.0, 10.0)
    stability_floor: float = 0.1  # days (~2.4 hours)
    target_retrievability: float = 0.9
    maximum_interval_days: float = 36500.0

    def __post_init__(self) -> None:
        if len(self.initial_stability_by_rating) != 4 or len(self.initial_difficulty_by_rating) != 4:
            raise ValueError("Initial stability and difficulty need one value per rating")
        low, high = self.difficulty_bounds
        if not low < high:
            raise ValueError(f"Invalid difficulty bounds: {self.difficulty_bounds}")
        if not 0 < self.target_retrievability < 1:
            raise ValueError("target_retrievability must be in (0, 1)")
        if not 0 < self.lapse_penalty < 1:
            raise ValueError("lapse_penalty must be in (0, 1)")
        if self.maximum_interval_days <= 0:
            raise ValueError("maximum_interval_days must be positive")
        if self.stability_floor <= 0:
            raise ValueError("stability_floor must be positive")
        if self.growth_curve_params.decay >= 0:
            raise ValueError("decay must be negative")

    @classmethod
    def from_weights(cls, weights: Sequence[float], **overrides: object) -> "MemoryConfig":
        """Build a config from an FSRS-4.5 weight vector (17 values)."""
        if len(weights) != 17:
            raise ValueError(f"Expected 17 FSRS weights, got {len(weights)}")
        curve = GrowthCurve(
            difficulty_step=weights[6],
            recall_base=weights[8],
            recall_stability_exponent=weights[9],
            recall_retrievability_weight=weights[10],
            lapse_base=weights[11],
            lapse_difficulty_exponent=weights[12],
            lapse_stability_exponent=weights[13],
            lapse_retrievability_weight=weights[14],
            hard_penalty=weights[15],
            easy_bonus=weights[16],
        )
        config = cls(
            initial_stability_by_rating=tuple(weights[0:4]),  # type: ignore[arg-type]
            initial_difficulty_by_rating=_initial_difficulties(weights),
            growth_curve_params=curve,
        )
        return replace(config, **overrides) if overrides else config

    @classmethod
    def from_settings(cls) -> "MemoryConfig":
        if settings.fsrs_weights:
            return cls.from_weights(settings.fsrs_weights, target_retrievability=settings.target_retention)
        return cls(target_retrievability=settings.target_retention)


@dataclass
class MemoryState:
    """The memory state of one card for one user."""

    stability: float
    difficulty: float
    due_at: datetime
    last_reviewed_at: datetime | None
    review_count: int = 0
    lapse_count: int = 0


@dataclass
class ReviewResult:
    """The result of applying a rating to a memory state."""

    new_state: MemoryState
    interval_days: float
    retrievability: float | None  # recall probability at review time; None on first review


class MemoryModel:
    """Computes memory-state updates. Has no side effects."""

    def __init__(self, config: MemoryConfig | None = None) -> None:
        self.config = config or MemoryConfig()
        self.curve = self.config.growth_curve_params

    def retrievability(self, elapsed_days: float, stability: float) -> float:
        """Probability of recall after ``elapsed_days`` for the given stability."""
        if elapsed_days <= 0:
            return 1.0
        return (1 + self.curve.factor * elapsed_days / stability) ** self.curve.decay

    def interval(self, stability: float, target: float | None = None) -> float:
        """Days until retrievability decays to ``target``.

        Inverse of ``retrievability``: interval = S/F * (target^(1/DECAY) - 1)
        """
        target = self.config.target_retrievability if target is None else target
        return stability / self.curve.factor * (target ** (1 / self.curve.decay) - 1)

    def update(
        self,
        state: MemoryState | None,
        rating: int,
        now: datetime,
    ) -> ReviewResult:
        """Apply a rating to a card's memory state.

        Args:
            state: Current state, or None if the card has never been rated.
            rating: Review rating (1=Again, 2=Hard, 3=Good, 4=Easy).
            now: Review time (naive UTC).

        Returns:
            ReviewResult with the new state and its interval.

        Raises:
            InvalidRating: rating outside 1-4.
            InvalidState: stability or difficulty non-finite or negative.
        """
        rating = Rating.parse(rating)

        if state is None:
            stability = self.config.initial_stability_by_rating[rating - 1]
            difficulty = self._clamp_difficulty(self.config.initial_difficulty_by_rating[rating - 1])
            retrievability = None
            review_count = 1
            lapse_count = 0
        else:
            self._check(state.stability, state.difficulty)
            elapsed_days = self._elapsed_days(state, now)
            retrievability = self.retrievability(elapsed_days, state.stability)
            if rating == Rating.AGAIN:
                stability = self._stability_after_lapse(state.stability, state.difficulty, retrievability)
                lapse_count = state.lapse_count + 1
            else:
                stability = self._stability_after_recall(
                    state.stability, state.difficulty, retrievability, rating
                )
                lapse_count = state.lapse_count
            difficulty = self._next_difficulty(state.difficulty, rating)
            review_count = state.review_count + 1

        self._check(stability, difficulty)
        stability = max(self.config.stability_floor, stability)

        interval = min(self.interval(stability), self.config.maximum_interval_days)
        new_state = MemoryState(
            stability=stability,
            difficulty=difficulty,
            due_at=now + timedelta(days=interval),
            last_reviewed_at=now,
            review_count=review_count,
            lapse_count=lapse_count,
        )
        return ReviewResult(new_state=new_state, interval_days=interval, retrievability=retrievability)

    def _elapsed_days(self, state: MemoryState, now: datetime) -> float:
        last = state.last_reviewed_at
        if last is None:
            # Legacy rows without a review time: assume it was scheduled on time
            last = state.due_at - timedelta(days=self.interval(state.stability))
        return max(0.0, (now - last).total_seconds() / SECONDS_PER_DAY)

    def _next_difficulty(self, difficulty: float, rating: Rating) -> float:
        # No mean reversion: "Good" must leave difficulty unchanged
        return self._clamp_difficulty(difficulty - self.curve.difficulty_step * (rating - 3))

    def _stability_after_recall(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
        rating: Rating,
    ) -> float:
        """S' = S * (1 + e^w8 * (11 - D) * S^-w9 * (e^(w10*(1-R)) - 1) * hard * easy)"""
        c = self.curve
        hard_penalty = c.hard_penalty if rating == Rating.HARD else 1.0
        easy_bonus = c.easy_bonus if rating == Rating.EASY else 1.0
        growth = (
            math.exp(c.recall_base)
            * (11 - difficulty)
            * stability ** -c.recall_stability_exponent
            * (math.exp(c.recall_retrievability_weight * (1 - retrievability)) - 1)
            * hard_penalty
            * easy_bonus
        )
        return stability * (1 + growth)

    def _stability_after_lapse(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
    ) -> float:
        """S' = w11 * D^-w12 * ((S+1)^w13 - 1) * e^(w14*(1-R)), capped by the lapse penalty."""
        c = self.curve
        new_s = (
            c.lapse_base
            * difficulty ** -c.lapse_difficulty_exponent
            * ((stability + 1) ** c.lapse_stability_exponent - 1)
            * math.exp(c.lapse_retrievability_weight * (1 - retrievability))
        )
        return min(new_s, stability * self.config.lapse_penalty)

    def _clamp_difficulty(self, difficulty: float) -> float:
        low, high = self.config.difficulty_bounds
        return max(low, min(high, difficulty))

    @staticmethod
    def _check(stability: float, difficulty: float) -> None:
        if not math.isfinite(stability) or stability <= 0:
            raise InvalidState(f"Memory state has invalid stability: {stability!r}")
        if not math.isfinite(difficulty) or difficulty < 0:
            raise InvalidState(f"Memory state has invalid difficulty: {difficulty!r}")
