"""FSRS-6 scheduler.

Pure and synchronous: every call takes the card snapshot, the rating and the
review time, and returns a new card snapshot plus the matching log entry.
Nothing here touches the database.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple

from wordsrs.config import settings
from wordsrs.exceptions import ValidationError
from wordsrs.models.srs_models import FsrsCard, FsrsReviewEntry, Rating, State

logger = logging.getLogger(__name__)

# Published FSRS-6 default weights (w0..w20)
DEFAULT_PARAMETERS: Tuple[float, ...] = (
    0.212,
    1.2931,
    2.3065,
    8.2956,
    6.4133,
    0.8334,
    3.0194,
    0.001,
    1.8722,
    0.1666,
    0.796,
    1.4835,
    0.0614,
    0.2629,
    1.6483,
    0.6014,
    1.8729,
    0.5425,
    0.0912,
    0.0658,
    0.1542,
)
PARAMETER_COUNT = len(DEFAULT_PARAMETERS)
DEFAULT_DESIRED_RETENTION = 0.9

MIN_STABILITY = 0.001
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0


def validate_parameters(parameters: Sequence[float]) -> Tuple[float, ...]:
    """Return the weights as a tuple, raising ValidationError if unusable."""
    values = tuple(parameters)
    if len(values) != PARAMETER_COUNT:
        raise ValidationError(
            f"Expected {PARAMETER_COUNT} parameters, got {len(values)}"
        )
    try:
        values = tuple(float(value) for value in values)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Parameters must be numbers: {e}") from e
    if not all(math.isfinite(value) for value in values):
        raise ValidationError("Parameters must be finite numbers")
    return values


def validate_retention(desired_retention: float) -> float:
    """Return the retention as a float, raising ValidationError if outside (0, 1)."""
    try:
        value = float(desired_retention)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Desired retention must be a number: {e}") from e
    if not math.isfinite(value) or not 0 < value < 1:
        raise ValidationError("Desired retention must be between 0 and 1 (exclusive)")
    return value


def _clamp_difficulty(difficulty: float) -> float:
    return min(max(difficulty, MIN_DIFFICULTY), MAX_DIFFICULTY)


def _clamp_stability(stability: float) -> float:
    return max(stability, MIN_STABILITY)


class FsrsScheduler:
    """Free Spaced Repetition Scheduler, version 6."""

    def __init__(
        self,
        parameters: Sequence[float] = DEFAULT_PARAMETERS,
        desired_retention: float = DEFAULT_DESIRED_RETENTION,
        learning_steps: Optional[Sequence[timedelta]] = None,
        relearning_steps: Optional[Sequence[timedelta]] = None,
    ):
        self.parameters = validate_parameters(parameters)
        self.desired_retention = validate_retention(desired_retention)

        if learning_steps is None:
            learning_steps = [
                timedelta(minutes=minutes)
                for minutes in settings.scheduler.learning_steps_minutes
            ]
        if relearning_steps is None:
            relearning_steps = [
                timedelta(minutes=minutes)
                for minutes in settings.scheduler.relearning_steps_minutes
            ]
        self.learning_steps = tuple(learning_steps)
        self.relearning_steps = tuple(relearning_steps)

        self.decay = -self.parameters[20]
        self.factor = 0.9 ** (1 / self.decay) - 1

    # Memory model

    def retrievability(self, card: FsrsCard, now: datetime) -> float:
        """Probability of recall at `now`; 0 for a card without memory state."""
        if card.stability is None or card.last_review is None:
            return 0.0
        elapsed_days = max(0, (now - card.last_review).days)
        return (1 + self.factor * elapsed_days / card.stability) ** self.decay

    def initial_stability(self, rating: Rating) -> float:
        return _clamp_stability(self.parameters[rating - 1])

    def initial_difficulty(self, rating: Rating, clamp: bool = True) -> float:
        w = self.parameters
        difficulty = w[4] - math.exp(w[5] * (rating - 1)) + 1
        return _clamp_difficulty(difficulty) if clamp else difficulty

    def next_difficulty(self, difficulty: float, rating: Rating) -> float:
        w = self.parameters
        delta = -w[6] * (rating - 3)
        damped = difficulty + delta * (10 - difficulty) / 9
        # Mean reversion towards the initial difficulty of an Easy first review
        reverted = w[7] * self.initial_difficulty(Rating.EASY, clamp=False) + (1 - w[7]) * damped
        return _clamp_difficulty(reverted)

    def short_term_stability(self, stability: float, rating: Rating) -> float:
        w = self.parameters
        increase = math.exp(w[17] * (rating - 3 + w[18])) * stability ** -w[19]
        if rating in (Rating.GOOD, Rating.EASY):
            increase = max(increase, 1.0)
        return _clamp_stability(stability * increase)

    def recall_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        w = self.parameters
        hard_penalty = w[15] if rating == Rating.HARD else 1.0
        easy_bonus = w[16] if rating == Rating.EASY else 1.0
        growth = (
            math.exp(w[8])
            * (11 - difficulty)
            * stability ** -w[9]
            * (math.exp((1 - retrievability) * w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )
        return _clamp_stability(stability * (1 + growth))

    def forget_stability(
        self, difficulty: float, stability: float, retrievability: float
    ) -> float:
        w = self.parameters
        long_term = (
            w[11]
            * difficulty ** -w[12]
            * ((stability + 1) ** w[13] - 1)
            * math.exp((1 - retrievability) * w[14])
        )
        short_term = stability / math.exp(w[17] * w[18])
        return _clamp_stability(min(long_term, short_term))

    def next_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        if rating == Rating.AGAIN:
            return self.forget_stability(difficulty, stability, retrievability)
        return self.recall_stability(difficulty, stability, retrievability, rating)

    def next_interval(self, stability: float) -> timedelta:
        """Days until recall probability drops to the desired retention."""
        days = stability / self.factor * (self.desired_retention ** (1 / self.decay) - 1)
        return timedelta(days=max(1, round(days)))

    # Scheduling

    def review_card(
        self,
        card: FsrsCard,
        rating: Rating,
        now: datetime,
        review_duration: Optional[int] = None,
    ) -> Tuple[FsrsCard, FsrsReviewEntry]:
        """Apply one review to a card snapshot.

        Override states are scheduled from their underlying state; callers
        that keep the override label restore it on the returned card.
        """
        try:
            rating = Rating(rating)
        except ValueError as e:
            raise ValidationError(f"Invalid rating: {rating!r}") from e

        card = card.copy()
        elapsed_days = (
            (now - card.last_review).days if card.last_review is not None else None
        )

        if card.is_new:
            card.stability = self.initial_stability(rating)
            card.difficulty = self.initial_difficulty(rating)
            card.state = State.LEARNING
            card.step = 0
        else:
            card.state = self._scheduling_state(card)
            if card.state in (State.LEARNING, State.RELEARNING) and card.step is None:
                card.step = 0
            retrievability = self.retrievability(card, now)
            if elapsed_days is not None and elapsed_days < 1:
                card.stability = self.short_term_stability(card.stability, rating)
            else:
                card.stability = self.next_stability(
                    card.difficulty, card.stability, retrievability, rating
                )
            card.difficulty = self.next_difficulty(card.difficulty, rating)

        if card.state == State.LEARNING:
            interval = self._step_interval(card, rating, self.learning_steps)
        elif card.state == State.RELEARNING:
            interval = self._step_interval(card, rating, self.relearning_steps)
        else:
            interval = self._review_interval(card, rating)

        card.due = now + interval
        card.last_review = now

        entry = FsrsReviewEntry(
            rating=rating,
            review_datetime=now,
            review_duration=review_duration,
            card_id=card.card_id,
        )
        return card, entry

    def _scheduling_state(self, card: FsrsCard) -> State:
        if card.state.is_override or card.state == State.NEW:
            if card.stability is not None and card.stability > 0:
                return State.REVIEW
            return State.LEARNING
        return card.state

    def _step_interval(
        self, card: FsrsCard, rating: Rating, steps: Sequence[timedelta]
    ) -> timedelta:
        """Move a learning or relearning card along its fixed steps."""
        if not steps or (card.step >= len(steps) and rating != Rating.AGAIN):
            return self._graduate(card)

        if rating == Rating.AGAIN:
            card.step = 0
            return steps[0]

        if rating == Rating.HARD:
            if card.step == 0 and len(steps) == 1:
                return steps[0] * 1.5
            if card.step == 0:
                return (steps[0] + steps[1]) / 2
            return steps[card.step]

        if rating == Rating.GOOD:
            if card.step + 1 >= len(steps):
                return self._graduate(card)
            card.step += 1
            return steps[card.step]

        return self._graduate(card)

    def _review_interval(self, card: FsrsCard, rating: Rating) -> timedelta:
        card.state = State.REVIEW
        card.step = None
        if rating == Rating.AGAIN and self.relearning_steps:
            card.state = State.RELEARNING
            card.step = 0
            return self.relearning_steps[0]
        return self.next_interval(card.stability)

    def _graduate(self, card: FsrsCard) -> timedelta:
        card.state = State.REVIEW
        card.step = None
        return self.next_interval(card.stability)
