"""Domain types for spaced repetition scheduling."""
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Optional

from wordsrs.exceptions import ValidationError


class State(IntEnum):
    """Lifecycle state of a card."""
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3
    BLACKLISTED = 4
    MASTERED = 5

    @property
    def is_override(self) -> bool:
        return self in (State.BLACKLISTED, State.MASTERED)


class Rating(IntEnum):
    """Recall rating, ordered from failure to effortless recall."""
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class KnownState(IntEnum):
    """Coarse label derived from a card snapshot."""
    NEW = 0
    YOUNG = 1
    MATURE = 2
    BLACKLISTED = 3
    DUE = 4
    MASTERED = 5


class ReadingType(Enum):
    """Kind of reading variant a dictionary word carries."""
    KANJI_READING = "kanji_reading"
    KANA_READING = "kana_reading"
    OTHER = "other"


class WordSetStateType(IntEnum):
    """State a user subscribed a word set with."""
    MASTERED = 1
    BLACKLISTED = 2


class OverrideOperation(Enum):
    """Explicit operations that bypass the scheduler."""
    MASTER_ADD = "master-add"
    MASTER_REMOVE = "master-remove"
    BLACKLIST_ADD = "blacklist-add"
    BLACKLIST_REMOVE = "blacklist-remove"
    FORGET = "forget"

    @classmethod
    def parse(cls, value: "str | OverrideOperation") -> "OverrideOperation":
        """Parse an operation name, accepting the legacy neverForget/forget-add spellings."""
        if isinstance(value, cls):
            return value
        name = str(value).strip()
        name = _LEGACY_OPERATION_NAMES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ValidationError(f"Invalid override operation: {value!r}") from None


_LEGACY_OPERATION_NAMES = {
    "neverForget-add": "master-add",
    "neverForget-remove": "master-remove",
    "forget-add": "forget",
}


@dataclass
class FsrsCard:
    """Scheduling view of a card, detached from persistence."""
    state: State = State.LEARNING
    step: Optional[int] = 0
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    due: datetime = None
    last_review: Optional[datetime] = None
    card_id: Optional[int] = None

    def __post_init__(self):
        if self.due is None:
            self.due = datetime.now(UTC)

    @property
    def is_new(self) -> bool:
        """True when the card has no usable memory state yet."""
        return self.stability is None or self.stability <= 0 or self.difficulty is None

    def copy(self) -> "FsrsCard":
        return replace(self)


@dataclass
class FsrsReviewEntry:
    """Review log entry produced together with an updated card."""
    rating: Rating
    review_datetime: datetime
    review_duration: Optional[int] = None
    card_id: Optional[int] = None
