"""Database models for the scheduling core."""
import json
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import (
    Column,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from wordsrs.models.base import Base, TimestampMixin, UTCDateTime
from wordsrs.models.srs_models import (
    FsrsCard,
    Rating,
    ReadingType,
    State,
    WordSetStateType,
)


class Card(Base, TimestampMixin):
    """Scheduling record for one user and one word reading."""

    __tablename__ = "srs_cards"
    __table_args__ = (
        UniqueConstraint("user_id", "word_id", "reading_index", name="uq_srs_card_reading"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    word_id = Column(Integer, nullable=False)
    reading_index = Column(Integer, nullable=False)
    state = Column(Integer, nullable=False, default=int(State.LEARNING))
    step = Column(Integer, nullable=True, default=0)
    stability = Column(Float, nullable=True)
    difficulty = Column(Float, nullable=True)
    due = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(UTC))
    last_review = Column(UTCDateTime, nullable=True)

    # Relationships
    review_logs = relationship(
        "ReviewLog",
        back_populates="card",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="[ReviewLog.review_datetime, ReviewLog.id]",
    )

    @property
    def card_state(self) -> State:
        return State(self.state)

    def to_fsrs(self) -> FsrsCard:
        """Snapshot the scheduling fields."""
        return FsrsCard(
            state=State(self.state),
            step=self.step,
            stability=self.stability,
            difficulty=self.difficulty,
            due=self.due,
            last_review=self.last_review,
            card_id=self.id,
        )

    def apply_fsrs(self, fsrs_card: FsrsCard) -> None:
        """Copy scheduling fields from a scheduler result."""
        self.state = int(fsrs_card.state)
        self.step = fsrs_card.step
        self.stability = fsrs_card.stability
        self.difficulty = fsrs_card.difficulty
        self.due = fsrs_card.due
        self.last_review = fsrs_card.last_review

    def __repr__(self):
        return (
            f"<Card(id={self.id}, user={self.user_id}, word={self.word_id}, "
            f"reading={self.reading_index}, state={self.state})>"
        )


class ReviewLog(Base):
    """Append-only record of a single review."""

    __tablename__ = "srs_review_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(Integer, ForeignKey("srs_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    review_datetime = Column(UTCDateTime, nullable=False)
    review_duration = Column(Integer, nullable=True)  # in milliseconds

    # Relationships
    card = relationship("Card", back_populates="review_logs")

    @property
    def card_rating(self) -> Rating:
        return Rating(self.rating)

    def __repr__(self):
        return f"<ReviewLog(id={self.id}, card={self.card_id}, rating={self.rating})>"


class UserSrsSettings(Base, TimestampMixin):
    """Per-user scheduler parameters, only stored when they differ from the defaults."""

    __tablename__ = "srs_user_settings"

    user_id = Column(String(64), primary_key=True)
    parameters_json = Column(Text, nullable=False, default="[]")
    desired_retention = Column(Float, nullable=True)

    @property
    def parameters(self) -> List[float]:
        """Stored parameter vector, empty when the JSON cannot be read."""
        try:
            values = json.loads(self.parameters_json or "[]")
        except (TypeError, ValueError):
            return []
        if not isinstance(values, list):
            return []
        return values

    @parameters.setter
    def parameters(self, values: List[float]) -> None:
        self.parameters_json = json.dumps(list(values))


class WordReading(Base):
    """Dictionary reading variant of a word."""

    __tablename__ = "dictionary_word_readings"

    word_id = Column(Integer, primary_key=True)
    reading_index = Column(Integer, primary_key=True)
    reading_type = Column(SAEnum(ReadingType), nullable=False, default=ReadingType.OTHER)
    text = Column(String(255), nullable=True)


class WordSetMember(Base):
    """Word reading belonging to a curated word set."""

    __tablename__ = "word_set_members"

    set_id = Column(Integer, primary_key=True)
    word_id = Column(Integer, primary_key=True)
    reading_index = Column(Integer, primary_key=True)


class UserWordSetState(Base, TimestampMixin):
    """A user's subscription to a word set as mastered or blacklisted."""

    __tablename__ = "user_word_set_states"

    user_id = Column(String(64), primary_key=True)
    set_id = Column(Integer, primary_key=True)
    state = Column(Integer, nullable=False, default=int(WordSetStateType.MASTERED))

    @property
    def set_state(self) -> Optional[WordSetStateType]:
        return WordSetStateType(self.state) if self.state is not None else None
