"""Persistence operations for scheduling cards and review logs."""
import logging
from datetime import UTC, datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from wordsrs.models.models import Card, ReviewLog
from wordsrs.models.srs_models import FsrsCard, FsrsReviewEntry, State

logger = logging.getLogger(__name__)


class CardStore:
    """Service for reading and writing cards and their review history."""

    def __init__(self, db: Session):
        self.db = db

    def get_card(self, user_id: str, word_id: int, reading_index: int) -> Optional[Card]:
        """Get a user's card for a word reading."""
        return self.db.query(Card).filter(
            Card.user_id == user_id,
            Card.word_id == word_id,
            Card.reading_index == reading_index,
        ).first()

    def get_cards_for_words(self, user_id: str, word_ids: List[int]) -> List[Card]:
        """Get every card a user has for the given words."""
        if not word_ids:
            return []
        return self.db.query(Card).filter(
            Card.user_id == user_id,
            Card.word_id.in_(word_ids),
        ).all()

    def ensure_card(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        now: Optional[datetime] = None,
    ) -> Card:
        """Get the card, creating a new Learning card if it does not exist yet."""
        card = self.get_card(user_id, word_id, reading_index)
        if card is None:
            card = Card(
                user_id=user_id,
                word_id=word_id,
                reading_index=reading_index,
                state=int(State.LEARNING),
                step=0,
                due=now or datetime.now(UTC),
            )
            self.db.add(card)
            self.db.flush()
            logger.debug(f"Created card {card.id} for user {user_id}, word {word_id}/{reading_index}")
        return card

    def upsert_card(
        self, user_id: str, word_id: int, reading_index: int, fsrs_card: FsrsCard
    ) -> Card:
        """Create or overwrite a card's scheduling fields without committing."""
        card = self.ensure_card(user_id, word_id, reading_index, now=fsrs_card.due)
        card.apply_fsrs(fsrs_card)
        self.db.flush()
        return card

    def delete_card(self, user_id: str, word_id: int, reading_index: int) -> bool:
        """Delete a card and its review logs. Returns False if there was no card."""
        card = self.get_card(user_id, word_id, reading_index)
        if card is None:
            return False
        self.db.delete(card)
        self.db.flush()
        return True

    def append_review_log(self, card: Card, entry: FsrsReviewEntry) -> ReviewLog:
        """Append a review log entry to a card without committing."""
        log = ReviewLog(
            card_id=card.id,
            rating=int(entry.rating),
            review_datetime=entry.review_datetime,
            review_duration=entry.review_duration,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def list_review_logs(self, card_id: int) -> List[ReviewLog]:
        """Get a card's review logs in replay order."""
        return self.db.query(ReviewLog).filter(
            ReviewLog.card_id == card_id
        ).order_by(ReviewLog.review_datetime, ReviewLog.id).all()

    def list_review_logs_for_cards(self, card_ids: List[int]) -> Dict[int, List[ReviewLog]]:
        """Get the logs of many cards in one query, grouped by card in replay order."""
        grouped: Dict[int, List[ReviewLog]] = {}
        if not card_ids:
            return grouped
        logs = self.db.query(ReviewLog).filter(
            ReviewLog.card_id.in_(card_ids)
        ).order_by(ReviewLog.card_id, ReviewLog.review_datetime, ReviewLog.id).all()
        for log in logs:
            grouped.setdefault(log.card_id, []).append(log)
        return grouped

    def list_cards_page(self, user_id: str, after_card_id: int, limit: int) -> List[Card]:
        """Get up to `limit` cards with id greater than `after_card_id`, ascending."""
        return self.db.query(Card).filter(
            Card.user_id == user_id,
            Card.id > after_card_id,
        ).order_by(Card.id).limit(limit).all()

    def count_cards(self, user_id: str) -> int:
        """Count a user's cards."""
        return self.db.query(Card).filter(Card.user_id == user_id).count()

    def list_user_cards(self, user_id: str) -> List[Card]:
        """Get all of a user's cards ordered by id."""
        return self.db.query(Card).filter(Card.user_id == user_id).order_by(Card.id).all()

    def save_review(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        fsrs_card: FsrsCard,
        entry: FsrsReviewEntry,
    ) -> Card:
        """Persist the updated card and its review log in one commit."""
        try:
            card = self.upsert_card(user_id, word_id, reading_index, fsrs_card)
            self.append_review_log(card, entry)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(card)
        return card
