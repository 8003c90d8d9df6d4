"""Service for reviewing cards and applying explicit overrides."""
import logging
from datetime import UTC, datetime
from typing import Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wordsrs.exceptions import RateLimitedError, ValidationError
from wordsrs.models.models import Card
from wordsrs.models.srs_models import FsrsCard, KnownState, OverrideOperation, Rating, State
from wordsrs.monitoring import kana_sync_failures, override_operations, rate_limited_total, reviews_total
from wordsrs.services import classifier
from wordsrs.services.card_store import CardStore
from wordsrs.services.debounce import ReviewDebounceGuard
from wordsrs.services.dictionary_service import DictionaryService
from wordsrs.services.fsrs_scheduler import FsrsScheduler
from wordsrs.services.kana_sync_service import KanaSyncService
from wordsrs.services.recompute_service import RecomputeResult, RecomputeService
from wordsrs.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

_REMOVED_STATES = {
    OverrideOperation.MASTER_REMOVE: State.MASTERED,
    OverrideOperation.BLACKLIST_REMOVE: State.BLACKLISTED,
}


def restore_card_state(card: Card) -> None:
    """Put an overridden card back into scheduling."""
    if card.stability is not None and card.stability > 0:
        card.state = int(State.REVIEW)
        card.step = None
    else:
        card.state = int(State.LEARNING)
        card.step = 0


class ReviewService:
    """Entry point for reviews, overrides and known-state queries."""

    def __init__(self, db: Session, guard: Optional[ReviewDebounceGuard] = None):
        self.db = db
        self.guard = guard if guard is not None else ReviewDebounceGuard()
        self.store = CardStore(db)
        self.dictionary = DictionaryService(db)
        self.settings_service = SettingsService(db)
        self.kana_sync = KanaSyncService(db, self.dictionary)

    def _acquire(self, user_id: str, word_id: int, reading_index: int, operation: str) -> None:
        if not self.guard.try_acquire(user_id, word_id, reading_index):
            rate_limited_total.labels(operation=operation).inc()
            logger.warning(
                f"Rate limited {operation} for user {user_id}, word {word_id}/{reading_index}"
            )
            raise RateLimitedError(user_id, word_id, reading_index)

    def review_card(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        rating: Union[Rating, int],
        review_duration: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> FsrsCard:
        """Record a review and reschedule the card.

        Raises RateLimitedError when the same card was submitted moments ago.
        """
        try:
            rating = Rating(rating)
        except ValueError as e:
            raise ValidationError(f"Invalid rating: {rating!r}") from e
        self._acquire(user_id, word_id, reading_index, "review")
        now = now or datetime.now(UTC)

        parameters, retention = self.settings_service.resolve(user_id)
        scheduler = FsrsScheduler(parameters, retention)

        card = self.store.get_card(user_id, word_id, reading_index)
        current = card.to_fsrs() if card is not None else FsrsCard(due=now)
        updated, entry = scheduler.review_card(current, rating, now, review_duration)
        if current.state.is_override:
            updated.state = current.state

        saved = self.store.save_review(user_id, word_id, reading_index, updated, entry)
        reviews_total.labels(rating=entry.rating.name.lower()).inc()
        logger.info(
            f"User {user_id} rated word {word_id}/{reading_index} {entry.rating.name}, "
            f"next due {saved.due.isoformat()}"
        )

        result = saved.to_fsrs()
        self._sync_kana(user_id, word_id, reading_index, result, now)
        return result

    def _sync_kana(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        source_card: FsrsCard,
        now: datetime,
        operation: Optional[OverrideOperation] = None,
    ) -> None:
        # The primary write is already committed; a failed mirror must not undo it
        try:
            if operation is None:
                self.kana_sync.sync_kana_reading(user_id, word_id, reading_index, source_card, now)
            else:
                self.kana_sync.sync_override(
                    user_id, word_id, reading_index, operation, source_card, now
                )
        except SQLAlchemyError:
            self.db.rollback()
            kana_sync_failures.inc()
            logger.exception(
                f"Failed to sync kana reading for user {user_id}, word {word_id}/{reading_index}"
            )

    def set_override_state(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        operation: Union[OverrideOperation, str],
        now: Optional[datetime] = None,
    ) -> Optional[FsrsCard]:
        """Apply an explicit override and return the resulting card, if any."""
        operation = OverrideOperation.parse(operation)
        self._acquire(user_id, word_id, reading_index, operation.value)
        now = now or datetime.now(UTC)

        card = self.store.get_card(user_id, word_id, reading_index)

        if operation == OverrideOperation.FORGET:
            if card is not None:
                self.store.delete_card(user_id, word_id, reading_index)
                card = None
        elif operation == OverrideOperation.MASTER_ADD:
            card = card or self.store.ensure_card(user_id, word_id, reading_index, now=now)
            if card.state != State.MASTERED:
                card.state = int(State.MASTERED)
                card.due = now
                card.last_review = now
        elif operation == OverrideOperation.BLACKLIST_ADD:
            card = card or self.store.ensure_card(user_id, word_id, reading_index, now=now)
            card.state = int(State.BLACKLISTED)
        elif card is not None:
            if card.state == _REMOVED_STATES[operation]:
                restore_card_state(card)
        elif operation == OverrideOperation.BLACKLIST_REMOVE and self.dictionary.is_blacklisted_via_set(
            user_id, word_id, reading_index
        ):
            # An explicit Learning card overrides the blacklisted word set
            card = self.store.ensure_card(user_id, word_id, reading_index, now=now)

        self.db.commit()
        override_operations.labels(operation=operation.value).inc()
        logger.info(f"Applied {operation.value} for user {user_id}, word {word_id}/{reading_index}")

        result = None
        if card is not None:
            self.db.refresh(card)
            result = card.to_fsrs()
        self._sync_kana(user_id, word_id, reading_index, result, now, operation)
        return result

    def master_many(
        self,
        user_id: str,
        readings: Iterable[Tuple[int, int]],
        now: Optional[datetime] = None,
    ) -> int:
        """Mark many readings as known at once and return how many cards were created.

        Reading indexes a word does not have are skipped.
        """
        now = now or datetime.now(UTC)
        requested = list(dict.fromkeys(
            (int(word_id), int(reading_index)) for word_id, reading_index in readings
        ))
        counts = self.dictionary.reading_counts(word_id for word_id, _ in requested)
        valid = [
            (word_id, reading_index)
            for word_id, reading_index in requested
            if 0 <= reading_index < counts.get(word_id, 0)
        ]
        skipped = len(requested) - len(valid)
        if skipped:
            logger.warning(f"Skipped {skipped} unknown readings when mastering for user {user_id}")
        if not valid:
            return 0

        existing = {
            (card.word_id, card.reading_index): card
            for card in self.store.get_cards_for_words(
                user_id, list({word_id for word_id, _ in valid})
            )
        }

        created = 0
        touched = []
        try:
            for word_id, reading_index in valid:
                card = existing.get((word_id, reading_index))
                if card is None:
                    card = Card(
                        user_id=user_id,
                        word_id=word_id,
                        reading_index=reading_index,
                        state=int(State.MASTERED),
                        due=now,
                        last_review=now,
                    )
                    self.db.add(card)
                    created += 1
                else:
                    card.state = int(State.MASTERED)
                touched.append(card)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        override_operations.labels(operation=OverrideOperation.MASTER_ADD.value).inc(len(touched))
        logger.info(f"Mastered {len(touched)} readings for user {user_id}, {created} new cards")

        self._sync_kana_batch(
            user_id,
            [(card.word_id, card.reading_index, card.to_fsrs()) for card in touched],
            now,
        )
        return created

    def unmaster(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        now: Optional[datetime] = None,
    ) -> Optional[FsrsCard]:
        """Reset a known reading to New. Returns None when the user has no card."""
        now = now or datetime.now(UTC)
        card = self.store.get_card(user_id, word_id, reading_index)
        if card is None:
            return None

        card.state = int(State.NEW)
        self.db.commit()
        override_operations.labels(operation="unmaster").inc()
        logger.info(f"Reset word {word_id}/{reading_index} to new for user {user_id}")

        self.db.refresh(card)
        result = card.to_fsrs()
        self._sync_kana_batch(user_id, [(word_id, reading_index, result)], now)
        return result

    def _sync_kana_batch(
        self,
        user_id: str,
        cards: List[Tuple[int, int, FsrsCard]],
        now: datetime,
    ) -> None:
        entries = [(word_id, reading_index, card, True) for word_id, reading_index, card in cards]
        try:
            self.kana_sync.sync_kana_reading_batch(user_id, entries, now)
        except SQLAlchemyError:
            self.db.rollback()
            kana_sync_failures.inc()
            logger.exception(f"Failed to sync kana readings for user {user_id}")

    def classify(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        now: Optional[datetime] = None,
    ) -> KnownState:
        """Known-state label of a user's card."""
        return classifier.classify(self.store.get_card(user_id, word_id, reading_index), now)

    def known_states(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        now: Optional[datetime] = None,
    ) -> List[KnownState]:
        """Card label combined with labels inherited from subscribed word sets."""
        card = self.store.get_card(user_id, word_id, reading_index)
        inherited = self.dictionary.inherited_states(user_id, word_id, reading_index)
        return classifier.known_states(card, inherited, now)

    def recompute_settings(self, user_id: str) -> RecomputeResult:
        """Replay every card of a user under their current settings."""
        return RecomputeService(self.db).recompute_settings(user_id)

    def recompute_settings_batch(
        self, user_id: str, after_card_id: int = 0, page_size: Optional[int] = None
    ) -> RecomputeResult:
        """Replay one page of a user's cards under their current settings."""
        return RecomputeService(self.db).recompute_settings_batch(user_id, after_card_id, page_size)
