"""Service for exporting and importing a user's cards and review history."""
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wordsrs.exceptions import ValidationError
from wordsrs.models.models import Card, ReviewLog
from wordsrs.models.srs_models import Rating, State
from wordsrs.monitoring import kana_sync_failures
from wordsrs.services.card_store import CardStore
from wordsrs.services.dictionary_service import DictionaryService
from wordsrs.services.fsrs_scheduler import MAX_DIFFICULTY, MIN_DIFFICULTY
from wordsrs.services.kana_sync_service import KanaSyncService

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1


@dataclass
class ImportResult:
    """Counts of what an import did."""
    cards_imported: int = 0
    cards_updated: int = 0
    cards_skipped: int = 0
    review_logs_imported: int = 0
    validation_errors: List[str] = field(default_factory=list)


def to_unix(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp())


def from_unix(value: Optional[Any]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _optional_float(value: Optional[Any]) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value: Optional[Any]) -> Optional[int]:
    return None if value is None else int(value)


class TransferService:
    """Service for moving scheduling data in and out as plain dictionaries."""

    def __init__(self, db: Session):
        self.db = db
        self.store = CardStore(db)
        self.dictionary = DictionaryService(db)

    def export_cards(self, user_id: str) -> Dict[str, Any]:
        """Export every card and review log of a user, timestamps as Unix seconds."""
        cards = []
        for card in self.store.list_user_cards(user_id):
            cards.append({
                "word_id": card.word_id,
                "reading_index": card.reading_index,
                "state": card.state,
                "step": card.step,
                "stability": card.stability,
                "difficulty": card.difficulty,
                "due": to_unix(card.due),
                "last_review": to_unix(card.last_review),
                "review_logs": [
                    {
                        "rating": log.rating,
                        "review_datetime": to_unix(log.review_datetime),
                        "review_duration": log.review_duration,
                    }
                    for log in card.review_logs
                ],
            })
        logger.info(f"Exported {len(cards)} cards for user {user_id}")
        return {
            "version": EXPORT_VERSION,
            "user_id": user_id,
            "exported_at": to_unix(datetime.now(UTC)),
            "cards": cards,
        }

    def _parse_card(self, item: Dict[str, Any]) -> Dict[str, Any]:
        try:
            parsed = {
                "word_id": int(item["word_id"]),
                "reading_index": int(item["reading_index"]),
                "state": State(int(item["state"])),
                "step": _optional_int(item.get("step")),
                "stability": _optional_float(item.get("stability")),
                "difficulty": _optional_float(item.get("difficulty")),
                "due": from_unix(item["due"]),
                "last_review": from_unix(item.get("last_review")),
                "review_logs": [
                    {
                        "rating": Rating(int(log["rating"])),
                        "review_datetime": from_unix(log["review_datetime"]),
                        "review_duration": _optional_int(log.get("review_duration")),
                    }
                    for log in item.get("review_logs") or []
                ],
            }
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError) as e:
            raise ValidationError(f"Malformed card entry: {e!r}") from e
        if parsed["due"] is None:
            raise ValidationError("Malformed card entry: missing due date")
        stability = parsed["stability"]
        if stability is not None and not (math.isfinite(stability) and stability > 0):
            raise ValidationError(f"Invalid stability: {stability}")
        difficulty = parsed["difficulty"]
        if difficulty is not None and not (
            math.isfinite(difficulty) and MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY
        ):
            raise ValidationError(f"Invalid difficulty: {difficulty}")
        return parsed

    @staticmethod
    def _apply(card: Card, parsed: Dict[str, Any]) -> int:
        card.state = int(parsed["state"])
        card.step = parsed["step"]
        card.stability = parsed["stability"]
        card.difficulty = parsed["difficulty"]
        card.due = parsed["due"]
        card.last_review = parsed["last_review"]
        card.review_logs.clear()
        for log in parsed["review_logs"]:
            card.review_logs.append(ReviewLog(
                rating=int(log["rating"]),
                review_datetime=log["review_datetime"],
                review_duration=log["review_duration"],
            ))
        return len(parsed["review_logs"])

    def import_cards(
        self, user_id: str, payload: Dict[str, Any], overwrite: bool = False
    ) -> ImportResult:
        """Import cards exported by export_cards.

        Unknown words and reading indexes are reported in the result rather
        than failing the import. With overwrite, an existing card's fields and
        its whole review history are replaced.
        """
        items = payload.get("cards") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ValidationError("Import payload must contain a list of cards")

        result = ImportResult()
        parsed_cards = []
        for position, item in enumerate(items):
            try:
                parsed_cards.append(self._parse_card(item))
            except ValidationError as e:
                result.validation_errors.append(f"Card {position}: {e}")
                result.cards_skipped += 1

        reading_counts = self.dictionary.reading_counts(
            parsed["word_id"] for parsed in parsed_cards
        )

        touched = []
        seen = set()
        try:
            for parsed in parsed_cards:
                word_id, reading_index = parsed["word_id"], parsed["reading_index"]
                count = reading_counts.get(word_id, 0)
                if count == 0:
                    result.validation_errors.append(f"Word {word_id} does not exist")
                    result.cards_skipped += 1
                    continue
                if not 0 <= reading_index < count:
                    result.validation_errors.append(
                        f"Word {word_id} has no reading index {reading_index}"
                    )
                    result.cards_skipped += 1
                    continue
                if (word_id, reading_index) in seen:
                    result.cards_skipped += 1
                    continue
                seen.add((word_id, reading_index))

                card = self.store.get_card(user_id, word_id, reading_index)
                if card is None:
                    card = Card(user_id=user_id, word_id=word_id, reading_index=reading_index)
                    self.db.add(card)
                    result.review_logs_imported += self._apply(card, parsed)
                    result.cards_imported += 1
                elif overwrite:
                    result.review_logs_imported += self._apply(card, parsed)
                    result.cards_updated += 1
                else:
                    result.cards_skipped += 1
                    continue
                self.db.flush()
                touched.append(card)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Imported cards for user %s: %d new, %d updated, %d skipped, %d logs",
            user_id,
            result.cards_imported,
            result.cards_updated,
            result.cards_skipped,
            result.review_logs_imported,
        )

        self._sync_kana(user_id, touched, overwrite)
        return result

    def _sync_kana(self, user_id: str, cards: List[Card], overwrite: bool) -> None:
        if not cards:
            return
        entries = [
            (card.word_id, card.reading_index, card.to_fsrs(), overwrite)
            for card in cards
        ]
        try:
            created = KanaSyncService(self.db, self.dictionary).sync_kana_reading_batch(
                user_id, entries, datetime.now(UTC)
            )
        except SQLAlchemyError:
            self.db.rollback()
            kana_sync_failures.inc()
            logger.exception(f"Failed to sync kana readings after import for user {user_id}")
            return
        if created:
            logger.info(f"Created {created} kana cards from imported kanji readings for user {user_id}")
