"""Mirrors scheduling from a kanji reading onto the word's kana reading."""
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from wordsrs.models.models import Card
from wordsrs.models.srs_models import FsrsCard, OverrideOperation, ReadingType
from wordsrs.monitoring import kana_syncs
from wordsrs.services.card_store import CardStore
from wordsrs.services.dictionary_service import DictionaryService

logger = logging.getLogger(__name__)

# (word_id, reading_index, source_card, overwrite)
KanaSyncEntry = Tuple[int, int, FsrsCard, bool]

_MIRRORED_OPERATIONS = {
    OverrideOperation.MASTER_ADD,
    OverrideOperation.BLACKLIST_ADD,
    OverrideOperation.BLACKLIST_REMOVE,
}


def _mirror(card: Card, source: FsrsCard, now: datetime) -> None:
    card.state = int(source.state)
    card.step = source.step
    card.stability = source.stability
    card.difficulty = source.difficulty
    card.due = source.due
    card.last_review = now


class KanaSyncService:
    """Service keeping kana reading cards in step with their kanji reading."""

    def __init__(self, db: Session, dictionary: Optional[DictionaryService] = None):
        self.db = db
        self.store = CardStore(db)
        self.dictionary = dictionary or DictionaryService(db)

    def _kana_index_for(self, word_id: int, reading_index: int) -> Optional[int]:
        if self.dictionary.get_reading_variant_type(word_id, reading_index) != ReadingType.KANJI_READING:
            return None
        return self.dictionary.find_kana_variant_index(word_id)

    def sync_kana_reading(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        source_card: FsrsCard,
        now: datetime,
    ) -> bool:
        """Copy a kanji reading's scheduling onto the kana card.

        Returns True when a kana card was written.
        """
        kana_index = self._kana_index_for(word_id, reading_index)
        if kana_index is None:
            return False

        card = self.store.ensure_card(user_id, word_id, kana_index, now=now)
        _mirror(card, source_card, now)
        self.db.commit()
        kana_syncs.labels(mode="single").inc()
        logger.info(f"Synced kana reading {word_id}/{kana_index} for user {user_id}")
        return True

    def sync_kana_reading_batch(
        self,
        user_id: str,
        entries: Iterable[KanaSyncEntry],
        now: datetime,
    ) -> int:
        """Mirror many kanji cards at once and return how many kana cards were created.

        Existing kana cards are only updated when the entry's overwrite flag is
        set. Each kana card is written at most once per call.
        """
        entries = list(entries)
        if not entries:
            return 0

        targets = self.dictionary.kana_targets(
            (word_id, reading_index) for word_id, reading_index, _, _ in entries
        )
        if not targets:
            return 0

        existing: Dict[Tuple[int, int], Card] = {
            (card.word_id, card.reading_index): card
            for card in self.store.get_cards_for_words(
                user_id, list({word_id for word_id, _ in targets})
            )
        }

        created = 0
        updated = 0
        seen = set()
        for word_id, reading_index, source_card, overwrite in entries:
            kana_index = targets.get((word_id, reading_index))
            if kana_index is None:
                continue
            key = (word_id, kana_index)
            if key in seen:
                continue
            seen.add(key)

            card = existing.get(key)
            if card is None:
                card = Card(user_id=user_id, word_id=word_id, reading_index=kana_index)
                _mirror(card, source_card, now)
                self.db.add(card)
                existing[key] = card
                created += 1
            elif overwrite:
                _mirror(card, source_card, now)
                updated += 1

        self.db.commit()
        if created or updated:
            kana_syncs.labels(mode="batch").inc(created + updated)
        logger.info(
            "Batch kana sync for user %s: %d created, %d updated", user_id, created, updated
        )
        return created

    def sync_override(
        self,
        user_id: str,
        word_id: int,
        reading_index: int,
        operation: OverrideOperation,
        source_card: Optional[FsrsCard],
        now: datetime,
    ) -> None:
        """Apply an override's effect to the kana card of a kanji reading."""
        if operation in _MIRRORED_OPERATIONS:
            if source_card is not None:
                self.sync_kana_reading(user_id, word_id, reading_index, source_card, now)
            return

        kana_index = self._kana_index_for(word_id, reading_index)
        if kana_index is None:
            return
        if self.store.delete_card(user_id, word_id, kana_index):
            self.db.commit()
            kana_syncs.labels(mode="delete").inc()
            logger.info(f"Deleted kana reading {word_id}/{kana_index} for user {user_id}")
