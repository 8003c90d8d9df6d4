"""Service for dictionary reading variants and word-set membership."""
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from wordsrs.models.models import UserWordSetState, WordReading, WordSetMember
from wordsrs.models.srs_models import KnownState, ReadingType, WordSetStateType

logger = logging.getLogger(__name__)


class DictionaryService:
    """Read-only lookups against the dictionary and word-set tables."""

    def __init__(self, db: Session):
        self.db = db

    def add_reading(
        self,
        word_id: int,
        reading_index: int,
        reading_type: ReadingType,
        text: Optional[str] = None,
    ) -> WordReading:
        """Register a reading variant for a word."""
        reading = WordReading(
            word_id=word_id,
            reading_index=reading_index,
            reading_type=reading_type,
            text=text,
        )
        self.db.add(reading)
        self.db.commit()
        return reading

    def get_reading_variant_type(self, word_id: int, reading_index: int) -> Optional[ReadingType]:
        """Get the type of a reading, or None if the dictionary has no such reading."""
        return self.db.query(WordReading.reading_type).filter(
            WordReading.word_id == word_id,
            WordReading.reading_index == reading_index,
        ).scalar()

    def find_kana_variant_index(self, word_id: int) -> Optional[int]:
        """Get the index of the word's first kana reading."""
        return self.db.query(WordReading.reading_index).filter(
            WordReading.word_id == word_id,
            WordReading.reading_type == ReadingType.KANA_READING,
        ).order_by(WordReading.reading_index).limit(1).scalar()

    def get_reading_types(self, word_ids: Iterable[int]) -> Dict[int, Dict[int, ReadingType]]:
        """Get reading types for many words in one query, keyed by word then index."""
        ids = set(word_ids)
        result: Dict[int, Dict[int, ReadingType]] = {}
        if not ids:
            return result
        rows = self.db.query(
            WordReading.word_id, WordReading.reading_index, WordReading.reading_type
        ).filter(WordReading.word_id.in_(ids)).all()
        for word_id, reading_index, reading_type in rows:
            result.setdefault(word_id, {})[reading_index] = reading_type
        return result

    def reading_count(self, word_id: int) -> int:
        """Count the readings a word has; 0 when the word is unknown."""
        return self.db.query(WordReading).filter(WordReading.word_id == word_id).count()

    def reading_counts(self, word_ids: Iterable[int]) -> Dict[int, int]:
        """Count readings for many words in one query."""
        ids = set(word_ids)
        if not ids:
            return {}
        rows = self.db.query(WordReading.word_id, func.count(WordReading.reading_index)).filter(
            WordReading.word_id.in_(ids)
        ).group_by(WordReading.word_id).all()
        return {word_id: count for word_id, count in rows}

    def add_word_set_member(self, set_id: int, word_id: int, reading_index: int) -> None:
        self.db.add(WordSetMember(set_id=set_id, word_id=word_id, reading_index=reading_index))
        self.db.commit()

    def subscribe_word_set(self, user_id: str, set_id: int, state: WordSetStateType) -> None:
        """Subscribe a user to a word set as mastered or blacklisted."""
        subscription = self.db.query(UserWordSetState).filter(
            UserWordSetState.user_id == user_id,
            UserWordSetState.set_id == set_id,
        ).first()
        if subscription is None:
            subscription = UserWordSetState(user_id=user_id, set_id=set_id)
            self.db.add(subscription)
        subscription.state = int(state)
        self.db.commit()

    def _set_states(self, user_id: str, word_id: int, reading_index: int) -> Set[WordSetStateType]:
        rows = self.db.query(UserWordSetState.state).join(
            WordSetMember, WordSetMember.set_id == UserWordSetState.set_id
        ).filter(
            UserWordSetState.user_id == user_id,
            WordSetMember.word_id == word_id,
            WordSetMember.reading_index == reading_index,
        ).all()
        return {WordSetStateType(state) for (state,) in rows}

    def inherited_states(self, user_id: str, word_id: int, reading_index: int) -> List[KnownState]:
        """Known-state labels a reading inherits from the user's word sets."""
        states = self._set_states(user_id, word_id, reading_index)
        inherited = []
        if WordSetStateType.MASTERED in states:
            inherited.append(KnownState.MASTERED)
        if WordSetStateType.BLACKLISTED in states:
            inherited.append(KnownState.BLACKLISTED)
        return inherited

    def is_blacklisted_via_set(self, user_id: str, word_id: int, reading_index: int) -> bool:
        """Check whether a subscribed word set blacklists this reading."""
        return WordSetStateType.BLACKLISTED in self._set_states(user_id, word_id, reading_index)

    def kana_targets(
        self, word_readings: Iterable[Tuple[int, int]]
    ) -> Dict[Tuple[int, int], int]:
        """Map each kanji (word, reading) pair to its word's kana reading index."""
        pairs = list(word_readings)
        types = self.get_reading_types(word_id for word_id, _ in pairs)
        targets = {}
        for word_id, reading_index in pairs:
            readings = types.get(word_id, {})
            if readings.get(reading_index) != ReadingType.KANJI_READING:
                continue
            kana_indexes = sorted(
                index for index, reading_type in readings.items()
                if reading_type == ReadingType.KANA_READING
            )
            if kana_indexes:
                targets[(word_id, reading_index)] = kana_indexes[0]
        return targets
