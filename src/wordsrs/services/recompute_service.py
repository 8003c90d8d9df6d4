"""Replays review history under new scheduler settings."""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from wordsrs.config import settings
from wordsrs.exceptions import ValidationError
from wordsrs.models.models import Card, ReviewLog
from wordsrs.models.srs_models import FsrsCard, Rating, State
from wordsrs.monitoring import recompute_failures, recompute_page_duration, recomputed_cards
from wordsrs.services.card_store import CardStore
from wordsrs.services.fsrs_scheduler import FsrsScheduler
from wordsrs.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


@dataclass
class RecomputeResult:
    """Progress of a recomputation run; `last_card_id` is the resume cursor."""
    processed: int
    total: int
    last_card_id: int
    done: bool
    failed_card_ids: List[int] = field(default_factory=list)


class RecomputeService:
    """Service for rebuilding card schedules from their review logs."""

    def __init__(self, db: Session):
        self.db = db
        self.store = CardStore(db)

    def replay(
        self,
        scheduler: FsrsScheduler,
        card: Card,
        logs: Optional[List[ReviewLog]] = None,
    ) -> Optional[FsrsCard]:
        """Fold a card's logs through the scheduler, starting from a fresh card.

        Returns None for a card without review history.
        """
        if logs is None:
            logs = self.store.list_review_logs(card.id)
        if not logs:
            return None

        replayed = FsrsCard(due=logs[0].review_datetime, card_id=card.id)
        for log in logs:
            replayed, _ = scheduler.review_card(
                replayed, Rating(log.rating), log.review_datetime, log.review_duration
            )

        if State(card.state).is_override:
            replayed.state = State(card.state)
        return replayed

    def recompute_batch(
        self,
        user_id: str,
        parameters: Sequence[float],
        desired_retention: float,
        after_card_id: int = 0,
        page_size: Optional[int] = None,
    ) -> RecomputeResult:
        """Recompute one page of a user's cards and commit it."""
        if page_size is None:
            page_size = settings.recompute.page_size
        if page_size < 1:
            raise ValidationError(f"Page size must be positive, got {page_size}")
        scheduler = FsrsScheduler(parameters, desired_retention)

        started = time.monotonic()
        rows = self.store.list_cards_page(user_id, after_card_id, page_size + 1)
        page = rows[:page_size]
        done = len(rows) <= page_size
        logs_by_card = self.store.list_review_logs_for_cards([card.id for card in page])

        failed: List[int] = []
        for card in page:
            try:
                replayed = self.replay(scheduler, card, logs_by_card.get(card.id, []))
            except Exception:
                logger.exception(f"Failed to recompute card {card.id} for user {user_id}")
                recompute_failures.inc()
                failed.append(card.id)
                continue
            if replayed is None:
                continue
            card.apply_fsrs(replayed)
            recomputed_cards.inc()

        self.db.commit()
        recompute_page_duration.observe(time.monotonic() - started)

        last_card_id = page[-1].id if page else after_card_id
        result = RecomputeResult(
            processed=len(page),
            total=self.store.count_cards(user_id),
            last_card_id=last_card_id,
            done=done,
            failed_card_ids=failed,
        )
        logger.info(
            "Recomputed page for user %s: %d cards up to id %d (done=%s, failed=%d)",
            user_id, result.processed, last_card_id, done, len(failed),
        )
        return result

    def recompute_all(
        self,
        user_id: str,
        parameters: Sequence[float],
        desired_retention: float,
        page_size: Optional[int] = None,
    ) -> RecomputeResult:
        """Recompute every card of a user, page by page."""
        processed = 0
        failed: List[int] = []
        cursor = 0
        while True:
            result = self.recompute_batch(
                user_id, parameters, desired_retention, cursor, page_size
            )
            processed += result.processed
            failed.extend(result.failed_card_ids)
            cursor = result.last_card_id
            if result.done or result.processed == 0:
                break
        return RecomputeResult(
            processed=processed,
            total=result.total,
            last_card_id=cursor,
            done=True,
            failed_card_ids=failed,
        )

    def recompute_settings(self, user_id: str, page_size: Optional[int] = None) -> RecomputeResult:
        """Recompute every card of a user with their current settings."""
        parameters, retention = SettingsService(self.db).resolve(user_id)
        return self.recompute_all(user_id, parameters, retention, page_size)

    def recompute_settings_batch(
        self, user_id: str, after_card_id: int = 0, page_size: Optional[int] = None
    ) -> RecomputeResult:
        """Recompute one page of a user's cards with their current settings."""
        parameters, retention = SettingsService(self.db).resolve(user_id)
        return self.recompute_batch(user_id, parameters, retention, after_card_id, page_size)
