"""Tests for batch recomputation."""
from datetime import UTC, datetime, timedelta
from typing import Generator, List
from unittest.mock import patch

import pytest
from faker import Faker
from sqlalchemy.orm import Session

from wordsrs.exceptions import ValidationError
from wordsrs.models.base import Base, SessionLocal, engine, init_db
from wordsrs.models.models import Card, ReviewLog
from wordsrs.models.srs_models import FsrsCard, Rating, State
from wordsrs.services.card_store import CardStore
from wordsrs.services.fsrs_scheduler import DEFAULT_PARAMETERS, FsrsScheduler
from wordsrs.services.recompute_service import RecomputeService
from wordsrs.services.settings_service import SettingsService

fake = Faker()

NOW = datetime(2024, 7, 1, 6, 0, tzinfo=UTC)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def recompute_service(db: Session) -> RecomputeService:
    """Create a recompute service instance."""
    return RecomputeService(db)


@pytest.fixture
def store(db: Session) -> CardStore:
    """Create a card store instance."""
    return CardStore(db)


@pytest.fixture
def user_id() -> str:
    """Create a test user id."""
    return fake.uuid4()


def review_history(store: CardStore, user_id: str, word_id: int, ratings: List[Rating]) -> Card:
    """Review a card through the scheduler the way live reviews do."""
    scheduler = FsrsScheduler(DEFAULT_PARAMETERS, 0.9)
    snapshot = FsrsCard(due=NOW)
    card = None
    for rating in ratings:
        now = snapshot.due
        snapshot, entry = scheduler.review_card(snapshot, rating, now)
        card = store.save_review(user_id, word_id, 0, snapshot, entry)
        snapshot = card.to_fsrs()
    return card


def scheduling_fields(card: Card) -> tuple:
    return (card.state, card.step, card.stability, card.difficulty, card.due, card.last_review)


def test_paging_reports_done_on_last_page(
    recompute_service: RecomputeService, store: CardStore, user_id: str
) -> None:
    """Test paging one card at a time over three cards."""
    for word_id in range(3):
        review_history(store, user_id, word_id, [Rating.GOOD, Rating.GOOD])

    results = []
    cursor = 0
    for _ in range(3):
        result = recompute_service.recompute_batch(
            user_id, DEFAULT_PARAMETERS, 0.9, after_card_id=cursor, page_size=1
        )
        results.append(result)
        cursor = result.last_card_id

    assert [result.done for result in results] == [False, False, True]
    assert sum(result.processed for result in results) == 3
    assert all(result.total == 3 for result in results)


def test_recompute_with_same_settings_is_identity(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test replaying under unchanged settings reproduces the stored schedule."""
    card = review_history(
        store, user_id, 1, [Rating.GOOD, Rating.GOOD, Rating.AGAIN, Rating.HARD, Rating.EASY]
    )
    before = scheduling_fields(card)

    result = recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.9)
    db.expire_all()

    assert result.done
    assert result.failed_card_ids == []
    assert scheduling_fields(store.get_card(user_id, 1, 0)) == before


def test_recompute_twice_is_deterministic(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test two runs with the same new settings agree."""
    review_history(store, user_id, 1, [Rating.GOOD, Rating.HARD, Rating.GOOD])
    parameters = list(DEFAULT_PARAMETERS)
    parameters[8] = 2.1

    recompute_service.recompute_all(user_id, parameters, 0.85)
    db.expire_all()
    first = scheduling_fields(store.get_card(user_id, 1, 0))

    recompute_service.recompute_all(user_id, parameters, 0.85)
    db.expire_all()
    second = scheduling_fields(store.get_card(user_id, 1, 0))

    assert first == second


def test_recompute_applies_new_retention(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test a higher retention brings the due date forward."""
    card = review_history(store, user_id, 1, [Rating.EASY, Rating.GOOD, Rating.GOOD])
    due_before = card.due

    recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.97)
    db.expire_all()

    assert store.get_card(user_id, 1, 0).due < due_before


def test_recompute_preserves_override_state(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test mastered cards keep their label while the memory state is rebuilt."""
    card = review_history(store, user_id, 1, [Rating.GOOD, Rating.GOOD])
    card.state = int(State.MASTERED)
    db.commit()

    recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.8)
    db.expire_all()

    recomputed = store.get_card(user_id, 1, 0)
    assert recomputed.state == State.MASTERED
    assert recomputed.stability is not None


def test_cards_without_logs_untouched(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test a card with no history keeps its fields."""
    card = store.ensure_card(user_id, 9, 0, now=NOW)
    card.state = int(State.BLACKLISTED)
    db.commit()

    result = recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.8)
    db.expire_all()

    stored = store.get_card(user_id, 9, 0)
    assert result.processed == 1
    assert stored.state == State.BLACKLISTED
    assert stored.due == NOW
    assert stored.stability is None


def test_failing_card_is_skipped(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test a card whose history cannot be replayed does not stop the run."""
    good = review_history(store, user_id, 1, [Rating.GOOD])
    broken = review_history(store, user_id, 2, [Rating.GOOD])
    db.add(ReviewLog(card_id=broken.id, rating=9, review_datetime=NOW + timedelta(days=1)))
    db.commit()

    result = recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.8, page_size=10)

    assert result.done
    assert result.processed == 2
    assert result.failed_card_ids == [broken.id]
    assert store.get_card(user_id, 1, 0).id == good.id


def test_logs_are_not_written(
    recompute_service: RecomputeService, store: CardStore, user_id: str
) -> None:
    """Test recomputation never adds review logs."""
    card = review_history(store, user_id, 1, [Rating.GOOD, Rating.GOOD, Rating.GOOD])

    recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.8)

    assert len(store.list_review_logs(card.id)) == 3


def test_recompute_settings_uses_user_settings(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test the user's stored retention drives recomputation."""
    card = review_history(store, user_id, 1, [Rating.EASY, Rating.GOOD])
    due_before = card.due
    SettingsService(db).update_settings(user_id, desired_retention=0.97)

    result = recompute_service.recompute_settings(user_id)
    db.expire_all()

    assert result.done
    assert store.get_card(user_id, 1, 0).due < due_before


def test_empty_user(recompute_service: RecomputeService, user_id: str) -> None:
    """Test a user without cards finishes immediately."""
    result = recompute_service.recompute_batch(user_id, DEFAULT_PARAMETERS, 0.9, page_size=5)

    assert result.done
    assert result.processed == 0
    assert result.total == 0
    assert result.last_card_id == 0


@pytest.mark.parametrize("page_size", [0, -3])
def test_non_positive_page_size_rejected(
    recompute_service: RecomputeService, store: CardStore, user_id: str, page_size: int
) -> None:
    """Test a page size below one is refused instead of paging forever."""
    review_history(store, user_id, 1, [Rating.GOOD])

    with pytest.raises(ValidationError):
        recompute_service.recompute_batch(user_id, DEFAULT_PARAMETERS, 0.9, page_size=page_size)
    with pytest.raises(ValidationError):
        recompute_service.recompute_all(user_id, DEFAULT_PARAMETERS, 0.9, page_size=page_size)


def test_page_logs_loaded_together(
    recompute_service: RecomputeService, store: CardStore, db: Session, user_id: str
) -> None:
    """Test a page loads its review logs in one call and matches a per-card replay."""
    for word_id in range(4):
        review_history(store, user_id, word_id, [Rating.GOOD, Rating.HARD, Rating.GOOD])
    scheduler = FsrsScheduler(DEFAULT_PARAMETERS, 0.85)
    expected = {
        card.id: recompute_service.replay(scheduler, card)
        for card in store.list_user_cards(user_id)
    }

    with patch.object(CardStore, "list_review_logs") as single, patch.object(
        CardStore, "list_review_logs_for_cards", wraps=recompute_service.store.list_review_logs_for_cards
    ) as grouped:
        result = recompute_service.recompute_batch(user_id, DEFAULT_PARAMETERS, 0.85, page_size=10)

    assert result.failed_card_ids == []
    assert grouped.call_count == 1
    single.assert_not_called()
    db.expire_all()
    for card in store.list_user_cards(user_id):
        assert card.stability == pytest.approx(expected[card.id].stability)
        assert card.due == expected[card.id].due
