"""Tests for the card store."""
from datetime import UTC, datetime, timedelta
from typing import Generator

import pytest
from faker import Faker
from sqlalchemy.orm import Session

from wordsrs.models.base import Base, SessionLocal, engine, init_db
from wordsrs.models.models import Card, ReviewLog
from wordsrs.models.srs_models import FsrsCard, FsrsReviewEntry, Rating, State
from wordsrs.services.card_store import CardStore

fake = Faker()

NOW = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


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
def store(db: Session) -> CardStore:
    """Create a card store instance."""
    return CardStore(db)


@pytest.fixture
def user_id() -> str:
    """Create a test user id."""
    return fake.uuid4()


def reviewed(due: datetime) -> FsrsCard:
    return FsrsCard(
        state=State.REVIEW,
        step=None,
        stability=4.2,
        difficulty=6.1,
        due=due,
        last_review=NOW,
    )


def test_ensure_card_creates_once(store: CardStore, db: Session, user_id: str) -> None:
    """Test ensure_card returns the same row on repeated calls."""
    first = store.ensure_card(user_id, 10, 0, now=NOW)
    db.commit()
    second = store.ensure_card(user_id, 10, 0, now=NOW)

    assert first.id == second.id
    assert first.state == State.LEARNING
    assert first.step == 0
    assert first.stability is None
    assert first.due == NOW
    assert store.count_cards(user_id) == 1


def test_save_review_persists_card_and_log(store: CardStore, db: Session, user_id: str) -> None:
    """Test the card and its log entry are stored together."""
    due = NOW + timedelta(days=4)
    entry = FsrsReviewEntry(rating=Rating.GOOD, review_datetime=NOW, review_duration=2300)

    card = store.save_review(user_id, 11, 1, reviewed(due), entry)

    assert card.state == State.REVIEW
    assert card.stability == 4.2
    assert card.due == due
    assert card.due.tzinfo is not None
    logs = store.list_review_logs(card.id)
    assert len(logs) == 1
    assert logs[0].rating == Rating.GOOD
    assert logs[0].review_duration == 2300
    assert logs[0].review_datetime == NOW


def test_list_review_logs_ordered(store: CardStore, db: Session, user_id: str) -> None:
    """Test logs come back by review time, then insertion order."""
    card = store.ensure_card(user_id, 12, 0, now=NOW)
    later = FsrsReviewEntry(rating=Rating.EASY, review_datetime=NOW + timedelta(days=2))
    earlier = FsrsReviewEntry(rating=Rating.AGAIN, review_datetime=NOW)
    same_time = FsrsReviewEntry(rating=Rating.HARD, review_datetime=NOW)
    for entry in (later, earlier, same_time):
        store.append_review_log(card, entry)
    db.commit()

    ratings = [log.rating for log in store.list_review_logs(card.id)]

    assert ratings == [Rating.AGAIN, Rating.HARD, Rating.EASY]


def test_delete_card_cascades_logs(store: CardStore, db: Session, user_id: str) -> None:
    """Test deleting a card removes its review history."""
    entry = FsrsReviewEntry(rating=Rating.GOOD, review_datetime=NOW)
    card = store.save_review(user_id, 13, 0, reviewed(NOW + timedelta(days=1)), entry)
    card_id = card.id

    assert store.delete_card(user_id, 13, 0)
    db.commit()

    assert store.get_card(user_id, 13, 0) is None
    remaining = db.query(ReviewLog).filter(ReviewLog.card_id == card_id).count()
    assert remaining == 0
    assert not store.delete_card(user_id, 13, 0)


def test_list_cards_page(store: CardStore, db: Session, user_id: str) -> None:
    """Test paging by ascending id after a cursor."""
    ids = [store.ensure_card(user_id, word_id, 0, now=NOW).id for word_id in range(5)]
    store.ensure_card(fake.uuid4(), 99, 0, now=NOW)
    db.commit()

    first = store.list_cards_page(user_id, 0, 2)
    rest = store.list_cards_page(user_id, first[-1].id, 10)

    assert [card.id for card in first] == ids[:2]
    assert [card.id for card in rest] == ids[2:]
    assert store.count_cards(user_id) == 5


def test_upsert_card_overwrites_fields(store: CardStore, db: Session, user_id: str) -> None:
    """Test upsert replaces the scheduling fields of an existing card."""
    store.ensure_card(user_id, 14, 0, now=NOW)
    db.commit()

    due = NOW + timedelta(days=9)
    card = store.upsert_card(user_id, 14, 0, reviewed(due))
    db.commit()

    assert db.query(Card).count() == 1
    assert card.state == State.REVIEW
    assert card.step is None
    assert card.difficulty == 6.1
    assert card.due == due


def test_list_review_logs_for_cards_groups_by_card(store: CardStore, db: Session, user_id: str) -> None:
    """Test logs of several cards come back grouped and in replay order."""
    first = store.ensure_card(user_id, 15, 0, now=NOW)
    second = store.ensure_card(user_id, 16, 0, now=NOW)
    empty = store.ensure_card(user_id, 17, 0, now=NOW)
    store.append_review_log(first, FsrsReviewEntry(rating=Rating.EASY, review_datetime=NOW + timedelta(days=3)))
    store.append_review_log(second, FsrsReviewEntry(rating=Rating.HARD, review_datetime=NOW))
    store.append_review_log(first, FsrsReviewEntry(rating=Rating.AGAIN, review_datetime=NOW))
    db.commit()

    grouped = store.list_review_logs_for_cards([first.id, second.id, empty.id])

    assert [log.rating for log in grouped[first.id]] == [Rating.AGAIN, Rating.EASY]
    assert [log.rating for log in grouped[second.id]] == [Rating.HARD]
    assert empty.id not in grouped
    assert store.list_review_logs_for_cards([]) == {}
