"""Known-state classification of card snapshots."""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Union

from wordsrs.config import settings
from wordsrs.models.models import Card
from wordsrs.models.srs_models import FsrsCard, KnownState, State

CardLike = Union[Card, FsrsCard]


def mature_threshold() -> timedelta:
    return timedelta(days=settings.scheduler.mature_interval_days)


def classify(card: Optional[CardLike], now: Optional[datetime] = None) -> KnownState:
    """Label a card as New, Young, Mature, Blacklisted, Mastered or Due.

    Due is only reported when `now` is passed and the card is due by then.
    """
    if card is None:
        return KnownState.NEW

    state = State(card.state)
    if state == State.BLACKLISTED:
        return KnownState.BLACKLISTED
    if state == State.MASTERED:
        return KnownState.MASTERED
    if state == State.NEW or card.last_review is None:
        return KnownState.NEW
    if now is not None and card.due <= now:
        return KnownState.DUE
    if card.due - card.last_review < mature_threshold():
        return KnownState.YOUNG
    return KnownState.MATURE


def known_states(
    card: Optional[CardLike],
    inherited: Iterable[KnownState] = (),
    now: Optional[datetime] = None,
) -> List[KnownState]:
    """Union of the card's own label and labels inherited from word sets."""
    labels = {classify(card, now)}
    labels.update(inherited)
    if len(labels) > 1:
        labels.discard(KnownState.NEW)
    return sorted(labels)
