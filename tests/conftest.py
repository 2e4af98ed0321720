from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from novastudy.errors import PersistenceError
from novastudy.models.flashcard import Flashcard, WriteStatus

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
USER = "student-1"


def make_card(card_id, set_id="set-a", user_id=USER, question=None, **scheduling):
    return Flashcard(
        id=card_id,
        set_id=set_id,
        user_id=user_id,
        question=question or f"Question {card_id}?",
        answer=f"Answer {card_id}",
        created_at=NOW,
        updated_at=NOW,
        **scheduling,
    )


class FakeCardStore:
    def __init__(self, cards=()):
        self.cards = {c.id: c for c in cards}
        self.writes = []
        self.fail_writes = False
        self.fail_listing = False
        self.forbidden = set()

    async def load_scheduling(self, card_id, user_id):
        card = self.cards.get(card_id)
        if card is None or card.user_id != user_id:
            return None
        return card.scheduling()

    async def write_scheduling(self, card_id, user_id, state):
        if self.fail_writes:
            raise PersistenceError("database is locked")
        if card_id in self.forbidden:
            return WriteStatus.FORBIDDEN
        card = self.cards.get(card_id)
        if card is None:
            return WriteStatus.NOT_FOUND
        self.cards[card_id] = card.model_copy(update=state.model_dump())
        self.writes.append((card_id, state))
        return WriteStatus.SUCCESS

    async def card_exists(self, card_id):
        return card_id in self.cards

    async def list_cards_for_sets(self, set_ids, user_id):
        if self.fail_listing:
            raise PersistenceError("database is locked")
        return [c for c in self.cards.values() if c.set_id in set_ids and c.user_id == user_id]


class FakeSessionStore:
    def __init__(self):
        self.summaries = []
        self.fail = False

    async def save_summary(self, summary):
        if self.fail:
            raise PersistenceError("disk I/O error")
        self.summaries.append(summary)


@pytest.fixture
def card_store():
    return FakeCardStore()


@pytest.fixture
def session_store():
    return FakeSessionStore()


@pytest.fixture
def client(tmp_path, monkeypatch):
    from novastudy import create_app
    from novastudy.config import settings

    monkeypatch.setattr(settings, "data_dir", tmp_path)
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture
def headers():
    return {"X-User-Id": USER}
