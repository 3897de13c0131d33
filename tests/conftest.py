from datetime import datetime, timedelta, timezone

import pytest

from refinery.application.deck_config import DeckRegistry
from refinery.domain.scheduling.config import (
    AlgorithmConfig,
    FailPolicy,
    LeechAction,
    NewCardOrder,
    NewCardPolicy,
    ReviewPolicy,
)
from refinery.domain.scheduling.models import CardState, CardStatus
from refinery.infrastructure.documents import datetime_to_ms

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def scenario_config():
    """Deck policy used throughout the grading tests (no fuzz, leech after 3 fails)."""
    return AlgorithmConfig(
        cfg_id="scenario",
        new=NewCardPolicy(
            max_per_day=20,
            starting_intervals=(1, 4),
            initial_factor=2.5,
            order=NewCardOrder.BY_CREATION_DATE,
        ),
        fail=FailPolicy(
            fails_until_leech=3,
            delays=(1, 10),
            multiply_interval=0.5,
            min_leech_interval=1,
            leech_action=LeechAction.SUSPEND,
        ),
        rev=ReviewPolicy(multiply_interval=2, max_interval=365, fuzz=0, min_space=1),
    )


@pytest.fixture
def registry(scenario_config):
    return DeckRegistry.single("books", scenario_config)


def _review_state(
    now: datetime,
    interval_days: float = 10,
    easiness_factor: float = 2.0,
    lapse_count: int = 0,
    status: CardStatus = CardStatus.REVIEW,
) -> CardState:
    """A reviewed card whose last interval was `interval_days`, due exactly at `now`."""
    last = now - timedelta(days=interval_days)
    return CardState(
        easiness_factor=easiness_factor,
        next_revision=now,
        past_revisions=(last - timedelta(days=3), last),
        lapse_count=lapse_count,
        status=status,
    )


def _make_document(
    doc_id: str,
    deck: str = "books",
    created: datetime = NOW - timedelta(days=30),
    next_revision: datetime = NOW,
    past_revisions: tuple[datetime, ...] = (),
    status: str = "new",
    easiness_factor: float = 2.5,
    lapse_count: int = 0,
    suspended: bool = False,
    **extra,
) -> dict:
    """Stored record document in the CouchDB layout."""
    doc = {
        "_id": doc_id,
        "dataField1": f"highlight {doc_id}",
        "dataField2": "",
        "source": "iBooks",
        "timestampCreated": datetime_to_ms(created),
        "timestampModified": datetime_to_ms(created),
        "flashcard": {
            "deck": deck,
            "easinessFactor": easiness_factor,
            "suspended": suspended,
            "tags": [],
            "scheduler": {
                "pastRevisions": [datetime_to_ms(t) for t in past_revisions],
                "nextRevision": datetime_to_ms(next_revision),
                "lapseCount": lapse_count,
                "status": status,
            },
        },
    }
    doc.update(extra)
    return doc


@pytest.fixture
def documents(now):
    """A small deck: two new cards, one due review, one future review, one suspended."""
    day = timedelta(days=1)
    return [
        _make_document("rec_new_b", created=now - 5 * day),
        _make_document("rec_new_a", created=now - 2 * day),
        _make_document(
            "rec_due",
            next_revision=now - day,
            past_revisions=(now - 11 * day,),
            status="review",
            easiness_factor=2.0,
        ),
        _make_document(
            "rec_later",
            next_revision=now + 3 * day,
            past_revisions=(now - 2 * day,),
            status="review",
        ),
        _make_document("rec_suspended", suspended=True),
        _make_document("rec_other_deck", deck="papers"),
    ]


@pytest.fixture
def review_state():
    return _review_state


@pytest.fixture
def make_document():
    return _make_document


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home
