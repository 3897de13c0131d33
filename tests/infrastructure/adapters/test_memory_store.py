from datetime import timedelta

import pytest

from refinery.application.id_service import construct_record
from refinery.domain.errors import Conflict, InvalidRecord, RecordNotFound, StoreError
from refinery.domain.scheduling.config import AlgorithmConfig
from refinery.domain.scheduling.models import CardState, CardStatus
from refinery.infrastructure.adapters.memory_store import MemoryRecordStore


@pytest.fixture
def store(documents, now):
    return MemoryRecordStore(documents, clock=lambda: now + timedelta(hours=1))


@pytest.mark.asyncio
async def test_get_record(store):
    record = await store.get_record("rec_due")

    assert record.flashcard.state.status is CardStatus.REVIEW
    assert record.revision.startswith("1-")


@pytest.mark.asyncio
async def test_get_missing_record(store):
    with pytest.raises(RecordNotFound) as exc:
        await store.get_record("rec_nope")
    assert exc.value.record_id == "rec_nope"


@pytest.mark.asyncio
async def test_deck_cards_filters_by_deck(store):
    cards = await store.deck_cards("books")

    assert set(cards) == {"rec_new_a", "rec_new_b", "rec_due", "rec_later", "rec_suspended"}
    assert cards["rec_suspended"].suspended is True
    assert cards["rec_due"].revision is not None
    assert list(await store.deck_cards("papers")) == ["rec_other_deck"]
    assert await store.deck_cards("poems") == {}


@pytest.mark.asyncio
async def test_update_card_bumps_revision(store, now):
    record = await store.get_record("rec_due")
    state = CardState(
        easiness_factor=2.0,
        next_revision=now + timedelta(days=20),
        past_revisions=record.flashcard.state.past_revisions + (now,),
        status=CardStatus.REVIEW,
    )

    revision = await store.update_card("rec_due", state, record.revision, tags=("hard",))

    assert revision.startswith("2-")
    updated = await store.get_record("rec_due")
    assert updated.flashcard.state == state
    assert updated.flashcard.tags == ("hard",)
    assert updated.flashcard.suspended is False
    assert updated.modified == now + timedelta(hours=1)
    assert updated.highlight == record.highlight


@pytest.mark.asyncio
async def test_stale_revision_conflicts(store):
    record = await store.get_record("rec_due")
    await store.update_card("rec_due", record.flashcard.state, record.revision)

    with pytest.raises(Conflict):
        await store.update_card("rec_due", record.flashcard.state, record.revision)


@pytest.mark.asyncio
async def test_update_missing_card(store, now):
    state = CardState(easiness_factor=2.5, next_revision=now)
    with pytest.raises(RecordNotFound):
        await store.update_card("rec_nope", state, "1-x")


@pytest.mark.asyncio
async def test_add_record(now):
    store = MemoryRecordStore()
    record = construct_record("text", "", "manual", "books", AlgorithmConfig(), now)

    stored = await store.add_record(record)

    assert stored.revision.startswith("1-")
    assert (await store.get_record(record.record_id)).highlight == "text"
    with pytest.raises(Conflict):
        await store.add_record(record)


def test_documents_are_copies(store):
    docs = store.documents()
    docs[0]["dataField1"] = "changed"
    assert all(d["dataField1"] != "changed" for d in store.documents())


@pytest.mark.asyncio
async def test_invalid_document_surfaces_on_read(make_document):
    doc = make_document("rec_bad")
    del doc["flashcard"]["deck"]
    store = MemoryRecordStore([doc])

    with pytest.raises(InvalidRecord):
        await store.get_record("rec_bad")


# --- Snapshot file ---


@pytest.mark.asyncio
async def test_snapshot_survives_a_new_store(tmp_path, now):
    path = tmp_path / "state" / "memory_store.json"
    first = MemoryRecordStore(path=path)
    record = construct_record("text", "", "manual", "books", AlgorithmConfig(), now)
    stored = await first.add_record(record)

    second = MemoryRecordStore(path=path)

    assert path.exists()
    reloaded = await second.get_record(record.record_id)
    assert reloaded.highlight == "text"
    assert reloaded.revision == stored.revision


@pytest.mark.asyncio
async def test_snapshot_records_updates(tmp_path, documents, now):
    path = tmp_path / "memory_store.json"
    store = MemoryRecordStore(documents, path=path)
    record = await store.get_record("rec_due")
    revision = await store.update_card("rec_due", record.flashcard.state, record.revision)

    # The seed documents are only written out by the first write
    reloaded = MemoryRecordStore(path=path)

    assert (await reloaded.get_record("rec_due")).revision == revision
    assert set(await reloaded.deck_cards("books")) == set(await store.deck_cards("books"))


def test_missing_snapshot_starts_empty(tmp_path):
    store = MemoryRecordStore(path=tmp_path / "absent.json")
    assert store.documents() == []
    assert not (tmp_path / "absent.json").exists()


@pytest.mark.parametrize("content", ["{not json", '{"_id": "rec_1"}', '[{"dataField1": "x"}]'])
def test_corrupt_snapshot_is_a_store_error(tmp_path, content):
    path = tmp_path / "memory_store.json"
    path.write_text(content)

    with pytest.raises(StoreError, match="(?i)memory store snapshot"):
        MemoryRecordStore(path=path)
