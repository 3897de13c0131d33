"""
Document codec: CouchDB-style JSON documents <-> Record.

Documents use camelCase keys and epoch-millisecond timestamps:

    {
      "_id": "rec_01H...", "_rev": "3-abc",
      "dataField1": "highlight", "dataField2": "note",
      "source": "iBooks", "richContent": "",
      "timestampCreated": 1700000000000, "timestampModified": 1700000000000,
      "pageMap": {"pagemapType": "epubcfi", "pagemapValue": "epubcfi(/6/4)"},
      "notebook": "default", "linked": [],
      "flashcard": {
        "deck": "books", "easinessFactor": 2.5,
        "suspended": false, "tags": [],
        "scheduler": {"pastRevisions": [], "nextRevision": 1700000000000,
                      "lapseCount": 0, "status": "new"}
      }
    }

`record_from_document` is the only way a document becomes a Record.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from refinery.domain.constants import MS_PER_SECOND
from refinery.domain.errors import InvalidRecord
from refinery.domain.records import Flashcard, PageMap, Record
from refinery.domain.scheduling.models import CardState, CardStatus

REQUIRED_KEYS = (
    "_id",
    "dataField1",
    "dataField2",
    "source",
    "timestampCreated",
    "timestampModified",
    "flashcard",
)

_KNOWN_KEYS = set(REQUIRED_KEYS) | {"_rev", "richContent", "pageMap", "notebook", "linked"}


def ms_to_datetime(value: Any, field_name: str = "timestamp") -> datetime:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidRecord(f"{field_name} must be epoch milliseconds, got {value!r}")
    try:
        return datetime.fromtimestamp(value / MS_PER_SECOND, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidRecord(f"{field_name} is out of range: {value!r}") from e


def datetime_to_ms(value: datetime) -> int:
    return round(value.timestamp() * MS_PER_SECOND)


def record_from_document(doc: Mapping[str, Any]) -> Record:
    """
    Validate a stored document and build a Record from it.

    Raises:
        InvalidRecord: Required keys are missing or hold values of the wrong shape.
    """
    if not isinstance(doc, Mapping):
        raise InvalidRecord(f"Document must be a mapping, got {type(doc).__name__}")

    missing = [k for k in REQUIRED_KEYS if k not in doc]
    if missing:
        raise InvalidRecord(f"Document {doc.get('_id', '?')} is missing {', '.join(missing)}")

    doc_id = doc["_id"]
    try:
        return Record(
            record_id=str(doc_id),
            highlight=_text(doc, "dataField1"),
            note=_text(doc, "dataField2"),
            source=_text(doc, "source"),
            created=ms_to_datetime(doc["timestampCreated"], "timestampCreated"),
            modified=ms_to_datetime(doc["timestampModified"], "timestampModified"),
            flashcard=_flashcard_from_document(doc["flashcard"]),
            rich_content=doc.get("richContent") or "",
            page_map=_page_map_from_document(doc.get("pageMap")),
            notebook=doc.get("notebook"),
            linked=_linked(doc.get("linked")),
            revision=doc.get("_rev"),
            extra={k: v for k, v in doc.items() if k not in _KNOWN_KEYS},
        )
    except InvalidRecord as e:
        raise InvalidRecord(f"Document {doc_id}: {e}") from e


def record_to_document(record: Record) -> dict[str, Any]:
    state = record.flashcard.state
    doc: dict[str, Any] = dict(record.extra)
    doc.update(
        {
            "_id": record.record_id,
            "dataField1": record.highlight,
            "dataField2": record.note,
            "source": record.source,
            "richContent": record.rich_content,
            "timestampCreated": datetime_to_ms(record.created),
            "timestampModified": datetime_to_ms(record.modified),
            "notebook": record.notebook,
            "linked": list(record.linked),
            "flashcard": {
                "deck": record.flashcard.deck,
                "easinessFactor": state.easiness_factor,
                "suspended": record.flashcard.suspended,
                "tags": list(record.flashcard.tags),
                "scheduler": {
                    "pastRevisions": [datetime_to_ms(t) for t in state.past_revisions],
                    "nextRevision": datetime_to_ms(state.next_revision),
                    "lapseCount": state.lapse_count,
                    "status": state.status.value,
                },
            },
        }
    )
    if record.page_map is not None:
        doc["pageMap"] = {
            "pagemapType": record.page_map.pagemap_type,
            "pagemapValue": record.page_map.pagemap_value,
        }
    if record.revision is not None:
        doc["_rev"] = record.revision
    return doc


def _text(doc: Mapping[str, Any], key: str) -> str:
    value = doc[key]
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidRecord(f"{key} must be a string, got {type(value).__name__}")
    return value


def _linked(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    raise InvalidRecord(f"linked must be a string or a list, got {value!r}")


def _page_map_from_document(value: Any) -> PageMap | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise InvalidRecord(f"pageMap must be a mapping, got {value!r}")
    pagemap_type = value.get("pagemapType")
    pagemap_value = value.get("pagemapValue")
    if pagemap_type is None and pagemap_value is None:
        return None
    if pagemap_type not in ("epubcfi", "pdf"):
        raise InvalidRecord(f"pageMap.pagemapType must be 'epubcfi' or 'pdf', got {pagemap_type!r}")
    return PageMap(pagemap_type=pagemap_type, pagemap_value=str(pagemap_value or ""))


def _flashcard_from_document(value: Any) -> Flashcard:
    if not isinstance(value, Mapping):
        raise InvalidRecord("flashcard must be a mapping")
    if "deck" not in value:
        raise InvalidRecord("flashcard.deck is required")
    scheduler = value.get("scheduler")
    if not isinstance(scheduler, Mapping):
        raise InvalidRecord("flashcard.scheduler is required")
    for key in ("pastRevisions", "nextRevision"):
        if key not in scheduler:
            raise InvalidRecord(f"flashcard.scheduler.{key} is required")

    # Older documents keep the factor inside the scheduler block
    easiness_factor = value.get("easinessFactor", scheduler.get("easinessFactor"))
    if easiness_factor is None:
        raise InvalidRecord("flashcard.easinessFactor is required")

    past_raw = scheduler["pastRevisions"]
    if not isinstance(past_raw, list):
        raise InvalidRecord("flashcard.scheduler.pastRevisions must be a list")
    past_revisions = tuple(ms_to_datetime(t, "pastRevisions") for t in past_raw)
    lapse_count = scheduler.get("lapseCount", 0)

    status_raw = scheduler.get("status")
    if status_raw is None:
        status = _infer_status(past_revisions, lapse_count)
    else:
        try:
            status = CardStatus(status_raw)
        except ValueError:
            raise InvalidRecord(f"Unknown card status {status_raw!r}") from None

    tags = value.get("tags") or []
    if not isinstance(tags, list):
        raise InvalidRecord("flashcard.tags must be a list")

    state = CardState(
        easiness_factor=easiness_factor,
        next_revision=ms_to_datetime(scheduler["nextRevision"], "nextRevision"),
        past_revisions=past_revisions,
        lapse_count=lapse_count,
        status=status,
    )
    return Flashcard(
        deck=str(value["deck"]),
        state=state,
        suspended=bool(value.get("suspended", False)),
        tags=tuple(str(t) for t in tags),
    )


def _infer_status(past_revisions: tuple[datetime, ...], lapse_count: Any) -> CardStatus:
    if not past_revisions:
        return CardStatus.NEW
    if isinstance(lapse_count, int) and lapse_count > 0:
        return CardStatus.LEARNING
    return CardStatus.REVIEW
