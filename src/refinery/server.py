import logging
import random
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from refinery.application.review_service import ReviewService
from refinery.consts import VERSION
from refinery.domain.errors import (
    Conflict,
    InvalidConfig,
    InvalidGrade,
    InvalidRecord,
    RecordNotFound,
    RefineryError,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("refinery.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from refinery.application.config import resolve_config
    from refinery.application.factory import get_review_service as build_service

    logger.info(f"Refinery Server v{VERSION} starting up...")
    config = resolve_config()
    app.state.review_service = build_service(config)
    logger.info(f"Serving decks from {config.config_file} ({config.backend} backend)")
    try:
        yield
    finally:
        await app.state.review_service.aclose()
        logger.info("Refinery Server shutting down...")


def get_review_service(request: Request) -> ReviewService:
    """The service built by the lifespan handler for this app."""
    return request.app.state.review_service


app = FastAPI(
    title="Refinery Server",
    description="Study queues and grading for refinery decks.",
    version=VERSION,
    lifespan=lifespan,
)

ServiceDep = Annotated[ReviewService, Depends(get_review_service)]


def _to_http(e: RefineryError) -> HTTPException:
    if isinstance(e, RecordNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, Conflict):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidGrade, InvalidConfig, InvalidRecord)):
        return HTTPException(status_code=422, detail=str(e))
    logger.error(f"Store failure: {e}")
    return HTTPException(status_code=502, detail=str(e))


def _aware(now: datetime | None) -> datetime | None:
    if now is not None and now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


class QueueResponse(BaseModel):
    deck: str
    queue: list[str]
    reviews: int
    new: int
    not_due: int
    suspended: int
    capped_reviews: int
    capped_new: int


@app.get("/decks/{deck}/queue", response_model=QueueResponse)
async def get_queue(
    deck: str,
    service: ServiceDep,
    now: datetime | None = None,
    seed: int | None = None,
):
    """Today's queue: due reviews first, then new cards, both capped."""
    rng = random.Random(seed) if seed is not None else None
    try:
        result = await service.build_queue(deck, now=_aware(now), rng=rng)
    except RefineryError as e:
        raise _to_http(e) from e

    return QueueResponse(
        deck=deck,
        queue=result.ordered,
        reviews=len(result.review_queue),
        new=len(result.new_queue),
        not_due=result.not_due,
        suspended=result.suspended,
        capped_reviews=result.capped_reviews,
        capped_new=result.capped_new,
    )


@app.get("/decks/{deck}/due")
async def get_due(deck: str, service: ServiceDep, now: datetime | None = None):
    try:
        cards = await service.due_cards(deck, now=_aware(now))
    except RefineryError as e:
        raise _to_http(e) from e
    return {"deck": deck, "cards": cards}


class GradeRequest(BaseModel):
    grade: int | str
    now: datetime | None = None


class GradeResponse(BaseModel):
    card_id: str
    grade: str
    status: str
    next_revision: datetime
    easiness_factor: float
    lapse_count: int
    review_count: int
    leech_action: str | None
    counted_as_due: bool
    suspended: bool
    revision: str


@app.post("/cards/{card_id}/grade", response_model=GradeResponse)
async def grade_card(card_id: str, req: GradeRequest, service: ServiceDep):
    """
    Grade a card and persist its new schedule.
    """
    try:
        outcome = await service.grade_card(card_id, req.grade, now=_aware(req.now))
    except RefineryError as e:
        raise _to_http(e) from e

    state = outcome.state
    return GradeResponse(
        card_id=outcome.card_id,
        grade=outcome.grade.name.lower(),
        status=state.status.value,
        next_revision=state.next_revision,
        easiness_factor=state.easiness_factor,
        lapse_count=state.lapse_count,
        review_count=state.review_count,
        leech_action=outcome.leech_action.name.lower() if outcome.leech_action else None,
        counted_as_due=outcome.counted_as_due,
        suspended=outcome.suspended,
        revision=outcome.revision,
    )
