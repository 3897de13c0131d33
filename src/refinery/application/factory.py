"""
Record Store Factory
Centralizes the logic for selecting the record store and wiring the review service.
"""

import random

from refinery.application.config import AppConfig
from refinery.application.deck_config import load_deck_registry
from refinery.application.review_service import ReviewService
from refinery.domain.ports import RecordStore
from refinery.infrastructure.adapters.couchdb_store import CouchDbRecordStore
from refinery.infrastructure.adapters.memory_store import MemoryRecordStore


def get_record_store(config: AppConfig) -> RecordStore:
    """
    Returns the RecordStore implementation selected by config.backend.
    """
    if config.backend == "memory":
        return MemoryRecordStore(path=config.memory_store_file)

    password = config.database_password.get_secret_value() if config.database_password else None
    return CouchDbRecordStore(
        url=config.database_url,
        user=config.database_user,
        password=password,
        timeout=config.request_timeout,
    )


def get_review_service(config: AppConfig, rng: random.Random | None = None) -> ReviewService:
    """
    Loads the deck registry from config.config_file and builds a ReviewService on top
    of the configured store.
    """
    decks = load_deck_registry(config.config_file)
    return ReviewService(get_record_store(config), decks, rng=rng)
