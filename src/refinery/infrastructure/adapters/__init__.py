# Infrastructure Record Store Adapters Package
from .couchdb_store import CouchDbRecordStore
from .memory_store import MemoryRecordStore

__all__ = ["CouchDbRecordStore", "MemoryRecordStore"]
