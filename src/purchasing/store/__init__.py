"""Document store factory.

The configured ``databases`` list is turned into an ordered list of stores:
- ``memory://<name>`` opens a MemoryDocumentStore (one per name, kept for the
  life of the process)
- anything else is treated as a SQLAlchemy database URI
"""

from purchasing.config import get_settings
from purchasing.store.memory_adapter import MemoryDocumentStore
from purchasing.store.port import DocumentStore
from purchasing.store.sql_adapter import SqlDocumentStore

_MEMORY_PREFIX = "memory://"

_memory_stores: dict[str, MemoryDocumentStore] = {}
_current_stores: list[DocumentStore] | None = None


def open_store(url: str) -> DocumentStore:
    """Open a single document store from its URL."""
    if url.startswith(_MEMORY_PREFIX):
        name = url[len(_MEMORY_PREFIX) :] or "default"
        if name not in _memory_stores:
            _memory_stores[name] = MemoryDocumentStore(name)
        return _memory_stores[name]
    store = SqlDocumentStore(url)
    store.setup_db()
    return store


def get_stores() -> list[DocumentStore]:
    """Return the configured stores in fan-out order."""
    global _current_stores
    if _current_stores is None:
        _current_stores = [open_store(url) for url in get_settings().databases]
    return _current_stores


def set_stores(stores: list[DocumentStore]) -> None:
    """Override the active stores (useful for tests)."""
    global _current_stores
    _current_stores = list(stores)


def reset_stores() -> None:
    """Close opened stores and reset to configuration."""
    global _current_stores
    for store in _current_stores or []:
        store.close()
    _current_stores = None
    _memory_stores.clear()
