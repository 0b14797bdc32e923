"""Document store port (abstract interface).

Documents are JSON objects addressed by slash-separated paths such as
``plugins/stripe/user/u1/purchase/o1``. A document's collection is its path
without the last segment. Every write bumps a per-document version, which
callers pass back as ``expected_version`` to get compare-and-set semantics:

    expected_version=None   unconditional write
    expected_version=0      create only if the document does not exist
    expected_version=n      write only if the stored version is still n
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class _DeleteField:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"

    def __deepcopy__(self, memo):
        return self


DELETE_FIELD = _DeleteField()
"""Marker value that removes a field when written with merge."""


class VersionConflictError(Exception):
    """Raised when a conditional write finds a different stored version."""

    def __init__(self, path: str, expected: int | None, actual: int | None) -> None:
        super().__init__(f"Version conflict on {path}: expected {expected}, found {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class Document:
    path: str
    data: dict = field(default_factory=dict)
    version: int = 0

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def collection(self) -> str:
        return collection_of(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def collection_of(path: str) -> str:
    path = path.strip("/")
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def merge_data(existing: dict | None, changes: dict, merge: bool = True) -> dict:
    """Apply ``changes`` on top of ``existing``.

    Nested dicts are merged recursively and DELETE_FIELD removes a key. With
    ``merge=False`` the changes replace the document outright.
    """
    if not merge or existing is None:
        return _strip_deletes(changes)

    result = copy.deepcopy(existing)
    for key, value in changes.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_data(result[key], value)
        else:
            result[key] = _strip_deletes(value) if isinstance(value, dict) else copy.deepcopy(value)
    return result


def _strip_deletes(data: dict) -> dict:
    cleaned = {}
    for key, value in data.items():
        if value is DELETE_FIELD:
            continue
        cleaned[key] = _strip_deletes(value) if isinstance(value, dict) else copy.deepcopy(value)
    return cleaned


def check_version(path: str, expected: int | None, actual: int | None) -> None:
    """Raise VersionConflictError unless ``actual`` satisfies ``expected``.

    ``actual`` is None when the document does not exist.
    """
    if expected is None:
        return
    if expected == 0:
        if actual is not None:
            raise VersionConflictError(path, expected, actual)
        return
    if actual != expected:
        raise VersionConflictError(path, expected, actual)


class DocumentStore(ABC):
    """Abstract document database interface."""

    name: str = "default"

    @abstractmethod
    def get(self, path: str) -> Document | None:
        """Return the document at ``path`` or None."""
        ...

    @abstractmethod
    def set(
        self,
        path: str,
        data: dict,
        merge: bool = True,
        expected_version: int | None = None,
    ) -> Document:
        """Write a document and return it with its new version."""
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        ...

    @abstractmethod
    def list_collection(self, collection: str) -> list[Document]:
        """Return the documents directly inside ``collection``, ordered by path."""
        ...

    def find(self, collection: str, field_name: str, value: Any) -> list[Document]:
        """Return documents in ``collection`` whose ``field_name`` equals ``value``."""
        return [doc for doc in self.list_collection(collection) if doc.data.get(field_name) == value]

    def close(self) -> None:  # noqa: B027
        """Release any held resources."""
