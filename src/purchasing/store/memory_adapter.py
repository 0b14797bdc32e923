"""In-memory document store for development and testing."""

import copy
import threading

from purchasing.store.port import Document, DocumentStore, check_version, collection_of, merge_data


class MemoryDocumentStore(DocumentStore):
    """Document store backed by a dict, safe for use across threads."""

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._documents: dict[str, tuple[dict, int]] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Document | None:
        path = path.strip("/")
        with self._lock:
            entry = self._documents.get(path)
            if entry is None:
                return None
            data, version = entry
            return Document(path=path, data=copy.deepcopy(data), version=version)

    def set(
        self,
        path: str,
        data: dict,
        merge: bool = True,
        expected_version: int | None = None,
    ) -> Document:
        path = path.strip("/")
        with self._lock:
            entry = self._documents.get(path)
            check_version(path, expected_version, entry[1] if entry else None)

            existing = entry[0] if entry else None
            new_data = merge_data(existing, data, merge=merge)
            version = (entry[1] if entry else 0) + 1
            self._documents[path] = (new_data, version)
            return Document(path=path, data=copy.deepcopy(new_data), version=version)

    def delete(self, path: str) -> None:
        with self._lock:
            self._documents.pop(path.strip("/"), None)

    def list_collection(self, collection: str) -> list[Document]:
        collection = collection.strip("/")
        with self._lock:
            return [
                Document(path=path, data=copy.deepcopy(data), version=version)
                for path, (data, version) in sorted(self._documents.items())
                if collection_of(path) == collection
            ]
