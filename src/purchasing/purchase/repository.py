"""Purchase Record Store with compare-and-set writes.

Transitions never write blindly. ``commit`` hands the freshest record to a
change function and writes its result only if the document version is still
the one that was read. On a conflict the record is re-read and the change
function runs again, so any flag checks inside it see the other writer's
result.
"""

from collections.abc import Callable

import structlog

from purchasing.config import Settings, get_settings
from purchasing.errors import ContentionError, NotFoundError
from purchasing.purchase.record import PurchaseRecord
from purchasing.store.port import DocumentStore, VersionConflictError
from purchasing.utils.clock import timestamp

logger = structlog.get_logger(__name__)

Change = Callable[[PurchaseRecord], dict | None]


class PurchaseRepository:
    def __init__(self, store: DocumentStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def path(self, user_id: str, order_id: str) -> str:
        return self.settings.purchase_doc(user_id, order_id)

    def load(self, user_id: str, order_id: str) -> PurchaseRecord | None:
        doc = self.store.get(self.path(user_id, order_id))
        if doc is None:
            return None
        record = PurchaseRecord.from_document(doc)
        record.user_id = record.user_id or user_id
        return record

    def get(self, user_id: str, order_id: str) -> PurchaseRecord:
        record = self.load(user_id, order_id)
        if record is None:
            raise NotFoundError("The purchase data is invalid.", field="orderId")
        return record

    def list_for_user(self, user_id: str) -> list[PurchaseRecord]:
        records = []
        for doc in self.store.list_collection(self.settings.purchase_collection(user_id)):
            record = PurchaseRecord.from_document(doc)
            record.user_id = record.user_id or user_id
            records.append(record)
        return records

    def create(self, record: PurchaseRecord, expected_version: int = 0) -> PurchaseRecord:
        """Write a new record; raises VersionConflictError if it already changed."""
        now = timestamp()
        data = {**record.to_document(), "createdTime": record.created_time or now, "updatedTime": now}
        doc = self.store.set(
            self.path(record.user_id, record.order_id),
            data,
            merge=True,
            expected_version=expected_version,
        )
        return PurchaseRecord.from_document(doc)

    def commit(self, record: PurchaseRecord, change: Change) -> PurchaseRecord:
        """Apply ``change`` to the record under compare-and-set, retrying on conflict."""
        current = record
        attempts = self.settings.cas_max_attempts
        for attempt in range(1, attempts + 1):
            changes = change(current)
            if not changes:
                return current

            path = self.path(current.user_id, current.order_id)
            try:
                doc = self.store.set(
                    path,
                    {**changes, "updatedTime": timestamp()},
                    merge=True,
                    expected_version=current.version,
                )
            except VersionConflictError:
                logger.info(
                    "purchase_write_conflict",
                    order_id=current.order_id,
                    attempt=attempt,
                    max_attempts=attempts,
                )
                current = self.get(current.user_id, current.order_id)
                continue

            updated = PurchaseRecord.from_document(doc)
            updated.user_id = updated.user_id or current.user_id
            return updated

        raise ContentionError("The purchase data was updated concurrently. Please try again.")
