"""Tests for compare-and-set writes of purchase records."""

import pytest

from purchasing.errors import ContentionError, NotFoundError
from purchasing.purchase.record import PurchaseRecord
from purchasing.purchase.repository import PurchaseRepository
from purchasing.store.memory_adapter import MemoryDocumentStore
from purchasing.store.port import VersionConflictError


class AlwaysConflictingStore(MemoryDocumentStore):
    """Every conditional write loses the race."""

    def set(self, path, data, merge=True, expected_version=None):
        if expected_version:
            raise VersionConflictError(path, expected_version, expected_version + 1)
        return super().set(path, data, merge=merge, expected_version=expected_version)


def _new_record():
    return PurchaseRecord(order_id="order-1", user_id="user-1", purchase_id="pi_1", amount=1000, currency="usd")


class TestCreate:
    def test_create_if_absent(self, repository):
        record = repository.create(_new_record())
        assert record.version == 1
        assert record.created_time is not None

    def test_create_twice_conflicts(self, repository):
        repository.create(_new_record())
        with pytest.raises(VersionConflictError):
            repository.create(_new_record())

    def test_get_missing_record(self, repository):
        with pytest.raises(NotFoundError):
            repository.get("user-1", "missing")


class TestCommit:
    def test_commit_applies_change(self, repository):
        record = repository.create(_new_record())
        updated = repository.commit(record, lambda _: {"confirm": True})

        assert updated.confirm is True
        assert updated.version == record.version + 1
        assert updated.updated_time is not None

    def test_empty_change_writes_nothing(self, repository, store):
        record = repository.create(_new_record())
        writes = len(store.writes)

        assert repository.commit(record, lambda _: None) is record
        assert len(store.writes) == writes

    def test_conflict_reapplies_change_to_fresh_record(self, repository, store, settings):
        record = repository.create(_new_record())
        # another writer gets in between the read and the write
        store.set(settings.purchase_doc("user-1", "order-1"), {"confirm": True})

        seen = []

        def change(current):
            seen.append(current.confirm)
            return {"verify": True}

        updated = repository.commit(record, change)

        assert seen == [False, True]
        assert updated.confirm is True
        assert updated.verify is True

    def test_change_can_give_up_after_reread(self, repository, store, settings):
        record = repository.create(_new_record())
        store.set(settings.purchase_doc("user-1", "order-1"), {"cancel": True})

        updated = repository.commit(record, lambda current: None if current.cancel else {"cancel": True})
        assert updated.cancel is True

    def test_exhausted_retries_raise_contention(self, settings):
        repository = PurchaseRepository(AlwaysConflictingStore(), settings)
        record = repository.create(_new_record())

        with pytest.raises(ContentionError):
            repository.commit(record, lambda _: {"confirm": True})

    def test_list_for_user(self, repository):
        repository.create(_new_record())
        second = _new_record()
        second.order_id = "order-2"
        repository.create(second)

        assert [record.order_id for record in repository.list_for_user("user-1")] == ["order-1", "order-2"]
