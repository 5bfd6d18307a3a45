"""
SqlEntityStore: entities, versioned dynamic data and store error mapping.
"""

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from ledger_kernel.exceptions import (
    OptimisticLockError,
    PersistenceError,
    PersistenceTimeoutError,
)
from ledger_kernel.services.entity_store import SqlEntityStore

SMART_CODE = "HERA.FIN.TEST.ENTITY.RECORD.v1"


@pytest.fixture
def store(session) -> SqlEntityStore:
    return SqlEntityStore(session)


@pytest.fixture
def entity(store, org_id, test_actor_id):
    created, _ = store.get_or_create_entity(
        org_id, "test_record", "REC-1", "Record 1", SMART_CODE, test_actor_id
    )
    return created


class TestEntities:
    def test_get_or_create(self, store, org_id, entity):
        again, created = store.get_or_create_entity(
            org_id, "test_record", "REC-1", "Renamed", SMART_CODE
        )
        assert not created
        assert again.id == entity.id
        assert again.entity_name == "Record 1"

    def test_scoped_by_organization(self, store, entity):
        assert store.get_entity(uuid4(), "test_record", "REC-1") is None

    def test_find_entities_ordered_by_code(self, store, org_id, entity):
        store.create_entity(org_id, "test_record", "REC-0", "Record 0", SMART_CODE)
        store.create_entity(org_id, "other", "X", "Other", SMART_CODE)

        codes = [e.entity_code for e in store.find_entities(org_id, "test_record")]

        assert codes == ["REC-0", "REC-1"]


class TestDynamicData:
    def test_first_write_is_version_one(self, store, entity, test_actor_id):
        row = store.set_dynamic_data(
            entity, "state", {"status": "open"}, SMART_CODE, expected_version=0, actor_id=test_actor_id
        )

        assert row.version == 1
        assert store.get_dynamic_data(entity.id, "state").field_value_json == {"status": "open"}

    def test_update_bumps_version(self, store, entity):
        store.set_dynamic_data(entity, "state", {"status": "open"}, SMART_CODE)
        row = store.set_dynamic_data(
            entity, "state", {"status": "closed"}, SMART_CODE, expected_version=1
        )

        assert row.version == 2
        assert row.field_value_json == {"status": "closed"}

    def test_stale_version_rejected(self, store, entity):
        store.set_dynamic_data(entity, "state", {"status": "open"}, SMART_CODE)
        store.set_dynamic_data(entity, "state", {"status": "closing"}, SMART_CODE)

        with pytest.raises(OptimisticLockError) as exc_info:
            store.set_dynamic_data(
                entity, "state", {"status": "closed"}, SMART_CODE, expected_version=1
            )

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert exc_info.value.retryable
        assert store.get_dynamic_data(entity.id, "state").field_value_json == {"status": "closing"}

    def test_expected_existing_row_missing(self, store, entity):
        with pytest.raises(OptimisticLockError):
            store.set_dynamic_data(entity, "state", {}, SMART_CODE, expected_version=3)

    def test_unversioned_write_always_applies(self, store, entity):
        store.set_dynamic_data(entity, "state", {"n": 1}, SMART_CODE)
        row = store.set_dynamic_data(entity, "state", {"n": 2}, SMART_CODE)
        assert row.version == 2


class TestErrorTranslation:
    def test_statement_timeout(self, store, session, monkeypatch, org_id):
        def timeout(*args, **kwargs):
            raise OperationalError(
                "SELECT", {}, Exception("canceling statement due to statement timeout")
            )

        monkeypatch.setattr(session, "execute", timeout)

        with pytest.raises(PersistenceTimeoutError) as exc_info:
            store.get_entity(org_id, "test_record", "REC-1")

        assert exc_info.value.operation == "get_entity"
        assert exc_info.value.code == "PERSISTENCE_TIMEOUT"

    def test_store_unavailable(self, store, session, monkeypatch, org_id, captured_logs):
        def down(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(session, "execute", down)

        with pytest.raises(PersistenceError) as exc_info:
            store.find_entities(org_id, "test_record")

        assert type(exc_info.value) is PersistenceError
        assert "server closed the connection" in exc_info.value.reason
        record = next(r for r in captured_logs() if r["message"] == "store_unavailable")
        assert record["operation"] == "find_entities"
