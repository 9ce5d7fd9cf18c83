# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the MongoDB service and the record stores built on it.
"""

import pytest
from unittest.mock import MagicMock
from pymongo import DESCENDING, UpdateOne
from pymongo.errors import DuplicateKeyError

from models.entities import Application, UserRoleAssignment
from domain.applications import ApplicationFilters
from services.mongodb import MongoDBService, to_api_document
from services.records import ApplicationRecordStore, RoleStore, APPLICATIONS, PAYMENTS, USER_ROLES


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def mongodb(collection):
    service = MongoDBService("mongodb://test:27017/permit_portal_test", "permit_portal_test", client=MagicMock())
    service.get_collection = MagicMock(return_value=collection)
    return service


class TestMongoDBService:
    """Test cases for the generic driver wrapper."""

    def test_to_api_document(self):
        assert to_api_document({"_id": "abc", "status": "submitted"}) == {"id": "abc", "status": "submitted"}
        assert to_api_document(None) is None

    def test_create_uses_entity_id(self, mongodb, collection):
        collection.insert_one.return_value = MagicMock(inserted_id="app-1")

        result = mongodb.create("applications", {"id": "app-1", "status": "submitted"})

        assert result == "app-1"
        collection.insert_one.assert_called_once_with({"_id": "app-1", "status": "submitted"})

    def test_create_duplicate_raises_value_error(self, mongodb, collection):
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

        with pytest.raises(ValueError):
            mongodb.create("applications", {"_id": "app-1", "reference_no": "BP-1"})

    def test_find_by_id(self, mongodb, collection):
        collection.find_one.return_value = {"_id": "app-1", "status": "approved"}

        assert mongodb.find_by_id("applications", "app-1") == {"id": "app-1", "status": "approved"}
        collection.find_one.assert_called_once_with({"_id": "app-1"})

    def test_update_by_id_reports_missing(self, mongodb, collection):
        collection.update_one.return_value = MagicMock(matched_count=0)

        assert mongodb.update_by_id("applications", "ghost", {"status": "approved"}) is False

    def test_update_each_is_one_unordered_bulk_write(self, mongodb, collection):
        collection.bulk_write.return_value = MagicMock(matched_count=2)

        matched = mongodb.update_each("applications", {"a": {"status": "submitted"}, "b": {"status": "approved"}})

        assert matched == 2
        operations = collection.bulk_write.call_args[0][0]
        assert operations == [
            UpdateOne({"_id": "a"}, {"$set": {"status": "submitted"}}),
            UpdateOne({"_id": "b"}, {"$set": {"status": "approved"}}),
        ]
        assert collection.bulk_write.call_args[1] == {"ordered": False}

    def test_update_each_empty(self, mongodb, collection):
        assert mongodb.update_each("applications", {}) == 0
        collection.bulk_write.assert_not_called()

    def test_upsert_sets_id_on_insert(self, mongodb, collection):
        collection.find_one.return_value = {"_id": "x", "email": "jane@example.com"}

        document = mongodb.upsert("applicants", {"email": "jane@example.com"}, {"phone": "0917"},
                                  on_insert={"created_at": "now"})

        query, operation = collection.update_one.call_args[0]
        assert query == {"email": "jane@example.com"}
        assert operation["$set"] == {"phone": "0917"}
        assert "_id" in operation["$setOnInsert"]
        assert operation["$setOnInsert"]["created_at"] == "now"
        assert collection.update_one.call_args[1] == {"upsert": True}
        assert document["id"] == "x"

    def test_paginate(self, mongodb, collection):
        collection.count_documents.return_value = 25
        cursor = collection.find.return_value.sort.return_value.skip.return_value.limit.return_value
        cursor.__iter__.return_value = iter([{"_id": "a"}, {"_id": "b"}])

        result = mongodb.paginate("applications", {"status": "approved"}, page=2, page_size=10)

        assert [item["id"] for item in result.items] == ["a", "b"]
        assert result.total == 25
        assert result.total_pages == 3
        assert result.has_next and result.has_prev
        collection.find.return_value.sort.return_value.skip.assert_called_once_with(10)

    def test_watch_requests_pre_and_post_images(self, mongodb, collection):
        mongodb.watch("applications")

        collection.watch.assert_called_once_with(
            [], full_document="updateLookup", full_document_before_change="whenAvailable"
        )

    def test_health_check(self, mongodb):
        mongodb._client.admin.command.return_value = {"ok": 1}
        mongodb._client.server_info.return_value = {"version": "7.0.2"}

        health = mongodb.health_check()

        assert health["status"] == "healthy"
        assert health["version"] == "7.0.2"

    def test_health_check_failure(self, mongodb):
        mongodb._client.admin.command.side_effect = Exception("no primary")

        health = mongodb.health_check()

        assert health["status"] == "unhealthy"
        assert health["error"] == "no primary"


class TestApplicationRecordStore:
    """Test cases for query shapes of the application store."""

    @pytest.fixture
    def service(self):
        return MagicMock()

    @pytest.fixture
    def store(self, service):
        return ApplicationRecordStore(service)

    def test_insert_uses_entity_id(self, store, service):
        application = Application(applicant_id="applicant-1", type="business", reference_no="BP-20240115-ABC123")

        store.insert_application(application)

        collection, document = service.create.call_args[0]
        assert collection == APPLICATIONS
        assert document["_id"] == application.id
        assert document["status"] == "submitted"
        assert "id" not in document

    def test_list_recent_sorts_newest_first(self, store, service):
        store.list_recent(limit=50)

        service.find.assert_called_once_with(APPLICATIONS, {}, sort=[("created_at", DESCENDING)], limit=50)

    def test_set_status_many_is_one_write(self, store, service):
        service.update_many.return_value = 2

        assert store.set_status_many(["a", "b"], "approved") == 2

        collection, query, updates = service.update_many.call_args[0]
        assert collection == APPLICATIONS
        assert query == {"_id": {"$in": ["a", "b"]}}
        assert updates["status"] == "approved"

    def test_restore_writes_each_prior_status(self, store, service):
        store.restore_statuses({"a": "submitted", "b": "approved"})

        collection, updates = service.update_each.call_args[0]
        assert collection == APPLICATIONS
        assert updates["a"]["status"] == "submitted"
        assert updates["b"]["status"] == "approved"

    def test_paginate_builds_query(self, store, service):
        store.paginate_applications(ApplicationFilters(status="approved", search="BP-"), page=2, page_size=5)

        collection, query = service.paginate.call_args[0]
        assert query["status"] == "approved"
        assert len(query["$or"]) == 3
        assert service.paginate.call_args[1]["page"] == 2

    def test_count_by_status_skips_null_group(self, store, service):
        service.aggregate.return_value = [{"_id": "submitted", "count": 3}, {"_id": None, "count": 1}]

        assert store.count_by_status() == {"submitted": 3}

    def test_mark_payment_paid(self, store, service):
        service.find_one.return_value = {"id": "pay-1", "application_id": "a", "status": "pending"}

        payment = store.mark_payment_paid("inv-1")

        assert payment["status"] == "paid"
        collection, payment_id, updates = service.update_by_id.call_args[0]
        assert (collection, payment_id) == (PAYMENTS, "pay-1")
        assert updates["status"] == "paid"

    def test_mark_unknown_payment(self, store, service):
        service.find_one.return_value = None

        assert store.mark_payment_paid("inv-unknown") is None
        service.update_by_id.assert_not_called()


class TestRoleStore:
    """Test cases for role rows."""

    def test_lookup_normalizes_email(self):
        service = MagicMock()
        service.find_one.return_value = {"id": "r1", "email": "admin@dipolog.gov.ph", "role": "admin"}

        assert RoleStore(service).get_role_by_email(" Admin@Dipolog.gov.ph ") == "admin"
        service.find_one.assert_called_once_with(USER_ROLES, {"email": "admin@dipolog.gov.ph"})

    def test_missing_row(self):
        service = MagicMock()
        service.find_one.return_value = None

        assert RoleStore(service).get_role_by_email("nobody@example.com") is None

    def test_upsert_keyed_by_user_id(self):
        service = MagicMock()

        RoleStore(service).upsert_role(UserRoleAssignment(user_id="u1", email="Clerk@Example.com", role="admin"))

        collection, query, updates = service.upsert.call_args[0]
        assert query == {"user_id": "u1"}
        assert updates["email"] == "clerk@example.com"
        assert updates["role"] == "admin"


class TestDatabaseSetup:
    """Test cases for the database setup script."""

    def test_seed_super_admins(self):
        from scripts.create_indexes import seed_super_admins

        role_store = MagicMock()

        seed_super_admins(role_store, ["Mayor@Dipolog.gov.ph"])

        assignment = role_store.upsert_role.call_args[0][0]
        assert assignment.user_id == "mayor@dipolog.gov.ph"
        assert assignment.email == "mayor@dipolog.gov.ph"
        assert assignment.role == "super_admin"

    def test_setup_enables_pre_images(self, monkeypatch):
        import scripts.create_indexes as setup_script

        service = MagicMock()
        service.health_check.return_value = {"status": "healthy", "version": "7.0", "database": "permit_portal_test"}
        monkeypatch.setattr(setup_script, "get_mongodb_service", lambda: service)
        monkeypatch.setattr(setup_script, "close_mongodb_connection", MagicMock())

        setup_script.main([])

        service.create_indexes.assert_called_once_with()
        service.enable_change_pre_images.assert_called_once_with(APPLICATIONS)
        service.upsert.assert_not_called()
