# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the dashboard realtime sync layer.
"""

import threading

import pytest
from unittest.mock import MagicMock

from domain.applications import InvalidStatusError
from services.realtime import (
    ApplicationChangeEvent,
    DashboardLoader,
    DashboardPage,
    RealtimeSyncLayer,
    describe_event,
)
from fakes import FakeRecordStore


def _page(*ids):
    items = [{"id": i, "type": "business", "status": "submitted"} for i in ids]
    return DashboardPage(items=items, total=len(items), stats={"total": len(items)})


@pytest.fixture
def loader():
    return MagicMock(return_value=_page("a1", "a2"))


@pytest.fixture
def layer(loader):
    sync = RealtimeSyncLayer(loader, event_source=None, poll_interval=0)
    yield sync
    sync.stop()


class TestChangeEvents:
    """Test mapping of change stream documents."""

    def test_insert(self):
        event = ApplicationChangeEvent.from_change({
            "operationType": "insert",
            "fullDocument": {"_id": "a1", "type": "building", "status": "submitted"},
        })

        assert event.kind == "insert"
        assert event.new["id"] == "a1"
        assert event.old is None

    def test_replace_is_an_update(self):
        event = ApplicationChangeEvent.from_change({
            "operationType": "replace",
            "fullDocument": {"_id": "a1", "status": "approved"},
            "fullDocumentBeforeChange": {"_id": "a1", "status": "submitted"},
        })

        assert event.kind == "update"
        assert event.old["status"] == "submitted"

    def test_delete_falls_back_to_document_key(self):
        event = ApplicationChangeEvent.from_change({
            "operationType": "delete",
            "documentKey": {"_id": "a1"},
        })

        assert event.kind == "delete"
        assert event.old == {"id": "a1"}

    def test_untracked_operation(self):
        assert ApplicationChangeEvent.from_change({"operationType": "invalidate"}) is None


class TestNotices:
    """Test notice text per event kind."""

    def test_insert_names_the_type(self):
        notice = describe_event(ApplicationChangeEvent("insert", new={"id": "a1", "type": "barangay"}))

        assert notice.message == "New barangay application submitted"
        assert notice.application_id == "a1"

    def test_status_change_names_reference_and_status(self):
        notice = describe_event(ApplicationChangeEvent(
            "update",
            new={"id": "a1", "reference_no": "BP-20240115-ABC123", "status": "ready_for_pickup"},
            old={"id": "a1", "status": "approved"},
        ))

        assert notice.message == "Application BP-20240115-ABC123 status changed to ready for pickup"

    def test_update_without_status_change_is_silent(self):
        event = ApplicationChangeEvent(
            "update",
            new={"id": "a1", "status": "approved", "fee_amount": 100},
            old={"id": "a1", "status": "approved", "fee_amount": 0},
        )

        assert describe_event(event) is None

    def test_update_without_pre_image_uses_changed_fields(self):
        fee_only = ApplicationChangeEvent.from_change({
            "operationType": "update",
            "fullDocument": {"_id": "a1", "reference_no": "BP-1", "status": "approved", "fee_amount": 500},
            "updateDescription": {"updatedFields": {"fee_amount": 500}, "removedFields": []},
        })
        status_move = ApplicationChangeEvent.from_change({
            "operationType": "update",
            "fullDocument": {"_id": "a1", "reference_no": "BP-1", "status": "approved"},
            "updateDescription": {"updatedFields": {"status": "approved", "updated_at": "now"}},
        })

        assert fee_only.changed_fields == ["fee_amount"]
        assert describe_event(fee_only) is None
        assert describe_event(status_move).message == "Application BP-1 status changed to approved"

    def test_replace_without_pre_image_is_reported(self):
        event = ApplicationChangeEvent("update", new={"id": "a1", "status": "approved"})

        assert describe_event(event) is not None

    def test_delete_is_generic(self):
        notice = describe_event(ApplicationChangeEvent("delete", old={"id": "a1"}))

        assert notice.message == "An application was removed"


class TestRealtimeSyncLayer:
    """Test reloads, view changes and event handling."""

    def test_reload_replaces_view(self, layer, loader):
        view = layer.reload()

        loader.assert_called_once_with(1, 10, None, None)
        assert [item["id"] for item in view.items] == ["a1", "a2"]
        assert view.last_reloaded_at is not None

    def test_loader_failure_keeps_previous_view(self, layer, loader):
        layer.reload()
        loader.side_effect = RuntimeError("database down")

        view = layer.reload()

        assert [item["id"] for item in view.items] == ["a1", "a2"]

    def test_filter_change_returns_to_first_page(self, layer, loader):
        layer.set_view(page=3)
        view = layer.set_view(status="approved")

        assert view.page == 1
        assert view.status_filter == "approved"
        loader.assert_called_with(1, 10, "approved", None)

    def test_all_clears_the_filter(self, layer):
        layer.set_view(status="approved")

        assert layer.set_view(status="all").status_filter is None

    def test_invalid_filter_rejected(self, layer):
        with pytest.raises(InvalidStatusError):
            layer.set_view(status="archived")

    def test_insert_event_counts_and_reloads(self, layer, loader):
        layer.handle_event(ApplicationChangeEvent("insert", new={"id": "a3", "type": "business"}))

        assert layer.new_items_count == 1
        assert loader.call_count == 1
        assert layer.snapshot()["notices"][0]["message"] == "New business application submitted"

        layer.reset_new_items()
        assert layer.new_items_count == 0

    def test_every_event_reloads(self, layer, loader):
        layer.handle_event(ApplicationChangeEvent(
            "update", new={"id": "a1", "status": "approved"}, old={"id": "a1", "status": "approved"}
        ))

        assert loader.call_count == 1
        assert layer.snapshot()["notices"] == []

    def test_notify_failure_is_swallowed(self, loader):
        notify = MagicMock(side_effect=RuntimeError("socket closed"))
        layer = RealtimeSyncLayer(loader, notify=notify, poll_interval=0)

        layer.handle_event(ApplicationChangeEvent("delete", old={"id": "a1"}))

        notify.assert_called_once()
        assert len(layer.snapshot()["notices"]) == 1

    def test_reload_drops_selection_off_page(self, layer, loader):
        layer.selection.toggle("a1")
        layer.selection.toggle("gone")

        layer.reload()

        assert layer.selection.ids == ["a1"]

    def test_stop_is_idempotent(self, layer):
        layer.start()
        layer.stop()
        layer.stop()

        assert layer.connected is False

    def test_restart_after_stop(self, loader):
        layer = RealtimeSyncLayer(loader, event_source=None, poll_interval=0.01)

        layer.start()
        layer.stop()
        layer.start()

        try:
            assert layer._stop.is_set() is False
            assert [thread.name for thread in layer._threads] == ["realtime-poller"]
            assert all(thread.is_alive() for thread in layer._threads)
            # One load per start
            assert loader.call_count >= 2
        finally:
            layer.stop()

    def test_new_items_counter_is_shared_across_threads(self, layer):
        inserts = [ApplicationChangeEvent("insert", new={"id": f"n{i}", "type": "business"}) for i in range(20)]
        workers = [threading.Thread(target=layer.handle_event, args=(event,)) for event in inserts]

        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=5)

        assert layer.new_items_count == 20
        assert layer.snapshot()["new_items_count"] == 20

        layer.reset_new_items()
        assert layer.new_items_count == 0

    def test_consumes_finite_event_source(self, loader):
        changes = [
            {"operationType": "insert", "fullDocument": {"_id": "a3", "type": "business"}},
            {"operationType": "insert", "fullDocument": {"_id": "a4", "type": "building"}},
        ]
        layer = RealtimeSyncLayer(loader, event_source=lambda: iter(changes), poll_interval=0)

        layer.start()
        for thread in list(layer._threads):
            thread.join(timeout=5)

        assert layer.new_items_count == 2
        # Initial load plus one reload per event
        assert loader.call_count == 3
        assert layer.connected is False
        layer.stop()

    def test_failing_event_source_leaves_polling_view(self, loader):
        source = MagicMock(side_effect=ConnectionError("not a replica set"))
        layer = RealtimeSyncLayer(loader, event_source=source, poll_interval=0)

        layer.start()
        for thread in list(layer._threads):
            thread.join(timeout=5)

        assert layer.connected is False
        assert layer.view.total == 2
        layer.stop()

    def test_snapshot_shape(self, layer):
        layer.reload()
        snapshot = layer.snapshot()

        assert snapshot["status_filter"] == "all"
        assert snapshot["page"] == 1
        assert snapshot["total"] == 2
        assert snapshot["connected"] is False
        assert snapshot["last_reloaded_at"].endswith("Z")


class TestDashboardLoader:
    """Test loading pages from the record store."""

    def test_loads_page_and_stats(self):
        store = FakeRecordStore()
        store.add_application(status="submitted")
        store.add_application(status="approved")
        store.add_application(status="approved")

        page = DashboardLoader(store)(1, 2, "approved", None)

        assert page.total == 2
        assert len(page.items) == 2
        assert page.stats["approved"] == 2
        assert page.stats["submitted"] == 1
        assert page.stats["total"] == 3
