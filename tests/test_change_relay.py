"""
Tests for the ChangeRelay: guards, create/update/delete paths and failure
handling, with a fake CRM client.
"""
from datetime import datetime
from unittest.mock import Mock

import pytest

from taskbridge.models import SyncLogEntry
from taskbridge.relay.events import ChangeEvent, EventTag, EventType
from taskbridge.relay.guards import changed_fields, is_echo_update
from taskbridge.relay.relay import ChangeRelay
from taskbridge.services.sync_log_service import SyncLogService


def task_record(**overrides):
    record = {
        "id": 1,
        "owner": "user-1",
        "title": "Call supplier",
        "description": "Ask about the delay",
        "status": "PENDING",
        "origin": "MANUAL",
        "priority": True,
        "deadline": "2024-06-03T11:00:00",
        "checklist": [{"title": "Find number", "done": True}, {"title": "Call", "done": False}],
        "attachments": [],
        "responsible_id": "7",
        "external_id": None,
        "recurring_task_id": None,
        "updated_at": "2024-06-03T09:00:00",
    }
    record.update(overrides)
    return record


@pytest.fixture
def write_back():
    return Mock()


@pytest.fixture
def relay(fake_crm, blob_store, write_back):
    return ChangeRelay(
        client_factory=lambda owner: fake_crm,
        blob_store=blob_store,
        write_back=write_back,
        timezone="UTC",
    )


def log_entries():
    return [(e.item_name, e.outcome) for e in SyncLogEntry.query.order_by(SyncLogEntry.id).all()]


# ==============================================================================
# CREATE
# ==============================================================================

class TestCreate:

    def test_create_mirrors_task_and_writes_back(self, app, relay, fake_crm, write_back):
        result = relay.handle(ChangeEvent(EventType.CREATE, task_record()))

        assert result.status == "success"
        assert fake_crm.methods() == ["create", "add_checklist_item", "add_checklist_item"]
        fields = fake_crm.calls[0][1]
        assert fields["TITLE"] == "Call supplier"
        assert fields["PRIORITY"] == "2"
        assert fields["DEADLINE"] == "2024-06-03T11:00:00+00:00"
        assert fields["RESPONSIBLE_ID"] == 7
        assert "STATUS" not in fields
        assert fake_crm.calls[1][2:] == ("Find number", True)

        write_back.assert_called_once_with(1, external_id=result.external_id, attachments=[])
        assert log_entries() == [("Call supplier", "SUCCESS")]

    def test_normal_priority(self, app, relay, fake_crm):
        relay.handle(ChangeEvent(EventType.CREATE, task_record(priority=False)))
        assert fake_crm.calls[0][1]["PRIORITY"] == "1"

    def test_create_uploads_attachments_first(self, app, relay, fake_crm, blob_store, write_back):
        ref = blob_store.put(b"%PDF", filename="invoice.pdf")
        record = task_record(attachments=[{"name": "invoice.pdf", "url": ref, "remote_file_id": None}])

        result = relay.handle(ChangeEvent(EventType.CREATE, record))

        assert result.status == "success"
        assert fake_crm.methods()[:2] == ["upload_file", "create"]
        uploaded_name = fake_crm.calls[0][1]
        assert uploaded_name.endswith("_invoice.pdf")
        file_id = next(iter(fake_crm.files))
        assert fake_crm.calls[1][1]["UF_TASK_WEBDAV_FILES"] == [f"n{file_id}"]
        synced = write_back.call_args.kwargs["attachments"]
        assert synced[0]["remote_file_id"] == file_id

    def test_remote_failure_is_logged_not_raised(self, app, relay, fake_crm, write_back):
        fake_crm.fail_on["create"] = "Access denied"

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record()))

        assert result.status == "error"
        write_back.assert_not_called()
        entry = SyncLogEntry.query.one()
        assert entry.outcome == "ERROR"
        assert "Access denied" in entry.error_detail

    def test_checklist_failure_does_not_fail_create(self, app, relay, fake_crm):
        fake_crm.fail_on["add_checklist_item"] = "checklist closed"

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record()))

        assert result.status == "success"
        assert log_entries() == [("Call supplier", "SUCCESS")]

    def test_client_is_closed_after_each_event(self, app, relay, fake_crm):
        relay.handle(ChangeEvent(EventType.CREATE, task_record()))
        assert fake_crm.closed

        fake_crm.closed = False
        fake_crm.fail_on["create"] = "title required"
        result = relay.handle(ChangeEvent(EventType.CREATE, task_record(title="Other")))

        assert result.status == "error"
        assert fake_crm.closed

    def test_no_integration_is_a_no_op(self, app, blob_store, write_back):
        relay = ChangeRelay(client_factory=lambda owner: None, blob_store=blob_store, write_back=write_back)

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record()))

        assert result.status == "ignored"
        assert result.reason == "integration inactive"
        assert log_entries() == []

    def test_unexpected_error_never_escapes(self, app, blob_store, write_back):
        def broken_factory(owner):
            raise RuntimeError("config store offline")

        relay = ChangeRelay(client_factory=broken_factory, blob_store=blob_store, write_back=write_back)

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record()))

        assert result.status == "error"
        assert log_entries() == [("Call supplier", "ERROR")]


# ==============================================================================
# GUARDS
# ==============================================================================

class TestGuards:

    def test_tagged_echo_is_ignored(self, app, relay, fake_crm):
        old = task_record()
        new = task_record(external_id="555")

        result = relay.handle(ChangeEvent(EventType.UPDATE, new, old, tag=EventTag.SYSTEM_ECHO))

        assert result.reason == "echo"
        assert fake_crm.calls == []

    def test_untagged_echo_detected_by_diff(self, app, relay, fake_crm):
        old = task_record()
        new = task_record(external_id="555", updated_at="2024-06-03T09:00:01")

        result = relay.handle(ChangeEvent(EventType.UPDATE, new, old))

        assert result.reason == "echo"
        assert fake_crm.calls == []

    def test_external_id_plus_real_edit_is_not_echo(self):
        old = task_record()
        new = task_record(external_id="555", title="Call supplier again")
        assert is_echo_update(ChangeEvent(EventType.UPDATE, new, old)) is False

    def test_remote_file_ids_do_not_count_as_changes(self):
        old = task_record(attachments=[{"name": "a.txt", "url": "r1", "remote_file_id": None}])
        new = task_record(attachments=[{"name": "a.txt", "url": "r1", "remote_file_id": "77"}], external_id="9")
        assert changed_fields(new, old) == set()

    def test_duplicate_manual_submission_is_ignored(self, app, relay, fake_crm):
        now = datetime.utcnow()
        SyncLogService.success("user-1", "Call supplier", timestamp=now)

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record(id=2)))

        assert result.reason == "duplicate"
        assert fake_crm.calls == []

    def test_duplicate_window_expires(self, app, fake_crm, blob_store, write_back):
        logged_at = datetime(2024, 6, 3, 9, 0, 0)
        SyncLogService.success("user-1", "Call supplier", timestamp=logged_at)
        relay = ChangeRelay(
            client_factory=lambda owner: fake_crm,
            blob_store=blob_store,
            write_back=write_back,
            clock=lambda: datetime(2024, 6, 3, 9, 0, 6),
        )

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record(id=2)))

        assert result.status == "success"

    def test_recurring_tasks_skip_duplicate_guard(self, app, relay, fake_crm):
        SyncLogService.success("user-1", "Call supplier")

        result = relay.handle(ChangeEvent(EventType.CREATE, task_record(origin="RECURRING")))

        assert result.status == "success"
        assert "create" in fake_crm.methods()


# ==============================================================================
# UPDATE
# ==============================================================================

class TestUpdate:

    def test_update_sends_status_mapping(self, app, relay, fake_crm):
        old = task_record(external_id="555")
        new = task_record(external_id="555", status="COMPLETED")

        result = relay.handle(ChangeEvent(EventType.UPDATE, new, old))

        assert result.status == "success"
        assert fake_crm.methods() == ["update"]
        remote_id, fields = fake_crm.calls[0][1:]
        assert remote_id == "555"
        assert fields["STATUS"] == 5
        assert log_entries() == [("Call supplier (Update)", "SUCCESS")]

    def test_reopened_task_maps_to_pending(self, app, relay, fake_crm):
        old = task_record(external_id="555", status="COMPLETED")
        new = task_record(external_id="555", status="IN_PROGRESS")

        relay.handle(ChangeEvent(EventType.UPDATE, new, old))

        assert fake_crm.calls[0][2]["STATUS"] == 2

    def test_unchanged_attachments_are_not_uploaded(self, app, relay, fake_crm):
        attachments = [{"name": "a.txt", "url": "r1", "remote_file_id": "77"}]
        old = task_record(external_id="555", attachments=attachments)
        new = task_record(external_id="555", attachments=attachments, title="Renamed")

        relay.handle(ChangeEvent(EventType.UPDATE, new, old))

        assert fake_crm.methods() == ["update"]
        assert fake_crm.calls[0][2]["UF_TASK_WEBDAV_FILES"] == ["n77"]

    def test_new_attachment_is_uploaded_once(self, app, relay, fake_crm, blob_store, write_back):
        ref = blob_store.put(b"hello", filename="b.txt")
        kept = {"name": "a.txt", "url": "r1", "remote_file_id": "77"}
        old = task_record(external_id="555", attachments=[kept])
        new = task_record(external_id="555", attachments=[kept, {"name": "b.txt", "url": ref}])

        relay.handle(ChangeEvent(EventType.UPDATE, new, old))

        assert fake_crm.methods() == ["upload_file", "update"]
        synced = write_back.call_args.kwargs["attachments"]
        assert [a["remote_file_id"] for a in synced][0] == "77"
        assert synced[1]["remote_file_id"] is not None

    def test_update_of_unmirrored_task_is_ignored(self, app, relay, fake_crm):
        result = relay.handle(ChangeEvent(EventType.UPDATE, task_record(title="x"), task_record()))

        assert result.reason == "not mirrored"
        assert fake_crm.calls == []

    def test_update_failure_logged(self, app, relay, fake_crm):
        fake_crm.fail_on["update"] = "task locked"
        old = task_record(external_id="555")

        result = relay.handle(ChangeEvent(EventType.UPDATE, task_record(external_id="555", title="New"), old))

        assert result.status == "error"
        assert log_entries() == [("New (Update)", "ERROR")]


# ==============================================================================
# DELETE
# ==============================================================================

class TestDelete:

    def test_delete_cleans_up_files_then_remote_task(self, app, relay, fake_crm, blob_store):
        ref = blob_store.put(b"data", filename="a.txt")
        old = task_record(external_id="555", attachments=[{"name": "a.txt", "url": ref, "remote_file_id": "77"}])

        result = relay.handle(ChangeEvent(EventType.DELETE, old, old))

        assert result.status == "success"
        assert fake_crm.methods() == ["delete_file", "delete"]
        assert fake_crm.calls[1][1] == "555"
        with pytest.raises(LookupError):
            blob_store.get(ref)
        assert log_entries() == [("Call supplier (Delete)", "SUCCESS")]

    def test_remote_file_failure_does_not_block_delete(self, app, relay, fake_crm, blob_store):
        old = task_record(external_id="555", attachments=[
            {"name": "a.txt", "url": blob_store.put(b"1"), "remote_file_id": "77"},
            {"name": "b.txt", "url": blob_store.put(b"2"), "remote_file_id": "78"},
        ])
        fake_crm.fail_on["delete_file"] = lambda file_id: "gone" if file_id == "77" else None

        result = relay.handle(ChangeEvent(EventType.DELETE, old, old))

        assert result.status == "success"
        assert fake_crm.methods() == ["delete_file", "delete_file", "delete"]
        assert log_entries() == [
            ("Call supplier (Attachment cleanup)", "ERROR"),
            ("Call supplier (Delete)", "SUCCESS"),
        ]

    def test_unmirrored_delete_still_purges_local_blobs(self, app, relay, fake_crm, blob_store):
        ref = blob_store.put(b"data")
        old = task_record(attachments=[{"name": "a", "url": ref}])

        result = relay.handle(ChangeEvent(EventType.DELETE, old, old))

        assert result.reason == "not mirrored"
        assert fake_crm.calls == []
        with pytest.raises(LookupError):
            blob_store.get(ref)
