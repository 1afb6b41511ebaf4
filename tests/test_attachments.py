"""
Tests for AttachmentSynchronizer and the local blob store.
"""
import pytest

from taskbridge.relay.attachments import AttachmentSynchronizer, collision_resistant_name
from taskbridge.storage.blob_store import BlobNotFoundError


def test_collision_resistant_name_keeps_original_suffix():
    first = collision_resistant_name("report.pdf")
    second = collision_resistant_name("report.pdf")
    assert first.endswith("_report.pdf")
    assert first != second
    assert len(first.split("_", 1)[0]) == 8


def test_sync_is_idempotent(blob_store, fake_crm):
    ref = blob_store.put(b"abc", filename="a.txt")
    synchronizer = AttachmentSynchronizer(fake_crm, blob_store)

    first = synchronizer.sync([{"name": "a.txt", "url": ref}])
    second = synchronizer.sync(first.attachments)

    assert first.uploaded == 1
    assert second.uploaded == 0
    assert second.remote_file_ids == first.remote_file_ids
    assert fake_crm.methods() == ["upload_file"]


def test_sync_does_not_mutate_input(blob_store, fake_crm):
    attachments = [{"name": "a.txt", "url": blob_store.put(b"abc")}]
    AttachmentSynchronizer(fake_crm, blob_store).sync(attachments)
    assert "remote_file_id" not in attachments[0]


def test_one_failed_upload_does_not_stop_the_rest(blob_store, fake_crm):
    good = blob_store.put(b"ok", filename="good.txt")
    result = AttachmentSynchronizer(fake_crm, blob_store).sync([
        {"name": "missing.txt", "url": "0123abcd.txt"},
        {"name": "good.txt", "url": good},
    ])

    assert result.failed == 1
    assert result.uploaded == 1
    assert result.attachments[0].get("remote_file_id") is None
    assert result.attachments[1]["remote_file_id"]
    assert "missing.txt" in result.errors[0]


def test_upload_error_from_crm_is_isolated(blob_store, fake_crm):
    fake_crm.fail_on["upload_file"] = "quota exceeded"
    result = AttachmentSynchronizer(fake_crm, blob_store).sync([{"name": "a", "url": blob_store.put(b"x")}])

    assert result.failed == 1
    assert result.remote_file_ids == []


def test_purge_without_client_only_touches_local_blobs(blob_store):
    ref = blob_store.put(b"x")
    errors = AttachmentSynchronizer(None, blob_store).purge([{"name": "a", "url": ref, "remote_file_id": "9"}])

    assert errors == []
    with pytest.raises(BlobNotFoundError):
        blob_store.get(ref)


def test_blob_store_round_trip_and_missing_delete(blob_store):
    ref = blob_store.put(b"payload", filename="photo.JPG")

    assert ref.endswith(".jpg")
    assert blob_store.get(ref) == b"payload"
    assert blob_store.delete(ref) is True
    assert blob_store.delete(ref) is False


def test_blob_store_rejects_path_escape(blob_store):
    with pytest.raises(BlobNotFoundError):
        blob_store.get("../secrets")
