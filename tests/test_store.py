"""Tests for the SQLite progress store."""

import pytest

from gmail_newsletter_importer.models import (
    ImportProgress,
    ImportStatus,
    ScanProgress,
    ScanStatus,
    SelectionState,
    SenderAggregate,
)


def _aggregate(email="digest@substack.com", **kwargs):
    defaults = dict(domain="substack.com", name=None, email_count=3, confidence_score=50, sample_subjects=["a"])
    defaults.update(kwargs)
    return SenderAggregate(email=email, **defaults)


def test_add_connection_is_idempotent(store):
    first = store.add_connection("u1", "Reader@Example.com")
    store.deactivate_connection(first.id)
    again = store.add_connection("u1", "reader@example.com", token_expires_at=123)

    assert again.id == first.id
    assert again.is_active
    assert again.token_expires_at == 123
    assert [c.id for c in store.list_connections("u1")] == [first.id]


def test_list_connections_filters_by_user(store):
    store.add_connection("u1", "a@example.com")
    store.add_connection("u2", "b@example.com")
    assert len(store.list_connections()) == 2
    assert [c.email for c in store.list_connections("u2")] == ["b@example.com"]


def test_scan_progress_lifecycle(store, connection):
    store.create_scan_progress(ScanProgress(connection_id=connection.id, total_emails=200))
    store.update_scan_progress(connection.id, 50, 3)
    store.update_scan_progress(connection.id, 40, 2)

    progress = store.get_scan_progress(connection.id)
    assert progress.status == ScanStatus.SCANNING
    assert progress.processed_emails == 50
    assert progress.senders_found == 3

    store.complete_scan(connection.id, senders_found=4)
    done = store.get_scan_progress(connection.id)
    assert done.status == ScanStatus.COMPLETE
    assert done.senders_found == 4
    assert done.completed_at is not None


def test_scan_error_keeps_partial_progress(store, connection):
    store.create_scan_progress(ScanProgress(connection_id=connection.id, total_emails=100))
    store.update_scan_progress(connection.id, 50, 2)
    store.complete_scan(connection.id, error="boom")

    progress = store.get_scan_progress(connection.id)
    assert progress.status == ScanStatus.ERROR
    assert progress.error == "boom"
    assert progress.processed_emails == 50


def test_import_counts_accumulate(store, connection):
    store.create_import_progress(ImportProgress(connection_id=connection.id, total_emails=10))
    store.add_import_counts(connection.id, imported=3, skipped=1)
    store.add_import_counts(connection.id, imported=2, failed=1)
    store.complete_import(connection.id)

    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert (progress.imported_emails, progress.skipped_emails, progress.failed_emails) == (5, 1, 1)


def test_import_counts_without_progress_raise(store):
    with pytest.raises(LookupError):
        store.add_import_counts(999, imported=1)


def test_upsert_merges_and_preserves_flags(store, connection):
    store.upsert_detected_sender(connection.id, _aggregate(confidence_score=80, email_count=3))
    store.set_selection(connection.id, ["digest@substack.com"], SelectionState.DESELECTED)
    store.approve_senders(connection.id, ["digest@substack.com"])

    merged = store.upsert_detected_sender(
        connection.id,
        _aggregate(name="Digest", confidence_score=50, email_count=7, sample_subjects=["b", "c"]),
    )

    assert merged.confidence_score == 80
    assert merged.email_count == 7
    assert merged.sample_subjects == ["b", "c"]
    assert merged.name == "Digest"
    assert merged.selection == SelectionState.DESELECTED
    assert merged.is_approved
    assert len(store.get_detected_senders(connection.id)) == 1


def test_approve_all_selected(store, connection):
    store.upsert_detected_sender(connection.id, _aggregate("a@substack.com"))
    store.upsert_detected_sender(connection.id, _aggregate("b@substack.com"))
    store.upsert_detected_sender(connection.id, _aggregate("c@substack.com"))
    store.set_selection(connection.id, ["B@substack.com"], SelectionState.DESELECTED)

    assert store.approve_senders(connection.id) == 2
    assert [s.email for s in store.get_approved_senders(connection.id)] == ["a@substack.com", "c@substack.com"]


def test_record_imported_email(store):
    store.record_imported_email("u1", "a@x.example")
    store.record_imported_email("u1", "a@x.example")
    usage = store.record_imported_email("u1", "b@x.example")

    assert usage.imported_emails == 3
    assert usage.imported_senders == 2
    assert store.get_import_usage("u1").imported_sender_emails == {"a@x.example", "b@x.example"}
    assert store.get_import_usage("nobody").imported_emails == 0


def test_get_info(store, connection):
    info = store.get_info()
    assert info["connections"] == 1
    assert info["detected_senders"] == 0
