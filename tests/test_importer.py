"""Tests for the import orchestrator."""

import pytest

from conftest import make_message
from gmail_newsletter_importer.entitlements import PlanEntitlements
from gmail_newsletter_importer.importer import Importer
from gmail_newsletter_importer.library import SQLiteLibrary
from gmail_newsletter_importer.models import ImportProgress, ImportStatus, ImportUsage

SENDER = "news@example.com"


def _add_issues(gmail, count, sender=SENDER, start=0):
    for i in range(start, start + count):
        gmail.add_message(
            make_message(
                f"{sender}-{i}",
                from_=f"Example News <{sender}>",
                subject=f"Issue {i}",
                html=f"<p>Issue {i} of {sender}</p>",
                internal_date=1_700_000_000_000 + i,
            ),
            f"from:{sender}",
        )


@pytest.fixture
def importer(store, client, library):
    return Importer(store, client, library)


def test_import_single_message(importer, store, library, gmail, connection, approve):
    gmail.add_message(
        make_message(
            "m1",
            from_="Example News <news@example.com>",
            subject="Weekly Update",
            message_id="<weekly-1@example.com>",
        ),
        "from:news@example.com",
    )
    approve(connection.id, SENDER)

    result = importer.start_import(connection.id, plan="free")

    assert result.success
    assert (result.imported_count, result.skipped_count, result.failed_count) == (1, 0, 0)
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert progress.imported_emails == 1
    assert progress.failed_emails == 0
    assert progress.total_emails == 1

    messages = library.find_user_messages("user-1", library.find_sender_id(SENDER))
    assert len(messages) == 1
    assert messages[0].is_read
    assert messages[0].message_id == "weekly-1@example.com"

    usage = store.get_import_usage("user-1")
    assert (usage.imported_senders, usage.imported_emails) == (1, 1)


def test_reimport_skips_phase1_duplicate(importer, store, gmail, connection, approve):
    gmail.add_message(
        make_message("m1", from_="Example News <news@example.com>", subject="Weekly Update"),
        "from:news@example.com",
    )
    approve(connection.id, SENDER)
    assert importer.start_import(connection.id).success

    result = importer.start_import(connection.id)

    assert result.success
    assert (result.imported_count, result.skipped_count) == (0, 1)
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert progress.skipped_emails == 1
    assert progress.imported_emails == 0
    assert store.get_import_usage("user-1").imported_emails == 1


def test_email_cap_refuses_without_progress(importer, store, gmail, connection, approve):
    _add_issues(gmail, 1)
    approve(connection.id, SENDER)
    store.save_import_usage(
        ImportUsage("user-1", imported_senders=1, imported_emails=50, imported_sender_emails={SENDER})
    )

    result = importer.start_import(connection.id, plan="free")

    assert not result.success
    assert result.error_code == "FREE_PREVIEW_EMAIL_LIMIT"
    assert store.get_import_progress(connection.id) is None
    assert gmail.list_calls == []


def test_sender_cap_refuses_when_every_sender_is_new(importer, store, connection, approve):
    for name in ("a", "b", "c", "d"):
        approve(connection.id, f"{name}@example.com")

    result = importer.start_import(connection.id, plan="free")

    assert not result.success
    assert result.error_code == "FREE_PREVIEW_SENDER_LIMIT"
    assert store.get_import_progress(connection.id) is None


def test_pro_plan_is_uncapped(importer, store, gmail, connection, approve):
    for name in ("a", "b", "c", "d"):
        sender = f"{name}@example.com"
        _add_issues(gmail, 1, sender=sender)
        approve(connection.id, sender)

    result = importer.start_import(connection.id, plan="pro")

    assert result.success
    assert result.imported_count == 4
    assert store.get_import_usage("user-1").imported_emails == 0


def test_new_sender_beyond_slots_is_skipped(importer, store, gmail, connection, approve):
    _add_issues(gmail, 1, sender="known@example.com")
    _add_issues(gmail, 1, sender="fresh@example.com")
    approve(connection.id, "known@example.com")
    approve(connection.id, "fresh@example.com")
    store.save_import_usage(
        ImportUsage(
            "user-1",
            imported_senders=3,
            imported_emails=3,
            imported_sender_emails={"known@example.com", "x@example.com", "y@example.com"},
        )
    )

    result = importer.start_import(connection.id, plan="free")

    assert result.success
    assert result.imported_count == 1
    assert [c["q"] for c in gmail.list_calls] == ["from:known@example.com"]


def test_email_quota_reached_mid_run_stops_cleanly(importer, store, gmail, connection, approve):
    _add_issues(gmail, 5)
    approve(connection.id, SENDER, email_count=5)
    store.save_import_usage(
        ImportUsage("user-1", imported_senders=1, imported_emails=48, imported_sender_emails={SENDER})
    )

    result = importer.start_import(connection.id, plan="free")

    assert result.success
    assert result.imported_count == 2
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert progress.total_emails == 2
    assert store.get_import_usage("user-1").imported_emails == 50


def test_quota_used_up_at_sender_boundary_skips_remaining_senders(importer, store, gmail, connection, approve):
    _add_issues(gmail, 3)
    _add_issues(gmail, 2, sender="later@example.com")
    approve(connection.id, SENDER, email_count=3)
    approve(connection.id, "later@example.com", email_count=2)
    store.save_import_usage(
        ImportUsage("user-1", imported_senders=1, imported_emails=47, imported_sender_emails={SENDER})
    )

    result = importer.start_import(connection.id, plan="free")

    assert result.success
    assert result.imported_count == 3
    assert [c["q"] for c in gmail.list_calls] == [f"from:{SENDER}"]
    assert not any(msg_id.startswith("later@") for msg_id, _ in gmail.get_calls)
    assert store.get_import_progress(connection.id).status == ImportStatus.COMPLETE


def test_estimate_is_sum_of_sender_counts(importer, store, gmail, connection, approve):
    _add_issues(gmail, 2, sender="a@example.com")
    _add_issues(gmail, 1, sender="b@example.com")
    approve(connection.id, "a@example.com", email_count=2)
    approve(connection.id, "b@example.com", email_count=1)

    importer.start_import(connection.id, plan="pro")

    assert store.get_import_progress(connection.id).total_emails == 3


def test_per_message_failure_is_isolated(importer, store, library, gmail, connection, approve, monkeypatch):
    _add_issues(gmail, 3)
    approve(connection.id, SENDER)
    real_store = library.store

    def flaky_store(**kwargs):
        if kwargs["subject"] == "Issue 1":
            raise RuntimeError("disk full")
        return real_store(**kwargs)

    monkeypatch.setattr(library, "store", flaky_store)

    result = importer.start_import(connection.id, plan="pro")

    assert result.success
    assert (result.imported_count, result.failed_count) == (2, 1)
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert progress.failed_emails == 1


def test_message_deleted_before_fetch_counts_as_failed(importer, store, library, gmail, connection, approve):
    _add_issues(gmail, 3)
    gmail.listings[f"from:{SENDER}"].append("gone")
    approve(connection.id, SENDER, email_count=4)

    result = importer.start_import(connection.id, plan="pro")

    assert result.success
    assert (result.imported_count, result.failed_count) == (3, 1)
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.COMPLETE
    assert (progress.imported_emails, progress.failed_emails) == (3, 1)
    assert library.count_user_messages("user-1") == 3


def test_every_message_failing_marks_error(importer, store, library, gmail, connection, approve, monkeypatch):
    _add_issues(gmail, 2)
    approve(connection.id, SENDER)

    def broken_store(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(library, "store", broken_store)

    result = importer.start_import(connection.id, plan="pro")

    assert not result.success
    assert result.failed_count == 2
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.ERROR
    assert progress.error.startswith("Import failed completely")
    assert progress.failed_emails == 2


def test_storage_plan_limit_stops_run(store, client, gmail, connection, approve, tmp_path):
    _add_issues(gmail, 3)
    approve(connection.id, SENDER)

    with SQLiteLibrary(tmp_path / "capped.db", hard_cap=1) as capped:
        result = Importer(store, client, capped).start_import(connection.id, plan="pro")
        assert capped.count_user_messages("user-1") == 1

    assert result.success
    assert result.imported_count == 1
    assert store.get_import_progress(connection.id).status == ImportStatus.COMPLETE


def test_fetch_error_marks_progress_error(importer, store, gmail, connection, approve):
    approve(connection.id, SENDER)
    gmail.fail("list", 403)

    result = importer.start_import(connection.id)

    assert not result.success
    assert result.error_code == "FORBIDDEN"
    progress = store.get_import_progress(connection.id)
    assert progress.status == ImportStatus.ERROR
    assert progress.error


def test_progress_callback_after_every_batch(importer, store, gmail, connection, approve):
    _add_issues(gmail, 15)
    approve(connection.id, SENDER, email_count=15)
    seen = []

    importer.start_import(connection.id, plan="pro", progress_callback=seen.append)

    assert [p.imported_emails for p in seen] == [10, 15]


def test_rejected_while_running(importer, store, connection, approve):
    approve(connection.id, SENDER)
    running = ImportProgress(connection_id=connection.id, total_emails=9, imported_emails=3)
    store.create_import_progress(running)

    result = importer.start_import(connection.id)

    assert result.error_code == "ALREADY_RUNNING"
    assert store.get_import_progress(connection.id) == running


def test_rejected_without_approved_senders(importer, store, connection):
    result = importer.start_import(connection.id)
    assert result.error_code == "NO_APPROVED_SENDERS"
    assert store.get_import_progress(connection.id) is None


def test_rejected_for_inactive_connection(importer, store, connection, approve):
    approve(connection.id, SENDER)
    store.deactivate_connection(connection.id)

    result = importer.start_import(connection.id)

    assert result.error_code == "NOT_CONNECTED"


def test_custom_entitlements(store, client, library, gmail, connection, approve):
    _add_issues(gmail, 3)
    approve(connection.id, SENDER)
    importer = Importer(store, client, library, entitlements=PlanEntitlements(sender_cap=1, email_cap=2))

    result = importer.start_import(connection.id, plan="free")

    assert result.imported_count == 2


def test_shared_content_across_users(store, client, library, gmail, approve):
    """Two users importing the same issue end up sharing one content record."""
    first = store.add_connection("user-1", "one@example.com")
    second = store.add_connection("user-2", "two@example.com")
    gmail.add_message(
        make_message("m1", from_="news@example.com", subject="Same", html="<p>Hi Ann,</p><p>Body</p>"),
        "from:news@example.com",
    )
    approve(first.id, SENDER)
    approve(second.id, SENDER)

    importer = Importer(store, client, library)
    assert importer.start_import(first.id).imported_count == 1

    gmail.messages["m1"] = make_message(
        "m1", from_="news@example.com", subject="Same", html="<p>Hi Bob,</p><p>Body</p>"
    )
    assert importer.start_import(second.id).imported_count == 1

    assert library.count_shared_content() == 1
    assert library.count_user_messages("user-1") == 1
    assert library.count_user_messages("user-2") == 1
