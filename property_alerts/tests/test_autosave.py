from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from property_alerts.core.autosave import AutoSaveRecorder
from property_alerts.core.bookkeeping import CursorUpdater, EventLogger
from property_alerts.core.models import Alert, DispatchReceipt, PropertyRecord, RunMode
from property_alerts.core.normalize import saved_property_to_record, saved_property_type
from property_alerts.tests.fakes import FakeRepo, alert_row, property_row


def test_saved_property_type_precedence():
    assert saved_property_type(PropertyRecord.from_row(property_row(is_rental=True, sold_date="2026-01-01"))) == "rental"
    assert saved_property_type(PropertyRecord.from_row(property_row(sold_date="2026-01-01"))) == "sold"
    assert saved_property_type(PropertyRecord.from_row(property_row())) == "listing"


def test_saved_row_snapshots_property_and_notes_alert():
    alert = Alert.from_row(alert_row(location_name="Cork"))
    row = saved_property_to_record(alert, PropertyRecord.from_row(property_row()))
    assert row["user_id"] == "user-1"
    assert row["property_id"] == "prop-1"
    assert row["notes"] == "Auto-saved from alert: Cork"
    assert row["property_data"]["address"] == "12 Thomas Street, Dublin 8"
    assert row["property_data"]["asking_price"] == 350000


def test_second_save_is_a_silent_noop():
    repo = FakeRepo()
    recorder = AutoSaveRecorder(repo)
    alert = Alert.from_row(alert_row())
    records = [PropertyRecord.from_row(property_row())]

    assert recorder.record(alert, records) == 1
    assert recorder.record(alert, records) == 0
    assert len(repo.saved) == 1


def test_unexpected_save_error_does_not_stop_remaining_properties():
    repo = FakeRepo()
    repo.failing_saves = {"p2"}
    records = [PropertyRecord.from_row(property_row(id=pid)) for pid in ("p1", "p2", "p3")]

    assert AutoSaveRecorder(repo).record(Alert.from_row(alert_row()), records) == 2
    assert {key[1] for key in repo.saved} == {"p1", "p3"}


def test_concurrent_saves_of_same_property_create_one_row():
    repo = FakeRepo()
    recorder = AutoSaveRecorder(repo)
    alert = Alert.from_row(alert_row())
    records = [PropertyRecord.from_row(property_row())]

    with ThreadPoolExecutor(max_workers=8) as executor:
        counts = list(executor.map(lambda _: recorder.record(alert, records), range(16)))

    assert sum(counts) == 1
    assert len(repo.saved) == 1


def test_cursor_never_moves_backwards_and_skips_dry_run():
    repo = FakeRepo()
    alert = Alert.from_row(alert_row(last_checked="2026-03-01T00:00:00+00:00"))

    assert CursorUpdater(repo).advance(alert, datetime(2026, 2, 1, tzinfo=timezone.utc)) is False
    assert CursorUpdater(repo, mode=RunMode.DRY_RUN).advance(alert, datetime(2026, 4, 1, tzinfo=timezone.utc)) is False
    assert repo.cursor_updates == []

    assert CursorUpdater(repo).advance(alert, datetime(2026, 4, 1, tzinfo=timezone.utc)) is True
    assert repo.cursor_updates == [("alert-1", datetime(2026, 4, 1, tzinfo=timezone.utc))]


def test_event_logger_records_ids_and_swallows_store_errors():
    repo = FakeRepo()
    alert = Alert.from_row(alert_row())
    records = [PropertyRecord.from_row(property_row())]
    receipt = DispatchReceipt(recipient="a@example.com", subject="s", property_count=1, message_id="m-1")
    sent_at = datetime(2026, 1, 2, tzinfo=timezone.utc)

    assert EventLogger(repo).email_sent(alert, records, receipt, sent_at) is True
    event = repo.events[0]
    assert event["event_type"] == "email_sent"
    assert event["event_data"]["properties"] == [{"id": "prop-1", "address": "12 Thomas Street, Dublin 8"}]
    assert event["event_data"]["message_id"] == "m-1"

    repo.fail_events = True
    assert EventLogger(repo).email_sent(alert, records, receipt, sent_at) is False
    assert EventLogger(FakeRepo(), mode=RunMode.DRY_RUN).email_sent(alert, records, receipt, sent_at) is False
