"""Tests for the 7-day renewal reminder job."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from clientkey.tests.conftest import iso, make_subscription

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _emails(mapping):
    return patch("clientkey.supabase_client.get_user_email", side_effect=mapping.get)


class TestReminderWindow:

    def test_window_is_day_eight(self):
        from clientkey.services.expiry_reminders import reminder_window

        start, end = reminder_window(NOW)
        assert start == NOW + timedelta(days=7)
        assert end == NOW + timedelta(days=8)


class TestSendExpiryReminders:

    def test_inside_window_gets_one_email(self, fake_db, outbox):
        from clientkey.services.expiry_reminders import send_expiry_reminders

        fake_db.store["subscriptions"].extend([
            make_subscription(user_id="in", current_period_end=iso(NOW + timedelta(days=7, hours=2))),
            make_subscription(user_id="out", current_period_end=iso(NOW + timedelta(days=8, hours=2))),
        ])

        with _emails({"in": "in@example.com", "out": "out@example.com"}):
            counts = send_expiry_reminders(now=NOW)

        assert counts == {"found": 1, "sent": 1, "skipped": 0, "errors": 0}
        assert [m["to"] for m in outbox] == [["in@example.com"]]
        assert "Early Bird" in outbox[0]["html"]
        assert "$19.00" in outbox[0]["html"]
        assert "March 08, 2026" in outbox[0]["html"]

    def test_window_end_is_exclusive(self, fake_db, outbox):
        from clientkey.services.expiry_reminders import send_expiry_reminders

        fake_db.store["subscriptions"].append(
            make_subscription(user_id="edge", current_period_end=iso(NOW + timedelta(days=8))))
        with _emails({"edge": "edge@example.com"}):
            counts = send_expiry_reminders(now=NOW)
        assert counts["found"] == 0

    def test_skips_non_active(self, fake_db, outbox):
        from clientkey.services.expiry_reminders import send_expiry_reminders

        fake_db.store["subscriptions"].append(make_subscription(
            user_id="late", status="past_due",
            current_period_end=iso(NOW + timedelta(days=7, hours=3))))
        with _emails({"late": "late@example.com"}):
            counts = send_expiry_reminders(now=NOW)
        assert counts["found"] == 0
        assert outbox == []

    def test_missing_email_skipped(self, fake_db, outbox):
        from clientkey.services.expiry_reminders import send_expiry_reminders

        fake_db.store["subscriptions"].append(make_subscription(
            user_id="ghost", current_period_end=iso(NOW + timedelta(days=7, hours=1))))
        with _emails({}):
            counts = send_expiry_reminders(now=NOW)
        assert counts["skipped"] == 1
        assert outbox == []

    def test_one_failure_does_not_abort_batch(self, fake_db, outbox):
        from clientkey.services.expiry_reminders import send_expiry_reminders

        fake_db.store["subscriptions"].extend([
            make_subscription(user_id="bad", current_period_end=iso(NOW + timedelta(days=7, hours=1))),
            make_subscription(user_id="good", current_period_end=iso(NOW + timedelta(days=7, hours=5))),
        ])

        def lookup(user_id):
            if user_id == "bad":
                raise RuntimeError("auth API down")
            return "good@example.com"

        with patch("clientkey.supabase_client.get_user_email", side_effect=lookup):
            counts = send_expiry_reminders(now=NOW)

        assert counts == {"found": 2, "sent": 1, "skipped": 0, "errors": 1}
        assert [m["to"] for m in outbox] == [["good@example.com"]]
