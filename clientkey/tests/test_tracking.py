"""Tests for the tracking endpoints — open pixel, click redirect, completion."""

import uuid
from unittest.mock import patch

CLIENT_ID = str(uuid.uuid4())


def _events(fake_db, event_type=None):
    return [e for e in fake_db.store["email_tracking"]
            if event_type is None or e["event_type"] == event_type]


class TestOpenPixel:

    def test_returns_png_and_records_once(self, client, fake_db):
        from clientkey.services.tracking import TRACKING_PIXEL

        first = client.get(f"/track/open?client_id={CLIENT_ID}")
        second = client.get(f"/track/open?client_id={CLIENT_ID}")

        for resp in (first, second):
            assert resp.status_code == 200
            assert resp.headers["content-type"] == "image/png"
            assert resp.headers["cache-control"] == "no-cache, no-store, must-revalidate"
            assert resp.content == TRACKING_PIXEL
        assert len(_events(fake_db, "opened")) == 1

    def test_invalid_client_id_still_returns_pixel(self, client, fake_db):
        resp = client.get("/track/open?client_id=not-a-uuid")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert _events(fake_db) == []

    def test_missing_client_id_still_returns_pixel(self, client, fake_db):
        resp = client.get("/track/open")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"

    def test_storage_error_still_returns_pixel(self, client, fake_db):
        with patch("clientkey.supabase_client.has_tracking_event",
                   side_effect=RuntimeError("db down")):
            resp = client.get(f"/track/open?client_id={CLIENT_ID}")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"

    def test_lost_insert_race_is_not_an_error(self, fake_db):
        """Existence check passes for both requests; the unique index rejects the second."""
        from clientkey.services.tracking import record_open

        with patch("clientkey.supabase_client.has_tracking_event", return_value=False):
            assert record_open(CLIENT_ID) is True
            assert record_open(CLIENT_ID) is False
        assert len(_events(fake_db, "opened")) == 1


class TestClickRedirect:

    def test_redirects_and_records_every_click(self, client, fake_db):
        url = "https://app.clientkey.test/assessment/abc"
        for _ in range(2):
            resp = client.get("/track/click", params={"client_id": CLIENT_ID, "url": url},
                              follow_redirects=False)
            assert resp.status_code == 302
            assert resp.headers["location"] == url
        assert len(_events(fake_db, "clicked")) == 2

    def test_missing_params(self, client, fake_db):
        resp = client.get("/track/click", params={"client_id": CLIENT_ID},
                          follow_redirects=False)
        assert resp.status_code == 400

    def test_rejects_non_http_destination(self, client, fake_db):
        resp = client.get("/track/click",
                          params={"client_id": CLIENT_ID, "url": "javascript:alert(1)"},
                          follow_redirects=False)
        assert resp.status_code == 400
        assert _events(fake_db) == []

    def test_invalid_client_id_redirects_without_recording(self, client, fake_db):
        resp = client.get("/track/click",
                          params={"client_id": "bogus", "url": "https://example.com"},
                          follow_redirects=False)
        assert resp.status_code == 302
        assert _events(fake_db) == []


class TestCompletion:

    def test_records_once(self, client, fake_db):
        first = client.post(f"/track/complete?client_id={CLIENT_ID}")
        second = client.post(f"/track/complete?client_id={CLIENT_ID}")
        assert first.json() == {"status": "recorded"}
        assert second.json() == {"status": "already_recorded"}
        assert len(_events(fake_db, "completed")) == 1

    def test_invalid_client_id(self, client, fake_db):
        assert client.post("/track/complete?client_id=nope").status_code == 400


class TestLinks:

    def test_click_url_round_trips_destination(self):
        from urllib.parse import parse_qs, urlparse

        from clientkey.services.tracking import assessment_url, click_url

        dest = assessment_url(CLIENT_ID)
        query = parse_qs(urlparse(click_url(CLIENT_ID, dest)).query)
        assert query == {"client_id": [CLIENT_ID], "url": [dest]}
        assert dest == f"https://app.clientkey.test/assessment/{CLIENT_ID}"
