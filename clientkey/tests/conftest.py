"""Shared fixtures for ClientKey billing tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake
- client: TestClient wired to the FastAPI app
- outbox: captures Resend sends
- sample data factories for subscriptions, clients, tracking events
"""

import os
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import pytest
from postgrest.exceptions import APIError

# Set env vars before any clientkey imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_fake")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_EARLY_BIRD_PRICE_ID", "price_early")
os.environ.setdefault("STRIPE_REGULAR_PRICE_ID", "price_regular")
os.environ.setdefault("STRIPE_ADDON_PRICE_ID", "price_addon")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("PUBLIC_URL", "https://api.clientkey.test")
os.environ.setdefault("APP_URL", "https://app.clientkey.test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}
AUTH_HEADERS = {"Authorization": "Bearer user-token"}


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

# (table, columns, predicate): rows matching the predicate must be unique on columns
UNIQUE_CONSTRAINTS = [
    ("subscriptions", ("user_id",), None),
    ("early_bird_notifications", ("user_id", "subscription_id"), None),
    ("email_tracking", ("client_id", "event_type"),
     lambda row: row.get("event_type") in ("opened", "completed")),
]


def _duplicate_error(table):
    return APIError({
        "message": f'duplicate key value violates unique constraint on "{table}"',
        "code": "23505",
        "hint": None,
        "details": None,
    })


class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data if data is not None else []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain."""

    def __init__(self, store, table_name, max_rows=None):
        self._store = store
        self._table = table_name
        self._max_rows = max_rows
        self._filters = []
        self._orders = []
        self._limit_val = None
        self._range = None
        self._columns = "*"
        self._upsert_data = None
        self._upsert_conflict = None
        self._ignore_duplicates = False
        self._update_data = None
        self._insert_data = None

    def select(self, columns="*", count=None):
        self._columns = columns
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def upsert(self, data, on_conflict=None, ignore_duplicates=False):
        self._upsert_data = data
        self._upsert_conflict = on_conflict
        self._ignore_duplicates = ignore_duplicates
        return self

    def update(self, data):
        self._update_data = data
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def gte(self, col, val):
        self._filters.append(("gte", col, val))
        return self

    def lt(self, col, val):
        self._filters.append(("lt", col, val))
        return self

    def in_(self, col, values):
        self._filters.append(("in", col, list(values)))
        return self

    def is_(self, col, val):
        self._filters.append(("is", col, val))
        return self

    def order(self, col, desc=False):
        self._orders.append((col, desc))
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "gte" and (row_val is None or str(row_val) < str(val)):
                return False
            if op == "lt" and (row_val is None or str(row_val) >= str(val)):
                return False
            if op == "in" and row_val not in val:
                return False
            if op == "is" and val == "null" and row_val is not None:
                return False
        return True

    def _conflicts(self, row):
        table = self._store[self._table]
        for name, cols, predicate in UNIQUE_CONSTRAINTS:
            if name != self._table or (predicate and not predicate(row)):
                continue
            for existing in table:
                if predicate and not predicate(existing):
                    continue
                if all(existing.get(c) == row.get(c) for c in cols):
                    return existing
        return None

    def _new_row(self, data):
        row = dict(data)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return row

    def execute(self):
        table = self._store[self._table]

        if self._insert_data is not None:
            row = self._new_row(self._insert_data)
            if self._conflicts(row):
                raise _duplicate_error(self._table)
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._upsert_data is not None:
            row = self._new_row(self._upsert_data)
            existing = None
            if self._upsert_conflict:
                conflict_cols = [c.strip() for c in self._upsert_conflict.split(",")]
                existing = next((r for r in table
                                 if all(r.get(c) == row.get(c) for c in conflict_cols)), None)
            if existing is not None:
                if self._ignore_duplicates:
                    return FakeQueryResult(data=[])
                existing.update(self._upsert_data)
                return FakeQueryResult(data=[existing])
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(row)
            return FakeQueryResult(data=updated)

        # SELECT
        rows = [r for r in table if self._match(r)]
        for col, desc in reversed(self._orders):
            rows.sort(key=lambda r: r.get(col) or "", reverse=desc)
        if self._range is not None:
            rows = rows[self._range[0]:self._range[1] + 1]
        elif self._limit_val is not None:
            rows = rows[:self._limit_val]
        if self._max_rows is not None:
            # PostgREST max-rows: the server truncates whatever was asked for
            rows = rows[:self._max_rows]
        return FakeQueryResult(data=rows)


class FakeRpc:
    """Stored procedures, each applied under the store lock like a single statement."""

    def __init__(self, db, name, params):
        self._db = db
        self._name = name
        self._params = params

    def execute(self):
        if self._name != "increment_early_bird_counter":
            raise NotImplementedError(self._name)
        with self._db.lock:
            counters = self._db.store["signup_counter"]
            if not counters:
                return FakeQueryResult(data=None)
            row = counters[0]
            if row["early_bird_count"] >= row["early_bird_limit"]:
                return FakeQueryResult(data=None)
            row["early_bird_count"] += 1
            return FakeQueryResult(data=row["early_bird_count"])


class FakeDB:
    """In-memory store keyed by table name."""

    def __init__(self):
        self.store = defaultdict(list)
        self.lock = threading.Lock()
        self.max_rows = None

    def table(self, name):
        return FakeQueryBuilder(self.store, name, self.max_rows)

    def clear(self):
        self.store.clear()


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches supabase_client._table/_rpc."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db.store, name, db.max_rows)

    def fake_rpc(name, params=None):
        return FakeRpc(db, name, params or {})

    with patch("clientkey.supabase_client._table", side_effect=fake_table), \
            patch("clientkey.supabase_client._rpc", side_effect=fake_rpc), \
            patch("clientkey.supabase_client.get_client", return_value=MagicMock()):
        yield db


class Outbox(list):
    """Messages accepted by the fake Resend; ``attempts`` includes rejected ones."""

    def __init__(self):
        super().__init__()
        self.attempts = []
        self.fail = False

    def send(self, params):
        self.attempts.append(params)
        if self.fail:
            raise RuntimeError("Resend unavailable")
        self.append(params)
        return {"id": f"email-{len(self.attempts)}"}


@pytest.fixture
def outbox():
    """Captures every message handed to Resend; set ``outbox.fail = True`` to reject sends."""
    box = Outbox()
    with patch("resend.Emails.send", side_effect=box.send):
        yield box


@pytest.fixture
def client(fake_db):
    """Sync test client for the FastAPI app with mocked DB and no scheduler."""
    from contextlib import asynccontextmanager

    from fastapi.testclient import TestClient

    from clientkey.app import create_app

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app()
    app.router.lifespan_context = noop_lifespan

    with TestClient(app) as c:
        yield c


@pytest.fixture
def signed_in(fake_db):
    """Authenticate requests carrying AUTH_HEADERS as a regular user."""
    user = {"id": str(uuid.uuid4()), "email": "owner@example.com"}
    with patch("clientkey.supabase_client.get_user_from_token",
               side_effect=lambda token: user if token == "user-token" else None):
        yield user


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def iso(dt):
    return dt.astimezone(timezone.utc).isoformat()


def make_subscription(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": str(uuid.uuid4()),
        "stripe_customer_id": "cus_test",
        "stripe_subscription_id": "sub_" + uuid.uuid4().hex[:12],
        "pricing_tier": "early_bird",
        "monthly_price": 1900,
        "status": "active",
        "current_period_start": None,
        "current_period_end": None,
        "cancel_at_period_end": False,
        "addon_client_packs": 0,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    defaults.update(overrides)
    return defaults


def make_stripe_subscription(**overrides):
    """A Stripe subscription object as returned by the API (plain dict)."""
    defaults = {
        "id": "sub_" + uuid.uuid4().hex[:12],
        "object": "subscription",
        "customer": "cus_test",
        "status": "active",
        "cancel_at_period_end": False,
        "schedule": None,
        "metadata": {},
        "items": {"data": [{
            "id": "si_base",
            "price": {"id": "price_early"},
            "quantity": 1,
            "current_period_start": 1767225600,
            "current_period_end": 1769904000,
        }]},
    }
    defaults.update(overrides)
    return defaults


def make_checkout_session(**overrides):
    defaults = {
        "id": "cs_test_" + uuid.uuid4().hex[:12],
        "object": "checkout.session",
        "mode": "subscription",
        "customer": "cus_test",
        "subscription": "sub_test",
        "metadata": {"user_id": str(uuid.uuid4()), "pricing_tier": "early_bird"},
    }
    defaults.update(overrides)
    return defaults


def make_event(event_type, obj, **overrides):
    defaults = {
        "id": "evt_" + uuid.uuid4().hex[:12],
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
    defaults.update(overrides)
    return defaults


def make_client_record(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": str(uuid.uuid4()),
        "name": "Dana Client",
        "company": "Acme Co",
        "email": "dana@example.com",
        "disc_type": None,
    }
    defaults.update(overrides)
    return defaults


def make_tracking_event(client_id, event_type, created_at, **overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "client_id": client_id,
        "event_type": event_type,
        "metadata": None,
        "created_at": iso(created_at),
    }
    defaults.update(overrides)
    return defaults
