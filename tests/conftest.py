"""
Test configuration and fixtures for the lead pipeline.

The SQL helpers in app.modules.leads.store are swapped for an in-memory store
that enforces the same uniqueness rules as the database schema, so the
resolver/recorder/fan-out logic runs unchanged without PostgreSQL.
"""

import asyncio
import copy
from datetime import datetime, timezone
from uuid import uuid4

import asyncpg
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from app.config import get_settings
from app.main import app
from app.modules.leads import store


def _now():
    return datetime.now(timezone.utc)


async def _round_trip():
    """Yield to the loop after a read, so concurrent callers interleave between their lookup and their write."""
    await asyncio.sleep(0)


class MemoryStore:
    """Dict-backed stand-in for app.modules.leads.store."""

    def __init__(self):
        self.contacts: dict = {}
        self.leads: dict = {}
        self.events: list[dict] = []
        self.bookings: dict = {}

    # --- Contacts ---

    async def find_contact_by_email(self, email):
        found = next((dict(c) for c in self.contacts.values() if c["email"] == email), None)
        await _round_trip()
        return found

    async def find_contact_by_phone_hash(self, phone_hash):
        found = next((dict(c) for c in self.contacts.values() if c["phone_hash"] == phone_hash), None)
        await _round_trip()
        return found

    async def insert_contact(self, email, first_name, last_name, phone, phone_hash):
        for c in self.contacts.values():
            if c["email"] == email or (phone_hash and c["phone_hash"] == phone_hash):
                raise asyncpg.UniqueViolationError("duplicate key value violates unique constraint")
        row = {
            "id": uuid4(),
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
            "phone_hash": phone_hash,
            "created_at": _now(),
        }
        self.contacts[row["id"]] = row
        return dict(row)

    async def update_contact(self, contact_id, fields):
        self.contacts[contact_id].update(fields)
        return dict(self.contacts[contact_id])

    # --- Leads ---

    async def find_lead(self, contact_id, session_id):
        found = next(
            (copy.deepcopy(lead) for lead in self.leads.values()
             if lead["contact_id"] == contact_id and lead["session_id"] == session_id),
            None,
        )
        await _round_trip()
        return found

    async def insert_lead(self, data):
        data = copy.deepcopy(data)
        if data.get("session_id") is not None:
            for lead in self.leads.values():
                if lead["contact_id"] == data["contact_id"] and lead["session_id"] == data["session_id"]:
                    # ON CONFLICT (contact_id, session_id) DO UPDATE, answers shallow-merged
                    answers = {**(lead.get("quiz_answers") or {}), **(data.pop("quiz_answers", None) or {})}
                    lead.update(data, quiz_answers=answers, updated_at=_now())
                    return copy.deepcopy(lead)
        row = {"id": uuid4(), "delivery_status": None, "created_at": _now(), "updated_at": _now()}
        row.update(data)
        self.leads[row["id"]] = row
        return copy.deepcopy(row)

    async def update_lead(self, lead_id, data):
        self.leads[lead_id].update(copy.deepcopy(data))
        self.leads[lead_id]["updated_at"] = _now()
        return copy.deepcopy(self.leads[lead_id])

    async def update_lead_delivery_status(self, lead_id, delivery_status):
        self.leads[lead_id]["delivery_status"] = copy.deepcopy(delivery_status)

    # --- Analytics events ---

    async def latest_session_event(self, session_id):
        matches = [e for e in self.events if e.get("session_id") == session_id]
        if not matches:
            return None
        latest = matches[-1]
        return {"referrer": latest.get("referrer"), "page_url": latest.get("page_url"), "user_id": latest.get("user_id")}

    async def latest_session_user_id(self, session_id):
        matches = [e for e in self.events if e.get("session_id") == session_id and e.get("user_id")]
        return matches[-1]["user_id"] if matches else None

    async def insert_analytics_event(self, event):
        row = {"id": uuid4(), "created_at": _now(), **copy.deepcopy(event)}
        self.events.append(row)
        return {"id": row["id"], "event_name": row["event_name"], "created_at": row["created_at"]}

    async def recent_email_captures(self, since):
        captures = [
            copy.deepcopy(e) for e in self.events
            if e["event_name"] == "email_captured"
            and (e.get("properties") or {}).get("status") == "email_captured_for_retargeting"
            and e["created_at"] >= since
        ]
        return sorted(captures, key=lambda e: e["created_at"], reverse=True)

    def events_named(self, name):
        return [e for e in self.events if e["event_name"] == name]

    # --- Booking confirmations ---

    async def upsert_booking(self, key, record, ttl):
        now = _now()
        self.bookings[key] = {"key": key, **copy.deepcopy(record), "created_at": now, "expires_at": now + ttl}
        return copy.deepcopy(self.bookings[key])

    async def find_booking(self, key):
        booking = self.bookings.get(key)
        if booking is None or booking["expires_at"] <= _now():
            return None
        return copy.deepcopy(booking)


STORE_FUNCTIONS = [
    "find_contact_by_email",
    "find_contact_by_phone_hash",
    "insert_contact",
    "update_contact",
    "find_lead",
    "insert_lead",
    "update_lead",
    "update_lead_delivery_status",
    "latest_session_event",
    "latest_session_user_id",
    "insert_analytics_event",
    "recent_email_captures",
    "upsert_booking",
    "find_booking",
]


@pytest.fixture
def memory_store(monkeypatch) -> MemoryStore:
    mem = MemoryStore()
    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(store, name, getattr(mem, name))
    return mem


@pytest.fixture
def settings(monkeypatch):
    """Live settings object with every delivery sink and the booking secret switched off; tests opt back in."""
    current = get_settings()
    monkeypatch.setattr(current, "ghl_webhook_url", "")
    monkeypatch.setattr(current, "ghl_webhook_urls", {})
    monkeypatch.setattr(current, "meta_pixel_id", "")
    monkeypatch.setattr(current, "meta_pixel_ids", {})
    monkeypatch.setattr(current, "meta_capi_token", "")
    monkeypatch.setattr(current, "meta_test_event_code", "")
    monkeypatch.setattr(current, "ga4_measurement_id", "")
    monkeypatch.setattr(current, "ga4_api_secret", "")
    monkeypatch.setattr(current, "booking_webhook_secret", "")
    return current


@pytest_asyncio.fixture
async def client(memory_store, settings):
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def mock_client():
    """Factory for httpx clients whose requests are answered by handler(request) instead of the network."""
    def make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return make
