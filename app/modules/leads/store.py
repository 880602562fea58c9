"""
Lead Store: every SQL statement the lead pipeline runs.
Rows come back as plain dicts with JSONB columns decoded.
"""

import json
from datetime import datetime, timedelta

from app.database import get_pool

CONTACT_COLUMNS = "id, email, phone, phone_hash, first_name, last_name, created_at"

UPDATABLE_CONTACT_FIELDS = {"first_name", "last_name", "phone", "phone_hash"}

LEAD_FIELDS = {
    "contact_id", "session_id", "site_key", "funnel_type", "status", "is_verified",
    "verified_at", "quiz_answers", "utm_source", "utm_medium", "utm_campaign",
    "referrer", "landing_page", "user_id", "trustedform_cert_url", "contact",
    "zip_code", "state", "state_name",
}

EVENT_FIELDS = {
    "event_name", "event_category", "event_label", "session_id", "user_id", "page_url",
    "referrer", "user_agent", "ip_address", "utm_source", "utm_medium", "utm_campaign",
    "utm_term", "utm_content", "properties",
}

JSONB_FIELDS = {"quiz_answers", "contact", "delivery_status", "properties", "payload"}


def _decode(row) -> dict | None:
    if row is None:
        return None
    data = dict(row)
    for key in JSONB_FIELDS & data.keys():
        if isinstance(data[key], str):
            data[key] = json.loads(data[key])
    return data


def _encode(field: str, value):
    if field in JSONB_FIELDS:
        return json.dumps(value, default=str)
    return value


def _placeholder(field: str, index: int) -> str:
    return f"${index}::jsonb" if field in JSONB_FIELDS else f"${index}"


# --- Contacts ---

async def find_contact_by_email(email: str) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE email = $1", email)
    return _decode(row)


async def find_contact_by_phone_hash(phone_hash: str) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE phone_hash = $1", phone_hash)
    return _decode(row)


async def insert_contact(
    email: str,
    first_name: str | None,
    last_name: str | None,
    phone: str | None,
    phone_hash: str | None,
) -> dict:
    """Insert a contact. Raises asyncpg.UniqueViolationError when email or phone_hash is taken."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO contacts (email, first_name, last_name, phone, phone_hash)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {CONTACT_COLUMNS}
        """,
        email,
        first_name,
        last_name,
        phone,
        phone_hash,
    )
    return _decode(row)


async def update_contact(contact_id, fields: dict) -> dict:
    pool = await get_pool()
    fields = {k: v for k, v in fields.items() if k in UPDATABLE_CONTACT_FIELDS}

    set_clauses = []
    params = [contact_id]
    for i, (field, value) in enumerate(fields.items(), start=2):
        set_clauses.append(f"{field} = ${i}")
        params.append(value)

    sql = f"UPDATE contacts SET {', '.join(set_clauses)} WHERE id = $1 RETURNING {CONTACT_COLUMNS}"
    row = await pool.fetchrow(sql, *params)
    return _decode(row)


# --- Leads ---

async def find_lead(contact_id, session_id: str) -> dict | None:
    pool = await get_pool()
    row = await pool.fetchrow(
        "SELECT * FROM leads WHERE contact_id = $1 AND session_id = $2",
        contact_id,
        session_id,
    )
    return _decode(row)


async def insert_lead(data: dict) -> dict:
    """Insert a lead. A concurrent insert for the same (contact, session) is folded into that row."""
    pool = await get_pool()
    fields = [k for k in data if k in LEAD_FIELDS]
    columns = ", ".join(fields)
    placeholders = ", ".join(_placeholder(f, i) for i, f in enumerate(fields, start=1))
    updates = [
        # Shallow merge: keys from this submission win over the stored answers
        f"{f} = leads.quiz_answers || EXCLUDED.quiz_answers" if f == "quiz_answers" else f"{f} = EXCLUDED.{f}"
        for f in fields
        if f not in ("contact_id", "session_id")
    ]
    updates.append("updated_at = NOW()")
    row = await pool.fetchrow(
        f"""
        INSERT INTO leads ({columns}) VALUES ({placeholders})
        ON CONFLICT (contact_id, session_id) WHERE session_id IS NOT NULL
        DO UPDATE SET {', '.join(updates)}
        RETURNING *
        """,
        *[_encode(f, data[f]) for f in fields],
    )
    return _decode(row)


async def update_lead(lead_id, data: dict) -> dict:
    pool = await get_pool()
    fields = [k for k in data if k in LEAD_FIELDS]

    set_clauses = [f"{f} = {_placeholder(f, i)}" for i, f in enumerate(fields, start=2)]
    set_clauses.append("updated_at = NOW()")
    sql = f"UPDATE leads SET {', '.join(set_clauses)} WHERE id = $1 RETURNING *"
    row = await pool.fetchrow(sql, lead_id, *[_encode(f, data[f]) for f in fields])
    return _decode(row)


async def update_lead_delivery_status(lead_id, delivery_status: dict) -> None:
    pool = await get_pool()
    await pool.execute(
        "UPDATE leads SET delivery_status = $2::jsonb, updated_at = NOW() WHERE id = $1",
        lead_id,
        json.dumps(delivery_status, default=str),
    )


# --- Analytics events (session attribution + delivery log) ---

async def latest_session_event(session_id: str) -> dict | None:
    """Most recent tracked event for a session: where the visitor came from and landed."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT referrer, page_url, user_id
        FROM analytics_events
        WHERE session_id = $1
        ORDER BY created_at DESC
        LIMIT 1
        """,
        session_id,
    )
    return _decode(row)


async def latest_session_user_id(session_id: str) -> str | None:
    pool = await get_pool()
    return await pool.fetchval(
        """
        SELECT user_id
        FROM analytics_events
        WHERE session_id = $1 AND user_id IS NOT NULL
        ORDER BY created_at DESC
        LIMIT 1
        """,
        session_id,
    )


async def insert_analytics_event(event: dict) -> dict:
    pool = await get_pool()
    fields = [k for k in event if k in EVENT_FIELDS]
    columns = ", ".join(fields)
    placeholders = ", ".join(_placeholder(f, i) for i, f in enumerate(fields, start=1))
    row = await pool.fetchrow(
        f"INSERT INTO analytics_events ({columns}) VALUES ({placeholders}) RETURNING id, event_name, created_at",
        *[_encode(f, event[f]) for f in fields],
    )
    return _decode(row)


async def recent_email_captures(since: datetime) -> list[dict]:
    """Email-only captures still waiting for retargeting, newest first."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, event_name, session_id, user_id, page_url, properties, created_at
        FROM analytics_events
        WHERE event_name = 'email_captured'
          AND properties->>'status' = 'email_captured_for_retargeting'
          AND created_at >= $1
        ORDER BY created_at DESC
        """,
        since,
    )
    return [_decode(r) for r in rows]


# --- Booking confirmations ---

async def upsert_booking(key: str, record: dict, ttl: timedelta) -> dict:
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        INSERT INTO booking_confirmations (key, email, phone, name, source, payload, expires_at)
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, NOW() + $7::interval)
        ON CONFLICT (key) DO UPDATE SET
            email = EXCLUDED.email,
            phone = EXCLUDED.phone,
            name = EXCLUDED.name,
            source = EXCLUDED.source,
            payload = EXCLUDED.payload,
            created_at = NOW(),
            expires_at = EXCLUDED.expires_at
        RETURNING *
        """,
        key,
        record.get("email"),
        record.get("phone"),
        record.get("name"),
        record.get("source"),
        json.dumps(record.get("payload") or {}, default=str),
        ttl,
    )
    return _decode(row)


async def find_booking(key: str) -> dict | None:
    """Unexpired booking confirmation for an email or phone key."""
    pool = await get_pool()
    row = await pool.fetchrow(
        "SELECT * FROM booking_confirmations WHERE key = $1 AND expires_at > NOW()",
        key,
    )
    return _decode(row)
