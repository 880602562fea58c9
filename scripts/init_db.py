"""
Schema script: creates the contacts, leads, analytics_events and booking_confirmations tables (idempotent).
Run: python -m scripts.init_db
"""

import asyncio
import os
import sys

import asyncpg
from dotenv import load_dotenv

load_dotenv()

SCHEMA = [
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",
    """
    CREATE TABLE IF NOT EXISTS contacts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email TEXT NOT NULL UNIQUE,
        phone TEXT,
        phone_hash TEXT UNIQUE,
        first_name TEXT,
        last_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leads (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        contact_id UUID NOT NULL REFERENCES contacts(id),
        session_id TEXT,
        site_key TEXT NOT NULL,
        funnel_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'verified',
        is_verified BOOLEAN NOT NULL DEFAULT TRUE,
        verified_at TIMESTAMPTZ,
        quiz_answers JSONB NOT NULL DEFAULT '{}'::jsonb,
        utm_source TEXT,
        utm_medium TEXT,
        utm_campaign TEXT,
        referrer TEXT,
        landing_page TEXT,
        user_id TEXT,
        trustedform_cert_url TEXT,
        zip_code TEXT,
        state TEXT,
        state_name TEXT,
        contact JSONB,
        delivery_status JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    # One lead per quiz session per contact
    """
    CREATE UNIQUE INDEX IF NOT EXISTS leads_contact_session_idx
        ON leads (contact_id, session_id) WHERE session_id IS NOT NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS analytics_events (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        event_name TEXT NOT NULL,
        event_category TEXT,
        event_label TEXT,
        session_id TEXT,
        user_id TEXT,
        page_url TEXT,
        referrer TEXT,
        user_agent TEXT,
        ip_address TEXT,
        utm_source TEXT,
        utm_medium TEXT,
        utm_campaign TEXT,
        utm_term TEXT,
        utm_content TEXT,
        properties JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS analytics_events_session_idx ON analytics_events (session_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS analytics_events_name_idx ON analytics_events (event_name, created_at DESC)",
    # Columns added after the first release
    "ALTER TABLE leads ADD COLUMN IF NOT EXISTS zip_code TEXT",
    "ALTER TABLE leads ADD COLUMN IF NOT EXISTS state TEXT",
    "ALTER TABLE leads ADD COLUMN IF NOT EXISTS state_name TEXT",
    # Appointment confirmations pushed by the CRM, polled by the booking page
    """
    CREATE TABLE IF NOT EXISTS booking_confirmations (
        key TEXT PRIMARY KEY,
        email TEXT,
        phone TEXT,
        name TEXT,
        source TEXT,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
]


async def init_db():
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL not set in .env")
        sys.exit(1)

    conn = await asyncpg.connect(database_url)

    try:
        async with conn.transaction():
            for statement in SCHEMA:
                await conn.execute(statement)
        print(f"Schema ready ({len(SCHEMA)} statements applied)")
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(init_db())
