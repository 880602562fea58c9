"""
Booking confirmation: the CRM calls the webhook when an appointment is created,
and the booking page polls until the visitor's confirmation shows up.

Confirmations are keyed by lowercase email, else by E.164 phone, and expire
after settings.booking_confirmation_ttl_minutes.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.modules.leads import store
from app.modules.leads.errors import DB_ERRORS
from app.modules.leads.phone import normalize_email, normalize_phone

router = APIRouter()
logger = logging.getLogger(__name__)


def booking_key(email: str | None, phone: str | None) -> str | None:
    return normalize_email(email) or normalize_phone(phone)


def _text(value) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _appointment(body: dict) -> dict:
    """Appointment id and start time, wherever the CRM workflow put them."""
    nested = body.get("appointment") if isinstance(body.get("appointment"), dict) else {}
    return {
        "appointment_id": body.get("appointmentId") or body.get("id") or body.get("appointment_id"),
        "booking_times": body.get("bookingTimes") or body.get("start_time") or nested.get("start_time"),
    }


@router.post("/confirm")
async def confirm_booking(request: Request):
    """Record an appointment confirmation pushed by the CRM."""
    secret = get_settings().booking_webhook_secret
    if secret and request.headers.get("x-booking-secret") != secret:
        logger.warning("Booking webhook rejected: bad or missing secret")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid payload"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid payload"}, status_code=400)

    email = normalize_email(_text(body.get("email")))
    phone = normalize_phone(_text(body.get("phone")))
    key = booking_key(email, phone)
    if not key:
        return JSONResponse({"error": "Missing email or phone"}, status_code=400)

    record = {
        "email": email,
        "phone": phone,
        "name": _text(body.get("name")),
        "source": _text(body.get("event") or body.get("source")) or "webhook",
        "payload": {**_appointment(body), "raw": body},
    }
    ttl = timedelta(minutes=get_settings().booking_confirmation_ttl_minutes)
    try:
        await store.upsert_booking(key, record, ttl)
    except DB_ERRORS as e:
        logger.error("Failed to store booking confirmation for %s: %s", key, e)
        return JSONResponse({"error": "Failed to store booking"}, status_code=500)

    logger.info("Booking confirmed for %s (appointment %s)", key, record["payload"]["appointment_id"])
    return {"success": True, "key": key}


@router.get("/confirm")
async def booking_status(email: str | None = None, phone: str | None = None):
    """Polled by the booking page: has the CRM confirmed this visitor's appointment yet?"""
    key = booking_key(email, phone)
    if not key:
        return JSONResponse({"error": "Missing email or phone"}, status_code=400)

    try:
        booking = await store.find_booking(key)
    except DB_ERRORS as e:
        logger.error("Booking lookup failed for %s: %s", key, e)
        return JSONResponse({"error": "Failed to check booking"}, status_code=500)

    if not booking:
        return {"confirmed": False}

    payload = booking.get("payload") or {}
    return {
        "confirmed": True,
        "name": booking.get("name"),
        "email": booking.get("email"),
        "phone": booking.get("phone"),
        "source": booking.get("source"),
        "payload": {
            "appointment_id": payload.get("appointment_id"),
            "booking_times": payload.get("booking_times"),
            "raw": payload.get("raw") or {},
        },
    }
