"""
Lead Recorder: finds or creates the lead for (contact, quiz session).

A repeat submission inside the same session updates the existing lead in place,
so one quiz attempt never produces two leads. Leads recorded here have passed
contact-detail capture and are always stored as verified.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.leads import store
from app.modules.leads.errors import DB_ERRORS, PersistenceError

logger = logging.getLogger(__name__)


async def record_lead(
    contact_id,
    session_id: str | None,
    quiz_answers: dict[str, Any] | None,
    utm_params: dict[str, Any] | None,
    consent_ref: str | None,
    funnel_type: str | None = None,
    contact: Contact | None = None,
    location: dict[str, str | None] | None = None,
    calculated_results: Any = None,
    licensing_info: Any = None,
) -> Lead:
    """Create or update the lead for this contact and session.

    location carries the zip_code / state / state_name submitted next to the
    answers. calculated_results and licensing_info are kept inside quiz_answers
    when given.
    """
    settings = get_settings()
    utm_params = dict(utm_params or {})

    try:
        existing = await store.find_lead(contact_id, session_id) if session_id else None
    except DB_ERRORS as e:
        raise PersistenceError(f"Lead lookup failed: {e}") from e

    attribution = await _session_attribution(session_id)

    answers = dict(existing.get("quiz_answers") or {}) if existing else {}
    answers.update(quiz_answers or {})
    if calculated_results is not None:
        answers["calculated_results"] = calculated_results
    if licensing_info is not None:
        answers["licensing_info"] = licensing_info
    answers["utm_parameters"] = utm_params
    answers["trusted_form_cert_url"] = consent_ref

    lead_data = {
        "contact_id": contact_id,
        "session_id": session_id,
        "site_key": settings.site_key,
        "funnel_type": funnel_type or settings.default_funnel_type,
        "status": "verified",
        "is_verified": True,
        "verified_at": datetime.now(timezone.utc),
        "quiz_answers": answers,
        "utm_source": utm_params.get("utm_source") or None,
        "utm_medium": utm_params.get("utm_medium") or None,
        "utm_campaign": utm_params.get("utm_campaign") or None,
        "referrer": utm_params.get("referrer") or attribution.get("referrer"),
        "landing_page": utm_params.get("landing_page") or attribution.get("landing_page"),
        "user_id": attribution.get("user_id"),
        "trustedform_cert_url": consent_ref,
        "contact": _contact_snapshot(contact),
    }
    location = location or {}
    for key in ("zip_code", "state", "state_name"):
        value = location.get(key) or (existing.get(key) if existing else None)
        if value:
            lead_data[key] = value

    try:
        if existing:
            row = await store.update_lead(existing["id"], lead_data)
            logger.info("Lead %s updated (session=%s)", existing["id"], session_id)
        else:
            row = await store.insert_lead(lead_data)
            logger.info("Lead %s created (contact=%s, session=%s)", row["id"], contact_id, session_id)
    except DB_ERRORS as e:
        raise PersistenceError(f"Lead write failed for contact {contact_id}: {e}") from e

    return Lead(**row)


async def _session_attribution(session_id: str | None) -> dict:
    """Referrer, landing page and user id from the session's tracked events. Best effort."""
    if not session_id:
        return {}

    try:
        event = await store.latest_session_event(session_id)
        user_id = await store.latest_session_user_id(session_id)
    except DB_ERRORS as e:
        logger.warning("Session attribution lookup failed for %s: %s", session_id, e)
        return {}

    attribution = {"user_id": user_id}
    if event:
        attribution["referrer"] = event.get("referrer") or None
        attribution["landing_page"] = event.get("page_url") or None
    return attribution


def _contact_snapshot(contact: Contact | None) -> dict | None:
    if contact is None:
        return None
    return {
        "email": contact.email,
        "phone": contact.phone,
        "first_name": contact.first_name,
        "last_name": contact.last_name,
    }
