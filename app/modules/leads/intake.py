"""
Lead Intake: HTTP entry point for quiz/contact submissions.

Runs Contact Resolver -> Lead Recorder, answers the visitor, then hands the
lead to the Delivery Fan-out as a background task. Once the lead is recorded
the visitor always gets a success response, whatever happens downstream.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.delivery.base import DeliveryContext
from app.modules.delivery.fanout import deliver
from app.modules.leads import store
from app.modules.leads.contacts import resolve_contact
from app.modules.leads.errors import DB_ERRORS, PersistenceError, ValidationError
from app.modules.leads.phone import normalize_email
from app.modules.leads.recorder import record_lead

router = APIRouter()
logger = logging.getLogger(__name__)


class LeadSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str | None = Field(None, alias="phoneNumber")
    email: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    quiz_answers: dict[str, Any] | None = Field(None, alias="quizAnswers")
    session_id: str | None = Field(None, alias="sessionId")
    funnel_type: str | None = Field(None, alias="funnelType")
    utm_params: dict[str, Any] | None = Field(None, alias="utmParams")
    trusted_form_cert_url: str | None = Field(None, alias="trustedFormCertUrl")
    zip_code: str | None = Field(None, alias="zipCode")
    state: str | None = None
    state_name: str | None = Field(None, alias="stateName")
    calculated_results: Any = Field(None, alias="calculatedResults")
    licensing_info: Any = Field(None, alias="licensingInfo")

    @field_validator("zip_code", mode="before")
    @classmethod
    def _zip_as_text(cls, value):
        return str(value) if isinstance(value, int) else value


class EmailCapture(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    quiz_answers: dict[str, Any] | None = Field(None, alias="quizAnswers")
    session_id: str | None = Field(None, alias="sessionId")
    funnel_type: str | None = Field(None, alias="funnelType")
    utm_params: dict[str, Any] | None = Field(None, alias="utmParams")


async def process_submission(submission: LeadSubmission) -> tuple[Lead, Contact]:
    """Validate, resolve the contact and record the lead. Delivery is left to the caller."""
    email = (submission.email or "").strip()
    phone = (submission.phone_number or "").strip()
    if not email or not phone:
        raise ValidationError("Email and phone number are required")

    contact = await resolve_contact(email, submission.first_name, submission.last_name, phone)
    lead = await record_lead(
        contact.id,
        submission.session_id,
        submission.quiz_answers,
        submission.utm_params,
        submission.trusted_form_cert_url,
        funnel_type=submission.funnel_type,
        contact=contact,
        location={"zip_code": submission.zip_code, "state": submission.state, "state_name": submission.state_name},
        calculated_results=submission.calculated_results,
        licensing_info=submission.licensing_info,
    )
    return lead, contact


def build_next_url(email: str) -> str:
    return f"{get_settings().booking_path}?{urlencode({'email': email})}"


def delivery_context(request: Request) -> DeliveryContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else request.headers.get("x-real-ip")
    return DeliveryContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        fbp=request.cookies.get("_fbp"),
        fbc=request.cookies.get("_fbc"),
        event_source_url=request.headers.get("referer"),
    )


@router.post("/submit")
async def submit_lead(request: Request, background_tasks: BackgroundTasks):
    """Record a quiz lead and queue it for CRM / ad-platform delivery."""
    try:
        submission = LeadSubmission.model_validate(await request.json())
    except ValueError as e:
        logger.warning("Rejected malformed lead submission: %s", e)
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    try:
        lead, contact = await process_submission(submission)
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=e.status_code)
    except PersistenceError as e:
        logger.error("Lead submission failed for %s: %s", submission.email, e)
        return JSONResponse({"success": False, "error": "Failed to save lead"}, status_code=e.status_code)
    except Exception as e:
        logger.exception("Unexpected error processing lead for %s: %s", submission.email, e)
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)

    background_tasks.add_task(deliver, lead, contact, delivery_context(request))

    return JSONResponse({
        "success": True,
        "lead_id": str(lead.id),
        "next_url": build_next_url(submission.email.strip()),
    })


@router.post("/capture-email")
async def capture_email(request: Request):
    """Save an email-only capture (no phone yet) for retargeting."""
    try:
        capture = EmailCapture.model_validate(await request.json())
    except ValueError:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    email = normalize_email(capture.email)
    if not email:
        return JSONResponse({"error": "Email is required"}, status_code=400)

    context = delivery_context(request)
    try:
        event = await store.insert_analytics_event({
            "event_name": "email_captured",
            "event_category": "lead_generation",
            "event_label": capture.funnel_type or get_settings().default_funnel_type,
            "user_id": email,
            "session_id": capture.session_id,
            "page_url": context.event_source_url,
            "user_agent": context.user_agent,
            "ip_address": context.ip_address,
            "properties": {
                "email": email,
                "first_name": capture.first_name,
                "last_name": capture.last_name,
                "quiz_answers": capture.quiz_answers or {},
                "funnel_type": capture.funnel_type,
                "status": "email_captured_for_retargeting",
                "utm_parameters": capture.utm_params or {},
            },
        })
    except DB_ERRORS as e:
        logger.error("Email capture failed for %s: %s", email, e)
        return JSONResponse({"error": "Failed to save email for retargeting"}, status_code=500)

    logger.info("Email captured for retargeting: %s (event %s)", email, event["id"])
    return {"success": True, "event_id": str(event["id"])}


@router.get("/retargeting")
async def retargeting_leads():
    """Email-only captures from the retargeting window, newest first."""
    since = datetime.now(timezone.utc) - timedelta(hours=get_settings().retargeting_window_hours)
    try:
        captures = await store.recent_email_captures(since)
    except DB_ERRORS as e:
        logger.error("Failed to fetch retargeting leads: %s", e)
        return JSONResponse({"error": "Failed to fetch retargeting leads"}, status_code=500)

    logger.info("Found %d email captures for retargeting", len(captures))
    return {"email_captures": captures}
