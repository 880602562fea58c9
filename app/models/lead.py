from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class Lead(BaseModel):
    id: UUID
    contact_id: UUID
    session_id: str | None = None
    site_key: str
    funnel_type: str  # insurance, annuity-quote, final-expense-quote, rmd-quiz
    status: str = "verified"
    is_verified: bool = True
    verified_at: datetime | None = None
    quiz_answers: dict[str, Any] = {}
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    referrer: str | None = None
    landing_page: str | None = None
    user_id: str | None = None
    zip_code: str | None = None
    state: str | None = None  # two-letter code
    state_name: str | None = None
    trustedform_cert_url: str | None = None
    contact: dict[str, Any] | None = None  # snapshot of the contact at recording time
    delivery_status: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
