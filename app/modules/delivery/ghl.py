"""
GHL (LeadConnector) inbound webhook sink.

GHL custom fields only accept flat values, so the payload is a single level:
nested quiz answers are flattened, lists are joined into strings.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.delivery.base import DeliveryContext, post_json
from app.modules.leads.phone import phone_last4

NAME = "ghl"

DEFAULT_LEAD_SCORE = 75

SOURCES = {
    "final-expense-quote": "SeniorSimple Final Expense Quiz",
    "rmd-quiz": "SeniorSimple RMD Quiz",
}


def webhook_url(funnel_type: str) -> str:
    settings = get_settings()
    return settings.ghl_webhook_urls.get(funnel_type) or settings.ghl_webhook_url


def is_configured(lead: Lead) -> bool:
    return bool(webhook_url(lead.funnel_type))


def build_payload(lead: Lead, contact: Contact, context: DeliveryContext) -> dict[str, Any]:
    answers = lead.quiz_answers or {}
    now = datetime.now(timezone.utc).isoformat()

    payload: dict[str, Any] = {
        "firstName": contact.first_name or "",
        "lastName": contact.last_name or "",
        "email": contact.email,
        "phone": contact.phone or "",
        "phoneLast4": phone_last4(contact.phone),
        "source": SOURCES.get(lead.funnel_type, "SeniorSimple Quiz"),
        "funnelType": lead.funnel_type,
        "sessionId": lead.session_id or "",
        "ipAddress": context.ip_address,
        "originallyCreated": (lead.created_at.isoformat() if lead.created_at else now),
        "timestamp": now,
        "leadScore": DEFAULT_LEAD_SCORE,
        "leadId": str(lead.id),
    }
    payload.update(_address_fields(answers, lead))
    payload.update(_date_of_birth_fields(answers.get("dateOfBirth")))

    funnel_fields = FUNNEL_FIELDS.get(lead.funnel_type, _annuity_fields)
    payload.update({k: v for k, v in funnel_fields(answers).items() if v is not None})

    utm = answers.get("utm_parameters") or {}
    for key, field in (
        ("utm_source", "utmSource"),
        ("utm_medium", "utmMedium"),
        ("utm_campaign", "utmCampaign"),
        ("utm_term", "utmTerm"),
        ("utm_content", "utmContent"),
    ):
        if utm.get(key):
            payload[field] = utm[key]

    if lead.landing_page:
        payload["landingPage"] = lead.landing_page
    if lead.referrer:
        payload["referrer"] = lead.referrer
    if lead.trustedform_cert_url:
        payload["trustedFormCertUrl"] = lead.trustedform_cert_url

    return payload


async def send(client: httpx.AsyncClient, lead: Lead, payload: dict[str, Any], timeout: httpx.Timeout) -> httpx.Response:
    return await post_json(client, NAME, webhook_url(lead.funnel_type), payload, timeout)


# --- Funnel-specific fields ---

def _annuity_fields(answers: dict) -> dict:
    savings = _to_number(answers.get("retirementSavings"))
    allocation = answers.get("allocationPercent")

    fields = {
        "retirementSavings": answers.get("retirementSavings"),
        "ageRange": answers.get("ageRange"),
        "retirementTimeline": answers.get("retirementTimeline"),
        "riskTolerance": answers.get("riskTolerance"),
    }

    if isinstance(allocation, dict):
        percent = allocation.get("percentage") or allocation.get("allocation")
        fields["allocationPercent"] = percent
        fields["allocationAmount"] = allocation.get("amount")
    else:
        percent = allocation
        fields["allocationPercent"] = allocation

    percent = _to_number(percent)
    fields["coverageAmount"] = round(savings * percent / 100) if percent > 0 else savings

    plans = answers.get("currentRetirementPlans")
    if isinstance(plans, list):
        fields["currentRetirementPlans"] = ", ".join(str(p) for p in plans)

    results = answers.get("calculated_results")
    if isinstance(results, dict):
        fields["projectedMonthlyIncomeMin"] = results.get("projected_monthly_income_min")
        fields["projectedMonthlyIncomeMax"] = results.get("projected_monthly_income_max")

    return fields


def _final_expense_fields(answers: dict) -> dict:
    purpose = answers.get("coveragePurpose")
    if isinstance(purpose, list):
        purpose = ",".join(str(p) for p in purpose)

    return {
        "coverageAmount": _to_number(answers.get("coverageAmount")),
        "ageRange": answers.get("ageRange") or "",
        "tobaccoUse": answers.get("tobaccoUse") or "",
        "beneficiaryRelationship": answers.get("beneficiaryRelationship") or None,
        "healthStatus": answers.get("healthStatus") or None,
        "coveragePurpose": purpose or None,
    }


def _rmd_fields(answers: dict) -> dict:
    total_savings = _to_number(answers.get("total_savings"))
    protect_allocation = _to_number(answers.get("protect_allocation"))
    account_types = answers.get("account_types")

    return {
        "rmd_concern": answers.get("rmd_concern") or "",
        "age_range": answers.get("age_range") or "",
        "retire_timeline": answers.get("retire_timeline") or "",
        "risk_tolerance": answers.get("risk_tolerance") or "",
        "account_types": ", ".join(str(t) for t in account_types) if isinstance(account_types, list) else "",
        "total_savings": total_savings,
        "protect_allocation": protect_allocation,
        "allocation_amount": round(total_savings * protect_allocation / 100),
    }


FUNNEL_FIELDS = {
    "final-expense-quote": _final_expense_fields,
    "rmd-quiz": _rmd_fields,
}


def _address_fields(answers: dict, lead: Lead) -> dict:
    """Quiz address answers first, then the location submitted alongside them (ZIP-only funnels)."""
    address = answers.get("addressInfo") or answers.get("locationInfo") or {}
    if not isinstance(address, dict):
        address = {}

    street_number = address.get("streetNumber") or ""
    street = address.get("street") or address.get("fullAddress") or ""
    return {
        "address": f"{street_number} {street}".strip(),
        "city": address.get("city") or "",
        "state": address.get("stateAbbr") or address.get("state") or lead.state or "",
        "stateName": address.get("state") or lead.state_name or "",
        "zipCode": answers.get("zipCode") or address.get("zipCode") or lead.zip_code or "",
        "country": address.get("country") or address.get("countryCode") or "US",
    }


def _date_of_birth_fields(dob: Any) -> dict:
    """Accepts either a plain string or {month, day, year, iso, dateString}."""
    if isinstance(dob, str):
        return {"dateOfBirth": dob} if dob else {}
    if not isinstance(dob, dict):
        return {}

    month = str(dob["month"]).zfill(2) if dob.get("month") else ""
    day = str(dob["day"]).zfill(2) if dob.get("day") else ""
    year = str(dob.get("year") or "")

    if year and month and day:
        formatted = f"{year}-{month}-{day}"
    elif dob.get("iso"):
        formatted = str(dob["iso"]).split("T")[0]
    else:
        formatted = dob.get("dateString") or ""

    if not formatted:
        return {}

    fields = {"dateOfBirth": formatted}
    if month:
        fields["dobMonth"] = month
    if day:
        fields["dobDay"] = day
    if year:
        fields["dobYear"] = year
    return fields


def _to_number(value: Any) -> float | int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value.replace(",", "").replace("$", "").strip())
        except ValueError:
            return 0
        return int(number) if number.is_integer() else number
    return 0
