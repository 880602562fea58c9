"""GA4 Measurement Protocol sink: server-side generate_lead event."""

from typing import Any

import httpx

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.delivery.base import DeliveryContext, post_json

NAME = "ga4"

GA4_COLLECT_URL = "https://www.google-analytics.com/mp/collect"


def is_configured(lead: Lead) -> bool:
    settings = get_settings()
    return bool(settings.ga4_measurement_id and settings.ga4_api_secret)


def build_payload(lead: Lead, contact: Contact, context: DeliveryContext) -> dict[str, Any]:
    params = {
        "lead_id": str(lead.id),
        "funnel_type": lead.funnel_type,
        "site_key": lead.site_key,
    }
    for key in ("utm_source", "utm_medium", "utm_campaign"):
        value = getattr(lead, key)
        if value:
            params[key] = value

    return {
        # client_id must be stable per visitor: quiz session, else the lead itself
        "client_id": lead.session_id or str(lead.id),
        "events": [{"name": "generate_lead", "params": params}],
    }


async def send(client: httpx.AsyncClient, lead: Lead, payload: dict[str, Any], timeout: httpx.Timeout) -> httpx.Response:
    settings = get_settings()
    return await post_json(
        client, NAME, GA4_COLLECT_URL, payload, timeout,
        params={"measurement_id": settings.ga4_measurement_id, "api_secret": settings.ga4_api_secret},
    )
