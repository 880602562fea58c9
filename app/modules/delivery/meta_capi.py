"""Meta Conversions API sink: server-side Lead event, deduplicated against the browser pixel by event_id."""

import hashlib
import time
from typing import Any

import httpx

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.delivery.base import DeliveryContext, post_json
from app.modules.leads.phone import phone_digits

NAME = "meta_capi"

GRAPH_API_BASE = "https://graph.facebook.com"

# Funnel families that share a pixel; keys are looked up in settings.meta_pixel_ids
PIXEL_FAMILIES = {
    "annuity": ("annuity", "insurance"),
    "final-expense": ("final-expense", "finalexpense", "fex"),
    "reverse-mortgage": ("reverse-mortgage", "reversemortgage"),
}


def pixel_id_for_funnel(funnel_type: str | None) -> str:
    settings = get_settings()
    if not funnel_type:
        return settings.meta_pixel_id

    funnel = funnel_type.lower()
    if settings.meta_pixel_ids.get(funnel):
        return settings.meta_pixel_ids[funnel]

    for family, markers in PIXEL_FAMILIES.items():
        if any(marker in funnel for marker in markers):
            return settings.meta_pixel_ids.get(family) or settings.meta_pixel_id
    return settings.meta_pixel_id


def is_configured(lead: Lead) -> bool:
    return bool(pixel_id_for_funnel(lead.funnel_type) and get_settings().meta_capi_token)


def hash_for_meta(value: str | None) -> str | None:
    """Meta expects lowercase, trimmed values hashed with SHA-256."""
    if not value:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def build_user_data(contact: Contact, context: DeliveryContext) -> dict[str, Any]:
    user_data: dict[str, Any] = {}

    for key, value in (
        ("em", contact.email),
        ("ph", phone_digits(contact.phone)),
        ("fn", contact.first_name),
        ("ln", contact.last_name),
    ):
        hashed = hash_for_meta(value)
        if hashed:
            user_data[key] = [hashed]

    if context.fbp:
        user_data["fbp"] = context.fbp
    if context.fbc:
        user_data["fbc"] = context.fbc
    if context.ip_address:
        user_data["client_ip_address"] = context.ip_address
    if context.user_agent:
        user_data["client_user_agent"] = context.user_agent
    return user_data


def build_payload(lead: Lead, contact: Contact, context: DeliveryContext) -> dict[str, Any]:
    event_time = int(time.time())
    event = {
        "event_name": "Lead",
        "event_time": event_time,
        "event_id": f"{lead.id}-Lead-{event_time}",
        "action_source": "website",
        "user_data": build_user_data(contact, context),
        "custom_data": {
            "currency": "USD",
            "content_name": lead.funnel_type,
            "content_category": "lead_generation",
        },
    }
    source_url = context.event_source_url or lead.landing_page
    if source_url:
        event["event_source_url"] = source_url

    payload: dict[str, Any] = {"data": [event]}
    test_event_code = get_settings().meta_test_event_code
    if test_event_code:
        payload["test_event_code"] = test_event_code
    return payload


async def send(client: httpx.AsyncClient, lead: Lead, payload: dict[str, Any], timeout: httpx.Timeout) -> httpx.Response:
    settings = get_settings()
    pixel_id = pixel_id_for_funnel(lead.funnel_type)
    url = f"{GRAPH_API_BASE}/{settings.meta_capi_version}/{pixel_id}/events"
    return await post_json(
        client, NAME, url, payload, timeout,
        params={"access_token": settings.meta_capi_token},
    )
