"""
Analytics event tracking: client-side quiz/page events stored in analytics_events.
These rows are what the Lead Recorder reads back to attribute a lead to its
referrer and landing page.
"""

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.modules.leads import store
from app.modules.leads.errors import DB_ERRORS

router = APIRouter()
logger = logging.getLogger(__name__)

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

TEXT_FIELDS = ("page_url", "referrer", "user_id", "user_agent", "event_category", "event_label") + UTM_KEYS


def absolute_page_url(page_url: str | None, request: Request) -> str | None:
    """Expand a bare path ("/quiz") into a full URL using the request host."""
    if not page_url or page_url.startswith("http"):
        return page_url
    host = request.headers.get("host") or "www.seniorsimple.org"
    scheme = request.headers.get("x-forwarded-proto") or "https"
    path = page_url if page_url.startswith("/") else f"/{page_url}"
    return f"{scheme}://{host}{path}"


@router.post("/track-event")
async def track_event(request: Request):
    """Record a client analytics event.

    Body: {"event_name": "...", "session_id": "...", "page_url"?, "referrer"?,
           "user_id"?, "properties"?: {...}, "utm_source"? ...}
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    event_name = body.get("event_name")
    session_id = body.get("session_id")
    if not event_name:
        return JSONResponse({"error": "event_name is required"}, status_code=400)
    if not session_id:
        return JSONResponse({"error": "session_id is required"}, status_code=400)

    if not isinstance(event_name, str) or not isinstance(session_id, str):
        return JSONResponse({"error": "event_name and session_id must be strings"}, status_code=400)
    for key in TEXT_FIELDS:
        if body.get(key) is not None and not isinstance(body[key], str):
            return JSONResponse({"error": f"{key} must be a string"}, status_code=400)
    raw_properties = body.get("properties")
    if raw_properties is not None and not isinstance(raw_properties, dict):
        return JSONResponse({"error": "properties must be an object"}, status_code=400)

    page_url = absolute_page_url(body.get("page_url"), request)
    properties = dict(raw_properties or {})
    if page_url:
        parsed = urlparse(page_url)
        properties.setdefault("path", parsed.path)
        properties.setdefault("search", f"?{parsed.query}" if parsed.query else "")

    forwarded = request.headers.get("x-forwarded-for")
    event = {
        "event_name": event_name,
        "event_category": body.get("event_category") or "quiz",
        "event_label": body.get("event_label") or event_name,
        "session_id": session_id,
        "user_id": body.get("user_id") or session_id,
        "page_url": page_url,
        "referrer": body.get("referrer") or None,
        "user_agent": body.get("user_agent") or request.headers.get("user-agent"),
        "ip_address": forwarded.split(",")[0].strip() if forwarded else request.headers.get("x-real-ip"),
        "properties": properties,
    }
    for key in UTM_KEYS:
        event[key] = body.get(key) or None

    try:
        row = await store.insert_analytics_event(event)
    except DB_ERRORS as e:
        logger.error("Failed to track event %s for session %s: %s", event_name, session_id, e)
        return JSONResponse({"error": "Failed to track event"}, status_code=500)

    return {"success": True, "event_id": str(row["id"])}
