"""
Delivery Fan-out: sends a recorded lead to every configured sink.

Delivery is at-most-once: each sink gets a single attempt with its own timeout
and no retry. A failing sink is logged and recorded on the report; it never
stops the other sinks and never raises to the caller. A dropped delivery is
only visible in the logs, in leads.delivery_status and in the lead_delivery
analytics event.
"""

import asyncio
import logging

import httpx

from app.config import get_settings
from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.delivery import ga4, ghl, meta_capi
from app.modules.delivery.base import DeliveryAttempt, DeliveryContext, DeliveryReport, DeliverySink
from app.modules.leads import store
from app.modules.leads.errors import DeliveryError

logger = logging.getLogger(__name__)

SINKS: list[DeliverySink] = [ghl, meta_capi, ga4]


async def deliver(
    lead: Lead,
    contact: Contact,
    context: DeliveryContext | None = None,
    client: httpx.AsyncClient | None = None,
    sinks: list[DeliverySink] | None = None,
) -> DeliveryReport:
    """Send the lead to each sink concurrently and return the per-sink outcome."""
    context = context or DeliveryContext()
    timeout = httpx.Timeout(get_settings().delivery_timeout_seconds)

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        attempts = await asyncio.gather(
            *(_attempt(sink, client, lead, contact, context, timeout) for sink in (sinks or SINKS))
        )
    finally:
        if owns_client:
            await client.aclose()

    report = DeliveryReport(lead_id=str(lead.id), attempts=list(attempts))
    logger.info(
        "Lead %s delivery: delivered=%s failed=%s skipped=%s",
        lead.id,
        [a.sink for a in report.delivered],
        [a.sink for a in report.failed],
        [a.sink for a in report.attempts if a.skipped],
    )

    await _record_report(lead, report)
    return report


async def _attempt(
    sink: DeliverySink,
    client: httpx.AsyncClient,
    lead: Lead,
    contact: Contact,
    context: DeliveryContext,
    timeout: httpx.Timeout,
) -> DeliveryAttempt:
    if not sink.is_configured(lead):
        logger.info("Sink %s not configured for funnel %s, skipping", sink.NAME, lead.funnel_type)
        return DeliveryAttempt(sink=sink.NAME, skipped=True)

    payload: dict = {}
    try:
        payload = sink.build_payload(lead, contact, context)
        response = await sink.send(client, lead, payload, timeout)
    except DeliveryError as e:
        logger.error("Delivery to %s failed for lead %s: %s", sink.NAME, lead.id, e.message)
        return DeliveryAttempt(
            sink=sink.NAME,
            http_status=e.http_status,
            error=e.message,
            payload=payload,
        )
    except Exception as e:
        logger.exception("Unexpected error delivering lead %s to %s", lead.id, sink.NAME)
        return DeliveryAttempt(sink=sink.NAME, error=f"{type(e).__name__}: {e}", payload=payload)

    logger.info("Lead %s sent to %s (HTTP %s)", lead.id, sink.NAME, response.status_code)
    return DeliveryAttempt(sink=sink.NAME, success=True, http_status=response.status_code, payload=payload)


async def _record_report(lead: Lead, report: DeliveryReport) -> None:
    """Store the outcome on the lead and in analytics_events. Failures here are only logged."""
    summary = report.summary()
    try:
        await store.update_lead_delivery_status(lead.id, summary)
        await store.insert_analytics_event({
            "event_name": "lead_delivery",
            "event_category": "lead_generation",
            "event_label": lead.funnel_type,
            "session_id": lead.session_id,
            "properties": {
                "lead_id": str(lead.id),
                **summary,
                "payloads": {a.sink: a.payload for a in report.attempts if not a.skipped},
            },
        })
    except Exception as e:
        logger.error("Failed to record delivery report for lead %s: %s", lead.id, e)
