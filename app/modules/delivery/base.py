"""
Base interface for delivery sinks (CRM webhook, ad-platform CAPI, analytics).
Every sink module conforms to DeliverySink; the fan-out only works with the
normalized types below and never touches sink-specific payload shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from app.models.contact import Contact
from app.models.lead import Lead
from app.modules.leads.errors import DeliveryError


@dataclass
class DeliveryContext:
    """Request-scoped data some sinks need (ad platforms match on IP, UA and cookies)."""
    ip_address: str | None = None
    user_agent: str | None = None
    fbp: str | None = None  # _fbp cookie
    fbc: str | None = None  # _fbc cookie
    event_source_url: str | None = None


@dataclass
class DeliveryAttempt:
    sink: str
    success: bool = False
    skipped: bool = False
    http_status: int | None = None
    error: str | None = None
    payload: dict = field(default_factory=dict)


@dataclass
class DeliveryReport:
    lead_id: str
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed(self) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if not a.success and not a.skipped]

    @property
    def delivered(self) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.success]

    def attempt_for(self, sink: str) -> DeliveryAttempt | None:
        return next((a for a in self.attempts if a.sink == sink), None)

    def summary(self) -> dict:
        """Per-sink outcome without payloads, as stored on the lead."""
        return {
            "timestamp": self.finished_at.isoformat(),
            "sinks": {
                a.sink: {
                    "success": a.success,
                    "skipped": a.skipped,
                    "status": a.http_status,
                    "error": a.error,
                }
                for a in self.attempts
            },
        }


class DeliverySink(Protocol):
    """Interface that every sink module implements."""

    NAME: str

    def is_configured(self, lead: Lead) -> bool:
        """False when the sink has no endpoint/credentials for this lead's funnel."""
        ...

    def build_payload(self, lead: Lead, contact: Contact, context: DeliveryContext) -> dict[str, Any]:
        ...

    async def send(self, client: httpx.AsyncClient, lead: Lead, payload: dict[str, Any], timeout: httpx.Timeout) -> httpx.Response:
        """POST the payload once. Raises DeliveryError on timeout, network error or non-2xx."""
        ...


async def post_json(
    client: httpx.AsyncClient,
    sink: str,
    url: str,
    payload: dict,
    timeout: httpx.Timeout,
    params: dict | None = None,
) -> httpx.Response:
    try:
        response = await client.post(url, json=payload, params=params, timeout=timeout)
    except httpx.TimeoutException as e:
        raise DeliveryError(sink, f"timeout ({type(e).__name__})") from e
    except httpx.HTTPError as e:
        raise DeliveryError(sink, f"network error: {e}") from e

    if not response.is_success:
        raise DeliveryError(
            sink,
            f"HTTP {response.status_code}: {response.text[:200]}",
            http_status=response.status_code,
        )
    return response
