"""Race event hand-off to the external notification collaborator.

Events are posted only after the state they describe is committed:
  - rfq.broadcast      → broadcast rows exist, RFQ is Bidding
  - rfq.awarded        → awarded_to is set
  - rfq.priority_hold  → priority holder and expiry are set

Delivery is best-effort: a failed POST is logged, never raised, and never
rolls back race state. Channel fan-out (email, SMS, in-app) is the
collaborator's job.

Usage:
    asyncio.create_task(send_race_event("rfq.awarded", award_event(rfq)))

Called by: routers/rfq.py, scheduler.py
Depends on: http_client, config
"""

import logging

import httpx

from ..config import settings
from ..http_client import http
from ..models import Rfq

log = logging.getLogger("rfq_race.notify")

EVENT_BROADCAST = "rfq.broadcast"
EVENT_AWARDED = "rfq.awarded"
EVENT_PRIORITY_HOLD = "rfq.priority_hold"


async def send_race_event(event: str, data: dict) -> bool:
    """POST {"event", "data"} to the notify webhook. Returns True on 2xx."""
    if not settings.notify_webhook_url:
        log.debug(f"Notify webhook not configured — skipping {event}")
        return False
    try:
        resp = await http.post(
            settings.notify_webhook_url,
            json={"event": event, "data": data},
            timeout=settings.notify_timeout_seconds,
        )
    except httpx.HTTPError as e:
        log.error(f"Race event {event} delivery failed: {e}")
        return False

    if resp.status_code not in (200, 201, 202, 204):
        log.warning(f"Notify webhook returned {resp.status_code} for {event}: {resp.text[:200]}")
        return False
    log.info(f"Race event {event} delivered for RFQ {data.get('rfq_id')}")
    return True


def broadcast_event(rfq: Rfq, broadcast_count: int) -> dict:
    return {
        "rfq_id": rfq.id,
        "buyer_id": rfq.buyer_id,
        "title": rfq.title,
        "urgency": rfq.urgency,
        "broadcast_count": broadcast_count,
    }


def award_event(rfq: Rfq) -> dict:
    return {
        "rfq_id": rfq.id,
        "buyer_id": rfq.buyer_id,
        "title": rfq.title,
        "awarded_to": rfq.awarded_to,
    }


def priority_hold_event(rfq: Rfq) -> dict:
    return {
        "rfq_id": rfq.id,
        "buyer_id": rfq.buyer_id,
        "title": rfq.title,
        "priority_holder_id": rfq.priority_holder_id,
        "priority_hold_expires_at": (
            rfq.priority_hold_expires_at.isoformat() if rfq.priority_hold_expires_at else None
        ),
    }
