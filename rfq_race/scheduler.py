"""
scheduler.py — Background race tick

Each tick:
  1. Broadcast Open RFQs with no broadcast rows once their race_opens_at
     has arrived (held-back RFQs stay editable until then)
  2. Mark broadcasts whose scheduled_at has passed as delivered
  3. Release expired priority holds (only with auto_release_expired_holds)

Each job is isolated: a failing job is logged and rolled back, the rest
of the tick still runs. The tick owns its own session.

Called by: main.py lifespan (when scheduler_enabled)
Depends on: race_service, notify_service, database
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .constants import STATUS_OPEN
from .models import Rfq, RfqBroadcast
from .services import race_service
from .services.notify_service import EVENT_BROADCAST, broadcast_event, send_race_event
from .utils import utc_now

log = logging.getLogger("rfq_race.scheduler")


def broadcast_due_rfqs(db: Session, now: datetime) -> list[dict]:
    """Broadcast Open RFQs that were created without an immediate broadcast
    and whose race_opens_at has arrived.

    Schedules depend only on race_opens_at, so broadcasting at that instant
    gives suppliers the same delivery times as broadcasting at creation.

    Returns notify payloads for the RFQs that were broadcast.
    """
    has_broadcast = db.query(RfqBroadcast.rfq_id).distinct()
    pending = (
        db.query(Rfq.id)
        .filter(
            Rfq.status == STATUS_OPEN,
            Rfq.race_opens_at <= now,
            Rfq.id.notin_(has_broadcast),
        )
        .order_by(Rfq.created_at, Rfq.id)
        .all()
    )
    events = []
    for (rfq_id,) in pending:
        result = race_service.broadcast_rfq(db, rfq_id, now)
        if not result["success"]:
            log.warning(f"Scheduled broadcast of RFQ {rfq_id} skipped: {result['error']}")
            continue
        events.append(broadcast_event(db.get(Rfq, rfq_id), result["broadcast_count"]))
    if events:
        log.info(f"Scheduler broadcast {len(events)} RFQ(s)")
    return events


async def start_scheduler(session_factory=None):
    """Launch the background tick loop. Call once on app startup."""
    if session_factory is None:
        from .database import SessionLocal

        session_factory = SessionLocal

    log.info(f"Race scheduler started — tick every {settings.scheduler_tick_seconds}s")
    while True:
        try:
            await scheduler_tick(session_factory)
        except SQLAlchemyError as e:
            log.error(f"Scheduler tick error: {e}")
        await asyncio.sleep(settings.scheduler_tick_seconds)


async def scheduler_tick(session_factory, now: datetime | None = None) -> dict:
    """Run one tick. Returns counts per job."""
    now = now or utc_now()
    stats = {"broadcast": 0, "delivered": 0, "released": 0}
    db = session_factory()
    try:
        try:
            events = broadcast_due_rfqs(db, now)
            stats["broadcast"] = len(events)
            for data in events:
                await send_race_event(EVENT_BROADCAST, data)
        except SQLAlchemyError as e:
            log.error(f"Scheduled broadcast error: {e}")
            db.rollback()

        try:
            stats["delivered"] = race_service.deliver_due_broadcasts(db, now)
        except SQLAlchemyError as e:
            log.error(f"Broadcast delivery error: {e}")
            db.rollback()

        if settings.auto_release_expired_holds:
            try:
                stats["released"] = race_service.release_expired_holds(db, now)
            except SQLAlchemyError as e:
                log.error(f"Hold release error: {e}")
                db.rollback()
    finally:
        db.close()
    return stats
