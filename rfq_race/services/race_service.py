"""RFQ race engine — broadcast, response admission, and winner resolution.

Lifecycle:
  Open ──broadcast──► Bidding
  Bidding ──commodity: first accept──► Awarded
  Bidding ──custom: first accept──► priority_hold
  priority_hold ──buyer awards──► Awarded
  priority_hold ──buyer releases──► Bidding
  Open/Bidding ──buyer closes──► Closed
  Open/Bidding/priority_hold ──buyer cancels──► cancelled

Only Open and Bidding admit supplier responses. Awarded, Closed and
cancelled are terminal.

Business Rules:
- One response per (rfq, supplier), whatever its type; the database
  unique constraint is the final arbiter when two requests race
- Accept is gated by race_opens_at and, for suppliers below the top
  fairness tier, by broadcast.scheduled_at + tier delay
- Decline and info requests are never tier-gated (they don't contend)
- Commodity: first accept wins the award outright
- Custom: first accept takes a priority hold the buyer must act on
- Service: accepts are recorded; only the buyer awards
- Winners are decided by a conditional UPDATE (rows affected == 1),
  never by counting rows and then branching
- priority_hold_expires_at is a soft deadline: nothing here expires it

Every operation takes an explicit `now` and returns a result dict:
  {"success": True, ...} or {"success": False, "error": str, "code": str}
A failed precondition writes nothing.

Called by: routers/rfq.py, scheduler.py
Depends on: models, timezone_scheduler, supplier_matching, activity_service
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ERR_DUPLICATE_RESPONSE,
    ERR_INVALID_STATE,
    ERR_NOT_FOUND,
    ERR_NOT_YET_OPEN,
    ERR_UNAUTHORIZED,
    ERR_VALIDATION,
    RACE_AWARDED,
    RACE_CANCELLED,
    RACE_CLOSED,
    RACE_OPEN,
    RACE_PRIORITY_HOLD,
    RACE_SCHEDULED,
    RESPONSE_ACCEPT,
    RESPONSE_DECLINE,
    RESPONSE_INFO_REQUEST,
    RESPONSIVE_STATUSES,
    CANCELLABLE_STATUSES,
    CLOSABLE_STATUSES,
    RFQ_COMMODITY,
    RFQ_CUSTOM,
    STATUS_AWARDED,
    STATUS_BIDDING,
    STATUS_CANCELLED,
    STATUS_CLOSED,
    STATUS_OPEN,
    STATUS_PRIORITY_HOLD,
    is_top_tier,
)
from ..models import Provider, Rfq, RfqBroadcast, RfqResponse
from ..utils import ensure_utc
from .activity_service import log_race_activity
from .supplier_matching import load_eligible_providers, rank_providers
from .timezone_scheduler import compute_broadcast_schedule, time_until_race_opens

log = logging.getLogger("rfq_race.race")

AWARDABLE_STATUSES = {STATUS_OPEN, STATUS_BIDDING, STATUS_PRIORITY_HOLD}


def _error(message: str, code: str, **extra) -> dict:
    return {"success": False, "error": message, "code": code, **extra}


def _existing_response(db: Session, rfq_id: int, provider_id: int) -> RfqResponse | None:
    return (
        db.query(RfqResponse)
        .filter(RfqResponse.rfq_id == rfq_id, RfqResponse.provider_id == provider_id)
        .first()
    )


# ═══════════════════════════════════════════════════════════════════════
#  BROADCAST
# ═══════════════════════════════════════════════════════════════════════


def broadcast_rfq(
    db: Session,
    rfq_id: int,
    now: datetime,
    use_matching: bool | None = None,
) -> dict:
    """Schedule delivery to every candidate supplier and open bidding.

    Candidates are all active, non-suspended suppliers, or the ranked
    matches when use_matching is on. No candidates is not an error.

    Returns {"success", "rfq_id", "broadcast_count"}.
    """
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)
    if rfq.status != STATUS_OPEN:
        return _error(f"RFQ is {rfq.status}, cannot broadcast", ERR_INVALID_STATE)

    if use_matching is None:
        use_matching = settings.broadcast_use_matching

    providers = load_eligible_providers(db)
    if use_matching:
        by_id = {p.id: p for p in providers}
        providers = [by_id[m["provider_id"]] for m in rank_providers(rfq, providers)]

    schedules = compute_broadcast_schedule(
        rfq.race_opens_at or now,
        rfq.urgency,
        [
            {"provider_id": p.id, "timezone": p.timezone or "UTC", "tier": p.tier}
            for p in providers
        ],
    )

    # Flip first: a concurrent broadcaster that lost the flip inserts nothing
    flipped = (
        db.query(Rfq)
        .filter(Rfq.id == rfq_id, Rfq.status == STATUS_OPEN)
        .update({"status": STATUS_BIDDING, "updated_at": now}, synchronize_session=False)
    )
    if flipped != 1:
        db.rollback()
        return _error("RFQ was already broadcast", ERR_INVALID_STATE)

    db.add_all(
        RfqBroadcast(
            rfq_id=rfq_id,
            provider_id=s["provider_id"],
            scheduled_at=s["scheduled_at"],
            created_at=now,
        )
        for s in schedules
    )
    log_race_activity(
        db, rfq_id, "rfq_broadcast", now,
        detail=f"{len(schedules)} suppliers, urgency={rfq.urgency}",
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _error("RFQ was already broadcast", ERR_INVALID_STATE)
    db.refresh(rfq)

    log.info(f"RFQ {rfq_id} broadcast to {len(schedules)} suppliers (matching={use_matching})")
    return {"success": True, "rfq_id": rfq_id, "broadcast_count": len(schedules)}


def preview_broadcast_schedule(db: Session, rfq_id: int, now: datetime) -> dict:
    """Schedule the broadcast would use (or did use), without writing anything."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    persisted = (
        db.query(RfqBroadcast)
        .filter(RfqBroadcast.rfq_id == rfq_id)
        .order_by(RfqBroadcast.scheduled_at, RfqBroadcast.id)
        .all()
    )
    if persisted:
        schedules = [
            {
                "provider_id": b.provider_id,
                "scheduled_at": b.scheduled_at,
                "delivered_at": b.delivered_at,
            }
            for b in persisted
        ]
        return {"success": True, "persisted": True, "schedules": schedules}

    providers = load_eligible_providers(db)
    schedules = compute_broadcast_schedule(
        rfq.race_opens_at or now,
        rfq.urgency,
        [
            {"provider_id": p.id, "timezone": p.timezone or "UTC", "tier": p.tier}
            for p in providers
        ],
    )
    return {"success": True, "persisted": False, "schedules": schedules}


# ═══════════════════════════════════════════════════════════════════════
#  SUPPLIER RESPONSES
# ═══════════════════════════════════════════════════════════════════════


def accept_rfq(
    db: Session,
    rfq_id: int,
    provider_id: int,
    now: datetime,
    quoted_price: float | None = None,
) -> dict:
    """Accept an RFQ — first click wins (commodity) or takes the hold (custom).

    Returns {"success", "awarded", "priority_hold", "response_id"}.
    """
    if quoted_price is not None and quoted_price < 0:
        return _error("Quoted price must not be negative", ERR_VALIDATION)

    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    if rfq.status not in RESPONSIVE_STATUSES:
        return _error(f"RFQ is {rfq.status}, cannot accept", ERR_INVALID_STATE)

    if rfq.race_opens_at and ensure_utc(rfq.race_opens_at) > now:
        return _error("Race has not started yet", ERR_NOT_YET_OPEN)

    if _existing_response(db, rfq_id, provider_id):
        return _error("Already responded to this RFQ", ERR_DUPLICATE_RESPONSE)

    provider = db.get(Provider, provider_id)
    if not provider:
        return _error("Supplier not found", ERR_NOT_FOUND)

    broadcast = (
        db.query(RfqBroadcast)
        .filter(RfqBroadcast.rfq_id == rfq_id, RfqBroadcast.provider_id == provider_id)
        .first()
    )

    if broadcast and not is_top_tier(provider.tier):
        delay_until = ensure_utc(broadcast.scheduled_at) + timedelta(
            seconds=settings.tier_delay_seconds
        )
        if now < delay_until:
            wait = math.ceil((delay_until - now).total_seconds())
            return _error(
                f"Please wait {wait} more seconds (tier delay)",
                ERR_NOT_YET_OPEN,
                retry_after=wait,
            )

    if broadcast:
        if broadcast.delivered_at is None:
            broadcast.delivered_at = now
        if broadcast.viewed_at is None:
            broadcast.viewed_at = now

    response = RfqResponse(
        rfq_id=rfq_id,
        provider_id=provider_id,
        response_type=RESPONSE_ACCEPT,
        quoted_price=quoted_price,
        responded_at=now,
    )
    db.add(response)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return _error("Already responded to this RFQ", ERR_DUPLICATE_RESPONSE)

    awarded, priority_hold = _resolve_accept(db, rfq, provider_id, now)

    log_race_activity(
        db, rfq_id, "response_accept", now, actor_id=provider_id,
        detail=f"quoted_price={quoted_price}" if quoted_price is not None else "",
    )
    if awarded:
        log_race_activity(db, rfq_id, "rfq_awarded", now, actor_id=provider_id,
                          detail="first accept on commodity RFQ")
    if priority_hold:
        log_race_activity(db, rfq_id, "priority_hold_granted", now, actor_id=provider_id)
    db.commit()
    if awarded or priority_hold:
        db.refresh(rfq)

    log.info(
        f"Accept: rfq={rfq_id} supplier={provider_id} type={rfq.rfq_type} "
        f"awarded={awarded} hold={priority_hold}"
    )
    return {
        "success": True,
        "awarded": awarded,
        "priority_hold": priority_hold,
        "response_id": response.id,
    }


def _resolve_accept(db: Session, rfq: Rfq, provider_id: int, now: datetime) -> tuple[bool, bool]:
    """Apply the type-specific winner rule. Returns (awarded, priority_hold).

    The guarded UPDATE only matches while nobody holds or has won the RFQ,
    so of any number of concurrent accepts exactly one sees rowcount == 1.
    """
    if rfq.rfq_type == RFQ_COMMODITY:
        won = (
            db.query(Rfq)
            .filter(
                Rfq.id == rfq.id,
                Rfq.status.in_(RESPONSIVE_STATUSES),
                Rfq.awarded_to.is_(None),
            )
            .update(
                {"status": STATUS_AWARDED, "awarded_to": provider_id, "updated_at": now},
                synchronize_session=False,
            )
        )
        return won == 1, False

    if rfq.rfq_type == RFQ_CUSTOM:
        expires = now + timedelta(seconds=settings.priority_hold_seconds)
        held = (
            db.query(Rfq)
            .filter(
                Rfq.id == rfq.id,
                Rfq.status.in_(RESPONSIVE_STATUSES),
                Rfq.priority_holder_id.is_(None),
            )
            .update(
                {
                    "status": STATUS_PRIORITY_HOLD,
                    "priority_holder_id": provider_id,
                    "priority_hold_expires_at": expires,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        return False, held == 1

    return False, False


def _submit_passive_response(
    db: Session,
    rfq_id: int,
    provider_id: int,
    response_type: str,
    message: str | None,
    now: datetime,
    verb: str,
) -> dict:
    """Decline / info request: single-response rule only, no tier gate."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    if rfq.status not in RESPONSIVE_STATUSES:
        return _error(f"RFQ is {rfq.status}, cannot {verb}", ERR_INVALID_STATE)

    if _existing_response(db, rfq_id, provider_id):
        return _error("Already responded to this RFQ", ERR_DUPLICATE_RESPONSE)

    if not db.get(Provider, provider_id):
        return _error("Supplier not found", ERR_NOT_FOUND)

    response = RfqResponse(
        rfq_id=rfq_id,
        provider_id=provider_id,
        response_type=response_type,
        message=message or None,
        responded_at=now,
    )
    db.add(response)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return _error("Already responded to this RFQ", ERR_DUPLICATE_RESPONSE)

    log_race_activity(db, rfq_id, f"response_{response_type}", now, actor_id=provider_id)
    db.commit()
    log.info(f"{response_type}: rfq={rfq_id} supplier={provider_id}")
    return {"success": True, "response_id": response.id}


def decline_rfq(
    db: Session,
    rfq_id: int,
    provider_id: int,
    now: datetime,
    reason: str | None = None,
) -> dict:
    return _submit_passive_response(
        db, rfq_id, provider_id, RESPONSE_DECLINE, reason, now, "decline"
    )


def request_more_info(
    db: Session,
    rfq_id: int,
    provider_id: int,
    questions: str,
    now: datetime,
) -> dict:
    if not questions or not questions.strip():
        return _error("Questions are required", ERR_VALIDATION)
    return _submit_passive_response(
        db, rfq_id, provider_id, RESPONSE_INFO_REQUEST, questions.strip(), now, "request info"
    )


# ═══════════════════════════════════════════════════════════════════════
#  BUYER ACTIONS
# ═══════════════════════════════════════════════════════════════════════


def award_rfq(
    db: Session,
    rfq_id: int,
    provider_id: int,
    buyer_id: int,
    now: datetime,
) -> dict:
    """Award to a supplier who accepted. Clears any priority hold."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    if rfq.buyer_id != buyer_id:
        return _error("Not authorized to award this RFQ", ERR_UNAUTHORIZED)

    if rfq.status == STATUS_AWARDED:
        return _error("RFQ already awarded", ERR_INVALID_STATE)

    if rfq.status in (STATUS_CANCELLED, STATUS_CLOSED):
        return _error(f"Cannot award {rfq.status} RFQ", ERR_INVALID_STATE)

    response = _existing_response(db, rfq_id, provider_id)
    if not response or response.response_type != RESPONSE_ACCEPT:
        return _error("Provider has not accepted this RFQ", ERR_INVALID_STATE)

    updated = (
        db.query(Rfq)
        .filter(Rfq.id == rfq_id, Rfq.status.in_(AWARDABLE_STATUSES))
        .update(
            {
                "status": STATUS_AWARDED,
                "awarded_to": provider_id,
                "priority_holder_id": None,
                "priority_hold_expires_at": None,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        db.refresh(rfq)
        return _error(f"RFQ is {rfq.status}, cannot award", ERR_INVALID_STATE)

    log_race_activity(db, rfq_id, "rfq_awarded", now, actor_id=buyer_id,
                      detail=f"awarded_to={provider_id}")
    db.commit()
    db.refresh(rfq)
    log.info(f"RFQ {rfq_id} awarded to supplier {provider_id} by buyer {buyer_id}")
    return {"success": True, "awarded_to": provider_id}


def release_priority_hold(db: Session, rfq_id: int, buyer_id: int, now: datetime) -> dict:
    """Return a held RFQ to Bidding so the race continues."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    if rfq.buyer_id != buyer_id:
        return _error("Not authorized", ERR_UNAUTHORIZED)

    if rfq.status != STATUS_PRIORITY_HOLD:
        return _error("RFQ is not in priority hold status", ERR_INVALID_STATE)

    released_holder = rfq.priority_holder_id
    updated = (
        db.query(Rfq)
        .filter(Rfq.id == rfq_id, Rfq.status == STATUS_PRIORITY_HOLD)
        .update(
            {
                "status": STATUS_BIDDING,
                "priority_holder_id": None,
                "priority_hold_expires_at": None,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        return _error("RFQ is not in priority hold status", ERR_INVALID_STATE)

    log_race_activity(db, rfq_id, "priority_hold_released", now, actor_id=buyer_id,
                      detail=f"released_holder={released_holder}")
    db.commit()
    db.refresh(rfq)
    log.info(f"RFQ {rfq_id} priority hold released (holder was {released_holder})")
    return {"success": True}


def _buyer_transition(
    db: Session,
    rfq_id: int,
    buyer_id: int,
    now: datetime,
    allowed: set,
    target: str,
    verb: str,
    activity_type: str,
    detail: str = "",
) -> dict:
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    if rfq.buyer_id != buyer_id:
        return _error(f"Not authorized to {verb} this RFQ", ERR_UNAUTHORIZED)

    if rfq.status not in allowed:
        return _error(f"Cannot {verb} RFQ in {rfq.status} status", ERR_INVALID_STATE)

    updated = (
        db.query(Rfq)
        .filter(Rfq.id == rfq_id, Rfq.status.in_(allowed))
        .update({"status": target, "updated_at": now}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        db.refresh(rfq)
        return _error(f"Cannot {verb} RFQ in {rfq.status} status", ERR_INVALID_STATE)

    log_race_activity(db, rfq_id, activity_type, now, actor_id=buyer_id, detail=detail)
    db.commit()
    db.refresh(rfq)
    log.info(f"RFQ {rfq_id} → {target} by buyer {buyer_id}")
    return {"success": True, "status": target}


def close_rfq(db: Session, rfq_id: int, buyer_id: int, now: datetime) -> dict:
    """Stop accepting responses. Open/Bidding only."""
    return _buyer_transition(
        db, rfq_id, buyer_id, now, CLOSABLE_STATUSES, STATUS_CLOSED, "close", "rfq_closed"
    )


def cancel_rfq(
    db: Session,
    rfq_id: int,
    buyer_id: int,
    now: datetime,
    reason: str | None = None,
) -> dict:
    """Cancel an RFQ that has not been awarded or closed."""
    return _buyer_transition(
        db, rfq_id, buyer_id, now, CANCELLABLE_STATUSES, STATUS_CANCELLED, "cancel",
        "rfq_cancelled", detail=reason or "",
    )


# ═══════════════════════════════════════════════════════════════════════
#  READ SIDE
# ═══════════════════════════════════════════════════════════════════════


def _race_label(rfq: Rfq, now: datetime) -> str:
    if rfq.status == STATUS_CANCELLED:
        return RACE_CANCELLED
    if rfq.status == STATUS_AWARDED:
        return RACE_AWARDED
    if rfq.status == STATUS_CLOSED:
        return RACE_CLOSED
    if rfq.status == STATUS_PRIORITY_HOLD:
        return RACE_PRIORITY_HOLD
    if rfq.race_opens_at is None or ensure_utc(rfq.race_opens_at) <= now:
        return RACE_OPEN
    return RACE_SCHEDULED


def check_race_status(db: Session, rfq_id: int, now: datetime) -> dict:
    """Read-only race projection for buyer and supplier views.

    An expired hold is reported (hold_expired) but stays buyer-actionable.
    """
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    counts = dict(
        db.query(RfqResponse.response_type, func.count(RfqResponse.id))
        .filter(RfqResponse.rfq_id == rfq_id)
        .group_by(RfqResponse.response_type)
        .all()
    )

    holder = None
    if rfq.priority_holder_id:
        holder = {
            "id": rfq.priority_holder_id,
            "name": rfq.priority_holder.name if rfq.priority_holder else None,
        }

    winner = None
    if rfq.awarded_to:
        winning = _existing_response(db, rfq_id, rfq.awarded_to)
        winner = {
            "id": rfq.awarded_to,
            "name": rfq.winner.name if rfq.winner else None,
            "quoted_price": (
                float(winning.quoted_price)
                if winning and winning.quoted_price is not None
                else None
            ),
        }

    expires = ensure_utc(rfq.priority_hold_expires_at)
    opening = time_until_race_opens(rfq.race_opens_at, now)
    return {
        "success": True,
        "rfq_id": rfq.id,
        "status": _race_label(rfq, now),
        "rfq_status": rfq.status,
        "race_opens_at": rfq.race_opens_at.isoformat() if rfq.race_opens_at else None,
        "time_until_open_ms": opening["time_until_open_ms"],
        "time_until_open": opening["formatted_time"],
        "priority_holder": holder,
        "priority_hold_expires_at": expires.isoformat() if expires else None,
        "hold_expired": bool(
            rfq.status == STATUS_PRIORITY_HOLD and expires is not None and expires <= now
        ),
        "winner": winner,
        "total_responses": sum(counts.values()),
        "accept_count": counts.get(RESPONSE_ACCEPT, 0),
    }


def mark_rfq_viewed(db: Session, rfq_id: int, provider_id: int, now: datetime) -> dict:
    """Stamp the supplier's broadcast as viewed (and delivered, if it wasn't)."""
    broadcast = (
        db.query(RfqBroadcast)
        .filter(RfqBroadcast.rfq_id == rfq_id, RfqBroadcast.provider_id == provider_id)
        .first()
    )
    if not broadcast:
        return _error("RFQ was not broadcast to this supplier", ERR_NOT_FOUND)
    if broadcast.viewed_at is None:
        broadcast.viewed_at = now
        if broadcast.delivered_at is None:
            broadcast.delivered_at = now
        db.commit()
    return {"success": True}


# ═══════════════════════════════════════════════════════════════════════
#  SWEEPS (invoked by scheduler.py, never implicitly)
# ═══════════════════════════════════════════════════════════════════════


def deliver_due_broadcasts(db: Session, now: datetime) -> int:
    """Mark broadcasts whose scheduled time has passed as delivered."""
    delivered = (
        db.query(RfqBroadcast)
        .filter(RfqBroadcast.delivered_at.is_(None), RfqBroadcast.scheduled_at <= now)
        .update({"delivered_at": now}, synchronize_session=False)
    )
    db.commit()
    if delivered:
        log.info(f"Delivered {delivered} scheduled broadcasts")
    return delivered


def release_expired_holds(db: Session, now: datetime) -> int:
    """Release every hold past its expiry, on the owning buyer's behalf.

    Only runs when the operator opts in (auto_release_expired_holds).
    """
    expired = (
        db.query(Rfq)
        .filter(
            Rfq.status == STATUS_PRIORITY_HOLD,
            Rfq.priority_hold_expires_at.isnot(None),
            Rfq.priority_hold_expires_at <= now,
        )
        .all()
    )
    released = 0
    for rfq in expired:
        result = release_priority_hold(db, rfq.id, rfq.buyer_id, now)
        if result["success"]:
            released += 1
    if released:
        log.info(f"Released {released} expired priority holds")
    return released
