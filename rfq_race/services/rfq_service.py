"""RFQ lifecycle — creation, edits, and the read models around the race.

race_opens_at is fixed at creation and never touched again:
  urgent   → now + min_race_delay_seconds
  standard → next day at default_broadcast_hour, UTC (per-supplier local
             windows are applied at broadcast time, not here)

Edits are allowed only while the RFQ is still Open (before broadcast).

Called by: routers/rfq.py, scheduler.py
Depends on: models, activity_service, config
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ERR_INVALID_STATE,
    ERR_NOT_FOUND,
    ERR_UNAUTHORIZED,
    ERR_VALIDATION,
    RESPONSIVE_STATUSES,
    RFQ_TYPES,
    STATUS_OPEN,
    URGENCIES,
    URGENCY_STANDARD,
    URGENCY_URGENT,
)
from ..models import Provider, Rfq, RfqBroadcast, RfqResponse
from ..utils import safe_float
from .activity_service import log_race_activity

log = logging.getLogger("rfq_race.rfq")

UPDATABLE_FIELDS = ("title", "specifications", "budget_min", "budget_max", "deadline", "category")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _error(message: str, code: str) -> dict:
    return {"success": False, "error": message, "code": code}


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def compute_race_opens_at(urgency: str, now: datetime) -> datetime:
    if urgency == URGENCY_URGENT:
        return now + timedelta(seconds=settings.min_race_delay_seconds)
    tomorrow = now.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime.combine(
        tomorrow, time(settings.default_broadcast_hour), tzinfo=timezone.utc
    )


def _validate_budget(budget_min, budget_max) -> str | None:
    lo, hi = safe_float(budget_min), safe_float(budget_max)
    if (lo is not None and lo < 0) or (hi is not None and hi < 0):
        return "Budget must not be negative"
    if lo is not None and hi is not None and lo > hi:
        return "budget_min must not exceed budget_max"
    return None


def create_rfq(db: Session, buyer_id: int, foundry_id: int, params: dict, now: datetime) -> dict:
    """Insert a new Open RFQ with its race opening time.

    params: title, rfq_type, specifications, budget_min, budget_max,
            deadline, category, urgency (default standard)
    Returns {"success", "rfq_id", "race_opens_at"}.
    """
    title = (params.get("title") or "").strip()
    if not title:
        return _error("Title is required", ERR_VALIDATION)

    rfq_type = params.get("rfq_type")
    if rfq_type not in RFQ_TYPES:
        return _error(f"Invalid rfq_type: {rfq_type}", ERR_VALIDATION)

    urgency = params.get("urgency") or URGENCY_STANDARD
    if urgency not in URGENCIES:
        return _error(f"Invalid urgency: {urgency}", ERR_VALIDATION)

    budget_error = _validate_budget(params.get("budget_min"), params.get("budget_max"))
    if budget_error:
        return _error(budget_error, ERR_VALIDATION)

    race_opens_at = compute_race_opens_at(urgency, now)
    rfq = Rfq(
        buyer_id=buyer_id,
        foundry_id=foundry_id,
        rfq_type=rfq_type,
        title=title,
        specifications=params.get("specifications") or {},
        budget_min=params.get("budget_min"),
        budget_max=params.get("budget_max"),
        deadline=params.get("deadline"),
        category=params.get("category") or None,
        urgency=urgency,
        status=STATUS_OPEN,
        race_opens_at=race_opens_at,
        created_at=now,
        updated_at=now,
    )
    db.add(rfq)
    db.flush()
    log_race_activity(db, rfq.id, "rfq_created", now, actor_id=buyer_id,
                      detail=f"{rfq_type}/{urgency}")
    db.commit()

    log.info(f"RFQ {rfq.id} created by buyer {buyer_id}: {rfq_type}, opens {race_opens_at.isoformat()}")
    return {"success": True, "rfq_id": rfq.id, "race_opens_at": race_opens_at.isoformat()}


def update_rfq(db: Session, rfq_id: int, buyer_id: int, updates: dict, now: datetime) -> dict:
    """Edit descriptive fields before broadcast. Only keys present in updates change."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)
    if rfq.buyer_id != buyer_id:
        return _error("Not authorized to update this RFQ", ERR_UNAUTHORIZED)
    if rfq.status != STATUS_OPEN:
        return _error("Cannot update RFQ after bidding has started", ERR_INVALID_STATE)

    changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
    if "title" in changes:
        changes["title"] = (changes["title"] or "").strip()
        if not changes["title"]:
            return _error("Title is required", ERR_VALIDATION)

    budget_error = _validate_budget(
        changes.get("budget_min", rfq.budget_min), changes.get("budget_max", rfq.budget_max)
    )
    if budget_error:
        return _error(budget_error, ERR_VALIDATION)

    if not changes:
        return {"success": True, "rfq_id": rfq_id, "updated": []}

    changes["updated_at"] = now
    updated = (
        db.query(Rfq)
        .filter(Rfq.id == rfq_id, Rfq.status == STATUS_OPEN)
        .update(changes, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        return _error("Cannot update RFQ after bidding has started", ERR_INVALID_STATE)

    fields = sorted(k for k in changes if k != "updated_at")
    log_race_activity(db, rfq_id, "rfq_updated", now, actor_id=buyer_id, detail=", ".join(fields))
    db.commit()
    db.refresh(rfq)
    return {"success": True, "rfq_id": rfq_id, "updated": fields}


# ═══════════════════════════════════════════════════════════════════════
#  READ MODELS
# ═══════════════════════════════════════════════════════════════════════


def rfq_to_dict(rfq: Rfq) -> dict:
    return {
        "id": rfq.id,
        "buyer_id": rfq.buyer_id,
        "foundry_id": rfq.foundry_id,
        "rfq_type": rfq.rfq_type,
        "title": rfq.title,
        "specifications": rfq.specifications or {},
        "budget_min": safe_float(rfq.budget_min),
        "budget_max": safe_float(rfq.budget_max),
        "deadline": _iso(rfq.deadline),
        "category": rfq.category,
        "urgency": rfq.urgency,
        "status": rfq.status,
        "race_opens_at": _iso(rfq.race_opens_at),
        "priority_holder_id": rfq.priority_holder_id,
        "priority_hold_expires_at": _iso(rfq.priority_hold_expires_at),
        "awarded_to": rfq.awarded_to,
        "created_at": _iso(rfq.created_at),
        "updated_at": _iso(rfq.updated_at),
    }


def _summary(rfq: Rfq, response_count: int) -> dict:
    return {
        "id": rfq.id,
        "title": rfq.title,
        "rfq_type": rfq.rfq_type,
        "status": rfq.status,
        "budget_min": safe_float(rfq.budget_min),
        "budget_max": safe_float(rfq.budget_max),
        "deadline": _iso(rfq.deadline),
        "category": rfq.category,
        "urgency": rfq.urgency,
        "created_at": _iso(rfq.created_at),
        "response_count": response_count,
    }


def get_rfq(db: Session, rfq_id: int, viewer_provider_id: int | None = None) -> dict:
    """Full RFQ detail: responses (with supplier name and tier) and broadcasts."""
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return _error("RFQ not found", ERR_NOT_FOUND)

    responses = (
        db.query(RfqResponse, Provider)
        .outerjoin(Provider, Provider.id == RfqResponse.provider_id)
        .filter(RfqResponse.rfq_id == rfq_id)
        .order_by(RfqResponse.responded_at, RfqResponse.id)
        .all()
    )
    broadcasts = (
        db.query(RfqBroadcast, Provider)
        .outerjoin(Provider, Provider.id == RfqBroadcast.provider_id)
        .filter(RfqBroadcast.rfq_id == rfq_id)
        .order_by(RfqBroadcast.scheduled_at, RfqBroadcast.id)
        .all()
    )

    data = rfq_to_dict(rfq)
    data["responses"] = [
        {
            "id": r.id,
            "provider_id": r.provider_id,
            "provider_name": p.name if p else None,
            "provider_tier": p.tier if p else None,
            "response_type": r.response_type,
            "quoted_price": safe_float(r.quoted_price),
            "message": r.message,
            "responded_at": _iso(r.responded_at),
        }
        for r, p in responses
    ]
    data["broadcasts"] = [
        {
            "provider_id": b.provider_id,
            "provider_timezone": p.timezone if p else None,
            "provider_tier": p.tier if p else None,
            "scheduled_at": _iso(b.scheduled_at),
            "delivered_at": _iso(b.delivered_at),
            "viewed_at": _iso(b.viewed_at),
        }
        for b, p in broadcasts
    ]
    data["response_count"] = len(responses)
    data["has_user_responded"] = viewer_provider_id is not None and any(
        r.provider_id == viewer_provider_id for r, _ in responses
    )
    return {"success": True, "rfq": data}


def _response_counts(db: Session, rfq_ids: list[int]) -> dict[int, int]:
    if not rfq_ids:
        return {}
    rows = (
        db.query(RfqResponse.rfq_id, func.count(RfqResponse.id))
        .filter(RfqResponse.rfq_id.in_(rfq_ids))
        .group_by(RfqResponse.rfq_id)
        .all()
    )
    return dict(rows)


def list_rfqs(
    db: Session,
    foundry_id: int,
    status: list[str] | None = None,
    rfq_type: list[str] | None = None,
    category: str | None = None,
    urgency: str | None = None,
    buyer_id: int | None = None,
    search: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> dict:
    """Foundry-scoped RFQ list, newest first. Returns {"rfqs", "total"}."""
    query = db.query(Rfq).filter(Rfq.foundry_id == foundry_id)
    if status:
        query = query.filter(Rfq.status.in_(status))
    if rfq_type:
        query = query.filter(Rfq.rfq_type.in_(rfq_type))
    if category:
        query = query.filter(Rfq.category == category)
    if urgency:
        query = query.filter(Rfq.urgency == urgency)
    if buyer_id is not None:
        query = query.filter(Rfq.buyer_id == buyer_id)
    if search and search.strip():
        query = query.filter(Rfq.title.ilike(f"%{search.strip()}%"))

    total = query.count()
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    rows = (
        query.order_by(Rfq.created_at.desc(), Rfq.id.desc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )
    counts = _response_counts(db, [r.id for r in rows])
    return {"rfqs": [_summary(r, counts.get(r.id, 0)) for r in rows], "total": total}


def get_available_rfqs_for_supplier(
    db: Session,
    provider_id: int,
    now: datetime,
    category: str | None = None,
    urgency: str | None = None,
) -> list[dict]:
    """RFQs delivered to this supplier that are still live and unanswered by them.

    A broadcast counts as delivered once its scheduled_at has passed, whether
    or not the delivery sweep has stamped delivered_at yet.
    """
    responded = db.query(RfqResponse.rfq_id).filter(RfqResponse.provider_id == provider_id)
    query = (
        db.query(Rfq, RfqBroadcast)
        .join(RfqBroadcast, RfqBroadcast.rfq_id == Rfq.id)
        .filter(
            RfqBroadcast.provider_id == provider_id,
            or_(RfqBroadcast.delivered_at.isnot(None), RfqBroadcast.scheduled_at <= now),
            Rfq.status.in_(RESPONSIVE_STATUSES),
            Rfq.id.notin_(responded),
        )
    )
    if category:
        query = query.filter(Rfq.category == category)
    if urgency:
        query = query.filter(Rfq.urgency == urgency)

    rows = query.order_by(Rfq.created_at.desc(), Rfq.id.desc()).all()
    counts = _response_counts(db, [r.id for r, _ in rows])
    feed = []
    for rfq, broadcast in rows:
        item = _summary(rfq, counts.get(rfq.id, 0))
        item["race_opens_at"] = _iso(rfq.race_opens_at)
        item["scheduled_at"] = _iso(broadcast.scheduled_at)
        item["viewed"] = broadcast.viewed_at is not None
        feed.append(item)
    return feed
