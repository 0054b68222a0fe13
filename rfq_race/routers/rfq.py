"""
rfq.py — RFQ Race Router

Buyer endpoints (create, edit, broadcast, award, release, close, cancel),
supplier endpoints (accept, decline, info request, viewed, feed), and the
read side (detail, list, race status, matches, schedule, activity).

Business Rules:
- Routers stay thin: every decision lives in race_service / rfq_service
- Service error codes map to HTTP once, in _raise_for
- Race events are handed to notify_service only after the service committed
- Accept is rate-limited per supplier on top of the default limit

Called by: main.py (router mount)
Depends on: race_service, rfq_service, supplier_matching, notify_service
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ERR_DUPLICATE_RESPONSE,
    ERR_INVALID_STATE,
    ERR_NOT_FOUND,
    ERR_NOT_YET_OPEN,
    ERR_UNAUTHORIZED,
    ERR_VALIDATION,
)
from ..database import get_db
from ..dependencies import (
    get_clock,
    optional_supplier_id,
    require_buyer_id,
    require_foundry_id,
    require_supplier_id,
)
from ..models import Rfq
from ..rate_limit import actor_key, limiter
from ..schemas.rfq import (
    AcceptRequest,
    AwardRequest,
    CancelRequest,
    DeclineRequest,
    InfoRequest,
    RfqCreate,
    RfqUpdate,
)
from ..services import race_service, rfq_service
from ..services.activity_service import get_rfq_activity
from ..services.notify_service import (
    EVENT_AWARDED,
    EVENT_BROADCAST,
    EVENT_PRIORITY_HOLD,
    award_event,
    broadcast_event,
    priority_hold_event,
    send_race_event,
)
from ..services.supplier_matching import match_suppliers_to_rfq

router = APIRouter(tags=["rfq"])

STATUS_FOR_CODE = {
    ERR_NOT_FOUND: 404,
    ERR_INVALID_STATE: 409,
    ERR_UNAUTHORIZED: 403,
    ERR_DUPLICATE_RESPONSE: 409,
    ERR_NOT_YET_OPEN: 425,
    ERR_VALIDATION: 422,
}


class RaceHTTPException(HTTPException):
    """HTTPException that remembers the service error code."""

    def __init__(self, status_code: int, detail: str, code: str, headers: dict | None = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code


def _raise_for(result: dict) -> dict:
    """Pass a successful service result through; raise on failure."""
    if result.get("success"):
        return result
    code = result.get("code", ERR_VALIDATION)
    headers = None
    if result.get("retry_after") is not None:
        headers = {"Retry-After": str(result["retry_after"])}
    raise RaceHTTPException(STATUS_FOR_CODE.get(code, 400), result["error"], code, headers)


def _load_owned(db: Session, rfq_id: int, buyer_id: int) -> Rfq:
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        raise RaceHTTPException(404, "RFQ not found", ERR_NOT_FOUND)
    if rfq.buyer_id != buyer_id:
        raise RaceHTTPException(403, "Not authorized", ERR_UNAUTHORIZED)
    return rfq


def _notify(event: str, data: dict) -> None:
    asyncio.create_task(send_race_event(event, data))


# ── Buyer: create / edit / list ─────────────────────────────────────────


@router.post("/api/rfqs", status_code=201)
async def create_rfq(
    payload: RfqCreate,
    buyer_id: int = Depends(require_buyer_id),
    foundry_id: int = Depends(require_foundry_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    now = clock()
    params = payload.model_dump(exclude={"broadcast"})
    created = _raise_for(rfq_service.create_rfq(db, buyer_id, foundry_id, params, now))

    broadcast_count = None
    if payload.broadcast:
        result = _raise_for(race_service.broadcast_rfq(db, created["rfq_id"], now))
        broadcast_count = result["broadcast_count"]
        _notify(EVENT_BROADCAST, broadcast_event(db.get(Rfq, created["rfq_id"]), broadcast_count))

    return {
        "ok": True,
        "rfq_id": created["rfq_id"],
        "race_opens_at": created["race_opens_at"],
        "broadcast_count": broadcast_count,
    }


@router.get("/api/rfqs")
async def list_rfqs(
    status: list[str] | None = Query(default=None),
    rfq_type: list[str] | None = Query(default=None),
    category: str | None = None,
    urgency: str | None = None,
    search: str | None = None,
    mine: bool = False,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    buyer_id: int = Depends(require_buyer_id),
    foundry_id: int = Depends(require_foundry_id),
    db: Session = Depends(get_db),
):
    return rfq_service.list_rfqs(
        db,
        foundry_id,
        status=status,
        rfq_type=rfq_type,
        category=category,
        urgency=urgency,
        buyer_id=buyer_id if mine else None,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/api/rfqs/{rfq_id}")
async def get_rfq(
    rfq_id: int,
    supplier_id: int | None = Depends(optional_supplier_id),
    db: Session = Depends(get_db),
):
    return _raise_for(rfq_service.get_rfq(db, rfq_id, viewer_provider_id=supplier_id))["rfq"]


@router.patch("/api/rfqs/{rfq_id}")
async def update_rfq(
    rfq_id: int,
    payload: RfqUpdate,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    result = _raise_for(rfq_service.update_rfq(db, rfq_id, buyer_id, updates, clock()))
    return {"ok": True, "updated": result["updated"]}


@router.post("/api/rfqs/{rfq_id}/broadcast")
async def broadcast_rfq(
    rfq_id: int,
    use_matching: bool | None = None,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    rfq = _load_owned(db, rfq_id, buyer_id)
    result = _raise_for(race_service.broadcast_rfq(db, rfq_id, clock(), use_matching=use_matching))
    _notify(EVENT_BROADCAST, broadcast_event(rfq, result["broadcast_count"]))
    return {"ok": True, "broadcast_count": result["broadcast_count"]}


# ── Supplier responses ──────────────────────────────────────────────────


@router.post("/api/rfqs/{rfq_id}/accept")
@limiter.limit(settings.rate_limit_accept, key_func=actor_key)
async def accept_rfq(
    request: Request,
    rfq_id: int,
    payload: AcceptRequest | None = None,
    supplier_id: int = Depends(require_supplier_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    quoted_price = payload.quoted_price if payload else None
    result = _raise_for(
        race_service.accept_rfq(db, rfq_id, supplier_id, clock(), quoted_price=quoted_price)
    )
    if result["awarded"]:
        _notify(EVENT_AWARDED, award_event(db.get(Rfq, rfq_id)))
    elif result["priority_hold"]:
        _notify(EVENT_PRIORITY_HOLD, priority_hold_event(db.get(Rfq, rfq_id)))
    return {
        "ok": True,
        "awarded": result["awarded"],
        "priority_hold": result["priority_hold"],
        "response_id": result["response_id"],
    }


@router.post("/api/rfqs/{rfq_id}/decline")
async def decline_rfq(
    rfq_id: int,
    payload: DeclineRequest | None = None,
    supplier_id: int = Depends(require_supplier_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    result = _raise_for(race_service.decline_rfq(db, rfq_id, supplier_id, clock(), reason=reason))
    return {"ok": True, "response_id": result["response_id"]}


@router.post("/api/rfqs/{rfq_id}/info-request")
async def request_more_info(
    rfq_id: int,
    payload: InfoRequest,
    supplier_id: int = Depends(require_supplier_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    result = _raise_for(
        race_service.request_more_info(db, rfq_id, supplier_id, payload.questions, clock())
    )
    return {"ok": True, "response_id": result["response_id"]}


@router.post("/api/rfqs/{rfq_id}/viewed")
async def mark_viewed(
    rfq_id: int,
    supplier_id: int = Depends(require_supplier_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    _raise_for(race_service.mark_rfq_viewed(db, rfq_id, supplier_id, clock()))
    return {"ok": True}


@router.get("/api/suppliers/me/rfqs")
async def supplier_feed(
    category: str | None = None,
    urgency: str | None = None,
    supplier_id: int = Depends(require_supplier_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    return {
        "rfqs": rfq_service.get_available_rfqs_for_supplier(
            db, supplier_id, clock(), category=category, urgency=urgency
        )
    }


# ── Buyer actions ───────────────────────────────────────────────────────


@router.post("/api/rfqs/{rfq_id}/award")
async def award_rfq(
    rfq_id: int,
    payload: AwardRequest,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    result = _raise_for(race_service.award_rfq(db, rfq_id, payload.provider_id, buyer_id, clock()))
    _notify(EVENT_AWARDED, award_event(db.get(Rfq, rfq_id)))
    return {"ok": True, "awarded_to": result["awarded_to"]}


@router.post("/api/rfqs/{rfq_id}/release-hold")
async def release_hold(
    rfq_id: int,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    _raise_for(race_service.release_priority_hold(db, rfq_id, buyer_id, clock()))
    return {"ok": True}


@router.post("/api/rfqs/{rfq_id}/close")
async def close_rfq(
    rfq_id: int,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    result = _raise_for(race_service.close_rfq(db, rfq_id, buyer_id, clock()))
    return {"ok": True, "status": result["status"]}


@router.post("/api/rfqs/{rfq_id}/cancel")
async def cancel_rfq(
    rfq_id: int,
    payload: CancelRequest | None = None,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    result = _raise_for(race_service.cancel_rfq(db, rfq_id, buyer_id, clock(), reason=reason))
    return {"ok": True, "status": result["status"]}


# ── Read side ───────────────────────────────────────────────────────────


@router.get("/api/rfqs/{rfq_id}/race-status")
async def race_status(
    rfq_id: int,
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    result = _raise_for(race_service.check_race_status(db, rfq_id, clock()))
    result.pop("success")
    return result


@router.get("/api/rfqs/{rfq_id}/matches")
async def rfq_matches(
    rfq_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    buyer_id: int = Depends(require_buyer_id),
    db: Session = Depends(get_db),
):
    _load_owned(db, rfq_id, buyer_id)
    result = _raise_for(match_suppliers_to_rfq(db, rfq_id))
    return {"matches": result["matches"][:limit], "total": len(result["matches"])}


@router.get("/api/rfqs/{rfq_id}/schedule")
async def rfq_schedule(
    rfq_id: int,
    buyer_id: int = Depends(require_buyer_id),
    clock: Callable[[], datetime] = Depends(get_clock),
    db: Session = Depends(get_db),
):
    _load_owned(db, rfq_id, buyer_id)
    result = _raise_for(race_service.preview_broadcast_schedule(db, rfq_id, clock()))
    return {
        "persisted": result["persisted"],
        "schedules": [
            {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in s.items()}
            for s in result["schedules"]
        ],
    }


@router.get("/api/rfqs/{rfq_id}/activity")
async def rfq_activity(
    rfq_id: int,
    buyer_id: int = Depends(require_buyer_id),
    db: Session = Depends(get_db),
):
    _load_owned(db, rfq_id, buyer_id)
    return {"activity": get_rfq_activity(db, rfq_id)}
