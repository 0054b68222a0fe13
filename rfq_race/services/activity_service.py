"""Race activity trail — audit rows for every RFQ state change.

Rows are added to the caller's session and commit with the state change
they describe, so the trail never records a transition that was rolled back.

Called by: services/race_service.py, services/rfq_service.py
Depends on: models (RaceActivity)
"""

from datetime import datetime

from sqlalchemy.orm import Session

from ..models import RaceActivity


def log_race_activity(
    db: Session,
    rfq_id: int,
    activity_type: str,
    now: datetime,
    actor_id: int | None = None,
    detail: str = "",
) -> RaceActivity:
    """Add (not commit) an activity row for an RFQ."""
    entry = RaceActivity(
        rfq_id=rfq_id,
        actor_id=actor_id,
        activity_type=activity_type,
        detail=detail or None,
        created_at=now,
    )
    db.add(entry)
    return entry


def get_rfq_activity(db: Session, rfq_id: int, limit: int = 200) -> list[dict]:
    rows = (
        db.query(RaceActivity)
        .filter(RaceActivity.rfq_id == rfq_id)
        .order_by(RaceActivity.created_at, RaceActivity.id)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": a.id,
            "activity_type": a.activity_type,
            "actor_id": a.actor_id,
            "detail": a.detail,
            "created_at": a.created_at.isoformat() if a.created_at else None,
        }
        for a in rows
    ]
