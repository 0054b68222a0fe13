"""
test_race_service.py -- Tests for rfq_race/services/race_service.py

Covers the race lifecycle end to end against in-memory SQLite:
- broadcast_rfq(): eligibility, tier spacing, Open → Bidding, matching mode
- accept_rfq(): admission order, tier-delay gate, type-specific resolution
- decline_rfq() / request_more_info(): single-response rule, no tier gate
- award_rfq(), release_priority_hold(), close_rfq(), cancel_rfq()
- check_race_status(): labels, holder/winner projection, hold expiry flag
- _resolve_accept(): conditional-update winner selection
- deliver_due_broadcasts(), release_expired_holds(), mark_rfq_viewed()

Every call passes an explicit `now`; nothing sleeps.

Called by: pytest
Depends on: rfq_race/services/race_service.py, conftest.py
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from rfq_race.models import RaceActivity, Rfq, RfqBroadcast, RfqResponse
from rfq_race.services import race_service
from rfq_race.services.race_service import (
    _resolve_accept,
    accept_rfq,
    award_rfq,
    broadcast_rfq,
    cancel_rfq,
    check_race_status,
    close_rfq,
    decline_rfq,
    deliver_due_broadcasts,
    mark_rfq_viewed,
    preview_broadcast_schedule,
    release_expired_holds,
    release_priority_hold,
    request_more_info,
)


def _response_count(db: Session, rfq_id: int) -> int:
    return db.query(RfqResponse).filter(RfqResponse.rfq_id == rfq_id).count()


def _activity_types(db: Session, rfq_id: int) -> list[str]:
    rows = db.query(RaceActivity).filter(RaceActivity.rfq_id == rfq_id).order_by(RaceActivity.id).all()
    return [a.activity_type for a in rows]


# ═══════════════════════════════════════════════════════════════════════
#  BROADCAST
# ═══════════════════════════════════════════════════════════════════════


class TestBroadcast:
    def test_broadcast_schedules_eligible_suppliers(self, db_session, make_rfq, make_provider, clock):
        now = clock()
        rfq = make_rfq(race_opens_at=now + timedelta(minutes=5))
        partner = make_provider(tier="verified_partner")
        standard = make_provider(tier="approved", timezone="Asia/Tokyo")
        make_provider(tier="suspended")
        make_provider(is_active=False)

        result = broadcast_rfq(db_session, rfq.id, now)

        assert result == {"success": True, "rfq_id": rfq.id, "broadcast_count": 2}
        assert rfq.status == "Bidding"
        rows = {b.provider_id: b for b in db_session.query(RfqBroadcast).filter_by(rfq_id=rfq.id)}
        assert set(rows) == {partner.id, standard.id}
        assert rows[partner.id].scheduled_at == now + timedelta(minutes=5)
        assert rows[standard.id].scheduled_at == now + timedelta(minutes=5, seconds=30)
        assert rows[partner.id].delivered_at is None
        assert "rfq_broadcast" in _activity_types(db_session, rfq.id)

    def test_broadcast_with_no_suppliers_still_opens_bidding(self, db_session, make_rfq, clock):
        rfq = make_rfq()
        result = broadcast_rfq(db_session, rfq.id, clock())
        assert result["success"] is True
        assert result["broadcast_count"] == 0
        assert rfq.status == "Bidding"

    def test_broadcast_twice_is_invalid_state(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq()
        make_provider()
        assert broadcast_rfq(db_session, rfq.id, clock())["success"] is True

        again = broadcast_rfq(db_session, rfq.id, clock())
        assert again["success"] is False
        assert again["code"] == "invalid_state"
        assert db_session.query(RfqBroadcast).filter_by(rfq_id=rfq.id).count() == 1

    def test_broadcast_missing_rfq(self, db_session, clock):
        result = broadcast_rfq(db_session, 4242, clock())
        assert result["code"] == "not_found"

    def test_broadcast_with_matching_only_reaches_matches(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq(category="Electronics", urgency="standard")
        match = make_provider(categories=["Electronics"])
        make_provider(categories=["Packaging"])

        result = broadcast_rfq(db_session, rfq.id, clock(), use_matching=True)

        assert result["broadcast_count"] == 1
        only = db_session.query(RfqBroadcast).filter_by(rfq_id=rfq.id).one()
        assert only.provider_id == match.id

    def test_standard_broadcast_uses_local_windows(self, db_session, make_rfq, make_provider, clock):
        now = clock()  # Wed 12:00 UTC
        rfq = make_rfq(urgency="standard", race_opens_at=now)
        tokyo = make_provider(tier="verified_partner", timezone="Asia/Tokyo")

        broadcast_rfq(db_session, rfq.id, now)

        row = db_session.query(RfqBroadcast).filter_by(provider_id=tokyo.id).one()
        # Thursday 09:00 JST == Thursday 00:00 UTC
        assert row.scheduled_at == now.replace(day=5, hour=0)

    def test_preview_schedule_before_and_after(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq()
        make_provider()

        before = preview_broadcast_schedule(db_session, rfq.id, clock())
        assert before["persisted"] is False
        assert len(before["schedules"]) == 1
        assert rfq.status == "Open"

        broadcast_rfq(db_session, rfq.id, clock())
        after = preview_broadcast_schedule(db_session, rfq.id, clock())
        assert after["persisted"] is True
        assert after["schedules"][0]["scheduled_at"] == before["schedules"][0]["scheduled_at"]


# ═══════════════════════════════════════════════════════════════════════
#  ACCEPT — admission
# ═══════════════════════════════════════════════════════════════════════


class TestAcceptAdmission:
    def test_missing_rfq(self, db_session, make_provider, clock):
        supplier = make_provider()
        result = accept_rfq(db_session, 999, supplier.id, clock())
        assert result["success"] is False
        assert result["error"] == "RFQ not found"
        assert result["code"] == "not_found"

    def test_race_not_started(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq(status="Bidding", race_opens_at=clock() + timedelta(minutes=3))
        supplier = make_provider()
        result = accept_rfq(db_session, rfq.id, supplier.id, clock())
        assert result["error"] == "Race has not started yet"
        assert result["code"] == "not_yet_open"
        assert _response_count(db_session, rfq.id) == 0

    def test_unknown_supplier(self, db_session, bidding_rfq, clock):
        result = accept_rfq(db_session, bidding_rfq.id, 31337, clock())
        assert result["code"] == "not_found"
        assert result["error"] == "Supplier not found"

    def test_negative_quote_rejected(self, db_session, bidding_rfq, make_provider, clock):
        supplier = make_provider()
        result = accept_rfq(db_session, bidding_rfq.id, supplier.id, clock(), quoted_price=-1)
        assert result["code"] == "validation_error"
        assert _response_count(db_session, bidding_rfq.id) == 0

    def test_tier_delay_gate_reports_whole_seconds(self, db_session, bidding_rfq, make_provider, make_broadcast, clock):
        supplier = make_provider(tier="approved")
        make_broadcast(bidding_rfq, supplier, clock() - timedelta(seconds=10.5))

        result = accept_rfq(db_session, bidding_rfq.id, supplier.id, clock())

        assert result["success"] is False
        assert result["code"] == "not_yet_open"
        assert result["error"] == "Please wait 20 more seconds (tier delay)"
        assert result["retry_after"] == 20

    def test_top_tier_skips_gate(self, db_session, bidding_rfq, make_provider, make_broadcast, clock):
        partner = make_provider(tier="verified_partner")
        make_broadcast(bidding_rfq, partner, clock() + timedelta(seconds=60))
        result = accept_rfq(db_session, bidding_rfq.id, partner.id, clock())
        assert result["success"] is True
        assert result["awarded"] is True

    def test_no_broadcast_row_means_no_gate(self, db_session, bidding_rfq, make_provider, clock):
        supplier = make_provider(tier="approved")
        assert accept_rfq(db_session, bidding_rfq.id, supplier.id, clock())["success"] is True

    def test_accept_marks_broadcast_delivered_and_viewed(self, db_session, bidding_rfq, make_provider, make_broadcast, clock):
        supplier = make_provider(tier="approved")
        broadcast = make_broadcast(bidding_rfq, supplier, clock() - timedelta(minutes=1))
        accept_rfq(db_session, bidding_rfq.id, supplier.id, clock())
        assert broadcast.delivered_at == clock()
        assert broadcast.viewed_at == clock()

    def test_accept_after_sweep_still_marks_viewed(self, db_session, bidding_rfq, make_provider, make_broadcast, clock):
        supplier = make_provider(tier="verified_partner")
        broadcast = make_broadcast(bidding_rfq, supplier, clock() - timedelta(minutes=1))
        delivered_at = clock()
        deliver_due_broadcasts(db_session, delivered_at)

        clock.advance(10)
        assert accept_rfq(db_session, bidding_rfq.id, supplier.id, clock())["success"] is True

        db_session.refresh(broadcast)
        assert broadcast.delivered_at == delivered_at
        assert broadcast.viewed_at == clock()

    def test_rejected_accept_writes_nothing(self, db_session, bidding_rfq, make_provider, make_broadcast, clock):
        supplier = make_provider(tier="approved")
        broadcast = make_broadcast(bidding_rfq, supplier, clock())
        accept_rfq(db_session, bidding_rfq.id, supplier.id, clock())
        assert broadcast.delivered_at is None
        assert _response_count(db_session, bidding_rfq.id) == 0
        assert bidding_rfq.status == "Bidding"


# ═══════════════════════════════════════════════════════════════════════
#  SINGLE RESPONSE PER SUPPLIER
# ═══════════════════════════════════════════════════════════════════════


class TestSingleResponse:
    @pytest.mark.parametrize("second", ["accept", "decline", "info"])
    def test_second_response_of_any_kind_is_duplicate(self, db_session, make_rfq, make_provider, clock, second):
        rfq = make_rfq("service", status="Bidding")
        supplier = make_provider()
        assert decline_rfq(db_session, rfq.id, supplier.id, clock(), reason="Too busy")["success"]

        if second == "accept":
            result = accept_rfq(db_session, rfq.id, supplier.id, clock())
        elif second == "decline":
            result = decline_rfq(db_session, rfq.id, supplier.id, clock())
        else:
            result = request_more_info(db_session, rfq.id, supplier.id, "Lead time?", clock())

        assert result["success"] is False
        assert result["code"] == "duplicate_response"
        assert result["error"] == "Already responded to this RFQ"
        assert _response_count(db_session, rfq.id) == 1

    def test_racing_insert_maps_to_duplicate(self, db_session, make_rfq, make_provider, clock, monkeypatch):
        rfq = make_rfq("service", status="Bidding")
        supplier = make_provider()
        assert accept_rfq(db_session, rfq.id, supplier.id, clock())["success"]

        # Simulate a concurrent request that passed the pre-check
        monkeypatch.setattr(race_service, "_existing_response", lambda *a: None)
        result = accept_rfq(db_session, rfq.id, supplier.id, clock())

        assert result["code"] == "duplicate_response"
        assert _response_count(db_session, rfq.id) == 1


# ═══════════════════════════════════════════════════════════════════════
#  RESOLUTION BY TYPE
# ═══════════════════════════════════════════════════════════════════════


class TestResolution:
    def test_commodity_first_accept_wins(self, db_session, bidding_rfq, make_provider, clock):
        first, second, third = make_provider(), make_provider(), make_provider()

        won = accept_rfq(db_session, bidding_rfq.id, first.id, clock(), quoted_price=1250)
        clock.advance(5)
        late = accept_rfq(db_session, bidding_rfq.id, second.id, clock())
        clock.advance(5)
        later = accept_rfq(db_session, bidding_rfq.id, third.id, clock())

        assert won["success"] and won["awarded"] and not won["priority_hold"]
        assert bidding_rfq.status == "Awarded"
        assert bidding_rfq.awarded_to == first.id
        for result in (late, later):
            assert result["code"] == "invalid_state"
            assert result["error"] == "RFQ is Awarded, cannot accept"
        assert _activity_types(db_session, bidding_rfq.id)[-2:] == ["response_accept", "rfq_awarded"]

    def test_conditional_update_picks_exactly_one_winner(self, db_session, bidding_rfq, make_provider, clock):
        suppliers = [make_provider() for _ in range(3)]
        outcomes = [_resolve_accept(db_session, bidding_rfq, s.id, clock()) for s in suppliers]
        db_session.commit()
        db_session.refresh(bidding_rfq)

        assert outcomes == [(True, False), (False, False), (False, False)]
        assert bidding_rfq.status == "Awarded"
        assert bidding_rfq.awarded_to == suppliers[0].id

    def test_custom_first_accept_takes_hold(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        holder, other = make_provider(), make_provider()

        result = accept_rfq(db_session, rfq.id, holder.id, clock())

        assert result["priority_hold"] is True
        assert result["awarded"] is False
        assert rfq.status == "priority_hold"
        assert rfq.priority_holder_id == holder.id
        assert rfq.priority_hold_expires_at == clock() + timedelta(hours=2)
        assert rfq.awarded_to is None

        # Held RFQs no longer take responses
        blocked = accept_rfq(db_session, rfq.id, other.id, clock())
        assert blocked["error"] == "RFQ is priority_hold, cannot accept"

    def test_custom_hold_conditional_update(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        a, b = make_provider(), make_provider()
        assert _resolve_accept(db_session, rfq, a.id, clock()) == (False, True)
        assert _resolve_accept(db_session, rfq, b.id, clock()) == (False, False)
        db_session.commit()
        db_session.refresh(rfq)
        assert rfq.priority_holder_id == a.id

    def test_service_accepts_are_recorded_only(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("service", status="Bidding")
        a, b = make_provider(), make_provider()

        for supplier in (a, b):
            result = accept_rfq(db_session, rfq.id, supplier.id, clock())
            assert result["success"] and not result["awarded"] and not result["priority_hold"]

        assert rfq.status == "Bidding"
        assert _response_count(db_session, rfq.id) == 2
        assert award_rfq(db_session, rfq.id, b.id, rfq.buyer_id, clock())["success"]
        assert rfq.awarded_to == b.id

    def test_accept_allowed_while_open(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq(status="Open")
        supplier = make_provider()
        assert accept_rfq(db_session, rfq.id, supplier.id, clock())["awarded"] is True


# ═══════════════════════════════════════════════════════════════════════
#  SCENARIOS
# ═══════════════════════════════════════════════════════════════════════


def test_urgent_partner_accepts_immediately(db_session, make_rfq, make_provider, make_broadcast, clock):
    now = clock()
    rfq = make_rfq("commodity", status="Bidding", urgency="urgent", race_opens_at=now)
    partner = make_provider(tier="verified_partner")
    make_broadcast(rfq, partner, now)

    result = accept_rfq(db_session, rfq.id, partner.id, now)

    assert result["success"] and result["awarded"]
    assert rfq.status == "Awarded"
    assert rfq.awarded_to == partner.id


def test_custom_tier_delay_then_hold(db_session, make_rfq, make_provider, make_broadcast, clock):
    t0 = clock()
    rfq = make_rfq("custom", status="Bidding", race_opens_at=t0)
    supplier = make_provider(tier="approved")
    make_broadcast(rfq, supplier, t0)

    early = accept_rfq(db_session, rfq.id, supplier.id, t0)
    assert early["error"] == "Please wait 30 more seconds (tier delay)"

    clock.advance(29)
    assert accept_rfq(db_session, rfq.id, supplier.id, clock())["error"] == (
        "Please wait 1 more seconds (tier delay)"
    )

    clock.advance(1)
    retry = accept_rfq(db_session, rfq.id, supplier.id, clock())
    assert retry["success"] and retry["priority_hold"]
    assert rfq.status == "priority_hold"
    assert rfq.priority_holder_id == supplier.id
    assert rfq.priority_hold_expires_at == t0 + timedelta(seconds=30, hours=2)


def test_release_starts_fresh_hold_cycle(db_session, make_rfq, make_provider, clock):
    rfq = make_rfq("custom", status="Bidding")
    first, second = make_provider(), make_provider()
    accept_rfq(db_session, rfq.id, first.id, clock())

    clock.advance(minutes=30)
    released = release_priority_hold(db_session, rfq.id, rfq.buyer_id, clock())
    assert released["success"] is True
    assert rfq.status == "Bidding"
    assert rfq.priority_holder_id is None
    assert rfq.priority_hold_expires_at is None

    clock.advance(60)
    result = accept_rfq(db_session, rfq.id, second.id, clock())
    assert result["priority_hold"] is True
    assert rfq.priority_holder_id == second.id
    assert rfq.priority_hold_expires_at == clock() + timedelta(hours=2)

    # Held again: the released holder can't get back in
    assert accept_rfq(db_session, rfq.id, first.id, clock())["code"] == "invalid_state"


# ═══════════════════════════════════════════════════════════════════════
#  BUYER ACTIONS
# ═══════════════════════════════════════════════════════════════════════


class TestBuyerActions:
    def test_award_holder(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        holder = make_provider()
        accept_rfq(db_session, rfq.id, holder.id, clock())

        result = award_rfq(db_session, rfq.id, holder.id, rfq.buyer_id, clock())

        assert result == {"success": True, "awarded_to": holder.id}
        assert rfq.status == "Awarded"
        assert rfq.awarded_to == holder.id
        assert rfq.priority_holder_id is None
        assert rfq.priority_hold_expires_at is None

    def test_award_after_hold_expired(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        holder = make_provider()
        accept_rfq(db_session, rfq.id, holder.id, clock())
        clock.advance(hours=5)
        assert award_rfq(db_session, rfq.id, holder.id, rfq.buyer_id, clock())["success"] is True

    def test_award_requires_owner(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        holder = make_provider()
        accept_rfq(db_session, rfq.id, holder.id, clock())
        result = award_rfq(db_session, rfq.id, holder.id, rfq.buyer_id + 1, clock())
        assert result["code"] == "unauthorized"
        assert result["error"] == "Not authorized to award this RFQ"
        assert rfq.status == "priority_hold"

    def test_award_requires_accept_response(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("service", status="Bidding")
        decliner = make_provider()
        decline_rfq(db_session, rfq.id, decliner.id, clock())
        result = award_rfq(db_session, rfq.id, decliner.id, rfq.buyer_id, clock())
        assert result["error"] == "Provider has not accepted this RFQ"
        assert result["code"] == "invalid_state"

    def test_release_requires_owner_and_hold(self, db_session, make_rfq, clock):
        rfq = make_rfq("custom", status="Bidding")
        assert release_priority_hold(db_session, rfq.id, rfq.buyer_id + 1, clock())["error"] == "Not authorized"
        not_held = release_priority_hold(db_session, rfq.id, rfq.buyer_id, clock())
        assert not_held["error"] == "RFQ is not in priority hold status"

    def test_close_bidding(self, db_session, bidding_rfq, clock):
        result = close_rfq(db_session, bidding_rfq.id, bidding_rfq.buyer_id, clock())
        assert result == {"success": True, "status": "Closed"}
        assert bidding_rfq.status == "Closed"

    def test_close_rejects_held_rfq(self, db_session, make_rfq, clock):
        rfq = make_rfq("custom", status="priority_hold")
        result = close_rfq(db_session, rfq.id, rfq.buyer_id, clock())
        assert result["error"] == "Cannot close RFQ in priority_hold status"

    def test_close_requires_owner(self, db_session, bidding_rfq, clock):
        result = close_rfq(db_session, bidding_rfq.id, bidding_rfq.buyer_id + 1, clock())
        assert result["code"] == "unauthorized"

    def test_cancel_held_rfq_with_reason(self, db_session, make_rfq, clock):
        rfq = make_rfq("custom", status="priority_hold")
        result = cancel_rfq(db_session, rfq.id, rfq.buyer_id, clock(), reason="Budget cut")
        assert result["status"] == "cancelled"
        entry = db_session.query(RaceActivity).filter_by(rfq_id=rfq.id, activity_type="rfq_cancelled").one()
        assert entry.detail == "Budget cut"
        assert entry.actor_id == rfq.buyer_id


# ═══════════════════════════════════════════════════════════════════════
#  TERMINAL STATES
# ═══════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("status", ["Awarded", "Closed", "cancelled"])
def test_terminal_states_are_immutable(db_session, make_rfq, make_provider, clock, status):
    winner = make_provider()
    challenger = make_provider()
    rfq = make_rfq(
        "custom",
        status=status,
        awarded_to=winner.id if status == "Awarded" else None,
    )
    before = (rfq.status, rfq.awarded_to, rfq.priority_holder_id)

    results = [
        accept_rfq(db_session, rfq.id, challenger.id, clock()),
        decline_rfq(db_session, rfq.id, challenger.id, clock()),
        request_more_info(db_session, rfq.id, challenger.id, "Still open?", clock()),
        award_rfq(db_session, rfq.id, challenger.id, rfq.buyer_id, clock()),
        release_priority_hold(db_session, rfq.id, rfq.buyer_id, clock()),
        close_rfq(db_session, rfq.id, rfq.buyer_id, clock()),
        cancel_rfq(db_session, rfq.id, rfq.buyer_id, clock()),
    ]

    assert all(r["code"] == "invalid_state" for r in results)
    db_session.refresh(rfq)
    assert (rfq.status, rfq.awarded_to, rfq.priority_holder_id) == before
    assert _response_count(db_session, rfq.id) == 0


def test_award_messages_for_terminal_states(db_session, make_rfq, make_provider, clock):
    supplier = make_provider()
    awarded = make_rfq(status="Awarded", awarded_to=supplier.id)
    closed = make_rfq(status="Closed")
    assert award_rfq(db_session, awarded.id, supplier.id, awarded.buyer_id, clock())["error"] == "RFQ already awarded"
    assert award_rfq(db_session, closed.id, supplier.id, closed.buyer_id, clock())["error"] == "Cannot award Closed RFQ"


# ═══════════════════════════════════════════════════════════════════════
#  DECLINE / INFO REQUEST
# ═══════════════════════════════════════════════════════════════════════


def test_decline_ignores_tier_gate_and_race_open(db_session, make_rfq, make_provider, make_broadcast, clock):
    rfq = make_rfq(status="Bidding", race_opens_at=clock() + timedelta(hours=1))
    supplier = make_provider(tier="approved")
    make_broadcast(rfq, supplier, clock() + timedelta(hours=1))

    result = decline_rfq(db_session, rfq.id, supplier.id, clock(), reason="No capacity")

    assert result["success"] is True
    response = db_session.get(RfqResponse, result["response_id"])
    assert response.response_type == "decline"
    assert response.message == "No capacity"


def test_info_request_requires_questions(db_session, bidding_rfq, make_provider, clock):
    supplier = make_provider()
    assert request_more_info(db_session, bidding_rfq.id, supplier.id, "   ", clock())["code"] == "validation_error"

    result = request_more_info(db_session, bidding_rfq.id, supplier.id, "  Tolerance on part 3?  ", clock())
    assert result["success"] is True
    response = db_session.get(RfqResponse, result["response_id"])
    assert response.response_type == "info_request"
    assert response.message == "Tolerance on part 3?"
    assert bidding_rfq.status == "Bidding"


# ═══════════════════════════════════════════════════════════════════════
#  RACE STATUS
# ═══════════════════════════════════════════════════════════════════════


class TestRaceStatus:
    def test_scheduled(self, db_session, make_rfq, clock):
        rfq = make_rfq(race_opens_at=clock() + timedelta(minutes=5))
        status = check_race_status(db_session, rfq.id, clock())
        assert status["status"] == "scheduled"
        assert status["time_until_open_ms"] == 300_000
        assert status["time_until_open"] == "5m 0s"
        assert status["total_responses"] == 0

    def test_open_with_counts(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("service", status="Bidding")
        a, b, c = make_provider(), make_provider(), make_provider()
        accept_rfq(db_session, rfq.id, a.id, clock())
        accept_rfq(db_session, rfq.id, b.id, clock())
        decline_rfq(db_session, rfq.id, c.id, clock())

        status = check_race_status(db_session, rfq.id, clock())
        assert status["status"] == "open"
        assert status["time_until_open_ms"] is None
        assert status["total_responses"] == 3
        assert status["accept_count"] == 2

    def test_priority_hold_and_expiry_flag(self, db_session, make_rfq, make_provider, clock):
        rfq = make_rfq("custom", status="Bidding")
        holder = make_provider("Precision Parts Co")
        accept_rfq(db_session, rfq.id, holder.id, clock())

        status = check_race_status(db_session, rfq.id, clock())
        assert status["status"] == "priority_hold"
        assert status["priority_holder"] == {"id": holder.id, "name": "Precision Parts Co"}
        assert status["hold_expired"] is False

        clock.advance(hours=2)
        expired = check_race_status(db_session, rfq.id, clock())
        assert expired["hold_expired"] is True
        assert expired["status"] == "priority_hold"

    def test_awarded_winner(self, db_session, bidding_rfq, make_provider, clock):
        winner = make_provider("FastFab")
        accept_rfq(db_session, bidding_rfq.id, winner.id, clock(), quoted_price=1250.5)
        status = check_race_status(db_session, bidding_rfq.id, clock())
        assert status["status"] == "awarded"
        assert status["winner"] == {"id": winner.id, "name": "FastFab", "quoted_price": 1250.5}

    @pytest.mark.parametrize("stored,label", [("Closed", "closed"), ("cancelled", "cancelled")])
    def test_terminal_labels(self, db_session, make_rfq, clock, stored, label):
        rfq = make_rfq(status=stored)
        assert check_race_status(db_session, rfq.id, clock())["status"] == label

    def test_missing(self, db_session, clock):
        assert check_race_status(db_session, 1, clock())["code"] == "not_found"


# ═══════════════════════════════════════════════════════════════════════
#  SWEEPS / VIEWED
# ═══════════════════════════════════════════════════════════════════════


def test_deliver_due_broadcasts(db_session, bidding_rfq, make_provider, make_broadcast, clock):
    due = make_broadcast(bidding_rfq, make_provider(), clock() - timedelta(seconds=1))
    later = make_broadcast(bidding_rfq, make_provider(), clock() + timedelta(hours=1))

    assert deliver_due_broadcasts(db_session, clock()) == 1
    db_session.refresh(due)
    db_session.refresh(later)
    assert due.delivered_at == clock()
    assert later.delivered_at is None


def test_release_expired_holds(db_session, make_rfq, make_provider, clock):
    held = make_rfq("custom", status="Bidding")
    fresh = make_rfq("custom", status="Bidding")
    accept_rfq(db_session, held.id, make_provider().id, clock())
    clock.advance(hours=1)
    accept_rfq(db_session, fresh.id, make_provider().id, clock())

    clock.advance(hours=1, minutes=30)
    assert release_expired_holds(db_session, clock()) == 1
    db_session.refresh(held)
    db_session.refresh(fresh)
    assert held.status == "Bidding"
    assert fresh.status == "priority_hold"
    assert "priority_hold_released" in _activity_types(db_session, held.id)


def test_mark_viewed(db_session, bidding_rfq, make_provider, make_broadcast, clock):
    supplier = make_provider()
    broadcast = make_broadcast(bidding_rfq, supplier, clock() - timedelta(minutes=1))

    assert mark_rfq_viewed(db_session, bidding_rfq.id, supplier.id, clock())["success"]
    assert broadcast.viewed_at == clock()
    assert broadcast.delivered_at == clock()

    stranger = make_provider()
    assert mark_rfq_viewed(db_session, bidding_rfq.id, stranger.id, clock())["code"] == "not_found"
