"""Supplier matching — rank suppliers against an RFQ's needs.

Additive score, capped to 0–100:
  1. Category match (30pts) — exact category in the supplier's categories
  2. Skills overlap (20pts) — share of required skills the supplier covers
  3. Completion rate (20pts) — flat 20 above 80%, proportional below
  4. Budget fit (15pts) — day rate within budget; 10 if <20% over; 7.5 neutral
  5. Response time (15pts) — urgent RFQs reward fast responders; standard flat 10
  6. Tier bonus — premium +5, verified +3

Suppliers scoring under match_min_score are dropped; the rest sort best-first.
The formula is the contract: same inputs, same score.

Called by: services/race_service.py (broadcast with matching), routers/rfq.py
Depends on: models (Rfq, Provider), config
"""

from __future__ import annotations

import logging
import math

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ERR_NOT_FOUND,
    TIER_PREMIUM,
    TIER_SUSPENDED,
    TIER_VERIFIED,
    URGENCY_URGENT,
)
from ..models import Provider, Rfq
from ..utils import safe_float

log = logging.getLogger("rfq_race.matching")

# Weight constants
W_CATEGORY = 30
W_SKILLS = 20
W_COMPLETION = 20
W_BUDGET = 15
W_BUDGET_CLOSE = 10
W_BUDGET_NEUTRAL = 7.5
W_RESPONSE_FAST = 15
W_RESPONSE_GOOD = 10
W_RESPONSE_SLOW = 5
W_RESPONSE_STANDARD = 10
TIER_BONUS = {TIER_PREMIUM: 5, TIER_VERIFIED: 3}

HIGH_COMPLETION_RATE = 0.8
CLOSE_TO_BUDGET_PCT = 20
FAST_RESPONSE_HOURS = 2
GOOD_RESPONSE_HOURS = 6


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_supplier(criteria: dict, supplier: dict) -> dict:
    """Score one supplier against RFQ criteria. Pure, no DB access.

    criteria: {"category", "skills_required", "budget_range": {"min", "max"}, "urgency"}
    supplier: {"categories", "skills", "day_rate", "completion_rate",
               "response_time_hours", "tier"}

    Returns {"score": int 0–100, "reasons": [str, ...]}
    """
    score = 0.0
    reasons = []

    category = criteria.get("category")
    if category and category in (supplier.get("categories") or []):
        score += W_CATEGORY
        reasons.append(f"Matches category: {category}")

    required = criteria.get("skills_required") or []
    if required:
        supplier_skills = [s.lower() for s in supplier.get("skills") or []]
        matched = [
            skill for skill in required
            if any(skill.lower() in s for s in supplier_skills)
        ]
        score += len(matched) / len(required) * W_SKILLS
        if matched:
            reasons.append(f"Skills match: {', '.join(matched)}")

    completion = safe_float(supplier.get("completion_rate"))
    if completion and completion > HIGH_COMPLETION_RATE:
        score += W_COMPLETION
        reasons.append(f"High completion rate ({completion * 100:.0f}%)")
    elif completion:
        score += completion * W_COMPLETION

    score += _score_budget(criteria.get("budget_range"), supplier, reasons)
    score += _score_response_time(criteria.get("urgency"), supplier, reasons)

    tier = supplier.get("tier")
    if tier in TIER_BONUS:
        score += TIER_BONUS[tier]
        reasons.append("Premium supplier" if tier == TIER_PREMIUM else "Verified supplier")

    return {"score": min(100, max(0, _round_half_up(score))), "reasons": reasons}


def _score_budget(budget_range: dict | None, supplier: dict, reasons: list) -> float:
    day_rate = safe_float(supplier.get("day_rate"))
    if not day_rate or budget_range is None:
        return W_BUDGET_NEUTRAL

    budget_max = safe_float(budget_range.get("max"))
    if not budget_max or day_rate <= budget_max:
        reasons.append("Within budget")
        return W_BUDGET

    over_pct = (day_rate - budget_max) / budget_max * 100
    if over_pct < CLOSE_TO_BUDGET_PCT:
        reasons.append("Close to budget range")
        return W_BUDGET_CLOSE
    return 0


def _score_response_time(urgency: str | None, supplier: dict, reasons: list) -> float:
    if urgency != URGENCY_URGENT:
        return W_RESPONSE_STANDARD

    hours = safe_float(supplier.get("response_time_hours"))
    if hours and hours < FAST_RESPONSE_HOURS:
        reasons.append("Fast response time")
        return W_RESPONSE_FAST
    if hours and hours < GOOD_RESPONSE_HOURS:
        reasons.append("Good response time")
        return W_RESPONSE_GOOD
    return W_RESPONSE_SLOW


# ═══════════════════════════════════════════════════════════════════════
#  DB-BACKED RANKING
# ═══════════════════════════════════════════════════════════════════════


def load_eligible_providers(db: Session, require_capacity: bool = False) -> list[Provider]:
    """Active, non-suspended suppliers, optionally only those with free capacity."""
    providers = (
        db.query(Provider)
        .filter(Provider.is_active.is_(True), Provider.tier != TIER_SUSPENDED)
        .order_by(Provider.id)
        .all()
    )
    if require_capacity:
        providers = [p for p in providers if p.has_capacity]
    return providers


def rfq_criteria(rfq: Rfq) -> dict:
    """Matching criteria derived from an RFQ row."""
    specs = rfq.specifications or {}
    skills = specs.get("skills_required") if isinstance(specs, dict) else None
    return {
        "category": rfq.category,
        "skills_required": [s for s in skills or [] if isinstance(s, str)],
        "budget_range": {"min": rfq.budget_min, "max": rfq.budget_max},
        "urgency": rfq.urgency,
    }


def provider_profile(provider: Provider) -> dict:
    return {
        "categories": provider.categories or [],
        "skills": provider.skills or [],
        "day_rate": provider.day_rate,
        "completion_rate": provider.completion_rate,
        "response_time_hours": provider.response_time_hours,
        "tier": provider.tier,
    }


def rank_providers(rfq: Rfq, providers: list[Provider], min_score: int | None = None) -> list[dict]:
    """Score, filter below min_score, and sort best-first (ties by provider id)."""
    if min_score is None:
        min_score = settings.match_min_score

    criteria = rfq_criteria(rfq)
    matches = []
    for provider in providers:
        result = score_supplier(criteria, provider_profile(provider))
        if result["score"] < min_score:
            continue
        matches.append(
            {
                "provider_id": provider.id,
                "name": provider.name,
                "headline": provider.headline,
                "tier": provider.tier,
                "timezone": provider.timezone,
                "match_score": result["score"],
                "match_reasons": result["reasons"],
                "is_available": provider.has_capacity,
            }
        )
    matches.sort(key=lambda m: (-m["match_score"], m["provider_id"]))
    return matches


def match_suppliers_to_rfq(db: Session, rfq_id: int) -> dict:
    """Rank every eligible supplier with capacity for an RFQ.

    Returns {"success": True, "matches": [...]} or an error result.
    """
    rfq = db.get(Rfq, rfq_id)
    if not rfq:
        return {"success": False, "error": "RFQ not found", "code": ERR_NOT_FOUND}

    providers = load_eligible_providers(db, require_capacity=True)
    matches = rank_providers(rfq, providers)
    log.info(f"Matched {len(matches)}/{len(providers)} suppliers for RFQ {rfq_id}")
    return {"success": True, "matches": matches}


def get_top_matches(db: Session, rfq_id: int, limit: int | None = None) -> list[dict]:
    """Best matches for notification fan-out; empty if the RFQ is missing."""
    if limit is None:
        limit = settings.match_top_limit
    result = match_suppliers_to_rfq(db, rfq_id)
    return result.get("matches", [])[:limit]
