"""Closed vocabularies for the race engine: statuses, types, tiers, error codes.

Tiers arrive from the supplier directory under two naming schemes
("approved"/"verified_partner" and "standard"/"verified"/"premium").
Fairness only needs one question answered: is this supplier in the top
fairness tier? `is_top_tier` is the single place that decides it.
"""

# ── RFQ status ──────────────────────────────────────────────────────────
STATUS_OPEN = "Open"
STATUS_BIDDING = "Bidding"
STATUS_PRIORITY_HOLD = "priority_hold"
STATUS_AWARDED = "Awarded"
STATUS_CLOSED = "Closed"
STATUS_CANCELLED = "cancelled"

RFQ_STATUSES = (
    STATUS_OPEN,
    STATUS_BIDDING,
    STATUS_PRIORITY_HOLD,
    STATUS_AWARDED,
    STATUS_CLOSED,
    STATUS_CANCELLED,
)
RESPONSIVE_STATUSES = {STATUS_OPEN, STATUS_BIDDING}
TERMINAL_STATUSES = {STATUS_AWARDED, STATUS_CLOSED, STATUS_CANCELLED}
CLOSABLE_STATUSES = {STATUS_OPEN, STATUS_BIDDING}
CANCELLABLE_STATUSES = {STATUS_OPEN, STATUS_BIDDING, STATUS_PRIORITY_HOLD}

# ── RFQ type / urgency ──────────────────────────────────────────────────
RFQ_COMMODITY = "commodity"
RFQ_CUSTOM = "custom"
RFQ_SERVICE = "service"
RFQ_TYPES = (RFQ_COMMODITY, RFQ_CUSTOM, RFQ_SERVICE)

URGENCY_URGENT = "urgent"
URGENCY_STANDARD = "standard"
URGENCIES = (URGENCY_URGENT, URGENCY_STANDARD)

# ── Responses ───────────────────────────────────────────────────────────
RESPONSE_ACCEPT = "accept"
RESPONSE_DECLINE = "decline"
RESPONSE_INFO_REQUEST = "info_request"
RESPONSE_TYPES = (RESPONSE_ACCEPT, RESPONSE_DECLINE, RESPONSE_INFO_REQUEST)

# ── Supplier tiers ──────────────────────────────────────────────────────
TIER_PENDING = "pending"
TIER_APPROVED = "approved"
TIER_STANDARD = "standard"
TIER_VERIFIED = "verified"
TIER_VERIFIED_PARTNER = "verified_partner"
TIER_PREMIUM = "premium"
TIER_SUSPENDED = "suspended"

SUPPLIER_TIERS = (
    TIER_PENDING,
    TIER_APPROVED,
    TIER_STANDARD,
    TIER_VERIFIED,
    TIER_VERIFIED_PARTNER,
    TIER_PREMIUM,
    TIER_SUSPENDED,
)
TOP_FAIRNESS_TIERS = {TIER_VERIFIED_PARTNER}


def is_top_tier(tier: str | None) -> bool:
    """True when the supplier skips the tier delay entirely."""
    return tier in TOP_FAIRNESS_TIERS


# ── Race status labels (view-layer only, never stored) ──────────────────
RACE_SCHEDULED = "scheduled"
RACE_OPEN = "open"
RACE_PRIORITY_HOLD = "priority_hold"
RACE_AWARDED = "awarded"
RACE_CLOSED = "closed"
RACE_CANCELLED = "cancelled"

# ── Error codes ─────────────────────────────────────────────────────────
ERR_NOT_FOUND = "not_found"
ERR_INVALID_STATE = "invalid_state"
ERR_UNAUTHORIZED = "unauthorized"
ERR_DUPLICATE_RESPONSE = "duplicate_response"
ERR_NOT_YET_OPEN = "not_yet_open"
ERR_VALIDATION = "validation_error"

RFQ_CATEGORIES = (
    "Raw Materials",
    "Components",
    "Electronics",
    "Packaging",
    "Tools & Equipment",
    "Safety Equipment",
    "Office Supplies",
    "Custom Manufacturing",
    "Prototyping",
    "Assembly Services",
    "Quality Testing",
    "Logistics",
    "Other",
)
