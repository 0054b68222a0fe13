"""Timezone-aware broadcast scheduling — fair delivery across zones and tiers.

Given a race-open instant, an urgency class and a supplier list, computes
when each supplier sees the RFQ:

  - Urgent:   everyone at race_opens_at
  - Standard: next broadcast hour (09:00) in the supplier's own zone,
              rolled to the next day once that hour has passed and off
              weekends to Monday

Suppliers outside the top fairness tier get the tier delay added on top.
Output is sorted by scheduled_at (ties keep input order) and is fully
determined by the arguments: nothing here reads the clock or does I/O.

Called by: services/race_service.py (broadcast), routers/rfq.py (preview)
Depends on: config, constants
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import settings
from ..constants import URGENCY_URGENT, is_top_tier
from ..utils import ensure_utc

SATURDAY = 5
SUNDAY = 6

COMMON_TIMEZONES = (
    "UTC",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "Asia/Tokyo",
    "Asia/Singapore",
    "Asia/Hong_Kong",
    "Australia/Sydney",
)


def _zone(tz_name: str | None) -> ZoneInfo | None:
    """Resolve an IANA name, or None when it can't be resolved."""
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        return None


def compute_broadcast_schedule(
    race_opens_at: datetime,
    urgency: str,
    suppliers: list[dict],
    tier_delay_seconds: int | None = None,
    broadcast_hour: int | None = None,
) -> list[dict]:
    """Per-supplier delivery schedule, earliest first.

    suppliers: [{"provider_id", "timezone", "tier"}, ...]

    Returns one entry per supplier:
        {"provider_id", "timezone", "tier", "scheduled_at" (UTC datetime),
         "local_time" (label in the supplier's zone), "delay_seconds"}
    """
    if tier_delay_seconds is None:
        tier_delay_seconds = settings.tier_delay_seconds
    if broadcast_hour is None:
        broadcast_hour = settings.default_broadcast_hour

    base = ensure_utc(race_opens_at)
    schedules = []
    for supplier in suppliers:
        tz_name = supplier.get("timezone") or "UTC"
        tier = supplier.get("tier")

        if urgency == URGENCY_URGENT:
            scheduled_at = base
        else:
            scheduled_at = get_broadcast_window(tz_name, base, broadcast_hour)

        delay_seconds = 0 if is_top_tier(tier) else tier_delay_seconds
        scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

        schedules.append(
            {
                "provider_id": supplier["provider_id"],
                "timezone": tz_name,
                "tier": tier,
                "scheduled_at": scheduled_at,
                "local_time": format_local_time(scheduled_at, tz_name),
                "delay_seconds": delay_seconds,
            }
        )

    schedules.sort(key=lambda s: s["scheduled_at"])
    return schedules


def get_broadcast_window(
    tz_name: str, base: datetime, broadcast_hour: int | None = None
) -> datetime:
    """UTC instant of the next local broadcast hour in tz_name, skipping weekends.

    Unresolvable zones fall back to the next UTC day at the broadcast hour.
    """
    if broadcast_hour is None:
        broadcast_hour = settings.default_broadcast_hour
    base = ensure_utc(base)

    tz = _zone(tz_name)
    if tz is None:
        fallback_day = base.date() + timedelta(days=1)
        return datetime.combine(fallback_day, time(broadcast_hour), tzinfo=timezone.utc)

    local_now = base.astimezone(tz)
    target_day = local_now.date()
    if local_now.hour >= broadcast_hour:
        target_day += timedelta(days=1)
    target_day = _skip_weekend(target_day)

    local_target = datetime.combine(target_day, time(broadcast_hour), tzinfo=tz)
    return local_target.astimezone(timezone.utc)


def _skip_weekend(day: date) -> date:
    if day.weekday() == SATURDAY:
        return day + timedelta(days=2)
    if day.weekday() == SUNDAY:
        return day + timedelta(days=1)
    return day


def format_local_time(moment: datetime, tz_name: str) -> str:
    """Human label in the supplier's zone, e.g. 'Mon, Mar 4, 09:00 AM'."""
    tz = _zone(tz_name)
    if tz is None:
        return ensure_utc(moment).isoformat()
    local = moment.astimezone(tz)
    return f"{local:%a}, {local:%b} {local.day}, {local:%I:%M %p}"


# ── Race window helpers ─────────────────────────────────────────────────


def is_race_open(race_opens_at: datetime | None, now: datetime) -> bool:
    """No scheduled opening means the race is already open."""
    if race_opens_at is None:
        return True
    return ensure_utc(race_opens_at) <= ensure_utc(now)


def time_until_race_opens(race_opens_at: datetime | None, now: datetime) -> dict:
    """{"is_open", "time_until_open_ms", "formatted_time"}"""
    if race_opens_at is None:
        return {"is_open": True, "time_until_open_ms": None, "formatted_time": None}

    diff_ms = int((ensure_utc(race_opens_at) - ensure_utc(now)).total_seconds() * 1000)
    if diff_ms <= 0:
        return {"is_open": True, "time_until_open_ms": None, "formatted_time": None}

    return {
        "is_open": False,
        "time_until_open_ms": diff_ms,
        "formatted_time": format_duration(diff_ms),
    }


def format_duration(ms: int | float) -> str:
    """Compact duration: '2d 3h', '4h 12m', '5m 9s', '42s'."""
    if ms < 0:
        return "0s"

    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def is_within_business_hours(
    moment: datetime,
    tz_name: str,
    start_hour: int | None = None,
    end_hour: int | None = None,
) -> bool:
    """Whether moment falls inside [start, end) local hours. Unknown zones count as inside."""
    if start_hour is None:
        start_hour = settings.business_hours_start
    if end_hour is None:
        end_hour = settings.business_hours_end

    tz = _zone(tz_name)
    if tz is None:
        return True
    hour = moment.astimezone(tz).hour
    return start_hour <= hour < end_hour


def timezone_offset_label(tz_name: str, moment: datetime) -> str:
    """Short offset label at moment, e.g. 'GMT+9', 'GMT-4', 'GMT+5:30', 'GMT'."""
    tz = _zone(tz_name)
    if tz is None:
        return "UTC"
    offset = moment.astimezone(tz).utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds() // 60)
    if total_minutes == 0:
        return "GMT"
    sign = "+" if total_minutes > 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    if minutes:
        return f"GMT{sign}{hours}:{minutes:02d}"
    return f"GMT{sign}{hours}"


def common_timezones(moment: datetime) -> list[dict]:
    """Timezone picker entries with their offsets at moment."""
    return [
        {
            "id": tz,
            "label": tz.replace("_", " ").replace("/", " / "),
            "offset": timezone_offset_label(tz, moment),
        }
        for tz in COMMON_TIMEZONES
    ]
