"""Supplier directory entry. Owned by the wider platform; the race engine reads it."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Float, Index, Integer, Numeric, String

from ..database import UTCDateTime
from .base import Base


class Provider(Base):
    __tablename__ = "providers"
    __table_args__ = (
        Index("ix_providers_active_tier", "is_active", "tier"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer)
    name = Column(String(255), nullable=False)
    headline = Column(String(500))
    timezone = Column(String(64), default="UTC")  # IANA name
    tier = Column(String(32), default="approved", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Capacity
    current_order_count = Column(Integer, default=0)
    max_concurrent_orders = Column(Integer)

    # Matching inputs
    day_rate = Column(Numeric(12, 2))
    currency = Column(String(10), default="USD")
    categories = Column(JSON, default=list)
    skills = Column(JSON, default=list)
    completion_rate = Column(Float)  # 0.0–1.0
    response_time_hours = Column(Float)

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def has_capacity(self) -> bool:
        if self.max_concurrent_orders is None:
            return True
        return (self.current_order_count or 0) < self.max_concurrent_orders
