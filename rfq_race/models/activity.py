"""Race activity trail — one row per lifecycle event, never updated."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from ..database import UTCDateTime
from .base import Base


class RaceActivity(Base):
    __tablename__ = "race_activity"
    __table_args__ = (
        Index("ix_race_activity_rfq", "rfq_id", "created_at"),
    )
    id = Column(Integer, primary_key=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False)
    actor_id = Column(Integer)  # buyer or provider id, None for system
    activity_type = Column(String(50), nullable=False)
    detail = Column(Text)
    created_at = Column(UTCDateTime, nullable=False)
