"""RFQ race models — RFQs, per-supplier broadcasts, supplier responses."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class Rfq(Base):
    """A buyer's procurement request and its race lifecycle."""

    __tablename__ = "rfqs"
    __table_args__ = (
        Index("ix_rfqs_status", "status"),
        Index("ix_rfqs_buyer", "buyer_id"),
        Index("ix_rfqs_foundry_created", "foundry_id", "created_at"),
    )
    id = Column(Integer, primary_key=True)
    buyer_id = Column(Integer, nullable=False)
    foundry_id = Column(Integer, nullable=False)
    rfq_type = Column(String(20), nullable=False)  # commodity | custom | service
    title = Column(String(255), nullable=False)
    specifications = Column(JSON, default=dict)
    budget_min = Column(Numeric(12, 2))
    budget_max = Column(Numeric(12, 2))
    deadline = Column(UTCDateTime)
    category = Column(String(100))
    urgency = Column(String(20), nullable=False, default="standard")

    status = Column(String(20), nullable=False, default="Open")
    race_opens_at = Column(UTCDateTime)  # set once at creation
    priority_holder_id = Column(Integer, ForeignKey("providers.id"))
    priority_hold_expires_at = Column(UTCDateTime)
    awarded_to = Column(Integer, ForeignKey("providers.id"))

    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(UTCDateTime)

    priority_holder = relationship("Provider", foreign_keys=[priority_holder_id])
    winner = relationship("Provider", foreign_keys=[awarded_to])
    broadcasts = relationship(
        "RfqBroadcast", back_populates="rfq", order_by="RfqBroadcast.scheduled_at"
    )
    responses = relationship(
        "RfqResponse", back_populates="rfq", order_by="RfqResponse.responded_at"
    )


class RfqBroadcast(Base):
    """Scheduled delivery of one RFQ to one supplier."""

    __tablename__ = "rfq_broadcasts"
    __table_args__ = (
        UniqueConstraint("rfq_id", "provider_id", name="uq_rfq_broadcasts_rfq_provider"),
        Index("ix_rfq_broadcasts_provider", "provider_id"),
    )
    id = Column(Integer, primary_key=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=False)
    delivered_at = Column(UTCDateTime)
    viewed_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    rfq = relationship("Rfq", back_populates="broadcasts")
    provider = relationship("Provider")


class RfqResponse(Base):
    """A supplier's single reply to an RFQ. Append-only."""

    __tablename__ = "rfq_responses"
    __table_args__ = (
        UniqueConstraint("rfq_id", "provider_id", name="uq_rfq_responses_rfq_provider"),
        Index("ix_rfq_responses_rfq_type", "rfq_id", "response_type"),
        Index("ix_rfq_responses_provider", "provider_id"),
    )
    id = Column(Integer, primary_key=True)
    rfq_id = Column(Integer, ForeignKey("rfqs.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    response_type = Column(String(20), nullable=False)  # accept | decline | info_request
    quoted_price = Column(Numeric(12, 2))
    message = Column(Text)
    responded_at = Column(UTCDateTime, nullable=False)

    rfq = relationship("Rfq", back_populates="responses")
    provider = relationship("Provider")
