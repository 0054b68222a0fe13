"""
schemas/rfq.py — Pydantic models for RFQ race endpoints

Validates RFQ creation and edits, supplier responses, and buyer actions.

Business Rules:
- Title must not be blank
- Budgets are non-negative and budget_min <= budget_max
- Urgency cannot be edited (race_opens_at is fixed at creation)
- Quoted price, when given, is non-negative
- Info requests must carry non-blank questions

Called by: routers/rfq.py
Depends on: pydantic, constants
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class RfqCreate(BaseModel):
    """New RFQ payload."""
    title: str
    rfq_type: Literal["commodity", "custom", "service"]
    specifications: dict = Field(default_factory=dict)
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    deadline: datetime | None = None
    category: str | None = None
    urgency: Literal["urgent", "standard"] = "standard"
    broadcast: bool = True

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v

    @model_validator(mode="after")
    def budget_ordered(self) -> "RfqCreate":
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise ValueError("budget_min must not exceed budget_max")
        return self


class RfqUpdate(BaseModel):
    """Partial edit — only fields explicitly sent are applied."""
    title: str | None = None
    specifications: dict | None = None
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    deadline: datetime | None = None
    category: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v


class AcceptRequest(BaseModel):
    quoted_price: float | None = Field(default=None, ge=0)


class DeclineRequest(BaseModel):
    reason: str | None = None


class InfoRequest(BaseModel):
    questions: str

    @field_validator("questions")
    @classmethod
    def questions_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Questions must not be blank")
        return v


class AwardRequest(BaseModel):
    provider_id: int


class CancelRequest(BaseModel):
    reason: str | None = None
