"""Pydantic schemas for API requests and remote batch responses."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from payables.core.keys import EarningsClass, as_class, normalize_customer, normalize_period


class SessionCreate(BaseModel):
    cutoff_date: Optional[datetime] = None


class CutoffUpdate(BaseModel):
    cutoff_date: datetime


class ClassSelection(BaseModel):
    earnings_class: EarningsClass
    selected: bool

    @field_validator("earnings_class", mode="before")
    def normalize_class(cls, value: Any) -> EarningsClass:
        return as_class(value)


class PeriodSelection(ClassSelection):
    period_id: str = Field(..., min_length=1)

    @field_validator("period_id", mode="before")
    def normalize_period_id(cls, value: Any) -> str:
        return normalize_period(value)


class BonusRef(BaseModel):
    earnings_class: EarningsClass
    period_id: str = Field(..., min_length=1)
    bonus_title: str = Field(..., min_length=1)

    @field_validator("earnings_class", mode="before")
    def normalize_class(cls, value: Any) -> EarningsClass:
        return as_class(value)

    @field_validator("period_id", mode="before")
    def normalize_period_id(cls, value: Any) -> str:
        return normalize_period(value)

    @field_validator("bonus_title")
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Bonus title cannot be empty.")
        return value


class BonusSelection(BonusRef):
    selected: bool


class LeafSelection(BonusSelection):
    customer_id: str = Field(..., min_length=1)
    due: Optional[Decimal] = None

    @field_validator("customer_id", mode="before")
    def normalize_customer_id(cls, value: Any) -> str:
        return normalize_customer(value)


class CustomerSelection(BaseModel):
    selected: bool
    period_id: Optional[str] = None

    @field_validator("period_id", mode="before")
    def normalize_period_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return normalize_period(value) or None


class AllowNegatives(BaseModel):
    allow: bool = True


class CreateBatchRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=2000)


class NegativeItemRead(BaseModel):
    node_id: str = Field(..., alias="nodeId")
    net_due: Decimal = Field(Decimal("0"), alias="netDue")

    @field_validator("node_id", mode="before")
    def stringify_node_id(cls, value: Any) -> str:
        return normalize_customer(value)

    model_config = ConfigDict(populate_by_name=True)


class ValidationTotalsRead(BaseModel):
    total_payables: int = Field(0, alias="totalPayables")
    release_total: Decimal = Field(Decimal("0"), alias="releaseTotal")
    forfeit_total: Decimal = Field(Decimal("0"), alias="forfeitTotal")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class BatchValidationResponse(BaseModel):
    """Body returned by the remote ``Batches/validate`` endpoint."""

    has_negatives: bool = Field(False, alias="hasNegatives")
    totals: Optional[ValidationTotalsRead] = None
    negative_items: List[NegativeItemRead] = Field(default_factory=list, alias="negativeItems")
    computed_at: Optional[datetime] = Field(None, alias="computedAt")

    @field_validator("negative_items", mode="before")
    def default_items(cls, value: Any) -> Any:
        return value or []

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
