"""SQLAlchemy models for the payables desk audit log."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payables.database import Base

SUBMISSION_STATUS_ENUM = ("created", "failed")


class BatchSubmission(Base):
    """One attempt to create a payment batch from a payables session."""

    __tablename__ = "batch_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cutoff_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    group_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allow_negative: Mapped[bool] = mapped_column(nullable=False, default=False)
    release_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    forfeit_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('created', 'failed')", name="ck_batch_submissions_status"),
        Index("ix_batch_submissions_created_at", "created_at"),
    )
