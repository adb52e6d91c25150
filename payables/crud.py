"""Database access helpers."""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from payables.core.aggregation import BatchTotals
from payables.models import SUBMISSION_STATUS_ENUM, BatchSubmission


def record_batch_submission(
    db: Session,
    session_id: str,
    cutoff_date: datetime | None,
    payload: dict[str, Any],
    totals: BatchTotals,
    ok: bool,
    error: str | None = None,
) -> BatchSubmission:
    status = SUBMISSION_STATUS_ENUM[0] if ok else SUBMISSION_STATUS_ENUM[1]
    options = payload.get("options") or {}
    submission = BatchSubmission(
        session_id=session_id,
        cutoff_date=cutoff_date,
        status=status,
        comment=payload.get("comment"),
        group_count=len(payload.get("groups") or []),
        allow_negative=bool(options.get("allowNegativeNetPayments")),
        release_total=Decimal(str(totals.release_total)),
        forfeit_total=Decimal(str(totals.forfeit_total)),
        total_customers=totals.total_customers,
        payload=json.dumps(payload, sort_keys=True),
        error=error,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    return submission


def list_batch_submissions(
    db: Session,
    status: str | None = None,
    limit: int = 50,
) -> Sequence[BatchSubmission]:
    stmt = select(BatchSubmission)
    if status:
        stmt = stmt.where(BatchSubmission.status == status)
    stmt = stmt.order_by(BatchSubmission.created_at.desc(), BatchSubmission.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()


def clear_batch_submissions(db: Session) -> int:
    deleted = db.query(BatchSubmission).delete()
    db.commit()
    return deleted
