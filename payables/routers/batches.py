"""Audit trail of batch create attempts."""
from __future__ import annotations

import json
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from payables import crud
from payables.dependencies import get_db
from payables.models import BatchSubmission

router = APIRouter(prefix="/batches", tags=["Batches"])


def _serialize_submission(submission: BatchSubmission) -> dict[str, Any]:
    return {
        "id": submission.id,
        "session_id": submission.session_id,
        "cutoff_date": submission.cutoff_date.isoformat() if submission.cutoff_date else None,
        "status": submission.status,
        "comment": submission.comment,
        "group_count": submission.group_count,
        "allow_negative": submission.allow_negative,
        "release_total": float(submission.release_total or 0),
        "forfeit_total": float(submission.forfeit_total or 0),
        "total_customers": submission.total_customers,
        "payload": json.loads(submission.payload or "{}"),
        "error": submission.error,
        "created_at": submission.created_at.isoformat() if submission.created_at else None,
    }


@router.get("/submissions")
def list_submissions(
    status_filter: Optional[Literal["created", "failed"]] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    submissions = crud.list_batch_submissions(db, status=status_filter, limit=limit)
    return [_serialize_submission(item) for item in submissions]


@router.delete("/submissions", status_code=status.HTTP_200_OK)
def clear_submissions(db: Session = Depends(get_db)) -> dict[str, int]:
    deleted = crud.clear_batch_submissions(db)
    return {"deleted": deleted}
