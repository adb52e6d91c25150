"""Commission payables routes: sessions, selection, leaf loading and batches."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from payables import crud
from payables.client import PayablesClientError
from payables.config import DISPLAY_PAGE_SIZE
from payables.core.aggregation import BatchTotals, ClassNode, SelectionCount
from payables.core.feeds import LeafPayable, Period
from payables.core.loader import BonusDetail
from payables.dependencies import get_db, get_payables_session, get_registry
from payables.schemas import (
    AllowNegatives,
    BonusRef,
    BonusSelection,
    ClassSelection,
    CreateBatchRequest,
    CustomerSelection,
    CutoffUpdate,
    LeafSelection,
    PeriodSelection,
    SessionCreate,
)
from payables.services import BatchStatus, BatchValidation, CustomerView, PayablesSession, SessionRegistry

router = APIRouter(prefix="/payables", tags=["Payables"])


def _money(value: Decimal | None) -> float:
    return float(value) if value is not None else 0.0


def _serialize_period(period: Period) -> dict[str, Any]:
    return {
        "id": period.id,
        "begin": period.begin.isoformat() if period.begin else None,
        "end": period.end.isoformat() if period.end else None,
    }


def _serialize_selection(count: SelectionCount) -> dict[str, Any]:
    return {"selected": count.selected, "total": count.total, "state": count.state.value}


def _serialize_totals(totals: BatchTotals) -> dict[str, Any]:
    return {
        "release_total": _money(totals.release_total),
        "forfeit_total": _money(totals.forfeit_total),
        "total_customers": totals.total_customers,
    }


def _serialize_validation(validation: BatchValidation) -> dict[str, Any]:
    return {
        "status": validation.status.value,
        "message": validation.message,
        "negative_items": [
            {"node_id": item.node_id, "net_due": _money(item.net_due)} for item in validation.negative_items
        ],
        "totals": validation.totals,
        "computed_at": validation.computed_at.isoformat() if validation.computed_at else None,
    }


def _serialize_session(session: PayablesSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "cutoff_date": session.cutoff.isoformat(),
        "summary_loaded": session.summary_rows is not None,
        "summary_error": session.summary_error,
        "default_count": session.overlay.default_count,
        "override_count": session.overlay.override_count,
        "allow_negatives_once": session.allow_negatives_once,
        "ready_to_create": session.ready_to_create,
        "validation": _serialize_validation(session.validation),
    }


def _serialize_hierarchy(nodes: list[ClassNode]) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    for class_node in nodes:
        periods = []
        for period_node in class_node.periods:
            bonuses = [
                {
                    "key": str(bonus.row.key),
                    "bonus_title": bonus.row.bonus_title,
                    "population": bonus.row.customer_paid_count,
                    "paid_amount": _money(bonus.row.paid_amount),
                    "released": _money(bonus.row.released),
                    "due": _money(bonus.row.due),
                    "total_volume": _money(bonus.row.total_volume),
                    "selection": _serialize_selection(bonus.selection),
                    "selected_customers": bonus.totals.customers,
                    "selected_due": _money(bonus.totals.due),
                    "loading": bonus.loading,
                    "loaded": bonus.loaded,
                    "has_more": bonus.has_more,
                    "error": bonus.error,
                }
                for bonus in period_node.bonuses
            ]
            periods.append(
                {
                    "period": _serialize_period(period_node.period),
                    "population": period_node.population,
                    "due": _money(period_node.due),
                    "selection": _serialize_selection(period_node.selection),
                    "bonuses": bonuses,
                }
            )
        result.append(
            {
                "earnings_class": class_node.earnings_class.value,
                "population": class_node.population,
                "due": _money(class_node.due),
                "selected_due": _money(class_node.selected_due),
                "selection": _serialize_selection(class_node.selection),
                "periods": periods,
            }
        )
    return result


def _serialize_payable(session: PayablesSession, payable: LeafPayable) -> dict[str, Any]:
    return {
        "customer_id": payable.customer_id,
        "display_name": payable.display_name,
        "web_alias": payable.web_alias,
        "status_name": payable.status_name,
        "status_class": payable.status_class,
        "customer_type": payable.customer_type,
        "amount": _money(payable.amount),
        "released": _money(payable.released),
        "due": _money(payable.due),
        "selected": session.overlay.leaf_selected(payable.key),
    }


def _serialize_detail(session: PayablesSession, detail: Optional[BonusDetail], offset: int, count: int) -> dict[str, Any]:
    if detail is None:
        return {"loading": False, "loaded": False, "error": None, "loaded_count": 0, "has_more": False, "payables": []}
    return {
        "loading": detail.loading,
        "loaded": detail.loaded,
        "error": detail.error,
        "loaded_count": len(detail.payables or []),
        "has_more": detail.pagination.has_more,
        "payables": [_serialize_payable(session, payable) for payable in detail.page(offset, count)],
    }


def _serialize_customer(session: PayablesSession, view: CustomerView) -> dict[str, Any]:
    profile = view.profile
    periods = []
    for bucket in view.periods:
        items = []
        selected = 0
        for item in bucket.items:
            is_selected = session.overlay.leaf_selected(item.leaf_key(profile.id))
            selected += int(is_selected)
            items.append(
                {
                    "bonus_title": item.bonus_title,
                    "level": item.level,
                    "amount": _money(item.amount),
                    "released": _money(item.released),
                    "due": _money(item.due),
                    "selected": is_selected,
                }
            )
        periods.append(
            {
                "period": _serialize_period(bucket.period),
                "selection": _serialize_selection(SelectionCount(selected, len(items))),
                "items": items,
            }
        )
    return {
        "customer": {
            "id": profile.id,
            "display_name": profile.display_name,
            "web_alias": profile.web_alias,
            "status_name": profile.status_name,
            "status_class": profile.status_class,
            "earnings_class": profile.earnings_class.value,
        },
        "periods": periods,
    }


def _require_summary(session: PayablesSession) -> None:
    if session.summary_rows is None:
        raise HTTPException(status_code=409, detail="Summary has not been loaded for this session")


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
def open_session(
    payload: SessionCreate,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, Any]:
    session = registry.open(payload.cutoff_date)
    return _serialize_session(session)


@router.get("/sessions/{session_id}")
def read_session(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    return _serialize_session(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def close_session(
    session: PayablesSession = Depends(get_payables_session),
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    registry.close(session.id)


@router.put("/sessions/{session_id}/cutoff")
def change_cutoff(
    payload: CutoffUpdate,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    session.set_cutoff(payload.cutoff_date)
    return _serialize_session(session)


@router.post("/sessions/{session_id}/summary/load")
async def load_summary(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    await session.load_summary()
    if session.summary_error:
        raise HTTPException(status_code=502, detail=f"Could not load payables summary: {session.summary_error}")
    return {
        "session": _serialize_session(session),
        "classes": _serialize_hierarchy(session.hierarchy()),
        "totals": _serialize_totals(session.totals()),
    }


@router.get("/sessions/{session_id}/summary")
def read_summary(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    _require_summary(session)
    return {
        "session": _serialize_session(session),
        "classes": _serialize_hierarchy(session.hierarchy()),
        "totals": _serialize_totals(session.totals()),
    }


@router.post("/sessions/{session_id}/selection/class")
def select_class(
    payload: ClassSelection,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    session.set_class_selected(payload.earnings_class, payload.selected)
    return {
        "selection": _serialize_selection(session.class_selection(payload.earnings_class)),
        "totals": _serialize_totals(session.totals()),
        "session": _serialize_session(session),
    }


@router.post("/sessions/{session_id}/selection/period")
def select_period(
    payload: PeriodSelection,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    session.set_period_selected(payload.earnings_class, payload.period_id, payload.selected)
    return {
        "selection": _serialize_selection(session.period_selection(payload.earnings_class, payload.period_id)),
        "totals": _serialize_totals(session.totals()),
        "session": _serialize_session(session),
    }


@router.post("/sessions/{session_id}/selection/bonus")
def select_bonus(
    payload: BonusSelection,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    _require_summary(session)
    try:
        session.find_row(payload.earnings_class, payload.period_id, payload.bonus_title)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    session.set_bonus_selected(payload.earnings_class, payload.period_id, payload.bonus_title, payload.selected)
    selection = session.bonus_selection(payload.earnings_class, payload.period_id, payload.bonus_title)
    return {
        "selection": _serialize_selection(selection),
        "totals": _serialize_totals(session.totals()),
        "session": _serialize_session(session),
    }


@router.post("/sessions/{session_id}/selection/leaf")
def select_leaf(
    payload: LeafSelection,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    if payload.due is not None:
        session.record_leaf_due(
            payload.earnings_class, payload.period_id, payload.bonus_title, payload.customer_id, payload.due
        )
    session.set_leaf_selected(
        payload.earnings_class, payload.period_id, payload.bonus_title, payload.customer_id, payload.selected
    )
    return {
        "selected": session.is_selected(
            payload.earnings_class, payload.period_id, payload.bonus_title, payload.customer_id
        ),
        "totals": _serialize_totals(session.totals()),
        "session": _serialize_session(session),
    }


@router.post("/sessions/{session_id}/bonuses/expand")
async def expand_bonus(
    payload: BonusRef,
    wait: bool = Query(False),
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    _require_summary(session)
    try:
        if wait:
            await session.ensure_bonus_loaded(payload.earnings_class, payload.period_id, payload.bonus_title)
        else:
            session.expand_bonus(payload.earnings_class, payload.period_id, payload.bonus_title)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    detail = session.bonus_detail(payload.earnings_class, payload.period_id, payload.bonus_title)
    return _serialize_detail(session, detail, 0, DISPLAY_PAGE_SIZE)


@router.post("/sessions/{session_id}/bonuses/more")
async def load_more_payables(
    payload: BonusRef,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    _require_summary(session)
    try:
        detail = await session.load_more(payload.earnings_class, payload.period_id, payload.bonus_title)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    return _serialize_detail(session, detail, 0, DISPLAY_PAGE_SIZE)


@router.get("/sessions/{session_id}/bonuses/payables")
def list_bonus_payables(
    earnings_class: str,
    period_id: str,
    bonus_title: str,
    offset: int = Query(0, ge=0),
    count: int = Query(DISPLAY_PAGE_SIZE, ge=1, le=500),
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    _require_summary(session)
    try:
        ref = BonusRef(earnings_class=earnings_class, period_id=period_id, bonus_title=bonus_title)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid bonus group reference") from exc
    try:
        selection = session.bonus_selection(ref.earnings_class, ref.period_id, ref.bonus_title)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    detail = session.bonus_detail(ref.earnings_class, ref.period_id, ref.bonus_title)
    body = _serialize_detail(session, detail, offset, count)
    body["selection"] = _serialize_selection(selection)
    body["offset"] = offset
    return body


@router.get("/sessions/{session_id}/customers/{customer_id}")
async def read_customer(
    customer_id: str,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    try:
        view = await session.load_customer(customer_id)
    except PayablesClientError as exc:
        raise HTTPException(status_code=502, detail=f"Could not load customer payables: {exc}") from exc
    if view is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return _serialize_customer(session, view)


@router.post("/sessions/{session_id}/customers/{customer_id}/selection")
def select_customer(
    customer_id: str,
    payload: CustomerSelection,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    try:
        if payload.period_id:
            session.set_customer_period_selected(customer_id, payload.period_id, payload.selected)
        else:
            session.set_customer_all_selected(customer_id, payload.selected)
        view = session.customers[customer_id.strip()]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    body = _serialize_customer(session, view)
    body["totals"] = _serialize_totals(session.totals())
    return body


@router.get("/sessions/{session_id}/batch")
def read_batch(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    payload = session.build_payload()
    return {
        "totals": _serialize_totals(session.totals()),
        "payload": payload.to_wire() if payload else None,
        "validation": _serialize_validation(session.validation),
        "allow_negatives_once": session.allow_negatives_once,
        "ready_to_create": session.ready_to_create,
    }


@router.post("/sessions/{session_id}/batch/validate")
async def validate_batch(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    validation = await session.request_batch()
    return {
        "validation": _serialize_validation(validation),
        "ready_to_create": session.ready_to_create,
        "allow_negatives_once": session.allow_negatives_once,
    }


@router.post("/sessions/{session_id}/batch/allow-negatives")
def allow_negatives(
    payload: AllowNegatives,
    session: PayablesSession = Depends(get_payables_session),
) -> dict[str, Any]:
    if payload.allow and session.validation.status is not BatchStatus.INVALID:
        raise HTTPException(status_code=409, detail="Negative payments can only be allowed after a failed validation")
    session.set_allow_negatives_once(payload.allow)
    return {"allow_negatives_once": session.allow_negatives_once}


@router.post("/sessions/{session_id}/batch/dismiss")
def dismiss_validation(session: PayablesSession = Depends(get_payables_session)) -> dict[str, Any]:
    session.dismiss_validation()
    return {"validation": _serialize_validation(session.validation)}


@router.post("/sessions/{session_id}/batch/create")
async def create_batch(
    payload: CreateBatchRequest,
    session: PayablesSession = Depends(get_payables_session),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if not session.ready_to_create:
        raise HTTPException(status_code=409, detail="Batch must be validated before it can be created")
    totals = session.totals()
    result = await session.create_batch(payload.comment)
    submission = crud.record_batch_submission(
        db,
        session_id=session.id,
        cutoff_date=session.cutoff,
        payload=result.payload or {},
        totals=totals,
        ok=result.ok,
        error=None if result.ok else result.message,
    )
    if not result.ok:
        raise HTTPException(
            status_code=502,
            detail={"message": "The batch could not be created. Please try again.", "error": result.message},
        )
    return {"ok": True, "submission_id": submission.id, "response": result.response, "totals": _serialize_totals(totals)}
