"""Payables session coordinator.

A ``PayablesSession`` owns everything the Commission Payables workflow keeps
between operator actions for one cutoff date: the summary rows, the
selection overlay, the leaf cache, recorded leaf dues and the batch
validation gate. The summary view and the single-customer view both work
through the same session so selections survive switching between them.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from payables.config import LEAF_PAGE_SIZE
from payables.core.aggregation import (
    BatchTotals,
    ClassNode,
    SelectionCount,
    batch_totals,
    build_hierarchy,
    class_selection,
    group_selection,
    period_selection,
)
from payables.core.feeds import (
    CustomerPeriod,
    CustomerProfile,
    LeafPayable,
    SummaryRow,
    group_customer_rows,
    merge_summary_rows,
    parse_customer,
    parse_money,
)
from payables.core.keys import BonusGroupKey, LeafKey, normalize_customer, normalize_period
from payables.core.loader import BonusDetail, LeafLoader
from payables.core.overlay import SelectionOverlay
from payables.core.payload import BatchPayload, build_batch_payload
from payables.schemas import BatchValidationResponse

logger = logging.getLogger(__name__)


class BatchStatus(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class NegativeItem:
    node_id: str
    net_due: Decimal


@dataclass
class BatchValidation:
    status: BatchStatus = BatchStatus.IDLE
    message: Optional[str] = None
    negative_items: List[NegativeItem] = field(default_factory=list)
    totals: Optional[Dict[str, Any]] = None
    computed_at: Optional[datetime] = None


@dataclass
class CreateResult:
    ok: bool
    message: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None


@dataclass
class CustomerView:
    profile: CustomerProfile
    periods: List[CustomerPeriod] = field(default_factory=list)


def default_cutoff(today: Optional[date] = None) -> datetime:
    """End of the current day, the cutoff the dashboard opens with."""

    return datetime.combine(today or date.today(), time(23, 59, 59))


class PayablesSession:
    def __init__(self, feed, cutoff: Optional[datetime] = None, leaf_page_size: int = LEAF_PAGE_SIZE) -> None:
        self.id = uuid.uuid4().hex
        self.feed = feed
        self.loader = LeafLoader(feed, page_size=leaf_page_size, on_loaded=self._record_loaded_dues)
        self._token = 0
        self.set_cutoff(cutoff or default_cutoff())

    # -- lifecycle ---------------------------------------------------------

    def set_cutoff(self, cutoff: datetime) -> None:
        """Switch to a new cutoff date, dropping all state tied to the old one."""

        self._token += 1
        self.cutoff = cutoff
        self.summary_rows: Optional[List[SummaryRow]] = None
        self.summary_error: Optional[str] = None
        self.summary_loading = False
        self.leaf_dues: Dict[LeafKey, Decimal] = {}
        self.customers: Dict[str, CustomerView] = {}
        self._overlay = SelectionOverlay()
        self._allow_negatives_once = False
        self._approved_payload: Optional[BatchPayload] = None
        self._rejected_payload: Optional[BatchPayload] = None
        self.validation = BatchValidation()
        self.last_create: Optional[CreateResult] = None
        self.loader.reset(cutoff)
        logger.info("Payables session %s reset to cutoff %s", self.id, cutoff.isoformat())

    async def load_summary(self) -> Optional[List[SummaryRow]]:
        token = self._token
        cutoff = self.cutoff
        self.summary_loading = True
        try:
            raw_rows = await asyncio.to_thread(self.feed.fetch_summary, cutoff)
        except Exception as exc:
            if token != self._token:
                logger.info("Discarding failed summary fetch for stale cutoff %s", cutoff)
                return None
            logger.warning("Summary fetch for %s failed: %s", cutoff, exc)
            self.summary_loading = False
            self.summary_error = str(exc) or exc.__class__.__name__
            return None

        if token != self._token:
            logger.info("Discarding summary fetched for stale cutoff %s", cutoff)
            return None
        self.summary_rows = merge_summary_rows(raw_rows)
        self.summary_error = None
        self.summary_loading = False
        return self.summary_rows

    @property
    def rows(self) -> List[SummaryRow]:
        return self.summary_rows or []

    def find_row(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> SummaryRow:
        key = BonusGroupKey.build(earnings_class, period_id, bonus_title)
        for row in self.rows:
            if row.key == key:
                return row
        raise KeyError(f"No summary row for bonus group {key}")

    # -- selection ---------------------------------------------------------

    @property
    def overlay(self) -> SelectionOverlay:
        return self._overlay

    def _commit(self, overlay: SelectionOverlay) -> None:
        if overlay is self._overlay:
            return
        self._overlay = overlay
        # a changed selection invalidates any earlier approval
        self._allow_negatives_once = False
        self._approved_payload = None
        self._rejected_payload = None

    def resolve_default(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> bool:
        return self._overlay.resolve_default(earnings_class, period_id, bonus_title)

    def is_selected(self, earnings_class: Any, period_id: Any, bonus_title: Any, customer_id: Any) -> bool:
        return self._overlay.is_selected(earnings_class, period_id, bonus_title, customer_id)

    def set_class_selected(self, earnings_class: Any, value: bool) -> None:
        self._commit(self._overlay.set_class_selected(earnings_class, value))

    def set_period_selected(self, earnings_class: Any, period_id: Any, value: bool) -> None:
        self._commit(self._overlay.set_period_selected(earnings_class, period_id, value))

    def set_bonus_selected(self, earnings_class: Any, period_id: Any, bonus_title: Any, value: bool) -> None:
        self._commit(self._overlay.set_bonus_selected(earnings_class, period_id, bonus_title, value))

    def set_leaf_selected(
        self,
        earnings_class: Any,
        period_id: Any,
        bonus_title: Any,
        customer_id: Any,
        value: bool,
    ) -> None:
        self._commit(self._overlay.set_leaf_selected(earnings_class, period_id, bonus_title, customer_id, value))

    def record_leaf_due(
        self, earnings_class: Any, period_id: Any, bonus_title: Any, customer_id: Any, due: Any
    ) -> None:
        key = LeafKey.build(earnings_class, period_id, bonus_title, customer_id)
        self.leaf_dues[key] = parse_money(due)

    def _record_loaded_dues(self, payables: List[LeafPayable]) -> None:
        for payable in payables:
            self.leaf_dues[payable.key] = payable.due

    # -- leaf loading ------------------------------------------------------

    def bonus_detail(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> Optional[BonusDetail]:
        return self.loader.get(BonusGroupKey.build(earnings_class, period_id, bonus_title))

    def expand_bonus(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> Optional[asyncio.Task]:
        return self.loader.expand(self.find_row(earnings_class, period_id, bonus_title))

    async def ensure_bonus_loaded(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> Optional[BonusDetail]:
        return await self.loader.ensure_loaded(self.find_row(earnings_class, period_id, bonus_title))

    async def load_more(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> Optional[BonusDetail]:
        return await self.loader.load_more(self.find_row(earnings_class, period_id, bonus_title))

    # -- aggregation -------------------------------------------------------

    def bonus_selection(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> SelectionCount:
        row = self.find_row(earnings_class, period_id, bonus_title)
        return group_selection(row, self._overlay, self.loader.get(row.key))

    def period_selection(self, earnings_class: Any, period_id: Any) -> SelectionCount:
        return period_selection(self.rows, self._overlay, self.loader.entries, earnings_class, period_id)

    def class_selection(self, earnings_class: Any) -> SelectionCount:
        return class_selection(self.rows, self._overlay, self.loader.entries, earnings_class)

    def totals(self) -> BatchTotals:
        return batch_totals(self.rows, self._overlay, self.loader.entries, self.leaf_dues)

    def hierarchy(self) -> List[ClassNode]:
        return build_hierarchy(self.rows, self._overlay, self.loader.entries, self.leaf_dues)

    # -- single-customer view ---------------------------------------------

    async def load_customer(self, customer_id: Any) -> Optional[CustomerView]:
        token = self._token
        customer_id = normalize_customer(customer_id)
        raw_customer, raw_rows = await asyncio.to_thread(self.feed.fetch_customer, self.cutoff, customer_id)
        if token != self._token:
            logger.info("Discarding customer %s fetched for a stale cutoff", customer_id)
            return None
        profile = parse_customer(raw_customer)
        if profile is None:
            return None
        view = CustomerView(profile=profile, periods=group_customer_rows(raw_rows, profile.earnings_class))
        for bucket in view.periods:
            for item in bucket.items:
                self.leaf_dues[item.leaf_key(profile.id)] = item.due
        self.customers[profile.id] = view
        return view

    def _customer_view(self, customer_id: Any) -> CustomerView:
        customer_id = normalize_customer(customer_id)
        try:
            return self.customers[customer_id]
        except KeyError:
            raise KeyError(f"Customer {customer_id} has not been loaded") from None

    def set_customer_period_selected(self, customer_id: Any, period_id: Any, value: bool) -> None:
        view = self._customer_view(customer_id)
        period_id = normalize_period(period_id)
        for bucket in view.periods:
            if bucket.period.id == period_id:
                self._select_customer_items(view.profile, [bucket], value)
                return
        raise KeyError(f"Customer {view.profile.id} has no payables in period {period_id}")

    def set_customer_all_selected(self, customer_id: Any, value: bool) -> None:
        view = self._customer_view(customer_id)
        self._select_customer_items(view.profile, view.periods, value)

    def _select_customer_items(self, profile: CustomerProfile, periods: List[CustomerPeriod], value: bool) -> None:
        for bucket in periods:
            for item in bucket.items:
                self.leaf_dues[item.leaf_key(profile.id)] = item.due
                self.set_leaf_selected(item.earnings_class, bucket.period.id, item.bonus_title, profile.id, value)

    # -- batch -------------------------------------------------------------

    def build_payload(self, allow_negative_net_payments: bool = False) -> Optional[BatchPayload]:
        if self.cutoff is None or self.summary_rows is None:
            return None
        return build_batch_payload(self.cutoff, self.summary_rows, self._overlay, allow_negative_net_payments)

    @property
    def allow_negatives_once(self) -> bool:
        return self._allow_negatives_once

    def set_allow_negatives_once(self, value: bool) -> None:
        """Opt in, once, to creating a batch that failed the negative-payment check."""

        self._allow_negatives_once = bool(value) and self.validation.status is BatchStatus.INVALID

    @property
    def ready_to_create(self) -> bool:
        return self._approved_payload is not None

    def dismiss_validation(self) -> None:
        self.validation = BatchValidation()
        self._allow_negatives_once = False
        self._rejected_payload = None

    async def request_batch(self) -> BatchValidation:
        """Validate the current selection, or consume a one-time negative override.

        Never raises for remote failures; the outcome is in ``self.validation``.
        """

        payload = self.build_payload()
        if payload is None:
            self._approved_payload = None
            self.validation = BatchValidation(
                status=BatchStatus.ERROR, message="Batch is not ready yet. Please try again."
            )
            return self.validation

        if self._allow_negatives_once and self.validation.status is BatchStatus.INVALID:
            self._allow_negatives_once = False
            # only the exact payload the validator rejected may be overridden
            if payload == self._rejected_payload:
                self._approved_payload = payload.allowing_negatives()
                logger.info("Session %s approved batch with negative payments by operator override", self.id)
                return self.validation
            logger.info("Session %s selection differs from the rejected batch, validating again", self.id)

        token = self._token
        overlay = self._overlay
        self._approved_payload = None
        self._rejected_payload = None
        self.validation = BatchValidation(
            status=BatchStatus.VALIDATING, message="Validating batch for negative payments…"
        )
        try:
            raw = await asyncio.to_thread(self.feed.validate_batch, payload.to_wire())
            result = BatchValidationResponse.model_validate(raw or {})
        except Exception as exc:
            if token != self._token:
                return self.validation
            logger.warning("Batch validation for session %s failed: %s", self.id, exc)
            self.validation = BatchValidation(status=BatchStatus.ERROR, message="We couldn’t validate this batch.")
            return self.validation

        if token != self._token:
            logger.info("Discarding validation result for a stale cutoff")
            return self.validation
        if self._overlay is not overlay:
            logger.info("Discarding validation result for session %s: selection changed while validating", self.id)
            self.validation = BatchValidation(
                status=BatchStatus.ERROR, message="Selection changed during validation. Please validate again."
            )
            return self.validation

        totals = result.totals.model_dump() if result.totals else None
        if result.has_negatives:
            self.validation = BatchValidation(
                status=BatchStatus.INVALID,
                message="Some customers are below the minimum payout threshold",
                negative_items=[NegativeItem(item.node_id, item.net_due) for item in result.negative_items],
                totals=totals,
                computed_at=result.computed_at,
            )
            self._rejected_payload = payload
            logger.info("Batch validation found %d negative items", len(result.negative_items))
            return self.validation

        self.validation = BatchValidation(
            status=BatchStatus.VALID,
            message="Validation passed.",
            totals=totals,
            computed_at=result.computed_at,
        )
        self._approved_payload = payload
        return self.validation

    async def create_batch(self, comment: Optional[str] = None) -> CreateResult:
        """Send the approved payload to the creator.

        A failed create leaves the selection and the approval in place so the
        operator can retry.
        """

        if self._approved_payload is None:
            self.last_create = CreateResult(ok=False, message="Batch must be validated before it can be created.")
            return self.last_create

        token = self._token
        body = self._approved_payload.to_wire(comment)
        try:
            response = await asyncio.to_thread(self.feed.create_batch, body)
        except Exception as exc:
            logger.warning("Batch creation for session %s failed: %s", self.id, exc)
            result = CreateResult(ok=False, message=str(exc) or "The batch could not be created.", payload=body)
            if token == self._token:
                self.last_create = result
            return result

        result = CreateResult(ok=True, message="Batch created.", payload=body, response=response or {})
        if token == self._token:
            self._approved_payload = None
            self.last_create = result
        logger.info("Session %s created batch with %d groups", self.id, len(body["groups"]))
        return result


class SessionRegistry:
    """In-memory sessions keyed by id, one per operator workflow."""

    def __init__(self, feed, leaf_page_size: int = LEAF_PAGE_SIZE) -> None:
        self.feed = feed
        self.leaf_page_size = leaf_page_size
        self._sessions: Dict[str, PayablesSession] = {}

    def open(self, cutoff: Optional[datetime] = None) -> PayablesSession:
        session = PayablesSession(self.feed, cutoff=cutoff, leaf_page_size=self.leaf_page_size)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> PayablesSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown payables session {session_id}") from None

    def close(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = [
    "BatchStatus",
    "BatchValidation",
    "CreateResult",
    "CustomerView",
    "NegativeItem",
    "PayablesSession",
    "SessionRegistry",
    "default_cutoff",
]
