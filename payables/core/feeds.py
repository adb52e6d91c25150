"""Normalization of the unreleased-earnings feeds into typed records."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Mapping, Optional

from dateutil import parser as date_parser

from payables.core.keys import (
    CLASS_ORDER,
    BonusGroupKey,
    EarningsClass,
    LeafKey,
    as_class,
    normalize_bonus,
    normalize_customer,
    normalize_period,
)

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0")


def parse_money(value: Any) -> Decimal:
    """Coerce a feed amount into a cent-quantized Decimal, treating blanks as zero."""

    if value is None or value == "":
        return ZERO
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError):
        return ZERO
    try:
        return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ZERO


def parse_count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a feed timestamp; aware values are converted to naive UTC."""

    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass
class Period:
    id: str
    begin: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_feed(cls, raw: Optional[Mapping[str, Any]]) -> "Period":
        raw = raw or {}
        return cls(
            id=normalize_period(raw.get("id")),
            begin=parse_datetime(raw.get("begin")),
            end=parse_datetime(raw.get("end")),
        )

    @property
    def sort_key(self) -> tuple:
        return (self.end is None, self.end or datetime.min, self.id)


@dataclass
class SummaryRow:
    """One bonus group from the unreleased summary feed."""

    earnings_class: EarningsClass
    bonus_title: str
    period: Period
    paid_amount: Decimal = ZERO
    released: Decimal = ZERO
    customer_paid_count: int = 0
    total_volume: Decimal = ZERO

    @property
    def key(self) -> BonusGroupKey:
        return BonusGroupKey.build(self.earnings_class, self.period.id, self.bonus_title)

    @property
    def due(self) -> Decimal:
        return self.paid_amount - self.released


@dataclass
class LeafPayable:
    """One customer's unreleased amount inside a bonus group."""

    group: BonusGroupKey
    customer_id: str
    display_name: str = ""
    web_alias: Optional[str] = None
    status_name: Optional[str] = None
    status_class: Optional[str] = None
    customer_type: Optional[str] = None
    amount: Decimal = ZERO
    released: Decimal = ZERO

    @property
    def key(self) -> LeafKey:
        return self.group.leaf(self.customer_id)

    @property
    def due(self) -> Decimal:
        return self.amount - self.released


@dataclass
class CustomerProfile:
    id: str
    display_name: str = ""
    web_alias: Optional[str] = None
    status_name: Optional[str] = None
    status_class: Optional[str] = None
    earnings_class: EarningsClass = EarningsClass.HOLD


@dataclass
class CustomerBonus:
    """A customer's total for one bonus inside one period."""

    earnings_class: EarningsClass
    bonus_title: str
    period: Period
    amount: Decimal = ZERO
    released: Decimal = ZERO
    level: Optional[int] = None

    @property
    def due(self) -> Decimal:
        return self.amount - self.released

    def leaf_key(self, customer_id: str) -> LeafKey:
        return LeafKey.build(self.earnings_class, self.period.id, self.bonus_title, customer_id)


@dataclass
class CustomerPeriod:
    period: Period
    items: List[CustomerBonus] = field(default_factory=list)


def _class_rank(earnings_class: EarningsClass) -> int:
    return CLASS_ORDER.index(earnings_class)


def merge_summary_rows(raw_rows: Iterable[Mapping[str, Any]]) -> List[SummaryRow]:
    """Fold duplicate summary rows for the same group into one and sort them.

    The summary feed can emit the same ``(class, period, bonus)`` several
    times; amounts and counts are summed, never overwritten.
    """

    grouped: dict[BonusGroupKey, SummaryRow] = {}
    for raw in raw_rows or []:
        try:
            earnings_class = as_class(raw.get("earningsClass"))
        except ValueError:
            logger.warning("Skipping summary row with unknown earnings class %r", raw.get("earningsClass"))
            continue
        period = Period.from_feed(raw.get("period"))
        bonus_title = str(raw.get("bonusTitle") or "").strip()
        key = BonusGroupKey.build(earnings_class, period.id, bonus_title)

        row = grouped.get(key)
        if row is None:
            row = SummaryRow(earnings_class=earnings_class, bonus_title=bonus_title, period=period)
            grouped[key] = row
        row.paid_amount += parse_money(raw.get("paidAmount"))
        row.released += parse_money(raw.get("released"))
        row.customer_paid_count += parse_count(raw.get("customerPaidCount"))
        row.total_volume += parse_money(raw.get("totalVolume"))

    return sorted(
        grouped.values(),
        key=lambda row: (_class_rank(row.earnings_class), row.period.sort_key, row.bonus_title.lower()),
    )


def _leaf_from_feed(raw: Mapping[str, Any], group: BonusGroupKey) -> Optional[LeafPayable]:
    customer = raw.get("customer") or {}
    customer_id = normalize_customer(customer.get("id"))
    if not customer_id:
        return None
    status = customer.get("status") or {}
    customer_type = customer.get("customerType") or {}
    return LeafPayable(
        group=group,
        customer_id=customer_id,
        display_name=str(customer.get("fullName") or ""),
        web_alias=customer.get("webAlias"),
        status_name=status.get("name"),
        status_class=status.get("statusClass"),
        customer_type=customer_type.get("name"),
    )


def merge_leaf_payables(
    existing: Iterable[LeafPayable],
    raw_rows: Iterable[Mapping[str, Any]],
    group: BonusGroupKey,
) -> List[LeafPayable]:
    """Add a page of leaf-feed rows to already loaded payables.

    Rows are summed per customer (a customer may appear several times and may
    straddle page boundaries) and the result is sorted by display name.
    """

    by_customer: dict[str, LeafPayable] = {}
    for payable in existing or []:
        by_customer[payable.customer_id] = replace(payable)

    for raw in raw_rows or []:
        leaf = _leaf_from_feed(raw, group)
        if leaf is None:
            continue
        current = by_customer.setdefault(leaf.customer_id, leaf)
        current.amount += parse_money(raw.get("amount"))
        current.released += parse_money(raw.get("released"))

    return sorted(by_customer.values(), key=lambda item: (item.display_name.casefold(), item.customer_id))


def parse_customer(raw: Optional[Mapping[str, Any]]) -> Optional[CustomerProfile]:
    if not raw:
        return None
    status = raw.get("status") or {}
    try:
        earnings_class = as_class(status.get("earningsClass"))
    except ValueError:
        # a customer without a known earnings class can never be paid
        earnings_class = EarningsClass.HOLD
    return CustomerProfile(
        id=normalize_customer(raw.get("id")),
        display_name=str(raw.get("fullName") or ""),
        web_alias=raw.get("webAlias"),
        status_name=status.get("name"),
        status_class=status.get("statusClass"),
        earnings_class=earnings_class,
    )


def group_customer_rows(
    raw_rows: Iterable[Mapping[str, Any]],
    earnings_class: EarningsClass,
) -> List[CustomerPeriod]:
    """Group one customer's unreleased rows by period, then by bonus title."""

    periods: dict[str, CustomerPeriod] = {}
    for raw in raw_rows or []:
        period = Period.from_feed(raw.get("period"))
        if not period.id:
            continue
        bucket = periods.setdefault(period.id, CustomerPeriod(period=period))
        bonus_key = normalize_bonus(raw.get("bonusTitle"))
        item = next((x for x in bucket.items if normalize_bonus(x.bonus_title) == bonus_key), None)
        if item is None:
            item = CustomerBonus(
                earnings_class=earnings_class,
                bonus_title=str(raw.get("bonusTitle") or "").strip(),
                period=period,
                level=raw.get("level"),
            )
            bucket.items.append(item)
        item.amount += parse_money(raw.get("amount"))
        item.released += parse_money(raw.get("released"))

    result = sorted(periods.values(), key=lambda p: p.period.sort_key)
    for bucket in result:
        bucket.items.sort(key=lambda item: item.bonus_title.casefold())
    return result


__all__ = [
    "CustomerBonus",
    "CustomerPeriod",
    "CustomerProfile",
    "LeafPayable",
    "MONEY_QUANT",
    "Period",
    "SummaryRow",
    "group_customer_rows",
    "merge_leaf_payables",
    "merge_summary_rows",
    "parse_customer",
    "parse_datetime",
    "parse_money",
]
