"""Selection counts, tri-state flags and batch totals over summary + leaf data.

Each bonus group is counted the same way at every level:

* leaves fully loaded: exact, by resolving every loaded leaf;
* nothing loaded: inferred from the summary population, the group default
  and the group's explicit overrides;
* partially loaded: exact over loaded leaves, inferred for the unseen
  remainder using only the overrides of customers not loaded yet.

Period and class figures are sums of their groups.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence

from payables.core.feeds import ZERO, LeafPayable, Period, SummaryRow
from payables.core.keys import CLASS_ORDER, BonusGroupKey, EarningsClass, LeafKey, as_class, normalize_period
from payables.core.loader import BonusDetail
from payables.core.overlay import SelectionOverlay

Details = Mapping[BonusGroupKey, BonusDetail]
LeafDues = Mapping[LeafKey, Decimal]


class TriState(str, Enum):
    ALL = "all"
    NONE = "none"
    SOME = "some"


def tri_state(selected: int, total: int) -> TriState:
    if total <= 0 or selected <= 0:
        return TriState.NONE
    if selected >= total:
        return TriState.ALL
    return TriState.SOME


@dataclass(frozen=True)
class SelectionCount:
    selected: int = 0
    total: int = 0

    def __add__(self, other: "SelectionCount") -> "SelectionCount":
        return SelectionCount(self.selected + other.selected, self.total + other.total)

    @property
    def state(self) -> TriState:
        return tri_state(self.selected, self.total)


@dataclass(frozen=True)
class GroupTotals:
    customers: int = 0
    due: Decimal = ZERO


@dataclass
class BatchTotals:
    release_total: Decimal = ZERO
    forfeit_total: Decimal = ZERO
    total_customers: int = 0


def _loaded(detail: Optional[BonusDetail]) -> List[LeafPayable]:
    if detail is None or not detail.payables:
        return []
    return detail.payables


def _unseen_overrides(
    overlay: SelectionOverlay, key: BonusGroupKey, loaded: Sequence[LeafPayable], wanted: bool
) -> List[str]:
    seen = {payable.customer_id for payable in loaded}
    return [
        customer_id
        for customer_id, value in overlay.group_overrides(key).items()
        if bool(value) is wanted and customer_id not in seen
    ]


def group_selection(
    row: SummaryRow, overlay: SelectionOverlay, detail: Optional[BonusDetail] = None
) -> SelectionCount:
    key = row.key
    loaded = _loaded(detail)
    selected = sum(1 for payable in loaded if overlay.leaf_selected(payable.key))
    if detail is not None and detail.fully_loaded:
        return SelectionCount(selected, len(loaded))

    remainder = max(0, row.customer_paid_count - len(loaded))
    if overlay.group_default(key):
        excluded = _unseen_overrides(overlay, key, loaded, wanted=False)
        selected += max(0, remainder - len(excluded))
    else:
        included = _unseen_overrides(overlay, key, loaded, wanted=True)
        selected += min(remainder, len(included))
    return SelectionCount(selected, len(loaded) + remainder)


def group_totals(
    row: SummaryRow,
    overlay: SelectionOverlay,
    detail: Optional[BonusDetail] = None,
    leaf_dues: Optional[LeafDues] = None,
) -> GroupTotals:
    """Customers and due amount a bonus group contributes to the batch."""

    key = row.key
    if key.earnings_class is EarningsClass.HOLD:
        return GroupTotals()

    leaf_dues = leaf_dues or {}
    loaded = _loaded(detail)
    customers = 0
    due = ZERO
    for payable in loaded:
        if overlay.leaf_selected(payable.key):
            customers += 1
            due += payable.due
    if detail is not None and detail.fully_loaded:
        return GroupTotals(customers, due)

    remainder = max(0, row.customer_paid_count - len(loaded))
    remainder_due = row.due - sum((payable.due for payable in loaded), ZERO)
    if overlay.group_default(key):
        excluded = _unseen_overrides(overlay, key, loaded, wanted=False)
        customers += max(0, remainder - len(excluded))
        due += remainder_due - sum((leaf_dues.get(key.leaf(cid), ZERO) for cid in excluded), ZERO)
    else:
        included = _unseen_overrides(overlay, key, loaded, wanted=True)
        customers += min(remainder, len(included))
        due += sum((leaf_dues.get(key.leaf(cid), ZERO) for cid in included), ZERO)
    return GroupTotals(customers, due)


def _rows_in_scope(
    rows: Iterable[SummaryRow], earnings_class: EarningsClass, period_id: Optional[str] = None
) -> Iterable[SummaryRow]:
    for row in rows:
        if row.earnings_class is not earnings_class:
            continue
        if period_id is not None and row.period.id != period_id:
            continue
        yield row


def period_selection(
    rows: Iterable[SummaryRow],
    overlay: SelectionOverlay,
    details: Details,
    earnings_class,
    period_id,
) -> SelectionCount:
    cls = as_class(earnings_class)
    pid = normalize_period(period_id)
    if not pid:
        return SelectionCount()
    total = SelectionCount()
    for row in _rows_in_scope(rows, cls, pid):
        total += group_selection(row, overlay, details.get(row.key))
    return total


def class_selection(
    rows: Iterable[SummaryRow], overlay: SelectionOverlay, details: Details, earnings_class
) -> SelectionCount:
    cls = as_class(earnings_class)
    total = SelectionCount()
    for row in _rows_in_scope(rows, cls):
        if not row.period.id:
            continue
        total += group_selection(row, overlay, details.get(row.key))
    return total


def batch_totals(
    rows: Iterable[SummaryRow],
    overlay: SelectionOverlay,
    details: Details,
    leaf_dues: Optional[LeafDues] = None,
) -> BatchTotals:
    """Release total, forfeit total and included customers for the current selection."""

    totals = BatchTotals()
    for row in rows:
        if row.earnings_class is EarningsClass.HOLD:
            continue
        group = group_totals(row, overlay, details.get(row.key), leaf_dues)
        totals.total_customers += group.customers
        if row.earnings_class is EarningsClass.RELEASE:
            totals.release_total += group.due
        else:
            totals.forfeit_total += group.due
    return totals


@dataclass
class BonusNode:
    row: SummaryRow
    selection: SelectionCount
    totals: GroupTotals
    loading: bool = False
    loaded: bool = False
    has_more: bool = False
    error: Optional[str] = None


@dataclass
class PeriodNode:
    earnings_class: EarningsClass
    period: Period
    bonuses: List[BonusNode] = field(default_factory=list)
    selection: SelectionCount = field(default_factory=SelectionCount)
    population: int = 0
    due: Decimal = ZERO


@dataclass
class ClassNode:
    earnings_class: EarningsClass
    periods: List[PeriodNode] = field(default_factory=list)
    selection: SelectionCount = field(default_factory=SelectionCount)
    population: int = 0
    due: Decimal = ZERO
    selected_due: Decimal = ZERO


def build_hierarchy(
    rows: Iterable[SummaryRow],
    overlay: SelectionOverlay,
    details: Details,
    leaf_dues: Optional[LeafDues] = None,
) -> List[ClassNode]:
    """Class -> period -> bonus view with counts, tri-states and summary dues."""

    by_class: dict[EarningsClass, OrderedDict[str, PeriodNode]] = {}
    for row in rows:
        periods = by_class.setdefault(row.earnings_class, OrderedDict())
        node = periods.get(row.period.id)
        if node is None:
            node = PeriodNode(earnings_class=row.earnings_class, period=row.period)
            periods[row.period.id] = node
        detail = details.get(row.key)
        node.bonuses.append(
            BonusNode(
                row=row,
                selection=group_selection(row, overlay, detail),
                totals=group_totals(row, overlay, detail, leaf_dues),
                loading=bool(detail and detail.loading),
                loaded=bool(detail and detail.loaded),
                has_more=bool(detail and detail.pagination.has_more),
                error=detail.error if detail else None,
            )
        )

    result: List[ClassNode] = []
    for cls in CLASS_ORDER:
        if cls not in by_class:
            continue
        class_node = ClassNode(earnings_class=cls)
        for period_node in sorted(by_class[cls].values(), key=lambda p: p.period.sort_key):
            period_node.bonuses.sort(key=lambda b: b.row.bonus_title.casefold())
            for bonus in period_node.bonuses:
                period_node.population += bonus.row.customer_paid_count
                period_node.due += bonus.row.due
                if period_node.period.id:
                    period_node.selection += bonus.selection
                class_node.selected_due += bonus.totals.due
            class_node.periods.append(period_node)
            class_node.population += period_node.population
            class_node.due += period_node.due
            class_node.selection += period_node.selection
        result.append(class_node)
    return result


__all__ = [
    "BatchTotals",
    "BonusNode",
    "ClassNode",
    "GroupTotals",
    "PeriodNode",
    "SelectionCount",
    "TriState",
    "batch_totals",
    "build_hierarchy",
    "class_selection",
    "group_selection",
    "group_totals",
    "period_selection",
    "tri_state",
]
