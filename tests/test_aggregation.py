from datetime import datetime
from decimal import Decimal

from payables.core.aggregation import (
    TriState,
    batch_totals,
    build_hierarchy,
    class_selection,
    group_selection,
    group_totals,
    period_selection,
    tri_state,
)
from payables.core.feeds import LeafPayable, Period, SummaryRow
from payables.core.keys import EarningsClass, LeafKey
from payables.core.loader import BonusDetail, Pagination
from payables.core.overlay import SelectionOverlay


def _row(
    earnings_class: str = "RELEASE",
    period_id: str = "P1",
    title: str = "Fast Start",
    count: int = 10,
    paid: str = "1000",
    released: str = "200",
    end: datetime | None = None,
) -> SummaryRow:
    return SummaryRow(
        earnings_class=EarningsClass(earnings_class),
        bonus_title=title,
        period=Period(id=period_id, end=end),
        paid_amount=Decimal(paid),
        released=Decimal(released),
        customer_paid_count=count,
    )


def _leaves(row: SummaryRow, ids, amount: str = "100", released: str = "20"):
    return [
        LeafPayable(
            group=row.key,
            customer_id=cid,
            display_name=f"Customer {cid}",
            amount=Decimal(amount),
            released=Decimal(released),
        )
        for cid in ids
    ]


def _detail(payables, has_more: bool = False) -> BonusDetail:
    return BonusDetail(payables=payables, pagination=Pagination(offset=len(payables), has_more=has_more))


ALL_IDS = [f"C{i}" for i in range(1, 11)]


def test_tri_state_boundaries():
    assert tri_state(0, 0) is TriState.NONE
    assert tri_state(3, 0) is TriState.NONE
    assert tri_state(0, 5) is TriState.NONE
    assert tri_state(2, 5) is TriState.SOME
    assert tri_state(5, 5) is TriState.ALL


def test_untouched_group_is_fully_selected_from_summary_alone():
    row = _row()
    overlay = SelectionOverlay()

    selection = group_selection(row, overlay)
    totals = group_totals(row, overlay)

    assert (selection.selected, selection.total) == (10, 10)
    assert selection.state is TriState.ALL
    assert totals.customers == 10
    assert totals.due == Decimal("800")


def test_excluding_one_customer_uses_the_recorded_due():
    row = _row()
    overlay = SelectionOverlay().set_leaf_selected("RELEASE", "P1", "Fast Start", "C7", False)
    leaf_dues = {LeafKey.build("RELEASE", "P1", "Fast Start", "C7"): Decimal("80")}

    selection = group_selection(row, overlay)
    totals = group_totals(row, overlay, leaf_dues=leaf_dues)

    assert (selection.selected, selection.total) == (9, 10)
    assert selection.state is TriState.SOME
    assert totals.customers == 9
    assert totals.due == Decimal("720")


def test_bonus_reset_restores_the_full_group():
    row = _row()
    overlay = (
        SelectionOverlay()
        .set_leaf_selected("RELEASE", "P1", "Fast Start", "C7", False)
        .set_bonus_selected("RELEASE", "P1", "Fast Start", True)
    )
    assert group_selection(row, overlay).state is TriState.ALL
    assert group_totals(row, overlay).due == Decimal("800")


def test_inferred_and_exact_counts_agree_once_leaves_load():
    row = _row()
    overlay = (
        SelectionOverlay()
        .set_leaf_selected("RELEASE", "P1", "Fast Start", "C7", False)
        .set_leaf_selected("RELEASE", "P1", "Fast Start", "C2", False)
    )
    leaf_dues = {
        LeafKey.build("RELEASE", "P1", "Fast Start", "C7"): Decimal("80"),
        LeafKey.build("RELEASE", "P1", "Fast Start", "C2"): Decimal("80"),
    }

    inferred = group_selection(row, overlay)
    partial_detail = _detail(_leaves(row, ALL_IDS[:4]), has_more=True)
    partial = group_selection(row, overlay, partial_detail)
    exact = group_selection(row, overlay, _detail(_leaves(row, ALL_IDS)))

    assert inferred == partial == exact
    assert exact.selected == 8

    assert group_totals(row, overlay, None, leaf_dues).due == Decimal("640")
    assert group_totals(row, overlay, partial_detail, leaf_dues).due == Decimal("640")
    assert group_totals(row, overlay, _detail(_leaves(row, ALL_IDS)), leaf_dues).due == Decimal("640")


def test_unselected_group_counts_only_inclusions():
    row = _row()
    overlay = (
        SelectionOverlay()
        .set_bonus_selected("RELEASE", "P1", "Fast Start", False)
        .set_leaf_selected("RELEASE", "P1", "Fast Start", "C3", True)
        .set_leaf_selected("RELEASE", "P1", "Fast Start", "C9", True)
    )
    leaf_dues = {
        LeafKey.build("RELEASE", "P1", "Fast Start", "C3"): Decimal("50"),
        LeafKey.build("RELEASE", "P1", "Fast Start", "C9"): Decimal("25.50"),
    }

    selection = group_selection(row, overlay)
    totals = group_totals(row, overlay, leaf_dues=leaf_dues)

    assert (selection.selected, selection.total) == (2, 10)
    assert totals.customers == 2
    assert totals.due == Decimal("75.50")


def test_loaded_group_smaller_than_population_uses_loaded_rows():
    row = _row(count=10)
    detail = _detail(_leaves(row, ["C1", "C2", "C3"]))
    overlay = SelectionOverlay().set_leaf_selected("RELEASE", "P1", "Fast Start", "C2", False)

    selection = group_selection(row, overlay, detail)
    assert (selection.selected, selection.total) == (2, 3)
    assert group_totals(row, overlay, detail).due == Decimal("160")


def test_hold_groups_contribute_nothing():
    hold = _row("HOLD", count=4, paid="400", released="0")
    overlay = SelectionOverlay().set_class_selected("HOLD", True)

    selection = group_selection(hold, overlay)
    assert (selection.selected, selection.total) == (0, 4)
    assert selection.state is TriState.NONE
    assert group_totals(hold, overlay).customers == 0

    totals = batch_totals([hold], overlay, {})
    assert totals.total_customers == 0
    assert totals.release_total == Decimal("0")


def test_batch_totals_split_release_and_forfeit():
    rows = [
        _row("RELEASE", "P1", "Fast Start", count=10, paid="1000", released="200"),
        _row("RELEASE", "P2", "Matching", count=2, paid="50", released="0"),
        _row("FORFEIT", "P1", "Fast Start", count=3, paid="90", released="30"),
        _row("HOLD", "P1", "Fast Start", count=5, paid="500", released="0"),
    ]
    overlay = SelectionOverlay().set_period_selected("RELEASE", "P2", False)

    totals = batch_totals(rows, overlay, {})

    assert totals.release_total == Decimal("800")
    assert totals.forfeit_total == Decimal("60")
    assert totals.total_customers == 13


def test_period_and_class_selection_sum_their_groups():
    rows = [
        _row("RELEASE", "P1", "Fast Start", count=10),
        _row("RELEASE", "P1", "Matching", count=4),
        _row("RELEASE", "P2", "Matching", count=6),
    ]
    overlay = SelectionOverlay().set_bonus_selected("RELEASE", "P1", "Matching", False)

    p1 = period_selection(rows, overlay, {}, "RELEASE", "P1")
    assert (p1.selected, p1.total) == (10, 14)
    assert p1.state is TriState.SOME

    everything = class_selection(rows, overlay, {}, "RELEASE")
    assert (everything.selected, everything.total) == (16, 20)
    assert class_selection(rows, overlay, {}, "FORFEIT").state is TriState.NONE


def test_hierarchy_orders_classes_periods_and_bonuses():
    rows = [
        _row("HOLD", "P1", "Fast Start", count=1),
        _row("RELEASE", "P2", "Matching", count=2, end=datetime(2025, 2, 28)),
        _row("RELEASE", "P1", "matching", count=3, end=datetime(2025, 1, 31)),
        _row("RELEASE", "P1", "Fast Start", count=4, end=datetime(2025, 1, 31)),
    ]
    tree = build_hierarchy(rows, SelectionOverlay(), {})

    assert [node.earnings_class for node in tree] == [EarningsClass.RELEASE, EarningsClass.HOLD]
    release = tree[0]
    assert [period.period.id for period in release.periods] == ["P1", "P2"]
    assert [bonus.row.bonus_title for bonus in release.periods[0].bonuses] == ["Fast Start", "matching"]
    assert release.population == 9
    assert release.selection.state is TriState.ALL
    assert release.selected_due == release.due
    assert tree[1].selection.state is TriState.NONE


def test_group_loaded_with_no_rows_counts_nothing():
    row = _row(count=10)
    detail = _detail([])

    selection = group_selection(row, SelectionOverlay(), detail)
    totals = group_totals(row, SelectionOverlay(), detail)

    assert (selection.selected, selection.total) == (0, 0)
    assert selection.state is TriState.NONE
    assert totals.customers == 0
    assert totals.due == Decimal("0")
