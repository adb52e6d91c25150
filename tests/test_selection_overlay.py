import pytest

from payables.core.keys import BonusGroupKey, EarningsClass, LeafKey, PeriodKey, as_class
from payables.core.overlay import SelectionOverlay


def test_keys_normalize_feed_spellings():
    assert BonusGroupKey.build("release", 7, " Fast Start ") == BonusGroupKey.build(
        EarningsClass.RELEASE, "7", "fast start"
    )
    leaf = LeafKey.build("FORFEIT", " 3 ", "Matching", " C1 ")
    assert leaf == LeafKey(EarningsClass.FORFEIT, "3", "matching", "C1")
    assert leaf.group.period_key == PeriodKey(EarningsClass.FORFEIT, "3")
    assert str(leaf.group) == "FORFEIT|3|matching"


def test_unknown_earnings_class_is_rejected():
    with pytest.raises(ValueError, match="Unknown earnings class"):
        as_class("PENDING")


def test_base_rule_selects_release_and_forfeit_but_never_hold():
    overlay = SelectionOverlay()
    assert overlay.resolve_default("RELEASE", "1", "Fast Start") is True
    assert overlay.resolve_default("FORFEIT", "1", "Fast Start") is True
    assert overlay.resolve_default("HOLD", "1", "Fast Start") is False
    assert overlay.is_selected("HOLD", "1", "Fast Start", "C1") is False


def test_bonus_default_wins_regardless_of_write_order():
    first = (
        SelectionOverlay()
        .set_class_selected("RELEASE", True)
        .set_period_selected("RELEASE", "1", True)
        .set_bonus_selected("RELEASE", "1", "Fast Start", False)
    )
    assert first.resolve_default("RELEASE", "1", "Fast Start") is False

    # a broader write afterwards clears the finer default, so set it again last
    second = (
        SelectionOverlay()
        .set_bonus_selected("RELEASE", "1", "Fast Start", False)
        .set_class_selected("RELEASE", True)
        .set_bonus_selected("RELEASE", "1", "Fast Start", False)
    )
    assert second.resolve_default("RELEASE", "1", "Fast Start") is False
    assert second.resolve_default("RELEASE", "1", "Matching") is True


def test_period_default_overrides_class_default():
    overlay = SelectionOverlay().set_class_selected("FORFEIT", False).set_period_selected("FORFEIT", "2", True)
    assert overlay.resolve_default("FORFEIT", "2", "Any Bonus") is True
    assert overlay.resolve_default("FORFEIT", "3", "Any Bonus") is False


def test_period_write_cascades_over_bonus_defaults_and_overrides():
    overlay = (
        SelectionOverlay()
        .set_bonus_selected("RELEASE", "1", "Fast Start", False)
        .set_leaf_selected("RELEASE", "1", "Fast Start", "C1", True)
        .set_leaf_selected("RELEASE", "1", "Matching", "C2", False)
        .set_leaf_selected("RELEASE", "2", "Matching", "C3", False)
    )
    updated = overlay.set_period_selected("RELEASE", "1", True)

    assert updated.resolve_default("RELEASE", "1", "Fast Start") is True
    assert updated.resolve_default("RELEASE", "1", "Matching") is True
    assert updated.group_overrides(BonusGroupKey.build("RELEASE", "1", "Fast Start")) == {}
    assert updated.group_overrides(BonusGroupKey.build("RELEASE", "1", "Matching")) == {}
    # other periods are untouched
    assert updated.is_selected("RELEASE", "2", "Matching", "C3") is False
    assert updated.override_count == 1


def test_class_write_clears_everything_beneath_the_class_only():
    overlay = (
        SelectionOverlay()
        .set_period_selected("RELEASE", "1", False)
        .set_leaf_selected("RELEASE", "1", "Fast Start", "C1", True)
        .set_leaf_selected("FORFEIT", "1", "Fast Start", "C1", False)
    )
    updated = overlay.set_class_selected("RELEASE", True)
    assert updated.period_defaults == {}
    assert updated.is_selected("RELEASE", "1", "Fast Start", "C1") is True
    assert updated.is_selected("FORFEIT", "1", "Fast Start", "C1") is False
    assert updated.default_count == 1
    assert updated.override_count == 1


def test_leaf_override_equal_to_default_is_not_stored():
    overlay = SelectionOverlay().set_leaf_selected("RELEASE", "1", "Fast Start", "C1", True)
    assert len(overlay) == 0

    excluded = overlay.set_leaf_selected("RELEASE", "1", "Fast Start", "C1", False)
    assert excluded.override_count == 1
    restored = excluded.set_leaf_selected("RELEASE", "1", "Fast Start", "C1", True)
    assert restored.override_count == 0
    assert restored.overrides == {}


def test_hold_writes_are_no_ops():
    overlay = SelectionOverlay().set_leaf_selected("RELEASE", "1", "Fast Start", "C1", False)
    assert overlay.set_class_selected("HOLD", True) is overlay
    assert overlay.set_period_selected("HOLD", "1", True) is overlay
    assert overlay.set_bonus_selected("HOLD", "1", "Fast Start", True) is overlay
    assert overlay.set_leaf_selected("HOLD", "1", "Fast Start", "C1", True) is overlay
    assert overlay.is_selected("HOLD", "1", "Fast Start", "C1") is False


def test_mutators_return_new_values_and_share_untouched_maps():
    base = SelectionOverlay().set_leaf_selected("FORFEIT", "1", "Matching", "C5", False)
    updated = base.set_leaf_selected("RELEASE", "1", "Fast Start", "C1", False)
    assert base.override_count == 1
    assert updated.override_count == 2
    assert updated.overrides[EarningsClass.FORFEIT] is base.overrides[EarningsClass.FORFEIT]


def test_blank_period_or_customer_is_ignored():
    overlay = SelectionOverlay()
    assert overlay.set_period_selected("RELEASE", " ", False) is overlay
    assert overlay.set_bonus_selected("RELEASE", "", "Fast Start", False) is overlay
    assert overlay.set_leaf_selected("RELEASE", "1", "Fast Start", "  ", False) is overlay


def test_inclusions_and_exclusions_are_sorted():
    key = BonusGroupKey.build("RELEASE", "1", "Fast Start")
    overlay = (
        SelectionOverlay()
        .set_bonus_selected("RELEASE", "1", "Fast Start", False)
        .set_leaf_selected("RELEASE", "1", "Fast Start", "C9", True)
        .set_leaf_selected("RELEASE", "1", "Fast Start", "C3", True)
    )
    assert overlay.inclusions(key) == ["C3", "C9"]
    assert overlay.exclusions(key) == []
    assert sorted(str(leaf) for leaf, _ in overlay.iter_overrides()) == [
        "RELEASE|1|fast start|C3",
        "RELEASE|1|fast start|C9",
    ]
