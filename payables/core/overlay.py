"""Sparse selection overlay for payout batches.

The overlay stores scope defaults (class, period, bonus) and per-leaf
overrides as nested maps keyed by the canonical key parts:

    class_defaults   {class: bool}
    period_defaults  {class: {period: bool}}
    bonus_defaults   {class: {period: {bonus: bool}}}
    overrides        {class: {period: {bonus: {customer: bool}}}}

Overlays are values. Every mutator returns a new overlay that shares every
sub-map it did not touch; HOLD writes (and writes without a period) return
the same object unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Sequence

from payables.core.keys import BonusGroupKey, EarningsClass, LeafKey, PeriodKey, as_class

Tree = Mapping[Any, Any]


def _get_path(tree: Tree, path: Sequence[Any]) -> Any:
    node: Any = tree
    for part in path:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _set_path(tree: Tree, path: Sequence[Any], value: Any) -> dict:
    head, rest = path[0], path[1:]
    updated = dict(tree)
    updated[head] = _set_path(tree.get(head, {}), rest, value) if rest else value
    return updated


def _remove_path(tree: Tree, path: Sequence[Any]) -> Tree:
    """Drop the sub-tree at ``path``, pruning parents left empty."""

    head, rest = path[0], path[1:]
    if head not in tree:
        return tree
    updated = dict(tree)
    if rest:
        child = _remove_path(tree[head], rest)
        if child is tree[head]:
            return tree
        if child:
            updated[head] = child
        else:
            del updated[head]
    else:
        del updated[head]
    return updated


def _count_leaves(tree: Tree) -> int:
    total = 0
    for value in tree.values():
        total += _count_leaves(value) if isinstance(value, Mapping) else 1
    return total


def base_default(earnings_class: EarningsClass) -> bool:
    """Selection for a group nobody has touched: everything except HOLD."""

    return earnings_class is not EarningsClass.HOLD


@dataclass(frozen=True)
class SelectionOverlay:
    class_defaults: Mapping[EarningsClass, bool] = field(default_factory=dict)
    period_defaults: Tree = field(default_factory=dict)
    bonus_defaults: Tree = field(default_factory=dict)
    overrides: Tree = field(default_factory=dict)

    # -- resolvers ---------------------------------------------------------

    def group_default(self, key: BonusGroupKey) -> bool:
        """Bonus default, then period default, then class default, then base rule."""

        if key.earnings_class is EarningsClass.HOLD:
            return False
        for value in (
            _get_path(self.bonus_defaults, key),
            _get_path(self.period_defaults, key.period_key),
            self.class_defaults.get(key.earnings_class),
        ):
            if value is not None:
                return bool(value)
        return base_default(key.earnings_class)

    def resolve_default(self, earnings_class: Any, period_id: Any, bonus_title: Any) -> bool:
        return self.group_default(BonusGroupKey.build(earnings_class, period_id, bonus_title))

    def leaf_selected(self, leaf: LeafKey) -> bool:
        if leaf.earnings_class is EarningsClass.HOLD:
            return False
        override = _get_path(self.overrides, leaf)
        if override is not None:
            return bool(override)
        return self.group_default(leaf.group)

    def is_selected(self, earnings_class: Any, period_id: Any, bonus_title: Any, customer_id: Any) -> bool:
        return self.leaf_selected(LeafKey.build(earnings_class, period_id, bonus_title, customer_id))

    def group_overrides(self, key: BonusGroupKey) -> Mapping[str, bool]:
        """Return ``{customer_id: selected}`` for explicit exceptions in a group."""

        found = _get_path(self.overrides, key)
        return found if found is not None else {}

    def inclusions(self, key: BonusGroupKey) -> list[str]:
        return sorted(cid for cid, value in self.group_overrides(key).items() if value and cid)

    def exclusions(self, key: BonusGroupKey) -> list[str]:
        return sorted(cid for cid, value in self.group_overrides(key).items() if not value and cid)

    def iter_overrides(self) -> Iterator[tuple[LeafKey, bool]]:
        for earnings_class, periods in self.overrides.items():
            for period_id, bonuses in periods.items():
                for bonus, customers in bonuses.items():
                    for customer_id, value in customers.items():
                        yield LeafKey(earnings_class, period_id, bonus, customer_id), bool(value)

    @property
    def override_count(self) -> int:
        return _count_leaves(self.overrides)

    @property
    def default_count(self) -> int:
        return (
            len(self.class_defaults)
            + _count_leaves(self.period_defaults)
            + _count_leaves(self.bonus_defaults)
        )

    def __len__(self) -> int:
        return self.default_count + self.override_count

    # -- mutators ----------------------------------------------------------

    def set_class_selected(self, earnings_class: Any, value: bool) -> "SelectionOverlay":
        """Set a class default and clear every finer entry under the class."""

        cls = as_class(earnings_class)
        if cls is EarningsClass.HOLD:
            return self
        return replace(
            self,
            class_defaults=_set_path(self.class_defaults, (cls,), bool(value)),
            period_defaults=_remove_path(self.period_defaults, (cls,)),
            bonus_defaults=_remove_path(self.bonus_defaults, (cls,)),
            overrides=_remove_path(self.overrides, (cls,)),
        )

    def set_period_selected(self, earnings_class: Any, period_id: Any, value: bool) -> "SelectionOverlay":
        key = PeriodKey.build(earnings_class, period_id)
        if key.earnings_class is EarningsClass.HOLD or not key.period_id:
            return self
        return replace(
            self,
            period_defaults=_set_path(self.period_defaults, key, bool(value)),
            bonus_defaults=_remove_path(self.bonus_defaults, key),
            overrides=_remove_path(self.overrides, key),
        )

    def set_bonus_selected(
        self, earnings_class: Any, period_id: Any, bonus_title: Any, value: bool
    ) -> "SelectionOverlay":
        key = BonusGroupKey.build(earnings_class, period_id, bonus_title)
        if key.earnings_class is EarningsClass.HOLD or not key.period_id:
            return self
        return replace(
            self,
            bonus_defaults=_set_path(self.bonus_defaults, key, bool(value)),
            overrides=_remove_path(self.overrides, key),
        )

    def set_leaf_selected(
        self,
        earnings_class: Any,
        period_id: Any,
        bonus_title: Any,
        customer_id: Any,
        value: bool,
    ) -> "SelectionOverlay":
        """Store a leaf override only while it disagrees with the group default."""

        leaf = LeafKey.build(earnings_class, period_id, bonus_title, customer_id)
        if leaf.earnings_class is EarningsClass.HOLD or not leaf.customer_id:
            return self
        if bool(value) == self.group_default(leaf.group):
            overrides = _remove_path(self.overrides, leaf)
        else:
            overrides = _set_path(self.overrides, leaf, bool(value))
        return replace(self, overrides=overrides)


__all__ = ["SelectionOverlay", "base_default"]
