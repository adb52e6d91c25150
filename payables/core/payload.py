"""Compaction of the selection overlay into batch instructions.

One instruction per payable bonus group:

* default selected, no exclusions      -> ``ALL``
* default selected, some exclusions    -> ``ALL_EXCEPT`` + excluded ids
* default unselected, some inclusions  -> ``ONLY`` + included ids
* default unselected, no inclusions    -> omitted (nothing to pay)

The payload grows with the number of groups and operator exceptions, never
with the customer population.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from payables.core.feeds import SummaryRow
from payables.core.keys import PAYABLE_CLASSES, BonusGroupKey
from payables.core.overlay import SelectionOverlay


class SelectionMode(str, Enum):
    ALL = "ALL"
    ALL_EXCEPT = "ALL_EXCEPT"
    ONLY = "ONLY"


@dataclass(frozen=True)
class GroupInstruction:
    earnings_class: str
    period_id: str
    bonus_title: str
    mode: SelectionMode
    exclude_ids: Tuple[str, ...] = ()
    include_ids: Tuple[str, ...] = ()

    @property
    def key(self) -> BonusGroupKey:
        return BonusGroupKey.build(self.earnings_class, self.period_id, self.bonus_title)

    def to_wire(self) -> Dict[str, Any]:
        selection: Dict[str, Any] = {"mode": self.mode.value}
        if self.mode is SelectionMode.ALL_EXCEPT:
            selection["excludeIds"] = list(self.exclude_ids)
        elif self.mode is SelectionMode.ONLY:
            selection["includeIds"] = list(self.include_ids)
        return {
            "earningsClass": self.earnings_class,
            "periodId": self.period_id,
            "bonusTitle": self.bonus_title,
            "selection": selection,
        }


@dataclass(frozen=True)
class BatchPayload:
    cutoff_date: Optional[datetime]
    groups: Tuple[GroupInstruction, ...] = field(default_factory=tuple)
    allow_negative_net_payments: bool = False
    fail_on_unknown_node_ids: bool = True
    fail_on_unknown_bonus_titles: bool = True

    def allowing_negatives(self, allow: bool = True) -> "BatchPayload":
        return replace(self, allow_negative_net_payments=bool(allow))

    def to_wire(self, comment: Optional[str] = None) -> Dict[str, Any]:
        """JSON body for the Validate/Create endpoints; blank comments are left out."""

        body: Dict[str, Any] = {
            "cutoffDate": self.cutoff_date.isoformat() if self.cutoff_date else None,
            "groups": [group.to_wire() for group in self.groups],
            "options": {
                "allowNegativeNetPayments": self.allow_negative_net_payments,
                "failOnUnknownNodeIds": self.fail_on_unknown_node_ids,
                "failOnUnknownBonusTitles": self.fail_on_unknown_bonus_titles,
            },
        }
        trimmed = (comment or "").strip()
        if trimmed:
            body["comment"] = trimmed
        return body


def build_group_instruction(row: SummaryRow, overlay: SelectionOverlay) -> Optional[GroupInstruction]:
    key = row.key
    if key.earnings_class not in PAYABLE_CLASSES or not key.period_id or not row.bonus_title.strip():
        return None

    common = dict(
        earnings_class=key.earnings_class.value,
        period_id=key.period_id,
        bonus_title=row.bonus_title.strip(),
    )
    if overlay.group_default(key):
        excluded = tuple(overlay.exclusions(key))
        if excluded:
            return GroupInstruction(mode=SelectionMode.ALL_EXCEPT, exclude_ids=excluded, **common)
        return GroupInstruction(mode=SelectionMode.ALL, **common)

    included = tuple(overlay.inclusions(key))
    if not included:
        return None
    return GroupInstruction(mode=SelectionMode.ONLY, include_ids=included, **common)


def build_batch_payload(
    cutoff_date: Optional[datetime],
    rows: Iterable[SummaryRow],
    overlay: SelectionOverlay,
    allow_negative_net_payments: bool = False,
) -> BatchPayload:
    groups = []
    seen = set()
    for row in rows or []:
        instruction = build_group_instruction(row, overlay)
        if instruction is None or instruction.key in seen:
            continue
        seen.add(instruction.key)
        groups.append(instruction)
    return BatchPayload(
        cutoff_date=cutoff_date,
        groups=tuple(groups),
        allow_negative_net_payments=bool(allow_negative_net_payments),
    )


__all__ = [
    "BatchPayload",
    "GroupInstruction",
    "SelectionMode",
    "build_batch_payload",
    "build_group_instruction",
]
