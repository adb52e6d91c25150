"""Canonical keys for earnings classes, bonus groups and leaves.

Every part of the payables engine builds its keys through the constructors in
this module, so equivalent groups always compare equal no matter how the feed
spelled them (``"release"`` vs ``"RELEASE"``, ``"Fast Start "`` vs
``"fast start"``, ``7`` vs ``"7"``).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple


class EarningsClass(str, Enum):
    RELEASE = "RELEASE"
    FORFEIT = "FORFEIT"
    HOLD = "HOLD"


CLASS_ORDER = (EarningsClass.RELEASE, EarningsClass.FORFEIT, EarningsClass.HOLD)
PAYABLE_CLASSES = frozenset({EarningsClass.RELEASE, EarningsClass.FORFEIT})


def as_class(value: Any) -> EarningsClass:
    """Coerce a feed or request value into an EarningsClass."""

    if isinstance(value, EarningsClass):
        return value
    text = str(value if value is not None else "").strip().upper()
    try:
        return EarningsClass(text)
    except ValueError as exc:
        raise ValueError(f"Unknown earnings class '{value}'.") from exc


def normalize_period(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_bonus(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_customer(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class PeriodKey(NamedTuple):
    earnings_class: EarningsClass
    period_id: str

    @classmethod
    def build(cls, earnings_class: Any, period_id: Any) -> "PeriodKey":
        return cls(as_class(earnings_class), normalize_period(period_id))

    def __str__(self) -> str:
        return f"{self.earnings_class.value}|{self.period_id}"


class BonusGroupKey(NamedTuple):
    """``(class, period, bonus)`` with the bonus title lower-cased."""

    earnings_class: EarningsClass
    period_id: str
    bonus: str

    @classmethod
    def build(cls, earnings_class: Any, period_id: Any, bonus_title: Any) -> "BonusGroupKey":
        return cls(as_class(earnings_class), normalize_period(period_id), normalize_bonus(bonus_title))

    @property
    def period_key(self) -> PeriodKey:
        return PeriodKey(self.earnings_class, self.period_id)

    def leaf(self, customer_id: Any) -> "LeafKey":
        return LeafKey(self.earnings_class, self.period_id, self.bonus, normalize_customer(customer_id))

    def __str__(self) -> str:
        return f"{self.earnings_class.value}|{self.period_id}|{self.bonus}"


class LeafKey(NamedTuple):
    earnings_class: EarningsClass
    period_id: str
    bonus: str
    customer_id: str

    @classmethod
    def build(cls, earnings_class: Any, period_id: Any, bonus_title: Any, customer_id: Any) -> "LeafKey":
        return BonusGroupKey.build(earnings_class, period_id, bonus_title).leaf(customer_id)

    @property
    def group(self) -> BonusGroupKey:
        return BonusGroupKey(self.earnings_class, self.period_id, self.bonus)

    def __str__(self) -> str:
        return f"{self.earnings_class.value}|{self.period_id}|{self.bonus}|{self.customer_id}"


__all__ = [
    "BonusGroupKey",
    "CLASS_ORDER",
    "EarningsClass",
    "LeafKey",
    "PAYABLE_CLASSES",
    "PeriodKey",
    "as_class",
    "normalize_bonus",
    "normalize_customer",
    "normalize_period",
]
