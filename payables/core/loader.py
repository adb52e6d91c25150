"""On-demand loading of customer-level payables for one bonus group."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set

from payables.config import DISPLAY_PAGE_SIZE, LEAF_PAGE_SIZE
from payables.core.feeds import LeafPayable, SummaryRow, merge_leaf_payables
from payables.core.keys import BonusGroupKey

logger = logging.getLogger(__name__)


@dataclass
class Pagination:
    offset: int = 0
    page_size: int = LEAF_PAGE_SIZE
    has_more: bool = False


@dataclass
class BonusDetail:
    """Cache entry for one bonus group's leaf list."""

    loading: bool = False
    error: Optional[str] = None
    payables: Optional[List[LeafPayable]] = None
    pagination: Pagination = field(default_factory=Pagination)

    @property
    def loaded(self) -> bool:
        return self.payables is not None

    @property
    def fully_loaded(self) -> bool:
        return self.loaded and not self.pagination.has_more

    def page(self, offset: int = 0, count: int = DISPLAY_PAGE_SIZE) -> List[LeafPayable]:
        if not self.payables:
            return []
        start = max(0, offset)
        return self.payables[start:start + max(0, count)]


class LeafLoader:
    """Cache of bonus-group leaf lists keyed by BonusGroupKey.

    ``feed.fetch_leaves`` is a blocking call and runs in a worker thread.
    Entries are never refetched once loaded; ``reset`` is the only way to drop
    them, and it also invalidates every fetch still in flight.
    """

    def __init__(
        self,
        feed,
        page_size: int = LEAF_PAGE_SIZE,
        on_loaded: Optional[Callable[[List[LeafPayable]], None]] = None,
    ) -> None:
        self.feed = feed
        self.page_size = page_size
        self.on_loaded = on_loaded
        self.cutoff: Optional[datetime] = None
        self._token = 0
        self._entries: Dict[BonusGroupKey, BonusDetail] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def entries(self) -> Mapping[BonusGroupKey, BonusDetail]:
        return self._entries

    def get(self, key: BonusGroupKey) -> Optional[BonusDetail]:
        return self._entries.get(key)

    def reset(self, cutoff: Optional[datetime]) -> None:
        self._token += 1
        self.cutoff = cutoff
        self._entries = {}

    def expand(self, row: SummaryRow) -> Optional[asyncio.Task]:
        """Start loading ``row`` in the background and return without waiting."""

        entry = self._entries.get(row.key)
        if entry is not None and (entry.loading or entry.loaded):
            return None
        task = asyncio.ensure_future(self.ensure_loaded(row))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def ensure_loaded(self, row: SummaryRow) -> Optional[BonusDetail]:
        key = row.key
        entry = self._entries.get(key)
        if entry is not None and (entry.loading or entry.loaded):
            return entry

        entry = BonusDetail(loading=True, pagination=Pagination(page_size=self.page_size))
        self._entries[key] = entry
        return await self._fetch_page(row, entry, offset=0)

    async def load_more(self, row: SummaryRow) -> Optional[BonusDetail]:
        """Append the next page of an already loaded group."""

        entry = self._entries.get(row.key)
        if entry is None or entry.loading or not entry.loaded or not entry.pagination.has_more:
            return entry
        entry.loading = True
        return await self._fetch_page(row, entry, offset=entry.pagination.offset)

    async def _fetch_page(self, row: SummaryRow, entry: BonusDetail, offset: int) -> Optional[BonusDetail]:
        token = self._token
        cutoff = self.cutoff
        key = row.key
        try:
            raw_rows = await asyncio.to_thread(
                self.feed.fetch_leaves,
                cutoff,
                key.earnings_class.value,
                row.period.id,
                row.bonus_title,
                offset,
                self.page_size,
            )
        except Exception as exc:
            if token != self._token:
                logger.info("Discarding failed leaf fetch for %s from a previous cutoff", key)
                return None
            logger.warning("Leaf fetch for %s failed: %s", key, exc)
            entry.loading = False
            entry.error = str(exc) or exc.__class__.__name__
            return entry

        if token != self._token:
            logger.info("Discarding leaf page for %s fetched for stale cutoff %s", key, cutoff)
            return None

        raw_rows = list(raw_rows or [])
        entry.payables = merge_leaf_payables(entry.payables or [], raw_rows, key)
        entry.pagination = Pagination(
            offset=offset + len(raw_rows),
            page_size=self.page_size,
            has_more=len(raw_rows) >= self.page_size > 0,
        )
        entry.loading = False
        entry.error = None
        logger.debug("Loaded %d leaf rows for %s (offset %d)", len(raw_rows), key, offset)
        if self.on_loaded is not None:
            self.on_loaded(entry.payables)
        return entry


__all__ = ["BonusDetail", "LeafLoader", "Pagination"]
