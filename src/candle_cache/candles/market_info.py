"""Market metadata cache — market index -> resource, address and active window."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from candle_cache.models.market import NO_RESOURCE, MarketGroup, MarketInfo

log = structlog.get_logger("market_info")


class MarketInfoStore:
    """Append-only dict of :class:`MarketInfo` keyed by market index.

    Entries are never updated in place: a refresh that sees a known market
    index skips it, so a changed market window only shows up after restart.
    """

    def __init__(self) -> None:
        self._by_idx: dict[int, MarketInfo] = {}

    def __len__(self) -> int:
        return len(self._by_idx)

    def refresh(self, market_groups: Iterable[MarketGroup]) -> int:
        """Insert markets not seen before; return how many were added."""
        seen = 0
        added = 0
        for group in market_groups:
            resource_slug = group.resource_slug or NO_RESOURCE
            for market in group.markets:
                seen += 1
                if market.id in self._by_idx or not group.address:
                    log.debug(
                        "market_info_skipped",
                        market_idx=market.id,
                        market_group_idx=group.id,
                        known=market.id in self._by_idx,
                    )
                    continue
                self._by_idx[market.id] = MarketInfo(
                    resource_slug=resource_slug,
                    market_group_idx=group.id,
                    market_idx=market.id,
                    market_id=market.market_id,
                    market_group_address=group.address,
                    market_group_chain_id=group.chain_id,
                    start_timestamp=market.start_timestamp or 0,
                    end_timestamp=market.end_timestamp or 0,
                    is_cumulative=group.is_cumulative,
                )
                added += 1
        log.info("market_info_refreshed", markets_seen=seen, markets_added=added, total=len(self._by_idx))
        return added

    def get(self, market_idx: int) -> MarketInfo | None:
        return self._by_idx.get(market_idx)

    def get_by_chain_and_address(
        self,
        chain_id: int,
        address: str,
        market_id: int | str,
    ) -> MarketInfo | None:
        """Linear scan; address comparison is case-insensitive."""
        if not address:
            return None
        try:
            wanted_market_id = int(market_id)
        except (TypeError, ValueError):
            return None
        wanted_address = address.lower()
        for info in self._by_idx.values():
            if (
                info.market_group_chain_id == chain_id
                and info.market_group_address.lower() == wanted_address
                and info.market_id == wanted_market_id
            ):
                return info
        return None

    def all_market_indexes(self) -> list[int]:
        return list(self._by_idx)

    def all_indexes_for_resource(self, resource_slug: str) -> list[int]:
        return [idx for idx, info in self._by_idx.items() if info.resource_slug == resource_slug]

    def all_resource_slugs(self) -> list[str]:
        return sorted({info.resource_slug for info in self._by_idx.values()})

    def is_active(self, market_idx: int, timestamp: int) -> bool:
        info = self._by_idx.get(market_idx)
        if info is None:
            return False
        return info.is_active(timestamp)

    def active_markets(self, timestamp: int) -> list[int]:
        return [idx for idx in self._by_idx if self.is_active(idx, timestamp)]
