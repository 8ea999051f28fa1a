"""Market directory and observation models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

NO_RESOURCE = "no-resource"


class MarketEntry(BaseModel):
    """One market inside a market group, as delivered by the directory refresh."""

    id: int
    market_id: int
    start_timestamp: int | None = None
    end_timestamp: int | None = None


class MarketGroup(BaseModel):
    id: int
    address: str | None = None
    chain_id: int
    resource_slug: str | None = None
    is_cumulative: bool = False
    markets: list[MarketEntry] = Field(default_factory=list)


class MarketInfo(BaseModel):
    """Cached metadata for one market; ``market_idx`` is the primary key.

    ``end_timestamp == 0`` means the market is open-ended.
    """

    model_config = ConfigDict(frozen=True)

    resource_slug: str
    market_group_idx: int
    market_idx: int
    market_id: int
    market_group_address: str
    market_group_chain_id: int
    start_timestamp: int = 0
    end_timestamp: int = 0
    is_cumulative: bool = False

    def is_active(self, timestamp: int) -> bool:
        return timestamp >= self.start_timestamp and (
            self.end_timestamp == 0 or timestamp <= self.end_timestamp
        )


class PriceObservation(BaseModel):
    """One index tick; ``used`` and ``fee_paid`` are decimal strings."""

    resource_slug: str
    timestamp: int
    used: str
    fee_paid: str
    id: int | None = None


class MarketPriceObservation(BaseModel):
    """One trade fill addressed by (chain id, market group address, on-chain market id)."""

    chain_id: int
    address: str
    market_id: int
    timestamp: int
    value: str
    id: int | None = None
