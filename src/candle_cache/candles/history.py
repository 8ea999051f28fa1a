"""Queries over stored observations and the market directory."""

from __future__ import annotations

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from candle_cache.candles.repository import persistence_errors
from candle_cache.db.tables.markets import MarketGroupRow, ResourceRow
from candle_cache.db.tables.prices import MarketPriceRow, ResourcePriceRow
from candle_cache.models.market import (
    MarketEntry,
    MarketGroup,
    MarketPriceObservation,
    PriceObservation,
)

# (timestamp, id) of the last observation already consumed.
Cursor = tuple[int, int]


def load_market_groups(session: Session) -> list[MarketGroup]:
    """Read every market group with its resource and markets."""
    with persistence_errors(session, "loading market groups"):
        rows = session.execute(
            select(MarketGroupRow)
            .options(selectinload(MarketGroupRow.resource), selectinload(MarketGroupRow.markets))
            .order_by(MarketGroupRow.id)
        ).scalars().all()
    return [
        MarketGroup(
            id=group.id,
            address=group.address,
            chain_id=group.chain_id,
            resource_slug=group.resource.slug if group.resource else None,
            is_cumulative=bool(group.is_cumulative),
            markets=[
                MarketEntry(
                    id=m.id,
                    market_id=m.market_id,
                    start_timestamp=m.start_timestamp,
                    end_timestamp=m.end_timestamp,
                )
                for m in group.markets
            ],
        )
        for group in rows
    ]


def _after(ts_col, id_col, cursor: Cursor | None):
    if cursor is None:
        return None
    ts, row_id = cursor
    return or_(ts_col > ts, and_(ts_col == ts, id_col > row_id))


class ObservationHistory:
    """Keyset-paginated reads of resource prices and trade fills in (timestamp, id) order."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _resource_price_filters(
        self,
        resource_slug: str | None,
        after: Cursor | None,
        until: int | None,
    ) -> list:
        filters = []
        if resource_slug is not None:
            filters.append(ResourceRow.slug == resource_slug)
        cond = _after(ResourcePriceRow.timestamp, ResourcePriceRow.id, after)
        if cond is not None:
            filters.append(cond)
        if until is not None:
            filters.append(ResourcePriceRow.timestamp <= until)
        return filters

    def resource_prices(
        self,
        *,
        resource_slug: str | None = None,
        after: Cursor | None = None,
        until: int | None = None,
        limit: int = 1000,
    ) -> list[PriceObservation]:
        with persistence_errors(self.session, "reading resource prices"):
            rows = self.session.execute(
                select(ResourcePriceRow, ResourceRow.slug)
                .join(ResourceRow, ResourcePriceRow.resource_id == ResourceRow.id)
                .where(*self._resource_price_filters(resource_slug, after, until))
                .order_by(ResourcePriceRow.timestamp, ResourcePriceRow.id)
                .limit(limit)
            ).all()
        return [
            PriceObservation(
                id=price.id,
                resource_slug=slug,
                timestamp=price.timestamp,
                used=price.used,
                fee_paid=price.fee_paid,
            )
            for price, slug in rows
        ]

    def count_resource_prices(
        self,
        *,
        resource_slug: str | None = None,
        until: int | None = None,
    ) -> int:
        with persistence_errors(self.session, "counting resource prices"):
            return self.session.execute(
                select(func.count(ResourcePriceRow.id))
                .join(ResourceRow, ResourcePriceRow.resource_id == ResourceRow.id)
                .where(*self._resource_price_filters(resource_slug, None, until))
            ).scalar() or 0

    def market_prices(
        self,
        *,
        after: Cursor | None = None,
        until: int | None = None,
        limit: int = 1000,
    ) -> list[MarketPriceObservation]:
        query = select(MarketPriceRow)
        cond = _after(MarketPriceRow.timestamp, MarketPriceRow.id, after)
        if cond is not None:
            query = query.where(cond)
        if until is not None:
            query = query.where(MarketPriceRow.timestamp <= until)
        with persistence_errors(self.session, "reading market prices"):
            rows = self.session.execute(
                query.order_by(MarketPriceRow.timestamp, MarketPriceRow.id).limit(limit)
            ).scalars().all()
        return [
            MarketPriceObservation(
                id=r.id,
                chain_id=r.chain_id,
                address=r.address,
                market_id=r.market_id,
                timestamp=r.timestamp,
                value=r.value,
            )
            for r in rows
        ]


def encode_cursor(cursor: Cursor | None) -> str:
    return "" if cursor is None else f"{cursor[0]}:{cursor[1]}"


def decode_cursor(value: str | None) -> Cursor | None:
    if not value:
        return None
    ts, _, row_id = value.partition(":")
    return int(ts), int(row_id or 0)
