"""Shared test fixtures."""

import pytest
from sqlalchemy import BigInteger, Integer, create_engine, event
from sqlalchemy.orm import Session

from candle_cache.db.base import Base

from candle_cache.db.tables import (
    MarketGroupRow,
    MarketPriceRow,
    MarketRow,
    ResourcePriceRow,
    ResourceRow,
)


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created.

    Strips the schema and patches BigInteger→Integer for SQLite compatibility.
    """
    engine = create_engine("sqlite:///:memory:")

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    # SQLite doesn't support schemas or BigInteger autoincrement
    for table in Base.metadata.tables.values():
        table.schema = None
        for col in table.columns:
            if isinstance(col.type, BigInteger):
                col.type = Integer()

    Base.metadata.create_all(engine)

    session = Session(engine)
    yield session
    session.close()
    engine.dispose()


class Seeder:
    """Inserts directory rows and observations for tests that read from the database."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._resources: dict[str, ResourceRow] = {}

    def resource(self, slug: str) -> ResourceRow:
        if slug not in self._resources:
            row = ResourceRow(slug=slug, name=slug.replace("-", " ").title())
            self.session.add(row)
            self.session.flush()
            self._resources[slug] = row
        return self._resources[slug]

    def market_group(
        self,
        slug: str | None,
        address: str | None,
        markets: list[tuple[int, int, int | None, int | None]],
        chain_id: int = 8453,
    ) -> MarketGroupRow:
        """*markets* holds ``(market_idx, market_id, start, end)`` tuples."""
        group = MarketGroupRow(
            address=address,
            chain_id=chain_id,
            resource_id=self.resource(slug).id if slug else None,
        )
        self.session.add(group)
        self.session.flush()
        for market_idx, market_id, start, end in markets:
            self.session.add(MarketRow(
                id=market_idx,
                market_group_id=group.id,
                market_id=market_id,
                start_timestamp=start,
                end_timestamp=end,
            ))
        self.session.commit()
        return group

    def price(self, slug: str, timestamp: int, used: str = "100", fee_paid: str = "10") -> ResourcePriceRow:
        row = ResourcePriceRow(
            resource_id=self.resource(slug).id,
            timestamp=timestamp,
            used=used,
            fee_paid=fee_paid,
        )
        self.session.add(row)
        self.session.commit()
        return row

    def trade(self, address: str, market_id: int, timestamp: int, value: str, chain_id: int = 8453) -> MarketPriceRow:
        row = MarketPriceRow(
            chain_id=chain_id,
            address=address,
            market_id=market_id,
            timestamp=timestamp,
            value=value,
        )
        self.session.add(row)
        self.session.commit()
        return row


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)
