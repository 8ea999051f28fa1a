"""SQLAlchemy ORM models for the raw observations candles are built from."""

from sqlalchemy import BigInteger, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from candle_cache.db.base import Base
from candle_cache.db.tables.markets import SCHEMA, ResourceRow


class ResourcePriceRow(Base):
    """One index tick; ``used``/``fee_paid`` are decimal strings (may exceed 2**64)."""

    __tablename__ = "resource_prices"
    __table_args__ = (
        UniqueConstraint("resource_id", "timestamp"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    resource_id: Mapped[int] = mapped_column(
        ForeignKey(f"{SCHEMA}.resources.id"), nullable=False
    )
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="0")
    used: Mapped[str] = mapped_column(Text, nullable=False)
    fee_paid: Mapped[str] = mapped_column(Text, nullable=False)

    resource: Mapped[ResourceRow] = relationship()


class MarketPriceRow(Base):
    """One trade fill, addressed the way the indexer sees it (chain, group, market)."""

    __tablename__ = "market_prices"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    market_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
