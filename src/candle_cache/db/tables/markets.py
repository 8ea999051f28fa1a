"""SQLAlchemy ORM models for the market directory (resources, groups, markets)."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from candle_cache.db.base import Base

SCHEMA = "candle_cache"


class ResourceRow(Base):
    __tablename__ = "resources"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class MarketGroupRow(Base):
    __tablename__ = "market_groups"
    __table_args__ = (
        UniqueConstraint("chain_id", "address"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    resource_id: Mapped[int | None] = mapped_column(
        ForeignKey(f"{SCHEMA}.resources.id"), nullable=True
    )
    is_cumulative: Mapped[bool] = mapped_column(Boolean, default=False)

    resource: Mapped[ResourceRow | None] = relationship()
    markets: Mapped[list[MarketRow]] = relationship(
        back_populates="market_group", order_by="MarketRow.id"
    )


class MarketRow(Base):
    __tablename__ = "markets"
    __table_args__ = (
        UniqueConstraint("market_group_id", "market_id"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_group_id: Mapped[int] = mapped_column(
        ForeignKey(f"{SCHEMA}.market_groups.id"), nullable=False
    )
    market_id: Mapped[int] = mapped_column(Integer, nullable=False)
    start_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    end_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    market_group: Mapped[MarketGroupRow] = relationship(back_populates="markets")
