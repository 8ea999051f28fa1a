"""SQLAlchemy ORM models for cached candles and builder parameters."""

from sqlalchemy import BigInteger, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from candle_cache.db.base import Base
from candle_cache.db.tables.markets import SCHEMA


class CacheCandleRow(Base):
    __tablename__ = "cache_candles"
    __table_args__ = (
        UniqueConstraint("candle_type", "interval", "market_idx", "resource_slug", "timestamp"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    candle_type: Mapped[str] = mapped_column(Text, nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False)
    market_idx: Mapped[int] = mapped_column(Integer, nullable=False)
    resource_slug: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_updated_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    open: Mapped[str] = mapped_column(Text, nullable=False)
    high: Mapped[str] = mapped_column(Text, nullable=False)
    low: Mapped[str] = mapped_column(Text, nullable=False)
    close: Mapped[str] = mapped_column(Text, nullable=False)
    sum_fee_paid: Mapped[str | None] = mapped_column(Text, nullable=True)
    sum_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    market_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    chain_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class CacheParamRow(Base):
    __tablename__ = "cache_params"
    __table_args__ = {"schema": SCHEMA}

    param_name: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
