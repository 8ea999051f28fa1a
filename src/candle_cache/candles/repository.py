"""Candle persistence — durable get-or-create / upsert keyed by candle identity.

Two implementations share the :class:`CandleRepository` protocol: the SQL one
used by the live builder and an in-memory one used as a rebuild job's scratch
space (and by tests).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from candle_cache.db.tables.candles import CacheCandleRow, CacheParamRow
from candle_cache.errors import PersistenceError
from candle_cache.models.candle import Candle, CandleType

_CANDLE_FIELDS = (
    "end_timestamp",
    "last_updated_timestamp",
    "open",
    "high",
    "low",
    "close",
    "sum_fee_paid",
    "sum_used",
    "market_id",
    "address",
    "chain_id",
)


@contextmanager
def persistence_errors(session: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise SQLAlchemy failures inside the block as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"{action} failed: {exc}") from exc


class CandleRepository(Protocol):
    def get_or_create(
        self,
        candle_type: CandleType,
        interval: int,
        market_idx: int,
        resource_slug: str,
        timestamp: int,
    ) -> Candle: ...

    def save(self, candle: Candle) -> Candle: ...

    def latest(self, candle_type: CandleType, interval: int, market_idx: int) -> Candle | None: ...


def _row_to_candle(row: CacheCandleRow) -> Candle:
    return Candle(
        id=row.id,
        candle_type=CandleType(row.candle_type),
        interval=row.interval,
        market_idx=row.market_idx,
        resource_slug=row.resource_slug,
        timestamp=row.timestamp,
        **{name: getattr(row, name) for name in _CANDLE_FIELDS},
    )


def _blank_candle(
    candle_type: CandleType,
    interval: int,
    market_idx: int,
    resource_slug: str,
    timestamp: int,
) -> Candle:
    return Candle(
        candle_type=candle_type,
        interval=interval,
        market_idx=market_idx,
        resource_slug=resource_slug,
        timestamp=timestamp,
        end_timestamp=timestamp + interval,
    )


class SqlCandleRepository:
    """Candle repository over the ``cache_candles`` table. Commits per call."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _find(self, key: tuple[str, int, int, str, int]) -> CacheCandleRow | None:
        candle_type, interval, market_idx, resource_slug, timestamp = key
        return self.session.execute(
            select(CacheCandleRow).where(
                CacheCandleRow.candle_type == candle_type,
                CacheCandleRow.interval == interval,
                CacheCandleRow.market_idx == market_idx,
                CacheCandleRow.resource_slug == resource_slug,
                CacheCandleRow.timestamp == timestamp,
            )
        ).scalar_one_or_none()

    def get_or_create(
        self,
        candle_type: CandleType,
        interval: int,
        market_idx: int,
        resource_slug: str,
        timestamp: int,
    ) -> Candle:
        blank = _blank_candle(candle_type, interval, market_idx, resource_slug, timestamp)
        try:
            row = self._find(blank.key)
            if row is not None:
                return _row_to_candle(row)
            row = CacheCandleRow(
                candle_type=candle_type.value,
                interval=interval,
                market_idx=market_idx,
                resource_slug=resource_slug,
                timestamp=timestamp,
                **{name: getattr(blank, name) for name in _CANDLE_FIELDS},
            )
            self.session.add(row)
            try:
                self.session.commit()
            except IntegrityError:
                # Another writer inserted the same key first.
                self.session.rollback()
                row = self._find(blank.key)
                if row is None:
                    raise
            return _row_to_candle(row)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"get_or_create failed for candle {blank.key}: {exc}") from exc

    def save(self, candle: Candle) -> Candle:
        """Upsert *candle* by its key; returns it with the durable id set."""
        try:
            row = self._find(candle.key)
            if row is None:
                row = CacheCandleRow(
                    candle_type=candle.candle_type.value,
                    interval=candle.interval,
                    market_idx=candle.market_idx,
                    resource_slug=candle.resource_slug,
                    timestamp=candle.timestamp,
                )
                self.session.add(row)
            for name in _CANDLE_FIELDS:
                setattr(row, name, getattr(candle, name))
            self.session.commit()
            return candle.model_copy(update={"id": row.id})
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"save failed for candle {candle.key}: {exc}") from exc

    def latest(self, candle_type: CandleType, interval: int, market_idx: int) -> Candle | None:
        with persistence_errors(self.session, "latest candle lookup"):
            row = self.session.execute(
                select(CacheCandleRow)
                .where(
                    CacheCandleRow.candle_type == candle_type.value,
                    CacheCandleRow.interval == interval,
                    CacheCandleRow.market_idx == market_idx,
                )
                .order_by(CacheCandleRow.timestamp.desc())
                .limit(1)
            ).scalar_one_or_none()
        return _row_to_candle(row) if row is not None else None

    def list_candles(
        self,
        candle_type: CandleType | None = None,
        market_idx: int | None = None,
        interval: int | None = None,
    ) -> list[Candle]:
        query = select(CacheCandleRow)
        if candle_type is not None:
            query = query.where(CacheCandleRow.candle_type == candle_type.value)
        if market_idx is not None:
            query = query.where(CacheCandleRow.market_idx == market_idx)
        if interval is not None:
            query = query.where(CacheCandleRow.interval == interval)
        query = query.order_by(
            CacheCandleRow.candle_type,
            CacheCandleRow.market_idx,
            CacheCandleRow.interval,
            CacheCandleRow.timestamp,
        )
        with persistence_errors(self.session, "candle listing"):
            return [_row_to_candle(row) for row in self.session.execute(query).scalars()]


class InMemoryCandleRepository:
    """Dict-backed repository; stores copies so callers cannot mutate it in place."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, int, int, str, int], Candle] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._rows)

    def get_or_create(
        self,
        candle_type: CandleType,
        interval: int,
        market_idx: int,
        resource_slug: str,
        timestamp: int,
    ) -> Candle:
        blank = _blank_candle(candle_type, interval, market_idx, resource_slug, timestamp)
        row = self._rows.get(blank.key)
        if row is None:
            row = blank.model_copy(update={"id": self._next_id})
            self._next_id += 1
            self._rows[blank.key] = row
        return row.model_copy()

    def save(self, candle: Candle) -> Candle:
        existing = self._rows.get(candle.key)
        if existing is not None:
            candle_id = existing.id
        else:
            candle_id = self._next_id
            self._next_id += 1
        stored = candle.model_copy(update={"id": candle_id})
        self._rows[candle.key] = stored
        return stored.model_copy()

    def latest(self, candle_type: CandleType, interval: int, market_idx: int) -> Candle | None:
        matches = [
            c for c in self._rows.values()
            if c.candle_type == candle_type and c.interval == interval and c.market_idx == market_idx
        ]
        if not matches:
            return None
        return max(matches, key=lambda c: c.timestamp).model_copy()

    def list_candles(
        self,
        candle_type: CandleType | None = None,
        market_idx: int | None = None,
        interval: int | None = None,
    ) -> list[Candle]:
        candles = [
            c.model_copy() for c in self._rows.values()
            if (candle_type is None or c.candle_type == candle_type)
            and (market_idx is None or c.market_idx == market_idx)
            and (interval is None or c.interval == interval)
        ]
        candles.sort(key=lambda c: (c.candle_type.value, c.market_idx, c.interval, c.timestamp))
        return candles


# ── Builder parameters ──────────────────────────────────────────


def get_param(session: Session, name: str) -> str | None:
    """Return the stored value of *name*, or None."""
    with persistence_errors(session, f"reading parameter {name}"):
        row = session.get(CacheParamRow, name)
    return row.value if row is not None else None


def set_param(session: Session, name: str, value: str) -> None:
    """Insert or replace parameter *name*."""
    with persistence_errors(session, f"writing parameter {name}"):
        row = session.get(CacheParamRow, name)
        if row is None:
            session.add(CacheParamRow(param_name=name, value=value))
        else:
            row.value = value
        session.commit()
