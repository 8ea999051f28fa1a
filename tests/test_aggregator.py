"""Tests for the candle aggregator state machine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from candle_cache.candles.aggregator import (
    CandleAggregator,
    cumulative_average,
    parse_decimal,
    parse_integer,
)
from candle_cache.candles.market_info import MarketInfoStore
from candle_cache.candles.repository import InMemoryCandleRepository
from candle_cache.candles.runtime_store import RuntimeCandleStore
from candle_cache.errors import MarketNotFoundError, ObservationParseError, PersistenceError
from candle_cache.models import (
    Candle,
    CandleType,
    MarketEntry,
    MarketGroup,
    MarketPriceObservation,
    PriceObservation,
)

SLUG = "ethereum-gas"
ADDRESS = "0xAbC0000000000000000000000000000000000001"
CHAIN_ID = 8453
HOUR = 3600


def _market_info(start=0, end=0, market_idx=1, slug=SLUG):
    store = MarketInfoStore()
    store.refresh([
        MarketGroup(
            id=1,
            address=ADDRESS,
            chain_id=CHAIN_ID,
            resource_slug=slug,
            markets=[MarketEntry(id=market_idx, market_id=1, start_timestamp=start, end_timestamp=end)],
        )
    ])
    return store


def _aggregator(market_info=None, intervals=(HOUR,), repository=None):
    return CandleAggregator(
        market_info=market_info if market_info is not None else _market_info(),
        runtime=RuntimeCandleStore(),
        repository=repository if repository is not None else InMemoryCandleRepository(),
        intervals=list(intervals),
    )


def _price(ts, used="100", fee_paid="10", slug=SLUG):
    return PriceObservation(resource_slug=slug, timestamp=ts, used=used, fee_paid=fee_paid)


def _trade(ts, value, market_id=1, address=ADDRESS, chain_id=CHAIN_ID):
    return MarketPriceObservation(chain_id=chain_id, address=address, market_id=market_id, timestamp=ts, value=value)


class FlakyRepository(InMemoryCandleRepository):
    """Raises PersistenceError for the next ``fail_saves`` saves and ``fail_creates`` creates."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_saves = 0
        self.fail_creates = 0

    def save(self, candle: Candle) -> Candle:
        if self.fail_saves:
            self.fail_saves -= 1
            raise PersistenceError("database unavailable")
        return super().save(candle)

    def get_or_create(self, *args, **kwargs) -> Candle:
        if self.fail_creates:
            self.fail_creates -= 1
            raise PersistenceError("database unavailable")
        return super().get_or_create(*args, **kwargs)


# ── Arithmetic ──────────────────────────────────────────────────


class TestParsing:
    def test_parse_integer_truncates_fraction(self):
        assert parse_integer("100.9", "used") == 100
        assert parse_integer("  42 ", "used") == 42

    def test_parse_integer_floors_negative(self):
        assert parse_integer("-1.5", "used") == -2

    def test_parse_integer_keeps_precision_beyond_float(self):
        big = "123456789012345678901234567890"
        assert parse_integer(big, "used") == 123456789012345678901234567890
        assert parse_integer("9007199254740993", "used") == 2**53 + 1

    def test_parse_decimal_accepts_plain_forms(self):
        assert parse_decimal("+.5", "value") == Decimal("0.5")
        assert parse_decimal("7.", "value") == Decimal("7")

    @pytest.mark.parametrize("value", ["1e30", "1e100000000", "2E-3"])
    def test_exponent_notation_is_rejected(self, value):
        with pytest.raises(ObservationParseError):
            parse_integer(value, "used")

    @pytest.mark.parametrize("value", ["", "abc", "NaN", "Infinity", "1,000", "."])
    def test_parse_integer_rejects_garbage(self, value):
        with pytest.raises(ObservationParseError) as exc_info:
            parse_integer(value, "fee_paid")
        assert exc_info.value.field == "fee_paid"

    def test_cumulative_average_without_previous(self):
        assert cumulative_average(None, 10, 100) == (10, 100, 0)

    def test_cumulative_average_zero_used(self):
        assert cumulative_average(None, 10, 0) == (10, 0, 0)


# ── Index candles ───────────────────────────────────────────────


class TestIndexCandles:
    def test_scenario_a_first_observation_creates_open_candle(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))

        candle = agg.runtime.get(1, HOUR)
        assert candle is not None
        assert candle.timestamp == 0
        assert candle.end_timestamp == 3600
        assert candle.sum_used == "100"
        assert candle.sum_fee_paid == "10"
        assert (candle.open, candle.high, candle.low, candle.close) == ("0", "0", "0", "0")
        assert candle.last_updated_timestamp == 1000
        assert candle.market_id == 1
        assert candle.address == ADDRESS
        assert candle.chain_id == CHAIN_ID
        assert agg.stats.candles_flushed == 0

    def test_scenario_b_same_bucket_updates_in_place(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(1800, used="100", fee_paid="200"))

        candle = agg.runtime.get(1, HOUR)
        assert candle.timestamp == 0
        assert candle.sum_used == "200"
        assert candle.sum_fee_paid == "210"
        assert candle.open == "0"
        assert (candle.high, candle.low, candle.close) == ("1", "1", "1")
        assert candle.last_updated_timestamp == 1800

    def test_scenario_c_rollover_flushes_and_carries_sums(self):
        repo = InMemoryCandleRepository()
        agg = _aggregator(repository=repo)
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(1800, used="100", fee_paid="200"))
        agg.process_resource_price(_price(3700, used="100", fee_paid="90"))

        closed = [c for c in repo.list_candles() if c.timestamp == 0][0]
        assert closed.sum_used == "200"
        assert closed.sum_fee_paid == "210"
        assert closed.open == "0"
        assert closed.close == "1"
        assert repo.latest(CandleType.INDEX, HOUR, 1).timestamp == 3600

        current = agg.runtime.get(1, HOUR)
        assert current.timestamp == 3600
        assert current.end_timestamp == 7200
        assert current.sum_used == "300"
        assert current.sum_fee_paid == "300"
        assert current.open == "1"
        assert agg.stats.candles_flushed == 1

    def test_sums_never_decrease_across_rollovers(self):
        agg = _aggregator()
        previous = 0
        for ts in range(0, 10 * HOUR, 1700):
            agg.process_resource_price(_price(ts, used="7", fee_paid="3"))
            current = int(agg.runtime.get(1, HOUR).sum_used)
            assert current >= previous
            previous = current
        assert previous == 7 * len(range(0, 10 * HOUR, 1700))

    def test_scenario_d_expired_market_creates_nothing(self):
        agg = _aggregator(market_info=_market_info(start=0, end=500))
        agg.process_resource_price(_price(1000))
        assert agg.runtime.get(1, HOUR) is None
        assert len(agg.repository) == 0

    def test_not_yet_started_market_creates_nothing(self):
        agg = _aggregator(market_info=_market_info(start=5000))
        agg.process_resource_price(_price(1000))
        assert agg.runtime.get(1, HOUR) is None

    def test_inactive_same_bucket_leaves_candle_untouched(self):
        agg = _aggregator(market_info=_market_info(start=0, end=1500))
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        before = agg.runtime.get(1, HOUR)
        agg.process_resource_price(_price(1600, used="100", fee_paid="500"))
        assert agg.runtime.get(1, HOUR) == before

    def test_rollover_after_end_flushes_and_empties_slot(self):
        repo = InMemoryCandleRepository()
        agg = _aggregator(market_info=_market_info(start=0, end=1500), repository=repo)
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(3700))

        assert agg.runtime.get(1, HOUR) is None
        stored = repo.list_candles()
        assert [c.timestamp for c in stored] == [0]
        assert stored[0].sum_used == "100"

    def test_late_observation_is_skipped(self):
        agg = _aggregator()
        agg.process_resource_price(_price(3700, used="100", fee_paid="10"))
        before = agg.runtime.get(1, HOUR)

        agg.process_resource_price(_price(1000, used="100", fee_paid="999"))

        assert agg.runtime.get(1, HOUR) == before
        assert agg.stats.late_observations == 1

    def test_tick_already_in_the_open_candle_is_not_counted_twice(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(1800, used="100", fee_paid="200"))
        before = agg.runtime.get(1, HOUR)

        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(1800, used="100", fee_paid="200"))

        assert agg.runtime.get(1, HOUR) == before
        assert before.sum_used == "200"
        assert agg.stats.applied_observations == 2
        assert agg.stats.late_observations == 0

    def test_every_interval_gets_a_candle(self):
        agg = _aggregator(intervals=(300, HOUR, 86400))
        agg.process_resource_price(_price(4000))
        assert agg.runtime.get(1, 300).timestamp == 3900
        assert agg.runtime.get(1, HOUR).timestamp == 3600
        assert agg.runtime.get(1, 86400).timestamp == 0

    def test_all_markets_of_resource_are_updated(self):
        store = MarketInfoStore()
        store.refresh([
            MarketGroup(
                id=1,
                address=ADDRESS,
                chain_id=CHAIN_ID,
                resource_slug=SLUG,
                markets=[MarketEntry(id=1, market_id=1), MarketEntry(id=2, market_id=2)],
            ),
            MarketGroup(
                id=2,
                address="0x2222222222222222222222222222222222222222",
                chain_id=CHAIN_ID,
                resource_slug="bitcoin-fees",
                markets=[MarketEntry(id=3, market_id=1)],
            ),
        ])
        agg = _aggregator(market_info=store)
        agg.process_resource_price(_price(1000))
        assert agg.runtime.get(1, HOUR) is not None
        assert agg.runtime.get(2, HOUR) is not None
        assert agg.runtime.get(3, HOUR) is None

    def test_unknown_resource_is_a_no_op(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000, slug="unknown"))
        assert len(agg.runtime) == 0

    def test_big_integer_sums_keep_precision(self):
        agg = _aggregator()
        used = "123456789012345678901234567890"
        agg.process_resource_price(_price(1000, used=used, fee_paid=used + "0"))
        agg.process_resource_price(_price(1001, used=used, fee_paid="0"))
        candle = agg.runtime.get(1, HOUR)
        assert candle.sum_used == "246913578024691357802469135780"
        assert candle.sum_fee_paid == "1234567890123456789012345678900"
        assert candle.close == "5"


class TestIndexFailures:
    def test_parse_error_leaves_state_untouched(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000))
        before = agg.runtime.get(1, HOUR)

        with pytest.raises(ObservationParseError):
            agg.process_resource_price(_price(1100, used="not-a-number"))
        assert agg.runtime.get(1, HOUR) == before
        assert agg.stats.observations == 1

    def test_metadata_inconsistency_raises_market_not_found(self, monkeypatch):
        store = _market_info()
        monkeypatch.setattr(store, "all_indexes_for_resource", lambda slug: [999])
        agg = _aggregator(market_info=store)

        with pytest.raises(MarketNotFoundError) as exc_info:
            agg.process_resource_price(_price(1000))
        assert exc_info.value.market_idx == 999

    def test_failed_flush_keeps_open_candle_and_retry_succeeds(self):
        repo = FlakyRepository()
        agg = _aggregator(repository=repo)
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        before = agg.runtime.get(1, HOUR)

        repo.fail_saves = 1
        with pytest.raises(PersistenceError):
            agg.process_resource_price(_price(3700, used="100", fee_paid="290"))
        assert agg.runtime.get(1, HOUR) == before

        agg.process_resource_price(_price(3700, used="100", fee_paid="290"))
        current = agg.runtime.get(1, HOUR)
        assert current.timestamp == 3600
        assert current.sum_used == "200"
        assert current.sum_fee_paid == "300"

    def test_failed_create_in_second_interval_changes_nothing(self):
        repo = FlakyRepository()
        agg = _aggregator(intervals=(300, HOUR), repository=repo)
        agg.process_resource_price(_price(1000))
        snapshot = (agg.runtime.get(1, 300), agg.runtime.get(1, HOUR))

        # 300s interval rolls over (save + create), 1h stays in bucket; make the create fail.
        repo.fail_creates = 1
        with pytest.raises(PersistenceError):
            agg.process_resource_price(_price(1300))
        assert (agg.runtime.get(1, 300), agg.runtime.get(1, HOUR)) == snapshot


# ── Trade candles ───────────────────────────────────────────────


class TestTradeCandles:
    def test_first_trade_opens_candle(self):
        agg = _aggregator()
        agg.process_market_price(_trade(1000, "1.5"))
        candle = agg.runtime.get(1, HOUR, CandleType.MARKET)
        assert candle.candle_type == CandleType.MARKET
        assert (candle.open, candle.high, candle.low, candle.close) == ("1.5", "1.5", "1.5", "1.5")
        assert candle.resource_slug == SLUG
        assert candle.sum_used is None

    def test_same_bucket_tracks_high_low_close(self):
        agg = _aggregator()
        for ts, value in [(1000, "1.5"), (1100, "2.25"), (1200, "0.75"), (1300, "1.0")]:
            agg.process_market_price(_trade(ts, value))
        candle = agg.runtime.get(1, HOUR, CandleType.MARKET)
        assert candle.open == "1.5"
        assert candle.high == "2.25"
        assert candle.low == "0.75"
        assert candle.close == "1.0"

    def test_rollover_opens_at_previous_close(self):
        repo = InMemoryCandleRepository()
        agg = _aggregator(repository=repo)
        agg.process_market_price(_trade(1000, "1.5"))
        agg.process_market_price(_trade(1200, "2"))
        agg.process_market_price(_trade(3700, "3"))

        candle = agg.runtime.get(1, HOUR, CandleType.MARKET)
        assert candle.timestamp == 3600
        assert candle.open == "2"
        assert candle.low == "2"
        assert candle.high == "3"
        assert candle.close == "3"
        closed = [c for c in repo.list_candles(CandleType.MARKET) if c.timestamp == 0][0]
        assert closed.close == "2"

    def test_trade_on_unknown_market_raises(self):
        agg = _aggregator()
        with pytest.raises(MarketNotFoundError):
            agg.process_market_price(_trade(1000, "1", market_id=42))

    def test_trade_resolution_ignores_address_case(self):
        agg = _aggregator()
        agg.process_market_price(_trade(1000, "1", address=ADDRESS.lower()))
        assert agg.runtime.get(1, HOUR, CandleType.MARKET) is not None

    def test_trade_with_bad_value_raises_parse_error(self):
        agg = _aggregator()
        with pytest.raises(ObservationParseError):
            agg.process_market_price(_trade(1000, "one"))

    def test_trade_and_index_slots_are_independent(self):
        agg = _aggregator()
        agg.process_resource_price(_price(1000))
        agg.process_market_price(_trade(1000, "7"))
        assert agg.runtime.get(1, HOUR).candle_type == CandleType.INDEX
        assert agg.runtime.get(1, HOUR, CandleType.MARKET).close == "7"


# ── Flush / warm start ──────────────────────────────────────────


class TestFlushAndWarmStart:
    def test_flush_open_persists_without_closing(self):
        repo = InMemoryCandleRepository()
        agg = _aggregator(repository=repo)
        agg.process_resource_price(_price(1000, used="100", fee_paid="10"))
        agg.process_resource_price(_price(1800, used="100", fee_paid="200"))

        assert agg.flush_open() == 1
        stored = repo.latest(CandleType.INDEX, HOUR, 1)
        assert stored.sum_used == "200"
        assert stored.close == "1"
        assert agg.runtime.get(1, HOUR).timestamp == 0

    def test_warm_start_continues_cumulative_sums(self):
        repo = InMemoryCandleRepository()
        store = _market_info()
        first = _aggregator(market_info=store, repository=repo)
        first.process_resource_price(_price(1000, used="100", fee_paid="10"))
        first.flush_open()

        restarted = _aggregator(market_info=store, repository=repo)
        assert restarted.warm_start() == 1
        restarted.process_resource_price(_price(3700, used="100", fee_paid="190"))

        candle = restarted.runtime.get(1, HOUR)
        assert candle.sum_used == "200"
        assert candle.sum_fee_paid == "200"
        assert candle.close == "1"

    def test_warm_start_does_not_overwrite_existing_slots(self):
        repo = InMemoryCandleRepository()
        agg = _aggregator(repository=repo)
        agg.process_resource_price(_price(1000))
        agg.flush_open()
        assert agg.warm_start() == 0
