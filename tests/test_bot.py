"""
Integration tests for the ladder bot orchestrator.

These tests verify the main bot functionality including:
- Full sample -> plan -> execute cycle against the paper venue
- Single-flight gate and skipped ticks
- Abort when no mid price is available
- Side freezing on failed balance reads
- Volatility guard and kill switch
- Timer loop start/stop

IMPORTANT: All tests run against the in-memory paper venue. NO network calls are made.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from ladder_mm.config import ConfigurationError, StrategyConfig
from ladder_mm.maker.bot import BotState, CycleState, LadderBot
from ladder_mm.maker.curve_sampler import CurveSampler
from ladder_mm.maker.kill_switch import KillSwitch
from ladder_mm.maker.reference import MidPriceProvider, MidPriceQuote, SyntheticBookMidPrice
from ladder_mm.models import Side
from ladder_mm.venues.base import BalanceError, BalanceSource, InsufficientLiquidityError
from ladder_mm.venues.paper import ConstantProductQuoteSource, PaperVenue
from ladder_mm.venues.tokens import Token


WETH = Token("WETH", "0x4200000000000000000000000000000000000006", 18, 10)
USDC = Token("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6, 10)


# =============================================================================
# Fixtures
# =============================================================================


class FixedMid(MidPriceProvider):
    """Mid price provider returning a settable mid, optionally slowly."""

    name = "fixed"

    def __init__(self, mid=Decimal("100"), spread=None, delay=0.0):
        self.mid = mid
        self.spread = spread
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def get_mid_price(self):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.mid is None:
                return MidPriceQuote(None, self.name, unavailable_sides={Side.BID, Side.ASK})
            return MidPriceQuote(self.mid, self.name, relative_spread=self.spread)
        finally:
            self.active -= 1


class FlakyBalances(BalanceSource):
    """Balance source that fails for selected symbols and defers to the venue otherwise."""

    def __init__(self, venue, failing=()):
        self.venue = venue
        self.failing = set(failing)

    async def available_balance(self, token):
        if token.symbol in self.failing:
            raise BalanceError(f"{token.symbol} RPC timeout")
        return await self.venue.available_balance(token)


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


class OneWayPool(ConstantProductQuoteSource):
    """Pool that has no liquidity for selling base."""

    async def quote(self, direction, amount_in):
        if direction.token_in == self.base_token:
            raise InsufficientLiquidityError(f"no depth for {direction}")
        return await super().quote(direction, amount_in)


def make_pool(pool_cls=ConstantProductQuoteSource):
    """1000 WETH / 3,000,000 USDC pool with a 0.3% fee."""
    return pool_cls(WETH, USDC, Decimal("1000"), Decimal("3000000"), fee=Decimal("0.003"))


def make_synthetic_mid(pool, fallback=None):
    return SyntheticBookMidPrice(
        CurveSampler(pool),
        WETH,
        USDC,
        base_ladder=[Decimal("0.1"), Decimal("0.2")],
        quote_ladder=[Decimal("300"), Decimal("600")],
        fallback=fallback,
    )


def make_config(**overrides):
    options = dict(
        poll_interval_ms=5000,
        level_count=3,
        spread_factor=Decimal("0.05"),
        stretch_factor=Decimal("1"),
        size_profile="even",
        size_scaling_factor=Decimal("1.5"),
        price_step="geometric",
        balance_utilization=Decimal("0.9"),
        price_tolerance=Decimal("0.001"),
        size_tolerance=Decimal("0.01"),
        refresh_window_multiple=Decimal("3"),
        max_reference_spread=Decimal("0.02"),
        tick_size=None,
    )
    options.update(overrides)
    return StrategyConfig(**options)


def make_venue():
    return PaperVenue(WETH, USDC, initial_base=Decimal("10"), initial_quote=Decimal("1000"), order_ttl_sec=60.0)


def make_bot(mid_provider=None, venue=None, balances=None, config=None, kill_switch=None):
    venue = venue or make_venue()
    return LadderBot(
        mid_price_provider=mid_provider or FixedMid(),
        balance_source=balances or venue,
        live_book=venue,
        venue=venue,
        base=WETH,
        quote=USDC,
        config=config or make_config(),
        min_order_sizes={},
        kill_switch=kill_switch,
    )


# =============================================================================
# Cycle Tests
# =============================================================================


class TestCycle:
    """Tests for a single sample -> plan -> execute cycle."""

    @pytest.mark.asyncio
    async def test_first_cycle_places_ladder(self):
        venue = make_venue()
        bot = make_bot(venue=venue)

        result = await bot.tick()

        assert result["status"] == "completed"
        assert result["mid_price"] == "100"
        assert result["mid_source"] == "fixed"
        assert len(result["plan"]) == 6
        live = venue.snapshot()
        assert len(live.bids) == 3
        assert len(live.asks) == 3
        assert all(o.price < Decimal("100") for o in live.bids)
        assert all(o.price > Decimal("100") for o in live.asks)
        assert bot.state.actions_submitted == 6
        assert bot.state.last_mid_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_second_cycle_counts_committed_funds(self):
        """Funds locked in live orders still count toward the budget, so an unchanged mid is a no-op."""
        venue = make_venue()
        bot = make_bot(venue=venue)

        await bot.tick()
        result = await bot.tick()

        assert result["status"] == "completed"
        assert result["plan"] == []
        assert len(venue.snapshot()) == 6
        assert bot.state.cycle_count == 2

    @pytest.mark.asyncio
    async def test_mid_move_edits_orders(self):
        venue = make_venue()
        provider = FixedMid()
        bot = make_bot(mid_provider=provider, venue=venue)

        await bot.tick()
        provider.mid = Decimal("102")
        result = await bot.tick()

        assert len(result["plan"]) == 6
        assert all(action.startswith("Edit(") for action in result["plan"])
        assert bot.state.actions_failed == 0

    @pytest.mark.asyncio
    async def test_expired_orders_return_to_budget(self):
        clock = FakeClock()
        venue = PaperVenue(
            WETH, USDC, initial_base=Decimal("10"), initial_quote=Decimal("1000"), order_ttl_sec=60.0, clock=clock
        )
        bot = LadderBot(
            FixedMid(), venue, venue, venue, WETH, USDC, config=make_config(), min_order_sizes={}, clock=clock
        )

        first = await bot.tick()
        clock.now += 61
        second = await bot.tick()

        assert second["plan"] == first["plan"]
        assert all(action.startswith("Create(") for action in second["plan"])
        assert len(venue.snapshot()) == 6
        assert abs(venue.balances["USDC"] - Decimal("100")) < Decimal("1e-6")
        assert abs(venue.balances["WETH"] - Decimal("1")) < Decimal("1e-6")

    @pytest.mark.asyncio
    async def test_cycle_returns_to_idle(self):
        bot = make_bot()

        await bot.tick()

        assert bot.cycle_state == CycleState.IDLE
        assert not bot.gate_held


class TestSyntheticPoolCycle:
    """Cycles priced from a sampled constant-product pool."""

    @pytest.mark.asyncio
    async def test_pool_mid_drives_ladder(self):
        venue = make_venue()
        bot = make_bot(mid_provider=make_synthetic_mid(make_pool()), venue=venue)

        result = await bot.tick()

        assert result["status"] == "completed"
        assert result["mid_source"].startswith("synthetic:")
        mid = Decimal(result["mid_price"])
        assert abs(mid - Decimal("3000")) < Decimal("5")
        live = venue.snapshot()
        assert len(live.bids) == 3
        assert len(live.asks) == 3
        assert all(o.price < mid for o in live.bids)
        assert all(o.price > mid for o in live.asks)

    @pytest.mark.asyncio
    async def test_unchanged_pool_converges(self):
        venue = make_venue()
        bot = make_bot(mid_provider=make_synthetic_mid(make_pool()), venue=venue)

        await bot.tick()
        result = await bot.tick()

        assert result["status"] == "completed"
        assert result["plan"] == []

    @pytest.mark.asyncio
    async def test_pool_move_edits_ladder(self):
        venue = make_venue()
        pool = make_pool()
        bot = make_bot(mid_provider=make_synthetic_mid(pool), venue=venue)

        await bot.tick()
        pool.set_reserves(Decimal("1000"), Decimal("3100000"))
        result = await bot.tick()

        assert len(result["plan"]) == 6
        assert all(action.startswith("Edit(") for action in result["plan"])
        assert Decimal(result["mid_price"]) > Decimal("3050")


# =============================================================================
# Single-Flight Gate Tests
# =============================================================================


class TestSingleFlight:
    """Tests for the single-flight gate."""

    @pytest.mark.asyncio
    async def test_tick_skipped_while_cycle_in_flight(self):
        provider = FixedMid()
        bot = make_bot(mid_provider=provider)
        bot._in_flight = True

        result = await bot.tick()

        assert result is None
        assert bot.state.cycles_skipped == 1
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_ticks_run_one_cycle(self):
        provider = FixedMid(delay=0.05)
        bot = make_bot(mid_provider=provider)

        results = await asyncio.gather(bot.tick(), bot.tick(), bot.tick())

        assert sum(1 for r in results if r is not None) == 1
        assert bot.state.cycles_skipped == 2
        assert provider.max_active == 1

    @pytest.mark.asyncio
    async def test_gate_released_after_cycle_error(self):
        venue = make_venue()
        bot = make_bot(venue=venue)
        venue.snapshot = MagicMock(side_effect=RuntimeError("observer crashed"))

        result = await bot.tick()

        assert result["status"] == "failed"
        assert "observer crashed" in bot.state.last_error
        assert not bot.gate_held

    @pytest.mark.asyncio
    async def test_gate_released_when_cycle_raises(self):
        bot = make_bot()
        bot.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await bot.tick()

        assert not bot.gate_held
        assert bot.cycle_state == CycleState.IDLE


# =============================================================================
# Abort and Freeze Tests
# =============================================================================


class TestAbortAndFreeze:
    """Tests for missing inputs."""

    @pytest.mark.asyncio
    async def test_no_mid_aborts_without_touching_orders(self):
        venue = make_venue()
        await venue.create_order(Side.BID, Decimal("90"), Decimal("1"))
        bot = make_bot(mid_provider=FixedMid(mid=None), venue=venue)

        result = await bot.tick()

        assert result["status"] == "aborted"
        assert result["plan"] == []
        assert len(venue.snapshot()) == 1
        assert bot.state.cycles_aborted == 1

    @pytest.mark.asyncio
    async def test_mid_provider_exception_aborts(self):
        provider = FixedMid()
        provider.get_mid_price = AsyncMock(side_effect=RuntimeError("rpc down"))
        bot = make_bot(mid_provider=provider)

        result = await bot.tick()

        assert result["status"] == "aborted"
        assert "rpc down" in result["errors"][0]

    @pytest.mark.asyncio
    async def test_failed_base_balance_freezes_asks(self):
        venue = make_venue()
        stale_ask = await venue.create_order(Side.ASK, Decimal("150"), Decimal("1"))
        bot = make_bot(venue=venue, balances=FlakyBalances(venue, failing={"WETH"}))

        result = await bot.tick()

        assert result["status"] == "completed"
        live = venue.snapshot()
        assert [o.order_id for o in live.asks] == [stale_ask]
        assert live.asks[0].price == Decimal("150")
        assert len(live.bids) == 3
        assert any("WETH balance unavailable" in e for e in result["errors"])

    @pytest.mark.asyncio
    async def test_unsampled_side_frozen_with_fallback_mid(self):
        venue = make_venue()
        resting_bid = await venue.create_order(Side.BID, Decimal("2900"), Decimal("0.01"))
        provider = make_synthetic_mid(make_pool(OneWayPool), fallback=FixedMid(mid=Decimal("3000")))
        bot = make_bot(mid_provider=provider, venue=venue)

        result = await bot.tick()

        assert result["status"] == "completed"
        assert result["mid_price"] == "3000"
        assert len(result["plan"]) == 3
        assert all(action.startswith("Create(ask") for action in result["plan"])
        live = venue.snapshot()
        assert [o.order_id for o in live.bids] == [resting_bid]
        assert len(live.asks) == 3
        assert any("No sampled liquidity" in e for e in result["errors"])

    @pytest.mark.asyncio
    async def test_failed_quote_balance_freezes_bids(self):
        venue = make_venue()
        bot = make_bot(venue=venue, balances=FlakyBalances(venue, failing={"USDC"}))

        await bot.tick()

        live = venue.snapshot()
        assert live.bids == []
        assert len(live.asks) == 3


# =============================================================================
# Risk Control Tests
# =============================================================================


class TestRiskControls:
    """Tests for the volatility guard and kill switch."""

    @pytest.mark.asyncio
    async def test_wide_reference_spread_pulls_orders(self):
        venue = make_venue()
        provider = FixedMid()
        bot = make_bot(mid_provider=provider, venue=venue)

        await bot.tick()
        assert len(venue.snapshot()) == 6

        provider.spread = Decimal("0.05")
        result = await bot.tick()

        assert result["pulled"] is True
        assert len(venue.snapshot()) == 0
        assert abs(venue.balances["USDC"] - Decimal("1000")) < Decimal("1e-18")

    @pytest.mark.asyncio
    async def test_spread_within_limit_quotes(self):
        venue = make_venue()
        bot = make_bot(mid_provider=FixedMid(spread=Decimal("0.01")), venue=venue)

        result = await bot.tick()

        assert "pulled" not in result
        assert len(venue.snapshot()) == 6

    @pytest.mark.asyncio
    async def test_kill_switch_halts_ticks(self, tmp_path):
        kill_switch = KillSwitch(tmp_path / ".kill_switch")
        kill_switch.activate("test")
        venue = make_venue()
        provider = FixedMid()
        bot = make_bot(mid_provider=provider, venue=venue, kill_switch=kill_switch)

        result = await bot.tick()

        assert result is None
        assert bot.state.cycles_halted == 1
        assert provider.calls == 0

        kill_switch.deactivate()
        assert await bot.tick() is not None


# =============================================================================
# Timer Loop Tests
# =============================================================================


class TestRunLoop:
    """Tests for the fixed-interval timer loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        bot = make_bot(config=make_config(poll_interval_ms=20))

        task = bot.start()
        await asyncio.sleep(0.15)
        assert bot.state.is_running
        bot.stop()
        await asyncio.wait_for(task, timeout=2)

        assert bot.state.cycle_count >= 2
        assert not bot.state.is_running

    @pytest.mark.asyncio
    async def test_slow_cycle_skips_ticks(self):
        provider = FixedMid(delay=0.1)
        bot = make_bot(mid_provider=provider, config=make_config(poll_interval_ms=20))

        task = bot.start()
        await asyncio.sleep(0.3)
        bot.stop()
        await asyncio.wait_for(task, timeout=2)

        assert bot.state.cycles_skipped >= 1
        assert provider.max_active == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_cycle(self):
        provider = FixedMid(delay=0.1)
        bot = make_bot(mid_provider=provider, config=make_config(poll_interval_ms=1000))

        task = bot.start()
        await asyncio.sleep(0.02)
        bot.stop()
        await asyncio.wait_for(task, timeout=2)

        assert bot.state.cycle_count == 1
        assert not bot.gate_held


# =============================================================================
# Status and Config Tests
# =============================================================================


class TestStatus:
    """Tests for bot status reporting."""

    @pytest.mark.asyncio
    async def test_get_status(self):
        bot = make_bot()
        await bot.tick()

        status = bot.get_status()

        assert status["pair"] == "WETH/USDC"
        assert status["cycle_state"] == "idle"
        assert status["live_bids"] == 3
        assert status["live_asks"] == 3
        assert status["bot_state"]["cycle_count"] == 1
        assert status["bot_state"]["last_mid_price"] == "100"
        assert status["kill_switch_active"] is False

    def test_bot_state_to_dict_defaults(self):
        data = BotState().to_dict()

        assert data["uptime_seconds"] == 0
        assert data["last_mid_price"] is None
        assert data["start_time"] is None

    def test_invalid_config_rejected(self):
        with pytest.raises(ConfigurationError):
            make_bot(config=make_config(level_count=0))
