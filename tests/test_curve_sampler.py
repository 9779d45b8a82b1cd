"""
Tests for AMM/CEX curve sampling.

Tests cover:
- Differencing cumulative quotes into marginal buckets
- Exclusion of failed, non-monotonic and empty buckets
- Size ladder validation and construction
- Synthetic book assembly from both trade directions
- Spread stretching
"""

from decimal import Decimal

import pytest

from ladder_mm.maker.curve_sampler import (
    CurveSampler,
    SamplingError,
    build_size_ladder,
    cumulative_sizes,
    stretch_book,
    usd_size_ladder,
)
from ladder_mm.models import BookLevel, QuoteSample, Side, SyntheticBook
from ladder_mm.venues.base import InsufficientLiquidityError, PairDirection, QuoteError, QuoteSource
from ladder_mm.venues.paper import ConstantProductQuoteSource
from ladder_mm.venues.tokens import Token


WETH = Token("WETH", "0x4200000000000000000000000000000000000006", 18, 10)
USDC = Token("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6, 10)


class ScriptedQuoteSource(QuoteSource):
    """Quote source answering from a table of size -> output (or exception)."""

    name = "scripted"

    def __init__(self, outputs, reverse_outputs=None):
        self.outputs = {Decimal(str(k)): v for k, v in outputs.items()}
        self.reverse_outputs = (
            {Decimal(str(k)): v for k, v in reverse_outputs.items()} if reverse_outputs else {}
        )
        self.calls = []

    async def quote(self, direction, amount_in):
        self.calls.append((str(direction), amount_in))
        table = self.outputs if direction.token_in == WETH else self.reverse_outputs
        result = table.get(amount_in, QuoteError(f"no scripted quote for {amount_in}"))
        if isinstance(result, Exception):
            raise result
        return Decimal(str(result))


@pytest.fixture
def sell_weth():
    return PairDirection(token_in=WETH, token_out=USDC)


@pytest.fixture
def pool():
    """1000 WETH / 3,000,000 USDC pool without fees."""
    return ConstantProductQuoteSource(WETH, USDC, Decimal("1000"), Decimal("3000000"), fee=Decimal("0"))


# =============================================================================
# Bucket Differencing Tests
# =============================================================================


class TestSample:
    """Tests for CurveSampler.sample."""

    @pytest.mark.asyncio
    async def test_buckets_from_cumulative_outputs(self, sell_weth):
        """Ladder [1, 2, 4] quoting [10, 19, 36] gives buckets [10, 9, 17]."""
        source = ScriptedQuoteSource({1: 10, 2: 19, 4: 36})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("4")])

        assert [b.marginal_output for b in ladder.buckets] == [Decimal("10"), Decimal("9"), Decimal("17")]
        assert [b.input_size for b in ladder.buckets] == [Decimal("1"), Decimal("1"), Decimal("2")]
        assert ladder.prices == [Decimal("10"), Decimal("9"), Decimal("8.5")]
        assert ladder.excluded_sizes == []
        assert ladder.token_in == "WETH"
        assert ladder.token_out == "USDC"

    @pytest.mark.asyncio
    async def test_failed_quote_excludes_only_that_bucket(self, sell_weth):
        """An error at size 4 leaves the buckets for sizes 1 and 2."""
        source = ScriptedQuoteSource({1: 10, 2: 19, 4: InsufficientLiquidityError("no depth")})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("4")])

        assert len(ladder) == 2
        assert [b.cumulative_input for b in ladder.buckets] == [Decimal("1"), Decimal("2")]
        assert ladder.prices == [Decimal("10"), Decimal("9")]
        assert ladder.excluded_sizes == [Decimal("4")]

    @pytest.mark.asyncio
    async def test_raw_quotes_kept_for_valid_sizes(self, sell_weth):
        source = ScriptedQuoteSource({1: 10, 2: QuoteError("timeout"), 4: 36})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("4")])

        assert ladder.samples == [
            QuoteSample(cumulative_input=Decimal("1"), cumulative_output=Decimal("10")),
            QuoteSample(cumulative_input=Decimal("4"), cumulative_output=Decimal("36")),
        ]

    @pytest.mark.asyncio
    async def test_failed_middle_bucket_measured_from_last_valid(self, sell_weth):
        source = ScriptedQuoteSource({1: 10, 2: QuoteError("timeout"), 4: 36})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("4")])

        assert len(ladder) == 2
        # 4 - 1 input for 36 - 10 output
        assert ladder.buckets[1].input_size == Decimal("3")
        assert ladder.buckets[1].marginal_output == Decimal("26")

    @pytest.mark.asyncio
    async def test_non_monotonic_output_excluded(self, sell_weth):
        source = ScriptedQuoteSource({1: 10, 2: 8, 3: 25})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("3")])

        assert ladder.excluded_sizes == [Decimal("2")]
        assert ladder.prices == [Decimal("10"), Decimal("7.5")]
        assert all(b.marginal_output > 0 for b in ladder.buckets)

    @pytest.mark.asyncio
    async def test_zero_marginal_output_excluded(self, sell_weth):
        source = ScriptedQuoteSource({1: 10, 2: 10, 3: 20})
        ladder = await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("3")])

        assert ladder.excluded_sizes == [Decimal("2")]
        assert ladder.prices == [Decimal("10"), Decimal("5")]

    @pytest.mark.asyncio
    async def test_all_buckets_failed_raises(self, sell_weth):
        source = ScriptedQuoteSource({1: QuoteError("down"), 2: QuoteError("down")})

        with pytest.raises(SamplingError) as exc_info:
            await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2")])

        assert exc_info.value.direction == sell_weth
        assert exc_info.value.sizes == [Decimal("1"), Decimal("2")]

    @pytest.mark.asyncio
    async def test_constant_product_prices_non_increasing(self, sell_weth, pool):
        ladder = await CurveSampler(pool).sample(sell_weth, build_size_ladder(Decimal("1"), Decimal("2"), 6))

        assert len(ladder) == 6
        assert ladder.prices == sorted(ladder.prices, reverse=True)
        assert ladder.prices[0] < pool.spot_price

    @pytest.mark.asyncio
    async def test_whole_ladder_quoted_in_one_batch(self, sell_weth):
        source = ScriptedQuoteSource({1: 10, 2: 19, 4: 36})
        await CurveSampler(source).sample(sell_weth, [Decimal("1"), Decimal("2"), Decimal("4")])

        assert sorted(amount for _, amount in source.calls) == [Decimal("1"), Decimal("2"), Decimal("4")]


# =============================================================================
# Ladder Validation Tests
# =============================================================================


class TestLadderValidation:
    """Tests for size ladder checks."""

    @pytest.mark.asyncio
    async def test_empty_ladder_rejected(self, sell_weth):
        with pytest.raises(ValueError):
            await CurveSampler(ScriptedQuoteSource({})).sample(sell_weth, [])

    @pytest.mark.asyncio
    async def test_non_increasing_ladder_rejected(self, sell_weth):
        with pytest.raises(ValueError, match="strictly increasing"):
            await CurveSampler(ScriptedQuoteSource({})).sample(sell_weth, [Decimal("2"), Decimal("2")])

    @pytest.mark.asyncio
    async def test_dust_size_rejected(self, sell_weth):
        sampler = CurveSampler(ScriptedQuoteSource({}), dust_threshold=Decimal("0.01"))
        with pytest.raises(ValueError, match="dust"):
            await sampler.sample(sell_weth, [Decimal("0.01"), Decimal("1")])

    @pytest.mark.asyncio
    async def test_invalid_ladder_is_not_quoted(self, sell_weth):
        source = ScriptedQuoteSource({})
        with pytest.raises(ValueError):
            await CurveSampler(source).sample(sell_weth, [Decimal("4"), Decimal("2")])
        assert source.calls == []


class TestSizeLadders:
    """Tests for size ladder builders."""

    def test_cumulative_sizes(self):
        assert cumulative_sizes([Decimal("1"), Decimal("2"), Decimal("4")]) == [
            Decimal("1"),
            Decimal("3"),
            Decimal("7"),
        ]

    def test_geometric_ladder(self):
        assert build_size_ladder(Decimal("1"), Decimal("2"), 3) == [Decimal("1"), Decimal("3"), Decimal("7")]

    def test_geometric_ladder_rounded_to_precision(self):
        ladder = build_size_ladder(Decimal("0.5"), Decimal("1.85"), 3, decimals=2)
        assert ladder == [Decimal("0.5"), Decimal("1.42"), Decimal("3.13")]

    def test_geometric_ladder_strictly_increasing(self):
        ladder = build_size_ladder()
        assert all(b > a for a, b in zip(ladder, ladder[1:]))

    def test_invalid_steps(self):
        with pytest.raises(ValueError):
            build_size_ladder(steps=0)

    def test_usd_ladder(self):
        ladder = usd_size_ladder(Decimal("2000"))
        assert len(ladder) == 10
        assert ladder[0] == Decimal("0.00005")
        assert all(b > a for a, b in zip(ladder, ladder[1:]))

    def test_usd_ladder_drops_sub_precision_increments(self):
        # 0.1 USD of a 2000 USD asset rounds to zero at 4 decimals
        ladder = usd_size_ladder(Decimal("2000"), decimals=4)
        assert len(ladder) == 9
        assert ladder[0] == Decimal("0.0025")

    def test_usd_ladder_requires_positive_price(self):
        with pytest.raises(ValueError):
            usd_size_ladder(Decimal("0"))


# =============================================================================
# Synthetic Book Tests
# =============================================================================


class TestSyntheticBook:
    """Tests for CurveSampler.build_synthetic_book."""

    @pytest.mark.asyncio
    async def test_book_brackets_pool_price(self, pool):
        book = await CurveSampler(pool).build_synthetic_book(
            WETH,
            USDC,
            [Decimal("1"), Decimal("2"), Decimal("4")],
            [Decimal("3000"), Decimal("6000"), Decimal("12000")],
        )

        assert book.failed_sides == set()
        assert len(book.bids) == 3
        assert len(book.asks) == 3
        assert book.best_bid < pool.spot_price < book.best_ask
        assert not book.is_crossed

    @pytest.mark.asyncio
    async def test_sides_sorted_best_first(self, pool):
        book = await CurveSampler(pool).build_synthetic_book(
            WETH,
            USDC,
            [Decimal("1"), Decimal("2"), Decimal("4")],
            [Decimal("3000"), Decimal("6000"), Decimal("12000")],
        )

        bid_prices = [level.price for level in book.bids]
        ask_prices = [level.price for level in book.asks]
        assert bid_prices == sorted(bid_prices, reverse=True)
        assert ask_prices == sorted(ask_prices)

    @pytest.mark.asyncio
    async def test_ask_side_inverted_to_base_units(self, pool):
        book = await CurveSampler(pool).build_synthetic_book(
            WETH, USDC, [Decimal("1")], [Decimal("3000")]
        )

        ask = book.asks[0]
        base_out = Decimal("3000") * Decimal("1000") / Decimal("3003000")
        assert abs(ask.size - base_out) < Decimal("1e-20")
        assert abs(ask.price - Decimal("3003")) < Decimal("1e-18")
        # Level notional equals the quote spent
        assert abs(ask.notional - Decimal("3000")) < Decimal("1e-18")

    @pytest.mark.asyncio
    async def test_failed_direction_marks_side(self):
        source = ScriptedQuoteSource(
            {1: 3000, 2: 5990},
            reverse_outputs={3000: QuoteError("down"), 6000: QuoteError("down")},
        )
        book = await CurveSampler(source).build_synthetic_book(
            WETH, USDC, [Decimal("1"), Decimal("2")], [Decimal("3000"), Decimal("6000")]
        )

        assert book.failed_sides == {Side.ASK}
        assert book.asks == []
        assert [level.price for level in book.bids] == [Decimal("3000"), Decimal("2990")]
        assert book.mid_price is None

    @pytest.mark.asyncio
    async def test_invalid_ladder_propagates(self, pool):
        with pytest.raises(ValueError):
            await CurveSampler(pool).build_synthetic_book(WETH, USDC, [Decimal("1")], [])

    @pytest.mark.asyncio
    async def test_stretch_applied(self, pool):
        plain = await CurveSampler(pool).build_synthetic_book(WETH, USDC, [Decimal("1")], [Decimal("3000")])
        stretched = await CurveSampler(pool).build_synthetic_book(
            WETH, USDC, [Decimal("1")], [Decimal("3000")], stretch=Decimal("1.01")
        )

        assert stretched.best_bid < plain.best_bid
        assert stretched.best_ask > plain.best_ask
        assert stretched.bids[0].size == plain.bids[0].size


class TestStretchBook:
    """Tests for stretch_book."""

    def test_stretch_widens_around_mid(self):
        book = SyntheticBook(
            bids=[BookLevel(Decimal("100"), Decimal("1"))],
            asks=[BookLevel(Decimal("102"), Decimal("1"))],
        )

        stretched = stretch_book(book, Decimal("1.001"))

        assert stretched.best_bid.quantize(Decimal("0.0001")) == Decimal("99.9001")
        assert stretched.best_ask == Decimal("102.102")

    def test_unit_stretch_is_identity(self):
        book = SyntheticBook(
            bids=[BookLevel(Decimal("100"), Decimal("1"))],
            asks=[BookLevel(Decimal("102"), Decimal("2"))],
            failed_sides=set(),
        )
        assert stretch_book(book, Decimal("1")) == book

    def test_stretch_below_one_rejected(self):
        with pytest.raises(ValueError):
            stretch_book(SyntheticBook(), Decimal("0.99"))
