"""
AMM/CEX curve sampling.

Turns a venue's quote function into a discretized order book. A size ladder
of cumulative input sizes is quoted in one batch; consecutive cumulative
outputs are differenced into marginal buckets, and each bucket becomes one
book level at its marginal price.

Example:
    >>> sampler = CurveSampler(pool)
    >>> ladder = await sampler.sample(PairDirection(weth, usdc), build_size_ladder())
    >>> ladder.prices
    [Decimal('3012.4'), Decimal('3011.9'), ...]
"""

import asyncio
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional, Sequence

from ..venues.base import PairDirection, QuoteSource
from ..venues.tokens import Token
from ..models import BookLevel, LadderBucket, PriceLadder, QuoteSample, Side, SyntheticBook, sort_levels

logger = logging.getLogger(__name__)

# Default geometric ladder
LADDER_STEPS = 10
PROGRESSION_FACTOR = Decimal("1.85")
LADDER_START_SIZE = Decimal("0.5")

# USD notional of each increment for USD-denominated ladders
IDEAL_USD_LADDER = [
    Decimal(x) for x in ("0.1", "5", "25", "100", "500", "1000", "5000", "10000", "50000", "100000")
]


class SamplingError(Exception):
    """Raised when no bucket of a directional sample is usable."""

    def __init__(self, direction: PairDirection, sizes: Sequence[Decimal], reason: str = ""):
        self.direction = direction
        self.sizes = list(sizes)
        message = f"All buckets failed for {direction} at sizes {[str(s) for s in self.sizes]}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


def _quantize(amount: Decimal, decimals: Optional[int]) -> Decimal:
    if decimals is None:
        return amount
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def cumulative_sizes(increments: Sequence[Decimal]) -> list[Decimal]:
    """Running sum of bucket increments."""
    total = Decimal("0")
    result = []
    for increment in increments:
        total += increment
        result.append(total)
    return result


def build_size_ladder(
    start: Decimal = LADDER_START_SIZE,
    factor: Decimal = PROGRESSION_FACTOR,
    steps: int = LADDER_STEPS,
    decimals: Optional[int] = None,
) -> list[Decimal]:
    """
    Build cumulative sample points from a geometric series of increments.

    Increment i is start * factor^i, rounded down to the token precision.

    Args:
        start: First increment, in token units.
        factor: Growth ratio between increments.
        steps: Number of sample points.
        decimals: Token precision, or None to skip rounding.

    Returns:
        Strictly increasing cumulative sizes.
    """
    if steps < 1:
        raise ValueError(f"steps must be at least 1, got {steps}")
    if start <= 0 or factor <= 0:
        raise ValueError("start and factor must be positive")
    increments = [_quantize(start * factor**i, decimals) for i in range(steps)]
    return cumulative_sizes([i for i in increments if i > 0])


def usd_size_ladder(asset_usd_price: Decimal, decimals: Optional[int] = None) -> list[Decimal]:
    """
    Build cumulative sample points whose increments have fixed USD notionals.

    Args:
        asset_usd_price: USD price of the token being sold.
        decimals: Token precision, or None to skip rounding.
    """
    if asset_usd_price <= 0:
        raise ValueError(f"asset_usd_price must be positive, got {asset_usd_price}")
    increments = [_quantize(usd / asset_usd_price, decimals) for usd in IDEAL_USD_LADDER]
    return cumulative_sizes([i for i in increments if i > 0])


def stretch_book(book: SyntheticBook, stretch: Decimal) -> SyntheticBook:
    """
    Widen a book around its mid.

    Every bid price is divided by the stretch factor and every ask price is
    multiplied by it. A factor of 1 returns an equal book.

    Raises:
        ValueError: If stretch < 1.
    """
    if stretch < 1:
        raise ValueError(f"stretch factor must be >= 1, got {stretch}")
    return SyntheticBook(
        bids=[BookLevel(price=level.price / stretch, size=level.size) for level in book.bids],
        asks=[BookLevel(price=level.price * stretch, size=level.size) for level in book.asks],
        failed_sides=set(book.failed_sides),
    )


class CurveSampler:
    """
    Samples a quote source into per-direction price ladders.

    Attributes:
        source: Quote source to sample.
        dust_threshold: Sizes at or below this are rejected as dust.
    """

    def __init__(self, source: QuoteSource, dust_threshold: Decimal = Decimal("0")):
        self.source = source
        self.dust_threshold = Decimal(str(dust_threshold))

    def _validate_ladder(self, size_ladder: Sequence[Decimal]) -> None:
        if not size_ladder:
            raise ValueError("size ladder must not be empty")
        previous: Optional[Decimal] = None
        for size in size_ladder:
            if size <= self.dust_threshold:
                raise ValueError(f"size {size} does not exceed dust threshold {self.dust_threshold}")
            if previous is not None and size <= previous:
                raise ValueError(f"size ladder must be strictly increasing: {size} after {previous}")
            previous = size

    async def sample(self, direction: PairDirection, size_ladder: Sequence[Decimal]) -> PriceLadder:
        """
        Sample one trade direction.

        Each element of size_ladder is a cumulative input size. A bucket is
        excluded when its quote failed, when its cumulative output falls below
        the last valid sample, or when it adds no output. Marginal amounts are
        always measured against the last valid sample, so exclusions never
        produce negative buckets.

        Args:
            direction: Tokens sold and bought.
            size_ladder: Strictly increasing cumulative input sizes.

        Returns:
            PriceLadder with the valid buckets in ladder order.

        Raises:
            ValueError: If the ladder is empty, unordered or contains dust.
            SamplingError: If every bucket is excluded.
        """
        self._validate_ladder(size_ladder)
        sizes = [Decimal(str(s)) for s in size_ladder]
        results = await self.source.quote_many(direction, sizes)
        if len(results) != len(sizes):
            raise SamplingError(
                direction, sizes, f"{self.source.name} returned {len(results)} quotes for {len(sizes)} sizes"
            )

        ladder = PriceLadder(token_in=direction.token_in.symbol, token_out=direction.token_out.symbol)
        last_input = Decimal("0")
        last_output = Decimal("0")

        for size, result in zip(sizes, results):
            if isinstance(result, BaseException):
                logger.warning(f"Quote failed for {direction} size={size} via {self.source.name}: {result}")
                ladder.excluded_sizes.append(size)
                continue

            sample = QuoteSample(cumulative_input=size, cumulative_output=Decimal(str(result)))
            ladder.samples.append(sample)
            output = sample.cumulative_output
            if output < last_output:
                logger.warning(
                    f"Non-monotonic quote for {direction} size={size}: "
                    f"output {output} < previous {last_output}"
                )
                ladder.excluded_sizes.append(size)
                continue

            marginal_output = output - last_output
            if marginal_output == 0:
                logger.debug(f"No liquidity for {direction} between {last_input} and {size}")
                ladder.excluded_sizes.append(size)
                continue

            ladder.buckets.append(
                LadderBucket(
                    input_size=size - last_input,
                    marginal_output=marginal_output,
                    cumulative_input=size,
                )
            )
            last_input = size
            last_output = output

        if not ladder.buckets:
            raise SamplingError(direction, sizes)

        if ladder.excluded_sizes:
            logger.info(
                f"Sampled {direction}: {len(ladder.buckets)} buckets, "
                f"excluded sizes {[str(s) for s in ladder.excluded_sizes]}"
            )
        return ladder

    async def build_synthetic_book(
        self,
        base: Token,
        quote: Token,
        base_ladder: Sequence[Decimal],
        quote_ladder: Sequence[Decimal],
        stretch: Decimal = Decimal("1"),
    ) -> SyntheticBook:
        """
        Sample both directions concurrently and assemble a synthetic book.

        Selling base (base -> quote) gives the bids directly in quote per base.
        Buying base (quote -> base) gives base per quote, so those buckets are
        inverted: price becomes 1/price and size becomes price * size, both in
        base units. A direction that fails entirely leaves its side empty and
        is recorded in failed_sides.

        Args:
            base: Base token.
            quote: Quote token.
            base_ladder: Cumulative base sizes for the bid side.
            quote_ladder: Cumulative quote sizes for the ask side.
            stretch: Spread stretch factor (>= 1).
        """
        sell_base = PairDirection(token_in=base, token_out=quote)
        buy_base = sell_base.reversed()

        bid_result, ask_result = await asyncio.gather(
            self.sample(sell_base, base_ladder),
            self.sample(buy_base, quote_ladder),
            return_exceptions=True,
        )

        book = SyntheticBook()

        if isinstance(bid_result, SamplingError):
            logger.warning(f"Bid side unavailable: {bid_result}")
            book.failed_sides.add(Side.BID)
        elif isinstance(bid_result, BaseException):
            raise bid_result
        else:
            book.bids = sort_levels(
                [BookLevel(price=b.marginal_price, size=b.input_size) for b in bid_result.buckets],
                Side.BID,
            )

        if isinstance(ask_result, SamplingError):
            logger.warning(f"Ask side unavailable: {ask_result}")
            book.failed_sides.add(Side.ASK)
        elif isinstance(ask_result, BaseException):
            raise ask_result
        else:
            # base per quote -> quote per base
            book.asks = sort_levels(
                [
                    BookLevel(price=1 / b.marginal_price, size=b.marginal_price * b.input_size)
                    for b in ask_result.buckets
                ],
                Side.ASK,
            )

        return stretch_book(book, Decimal(str(stretch)))

