"""
Ladder generation.

Builds the desired bid and ask ladders around a mid price from the balances
available to the strategy. Price offsets grow either linearly or
geometrically with the level index; sizes are either an even split of the
budget or a geometrically increasing split that puts more size further from
mid.

Example:
    >>> config = StrategyConfig(level_count=3, spread_factor=Decimal("0.03"))
    >>> book = build_desired_book(Decimal("100"), Decimal("10"), Decimal("1000"), config)
    >>> len(book.bids), book.bids[-1].price
    (3, Decimal('97.00'))
"""

import logging
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import Mapping, Optional

from ..config import StrategyConfig
from ..models import BookLevel, DesiredBook, Side

logger = logging.getLogger(__name__)


def _usable(amount: Optional[Decimal]) -> bool:
    return amount is not None and amount.is_finite() and amount > 0


def level_prices(mid: Decimal, side: Side, config: StrategyConfig) -> list[Decimal]:
    """
    Price of each level, best-first.

    Geometric: mid * (1 -/+ spread) ^ ((i + 1) / levels), so the outermost
    level sits exactly spread_factor away. Linear: mid -/+ mid * step * (i + 1)
    with step = spread_factor / levels. Non-positive prices are dropped.
    """
    levels = config.level_count
    prices = []
    for i in range(levels):
        if config.price_step == "geometric":
            base = (1 - config.spread_factor) if side == Side.BID else (1 + config.spread_factor)
            price = mid * base ** (Decimal(i + 1) / Decimal(levels))
        else:
            offset = mid * (config.spread_factor / levels) * (i + 1)
            price = mid - offset if side == Side.BID else mid + offset
        if price > 0:
            prices.append(price)
    return prices


def level_weights(count: int, config: StrategyConfig) -> list[Decimal]:
    """Share of the side budget given to each level (sums to 1)."""
    if count == 0:
        return []
    if config.size_profile == "even":
        return [Decimal(1) / count] * count
    raw = [config.size_scaling_factor**i for i in range(count)]
    total = sum(raw, Decimal("0"))
    return [w / total for w in raw]


def _round_to_tick(price: Decimal, tick: Decimal, side: Side) -> Decimal:
    # Bids round down and asks round up so rounding never tightens the spread
    rounding = ROUND_FLOOR if side == Side.BID else ROUND_CEILING
    return (price / tick).to_integral_value(rounding=rounding) * tick


def _merge_duplicates(levels: list[BookLevel]) -> list[BookLevel]:
    merged: list[BookLevel] = []
    for level in levels:
        if merged and merged[-1].price == level.price:
            merged[-1] = BookLevel(price=level.price, size=merged[-1].size + level.size)
        else:
            merged.append(level)
    return merged


def _meets_minimum(
    level: BookLevel,
    side: Side,
    min_order_sizes: Mapping[str, Decimal],
    base_symbol: str,
    quote_symbol: str,
) -> bool:
    # Bids spend quote, asks spend base
    if side == Side.BID:
        minimum = min_order_sizes.get(quote_symbol)
        return minimum is None or level.notional >= minimum
    minimum = min_order_sizes.get(base_symbol)
    return minimum is None or level.size >= minimum


def build_side(
    mid: Decimal,
    side: Side,
    budget: Optional[Decimal],
    config: StrategyConfig,
    min_order_sizes: Optional[Mapping[str, Decimal]] = None,
    base_symbol: str = "",
    quote_symbol: str = "",
) -> list[BookLevel]:
    """
    Build one side of the desired book.

    Args:
        mid: Mid price in quote per base.
        side: Side to build.
        budget: Quote units for bids, base units for asks. None, NaN or
            non-positive budgets give an empty side.
        config: Strategy options.
        min_order_sizes: Minimums by asset symbol.
        base_symbol: Base asset symbol for the minimum table.
        quote_symbol: Quote asset symbol for the minimum table.

    Returns:
        Levels best-first with strictly monotonic, unique prices.
    """
    if not _usable(budget):
        logger.info(f"No usable {side} budget ({budget}), side left empty")
        return []

    prices = level_prices(mid, side, config)
    weights = level_weights(len(prices), config)
    deployable = budget * config.balance_utilization

    levels = []
    for price, weight in zip(prices, weights):
        if config.tick_size is not None:
            price = _round_to_tick(price, config.tick_size, side)
            if price <= 0:
                continue
        level_budget = deployable * weight
        size = level_budget / price if side == Side.BID else level_budget
        if size > 0:
            levels.append(BookLevel(price=price, size=size))

    levels = _merge_duplicates(levels)

    minimums = min_order_sizes or {}
    kept = [lvl for lvl in levels if _meets_minimum(lvl, side, minimums, base_symbol, quote_symbol)]
    if len(kept) < len(levels):
        asset = quote_symbol if side == Side.BID else base_symbol
        logger.info(
            f"Dropped {len(levels) - len(kept)} {side} level(s) below minimum order size "
            f"({asset}={minimums.get(asset)})"
        )
    return kept


def build_desired_book(
    mid: Decimal,
    available_base: Optional[Decimal],
    available_quote: Optional[Decimal],
    config: StrategyConfig,
    min_order_sizes: Optional[Mapping[str, Decimal]] = None,
    base_symbol: str = "",
    quote_symbol: str = "",
) -> DesiredBook:
    """
    Build the desired ladder around a mid price.

    The mid may come from a synthetic AMM book or from a CEX reference; the
    generator does not care which. Bids spend quote, asks spend base.

    Args:
        mid: Mid price in quote per base.
        available_base: Base budget for the ask side.
        available_quote: Quote budget for the bid side.
        config: Strategy options.
        min_order_sizes: Minimums by asset symbol. A bid is dropped when its quote
            notional is below the quote asset minimum, an ask when its base
            size is below the base asset minimum.
        base_symbol: Base asset symbol.
        quote_symbol: Quote asset symbol.

    Raises:
        ValueError: If mid is missing, non-finite or non-positive.
    """
    if not _usable(mid):
        raise ValueError(f"Cannot build a ladder without a positive mid price, got {mid}")

    return DesiredBook(
        bids=build_side(
            mid, Side.BID, available_quote, config, min_order_sizes, base_symbol, quote_symbol
        ),
        asks=build_side(
            mid, Side.ASK, available_base, config, min_order_sizes, base_symbol, quote_symbol
        ),
    )
