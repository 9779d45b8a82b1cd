"""
Mid-price resolution.

A cycle needs one mid price. It comes either from the synthetic book built
by sampling an AMM, or from an external reference market. Crossed or
one-sided synthetic books follow a single policy:

1. Both sides sampled and not crossed: use the synthetic midpoint.
2. Crossed, or a side failed: use the fallback reference mid when one is
   configured and returns a price.
3. Otherwise: no mid. The cycle aborts and the live book is left untouched.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from ..models import Side, SyntheticBook
from ..venues.base import ReferencePriceSource, VenueError
from ..venues.tokens import Token
from .curve_sampler import CurveSampler

logger = logging.getLogger(__name__)


@dataclass
class MidPriceQuote:
    """
    Mid price for one cycle plus what is known about its quality.

    Attributes:
        mid_price: Mid in quote per base, or None if unavailable.
        source: Where the mid came from.
        unavailable_sides: Sides whose reference data could not be obtained.
        relative_spread: (ask - bid) / bid of a reference market, when known.
        book: Synthetic book behind the mid, when sampled.
    """

    mid_price: Optional[Decimal]
    source: str
    unavailable_sides: set[Side] = field(default_factory=set)
    relative_spread: Optional[Decimal] = None
    book: Optional[SyntheticBook] = None

    @property
    def is_available(self) -> bool:
        return self.mid_price is not None


def relative_spread(bid: Optional[Decimal], ask: Optional[Decimal]) -> Optional[Decimal]:
    if bid is None or ask is None or bid <= 0:
        return None
    return (ask - bid) / bid


class MidPriceProvider(ABC):
    """Resolves the mid price used to build a cycle's ladder."""

    name: str = "mid"

    @abstractmethod
    async def get_mid_price(self) -> MidPriceQuote:
        pass


class ReferenceMidPrice(MidPriceProvider):
    """Mid and spread straight from a reference market such as a CEX ticker."""

    def __init__(self, source: ReferencePriceSource):
        self.source = source
        self.name = f"reference:{source.name}"

    async def get_mid_price(self) -> MidPriceQuote:
        try:
            bid, ask = await self.source.get_best_bid_ask()
        except VenueError as e:
            logger.warning(f"Reference {self.source.name} unavailable: {e}")
            return MidPriceQuote(None, self.name, unavailable_sides={Side.BID, Side.ASK})

        unavailable = set()
        if bid is None:
            unavailable.add(Side.BID)
        if ask is None:
            unavailable.add(Side.ASK)
        if unavailable:
            return MidPriceQuote(None, self.name, unavailable_sides=unavailable)

        return MidPriceQuote(
            mid_price=(bid + ask) / 2,
            source=self.name,
            relative_spread=relative_spread(bid, ask),
        )


class SyntheticBookMidPrice(MidPriceProvider):
    """
    Mid from a sampled AMM book, with an optional reference fallback.

    Attributes:
        sampler: Curve sampler over the AMM quote source.
        base: Base token.
        quote: Quote token.
        base_ladder: Cumulative base sizes for the bid side.
        quote_ladder: Cumulative quote sizes for the ask side.
        stretch: Spread stretch factor.
        fallback: Reference used when the synthetic book is crossed or one-sided.
    """

    def __init__(
        self,
        sampler: CurveSampler,
        base: Token,
        quote: Token,
        base_ladder: Sequence[Decimal],
        quote_ladder: Sequence[Decimal],
        stretch: Decimal = Decimal("1"),
        fallback: Optional[MidPriceProvider] = None,
    ):
        self.sampler = sampler
        self.base = base
        self.quote = quote
        self.base_ladder = list(base_ladder)
        self.quote_ladder = list(quote_ladder)
        self.stretch = Decimal(str(stretch))
        self.fallback = fallback
        self.name = f"synthetic:{sampler.source.name}"

    async def _from_fallback(self, book: SyntheticBook, reason: str) -> MidPriceQuote:
        if self.fallback is None:
            logger.warning(f"Synthetic {self.base}/{self.quote} book {reason} and no fallback configured")
            return MidPriceQuote(None, self.name, unavailable_sides=set(book.failed_sides), book=book)

        fallback_quote = await self.fallback.get_mid_price()
        if not fallback_quote.is_available:
            logger.warning(f"Synthetic {self.base}/{self.quote} book {reason} and fallback {self.fallback.name} unavailable")
            return MidPriceQuote(
                None,
                self.name,
                unavailable_sides=set(book.failed_sides) | fallback_quote.unavailable_sides,
                book=book,
            )

        logger.info(
            f"Synthetic {self.base}/{self.quote} book {reason}, using {fallback_quote.source} "
            f"mid {fallback_quote.mid_price}"
        )
        return MidPriceQuote(
            mid_price=fallback_quote.mid_price,
            source=fallback_quote.source,
            unavailable_sides=set(book.failed_sides),
            relative_spread=fallback_quote.relative_spread,
            book=book,
        )

    async def get_mid_price(self) -> MidPriceQuote:
        book = await self.sampler.build_synthetic_book(
            self.base, self.quote, self.base_ladder, self.quote_ladder, self.stretch
        )

        if book.failed_sides:
            return await self._from_fallback(book, f"missing {sorted(str(s) for s in book.failed_sides)}")
        if book.is_crossed:
            return await self._from_fallback(book, f"crossed (bid {book.best_bid} > ask {book.best_ask})")

        # No reference spread for a synthetic mid
        return MidPriceQuote(mid_price=book.mid_price, source=self.name, book=book)
