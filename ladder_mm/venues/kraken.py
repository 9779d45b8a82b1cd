"""
Kraken public REST adapter.

Serves two roles:
- Reference price: best bid/ask from the Ticker endpoint
- Quote source: walks the Depth endpoint to price an atomic market order,
  so a CEX book can be sampled exactly like an AMM curve

Only public endpoints are used; no credentials are needed.
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence, Union

import requests

from ..config import KRAKEN_API_URL
from .base import (
    InsufficientLiquidityError,
    PairDirection,
    QuoteError,
    QuoteSource,
    ReferencePriceSource,
    VenueError,
)
from .http import request_json, with_retry
from .tokens import Token

logger = logging.getLogger(__name__)

# Wrapped and bridged assets trade under their native ticker
ASSET_ALIASES = {
    "WETH": "ETH",
    "WBTC": "BTC",
    "USDC.E": "USDC",
    "USDBC": "USDC",
}

# Kraken's legacy asset codes
KRAKEN_CODES = {
    "ETH": "XETH",
    "BTC": "XXBT",
    "USD": "ZUSD",
}


def kraken_symbol(symbol: str) -> str:
    """Map a token symbol to Kraken's notation (WETH -> XETH)."""
    native = ASSET_ALIASES.get(symbol.upper(), symbol.upper())
    return KRAKEN_CODES.get(native, native)


def kraken_pair(base_symbol: str, quote_symbol: str) -> str:
    return f"{kraken_symbol(base_symbol)}{kraken_symbol(quote_symbol)}"


def walk_levels(levels: Sequence[tuple[Decimal, Decimal]], amount_in: Decimal, selling_base: bool) -> Decimal:
    """
    Fill an atomic order against book levels.

    Args:
        levels: (price, base volume) best-first; bids when selling base,
            asks when buying base.
        amount_in: Base sold, or quote spent when buying base.
        selling_base: Direction of the trade.

    Returns:
        Quote received when selling base, base received when buying.

    Raises:
        InsufficientLiquidityError: If the levels cannot absorb amount_in.
    """
    remaining = amount_in
    output = Decimal("0")
    for price, volume in levels:
        if remaining <= 0:
            break
        if selling_base:
            take = min(remaining, volume)
            output += take * price
            remaining -= take
        else:
            level_cost = volume * price
            if remaining <= level_cost:
                output += remaining / price
                remaining = Decimal("0")
            else:
                output += volume
                remaining -= level_cost
    if remaining > 0:
        raise InsufficientLiquidityError(f"Book depth exhausted with {remaining} left to fill")
    return output


class KrakenReferenceVenue(ReferencePriceSource, QuoteSource):
    """
    Kraken spot market for one pair.

    Attributes:
        base_token: Base token (its symbol is mapped to Kraken notation).
        quote_token: Quote token.
        pair: Kraken pair code (e.g. 'XETHZUSD').
        depth_count: Levels requested from the Depth endpoint.
    """

    def __init__(
        self,
        base: Token,
        quote: Token,
        api_url: str = KRAKEN_API_URL,
        pair: Optional[str] = None,
        depth_count: int = 100,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_token = base
        self.quote_token = quote
        self.api_url = api_url.rstrip("/")
        self.pair = pair or kraken_pair(base.symbol, quote.symbol)
        self.depth_count = depth_count
        self.timeout = timeout
        self.session = session or requests.Session()
        self.name = f"kraken:{self.pair}"

    def _pair_result(self, payload: dict[str, Any]) -> dict[str, Any]:
        errors = payload.get("error") or []
        if errors:
            raise VenueError(f"Kraken error for {self.pair}: {errors}")
        result = payload.get("result") or {}
        if self.pair in result:
            return result[self.pair]
        # Kraken answers with its canonical pair code, which can differ from the request
        for key, value in result.items():
            if key != "last":
                return value
        raise VenueError(f"No data available for the pair: {self.pair}")

    @with_retry(max_retries=2)
    async def fetch_ticker(self) -> dict[str, Any]:
        """
        Fetch the ticker for the pair.

        Raises:
            VenueError: If Kraken reports an error or returns no data.
        """
        payload = await request_json(
            self.session, "GET", f"{self.api_url}/Ticker", params={"pair": self.pair}, timeout=self.timeout
        )
        return self._pair_result(payload)

    @with_retry(max_retries=2)
    async def fetch_depth(self) -> dict[str, list[tuple[Decimal, Decimal]]]:
        """
        Fetch the order book for the pair.

        Returns:
            {"bids": [(price, volume)], "asks": [(price, volume)]}, best-first.
        """
        payload = await request_json(
            self.session,
            "GET",
            f"{self.api_url}/Depth",
            params={"pair": self.pair, "count": self.depth_count},
            timeout=self.timeout,
        )
        book = self._pair_result(payload)
        return {
            "bids": [(Decimal(str(p)), Decimal(str(v))) for p, v, *_ in book.get("bids", [])],
            "asks": [(Decimal(str(p)), Decimal(str(v))) for p, v, *_ in book.get("asks", [])],
        }

    # ------------------------------------------------------------------
    # Reference price
    # ------------------------------------------------------------------

    async def get_best_bid_ask(self) -> tuple[Optional[Decimal], Optional[Decimal]]:
        try:
            ticker = await self.fetch_ticker()
            return Decimal(str(ticker["b"][0])), Decimal(str(ticker["a"][0]))
        except (VenueError, KeyError, IndexError) as e:
            logger.error(f"Error fetching price data from Kraken for {self.pair}: {e}")
            return None, None

    async def get_best_bid(self) -> Optional[Decimal]:
        bid, _ = await self.get_best_bid_ask()
        return bid

    async def get_best_ask(self) -> Optional[Decimal]:
        _, ask = await self.get_best_bid_ask()
        return ask

    # ------------------------------------------------------------------
    # Quote source
    # ------------------------------------------------------------------

    def _selling_base(self, direction: PairDirection) -> bool:
        if direction.token_in == self.base_token and direction.token_out == self.quote_token:
            return True
        if direction.token_in == self.quote_token and direction.token_out == self.base_token:
            return False
        raise QuoteError(f"{self.name} cannot quote {direction}")

    async def quote(self, direction: PairDirection, amount_in: Decimal) -> Decimal:
        results = await self.quote_many(direction, [amount_in])
        if isinstance(results[0], Exception):
            raise results[0]
        return results[0]

    async def quote_many(
        self, direction: PairDirection, amounts_in: Sequence[Decimal]
    ) -> list[Union[Decimal, Exception]]:
        """Price every size against one depth snapshot."""
        selling_base = self._selling_base(direction)
        try:
            depth = await self.fetch_depth()
        except VenueError as e:
            return [QuoteError(f"{self.name} depth unavailable: {e}") for _ in amounts_in]

        levels = depth["bids"] if selling_base else depth["asks"]
        results: list[Union[Decimal, Exception]] = []
        for amount in amounts_in:
            try:
                results.append(walk_levels(levels, amount, selling_base))
            except InsufficientLiquidityError as e:
                results.append(e)
        return results
