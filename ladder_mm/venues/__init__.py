"""
Venue adapters for the ladder market maker.

This module provides venue abstractions and implementations:
- QuoteSource / ReferencePriceSource: pricing capabilities
- BalanceSource / LiveBookSource / OrderVenue: account and execution capabilities
- UniswapQuoteSource: batched AMM quotes over Multicall3
- KrakenReferenceVenue: CEX ticker and depth
- OdosQuoteSource: aggregator quotes
- GladiusBookTracker: poll-based live book observer
- Erc20BalanceSource: on-chain wallet balances
- PaperVenue / ConstantProductQuoteSource: in-memory venue and pool

Usage:
    from ladder_mm.venues import PairDirection, UniswapQuoteSource, registry_for

    tokens = registry_for(["WETH", "USDC"], chain_id=10)
    source = UniswapQuoteSource.from_rpc(RPC_URL, QUOTER_ADDRESS)
    out = await source.quote(PairDirection(tokens.by_symbol("WETH"), tokens.by_symbol("USDC")), Decimal("1"))
"""

from .base import (
    BalanceError,
    BalanceSource,
    InsufficientLiquidityError,
    LiveBookSource,
    OrderRejectedError,
    OrderVenue,
    PairDirection,
    QuoteError,
    QuoteSource,
    ReferencePriceSource,
    VenueConnectionError,
    VenueError,
)
from .tokens import KNOWN_TOKENS, Token, TokenRegistry, UnknownTokenError, registry_for
from .erc20 import Erc20BalanceSource
from .gladius import GladiusBookTracker
from .kraken import KrakenReferenceVenue
from .odos import OdosQuoteSource
from .paper import ConstantProductQuoteSource, PaperVenue
from .uniswap import QuoterKind, UniswapQuoteSource

__all__ = [
    # Capabilities
    "QuoteSource",
    "ReferencePriceSource",
    "BalanceSource",
    "LiveBookSource",
    "OrderVenue",
    "PairDirection",
    # Tokens
    "Token",
    "TokenRegistry",
    "KNOWN_TOKENS",
    "registry_for",
    # Exceptions
    "VenueError",
    "VenueConnectionError",
    "QuoteError",
    "InsufficientLiquidityError",
    "BalanceError",
    "OrderRejectedError",
    "UnknownTokenError",
    # Implementations
    "UniswapQuoteSource",
    "QuoterKind",
    "KrakenReferenceVenue",
    "OdosQuoteSource",
    "GladiusBookTracker",
    "Erc20BalanceSource",
    "PaperVenue",
    "ConstantProductQuoteSource",
]
