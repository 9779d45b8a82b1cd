"""
Abstract venue interfaces for the ladder market maker.

This module defines the capabilities the maker core consumes: quote sources
(AMM, CEX and aggregator pricing), reference prices, balances, the live book
observer and the order venue that executes reconciliation plans. Concrete
adapters live in sibling modules.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence, Union

from ..models import ActionResult, LiveBook, PlanAction, Side

if TYPE_CHECKING:
    from .tokens import Token

logger = logging.getLogger(__name__)


class VenueError(Exception):
    """Base exception for venue-related errors."""

    pass


class VenueConnectionError(VenueError):
    """Raised when a venue cannot be reached."""

    pass


class QuoteError(VenueError):
    """Raised when a venue cannot quote a trade."""

    pass


class InsufficientLiquidityError(QuoteError):
    """Raised when a venue has no liquidity at the requested depth."""

    pass


class BalanceError(VenueError):
    """Raised when a balance cannot be read."""

    pass


class OrderRejectedError(VenueError):
    """Raised when a venue rejects a create, edit or cancel."""

    pass


@dataclass(frozen=True)
class PairDirection:
    """Direction of a single atomic trade: sell token_in, receive token_out."""

    token_in: "Token"
    token_out: "Token"

    def reversed(self) -> "PairDirection":
        return PairDirection(token_in=self.token_out, token_out=self.token_in)

    def __str__(self) -> str:
        return f"{self.token_in.symbol}->{self.token_out.symbol}"


class QuoteSource(ABC):
    """
    Output amount an external venue would return for one atomic trade.

    Quotes are idempotent and side-effect free. Amounts are in human units
    of the respective tokens.
    """

    name: str = "quote-source"

    @abstractmethod
    async def quote(self, direction: PairDirection, amount_in: Decimal) -> Decimal:
        """
        Quote a single trade.

        Args:
            direction: Tokens sold and bought.
            amount_in: Amount of token_in sold.

        Returns:
            Amount of token_out received.

        Raises:
            InsufficientLiquidityError: If the venue cannot fill this size.
            QuoteError: For any other quoting failure.
        """
        pass

    async def quote_many(
        self, direction: PairDirection, amounts_in: Sequence[Decimal]
    ) -> list[Union[Decimal, Exception]]:
        """
        Quote several sizes in one call.

        Per-size failures are returned in place as exception objects rather
        than raised. The default issues the single quotes concurrently;
        adapters that can batch into one round trip override this.

        Args:
            direction: Tokens sold and bought.
            amounts_in: Input sizes to quote.

        Returns:
            One output amount or exception per input size, in order.
        """
        results = await asyncio.gather(
            *(self.quote(direction, amount) for amount in amounts_in),
            return_exceptions=True,
        )
        return list(results)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class ReferencePriceSource(ABC):
    """Best bid/ask of an external reference market, in quote per base."""

    name: str = "reference"

    @abstractmethod
    async def get_best_bid(self) -> Optional[Decimal]:
        pass

    @abstractmethod
    async def get_best_ask(self) -> Optional[Decimal]:
        pass

    async def get_best_bid_ask(self) -> tuple[Optional[Decimal], Optional[Decimal]]:
        """Best bid and ask together. Override when one request serves both."""
        bid, ask = await asyncio.gather(self.get_best_bid(), self.get_best_ask())
        return bid, ask

    async def get_mid_price(self) -> Optional[Decimal]:
        """
        Midpoint of best bid and ask.

        Returns:
            The midpoint, or None if either side is unavailable.
        """
        bid, ask = await self.get_best_bid_ask()
        if bid is None or ask is None:
            return None
        return (bid + ask) / 2


class BalanceSource(ABC):
    """Funds available for new orders (excluding funds committed to live orders)."""

    @abstractmethod
    async def available_balance(self, token: "Token") -> Decimal:
        """
        Read the available balance of a token.

        Raises:
            BalanceError: If the balance cannot be read.
        """
        pass


class LiveBookSource(ABC):
    """Read-only view of the strategy's outstanding orders on one pair."""

    @abstractmethod
    def snapshot(self) -> LiveBook:
        """Return a copy of the most recent live book."""
        pass


class OrderVenue(ABC):
    """
    Executes plan actions against the target limit-order venue.

    Venues that accept a whole plan in one submission set supports_batch
    and implement submit_batch; the others are driven one action at a time.
    """

    name: str = "venue"
    supports_batch: bool = False

    @abstractmethod
    async def create_order(self, side: Side, price: Decimal, size: Decimal) -> str:
        """
        Place a new order.

        Args:
            side: Bid or ask.
            price: Quote per base.
            size: Base units.

        Returns:
            The venue order id.

        Raises:
            OrderRejectedError: If the venue rejects the order.
        """
        pass

    @abstractmethod
    async def edit_order(self, order_id: str, side: Side, price: Decimal, size: Decimal) -> str:
        """
        Replace an order's price and size.

        Returns:
            The order id after the edit (venues may assign a new one).

        Raises:
            OrderRejectedError: If the venue rejects the edit.
        """
        pass

    @abstractmethod
    async def cancel_order(self, order_id: str) -> None:
        """
        Cancel an order.

        Raises:
            OrderRejectedError: If the venue rejects the cancel.
        """
        pass

    async def submit_batch(self, actions: Sequence[PlanAction]) -> list[ActionResult]:
        """
        Submit several actions as one venue call.

        Returns:
            One result per action, in order.
        """
        raise NotImplementedError(f"{self.name} does not support batch submission")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} batch={self.supports_batch}>"
