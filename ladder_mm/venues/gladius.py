"""
Gladius (Rubicon dutch-auction) live book observer.

Polls the Gladius order API on its own timer and keeps the latest snapshot
of open orders for one pair, plus the subset owned by the strategy's
wallet. The orchestrator reads snapshot() at the start of each cycle; there
is no locking between the two, so snapshot() always returns a copy.

Orders are dutch auctions whose amounts decay over time. The decay is
consumed through an amounts_at(order, now) function returning the raw input
and output amounts; the default uses the auction end amounts.
"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Optional

import requests

from ..config import GLADIUS_URL
from ..models import LiveBook, LiveOrder, Side, sort_levels
from .base import LiveBookSource, VenueError
from .http import request_json, with_retry
from .tokens import Token

logger = logging.getLogger(__name__)

ORDERS_PATH = "/dutch-auction/orders"
OPEN_STATUS = "open"

AmountsAt = Callable[[dict[str, Any], float], tuple[int, int]]


def end_amounts(order: dict[str, Any], now: float) -> tuple[int, int]:
    """Raw (input, output) amounts at the end of the auction."""
    return int(order["input"]["endAmount"]), int(order["outputs"][0]["endAmount"])


def order_deadline(order: dict[str, Any]) -> Optional[float]:
    """Unix deadline of an order, if the API exposes one."""
    for key in ("deadline", "decayEndTime"):
        value = order.get(key)
        if value is not None:
            return float(value)
    return None


class GladiusBookTracker(LiveBookSource):
    """
    Poll-based observer of the Gladius book for one pair.

    Asks sell base for quote; bids sell quote for base. Prices are quote per
    base and sizes are base units.

    Attributes:
        base_token: Base token.
        quote_token: Quote token.
        user_address: Wallet whose orders form the live book (None = whole book).
        chain_id: Chain to query.
        depth: Page size per request.
        poll_interval_sec: Seconds between refreshes.
    """

    def __init__(
        self,
        base: Token,
        quote: Token,
        user_address: Optional[str],
        chain_id: Optional[int] = None,
        api_url: str = GLADIUS_URL,
        depth: int = 50,
        poll_interval_sec: float = 2.5,
        amounts_at: AmountsAt = end_amounts,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_token = base
        self.quote_token = quote
        self.user_address = user_address.lower() if user_address else None
        self.chain_id = chain_id if chain_id is not None else base.chain_id
        self.api_url = api_url.rstrip("/")
        self.depth = depth
        self.poll_interval_sec = poll_interval_sec
        self.amounts_at = amounts_at
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock

        self.book = LiveBook()
        self._user_book = LiveBook()
        self.last_error: Optional[str] = None
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _params(self, is_ask: bool) -> dict[str, Any]:
        sell, buy = (self.base_token, self.quote_token) if is_ask else (self.quote_token, self.base_token)
        params = {
            "chainId": self.chain_id,
            "orderStatus": OPEN_STATUS,
            "buyToken": buy.address,
            "sellToken": sell.address,
            "limit": self.depth,
            "sortKey": "price",
        }
        params["asc" if is_ask else "desc"] = "true"
        return params

    @with_retry(max_retries=2)
    async def _fetch_page(self, params: dict[str, Any]) -> dict[str, Any]:
        return await request_json(
            self.session, "GET", f"{self.api_url}{ORDERS_PATH}", params=params, timeout=self.timeout
        )

    async def fetch_all_orders(self, is_ask: bool) -> list[dict[str, Any]]:
        """
        Fetch every open order on one side, following pagination cursors.

        Raises:
            VenueConnectionError: If any page cannot be fetched.
        """
        base_params = self._params(is_ask)
        orders: list[dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            params = dict(base_params)
            if cursor:
                params["cursor"] = cursor
            page = await self._fetch_page(params)
            page_orders = page.get("orders") or []
            orders.extend(page_orders)
            cursor = page.get("cursor")
            if not cursor or not page_orders:
                break
        return orders

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_order(self, order: dict[str, Any], is_ask: bool, now: float) -> Optional[LiveOrder]:
        """
        Convert one API order into a LiveOrder.

        Returns:
            The order, or None if it is not open, has expired or is malformed.
        """
        if order.get("orderStatus", OPEN_STATUS) != OPEN_STATUS:
            return None
        deadline = order_deadline(order)
        if deadline is not None and deadline < now:
            return None

        try:
            pay_raw, buy_raw = self.amounts_at(order, now)
            owner = str(order["outputs"][0].get("recipient", ""))
            order_id = str(order["orderHash"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed Gladius order: {e}")
            return None

        if is_ask:
            size = self.base_token.from_base_units(pay_raw)
            received = self.quote_token.from_base_units(buy_raw)
            if size <= 0:
                return None
            price = received / size
        else:
            paid = self.quote_token.from_base_units(pay_raw)
            size = self.base_token.from_base_units(buy_raw)
            if size <= 0:
                return None
            price = paid / size

        return LiveOrder(
            order_id=order_id,
            side=Side.ASK if is_ask else Side.BID,
            price=price,
            size=size,
            expiry=deadline,
            owner=owner,
        )

    def _parse_side(self, orders: list[dict[str, Any]], is_ask: bool, now: float) -> list[LiveOrder]:
        parsed = [self.parse_order(o, is_ask, now) for o in orders]
        side = Side.ASK if is_ask else Side.BID
        return sort_levels([o for o in parsed if o is not None], side)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> LiveBook:
        """
        Fetch both sides and replace the snapshot.

        The snapshot is only replaced when both sides were fetched.

        Raises:
            VenueError: If either side cannot be fetched.
        """
        asks_raw, bids_raw = await asyncio.gather(
            self.fetch_all_orders(is_ask=True),
            self.fetch_all_orders(is_ask=False),
        )
        now = self._clock()
        book = LiveBook(
            bids=self._parse_side(bids_raw, is_ask=False, now=now),
            asks=self._parse_side(asks_raw, is_ask=True, now=now),
            updated_at=now,
        )

        if self.user_address:
            user_book = LiveBook(
                bids=[o for o in book.bids if o.owner.lower() == self.user_address],
                asks=[o for o in book.asks if o.owner.lower() == self.user_address],
                updated_at=now,
            )
        else:
            user_book = book

        self.book = book
        self._user_book = user_book
        self.last_error = None
        logger.debug(
            f"Gladius book {self.base_token}/{self.quote_token}: {len(book.bids)} bids, {len(book.asks)} asks "
            f"({len(user_book)} owned)"
        )
        return book

    def snapshot(self) -> LiveBook:
        return self._user_book.copy()

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.book.bids[0].price if self.book.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.book.asks[0].price if self.book.asks else None

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Refresh on a fixed interval until stop(). Failed refreshes keep the previous snapshot."""
        logger.info(
            f"Starting Gladius tracker for {self.base_token}/{self.quote_token} "
            f"(interval={self.poll_interval_sec}s, user={self.user_address})"
        )
        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.refresh()
                except VenueError as e:
                    self.last_error = str(e)
                    logger.error(f"Error polling Gladius book, keeping previous snapshot: {e}")

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval_sec)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Gladius tracker cancelled")
        finally:
            logger.info("Gladius tracker stopped")

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run())

    def stop(self) -> None:
        self._shutdown_event.set()
