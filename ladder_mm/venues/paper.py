"""
Paper trading venue and pool.

Implements the order venue, live book and balance capabilities in memory so
the whole cycle can run without touching a chain. Useful for:
- Strategy development and dry runs
- Exercising the orchestrator end to end in tests

Features:
- Funds are locked per order (quote for bids, base for asks) and released
  on cancel or edit
- Orders carry an expiry that edits renew
- Optional JSONL log of every accepted action
- ConstantProductQuoteSource: x * y = k pool with a swap fee, for sampling
"""

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ..models import (
    ActionResult,
    CancelAction,
    CreateAction,
    EditAction,
    LiveBook,
    LiveOrder,
    PlanAction,
    Side,
)
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
)
from .tokens import Token

logger = logging.getLogger(__name__)


class ConstantProductQuoteSource(QuoteSource):
    """
    Constant-product AMM pool.

    Output for an input x against reserves (R_in, R_out) with fee f is
    x(1-f) R_out / (R_in + x(1-f)), which is strictly increasing in x.

    Attributes:
        base_token: Base token.
        quote_token: Quote token.
        reserve_base: Base reserve.
        reserve_quote: Quote reserve.
        fee: Swap fee (0.003 = 0.3%).
        max_input_share: Inputs above this share of the input reserve are
            refused as insufficient liquidity.
    """

    def __init__(
        self,
        base: Token,
        quote: Token,
        reserve_base: Decimal,
        reserve_quote: Decimal,
        fee: Decimal = Decimal("0.003"),
        max_input_share: Optional[Decimal] = None,
    ):
        self.base_token = base
        self.quote_token = quote
        self.reserve_base = Decimal(str(reserve_base))
        self.reserve_quote = Decimal(str(reserve_quote))
        self.fee = Decimal(str(fee))
        self.max_input_share = max_input_share
        self.name = f"paper-pool:{base}/{quote}"

    @property
    def spot_price(self) -> Decimal:
        """Quote per base at zero size, before fees."""
        return self.reserve_quote / self.reserve_base

    def set_reserves(self, reserve_base: Decimal, reserve_quote: Decimal) -> None:
        self.reserve_base = Decimal(str(reserve_base))
        self.reserve_quote = Decimal(str(reserve_quote))

    def _reserves(self, direction: PairDirection) -> tuple[Decimal, Decimal]:
        if direction.token_in == self.base_token and direction.token_out == self.quote_token:
            return self.reserve_base, self.reserve_quote
        if direction.token_in == self.quote_token and direction.token_out == self.base_token:
            return self.reserve_quote, self.reserve_base
        raise QuoteError(f"{self.name} cannot quote {direction}")

    async def quote(self, direction: PairDirection, amount_in: Decimal) -> Decimal:
        reserve_in, reserve_out = self._reserves(direction)
        if amount_in <= 0:
            raise QuoteError(f"Input must be positive, got {amount_in}")
        if self.max_input_share is not None and amount_in > reserve_in * self.max_input_share:
            raise InsufficientLiquidityError(
                f"{self.name}: {amount_in} {direction.token_in} exceeds available depth"
            )
        effective_in = amount_in * (1 - self.fee)
        return effective_in * reserve_out / (reserve_in + effective_in)


class PaperVenue(OrderVenue, LiveBookSource, BalanceSource):
    """
    In-memory limit-order venue for one pair.

    Attributes:
        base_token: Base token.
        quote_token: Quote token.
        balances: Available (unlocked) balance by symbol.
        orders: Live orders by id.
        order_ttl_sec: Lifetime of new and edited orders (None = no expiry).
        action_history: Every accepted action, for analysis.
    """

    def __init__(
        self,
        base: Token,
        quote: Token,
        initial_base: Decimal = Decimal("0"),
        initial_quote: Decimal = Decimal("0"),
        order_ttl_sec: Optional[float] = 60.0,
        supports_batch: bool = False,
        owner: str = "paper",
        log_actions: bool = False,
        log_path: str = "data/paper_actions.jsonl",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the paper venue.

        Args:
            base: Base token.
            quote: Quote token.
            initial_base: Starting available base balance.
            initial_quote: Starting available quote balance.
            order_ttl_sec: Order lifetime in seconds, or None for no expiry.
            supports_batch: Accept whole plans through submit_batch.
            owner: Owner recorded on every order.
            log_actions: Whether to log accepted actions to a JSONL file.
            log_path: Path to the action log.
            clock: Unix time source.
        """
        self.base_token = base
        self.quote_token = quote
        self.balances: dict[str, Decimal] = {
            base.symbol: Decimal(str(initial_base)),
            quote.symbol: Decimal(str(initial_quote)),
        }
        self.orders: dict[str, LiveOrder] = {}
        self.order_ttl_sec = order_ttl_sec
        self.supports_batch = supports_batch
        self.owner = owner
        self.log_actions = log_actions
        self.log_path = Path(log_path)
        self.action_history: list[dict[str, Any]] = []
        self.name = "paper"
        self._clock = clock
        self._next_id = 1

        logger.info(
            f"PaperVenue initialized: {base}={initial_base}, {quote}={initial_quote}, "
            f"ttl={order_ttl_sec}s, batch={supports_batch}"
        )

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def available_balance(self, token: Token) -> Decimal:
        self.expire_orders()
        if token.symbol not in self.balances:
            raise BalanceError(f"Paper venue holds no {token.symbol}")
        return self.balances[token.symbol]

    def set_balance(self, token: Token, amount: Decimal) -> None:
        self.balances[token.symbol] = Decimal(str(amount))

    def _lock_asset(self, side: Side) -> str:
        return self.quote_token.symbol if side == Side.BID else self.base_token.symbol

    @staticmethod
    def _lock_amount(side: Side, price: Decimal, size: Decimal) -> Decimal:
        return price * size if side == Side.BID else size

    def _lock(self, side: Side, price: Decimal, size: Decimal) -> None:
        asset = self._lock_asset(side)
        amount = self._lock_amount(side, price, size)
        if amount > self.balances[asset]:
            raise OrderRejectedError(
                f"Insufficient {asset}: need {amount}, available {self.balances[asset]}"
            )
        self.balances[asset] -= amount

    def _release(self, order: LiveOrder) -> None:
        asset = self._lock_asset(order.side)
        self.balances[asset] += self._lock_amount(order.side, order.price, order.size)

    # ------------------------------------------------------------------
    # Live book
    # ------------------------------------------------------------------

    def snapshot(self) -> LiveBook:
        """Live orders after expired ones have released their funds."""
        self.expire_orders()
        live = list(self.orders.values())
        return LiveBook(
            bids=[o for o in live if o.side == Side.BID],
            asks=[o for o in live if o.side == Side.ASK],
            updated_at=self._clock(),
        )

    def expire_orders(self) -> int:
        """
        Drop expired orders and release their funds.

        Returns:
            Number of orders expired.
        """
        now = self._clock()
        expired = [o for o in self.orders.values() if o.expiry is not None and o.expiry <= now]
        for order in expired:
            self._release(order)
            del self.orders[order.order_id]
        if expired:
            logger.info(f"[PAPER] Expired {len(expired)} order(s)")
        return len(expired)

    # ------------------------------------------------------------------
    # Order actions
    # ------------------------------------------------------------------

    def _expiry(self) -> Optional[float]:
        if self.order_ttl_sec is None:
            return None
        return self._clock() + self.order_ttl_sec

    @staticmethod
    def _validate(price: Decimal, size: Decimal) -> None:
        if price <= 0 or size <= 0:
            raise OrderRejectedError(f"Price and size must be positive (price={price}, size={size})")

    async def create_order(self, side: Side, price: Decimal, size: Decimal) -> str:
        self._validate(price, size)
        self._lock(side, price, size)
        order_id = f"paper-{self._next_id}"
        self._next_id += 1
        self.orders[order_id] = LiveOrder(
            order_id=order_id,
            side=side,
            price=price,
            size=size,
            expiry=self._expiry(),
            owner=self.owner,
        )
        self._record("create", order_id, side, price, size)
        logger.debug(f"[PAPER] Created {order_id}: {side} {size} @ {price}")
        return order_id

    async def edit_order(self, order_id: str, side: Side, price: Decimal, size: Decimal) -> str:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderRejectedError(f"Unknown order {order_id}")
        if order.side != side:
            raise OrderRejectedError(f"Order {order_id} is a {order.side}, cannot edit as {side}")
        self._validate(price, size)

        self._release(order)
        try:
            self._lock(side, price, size)
        except OrderRejectedError:
            # Restore the original lock
            self._lock(order.side, order.price, order.size)
            raise

        self.orders[order_id] = replace(order, price=price, size=size, expiry=self._expiry())
        self._record("edit", order_id, side, price, size)
        logger.debug(f"[PAPER] Edited {order_id}: {side} {size} @ {price}")
        return order_id

    async def cancel_order(self, order_id: str) -> None:
        order = self.orders.pop(order_id, None)
        if order is None:
            raise OrderRejectedError(f"Unknown order {order_id}")
        self._release(order)
        self._record("cancel", order_id, order.side, order.price, order.size)
        logger.debug(f"[PAPER] Cancelled {order_id}")

    async def submit_batch(self, actions: Sequence[PlanAction]) -> list[ActionResult]:
        """Apply actions in order, reporting each outcome independently."""
        results = []
        for action in actions:
            try:
                if isinstance(action, CancelAction):
                    await self.cancel_order(action.order_id)
                    order_id = action.order_id
                elif isinstance(action, EditAction):
                    order_id = await self.edit_order(action.order_id, action.side, action.price, action.size)
                elif isinstance(action, CreateAction):
                    order_id = await self.create_order(action.side, action.price, action.size)
                else:
                    raise OrderRejectedError(f"Unknown action {action!r}")
                results.append(ActionResult(action=action, success=True, order_id=order_id))
            except OrderRejectedError as e:
                results.append(ActionResult(action=action, success=False, error=str(e)))
        return results

    def fill_order(self, order_id: str) -> LiveOrder:
        """
        Simulate a complete fill of a live order.

        The bid side receives base and the ask side receives quote; the
        locked funds are consumed.

        Raises:
            OrderRejectedError: If the order is unknown.
        """
        order = self.orders.pop(order_id, None)
        if order is None:
            raise OrderRejectedError(f"Unknown order {order_id}")
        if order.side == Side.BID:
            self.balances[self.base_token.symbol] += order.size
        else:
            self.balances[self.quote_token.symbol] += order.notional
        self._record("fill", order_id, order.side, order.price, order.size)
        logger.info(f"[PAPER] Filled {order_id}: {order.side} {order.size} @ {order.price}")
        return order

    def _record(self, kind: str, order_id: str, side: Side, price: Decimal, size: Decimal) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": kind,
            "order_id": order_id,
            "side": str(side),
            "price": str(price),
            "size": str(size),
        }
        self.action_history.append(entry)
        if not self.log_actions:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning(f"Failed to log paper action: {e}")
