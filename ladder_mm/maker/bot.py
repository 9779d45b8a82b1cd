"""
Polling orchestrator for the ladder market maker.

Runs the sample -> plan -> execute cycle on a fixed interval for one pair.
A single-flight gate guarantees that at most one cycle is in progress: a
timer fire that finds the gate held is skipped and logged, never queued.

Cycle:
    1. Check kill switch
    2. SAMPLING: snapshot the live book, then fetch mid price and both
       balances concurrently
    3. PLANNING: build the desired ladder and reconcile it against the snapshot
    4. EXECUTING: submit the plan with independent per-action results

Safety:
    - No mid price means no plan: the live book is left untouched
    - A failed balance read freezes that side for the cycle
    - A reference spread above max_reference_spread pulls all orders
    - Kill switch file (.kill_switch) halts quoting

Example:
    >>> bot = LadderBot(mid_provider, balances, tracker, venue, weth, usdc)
    >>> task = bot.start()
    >>> await asyncio.sleep(60)
    >>> bot.stop()
    >>> await task
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from ..config import MIN_ORDER_SIZES, StrategyConfig
from ..venues.base import BalanceSource, LiveBookSource, OrderVenue
from ..models import DesiredBook, Side
from ..venues.tokens import Token
from .executor import PlanExecutor
from .kill_switch import KillSwitch
from .ladder import build_desired_book
from .reconciler import ReconcileTolerances, reconcile
from .reference import MidPriceProvider, MidPriceQuote

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class CycleState(Enum):
    """Orchestrator state. Cycles move linearly and always return to IDLE."""

    IDLE = "idle"
    SAMPLING = "sampling"
    PLANNING = "planning"
    EXECUTING = "executing"

    def __str__(self) -> str:
        return self.value


@dataclass
class BotState:
    """
    Session counters of the ladder bot.

    Attributes:
        is_running: Whether the timer loop is running.
        cycle_count: Cycles run to completion or abort.
        cycles_skipped: Ticks skipped because a cycle was in flight.
        cycles_aborted: Cycles aborted for lack of a mid price.
        cycles_halted: Ticks refused by the kill switch.
        actions_submitted: Plan actions submitted to the venue.
        actions_failed: Plan actions the venue rejected.
        last_mid_price: Mid used by the last planned cycle.
        last_cycle_time: Timestamp of last cycle.
        last_error: Last error message (if any).
        start_time: When the timer loop started.
    """

    is_running: bool = False
    cycle_count: int = 0
    cycles_skipped: int = 0
    cycles_aborted: int = 0
    cycles_halted: int = 0
    actions_submitted: int = 0
    actions_failed: int = 0
    last_mid_price: Optional[Decimal] = None
    last_cycle_time: Optional[datetime] = None
    last_error: Optional[str] = None
    start_time: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary."""
        return {
            "is_running": self.is_running,
            "cycle_count": self.cycle_count,
            "cycles_skipped": self.cycles_skipped,
            "cycles_aborted": self.cycles_aborted,
            "cycles_halted": self.cycles_halted,
            "actions_submitted": self.actions_submitted,
            "actions_failed": self.actions_failed,
            "last_mid_price": str(self.last_mid_price) if self.last_mid_price is not None else None,
            "last_cycle_time": self.last_cycle_time.isoformat() if self.last_cycle_time else None,
            "last_error": self.last_error,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "uptime_seconds": (
                int((_utc_now() - self.start_time).total_seconds())
                if self.start_time
                else 0
            ),
        }


class LadderBot:
    """
    Keeps a ladder of limit orders around a reference mid for one pair.

    Attributes:
        mid_price_provider: Source of the cycle mid price.
        balance_source: Available (uncommitted) balances.
        live_book: Observer of the strategy's live orders.
        venue: Order venue executing plans.
        base: Base token.
        quote: Quote token.
        config: Strategy options.
        state: Session counters.
        cycle_state: Current position in the cycle state machine.
    """

    def __init__(
        self,
        mid_price_provider: MidPriceProvider,
        balance_source: BalanceSource,
        live_book: LiveBookSource,
        venue: OrderVenue,
        base: Token,
        quote: Token,
        config: Optional[StrategyConfig] = None,
        min_order_sizes: Optional[Mapping[str, Decimal]] = None,
        kill_switch: Optional[KillSwitch] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the bot.

        Args:
            mid_price_provider: Synthetic-book or reference mid provider.
            balance_source: Balance capability for base and quote.
            live_book: Live book observer (read via snapshot()).
            venue: Order venue for create/edit/cancel.
            base: Base token.
            quote: Quote token.
            config: Strategy options (default from environment constants).
            min_order_sizes: Minimum order sizes by symbol (default from config).
            kill_switch: Optional file-based kill switch.
            clock: Unix time source used for expiry checks.

        Raises:
            ConfigurationError: If the config is invalid.
        """
        self.config = config or StrategyConfig()
        self.config.validate()

        self.mid_price_provider = mid_price_provider
        self.balance_source = balance_source
        self.live_book = live_book
        self.venue = venue
        self.base = base
        self.quote = quote
        self.min_order_sizes = dict(MIN_ORDER_SIZES if min_order_sizes is None else min_order_sizes)
        self.kill_switch = kill_switch
        self._clock = clock

        self.executor = PlanExecutor(venue)
        self.tolerances = ReconcileTolerances.from_config(self.config)

        self.state = BotState()
        self.cycle_state = CycleState.IDLE
        self._in_flight = False
        self._shutdown_event = asyncio.Event()
        self._tick_tasks: set[asyncio.Task] = set()

        logger.info(
            f"LadderBot initialized: pair={base}/{quote}, mid={mid_price_provider.name}, "
            f"venue={venue.name}, levels={self.config.level_count}, "
            f"interval={self.config.poll_interval_ms}ms"
        )

    @property
    def pair(self) -> str:
        return f"{self.base}/{self.quote}"

    @property
    def gate_held(self) -> bool:
        """Whether a cycle is currently in flight."""
        return self._in_flight

    async def tick(self) -> Optional[dict[str, Any]]:
        """
        Run one cycle unless the kill switch is active or a cycle is in flight.

        The gate is released in a finally block, so an exception anywhere in
        the cycle cannot leave it held.

        Returns:
            The cycle result, or None if the tick was skipped.
        """
        if self.kill_switch is not None and self.kill_switch.is_active():
            self.state.cycles_halted += 1
            logger.warning(f"[{self.pair}] Kill switch is active - skipping tick")
            return None

        if self._in_flight:
            self.state.cycles_skipped += 1
            logger.warning(
                f"[{self.pair}] Previous cycle still {self.cycle_state} - skipping tick "
                f"(skipped={self.state.cycles_skipped})"
            )
            return None

        self._in_flight = True
        try:
            return await self.run_cycle()
        finally:
            self._in_flight = False
            self.cycle_state = CycleState.IDLE

    async def _read_inputs(self) -> tuple[Any, Any, Any]:
        return await asyncio.gather(
            self.mid_price_provider.get_mid_price(),
            self.balance_source.available_balance(self.base),
            self.balance_source.available_balance(self.quote),
            return_exceptions=True,
        )

    def _abort(self, cycle_result: dict[str, Any], reason: str) -> dict[str, Any]:
        cycle_result["status"] = "aborted"
        cycle_result["errors"].append(reason)
        self.state.cycles_aborted += 1
        self.state.cycle_count += 1
        self.state.last_cycle_time = _utc_now()
        logger.warning(f"[{self.pair}] Cycle aborted before planning: {reason}")
        return cycle_result

    def _spread_exceeded(self, mid_quote: MidPriceQuote) -> bool:
        limit = self.config.max_reference_spread
        if limit is None or mid_quote.relative_spread is None:
            return False
        return mid_quote.relative_spread > limit

    async def run_cycle(self) -> dict[str, Any]:
        """
        Run one sample -> plan -> execute cycle.

        Callers go through tick(), which holds the single-flight gate.

        Returns:
            Dictionary with cycle results
        """
        cycle_result: dict[str, Any] = {
            "timestamp": _utc_now().isoformat(),
            "cycle_number": self.state.cycle_count + 1,
            "status": "completed",
            "mid_price": None,
            "plan": [],
            "results": [],
            "errors": [],
        }

        try:
            # SAMPLING
            self.cycle_state = CycleState.SAMPLING
            live = self.live_book.snapshot()
            now = self._clock()
            mid_quote, base_balance, quote_balance = await self._read_inputs()

            if isinstance(mid_quote, BaseException):
                return self._abort(cycle_result, f"Mid price unavailable: {mid_quote}")
            if not mid_quote.is_available:
                sides = sorted(str(s) for s in mid_quote.unavailable_sides)
                return self._abort(cycle_result, f"No mid price from {mid_quote.source} (unavailable: {sides})")

            mid = mid_quote.mid_price
            cycle_result["mid_price"] = str(mid)
            cycle_result["mid_source"] = mid_quote.source

            frozen: set[Side] = set()
            base_budget: Optional[Decimal] = None
            quote_budget: Optional[Decimal] = None
            if isinstance(base_balance, BaseException):
                frozen.add(Side.ASK)
                cycle_result["errors"].append(f"{self.base} balance unavailable: {base_balance}")
                logger.warning(f"[{self.pair}] {self.base} balance read failed, asks frozen: {base_balance}")
            else:
                base_budget = base_balance + live.committed_base
            if isinstance(quote_balance, BaseException):
                frozen.add(Side.BID)
                cycle_result["errors"].append(f"{self.quote} balance unavailable: {quote_balance}")
                logger.warning(f"[{self.pair}] {self.quote} balance read failed, bids frozen: {quote_balance}")
            else:
                quote_budget = quote_balance + live.committed_quote

            # A side the sampler could not price gets no ladder this cycle
            unsampled = set(mid_quote.unavailable_sides) - frozen
            if unsampled:
                frozen |= unsampled
                sides = sorted(str(s) for s in unsampled)
                cycle_result["errors"].append(f"No sampled liquidity for {sides}")
                logger.warning(f"[{self.pair}] {sides} side(s) unavailable from sampling, frozen")
            if Side.BID in frozen:
                quote_budget = None
            if Side.ASK in frozen:
                base_budget = None

            # PLANNING
            self.cycle_state = CycleState.PLANNING
            if self._spread_exceeded(mid_quote):
                logger.warning(
                    f"[{self.pair}] Reference spread {mid_quote.relative_spread:.4%} above "
                    f"{self.config.max_reference_spread:.2%} - pulling all orders"
                )
                cycle_result["pulled"] = True
                desired = DesiredBook()
            else:
                desired = build_desired_book(
                    mid,
                    base_budget,
                    quote_budget,
                    self.config,
                    self.min_order_sizes,
                    self.base.symbol,
                    self.quote.symbol,
                )
            desired.frozen_sides = frozen

            plan = reconcile(desired, live, self.tolerances, now)
            cycle_result["plan"] = [str(action) for action in plan]

            # EXECUTING
            if not plan.is_empty:
                self.cycle_state = CycleState.EXECUTING
                report = await self.executor.execute(plan)
                cycle_result["results"] = [r.to_dict() for r in report.results]
                self.state.actions_submitted += len(report.results)
                self.state.actions_failed += len(report.failed)
                for failure in report.failed:
                    cycle_result["errors"].append(f"{failure.action} failed: {failure.error}")

            self.state.cycle_count += 1
            self.state.last_cycle_time = _utc_now()
            self.state.last_mid_price = mid
            self.state.last_error = None

            logger.info(
                f"[{self.pair}] Cycle {self.state.cycle_count} complete: mid={mid} "
                f"({mid_quote.source}), desired={len(desired.bids)}b/{len(desired.asks)}a, "
                f"live={len(live.bids)}b/{len(live.asks)}a, actions={len(plan)}"
            )

        except Exception as e:
            error_msg = f"Cycle error: {str(e)}"
            cycle_result["status"] = "failed"
            cycle_result["errors"].append(error_msg)
            self.state.last_error = error_msg
            logger.error(f"[{self.pair}] {error_msg}", exc_info=True)

        return cycle_result

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._tick_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.state.last_error = str(exc)
            logger.error(f"[{self.pair}] Unexpected error in tick: {exc}", exc_info=exc)

    def _spawn_tick(self) -> asyncio.Task:
        task = asyncio.create_task(self.tick())
        self._tick_tasks.add(task)
        task.add_done_callback(self._on_tick_done)
        return task

    async def run(self) -> None:
        """
        Main timer loop.

        Fires a tick every poll interval on a fixed schedule. Ticks run as
        separate tasks, so a slow cycle does not delay the timer; fires that
        land while it is in flight are skipped by the gate. After stop() the
        loop waits for the in-flight cycle to finish before returning.
        """
        interval = self.config.poll_interval_sec
        loop = asyncio.get_running_loop()
        logger.info(f"Starting LadderBot loop for {self.pair} (interval={interval}s)")

        self.state.is_running = True
        self.state.start_time = _utc_now()
        next_fire = loop.time()

        try:
            while not self._shutdown_event.is_set():
                self._spawn_tick()

                next_fire += interval
                delay = next_fire - loop.time()
                if delay < 0:
                    # Event loop fell behind; drop the missed fires
                    missed = int(-delay // interval) + 1
                    next_fire += missed * interval
                    delay = next_fire - loop.time()

                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=max(delay, 0))
                except asyncio.TimeoutError:
                    pass  # Normal timeout, fire next tick

        except asyncio.CancelledError:
            logger.info("Bot run cancelled")
        finally:
            if self._tick_tasks:
                logger.info(f"Waiting for {len(self._tick_tasks)} in-flight tick(s) to finish")
                await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
            self.state.is_running = False
            logger.info("LadderBot stopped")

    def stop(self) -> None:
        """
        Stop the timer.

        In-flight cycles are not aborted; run() returns once they finish.
        """
        logger.info("Stopping LadderBot...")
        self._shutdown_event.set()
        self.state.is_running = False

    def start(self) -> asyncio.Task:
        """
        Start the bot as a background task.

        Returns:
            asyncio.Task that can be awaited or cancelled
        """
        return asyncio.create_task(self.run())

    def get_status(self) -> dict[str, Any]:
        """
        Get bot status.

        Returns:
            Dictionary with bot state, cycle state and live book summary
        """
        live = self.live_book.snapshot()
        return {
            "pair": self.pair,
            "bot_state": self.state.to_dict(),
            "cycle_state": str(self.cycle_state),
            "gate_held": self._in_flight,
            "live_bids": len(live.bids),
            "live_asks": len(live.asks),
            "kill_switch_active": self.kill_switch.is_active() if self.kill_switch else False,
        }
