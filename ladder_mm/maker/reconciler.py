"""
Book reconciliation.

Diffs the desired ladder against the live book and returns the create, edit
and cancel actions that turn one into the other. Pure: no venue calls, no
state, same inputs always give the same plan.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..config import StrategyConfig
from ..models import (
    BookLevel,
    CancelAction,
    CreateAction,
    DesiredBook,
    EditAction,
    LiveBook,
    LiveOrder,
    PlanAction,
    ReconciliationPlan,
    Side,
    sort_levels,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileTolerances:
    """
    Thresholds above which a live order is edited.

    Attributes:
        price_tolerance: Max relative price difference (0.001 = 0.1%).
        size_tolerance: Max relative size difference.
        refresh_window_sec: Orders expiring within this many seconds are refreshed.
    """

    price_tolerance: Decimal = Decimal("0.001")
    size_tolerance: Decimal = Decimal("0.01")
    refresh_window_sec: Decimal = Decimal("0")

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "ReconcileTolerances":
        return cls(
            price_tolerance=config.price_tolerance,
            size_tolerance=config.size_tolerance,
            refresh_window_sec=config.refresh_window_sec,
        )


def relative_difference(desired: Decimal, live: Decimal) -> Decimal:
    """|live - desired| / desired, measured against the desired value."""
    if desired == 0:
        return Decimal("0") if live == 0 else Decimal("Infinity")
    return abs(live - desired) / abs(desired)


def needs_edit(
    level: BookLevel,
    order: LiveOrder,
    tolerances: ReconcileTolerances,
    now: float,
) -> bool:
    """Whether a live order has drifted from its level or is about to expire."""
    if relative_difference(level.price, order.price) > tolerances.price_tolerance:
        return True
    if relative_difference(level.size, order.size) > tolerances.size_tolerance:
        return True
    if order.expiry is not None and Decimal(str(order.expiry)) - Decimal(str(now)) <= tolerances.refresh_window_sec:
        return True
    return False


def reconcile_side(
    side: Side,
    desired: list[BookLevel],
    live: list[LiveOrder],
    tolerances: ReconcileTolerances,
    now: float,
) -> list[PlanAction]:
    """
    Positional diff of one side.

    Both lists are sorted best-first and walked by index. Pairs out of
    tolerance (or near expiry) are edited, extra desired levels are created
    and extra live orders are cancelled.
    """
    desired_sorted = sort_levels(desired, side)
    live_sorted = sort_levels(live, side)

    actions: list[PlanAction] = []
    for i in range(max(len(desired_sorted), len(live_sorted))):
        level = desired_sorted[i] if i < len(desired_sorted) else None
        order = live_sorted[i] if i < len(live_sorted) else None

        if level is not None and order is not None:
            if needs_edit(level, order, tolerances, now):
                actions.append(EditAction(order.order_id, level.price, level.size, side))
        elif level is not None:
            actions.append(CreateAction(level.price, level.size, side))
        elif order is not None:
            actions.append(CancelAction(order.order_id, side))
    return actions


def reconcile(
    desired: DesiredBook,
    live: LiveBook,
    tolerances: ReconcileTolerances,
    now: Optional[float] = None,
) -> ReconciliationPlan:
    """
    Build the plan that moves the live book to the desired book.

    Bid actions come first, then ask actions. Sides listed in
    desired.frozen_sides produce no actions.

    Args:
        desired: Target ladder.
        live: Snapshot of the strategy's live orders.
        tolerances: Edit thresholds and refresh window.
        now: Current unix time in seconds (defaults to time.time()).

    Returns:
        ReconciliationPlan for this cycle.
    """
    now = time.time() if now is None else now
    plan = ReconciliationPlan()
    for side in (Side.BID, Side.ASK):
        if side in desired.frozen_sides:
            logger.debug(f"{side} side frozen, live orders left untouched")
            continue
        plan.actions.extend(
            reconcile_side(side, desired.side(side), live.side(side), tolerances, now)
        )
    return plan
