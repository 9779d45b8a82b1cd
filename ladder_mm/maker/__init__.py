"""
Ladder market-making core.

This module provides tools for:
- Sampling AMM/CEX curves into synthetic order books (CurveSampler)
- Mid-price resolution with a reference fallback
- Desired ladder generation around a mid price
- Positional reconciliation of desired and live books
- Plan execution with independent per-action results
- Fixed-interval orchestration with a single-flight gate (LadderBot)
"""

from .curve_sampler import (
    CurveSampler,
    SamplingError,
    build_size_ladder,
    cumulative_sizes,
    stretch_book,
    usd_size_ladder,
)
from .reference import MidPriceProvider, MidPriceQuote, ReferenceMidPrice, SyntheticBookMidPrice
from .ladder import build_desired_book
from .reconciler import ReconcileTolerances, reconcile
from .executor import ExecutionReport, PlanExecutor
from .kill_switch import KillSwitch
from .bot import BotState, CycleState, LadderBot

__all__ = [
    # Main bot
    "LadderBot",
    "BotState",
    "CycleState",
    # Sampling
    "CurveSampler",
    "SamplingError",
    "build_size_ladder",
    "cumulative_sizes",
    "usd_size_ladder",
    "stretch_book",
    # Mid price
    "MidPriceProvider",
    "MidPriceQuote",
    "ReferenceMidPrice",
    "SyntheticBookMidPrice",
    # Planning
    "build_desired_book",
    "ReconcileTolerances",
    "reconcile",
    # Execution
    "PlanExecutor",
    "ExecutionReport",
    # Risk
    "KillSwitch",
]
