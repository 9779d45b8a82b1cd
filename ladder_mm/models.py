"""
Data model for the ladder market maker.

Sampling types (QuoteSample, LadderBucket, PriceLadder, SyntheticBook), the
book types compared each cycle (DesiredBook, LiveOrder, LiveBook) and the
plan actions produced by reconciliation. All quantities are Decimal.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Side(Enum):
    """Book side enumeration."""

    BID = "bid"
    ASK = "ask"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class QuoteSample:
    """One cumulative quote: input size and the output a venue returns for it."""

    cumulative_input: Decimal
    cumulative_output: Decimal


@dataclass(frozen=True)
class LadderBucket:
    """
    Marginal slice of a sampled curve.

    Attributes:
        input_size: Input consumed by this bucket alone.
        marginal_output: Output produced by this bucket alone.
        cumulative_input: Cumulative input at the bucket's upper edge.
    """

    input_size: Decimal
    marginal_output: Decimal
    cumulative_input: Decimal

    @property
    def marginal_price(self) -> Decimal:
        """Output per unit of input within the bucket."""
        return self.marginal_output / self.input_size


@dataclass
class PriceLadder:
    """Ordered buckets for one trade direction, the raw quotes behind them and the excluded sizes."""

    token_in: str
    token_out: str
    buckets: list[LadderBucket] = field(default_factory=list)
    excluded_sizes: list[Decimal] = field(default_factory=list)
    samples: list[QuoteSample] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.buckets)

    @property
    def prices(self) -> list[Decimal]:
        return [b.marginal_price for b in self.buckets]


@dataclass(frozen=True)
class BookLevel:
    """A price/size level. Size is always in base units."""

    price: Decimal
    size: Decimal

    @property
    def notional(self) -> Decimal:
        """Value of the level in quote units."""
        return self.price * self.size


def sort_levels(levels: list, side: Side) -> list:
    """Sort levels or orders best-first: descending for bids, ascending for asks."""
    return sorted(levels, key=lambda level: level.price, reverse=(side == Side.BID))


@dataclass
class SyntheticBook:
    """
    Order book implied by sampling an AMM or CEX curve.

    Both sides are denominated in quote per base and sorted best-first. A
    crossed book (best bid above best ask) can occur under extreme skew and
    must be handled by the caller.

    Attributes:
        bids: Levels from selling base into the curve.
        asks: Levels from buying base from the curve.
        failed_sides: Sides whose sampling produced no usable buckets.
    """

    bids: list[BookLevel] = field(default_factory=list)
    asks: list[BookLevel] = field(default_factory=list)
    failed_sides: set[Side] = field(default_factory=set)

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Midpoint of the best prices, or None unless both sides are present."""
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2

    @property
    def is_crossed(self) -> bool:
        if self.best_bid is None or self.best_ask is None:
            return False
        return self.best_bid > self.best_ask


@dataclass
class DesiredBook:
    """
    Target ladder for one cycle, best-first per side.

    Sides in frozen_sides could not be computed this cycle (for example a
    failed balance read) and must be left untouched by reconciliation.
    """

    bids: list[BookLevel] = field(default_factory=list)
    asks: list[BookLevel] = field(default_factory=list)
    frozen_sides: set[Side] = field(default_factory=set)

    def side(self, side: Side) -> list[BookLevel]:
        return self.bids if side == Side.BID else self.asks

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks


@dataclass(frozen=True)
class LiveOrder:
    """
    One outstanding order owned by the strategy on the target venue.

    Attributes:
        order_id: Venue order identifier.
        side: Bid or ask.
        price: Quote per base.
        size: Base units.
        expiry: Unix timestamp (seconds) after which the order is dead, or None.
        owner: Account that owns the order.
    """

    order_id: str
    side: Side
    price: Decimal
    size: Decimal
    expiry: Optional[float] = None
    owner: str = ""

    @property
    def notional(self) -> Decimal:
        return self.price * self.size


@dataclass
class LiveBook:
    """Snapshot of the strategy's live orders on one pair."""

    bids: list[LiveOrder] = field(default_factory=list)
    asks: list[LiveOrder] = field(default_factory=list)
    updated_at: Optional[float] = None

    def side(self, side: Side) -> list[LiveOrder]:
        return self.bids if side == Side.BID else self.asks

    def copy(self) -> "LiveBook":
        return LiveBook(bids=list(self.bids), asks=list(self.asks), updated_at=self.updated_at)

    @property
    def committed_base(self) -> Decimal:
        """Base already locked in live asks."""
        return sum((o.size for o in self.asks), Decimal("0"))

    @property
    def committed_quote(self) -> Decimal:
        """Quote already locked in live bids."""
        return sum((o.notional for o in self.bids), Decimal("0"))

    def __len__(self) -> int:
        return len(self.bids) + len(self.asks)


# =============================================================================
# Plan actions
# =============================================================================


@dataclass(frozen=True)
class CreateAction:
    """Place a new order."""

    price: Decimal
    size: Decimal
    side: Side

    def __str__(self) -> str:
        return f"Create({self.side} {self.size}@{self.price})"


@dataclass(frozen=True)
class EditAction:
    """Replace an existing order's price and size."""

    order_id: str
    price: Decimal
    size: Decimal
    side: Side

    def __str__(self) -> str:
        return f"Edit({self.order_id} -> {self.side} {self.size}@{self.price})"


@dataclass(frozen=True)
class CancelAction:
    """Cancel an existing order. Side is informational only."""

    order_id: str
    side: Optional[Side] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"Cancel({self.order_id})"


PlanAction = Union[CreateAction, EditAction, CancelAction]


@dataclass
class ReconciliationPlan:
    """Ordered actions for one cycle. Never reused across cycles."""

    actions: list[PlanAction] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.actions)

    def __iter__(self):
        return iter(self.actions)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    @property
    def cancels(self) -> list[CancelAction]:
        return [a for a in self.actions if isinstance(a, CancelAction)]

    @property
    def creates(self) -> list[CreateAction]:
        return [a for a in self.actions if isinstance(a, CreateAction)]

    @property
    def edits(self) -> list[EditAction]:
        return [a for a in self.actions if isinstance(a, EditAction)]


@dataclass
class ActionResult:
    """
    Outcome of submitting one plan action.

    Attributes:
        action: The submitted action.
        success: Whether the venue accepted it.
        order_id: Resulting order id for creates and edits.
        error: Error message when the action failed.
    """

    action: PlanAction
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": str(self.action),
            "success": self.success,
            "order_id": self.order_id,
            "error": self.error,
        }
