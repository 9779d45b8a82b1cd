"""Configuration management for the ladder market maker."""
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

# Kill switch file (create this file to halt all quoting)
KILL_SWITCH_FILE = PROJECT_ROOT / ".kill_switch"


class ConfigurationError(Exception):
    """Raised when the strategy configuration is missing or invalid."""

    pass


# =============================================================================
# POLLING
# =============================================================================

# Reconciliation cycle interval in milliseconds
POLL_INTERVAL_MS = int(os.getenv("POLL_INTERVAL_MS", "5000"))

# Multiple of the polling interval within which an expiring order is refreshed
REFRESH_WINDOW_MULTIPLE = Decimal(os.getenv("REFRESH_WINDOW_MULTIPLE", "3"))

# =============================================================================
# LADDER
# =============================================================================

LEVEL_COUNT = int(os.getenv("LEVEL_COUNT", "5"))

# Total distance of the outermost level from mid (0.2 = 20%)
SPREAD_FACTOR = Decimal(os.getenv("SPREAD_FACTOR", "0.2"))

# Multiplicative widening of the synthetic book around the AMM mid
STRETCH_FACTOR = Decimal(os.getenv("STRETCH_FACTOR", "1"))

# "even" or "geometric"
SIZE_PROFILE = os.getenv("SIZE_PROFILE", "even")
SIZE_SCALING_FACTOR = Decimal(os.getenv("SIZE_SCALING_FACTOR", "1.5"))

# "geometric" or "linear"
PRICE_STEP = os.getenv("PRICE_STEP", "geometric")

# Share of the available balance placed on the book
BALANCE_UTILIZATION = Decimal(os.getenv("BALANCE_UTILIZATION", "0.95"))

# =============================================================================
# RECONCILIATION
# =============================================================================

PRICE_TOLERANCE = Decimal(os.getenv("PRICE_TOLERANCE", "0.001"))
SIZE_TOLERANCE = Decimal(os.getenv("SIZE_TOLERANCE", "0.01"))

# =============================================================================
# RISK
# =============================================================================

# Pull all liquidity when the reference (ask - bid) / bid exceeds this
MAX_REFERENCE_SPREAD = Decimal(os.getenv("MAX_REFERENCE_SPREAD", "0.02"))

# =============================================================================
# SAMPLING
# =============================================================================

LADDER_STEPS = int(os.getenv("LADDER_STEPS", "10"))
PROGRESSION_FACTOR = Decimal(os.getenv("PROGRESSION_FACTOR", "1.85"))
LADDER_START_SIZE = Decimal(os.getenv("LADDER_START_SIZE", "0.5"))

# =============================================================================
# ENDPOINTS
# =============================================================================

CHAIN_ID = int(os.getenv("CHAIN_ID", "10"))
RPC_URL = os.getenv("RPC_URL", "https://mainnet.optimism.io")
USER_ADDRESS = os.getenv("USER_ADDRESS", "")

GLADIUS_URL = os.getenv("GLADIUS_URL", "https://gladius.rubicon.finance")
KRAKEN_API_URL = os.getenv("KRAKEN_API_URL", "https://api.kraken.com/0/public")
ODOS_API_URL = os.getenv("ODOS_API_URL", "https://api.odos.xyz")

# Multicall3 is deployed at the same address on every supported chain
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

# =============================================================================
# MINIMUM ORDER SIZES (asset units, per symbol)
# =============================================================================

MIN_ORDER_SIZES: dict[str, Decimal] = {
    "WETH": Decimal("0.0022"),
    "TEST": Decimal("0.0022"),
    "DAI": Decimal("5"),
    "USDC": Decimal("5"),
    "USDC.e": Decimal("5"),
    "USDT": Decimal("5"),
    "USDbC": Decimal("5"),
    "WBTC": Decimal("0.00015"),
    "ARB": Decimal("4"),
    "OP": Decimal("3"),
}


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ConfigurationError(f"{name} is not a number: {raw!r}") from e


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} is not an integer: {raw!r}") from e


@dataclass
class StrategyConfig:
    """
    Recognized strategy options.

    Attributes:
        poll_interval_ms: Reconciliation cycle interval in milliseconds.
        level_count: Number of ladder levels per side.
        spread_factor: Distance of the outermost level from mid.
        stretch_factor: Synthetic book widening factor (>= 1).
        size_profile: "even" or "geometric" size distribution.
        size_scaling_factor: Growth ratio for geometric sizes.
        price_step: "geometric" or "linear" price offsets.
        balance_utilization: Share of the available balance to quote.
        price_tolerance: Relative price difference that triggers an edit.
        size_tolerance: Relative size difference that triggers an edit.
        refresh_window_multiple: Refresh window as a multiple of the poll interval.
        max_reference_spread: Reference spread above which quoting is pulled.
        tick_size: Optional price increment for level rounding.
    """

    poll_interval_ms: int = POLL_INTERVAL_MS
    level_count: int = LEVEL_COUNT
    spread_factor: Decimal = SPREAD_FACTOR
    stretch_factor: Decimal = STRETCH_FACTOR
    size_profile: str = SIZE_PROFILE
    size_scaling_factor: Decimal = SIZE_SCALING_FACTOR
    price_step: str = PRICE_STEP
    balance_utilization: Decimal = BALANCE_UTILIZATION
    price_tolerance: Decimal = PRICE_TOLERANCE
    size_tolerance: Decimal = SIZE_TOLERANCE
    refresh_window_multiple: Decimal = REFRESH_WINDOW_MULTIPLE
    max_reference_spread: Optional[Decimal] = MAX_REFERENCE_SPREAD
    tick_size: Optional[Decimal] = None

    @classmethod
    def from_env(cls) -> "StrategyConfig":
        """
        Build a config from the current environment.

        Unlike the module constants, this re-reads the environment so tests
        and scripts can override values after import.

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range.
        """
        tick_raw = os.getenv("TICK_SIZE")
        spread_raw = os.getenv("MAX_REFERENCE_SPREAD", "0.02")
        config = cls(
            poll_interval_ms=_env_int("POLL_INTERVAL_MS", "5000"),
            level_count=_env_int("LEVEL_COUNT", "5"),
            spread_factor=_env_decimal("SPREAD_FACTOR", "0.2"),
            stretch_factor=_env_decimal("STRETCH_FACTOR", "1"),
            size_profile=os.getenv("SIZE_PROFILE", "even"),
            size_scaling_factor=_env_decimal("SIZE_SCALING_FACTOR", "1.5"),
            price_step=os.getenv("PRICE_STEP", "geometric"),
            balance_utilization=_env_decimal("BALANCE_UTILIZATION", "0.95"),
            price_tolerance=_env_decimal("PRICE_TOLERANCE", "0.001"),
            size_tolerance=_env_decimal("SIZE_TOLERANCE", "0.01"),
            refresh_window_multiple=_env_decimal("REFRESH_WINDOW_MULTIPLE", "3"),
            max_reference_spread=(
                _env_decimal("MAX_REFERENCE_SPREAD", spread_raw) if spread_raw else None
            ),
            tick_size=_env_decimal("TICK_SIZE", tick_raw) if tick_raw else None,
        )
        config.validate()
        return config

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def refresh_window_sec(self) -> Decimal:
        """Refresh window in seconds."""
        return self.refresh_window_multiple * Decimal(self.poll_interval_ms) / Decimal(1000)

    def validate(self) -> None:
        """
        Check option ranges.

        Raises:
            ConfigurationError: On the first invalid option.
        """
        if self.poll_interval_ms <= 0:
            raise ConfigurationError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.level_count < 1:
            raise ConfigurationError(f"level_count must be at least 1, got {self.level_count}")
        if self.spread_factor <= 0:
            raise ConfigurationError(f"spread_factor must be positive, got {self.spread_factor}")
        if self.price_step == "geometric" and self.spread_factor >= 1:
            raise ConfigurationError("geometric price_step requires spread_factor < 1")
        if self.stretch_factor < 1:
            raise ConfigurationError(f"stretch_factor must be >= 1, got {self.stretch_factor}")
        if self.size_profile not in ("even", "geometric"):
            raise ConfigurationError(f"Unknown size_profile: {self.size_profile}")
        if self.price_step not in ("geometric", "linear"):
            raise ConfigurationError(f"Unknown price_step: {self.price_step}")
        if self.size_scaling_factor <= 0:
            raise ConfigurationError("size_scaling_factor must be positive")
        if not (0 < self.balance_utilization <= 1):
            raise ConfigurationError("balance_utilization must be in (0, 1]")
        if self.price_tolerance < 0 or self.size_tolerance < 0:
            raise ConfigurationError("tolerances must be non-negative")
        if self.refresh_window_multiple < 0:
            raise ConfigurationError("refresh_window_multiple must be non-negative")
        if self.tick_size is not None and self.tick_size <= 0:
            raise ConfigurationError("tick_size must be positive")
