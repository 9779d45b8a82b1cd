"""
Token metadata and the per-strategy token registry.

A registry is built once per strategy from the tokens it may touch and is
passed to every venue adapter that needs decimals or addresses. Registries
are never shared or mutated after construction; lookups for tokens outside
the registry raise UnknownTokenError.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional

from web3 import Web3

from .base import VenueError


class UnknownTokenError(VenueError):
    """Raised when a token is not part of the strategy's registry."""

    pass


@dataclass(frozen=True)
class Token:
    """
    ERC20 token metadata.

    Attributes:
        symbol: Ticker symbol (e.g. 'WETH').
        address: Contract address (checksummed on construction).
        decimals: On-chain decimal precision.
        chain_id: Chain the address lives on.
    """

    symbol: str
    address: str
    decimals: int
    chain_id: int

    def __post_init__(self) -> None:
        if not Web3.is_address(self.address.lower()):
            raise ValueError(f"Invalid token address for {self.symbol}: {self.address}")
        object.__setattr__(self, "address", Web3.to_checksum_address(self.address.lower()))

    @property
    def unit(self) -> Decimal:
        """Smallest representable amount in human units."""
        return Decimal(1).scaleb(-self.decimals)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round an amount down to the token's precision."""
        return amount.quantize(self.unit, rounding=ROUND_DOWN)

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a human amount to integer base units, rounding down."""
        return int((amount * (Decimal(10) ** self.decimals)).to_integral_value(rounding=ROUND_DOWN))

    def from_base_units(self, raw: int) -> Decimal:
        """Convert integer base units to a human amount."""
        return Decimal(int(raw)).scaleb(-self.decimals)

    def __str__(self) -> str:
        return self.symbol


class TokenRegistry:
    """
    Explicit set of tokens a strategy may use.

    Example:
        >>> registry = TokenRegistry([WETH_OP, USDC_OP])
        >>> registry.by_symbol("WETH").decimals
        18
    """

    def __init__(self, tokens: Iterable[Token]):
        self._by_address: dict[tuple[int, str], Token] = {}
        self._by_symbol: dict[tuple[int, str], Token] = {}
        for token in tokens:
            key = (token.chain_id, token.address.lower())
            if key in self._by_address:
                raise ValueError(f"Duplicate token address {token.address} on chain {token.chain_id}")
            self._by_address[key] = token
            self._by_symbol[(token.chain_id, token.symbol.upper())] = token

    def __len__(self) -> int:
        return len(self._by_address)

    def __iter__(self):
        return iter(self._by_address.values())

    def __contains__(self, token: Token) -> bool:
        return (token.chain_id, token.address.lower()) in self._by_address

    def _single_chain(self) -> Optional[int]:
        chains = {chain for chain, _ in self._by_address}
        return chains.pop() if len(chains) == 1 else None

    def by_address(self, address: str, chain_id: Optional[int] = None) -> Token:
        """
        Resolve a token by contract address (case-insensitive).

        Raises:
            UnknownTokenError: If the address is not registered.
        """
        chain = chain_id if chain_id is not None else self._single_chain()
        token = self._by_address.get((chain, address.lower()))
        if token is None:
            raise UnknownTokenError(f"Unknown token address {address} on chain {chain}")
        return token

    def by_symbol(self, symbol: str, chain_id: Optional[int] = None) -> Token:
        """
        Resolve a token by symbol (case-insensitive).

        Raises:
            UnknownTokenError: If the symbol is not registered.
        """
        chain = chain_id if chain_id is not None else self._single_chain()
        token = self._by_symbol.get((chain, symbol.upper()))
        if token is None:
            raise UnknownTokenError(f"Unknown token {symbol} on chain {chain}")
        return token


# =============================================================================
# Known deployments
# =============================================================================

OPTIMISM = 10
BASE = 8453
ARBITRUM = 42161

KNOWN_TOKENS: list[Token] = [
    Token("WETH", "0x4200000000000000000000000000000000000006", 18, OPTIMISM),
    Token("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6, OPTIMISM),
    Token("USDC.e", "0x7F5c764cBc14f9669B88837ca1490cCa17c31607", 6, OPTIMISM),
    Token("DAI", "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18, OPTIMISM),
    Token("USDT", "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6, OPTIMISM),
    Token("WBTC", "0x68f180fcCe6836688e9084f035309E29Bf0A2095", 8, OPTIMISM),
    Token("OP", "0x4200000000000000000000000000000000000042", 18, OPTIMISM),
    Token("WETH", "0x4200000000000000000000000000000000000006", 18, BASE),
    Token("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, BASE),
    Token("USDbC", "0xd9aAEc86B65D86f6A7B5B1b0c42FFA531710b6CA", 6, BASE),
    Token("WETH", "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18, ARBITRUM),
    Token("USDC", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6, ARBITRUM),
    Token("ARB", "0x912CE59144191C1204E64559FE8253a0e49E6548", 18, ARBITRUM),
]


def registry_for(symbols: Iterable[str], chain_id: int) -> TokenRegistry:
    """
    Build a registry holding only the named known tokens on one chain.

    Raises:
        UnknownTokenError: If a symbol has no known deployment on the chain.
    """
    known = TokenRegistry(KNOWN_TOKENS)
    return TokenRegistry(known.by_symbol(symbol, chain_id) for symbol in symbols)
