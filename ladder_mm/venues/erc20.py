"""
On-chain ERC20 balance source.

Implements direct balanceOf queries using web3.py.

Features:
- Short TTL cache to avoid excessive RPC calls
- Thread-safe cache (reads run in worker threads)
- Failures raise BalanceError instead of reporting zero, so a flaky RPC
  freezes a side rather than cancelling it
"""

import asyncio
import logging
import threading
import time
from decimal import Decimal
from typing import Any, Optional

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from ..config import RPC_URL
from .base import BalanceError, BalanceSource
from .tokens import Token

logger = logging.getLogger(__name__)

# Cache TTL in seconds
BALANCE_CACHE_TTL = 2

# Minimal ERC20 ABI for balanceOf
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    }
]


class Erc20BalanceSource(BalanceSource):
    """
    Wallet balances read from token contracts, with caching.

    Example:
        source = Erc20BalanceSource("0xYourWallet...", rpc_url="https://mainnet.optimism.io")
        weth = await source.available_balance(registry.by_symbol("WETH"))
    """

    def __init__(
        self,
        owner_address: str,
        w3: Optional[Web3] = None,
        rpc_url: str = RPC_URL,
        cache_ttl: float = BALANCE_CACHE_TTL,
    ):
        """
        Initialize the balance source.

        Args:
            owner_address: Wallet whose balances are read.
            w3: Web3 instance (built from rpc_url when omitted).
            rpc_url: RPC endpoint URL.
            cache_ttl: Cache time-to-live in seconds.

        Raises:
            ValueError: If owner_address is not a valid address.
        """
        if not Web3.is_address(owner_address):
            raise ValueError(f"Invalid Ethereum address: {owner_address}")
        self.owner = Web3.to_checksum_address(owner_address)
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.cache_ttl = cache_ttl

        self._contracts: dict[str, Any] = {}
        # Cache storage: {token address: (balance, timestamp)}
        self._cache: dict[str, tuple[Decimal, float]] = {}
        self._cache_lock = threading.Lock()

    def _contract(self, token: Token):
        contract = self._contracts.get(token.address)
        if contract is None:
            contract = self.w3.eth.contract(address=token.address, abi=ERC20_BALANCE_ABI)
            self._contracts[token.address] = contract
        return contract

    def _get_cached(self, token: Token) -> Optional[Decimal]:
        with self._cache_lock:
            if token.address in self._cache:
                balance, timestamp = self._cache[token.address]
                if time.time() - timestamp < self.cache_ttl:
                    return balance
        return None

    def _set_cached(self, token: Token, balance: Decimal) -> None:
        with self._cache_lock:
            self._cache[token.address] = (balance, time.time())

    def clear_cache(self) -> None:
        """Clear all cached balances."""
        with self._cache_lock:
            self._cache.clear()

    def get_raw_balance(self, token: Token) -> int:
        """
        Get raw balance from chain (no cache).

        Returns:
            Raw balance in smallest units.

        Raises:
            Web3Exception: If the RPC call fails.
        """
        return int(self._contract(token).functions.balanceOf(self.owner).call())

    async def available_balance(self, token: Token) -> Decimal:
        cached = self._get_cached(token)
        if cached is not None:
            return cached

        try:
            raw_balance = await asyncio.to_thread(self.get_raw_balance, token)
        except (Web3Exception, requests.RequestException, ValueError) as e:
            logger.error(f"Error getting {token.symbol} balance for {self.owner}: {e}")
            raise BalanceError(f"{token.symbol} balance unavailable: {e}") from e

        balance = token.from_base_units(raw_balance)
        self._set_cached(token, balance)
        return balance
