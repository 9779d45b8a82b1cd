"""
Uniswap-style AMM quotes via on-chain simulation.

Every size of a ladder is packed into one Multicall3 aggregate3 eth_call with
allowFailure set, so a whole directional sample costs a single RPC round
trip and a revert at one depth only fails that size.

Supported quoters:
- V3 Quoter: quoteExactInputSingle(tokenIn, tokenOut, fee, amountIn, sqrtPriceLimitX96)
- V3 QuoterV2: quoteExactInputSingle((tokenIn, tokenOut, amountIn, fee, sqrtPriceLimitX96))
- V2 Router: getAmountsOut(amountIn, [tokenIn, tokenOut])
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Sequence, Union

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from ..config import MULTICALL3_ADDRESS
from .base import InsufficientLiquidityError, PairDirection, QuoteError, QuoteSource

logger = logging.getLogger(__name__)

AGGREGATE3_SIGNATURE = "aggregate3((address,bool,bytes)[])"
AGGREGATE3_RETURN = ["(bool,bytes)[]"]

# V2 pools charge a fixed 0.3%
V2_FEE = 3000


class QuoterKind(Enum):
    """Quoter contract flavour."""

    V3_QUOTER = "v3_quoter"
    V3_QUOTER_V2 = "v3_quoter_v2"
    V2_ROUTER = "v2_router"

    def __str__(self) -> str:
        return self.value


QUOTER_SIGNATURES: dict[QuoterKind, tuple[str, list[str], list[str]]] = {
    QuoterKind.V3_QUOTER: (
        "quoteExactInputSingle(address,address,uint24,uint256,uint160)",
        ["address", "address", "uint24", "uint256", "uint160"],
        ["uint256"],
    ),
    QuoterKind.V3_QUOTER_V2: (
        "quoteExactInputSingle((address,address,uint256,uint24,uint160))",
        ["(address,address,uint256,uint24,uint160)"],
        ["uint256", "uint160", "uint32", "uint256"],
    ),
    QuoterKind.V2_ROUTER: (
        "getAmountsOut(uint256,address[])",
        ["uint256", "address[]"],
        ["uint256[]"],
    ),
}


def selector(signature: str) -> bytes:
    """First four bytes of the keccak hash of a function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


class UniswapQuoteSource(QuoteSource):
    """
    Batched AMM quotes through a quoter contract and Multicall3.

    Attributes:
        w3: Web3 instance connected to the chain's RPC.
        quoter_address: Quoter or router contract.
        kind: Quoter flavour.
        fee: V3 pool fee tier in hundredths of a bip (500 = 0.05%).
        multicall_address: Multicall3 deployment.
    """

    def __init__(
        self,
        w3: Web3,
        quoter_address: str,
        kind: QuoterKind = QuoterKind.V3_QUOTER,
        fee: int = 500,
        multicall_address: str = MULTICALL3_ADDRESS,
    ):
        if not Web3.is_address(quoter_address):
            raise ValueError(f"Invalid quoter address: {quoter_address}")
        self.w3 = w3
        self.quoter_address = Web3.to_checksum_address(quoter_address)
        self.kind = kind
        self.fee = V2_FEE if kind == QuoterKind.V2_ROUTER else fee
        self.multicall_address = Web3.to_checksum_address(multicall_address)
        self.name = f"uniswap:{kind}:{self.fee}"

    @classmethod
    def from_rpc(cls, rpc_url: str, quoter_address: str, **kwargs: Any) -> "UniswapQuoteSource":
        """Build a quote source over an HTTP RPC endpoint."""
        return cls(Web3(Web3.HTTPProvider(rpc_url)), quoter_address, **kwargs)

    def encode_quote(self, direction: PairDirection, raw_amount: int) -> bytes:
        """Calldata for one quoter call."""
        signature, arg_types, _ = QUOTER_SIGNATURES[self.kind]
        token_in = direction.token_in.address
        token_out = direction.token_out.address
        if self.kind == QuoterKind.V3_QUOTER:
            args = [token_in, token_out, self.fee, raw_amount, 0]
        elif self.kind == QuoterKind.V3_QUOTER_V2:
            args = [(token_in, token_out, raw_amount, self.fee, 0)]
        else:
            args = [raw_amount, [token_in, token_out]]
        return selector(signature) + self.w3.codec.encode(arg_types, args)

    def decode_quote(self, return_data: bytes) -> int:
        """Raw amountOut from one quoter call's return data."""
        _, _, return_types = QUOTER_SIGNATURES[self.kind]
        decoded = self.w3.codec.decode(return_types, return_data)
        if self.kind == QuoterKind.V2_ROUTER:
            return int(decoded[0][-1])
        return int(decoded[0])

    def encode_aggregate(self, calls: Sequence[bytes]) -> bytes:
        """aggregate3 calldata with allowFailure set on every call."""
        batch = [(self.quoter_address, True, call) for call in calls]
        return selector(AGGREGATE3_SIGNATURE) + self.w3.codec.encode(
            ["(address,bool,bytes)[]"], [batch]
        )

    def _call(self, data: bytes) -> bytes:
        return bytes(self.w3.eth.call({"to": self.multicall_address, "data": data}))

    async def quote(self, direction: PairDirection, amount_in: Decimal) -> Decimal:
        result = (await self.quote_many(direction, [amount_in]))[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def quote_many(
        self, direction: PairDirection, amounts_in: Sequence[Decimal]
    ) -> list[Union[Decimal, Exception]]:
        """
        Quote every size in one multicall.

        Returns:
            Output amount per size, or an exception for sizes that reverted
            or were below token precision.
        """
        results: list[Optional[Union[Decimal, Exception]]] = [None] * len(amounts_in)
        calls: list[bytes] = []
        call_index: list[int] = []

        for i, amount in enumerate(amounts_in):
            raw_amount = direction.token_in.to_base_units(amount)
            if raw_amount <= 0:
                results[i] = QuoteError(f"{amount} {direction.token_in} is below token precision")
                continue
            calls.append(self.encode_quote(direction, raw_amount))
            call_index.append(i)

        if calls:
            try:
                raw = await asyncio.to_thread(self._call, self.encode_aggregate(calls))
                decoded = self.w3.codec.decode(AGGREGATE3_RETURN, raw)[0]
            except (Web3Exception, requests.RequestException, ValueError) as e:
                logger.error(f"Multicall for {direction} via {self.name} failed: {e}")
                error = QuoteError(f"Multicall failed: {e}")
                for i in call_index:
                    results[i] = error
                return list(results)

            for i, (success, return_data) in zip(call_index, decoded):
                if not success:
                    results[i] = InsufficientLiquidityError(
                        f"Quoter reverted for {direction} size={amounts_in[i]}"
                    )
                    continue
                try:
                    raw_out = self.decode_quote(return_data)
                except Exception as e:
                    results[i] = QuoteError(f"Undecodable quote for {direction} size={amounts_in[i]}: {e}")
                    continue
                results[i] = direction.token_out.from_base_units(raw_out)

        return list(results)
