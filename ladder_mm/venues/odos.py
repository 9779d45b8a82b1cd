"""
Odos smart-order-router adapter.

Quotes come from the public SOR quote endpoint: one input token, one output
token, amounts in base units. Each size is a separate HTTP request; the
default quote_many fans them out concurrently.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

import requests

from ..config import ODOS_API_URL
from .base import (
    InsufficientLiquidityError,
    PairDirection,
    QuoteError,
    QuoteSource,
    ReferencePriceSource,
    VenueError,
)
from .http import request_json, with_retry
from .tokens import Token

logger = logging.getLogger(__name__)

QUOTE_PATH = "/sor/quote/v2"


class OdosQuoteSource(QuoteSource, ReferencePriceSource):
    """
    Aggregator quotes for one pair on one chain.

    As a reference price source, the best bid is the price for selling
    base_probe base and the best ask the price for spending quote_probe quote.

    Attributes:
        base_token: Base token.
        quote_token: Quote token.
        chain_id: Chain to route on.
        base_probe: Base size used for the reference bid.
        quote_probe: Quote size used for the reference ask.
    """

    def __init__(
        self,
        base: Token,
        quote: Token,
        chain_id: Optional[int] = None,
        api_url: str = ODOS_API_URL,
        base_probe: Decimal = Decimal("1"),
        quote_probe: Decimal = Decimal("1"),
        disable_rfqs: bool = False,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_token = base
        self.quote_token = quote
        self.chain_id = chain_id if chain_id is not None else base.chain_id
        self.api_url = api_url.rstrip("/")
        self.base_probe = Decimal(str(base_probe))
        self.quote_probe = Decimal(str(quote_probe))
        self.disable_rfqs = disable_rfqs
        self.timeout = timeout
        self.session = session or requests.Session()
        self.name = f"odos:{base}/{quote}"

    def build_request(self, direction: PairDirection, amount_in: Decimal) -> dict[str, Any]:
        """Request body for quoting amount_in of token_in into token_out."""
        raw_amount = direction.token_in.to_base_units(amount_in)
        if raw_amount <= 0:
            raise QuoteError(f"{amount_in} {direction.token_in} is below token precision")
        return {
            "chainId": self.chain_id,
            "inputTokens": [{"tokenAddress": direction.token_in.address, "amount": str(raw_amount)}],
            "outputTokens": [{"tokenAddress": direction.token_out.address, "proportion": 1}],
            "disableRFQs": self.disable_rfqs,
        }

    @with_retry(max_retries=2)
    async def _post_quote(self, body: dict[str, Any]) -> dict[str, Any]:
        return await request_json(
            self.session, "POST", f"{self.api_url}{QUOTE_PATH}", json_body=body, timeout=self.timeout
        )

    async def quote(self, direction: PairDirection, amount_in: Decimal) -> Decimal:
        body = self.build_request(direction, amount_in)
        try:
            data = await self._post_quote(body)
        except VenueError as e:
            raise QuoteError(f"Odos quote {direction} size={amount_in} failed: {e}") from e

        out_amounts = data.get("outAmounts") or []
        if not out_amounts:
            raise InsufficientLiquidityError(f"Odos returned no route for {direction} size={amount_in}")
        output = direction.token_out.from_base_units(int(out_amounts[0]))
        if output <= 0:
            raise InsufficientLiquidityError(f"Odos returned zero output for {direction} size={amount_in}")
        return output

    async def get_best_bid(self) -> Optional[Decimal]:
        try:
            received = await self.quote(PairDirection(self.base_token, self.quote_token), self.base_probe)
            return received / self.base_probe
        except QuoteError as e:
            logger.error(f"Error getting best bid from Odos: {e}")
            return None

    async def get_best_ask(self) -> Optional[Decimal]:
        try:
            received = await self.quote(PairDirection(self.quote_token, self.base_token), self.quote_probe)
            return self.quote_probe / received
        except QuoteError as e:
            logger.error(f"Error getting best ask from Odos: {e}")
            return None
