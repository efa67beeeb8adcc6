"""Async client for the 0x Swap API (AllowanceHolder flow, v2)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.recovery.errors import QuoteUnavailableError
from .base import ProviderQuote, QuoteParams, QuoteProvider

logger = logging.getLogger(__name__)

QUOTE_PATH = "/swap/allowance-holder/quote"

# Lets 0x report estimatedPriceImpact without blocking high-impact quotes
PRICE_IMPACT_PROTECTION = "0.99"


class ZeroExTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    to: str
    data: str
    value: str = "0"
    gas: Optional[str] = None


class ZeroExQuoteResponse(BaseModel):
    """Subset of the 0x quote response the sweeper relies on."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    liquidity_available: bool = Field(default=True, alias="liquidityAvailable")
    buy_amount: Optional[int] = Field(default=None, alias="buyAmount")
    sell_amount: Optional[int] = Field(default=None, alias="sellAmount")
    min_buy_amount: Optional[int] = Field(default=None, alias="minBuyAmount")
    estimated_price_impact: Optional[float] = Field(default=None, alias="estimatedPriceImpact")
    transaction: Optional[ZeroExTransaction] = None


@dataclass(frozen=True)
class ZeroExRoute:
    """Router call the batch swapper forwards to the AllowanceHolder."""
    to: str
    data: str
    value: int = 0


class ZeroExQuoteProvider(QuoteProvider):
    """Thin wrapper around https://api.0x.org swap endpoints."""

    name = "0x"
    timeout_s = 20

    def __init__(
        self,
        chain_id: int,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        fee_recipient: Optional[str] = None,
        fee_bps: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.chain_id = chain_id
        self.api_key = api_key if api_key is not None else settings.zerox_api_key
        self.base_url = (base_url or settings.zerox_base_url).rstrip("/")
        self.fee_recipient = fee_recipient if fee_recipient is not None else settings.swap_fee_recipient
        self.fee_bps = fee_bps if fee_bps is not None else settings.swap_fee_bps
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "0x-api-key": self.api_key,
            "0x-version": "v2",
            "accept": "application/json",
        }

    def _params(self, params: QuoteParams) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "chainId": self.chain_id,
            "sellToken": params.sell_token,
            "buyToken": params.buy_token,
            "sellAmount": str(params.sell_amount),
            "taker": params.taker,
            "slippageBps": params.slippage_bps,
            "priceImpactProtectionPercentage": PRICE_IMPACT_PROTECTION,
        }
        if self.fee_recipient and self.fee_bps:
            query["swapFeeRecipient"] = self.fee_recipient
            query["swapFeeBps"] = self.fee_bps
            query["swapFeeToken"] = params.buy_token
        return query

    async def _get(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(f"{self.base_url}{path}", params=params, headers=self._headers())
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.get(f"{self.base_url}{path}", params=params, headers=self._headers())

    async def ready(self) -> bool:
        return bool(self.api_key)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "0x API key not configured"}
        return {"status": "healthy", "chain_id": self.chain_id}

    async def get_quote(self, params: QuoteParams) -> ProviderQuote:
        try:
            response = await self._get(QUOTE_PATH, self._params(params))
        except httpx.RequestError as exc:
            raise QuoteUnavailableError(f"0x request failed: {exc}", token=params.sell_token, provider=self.name)

        if response.status_code >= 400:
            try:
                body = response.json()
                reason = body.get("reason") or body.get("message") or body.get("name") or "Quote failed"
            except ValueError:
                reason = response.text[:100] or "Quote failed"
            raise QuoteUnavailableError(
                f"0x error {response.status_code}: {reason}",
                token=params.sell_token,
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            parsed = ZeroExQuoteResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise QuoteUnavailableError(f"Malformed 0x response: {exc}", token=params.sell_token, provider=self.name)

        if not parsed.liquidity_available:
            raise QuoteUnavailableError("No liquidity available", token=params.sell_token, provider=self.name)
        if parsed.buy_amount is None or parsed.transaction is None:
            raise QuoteUnavailableError(
                "Malformed 0x response: missing buyAmount or transaction",
                token=params.sell_token,
                provider=self.name,
            )

        logger.debug(
            f"0x quote {params.sell_token} -> {params.buy_token}: "
            f"{params.sell_amount} -> {parsed.buy_amount}"
        )

        return ProviderQuote(
            sell_token=params.sell_token,
            buy_token=params.buy_token,
            sell_amount=parsed.sell_amount if parsed.sell_amount is not None else params.sell_amount,
            buy_amount=parsed.buy_amount,
            route=ZeroExRoute(
                to=parsed.transaction.to,
                data=parsed.transaction.data,
                value=int(parsed.transaction.value or 0),
            ),
            provider=self.name,
            price_impact_pct=parsed.estimated_price_impact,
            min_buy_amount=parsed.min_buy_amount,
        )


__all__ = [
    "ZeroExQuoteProvider",
    "ZeroExQuoteResponse",
    "ZeroExRoute",
    "ZeroExTransaction",
]
