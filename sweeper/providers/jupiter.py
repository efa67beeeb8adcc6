"""
Jupiter swap provider for Solana.

Quotes come from ``/quote``; executable routes are fetched as raw
instructions from ``/swap-instructions`` so several swaps can be bundled
into one versioned transaction by the Solana execution surface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.recovery.errors import QuoteUnavailableError
from .base import ProviderQuote, QuoteParams, QuoteProvider

logger = logging.getLogger(__name__)


class RoutePlanStep(BaseModel):
    """A single hop of a Jupiter route."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    swap_info: Dict[str, Any] = Field(default_factory=dict, alias="swapInfo")
    percent: int = 100


class JupiterQuoteResponse(BaseModel):
    """Quote response from Jupiter. Unknown fields are kept for /swap-instructions."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: int = Field(alias="inAmount")
    out_amount: int = Field(alias="outAmount")
    other_amount_threshold: Optional[int] = Field(default=None, alias="otherAmountThreshold")
    swap_mode: str = Field(default="ExactIn", alias="swapMode")
    slippage_bps: int = Field(default=0, alias="slippageBps")
    price_impact_pct: float = Field(default=0.0, alias="priceImpactPct")
    route_plan: List[RoutePlanStep] = Field(default_factory=list, alias="routePlan")


class JupiterAccountMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pubkey: str
    is_signer: bool = Field(alias="isSigner")
    is_writable: bool = Field(alias="isWritable")


class JupiterInstruction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    program_id: str = Field(alias="programId")
    accounts: List[JupiterAccountMeta] = Field(default_factory=list)
    data: str                                   # Base64


class JupiterSwapInstructions(BaseModel):
    """Response of /swap-instructions."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    compute_budget_instructions: List[JupiterInstruction] = Field(
        default_factory=list, alias="computeBudgetInstructions"
    )
    setup_instructions: List[JupiterInstruction] = Field(default_factory=list, alias="setupInstructions")
    swap_instruction: JupiterInstruction = Field(alias="swapInstruction")
    cleanup_instruction: Optional[JupiterInstruction] = Field(default=None, alias="cleanupInstruction")
    address_lookup_table_addresses: List[str] = Field(
        default_factory=list, alias="addressLookupTableAddresses"
    )

    def ordered(self) -> List[JupiterInstruction]:
        """Setup, swap and cleanup instructions in execution order."""
        instructions = [*self.setup_instructions, self.swap_instruction]
        if self.cleanup_instruction is not None:
            instructions.append(self.cleanup_instruction)
        return instructions


@dataclass(frozen=True)
class JupiterRoute:
    """Raw quote payload, handed back to Jupiter when building instructions."""
    quote_response: Dict[str, Any]


class JupiterSwapError(Exception):
    """Failed to build swap instructions."""
    pass


class JupiterQuoteProvider(QuoteProvider):
    """
    Jupiter quote and instruction provider.

    Usage:
        provider = JupiterQuoteProvider()
        quote = await provider.get_quote(QuoteParams(
            sell_token=BONK_MINT,
            buy_token=SOLANA_USDC_MINT,
            sell_amount=1_000_000,
            taker=wallet,
        ))
        instructions = await provider.get_swap_instructions(quote.route, wallet)
    """

    name = "jupiter"
    timeout_s = 30

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        platform_fee_bps: Optional[int] = None,
        fee_account: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or settings.jupiter_api_url).rstrip("/")
        self.platform_fee_bps = platform_fee_bps if platform_fee_bps is not None else settings.platform_fee_bps
        self.fee_account = fee_account if fee_account is not None else settings.platform_fee_account
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.request(method, url, **kwargs)

    async def ready(self) -> bool:
        """Jupiter's lite API requires no authentication."""
        return True

    async def health_check(self) -> Dict[str, Any]:
        try:
            response = await self._request("GET", "/program-id-to-label")
            response.raise_for_status()
            return {
                "status": "healthy",
                "latency_ms": int(response.elapsed.total_seconds() * 1000),
            }
        except Exception as e:
            return {"status": "error", "reason": str(e)}

    async def get_quote(self, params: QuoteParams) -> ProviderQuote:
        query: Dict[str, Any] = {
            "inputMint": params.sell_token,
            "outputMint": params.buy_token,
            "amount": str(params.sell_amount),
            "slippageBps": params.slippage_bps,
            "swapMode": "ExactIn",
        }
        if self.platform_fee_bps and self.fee_account:
            query["platformFeeBps"] = self.platform_fee_bps

        try:
            response = await self._request("GET", "/quote", params=query)
        except httpx.RequestError as exc:
            raise QuoteUnavailableError(f"Jupiter request failed: {exc}", token=params.sell_token, provider=self.name)

        if response.status_code >= 400:
            try:
                reason = response.json().get("error") or "Quote failed"
            except ValueError:
                reason = response.text[:100] or "Quote failed"
            raise QuoteUnavailableError(
                f"Jupiter error {response.status_code}: {reason}",
                token=params.sell_token,
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
            if "error" in data:
                raise QuoteUnavailableError(
                    f"Jupiter quote error: {data['error']}", token=params.sell_token, provider=self.name
                )
            parsed = JupiterQuoteResponse.model_validate(data)
        except (ValueError, ValidationError) as exc:
            raise QuoteUnavailableError(f"Malformed Jupiter response: {exc}", token=params.sell_token, provider=self.name)

        if parsed.out_amount <= 0:
            raise QuoteUnavailableError("No liquidity available", token=params.sell_token, provider=self.name)

        return ProviderQuote(
            sell_token=parsed.input_mint,
            buy_token=parsed.output_mint,
            sell_amount=parsed.in_amount,
            buy_amount=parsed.out_amount,
            route=JupiterRoute(quote_response=data),
            provider=self.name,
            # Jupiter reports a fraction, not a percentage
            price_impact_pct=parsed.price_impact_pct * 100,
            min_buy_amount=parsed.other_amount_threshold,
        )

    async def get_swap_instructions(
        self,
        route: JupiterRoute,
        user_public_key: str,
        slippage_bps: Optional[int] = None,
    ) -> JupiterSwapInstructions:
        """
        Fetch the raw instructions for a quoted route.

        Args:
            route: Route returned by get_quote
            user_public_key: Wallet that signs the bundle
            slippage_bps: Overrides the slippage the quote was taken with

        Returns:
            JupiterSwapInstructions ready to be bundled
        """
        quote_response = dict(route.quote_response)
        if slippage_bps is not None:
            quote_response["slippageBps"] = slippage_bps
            # Minimum out is recomputed from the new slippage
            out_amount = int(quote_response.get("outAmount", 0))
            quote_response["otherAmountThreshold"] = str(out_amount * (10_000 - slippage_bps) // 10_000)

        payload: Dict[str, Any] = {
            "quoteResponse": quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "useSharedAccounts": True,
            "useTokenLedger": False,
            "dynamicComputeUnitLimit": True,
        }
        if self.fee_account and self.platform_fee_bps:
            payload["feeAccount"] = self.fee_account

        try:
            response = await self._request("POST", "/swap-instructions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise JupiterSwapError(f"HTTP error: {e.response.status_code}")
        except (httpx.RequestError, ValueError) as e:
            raise JupiterSwapError(str(e))

        if "error" in data:
            raise JupiterSwapError(f"Jupiter swap error: {data['error']}")

        try:
            return JupiterSwapInstructions.model_validate(data)
        except ValidationError as e:
            raise JupiterSwapError(f"Malformed swap-instructions response: {e}")


__all__ = [
    "JupiterAccountMeta",
    "JupiterInstruction",
    "JupiterQuoteProvider",
    "JupiterQuoteResponse",
    "JupiterRoute",
    "JupiterSwapError",
    "JupiterSwapInstructions",
    "RoutePlanStep",
]
