"""
Tests for the Jupiter quote and swap-instructions provider.
"""

import json

import httpx
import pytest

from sweeper.core.chains import SOLANA_USDC_MINT
from sweeper.core.recovery.errors import QuoteUnavailableError
from sweeper.providers.base import QuoteParams
from sweeper.providers.jupiter import JupiterQuoteProvider, JupiterRoute, JupiterSwapError

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
WALLET = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"

QUOTE_BODY = {
    "inputMint": BONK,
    "outputMint": SOLANA_USDC_MINT,
    "inAmount": "1000000000",
    "outAmount": "24000",
    "otherAmountThreshold": "23880",
    "swapMode": "ExactIn",
    "slippageBps": 50,
    "priceImpactPct": "0.0125",
    "routePlan": [{"swapInfo": {"ammKey": "abc", "label": "Raydium"}, "percent": 100}],
    "contextSlot": 123,
}

INSTRUCTIONS_BODY = {
    "computeBudgetInstructions": [],
    "setupInstructions": [
        {"programId": "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL", "accounts": [], "data": ""},
    ],
    "swapInstruction": {
        "programId": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
        "accounts": [{"pubkey": WALLET, "isSigner": True, "isWritable": True}],
        "data": "AQID",
    },
    "cleanupInstruction": {"programId": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA", "accounts": [], "data": ""},
    "addressLookupTableAddresses": ["GxS6FiQ3mNnAar9HGQ6mxP7t6FcwmHkU7peSeQDUHmpN"],
}


def make_provider(handler, **kwargs) -> JupiterQuoteProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JupiterQuoteProvider(base_url="https://jup.test/swap/v1", client=client, **kwargs)


def params() -> QuoteParams:
    return QuoteParams(sell_token=BONK, buy_token=SOLANA_USDC_MINT, sell_amount=10**9, taker=WALLET, slippage_bps=50)


# =============================================================================
# Quotes
# =============================================================================

class TestQuote:
    @pytest.mark.asyncio
    async def test_parses_quote(self):
        provider = make_provider(lambda request: httpx.Response(200, json=QUOTE_BODY))

        quote = await provider.get_quote(params())

        assert quote.sell_amount == 10**9
        assert quote.buy_amount == 24_000
        assert quote.min_buy_amount == 23_880
        # Reported as a fraction
        assert quote.price_impact_pct == pytest.approx(1.25)
        assert isinstance(quote.route, JupiterRoute)
        assert quote.route.quote_response["contextSlot"] == 123

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=QUOTE_BODY)

        await make_provider(handler).get_quote(params())

        assert seen[0].url.path == "/swap/v1/quote"
        assert seen[0].url.params["amount"] == str(10**9)
        assert seen[0].url.params["swapMode"] == "ExactIn"
        assert "platformFeeBps" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_no_route(self):
        provider = make_provider(
            lambda request: httpx.Response(400, json={"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"})
        )

        with pytest.raises(QuoteUnavailableError) as exc:
            await provider.get_quote(params())

        assert exc.value.reason == "Jupiter error 400: Could not find any route"

    @pytest.mark.asyncio
    async def test_error_in_ok_response(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"error": "Token not tradable"}))

        with pytest.raises(QuoteUnavailableError) as exc:
            await provider.get_quote(params())

        assert exc.value.reason == "Jupiter quote error: Token not tradable"

    @pytest.mark.asyncio
    async def test_zero_output(self):
        body = dict(QUOTE_BODY, outAmount="0")
        provider = make_provider(lambda request: httpx.Response(200, json=body))

        with pytest.raises(QuoteUnavailableError) as exc:
            await provider.get_quote(params())

        assert exc.value.reason == "No liquidity available"

    @pytest.mark.asyncio
    async def test_malformed(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"inputMint": BONK}))

        with pytest.raises(QuoteUnavailableError) as exc:
            await provider.get_quote(params())

        assert exc.value.reason.startswith("Malformed Jupiter response")


# =============================================================================
# Swap instructions
# =============================================================================

class TestSwapInstructions:
    @pytest.mark.asyncio
    async def test_ordered_instructions(self):
        provider = make_provider(lambda request: httpx.Response(200, json=INSTRUCTIONS_BODY))

        instructions = await provider.get_swap_instructions(JupiterRoute(quote_response=QUOTE_BODY), WALLET)

        ordered = instructions.ordered()
        assert [ix.program_id for ix in ordered] == [
            "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
            "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
            "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        ]
        assert ordered[1].accounts[0].is_signer is True
        assert instructions.address_lookup_table_addresses == ["GxS6FiQ3mNnAar9HGQ6mxP7t6FcwmHkU7peSeQDUHmpN"]

    @pytest.mark.asyncio
    async def test_slippage_override_recomputes_minimum(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=INSTRUCTIONS_BODY)

        provider = make_provider(handler)
        await provider.get_swap_instructions(JupiterRoute(quote_response=QUOTE_BODY), WALLET, slippage_bps=1000)

        payload = seen[0]
        assert payload["userPublicKey"] == WALLET
        assert payload["quoteResponse"]["slippageBps"] == 1000
        assert payload["quoteResponse"]["otherAmountThreshold"] == "21600"
        # The stored route is not mutated
        assert QUOTE_BODY["slippageBps"] == 50

    @pytest.mark.asyncio
    async def test_http_error(self):
        provider = make_provider(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(JupiterSwapError, match="HTTP error: 500"):
            await provider.get_swap_instructions(JupiterRoute(quote_response=QUOTE_BODY), WALLET)

    @pytest.mark.asyncio
    async def test_error_payload(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"error": "Simulation failed"}))

        with pytest.raises(JupiterSwapError, match="Simulation failed"):
            await provider.get_swap_instructions(JupiterRoute(quote_response=QUOTE_BODY), WALLET)

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"setupInstructions": []}))

        with pytest.raises(JupiterSwapError, match="Malformed"):
            await provider.get_swap_instructions(JupiterRoute(quote_response=QUOTE_BODY), WALLET)
