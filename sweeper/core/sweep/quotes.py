"""
Quote Batcher

Fetches per-token quotes in fixed-size concurrent windows with a pause
between windows. Each quote is paired with a small-notional reference quote
of the same token so that price impact measures the loss against the
token's undistorted market rate rather than trusting the provider's own
estimate.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional, Sequence, Set, TypeVar, Union

import httpx

from ...cache import Cache, cache_key
from ...config import settings
from ...providers.base import ProviderQuote, QuoteParams, QuoteProvider
from ..recovery.errors import QuoteUnavailableError, SweepError
from .models import OutputAsset, Quote, QuoteBatchResult, QuoteFailure, QuoteRequest, TokenBalance, token_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_windowed(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    window_size: int,
    delay_ms: int,
    label: str = "items",
) -> List[R]:
    """
    Run ``worker`` over ``items`` in windows of ``window_size``.

    Calls inside a window run concurrently; a window fully settles before
    the next starts, with ``delay_ms`` between windows. Results keep input
    order.
    """
    results: List[R] = []
    if not items:
        return results

    window_size = max(1, window_size)
    semaphore = asyncio.Semaphore(window_size)
    total_windows = math.ceil(len(items) / window_size)

    async def bounded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    for start in range(0, len(items), window_size):
        window = items[start:start + window_size]
        window_num = start // window_size + 1
        logger.debug(f"Fetching {label} window {window_num}/{total_windows} ({len(window)})")

        results.extend(await asyncio.gather(*(bounded(item) for item in window)))

        if start + window_size < len(items) and delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    return results


class QuoteBatcher:
    """
    Prices tokens against one output asset.

    Usage:
        batcher = QuoteBatcher(provider, taker=swapper_address, cache=TTLCache())
        result = await batcher.fetch_quotes(requests, output)
    """

    def __init__(
        self,
        provider: QuoteProvider,
        *,
        taker: str,
        cache: Optional[Cache] = None,
        window_size: Optional[int] = None,
        window_delay_ms: Optional[int] = None,
        reference_notional_usd: Optional[float] = None,
        fallback_impact_pct: Optional[float] = None,
        reference_cache_ttl: Optional[int] = None,
        probe_window_size: Optional[int] = None,
        probe_window_delay_ms: Optional[int] = None,
        quote_slippage_bps: Optional[int] = None,
    ):
        self.provider = provider
        self.taker = taker
        self.cache = cache
        self.window_size = window_size or settings.quote_window_size
        self.window_delay_ms = (
            window_delay_ms if window_delay_ms is not None else settings.quote_window_delay_ms
        )
        self.reference_notional_usd = reference_notional_usd or settings.reference_notional_usd
        self.fallback_impact_pct = (
            fallback_impact_pct if fallback_impact_pct is not None else settings.fallback_impact_pct
        )
        self.reference_cache_ttl = reference_cache_ttl or settings.reference_cache_ttl_seconds
        self.probe_window_size = probe_window_size or settings.probe_window_size
        self.probe_window_delay_ms = (
            probe_window_delay_ms if probe_window_delay_ms is not None else settings.probe_window_delay_ms
        )
        self.quote_slippage_bps = quote_slippage_bps or settings.slippage_min_buffer_bps

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _provider_quote(self, token: TokenBalance, output: OutputAsset, amount: int) -> ProviderQuote:
        params = QuoteParams(
            sell_token=token.address,
            buy_token=output.address,
            sell_amount=amount,
            taker=self.taker,
            slippage_bps=self.quote_slippage_bps,
        )
        try:
            quote = await self.provider.get_quote(params)
        except httpx.HTTPError as e:
            raise QuoteUnavailableError(f"Quote request failed: {e}", token=token.address) from e

        if quote.buy_amount <= 0:
            raise QuoteUnavailableError("No liquidity available", token=token.address)
        return quote

    def reference_amount(self, token: TokenBalance, amount: int) -> int:
        """Small notional used to read the market rate, in smallest units."""
        if token.price_usd > 0:
            whole_tokens = max(1, math.ceil(self.reference_notional_usd / token.price_usd))
        else:
            whole_tokens = 1
        return max(1, min(amount, whole_tokens * 10 ** token.decimals))

    async def reference_rate(self, token: TokenBalance, output: OutputAsset, amount: int) -> Optional[float]:
        """
        Output units received per input unit for a small trade.

        Returns None when the reference quote fails. Rates are memoized in
        the injected cache.
        """
        key = cache_key("ref", token.key, output.key)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return cached

        ref_amount = self.reference_amount(token, amount)
        try:
            ref = await self._provider_quote(token, output, ref_amount)
        except SweepError as e:
            logger.warning(f"{token.symbol}: reference quote failed ({e.reason})")
            return None

        rate = ref.buy_amount / (ref.sell_amount or ref_amount)
        if self.cache is not None:
            await self.cache.set(key, rate, ttl=self.reference_cache_ttl)
        return rate

    async def quote(self, request: QuoteRequest, output: OutputAsset) -> Quote:
        """Quote one request and measure its price impact. Raises QuoteUnavailableError."""
        token = request.token
        main = await self._provider_quote(token, output, request.amount)
        output_value = output.to_usd(main.buy_amount)

        rate = await self.reference_rate(token, output, request.amount)
        if rate is not None:
            input_value = output.to_usd(int(request.amount * rate))
            impact = max(0.0, (input_value - output_value) / input_value * 100) if input_value > 0 else 0.0
            source = "reference"
        elif main.price_impact_pct is not None:
            impact = max(0.0, main.price_impact_pct)
            input_value = output_value / (1 - impact / 100) if impact < 100 else output_value
            source = "provider"
        else:
            logger.warning(f"{token.symbol}: no market rate, assuming {self.fallback_impact_pct}% impact")
            input_value = output_value
            impact = self.fallback_impact_pct
            source = "fallback"

        return Quote(
            token_in=token.address,
            token_out=output.address,
            amount_in=request.amount,
            quoted_in=main.sell_amount,
            quoted_out=main.buy_amount,
            price_impact_pct=impact,
            route=main.route,
            input_value_usd=input_value,
            output_value_usd=output_value,
            provider=main.provider,
            impact_source=source,
            created_at=time.monotonic(),
        )

    # ------------------------------------------------------------------
    # Batched operations
    # ------------------------------------------------------------------

    async def fetch_quotes(
        self,
        requests: Sequence[QuoteRequest],
        output: OutputAsset,
        *,
        window_delay_ms: Optional[int] = None,
    ) -> QuoteBatchResult:
        """
        Quote every request. Failures are recorded, never retried inline.

        Args:
            requests: Tokens and the amounts to sell
            output: Asset every token is sold into
            window_delay_ms: Overrides the pause between windows

        Returns:
            QuoteBatchResult with quotes keyed by token and the failures
        """

        async def worker(request: QuoteRequest) -> Union[Quote, QuoteFailure]:
            try:
                return await self.quote(request, output)
            except SweepError as e:
                logger.warning(f"{request.token.symbol}: quote failed ({e.reason})")
                return QuoteFailure(token=request.token, reason=e.reason)

        outcomes = await run_windowed(
            list(requests),
            worker,
            window_size=self.window_size,
            delay_ms=self.window_delay_ms if window_delay_ms is None else window_delay_ms,
            label="quote",
        )

        result = QuoteBatchResult()
        for outcome in outcomes:
            if isinstance(outcome, QuoteFailure):
                result.failures.append(outcome)
            else:
                result.quotes[outcome.key] = outcome

        logger.info(f"Quoted {len(result.quotes)}/{len(requests)} tokens ({len(result.failures)} failed)")
        return result

    async def requote(
        self,
        requests: Sequence[QuoteRequest],
        output: OutputAsset,
        delay_ms: Optional[int] = None,
    ) -> QuoteBatchResult:
        """Refresh stale quotes before they are committed to a batch."""
        return await self.fetch_quotes(
            requests,
            output,
            window_delay_ms=settings.requote_delay_ms if delay_ms is None else delay_ms,
        )

    async def probe_tradeable(
        self,
        tokens: Sequence[TokenBalance],
        output: OutputAsset,
        known_tradeable: Optional[Set[str]] = None,
    ) -> List[TokenBalance]:
        """
        Mark each token tradeable when its full balance gets a positive quote.

        Tokens in ``known_tradeable`` (or cached from an earlier probe) skip
        the provider call. Returns new TokenBalance instances in input order.
        """
        known = {token_key(k) for k in (known_tradeable or set())}

        async def worker(token: TokenBalance) -> TokenBalance:
            if token.key in known:
                return replace(token, tradeable=True, trade_error=None)

            key = cache_key("probe", token.key, output.key)
            if self.cache is not None:
                cached = await self.cache.get(key)
                if cached is not None:
                    return replace(token, tradeable=cached[0], trade_error=cached[1])

            try:
                await self._provider_quote(token, output, token.balance)
                verdict = (True, None)
            except SweepError as e:
                verdict = (False, e.reason)

            if self.cache is not None:
                await self.cache.set(key, verdict)
            return replace(token, tradeable=verdict[0], trade_error=verdict[1])

        probed = await run_windowed(
            list(tokens),
            worker,
            window_size=self.probe_window_size,
            delay_ms=self.probe_window_delay_ms,
            label="probe",
        )
        logger.info(f"Probe: {sum(1 for t in probed if t.tradeable)}/{len(probed)} tokens tradeable")
        return probed
