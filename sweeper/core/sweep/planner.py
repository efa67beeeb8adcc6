"""
Plan Builder

Selects quoted tokens whose impact is acceptable, assigns each a slippage
bound and partitions the resulting swap steps into capacity-bounded
execution batches in input order.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

from ...config import settings
from ..execution.surface import ExecutionSurface
from ..recovery.errors import ImpactTooHighError
from .models import ExecutionBatch, Plan, Quote, Rejection, SwapStep, TokenBalance, token_key
from .slippage import SlippagePolicy

logger = logging.getLogger(__name__)


class DuplicateStepError(ValueError):
    """A token would appear in more than one pending swap step."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Token {token} already has a pending swap step")


def is_forced(token: str, force: bool, overrides: Optional[Mapping[str, bool]] = None) -> bool:
    """Global force, or a per-token override."""
    return force or bool((overrides or {}).get(token_key(token), False))


class PlanBuilder:
    """
    Turns quotes into execution batches for one surface.

    Usage:
        builder = PlanBuilder(surface)
        plan = builder.build(quotes, balances, force=False, overrides={})
    """

    def __init__(
        self,
        surface: ExecutionSurface,
        *,
        threshold_pct: Optional[float] = None,
        min_value_usd: Optional[float] = None,
        policy: Optional[SlippagePolicy] = None,
    ):
        self.surface = surface
        self.threshold_pct = threshold_pct if threshold_pct is not None else settings.auto_select_impact_pct
        self.min_value_usd = min_value_usd if min_value_usd is not None else settings.min_value_usd
        self.policy = policy or SlippagePolicy.from_settings()

    def check_impact(self, quote: Quote, forced: bool) -> Optional[ImpactTooHighError]:
        """The rejection for a quote whose impact needs force, if any."""
        if forced or quote.price_impact_pct < self.threshold_pct:
            return None
        return ImpactTooHighError(quote.price_impact_pct, self.threshold_pct, token=quote.token_in)

    def build_step(self, quote: Quote, balance: TokenBalance, forced: bool) -> SwapStep:
        impact_bps = quote.impact_bps
        return SwapStep(
            token_in=quote.token_in,
            token_out=quote.token_out,
            amount_in=quote.amount_in,
            quoted_in=quote.quoted_in or quote.amount_in,
            quoted_out=quote.quoted_out,
            slippage_bps=self.policy.bound(impact_bps, forced),
            route=self.surface.encode_route(quote),
            use_all=quote.amount_in >= balance.balance,
            impact_bps=impact_bps,
            force=forced,
        )

    def partition(self, steps: Sequence[SwapStep]) -> List[ExecutionBatch]:
        """Split steps into batches of at most ``capacity_limit``, keeping order."""
        capacity = max(1, self.surface.capacity_limit)
        seen = set()
        for step in steps:
            if step.key in seen:
                raise DuplicateStepError(step.key)
            seen.add(step.key)

        return [
            ExecutionBatch(index=i, steps=tuple(steps[start:start + capacity]))
            for i, start in enumerate(range(0, len(steps), capacity))
        ]

    def build(
        self,
        quotes: Mapping[str, Quote],
        balances: Sequence[TokenBalance],
        force: bool = False,
        overrides: Optional[Mapping[str, bool]] = None,
    ) -> Plan:
        """
        Build the execution plan.

        Args:
            quotes: Quotes keyed by token (tokens without one are ignored)
            balances: Selected tokens, in the order they should execute
            force: Accept any impact for every token
            overrides: Per-token force flags

        Returns:
            Plan with batches and rejected tokens
        """
        steps: List[SwapStep] = []
        rejected: List[Rejection] = []

        for balance in balances:
            quote = quotes.get(balance.key)
            if quote is None:
                continue

            per_token = bool((overrides or {}).get(balance.key, False))
            forced = force or per_token

            if not per_token and quote.input_value_usd < self.min_value_usd:
                rejected.append(Rejection(token=balance, reason="below minimum value", kind=None))
                continue

            error = self.check_impact(quote, forced)
            if error is not None:
                rejected.append(Rejection(token=balance, reason=error.reason, kind=error.kind))
                continue

            steps.append(self.build_step(quote, balance, forced))

        batches = self.partition(steps)
        logger.info(
            f"Plan: {len(steps)} step(s) in {len(batches)} batch(es), {len(rejected)} rejected"
        )
        return Plan(batches=batches, rejected=rejected)
