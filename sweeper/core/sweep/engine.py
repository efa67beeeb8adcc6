"""
Sweep Engine

Drives one sweep through every stage:
Quote Batcher -> Plan Builder -> Executor (validate, isolate, submit,
retry) -> Result Aggregator.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from ...cache import Cache
from ...config import settings
from ...logging_config import sweep_log_context
from ...providers.base import QuoteProvider
from ..chains import is_solana_chain
from ..execution.surface import BalanceOracle, ExecutionSurface
from ..recovery.errors import ErrorKind
from .aggregator import ResultAggregator, no_quote_reason
from .executor import SweepExecutor
from .models import Plan, QuoteRequest, SweepReport
from .planner import PlanBuilder
from .quotes import QuoteBatcher
from .session import SessionPhase, SweepSession, TokenState

logger = logging.getLogger(__name__)


class SweepEngine:
    """
    Orchestrates sweeps on one chain.

    Usage:
        engine = SweepEngine(surface, provider, chain=8453, balance_oracle=oracle)
        session = SweepSession(tokens, output, chain=8453, owner=wallet)
        report = await engine.run(session)
    """

    def __init__(
        self,
        surface: ExecutionSurface,
        provider: QuoteProvider,
        *,
        chain: Union[int, str],
        balance_oracle: Optional[BalanceOracle] = None,
        cache: Optional[Cache] = None,
        batcher: Optional[QuoteBatcher] = None,
        planner: Optional[PlanBuilder] = None,
        executor: Optional[SweepExecutor] = None,
        aggregator: Optional[ResultAggregator] = None,
    ):
        self.surface = surface
        self.chain = chain
        self.batcher = batcher or QuoteBatcher(
            provider,
            # The batch swapper is the taker on EVM; Solana quotes ignore it
            taker=surface.spender or surface.owner,
            cache=cache,
            window_delay_ms=(
                settings.solana_quote_window_delay_ms
                if is_solana_chain(chain)
                else settings.quote_window_delay_ms
            ),
        )
        self.planner = planner or PlanBuilder(surface)
        self.executor = executor or SweepExecutor(
            surface,
            self.batcher,
            self.planner,
            balance_oracle=balance_oracle,
        )
        self.aggregator = aggregator or ResultAggregator()

    async def prepare(self, session: SweepSession) -> Plan:
        """Quote every token and build the plan. Nothing is signed."""
        session.set_phase(SessionPhase.QUOTING)
        requests = [
            QuoteRequest(token=token, amount=token.balance)
            for key, token in session.tokens.items()
            if not session.is_terminal(key)
        ]
        result = await self.batcher.fetch_quotes(requests, session.output)

        for failure in result.failures:
            session.quote_failures[failure.token.key] = failure
            session.fail(failure.token.key, no_quote_reason(failure.reason), ErrorKind.QUOTE_UNAVAILABLE)
        for key, quote in result.quotes.items():
            session.quotes[key] = quote
            session.transition(key, TokenState.QUOTED, f"{quote.price_impact_pct:.2f}% impact")

        session.set_phase(SessionPhase.PLANNING)
        plan = self.planner.build(
            session.quotes,
            [token for key, token in session.tokens.items() if not session.is_terminal(key)],
            force=session.force,
            overrides=session.overrides,
        )
        for rejection in plan.rejected:
            session.skip(rejection.token.key, rejection.reason, rejection.kind)
        for batch in plan.batches:
            for step in batch.steps:
                session.transition(step.key, TokenState.SELECTED)
                session.transition(step.key, TokenState.BATCHED, f"batch {batch.index + 1}")

        session.plan = plan
        return plan

    async def run(self, session: SweepSession) -> SweepReport:
        """Run the whole pipeline and return the reconciled report."""
        with sweep_log_context(session.session_id, session.chain):
            logger.info(f"Sweeping {len(session.tokens)} token(s) into {session.output.symbol}")
            plan = await self.prepare(session)

            if plan.batches:
                await self.executor.execute(session, plan)
            else:
                logger.info("Nothing to execute")

            return self.aggregator.reconcile(session)
