"""
Sweep Executor

Runs the plan batch by batch, strictly sequentially:

1. Authorize input tokens for the surface's spender
2. Re-quote when an authorization was submitted or a quote went stale
3. Dry-run the batch and isolate failing members
4. Honor cancellation (only before submission)
5. Submit the validated core with resource headroom and confirm it
6. Retry quarantined and submission-failed members one at a time with a
   boosted slippage bound
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple

from ...config import settings
from ..execution.models import ResourceEstimate
from ..execution.surface import BalanceOracle, ExecutionSurface
from ..recovery.errors import (
    AuthorizationFailure,
    ConfirmationTimeoutError,
    ErrorKind,
    OnChainRevertError,
    StaleQuoteError,
    SubmissionError,
    SweepError,
    UserCancelledError,
    classify_failure,
)
from .isolator import ProblemIsolator
from .models import ExecutionBatch, Plan, QuoteRequest, SwapStep
from .planner import PlanBuilder
from .quotes import QuoteBatcher
from .session import SessionPhase, SweepSession, TokenState
from .validator import BatchValidator

logger = logging.getLogger(__name__)

CANCELLED_REASON = "Cancelled by user"


@dataclass(frozen=True)
class ExecutorConfig:
    """Timing and headroom knobs of the executor."""
    quote_ttl_seconds: float = 30.0
    gas_headroom_pct: int = 30
    individual_headroom_pct: int = 50
    inter_batch_delay_ms: int = 500
    approval_multiplier: int = 10

    @classmethod
    def from_settings(cls) -> "ExecutorConfig":
        return cls(
            quote_ttl_seconds=settings.quote_ttl_seconds,
            gas_headroom_pct=settings.gas_headroom_pct,
            individual_headroom_pct=settings.individual_headroom_pct,
            inter_batch_delay_ms=settings.inter_batch_delay_ms,
            approval_multiplier=settings.approval_multiplier,
        )


class _Stop(Exception):
    """Internal: the user cancelled; no further batches run."""


class SweepExecutor:
    """
    Executes a plan against one surface, recording every outcome in the session.

    Usage:
        executor = SweepExecutor(surface, batcher, planner, balance_oracle=oracle)
        await executor.execute(session, plan)
    """

    def __init__(
        self,
        surface: ExecutionSurface,
        batcher: QuoteBatcher,
        planner: PlanBuilder,
        *,
        validator: Optional[BatchValidator] = None,
        isolator: Optional[ProblemIsolator] = None,
        balance_oracle: Optional[BalanceOracle] = None,
        config: Optional[ExecutorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.surface = surface
        self.batcher = batcher
        self.planner = planner
        self.validator = validator or BatchValidator(surface)
        self.isolator = isolator or ProblemIsolator(self.validator)
        self.balance_oracle = balance_oracle
        self.config = config or ExecutorConfig.from_settings()
        self.clock = clock

    async def execute(self, session: SweepSession, plan: Plan) -> None:
        session.set_phase(SessionPhase.EXECUTING)

        try:
            for position, batch in enumerate(plan.batches):
                logger.info(f"Batch {batch.index + 1}/{len(plan.batches)}: {len(batch)} step(s)")
                await self._run_batch(session, batch)

                if position < len(plan.batches) - 1 and self.config.inter_batch_delay_ms > 0:
                    await asyncio.sleep(self.config.inter_batch_delay_ms / 1000)
        except _Stop:
            skipped = session.skip_pending(CANCELLED_REASON, ErrorKind.USER_CANCELLED)
            logger.info(f"Sweep cancelled, {len(skipped)} token(s) skipped")
            session.set_phase(SessionPhase.CANCELLED)

        if session.submitted and session.balance_before is not None:
            session.balance_after = await self._read_output_balance(session)

    # ------------------------------------------------------------------
    # Batch pipeline
    # ------------------------------------------------------------------

    async def _run_batch(self, session: SweepSession, batch: ExecutionBatch) -> None:
        steps = [s for s in batch.steps if not session.is_terminal(s.key)]
        if not steps:
            return
        if session.is_cancelled:
            raise _Stop()

        self.surface.begin_batch()
        steps, authorized = await self._authorize(session, steps)
        steps = await self._refresh_if_stale(session, steps, authorized)
        if not steps:
            return

        isolation = await self.isolator.isolate(steps)
        for step in isolation.quarantined:
            session.transition(step.key, TokenState.QUARANTINED, isolation.reasons.get(step.key))
        for step in isolation.core:
            session.transition(step.key, TokenState.VALIDATED)

        if session.is_cancelled:
            raise _Stop()

        retry: List[SwapStep] = list(isolation.quarantined)
        if isolation.core:
            retry.extend(await self._submit_core(session, isolation.core, isolation.estimate))

        for step in retry:
            if session.is_cancelled:
                raise _Stop()
            await self._retry_individually(session, step)

    async def _authorize(self, session: SweepSession, steps: Sequence[SwapStep]) -> Tuple[List[SwapStep], bool]:
        """Ensure allowances, one token at a time. Returns the surviving steps and whether anything was submitted."""
        authorizer = self.surface.authorizer
        spender = self.surface.spender
        if authorizer is None or not spender:
            return list(steps), False

        kept: List[SwapStep] = []
        submitted = False
        for step in steps:
            balance = session.tokens[step.key].balance
            try:
                raised = await authorizer.ensure(
                    step.token_in,
                    self.surface.owner,
                    spender,
                    required=step.amount_in,
                    raise_to=balance * self.config.approval_multiplier,
                )
            except UserCancelledError:
                raise _Stop()
            except AuthorizationFailure as e:
                session.fail(step.key, f"Approval failed: {e.reason}", ErrorKind.AUTHORIZATION_FAILURE)
                continue
            except Exception as e:
                logger.warning(f"{step.key}: authorization check failed ({e})")
                session.fail(
                    step.key,
                    f"Approval failed: {classify_failure(e).reason}",
                    ErrorKind.AUTHORIZATION_FAILURE,
                )
                continue

            submitted = submitted or raised
            kept.append(step)

        return kept, submitted

    async def _refresh_if_stale(
        self,
        session: SweepSession,
        steps: Sequence[SwapStep],
        authorized: bool,
    ) -> List[SwapStep]:
        """Re-quote the batch when an authorization delay or age made its quotes stale."""
        now = self.clock()
        oldest = max((session.quotes[s.key].age(now) for s in steps if s.key in session.quotes), default=0.0)
        if not authorized and oldest <= self.config.quote_ttl_seconds:
            return list(steps)

        stale = StaleQuoteError(oldest)
        logger.info(f"Re-quoting {len(steps)} token(s): {'authorization submitted' if authorized else stale.reason}")

        requests = [QuoteRequest(token=session.tokens[s.key], amount=s.amount_in) for s in steps]
        fresh = await self.batcher.requote(requests, session.output)

        for failure in fresh.failures:
            session.fail(failure.token.key, f"Re-quote failed: {failure.reason}", ErrorKind.QUOTE_UNAVAILABLE)

        kept: List[SwapStep] = []
        for step in steps:
            quote = fresh.quotes.get(step.key)
            if quote is None:
                continue
            session.quotes[step.key] = quote

            error = self.planner.check_impact(quote, step.force)
            if error is not None:
                session.skip(step.key, error.reason, error.kind)
                continue
            kept.append(self.planner.build_step(quote, session.tokens[step.key], step.force))

        return kept

    async def _submit_core(
        self,
        session: SweepSession,
        core: Sequence[SwapStep],
        estimate: Optional[ResourceEstimate],
    ) -> List[SwapStep]:
        """Submit the validated core. Returns the members to retry individually."""
        await self._mark_first_submission(session)
        for step in core:
            session.transition(step.key, TokenState.EXECUTING)

        try:
            receipt = await self.surface.execute(core, estimate, self.config.gas_headroom_pct)
        except UserCancelledError:
            raise _Stop()
        except (OnChainRevertError, ConfirmationTimeoutError) as e:
            logger.warning(f"Batch of {len(core)} failed: {e.reason}")
            tx_hash = e.context.tx_hash
            for step in core:
                session.fail(step.key, e.reason, e.kind, receipt_id=tx_hash)
            return []
        except SubmissionError as e:
            logger.warning(f"Batch submission failed ({e.reason}), retrying {len(core)} token(s) individually")
            for step in core:
                session.transition(step.key, TokenState.RETRY_INDIVIDUALLY, e.reason)
            return list(core)

        for step in core:
            session.succeed(step.key, receipt_id=receipt.receipt_id)
        logger.info(f"Batch confirmed: {receipt.receipt_id}")
        return []

    async def _retry_individually(self, session: SweepSession, step: SwapStep) -> None:
        if session.state_of(step.key) == TokenState.QUARANTINED:
            session.transition(step.key, TokenState.RETRY_INDIVIDUALLY)

        boosted = replace(
            step,
            slippage_bps=self.planner.policy.bound(step.impact_bps, True),
            force=True,
        )
        outcome = await self.validator.validate([boosted])
        if not outcome.ok:
            session.fail(step.key, outcome.error or "Validation failed", ErrorKind.VALIDATION_FAILURE)
            return

        if session.is_cancelled:
            raise _Stop()

        await self._mark_first_submission(session)
        try:
            receipt = await self.surface.execute([boosted], outcome.estimate, self.config.individual_headroom_pct)
        except UserCancelledError:
            raise _Stop()
        except SweepError as e:
            session.fail(step.key, e.reason, e.kind, receipt_id=e.context.tx_hash)
            return

        session.succeed(step.key, receipt_id=receipt.receipt_id)

    # ------------------------------------------------------------------
    # Reconciliation hooks
    # ------------------------------------------------------------------

    async def _read_output_balance(self, session: SweepSession) -> Optional[int]:
        """Output balance of the owner, or None when it cannot be read."""
        if self.balance_oracle is None:
            return None
        try:
            return await self.balance_oracle.balance_of(session.output.address, self.surface.owner)
        except Exception as e:
            logger.warning(f"Could not read {session.output.symbol} balance: {e}")
            return None

    async def _mark_first_submission(self, session: SweepSession) -> None:
        # Must run before the first operation is sent
        if session.submitted:
            return
        session.balance_before = await self._read_output_balance(session)
        session.submitted = True
