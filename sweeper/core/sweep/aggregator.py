"""
Result Aggregator

Reconciles per-token outcomes against the measured change in the output
asset's balance and emits the sweep report.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from ..recovery.errors import ErrorKind
from .models import SwapResult, SwapStatus, SweepReport
from .session import SessionPhase, SweepSession

logger = logging.getLogger(__name__)

NO_QUOTE_PREFIX = "No quote available"


def no_quote_reason(reason: str) -> str:
    if reason.startswith(NO_QUOTE_PREFIX):
        return reason
    return f"{NO_QUOTE_PREFIX}: {reason}"


def attribute_delta(quoted: Dict[str, int], delta: int) -> Dict[str, int]:
    """
    Split ``delta`` across tokens pro rata to their quoted output.

    Integer shares; the last token absorbs the rounding remainder so the
    shares sum to ``delta`` exactly.
    """
    if not quoted:
        return {}

    keys = list(quoted)
    total = sum(quoted.values())
    shares: Dict[str, int] = {}
    allocated = 0
    for key in keys[:-1]:
        share = delta * quoted[key] // total if total > 0 else delta // len(keys)
        shares[key] = share
        allocated += share
    shares[keys[-1]] = delta - allocated
    return shares


class ResultAggregator:
    """Builds the SweepReport from a finished session."""

    def reconcile(
        self,
        session: SweepSession,
        balance_before: Optional[int] = None,
        balance_after: Optional[int] = None,
    ) -> SweepReport:
        cancelled = session.phase == SessionPhase.CANCELLED
        session.set_phase(SessionPhase.RECONCILING)

        before = balance_before if balance_before is not None else session.balance_before
        after = balance_after if balance_after is not None else session.balance_after
        if before is None or after is None:
            before = after = before if before is not None else (after or 0)

        # Tokens that never received a terminal outcome (quote failures not
        # yet recorded by the driver) are reported as failed
        for key, failure in session.quote_failures.items():
            if key not in session.results:
                session.fail(key, no_quote_reason(failure.reason), ErrorKind.QUOTE_UNAVAILABLE)

        successes = {
            key: result.quoted_output or 0
            for key, result in session.results.items()
            if result.status == SwapStatus.SUCCESS
        }
        shares = attribute_delta(successes, after - before)

        results: List[SwapResult] = []
        for key in session.tokens:
            result = session.results.get(key)
            if result is None:
                logger.warning(f"{key} has no terminal outcome ({session.state_of(key).value})")
                continue
            if key in shares:
                realized = shares[key]
                result = replace(
                    result,
                    realized_output=realized,
                    realized_output_usd=session.output.to_usd(realized),
                )
            results.append(result)

        report = SweepReport(
            results=results,
            output_token=session.output.address,
            balance_before=before,
            balance_after=after,
            total_quoted_output=sum(successes.values()),
        )
        session.set_phase(SessionPhase.CANCELLED if cancelled else SessionPhase.COMPLETED)

        efficiency = report.efficiency
        logger.info(
            f"Sweep {session.session_id}: {report.count(SwapStatus.SUCCESS)} success, "
            f"{report.count(SwapStatus.FAILED)} failed, {report.count(SwapStatus.SKIPPED)} skipped"
            f"{f', efficiency {efficiency:.1%}' if efficiency is not None else ''}"
        )
        return report
