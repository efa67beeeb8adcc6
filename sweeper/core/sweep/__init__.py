"""
Batch Swap Orchestration

Turns a list of tokens to sell into atomic on-chain batches:
- QuoteBatcher: windowed quotes with reference-rate price impact
- PlanBuilder: selection, slippage bounds and capacity-bounded batches
- BatchValidator / ProblemIsolator: dry runs and exclusion search
- SweepExecutor: authorization, re-quote, submission and individual retry
- ResultAggregator: reconciled per-token report
- SweepEngine: runs the whole pipeline for one SweepSession

Usage:
    from sweeper.core.sweep import SweepEngine, SweepSession

    session = SweepSession(tokens, output, chain=8453, owner=wallet)
    report = await SweepEngine(surface, provider, chain=8453).run(session)
"""

from .models import (
    ExecutionBatch,
    OutputAsset,
    Plan,
    Quote,
    QuoteBatchResult,
    QuoteFailure,
    QuoteRequest,
    Rejection,
    StepKind,
    SwapResult,
    SwapStatus,
    SwapStep,
    SweepReport,
    TokenBalance,
    impact_pct_to_bps,
    token_key,
)

from .slippage import (
    SlippagePolicy,
    slippage_bound,
)

from .session import (
    CancelToken,
    InvalidTransitionError,
    PhaseChange,
    SessionPhase,
    SweepSession,
    TokenState,
    TokenTransition,
)

from .quotes import QuoteBatcher
from .planner import DuplicateStepError, PlanBuilder
from .validator import BatchValidator, ValidationOutcome
from .isolator import IsolationResult, ProblemIsolator
from .executor import ExecutorConfig, SweepExecutor
from .aggregator import ResultAggregator
from .engine import SweepEngine

__all__ = [
    # Models
    "ExecutionBatch",
    "OutputAsset",
    "Plan",
    "Quote",
    "QuoteBatchResult",
    "QuoteFailure",
    "QuoteRequest",
    "Rejection",
    "StepKind",
    "SwapResult",
    "SwapStatus",
    "SwapStep",
    "SweepReport",
    "TokenBalance",
    "impact_pct_to_bps",
    "token_key",
    # Slippage
    "SlippagePolicy",
    "slippage_bound",
    # Session
    "CancelToken",
    "InvalidTransitionError",
    "PhaseChange",
    "SessionPhase",
    "SweepSession",
    "TokenState",
    "TokenTransition",
    # Pipeline
    "QuoteBatcher",
    "DuplicateStepError",
    "PlanBuilder",
    "BatchValidator",
    "ValidationOutcome",
    "IsolationResult",
    "ProblemIsolator",
    "ExecutorConfig",
    "SweepExecutor",
    "ResultAggregator",
    "SweepEngine",
]
