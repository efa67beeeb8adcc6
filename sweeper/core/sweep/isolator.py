"""
Problem Isolator

Exclusion search over a batch that failed its dry run: drop one member at a
time until what remains validates. Members whose removal fixes the batch are
quarantined for individual retry. When no single removal helps, every
remaining member is quarantined rather than searching deeper subsets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..execution.models import ResourceEstimate
from .models import SwapStep
from .validator import BatchValidator

logger = logging.getLogger(__name__)


@dataclass
class IsolationResult:
    """Validated core plus the steps excluded from it."""
    core: List[SwapStep] = field(default_factory=list)
    quarantined: List[SwapStep] = field(default_factory=list)
    estimate: Optional[ResourceEstimate] = None
    attempts: int = 0                           # Dry runs performed
    reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def conclusive(self) -> bool:
        return bool(self.core)


class ProblemIsolator:
    """
    Exclusion search. Each candidate removal is a separate dry run;
    candidates are evaluated concurrently and the lowest index that
    validates wins.
    """

    def __init__(self, validator: BatchValidator):
        self.validator = validator

    async def isolate(self, steps: Sequence[SwapStep]) -> IsolationResult:
        remaining = list(steps)
        result = IsolationResult()
        if not remaining:
            return result

        outcome = await self.validator.validate(remaining)
        result.attempts += 1
        if outcome.ok:
            result.core = remaining
            result.estimate = outcome.estimate
            return result

        for step in remaining:
            result.reasons[step.key] = outcome.error or "Validation failed"

        if len(remaining) == 1:
            result.quarantined = remaining
            return result

        # A sub-batch that validates after one removal is itself the core,
        # so the search never needs to descend further
        candidates = [remaining[:i] + remaining[i + 1:] for i in range(len(remaining))]
        outcomes = await self.validator.validate_many(candidates)
        result.attempts += len(candidates)

        fixed = next((i for i, o in enumerate(outcomes) if o.ok), None)
        if fixed is None:
            logger.info(f"Isolation inconclusive, quarantining {len(remaining)} step(s)")
            result.quarantined = remaining
            return result

        culprit = remaining[fixed]
        logger.info(f"Isolated {culprit.key}: {result.reasons[culprit.key]}")
        result.quarantined = [culprit]
        result.core = candidates[fixed]
        result.estimate = outcomes[fixed].estimate
        return result
