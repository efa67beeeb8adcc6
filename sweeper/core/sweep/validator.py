"""
Batch Validator

Non-mutating dry run of a batch through the execution surface. A batch that
fails here is never submitted as-is: it goes to the problem isolator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ...config import settings
from ..execution.models import ResourceEstimate
from ..execution.surface import ExecutionSurface
from ..recovery.errors import ValidationFailure
from .models import SwapStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of one dry run."""
    ok: bool
    estimate: Optional[ResourceEstimate] = None
    error: Optional[str] = None


class BatchValidator:
    """Dry-runs batches, optionally several at once."""

    def __init__(self, surface: ExecutionSurface, concurrency: Optional[int] = None):
        self.surface = surface
        self.concurrency = concurrency or settings.validation_concurrency

    async def validate(self, steps: Sequence[SwapStep]) -> ValidationOutcome:
        if not steps:
            return ValidationOutcome(ok=False, error="Empty batch")
        try:
            estimate = await self.surface.validate(steps)
        except ValidationFailure as e:
            logger.debug(f"Dry run of {len(steps)} step(s) failed: {e.reason}")
            return ValidationOutcome(ok=False, error=e.reason)
        return ValidationOutcome(ok=True, estimate=estimate)

    async def validate_many(self, candidates: Sequence[Sequence[SwapStep]]) -> List[ValidationOutcome]:
        """Dry-run several candidate batches concurrently. Outcomes keep input order."""
        semaphore = asyncio.Semaphore(max(1, self.concurrency))

        async def bounded(steps: Sequence[SwapStep]) -> ValidationOutcome:
            async with semaphore:
                return await self.validate(steps)

        return list(await asyncio.gather(*(bounded(c) for c in candidates)))
