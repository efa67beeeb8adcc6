"""
Slippage policy.

Maps a quote's price impact to the slippage bound the execution surface
enforces on-chain. The normal bound grows with impact but stays low; the
forced bound is deliberately permissive because the user acknowledged the
loss. Both are monotonic in impact and never tighter than
``impact + min_buffer_bps`` (short of the 100% ceiling).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from ...config import settings

MAX_BPS = 10_000


@dataclass(frozen=True)
class SlippagePolicy:
    """Constants of the slippage bound, in basis points."""
    min_buffer_bps: int = 30
    normal_cap_bps: int = 500
    impact_multiplier: float = 1.5
    force_floor_bps: int = 500
    force_buffer_bps: int = 1000
    force_cap_bps: int = 9900

    @classmethod
    def from_settings(cls) -> "SlippagePolicy":
        return cls(
            min_buffer_bps=settings.slippage_min_buffer_bps,
            normal_cap_bps=settings.slippage_normal_cap_bps,
            force_floor_bps=settings.slippage_force_floor_bps,
            force_buffer_bps=settings.slippage_force_buffer_bps,
            force_cap_bps=settings.slippage_force_cap_bps,
        )

    def bound(self, impact_bps: int, force: bool = False) -> int:
        impact = min(MAX_BPS, max(0, int(impact_bps)))

        if force:
            candidate = min(self.force_cap_bps, max(self.force_floor_bps, impact + self.force_buffer_bps))
        else:
            scaled = self.min_buffer_bps + math.ceil(impact * self.impact_multiplier)
            candidate = min(self.normal_cap_bps, max(self.min_buffer_bps, scaled))

        return min(MAX_BPS, max(candidate, impact + self.min_buffer_bps))


DEFAULT_POLICY = SlippagePolicy()


def slippage_bound(impact_bps: int, force: bool = False, policy: Optional[SlippagePolicy] = None) -> int:
    """Slippage bound in bps for a quote with ``impact_bps`` of price impact."""
    return (policy or DEFAULT_POLICY).bound(impact_bps, force)
