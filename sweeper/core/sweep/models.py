"""
Sweep data models.

Balances, quotes, swap steps, execution batches and per-token results.
Everything a sweep commits to is frozen; the session owns the only mutable
state.
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from ..recovery.errors import ErrorKind


def token_key(address: str) -> str:
    """Canonical identifier: EVM addresses are case-insensitive, Solana mints are not."""
    return address.lower() if address.startswith("0x") else address


def impact_pct_to_bps(impact_pct: float) -> int:
    """Convert a price-impact percentage to whole basis points, rounding up."""
    if impact_pct <= 0:
        return 0
    return int(math.ceil(round(impact_pct * 100, 6)))


class SwapStatus(str, Enum):
    """Terminal per-token outcome of a sweep."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepKind(IntEnum):
    """Swap step kinds understood by the batch swapper contract."""
    AGGREGATOR = 2


@dataclass(frozen=True)
class TokenBalance:
    """A token held by the wallet, as reported by discovery."""
    address: str                                # Contract address or mint (base58)
    symbol: str
    decimals: int
    balance: int                                # Smallest units
    price_usd: float = 0.0
    name: str = ""
    tradeable: Optional[bool] = None            # None until probed
    trade_error: Optional[str] = None

    @property
    def key(self) -> str:
        return token_key(self.address)

    @property
    def value_usd(self) -> float:
        return self.balance / (10 ** self.decimals) * self.price_usd


@dataclass(frozen=True)
class OutputAsset:
    """The asset every swap in a sweep converts into."""
    address: str
    symbol: str
    decimals: int
    price_usd: float = 1.0

    @property
    def key(self) -> str:
        return token_key(self.address)

    def to_usd(self, amount: int) -> float:
        return amount / (10 ** self.decimals) * self.price_usd


@dataclass(frozen=True)
class QuoteRequest:
    """A token and the amount of it to sell."""
    token: TokenBalance
    amount: int


@dataclass(frozen=True)
class Quote:
    """A priced route for selling one token into the output asset."""
    token_in: str
    token_out: str
    amount_in: int
    quoted_out: int
    price_impact_pct: float
    route: Any                                  # Provider-specific route payload
    quoted_in: int = 0                          # Amount the provider actually priced
    input_value_usd: float = 0.0
    output_value_usd: float = 0.0
    provider: str = ""
    impact_source: str = "provider"             # "reference", "provider" or "fallback"
    created_at: float = field(default_factory=time.monotonic)

    @property
    def key(self) -> str:
        return token_key(self.token_in)

    @property
    def impact_bps(self) -> int:
        return impact_pct_to_bps(self.price_impact_pct)

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.created_at


@dataclass(frozen=True)
class QuoteFailure:
    """A token that could not be priced this round."""
    token: TokenBalance
    reason: str
    kind: ErrorKind = ErrorKind.QUOTE_UNAVAILABLE


@dataclass
class QuoteBatchResult:
    """Quotes keyed by token plus the tokens that failed to quote."""
    quotes: Dict[str, Quote] = field(default_factory=dict)
    failures: List[QuoteFailure] = field(default_factory=list)


@dataclass(frozen=True)
class SwapStep:
    """The unit of execution: one token sold inside an atomic operation."""
    token_in: str
    token_out: str
    amount_in: int
    quoted_in: int
    quoted_out: int
    slippage_bps: int
    route: Any                                  # Serialized for the execution surface
    use_all: bool = False
    impact_bps: int = 0
    force: bool = False
    kind: StepKind = StepKind.AGGREGATOR

    @property
    def key(self) -> str:
        return token_key(self.token_in)

    @property
    def min_out(self) -> int:
        return self.quoted_out * (10_000 - self.slippage_bps) // 10_000


@dataclass(frozen=True)
class ExecutionBatch:
    """An ordered, capacity-bounded group of steps for one atomic operation."""
    index: int
    steps: Tuple[SwapStep, ...]

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def keys(self) -> List[str]:
        return [step.key for step in self.steps]


@dataclass(frozen=True)
class Rejection:
    """A quoted token the plan builder declined to schedule."""
    token: TokenBalance
    reason: str
    kind: Optional[ErrorKind] = ErrorKind.IMPACT_TOO_HIGH


@dataclass
class Plan:
    """Execution batches in submission order plus rejected tokens."""
    batches: List[ExecutionBatch] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    @property
    def steps(self) -> List[SwapStep]:
        return [step for batch in self.batches for step in batch.steps]


@dataclass(frozen=True)
class SwapResult:
    """Terminal outcome for one originally selected token."""
    token: str
    symbol: str
    status: SwapStatus
    input_value_usd: float = 0.0
    quoted_output_usd: float = 0.0
    quoted_output: Optional[int] = None
    realized_output: Optional[int] = None
    realized_output_usd: Optional[float] = None
    error_kind: Optional[ErrorKind] = None
    reason: Optional[str] = None
    receipt_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data


@dataclass
class SweepReport:
    """Reconciled outcome of a sweep."""
    results: List[SwapResult]
    output_token: str
    balance_before: int
    balance_after: int
    total_quoted_output: int = 0

    @property
    def realized_delta(self) -> int:
        return self.balance_after - self.balance_before

    @property
    def efficiency(self) -> Optional[float]:
        """Realized over quoted output for the successful swaps."""
        if self.total_quoted_output <= 0:
            return None
        return self.realized_delta / self.total_quoted_output

    def count(self, status: SwapStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def by_token(self) -> Dict[str, SwapResult]:
        return {token_key(r.token): r for r in self.results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_token": self.output_token,
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "realized_delta": str(self.realized_delta),
            "total_quoted_output": str(self.total_quoted_output),
            "efficiency": self.efficiency,
            "success": self.count(SwapStatus.SUCCESS),
            "failed": self.count(SwapStatus.FAILED),
            "skipped": self.count(SwapStatus.SKIPPED),
            "results": [r.to_dict() for r in self.results],
        }
