"""
Capability interfaces the sweep pipeline executes against.

The orchestration core only knows these interfaces; the EVM batch contract
and the Solana instruction bundle are adapters behind them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .models import ExecutionReceipt, ResourceEstimate

if TYPE_CHECKING:
    from ..sweep.models import Quote, SwapStep


class AuthorizationPrimitive(ABC):
    """Per (token, spender) spending permission."""

    @abstractmethod
    async def allowance(self, token: str, owner: str, spender: str) -> int:
        """Currently authorized amount."""

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int) -> str:
        """Raise (or reset) the allowance and wait for confirmation.

        Returns the receipt id. Raises AuthorizationFailure.
        """

    def requires_reset(self, token: str) -> bool:
        """Whether the token must be reset to zero before a non-zero allowance is raised."""
        return False

    async def ensure(self, token: str, owner: str, spender: str, required: int, raise_to: int) -> bool:
        """
        Make sure ``spender`` may move at least ``required`` of ``token``.

        Raises the allowance to ``raise_to`` when it is insufficient, resetting
        it to zero first for tokens that demand it. Returns True when an
        authorization operation was submitted.
        """
        current = await self.allowance(token, owner, spender)
        if current >= required:
            return False

        if current > 0 and self.requires_reset(token):
            await self.approve(token, spender, 0)
        await self.approve(token, spender, max(raise_to, required))
        return True


class BalanceOracle(ABC):
    """Reads balances of the output asset for reconciliation."""

    @abstractmethod
    async def balance_of(self, token: str, owner: str) -> int:
        """Balance in smallest units."""


class ExecutionSurface(ABC):
    """
    An atomic on-chain mechanism that performs several swaps all-or-nothing.

    ``validate`` and ``execute`` share semantics: a batch that validates is
    predicted to execute successfully.
    """

    name: str = "surface"

    #: Spender that must be authorized for input tokens, if any
    spender: Optional[str] = None

    #: Authorization primitive for chains that need one
    authorizer: Optional[AuthorizationPrimitive] = None

    @property
    @abstractmethod
    def capacity_limit(self) -> int:
        """Maximum number of swap steps in one atomic operation."""

    @property
    @abstractmethod
    def owner(self) -> str:
        """Wallet that signs, pays and receives the output."""

    @abstractmethod
    def encode_route(self, quote: "Quote") -> Any:
        """Serialize a quote's route into the payload this surface executes."""

    @abstractmethod
    async def validate(self, steps: Sequence["SwapStep"]) -> ResourceEstimate:
        """Non-mutating dry run. Raises ValidationFailure."""

    @abstractmethod
    async def execute(
        self,
        steps: Sequence["SwapStep"],
        estimate: ResourceEstimate,
        headroom_pct: int,
    ) -> ExecutionReceipt:
        """Sign, submit and confirm one atomic operation.

        Raises SubmissionError, OnChainRevertError, ConfirmationTimeoutError
        or UserCancelledError.
        """

    def begin_batch(self) -> None:
        """Called before each batch; surfaces drop per-batch memoized state here."""
