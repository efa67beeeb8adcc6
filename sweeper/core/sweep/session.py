"""
Sweep Session

Aggregate root of one user-initiated sweep: the selected tokens, the output
asset, quotes, the execution plan, per-token state and terminal results.
Pipeline stages advance it; observers subscribe to its transitions.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

from ..recovery.errors import ErrorKind
from .models import (
    OutputAsset,
    Plan,
    Quote,
    QuoteFailure,
    SwapResult,
    SwapStatus,
    TokenBalance,
    token_key,
)

logger = logging.getLogger(__name__)


class TokenState(str, Enum):
    """Lifecycle of one token within a sweep."""
    DISCOVERED = "discovered"
    QUOTED = "quoted"
    SELECTED = "selected"
    REJECTED = "rejected"
    BATCHED = "batched"
    VALIDATED = "validated"
    QUARANTINED = "quarantined"
    EXECUTING = "executing"
    RETRY_INDIVIDUALLY = "retry_individually"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


OUTPUT_ASSET_REASON = "Already the output asset"

TERMINAL_STATES: Set[TokenState] = {TokenState.SUCCESS, TokenState.FAILED, TokenState.SKIPPED}

# Terminal state -> reported status
STATUS_FOR_STATE: Dict[TokenState, SwapStatus] = {
    TokenState.SUCCESS: SwapStatus.SUCCESS,
    TokenState.FAILED: SwapStatus.FAILED,
    TokenState.SKIPPED: SwapStatus.SKIPPED,
}


class SessionPhase(str, Enum):
    """Pipeline stage the session is in."""
    CREATED = "created"
    QUOTING = "quoting"
    PLANNING = "planning"
    EXECUTING = "executing"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InvalidTransitionError(Exception):
    """Raised when an invalid token state transition is attempted."""

    def __init__(self, token: str, from_state: TokenState, to_state: TokenState):
        self.token = token
        self.from_state = from_state
        self.to_state = to_state
        self.message = f"Cannot transition {token} from {from_state.value} to {to_state.value}"
        super().__init__(self.message)


@dataclass(frozen=True)
class TokenTransition:
    """Record of a token state change."""
    token: str
    from_state: TokenState
    to_state: TokenState
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PhaseChange:
    """Record of a session phase change."""
    from_phase: SessionPhase
    to_phase: SessionPhase
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


SessionEvent = Union[TokenTransition, PhaseChange]
SessionCallback = Callable[[SessionEvent], None]


class CancelToken:
    """Cooperative cancellation, honored before each batch submission."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class SweepSession:
    """
    State of one sweep, threaded through every pipeline stage.

    Token state changes are validated against ``TRANSITIONS``; terminal
    results are recorded once and never overwritten.
    """

    TRANSITIONS: Dict[TokenState, Set[TokenState]] = {
        TokenState.DISCOVERED: {
            TokenState.QUOTED,
            TokenState.FAILED,      # No quote
            TokenState.SKIPPED,
        },
        TokenState.QUOTED: {
            TokenState.SELECTED,
            TokenState.REJECTED,
            TokenState.FAILED,
            TokenState.SKIPPED,
        },
        TokenState.SELECTED: {
            TokenState.BATCHED,
            TokenState.FAILED,
            TokenState.SKIPPED,
        },
        TokenState.REJECTED: {
            TokenState.SKIPPED,
        },
        TokenState.BATCHED: {
            TokenState.VALIDATED,
            TokenState.QUARANTINED,
            TokenState.FAILED,      # Authorization or re-quote failure
            TokenState.SKIPPED,     # Cancelled or re-quote impact too high
        },
        TokenState.VALIDATED: {
            TokenState.EXECUTING,
            TokenState.FAILED,
            TokenState.SKIPPED,
        },
        TokenState.EXECUTING: {
            TokenState.SUCCESS,
            TokenState.FAILED,      # Revert or confirmation timeout
            TokenState.RETRY_INDIVIDUALLY,  # Submission error
            TokenState.SKIPPED,     # Signature rejected
        },
        TokenState.QUARANTINED: {
            TokenState.RETRY_INDIVIDUALLY,
            TokenState.FAILED,
            TokenState.SKIPPED,
        },
        TokenState.RETRY_INDIVIDUALLY: {
            TokenState.SUCCESS,
            TokenState.FAILED,
            TokenState.SKIPPED,
        },
        TokenState.SUCCESS: set(),
        TokenState.FAILED: set(),
        TokenState.SKIPPED: set(),
    }

    def __init__(
        self,
        tokens: Sequence[TokenBalance],
        output: OutputAsset,
        chain: Union[int, str],
        *,
        owner: str = "",
        force: bool = False,
        overrides: Optional[Dict[str, bool]] = None,
        session_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.session_id = session_id or f"sweep_{secrets.token_hex(8)}"
        self.output = output
        self.chain = chain
        self.owner = owner
        self.force = force
        self.overrides: Dict[str, bool] = {token_key(k): v for k, v in (overrides or {}).items()}
        self.cancel_token = cancel_token or CancelToken()

        self.tokens: Dict[str, TokenBalance] = {}
        for token in tokens:
            self.tokens.setdefault(token.key, token)

        self.states: Dict[str, TokenState] = {key: TokenState.DISCOVERED for key in self.tokens}
        self.quotes: Dict[str, Quote] = {}
        self.quote_failures: Dict[str, QuoteFailure] = {}
        self.plan: Optional[Plan] = None
        self.results: Dict[str, SwapResult] = {}
        self.transitions: List[TokenTransition] = []
        self.phase = SessionPhase.CREATED
        self.balance_before: Optional[int] = None
        self.balance_after: Optional[int] = None
        self.submitted = False                  # Anything sent on-chain yet

        self._subscribers: List[SessionCallback] = []

        # Selling the output asset into itself is a no-op
        if output.key in self.tokens:
            self.skip(output.key, OUTPUT_ASSET_REASON)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        """Register a callback for every transition and phase change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: SessionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Session subscriber error: {e}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def state_of(self, token: str) -> TokenState:
        return self.states[token_key(token)]

    def is_terminal(self, token: str) -> bool:
        return self.state_of(token) in TERMINAL_STATES

    @property
    def pending(self) -> List[str]:
        return [key for key, state in self.states.items() if state not in TERMINAL_STATES]

    def set_phase(self, phase: SessionPhase) -> None:
        if phase == self.phase:
            return
        change = PhaseChange(from_phase=self.phase, to_phase=phase)
        self.phase = phase
        logger.info(f"Sweep {self.session_id}: {change.from_phase.value} -> {phase.value}")
        self._notify(change)

    def transition(self, token: str, to_state: TokenState, reason: Optional[str] = None) -> TokenTransition:
        key = token_key(token)
        from_state = self.states[key]
        if to_state not in self.TRANSITIONS[from_state]:
            raise InvalidTransitionError(key, from_state, to_state)

        record = TokenTransition(token=key, from_state=from_state, to_state=to_state, reason=reason)
        self.states[key] = to_state
        self.transitions.append(record)
        logger.debug(
            f"{key}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        self._notify(record)
        return record

    # ------------------------------------------------------------------
    # Terminal outcomes
    # ------------------------------------------------------------------

    def _finish(
        self,
        token: str,
        state: TokenState,
        *,
        reason: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
        receipt_id: Optional[str] = None,
    ) -> SwapResult:
        key = token_key(token)
        if key in self.results:
            raise ValueError(f"Result for {key} already recorded")

        self.transition(key, state, reason)

        balance = self.tokens[key]
        quote = self.quotes.get(key)
        result = SwapResult(
            token=balance.address,
            symbol=balance.symbol,
            status=STATUS_FOR_STATE[state],
            input_value_usd=quote.input_value_usd if quote else balance.value_usd,
            quoted_output_usd=quote.output_value_usd if quote else 0.0,
            quoted_output=quote.quoted_out if quote else None,
            error_kind=kind,
            reason=reason,
            receipt_id=receipt_id,
        )
        self.results[key] = result
        return result

    def succeed(self, token: str, receipt_id: Optional[str] = None) -> SwapResult:
        return self._finish(token, TokenState.SUCCESS, receipt_id=receipt_id)

    def fail(
        self,
        token: str,
        reason: str,
        kind: ErrorKind,
        receipt_id: Optional[str] = None,
    ) -> SwapResult:
        return self._finish(token, TokenState.FAILED, reason=reason, kind=kind, receipt_id=receipt_id)

    def skip(self, token: str, reason: str, kind: Optional[ErrorKind] = None) -> SwapResult:
        key = token_key(token)
        if self.states[key] == TokenState.QUOTED and kind == ErrorKind.IMPACT_TOO_HIGH:
            self.transition(key, TokenState.REJECTED, reason)
        return self._finish(key, TokenState.SKIPPED, reason=reason, kind=kind)

    def skip_pending(self, reason: str, kind: Optional[ErrorKind] = None) -> List[SwapResult]:
        """Skip every token that has not reached a terminal state."""
        return [self.skip(key, reason, kind) for key in self.pending]
