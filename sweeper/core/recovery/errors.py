"""
Error Classification

Defines the sweep error taxonomy and the single function that turns raw
chain/provider failures into a classified, human-readable reason.

Every error carries an ``ErrorKind`` (what the sweep does about it) and an
``ErrorContext`` (category, recoverability and diagnostic details).
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    NETWORK = "network"           # Network/connectivity issues
    RATE_LIMIT = "rate_limit"     # API rate limits
    TIMEOUT = "timeout"           # Operation timed out
    INSUFFICIENT_FUNDS = "insufficient_funds"  # Not enough balance
    TRANSACTION_REVERTED = "transaction_reverted"  # On-chain revert
    SLIPPAGE = "slippage"         # Slippage exceeded
    CONTRACT = "contract"         # Swapper contract rejected the plan
    PROVIDER = "provider"         # Quote provider error / no route
    VALIDATION = "validation"     # Input validation error
    AUTHORIZATION = "authorization"  # Allowance / approval problems
    USER_REJECTED = "user_rejected"  # Signature request declined
    UNKNOWN = "unknown"           # Unclassified error


class ErrorKind(str, Enum):
    """How the sweep pipeline reacts to a failure."""

    QUOTE_UNAVAILABLE = "quote_unavailable"          # token excluded, not retried inline
    IMPACT_TOO_HIGH = "impact_too_high"              # skipped unless forced
    STALE_QUOTE = "stale_quote"                      # re-quote before commit
    VALIDATION_FAILURE = "validation_failure"        # triggers the isolator
    AUTHORIZATION_FAILURE = "authorization_failure"  # token excluded
    ONCHAIN_REVERT = "onchain_revert"                # terminal for the whole operation
    SUBMISSION_ERROR = "submission_error"            # one individual retry
    CONFIRMATION_TIMEOUT = "confirmation_timeout"    # failed, not retried
    USER_CANCELLED = "user_cancelled"                # remaining batches skipped
    DISCOVERY_ERROR = "discovery_error"              # malformed balance data


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    chain_id: Optional[Any] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class SweepError(Exception):
    """
    Base class for every failure the sweep pipeline reasons about.

    Subclasses fix ``kind`` and the default category; callers may attach
    the token the failure belongs to.
    """

    kind: ErrorKind = ErrorKind.SUBMISSION_ERROR
    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        token: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.token = token
        self.category = category or (context.category if context else self.default_category)
        self.context = context or ErrorContext(category=self.category, recoverable=self.recoverable)

    @property
    def reason(self) -> str:
        return self.message


class QuoteUnavailableError(SweepError):
    """No route found, rate limited, or a malformed provider response."""

    kind = ErrorKind.QUOTE_UNAVAILABLE
    default_category = ErrorCategory.PROVIDER

    def __init__(
        self,
        message: str = "No quote available",
        *,
        token: Optional[str] = None,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        category = ErrorCategory.RATE_LIMIT if status_code == 429 else ErrorCategory.PROVIDER
        super().__init__(
            message,
            token=token,
            context=ErrorContext(
                category=category,
                recoverable=False,
                provider=provider,
                details={"status_code": status_code} if status_code else {},
            ),
        )
        self.status_code = status_code


class ImpactTooHighError(SweepError):
    """Quoted price impact exceeds the auto-select threshold."""

    kind = ErrorKind.IMPACT_TOO_HIGH
    default_category = ErrorCategory.SLIPPAGE

    def __init__(self, impact_pct: float, threshold_pct: float, *, token: Optional[str] = None):
        super().__init__(
            f"{impact_pct:.1f}% impact exceeds threshold, requires force",
            token=token,
            context=ErrorContext(
                category=ErrorCategory.SLIPPAGE,
                recoverable=False,
                suggested_action="Enable force to swap anyway",
                details={"impact_pct": impact_pct, "threshold_pct": threshold_pct},
            ),
        )
        self.impact_pct = impact_pct
        self.threshold_pct = threshold_pct


class StaleQuoteError(SweepError):
    """A quote aged past the staleness window and must be re-fetched."""

    kind = ErrorKind.STALE_QUOTE
    default_category = ErrorCategory.TIMEOUT
    recoverable = True

    def __init__(self, age_seconds: float, *, token: Optional[str] = None):
        super().__init__(f"Quote is {age_seconds:.1f}s old", token=token)
        self.age_seconds = age_seconds


class ValidationFailure(SweepError):
    """A dry run predicted the operation would fail."""

    kind = ErrorKind.VALIDATION_FAILURE
    default_category = ErrorCategory.CONTRACT

    def __init__(self, message: str, *, raw: Optional[str] = None, category: Optional[ErrorCategory] = None):
        super().__init__(message, category=category)
        self.raw = raw


class AuthorizationFailure(SweepError):
    """Spending permission could not be granted."""

    kind = ErrorKind.AUTHORIZATION_FAILURE
    default_category = ErrorCategory.AUTHORIZATION

    def __init__(self, message: str, *, token: Optional[str] = None, tx_hash: Optional[str] = None):
        super().__init__(
            message,
            token=token,
            context=ErrorContext(
                category=ErrorCategory.AUTHORIZATION,
                recoverable=False,
                tx_hash=tx_hash,
            ),
        )


class OnChainRevertError(SweepError):
    """The atomic operation was mined but reverted."""

    kind = ErrorKind.ONCHAIN_REVERT
    default_category = ErrorCategory.TRANSACTION_REVERTED

    def __init__(
        self,
        message: str = "Transaction reverted: likely slippage exceeded",
        *,
        tx_hash: Optional[str] = None,
        revert_reason: Optional[str] = None,
    ):
        super().__init__(
            message,
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                tx_hash=tx_hash,
                details={"revert_reason": revert_reason} if revert_reason else {},
            ),
        )
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class SubmissionError(SweepError):
    """Signing or broadcasting failed before anything reached the chain."""

    kind = ErrorKind.SUBMISSION_ERROR
    default_category = ErrorCategory.NETWORK
    recoverable = True


class ConfirmationTimeoutError(SweepError):
    """The operation did not reach a terminal state in time."""

    kind = ErrorKind.CONFIRMATION_TIMEOUT
    default_category = ErrorCategory.TIMEOUT

    def __init__(self, tx_hash: Optional[str], timeout_seconds: float):
        super().__init__(
            "Confirmation timed out",
            context=ErrorContext(
                category=ErrorCategory.TIMEOUT,
                recoverable=False,
                tx_hash=tx_hash,
                suggested_action="Check the explorer, then sweep again",
                details={"timeout_seconds": timeout_seconds},
            ),
        )
        self.tx_hash = tx_hash


class UserCancelledError(SweepError):
    """The user cancelled the sweep or declined a signature."""

    kind = ErrorKind.USER_CANCELLED
    default_category = ErrorCategory.USER_REJECTED

    def __init__(self, message: str = "Cancelled by user"):
        super().__init__(message)


class DiscoveryError(SweepError):
    """Balance or metadata responses could not be parsed."""

    kind = ErrorKind.DISCOVERY_ERROR
    default_category = ErrorCategory.PROVIDER


@dataclass(frozen=True)
class ClassifiedFailure:
    """Outcome of classifying a raw failure."""

    kind: ErrorKind
    category: ErrorCategory
    reason: str


_REVERT_REASON = re.compile(r"reverted with the following reason:\s*([^\n]+)", re.IGNORECASE)

_USER_REJECTED_PATTERNS = ("user rejected", "user denied", "rejected the request", "user cancelled")
_RATE_LIMIT_PATTERNS = ("rate limit", "too many requests", "429", "throttl")
_TIMEOUT_PATTERNS = ("timeout", "timed out")


def _classify_text(text: str) -> tuple[ErrorCategory, str]:
    message = text.lower()

    if "aggregator" in message and "whitelist" in message:
        return ErrorCategory.CONTRACT, "Aggregator not whitelisted - check contract config"
    if "selector" in message and "whitelist" in message:
        return ErrorCategory.CONTRACT, "Selector not whitelisted - check contract config"
    if "outtoken" in message and "allowed" in message:
        return ErrorCategory.CONTRACT, "Output token not allowed - check contract config"
    if "#1002" in message or "agg swap fail" in message:
        return ErrorCategory.CONTRACT, "Swap failed - token may have transfer tax or no liquidity"
    if any(p in message for p in ("slippage exceeded", "too little received", "slippage too high")):
        return ErrorCategory.SLIPPAGE, "Slippage exceeded - price moved too much"
    if "insufficient" in message and "balance" in message:
        return ErrorCategory.INSUFFICIENT_FUNDS, "Insufficient balance"
    if "allowance" in message or "approve" in message:
        return ErrorCategory.AUTHORIZATION, "Insufficient allowance"
    if "transfer" in message and "fail" in message:
        return ErrorCategory.CONTRACT, "Token transfer failed - possible tax token"
    if "liquidity" in message or "no route" in message:
        return ErrorCategory.PROVIDER, "No liquidity available"
    if "expired" in message or "deadline" in message:
        return ErrorCategory.TIMEOUT, "Quote expired - try again"

    match = _REVERT_REASON.search(text)
    if match:
        return ErrorCategory.TRANSACTION_REVERTED, match.group(1).strip()

    if any(p in message for p in _RATE_LIMIT_PATTERNS):
        return ErrorCategory.RATE_LIMIT, "Rate limited by upstream provider"
    if any(p in message for p in _TIMEOUT_PATTERNS):
        return ErrorCategory.TIMEOUT, "Request timed out"

    return ErrorCategory.UNKNOWN, text[:100] or "Unknown error"


def classify_failure(
    error: BaseException | str,
    default_kind: ErrorKind = ErrorKind.VALIDATION_FAILURE,
) -> ClassifiedFailure:
    """
    Classify a failure coming out of a chain adapter or provider.

    Already-typed sweep errors keep their kind; their message is still run
    through the text patterns when it is a raw node/contract message so the
    reason shown to the user is readable. Plain exceptions and strings are
    classified from their text, falling back to ``default_kind``.
    """
    if isinstance(error, UserCancelledError):
        return ClassifiedFailure(error.kind, ErrorCategory.USER_REJECTED, error.message)

    text = error if isinstance(error, str) else str(error)
    if any(p in text.lower() for p in _USER_REJECTED_PATTERNS):
        return ClassifiedFailure(ErrorKind.USER_CANCELLED, ErrorCategory.USER_REJECTED, "Cancelled by user")

    if isinstance(error, SweepError):
        if isinstance(error, ValidationFailure) and error.raw:
            category, reason = _classify_text(error.raw)
            return ClassifiedFailure(error.kind, category, reason)
        return ClassifiedFailure(error.kind, error.category, error.message)

    category, reason = _classify_text(text)
    return ClassifiedFailure(default_kind, category, reason)


def classify_error(error: Exception) -> ErrorContext:
    """Return the error context for any exception raised during a sweep."""
    if isinstance(error, SweepError):
        return error.context

    classified = classify_failure(error)
    recoverable = classified.category in (
        ErrorCategory.NETWORK,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.TIMEOUT,
    )
    return ErrorContext(
        category=classified.category,
        recoverable=recoverable,
        details={"reason": classified.reason},
    )
