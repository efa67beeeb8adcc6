"""
Error Recovery Module

Sweep error taxonomy and failure classification for the chain adapters.
"""

from .errors import (
    AuthorizationFailure,
    ClassifiedFailure,
    ConfirmationTimeoutError,
    DiscoveryError,
    ErrorCategory,
    ErrorContext,
    ErrorKind,
    ImpactTooHighError,
    OnChainRevertError,
    QuoteUnavailableError,
    StaleQuoteError,
    SubmissionError,
    SweepError,
    UserCancelledError,
    ValidationFailure,
    classify_error,
    classify_failure,
)

__all__ = [
    "AuthorizationFailure",
    "ClassifiedFailure",
    "ConfirmationTimeoutError",
    "DiscoveryError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorKind",
    "ImpactTooHighError",
    "OnChainRevertError",
    "QuoteUnavailableError",
    "StaleQuoteError",
    "SubmissionError",
    "SweepError",
    "UserCancelledError",
    "ValidationFailure",
    "classify_error",
    "classify_failure",
]
