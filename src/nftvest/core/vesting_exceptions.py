"""
Vesting-specific exception hierarchy for nftvest.

Provides typed exceptions for the vesting engine so callers can tell input
validation problems, authorization failures, state conflicts and internal
invariant violations apart without parsing messages.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class VestingError(Exception):
    """Base exception for all vesting-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller can fix the request and retry
        code: Stable failure kind name exposed over the API
    """

    code = "VestingError"
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


# ==================== Input Validation Errors ====================


class ValidationError(VestingError):
    """Raised when a request is rejected before any state change.

    The caller can correct the input and submit again.
    """

    code = "ValidationError"
    recoverable = True


class InvalidTemplateError(ValidationError):
    """Raised when a linear template id is not in the catalogue."""

    code = "InvalidTemplate"


class InvalidBeneficiaryError(ValidationError):
    """Raised when the beneficiary is empty, malformed or the zero address."""

    code = "InvalidBeneficiary"


class NoTokensProvidedError(ValidationError):
    """Raised when a plan is created without any token ids."""

    code = "NoTokensProvided"


class DuplicateTokenIdError(ValidationError):
    """Raised when a token id is repeated or already escrowed by another plan."""

    code = "DuplicateTokenId"


class InvalidScheduleError(ValidationError):
    """Raised when a tranche schedule breaks ordering or count rules."""

    code = "InvalidSchedule"


class InvalidTokenSelectionError(ValidationError):
    """Raised when requested claim ids are not a valid subset of the escrow."""

    code = "InvalidTokenSelection"


class CollectionNotFoundError(ValidationError):
    """Raised when the source collection is not registered with the engine."""

    code = "CollectionNotFound"


# ==================== Authorization Errors ====================


class AuthorizationError(VestingError):
    """Raised when the caller is not allowed to perform an operation.

    Never retried automatically.
    """

    code = "AuthorizationError"


class UnauthorizedError(AuthorizationError):
    """Raised when the caller is not the beneficiary (claim) or issuer (revoke)."""

    code = "Unauthorized"


# ==================== State Conflict Errors ====================


class StateConflictError(VestingError):
    """Raised when the current plan or token state forbids the operation."""

    code = "StateConflict"


class PlanNotFoundError(StateConflictError):
    """Raised when a plan id does not exist."""

    code = "PlanNotFound"


class AlreadyRevokedError(StateConflictError):
    """Raised when revoking a plan twice."""

    code = "AlreadyRevoked"


class IncorrectOwnerError(StateConflictError):
    """Raised when the issuer does not own a token it tries to escrow."""

    code = "IncorrectOwner"


class InsufficientApprovalError(StateConflictError):
    """Raised when the engine is not approved to take custody of a token."""

    code = "InsufficientApproval"


class NothingToClaimError(StateConflictError):
    """Raised when no vested, unclaimed units are available."""

    code = "NothingToClaim"


class AlreadyRevokedAndCapReachedError(NothingToClaimError):
    """Raised when a revoked plan has already paid out its frozen cap.

    A permanent form of NothingToClaimError: no amount of elapsed time makes
    anything claimable again.
    """

    code = "AlreadyRevokedAndCapReached"


class PermitExpiredError(StateConflictError):
    """Raised when a permit is used after its deadline."""

    code = "PermitExpired"


class InvalidSignatureError(StateConflictError):
    """Raised when a permit signature does not come from the token owner."""

    code = "InvalidSignature"


# ==================== Invariant Violations ====================


class InvariantViolationError(VestingError):
    """Raised when internal accounting would become inconsistent.

    This is a fatal fault; the mutation that triggered it is not applied.
    """

    code = "InvariantViolation"


class ClaimExceedsCapError(InvariantViolationError):
    """Raised when a claim would push claimed_count past the effective cap."""

    code = "ClaimExceedsCap"


class EscrowInvariantError(InvariantViolationError):
    """Raised when escrowed inventory and plan counters disagree."""

    code = "EscrowInvariant"


# ==================== Token Contract Errors ====================


class CollectionError(VestingError):
    """Raised by the source NFT collection (ownership, approval, transfer)."""

    code = "CollectionError"


class PositionTokenError(VestingError):
    """Raised by the position token issuer (unknown token, bad index)."""

    code = "PositionTokenError"


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception can be fixed by the caller and resubmitted.

    Args:
        exc: The exception to check

    Returns:
        True for input validation failures
    """
    if isinstance(exc, VestingError):
        return exc.recoverable
    return False


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, VestingError):
        context["code"] = exc.code
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    return context
