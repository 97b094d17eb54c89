"""
Custom business exceptions for the negotiation core.

WHAT: Domain-specific exceptions shared by services, store and API
WHY: One error taxonomy for validation, conflicts and dependency failures
HOW: Custom exception classes with error codes and structured details
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ValidationException(BusinessException):
    """Raised for malformed offers, bad tool arguments or unknown offer ids."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class ConflictException(BusinessException):
    """Raised when a write would overwrite terminal or newer state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="CONFLICT",
            details=details
        )


class DecisionAlreadyExistsException(ConflictException):
    """Raised when a second Decision is created for the same quote."""

    def __init__(self, quote_id: str):
        super().__init__(
            message=f"Decision already exists for quote: {quote_id}",
            details={"quote_id": quote_id}
        )


class NegotiationTerminalException(ConflictException):
    """Raised when a terminal negotiation would be mutated."""

    def __init__(self, negotiation_id: str, current_status: str):
        super().__init__(
            message=f"Negotiation {negotiation_id} is already {current_status}",
            details={"negotiation_id": negotiation_id, "current_status": current_status}
        )


class StaleNegotiationStateException(ConflictException):
    """Raised when a compare-and-swap update finds a newer round or status."""

    def __init__(self, negotiation_id: str, expected_round: int | None):
        super().__init__(
            message=f"Negotiation {negotiation_id} moved past round {expected_round}",
            details={"negotiation_id": negotiation_id, "expected_round": expected_round}
        )


class DependencyException(BusinessException):
    """Raised when a required persistence write fails."""

    def __init__(self, operation: str, negotiation_id: str, cause: Exception):
        super().__init__(
            message=f"Persistence operation '{operation}' failed for {negotiation_id}: {cause}",
            code="DEPENDENCY_FAILURE",
            details={"operation": operation, "negotiation_id": negotiation_id}
        )
        self.cause = cause


class NoCompletedNegotiationsException(BusinessException):
    """Raised when scoring is requested but no negotiation reached completed."""

    def __init__(self, quote_id: str):
        super().__init__(
            message=f"No completed negotiations with final offers for quote: {quote_id}",
            code="NO_COMPLETED_NEGOTIATIONS",
            details={"quote_id": quote_id, "retryable": False}
        )


class QuoteNotFoundException(BusinessException):
    """Raised when a quote is not found."""

    def __init__(self, quote_id: str):
        super().__init__(
            message=f"Quote not found: {quote_id}",
            code="QUOTE_NOT_FOUND",
            details={"quote_id": quote_id}
        )


class NegotiationNotFoundException(BusinessException):
    """Raised when a negotiation is not found."""

    def __init__(self, negotiation_id: str):
        super().__init__(
            message=f"Negotiation not found: {negotiation_id}",
            code="NEGOTIATION_NOT_FOUND",
            details={"negotiation_id": negotiation_id}
        )


class DecisionNotFoundException(BusinessException):
    """Raised when a quote has no decision yet."""

    def __init__(self, quote_id: str):
        super().__init__(
            message=f"No decision recorded for quote: {quote_id}",
            code="DECISION_NOT_FOUND",
            details={"quote_id": quote_id}
        )
