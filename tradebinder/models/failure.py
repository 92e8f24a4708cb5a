"""
Failure Explanation Envelope: Unified Response Classification.

Every failure a trade participant can see is classified and explained
through this envelope.

INVARIANT: No raw 500 errors may reach the client.

Response types:
- Success: Operation completed successfully
- KnownFailure: A trade guard refused the operation, and says which one
- UnknownFailure: System does not know why it failed

Trade guards map onto four failure kinds:
- NOT_FOUND: session or item missing, or not owned by the caller
- FORBIDDEN: the caller has the wrong role for the action
- INVALID_STATE: the session cannot make this transition right now
- INVARIANT_VIOLATION: settlement found a selection it cannot honour

AUTHORITY BOUNDARY:
All failure responses pass through `finalize_response()`.
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"

    # Resource failures
    NOT_FOUND = "not_found"

    # Role failures
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"

    # Lifecycle failures
    INVALID_STATE = "invalid_state"

    # Settlement failures
    INVARIANT_VIOLATION = "invariant_violation"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel, Generic[T]):
    """
    Universal response envelope for failures and wrapped results.

    Every response is classified into one of the outcome types,
    ensuring no failure reaches the user unexplained.
    """

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (present on success)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        """Create a success response."""
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse[Any]":
        """
        Create a known failure response.

        Use when the system knows exactly why the operation failed.
        Example: Session not found, partner has not accepted yet.
        """
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )


# Standard exception types that map to known failures


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class NotFoundError(KnownError):
    """A session, history record or item does not exist for this caller."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=message,
            detail=detail,
            status_code=404,
        )


class ForbiddenError(KnownError):
    """The caller is not allowed to act on this session in their role."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.FORBIDDEN,
            message=message,
            detail=detail,
            status_code=403,
        )


class InvalidStateError(KnownError):
    """
    The session cannot make the requested transition in its current state.

    Examples: joining an expired session, completing before both sides
    accepted, a second completion of an already settled trade.
    """

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ):
        super().__init__(
            kind=FailureKind.INVALID_STATE,
            message=message,
            detail=detail,
            suggestion=suggestion,
            status_code=409,
        )


class InvariantViolationError(KnownError):
    """
    Settlement refused a selection it cannot honour.

    Always fatal to the settlement attempt; nothing is transferred.
    The session stays ACTIVE so the participants can fix the selection.
    """

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.INVARIANT_VIOLATION,
            message=message,
            detail=detail,
            suggestion="Update your selection to match current inventory and try again.",
            status_code=422,
        )


# =============================================================================
# FAILURE AUTHORITY BOUNDARY
# =============================================================================


# Standard messages are fixed text

STANDARD_MESSAGES: dict[OutcomeType, str] = {
    OutcomeType.KNOWN_FAILURE: "The operation failed due to a known issue.",
    OutcomeType.UNKNOWN_FAILURE: (
        "I failed and I don't know why. Try simplifying the request or retrying."
    ),
}

STANDARD_SUGGESTIONS: dict[OutcomeType, str] = {
    OutcomeType.KNOWN_FAILURE: "Check the error details and adjust your request.",
    OutcomeType.UNKNOWN_FAILURE: "If this persists, please report the issue.",
}


# Track finalized responses (weak reference would be ideal, but set is simpler)
_finalized_responses: set[int] = set()


def finalize_response(response: ApiResponse[Any]) -> ApiResponse[Any]:
    """
    Finalize a response through the authority boundary.

    Every response that passes through this function is guaranteed to
    have a valid outcome classification and, if not successful,
    failure details.

    Raises:
        ValueError: If response structure is invalid
    """
    if response.outcome == OutcomeType.SUCCESS:
        if response.failure is not None:
            raise ValueError("Success response must not have failure details")
    else:
        if response.failure is None:
            raise ValueError(f"{response.outcome.value} response must have failure details")

    _finalized_responses.add(id(response))

    return response


def is_finalized(response: ApiResponse[Any]) -> bool:
    """Check if a response has passed through the authority boundary."""
    return id(response) in _finalized_responses


def create_unknown_failure(
    exception: Exception,
    include_type: bool = True,
) -> ApiResponse[Any]:
    """
    Create an unknown failure response from an exception.

    The message is fixed and cannot be customized.
    """
    detail = None
    if include_type:
        detail = f"{type(exception).__name__}"

    response: ApiResponse[Any] = ApiResponse(
        outcome=OutcomeType.UNKNOWN_FAILURE,
        failure=FailureDetail(
            kind=FailureKind.UNKNOWN,
            message=STANDARD_MESSAGES[OutcomeType.UNKNOWN_FAILURE],
            detail=detail,
            suggestion=STANDARD_SUGGESTIONS[OutcomeType.UNKNOWN_FAILURE],
        ),
    )

    return finalize_response(response)


def create_known_failure(error: KnownError) -> ApiResponse[Any]:
    """
    Create a finalized known failure response from a trade guard error.

    The error's own message is kept: it names the guard that failed.
    """
    response = error.to_response()
    if response.failure is not None and response.failure.suggestion is None:
        response.failure.suggestion = STANDARD_SUGGESTIONS[OutcomeType.KNOWN_FAILURE]
    return finalize_response(response)
