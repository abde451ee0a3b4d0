from fastapi import HTTPException, status


class MarketplaceError(Exception):
    """Base exception for the marketplace referral engine."""

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Referenced record does not exist."""

    pass


class InvalidAmountError(MarketplaceError):
    """Money amount is zero, negative or otherwise unusable."""

    pass


class ReferralError(MarketplaceError):
    """Referral code could not be used for an attachment.

    Never fatal: partner registration proceeds without an attachment.
    """

    pass


class InvalidCodeError(ReferralError):
    """No agent holds the presented referral code."""

    pass


class InactiveReferrerError(ReferralError):
    """The code belongs to an agent that is not active."""

    pass


class AlreadyAttachedError(ReferralError):
    """The partner is already attached to an agent."""

    pass


class ExceedsAvailableBalanceError(MarketplaceError):
    """Payout amount is larger than the agent's available balance."""

    pass


class AgentNotActiveError(MarketplaceError):
    """Operation requires an active agent."""

    pass


class InvalidTransitionError(MarketplaceError):
    """Status change not allowed from the current status."""

    pass


class ReferentialIntegrityError(MarketplaceError):
    """Deleting a record that other records still reference."""

    pass


class BalanceInvariantViolation(MarketplaceError):
    """Paid out more than earned. Data-integrity anomaly, never corrected silently."""

    pass


class OutcomeUnknownError(MarketplaceError):
    """A store write timed out; it may or may not have been applied."""

    pass


# HTTP Exceptions
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def bad_request(detail: str = "Bad request") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(detail: str = "Forbidden") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def conflict(detail: str = "Conflict") -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def to_http_exception(exc: MarketplaceError) -> HTTPException:
    """Map a service error onto the HTTP status the caller should see."""
    if isinstance(exc, NotFoundError):
        return not_found(exc.message)
    if isinstance(exc, (ReferentialIntegrityError, AlreadyAttachedError)):
        return conflict(exc.message)
    if isinstance(exc, AgentNotActiveError):
        return forbidden(exc.message)
    if isinstance(exc, BalanceInvariantViolation):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=exc.message,
        )
    if isinstance(exc, OutcomeUnknownError):
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=exc.message,
        )
    return bad_request(exc.message)
