from fastapi import HTTPException, status

from .exceptions import (
    AuthenticationError, AuthorizationError, ConcurrentUpdateError, CreditManagerException,
    IllegalTransitionError, NotFoundError, RateLimitExceededError, ScoringUnavailableError,
    ValidationError,
)

STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (IllegalTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrentUpdateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ScoringUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
)


def to_http_exception(exc: CreditManagerException) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for exc_type, code in STATUS_CODES:
        if isinstance(exc, exc_type):
            status_code = code
            break

    detail = exc.message
    if isinstance(exc, ValidationError) and exc.missing_fields:
        detail = {"message": exc.message, "missing_fields": exc.missing_fields}

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    elif isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=status_code, detail=detail, headers=headers)
