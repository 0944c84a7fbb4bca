# Service-level exceptions. API routes translate these into HTTP responses.
from typing import List, Optional


class CreditManagerException(Exception):
    def __init__(self, message: str = "Credit manager error"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(CreditManagerException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class AuthenticationError(CreditManagerException):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(CreditManagerException):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class IllegalTransitionError(CreditManagerException):
    def __init__(self, message: str = "Action not permitted in current application status"):
        super().__init__(message)


class ValidationError(CreditManagerException):
    def __init__(self, message: str = "Validation failed", missing_fields: Optional[List[str]] = None):
        self.missing_fields = missing_fields or []
        super().__init__(message)


class ScoringError(CreditManagerException):
    def __init__(self, message: str = "Risk assessment failed"):
        super().__init__(message)


class ScoringUnavailableError(ScoringError):
    def __init__(self, message: str = "Scoring engine not initialized"):
        super().__init__(message)


class RateLimitExceededError(CreditManagerException):
    def __init__(self, message: str = "Too many attempts, please try again later", retry_after: int = 0):
        self.retry_after = retry_after
        super().__init__(message)


class ConcurrentUpdateError(CreditManagerException):
    def __init__(self, message: str = "Application was modified concurrently, retry the operation"):
        super().__init__(message)


class AuditTrailImmutableError(CreditManagerException):
    def __init__(self, message: str = "Audit trail entries cannot be modified"):
        super().__init__(message)
