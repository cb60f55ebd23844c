"""
Custom Exceptions

Centralized exception definitions for the API.
FastAPI converts these to HTTP responses; main.py adds a "type" field
for the ones clients need to tell apart.
"""
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Base for 404s. Subclasses set the entity label."""

    entity = "Resource"

    def __init__(self, identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{self.entity} not found: {identifier}" if identifier else f"{self.entity} not found"
        )


class TenantNotFoundError(NotFoundError):
    entity = "Tenant"


class UserNotFoundError(NotFoundError):
    entity = "User"


class CloudAccountNotFoundError(NotFoundError):
    entity = "Cloud account"


class BudgetNotFoundError(NotFoundError):
    entity = "Budget"


class PolicyNotFoundError(NotFoundError):
    entity = "Policy"


class IntegrationNotFoundError(NotFoundError):
    entity = "Integration"


class DataSourceNotFoundError(NotFoundError):
    entity = "Data source"


class ReportNotFoundError(NotFoundError):
    entity = "Report"


class MessageNotFoundError(NotFoundError):
    entity = "Message"


class ReportScheduleNotFoundError(NotFoundError):
    entity = "Report schedule"


class RecommendationNotFoundError(NotFoundError):
    entity = "Recommendation"


class SessionNotFoundError(NotFoundError):
    entity = "Session"


class AuthenticationError(HTTPException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class TenantIsolationError(HTTPException):
    """
    Raised when a tenant isolation violation is detected.

    This is a CRITICAL security error and should be logged/alerted on.
    """

    def __init__(self, detail: str = "Tenant isolation violation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class RateLimitExceeded(HTTPException):
    """Raised when rate limit is exceeded."""

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


class InvalidInputError(HTTPException):
    """Raised when input fails a business rule."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class DuplicateResourceError(HTTPException):
    """Raised when a unique field (slug, email, account id) is already taken."""

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class UpstreamServiceError(HTTPException):
    """Raised when an OAuth provider or other upstream call fails."""

    def __init__(self, detail: str = "Upstream service error"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail
        )
