from __future__ import annotations


class AppError(Exception):
    """Base error for expected failures."""

    def __init__(self, message: str, *, http_status: int = 400, code: str = "bad_request"):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.code = code


class AuthError(AppError):
    def __init__(self, message: str = "unauthenticated"):
        super().__init__(message, http_status=401, code="unauthenticated")


class ForbiddenError(AppError):
    def __init__(self, message: str = "forbidden"):
        super().__init__(message, http_status=403, code="forbidden")


class NotFoundError(AppError):
    def __init__(self, message: str = "not found"):
        super().__init__(message, http_status=404, code="not_found")


class ValidationError(AppError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message, http_status=400, code="validation_error")
        self.field = field


class RateLimitError(AppError):
    def __init__(self, message: str = "rate limit exceeded", *, retry_after: int = 0):
        super().__init__(message, http_status=429, code="rate_limited")
        self.retry_after = retry_after


class TenantContextMissing(AppError):
    """A tenant-scoped unit of work was requested without a tenant."""

    def __init__(self, message: str = "tenant context required"):
        super().__init__(message, http_status=500, code="tenant_context_missing")


class TenantIsolationViolation(AppError):
    """A write targeted a row outside the tenant bound to the data session."""

    def __init__(self, message: str = "tenant isolation violation"):
        super().__init__(message, http_status=403, code="tenant_isolation_violation")
