# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for fpcal.

Verification failures and nonce validation failures are ordinary results and
are returned, not raised. The exceptions here cover programming errors, broken
state transitions and infrastructure that could not answer.
"""

from __future__ import annotations

from typing import Any


class FpcalException(Exception):  # noqa: N818
    """Base exception for all fpcal errors.

    All fpcal-specific exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class DatabaseException(FpcalException):
    """Exception for database-related errors.

    Raised when:
    - Database connection fails
    - Query execution fails
    - Schema creation fails
    """

    pass


class ValidationException(FpcalException):
    """Exception for validation errors.

    Raised when:
    - Input validation fails
    - Field values are out of range
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(FpcalException):
    """Exception for configuration errors.

    Raised when:
    - Required credentials for an evidence source are missing
    - Tunables are outside their valid range
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class NotFoundError(FpcalException):
    """Exception for resource not found errors.

    Raised when:
    - Requested organization identity doesn't exist
    - Requested nonce binding doesn't exist
    """

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(FpcalException):
    """Exception for conflict errors.

    Raised when:
    - Enrolling an organization that already has an identity
    - Persisting a nonce that is already active for another organization
    """

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class InvariantViolation(FpcalException):
    """An operation would break a trust-state invariant.

    Raised when:
    - Binding a nonce while an active binding exists
    - Revoking or rotating a binding that is missing or already revoked
    - Binding with a malformed public key
    - Moving stake out of a terminal status
    """

    def __init__(self, message: str, org_id: str | None = None):
        details = {}
        if org_id:
            details["org_id"] = org_id
        super().__init__(message, details)
        self.org_id = org_id


class VerifierInfrastructureError(FpcalException):
    """The identity provider could not give an answer.

    Distinct from a negative verification: the caller may retry later.
    """

    RATE_LIMIT = "RATE_LIMIT"
    AUTH = "AUTH"
    API_ERROR = "API_ERROR"

    def __init__(
        self,
        message: str,
        code: str = API_ERROR,
        status: int | None = None,
        retry_after: float | None = None,
    ):
        details: dict[str, Any] = {"code": code}
        if status is not None:
            details["status"] = status
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details)
        self.code = code
        self.status = status
        self.retry_after = retry_after


class RateLimitError(VerifierInfrastructureError):
    """Provider rejected the request because of rate limiting."""

    def __init__(self, message: str, status: int | None = 429, retry_after: float | None = None):
        super().__init__(message, code=self.RATE_LIMIT, status=status, retry_after=retry_after)


class VerifierAuthError(VerifierInfrastructureError):
    """Provider rejected our credentials."""

    def __init__(self, message: str, status: int | None = 401):
        super().__init__(message, code=self.AUTH, status=status)
