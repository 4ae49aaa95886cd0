# Overview: Base error taxonomy shared by services and routes.

from __future__ import annotations


class LedgerCoreError(Exception):
    """
    Base class for domain errors.

    Every error carries a stable machine code and the HTTP status the API
    layer answers with. Services raise these before mutating state, so a
    caller never observes a partial write.
    """
    code = "LEDGER_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerCoreError, ValueError):
    """Raised for malformed or out-of-range input."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(LedgerCoreError):
    """Raised when an entity does not exist within the caller's organization."""
    code = "NOT_FOUND"
    http_status = 404


class TenantError(LedgerCoreError):
    """Raised when the organization context is missing or invalid."""
    code = "TENANT_CONTEXT_INVALID"
    http_status = 401
