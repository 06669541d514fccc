"""Billing engine errors.

Every business-rule violation is raised as a subclass of BillingError so the
API layer can render a stable error kind plus a human-readable reason.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for billing engine errors."""

    kind = "billing_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.details:
            body["context"] = self.details
        return body


class NotFoundError(BillingError):
    """Tier, feature, subscription or invoice does not exist."""

    kind = "not_found"
    status_code = 404


class ConflictError(BillingError):
    """The request collides with existing state (duplicate add, duplicate invoice, ...)."""

    kind = "conflict"
    status_code = 409


class InvalidStateError(BillingError):
    """The subscription is not in a state that allows the operation."""

    kind = "invalid_state"
    status_code = 409


class ValidationError(BillingError):
    """Malformed monetary or date input."""

    kind = "validation_error"
    status_code = 422


class StorageFailure(BillingError):
    """The transaction could not be completed; nothing was written."""

    kind = "storage_failure"
    status_code = 503
