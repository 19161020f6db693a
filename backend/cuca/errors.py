# 📂 backend/cuca/errors.py — domain error kinds
# -----------------------------------------------------------------------------
# Every expected, caller-recoverable failure of the core is a CucaError with a
# stable code. The HTTP adapter renders them with http_status + to_dict().
# Anything that is not a CucaError is unexpected: it aborts the enclosing
# transaction and propagates as-is.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Any, Dict, Optional


class CucaError(Exception):
    """Base error with a consistent shape."""

    code = "ERROR"
    http_status = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class ValidationError(CucaError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class InsufficientFunds(CucaError):
    code = "INSUFFICIENT_FUNDS"
    default_message = "Insufficient funds"


class AlreadyProcessed(CucaError):
    code = "ALREADY_PROCESSED"
    http_status = 409
    default_message = "Request was already processed"


class BadCredentials(CucaError):
    code = "BAD_CREDENTIALS"
    http_status = 401
    default_message = "Incorrect transaction password"


class NoLinkedAccount(CucaError):
    code = "NO_LINKED_ACCOUNT"
    default_message = "No payout account linked"


class PackageInactive(CucaError):
    code = "PACKAGE_INACTIVE"
    default_message = "Package is not active"


class AmountOutOfRange(CucaError):
    code = "AMOUNT_OUT_OF_RANGE"
    default_message = "Amount is outside the package limits"


class AlreadyPurchased(CucaError):
    code = "ALREADY_PURCHASED"
    http_status = 409
    default_message = "Short-term package already purchased"


class MissingPrerequisite(CucaError):
    code = "MISSING_PREREQUISITE"
    default_message = "An active long-term investment of the same line is required"


class PackageInUse(CucaError):
    code = "PACKAGE_IN_USE"
    http_status = 409
    default_message = "Package is referenced by investments"


class NotFound(CucaError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class Unauthorized(CucaError):
    code = "UNAUTHORIZED"
    http_status = 401
    default_message = "Caller identity required"


class Forbidden(CucaError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Forbidden"
