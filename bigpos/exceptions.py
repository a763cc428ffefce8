"""
Business-rule errors raised by the ledger layer.

Each error carries the HTTP status it maps to; the handler registered in
``bigpos.main`` renders them as ``{"success": false, "error": ...}``.
"""
from typing import Any


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, **self.extra}


class ValidationFailedError(LedgerError):
    status_code = 400


class InsufficientFundsError(LedgerError):
    status_code = 400


class InvalidTransitionError(LedgerError):
    status_code = 400


class PaymentGatewayError(LedgerError):
    status_code = 400


class NotFoundError(LedgerError):
    status_code = 404


class PermissionDeniedError(LedgerError):
    status_code = 403


class ConflictError(LedgerError):
    status_code = 400
