# Overview: Domain error kinds raised by the ledger services and their HTTP mapping.

"""
Error kinds

Every service raises a subclass of LedgerError. Each kind carries the HTTP
status the API answers with, a stable `kind` string for clients, and an
optional `details` dict (e.g. the offending tank for InsufficientStock).

Storage errors (connection loss, integrity failures the services do not
anticipate) are NOT wrapped: they propagate unchanged to the caller.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for business-rule and input errors."""
    status_code = 400
    kind = "LedgerError"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.details}


class ValidationError(LedgerError, ValueError):
    """Malformed or arithmetically inconsistent input; caller must fix and resubmit."""
    status_code = 400
    kind = "ValidationError"


class AccessDenied(LedgerError):
    """Caller's station/role does not allow touching the entity."""
    status_code = 403
    kind = "AccessDenied"


class NotFound(LedgerError):
    status_code = 404
    kind = "NotFound"


class InsufficientStock(LedgerError):
    """
    An outbound movement would drive a tank below zero.

    Business-rule rejection, not a bug; the POS surfaces it to the operator.
    """
    status_code = 409
    kind = "InsufficientStock"

    def __init__(self, tank_id: int, requested, available):
        super().__init__(
            f"Insufficient stock in tank {tank_id}",
            details={
                "tank_id": tank_id,
                "requested_quantity": str(requested),
                "available_quantity": str(available),
            },
        )
        self.tank_id = tank_id


class CapacityExceeded(LedgerError):
    """An inbound movement would overfill a tank."""
    status_code = 409
    kind = "CapacityExceeded"

    def __init__(self, tank_id: int, requested, free_capacity):
        super().__init__(
            f"Tank {tank_id} cannot hold the requested quantity",
            details={
                "tank_id": tank_id,
                "requested_quantity": str(requested),
                "free_capacity": str(free_capacity),
            },
        )
        self.tank_id = tank_id


class OverpaymentError(LedgerError):
    """Payment larger than the counterparty's outstanding balance."""
    status_code = 409
    kind = "OverpaymentError"


class ConcurrencyConflict(LedgerError):
    """Optimistic version check kept failing after retries."""
    status_code = 409
    kind = "ConcurrencyConflict"


def error_response(exc: LedgerError) -> tuple[dict, int]:
    return exc.to_dict(), exc.status_code
