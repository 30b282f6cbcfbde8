# marketplace_finance/core/errors.py
from __future__ import annotations

from typing import Any, Iterable


class FinanceError(Exception):
    """
    Base class for every typed error the engine raises.

    Each subclass carries a stable machine-readable `code` and the HTTP status the
    API layer renders it with. Extra keyword context ends up in `detail()` so the
    client sees the same shape as other endpoints:
        {"detail": {"error": "CODE", "message": "...", ...}}
    """

    code = "FINANCE_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def detail(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        out.update(self.context)
        return out


# -----------------------------
# Validation (rejected before any mutation)
# -----------------------------
class InvalidRateError(FinanceError):
    code = "INVALID_RATE"
    status_code = 422


class InvalidAdjustmentError(FinanceError):
    code = "INVALID_ADJUSTMENT"
    status_code = 422


class InvalidPayoutError(FinanceError):
    code = "INVALID_PAYOUT"
    status_code = 422


# -----------------------------
# Concurrency conflicts (caller re-reads and retries)
# -----------------------------
class StaleCommissionError(FinanceError):
    code = "STALE_COMMISSION"
    status_code = 409


class ConcurrentScheduleUpdateError(FinanceError):
    code = "CONCURRENT_SCHEDULE_UPDATE"
    status_code = 409


class ConcurrentClaimError(FinanceError):
    code = "CONCURRENT_CLAIM"
    status_code = 409

    def __init__(self, message: str, conflicting_ids: Iterable[Any] = ()) -> None:
        ids = sorted(str(i) for i in conflicting_ids)
        super().__init__(message, conflicting_ids=ids)
        self.conflicting_ids = ids


# -----------------------------
# Payout state machine
# -----------------------------
class InvalidTransitionError(FinanceError):
    code = "INVALID_TRANSITION"
    status_code = 409


class RetryExhaustedError(InvalidTransitionError):
    code = "RETRY_EXHAUSTED"


# -----------------------------
# External payment collaborator
# -----------------------------
class PaymentCollaboratorError(FinanceError):
    code = "PAYMENT_COLLABORATOR_ERROR"
    status_code = 502

    def __init__(self, reason: str) -> None:
        super().__init__(f"Payment collaborator failed: {reason}", reason=reason)
        self.reason = reason


# -----------------------------
# Lookups
# -----------------------------
class NotFoundError(FinanceError):
    code = "NOT_FOUND"
    status_code = 404


class CommissionRecordNotFoundError(NotFoundError):
    code = "COMMISSION_RECORD_NOT_FOUND"


class PayoutNotFoundError(NotFoundError):
    code = "PAYOUT_NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"


class SupplierNotFoundError(NotFoundError):
    code = "SUPPLIER_NOT_FOUND"
