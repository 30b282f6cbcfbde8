# marketplace_finance/clients/base.py
"""
Interfaces of the external collaborators the engine consumes.

Order ledger, supplier directory and payment collaborator live outside this
service. The engine only depends on these Protocols; clients/http.py has the
HTTP adapters and the tests plug in in-memory fakes.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: str
    supplier_id: str
    order_amount: Decimal
    category_id: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierSnapshot:
    supplier_id: str
    membership_tier: Optional[str]
    is_active: bool = True


@dataclass(frozen=True)
class StampedCommission:
    """What the order ledger receives once an order's commission is resolved."""

    order_id: str
    supplier_id: str
    order_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    supplier_amount: Decimal
    resolved_from: str
    schedule_version: int


@dataclass(frozen=True)
class PayoutSubmission:
    payout_id: uuid.UUID
    supplier_id: str
    amount: Decimal
    method: str
    attempt: int

    @property
    def idempotency_key(self) -> str:
        # unique per (item, attempt): resubmitting the same attempt is a no-op at the gateway
        return f"{self.payout_id}:{self.attempt}"


@dataclass(frozen=True)
class PaymentOutcome:
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.transaction_id) and self.failure_reason is None

    @classmethod
    def success(cls, transaction_id: str) -> "PaymentOutcome":
        return cls(transaction_id=transaction_id)

    @classmethod
    def declined(cls, reason: str) -> "PaymentOutcome":
        return cls(failure_reason=reason)


@runtime_checkable
class OrderLedger(Protocol):
    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]: ...

    async def recent_orders(self, supplier_id: str, since: datetime) -> Sequence[OrderSnapshot]: ...

    async def record_commission(self, stamp: StampedCommission) -> None: ...


@runtime_checkable
class SupplierDirectory(Protocol):
    async def get_supplier(self, supplier_id: str) -> Optional[SupplierSnapshot]: ...

    async def active_suppliers(self) -> Sequence[SupplierSnapshot]: ...


@runtime_checkable
class PaymentCollaborator(Protocol):
    async def submit(self, submission: PayoutSubmission) -> PaymentOutcome:
        """
        Submit one payout attempt.
        Returns a success or decline outcome; raises PaymentCollaboratorError
        when the gateway could not be reached or answered garbage.
        """
        ...
