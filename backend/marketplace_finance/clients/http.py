# marketplace_finance/clients/http.py
"""
httpx adapters for the external collaborators.

Wire contracts (JSON):
  order ledger       GET  /orders/{order_id}
                     GET  /orders?supplier_id=..&since=..          -> {"items": [...]}
                     PUT  /orders/{order_id}/commission
  supplier directory GET  /suppliers/{supplier_id}
                     GET  /suppliers?active=true                   -> {"items": [...]}
  payment gateway    POST /payouts  (Idempotency-Key header)
                       2xx {"transaction_id": ".."}                -> success
                       4xx {"failure_reason": ".."}                -> decline
                       5xx / timeout / bad body                    -> PaymentCollaboratorError
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

import httpx

from marketplace_finance.clients.base import (
    OrderSnapshot,
    PaymentOutcome,
    PayoutSubmission,
    StampedCommission,
    SupplierSnapshot,
)
from marketplace_finance.core.config import settings
from marketplace_finance.core.errors import PaymentCollaboratorError

logger = logging.getLogger(__name__)


def _client(base_url: str, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=settings.COLLABORATOR_TIMEOUT_SECONDS,
        transport=transport,
    )


def _order_from_json(data: dict[str, Any]) -> OrderSnapshot:
    completed = data.get("completed_at")
    return OrderSnapshot(
        order_id=str(data["order_id"]),
        supplier_id=str(data["supplier_id"]),
        order_amount=Decimal(str(data["order_amount"])),
        category_id=str(data["category_id"]) if data.get("category_id") else None,
        completed_at=datetime.fromisoformat(completed) if completed else None,
    )


def _supplier_from_json(data: dict[str, Any]) -> SupplierSnapshot:
    return SupplierSnapshot(
        supplier_id=str(data["supplier_id"]),
        membership_tier=data.get("membership_tier"),
        is_active=bool(data.get("is_active", True)),
    )


class HttpOrderLedger:
    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url or settings.ORDER_LEDGER_URL
        self._transport = transport

    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        async with _client(self._base_url, self._transport) as c:
            r = await c.get(f"/orders/{order_id}")
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return _order_from_json(r.json())

    async def recent_orders(self, supplier_id: str, since: datetime) -> Sequence[OrderSnapshot]:
        async with _client(self._base_url, self._transport) as c:
            r = await c.get("/orders", params={"supplier_id": supplier_id, "since": since.isoformat()})
        r.raise_for_status()
        return [_order_from_json(o) for o in r.json().get("items", [])]

    async def record_commission(self, stamp: StampedCommission) -> None:
        payload = {
            "commission_rate": str(stamp.commission_rate),
            "commission_amount": str(stamp.commission_amount),
            "supplier_amount": str(stamp.supplier_amount),
            "resolved_from": stamp.resolved_from,
            "schedule_version": stamp.schedule_version,
        }
        async with _client(self._base_url, self._transport) as c:
            r = await c.put(f"/orders/{stamp.order_id}/commission", json=payload)
        r.raise_for_status()


class HttpSupplierDirectory:
    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url or settings.SUPPLIER_DIRECTORY_URL
        self._transport = transport

    async def get_supplier(self, supplier_id: str) -> Optional[SupplierSnapshot]:
        async with _client(self._base_url, self._transport) as c:
            r = await c.get(f"/suppliers/{supplier_id}")
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return _supplier_from_json(r.json())

    async def active_suppliers(self) -> Sequence[SupplierSnapshot]:
        async with _client(self._base_url, self._transport) as c:
            r = await c.get("/suppliers", params={"active": "true"})
        r.raise_for_status()
        return [_supplier_from_json(s) for s in r.json().get("items", [])]


class HttpPaymentCollaborator:
    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url or settings.PAYMENT_GATEWAY_URL
        self._transport = transport

    async def submit(self, submission: PayoutSubmission) -> PaymentOutcome:
        payload = {
            "payout_id": str(submission.payout_id),
            "supplier_id": submission.supplier_id,
            "amount": str(submission.amount),
            "method": submission.method,
        }
        headers = {"Idempotency-Key": submission.idempotency_key}

        try:
            async with _client(self._base_url, self._transport) as c:
                r = await c.post("/payouts", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise PaymentCollaboratorError(f"Payment gateway timeout: {e}") from e
        except httpx.HTTPError as e:
            raise PaymentCollaboratorError(f"Payment gateway unreachable: {e}") from e

        if r.status_code >= 500:
            raise PaymentCollaboratorError(f"Payment gateway returned HTTP {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise PaymentCollaboratorError(f"Payment gateway returned a non-JSON body (HTTP {r.status_code})") from e
        if not isinstance(body, dict):
            raise PaymentCollaboratorError(f"Payment gateway returned an unexpected body (HTTP {r.status_code})")

        if r.is_success:
            txn = body.get("transaction_id")
            if not txn:
                raise PaymentCollaboratorError("Payment gateway accepted the payout without a transaction_id")
            return PaymentOutcome.success(str(txn))

        reason = body.get("failure_reason") or f"Declined (HTTP {r.status_code})"
        logger.warning("payout %s declined by gateway: %s", submission.payout_id, reason)
        return PaymentOutcome.declined(str(reason))
