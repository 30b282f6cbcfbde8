# marketplace_finance/crud/payout_queue.py
"""
Payout queue persistence.

Every status change is a conditional UPDATE keyed on the expected current
status (and, while processing, on the owning batch's claim token). A writer
that loses a race sees rowcount 0 and gets a typed error; nothing is ever
last-writer-wins.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.core.config import settings
from marketplace_finance.core.errors import (
    ConcurrentClaimError,
    InvalidPayoutError,
    InvalidTransitionError,
    PayoutNotFoundError,
    RetryExhaustedError,
)
from marketplace_finance.core.money import ZERO, quantize_money, to_decimal
from marketplace_finance.core.payout_state import PayoutStatus, validate_transition
from marketplace_finance.crud.commission import unlinked_records_for_supplier
from marketplace_finance.models.commission_record import CommissionRecord
from marketplace_finance.models.payout_queue_item import PayoutQueueItem

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------
# Payment methods
# ---------------------------------------------------------
@dataclass(frozen=True)
class PaymentMethodConfig:
    type: str
    enabled: bool
    min_amount: Decimal
    max_amount: Decimal
    processing_fee_pct: Decimal
    processing_time: str


PAYMENT_METHODS: dict[str, PaymentMethodConfig] = {
    "bank_transfer": PaymentMethodConfig("bank_transfer", True, Decimal("50"), Decimal("50000"), Decimal("2.5"), "1-3 business days"),
    "paypal": PaymentMethodConfig("paypal", True, Decimal("10"), Decimal("10000"), Decimal("3.5"), "Instant"),
    "crypto": PaymentMethodConfig("crypto", False, Decimal("100"), Decimal("25000"), Decimal("1.0"), "10-30 minutes"),
    "stripe": PaymentMethodConfig("stripe", True, Decimal("25"), Decimal("15000"), Decimal("2.9"), "1-2 business days"),
}


def enabled_payment_methods() -> list[PaymentMethodConfig]:
    return [m for m in PAYMENT_METHODS.values() if m.enabled]


def next_payout_date(now: Optional[datetime] = None) -> datetime:
    """Next Friday 10:00 UTC (weekly payout run); a Friday rolls to the following week."""
    now = now or _utcnow()
    days_until_friday = (4 - now.weekday()) % 7
    if days_until_friday == 0:
        days_until_friday = 7
    nxt = now + timedelta(days=days_until_friday)
    return nxt.replace(hour=10, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class PayoutRequest:
    supplier_id: str
    gross_amount: Decimal
    commission_amount: Decimal
    method: str = "bank_transfer"
    scheduled_date: Optional[datetime] = None


def _validate_request(req: PayoutRequest) -> tuple[Decimal, Decimal, Decimal, str]:
    if not (req.supplier_id or "").strip():
        raise InvalidPayoutError("supplier_id is required")
    try:
        gross = quantize_money(req.gross_amount)
        commission = quantize_money(req.commission_amount)
    except ValueError as e:
        raise InvalidPayoutError(str(e), supplier_id=req.supplier_id) from e
    if gross < 0 or commission < 0:
        raise InvalidPayoutError("Amounts must not be negative", supplier_id=req.supplier_id)

    net = gross - commission
    if net < 0:
        raise InvalidPayoutError(
            "Commission exceeds gross amount (net would be negative)",
            supplier_id=req.supplier_id,
            net_amount=str(net),
        )

    method = (req.method or "").strip().lower()
    cfg = PAYMENT_METHODS.get(method)
    if cfg is None or not cfg.enabled:
        raise InvalidPayoutError(
            "Payment method not supported",
            method=req.method,
            allowed=[m.type for m in enabled_payment_methods()],
        )
    if net < cfg.min_amount:
        raise InvalidPayoutError(
            f"Net amount is below the {method} minimum",
            supplier_id=req.supplier_id,
            net_amount=str(net),
            min_amount=str(cfg.min_amount),
        )
    if net > cfg.max_amount:
        raise InvalidPayoutError(
            f"Net amount exceeds the {method} maximum",
            supplier_id=req.supplier_id,
            net_amount=str(net),
            max_amount=str(cfg.max_amount),
        )
    return gross, commission, net, method


# ---------------------------------------------------------
# Reads
# ---------------------------------------------------------
async def get_item(db: AsyncSession, item_id: uuid.UUID) -> PayoutQueueItem:
    item = await db.get(PayoutQueueItem, item_id, populate_existing=True)
    if item is None:
        raise PayoutNotFoundError("Payout not found", payout_id=str(item_id))
    return item


async def load_items(db: AsyncSession, item_ids: Iterable[uuid.UUID]) -> list[PayoutQueueItem]:
    ids = list(item_ids)
    stmt = select(PayoutQueueItem).where(PayoutQueueItem.id.in_(ids)).execution_options(populate_existing=True)
    rows = (await db.execute(stmt)).scalars().all()
    found = {r.id for r in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise PayoutNotFoundError("Payout(s) not found", payout_ids=sorted(str(i) for i in missing))
    by_id = {r.id: r for r in rows}
    return [by_id[i] for i in ids]


async def list_items(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    supplier_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PayoutQueueItem], int]:
    conds = []
    if status:
        conds.append(PayoutQueueItem.status == status)
    if supplier_id:
        conds.append(PayoutQueueItem.supplier_id == supplier_id)

    total = await db.scalar(select(func.count()).select_from(PayoutQueueItem).where(*conds))
    rows = (
        await db.execute(
            select(PayoutQueueItem)
            .where(*conds)
            .order_by(PayoutQueueItem.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return list(rows), int(total or 0)


async def select_eligible(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: int = 100,
    min_amount: Optional[Decimal] = None,
) -> list[PayoutQueueItem]:
    """
    Pending, unclaimed items that are due and above the payout threshold.
    Oldest schedule first, then larger payouts first.
    """
    now = now or _utcnow()
    threshold = settings.MIN_PAYOUT_AMOUNT if min_amount is None else min_amount
    stmt = (
        select(PayoutQueueItem)
        .where(PayoutQueueItem.status == PayoutStatus.PENDING.value)
        .where(PayoutQueueItem.claim_token.is_(None))
        .where(PayoutQueueItem.net_amount >= threshold)
        .where(PayoutQueueItem.scheduled_date <= now)
        .order_by(PayoutQueueItem.scheduled_date, PayoutQueueItem.net_amount.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


# ---------------------------------------------------------
# Enqueue
# ---------------------------------------------------------
async def enqueue_payouts(db: AsyncSession, requests: Sequence[PayoutRequest]) -> list[PayoutQueueItem]:
    """All requests are validated before any row is inserted (all-or-nothing)."""
    if not requests:
        raise InvalidPayoutError("No payouts to enqueue")

    validated = [_validate_request(r) for r in requests]
    default_date = next_payout_date()

    items: list[PayoutQueueItem] = []
    for req, (gross, commission, net, method) in zip(requests, validated):
        item = PayoutQueueItem(
            supplier_id=req.supplier_id.strip(),
            gross_amount=gross,
            commission_amount=commission,
            net_amount=net,
            method=method,
            status=PayoutStatus.PENDING.value,
            scheduled_date=req.scheduled_date or default_date,
            attempt_count=0,
        )
        db.add(item)
        items.append(item)

    await db.commit()
    for item in items:
        await db.refresh(item)
    logger.info("enqueued %d payout(s)", len(items))
    return items


async def enqueue_supplier_payout(
    db: AsyncSession,
    supplier_id: str,
    *,
    method: str = "bank_transfer",
    scheduled_date: Optional[datetime] = None,
) -> Optional[PayoutQueueItem]:
    """
    Roll the supplier's stamped-but-unpaid commission records into one payout.
    Returns None when there is nothing to pay or the net is under the payout threshold.
    """
    records = await unlinked_records_for_supplier(db, supplier_id)
    if not records:
        return None

    gross = sum((r.order_amount for r in records), ZERO)
    commission = sum((r.current_commission for r in records), ZERO)
    if quantize_money(gross - commission) < settings.MIN_PAYOUT_AMOUNT:
        return None

    req = PayoutRequest(
        supplier_id=supplier_id,
        gross_amount=gross,
        commission_amount=commission,
        method=method,
        scheduled_date=scheduled_date,
    )
    g, c, net, m = _validate_request(req)
    item = PayoutQueueItem(
        supplier_id=supplier_id,
        gross_amount=g,
        commission_amount=c,
        net_amount=net,
        method=m,
        status=PayoutStatus.PENDING.value,
        scheduled_date=scheduled_date or next_payout_date(),
        attempt_count=0,
    )
    db.add(item)
    await db.flush()

    # link only records that are still unlinked; a concurrent enqueue loses here
    ids = [r.id for r in records]
    res = await db.execute(
        update(CommissionRecord)
        .where(CommissionRecord.id.in_(ids))
        .where(CommissionRecord.payout_item_id.is_(None))
        .values(payout_item_id=item.id)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != len(ids):
        await db.rollback()
        raise ConcurrentClaimError("Commission records were enqueued concurrently", conflicting_ids=ids)

    await db.commit()
    await db.refresh(item)
    logger.info("enqueued supplier payout %s for %s: %d order(s), net %s", item.id, supplier_id, len(ids), net)
    return item


# ---------------------------------------------------------
# Claim (pending -> processing): the one mutual-exclusion point
# ---------------------------------------------------------
async def claim_items(db: AsyncSession, item_ids: Sequence[uuid.UUID], claim_token: uuid.UUID) -> None:
    """
    Compare-and-swap every item from (pending, unclaimed) to (processing, claim_token)
    and bump attempt_count. Does NOT commit: the caller commits together with the
    batch row. If any item did not match, the whole claim is rolled back.
    """
    now = _utcnow()
    stmt = (
        update(PayoutQueueItem)
        .where(PayoutQueueItem.id.in_(list(item_ids)))
        .where(PayoutQueueItem.status == PayoutStatus.PENDING.value)
        .where(PayoutQueueItem.claim_token.is_(None))
        .values(
            status=PayoutStatus.PROCESSING.value,
            claim_token=claim_token,
            last_batch_id=claim_token,
            attempt_count=PayoutQueueItem.attempt_count + 1,
            failure_reason=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount == len(item_ids):
        return

    await db.rollback()
    rows = (
        await db.execute(
            select(PayoutQueueItem.id, PayoutQueueItem.status, PayoutQueueItem.claim_token).where(
                PayoutQueueItem.id.in_(list(item_ids))
            )
        )
    ).all()
    conflicting = [
        r.id for r in rows if r.status != PayoutStatus.PENDING.value or r.claim_token is not None
    ]
    raise ConcurrentClaimError(
        "Some payouts are not pending or already claimed by another batch",
        conflicting_ids=conflicting or item_ids,
    )


# ---------------------------------------------------------
# Outcome of one attempt (processing -> completed | failed)
# ---------------------------------------------------------
async def mark_completed(
    db: AsyncSession, item_id: uuid.UUID, claim_token: uuid.UUID, transaction_id: str
) -> None:
    validate_transition(PayoutStatus.PROCESSING, PayoutStatus.COMPLETED)
    now = _utcnow()
    stmt = (
        update(PayoutQueueItem)
        .where(PayoutQueueItem.id == item_id)
        .where(PayoutQueueItem.status == PayoutStatus.PROCESSING.value)
        .where(PayoutQueueItem.claim_token == claim_token)
        .values(
            status=PayoutStatus.COMPLETED.value,
            transaction_id=transaction_id,
            failure_reason=None,
            processed_date=now,
            claim_token=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if (await db.execute(stmt)).rowcount != 1:
        await db.rollback()
        raise InvalidTransitionError(
            "Payout is not processing under this batch",
            payout_id=str(item_id),
            batch_id=str(claim_token),
        )
    await db.commit()


async def mark_failed(db: AsyncSession, item_id: uuid.UUID, claim_token: uuid.UUID, reason: str) -> None:
    validate_transition(PayoutStatus.PROCESSING, PayoutStatus.FAILED)
    now = _utcnow()
    stmt = (
        update(PayoutQueueItem)
        .where(PayoutQueueItem.id == item_id)
        .where(PayoutQueueItem.status == PayoutStatus.PROCESSING.value)
        .where(PayoutQueueItem.claim_token == claim_token)
        .values(
            status=PayoutStatus.FAILED.value,
            failure_reason=reason,
            processed_date=now,
            claim_token=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if (await db.execute(stmt)).rowcount != 1:
        await db.rollback()
        raise InvalidTransitionError(
            "Payout is not processing under this batch",
            payout_id=str(item_id),
            batch_id=str(claim_token),
        )
    await db.commit()


# ---------------------------------------------------------
# Admin actions
# ---------------------------------------------------------
async def reset_for_retry(db: AsyncSession, item_id: uuid.UUID, *, max_attempts: Optional[int] = None) -> PayoutQueueItem:
    """
    failed -> pending, only while attempts remain. Exhausted items stay failed
    and show up in needs_manual_intervention().
    """
    limit = settings.PAYOUT_MAX_ATTEMPTS if max_attempts is None else max_attempts
    item = await get_item(db, item_id)
    validate_transition(item.status, PayoutStatus.PENDING)
    if item.attempt_count >= limit:
        raise RetryExhaustedError(
            "Payout has used all its attempts; needs manual intervention",
            payout_id=str(item_id),
            attempt_count=item.attempt_count,
            max_attempts=limit,
        )

    stmt = (
        update(PayoutQueueItem)
        .where(PayoutQueueItem.id == item_id)
        .where(PayoutQueueItem.status == PayoutStatus.FAILED.value)
        .where(PayoutQueueItem.attempt_count < limit)
        .values(status=PayoutStatus.PENDING.value, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if (await db.execute(stmt)).rowcount != 1:
        await db.rollback()
        raise InvalidTransitionError("Payout changed state during retry", payout_id=str(item_id))
    await db.commit()
    await db.refresh(item)
    logger.info("payout %s reset for retry (attempt %d of %d used)", item_id, item.attempt_count, limit)
    return item


async def cancel_item(db: AsyncSession, item_id: uuid.UUID) -> PayoutQueueItem:
    """
    pending -> cancelled. Claimed (processing) items cannot be cancelled. Commission
    records rolled into the payout are released in the same transaction.
    """
    item = await get_item(db, item_id)
    validate_transition(item.status, PayoutStatus.CANCELLED)

    stmt = (
        update(PayoutQueueItem)
        .where(PayoutQueueItem.id == item_id)
        .where(PayoutQueueItem.status == PayoutStatus.PENDING.value)
        .where(PayoutQueueItem.claim_token.is_(None))
        .values(status=PayoutStatus.CANCELLED.value, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if (await db.execute(stmt)).rowcount != 1:
        await db.rollback()
        raise InvalidTransitionError(
            "Payout was claimed before it could be cancelled",
            payout_id=str(item_id),
        )
    # the orders go back to the unpaid pool so a later payout can pick them up
    await db.execute(
        update(CommissionRecord)
        .where(CommissionRecord.payout_item_id == item_id)
        .values(payout_item_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(item)
    logger.info("payout %s cancelled", item_id)
    return item


# ---------------------------------------------------------
# Reports
# ---------------------------------------------------------
async def needs_manual_intervention(db: AsyncSession, *, max_attempts: Optional[int] = None) -> list[PayoutQueueItem]:
    limit = settings.PAYOUT_MAX_ATTEMPTS if max_attempts is None else max_attempts
    stmt = (
        select(PayoutQueueItem)
        .where(PayoutQueueItem.status == PayoutStatus.FAILED.value)
        .where(PayoutQueueItem.attempt_count >= limit)
        .order_by(PayoutQueueItem.updated_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def payout_summary(
    db: AsyncSession, *, start: Optional[datetime] = None, end: Optional[datetime] = None
) -> dict[str, dict[str, object]]:
    """{status: {"count": n, "net_amount": Decimal}} for every status (zeros included)."""
    stmt = select(
        PayoutQueueItem.status,
        func.count(PayoutQueueItem.id),
        func.coalesce(func.sum(PayoutQueueItem.net_amount), 0),
    ).group_by(PayoutQueueItem.status)
    if start is not None:
        stmt = stmt.where(PayoutQueueItem.created_at >= start)
    if end is not None:
        stmt = stmt.where(PayoutQueueItem.created_at <= end)

    out: dict[str, dict[str, object]] = {s.value: {"count": 0, "net_amount": ZERO} for s in PayoutStatus}
    for status, count, total in (await db.execute(stmt)).all():
        out[status] = {"count": int(count or 0), "net_amount": quantize_money(to_decimal(str(total or 0)))}
    return out


async def failure_analysis(db: AsyncSession) -> list[dict[str, object]]:
    stmt = (
        select(
            PayoutQueueItem.failure_reason,
            PayoutQueueItem.method,
            func.count(PayoutQueueItem.id),
            func.coalesce(func.sum(PayoutQueueItem.net_amount), 0),
        )
        .where(PayoutQueueItem.status == PayoutStatus.FAILED.value)
        .group_by(PayoutQueueItem.failure_reason, PayoutQueueItem.method)
        .order_by(func.count(PayoutQueueItem.id).desc(), PayoutQueueItem.method)
    )
    return [
        {
            "failure_reason": reason,
            "method": method,
            "count": int(count or 0),
            "total_amount": quantize_money(to_decimal(str(total or 0))),
        }
        for reason, method, count, total in (await db.execute(stmt)).all()
    ]
