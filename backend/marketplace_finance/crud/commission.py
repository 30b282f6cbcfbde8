# marketplace_finance/crud/commission.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.core.commission_calculator import (
    AdjustmentPreview,
    AdjustmentType,
    compute_commission,
    preview_adjustment,
    supplier_amount,
)
from marketplace_finance.core.errors import (
    CommissionRecordNotFoundError,
    InvalidAdjustmentError,
    StaleCommissionError,
)
from marketplace_finance.core.money import quantize_money
from marketplace_finance.core.payout_state import PayoutStatus
from marketplace_finance.core.rate_resolver import RateResolution
from marketplace_finance.models.commission_adjustment import CommissionAdjustment
from marketplace_finance.models.commission_record import CommissionRecord
from marketplace_finance.models.payout_queue_item import PayoutQueueItem

logger = logging.getLogger(__name__)

# payout item statuses whose amounts an adjustment may still re-price
_REPRICEABLE = {PayoutStatus.PENDING.value, PayoutStatus.FAILED.value}
_SETTLED = {PayoutStatus.COMPLETED.value, PayoutStatus.CANCELLED.value}


@dataclass(frozen=True)
class CommissionSummary:
    total_orders: int
    total_sales: Decimal
    total_commission: Decimal
    total_supplier_earnings: Decimal
    avg_commission_rate: Decimal


async def get_record(db: AsyncSession, record_id: uuid.UUID) -> CommissionRecord:
    rec = await db.get(CommissionRecord, record_id, populate_existing=True)
    if rec is None:
        raise CommissionRecordNotFoundError("Commission record not found", record_id=str(record_id))
    return rec


async def get_record_by_order(db: AsyncSession, order_id: str) -> Optional[CommissionRecord]:
    stmt = select(CommissionRecord).where(CommissionRecord.order_id == order_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_record(
    db: AsyncSession,
    *,
    order_id: str,
    supplier_id: str,
    category_id: Optional[str],
    order_amount: Decimal,
    resolution: RateResolution,
) -> tuple[CommissionRecord, bool]:
    """
    Persist the commission stamp for an order. Returns (record, created).
    An order is stamped once: a second call returns the existing record untouched.
    """
    existing = await get_record_by_order(db, order_id)
    if existing is not None:
        return existing, False

    amount = quantize_money(order_amount)
    commission = compute_commission(amount, resolution.rate)
    rec = CommissionRecord(
        order_id=order_id,
        supplier_id=supplier_id,
        category_id=category_id,
        order_amount=amount,
        resolved_rate=resolution.rate,
        commission_amount=commission,
        current_commission=commission,
        resolved_from=resolution.provenance.value,
        schedule_version=resolution.schedule_version,
        adjustment_seq=0,
    )
    db.add(rec)
    try:
        await db.commit()
    except IntegrityError:
        # race: stamped concurrently
        await db.rollback()
        existing = await get_record_by_order(db, order_id)
        if existing is None:
            raise
        return existing, False

    await db.refresh(rec)
    logger.info(
        "stamped order %s: rate %s (%s, schedule v%s) commission %s",
        order_id,
        resolution.rate,
        resolution.provenance.value,
        resolution.schedule_version,
        commission,
    )
    return rec, True


async def refunded_total(db: AsyncSession, record_id: uuid.UUID) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(CommissionAdjustment.adjustment_amount), 0))
        .where(CommissionAdjustment.commission_record_id == record_id)
        .where(CommissionAdjustment.adjustment_type == AdjustmentType.REFUND.value)
    )
    return quantize_money(Decimal(str(total or 0)))


def preview_for_record(
    rec: CommissionRecord,
    adjustment_type: AdjustmentType | str,
    amount,
    *,
    refunded: Decimal = Decimal("0"),
) -> AdjustmentPreview:
    return preview_adjustment(
        order_amount=rec.order_amount,
        current_commission=rec.current_commission,
        adjustment_type=adjustment_type,
        amount=amount,
        record_version=rec.adjustment_seq,
        stamped_commission=rec.commission_amount,
        refunded_total=refunded,
    )


async def preview_record_adjustment(
    db: AsyncSession,
    record_id: uuid.UUID,
    adjustment_type: AdjustmentType | str,
    amount,
) -> AdjustmentPreview:
    rec = await get_record(db, record_id)
    return preview_for_record(rec, adjustment_type, amount, refunded=await refunded_total(db, rec.id))


async def apply_adjustment(
    db: AsyncSession,
    record_id: uuid.UUID,
    *,
    adjustment_type: AdjustmentType | str,
    amount,
    reason: str,
    applied_by: str,
    expected_version: int,
) -> tuple[CommissionAdjustment, AdjustmentPreview]:
    """
    Append one adjustment, guarded by the record's adjustment_seq.

    The preview is recomputed from the stored record, so with unchanged inputs
    resulting_commission == the preview's new_commission. If the record moved
    past `expected_version` (someone else adjusted it since the caller's preview),
    StaleCommissionError is raised and nothing is written.
    """
    if not (reason or "").strip():
        raise InvalidAdjustmentError("reason is required")

    rec = await get_record(db, record_id)
    if rec.adjustment_seq != expected_version:
        raise StaleCommissionError(
            "Commission was adjusted since the preview was computed",
            expected_version=expected_version,
            current_version=rec.adjustment_seq,
        )

    preview = preview_for_record(rec, adjustment_type, amount, refunded=await refunded_total(db, rec.id))
    delta = preview.new_commission - preview.original_commission

    # Reconcile against the payout pipeline before writing anything
    settled_after_payout = False
    item: Optional[PayoutQueueItem] = None
    if rec.payout_item_id is not None:
        item = await db.get(PayoutQueueItem, rec.payout_item_id, populate_existing=True)
    if item is not None:
        if item.status == PayoutStatus.PROCESSING.value:
            raise InvalidAdjustmentError(
                "Linked payout is being processed; adjust after it settles",
                payout_item_id=str(item.id),
            )
        if item.status in _SETTLED:
            settled_after_payout = True

    next_seq = expected_version + 1
    stmt = (
        update(CommissionRecord)
        .where(CommissionRecord.id == rec.id)
        .where(CommissionRecord.adjustment_seq == expected_version)
        .values(current_commission=preview.new_commission, adjustment_seq=next_seq)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount != 1:
        await db.rollback()
        raise StaleCommissionError(
            "Commission was adjusted concurrently",
            expected_version=expected_version,
        )

    # rollback expires loaded rows, so keep plain values for the error paths
    order_id = rec.order_id
    if item is not None and item.status in _REPRICEABLE and delta != 0:
        item_id, item_status = item.id, item.status
        new_commission = quantize_money(item.commission_amount + delta)
        new_net = quantize_money(item.gross_amount - new_commission)
        if new_net < 0:
            await db.rollback()
            raise InvalidAdjustmentError(
                "Adjustment would make the linked payout negative",
                payout_item_id=str(item_id),
                net_amount=str(new_net),
            )
        reprice = (
            update(PayoutQueueItem)
            .where(PayoutQueueItem.id == item_id)
            .where(PayoutQueueItem.status == item_status)
            .values(commission_amount=new_commission, net_amount=new_net)
            .execution_options(synchronize_session=False)
        )
        if (await db.execute(reprice)).rowcount != 1:
            await db.rollback()
            raise StaleCommissionError(
                "Linked payout changed state during the adjustment",
                payout_item_id=str(item_id),
            )

    adj = CommissionAdjustment(
        commission_record_id=rec.id,
        sequence=next_seq,
        adjustment_type=preview.adjustment_type.value,
        adjustment_amount=preview.adjustment_amount,
        previous_commission=preview.original_commission,
        resulting_commission=preview.new_commission,
        delta=delta,
        reason=reason.strip(),
        applied_by=applied_by,
        settled_after_payout=settled_after_payout,
    )
    db.add(adj)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise StaleCommissionError("Commission was adjusted concurrently", expected_version=expected_version) from e

    await db.refresh(adj)
    logger.info(
        "adjustment #%s on order %s by %s: %s %s -> commission %s (delta %s%s)",
        next_seq,
        order_id,
        applied_by,
        preview.adjustment_type.value,
        preview.adjustment_amount,
        preview.new_commission,
        delta,
        ", after payout settled" if settled_after_payout else "",
    )
    return adj, preview


async def list_adjustments(db: AsyncSession, record_id: uuid.UUID) -> list[CommissionAdjustment]:
    await get_record(db, record_id)
    stmt = (
        select(CommissionAdjustment)
        .where(CommissionAdjustment.commission_record_id == record_id)
        .order_by(CommissionAdjustment.sequence)
    )
    return list((await db.execute(stmt)).scalars().all())


async def commission_summary(
    db: AsyncSession,
    *,
    supplier_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> CommissionSummary:
    """Totals over stamped orders (current commission, i.e. after adjustments)."""
    stmt = select(
        func.count(CommissionRecord.id),
        func.coalesce(func.sum(CommissionRecord.order_amount), 0),
        func.coalesce(func.sum(CommissionRecord.current_commission), 0),
        func.coalesce(func.avg(CommissionRecord.resolved_rate), 0),
    )
    if supplier_id:
        stmt = stmt.where(CommissionRecord.supplier_id == supplier_id)
    if start is not None:
        stmt = stmt.where(CommissionRecord.created_at >= start)
    if end is not None:
        stmt = stmt.where(CommissionRecord.created_at <= end)

    count, sales, commission, avg_rate = (await db.execute(stmt)).one()
    sales = quantize_money(Decimal(str(sales or 0)))
    commission = quantize_money(Decimal(str(commission or 0)))
    return CommissionSummary(
        total_orders=int(count or 0),
        total_sales=sales,
        total_commission=commission,
        total_supplier_earnings=supplier_amount(sales, commission),
        avg_commission_rate=Decimal(str(avg_rate or 0)).quantize(Decimal("0.001")),
    )


async def unlinked_records_for_supplier(db: AsyncSession, supplier_id: str) -> list[CommissionRecord]:
    stmt = (
        select(CommissionRecord)
        .where(CommissionRecord.supplier_id == supplier_id)
        .where(CommissionRecord.payout_item_id.is_(None))
        .order_by(CommissionRecord.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())
