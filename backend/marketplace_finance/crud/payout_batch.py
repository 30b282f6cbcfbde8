# marketplace_finance/crud/payout_batch.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.core.money import ZERO, quantize_money
from marketplace_finance.core.payout_state import PayoutStatus
from marketplace_finance.crud.payout_queue import claim_items
from marketplace_finance.models.payout_batch import PayoutBatch
from marketplace_finance.models.payout_queue_item import PayoutQueueItem

logger = logging.getLogger(__name__)

MAX_NUMBER_RETRIES = 5


def format_batch_number(sequence: int) -> str:
    return f"PB-{sequence:06d}"


def derive_batch_status(member_statuses: Sequence[str]) -> str:
    """completed if every member completed, failed if any failed, else processing."""
    if member_statuses and all(s == PayoutStatus.COMPLETED.value for s in member_statuses):
        return "completed"
    if any(s == PayoutStatus.FAILED.value for s in member_statuses):
        return "failed"
    return "processing"


async def _next_sequence(db: AsyncSession) -> int:
    current = await db.scalar(select(func.max(PayoutBatch.sequence)))
    return int(current or 0) + 1


async def open_batch(
    db: AsyncSession,
    item_ids: Sequence[uuid.UUID],
    *,
    processed_by: str,
) -> tuple[PayoutBatch, list[PayoutQueueItem]]:
    """
    Claim `item_ids` and insert the batch row in ONE transaction.

    Returns the batch and the claimed items as they are after the claim
    (attempt_count already bumped). ConcurrentClaimError from the claim
    propagates untouched; a batch-number collision rolls everything back and
    the claim is attempted again with the next number.
    """
    for _ in range(MAX_NUMBER_RETRIES):
        batch_id = uuid.uuid4()
        await claim_items(db, item_ids, batch_id)

        claimed = list(
            (
                await db.execute(select(PayoutQueueItem).where(PayoutQueueItem.claim_token == batch_id))
            ).scalars().all()
        )
        # identity map may hold pre-claim copies
        for item in claimed:
            await db.refresh(item)

        total = quantize_money(sum((i.net_amount for i in claimed), ZERO))
        seq = await _next_sequence(db)
        batch = PayoutBatch(
            id=batch_id,
            sequence=seq,
            batch_number=format_batch_number(seq),
            member_item_ids=[str(i) for i in item_ids],
            total_amount=total,
            status="processing",
            processed_by=processed_by,
        )
        db.add(batch)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            continue

        await db.refresh(batch)
        order = {iid: n for n, iid in enumerate(item_ids)}
        claimed.sort(key=lambda i: order.get(i.id, 0))
        logger.info(
            "batch %s opened by %s: %d item(s), total %s",
            batch.batch_number,
            processed_by,
            len(claimed),
            total,
        )
        return batch, claimed

    raise RuntimeError("Failed to allocate a payout batch number; retry later")


async def finalize_batch(
    db: AsyncSession,
    batch_id: uuid.UUID,
    *,
    successful: int,
    failed: int,
) -> PayoutBatch:
    """Derive the batch status from its members' current statuses and persist it."""
    batch = await db.get(PayoutBatch, batch_id)
    if batch is None:
        raise LookupError(f"payout batch {batch_id} not found")

    member_ids = [uuid.UUID(i) for i in batch.member_item_ids]
    statuses = list(
        (
            await db.execute(select(PayoutQueueItem.status).where(PayoutQueueItem.id.in_(member_ids)))
        ).scalars().all()
    )

    batch.status = derive_batch_status(statuses)
    batch.successful_count = successful
    batch.failed_count = failed
    if batch.status != "processing":
        batch.completed_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(batch)

    logger.info(
        "batch %s finished: %s (%d ok, %d failed)",
        batch.batch_number,
        batch.status,
        successful,
        failed,
    )
    return batch


async def get_batch(db: AsyncSession, batch_id: uuid.UUID) -> Optional[PayoutBatch]:
    return await db.get(PayoutBatch, batch_id)


async def list_batches(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PayoutBatch], int]:
    conds = [PayoutBatch.status == status] if status else []
    total = await db.scalar(select(func.count()).select_from(PayoutBatch).where(*conds))
    rows = (
        await db.execute(
            select(PayoutBatch)
            .where(*conds)
            .order_by(PayoutBatch.sequence.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return list(rows), int(total or 0)

