# marketplace_finance/api/v1/payouts.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.api.deps.actor import get_current_actor
from marketplace_finance.api.deps.collaborators import get_batch_processor
from marketplace_finance.core.batch_processor import BatchProcessor, BatchResult
from marketplace_finance.crud import payout_batch as batch_crud
from marketplace_finance.crud import payout_queue as queue_crud
from marketplace_finance.db.session import get_db
from marketplace_finance.schemas.payout import (
    BatchResultOut,
    FailureAnalysisOut,
    FailureGroupOut,
    PaymentMethodOut,
    PayoutBatchListOut,
    PayoutBatchOut,
    PayoutEnqueueIn,
    PayoutListOut,
    PayoutOut,
    PayoutSummaryOut,
    ProcessBatchIn,
    ProcessEligibleIn,
    RetryIn,
    RetryOut,
    StatusTotalsOut,
    SupplierPayoutIn,
)

router = APIRouter(prefix="/payouts", tags=["payouts"])


def _batch_out(r: BatchResult) -> BatchResultOut:
    return BatchResultOut.model_validate(r)


@router.post("", response_model=list[PayoutOut], status_code=201)
async def enqueue_payouts(payload: PayoutEnqueueIn, db: AsyncSession = Depends(get_db)):
    """Queue payouts. Either every item is valid and queued, or none is."""
    requests = [
        queue_crud.PayoutRequest(
            supplier_id=i.supplier_id,
            gross_amount=i.gross_amount,
            commission_amount=i.commission_amount,
            method=i.method,
            scheduled_date=i.scheduled_date,
        )
        for i in payload.items
    ]
    return await queue_crud.enqueue_payouts(db, requests)


@router.post("/suppliers/{supplier_id}", response_model=PayoutOut, status_code=201)
async def enqueue_supplier_payout(
    supplier_id: str,
    payload: SupplierPayoutIn,
    db: AsyncSession = Depends(get_db),
):
    """Roll the supplier's unpaid commission records into one payout."""
    item = await queue_crud.enqueue_supplier_payout(
        db,
        supplier_id,
        method=payload.method,
        scheduled_date=payload.scheduled_date,
    )
    if item is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return item


@router.get("", response_model=PayoutListOut)
async def list_payouts(
    db: AsyncSession = Depends(get_db),
    status_filter: Optional[str] = Query(None, alias="status"),
    supplier_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows, total = await queue_crud.list_items(
        db, status=status_filter, supplier_id=supplier_id, limit=limit, offset=offset
    )
    return PayoutListOut(items=[PayoutOut.model_validate(r) for r in rows], total=total, limit=limit, offset=offset)


@router.get("/eligible", response_model=list[PayoutOut])
async def list_eligible(
    db: AsyncSession = Depends(get_db),
    limit: int = Query(100, ge=1, le=1000),
):
    return await queue_crud.select_eligible(db, limit=limit)


@router.get("/methods", response_model=list[PaymentMethodOut])
async def payment_methods():
    """Enabled payout methods with their limits, fee and typical processing time."""
    return [PaymentMethodOut.model_validate(m) for m in queue_crud.enabled_payment_methods()]


@router.get("/summary", response_model=PayoutSummaryOut)
async def payout_summary(
    db: AsyncSession = Depends(get_db),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    data = await queue_crud.payout_summary(db, start=start, end=end)
    return PayoutSummaryOut(by_status={k: StatusTotalsOut(**v) for k, v in data.items()})


@router.get("/failures", response_model=FailureAnalysisOut)
async def failure_analysis(db: AsyncSession = Depends(get_db)):
    rows = await queue_crud.failure_analysis(db)
    return FailureAnalysisOut(items=[FailureGroupOut(**r) for r in rows])


@router.get("/manual-intervention", response_model=list[PayoutOut])
async def manual_intervention(db: AsyncSession = Depends(get_db)):
    """Failed payouts that have used all their attempts."""
    return await queue_crud.needs_manual_intervention(db)


@router.get("/batches", response_model=PayoutBatchListOut)
async def list_batches(
    db: AsyncSession = Depends(get_db),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows, total = await batch_crud.list_batches(db, status=status_filter, limit=limit, offset=offset)
    return PayoutBatchListOut(
        items=[PayoutBatchOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/batches/{batch_id}", response_model=PayoutBatchOut)
async def get_batch(batch_id: UUID, db: AsyncSession = Depends(get_db)):
    batch = await batch_crud.get_batch(db, batch_id)
    if batch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "BATCH_NOT_FOUND", "message": "Payout batch not found"},
        )
    return batch


@router.post("/batches", response_model=BatchResultOut)
async def process_batch(
    payload: ProcessBatchIn,
    processor: BatchProcessor = Depends(get_batch_processor),
    actor: str = Depends(get_current_actor),
):
    result = await processor.process_batch(payload.item_ids, processed_by=actor, batch_size=payload.batch_size)
    return _batch_out(result)


@router.post("/batches/auto", response_model=Optional[BatchResultOut])
async def process_eligible(
    payload: ProcessEligibleIn,
    processor: BatchProcessor = Depends(get_batch_processor),
    actor: str = Depends(get_current_actor),
):
    """Run every eligible payout (up to `limit`) as one batch. null when nothing is due."""
    result = await processor.process_eligible(processed_by=actor, limit=payload.limit, batch_size=payload.batch_size)
    return _batch_out(result) if result else None


@router.get("/{payout_id}", response_model=PayoutOut)
async def get_payout(payout_id: UUID, db: AsyncSession = Depends(get_db)):
    return await queue_crud.get_item(db, payout_id)


@router.post("/{payout_id}/retry", response_model=RetryOut)
async def retry_payout(
    payout_id: UUID,
    payload: RetryIn,
    processor: BatchProcessor = Depends(get_batch_processor),
    actor: str = Depends(get_current_actor),
):
    item, result = await processor.retry_payout(payout_id, processed_by=actor, process_now=payload.process_now)
    return RetryOut(payout=PayoutOut.model_validate(item), batch=_batch_out(result) if result else None)


@router.post("/{payout_id}/cancel", response_model=PayoutOut)
async def cancel_payout(
    payout_id: UUID,
    processor: BatchProcessor = Depends(get_batch_processor),
    actor: str = Depends(get_current_actor),
):
    _ = actor  # admin action; identity required
    return await processor.cancel_payout(payout_id)
