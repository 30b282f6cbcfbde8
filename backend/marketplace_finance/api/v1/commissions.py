# marketplace_finance/api/v1/commissions.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.api.deps.actor import get_current_actor
from marketplace_finance.api.deps.collaborators import get_order_ledger, get_supplier_directory
from marketplace_finance.clients.base import OrderLedger, SupplierDirectory
from marketplace_finance.core.commission_calculator import AdjustmentPreview, compute_commission, supplier_amount
from marketplace_finance.core.commission_service import stamp_order_commission
from marketplace_finance.core.rate_resolver import resolve
from marketplace_finance.crud import commission as commission_crud
from marketplace_finance.crud.rate_schedule import current_schedule
from marketplace_finance.db.session import get_db
from marketplace_finance.schemas.commission import (
    AdjustmentApplyIn,
    AdjustmentListOut,
    AdjustmentOut,
    AdjustmentPreviewIn,
    AdjustmentPreviewOut,
    CommissionRecordOut,
    CommissionSummaryOut,
    ComputeCommissionIn,
    ComputeCommissionOut,
    ResolveRateIn,
    ResolveRateOut,
    StampOut,
)

router = APIRouter(prefix="/commissions", tags=["commissions"])


def _preview_out(p: AdjustmentPreview) -> AdjustmentPreviewOut:
    return AdjustmentPreviewOut(
        adjustment_type=p.adjustment_type.value,
        adjustment_amount=p.adjustment_amount,
        original_commission=p.original_commission,
        new_commission=p.new_commission,
        impact=p.impact,
        impact_percentage=p.impact_percentage,
        record_version=p.record_version,
    )


@router.post("/resolve-rate", response_model=ResolveRateOut)
async def resolve_rate(payload: ResolveRateIn, db: AsyncSession = Depends(get_db)):
    """Effective rate under the current schedule, with the layer it came from."""
    schedule = await current_schedule(db)
    r = resolve(schedule, payload.supplier_id, payload.supplier_tier, payload.category_id)
    return ResolveRateOut(rate=r.rate, provenance=r.provenance.value, schedule_version=r.schedule_version)


@router.post("/compute", response_model=ComputeCommissionOut)
async def compute(payload: ComputeCommissionIn, db: AsyncSession = Depends(get_db)):
    """Quote only; nothing is persisted."""
    schedule = await current_schedule(db)
    r = resolve(schedule, payload.supplier_id, payload.supplier_tier, payload.category_id)
    commission = compute_commission(payload.order_amount, r.rate)
    return ComputeCommissionOut(
        order_amount=payload.order_amount,
        rate=r.rate,
        provenance=r.provenance.value,
        schedule_version=r.schedule_version,
        commission_amount=commission,
        supplier_amount=supplier_amount(payload.order_amount, commission),
    )


@router.post("/orders/{order_id}/stamp", response_model=StampOut)
async def stamp_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    orders: OrderLedger = Depends(get_order_ledger),
    suppliers: SupplierDirectory = Depends(get_supplier_directory),
):
    rec, created = await stamp_order_commission(db, orders, suppliers, order_id)
    return StampOut(record=CommissionRecordOut.model_validate(rec), created=created)


@router.get("/records/{record_id}", response_model=CommissionRecordOut)
async def get_record(record_id: UUID, db: AsyncSession = Depends(get_db)):
    return await commission_crud.get_record(db, record_id)


@router.post("/records/{record_id}/adjustments/preview", response_model=AdjustmentPreviewOut)
async def preview_adjustment(
    record_id: UUID,
    payload: AdjustmentPreviewIn,
    db: AsyncSession = Depends(get_db),
):
    """
    What-if for an adjustment. Returns record_version; send it back as
    expected_version when applying.
    """
    p = await commission_crud.preview_record_adjustment(db, record_id, payload.adjustment_type, payload.amount)
    return _preview_out(p)


@router.post("/records/{record_id}/adjustments", response_model=AdjustmentOut, status_code=201)
async def apply_adjustment(
    record_id: UUID,
    payload: AdjustmentApplyIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    adj, _ = await commission_crud.apply_adjustment(
        db,
        record_id,
        adjustment_type=payload.adjustment_type,
        amount=payload.amount,
        reason=payload.reason,
        applied_by=actor,
        expected_version=payload.expected_version,
    )
    return adj


@router.get("/records/{record_id}/adjustments", response_model=AdjustmentListOut)
async def list_adjustments(record_id: UUID, db: AsyncSession = Depends(get_db)):
    rows = await commission_crud.list_adjustments(db, record_id)
    return AdjustmentListOut(items=[AdjustmentOut.model_validate(r) for r in rows], total=len(rows))


@router.get("/summary", response_model=CommissionSummaryOut)
async def commission_summary(
    db: AsyncSession = Depends(get_db),
    supplier_id: Optional[str] = Query(None, max_length=100),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """Platform totals, or one supplier's when supplier_id is given."""
    s = await commission_crud.commission_summary(db, supplier_id=supplier_id, start=start, end=end)
    return CommissionSummaryOut(
        supplier_id=supplier_id,
        total_orders=s.total_orders,
        total_sales=s.total_sales,
        total_commission=s.total_commission,
        total_supplier_earnings=s.total_supplier_earnings,
        avg_commission_rate=s.avg_commission_rate,
    )
