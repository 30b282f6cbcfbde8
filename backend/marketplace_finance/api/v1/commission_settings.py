# marketplace_finance/api/v1/commission_settings.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.api.deps.actor import get_current_actor
from marketplace_finance.api.deps.collaborators import get_order_ledger, get_supplier_directory
from marketplace_finance.clients.base import OrderLedger, SupplierDirectory
from marketplace_finance.core.commission_service import analyze_proposed_changes
from marketplace_finance.core.impact_analyzer import ImpactReport
from marketplace_finance.core.rate_schedule import RateSchedule, ScheduleChange
from marketplace_finance.crud import rate_schedule as schedule_crud
from marketplace_finance.db.session import get_db
from marketplace_finance.schemas.rate_schedule import (
    HistoryEntryOut,
    HistoryPageOut,
    ImpactAnalysisIn,
    ImpactReportOut,
    RateChangeIn,
    RateRemoveIn,
    RateScheduleOut,
    ScheduleChangeOut,
    ScheduleUpdateOut,
    SupplierImpactOut,
    TierRatesIn,
)

router = APIRouter(prefix="/commission-settings", tags=["commission-settings"])


def _schedule_out(s: RateSchedule) -> RateScheduleOut:
    return RateScheduleOut(**s.as_dict())


def _update_out(s: RateSchedule, changes: list[ScheduleChange]) -> ScheduleUpdateOut:
    return ScheduleUpdateOut(
        schedule=_schedule_out(s),
        changes=[
            ScheduleChangeOut(
                field=c.field,
                scope_key=c.scope_key,
                previous_value=c.previous_value,
                new_value=c.new_value,
            )
            for c in changes
        ],
    )


def _report_out(r: ImpactReport) -> ImpactReportOut:
    return ImpactReportOut(
        current_version=r.current_version,
        candidate_version=r.candidate_version,
        total_suppliers=r.total_suppliers,
        affected_suppliers=r.affected_suppliers,
        trailing_commission=r.trailing_commission,
        estimated_revenue_change=r.estimated_revenue_change,
        estimated_supplier_impact=r.estimated_supplier_impact,
        projected_monthly_change=r.projected_monthly_change,
        risk_level=r.risk_level.value,
        recommendations=list(r.recommendations),
        supplier_impacts=[
            SupplierImpactOut(
                supplier_id=i.supplier_id,
                old_rate=i.old_rate,
                new_rate=i.new_rate,
                rate_change=i.rate_change,
                revenue_change=i.revenue_change,
            )
            for i in r.supplier_impacts
        ],
    )


@router.get("", response_model=RateScheduleOut)
async def get_current_settings(db: AsyncSession = Depends(get_db)):
    return _schedule_out(await schedule_crud.current_schedule(db))


@router.get("/history", response_model=HistoryPageOut)
async def get_history(
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows, total = await schedule_crud.list_history(db, limit=limit, offset=offset)
    return HistoryPageOut(
        items=[HistoryEntryOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.put("/categories/{category_id}", response_model=ScheduleUpdateOut)
async def set_category_rate(
    category_id: str,
    payload: RateChangeIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    s, changes = await schedule_crud.append_version(
        db,
        lambda cur: cur.with_category_rate(category_id, payload.rate, changed_by=actor, reason=payload.reason),
        base_version=payload.base_version,
    )
    return _update_out(s, changes)


@router.delete("/categories/{category_id}", response_model=ScheduleUpdateOut)
async def remove_category_rate(
    category_id: str,
    payload: RateRemoveIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    s, changes = await schedule_crud.append_version(
        db,
        lambda cur: cur.without_category_rate(category_id, changed_by=actor, reason=payload.reason),
        base_version=payload.base_version,
    )
    return _update_out(s, changes)


@router.put("/suppliers/{supplier_id}", response_model=ScheduleUpdateOut)
async def set_supplier_override(
    supplier_id: str,
    payload: RateChangeIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    s, changes = await schedule_crud.append_version(
        db,
        lambda cur: cur.with_supplier_override(supplier_id, payload.rate, changed_by=actor, reason=payload.reason),
        base_version=payload.base_version,
    )
    return _update_out(s, changes)


@router.delete("/suppliers/{supplier_id}", response_model=ScheduleUpdateOut)
async def remove_supplier_override(
    supplier_id: str,
    payload: RateRemoveIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    s, changes = await schedule_crud.append_version(
        db,
        lambda cur: cur.without_supplier_override(supplier_id, changed_by=actor, reason=payload.reason),
        base_version=payload.base_version,
    )
    return _update_out(s, changes)


@router.put("/tiers", response_model=ScheduleUpdateOut)
async def update_tier_rates(
    payload: TierRatesIn,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    """Default rate + all four tiers in one version (all or nothing)."""
    s, changes = await schedule_crud.append_version(
        db,
        lambda cur: cur.with_tier_rates(
            default_rate=payload.default_rate,
            tier_rates=payload.tier_rates,
            changed_by=actor,
            reason=payload.reason,
        ),
        base_version=payload.base_version,
    )
    return _update_out(s, changes)


@router.post("/impact-analysis", response_model=ImpactReportOut)
async def impact_analysis(
    payload: ImpactAnalysisIn,
    db: AsyncSession = Depends(get_db),
    orders: OrderLedger = Depends(get_order_ledger),
    suppliers: SupplierDirectory = Depends(get_supplier_directory),
):
    """Simulate proposed changes against the trailing-window order history. Writes nothing."""
    report = await analyze_proposed_changes(
        db,
        orders,
        suppliers,
        default_rate=payload.default_rate,
        tier_rates=payload.tier_rates,
        category_rates=payload.category_rates,
        supplier_overrides=payload.supplier_overrides,
    )
    return _report_out(report)
