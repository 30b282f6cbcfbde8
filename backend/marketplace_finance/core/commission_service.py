# marketplace_finance/core/commission_service.py
"""
Operations that combine the local ledger with the external collaborators:
stamping a completed order's commission, and running an impact analysis for
a proposed schedule against the live supplier population.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.clients.base import OrderLedger, StampedCommission, SupplierDirectory
from marketplace_finance.core.commission_calculator import supplier_amount
from marketplace_finance.core.errors import InvalidRateError, OrderNotFoundError, SupplierNotFoundError
from marketplace_finance.core.impact_analyzer import (
    ImpactReport,
    ImpactThresholds,
    OrderSample,
    SupplierSample,
    analyze,
)
from marketplace_finance.core.rate_resolver import resolve
from marketplace_finance.core.rate_schedule import RateSchedule
from marketplace_finance.core.tier import TIER_NAMES, normalize_tier
from marketplace_finance.crud.commission import create_record, get_record_by_order
from marketplace_finance.crud.rate_schedule import current_schedule
from marketplace_finance.models.commission_record import CommissionRecord

logger = logging.getLogger(__name__)


async def stamp_order_commission(
    db: AsyncSession,
    orders: OrderLedger,
    suppliers: SupplierDirectory,
    order_id: str,
) -> tuple[CommissionRecord, bool]:
    """
    Resolve, compute and persist the commission of a completed order, then hand
    it to the order ledger. An order that already has a record is returned as is.
    """
    existing = await get_record_by_order(db, order_id)
    if existing is not None:
        return existing, False

    order = await orders.get_order(order_id)
    if order is None:
        raise OrderNotFoundError("Order not found", order_id=order_id)

    supplier = await suppliers.get_supplier(order.supplier_id)
    if supplier is None:
        raise SupplierNotFoundError("Supplier not found", supplier_id=order.supplier_id)

    schedule = await current_schedule(db)
    resolution = resolve(schedule, supplier.supplier_id, supplier.membership_tier, order.category_id)

    rec, created = await create_record(
        db,
        order_id=order.order_id,
        supplier_id=order.supplier_id,
        category_id=order.category_id,
        order_amount=order.order_amount,
        resolution=resolution,
    )
    if created:
        await orders.record_commission(
            StampedCommission(
                order_id=rec.order_id,
                supplier_id=rec.supplier_id,
                order_amount=rec.order_amount,
                commission_rate=rec.resolved_rate,
                commission_amount=rec.commission_amount,
                supplier_amount=supplier_amount(rec.order_amount, rec.commission_amount),
                resolved_from=rec.resolved_from,
                schedule_version=rec.schedule_version,
            )
        )
    return rec, created


def build_candidate(
    current: RateSchedule,
    *,
    default_rate=None,
    tier_rates: Optional[Mapping[str, object]] = None,
    category_rates: Optional[Mapping[str, object]] = None,
    supplier_overrides: Optional[Mapping[str, object]] = None,
) -> RateSchedule:
    """
    Current schedule with the proposed edits laid over it. In the category and
    supplier maps a None value removes the entry. Never persisted.
    """
    tiers = dict(current.tier_rates)
    for k, v in (tier_rates or {}).items():
        name = normalize_tier(k)
        if name not in TIER_NAMES:
            raise InvalidRateError("Unknown tier", tier=k)
        tiers[name] = v

    def _merge(base: Mapping[str, object], edits: Optional[Mapping[str, object]]) -> dict[str, object]:
        merged = dict(base)
        for k, v in (edits or {}).items():
            if v is None:
                merged.pop(k, None)
            else:
                merged[k] = v
        return merged

    # __post_init__ validates every value
    return replace(
        current,
        default_rate=current.default_rate if default_rate is None else default_rate,
        tier_rates=tiers,
        category_rates=_merge(current.category_rates, category_rates),
        supplier_overrides=_merge(current.supplier_overrides, supplier_overrides),
        version=current.version + 1,
        effective_from=datetime.now(timezone.utc),
        changed_by=None,
        change_reason="impact analysis candidate",
    )


async def load_population(
    orders: OrderLedger,
    suppliers: SupplierDirectory,
    *,
    trailing_days: int,
    now: Optional[datetime] = None,
) -> list[SupplierSample]:
    since = (now or datetime.now(timezone.utc)) - timedelta(days=trailing_days)
    active = [s for s in await suppliers.active_suppliers() if s.is_active]
    histories = await asyncio.gather(*(orders.recent_orders(s.supplier_id, since) for s in active))
    return [
        SupplierSample(
            supplier_id=s.supplier_id,
            tier=s.membership_tier,
            orders=tuple(OrderSample(amount=o.order_amount, category_id=o.category_id) for o in history),
        )
        for s, history in zip(active, histories)
    ]


async def analyze_proposed_changes(
    db: AsyncSession,
    orders: OrderLedger,
    suppliers: SupplierDirectory,
    *,
    default_rate=None,
    tier_rates: Optional[Mapping[str, object]] = None,
    category_rates: Optional[Mapping[str, object]] = None,
    supplier_overrides: Optional[Mapping[str, object]] = None,
    thresholds: Optional[ImpactThresholds] = None,
) -> ImpactReport:
    t = thresholds or ImpactThresholds.from_settings()
    current = await current_schedule(db)
    candidate = build_candidate(
        current,
        default_rate=default_rate,
        tier_rates=tier_rates,
        category_rates=category_rates,
        supplier_overrides=supplier_overrides,
    )
    population = await load_population(orders, suppliers, trailing_days=t.trailing_days)
    report = analyze(candidate, current, population, t)
    logger.info(
        "impact analysis against v%s: %d/%d suppliers affected, change %s, risk %s",
        current.version,
        report.affected_suppliers,
        report.total_suppliers,
        report.estimated_revenue_change,
        report.risk_level.value,
    )
    return report
