# marketplace_finance/core/impact_analyzer.py
"""
Simulates a proposed RateSchedule against the supplier population.

The simulation base is each supplier's trailing-window order history (amount +
category), so the estimate is deterministic and replayable: same schedules +
same samples -> same report. Settled commissions are never recomputed here.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from marketplace_finance.core.config import settings
from marketplace_finance.core.money import HUNDRED, ZERO, percentage_of, quantize_money, to_decimal
from marketplace_finance.core.rate_resolver import resolve
from marketplace_finance.core.rate_schedule import RateSchedule

DAYS_PER_MONTH = Decimal("30")


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class OrderSample:
    amount: Decimal
    category_id: Optional[str] = None


@dataclass(frozen=True)
class SupplierSample:
    supplier_id: str
    tier: Optional[str]
    orders: Sequence[OrderSample] = ()


@dataclass(frozen=True)
class ImpactThresholds:
    high_risk_pct: Decimal = Decimal("10")
    medium_risk_pct: Decimal = Decimal("3")
    rate_delta_threshold: Decimal = Decimal("1.0")
    trailing_days: int = 90

    @classmethod
    def from_settings(cls) -> "ImpactThresholds":
        return cls(
            high_risk_pct=settings.IMPACT_HIGH_RISK_PCT,
            medium_risk_pct=settings.IMPACT_MEDIUM_RISK_PCT,
            rate_delta_threshold=settings.IMPACT_RATE_DELTA_THRESHOLD,
            trailing_days=settings.IMPACT_TRAILING_DAYS,
        )


@dataclass(frozen=True)
class SupplierImpact:
    supplier_id: str
    old_rate: Decimal
    new_rate: Decimal
    rate_change: Decimal
    revenue_change: Decimal


@dataclass(frozen=True)
class ImpactReport:
    current_version: int
    candidate_version: int
    total_suppliers: int
    affected_suppliers: int
    trailing_commission: Decimal
    estimated_revenue_change: Decimal
    estimated_supplier_impact: Decimal
    projected_monthly_change: Decimal
    risk_level: RiskLevel
    recommendations: list[str] = field(default_factory=list)
    supplier_impacts: list[SupplierImpact] = field(default_factory=list)


def _risk_level(change: Decimal, baseline: Decimal, t: ImpactThresholds) -> RiskLevel:
    if change == 0:
        return RiskLevel.LOW
    if baseline == 0:
        return RiskLevel.HIGH
    pct = abs(change) / baseline * HUNDRED
    if pct > t.high_risk_pct:
        return RiskLevel.HIGH
    if pct > t.medium_risk_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _recommendations(
    impacts: list[SupplierImpact],
    total: int,
    change: Decimal,
    monthly: Decimal,
    risk: RiskLevel,
    t: ImpactThresholds,
) -> list[str]:
    recs: list[str] = []

    for imp in impacts:
        if imp.rate_change > t.rate_delta_threshold:
            recs.append(
                f"Supplier {imp.supplier_id}: rate rises {imp.rate_change} points "
                f"({imp.old_rate}% -> {imp.new_rate}%); notify the supplier before the change takes effect."
            )

    if risk is RiskLevel.HIGH:
        recs.append(
            f"Revenue impact exceeds {t.high_risk_pct}% of trailing commission; "
            "stage the change or obtain a second approval."
        )
    elif risk is RiskLevel.MEDIUM:
        recs.append("Monitor supplier order volume for 30 days after the change.")

    if total and len(impacts) * 2 > total:
        recs.append(f"Change affects {len(impacts)} of {total} suppliers; announce it to the supplier base.")

    if change < 0:
        recs.append(f"Projected commission revenue decreases by {abs(monthly)} per month.")

    if not impacts:
        recs.append("No supplier's effective rate changes under the proposed schedule.")

    return recs


def analyze(
    candidate: RateSchedule,
    current: RateSchedule,
    population: Sequence[SupplierSample],
    thresholds: Optional[ImpactThresholds] = None,
) -> ImpactReport:
    t = thresholds or ImpactThresholds.from_settings()

    impacts: list[SupplierImpact] = []
    total_change = Decimal("0")
    baseline = Decimal("0")

    for s in sorted(population, key=lambda x: x.supplier_id):
        old_base = resolve(current, s.supplier_id, s.tier).rate
        new_base = resolve(candidate, s.supplier_id, s.tier).rate
        affected = old_base != new_base

        supplier_change = Decimal("0")
        for o in s.orders:
            amount = to_decimal(o.amount)
            old_rate = resolve(current, s.supplier_id, s.tier, o.category_id).rate
            new_rate = resolve(candidate, s.supplier_id, s.tier, o.category_id).rate
            baseline += percentage_of(amount, old_rate)
            if old_rate != new_rate:
                affected = True
                supplier_change += percentage_of(amount, new_rate - old_rate)

        total_change += supplier_change
        if affected:
            impacts.append(
                SupplierImpact(
                    supplier_id=s.supplier_id,
                    old_rate=old_base,
                    new_rate=new_base,
                    rate_change=new_base - old_base,
                    revenue_change=quantize_money(supplier_change),
                )
            )

    change = quantize_money(total_change)
    days = Decimal(max(1, t.trailing_days))
    monthly = quantize_money(total_change * DAYS_PER_MONTH / days)
    risk = _risk_level(total_change, baseline, t)

    return ImpactReport(
        current_version=current.version,
        candidate_version=candidate.version,
        total_suppliers=len(population),
        affected_suppliers=len(impacts),
        trailing_commission=quantize_money(baseline),
        estimated_revenue_change=change,
        estimated_supplier_impact=quantize_money(ZERO - change),
        projected_monthly_change=monthly,
        risk_level=risk,
        recommendations=_recommendations(impacts, len(population), change, monthly, risk, t),
        supplier_impacts=impacts,
    )
