# tests/test_impact_analyzer.py
from __future__ import annotations

from decimal import Decimal

from marketplace_finance.core.impact_analyzer import (
    ImpactThresholds,
    OrderSample,
    RiskLevel,
    SupplierSample,
    analyze,
)
from marketplace_finance.core.rate_schedule import RateSchedule

THRESHOLDS = ImpactThresholds(
    high_risk_pct=Decimal("10"),
    medium_risk_pct=Decimal("3"),
    rate_delta_threshold=Decimal("1.0"),
    trailing_days=90,
)


def current_schedule() -> RateSchedule:
    return RateSchedule(
        default_rate=5,
        tier_rates={"free": 5, "silver": 3, "gold": 2, "platinum": 1.5},
        version=4,
    )


def population() -> list[SupplierSample]:
    return [
        SupplierSample("S2", "silver", (OrderSample(Decimal("1000")), OrderSample(Decimal("500"), "C1"))),
        SupplierSample("S1", "gold", (OrderSample(Decimal("2000")),)),
        SupplierSample("S3", "free", ()),
    ]


def test_identical_schedule_changes_nothing():
    cur = current_schedule()
    report = analyze(cur, cur, population(), THRESHOLDS)
    assert report.affected_suppliers == 0
    assert report.estimated_revenue_change == Decimal("0.00")
    assert report.risk_level is RiskLevel.LOW
    assert report.recommendations == ["No supplier's effective rate changes under the proposed schedule."]


def test_tier_increase_is_simulated_over_trailing_orders():
    cur = current_schedule()
    candidate, _ = cur.with_tier_rates(
        default_rate=5,
        tier_rates={"free": 5, "silver": 4.5, "gold": 2, "platinum": 1.5},
        changed_by="admin",
        reason="raise silver",
    )
    report = analyze(candidate, cur, population(), THRESHOLDS)

    # S2: 1500 at +1.5 points
    assert report.estimated_revenue_change == Decimal("22.50")
    assert report.estimated_supplier_impact == Decimal("-22.50")
    # baseline 45 (S2) + 40 (S1); 22.5 / 85 > 10%
    assert report.trailing_commission == Decimal("85.00")
    assert report.risk_level is RiskLevel.HIGH
    assert report.projected_monthly_change == Decimal("7.50")

    assert report.total_suppliers == 3
    assert [i.supplier_id for i in report.supplier_impacts] == ["S2"]
    assert report.supplier_impacts[0].rate_change == Decimal("1.5")
    assert report.recommendations[0].startswith("Supplier S2: rate rises 1.5 points")
    assert report.current_version == 4 and report.candidate_version == 5


def test_category_change_affects_only_suppliers_with_orders_there():
    cur = current_schedule()
    candidate, _ = cur.with_category_rate("C1", 4, changed_by="admin", reason="C1 review")
    report = analyze(candidate, cur, population(), THRESHOLDS)

    # only S2's 500 order is in C1: 3% -> 4%
    assert report.affected_suppliers == 1
    assert report.estimated_revenue_change == Decimal("5.00")
    # base rate (no category) is unchanged for S2
    assert report.supplier_impacts[0].rate_change == Decimal("0")
    assert report.risk_level is RiskLevel.MEDIUM


def test_zero_baseline_with_change_is_high_risk():
    cur = RateSchedule(default_rate=0, tier_rates={"free": 0})
    candidate = RateSchedule(default_rate=1, tier_rates={"free": 0}, version=2)
    pop = [SupplierSample("S9", None, (OrderSample(Decimal("100")),))]
    report = analyze(candidate, cur, pop, THRESHOLDS)
    assert report.trailing_commission == Decimal("0.00")
    assert report.risk_level is RiskLevel.HIGH


def test_rate_decrease_reports_revenue_loss():
    cur = current_schedule()
    candidate, _ = cur.with_supplier_override("S1", 1, changed_by="admin", reason="retention")
    report = analyze(candidate, cur, population(), THRESHOLDS)
    assert report.estimated_revenue_change == Decimal("-20.00")
    assert any("decreases" in r for r in report.recommendations)


def test_report_is_deterministic():
    cur = current_schedule()
    candidate, _ = cur.with_category_rate("C1", 6, changed_by="admin", reason="x")
    a = analyze(candidate, cur, population(), THRESHOLDS)
    b = analyze(candidate, cur, list(reversed(population())), THRESHOLDS)
    assert a == b
