# marketplace_finance/schemas/rate_schedule.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

Rate = Decimal


class RateScheduleOut(BaseModel):
    version: int
    default_rate: Rate
    tier_rates: Dict[str, Rate]
    category_rates: Dict[str, Rate] = Field(default_factory=dict)
    supplier_overrides: Dict[str, Rate] = Field(default_factory=dict)
    effective_from: datetime
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None


class RateChangeIn(BaseModel):
    """Set a category rate or a supplier override. base_version guards against lost updates."""

    rate: Rate
    reason: str = Field(min_length=1, max_length=500)
    base_version: Optional[int] = Field(default=None, ge=1)


class RateRemoveIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    base_version: Optional[int] = Field(default=None, ge=1)


class TierRatesIn(BaseModel):
    default_rate: Rate
    tier_rates: Dict[str, Rate]
    reason: str = Field(min_length=1, max_length=500)
    base_version: Optional[int] = Field(default=None, ge=1)


class ScheduleChangeOut(BaseModel):
    field: str
    scope_key: Optional[str] = None
    previous_value: Optional[Rate] = None
    new_value: Optional[Rate] = None


class ScheduleUpdateOut(BaseModel):
    schedule: RateScheduleOut
    changes: List[ScheduleChangeOut]


class HistoryEntryOut(BaseModel):
    id: UUID
    schedule_version: int
    field: str
    scope_key: Optional[str] = None
    previous_value: Optional[Rate] = None
    new_value: Optional[Rate] = None
    changed_by: str
    reason: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class HistoryPageOut(BaseModel):
    items: List[HistoryEntryOut]
    total: int
    limit: int
    offset: int


class ImpactAnalysisIn(BaseModel):
    """
    Proposed changes, laid over the current schedule.
    In category_rates / supplier_overrides a null rate means "remove".
    """

    default_rate: Optional[Rate] = None
    tier_rates: Dict[str, Rate] = Field(default_factory=dict)
    category_rates: Dict[str, Optional[Rate]] = Field(default_factory=dict)
    supplier_overrides: Dict[str, Optional[Rate]] = Field(default_factory=dict)


class SupplierImpactOut(BaseModel):
    supplier_id: str
    old_rate: Rate
    new_rate: Rate
    rate_change: Rate
    revenue_change: Decimal


class ImpactReportOut(BaseModel):
    current_version: int
    candidate_version: int
    total_suppliers: int
    affected_suppliers: int
    trailing_commission: Decimal
    estimated_revenue_change: Decimal
    estimated_supplier_impact: Decimal
    projected_monthly_change: Decimal
    risk_level: str
    recommendations: List[str]
    supplier_impacts: List[SupplierImpactOut]

    class Config:
        from_attributes = True
