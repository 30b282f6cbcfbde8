# marketplace_finance/schemas/commission.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

AdjustmentKind = Literal["refund", "penalty", "bonus", "correction"]


class ResolveRateIn(BaseModel):
    supplier_id: str = Field(min_length=1, max_length=100)
    supplier_tier: Optional[str] = None
    category_id: Optional[str] = None


class ResolveRateOut(BaseModel):
    rate: Decimal
    provenance: str
    schedule_version: int


class ComputeCommissionIn(ResolveRateIn):
    order_amount: Decimal = Field(ge=0)


class ComputeCommissionOut(BaseModel):
    order_amount: Decimal
    rate: Decimal
    provenance: str
    schedule_version: int
    commission_amount: Decimal
    supplier_amount: Decimal


class CommissionRecordOut(BaseModel):
    id: UUID
    order_id: str
    supplier_id: str
    category_id: Optional[str] = None
    order_amount: Decimal
    resolved_rate: Decimal
    commission_amount: Decimal
    current_commission: Decimal
    resolved_from: str
    schedule_version: int
    adjustment_seq: int
    payout_item_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StampOut(BaseModel):
    record: CommissionRecordOut
    created: bool


class AdjustmentPreviewIn(BaseModel):
    adjustment_type: AdjustmentKind
    amount: Decimal


class AdjustmentApplyIn(AdjustmentPreviewIn):
    reason: str = Field(min_length=1, max_length=1000)
    # adjustment_seq the caller previewed against
    expected_version: int = Field(ge=0)


class AdjustmentPreviewOut(BaseModel):
    adjustment_type: str
    adjustment_amount: Decimal
    original_commission: Decimal
    new_commission: Decimal
    impact: Decimal
    impact_percentage: Decimal
    record_version: int


class AdjustmentOut(BaseModel):
    id: UUID
    commission_record_id: UUID
    sequence: int
    adjustment_type: str
    adjustment_amount: Decimal
    previous_commission: Decimal
    resulting_commission: Decimal
    delta: Decimal
    reason: str
    applied_by: str
    settled_after_payout: bool
    applied_at: datetime

    class Config:
        from_attributes = True


class AdjustmentListOut(BaseModel):
    items: List[AdjustmentOut]
    total: int


class CommissionSummaryOut(BaseModel):
    supplier_id: Optional[str] = None
    total_orders: int
    total_sales: Decimal
    total_commission: Decimal
    total_supplier_earnings: Decimal
    avg_commission_rate: Decimal
