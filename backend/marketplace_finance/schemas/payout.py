# marketplace_finance/schemas/payout.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

PaymentMethod = Literal["bank_transfer", "paypal", "stripe", "crypto"]


class PayoutCreate(BaseModel):
    supplier_id: str = Field(min_length=1, max_length=100)
    gross_amount: Decimal = Field(ge=0)
    commission_amount: Decimal = Field(ge=0)
    method: PaymentMethod = "bank_transfer"
    scheduled_date: Optional[datetime] = None


class PayoutEnqueueIn(BaseModel):
    items: List[PayoutCreate] = Field(min_length=1, max_length=500)


class SupplierPayoutIn(BaseModel):
    method: PaymentMethod = "bank_transfer"
    scheduled_date: Optional[datetime] = None


class PayoutOut(BaseModel):
    id: UUID
    supplier_id: str
    gross_amount: Decimal
    commission_amount: Decimal
    net_amount: Decimal
    method: str
    status: str
    scheduled_date: datetime
    processed_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    attempt_count: int
    last_batch_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PayoutListOut(BaseModel):
    items: List[PayoutOut]
    total: int
    limit: int
    offset: int


class ProcessBatchIn(BaseModel):
    item_ids: List[UUID] = Field(min_length=1)
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)


class ProcessEligibleIn(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)


class RetryIn(BaseModel):
    process_now: bool = True


class ItemResultOut(BaseModel):
    payout_id: UUID
    supplier_id: str
    amount: Decimal
    attempt: int
    status: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    class Config:
        from_attributes = True


class BatchResultOut(BaseModel):
    batch_id: UUID
    batch_number: str
    status: str
    processed: int
    successful: int
    failed: int
    total_amount: Decimal
    results: List[ItemResultOut]

    class Config:
        from_attributes = True


class RetryOut(BaseModel):
    payout: PayoutOut
    batch: Optional[BatchResultOut] = None


class PayoutBatchOut(BaseModel):
    id: UUID
    batch_number: str
    member_item_ids: List[UUID]
    total_amount: Decimal
    successful_count: int
    failed_count: int
    status: str
    processed_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayoutBatchListOut(BaseModel):
    items: List[PayoutBatchOut]
    total: int
    limit: int
    offset: int


class StatusTotalsOut(BaseModel):
    count: int
    net_amount: Decimal


class PayoutSummaryOut(BaseModel):
    by_status: Dict[str, StatusTotalsOut]


class FailureGroupOut(BaseModel):
    failure_reason: Optional[str] = None
    method: str
    count: int
    total_amount: Decimal


class FailureAnalysisOut(BaseModel):
    items: List[FailureGroupOut]


class PaymentMethodOut(BaseModel):
    type: str
    min_amount: Decimal
    max_amount: Decimal
    processing_fee_pct: Decimal
    processing_time: str

    class Config:
        from_attributes = True
