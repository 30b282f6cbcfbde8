# marketplace_finance/models/commission_record.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


class CommissionRecord(Base):
    """
    Commission stamped onto one order.

    Stores:
      - commission_amount: the original stamp (never changes)
      - current_commission: original + signed sum of applied adjustments, floored at 0
      - adjustment_seq: optimistic-concurrency stamp, bumped by every applied adjustment
      - resolved_from: which rate layer won (supplier | category | tier | default)
      - payout_item_id: set once the record's money is enqueued for payout
    """

    __tablename__ = "commission_records"
    __table_args__ = (
        Index("ix_commission_records_supplier_created", "supplier_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    resolved_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    resolved_from: Mapped[str] = mapped_column(String(20), nullable=False)
    schedule_version: Mapped[int] = mapped_column(Integer, nullable=False)

    adjustment_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payout_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("payout_queue_items.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
