# marketplace_finance/models/commission_adjustment.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


class CommissionAdjustment(Base):
    """
    Immutable adjustment ledger for a CommissionRecord.

    Economic meaning:
      - adjustment_amount: what the admin entered (>= 0, signed only for corrections)
      - delta: resulting_commission - previous_commission (signed)
      - sequence: the record's adjustment_seq after this adjustment
    """

    __tablename__ = "commission_adjustments"
    __table_args__ = (
        UniqueConstraint("commission_record_id", "sequence", name="uq_commission_adjustments_record_seq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    commission_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("commission_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # refund | penalty | bonus | correction
    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    adjustment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    previous_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    resulting_commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    applied_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # True when the linked payout had already completed/cancelled; finance follows up by hand
    settled_after_payout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
