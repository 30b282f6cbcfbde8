# marketplace_finance/models/payout_queue_item.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayoutQueueItem(Base):
    """
    One supplier payout. Status moves only along core/payout_state.py.

    claim_token holds the id of the batch that owns the item while it is
    `processing` and is NULL otherwise; last_batch_id keeps the most recent owner.
    """

    __tablename__ = "payout_queue_items"
    __table_args__ = (
        CheckConstraint("net_amount >= 0", name="ck_payout_queue_items_net_non_negative"),
        Index("ix_payout_queue_items_status_scheduled", "status", "scheduled_date"),
        Index("ix_payout_queue_items_supplier", "supplier_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # bank_transfer | paypal | stripe | crypto
    method: Mapped[str] = mapped_column(String(30), nullable=False, default="bank_transfer")

    # pending | processing | completed | failed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    claim_token: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    last_batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
