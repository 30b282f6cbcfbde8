from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


class PayoutBatch(Base):
    __tablename__ = "payout_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # monotonic; batch_number is its human-readable form (PB-000042)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    batch_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)

    # list of payout_queue_items.id (as strings)
    member_item_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    successful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # processing | completed | failed (derived from member outcomes)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="processing")
    processed_by: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
