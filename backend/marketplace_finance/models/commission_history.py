from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


class CommissionHistoryEntry(Base):
    """
    Append-only audit of commission settings changes.
    One row per changed field; a bulk tier update writes several rows sharing a schedule_version.
    previous_value / new_value NULL = the layer entry did not exist / was removed.
    """

    __tablename__ = "commission_history"
    __table_args__ = (
        Index("ix_commission_history_changed_at", "changed_at"),
        Index("ix_commission_history_version", "schedule_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    schedule_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # default_rate | tier_rate | category_rate | supplier_override
    field: Mapped[str] = mapped_column(String(40), nullable=False)
    # tier name, category id or supplier id (NULL for default_rate)
    scope_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    previous_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 3), nullable=True)
    new_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 3), nullable=True)

    changed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
