# marketplace_finance/models/rate_schedule_version.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_finance.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateScheduleVersion(Base):
    """
    One immutable commission schedule version. Rows are only ever inserted.

    The unique `version` column is the serialization point for concurrent
    writers: two writers appending from the same base version collide here.
    Rates are stored as strings inside the JSON maps to keep Decimal precision.
    """

    __tablename__ = "rate_schedule_versions"
    __table_args__ = (
        Index("ix_rate_schedule_versions_effective_from", "effective_from"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    version: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    default_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)

    # {"free": "5.0", "silver": "3.0", ...}
    tier_rates: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # sparse: {"<category_id>": "4.0"}
    category_rates: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # sparse: {"<supplier_id>": "2.0"}
    supplier_overrides: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    change_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
