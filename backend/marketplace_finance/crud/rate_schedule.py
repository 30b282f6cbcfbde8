# marketplace_finance/crud/rate_schedule.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_finance.core.errors import ConcurrentScheduleUpdateError
from marketplace_finance.core.rate_schedule import RateSchedule, ScheduleChange
from marketplace_finance.models.commission_history import CommissionHistoryEntry
from marketplace_finance.models.rate_schedule_version import RateScheduleVersion

logger = logging.getLogger(__name__)

# Builds the next schedule from the current one; returns (next, changes).
ScheduleEdit = Callable[[RateSchedule], "tuple[RateSchedule, list[ScheduleChange]]"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rates_to_json(rates) -> dict[str, str]:
    return {k: str(v) for k, v in rates.items()}


def row_to_schedule(row: RateScheduleVersion) -> RateSchedule:
    return RateSchedule(
        default_rate=Decimal(str(row.default_rate)),
        tier_rates={k: Decimal(v) for k, v in (row.tier_rates or {}).items()},
        category_rates={k: Decimal(v) for k, v in (row.category_rates or {}).items()},
        supplier_overrides={k: Decimal(v) for k, v in (row.supplier_overrides or {}).items()},
        version=row.version,
        effective_from=row.effective_from,
        changed_by=row.changed_by,
        change_reason=row.change_reason,
    )


def schedule_to_row(schedule: RateSchedule) -> RateScheduleVersion:
    return RateScheduleVersion(
        version=schedule.version,
        default_rate=schedule.default_rate,
        tier_rates=_rates_to_json(schedule.tier_rates),
        category_rates=_rates_to_json(schedule.category_rates),
        supplier_overrides=_rates_to_json(schedule.supplier_overrides),
        effective_from=schedule.effective_from,
        changed_by=schedule.changed_by,
        change_reason=schedule.change_reason,
    )


async def _latest_row(db: AsyncSession) -> Optional[RateScheduleVersion]:
    stmt = select(RateScheduleVersion).order_by(RateScheduleVersion.version.desc()).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


async def current_schedule(db: AsyncSession) -> RateSchedule:
    """
    Latest schedule version. Bootstraps version 1 with the marketplace defaults
    when the table is empty (a concurrent bootstrap loses on the unique version
    and simply re-reads).
    """
    row = await _latest_row(db)
    if row is not None:
        return row_to_schedule(row)

    initial = RateSchedule.initial()
    db.add(schedule_to_row(initial))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        row = await _latest_row(db)
        if row is None:
            raise
        return row_to_schedule(row)

    logger.info("bootstrapped commission schedule v1")
    return initial


async def schedule_at(db: AsyncSession, when: datetime) -> Optional[RateSchedule]:
    """Schedule in force at `when` (latest version with effective_from <= when)."""
    stmt = (
        select(RateScheduleVersion)
        .where(RateScheduleVersion.effective_from <= when)
        .order_by(RateScheduleVersion.version.desc())
        .limit(1)
    )
    row = (await db.execute(stmt)).scalar_one_or_none()
    return row_to_schedule(row) if row else None


async def get_version(db: AsyncSession, version: int) -> Optional[RateSchedule]:
    stmt = select(RateScheduleVersion).where(RateScheduleVersion.version == version)
    row = (await db.execute(stmt)).scalar_one_or_none()
    return row_to_schedule(row) if row else None


async def append_version(
    db: AsyncSession,
    edit: ScheduleEdit,
    *,
    base_version: Optional[int] = None,
) -> tuple[RateSchedule, list[ScheduleChange]]:
    """
    Append the next schedule version built by `edit(current)`, plus its history rows,
    in one transaction.

    Single-writer per lineage:
      - `base_version` is the version the caller read; if the latest version moved
        on since, the write is refused (ConcurrentScheduleUpdateError).
      - two writers racing from the same base collide on the unique `version`
        column; the loser gets the same error. Re-read and retry.
    Validation errors raised by `edit` happen before anything is written.
    """
    current = await current_schedule(db)
    if base_version is not None and base_version != current.version:
        raise ConcurrentScheduleUpdateError(
            "Commission settings changed since they were read",
            base_version=base_version,
            current_version=current.version,
        )

    nxt, changes = edit(current)
    now = _utcnow()

    db.add(schedule_to_row(nxt))
    for ch in changes:
        db.add(
            CommissionHistoryEntry(
                schedule_version=nxt.version,
                field=ch.field,
                scope_key=ch.scope_key,
                previous_value=ch.previous_value,
                new_value=ch.new_value,
                changed_by=nxt.changed_by or "unknown",
                reason=nxt.change_reason,
                changed_at=now,
            )
        )

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConcurrentScheduleUpdateError(
            "Another writer appended this version first",
            base_version=current.version,
        ) from e

    logger.info(
        "commission schedule v%s appended by %s (%d change(s)): %s",
        nxt.version,
        nxt.changed_by,
        len(changes),
        nxt.change_reason,
    )
    return nxt, changes


async def list_history(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> tuple[list[CommissionHistoryEntry], int]:
    total = await db.scalar(select(func.count()).select_from(CommissionHistoryEntry))
    rows = (
        await db.execute(
            select(CommissionHistoryEntry)
            .order_by(CommissionHistoryEntry.schedule_version.desc(), CommissionHistoryEntry.changed_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return list(rows), int(total or 0)


async def list_versions(db: AsyncSession) -> list[RateSchedule]:
    rows = (
        await db.execute(select(RateScheduleVersion).order_by(RateScheduleVersion.effective_from, RateScheduleVersion.version))
    ).scalars().all()
    return [row_to_schedule(r) for r in rows]
