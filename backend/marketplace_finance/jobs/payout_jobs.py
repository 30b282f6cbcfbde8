"""
Scheduled payout run.

Weekly (default Friday 10:00 UTC): every eligible payout queue item is drained
through the BatchProcessor as one batch, processed_by="scheduler".
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_finance.clients.base import PaymentCollaborator
from marketplace_finance.core.batch_processor import BatchProcessor, BatchResult

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "scheduler"


async def run_scheduled_payouts(
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
    payments: Optional[PaymentCollaborator] = None,
) -> Optional[BatchResult]:
    if sessionmaker is None:
        from marketplace_finance.db.session import AsyncSessionLocal

        sessionmaker = AsyncSessionLocal
    if payments is None:
        from marketplace_finance.clients.http import HttpPaymentCollaborator

        payments = HttpPaymentCollaborator()

    logger.info("Starting scheduled payout run...")
    processor = BatchProcessor(sessionmaker, payments)
    result = await processor.process_eligible(processed_by=SCHEDULER_ACTOR)
    if result is None:
        logger.info("Scheduled payout run: nothing eligible")
        return None

    logger.info(
        "Scheduled payout run %s: %d processed, %d successful, %d failed, total %s",
        result.batch_number,
        result.processed,
        result.successful,
        result.failed,
        result.total_amount,
    )
    return result
