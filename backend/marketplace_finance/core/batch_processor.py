# marketplace_finance/core/batch_processor.py
"""
Drains payout queue items through the payment collaborator.

    process_batch(ids)
      1. validate input (non-empty, no duplicates, all ids exist)
      2. claim all ids + insert the batch row, one transaction (all or nothing)
      3. sub-batches of `batch_size` run one after another; the items inside a
         sub-batch run concurrently, each submitting once and writing its own
         outcome in its own session; any exception out of the collaborator is
         recorded as that item's failure
      4. derive + persist the batch status (always, even on error), return the aggregate

There is no automatic retry inside a call; failed items wait for an explicit
retry_payout().
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_finance.clients.base import PaymentCollaborator, PayoutSubmission
from marketplace_finance.core.config import settings
from marketplace_finance.core.errors import InvalidPayoutError, PaymentCollaboratorError
from marketplace_finance.core.payout_state import PayoutStatus
from marketplace_finance.crud import payout_batch as batch_crud
from marketplace_finance.crud import payout_queue as queue_crud
from marketplace_finance.models.payout_queue_item import PayoutQueueItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemResult:
    payout_id: uuid.UUID
    supplier_id: str
    amount: Decimal
    attempt: int
    status: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PayoutStatus.COMPLETED.value


@dataclass(frozen=True)
class BatchResult:
    batch_id: uuid.UUID
    batch_number: str
    status: str
    processed: int
    successful: int
    failed: int
    total_amount: Decimal
    results: list[ItemResult] = field(default_factory=list)


def _validate_ids(item_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
    ids = list(item_ids)
    if not ids:
        raise InvalidPayoutError("item_ids must not be empty")
    if len(set(ids)) != len(ids):
        dupes = sorted({str(i) for i in ids if ids.count(i) > 1})
        raise InvalidPayoutError("item_ids contains duplicates", duplicate_ids=dupes)
    return ids


def _submission(item: PayoutQueueItem) -> PayoutSubmission:
    return PayoutSubmission(
        payout_id=item.id,
        supplier_id=item.supplier_id,
        amount=item.net_amount,
        method=item.method,
        attempt=item.attempt_count,
    )


class BatchProcessor:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        payment_collaborator: PaymentCollaborator,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._payments = payment_collaborator

    async def process_batch(
        self,
        item_ids: Sequence[uuid.UUID],
        *,
        processed_by: str,
        batch_size: Optional[int] = None,
    ) -> BatchResult:
        ids = _validate_ids(item_ids)
        size = settings.PAYOUT_BATCH_SIZE if batch_size is None else batch_size
        if size < 1:
            raise InvalidPayoutError("batch_size must be at least 1", batch_size=size)

        async with self._sessionmaker() as db:
            # unknown ids -> PayoutNotFoundError before anything is claimed
            await queue_crud.load_items(db, ids)
            batch, claimed = await batch_crud.open_batch(db, ids, processed_by=processed_by)
            batch_id, batch_number = batch.id, batch.batch_number
            total_amount = batch.total_amount
            submissions = [_submission(i) for i in claimed]

        results: list[ItemResult] = []
        try:
            for start in range(0, len(submissions), size):
                chunk = submissions[start:start + size]
                results.extend(await asyncio.gather(*(self._process_item(s, batch_id) for s in chunk)))
        finally:
            # the batch row always reflects its members, even if an outcome write blew up
            successful = sum(1 for r in results if r.succeeded)
            failed = len(results) - successful
            async with self._sessionmaker() as db:
                batch = await batch_crud.finalize_batch(db, batch_id, successful=successful, failed=failed)
                status = batch.status

        return BatchResult(
            batch_id=batch_id,
            batch_number=batch_number,
            status=status,
            processed=len(results),
            successful=successful,
            failed=failed,
            total_amount=total_amount,
            results=results,
        )

    async def _process_item(self, submission: PayoutSubmission, batch_id: uuid.UUID) -> ItemResult:
        transaction_id: Optional[str] = None
        failure_reason: Optional[str] = None
        try:
            outcome = await self._payments.submit(submission)
        except PaymentCollaboratorError as e:
            failure_reason = e.reason
            logger.warning("payout %s attempt %d: collaborator error: %s", submission.payout_id, submission.attempt, e.reason)
        except Exception as e:
            # a broken collaborator must not strand this item or its siblings in processing
            failure_reason = f"Unexpected collaborator error: {e!r}"
            logger.exception("payout %s attempt %d: unexpected collaborator error", submission.payout_id, submission.attempt)
        else:
            if outcome.succeeded:
                transaction_id = outcome.transaction_id
            else:
                failure_reason = outcome.failure_reason or "Declined"
                logger.warning("payout %s attempt %d declined: %s", submission.payout_id, submission.attempt, failure_reason)

        async with self._sessionmaker() as db:
            if transaction_id is not None:
                await queue_crud.mark_completed(db, submission.payout_id, batch_id, transaction_id)
                status = PayoutStatus.COMPLETED.value
            else:
                await queue_crud.mark_failed(db, submission.payout_id, batch_id, failure_reason)
                status = PayoutStatus.FAILED.value

        logger.info("payout %s attempt %d -> %s", submission.payout_id, submission.attempt, status)
        return ItemResult(
            payout_id=submission.payout_id,
            supplier_id=submission.supplier_id,
            amount=submission.amount,
            attempt=submission.attempt,
            status=status,
            transaction_id=transaction_id,
            failure_reason=failure_reason,
        )

    async def process_eligible(
        self,
        *,
        processed_by: str,
        limit: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> Optional[BatchResult]:
        """Select due items and run them as one batch. None when nothing is eligible."""
        async with self._sessionmaker() as db:
            eligible = await queue_crud.select_eligible(db, limit=limit or settings.PAYOUT_AUTO_BATCH_LIMIT)
            ids = [i.id for i in eligible]

        if not ids:
            logger.info("no eligible payouts")
            return None
        return await self.process_batch(ids, processed_by=processed_by, batch_size=batch_size)

    async def retry_payout(
        self,
        item_id: uuid.UUID,
        *,
        processed_by: str,
        process_now: bool = True,
    ) -> tuple[PayoutQueueItem, Optional[BatchResult]]:
        """
        failed -> pending (RetryExhaustedError once attempts are used up), then by
        default run the item straight away as a one-item batch.
        """
        async with self._sessionmaker() as db:
            item = await queue_crud.reset_for_retry(db, item_id)

        if not process_now:
            return item, None

        result = await self.process_batch([item_id], processed_by=processed_by, batch_size=1)
        async with self._sessionmaker() as db:
            item = await queue_crud.get_item(db, item_id)
        return item, result

    async def cancel_payout(self, item_id: uuid.UUID) -> PayoutQueueItem:
        async with self._sessionmaker() as db:
            return await queue_crud.cancel_item(db, item_id)
