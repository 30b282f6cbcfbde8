# tests/test_payout_queue.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marketplace_finance.core.errors import (
    ConcurrentClaimError,
    InvalidPayoutError,
    InvalidTransitionError,
    PayoutNotFoundError,
    RetryExhaustedError,
)
from marketplace_finance.crud import payout_queue as queue_crud
from marketplace_finance.crud.payout_queue import PayoutRequest, next_payout_date
from marketplace_finance.models.payout_queue_item import PayoutQueueItem


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def req(supplier_id="S1", gross="1000", commission="20", method="bank_transfer", scheduled=None) -> PayoutRequest:
    return PayoutRequest(
        supplier_id=supplier_id,
        gross_amount=Decimal(gross),
        commission_amount=Decimal(commission),
        method=method,
        scheduled_date=scheduled if scheduled is not None else utcnow() - timedelta(hours=1),
    )


def test_next_payout_date_is_next_friday_ten_utc():
    wednesday = datetime(2026, 10, 14, 15, 30, tzinfo=timezone.utc)
    assert next_payout_date(wednesday) == datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc)

    friday = datetime(2026, 10, 16, 8, 0, tzinfo=timezone.utc)
    assert next_payout_date(friday) == datetime(2026, 10, 23, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_enqueue_computes_net_and_starts_pending(db):
    [item] = await queue_crud.enqueue_payouts(db, [req()])
    assert item.net_amount == Decimal("980.00")
    assert item.status == "pending"
    assert item.attempt_count == 0
    assert item.claim_token is None


@pytest.mark.asyncio
async def test_enqueue_is_all_or_nothing(db):
    with pytest.raises(InvalidPayoutError):
        await queue_crud.enqueue_payouts(db, [req("S1"), req("S2", gross="10", commission="20")])
    _, total = await queue_crud.list_items(db)
    assert total == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"method": "crypto"},
        {"method": "cheque"},
        {"method": "paypal", "gross": "20000", "commission": "0"},
        {"method": "paypal", "gross": "5", "commission": "0"},
        {"supplier_id": " "},
    ],
)
async def test_enqueue_rejects_invalid_requests(db, kwargs):
    with pytest.raises(InvalidPayoutError):
        await queue_crud.enqueue_payouts(db, [req(**kwargs)])


@pytest.mark.asyncio
async def test_eligibility_threshold_due_date_and_order(db):
    now = utcnow()
    await queue_crud.enqueue_payouts(
        db,
        [
            req("small", gross="60", commission="20", method="paypal"),  # net 40 < 50
            req("future", scheduled=now + timedelta(days=2)),
            req("older-small", gross="100", commission="0", scheduled=now - timedelta(days=2)),
            req("older-big", gross="900", commission="0", scheduled=now - timedelta(days=2)),
            req("recent", gross="5000", commission="0", scheduled=now - timedelta(hours=1)),
        ],
    )
    eligible = await queue_crud.select_eligible(db, now=now)
    assert [i.supplier_id for i in eligible] == ["older-big", "older-small", "recent"]

    limited = await queue_crud.select_eligible(db, now=now, limit=1)
    assert [i.supplier_id for i in limited] == ["older-big"]


@pytest.mark.asyncio
async def test_claim_bumps_attempt_and_blocks_second_claim(db, fetch):
    [item] = await queue_crud.enqueue_payouts(db, [req()])
    item_id = item.id
    token = uuid.uuid4()
    await queue_crud.claim_items(db, [item_id], token)
    await db.commit()

    claimed = await fetch(PayoutQueueItem, item_id)
    assert claimed.status == "processing"
    assert claimed.claim_token == token
    assert claimed.attempt_count == 1

    with pytest.raises(ConcurrentClaimError) as exc:
        await queue_crud.claim_items(db, [item_id], uuid.uuid4())
    assert exc.value.conflicting_ids == [str(item_id)]


@pytest.mark.asyncio
async def test_outcome_requires_matching_claim(db, fetch):
    [item] = await queue_crud.enqueue_payouts(db, [req()])
    item_id = item.id
    token = uuid.uuid4()
    await queue_crud.claim_items(db, [item_id], token)
    await db.commit()

    with pytest.raises(InvalidTransitionError):
        await queue_crud.mark_completed(db, item_id, uuid.uuid4(), "txn-x")

    await queue_crud.mark_failed(db, item_id, token, "Insufficient funds")
    failed = await fetch(PayoutQueueItem, item_id)
    assert failed.status == "failed"
    assert failed.failure_reason == "Insufficient funds"
    assert failed.claim_token is None
    assert failed.last_batch_id == token


@pytest.mark.asyncio
async def test_retry_and_exhaustion(db, fetch):
    [item] = await queue_crud.enqueue_payouts(db, [req()])

    for _ in range(3):
        token = uuid.uuid4()
        await queue_crud.claim_items(db, [item.id], token)
        await db.commit()
        await queue_crud.mark_failed(db, item.id, token, "declined")
        if (await fetch(PayoutQueueItem, item.id)).attempt_count < 3:
            await queue_crud.reset_for_retry(db, item.id)

    exhausted = await fetch(PayoutQueueItem, item.id)
    assert exhausted.attempt_count == 3
    assert exhausted.status == "failed"

    with pytest.raises(RetryExhaustedError):
        await queue_crud.reset_for_retry(db, item.id)

    manual = await queue_crud.needs_manual_intervention(db)
    assert [i.id for i in manual] == [item.id]


@pytest.mark.asyncio
async def test_retry_only_from_failed(db):
    [item] = await queue_crud.enqueue_payouts(db, [req()])
    with pytest.raises(InvalidTransitionError):
        await queue_crud.reset_for_retry(db, item.id)


@pytest.mark.asyncio
async def test_cancel_only_from_pending(db, fetch):
    [a, b] = await queue_crud.enqueue_payouts(db, [req("A"), req("B")])

    cancelled = await queue_crud.cancel_item(db, a.id)
    assert cancelled.status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        await queue_crud.cancel_item(db, a.id)

    await queue_crud.claim_items(db, [b.id], uuid.uuid4())
    await db.commit()
    with pytest.raises(InvalidTransitionError):
        await queue_crud.cancel_item(db, b.id)
    assert (await fetch(PayoutQueueItem, b.id)).status == "processing"


@pytest.mark.asyncio
async def test_unknown_item(db):
    with pytest.raises(PayoutNotFoundError):
        await queue_crud.get_item(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_summary_and_failure_analysis(db):
    items = await queue_crud.enqueue_payouts(
        db, [req("A"), req("B", method="paypal"), req("C", method="paypal"), req("D")]
    )
    for item in items[1:]:
        token = uuid.uuid4()
        await queue_crud.claim_items(db, [item.id], token)
        await db.commit()
        await queue_crud.mark_failed(db, item.id, token, "Account closed")

    summary = await queue_crud.payout_summary(db)
    assert summary["pending"] == {"count": 1, "net_amount": Decimal("980.00")}
    assert summary["failed"]["count"] == 3
    assert summary["completed"] == {"count": 0, "net_amount": Decimal("0.00")}

    groups = await queue_crud.failure_analysis(db)
    assert groups[0] == {
        "failure_reason": "Account closed",
        "method": "paypal",
        "count": 2,
        "total_amount": Decimal("1960.00"),
    }
    assert groups[1]["method"] == "bank_transfer"


@pytest.mark.asyncio
async def test_supplier_payout_aggregates_unlinked_records(db, order_ledger, supplier_directory):
    from marketplace_finance.core.commission_service import stamp_order_commission

    supplier_directory.add("S1", "silver")
    order_ledger.add("O-1", "S1", "40")
    await stamp_order_commission(db, order_ledger, supplier_directory, "O-1")

    # 40 - 1.20 commission = 38.80 net: under the payout threshold
    assert await queue_crud.enqueue_supplier_payout(db, "S1") is None

    order_ledger.add("O-2", "S1", "100")
    await stamp_order_commission(db, order_ledger, supplier_directory, "O-2")

    item = await queue_crud.enqueue_supplier_payout(db, "S1", method="paypal")
    assert item.gross_amount == Decimal("140.00")
    assert item.commission_amount == Decimal("4.20")
    assert item.net_amount == Decimal("135.80")
    assert item.method == "paypal"

    # records are linked now: nothing left to aggregate
    assert await queue_crud.enqueue_supplier_payout(db, "S1") is None


@pytest.mark.asyncio
async def test_enqueue_enforces_method_minimum(db):
    with pytest.raises(InvalidPayoutError) as exc:
        await queue_crud.enqueue_payouts(db, [req(gross="30", commission="0")])
    assert exc.value.context["min_amount"] == "50"
    assert exc.value.context["net_amount"] == "30.00"

    # same net is fine for a method with a lower floor
    [item] = await queue_crud.enqueue_payouts(db, [req(gross="30", commission="0", method="stripe")])
    assert item.net_amount == Decimal("30.00")


@pytest.mark.asyncio
async def test_cancelled_supplier_payout_releases_its_records(db, fetch, order_ledger, supplier_directory):
    from marketplace_finance.core.commission_service import stamp_order_commission
    from marketplace_finance.models.commission_record import CommissionRecord

    supplier_directory.add("S1", "gold")
    order_ledger.add("O-1", "S1", "1000")
    rec, _ = await stamp_order_commission(db, order_ledger, supplier_directory, "O-1")
    rec_id = rec.id

    first = await queue_crud.enqueue_supplier_payout(db, "S1")
    first_id = first.id
    assert (await fetch(CommissionRecord, rec_id)).payout_item_id == first_id

    await queue_crud.cancel_item(db, first_id)
    assert (await fetch(CommissionRecord, rec_id)).payout_item_id is None

    second = await queue_crud.enqueue_supplier_payout(db, "S1")
    assert second is not None
    assert second.id != first_id
    assert second.net_amount == Decimal("980.00")
    assert (await fetch(CommissionRecord, rec_id)).payout_item_id == second.id
    assert (await fetch(PayoutQueueItem, first_id)).status == "cancelled"
