# tests/test_commission_adjustments.py
from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from marketplace_finance.core.commission_service import stamp_order_commission
from marketplace_finance.core.errors import (
    InvalidAdjustmentError,
    OrderNotFoundError,
    StaleCommissionError,
)
from marketplace_finance.crud import commission as commission_crud
from marketplace_finance.crud import payout_queue as queue_crud
from marketplace_finance.crud import rate_schedule as schedule_crud
from marketplace_finance.models.commission_record import CommissionRecord
from marketplace_finance.models.payout_queue_item import PayoutQueueItem


async def stamp(db, order_ledger, supplier_directory, order_id="O-1", supplier_id="S1", amount="1000", tier="gold"):
    supplier_directory.add(supplier_id, tier)
    order_ledger.add(order_id, supplier_id, amount)
    rec, _ = await stamp_order_commission(db, order_ledger, supplier_directory, order_id)
    return rec


@pytest.mark.asyncio
async def test_stamp_resolves_persists_and_notifies_ledger(db, order_ledger, supplier_directory):
    supplier_directory.add("S1", "gold")
    order_ledger.add("O-1", "S1", "1000", category_id="C1")
    await schedule_crud.current_schedule(db)
    await schedule_crud.append_version(
        db, lambda cur: cur.with_category_rate("C1", 4, changed_by="admin", reason="C1")
    )

    rec, created = await stamp_order_commission(db, order_ledger, supplier_directory, "O-1")
    assert created
    assert rec.resolved_rate == Decimal("4")
    assert rec.resolved_from == "category"
    assert rec.schedule_version == 2
    assert rec.commission_amount == Decimal("40.00")
    assert rec.current_commission == Decimal("40.00")

    assert len(order_ledger.recorded) == 1
    assert order_ledger.recorded[0].supplier_amount == Decimal("960.00")

    # stamping again returns the same record and does not notify twice
    again, created = await stamp_order_commission(db, order_ledger, supplier_directory, "O-1")
    assert not created
    assert again.id == rec.id
    assert len(order_ledger.recorded) == 1


@pytest.mark.asyncio
async def test_stamp_unknown_order(db, order_ledger, supplier_directory):
    with pytest.raises(OrderNotFoundError):
        await stamp_order_commission(db, order_ledger, supplier_directory, "missing")


@pytest.mark.asyncio
async def test_preview_then_apply_matches_and_preview_is_pure(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)  # gold 2% -> 20.00

    p1 = await commission_crud.preview_record_adjustment(db, rec.id, "refund", Decimal("250"))
    p2 = await commission_crud.preview_record_adjustment(db, rec.id, "refund", Decimal("250"))
    assert p1 == p2
    assert p1.new_commission == Decimal("15.00")
    assert (await fetch(CommissionRecord, rec.id)).adjustment_seq == 0

    adj, applied = await commission_crud.apply_adjustment(
        db,
        rec.id,
        adjustment_type="refund",
        amount=Decimal("250"),
        reason="partial return",
        applied_by="admin-1",
        expected_version=p1.record_version,
    )
    assert adj.resulting_commission == p1.new_commission
    assert applied == p1
    assert adj.delta == Decimal("-5.00")
    assert adj.sequence == 1

    stored = await fetch(CommissionRecord, rec.id)
    assert stored.current_commission == Decimal("15.00")
    assert stored.commission_amount == Decimal("20.00")
    assert stored.adjustment_seq == 1


@pytest.mark.asyncio
async def test_partial_refunds_add_up_to_a_full_refund(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory, tier="free")  # 5% of 1000 -> 50.00
    assert rec.commission_amount == Decimal("50.00")

    for expected in (Decimal("25.00"), Decimal("0.00")):
        preview = await commission_crud.preview_record_adjustment(db, rec.id, "refund", Decimal("500"))
        assert preview.new_commission == expected
        adj, _ = await commission_crud.apply_adjustment(
            db,
            rec.id,
            adjustment_type="refund",
            amount=Decimal("500"),
            reason="half returned",
            applied_by="a",
            expected_version=preview.record_version,
        )
        assert adj.delta == Decimal("-25.00")

    stored = await fetch(CommissionRecord, rec.id)
    assert stored.current_commission == Decimal("0.00")

    # the whole order has been refunded already
    with pytest.raises(InvalidAdjustmentError):
        await commission_crud.preview_record_adjustment(db, rec.id, "refund", Decimal("1"))
    with pytest.raises(InvalidAdjustmentError):
        await commission_crud.apply_adjustment(
            db, rec.id, adjustment_type="refund", amount=Decimal("1"), reason="x", applied_by="a", expected_version=2
        )
    assert (await fetch(CommissionRecord, rec.id)).adjustment_seq == 2


@pytest.mark.asyncio
async def test_refund_after_penalty_uses_stamped_commission(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)  # gold 2% -> 20.00
    await commission_crud.apply_adjustment(
        db, rec.id, adjustment_type="penalty", amount=Decimal("10"), reason="SLA", applied_by="a", expected_version=0
    )

    preview = await commission_crud.preview_record_adjustment(db, rec.id, "refund", Decimal("500"))
    assert preview.original_commission == Decimal("30.00")
    assert preview.new_commission == Decimal("20.00")


@pytest.mark.asyncio
async def test_stale_preview_is_rejected(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    await commission_crud.apply_adjustment(
        db, rec.id, adjustment_type="penalty", amount=Decimal("5"), reason="late", applied_by="a", expected_version=0
    )
    with pytest.raises(StaleCommissionError):
        await commission_crud.apply_adjustment(
            db, rec.id, adjustment_type="bonus", amount=Decimal("5"), reason="x", applied_by="b", expected_version=0
        )
    assert (await fetch(CommissionRecord, rec.id)).current_commission == Decimal("25.00")


@pytest.mark.asyncio
async def test_reason_is_required(db, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    with pytest.raises(InvalidAdjustmentError):
        await commission_crud.apply_adjustment(
            db, rec.id, adjustment_type="penalty", amount=Decimal("1"), reason="  ", applied_by="a", expected_version=0
        )


@pytest.mark.asyncio
async def test_adjustment_reprices_pending_payout(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    item = await queue_crud.enqueue_supplier_payout(db, "S1")
    assert item.net_amount == Decimal("980.00")

    adj, _ = await commission_crud.apply_adjustment(
        db, rec.id, adjustment_type="penalty", amount=Decimal("10"), reason="SLA", applied_by="a", expected_version=0
    )
    assert not adj.settled_after_payout

    repriced = await fetch(PayoutQueueItem, item.id)
    assert repriced.commission_amount == Decimal("30.00")
    assert repriced.net_amount == Decimal("970.00")


@pytest.mark.asyncio
async def test_adjustment_after_payout_settled_is_flagged(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    item = await queue_crud.enqueue_supplier_payout(db, "S1")
    item_id = item.id
    token = uuid.uuid4()
    await queue_crud.claim_items(db, [item_id], token)
    await db.commit()
    await queue_crud.mark_completed(db, item_id, token, "txn-1")

    adj, _ = await commission_crud.apply_adjustment(
        db, rec.id, adjustment_type="bonus", amount=Decimal("5"), reason="promo", applied_by="a", expected_version=0
    )
    assert adj.settled_after_payout
    assert (await fetch(PayoutQueueItem, item_id)).net_amount == Decimal("980.00")


@pytest.mark.asyncio
async def test_adjustment_after_cancelled_payout_is_unlinked(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    item = await queue_crud.enqueue_supplier_payout(db, "S1")
    item_id = item.id
    await queue_crud.cancel_item(db, item_id)

    adj, _ = await commission_crud.apply_adjustment(
        db, rec.id, adjustment_type="bonus", amount=Decimal("5"), reason="promo", applied_by="a", expected_version=0
    )
    assert not adj.settled_after_payout
    assert (await fetch(PayoutQueueItem, item_id)).net_amount == Decimal("980.00")


@pytest.mark.asyncio
async def test_adjustment_rejected_while_payout_in_flight(db, fetch, order_ledger, supplier_directory):
    rec = await stamp(db, order_ledger, supplier_directory)
    item = await queue_crud.enqueue_supplier_payout(db, "S1")

    await queue_crud.claim_items(db, [item.id], uuid.uuid4())
    await db.commit()

    with pytest.raises(InvalidAdjustmentError):
        await commission_crud.apply_adjustment(
            db, rec.id, adjustment_type="penalty", amount=Decimal("1"), reason="x", applied_by="a", expected_version=0
        )
    assert (await fetch(CommissionRecord, rec.id)).adjustment_seq == 0


@pytest.mark.asyncio
async def test_commission_summary(db, order_ledger, supplier_directory):
    await stamp(db, order_ledger, supplier_directory, order_id="O-1", supplier_id="S1", amount="1000", tier="gold")
    await stamp(db, order_ledger, supplier_directory, order_id="O-2", supplier_id="S1", amount="500", tier="gold")
    await stamp(db, order_ledger, supplier_directory, order_id="O-3", supplier_id="S2", amount="200", tier="free")

    s1 = await commission_crud.commission_summary(db, supplier_id="S1")
    assert s1.total_orders == 2
    assert s1.total_sales == Decimal("1500.00")
    assert s1.total_commission == Decimal("30.00")
    assert s1.total_supplier_earnings == Decimal("1470.00")

    platform = await commission_crud.commission_summary(db)
    assert platform.total_orders == 3
    assert platform.total_commission == Decimal("40.00")
