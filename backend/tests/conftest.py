from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from marketplace_finance.api.deps.collaborators import (
    get_order_ledger,
    get_payment_collaborator,
    get_supplier_directory,
)
from marketplace_finance.clients.base import (
    OrderSnapshot,
    PaymentOutcome,
    PayoutSubmission,
    StampedCommission,
    SupplierSnapshot,
)
from marketplace_finance.core.batch_processor import BatchProcessor
from marketplace_finance.core.errors import PaymentCollaboratorError
from marketplace_finance.db.session import get_db, get_sessionmaker

# Ensure Base + models are registered before create_all
from marketplace_finance.db.base import Base  # noqa: F401
import marketplace_finance.models  # noqa: F401


# ---------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------
class FakeOrderLedger:
    def __init__(self) -> None:
        self.orders: dict[str, OrderSnapshot] = {}
        self.recorded: list[StampedCommission] = []

    def add(
        self,
        order_id: str,
        supplier_id: str,
        amount,
        category_id: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> OrderSnapshot:
        o = OrderSnapshot(
            order_id=order_id,
            supplier_id=supplier_id,
            order_amount=Decimal(str(amount)),
            category_id=category_id,
            completed_at=completed_at or datetime.now(timezone.utc),
        )
        self.orders[order_id] = o
        return o

    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        return self.orders.get(order_id)

    async def recent_orders(self, supplier_id: str, since: datetime) -> Sequence[OrderSnapshot]:
        return [
            o
            for o in self.orders.values()
            if o.supplier_id == supplier_id and (o.completed_at is None or o.completed_at >= since)
        ]

    async def record_commission(self, stamp: StampedCommission) -> None:
        self.recorded.append(stamp)


class FakeSupplierDirectory:
    def __init__(self) -> None:
        self.suppliers: dict[str, SupplierSnapshot] = {}

    def add(self, supplier_id: str, tier: Optional[str], is_active: bool = True) -> SupplierSnapshot:
        s = SupplierSnapshot(supplier_id=supplier_id, membership_tier=tier, is_active=is_active)
        self.suppliers[supplier_id] = s
        return s

    async def get_supplier(self, supplier_id: str) -> Optional[SupplierSnapshot]:
        return self.suppliers.get(supplier_id)

    async def active_suppliers(self) -> Sequence[SupplierSnapshot]:
        return [s for s in self.suppliers.values() if s.is_active]


class ScriptedPayments:
    """
    Payment collaborator driven by a per-payout script.
    Script entries: "ok", "decline:<reason>", "error:<reason>" (raises PaymentCollaboratorError)
    or "crash:<message>" (raises a plain RuntimeError, like a buggy client would).
    Payouts without a script (or past its end) succeed.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.scripts: dict[str, list[str]] = {}
        self.submissions: list[PayoutSubmission] = []
        self.delay = delay

    def script(self, payout_id, *steps: str) -> None:
        self.scripts[str(payout_id)] = list(steps)

    async def submit(self, submission: PayoutSubmission) -> PaymentOutcome:
        self.submissions.append(submission)
        if self.delay:
            await asyncio.sleep(self.delay)

        steps = self.scripts.get(str(submission.payout_id)) or []
        step = steps.pop(0) if steps else "ok"
        if step.startswith("decline:"):
            return PaymentOutcome.declined(step.split(":", 1)[1])
        if step.startswith("error:"):
            raise PaymentCollaboratorError(step.split(":", 1)[1])
        if step.startswith("crash:"):
            raise RuntimeError(step.split(":", 1)[1])
        return PaymentOutcome.success(f"txn-{submission.idempotency_key}")


@pytest.fixture()
def order_ledger() -> FakeOrderLedger:
    return FakeOrderLedger()


@pytest.fixture()
def supplier_directory() -> FakeSupplierDirectory:
    return FakeSupplierDirectory()


@pytest.fixture()
def payments() -> ScriptedPayments:
    return ScriptedPayments()


# ---------------------------------------------------------
# Engine: fresh file-backed SQLite database per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'finance_test.db'}",
        future=True,
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


# ---------------------------------------------------------
# DB session for assertions / setup
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    """
    Session for test setup & assertions ONLY.
    Rows written by other sessions: re-read through a new session (see fetch()).
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def fetch(sessionmaker):
    async def _fetch(model, pk):
        async with sessionmaker() as session:
            return await session.get(model, pk)

    return _fetch


@pytest.fixture()
def processor(sessionmaker, payments) -> BatchProcessor:
    return BatchProcessor(sessionmaker, payments)


# ---------------------------------------------------------
# FastAPI app + dependency overrides
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, order_ledger, supplier_directory, payments):
    from marketplace_finance.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_sessionmaker] = lambda: sessionmaker
    fastapi_app.dependency_overrides[get_order_ledger] = lambda: order_ledger
    fastapi_app.dependency_overrides[get_supplier_directory] = lambda: supplier_directory
    fastapi_app.dependency_overrides[get_payment_collaborator] = lambda: payments
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Actor-Id": "admin-1"},
    ) as ac:
        yield ac
