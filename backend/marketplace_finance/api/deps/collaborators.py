from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_finance.clients.base import OrderLedger, PaymentCollaborator, SupplierDirectory
from marketplace_finance.clients.http import HttpOrderLedger, HttpPaymentCollaborator, HttpSupplierDirectory
from marketplace_finance.core.batch_processor import BatchProcessor
from marketplace_finance.db.session import get_sessionmaker


def get_order_ledger() -> OrderLedger:
    return HttpOrderLedger()


def get_supplier_directory() -> SupplierDirectory:
    return HttpSupplierDirectory()


def get_payment_collaborator() -> PaymentCollaborator:
    return HttpPaymentCollaborator()


def get_batch_processor(
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
    payments: PaymentCollaborator = Depends(get_payment_collaborator),
) -> BatchProcessor:
    return BatchProcessor(sessionmaker, payments)
