"""Ledger transactions mirrored from sales.

The sales subsystem calls into this module after it has committed its own
change. Mirror failures are logged and reported as ``None``/``False``; they
are never raised back to the caller, so a sale is never blocked or rolled
back because the ledger could not follow it. ``BalanceReconciler.recalculate``
repairs any balance left behind.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger import BalanceReconciler, LedgerEntry
from models import (
    Account,
    AccountType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from schemas import SaleIn
from services import CategoryService, get_current_company_id

logger = logging.getLogger(__name__)

SALES_CATEGORY_NAME = "Sales"

MIRRORED_SALE_STATUSES = ("completed", "pending")

SALE_STATUS_MAP = {
    "completed": TransactionStatus.completed,
    "pending": TransactionStatus.pending,
    "cancelled": TransactionStatus.failed,
    "refunded": TransactionStatus.failed,
}


def ledger_status_for_sale(sale_status: str) -> TransactionStatus:
    return SALE_STATUS_MAP.get(sale_status.lower(), TransactionStatus.pending)


def sale_description(sale: SaleIn) -> str:
    return f"Sale to {sale.customer_name} - Invoice #{sale.invoice_number or 'N/A'}"


def sale_notes(sale: SaleIn, verb: str) -> str:
    items = ", ".join(sale.products) if sale.products else "none listed"
    return f"Automatically {verb} from sale. Items: {items}"


class SalesTransactionMirror:
    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()
        self.reconciler = BalanceReconciler(session, self.company_id)

    def _default_account(self) -> Optional[Account]:
        return self.session.scalar(
            select(Account)
            .where(
                Account.company_id == self.company_id,
                Account.type.in_([AccountType.bank, AccountType.cash]),
            )
            .order_by(Account.id)
            .limit(1)
        )

    def _mirrored(self, sale_id: str) -> Optional[Transaction]:
        return self.session.scalar(
            select(Transaction)
            .where(
                Transaction.company_id == self.company_id,
                Transaction.related_sale_id == sale_id,
            )
            .order_by(Transaction.id)
            .limit(1)
        )

    def create_transaction_from_sale(self, sale: SaleIn) -> Optional[Transaction]:
        if sale.status.lower() not in MIRRORED_SALE_STATUSES:
            logger.info(f"sale_mirror_skipped: sale={sale.id} status={sale.status}")
            return None
        try:
            existing = self._mirrored(sale.id)
        except SQLAlchemyError as exc:
            logger.warning(f"sale_mirror_create_failed: sale={sale.id} error={exc}")
            return None
        if existing is not None:
            logger.info(
                f"sale_mirror_exists: sale={sale.id} transaction={existing.id}"
            )
            return self.update_transaction_from_sale(sale)
        try:
            txn = self._create(sale)
        except (SQLAlchemyError, ValueError) as exc:
            self.session.rollback()
            logger.warning(f"sale_mirror_create_failed: sale={sale.id} error={exc}")
            return None
        if txn is not None:
            logger.info(
                f"sale_mirror_created: sale={sale.id} transaction={txn.id} "
                f"status={txn.status.value}"
            )
        return txn

    def _create(self, sale: SaleIn) -> Optional[Transaction]:
        account = self._default_account()
        if account is None:
            logger.warning(
                f"sale_mirror_no_account: sale={sale.id} company={self.company_id}"
            )
            return None
        category = CategoryService(self.session, self.company_id).get_or_create(
            SALES_CATEGORY_NAME, TransactionType.income
        )
        status = ledger_status_for_sale(sale.status)
        after = LedgerEntry(
            amount_cents=sale.total_cents,
            type=TransactionType.income,
            status=status,
            account_id=account.id,
            description=sale_description(sale),
        )

        def persist() -> Transaction:
            txn = Transaction(
                company_id=self.company_id,
                date=sale.date,
                description=sale_description(sale),
                amount_cents=sale.total_cents,
                type=TransactionType.income,
                status=status,
                account_id=account.id,
                category_id=category.id,
                reference=sale.invoice_number,
                notes=sale_notes(sale, "generated"),
                related_sale_id=sale.id,
            )
            self.session.add(txn)
            self.session.flush()
            return txn

        txn = self.reconciler.settle(None, after, persist)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update_transaction_from_sale(self, sale: SaleIn) -> Optional[Transaction]:
        try:
            existing = self._mirrored(sale.id)
        except SQLAlchemyError as exc:
            logger.warning(f"sale_mirror_update_failed: sale={sale.id} error={exc}")
            return None
        if existing is None:
            return self.create_transaction_from_sale(sale)

        before = LedgerEntry.of(existing)
        status = ledger_status_for_sale(sale.status)
        after = LedgerEntry(
            amount_cents=sale.total_cents,
            type=existing.type,
            status=status,
            account_id=existing.account_id,
            transaction_id=existing.id,
            description=sale_description(sale),
        )

        def persist() -> Transaction:
            existing.date = sale.date
            existing.description = sale_description(sale)
            existing.amount_cents = sale.total_cents
            existing.status = status
            existing.reference = sale.invoice_number
            existing.notes = sale_notes(sale, "updated")
            self.session.flush()
            return existing

        try:
            txn = self.reconciler.settle(before, after, persist)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(f"sale_mirror_update_failed: sale={sale.id} error={exc}")
            return None
        self.session.refresh(txn)
        logger.info(
            f"sale_mirror_updated: sale={sale.id} transaction={txn.id} "
            f"status={before.status.value}->{txn.status.value}"
        )
        return txn

    def delete_transaction_from_sale(self, sale_id: str, company_id: int) -> bool:
        if company_id != self.company_id:
            return SalesTransactionMirror(
                self.session, company_id
            ).delete_transaction_from_sale(sale_id, company_id)
        try:
            existing = self._mirrored(sale_id)
            if existing is None:
                return True
            transaction_id = existing.id
            before = LedgerEntry.of(existing)

            def persist() -> None:
                self.session.delete(existing)
                self.session.flush()

            self.reconciler.settle(before, None, persist)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(f"sale_mirror_delete_failed: sale={sale_id} error={exc}")
            return False
        logger.info(f"sale_mirror_deleted: sale={sale_id} transaction={transaction_id}")
        return True
