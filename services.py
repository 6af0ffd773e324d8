from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import with_read_retry
from errors import NotFoundError
from ledger import BalanceReconciler, LedgerEntry
from models import (
    Account,
    Budget,
    BudgetItem,
    BudgetStatus,
    BudgetType,
    Category,
    RecurringSchedule,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from recurrence import local_today, next_due_date, shape_changed
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetItemIn,
    BudgetTrackIn,
    BudgetUpdateIn,
    CategoryIn,
    RecurringScheduleIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)


def get_current_company_id() -> int:
    return get_settings().default_company_id


def _spending_status(percentage: float) -> str:
    if percentage >= 100:
        return "over-budget"
    if percentage >= 90:
        return "warning"
    return "good"


class AccountService:
    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()
        self.reconciler = BalanceReconciler(session, self.company_id)

    @with_read_retry
    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.company_id == self.company_id)
            .order_by(Account.name)
        )
        return self.session.scalars(stmt).all()

    @with_read_retry
    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.company_id != self.company_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        existing = self.session.scalar(
            select(Account).where(
                Account.company_id == self.company_id,
                func.lower(Account.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Account with this name already exists")
        account = Account(
            company_id=self.company_id,
            name=data.name.strip(),
            type=data.type,
            currency=data.currency.upper(),
            initial_balance_cents=data.initial_balance_cents,
            balance_cents=data.initial_balance_cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def recalculate(self, account_id: Optional[int] = None) -> list[dict[str, object]]:
        if account_id is not None:
            account = self.reconciler.recalculate(account_id)
            self.session.commit()
            self.session.refresh(account)
            return [{"account_id": account.id, "account_name": account.name, "success": True}]
        results = self.reconciler.recalculate_all()
        self.session.commit()
        return results

    def drift(self, account_id: int) -> int:
        return self.reconciler.drift(account_id)


class CategoryService:
    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()

    @with_read_retry
    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.company_id == self.company_id)
            .order_by(Category.type, Category.name)
        )
        return self.session.scalars(stmt).all()

    def _find(self, name: str, type: TransactionType) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.company_id == self.company_id,
                Category.type == type,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        if self._find(data.name, data.type):
            raise ValueError("Category with this name already exists")
        category = Category(
            company_id=self.company_id, name=data.name.strip(), type=data.type
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get_or_create(self, name: str, type: TransactionType) -> Category:
        existing = self._find(name, type)
        if existing:
            return existing
        category = Category(company_id=self.company_id, name=name.strip(), type=type)
        self.session.add(category)
        self.session.flush()
        return category


class TransactionService:
    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()
        self.reconciler = BalanceReconciler(session, self.company_id)

    @with_read_retry
    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .where(
                Transaction.company_id == self.company_id,
                Transaction.id == transaction_id,
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    @with_read_retry
    def list(
        self,
        *,
        account_id: Optional[int] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.company_id == self.company_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)
        if status:
            stmt = stmt.where(Transaction.status == status)
        return self.session.scalars(stmt).all()

    def _check_references(self, data: TransactionIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category or category.company_id != self.company_id:
            raise NotFoundError("Category not found")
        if category.type != data.type:
            raise ValueError("Category type mismatch")
        account = self.session.get(Account, data.account_id)
        if not account or account.company_id != self.company_id:
            raise NotFoundError("Account not found")

    @staticmethod
    def _entry(data: TransactionIn, transaction_id: Optional[int] = None) -> LedgerEntry:
        return LedgerEntry(
            amount_cents=data.amount_cents,
            type=data.type,
            status=data.status,
            account_id=data.account_id,
            transaction_id=transaction_id,
            description=data.description,
        )

    def create(self, data: TransactionIn) -> Transaction:
        self._check_references(data)

        def persist() -> Transaction:
            txn = Transaction(company_id=self.company_id, **data.model_dump())
            self.session.add(txn)
            self.session.flush()
            return txn

        txn = self.reconciler.settle(None, self._entry(data), persist)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} account={txn.account_id} "
            f"status={txn.status.value} amount={txn.amount_cents}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_references(data)
        before = LedgerEntry.of(txn)

        def persist() -> Transaction:
            for field, value in data.model_dump().items():
                setattr(txn, field, value)
            self.session.flush()
            return txn

        self.reconciler.settle(before, self._entry(data, txn.id), persist)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: id={txn.id} status={before.status.value}->"
            f"{txn.status.value} account={before.account_id}->{txn.account_id}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        before = LedgerEntry.of(txn)

        def persist() -> None:
            self.session.delete(txn)
            self.session.flush()

        self.reconciler.settle(before, None, persist)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id}")


class RecurringScheduleService:
    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()

    @with_read_retry
    def get(self, schedule_id: int) -> RecurringSchedule:
        schedule = self.session.get(RecurringSchedule, schedule_id)
        if not schedule or schedule.company_id != self.company_id:
            raise NotFoundError("Recurring schedule not found")
        return schedule

    @with_read_retry
    def list(self) -> list[RecurringSchedule]:
        stmt = (
            select(RecurringSchedule)
            .options(joinedload(RecurringSchedule.category))
            .where(RecurringSchedule.company_id == self.company_id)
            .order_by(RecurringSchedule.next_due_date, RecurringSchedule.id)
        )
        return self.session.scalars(stmt).all()

    def _check_references(self, data: RecurringScheduleIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category or category.company_id != self.company_id:
            raise NotFoundError("Category not found")
        if category.type != data.type:
            raise ValueError("Category type mismatch")
        account = self.session.get(Account, data.account_id)
        if not account or account.company_id != self.company_id:
            raise NotFoundError("Account not found")

    @staticmethod
    def _compute_next_due(data: RecurringScheduleIn, today: date) -> date:
        return next_due_date(
            data.start_date,
            data.frequency,
            data.interval,
            day_of_month=data.day_of_month,
            day_of_week=data.day_of_week,
            month_of_year=data.month_of_year,
            now=today,
        )

    def create(
        self, data: RecurringScheduleIn, today: Optional[date] = None
    ) -> RecurringSchedule:
        self._check_references(data)
        today = today or local_today()
        schedule = RecurringSchedule(
            company_id=self.company_id,
            next_due_date=self._compute_next_due(data, today),
            **data.model_dump(),
        )
        self.session.add(schedule)
        self.session.commit()
        self.session.refresh(schedule)
        logger.info(
            f"schedule_created: id={schedule.id} frequency={schedule.frequency.value} "
            f"next_due={schedule.next_due_date.isoformat()}"
        )
        return schedule

    def update(
        self,
        schedule_id: int,
        data: RecurringScheduleIn,
        today: Optional[date] = None,
    ) -> RecurringSchedule:
        schedule = self.get(schedule_id)
        if (
            data.category_id != schedule.category_id
            or data.account_id != schedule.account_id
            or data.type != schedule.type
        ):
            self._check_references(data)

        if shape_changed(schedule, data):
            today = today or local_today()
            schedule.next_due_date = self._compute_next_due(data, today)
            logger.info(
                f"schedule_rescheduled: id={schedule.id} "
                f"next_due={schedule.next_due_date.isoformat()}"
            )
        for field, value in data.model_dump().items():
            setattr(schedule, field, value)
        self.session.commit()
        self.session.refresh(schedule)
        return schedule

    def delete(self, schedule_id: int) -> None:
        schedule = self.get(schedule_id)
        self.session.delete(schedule)
        self.session.commit()


class BudgetService:
    """Budgets and their line items.

    The item set is authoritative once a budget exists: every item mutation
    ends in ``_resync`` so ``total_budget_cents`` and ``total_spent_cents``
    always equal the sums over the current items.
    """

    def __init__(self, session: Session, company_id: Optional[int] = None) -> None:
        self.session = session
        self.company_id = company_id or get_current_company_id()

    @with_read_retry
    def get(self, budget_id: int) -> Budget:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.items).joinedload(BudgetItem.category))
            .where(Budget.company_id == self.company_id, Budget.id == budget_id)
        )
        budget = self.session.scalars(stmt).unique().one_or_none()
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    @with_read_retry
    def list(
        self,
        *,
        type: Optional[BudgetType] = None,
        status: Optional[BudgetStatus] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.items))
            .where(Budget.company_id == self.company_id)
            .order_by(Budget.start_date.desc(), Budget.id.desc())
        )
        if type:
            stmt = stmt.where(Budget.type == type)
        if status:
            stmt = stmt.where(Budget.status == status)
        return self.session.scalars(stmt).unique().all()

    def _get_item(self, item_id: int) -> BudgetItem:
        item = self.session.scalar(
            select(BudgetItem)
            .join(Budget, BudgetItem.budget_id == Budget.id)
            .where(BudgetItem.id == item_id, Budget.company_id == self.company_id)
        )
        if not item:
            raise NotFoundError("Budget item not found")
        return item

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category or category.company_id != self.company_id:
            raise NotFoundError("Category not found")

    def create(self, data: BudgetIn) -> Budget:
        items_total = sum(item.amount_cents for item in data.items)
        tolerance = get_settings().budget_tolerance_cents
        if abs(items_total - data.total_budget_cents) > tolerance:
            raise ValueError("The sum of all budget items must equal the total budget")

        budget = Budget(
            company_id=self.company_id,
            name=data.name.strip(),
            description=data.description,
            type=data.type,
            start_date=data.start_date,
            end_date=data.end_date,
            status=data.status,
            total_budget_cents=data.total_budget_cents,
            total_spent_cents=0,
        )
        self.session.add(budget)
        self.session.flush()
        for item in data.items:
            self._insert_item(budget, item)
        self._resync(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} items={len(data.items)} "
            f"total={budget.total_budget_cents}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        # totals follow the item set once the budget exists
        changes = data.model_dump(
            exclude_unset=True, exclude={"items", "total_budget_cents"}
        )
        for field, value in changes.items():
            if value is None and field != "description":
                continue
            setattr(budget, field, value)
        if budget.end_date < budget.start_date:
            raise ValueError("End date must not be before start date")

        for item in data.items or []:
            self._upsert(budget, item)
        self._resync(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: id={budget_id}")

    def upsert_item(self, budget_id: int, data: BudgetItemIn) -> BudgetItem:
        budget = self.get(budget_id)
        item = self._upsert(budget, data)
        self._resync(budget)
        self.session.commit()
        self.session.refresh(item)
        return item

    def remove_item(self, item_id: int) -> Budget:
        item = self._get_item(item_id)
        budget = self.get(item.budget_id)
        budget.items.remove(item)
        self.session.flush()
        self._resync(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def resync_totals(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        self._resync(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def _upsert(self, budget: Budget, data: BudgetItemIn) -> BudgetItem:
        existing = None
        if data.id is not None:
            existing = self.session.scalar(
                select(BudgetItem).where(
                    BudgetItem.id == data.id, BudgetItem.budget_id == budget.id
                )
            )
        if existing is None:
            return self._insert_item(budget, data)

        existing.name = data.name.strip()
        existing.amount_cents = data.amount_cents
        if "notes" in data.model_fields_set:
            existing.notes = data.notes
        if data.spent_cents is not None:
            existing.spent_cents = data.spent_cents
        touch, category_id = data.category_change()
        if touch:
            self._check_category(category_id)
            existing.category_id = category_id
        self.session.flush()
        return existing

    def _insert_item(self, budget: Budget, data: BudgetItemIn) -> BudgetItem:
        _touch, category_id = data.category_change()
        self._check_category(category_id)
        item = BudgetItem(
            budget=budget,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            spent_cents=data.spent_cents or 0,
            category_id=category_id,
            notes=data.notes,
        )
        self.session.add(item)
        self.session.flush()
        return item

    def _resync(self, budget: Budget) -> None:
        self.session.flush()
        row = self.session.execute(
            select(
                func.coalesce(func.sum(BudgetItem.amount_cents), 0).label("amount"),
                func.coalesce(func.sum(BudgetItem.spent_cents), 0).label("spent"),
            ).where(BudgetItem.budget_id == budget.id)
        ).one()
        # loaded totals may be stale, so write them as a statement
        self.session.execute(
            update(Budget)
            .where(Budget.id == budget.id)
            .values(
                total_budget_cents=int(row.amount),
                total_spent_cents=int(row.spent),
            )
        )
        self.session.refresh(budget, ["total_budget_cents", "total_spent_cents"])

    def track_expense(self, data: BudgetTrackIn) -> BudgetItem:
        txn = TransactionService(self.session, self.company_id).get(data.transaction_id)
        item = self._get_item(data.budget_item_id)
        if txn.type != TransactionType.expense:
            raise ValueError("Only expense transactions can be tracked against a budget")
        item.spent_cents += data.amount_cents
        self._resync(item.budget)
        self.session.commit()
        self.session.refresh(item)
        logger.info(
            f"budget_tracked: transaction={txn.id} item={item.id} "
            f"amount={data.amount_cents}"
        )
        return item

    def statistics(self, budget_id: int) -> dict[str, object]:
        budget = self.get(budget_id)
        total = budget.total_budget_cents
        spent = budget.total_spent_cents
        percentage = (spent / total * 100) if total > 0 else 0.0

        items = []
        for item in budget.items:
            item_pct = (item.spent_cents / item.amount_cents * 100) if item.amount_cents > 0 else 0.0
            items.append(
                {
                    "id": item.id,
                    "name": item.name,
                    "category_id": item.category_id,
                    "amount_cents": item.amount_cents,
                    "spent_cents": item.spent_cents,
                    "remaining_cents": item.amount_cents - item.spent_cents,
                    "spent_percentage": item_pct,
                    "status": _spending_status(item_pct),
                }
            )
        items.sort(key=lambda i: i["spent_percentage"], reverse=True)

        return {
            "id": budget.id,
            "name": budget.name,
            "type": budget.type.value,
            "status": budget.status.value,
            "start_date": budget.start_date.isoformat(),
            "end_date": budget.end_date.isoformat(),
            "total_budget_cents": total,
            "total_spent_cents": spent,
            "remaining_cents": total - spent,
            "spent_percentage": percentage,
            "budget_status": _spending_status(percentage),
            "items": items,
        }
