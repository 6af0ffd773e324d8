import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from database import Base, create_db_engine, create_session_factory
from errors import NotFoundError
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
)
from sales_mirror import SalesTransactionMirror
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetItemIn,
    BudgetTrackIn,
    BudgetUpdateIn,
    CategoryIn,
    RecalculateIn,
    RecurringScheduleIn,
    SaleIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    RecurringScheduleService,
    TransactionService,
)

logger = logging.getLogger(__name__)


def _raise_for(exc: ValueError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def account_json(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "currency": account.currency,
        "initial_balance_cents": account.initial_balance_cents,
        "balance_cents": account.balance_cents,
    }


def category_json(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "type": category.type.value}


def transaction_json(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "description": txn.description,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "status": txn.status.value,
        "account_id": txn.account_id,
        "category_id": txn.category_id,
        "reference": txn.reference,
        "recurring": txn.recurring,
        "notes": txn.notes,
        "related_sale_id": txn.related_sale_id,
    }


def schedule_json(schedule: RecurringSchedule) -> dict[str, object]:
    return {
        "id": schedule.id,
        "name": schedule.name,
        "description": schedule.description,
        "frequency": schedule.frequency.value,
        "interval": schedule.interval,
        "start_date": schedule.start_date.isoformat(),
        "end_date": schedule.end_date.isoformat() if schedule.end_date else None,
        "day_of_month": schedule.day_of_month,
        "day_of_week": schedule.day_of_week,
        "month_of_year": schedule.month_of_year,
        "next_due_date": schedule.next_due_date.isoformat(),
        "amount_cents": schedule.amount_cents,
        "type": schedule.type.value,
        "category_id": schedule.category_id,
        "account_id": schedule.account_id,
        "status": schedule.status.value,
    }


def budget_item_json(item: BudgetItem) -> dict[str, object]:
    return {
        "id": item.id,
        "budget_id": item.budget_id,
        "name": item.name,
        "amount_cents": item.amount_cents,
        "spent_cents": item.spent_cents,
        "category_id": item.category_id,
        "notes": item.notes,
    }


def budget_json(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "name": budget.name,
        "description": budget.description,
        "type": budget.type.value,
        "status": budget.status.value,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat(),
        "total_budget_cents": budget.total_budget_cents,
        "total_spent_cents": budget.total_spent_cents,
        "items": [budget_item_json(item) for item in budget.items],
    }


def create_app(session_factory: Optional[sessionmaker] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        Base.metadata.create_all(engine)
        session_factory = create_session_factory(engine)

    app = FastAPI(title="Financial Consistency Engine")
    app.state.session_factory = session_factory

    def get_db(request: Request):
        db = request.app.state.session_factory()
        try:
            yield db
        finally:
            db.close()

    @app.get("/api/accounts")
    def list_accounts(db: Session = Depends(get_db)):
        return [account_json(a) for a in AccountService(db).list_all()]

    @app.post("/api/accounts", status_code=201)
    def create_account(data: AccountIn, db: Session = Depends(get_db)):
        try:
            return account_json(AccountService(db).create(data))
        except ValueError as exc:
            _raise_for(exc)

    @app.get("/api/accounts/{account_id}")
    def get_account(account_id: int, db: Session = Depends(get_db)):
        try:
            return account_json(AccountService(db).get(account_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.get("/api/accounts/{account_id}/drift")
    def account_drift(account_id: int, db: Session = Depends(get_db)):
        try:
            return {"account_id": account_id, "drift_cents": AccountService(db).drift(account_id)}
        except ValueError as exc:
            _raise_for(exc)

    @app.post("/api/accounts/recalculate")
    def recalculate_accounts(data: RecalculateIn, db: Session = Depends(get_db)):
        service = AccountService(db)
        try:
            results = service.recalculate(data.account_id)
        except ValueError as exc:
            _raise_for(exc)
        return {
            "results": results,
            "accounts": [account_json(a) for a in service.list_all()],
        }

    @app.get("/api/categories")
    def list_categories(db: Session = Depends(get_db)):
        return [category_json(c) for c in CategoryService(db).list_all()]

    @app.post("/api/categories", status_code=201)
    def create_category(data: CategoryIn, db: Session = Depends(get_db)):
        try:
            return category_json(CategoryService(db).create(data))
        except ValueError as exc:
            _raise_for(exc)

    @app.get("/api/transactions")
    def list_transactions(
        account_id: Optional[int] = None,
        status: Optional[TransactionStatus] = None,
        db: Session = Depends(get_db),
    ):
        items = TransactionService(db).list(account_id=account_id, status=status)
        return [transaction_json(t) for t in items]

    @app.post("/api/transactions", status_code=201)
    def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
        try:
            return transaction_json(TransactionService(db).create(data))
        except ValueError as exc:
            _raise_for(exc)

    @app.get("/api/transactions/{transaction_id}")
    def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
        try:
            return transaction_json(TransactionService(db).get(transaction_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.put("/api/transactions/{transaction_id}")
    def update_transaction(
        transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
    ):
        try:
            return transaction_json(TransactionService(db).update(transaction_id, data))
        except ValueError as exc:
            _raise_for(exc)

    @app.delete("/api/transactions/{transaction_id}", status_code=204)
    def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
        try:
            TransactionService(db).delete(transaction_id)
        except ValueError as exc:
            _raise_for(exc)
        return Response(status_code=204)

    @app.get("/api/recurring")
    def list_recurring(db: Session = Depends(get_db)):
        return [schedule_json(s) for s in RecurringScheduleService(db).list()]

    @app.post("/api/recurring", status_code=201)
    def create_recurring(data: RecurringScheduleIn, db: Session = Depends(get_db)):
        try:
            return schedule_json(RecurringScheduleService(db).create(data))
        except ValueError as exc:
            _raise_for(exc)

    @app.get("/api/recurring/{schedule_id}")
    def get_recurring(schedule_id: int, db: Session = Depends(get_db)):
        try:
            return schedule_json(RecurringScheduleService(db).get(schedule_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.put("/api/recurring/{schedule_id}")
    def update_recurring(
        schedule_id: int, data: RecurringScheduleIn, db: Session = Depends(get_db)
    ):
        try:
            return schedule_json(RecurringScheduleService(db).update(schedule_id, data))
        except ValueError as exc:
            _raise_for(exc)

    @app.delete("/api/recurring/{schedule_id}", status_code=204)
    def delete_recurring(schedule_id: int, db: Session = Depends(get_db)):
        try:
            RecurringScheduleService(db).delete(schedule_id)
        except ValueError as exc:
            _raise_for(exc)
        return Response(status_code=204)

    @app.get("/api/budgets")
    def list_budgets(
        type: Optional[BudgetType] = None,
        status: Optional[BudgetStatus] = None,
        db: Session = Depends(get_db),
    ):
        return [budget_json(b) for b in BudgetService(db).list(type=type, status=status)]

    @app.post("/api/budgets", status_code=201)
    def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
        try:
            return budget_json(BudgetService(db).create(data))
        except ValueError as exc:
            _raise_for(exc)

    @app.post("/api/budgets/track")
    def track_budget(data: BudgetTrackIn, db: Session = Depends(get_db)):
        try:
            item = BudgetService(db).track_expense(data)
        except ValueError as exc:
            _raise_for(exc)
        return {"success": True, "budget_item": budget_item_json(item)}

    @app.get("/api/budgets/{budget_id}")
    def get_budget(budget_id: int, db: Session = Depends(get_db)):
        try:
            return budget_json(BudgetService(db).get(budget_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.put("/api/budgets/{budget_id}")
    def update_budget(
        budget_id: int, data: BudgetUpdateIn, db: Session = Depends(get_db)
    ):
        try:
            return budget_json(BudgetService(db).update(budget_id, data))
        except ValueError as exc:
            _raise_for(exc)

    @app.delete("/api/budgets/{budget_id}", status_code=204)
    def delete_budget(budget_id: int, db: Session = Depends(get_db)):
        try:
            BudgetService(db).delete(budget_id)
        except ValueError as exc:
            _raise_for(exc)
        return Response(status_code=204)

    @app.get("/api/budgets/{budget_id}/statistics")
    def budget_statistics(budget_id: int, db: Session = Depends(get_db)):
        try:
            return BudgetService(db).statistics(budget_id)
        except ValueError as exc:
            _raise_for(exc)

    @app.post("/api/budgets/{budget_id}/resync")
    def resync_budget(budget_id: int, db: Session = Depends(get_db)):
        try:
            return budget_json(BudgetService(db).resync_totals(budget_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.post("/api/budgets/{budget_id}/items")
    def upsert_budget_item(
        budget_id: int, data: BudgetItemIn, db: Session = Depends(get_db)
    ):
        try:
            return budget_item_json(BudgetService(db).upsert_item(budget_id, data))
        except ValueError as exc:
            _raise_for(exc)

    @app.delete("/api/budget-items/{item_id}")
    def remove_budget_item(item_id: int, db: Session = Depends(get_db)):
        try:
            return budget_json(BudgetService(db).remove_item(item_id))
        except ValueError as exc:
            _raise_for(exc)

    @app.post("/api/sales/events/created")
    def sale_created(sale: SaleIn, db: Session = Depends(get_db)):
        txn = SalesTransactionMirror(db, sale.company_id).create_transaction_from_sale(sale)
        return {"transaction": transaction_json(txn) if txn else None}

    @app.post("/api/sales/events/updated")
    def sale_updated(sale: SaleIn, db: Session = Depends(get_db)):
        txn = SalesTransactionMirror(db, sale.company_id).update_transaction_from_sale(sale)
        return {"transaction": transaction_json(txn) if txn else None}

    @app.delete("/api/sales/{sale_id}/transaction")
    def sale_deleted(
        sale_id: str, company_id: Optional[int] = None, db: Session = Depends(get_db)
    ):
        mirror = SalesTransactionMirror(db, company_id)
        return {"success": mirror.delete_transaction_from_sale(sale_id, mirror.company_id)}

    return app
