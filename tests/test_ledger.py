from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from database import Base, create_db_engine, create_session_factory
from ledger import (
    TRANSITIONS,
    BalanceEffect,
    BalanceReconciler,
    LedgerEntry,
    plan_effect,
)
from models import (
    Account,
    AccountType,
    BalanceAuditLog,
    Category,
    TransactionStatus,
    TransactionType,
)
from schemas import TransactionIn
from services import AccountService, TransactionService


def make_session():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    return create_session_factory(engine)()


def seed(session, initial_cents=100_000):
    account = Account(
        company_id=1,
        name="Operating",
        type=AccountType.bank,
        initial_balance_cents=initial_cents,
        balance_cents=initial_cents,
    )
    income = Category(company_id=1, name="Consulting", type=TransactionType.income)
    expense = Category(company_id=1, name="Rent", type=TransactionType.expense)
    session.add_all([account, income, expense])
    session.commit()
    return account, income, expense


def balance(session, account_id):
    return session.scalar(select(Account.balance_cents).where(Account.id == account_id))


def audit_count(session, account_id):
    return session.scalar(
        select(func.count(BalanceAuditLog.id)).where(
            BalanceAuditLog.account_id == account_id
        )
    )


def txn_in(account, category, **overrides):
    payload = dict(
        date=date(2025, 3, 1),
        description="Invoice 42",
        amount_cents=20_000,
        type=category.type,
        category_id=category.id,
        account_id=account.id,
        status=TransactionStatus.completed,
    )
    payload.update(overrides)
    return TransactionIn(**payload)


def entry(status, amount=1_000, account_id=1, type=TransactionType.income):
    return LedgerEntry(amount_cents=amount, type=type, status=status, account_id=account_id)


def test_transition_table_covers_every_status_pair():
    statuses = [None, *TransactionStatus]
    for old in statuses:
        for new in statuses:
            if old is None and new is None:
                continue
            assert (old, new) in TRANSITIONS


def test_only_completed_moves_the_balance():
    S = TransactionStatus
    assert plan_effect(None, entry(S.completed)) == BalanceEffect.apply
    assert plan_effect(None, entry(S.pending)) == BalanceEffect.none
    assert plan_effect(entry(S.pending), entry(S.failed)) == BalanceEffect.none
    assert plan_effect(entry(S.failed), entry(S.completed)) == BalanceEffect.apply
    assert plan_effect(entry(S.completed), entry(S.failed)) == BalanceEffect.reverse
    assert plan_effect(entry(S.completed), None) == BalanceEffect.reverse
    assert plan_effect(entry(S.pending), None) == BalanceEffect.none


def test_completed_edit_resettles_only_when_effect_moves():
    S = TransactionStatus
    same = entry(S.completed)
    assert plan_effect(same, entry(S.completed)) == BalanceEffect.none
    assert plan_effect(same, entry(S.completed, amount=2_000)) == BalanceEffect.resettle
    assert plan_effect(same, entry(S.completed, account_id=2)) == BalanceEffect.resettle
    assert (
        plan_effect(same, entry(S.completed, type=TransactionType.expense))
        == BalanceEffect.resettle
    )


def test_signed_cents_follow_type():
    assert entry(TransactionStatus.completed).signed_cents == 1_000
    assert (
        entry(TransactionStatus.completed, type=TransactionType.expense).signed_cents
        == -1_000
    )


def test_create_edit_and_pend_walks_balance_back():
    session = make_session()
    account, income, _expense = seed(session)
    service = TransactionService(session, company_id=1)

    txn = service.create(txn_in(account, income, amount_cents=20_000))
    assert balance(session, account.id) == 120_000

    service.update(txn.id, txn_in(account, income, amount_cents=15_000))
    assert balance(session, account.id) == 115_000

    service.update(
        txn.id,
        txn_in(account, income, amount_cents=15_000, status=TransactionStatus.pending),
    )
    assert balance(session, account.id) == 100_000
    assert AccountService(session, company_id=1).drift(account.id) == 0


def test_pending_transactions_never_touch_balance():
    session = make_session()
    account, income, _expense = seed(session)
    service = TransactionService(session, company_id=1)

    txn = service.create(
        txn_in(account, income, status=TransactionStatus.pending, amount_cents=5_000)
    )
    service.update(
        txn.id,
        txn_in(account, income, status=TransactionStatus.pending, amount_cents=7_000),
    )
    assert balance(session, account.id) == 100_000
    assert audit_count(session, account.id) == 0

    service.update(
        txn.id,
        txn_in(account, income, status=TransactionStatus.completed, amount_cents=7_000),
    )
    assert balance(session, account.id) == 107_000


def test_failed_to_completed_applies_once():
    session = make_session()
    account, _income, expense = seed(session)
    service = TransactionService(session, company_id=1)

    txn = service.create(
        txn_in(account, expense, status=TransactionStatus.failed, amount_cents=3_000)
    )
    assert balance(session, account.id) == 100_000
    service.update(txn.id, txn_in(account, expense, amount_cents=3_000))
    assert balance(session, account.id) == 97_000


def test_moving_completed_transaction_between_accounts():
    session = make_session()
    account, _income, expense = seed(session, initial_cents=10_000)
    other = Account(
        company_id=1, name="Petty cash", type=AccountType.cash, balance_cents=0
    )
    session.add(other)
    session.commit()
    service = TransactionService(session, company_id=1)

    txn = service.create(txn_in(account, expense, amount_cents=5_000))
    assert balance(session, account.id) == 5_000

    service.update(txn.id, txn_in(other, expense, amount_cents=5_000))
    assert balance(session, account.id) == 10_000
    assert balance(session, other.id) == -5_000


def test_description_only_edit_writes_no_audit_row():
    session = make_session()
    account, income, _expense = seed(session)
    service = TransactionService(session, company_id=1)

    txn = service.create(txn_in(account, income))
    assert audit_count(session, account.id) == 1
    service.update(txn.id, txn_in(account, income, description="Invoice 42 (paid)"))
    assert audit_count(session, account.id) == 1
    assert balance(session, account.id) == 120_000


def test_delete_completed_reverses_effect():
    session = make_session()
    account, _income, expense = seed(session)
    service = TransactionService(session, company_id=1)

    txn = service.create(txn_in(account, expense, amount_cents=4_000))
    assert balance(session, account.id) == 96_000
    service.delete(txn.id)
    assert balance(session, account.id) == 100_000


def test_audit_row_records_before_and_after():
    session = make_session()
    account, income, _expense = seed(session)
    txn = TransactionService(session, company_id=1).create(txn_in(account, income))

    row = session.scalars(select(BalanceAuditLog)).one()
    assert row.previous_balance_cents == 100_000
    assert row.new_balance_cents == 120_000
    assert row.change_cents == 20_000
    assert row.description == f"Transaction {txn.id}: Invoice 42"


def test_apply_refuses_non_completed_entry():
    session = make_session()
    account, _income, _expense = seed(session)
    reconciler = BalanceReconciler(session, 1)
    assert not reconciler.apply_to_balance(
        entry(TransactionStatus.pending, account_id=account.id), account.id
    )
    assert balance(session, account.id) == 100_000


def test_missing_account_reports_failure():
    session = make_session()
    seed(session)
    reconciler = BalanceReconciler(session, 1)
    assert not reconciler.apply_to_balance(
        entry(TransactionStatus.completed, account_id=999), 999
    )


def test_balance_failure_keeps_transaction_and_recalculate_repairs(monkeypatch):
    session = make_session()
    account, income, _expense = seed(session)

    def boom(self, account_id, delta_cents):
        raise OperationalError("UPDATE accounts", {}, Exception("database is locked"))

    monkeypatch.setattr(BalanceReconciler, "_write_balance", boom)
    txn = TransactionService(session, company_id=1).create(txn_in(account, income))
    monkeypatch.undo()

    assert txn.id is not None
    assert balance(session, account.id) == 100_000
    accounts = AccountService(session, company_id=1)
    assert accounts.drift(account.id) == -20_000

    results = accounts.recalculate(account.id)
    assert results == [
        {"account_id": account.id, "account_name": "Operating", "success": True}
    ]
    assert balance(session, account.id) == 120_000
    assert accounts.drift(account.id) == 0
    last = session.scalars(
        select(BalanceAuditLog).order_by(BalanceAuditLog.id.desc())
    ).first()
    assert last.description == "Balance recalculation based on 1 transactions"


def test_recalculate_ignores_pending_and_starts_from_initial_balance():
    session = make_session()
    account, income, expense = seed(session, initial_cents=50_000)
    service = TransactionService(session, company_id=1)
    service.create(txn_in(account, income, amount_cents=10_000))
    service.create(txn_in(account, expense, amount_cents=2_500))
    service.create(
        txn_in(account, income, amount_cents=99_999, status=TransactionStatus.pending)
    )

    session.execute(
        Account.__table__.update()
        .where(Account.id == account.id)
        .values(balance_cents=1)
    )
    session.commit()

    refreshed = BalanceReconciler(session, 1).recalculate(account.id)
    session.commit()
    assert refreshed.balance_cents == 57_500


def test_recalculate_all_reports_each_account():
    session = make_session()
    account, _income, _expense = seed(session)
    other = Account(company_id=1, name="Savings", type=AccountType.bank)
    foreign = Account(company_id=2, name="Elsewhere", type=AccountType.bank)
    session.add_all([other, foreign])
    session.commit()

    results = AccountService(session, company_id=1).recalculate()
    assert [r["account_id"] for r in results] == [account.id, other.id]
    assert all(r["success"] for r in results)


def test_other_company_account_is_not_found():
    session = make_session()
    foreign = Account(company_id=2, name="Elsewhere", type=AccountType.bank)
    session.add(foreign)
    session.commit()
    with pytest.raises(ValueError):
        AccountService(session, company_id=1).drift(foreign.id)
