from datetime import date

import pytest

from database import Base, create_db_engine, create_session_factory
from models import Account, AccountType, Category, Frequency, TransactionType
from schemas import RecurringScheduleIn
from services import RecurringScheduleService


def make_session():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    return create_session_factory(engine)()


def seed(session):
    account = Account(company_id=1, name="Operating", type=AccountType.bank)
    rent = Category(company_id=1, name="Rent", type=TransactionType.expense)
    salary = Category(company_id=1, name="Salary", type=TransactionType.income)
    session.add_all([account, rent, salary])
    session.commit()
    return account, rent, salary


def schedule_in(account, category, **overrides):
    payload = dict(
        name="Office rent",
        frequency=Frequency.monthly,
        start_date=date(2025, 1, 31),
        amount_cents=150_000,
        type=category.type,
        category_id=category.id,
        account_id=account.id,
        day_of_month=31,
    )
    payload.update(overrides)
    return RecurringScheduleIn(**payload)


def test_create_computes_next_due_date():
    session = make_session()
    account, rent, _salary = seed(session)
    schedule = RecurringScheduleService(session, company_id=1).create(
        schedule_in(account, rent), today=date(2025, 3, 31)
    )
    assert schedule.next_due_date == date(2025, 4, 30)


def test_update_without_timing_change_keeps_next_due_date():
    session = make_session()
    account, rent, _salary = seed(session)
    service = RecurringScheduleService(session, company_id=1)
    schedule = service.create(schedule_in(account, rent), today=date(2025, 3, 31))

    updated = service.update(
        schedule.id,
        schedule_in(account, rent, name="HQ rent", amount_cents=160_000),
        today=date(2025, 6, 15),
    )
    assert updated.name == "HQ rent"
    assert updated.amount_cents == 160_000
    assert updated.next_due_date == date(2025, 4, 30)


def test_update_with_timing_change_recomputes():
    session = make_session()
    account, rent, _salary = seed(session)
    service = RecurringScheduleService(session, company_id=1)
    schedule = service.create(schedule_in(account, rent), today=date(2025, 3, 31))

    updated = service.update(
        schedule.id,
        schedule_in(account, rent, day_of_month=15),
        today=date(2025, 6, 20),
    )
    assert updated.day_of_month == 15
    assert updated.next_due_date == date(2025, 7, 15)


def test_switching_to_weekly_uses_weekday():
    session = make_session()
    account, rent, _salary = seed(session)
    service = RecurringScheduleService(session, company_id=1)
    schedule = service.create(schedule_in(account, rent), today=date(2025, 3, 31))

    updated = service.update(
        schedule.id,
        schedule_in(
            account,
            rent,
            frequency=Frequency.weekly,
            start_date=date(2025, 1, 6),
            day_of_month=None,
            day_of_week=1,
        ),
        today=date(2025, 1, 8),
    )
    assert updated.next_due_date == date(2025, 1, 13)


def test_category_type_must_match_schedule_type():
    session = make_session()
    account, _rent, salary = seed(session)
    with pytest.raises(ValueError, match="mismatch"):
        RecurringScheduleService(session, company_id=1).create(
            schedule_in(account, salary, type=TransactionType.expense),
            today=date(2025, 3, 31),
        )


def test_end_date_before_start_is_rejected():
    session = make_session()
    account, rent, _salary = seed(session)
    with pytest.raises(ValueError):
        schedule_in(account, rent, end_date=date(2024, 12, 31))


def test_list_orders_by_next_due_date():
    session = make_session()
    account, rent, salary = seed(session)
    service = RecurringScheduleService(session, company_id=1)
    later = service.create(schedule_in(account, rent), today=date(2025, 3, 31))
    sooner = service.create(
        schedule_in(
            account,
            salary,
            name="Retainer",
            frequency=Frequency.daily,
            start_date=date(2025, 3, 1),
            day_of_month=None,
        ),
        today=date(2025, 3, 31),
    )
    assert [s.id for s in service.list()] == [sooner.id, later.id]


def test_delete_removes_schedule():
    session = make_session()
    account, rent, _salary = seed(session)
    service = RecurringScheduleService(session, company_id=1)
    schedule = service.create(schedule_in(account, rent), today=date(2025, 3, 31))
    service.delete(schedule.id)
    with pytest.raises(ValueError):
        service.get(schedule.id)
