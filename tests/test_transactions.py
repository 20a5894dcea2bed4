from datetime import date
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from database import Base, check_connection, create_db_engine, make_sessionmaker
from insights import TrendDirection
from models import TransactionType, UserRole
from schemas import RegisterIn, TransactionIn
from services import (
    EmailAlreadyUsed,
    InsightsService,
    InvalidCredentials,
    TransactionFilters,
    TransactionService,
    UserService,
)


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def _register(session, email: str = "asha@example.com"):
    return UserService(session).register(
        RegisterIn(name="Asha", email=email, password="pa55word")
    )


def _add(service: TransactionService, type_, amount, category, day):
    return service.create(
        TransactionIn(type=type_, amount=amount, category=category, date=day)
    )


def test_register_and_authenticate() -> None:
    session = make_session()

    user = _register(session, "Asha@Example.com")

    assert user.email == "asha@example.com"
    assert user.role == UserRole.user
    assert user.password_hash != "pa55word"
    assert UserService(session).authenticate("ASHA@example.com", "pa55word").id == (
        user.id
    )


def test_register_rejects_duplicate_email() -> None:
    session = make_session()
    _register(session)

    with pytest.raises(EmailAlreadyUsed):
        _register(session, "ASHA@example.com")


def test_authenticate_rejects_bad_credentials() -> None:
    session = make_session()
    _register(session)

    with pytest.raises(InvalidCredentials):
        UserService(session).authenticate("asha@example.com", "nope")
    with pytest.raises(InvalidCredentials):
        UserService(session).authenticate("nobody@example.com", "pa55word")


def test_create_stores_signed_cents_and_defaults_date() -> None:
    session = make_session()
    user = _register(session)
    service = TransactionService(session, user.id)

    expense = _add(service, TransactionType.expense, Decimal("-300.25"), "food", None)

    assert expense.amount_cents == -30025
    assert expense.date is not None
    record = service.records()[0]
    assert record.amount == Decimal("-300.25")
    assert record.type == "expense"


def test_list_filters_and_orders() -> None:
    session = make_session()
    user = _register(session)
    service = TransactionService(session, user.id)
    _add(service, TransactionType.income, 1000, "Salary", date(2024, 1, 15))
    _add(service, TransactionType.expense, -300, "food", date(2024, 1, 20))
    _add(service, TransactionType.expense, 200, "rent", date(2024, 2, 1))

    newest = service.list()
    oldest = service.list(TransactionFilters(oldest_first=True))
    expenses = service.list(TransactionFilters.from_params("Expense", "All", None))
    salary = service.list(TransactionFilters.from_params("all", "salary", None))

    assert [t.category for t in newest] == ["rent", "food", "Salary"]
    assert [t.category for t in oldest] == ["Salary", "food", "rent"]
    assert [t.category for t in expenses] == ["rent", "food"]
    assert [t.category for t in salary] == ["Salary"]


def test_users_are_isolated() -> None:
    session = make_session()
    alice = _register(session, "alice@example.com")
    bob = _register(session, "bob@example.com")
    alice_txns = TransactionService(session, alice.id)
    bob_txns = TransactionService(session, bob.id)
    txn = _add(alice_txns, TransactionType.expense, 50, "food", date(2024, 1, 1))

    assert bob_txns.list() == []
    assert bob_txns.records() == []
    with pytest.raises(ValueError):
        bob_txns.delete(txn.id)
    assert len(alice_txns.list()) == 1


def test_delete_removes_transaction() -> None:
    session = make_session()
    user = _register(session)
    service = TransactionService(session, user.id)
    txn = _add(service, TransactionType.expense, 50, "food", date(2024, 1, 1))

    service.delete(txn.id)

    assert service.list() == []
    with pytest.raises(ValueError, match="Transaction not found"):
        service.delete(txn.id)


def test_insights_service_summarizes_user_transactions() -> None:
    session = make_session()
    user = _register(session)
    service = TransactionService(session, user.id)
    _add(service, TransactionType.income, 1000, "salary", date(2024, 1, 15))
    _add(service, TransactionType.expense, -300, "food", date(2024, 1, 20))
    _add(service, TransactionType.expense, 200, "rent", date(2024, 2, 1))

    insights = InsightsService(session, user.id, ZoneInfo("UTC"))
    dashboard = insights.summary(date(2024, 2, 15))

    assert dashboard.totals.balance == 500
    assert [b.month for b in insights.monthly_series()] == ["2024-01", "2024-02"]
    assert insights.category_breakdown().top_expense_category == "food"
    assert insights.category_breakdown().percentage == 60
    assert dashboard.current_month.expense == 200
    assert dashboard.current_month.top_category == "rent"
    assert insights.trend().direction == TrendDirection.decreased
    assert insights.trend().percent_change == 33
    assert insights.current_month(date(2024, 3, 1)).expense == 0


def test_export_csv_contains_users_rows() -> None:
    session = make_session()
    user = _register(session)
    service = TransactionService(session, user.id)
    _add(service, TransactionType.expense, Decimal("12.5"), "food", date(2024, 1, 1))

    lines = service.export_csv().splitlines()

    assert lines[1] == "2024-01-01,expense,12.50,food,"


def test_memory_engine_shares_one_database_across_sessions() -> None:
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = make_sessionmaker(engine)
    user = _register(factory())

    check_connection(engine)
    assert UserService(factory()).get(user.id).email == "asha@example.com"
