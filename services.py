from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from auth import hash_password, verify_password
from config import get_settings
from csv_utils import cents_to_amount, export_transactions, parse_amount
from insights import (
    CategoryBreakdown,
    CurrentMonthSnapshot,
    Dashboard,
    MonthlyBucket,
    Totals,
    TransactionRecord,
    Trend,
    compute_category_breakdown,
    compute_current_month_snapshot,
    compute_monthly_series,
    compute_totals,
    compute_trend,
    summarize,
)
from models import Transaction, TransactionType, User, UserRole
from schemas import RegisterIn, TransactionIn

logger = logging.getLogger(__name__)


class EmailAlreadyUsed(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


def local_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_now() -> datetime:
    return datetime.now(local_timezone())


def to_record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=txn.id,
        type=txn.type.value,
        amount=cents_to_amount(txn.amount_cents),
        category=txn.category,
        date=txn.date,
        description=txn.description,
    )


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.scalar(stmt)

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def register(self, data: RegisterIn) -> User:
        if self._by_email(data.email) is not None:
            raise EmailAlreadyUsed("Email already used")
        user = User(
            name=data.name.strip(),
            email=data.email,
            password_hash=hash_password(data.password),
            role=UserRole.user,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self._by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("login_failed")
            raise InvalidCredentials("Invalid email or password")
        logger.info(f"login_succeeded: user_id={user.id}")
        return user


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    oldest_first: bool = False

    @classmethod
    def from_params(
        cls,
        type_param: Optional[str] = None,
        category_param: Optional[str] = None,
        sort_param: Optional[str] = None,
    ) -> "TransactionFilters":
        txn_type = None
        if type_param and type_param.strip().lower() != "all":
            try:
                txn_type = TransactionType(type_param.strip().lower())
            except ValueError:
                txn_type = None
        category = None
        if category_param and category_param.strip().lower() != "all":
            category = category_param.strip()
        return cls(
            type=txn_type, category=category, oldest_first=sort_param == "oldest"
        )


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount_cents=parse_amount(str(data.amount), allow_negative=True),
            category=data.category,
            description=data.description or None,
            date=data.date or local_now().date(),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(
                func.lower(Transaction.category) == filters.category.lower()
            )
        if filters.oldest_first:
            stmt = stmt.order_by(Transaction.date.asc(), Transaction.id.asc())
        else:
            stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        return list(self.session.scalars(stmt).all())

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: user_id={self.user_id} "
            f"transaction_id={transaction_id}"
        )

    def records(self) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.id.asc())
        )
        return [to_record(txn) for txn in self.session.scalars(stmt)]

    def export_csv(self, filters: Optional[TransactionFilters] = None) -> str:
        return export_transactions(self.list(filters))


class InsightsService:
    def __init__(
        self, session: Session, user_id: int, tz: Optional[ZoneInfo] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.tz = tz or local_timezone()
        self.transactions = TransactionService(session, user_id)

    def totals(self) -> Totals:
        return compute_totals(self.transactions.records())

    def monthly_series(self) -> list[MonthlyBucket]:
        return compute_monthly_series(self.transactions.records(), self.tz)

    def category_breakdown(self) -> CategoryBreakdown:
        return compute_category_breakdown(self.transactions.records())

    def current_month(self, now: Union[date, datetime]) -> CurrentMonthSnapshot:
        return compute_current_month_snapshot(
            self.transactions.records(), now, self.tz
        )

    def trend(self) -> Optional[Trend]:
        return compute_trend(self.monthly_series())

    def summary(self, now: Union[date, datetime]) -> Dashboard:
        return summarize(self.transactions.records(), now, self.tz)
