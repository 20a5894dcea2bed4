"""Dashboard aggregation over a list of transaction records.

Every function here is a pure function of its arguments: nothing reads the
system clock, the database or any module-level state, so the same input
always produces the same output. The current time is passed in explicitly
wherever a calculation depends on it.

Records are classified by ``type`` only and amounts are summed as
absolute values, because clients disagree on whether an expense is stored
as a positive magnitude or a negative number. A record with a bad field is
left out of whichever aggregation needs that field and counted everywhere
else.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Union

from csv_utils import parse_timestamp

INCOME = "income"
EXPENSE = "expense"
UNKNOWN_CATEGORY = "Unknown"
ALL = "all"

ZERO = Decimal("0")


def _label(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    return str(value)


@dataclass(frozen=True)
class TransactionRecord:
    id: Union[int, str, None]
    type: Optional[str]
    amount: object
    category: Optional[str] = None
    date: object = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "TransactionRecord":
        return cls(
            id=data.get("id"),
            type=_label(data.get("type")),
            amount=data.get("amount"),
            category=_label(data.get("category")),
            date=data.get("date"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class Totals:
    income: Decimal
    expense: Decimal
    balance: Decimal


@dataclass(frozen=True)
class MonthlyBucket:
    month: str
    income: Decimal
    expense: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass(frozen=True)
class CategoryBucket:
    category: str
    income: Decimal
    expense: Decimal


@dataclass(frozen=True)
class CategoryBreakdown:
    buckets: dict[str, CategoryBucket]
    ranking: list[CategoryBucket]
    total_expense: Decimal
    top_expense_category: Optional[str]
    top_expense_amount: Decimal
    percentage: int


@dataclass(frozen=True)
class CurrentMonthSnapshot:
    month: str
    income: Decimal
    expense: Decimal
    savings: Decimal
    expense_percent: Decimal
    top_category: Optional[str]
    top_amount: Decimal


class TrendDirection(str, Enum):
    increased = "increased"
    decreased = "decreased"
    unchanged = "unchanged"


@dataclass(frozen=True)
class Trend:
    direction: TrendDirection
    percent_change: int
    current: MonthlyBucket
    previous: MonthlyBucket


@dataclass(frozen=True)
class Dashboard:
    totals: Totals
    monthly: list[MonthlyBucket]
    categories: CategoryBreakdown
    current_month: CurrentMonthSnapshot
    trend: Optional[Trend]


class _Sums:
    __slots__ = ("income", "expense")

    def __init__(self) -> None:
        self.income = ZERO
        self.expense = ZERO

    def add(self, kind: str, amount: Decimal) -> None:
        if kind == INCOME:
            self.income += abs(amount)
        else:
            self.expense += abs(amount)


def _amount_of(record: TransactionRecord) -> Optional[Decimal]:
    value = record.amount
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, int):
            amount = Decimal(value)
        elif isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            amount = Decimal(value.strip())
        else:
            return None
    except (ValueError, InvalidOperation):
        return None
    return amount if amount.is_finite() else None


def _classify(record: TransactionRecord) -> Optional[tuple[str, Decimal]]:
    kind = record.type
    if kind != INCOME and kind != EXPENSE:
        return None
    amount = _amount_of(record)
    if amount is None:
        return None
    return (INCOME if kind == INCOME else EXPENSE), amount


def _category_of(record: TransactionRecord) -> str:
    category = record.category
    if category is None or not str(category).strip():
        return UNKNOWN_CATEGORY
    return str(category)


def _local(moment: datetime, tz: Optional[tzinfo]) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(tz or timezone.utc)
    return moment.replace(tzinfo=None)


def _moment_of(record: TransactionRecord, tz: Optional[tzinfo]) -> Optional[datetime]:
    value = record.date
    if isinstance(value, str):
        try:
            value = parse_timestamp(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        return _local(value, tz)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _date_of(record: TransactionRecord, tz: Optional[tzinfo]) -> Optional[date]:
    moment = _moment_of(record, tz)
    return moment.date() if moment is not None else None


def _today(now: Union[date, datetime], tz: Optional[tzinfo]) -> date:
    if isinstance(now, datetime):
        return _local(now, tz).date()
    return now


def _month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _round_half_up(value: Decimal) -> int:
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def _round1(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def compute_totals(transactions: Iterable[TransactionRecord]) -> Totals:
    sums = _Sums()
    for record in transactions:
        classified = _classify(record)
        if classified is not None:
            sums.add(*classified)
    return Totals(
        income=sums.income,
        expense=sums.expense,
        balance=sums.income - sums.expense,
    )


def compute_monthly_series(
    transactions: Iterable[TransactionRecord], tz: Optional[tzinfo] = None
) -> list[MonthlyBucket]:
    """Income and expense per calendar month, oldest month first.

    Records without a usable date are skipped. Months are ordered by the
    first day of the month, not by the text of the key.
    """
    months: dict[date, _Sums] = {}
    for record in transactions:
        classified = _classify(record)
        if classified is None:
            continue
        day = _date_of(record, tz)
        if day is None:
            continue
        months.setdefault(day.replace(day=1), _Sums()).add(*classified)

    return [
        MonthlyBucket(month=_month_key(first), income=sums.income, expense=sums.expense)
        for first, sums in sorted(months.items(), key=lambda item: item[0])
    ]


def compute_category_breakdown(
    transactions: Iterable[TransactionRecord],
) -> CategoryBreakdown:
    groups: dict[str, _Sums] = {}
    for record in transactions:
        classified = _classify(record)
        if classified is None:
            continue
        groups.setdefault(_category_of(record), _Sums()).add(*classified)

    buckets = {
        name: CategoryBucket(category=name, income=sums.income, expense=sums.expense)
        for name, sums in groups.items()
    }
    # sorted() is stable: tied categories keep first-seen order
    ranking = sorted(buckets.values(), key=lambda bucket: bucket.expense, reverse=True)
    total_expense = sum((bucket.expense for bucket in ranking), ZERO)

    if total_expense > 0:
        top = ranking[0]
        return CategoryBreakdown(
            buckets=buckets,
            ranking=ranking,
            total_expense=total_expense,
            top_expense_category=top.category,
            top_expense_amount=top.expense,
            percentage=_round_half_up(top.expense / total_expense * 100),
        )
    return CategoryBreakdown(
        buckets=buckets,
        ranking=ranking,
        total_expense=total_expense,
        top_expense_category=None,
        top_expense_amount=ZERO,
        percentage=0,
    )


def compute_current_month_snapshot(
    transactions: Iterable[TransactionRecord],
    now: Union[date, datetime],
    tz: Optional[tzinfo] = None,
) -> CurrentMonthSnapshot:
    today = _today(now, tz)
    window = []
    for record in transactions:
        day = _date_of(record, tz)
        if day is not None and day.year == today.year and day.month == today.month:
            window.append(record)

    totals = compute_totals(window)
    breakdown = compute_category_breakdown(window)
    if totals.income > 0:
        expense_percent = _round1(totals.expense / totals.income * 100)
    else:
        expense_percent = ZERO
    return CurrentMonthSnapshot(
        month=_month_key(today),
        income=totals.income,
        expense=totals.expense,
        savings=totals.balance,
        expense_percent=expense_percent,
        top_category=breakdown.top_expense_category,
        top_amount=breakdown.top_expense_amount,
    )


def compute_trend(monthly_series: Sequence[MonthlyBucket]) -> Optional[Trend]:
    """Compare expenses of the last two months of an already sorted series.

    Returns None when there is no previous month to compare against.
    """
    if len(monthly_series) < 2:
        return None
    current = monthly_series[-1]
    previous = monthly_series[-2]

    delta = current.expense - previous.expense
    if previous.expense > 0:
        percent = _round_half_up(delta / previous.expense * 100)
    else:
        percent = 0

    if delta > 0:
        direction = TrendDirection.increased
    elif delta < 0:
        direction = TrendDirection.decreased
    else:
        direction = TrendDirection.unchanged
    return Trend(
        direction=direction,
        percent_change=abs(percent),
        current=current,
        previous=previous,
    )


def latest_month(monthly_series: Sequence[MonthlyBucket]) -> Optional[MonthlyBucket]:
    return monthly_series[-1] if monthly_series else None


def summarize(
    transactions: Sequence[TransactionRecord],
    now: Union[date, datetime],
    tz: Optional[tzinfo] = None,
) -> Dashboard:
    monthly = compute_monthly_series(transactions, tz)
    return Dashboard(
        totals=compute_totals(transactions),
        monthly=monthly,
        categories=compute_category_breakdown(transactions),
        current_month=compute_current_month_snapshot(transactions, now, tz),
        trend=compute_trend(monthly),
    )


def _matches(value: object, wanted: str) -> bool:
    if wanted == ALL:
        return True
    if value is None:
        return False
    return str(value).lower() == wanted


def filter_transactions(
    transactions: Iterable[TransactionRecord],
    type_filter: Optional[str] = ALL,
    category_filter: Optional[str] = ALL,
) -> list[TransactionRecord]:
    wanted_type = (type_filter or ALL).strip().lower()
    wanted_category = (category_filter or ALL).strip().lower()
    return [
        record
        for record in transactions
        if _matches(record.type, wanted_type)
        and _matches(record.category, wanted_category)
    ]


def sort_transactions(
    transactions: Iterable[TransactionRecord],
    sort_by: Optional[str],
    tz: Optional[tzinfo] = None,
) -> list[TransactionRecord]:
    """Return a new list ordered for display.

    ``"amount"`` puts the largest absolute amount first, ``"date"`` the most
    recent record first. Records the key cannot read go last. Any other
    ``sort_by`` keeps the input order.
    """
    records = list(transactions)
    if sort_by == "amount":

        def amount_key(record: TransactionRecord) -> tuple[int, Decimal]:
            amount = _amount_of(record)
            return (0, ZERO) if amount is None else (1, abs(amount))

        return sorted(records, key=amount_key, reverse=True)
    if sort_by == "date":

        def date_key(record: TransactionRecord) -> tuple[int, datetime]:
            moment = _moment_of(record, tz)
            return (0, datetime.min) if moment is None else (1, moment)

        return sorted(records, key=date_key, reverse=True)
    return records
