import logging
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import generate_access_token, read_access_token
from config import get_settings
from database import SessionLocal, check_connection, engine
from insights import (
    CategoryBreakdown,
    MonthlyBucket,
    TransactionRecord,
    Trend,
    TrendDirection,
    filter_transactions,
    latest_month,
    sort_transactions,
)
from models import User
from schemas import (
    LoginIn,
    RegisterIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    UserOut,
)
from services import (
    EmailAlreadyUsed,
    InsightsService,
    InvalidCredentials,
    TransactionFilters,
    TransactionService,
    UserService,
    local_now,
    to_record,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


def format_currency(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


def describe_trend(trend: Optional[Trend]) -> str:
    if trend is None:
        return "No previous month data to compare."
    if trend.direction == TrendDirection.increased:
        return (
            f"Your expenses increased by {trend.percent_change}% "
            "compared to last month."
        )
    if trend.direction == TrendDirection.decreased:
        return (
            f"Your expenses decreased by {trend.percent_change}% "
            "compared to last month."
        )
    return "Your expenses stayed the same as last month."


def describe_top_category(breakdown: CategoryBreakdown) -> str:
    if breakdown.top_expense_category is None:
        return "No expenses recorded yet."
    return (
        f"Most of your spending is on {breakdown.top_expense_category}. "
        f"It accounts for {breakdown.percentage}% of total expenses."
    )


def describe_latest_month(bucket: Optional[MonthlyBucket]) -> str:
    if bucket is None:
        return "No monthly data available yet."
    return (
        f"In {bucket.month} you earned {format_currency(bucket.income)} "
        f"and spent {format_currency(bucket.expense)}. "
        f"Your net savings are {format_currency(bucket.net)}."
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="No token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = read_access_token(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return UserService(db).get(int(claims["u"]))
    except ValueError as exc:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def record_out(record: TransactionRecord) -> TransactionOut:
    return TransactionOut(
        id=record.id,
        type=record.type,
        amount=record.amount,
        category=record.category,
        description=record.description,
        date=record.date,
    )


def token_response(user: User) -> TokenOut:
    return TokenOut(
        token=generate_access_token(user.id, user.role.value),
        user=UserOut.model_validate(user),
    )


@app.on_event("startup")
def startup_event():
    try:
        check_connection(engine)
    except SQLAlchemyError:
        logger.exception("database_unreachable")
        raise


@app.get("/")
def index():
    return {"message": "Backend works! Finance API ready at /api/transactions"}


@app.post("/api/auth/register", response_model=TokenOut)
def register(data: RegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except EmailAlreadyUsed as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return token_response(user)


@app.post("/api/auth/login", response_model=TokenOut)
def login(data: LoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data.email, data.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return token_response(user)


@app.get("/api/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    type_param = request.query_params.get("type", "all")
    category_param = request.query_params.get("category", "all")
    sort_param = request.query_params.get("sort", "date")

    rows = TransactionService(db, user.id).list(
        TransactionFilters(oldest_first=sort_param == "oldest")
    )
    records = filter_transactions(
        [to_record(txn) for txn in rows], type_param, category_param
    )
    return [record_out(record) for record in sort_transactions(records, sort_param)]


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user.id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return record_out(to_record(txn))


@app.get("/api/transactions/export.csv")
def export_transactions_endpoint(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters.from_params(
        request.query_params.get("type"),
        request.query_params.get("category"),
        request.query_params.get("sort"),
    )
    csv_text = TransactionService(db, user.id).export_csv(filters)
    filename = f"transactions_{local_now().date().isoformat()}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user.id).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Transaction deleted successfully"}


@app.get("/api/kpis")
def api_kpis(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return InsightsService(db, user.id).totals()


@app.get("/api/monthly-series")
def api_monthly_series(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return InsightsService(db, user.id).monthly_series()


@app.get("/api/category-breakdown")
def api_category_breakdown(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return InsightsService(db, user.id).category_breakdown()


@app.get("/api/insights")
def api_insights(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    dashboard = InsightsService(db, user.id).summary(local_now())
    return {
        "totals": dashboard.totals,
        "monthly": dashboard.monthly,
        "categories": dashboard.categories,
        "current_month": dashboard.current_month,
        "trend": dashboard.trend,
        "statements": {
            "month": describe_latest_month(latest_month(dashboard.monthly)),
            "trend": describe_trend(dashboard.trend),
            "category": describe_top_category(dashboard.categories),
        },
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
