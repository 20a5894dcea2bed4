import pytest
from fastapi.testclient import TestClient

from database import Base, create_db_engine, make_sessionmaker
from main import app, get_db
from services import local_now


@pytest.fixture()
def client():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestingSession = make_sessionmaker(engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _signup(client: TestClient, email: str = "ravi@example.com") -> dict[str, str]:
    resp = client.post(
        "/api/auth/register",
        json={"name": "Ravi", "email": email, "password": "hunter22"},
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def _post(client: TestClient, headers, **payload):
    resp = client.post("/api/transactions", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_index_reports_ready(client: TestClient) -> None:
    resp = client.get("/")

    assert resp.status_code == 200
    assert "Finance API" in resp.json()["message"]


def test_register_login_and_me(client: TestClient) -> None:
    headers = _signup(client)

    dup = client.post(
        "/api/auth/register",
        json={"name": "Ravi", "email": "RAVI@example.com", "password": "x"},
    )
    bad = client.post(
        "/api/auth/login", json={"email": "ravi@example.com", "password": "nope"}
    )
    good = client.post(
        "/api/auth/login", json={"email": "ravi@example.com", "password": "hunter22"}
    )
    me = client.get("/api/auth/me", headers=headers)

    assert dup.status_code == 400
    assert dup.json()["detail"] == "Email already used"
    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.json()["user"]["email"] == "ravi@example.com"
    assert me.json() == {
        "id": good.json()["user"]["id"],
        "name": "Ravi",
        "email": "ravi@example.com",
        "role": "USER",
    }


def test_protected_routes_require_valid_token(client: TestClient) -> None:
    missing = client.get("/api/transactions")
    invalid = client.get(
        "/api/transactions", headers={"Authorization": "Bearer not-a-token"}
    )

    assert missing.status_code == 401
    assert missing.json()["detail"] == "No token"
    assert invalid.status_code == 401
    assert invalid.json()["detail"] == "Invalid token"


def test_create_list_filter_sort_and_delete(client: TestClient) -> None:
    headers = _signup(client)
    salary = _post(
        client, headers, type="income", amount="1000", category="salary",
        date="2024-01-15",
    )
    food = _post(
        client, headers, type="expense", amount="-300", category="Food",
        date="2024-01-20",
    )
    rent = _post(
        client, headers, type="expense", amount="200", category="rent",
        date="2024-02-01",
    )

    by_date = client.get("/api/transactions", headers=headers).json()
    by_amount = client.get(
        "/api/transactions", params={"sort": "amount"}, headers=headers
    ).json()
    food_only = client.get(
        "/api/transactions",
        params={"type": "expense", "category": "food"},
        headers=headers,
    ).json()

    assert [t["id"] for t in by_date] == [rent["id"], food["id"], salary["id"]]
    assert [t["id"] for t in by_amount] == [salary["id"], food["id"], rent["id"]]
    assert [t["id"] for t in food_only] == [food["id"]]
    assert float(food["amount"]) == -300

    deleted = client.delete(f"/api/transactions/{food['id']}", headers=headers)
    missing = client.delete(f"/api/transactions/{food['id']}", headers=headers)

    assert deleted.status_code == 200
    assert missing.status_code == 404


def test_create_rejects_invalid_payload(client: TestClient) -> None:
    headers = _signup(client)

    resp = client.post(
        "/api/transactions",
        json={"type": "transfer", "amount": "10", "category": "food"},
        headers=headers,
    )

    assert resp.status_code == 422


def test_transactions_are_private_to_each_user(client: TestClient) -> None:
    alice = _signup(client, "alice@example.com")
    bob = _signup(client, "bob@example.com")
    txn = _post(client, alice, type="expense", amount="10", category="food")

    assert client.get("/api/transactions", headers=bob).json() == []
    resp = client.delete(f"/api/transactions/{txn['id']}", headers=bob)
    assert resp.status_code == 404


def test_insights_endpoints(client: TestClient) -> None:
    headers = _signup(client)
    _post(client, headers, type="income", amount="1000", category="salary",
          date="2024-01-15")
    _post(client, headers, type="expense", amount="-300", category="food",
          date="2024-01-20")
    _post(client, headers, type="expense", amount="200", category="rent",
          date="2024-02-01")

    kpis = client.get("/api/kpis", headers=headers).json()
    series = client.get("/api/monthly-series", headers=headers).json()
    categories = client.get("/api/category-breakdown", headers=headers).json()
    dashboard = client.get("/api/insights", headers=headers).json()

    assert (kpis["income"], kpis["expense"], kpis["balance"]) == (1000, 500, 500)
    assert [(b["month"], b["income"], b["expense"]) for b in series] == [
        ("2024-01", 1000, 300),
        ("2024-02", 0, 200),
    ]
    assert categories["top_expense_category"] == "food"
    assert categories["percentage"] == 60
    assert dashboard["trend"]["direction"] == "decreased"
    assert dashboard["trend"]["percent_change"] == 33
    assert dashboard["statements"]["trend"] == (
        "Your expenses decreased by 33% compared to last month."
    )
    assert dashboard["statements"]["category"].startswith(
        "Most of your spending is on food."
    )
    assert dashboard["current_month"]["month"] == local_now().strftime("%Y-%m")


def test_insights_for_new_user_are_empty(client: TestClient) -> None:
    headers = _signup(client)

    dashboard = client.get("/api/insights", headers=headers).json()

    assert dashboard["monthly"] == []
    assert dashboard["trend"] is None
    assert dashboard["categories"]["top_expense_category"] is None
    assert dashboard["statements"]["trend"] == "No previous month data to compare."


def test_export_csv(client: TestClient) -> None:
    headers = _signup(client)
    _post(client, headers, type="expense", amount="45.99", category="food",
          date="2024-03-02", description="Dinner")

    resp = client.get("/api/transactions/export.csv", headers=headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.text.splitlines()[1] == "2024-03-02,expense,45.99,food,Dinner"
