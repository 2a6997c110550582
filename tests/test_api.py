from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


def make_client() -> TestClient:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def test_projection_flow_over_http():
    client = make_client()
    try:
        resp = client.post(
            "/api/accounts",
            json={"name": "Checking", "type": "bank", "balance_cents": 100_000},
        )
        assert resp.status_code == 201
        account_id = resp.json()["id"]

        resp = client.post(
            "/api/transactions",
            json={
                "amount_cents": 50_000,
                "date": "2099-01-01",
                "description": "Rent",
                "account_id": account_id,
                "type": "debit",
                "is_recurring": True,
                "recurrence_rule": {"frequency": "monthly", "start_date": "2099-01-01"},
                "category_tags": ["bills"],
            },
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["recurrence_rule"]["day_of_month"] == 1
        assert body["category_tags"] == ["bills"]
        assert body["balance_applied"] is False

        resp = client.get(
            "/api/projections",
            params={
                "startDate": "2099-01-01",
                "endDate": "2099-03-31",
                "granularity": "monthly",
            },
        )
        assert resp.status_code == 200
        projection = resp.json()
        assert [point["date"] for point in projection["timeline"]] == [
            "2099-01-01",
            "2099-02-01",
            "2099-03-01",
        ]
        assert projection["timeline"][-1]["balances"] == {str(account_id): 0}
        assert projection["alerts"][0]["reason"] == "insufficient_balance"
        assert projection["alerts"][0]["date"] == "2099-03-01"

        resp = client.get(
            "/api/summary", params={"view": "annual", "date": "2099-06-01"}
        )
        assert resp.status_code == 200
        summary = resp.json()
        assert len(summary["months"]) == 12
        assert summary["totals"]["expenses_cents"] == 100_000
        assert summary["period"]["label"] == "2099"

        resp = client.get("/api/transactions", params={"accountId": account_id})
        assert resp.json()["total"] == 1
    finally:
        app.dependency_overrides.clear()


def test_errors_map_to_http_status():
    client = make_client()
    try:
        assert client.get("/api/accounts/999").status_code == 404
        assert client.delete("/api/transactions/999").status_code == 404

        resp = client.get(
            "/api/projections",
            params={"startDate": "2099-02-01", "endDate": "2099-01-01"},
        )
        assert resp.status_code == 400

        resp = client.post(
            "/api/transactions",
            json={
                "amount_cents": 100,
                "date": "2099-01-01",
                "description": "Loop",
                "account_id": 1,
                "to_account_id": 1,
                "type": "transfer",
            },
        )
        assert resp.status_code == 422
    finally:
        app.dependency_overrides.clear()
