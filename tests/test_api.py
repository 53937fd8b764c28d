from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine, get_db
from main import app
from models import SnapshotRecord


def _client():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app), factory


def _seed_budget(client: TestClient) -> int:
    account = client.post(
        "/api/accounts",
        json={
            "name": "Checking",
            "type": "checking",
            "balance_cents": 100000,
            "balance_updated_at": "2025-01-01T09:00:00",
        },
    )
    assert account.status_code == 201
    account_id = account.json()["id"]
    for name, kind, day, amount in [
        ("Salary", "income", 1, 50000),
        ("Rent", "expense", 15, 20000),
    ]:
        response = client.post(
            "/api/recurring",
            json={
                "name": name,
                "account_id": account_id,
                "type": kind,
                "amount_cents": amount,
                "kind": "day_of_month",
                "day_of_month": day,
            },
        )
        assert response.status_code == 201
    return account_id


def test_projection_endpoint_runs_income_and_expense_scenario() -> None:
    client, _ = _client()
    _seed_budget(client)

    response = client.get("/api/projection", params={"days": 30, "start": "2025-01-01"})
    assert response.status_code == 200
    body = response.json()
    days = {d["date"]: d["aggregateBalance"] for d in body["snapshot"]["days"]}

    assert len(days) == 31
    assert days["2025-01-01"] == 150000
    assert days["2025-01-15"] == 130000
    assert days["2025-01-31"] == 130000
    assert body["snapshot"]["balanceBase"] == {"kind": "single", "date": "2025-01-01"}
    assert body["summary"]["starting_balance_cents"] == 100000
    assert body["summary"]["optimistic"]["total_income_cents"] == 50000
    assert body["summary"]["optimistic"]["danger_day_count"] == 0
    assert body["summary"]["pessimistic"] == body["summary"]["optimistic"]


def test_projection_rejects_unsupported_horizon() -> None:
    client, _ = _client()
    _seed_budget(client)

    response = client.get("/api/projection", params={"days": 31})
    assert response.status_code == 400
    assert "Horizon" in response.json()["detail"]


def test_malformed_recurring_event_is_rejected() -> None:
    client, _ = _client()
    account_id = _seed_budget(client)

    response = client.post(
        "/api/recurring",
        json={
            "account_id": account_id,
            "type": "expense",
            "amount_cents": 100,
            "kind": "weekly",
        },
    )
    assert response.status_code == 400


def test_mutations_bump_the_data_revision() -> None:
    client, _ = _client()
    before = client.get("/api/revision").json()["revision"]
    account_id = _seed_budget(client)
    client.post(f"/api/accounts/{account_id}/balance", json={"balance_cents": 5})

    assert client.get("/api/revision").json()["revision"] == before + 4
    assert client.get("/api/accounts").json()[0]["balance_cents"] == 5


def test_progression_check_promotes_future_statement_once() -> None:
    client, _ = _client()
    account_id = _seed_budget(client)
    card = client.post(
        "/api/credit-cards",
        json={
            "name": "Visa",
            "account_id": account_id,
            "statement_balance_cents": 30000,
            "due_day": 31,
        },
    ).json()
    client.post(
        f"/api/credit-cards/{card['id']}/future-statement", json={"amount_cents": 45000}
    )

    first = client.post("/api/progression/check").json()
    second = client.post("/api/progression/check").json()

    assert first["success"]
    assert first["progressed_cards"] == 1
    assert second["outcome"] == "noop_same_month"
    assert second["progressed_cards"] == 0
    cards = client.get("/api/credit-cards").json()
    assert cards[0]["statement_balance_cents"] == 45000
    assert cards[0]["future_statement_cents"] is None
    history = client.get(f"/api/credit-cards/{card['id']}/history").json()
    assert [item["amount_cents"] for item in history] == [30000]


def test_snapshot_round_trip_and_incompatible_version() -> None:
    client, factory = _client()
    _seed_budget(client)

    created = client.post(
        "/api/snapshots",
        json={"name": "January", "horizon_days": 7, "reference_date": "2025-01-01"},
    )
    assert created.status_code == 201
    snapshot_id = created.json()["id"]

    loaded = client.get(f"/api/snapshots/{snapshot_id}")
    assert loaded.status_code == 200
    assert loaded.json()["snapshot"]["schemaVersion"] == 1
    assert len(loaded.json()["snapshot"]["days"]) == 8
    assert [s["name"] for s in client.get("/api/snapshots").json()] == ["January"]

    with factory() as session:
        record = session.get(SnapshotRecord, snapshot_id)
        record.schema_version = 2
        record.data = record.data.replace('"schemaVersion": 1', '"schemaVersion": 2')
        session.commit()

    assert client.get(f"/api/snapshots/{snapshot_id}").status_code == 409
    assert client.get("/api/snapshots/999").status_code == 404


def test_single_shot_income_feeds_both_scenarios() -> None:
    client, _ = _client()
    account_id = _seed_budget(client)

    created = client.post(
        "/api/income",
        json={
            "name": "Tax refund",
            "account_id": account_id,
            "amount_cents": 30000,
            "date": "2025-01-10",
            "certainty": "probable",
        },
    )
    assert created.status_code == 201
    income = created.json()
    assert income["certainty"] == "probable"
    assert [i["name"] for i in client.get("/api/income").json()] == ["Tax refund"]

    summary = client.get(
        "/api/projection", params={"days": 30, "start": "2025-01-01"}
    ).json()["summary"]
    assert summary["optimistic"]["end_balance_cents"] == 160000
    assert summary["optimistic"]["total_income_cents"] == 80000
    assert summary["pessimistic"]["end_balance_cents"] == 130000
    assert summary["pessimistic"]["total_income_cents"] == 50000

    assert client.delete(f"/api/income/{income['id']}").status_code == 204
    assert client.get("/api/income").json() == []
    assert client.delete(f"/api/income/{income['id']}").status_code == 404


def test_income_for_unknown_account_is_rejected() -> None:
    client, _ = _client()
    response = client.post(
        "/api/income",
        json={
            "name": "Gift",
            "account_id": 404,
            "amount_cents": 100,
            "date": "2025-01-10",
        },
    )
    assert response.status_code == 400


def test_paused_recurring_event_drops_out_of_projection() -> None:
    client, _ = _client()
    _seed_budget(client)
    rent = next(e for e in client.get("/api/recurring").json() if e["name"] == "Rent")
    assert rent["is_active"]
    assert rent["certainty"] == "guaranteed"

    before = client.get("/api/revision").json()["revision"]
    paused = client.post(f"/api/recurring/{rent['id']}/active", json={"is_active": False})
    assert paused.status_code == 200
    assert paused.json()["is_active"] is False
    assert client.get("/api/revision").json()["revision"] == before + 1

    days = client.get(
        "/api/projection", params={"days": 30, "start": "2025-01-01"}
    ).json()["snapshot"]["days"]
    assert days[-1]["aggregateBalance"] == 150000

    resumed = client.post(f"/api/recurring/{rent['id']}/active", json={"is_active": True})
    assert resumed.json()["is_active"] is True
    assert (
        client.post("/api/recurring/999/active", json={"is_active": False}).status_code
        == 404
    )
