from datetime import date, datetime

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pickem import config
from pickem.database import Base, get_db
from pickem.main import app
from pickem.models import Driver, Profile, Race


def _client() -> tuple[TestClient, sessionmaker]:
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app), SessionLocal


def teardown_function():
    app.dependency_overrides.clear()


def test_health_and_empty_leaderboard():
    client, _ = _client()
    assert client.get("/health").json() == {"status": "ok"}

    body = client.get("/leaderboard").json()
    assert body["leaderboard_rows"] == []
    assert body["latest_race_scoreboard"] is None


def test_cron_rejects_bad_secret(monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")
    client, _ = _client()

    res = client.get("/api/cron/fantasy-winner")
    assert res.status_code == 401
    assert res.json()["detail"] == {"error": "Unauthorized", "reason": "missing_auth"}

    res = client.post("/api/cron/fantasy-winner", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
    assert res.json()["detail"]["reason"] == "invalid_auth"


def test_cron_runs_due_batch(monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")
    client, _ = _client()

    res = client.post("/api/cron/fantasy-winner", headers={"x-cron-secret": "s3cret"})
    assert res.status_code == 200
    assert res.json() == {"ok": True, "processed_race_count": 0, "updated_race_count": 0}


def test_cron_in_production_requires_configured_secret(monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", None)
    monkeypatch.setattr(config, "APP_ENV", "production")
    client, _ = _client()

    res = client.get("/api/cron/fantasy-winner")
    assert res.status_code == 401
    assert res.json()["detail"]["reason"] == "missing_cron_secret"


def test_admin_winner_and_archive_endpoints():
    client, SessionLocal = _client()
    with SessionLocal() as db:
        db.add(Profile(id="u1", team_name="Alpha"))
        db.add(
            Race(
                id=1,
                race_name="Opener",
                race_date=date(2026, 3, 1),
                qualifying_start_at=datetime(2026, 2, 28, 15, 0),
            )
        )
        db.commit()

    res = client.post("/admin/races/1/winner", json={"winner_profile_id": "u1"})
    assert res.status_code == 200
    assert res.json() == {"race_id": 1, "winner_profile_id": "u1"}

    res = client.post("/admin/races/1/archive", json={"archive": True})
    assert res.json()["is_archived"] is True

    res = client.post("/admin/races/1/results", json={"driver_id": 1, "points": 5})
    assert res.status_code == 400

    assert client.post("/admin/races/2/archive", json={"archive": True}).status_code == 404
    assert client.get("/participants/nobody/analytics").status_code == 404


def test_pick_payload_validation():
    client, _ = _client()
    res = client.post(
        "/picks",
        json={
            "user_id": "u1",
            "race_id": 1,
            "average_speed": -1,
            "driver_group1_id": 1,
            "driver_group2_id": 2,
            "driver_group3_id": 3,
            "driver_group4_id": 4,
            "driver_group5_id": 5,
            "driver_group6_id": 6,
        },
    )
    assert res.status_code == 422


def test_standings_import_endpoint():
    client, SessionLocal = _client()

    res = client.post(
        "/admin/drivers/standings/import",
        json={"standings_paste": "1 | Scott Dixon | Ganassi | 410\n2 | Will Power | Penske | 395"},
    )
    assert res.status_code == 200
    assert res.json() == {"updated_count": 0, "created_count": 2, "ignored_line_count": 0}

    with SessionLocal() as db:
        assert [d.driver_name for d in db.query(Driver).order_by(Driver.current_standing)] == [
            "Scott Dixon",
            "Will Power",
        ]
