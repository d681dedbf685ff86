from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from pickem import config, services
from pickem.database import Base
from pickem.models import Driver, Pick, Profile, Race, Result
from pickem.services import (
    as_utc,
    calculate_race_winner_profile_id,
    finalize_due_race_winners,
    finalize_race_winner_now,
    schedule_race_winner_auto_calculation,
    set_race_archived,
    set_race_winner,
    upsert_result,
)


NOW = datetime(2026, 5, 3, 18, 0, tzinfo=timezone.utc)
DELAY = timedelta(minutes=config.AUTO_WINNER_DELAY_MINUTES)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=True, autocommit=False)
    return SessionLocal()


def _seed(db: Session, race_count: int = 1) -> list[Race]:
    """Two participants; Alpha outscores Bravo in every race."""
    db.add_all([
        Profile(id="u1", team_name="Alpha"),
        Profile(id="u2", team_name="Bravo"),
    ])
    for group in range(1, 7):
        db.add(Driver(id=group * 10 + 1, driver_name=f"Driver {group}1", group_number=group))
        db.add(Driver(id=group * 10 + 2, driver_name=f"Driver {group}2", group_number=group))

    races = []
    for i in range(race_count):
        race = Race(
            race_name=f"Race {i + 1}",
            race_date=date(2026, 5, 3) + timedelta(days=7 * i),
            qualifying_start_at=datetime(2026, 5, 2, 15, 0) + timedelta(days=7 * i),
            official_winning_average_speed=180.0,
        )
        db.add(race)
        db.flush()
        db.add(Pick(user_id="u1", race_id=race.id, average_speed=179.0,
                    driver_group1_id=11, driver_group2_id=21, driver_group3_id=31,
                    driver_group4_id=41, driver_group5_id=51, driver_group6_id=61))
        db.add(Pick(user_id="u2", race_id=race.id, average_speed=180.0,
                    driver_group1_id=12, driver_group2_id=22, driver_group3_id=32,
                    driver_group4_id=42, driver_group5_id=52, driver_group6_id=62))
        races.append(race)
    db.commit()
    return races


def _post_results(db: Session, race_id: int, now: datetime) -> None:
    for driver_id in (11, 21, 31, 41, 51, 61):
        upsert_result(db, race_id, driver_id, 10, now=now)
    for driver_id in (12, 22, 32, 42, 52, 62):
        upsert_result(db, race_id, driver_id, 1, now=now)
    db.commit()


def test_results_schedule_winner_and_due_batch_finalizes_once():
    db = _session()
    race = _seed(db)[0]

    _post_results(db, race.id, NOW)
    race = db.get(Race, race.id)
    assert as_utc(race.winner_auto_eligible_at) == NOW + DELAY
    assert race.winner_profile_id is None

    early = finalize_due_race_winners(db, now=NOW + DELAY - timedelta(minutes=1))
    db.commit()
    assert early.processed_race_count == 0
    assert db.get(Race, race.id).winner_profile_id is None

    due = finalize_due_race_winners(db, now=NOW + DELAY)
    db.commit()
    assert due.processed_race_count == 1
    assert due.updated_race_count == 1

    race = db.get(Race, race.id)
    assert race.winner_profile_id == "u1"
    assert race.winner_source == "auto"
    assert race.winner_is_manual_override is False
    assert race.winner_auto_eligible_at is None
    assert as_utc(race.winner_set_at) == NOW + DELAY

    again = finalize_due_race_winners(db, now=NOW + DELAY * 4)
    db.commit()
    assert again.processed_race_count == 0
    assert as_utc(db.get(Race, race.id).winner_set_at) == NOW + DELAY


def test_finalize_now_twice_keeps_winner_and_timestamp():
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)

    first = finalize_race_winner_now(db, race.id, now=NOW)
    db.commit()
    second = finalize_race_winner_now(db, race.id, now=NOW + timedelta(hours=2))
    db.commit()

    assert first.winner_profile_id == second.winner_profile_id == "u1"
    assert as_utc(db.get(Race, race.id).winner_set_at) == NOW


def test_speed_tiebreak_picks_closest_guess():
    db = _session()
    race = _seed(db)[0]
    for driver_id in (11, 12, 21, 22, 31, 32, 41, 42, 51, 52, 61, 62):
        upsert_result(db, race.id, driver_id, 5, now=NOW)
    db.commit()

    # Both score 30; Bravo guessed the official 180.0 exactly.
    assert calculate_race_winner_profile_id(db, race.id) == "u2"


def test_race_without_picks_has_no_winner():
    db = _session()
    race = _seed(db)[0]
    db.query(Pick).delete()
    db.commit()

    outcome = finalize_race_winner_now(db, race.id, now=NOW)
    db.commit()
    assert outcome.winner_profile_id is None

    race = db.get(Race, race.id)
    assert race.winner_profile_id is None
    assert race.winner_set_at is None
    assert race.winner_source == "auto"


def test_archived_race_rejects_winner_changes_without_mutation():
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)
    set_race_archived(db, race.id, True, now=NOW)
    db.commit()

    race = db.get(Race, race.id)
    assert race.winner_auto_eligible_at is None

    with pytest.raises(HTTPException) as exc:
        finalize_race_winner_now(db, race.id, now=NOW)
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        schedule_race_winner_auto_calculation(db, race.id, now=NOW)
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        set_race_winner(db, race.id, "u2", now=NOW)
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        upsert_result(db, race.id, 11, 3, now=NOW)
    assert exc.value.status_code == 400
    db.rollback()

    race = db.get(Race, race.id)
    assert race.winner_profile_id is None
    assert race.winner_auto_eligible_at is None
    assert finalize_due_race_winners(db, now=NOW + DELAY).processed_race_count == 0


def test_schedule_unknown_race_is_not_found():
    db = _session()
    _seed(db)
    with pytest.raises(HTTPException) as exc:
        schedule_race_winner_auto_calculation(db, 999, now=NOW)
    assert exc.value.status_code == 404


def test_manual_override_survives_batch_until_recompute():
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)

    set_race_winner(db, race.id, "u2", now=NOW + timedelta(minutes=1))
    db.commit()

    race = db.get(Race, race.id)
    assert race.winner_profile_id == "u2"
    assert race.winner_source == "manual"
    assert race.winner_is_manual_override is True
    assert race.winner_auto_eligible_at is None

    outcome = finalize_due_race_winners(db, now=NOW + DELAY * 2)
    db.commit()
    assert outcome.processed_race_count == 0
    assert db.get(Race, race.id).winner_profile_id == "u2"

    recomputed = set_race_winner(db, race.id, None, now=NOW + DELAY * 3)
    db.commit()
    race = db.get(Race, race.id)
    assert recomputed.winner_profile_id == "u1"
    assert race.winner_source == "auto"
    assert race.winner_is_manual_override is False
    assert as_utc(race.winner_set_at) == NOW + DELAY * 3


def test_manual_winner_must_exist():
    db = _session()
    race = _seed(db)[0]
    with pytest.raises(HTTPException) as exc:
        set_race_winner(db, race.id, "ghost", now=NOW)
    assert exc.value.status_code == 404


def test_due_batch_processes_oldest_eligible_first():
    db = _session()
    races = _seed(db, race_count=3)
    for offset, race in zip((30, 10, 20), races):
        _post_results(db, race.id, NOW + timedelta(minutes=offset))

    outcome = finalize_due_race_winners(db, now=NOW + timedelta(days=1), limit=2)
    db.commit()
    assert outcome.processed_race_count == 2

    winners = {r.id: db.get(Race, r.id).winner_profile_id for r in races}
    assert winners == {races[0].id: None, races[1].id: "u1", races[2].id: "u1"}


def test_due_batch_skips_race_archived_after_selection(monkeypatch):
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)
    set_race_archived(db, race.id, True, now=NOW)
    db.commit()

    monkeypatch.setattr(services, "due_race_ids", lambda db, now, limit: [race.id])
    outcome = finalize_due_race_winners(db, now=NOW + DELAY)
    db.commit()

    assert outcome.processed_race_count == 1
    assert outcome.updated_race_count == 0
    assert db.get(Race, race.id).winner_profile_id is None


def test_persistence_failure_propagates_without_partial_state(monkeypatch):
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)

    def boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(services, "_update_race_where", boom)
    with pytest.raises(RuntimeError):
        finalize_due_race_winners(db, now=NOW + DELAY)
    db.rollback()

    race = db.get(Race, race.id)
    assert race.winner_profile_id is None
    assert as_utc(race.winner_auto_eligible_at) == NOW + DELAY


def test_upsert_result_overwrites_existing_row():
    db = _session()
    race = _seed(db)[0]
    _post_results(db, race.id, NOW)

    saved = upsert_result(db, race.id, 11, 25, now=NOW + timedelta(minutes=5))
    db.commit()

    assert saved["result_count"] == 12
    assert as_utc(saved["winner_auto_eligible_at"]) == NOW + timedelta(minutes=5) + DELAY
    row = db.query(Result).filter(Result.race_id == race.id, Result.driver_id == 11).one()
    assert row.points == 25


def test_winner_name_tiebreak_ignores_surrounding_whitespace():
    db = _session()
    race = _seed(db)[0]
    db.get(Profile, "u1").team_name = "  Zulu"
    db.get(Profile, "u2").team_name = "Mike "
    db.get(Race, race.id).official_winning_average_speed = None
    db.commit()
    for driver_id in (11, 12, 21, 22, 31, 32, 41, 42, 51, 52, 61, 62):
        upsert_result(db, race.id, driver_id, 5, now=NOW)
    db.commit()

    # Tied on points with no official speed: decided by trimmed team name.
    assert calculate_race_winner_profile_id(db, race.id) == "u2"
