from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo

from fastapi import HTTPException
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.orm import Session

from pickem import config
from pickem.models import PROFILE_ROLES, Driver, Pick, Profile, Race, Result, utcnow
from pickem.results_import import normalize_driver_name, parse_results_paste
from pickem.rules import (
    GROUP_NUMBERS,
    DriverStandingInput,
    PickSelection,
    RaceResult,
    assign_driver_groups,
    order_weekly_rows,
    score_pick,
)
from pickem.scoring import (
    DriverInfo,
    LeagueData,
    LeagueScoringSnapshot,
    Participant,
    ParticipantAnalyticsSnapshot,
    ParticipantNotFoundError,
    PicksByRaceSnapshot,
    RaceInfo,
    WeeklyScore,
    build_league_scoring_snapshot,
    build_participant_analytics_snapshot,
    build_picks_by_race_snapshot,
)
from pickem.standings_import import parse_standings_paste


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WinnerOutcome:
    race_id: int
    winner_profile_id: Optional[str]


@dataclass(frozen=True)
class FinalizeDueOutcome:
    processed_race_count: int
    updated_race_count: int


def get_or_404(db: Session, model: Any, obj_id: Any, label: str):
    obj = db.get(model, obj_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def get_race_or_404(db: Session, race_id: int) -> Race:
    return get_or_404(db, Race, race_id, "Race")


def get_profile_or_404(db: Session, profile_id: str) -> Profile:
    return get_or_404(db, Profile, profile_id, "Profile")


def ensure_race_is_active(db: Session, race_id: int) -> Race:
    race = get_race_or_404(db, race_id)
    if race.is_archived:
        raise HTTPException(
            status_code=400,
            detail="Selected race is archived. Unarchive it before updating winners or results.",
        )
    return race


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _race_info(race: Race) -> RaceInfo:
    return RaceInfo(
        id=race.id,
        race_name=race.race_name,
        race_date=race.race_date,
        official_speed=race.official_winning_average_speed,
        qualifying_start_at=race.qualifying_start_at,
    )


def _pick_selection(pick: Pick) -> PickSelection:
    return PickSelection(
        user_id=pick.user_id,
        race_id=pick.race_id,
        average_speed=float(pick.average_speed),
        driver_ids=pick.driver_ids,
    )


def load_participants(db: Session) -> list[Participant]:
    profiles = db.scalars(
        select(Profile).where(Profile.role.in_(PROFILE_ROLES)).order_by(Profile.team_name.asc())
    ).all()
    return [
        Participant(id=p.id, team_name=p.team_name.strip())
        for p in profiles
        if p.team_name and p.team_name.strip()
    ]


def load_drivers(db: Session) -> list[DriverInfo]:
    drivers = db.scalars(select(Driver)).all()
    return [DriverInfo(id=d.id, driver_name=d.driver_name, group_number=d.group_number) for d in drivers]


def _load_picks(db: Session, race_ids: Sequence[int]) -> list[PickSelection]:
    if not race_ids:
        return []
    rows = db.scalars(select(Pick).where(Pick.race_id.in_(race_ids))).all()
    return [_pick_selection(p) for p in rows]


def _load_results(db: Session, race_ids: Sequence[int]) -> list[RaceResult]:
    if not race_ids:
        return []
    rows = db.scalars(select(Result).where(Result.race_id.in_(race_ids))).all()
    return [RaceResult(race_id=r.race_id, driver_id=r.driver_id, points=r.points) for r in rows]


def load_league_data(db: Session) -> LeagueData:
    races = db.scalars(
        select(Race).where(Race.is_archived.is_(False)).order_by(Race.race_date.asc(), Race.id.asc())
    ).all()
    race_ids = [r.id for r in races]
    return LeagueData(
        participants=load_participants(db),
        races=[_race_info(r) for r in races],
        drivers=load_drivers(db),
        picks=_load_picks(db, race_ids),
        results=_load_results(db, race_ids),
    )


def league_season_range(now: datetime) -> tuple[date, date]:
    season_year = as_utc(now).astimezone(ZoneInfo(config.LEAGUE_TIME_ZONE)).year
    return date(season_year, 1, 1), date(season_year + 1, 1, 1)


def selectable_races(db: Session, now: Optional[datetime] = None) -> list[RaceInfo]:
    """
    Races whose picks are locked (qualifying has started), newest first,
    limited to the current league season when it has any.
    """
    now = as_utc(now or utcnow())
    season_start, season_end = league_season_range(now)
    base = select(Race).where(Race.is_archived.is_(False), Race.qualifying_start_at <= now)
    races = db.scalars(
        base.where(Race.race_date >= season_start, Race.race_date < season_end).order_by(
            Race.qualifying_start_at.desc()
        )
    ).all()
    if not races:
        races = db.scalars(base.order_by(Race.qualifying_start_at.desc())).all()
    return [_race_info(r) for r in races]


def league_scoring_snapshot(db: Session) -> LeagueScoringSnapshot:
    return build_league_scoring_snapshot(load_league_data(db))


def picks_by_race_snapshot(
    db: Session, race_id: Optional[int] = None, now: Optional[datetime] = None
) -> PicksByRaceSnapshot:
    candidates = selectable_races(db, now)
    selected_id = race_id if any(r.id == race_id for r in candidates) else None
    if selected_id is None and candidates:
        selected_id = candidates[0].id
    race_ids = [selected_id] if selected_id is not None else []
    return build_picks_by_race_snapshot(
        participants=load_participants(db),
        drivers=load_drivers(db),
        candidate_races=candidates,
        picks=_load_picks(db, race_ids),
        results=_load_results(db, race_ids),
        selected_race_id=selected_id,
    )


def participant_analytics_snapshot(db: Session, user_id: str) -> ParticipantAnalyticsSnapshot:
    try:
        return build_participant_analytics_snapshot(load_league_data(db), user_id)
    except ParticipantNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Participant profile not found") from exc


def upsert_pick(
    db: Session,
    user_id: str,
    race_id: int,
    average_speed: float,
    driver_ids: Sequence[int],
    now: Optional[datetime] = None,
) -> Pick:
    now = as_utc(now or utcnow())
    profile = get_profile_or_404(db, user_id)
    if not (profile.team_name and profile.team_name.strip()):
        raise HTTPException(status_code=400, detail="Complete your profile before submitting picks")

    if average_speed is None or average_speed <= 0:
        raise HTTPException(status_code=400, detail="Average speed must be a positive number")
    if len(driver_ids) != len(GROUP_NUMBERS):
        raise HTTPException(status_code=400, detail="One driver from each group is required")
    if len(set(driver_ids)) != len(GROUP_NUMBERS):
        raise HTTPException(
            status_code=400, detail="You must select 6 different drivers (one per group)"
        )

    race = get_race_or_404(db, race_id)
    if race.is_archived:
        raise HTTPException(
            status_code=400, detail="This race has been archived and no longer accepts picks"
        )
    if as_utc(race.qualifying_start_at) <= as_utc(now):
        raise HTTPException(
            status_code=400, detail="Picks are locked because qualifying has already started"
        )

    drivers = {d.id: d for d in db.scalars(select(Driver).where(Driver.id.in_(driver_ids))).all()}
    for group, driver_id in zip(GROUP_NUMBERS, driver_ids):
        driver = drivers.get(driver_id)
        if not driver or driver.group_number != group or not driver.is_active:
            raise HTTPException(status_code=400, detail=f"Invalid Group {group} driver")

    existing = db.scalar(select(Pick).where(Pick.user_id == user_id, Pick.race_id == race_id))
    values = {
        f"driver_group{group}_id": driver_id for group, driver_id in zip(GROUP_NUMBERS, driver_ids)
    }
    if existing:
        existing.average_speed = float(average_speed)
        for key, value in values.items():
            setattr(existing, key, value)
        return existing

    created = Pick(user_id=user_id, race_id=race_id, average_speed=float(average_speed), **values)
    db.add(created)
    return created


def _upsert_result_row(db: Session, race_id: int, driver_id: int, points: int) -> Result:
    existing = db.scalar(
        select(Result).where(Result.race_id == race_id, Result.driver_id == driver_id)
    )
    if existing:
        existing.points = points
        return existing
    created = Result(race_id=race_id, driver_id=driver_id, points=points)
    db.add(created)
    return created


def upsert_result(
    db: Session, race_id: int, driver_id: int, points: int, now: Optional[datetime] = None
) -> dict[str, Any]:
    race = ensure_race_is_active(db, race_id)
    driver = get_or_404(db, Driver, driver_id, "Driver")
    if points < 0:
        raise HTTPException(status_code=400, detail="Points must be a non-negative integer")

    _upsert_result_row(db, race.id, driver.id, points)
    db.flush()
    refresh_driver_championship_points(db)
    eligible_at = schedule_race_winner_auto_calculation(db, race.id, now=now)
    return {
        "race_id": race.id,
        "driver_id": driver.id,
        "points": points,
        "result_count": _result_count(db, race.id),
        "winner_auto_eligible_at": eligible_at,
    }


def import_results_paste(
    db: Session, race_id: int, raw_paste: str, now: Optional[datetime] = None
) -> dict[str, Any]:
    race = ensure_race_is_active(db, race_id)
    if not raw_paste.strip():
        raise HTTPException(status_code=400, detail="Paste results text before importing")

    parsed = parse_results_paste(raw_paste)
    if not parsed.rows:
        raise HTTPException(
            status_code=400,
            detail="No result rows were detected. Make sure you pasted the results table rows.",
        )

    negative = [row.driver_name for row in parsed.rows if row.points < 0]
    if negative:
        raise HTTPException(
            status_code=400,
            detail=f"Points must be a non-negative integer for: {', '.join(negative)}",
        )

    driver_by_name = {normalize_driver_name(d.driver_name): d for d in db.scalars(select(Driver)).all()}
    unmatched: list[str] = []
    points_by_driver: dict[int, int] = {}
    for row in parsed.rows:
        driver = driver_by_name.get(normalize_driver_name(row.driver_name))
        if not driver:
            if row.driver_name not in unmatched:
                unmatched.append(row.driver_name)
            continue
        # First occurrence of a driver wins.
        points_by_driver.setdefault(driver.id, row.points)

    if unmatched:
        logger.warning("Results import for race %s: unmatched drivers %s", race.id, unmatched)
        raise HTTPException(
            status_code=400,
            detail=f"Could not match these drivers in your database: {', '.join(unmatched)}",
        )

    for driver_id, points in points_by_driver.items():
        _upsert_result_row(db, race.id, driver_id, points)
    db.flush()
    refresh_driver_championship_points(db)
    eligible_at = schedule_race_winner_auto_calculation(db, race.id, now=now)
    logger.info("Imported %d result rows into race %s", len(points_by_driver), race.id)
    return {
        "race_id": race.id,
        "imported_count": len(points_by_driver),
        "ignored_line_count": parsed.ignored_line_count,
        "result_count": _result_count(db, race.id),
        "winner_auto_eligible_at": eligible_at,
    }


def _result_count(db: Session, race_id: int) -> int:
    return db.scalar(select(func.count(Result.id)).where(Result.race_id == race_id)) or 0


def refresh_driver_standings_and_groups(db: Session) -> None:
    drivers = db.scalars(select(Driver)).all()
    by_id = {d.id: d for d in drivers}
    placements = assign_driver_groups(
        DriverStandingInput(
            driver_id=d.id,
            driver_name=d.driver_name,
            championship_points=d.championship_points or 0,
            current_standing=d.current_standing,
            is_active=d.is_active,
        )
        for d in drivers
    )
    for placement in placements:
        driver = by_id[placement.driver_id]
        driver.current_standing = placement.current_standing
        driver.group_number = placement.group_number
    db.flush()


def refresh_driver_championship_points(db: Session) -> None:
    """Recompute every driver's championship total from all posted results, then regroup."""
    totals = dict(
        db.execute(select(Result.driver_id, func.sum(Result.points)).group_by(Result.driver_id)).all()
    )
    for driver in db.scalars(select(Driver)).all():
        driver.championship_points = int(totals.get(driver.id) or 0)
    refresh_driver_standings_and_groups(db)


def import_championship_standings(db: Session, raw_paste: str) -> dict[str, Any]:
    if not raw_paste.strip():
        raise HTTPException(status_code=400, detail="Paste the standings table before importing.")

    parsed = parse_standings_paste(raw_paste)
    if not parsed.rows:
        raise HTTPException(
            status_code=400,
            detail="No standings rows detected. Expected columns: Rank, Driver, ..., Points.",
        )

    driver_by_name = {normalize_driver_name(d.driver_name): d for d in db.scalars(select(Driver)).all()}
    seen: set[str] = set()
    created = 0
    updated = 0
    for row in parsed.rows:
        key = normalize_driver_name(row.driver_name)
        if not key or key in seen:
            continue
        seen.add(key)

        driver = driver_by_name.get(key)
        if driver:
            driver.championship_points = row.points
            driver.current_standing = row.rank
            updated += 1
            continue

        db.add(
            Driver(
                driver_name=row.driver_name,
                championship_points=row.points,
                current_standing=row.rank,
                group_number=GROUP_NUMBERS[-1],
                is_active=True,
            )
        )
        created += 1

    db.flush()
    refresh_driver_standings_and_groups(db)
    logger.info("Imported championship standings: %d updated, %d created", updated, created)
    return {
        "updated_count": updated,
        "created_count": created,
        "ignored_line_count": parsed.ignored_line_count,
    }


def _update_race_where(db: Session, conditions: list, **values: Any) -> bool:
    """Apply **values to the race rows matching conditions; True if any matched."""
    db.flush()
    result = db.execute(
        update(Race).where(*conditions).values(**values).execution_options(synchronize_session=False)
    )
    db.expire_all()
    return result.rowcount > 0


def schedule_race_winner_auto_calculation(
    db: Session, race_id: int, now: Optional[datetime] = None
) -> datetime:
    now = as_utc(now or utcnow())
    eligible_at = now + timedelta(minutes=config.AUTO_WINNER_DELAY_MINUTES)
    updated = _update_race_where(
        db,
        [Race.id == race_id, Race.is_archived.is_(False)],
        winner_auto_eligible_at=eligible_at,
        winner_is_manual_override=False,
    )
    if not updated:
        get_race_or_404(db, race_id)
        raise HTTPException(
            status_code=400,
            detail="Cannot schedule winner auto-calculation for an archived race.",
        )
    logger.info("Scheduled fantasy winner for race %s at %s", race_id, eligible_at.isoformat())
    return eligible_at


def calculate_race_winner_profile_id(db: Session, race_id: int) -> Optional[str]:
    race = get_race_or_404(db, race_id)
    picks = db.scalars(select(Pick).where(Pick.race_id == race_id)).all()
    if not picks:
        return None

    points_by_driver = {
        r.driver_id: r.points
        for r in db.scalars(select(Result).where(Result.race_id == race_id)).all()
    }
    user_ids = sorted({p.user_id for p in picks})
    team_by_user = {
        p.id: p.team_name.strip()
        for p in db.scalars(select(Profile).where(Profile.id.in_(user_ids))).all()
        if p.team_name and p.team_name.strip()
    }

    rows = []
    for pick in picks:
        scored = score_pick(_pick_selection(pick), points_by_driver)
        rows.append(
            WeeklyScore(
                user_id=pick.user_id,
                team_name=team_by_user.get(pick.user_id) or f"Team-{pick.user_id[:8]}",
                points=scored.race_points,
                average_speed=scored.average_speed,
                submitted_pick=True,
            )
        )
    ordered = order_weekly_rows(rows, race.official_winning_average_speed)
    return ordered[0].user_id if ordered else None


def _persist_auto_winner(
    db: Session,
    race_id: int,
    winner_profile_id: Optional[str],
    now: datetime,
    require_no_override: bool,
) -> bool:
    conditions = [Race.id == race_id, Race.is_archived.is_(False)]
    if require_no_override:
        conditions.append(Race.winner_is_manual_override.is_(False))

    winner_set_at: Any = None
    if winner_profile_id:
        # Recomputing the same auto winner keeps its original timestamp.
        winner_set_at = case(
            (
                and_(
                    Race.winner_profile_id == winner_profile_id,
                    Race.winner_source == "auto",
                    Race.winner_set_at.is_not(None),
                ),
                Race.winner_set_at,
            ),
            else_=now,
        )
    return _update_race_where(
        db,
        conditions,
        winner_profile_id=winner_profile_id,
        winner_set_at=winner_set_at,
        winner_source="auto",
        winner_is_manual_override=False,
        winner_auto_eligible_at=None,
    )


def finalize_race_winner_now(
    db: Session, race_id: int, now: Optional[datetime] = None
) -> WinnerOutcome:
    now = as_utc(now or utcnow())
    winner_profile_id = calculate_race_winner_profile_id(db, race_id)
    if not _persist_auto_winner(db, race_id, winner_profile_id, now, require_no_override=False):
        raise HTTPException(status_code=400, detail="Cannot finalize winner for an archived race.")
    logger.info("Fantasy winner for race %s set to %s", race_id, winner_profile_id)
    return WinnerOutcome(race_id=race_id, winner_profile_id=winner_profile_id)


def due_race_ids(db: Session, now: datetime, limit: int) -> list[int]:
    return list(
        db.scalars(
            select(Race.id)
            .where(
                Race.is_archived.is_(False),
                Race.winner_is_manual_override.is_(False),
                Race.winner_auto_eligible_at.is_not(None),
                Race.winner_auto_eligible_at <= now,
            )
            .order_by(Race.winner_auto_eligible_at.asc(), Race.id.asc())
            .limit(limit)
        ).all()
    )


def finalize_due_race_winners(
    db: Session, now: Optional[datetime] = None, limit: Optional[int] = None
) -> FinalizeDueOutcome:
    now = as_utc(now or utcnow())
    limit = max(1, min(limit or config.FINALIZE_BATCH_LIMIT, config.FINALIZE_BATCH_LIMIT))

    race_ids = due_race_ids(db, now, limit)
    updated = 0
    for race_id in race_ids:
        winner_profile_id = calculate_race_winner_profile_id(db, race_id)
        # Archive or manual override may have landed since the race was selected.
        if _persist_auto_winner(db, race_id, winner_profile_id, now, require_no_override=True):
            updated += 1
        else:
            logger.info("Skipped fantasy winner for race %s; race changed since selection", race_id)

    if race_ids:
        logger.info("Finalized %d of %d due race winners", updated, len(race_ids))
    return FinalizeDueOutcome(processed_race_count=len(race_ids), updated_race_count=updated)


def set_race_winner(
    db: Session,
    race_id: int,
    winner_profile_id: Optional[str],
    now: Optional[datetime] = None,
) -> WinnerOutcome:
    now = as_utc(now or utcnow())
    ensure_race_is_active(db, race_id)
    if not winner_profile_id:
        return finalize_race_winner_now(db, race_id, now=now)

    get_or_404(db, Profile, winner_profile_id, "Selected fantasy winner")
    updated = _update_race_where(
        db,
        [Race.id == race_id, Race.is_archived.is_(False)],
        winner_profile_id=winner_profile_id,
        winner_set_at=now,
        winner_source="manual",
        winner_is_manual_override=True,
        winner_auto_eligible_at=None,
    )
    if not updated:
        raise HTTPException(status_code=400, detail="Cannot set winner for an archived race.")
    logger.info("Manual fantasy winner for race %s set to %s", race_id, winner_profile_id)
    return WinnerOutcome(race_id=race_id, winner_profile_id=winner_profile_id)


def set_race_archived(
    db: Session, race_id: int, archive: bool, now: Optional[datetime] = None
) -> Race:
    race = get_race_or_404(db, race_id)
    race.is_archived = archive
    race.archived_at = (now or utcnow()) if archive else None
    if archive:
        race.winner_auto_eligible_at = None
    logger.info("Race %s %s", race_id, "archived" if archive else "unarchived")
    return race
