from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from pickem.config import LOG_LEVEL
from pickem.cron import check_cron_authorization
from pickem.database import Base, engine, get_db
from pickem.schemas import (
    PickSubmit,
    RaceArchiveSet,
    RaceWinnerSet,
    ResultsPasteImport,
    ResultUpsert,
    StandingsPasteImport,
)
from pickem.services import (
    finalize_due_race_winners,
    import_championship_standings,
    import_results_paste,
    league_scoring_snapshot,
    participant_analytics_snapshot,
    picks_by_race_snapshot,
    set_race_archived,
    set_race_winner,
    upsert_pick,
    upsert_result,
)


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Racing Pick'em League",
    version="1.0.0",
    description=(
        "Weekly six-group driver picks with an average-speed tiebreaker: "
        "season standings, picks by race, participant analytics and "
        "fantasy winner finalization."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/leaderboard")
def get_leaderboard(db: Session = Depends(get_db)):
    return league_scoring_snapshot(db)


@app.get("/picks/by-race")
def get_picks_by_race(race_id: Optional[int] = Query(default=None), db: Session = Depends(get_db)):
    return picks_by_race_snapshot(db, race_id=race_id)


@app.get("/participants/{user_id}/analytics")
def get_participant_analytics(user_id: str, db: Session = Depends(get_db)):
    return participant_analytics_snapshot(db, user_id)


@app.post("/picks")
def submit_pick(payload: PickSubmit, db: Session = Depends(get_db)):
    pick = upsert_pick(
        db=db,
        user_id=payload.user_id,
        race_id=payload.race_id,
        average_speed=payload.average_speed,
        driver_ids=payload.driver_ids(),
    )
    db.commit()
    db.refresh(pick)
    return {
        "id": pick.id,
        "user_id": pick.user_id,
        "race_id": pick.race_id,
        "average_speed": pick.average_speed,
        "driver_ids": list(pick.driver_ids),
    }


@app.post("/admin/races/{race_id}/results")
def save_result(race_id: int, payload: ResultUpsert, db: Session = Depends(get_db)):
    result = upsert_result(db, race_id=race_id, driver_id=payload.driver_id, points=payload.points)
    db.commit()
    return result


@app.post("/admin/races/{race_id}/results/import")
def import_results(race_id: int, payload: ResultsPasteImport, db: Session = Depends(get_db)):
    result = import_results_paste(db, race_id=race_id, raw_paste=payload.results_paste)
    db.commit()
    return result


@app.post("/admin/drivers/standings/import")
def import_standings(payload: StandingsPasteImport, db: Session = Depends(get_db)):
    result = import_championship_standings(db, raw_paste=payload.standings_paste)
    db.commit()
    return result


@app.post("/admin/races/{race_id}/winner")
def update_race_winner(race_id: int, payload: RaceWinnerSet, db: Session = Depends(get_db)):
    outcome = set_race_winner(db, race_id=race_id, winner_profile_id=payload.winner_profile_id)
    db.commit()
    return outcome


@app.post("/admin/races/{race_id}/archive")
def update_race_archive(race_id: int, payload: RaceArchiveSet, db: Session = Depends(get_db)):
    race = set_race_archived(db, race_id=race_id, archive=payload.archive)
    db.commit()
    return {"id": race.id, "race_name": race.race_name, "is_archived": race.is_archived}


def _run_fantasy_winner_cron(
    db: Session, authorization: Optional[str], x_cron_secret: Optional[str]
) -> dict:
    auth = check_cron_authorization(authorization, x_cron_secret)
    if not auth.ok:
        logger.warning("Rejected fantasy winner cron call: %s", auth.reason)
        raise HTTPException(status_code=401, detail={"error": "Unauthorized", "reason": auth.reason})

    outcome = finalize_due_race_winners(db)
    db.commit()
    return {
        "ok": True,
        "processed_race_count": outcome.processed_race_count,
        "updated_race_count": outcome.updated_race_count,
    }


@app.get("/api/cron/fantasy-winner")
def fantasy_winner_cron_get(
    authorization: Optional[str] = Header(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    return _run_fantasy_winner_cron(db, authorization, x_cron_secret)


@app.post("/api/cron/fantasy-winner")
def fantasy_winner_cron_post(
    authorization: Optional[str] = Header(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    return _run_fantasy_winner_cron(db, authorization, x_cron_secret)
