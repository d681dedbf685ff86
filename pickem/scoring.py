"""League views derived from picks and results.

Every builder here is a pure function over the records below; loading them
from the database is the job of ``pickem.services``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pickem.rules import (
    GROUP_NUMBERS,
    PickSelection,
    RaceResult,
    StandingInput,
    assign_standing_ranks,
    assign_weekly_ranks,
    average,
    order_weekly_rows,
    points_by_group,
    race_extremes,
    score_pick,
    speed_delta,
)


HIGHEST_BENCHMARK_NAME = "Highest Possible Score"
LOWEST_BENCHMARK_NAME = "Lowest Possible Score"
RECENT_FORM_WINDOW = 3


class ParticipantNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class Participant:
    id: str
    team_name: str


@dataclass(frozen=True)
class RaceInfo:
    id: int
    race_name: str
    race_date: date
    official_speed: Optional[float] = None
    qualifying_start_at: Optional[datetime] = None


@dataclass(frozen=True)
class DriverInfo:
    id: int
    driver_name: str
    group_number: int


@dataclass(frozen=True)
class LeagueData:
    participants: Sequence[Participant]
    races: Sequence[RaceInfo]
    drivers: Sequence[DriverInfo]
    picks: Sequence[PickSelection]
    results: Sequence[RaceResult]


@dataclass(frozen=True)
class WeeklyScore:
    user_id: str
    team_name: str
    points: int
    average_speed: Optional[float]
    submitted_pick: bool


@dataclass(frozen=True)
class RaceColumn:
    race_id: int
    race_name: str
    race_date: date


@dataclass(frozen=True)
class LeaderboardRow:
    user_id: str
    team_name: str
    total_points: int
    current_standing: int
    previous_standing: Optional[int]
    change: int
    trend: str  # up / down / flat
    race_breakdown: Dict[int, int]


@dataclass(frozen=True)
class ScoreboardRow:
    team_name: str
    points: int
    average_speed: Optional[float]
    row_type: str  # participant / benchmark_high / benchmark_low
    user_id: Optional[str] = None


@dataclass(frozen=True)
class RaceScoreboard:
    race_id: int
    race_name: str
    race_date: date
    rows: List[ScoreboardRow]


@dataclass(frozen=True)
class LeagueScoringSnapshot:
    leaderboard_rows: List[LeaderboardRow]
    latest_race_scoreboard: Optional[RaceScoreboard]
    race_columns: List[RaceColumn]


@dataclass(frozen=True)
class DriverCell:
    group_number: int
    driver_id: Optional[int]
    driver_name: Optional[str]
    points: Optional[int]


@dataclass(frozen=True)
class PicksByRaceRow:
    user_id: str
    team_name: str
    average_speed: Optional[float]
    driver_cells: List[DriverCell]
    total_points: Optional[int]
    rank: Optional[int]


@dataclass(frozen=True)
class PicksByRaceSnapshot:
    available_races: List[RaceInfo]
    selected_race: Optional[RaceInfo]
    results_posted: bool
    rows: List[PicksByRaceRow]


@dataclass(frozen=True)
class AnalyticsRaceRow:
    race_id: int
    race_name: str
    race_date: date
    weekly_points: int
    weekly_finish: Optional[int]
    cumulative_points: int
    race_average_points: float
    points_vs_race_average: float
    official_race_average_speed: Optional[float]
    average_speed_guess: Optional[float]
    tiebreak_delta: Optional[float]
    submitted_pick: bool
    field_size: int


@dataclass(frozen=True)
class AnalyticsSummary:
    completed_races: int
    field_size: int
    total_points: int
    current_standing: Optional[int]
    average_finish: Optional[float]
    average_tiebreak_delta: Optional[float]
    average_weekly_points: Optional[float]
    best_week: Optional[AnalyticsRaceRow]
    worst_week: Optional[AnalyticsRaceRow]
    last_three_race_average: Optional[float]
    momentum_delta: Optional[float]
    pick_submission_rate: Optional[float]
    weekly_wins: int
    top_three_finishes: int
    closest_tiebreak_delta: Optional[float]


@dataclass(frozen=True)
class ParticipantAnalyticsSnapshot:
    user_id: str
    team_name: str
    race_rows: List[AnalyticsRaceRow]
    summary: AnalyticsSummary


@dataclass(frozen=True)
class StandingStep:
    """Standings immediately after one race with posted results."""

    race: RaceInfo
    weekly: Tuple[WeeklyScore, ...]
    totals: Mapping[str, int]
    ranks: Mapping[str, int]


@dataclass
class _LeagueIndex:
    group_by_driver: Dict[int, int] = field(default_factory=dict)
    results_by_race: Dict[int, List[RaceResult]] = field(default_factory=lambda: defaultdict(list))
    points_by_race: Dict[int, Dict[int, int]] = field(default_factory=lambda: defaultdict(dict))
    picks_by_race: Dict[int, Dict[str, PickSelection]] = field(default_factory=lambda: defaultdict(dict))

    def race_points(self, race_id: int) -> Dict[int, int]:
        return self.points_by_race.get(race_id, {})

    def race_picks(self, race_id: int) -> Dict[str, PickSelection]:
        return self.picks_by_race.get(race_id, {})

    def floor_points(self, race_id: int) -> int:
        return race_extremes(self.results_by_race.get(race_id, []), self.group_by_driver).lowest


def _index(
    drivers: Sequence[DriverInfo],
    picks: Sequence[PickSelection],
    results: Sequence[RaceResult],
) -> _LeagueIndex:
    index = _LeagueIndex()
    for driver in drivers:
        index.group_by_driver[driver.id] = driver.group_number
    for result in results:
        index.results_by_race[result.race_id].append(result)
        index.points_by_race[result.race_id][result.driver_id] = result.points
    for pick in picks:
        index.picks_by_race[pick.race_id][pick.user_id] = pick
    return index


def completed_races(races: Sequence[RaceInfo], results: Sequence[RaceResult]) -> List[RaceInfo]:
    """Races with at least one posted result, oldest first."""
    posted = {result.race_id for result in results}
    return sorted((race for race in races if race.id in posted), key=lambda r: (r.race_date, r.id))


def weekly_scores_for_race(
    participants: Sequence[Participant],
    picks_by_user: Mapping[str, PickSelection],
    points_by_driver: Mapping[int, int],
    fallback_points: int,
) -> List[WeeklyScore]:
    """
    The one place a participant's weekly score is decided. Without a pick the
    participant is credited with the race's group-floor total.
    """
    scores: List[WeeklyScore] = []
    for participant in participants:
        pick = picks_by_user.get(participant.id)
        if pick is None:
            scores.append(
                WeeklyScore(
                    user_id=participant.id,
                    team_name=participant.team_name,
                    points=fallback_points,
                    average_speed=None,
                    submitted_pick=False,
                )
            )
            continue
        scored = score_pick(pick, points_by_driver)
        scores.append(
            WeeklyScore(
                user_id=participant.id,
                team_name=participant.team_name,
                points=scored.race_points,
                average_speed=scored.average_speed,
                submitted_pick=True,
            )
        )
    return scores


def _advance_standings(
    totals: Mapping[str, int], weekly: Sequence[WeeklyScore]
) -> Tuple[Dict[str, int], Dict[str, int]]:
    next_totals = dict(totals)
    for score in weekly:
        next_totals[score.user_id] = next_totals.get(score.user_id, 0) + score.points

    ranked = assign_standing_ranks(
        [
            StandingInput(
                user_id=score.user_id,
                team_name=score.team_name,
                total_points=next_totals[score.user_id],
                race_points=score.points,
            )
            for score in weekly
        ]
    )
    return next_totals, {row.user_id: rank for rank, row in ranked}


def standings_progression(data: LeagueData) -> List[StandingStep]:
    index = _index(data.drivers, data.picks, data.results)
    steps: List[StandingStep] = []
    totals: Mapping[str, int] = {p.id: 0 for p in data.participants}
    for race in completed_races(data.races, data.results):
        weekly = weekly_scores_for_race(
            data.participants,
            index.race_picks(race.id),
            index.race_points(race.id),
            index.floor_points(race.id),
        )
        totals, ranks = _advance_standings(totals, weekly)
        steps.append(StandingStep(race=race, weekly=tuple(weekly), totals=totals, ranks=ranks))
    return steps


def _trend(change: int) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "flat"


def _latest_race_scoreboard(
    step: StandingStep, index: _LeagueIndex
) -> RaceScoreboard:
    participant_rows = order_weekly_rows(
        [
            ScoreboardRow(
                team_name=score.team_name,
                points=score.points,
                average_speed=score.average_speed,
                row_type="participant",
                user_id=score.user_id,
            )
            for score in step.weekly
        ],
        step.race.official_speed,
    )
    extremes = race_extremes(index.results_by_race.get(step.race.id, []), index.group_by_driver)
    return RaceScoreboard(
        race_id=step.race.id,
        race_name=step.race.race_name,
        race_date=step.race.race_date,
        rows=[
            *participant_rows,
            ScoreboardRow(
                team_name=HIGHEST_BENCHMARK_NAME,
                points=extremes.highest,
                average_speed=None,
                row_type="benchmark_high",
            ),
            ScoreboardRow(
                team_name=LOWEST_BENCHMARK_NAME,
                points=extremes.lowest,
                average_speed=None,
                row_type="benchmark_low",
            ),
        ],
    )


def build_league_scoring_snapshot(data: LeagueData) -> LeagueScoringSnapshot:
    steps = standings_progression(data)
    race_columns = [
        RaceColumn(race_id=step.race.id, race_name=step.race.race_name, race_date=step.race.race_date)
        for step in steps
    ]
    if not steps:
        return LeagueScoringSnapshot(leaderboard_rows=[], latest_race_scoreboard=None, race_columns=[])

    index = _index(data.drivers, data.picks, data.results)
    latest = steps[-1]
    previous = steps[-2] if len(steps) > 1 else None
    breakdown_by_user: Dict[str, Dict[int, int]] = defaultdict(dict)
    for step in steps:
        for score in step.weekly:
            breakdown_by_user[score.user_id][step.race.id] = score.points

    rows: List[LeaderboardRow] = []
    for participant in data.participants:
        current_standing = latest.ranks[participant.id]
        previous_standing = previous.ranks.get(participant.id) if previous else None
        baseline = previous_standing if previous_standing is not None else current_standing
        change = baseline - current_standing
        rows.append(
            LeaderboardRow(
                user_id=participant.id,
                team_name=participant.team_name,
                total_points=latest.totals[participant.id],
                current_standing=current_standing,
                previous_standing=previous_standing,
                change=change,
                trend=_trend(change),
                race_breakdown=dict(breakdown_by_user[participant.id]),
            )
        )
    rows.sort(key=lambda r: (r.current_standing, -r.total_points, r.team_name))

    return LeagueScoringSnapshot(
        leaderboard_rows=rows,
        latest_race_scoreboard=_latest_race_scoreboard(latest, index),
        race_columns=race_columns,
    )


def build_picks_by_race_snapshot(
    participants: Sequence[Participant],
    drivers: Sequence[DriverInfo],
    candidate_races: Sequence[RaceInfo],
    picks: Sequence[PickSelection],
    results: Sequence[RaceResult],
    selected_race_id: Optional[int] = None,
) -> PicksByRaceSnapshot:
    available = list(candidate_races)
    if not available:
        return PicksByRaceSnapshot(available_races=[], selected_race=None, results_posted=False, rows=[])

    selected = next((race for race in available if race.id == selected_race_id), available[0])
    race_results = [r for r in results if r.race_id == selected.id]
    index = _index(drivers, [p for p in picks if p.race_id == selected.id], race_results)
    name_by_driver = {driver.id: driver.driver_name for driver in drivers}
    picks_by_user = index.race_picks(selected.id)
    points_by_driver = index.race_points(selected.id)
    results_posted = bool(race_results)

    floor_by_group: Dict[int, Optional[int]] = {
        group: (min(values) if values else None)
        for group, values in points_by_group(race_results, index.group_by_driver).items()
    }

    def cells_for(pick: Optional[PickSelection]) -> List[DriverCell]:
        cells: List[DriverCell] = []
        for group in GROUP_NUMBERS:
            driver_id = pick.driver_ids[group - 1] if pick else None
            if not results_posted:
                points = None
            elif driver_id is not None:
                points = points_by_driver.get(driver_id, 0)
            else:
                points = floor_by_group[group]
            cells.append(
                DriverCell(
                    group_number=group,
                    driver_id=driver_id,
                    driver_name=name_by_driver.get(driver_id) if driver_id is not None else None,
                    points=points,
                )
            )
        return cells

    if not results_posted:
        rows = [
            PicksByRaceRow(
                user_id=participant.id,
                team_name=participant.team_name,
                average_speed=picks_by_user[participant.id].average_speed
                if participant.id in picks_by_user
                else None,
                driver_cells=cells_for(picks_by_user.get(participant.id)),
                total_points=None,
                rank=None,
            )
            for participant in participants
        ]
        rows.sort(key=lambda r: r.team_name)
        return PicksByRaceSnapshot(
            available_races=available, selected_race=selected, results_posted=False, rows=rows
        )

    weekly = weekly_scores_for_race(
        participants, picks_by_user, points_by_driver, index.floor_points(selected.id)
    )
    rows = [
        PicksByRaceRow(
            user_id=score.user_id,
            team_name=score.team_name,
            average_speed=score.average_speed,
            driver_cells=cells_for(picks_by_user.get(score.user_id)),
            total_points=score.points,
            rank=rank,
        )
        for rank, score in assign_weekly_ranks(weekly, selected.official_speed)
    ]
    return PicksByRaceSnapshot(
        available_races=available, selected_race=selected, results_posted=True, rows=rows
    )


def _better_week(current: Optional[AnalyticsRaceRow], candidate: AnalyticsRaceRow) -> AnalyticsRaceRow:
    if current is None:
        return candidate
    if candidate.weekly_points != current.weekly_points:
        return candidate if candidate.weekly_points > current.weekly_points else current
    candidate_finish = candidate.weekly_finish if candidate.weekly_finish is not None else float("inf")
    current_finish = current.weekly_finish if current.weekly_finish is not None else float("inf")
    if candidate_finish != current_finish:
        return candidate if candidate_finish < current_finish else current
    return candidate if candidate.race_date > current.race_date else current


def _worse_week(current: Optional[AnalyticsRaceRow], candidate: AnalyticsRaceRow) -> AnalyticsRaceRow:
    if current is None:
        return candidate
    if candidate.weekly_points != current.weekly_points:
        return candidate if candidate.weekly_points < current.weekly_points else current
    candidate_finish = candidate.weekly_finish if candidate.weekly_finish is not None else float("inf")
    current_finish = current.weekly_finish if current.weekly_finish is not None else float("inf")
    if candidate_finish != current_finish:
        return candidate if candidate_finish > current_finish else current
    return candidate if candidate.race_date > current.race_date else current


def build_participant_analytics_snapshot(data: LeagueData, user_id: str) -> ParticipantAnalyticsSnapshot:
    participant = next((p for p in data.participants if p.id == user_id), None)
    if participant is None:
        raise ParticipantNotFoundError(f"Participant {user_id} not found")

    field_size = len(data.participants)
    race_rows: List[AnalyticsRaceRow] = []
    current_standing: Optional[int] = None

    for step in standings_progression(data):
        official_speed = step.race.official_speed
        finish_by_user = {
            score.user_id: rank for rank, score in assign_weekly_ranks(step.weekly, official_speed)
        }
        race_average = average(score.points for score in step.weekly) or 0.0
        mine = next(score for score in step.weekly if score.user_id == participant.id)
        current_standing = step.ranks.get(participant.id, current_standing)

        race_rows.append(
            AnalyticsRaceRow(
                race_id=step.race.id,
                race_name=step.race.race_name,
                race_date=step.race.race_date,
                weekly_points=mine.points,
                weekly_finish=finish_by_user.get(participant.id),
                cumulative_points=step.totals[participant.id],
                race_average_points=race_average,
                points_vs_race_average=mine.points - race_average,
                official_race_average_speed=official_speed,
                average_speed_guess=mine.average_speed,
                tiebreak_delta=speed_delta(mine.average_speed, official_speed),
                submitted_pick=mine.average_speed is not None,
                field_size=field_size,
            )
        )

    finishes = [row.weekly_finish for row in race_rows if row.weekly_finish is not None]
    deltas = [row.tiebreak_delta for row in race_rows if row.tiebreak_delta is not None]

    best_week: Optional[AnalyticsRaceRow] = None
    worst_week: Optional[AnalyticsRaceRow] = None
    for row in race_rows:
        best_week = _better_week(best_week, row)
        worst_week = _worse_week(worst_week, row)

    average_weekly_points = average(row.weekly_points for row in race_rows)
    last_three_average = average(row.weekly_points for row in race_rows[-RECENT_FORM_WINDOW:])
    momentum = (
        last_three_average - average_weekly_points
        if last_three_average is not None and average_weekly_points is not None
        else None
    )

    summary = AnalyticsSummary(
        completed_races=len(race_rows),
        field_size=field_size,
        total_points=race_rows[-1].cumulative_points if race_rows else 0,
        current_standing=current_standing,
        average_finish=average(finishes),
        average_tiebreak_delta=average(deltas),
        average_weekly_points=average_weekly_points,
        best_week=best_week,
        worst_week=worst_week,
        last_three_race_average=last_three_average,
        momentum_delta=momentum,
        pick_submission_rate=average(1.0 if row.submitted_pick else 0.0 for row in race_rows),
        weekly_wins=sum(1 for finish in finishes if finish == 1),
        top_three_finishes=sum(1 for finish in finishes if finish <= 3),
        closest_tiebreak_delta=min(deltas) if deltas else None,
    )
    return ParticipantAnalyticsSnapshot(
        user_id=participant.id,
        team_name=participant.team_name,
        race_rows=race_rows,
        summary=summary,
    )
