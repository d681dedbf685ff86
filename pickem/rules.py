from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar


GROUP_NUMBERS = (1, 2, 3, 4, 5, 6)


class RankableRow(Protocol):
    points: int
    average_speed: Optional[float]
    team_name: str


Row = TypeVar("Row", bound=RankableRow)


@dataclass(frozen=True)
class PickSelection:
    user_id: str
    race_id: int
    average_speed: float
    driver_ids: Tuple[int, int, int, int, int, int]


@dataclass(frozen=True)
class RaceResult:
    race_id: int
    driver_id: int
    points: int


@dataclass(frozen=True)
class WeeklyPickScore:
    race_points: int
    average_speed: float


@dataclass(frozen=True)
class RaceExtremes:
    highest: int
    lowest: int


def speed_delta(guess: Optional[float], official_speed: Optional[float]) -> Optional[float]:
    if guess is None or official_speed is None:
        return None
    return abs(guess - official_speed)


def _speed_delta_for_sort(guess: Optional[float], official_speed: Optional[float]) -> float:
    delta = speed_delta(guess, official_speed)
    return math.inf if delta is None else delta


def order_weekly_rows(rows: Sequence[Row], official_speed: Optional[float]) -> List[Row]:
    """
    Highest points first. When several rows share the top score, the one whose
    speed guess is closest to the official average speed wins, then team name.
    Everyone below the top is ordered by points and team name only.
    """
    if not rows:
        return []

    top_points = max(row.points for row in rows)
    leaders = [row for row in rows if row.points == top_points]
    rest = [row for row in rows if row.points != top_points]

    if len(leaders) > 1:
        leaders.sort(
            key=lambda row: (
                _speed_delta_for_sort(row.average_speed, official_speed),
                row.team_name,
            )
        )
    rest.sort(key=lambda row: (-row.points, row.team_name))
    return leaders + rest


def rank_ordered_rows(ordered: Sequence[Row]) -> List[Tuple[int, Row]]:
    """
    Competition ranks for rows already in tiebreak order.
    A shared top score gets distinct ranks 1, 2, 3 (the speed tiebreak decided
    them); any other tie shares one rank and the next score skips (1, 2, 2, 4).
    """
    if not ordered:
        return []

    top_points = ordered[0].points
    top_tie = sum(1 for row in ordered if row.points == top_points) > 1

    ranked: List[Tuple[int, Row]] = []
    previous_points: Optional[int] = None
    previous_rank = 0
    for idx, row in enumerate(ordered, start=1):
        if top_tie and row.points == top_points:
            rank = idx
        elif previous_points is not None and row.points == previous_points:
            rank = previous_rank
        else:
            rank = idx
        ranked.append((rank, row))
        previous_points = row.points
        previous_rank = rank
    return ranked


def assign_weekly_ranks(rows: Sequence[Row], official_speed: Optional[float]) -> List[Tuple[int, Row]]:
    return rank_ordered_rows(order_weekly_rows(rows, official_speed))


@dataclass(frozen=True)
class StandingInput:
    user_id: str
    team_name: str
    total_points: int
    race_points: int


def assign_standing_ranks(rows: Sequence[StandingInput]) -> List[Tuple[int, StandingInput]]:
    """
    Season standings: cumulative total, then that race's points, then team name.
    The speed guess plays no part here. Rows share a rank only when both the
    total and the race points match.
    """
    ordered = sorted(rows, key=lambda r: (-r.total_points, -r.race_points, r.team_name))
    ranked: List[Tuple[int, StandingInput]] = []
    previous: Optional[StandingInput] = None
    previous_rank = 0
    for idx, row in enumerate(ordered, start=1):
        same_as_previous = (
            previous is not None
            and previous.total_points == row.total_points
            and previous.race_points == row.race_points
        )
        rank = previous_rank if same_as_previous else idx
        ranked.append((rank, row))
        previous = row
        previous_rank = rank
    return ranked


def is_top_points_tie(rows: Iterable[RankableRow], selected_points: Optional[int]) -> bool:
    points = [row.points for row in rows]
    if not points or selected_points is None:
        return False
    top_points = max(points)
    if selected_points != top_points:
        return False
    return points.count(top_points) > 1


def score_pick(pick: PickSelection, points_by_driver: Mapping[int, int]) -> WeeklyPickScore:
    # Drivers without a posted result (or no longer known) count as zero.
    race_points = sum(points_by_driver.get(driver_id, 0) for driver_id in pick.driver_ids)
    return WeeklyPickScore(race_points=race_points, average_speed=pick.average_speed)


def points_by_group(
    results: Iterable[RaceResult], group_by_driver: Mapping[int, int]
) -> Dict[int, List[int]]:
    grouped: Dict[int, List[int]] = {group: [] for group in GROUP_NUMBERS}
    for result in results:
        group = group_by_driver.get(result.driver_id)
        if group not in grouped:
            continue
        grouped[group].append(result.points)
    return grouped


def race_extremes(results: Iterable[RaceResult], group_by_driver: Mapping[int, int]) -> RaceExtremes:
    """
    Best and worst possible weekly score: the sum of each group's top and
    bottom posted result. The bottom total is also what a participant without
    a pick is credited with.
    """
    highest = 0
    lowest = 0
    for values in points_by_group(results, group_by_driver).values():
        if not values:
            continue
        highest += max(values)
        lowest += min(values)
    return RaceExtremes(highest=highest, lowest=lowest)


def average(values: Iterable[float]) -> Optional[float]:
    vals = list(values)
    if not vals:
        return None
    return float(sum(vals) / len(vals))


DRIVERS_PER_GROUP = 4


@dataclass(frozen=True)
class DriverStandingInput:
    driver_id: int
    driver_name: str
    championship_points: int
    current_standing: Optional[int]
    is_active: bool


@dataclass(frozen=True)
class DriverPlacement:
    driver_id: int
    current_standing: int
    group_number: int


def driver_group_for_index(index: int) -> int:
    # Four drivers per group down the order; everyone after that is group 6.
    return min(index // DRIVERS_PER_GROUP + 1, GROUP_NUMBERS[-1])


def _standing_for_sort(standing: Optional[int]) -> float:
    return math.inf if standing is None else standing


def assign_driver_groups(drivers: Iterable[DriverStandingInput]) -> List[DriverPlacement]:
    """
    Championship order for the pick groups. Active drivers are ranked by
    points, then their previous standing, then name. Inactive drivers follow
    in their previous order and always land in the last group.
    """
    drivers = list(drivers)
    active = sorted(
        (d for d in drivers if d.is_active),
        key=lambda d: (-d.championship_points, _standing_for_sort(d.current_standing), d.driver_name),
    )
    inactive = sorted(
        (d for d in drivers if not d.is_active),
        key=lambda d: (_standing_for_sort(d.current_standing), d.driver_name),
    )

    placements = [
        DriverPlacement(driver_id=d.driver_id, current_standing=idx + 1, group_number=driver_group_for_index(idx))
        for idx, d in enumerate(active)
    ]
    placements.extend(
        DriverPlacement(
            driver_id=d.driver_id,
            current_standing=len(active) + idx + 1,
            group_number=GROUP_NUMBERS[-1],
        )
        for idx, d in enumerate(inactive)
    )
    return placements
