"""Parsing for the drivers' championship standings table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pickem.results_import import MIN_COLUMNS, parse_integer, split_columns


@dataclass(frozen=True)
class ParsedStandingRow:
    line_number: int
    driver_name: str
    rank: int
    points: int


@dataclass
class ParsedStandings:
    rows: List[ParsedStandingRow] = field(default_factory=list)
    ignored_line_count: int = 0


def is_standings_header(line: str) -> bool:
    lower = line.lower()
    return "rank" in lower and "driver" in lower and "points" in lower


def parse_standings_number(value: str) -> Optional[int]:
    # Totals are published with thousands separators ("1,024").
    return parse_integer(value.replace(",", ""))


def parse_standings_paste(raw: str) -> ParsedStandings:
    """
    Rows look like ``Rank | Driver | <anything> | Points | ...``. Lines without
    a positive rank, a driver name or non-negative points are ignored.
    """
    parsed = ParsedStandings()
    lines = [line.strip() for line in raw.splitlines()]
    lines = [line for line in lines if line]

    for line_number, line in enumerate(lines, start=1):
        if is_standings_header(line):
            parsed.ignored_line_count += 1
            continue

        columns = split_columns(line)
        if len(columns) < MIN_COLUMNS:
            parsed.ignored_line_count += 1
            continue

        rank = parse_standings_number(columns[0])
        driver_name = columns[1].strip()
        points = parse_standings_number(columns[3])
        if not rank or rank <= 0 or not driver_name or points is None or points < 0:
            parsed.ignored_line_count += 1
            continue

        parsed.rows.append(
            ParsedStandingRow(line_number=line_number, driver_name=driver_name, rank=rank, points=points)
        )
    return parsed
