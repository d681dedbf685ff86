"""Parsing for result tables pasted from the series' official results page."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


MIN_COLUMNS = 4
# Official tables carry eight stat columns after the driver name.
TRAILING_COLUMNS_AFTER_DRIVER = 9

_INTEGER_RE = re.compile(r"-?\d+")
_CAR_NUMBER_RE = re.compile(r"^\d{1,3}$")
_CAR_AND_NAME_RE = re.compile(r"^(\d{1,3})\s+(.+)$")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")


@dataclass(frozen=True)
class ParsedResultRow:
    line_number: int
    driver_name: str
    car_number: Optional[str]
    position: Optional[int]
    points: int


@dataclass
class ParsedResults:
    rows: List[ParsedResultRow] = field(default_factory=list)
    ignored_line_count: int = 0


def split_columns(line: str) -> List[str]:
    if "\t" in line:
        cells = line.split("\t")
    elif "|" in line:
        cells = line.split("|")
    else:
        cells = _MULTI_SPACE_RE.split(line)
    return [cell.strip() for cell in cells if cell.strip()]


def parse_integer(value: str) -> Optional[int]:
    match = _INTEGER_RE.search(value)
    if not match:
        return None
    return int(match.group(0))


def is_header_line(line: str) -> bool:
    lower = line.lower()
    return "pos" in lower and "driver" in lower and "points" in lower


def _driver_and_car(driver_cell: str, car_candidate: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    driver_cell = driver_cell.strip()
    if not driver_cell:
        return None, None
    if car_candidate and _CAR_NUMBER_RE.match(car_candidate.strip()):
        return driver_cell, car_candidate.strip()
    combined = _CAR_AND_NAME_RE.match(driver_cell)
    if combined:
        return combined.group(2).strip(), combined.group(1)
    return driver_cell, None


def normalize_driver_name(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = re.sub(r"^\d+\s+", "", stripped)
    stripped = re.sub(r"[^a-zA-Z0-9]+", " ", stripped)
    return stripped.strip().lower()


def parse_results_paste(raw: str) -> ParsedResults:
    parsed = ParsedResults()
    lines = [line.strip() for line in raw.splitlines()]
    lines = [line for line in lines if line]

    for line_number, line in enumerate(lines, start=1):
        if is_header_line(line):
            parsed.ignored_line_count += 1
            continue

        columns = split_columns(line)
        if len(columns) < MIN_COLUMNS:
            parsed.ignored_line_count += 1
            continue

        points = parse_integer(columns[-1])
        if points is None:
            parsed.ignored_line_count += 1
            continue

        driver_index = len(columns) - TRAILING_COLUMNS_AFTER_DRIVER
        if driver_index < 0:
            driver_index = 2
        car_candidate = columns[driver_index - 1] if driver_index > 0 else None
        driver_name, car_number = _driver_and_car(columns[driver_index], car_candidate)
        if not driver_name:
            parsed.ignored_line_count += 1
            continue

        parsed.rows.append(
            ParsedResultRow(
                line_number=line_number,
                driver_name=driver_name,
                car_number=car_number,
                position=parse_integer(columns[0]),
                points=points,
            )
        )
    return parsed
