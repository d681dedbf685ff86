from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PickSubmit(BaseModel):
    user_id: str = Field(min_length=1, max_length=36)
    race_id: int = Field(ge=1)
    average_speed: float = Field(gt=0)
    driver_group1_id: int = Field(ge=1)
    driver_group2_id: int = Field(ge=1)
    driver_group3_id: int = Field(ge=1)
    driver_group4_id: int = Field(ge=1)
    driver_group5_id: int = Field(ge=1)
    driver_group6_id: int = Field(ge=1)

    def driver_ids(self) -> list[int]:
        return [
            self.driver_group1_id,
            self.driver_group2_id,
            self.driver_group3_id,
            self.driver_group4_id,
            self.driver_group5_id,
            self.driver_group6_id,
        ]


class ResultUpsert(BaseModel):
    driver_id: int = Field(ge=1)
    points: int = Field(ge=0)


class ResultsPasteImport(BaseModel):
    results_paste: str = Field(min_length=1)


class StandingsPasteImport(BaseModel):
    standings_paste: str = Field(min_length=1)


class RaceWinnerSet(BaseModel):
    # Leave empty to clear a manual override and recompute immediately.
    winner_profile_id: Optional[str] = Field(default=None, max_length=36)


class RaceArchiveSet(BaseModel):
    archive: bool
