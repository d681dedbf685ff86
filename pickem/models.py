from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickem.database import Base


PROFILE_ROLES = ("participant", "admin")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_profile_id() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_profile_id)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    team_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default="participant", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    picks: Mapped[list["Pick"]] = relationship(
        "Pick", back_populates="profile", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("role in ('participant', 'admin')", name="ck_profile_role"),
    )


class Race(Base):
    __tablename__ = "races"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    race_name: Mapped[str] = mapped_column(String(128), nullable=False)
    race_date: Mapped[date] = mapped_column(Date, nullable=False)
    qualifying_start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    official_winning_average_speed: Mapped[float | None] = mapped_column(Float, nullable=True)

    winner_profile_id: Mapped[str | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    winner_source: Mapped[str] = mapped_column(String(16), default="auto", nullable=False)  # auto / manual
    winner_is_manual_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    winner_auto_eligible_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    winner_set_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    picks: Mapped[list["Pick"]] = relationship(
        "Pick", back_populates="race", cascade="all, delete-orphan"
    )
    results: Mapped[list["Result"]] = relationship(
        "Result", back_populates="race", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("winner_source in ('auto', 'manual')", name="ck_race_winner_source"),
        Index("idx_races_winner_auto_eligible", "winner_auto_eligible_at"),
        Index("idx_races_is_archived", "is_archived", "race_date"),
    )


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    driver_name: Mapped[str] = mapped_column(String(128), nullable=False)
    car_number: Mapped[str | None] = mapped_column(String(8), nullable=True)
    group_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..6
    championship_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_standing: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("group_number between 1 and 6", name="ck_driver_group_number"),
        CheckConstraint("championship_points >= 0", name="ck_driver_championship_points"),
        Index("idx_drivers_points", "championship_points", "current_standing"),
    )


class Pick(Base):
    __tablename__ = "picks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.id"), nullable=False, index=True)
    race_id: Mapped[int] = mapped_column(ForeignKey("races.id"), nullable=False, index=True)
    average_speed: Mapped[float] = mapped_column(Float, nullable=False)
    driver_group1_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    driver_group2_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    driver_group3_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    driver_group4_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    driver_group5_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    driver_group6_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    profile: Mapped[Profile] = relationship("Profile", back_populates="picks")
    race: Mapped[Race] = relationship("Race", back_populates="picks")

    __table_args__ = (
        UniqueConstraint("user_id", "race_id", name="uq_pick_user_race"),
        CheckConstraint("average_speed > 0", name="ck_pick_average_speed"),
    )

    @property
    def driver_ids(self) -> tuple[int, int, int, int, int, int]:
        return (
            self.driver_group1_id,
            self.driver_group2_id,
            self.driver_group3_id,
            self.driver_group4_id,
            self.driver_group5_id,
            self.driver_group6_id,
        )


class Result(Base):
    __tablename__ = "results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    race_id: Mapped[int] = mapped_column(ForeignKey("races.id"), nullable=False, index=True)
    driver_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False, index=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    race: Mapped[Race] = relationship("Race", back_populates="results")

    __table_args__ = (
        UniqueConstraint("race_id", "driver_id", name="uq_result_race_driver"),
        CheckConstraint("points >= 0", name="ck_result_points"),
    )
