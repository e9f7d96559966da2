"""
gritful/models/challenge.py
Challenge and task (metric) models.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

TaskType = Literal["boolean", "number", "duration", "choice", "text", "file"]
TaskFrequency = Literal["daily", "weekly", "monthly", "onetime"]
PeriodFrequency = Literal["weekly", "monthly"]
ScoringMode = Literal["binary", "scaled", "tiered"]
ThresholdType = Literal["min", "max"]
ChallengeState = Literal["upcoming", "active", "grace_period", "archived", "ongoing"]


class Tier(BaseModel):
    """One step of a tiered scoring ladder."""

    model_config = ConfigDict(frozen=True)

    threshold: float
    points: int = Field(ge=0)


class TaskFields(BaseModel):
    """Fields shared by stored tasks and task creation requests."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=100)
    type: TaskType
    required: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    points: int = Field(default=1, ge=0)
    scoring_mode: Optional[ScoringMode] = None
    threshold: Optional[float] = None
    threshold_type: ThresholdType = "min"
    tiers: Optional[List[Tier]] = None
    frequency: TaskFrequency = "daily"
    deadline: Optional[str] = Field(default=None, description="ISO date; onetime tasks only")

    @model_validator(mode="after")
    def _check_scoring(self):
        if self.scoring_mode == "tiered" and not self.tiers:
            raise ValueError("Tiered scoring requires at least one tier")
        if self.deadline and self.frequency != "onetime":
            raise ValueError("Only one-time tasks can have a deadline")
        return self


class Task(TaskFields):
    """A task (metric) as stored in ``challenges.metrics``."""

    id: str
    order: int = 0
    created_at: Optional[str] = None


class TaskCreate(TaskFields):
    pass


class TaskEdit(TaskFields):
    """A task in a settings update; ``id`` refers to an existing task, omitted for new ones."""

    id: Optional[str] = None


class ChallengeCreate(BaseModel):
    """Challenge creation request (wizard steps collapsed into one payload)."""

    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    starts_at: date
    duration_days: Optional[int] = Field(default=30, ge=1, le=365, description="None = ongoing challenge")
    metrics: List[TaskCreate] = Field(min_length=1)
    grace_period_days: int = Field(default=7, ge=0, le=365)
    is_public: bool = True
    lock_entries_after_day: bool = False
    enable_streak_bonus: bool = False
    streak_bonus_points: int = Field(default=5, ge=0)
    enable_perfect_day_bonus: bool = False
    perfect_day_bonus_points: int = Field(default=10, ge=0)


class ChallengeSettingsUpdate(BaseModel):
    """Creator edits after creation. Only fields present in the request are changed."""

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    metrics: Optional[List[TaskEdit]] = Field(default=None, min_length=1)
    grace_period_days: Optional[int] = Field(default=None, ge=0, le=365)
    lock_entries_after_day: Optional[bool] = None
    enable_streak_bonus: Optional[bool] = None
    streak_bonus_points: Optional[int] = Field(default=None, ge=0)
    enable_perfect_day_bonus: Optional[bool] = None
    perfect_day_bonus_points: Optional[int] = Field(default=None, ge=0)


class ChallengeUpdateMessage(BaseModel):
    subject: Optional[str] = Field(default=None, max_length=200)
    message: str = Field(min_length=1, max_length=5000)


@dataclass
class ChallengeStateResult:
    """Lifecycle state of a challenge at one reference date."""

    state: ChallengeState
    is_entry_allowed: bool
    days_in_grace_period: Optional[int] = None
    grace_period_ends_at: Optional[date] = None
    days_remaining_in_grace: Optional[int] = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        if self.grace_period_ends_at is not None:
            payload["grace_period_ends_at"] = self.grace_period_ends_at.isoformat()
        return payload
