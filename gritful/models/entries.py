"""
gritful/models/entries.py
Entry and completion request/response models.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DailyEntryRequest(BaseModel):
    metric_data: Dict[str, Any] = Field(default_factory=dict)
    is_completed: bool
    notes: Optional[str] = Field(default=None, max_length=2000)
    target_date: Optional[date] = Field(default=None, description="Defaults to today in the caller's timezone")
    tz: str = Field(default="UTC", description="IANA timezone of the caller")


class TaskCompletionRequest(BaseModel):
    value: Any = None
    tz: str = Field(default="UTC", description="IANA timezone of the caller")


@dataclass
class EntryScore:
    """Points for one daily submission."""

    base_points: int
    bonus_points: int
    is_perfect_day: bool

    @property
    def total(self) -> int:
        return self.base_points + self.bonus_points


@dataclass
class ParticipantTotals:
    """Recomputed participant aggregates (the source of truth for display)."""

    participant_id: str
    current_streak: int
    longest_streak: int
    total_points: int
    new_achievements: List[dict]

    def to_dict(self) -> dict:
        return asdict(self)
