"""Trip request and itinerary document models."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import DEFAULT_DURATION_DAYS, MAX_DURATION_DAYS


class TripParameters(BaseModel):
    """Validated request payload that starts an itinerary job."""

    destination: str
    duration_days: Optional[int] = Field(default=None, ge=1, le=MAX_DURATION_DAYS)
    depart_date: Optional[date] = None
    return_date: Optional[date] = None
    flexible_dates: bool = False
    adults: int = Field(default=2, ge=0)
    children: int = Field(default=0, ge=0)
    interests: List[str] = Field(default_factory=list)
    vibes: List[str] = Field(default_factory=list)
    dinner_choices: List[str] = Field(default_factory=list)
    budget: Optional[float] = Field(default=None, ge=0)
    currency: str = "USD"
    flexible_budget: bool = False
    trip_nickname: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("destination must not be blank")
        return value

    @model_validator(mode="after")
    def _infer_duration(self) -> "TripParameters":
        if self.duration_days is not None:
            return self
        if self.depart_date and self.return_date and self.return_date >= self.depart_date:
            span = (self.return_date - self.depart_date).days + 1
            self.duration_days = min(span, MAX_DURATION_DAYS)
        elif self.depart_date and not self.return_date:
            self.duration_days = 1
        else:
            self.duration_days = DEFAULT_DURATION_DAYS
        return self

    @property
    def has_fixed_dates(self) -> bool:
        return self.depart_date is not None and not self.flexible_dates


class TravelTip(BaseModel):
    title: str
    description: str


class MapPoint(BaseModel):
    """Location to plot on the itinerary map."""

    label: str
    query: str
    day: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DayPlan(BaseModel):
    """One day of the itinerary."""

    day: int
    date: Optional[str] = None
    title: str
    summary: str
    location: str
    morning: List[str] = Field(default_factory=list)
    afternoon: List[str] = Field(default_factory=list)
    evening: List[str] = Field(default_factory=list)
    dining: List[str] = Field(default_factory=list)
    logistics: List[str] = Field(default_factory=list)
    highlight: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    low_confidence: bool = False


class Document(BaseModel):
    """Normalized itinerary ready for display."""

    title: str
    destination: str
    intro: str
    duration_days: int
    days: List[DayPlan] = Field(default_factory=list)
    travel_tips: List[TravelTip] = Field(default_factory=list)
    key_takeaways: List[str] = Field(default_factory=list)
    map_points: List[MapPoint] = Field(default_factory=list)
    generated_days: int = 0
    padded_days: int = 0
    truncated_days: int = 0
    parse_error: Optional[str] = None
