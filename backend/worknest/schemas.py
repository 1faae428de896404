from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


Period = Literal["daily", "weekly", "monthly"]


class ResetRequest(BaseModel):
    scope: Literal["project", "user", "all"] = "all"
    project_id: Optional[int] = None
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def _require_target(self) -> "ResetRequest":
        if self.scope == "project" and self.project_id is None:
            raise ValueError("project_id is required for project scope")
        if self.scope == "user" and self.user_id is None:
            raise ValueError("user_id is required for user scope")
        return self


class ResetSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    scope: str
    examined: int
    reset: int
    deadline_passed: int
    auto_completed: int
    skipped: int
    errors: int
    error_details: List[Dict[str, Any]]


class FineControlResponse(BaseModel):
    daily_task_deadline_hour: int
    daily_task_deadline_minute: int
    daily_task_fine_amount: float


class FineControlUpdateRequest(BaseModel):
    daily_task_deadline_hour: Optional[int] = Field(default=None, ge=0, le=23)
    daily_task_deadline_minute: Optional[int] = Field(default=None, ge=0, le=59)
    daily_task_fine_amount: Optional[float] = Field(default=None, ge=0)


class DailyTaskFineSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    day: dt.date
    deadline: dt.datetime
    before_deadline: bool
    applied: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "deadline": _serialize_datetime(self.deadline),
            "before_deadline": self.before_deadline,
            "applied": self.applied,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class DailyTaskNARequest(BaseModel):
    employee_id: int
    project_id: int
    date: Optional[dt.date] = None
    is_na: bool = True


class DailyTaskNAResponse(BaseModel):
    employee_id: int
    project_id: int
    date: dt.date
    is_na: bool


class CalculateRequest(BaseModel):
    employee_id: int
    period: Period = "monthly"


class CalculateAllRequest(BaseModel):
    period: Period = "monthly"


class BonusBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    products_bonus: float
    attendance_bonus: float
    checklist_bonus: float
    loyalty_bonus: float
    completed_projects_bonus: float
    task_bonus: float


class FineBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    missing_daily_updates_fine: float
    missing_team_meetings_fine: float
    missing_internal_meetings_fine: float
    missing_client_meetings_fine: float
    absence_fine: float
    missing_daily_tasks_fine: float
    task_fine: float
    custom_fine: float


class IncentiveMetricsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    days_in_period: int
    attendance_hours: float
    attendance_days: int
    absent_days: int
    approved_updates: int
    loom_and_progress_updates: int
    missing_daily_updates: int
    missed_team_meetings: int
    missed_internal_meetings: int
    missed_client_meetings: int
    products_count: int
    approved_client_projects: int
    is_project_lead: bool
    lead_on_completed_project: bool
    months_worked: int


class IncentiveCalculationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    employee_id: Optional[int]
    employee_name: Optional[str]
    period: str
    start_date: Optional[dt.date]
    end_date: Optional[dt.date]
    base_amount: float
    bonuses: BonusBreakdownResponse
    fines: FineBreakdownResponse
    calculated_fine: float
    total_bonus: float
    total_fine: float
    net_amount: float
    metrics: IncentiveMetricsResponse
    no_fine_conditions: List[str]
    no_payment_conditions: List[str]
    is_training_period: bool
    is_project_lead: bool
    manual_override_applied: bool
    approved_by_core_team: bool
    admin_notes: Optional[str]
    details: List[str]


class CalculateAllResponse(BaseModel):
    results: List[IncentiveCalculationResponse]
    errors: List[Dict[str, Any]]


class BonusFineOverrideRequest(BaseModel):
    employee_id: int
    period: Period = "monthly"
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000)
    manual_bonus: Optional[float] = None
    manual_fine: Optional[float] = None
    admin_notes: Optional[str] = None
    approved_by_core_team: Optional[bool] = None


class BonusFineRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    employee_id: int
    period: str
    month: int
    year: int
    manual_bonus: Optional[float]
    manual_fine: Optional[float]
    admin_notes: Optional[str]
    approved_by_core_team: bool
    missing_daily_tasks_fine: float


class CategoryAmountsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    reward_points: float
    reward_currency: float
    earned_points: float
    earned_currency: float
    fine_points: float
    fine_currency: float


class SummaryRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    key: str
    employee_id: int
    employee_name: str
    date: dt.date
    project: CategoryAmountsResponse
    checklist: CategoryAmountsResponse
    task: CategoryAmountsResponse
    hackathon_points: float
    hackathon_currency: float
    custom_bonus_points: float
    custom_bonus_currency: float
    custom_fine_points: float
    custom_fine_currency: float
    custom_entries: List[Dict[str, Any]]
    total_points: float
    total_currency: float


class IncentiveEventResponse(BaseModel):
    entity: str
    entity_id: int
    title: str
    project_name: Optional[str]
    source: str
    outcome: str
    reason: str
    date: dt.date
    occurred_at: dt.datetime
    points: float
    currency: float

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": self.entity_id,
            "title": self.title,
            "project_name": self.project_name,
            "source": self.source,
            "outcome": self.outcome,
            "reason": self.reason,
            "date": self.date.isoformat(),
            "occurred_at": _serialize_datetime(self.occurred_at),
            "points": self.points,
            "currency": self.currency,
        }


class CustomAdjustmentRequest(BaseModel):
    employee_id: int
    date: dt.date
    kind: Optional[Literal["bonus", "fine"]] = None
    unit: Optional[Literal["points", "currency"]] = None
    value: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    fine_points: Optional[float] = Field(default=None, ge=0)
    fine_currency: Optional[float] = Field(default=None, ge=0)


class CustomAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    employee_id: int
    day: dt.date
    kind: str
    unit: str
    value: float
    description: Optional[str]
