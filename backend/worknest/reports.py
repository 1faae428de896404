from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .checklists import items_by_label, resolve_config, score_checklist
from .config import settings
from .events import collect_events
from .models import ChecklistConfig, CustomAdjustment, DailyUpdate, Hackathon, Project, User, utcnow
from .periods import deadline_instant, ensure_utc, iter_days, local_day
from .utils import as_amount, normalize_identifier

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 366


@dataclass
class CategoryAmounts:
    reward_points: float = 0.0
    reward_currency: float = 0.0
    earned_points: float = 0.0
    earned_currency: float = 0.0
    fine_points: float = 0.0
    fine_currency: float = 0.0

    @property
    def net_points(self) -> float:
        return self.earned_points - self.fine_points

    @property
    def net_currency(self) -> float:
        return self.earned_currency - self.fine_currency


@dataclass
class SummaryRow:
    key: str
    employee_id: int
    employee_name: str
    date: dt.date
    project: CategoryAmounts = field(default_factory=CategoryAmounts)
    checklist: CategoryAmounts = field(default_factory=CategoryAmounts)
    task: CategoryAmounts = field(default_factory=CategoryAmounts)
    hackathon_points: float = 0.0
    hackathon_currency: float = 0.0
    custom_bonus_points: float = 0.0
    custom_bonus_currency: float = 0.0
    custom_fine_points: float = 0.0
    custom_fine_currency: float = 0.0
    custom_entries: List[Dict[str, Any]] = field(default_factory=list)
    total_points: float = 0.0
    total_currency: float = 0.0

    def finalize(self) -> None:
        self.total_points = (
            self.project.net_points
            + self.checklist.net_points
            + self.task.net_points
            + self.hackathon_points
            + self.custom_bonus_points
            - self.custom_fine_points
        )
        self.total_currency = (
            self.project.net_currency
            + self.checklist.net_currency
            + self.task.net_currency
            + self.hackathon_currency
            + self.custom_bonus_currency
            - self.custom_fine_currency
        )


def row_key(employee_id: int, day: dt.date) -> str:
    return f"{employee_id}|{day.isoformat()}"


class _SummaryBuilder:
    def __init__(self, db: Session, start_day: dt.date, end_day: dt.date, now: dt.datetime, tz: dt.tzinfo):
        self.db = db
        self.start_day = start_day
        self.end_day = end_day
        self.now = now
        self.tz = tz
        self.rows: Dict[str, SummaryRow] = {}
        self.employees: Dict[int, User] = {}

    def in_range(self, day: Optional[dt.date]) -> bool:
        return day is not None and self.start_day <= day <= self.end_day

    def row(self, employee_id: Optional[int], day: dt.date) -> Optional[SummaryRow]:
        if employee_id is None:
            return None
        return self.rows.get(row_key(employee_id, day))

    def initialize(self) -> None:
        employees = (
            self.db.query(User)
            .filter(User.role == "employee", User.is_approved.is_(True))
            .order_by(User.id)
            .all()
        )
        for employee in employees:
            self.employees[employee.id] = employee
            for day in iter_days(self.start_day, self.end_day):
                key = row_key(employee.id, day)
                self.rows[key] = SummaryRow(key=key, employee_id=employee.id, employee_name=employee.name, date=day)

    def fold_checklists(self) -> None:
        configs = self.db.query(ChecklistConfig).order_by(ChecklistConfig.id).all()
        if not configs:
            return
        updates = (
            self.db.query(DailyUpdate)
            .filter(
                DailyUpdate.admin_approved.is_(True),
                DailyUpdate.day >= self.start_day,
                DailyUpdate.day <= self.end_day,
            )
            .all()
        )
        items_cache: Dict[int, Dict] = {}
        for update in updates:
            row = self.row(update.employee_id, update.day)
            if row is None:
                continue
            if update.employee_id not in items_cache:
                employee = self.employees[update.employee_id]
                config = resolve_config(configs, employee.id, employee.skills or [])
                items_cache[update.employee_id] = items_by_label(config)
            score = score_checklist(update.checklist or [], items_cache[update.employee_id])
            row.checklist.reward_points += score.total_points
            row.checklist.reward_currency += score.total_currency
            row.checklist.earned_points += score.earned_points
            row.checklist.earned_currency += score.earned_currency
            row.checklist.fine_points += score.fine_points
            row.checklist.fine_currency += score.fine_currency

    def fold_tasks(self) -> None:
        ledger = collect_events(self.db, self.start_day, self.end_day, self.now, self.tz)
        for event in ledger.events:
            facts = event.facts
            for employee_id in facts.assignee_ids:
                row = self.row(employee_id, event.day)
                if row is None:
                    continue
                row.task.reward_points += facts.bonus_points
                row.task.reward_currency += facts.bonus_currency
                if event.outcome == "bonus":
                    row.task.earned_points += event.points
                    row.task.earned_currency += event.currency
                else:
                    row.task.fine_points += event.points
                    row.task.fine_currency += event.currency

    def fold_projects(self) -> None:
        for project in self.db.query(Project).order_by(Project.id).all():
            created = project.assigned_at or project.created_at
            created_day = local_day(created, self.tz) if created else None
            completed = project.status == "completed"
            completed_day = local_day(project.completed_at, self.tz) if completed and project.completed_at else None
            deadline = deadline_instant(project.deadline, None, self.tz)
            overdue = not completed and deadline is not None and self.now > deadline
            for lead_id in project.lead_ids:
                if self.in_range(created_day):
                    row = self.row(lead_id, created_day)
                    if row is not None:
                        row.project.reward_points += as_amount(project.bonus_points)
                        row.project.reward_currency += as_amount(project.bonus_currency)
                if completed_day is not None and self.in_range(completed_day):
                    row = self.row(lead_id, completed_day)
                    if row is not None:
                        row.project.earned_points += as_amount(project.bonus_points)
                        row.project.earned_currency += as_amount(project.bonus_currency)
                if overdue and self.in_range(project.deadline):
                    row = self.row(lead_id, project.deadline)
                    if row is not None:
                        row.project.fine_points += as_amount(project.penalty_points)
                        row.project.fine_currency += as_amount(project.penalty_currency)

    def fold_hackathons(self) -> None:
        hackathons = self.db.query(Hackathon).filter(Hackathon.winner_id.isnot(None)).all()
        for hackathon in hackathons:
            if hackathon.winner_declared_at is None:
                continue
            winner_id = normalize_identifier(hackathon.winner_id)
            if winner_id not in self.employees:
                continue
            day = local_day(hackathon.winner_declared_at, self.tz)
            row = self.row(winner_id, day) if self.in_range(day) else None
            if row is None:
                continue
            points = hackathon.prize_points if hackathon.prize_points is not None else hackathon.prize_pool
            row.hackathon_points += as_amount(points)
            row.hackathon_currency += as_amount(hackathon.prize_currency)

    def fold_custom(self) -> None:
        entries = (
            self.db.query(CustomAdjustment)
            .filter(CustomAdjustment.day >= self.start_day, CustomAdjustment.day <= self.end_day)
            .order_by(CustomAdjustment.id)
            .all()
        )
        for entry in entries:
            row = self.row(entry.employee_id, entry.day)
            if row is None:
                employee = self.db.get(User, entry.employee_id)
                if employee is None:
                    logger.warning("Skipping custom entry %s for unknown employee %s", entry.id, entry.employee_id)
                    continue
                key = row_key(employee.id, entry.day)
                row = self.rows[key] = SummaryRow(
                    key=key, employee_id=employee.id, employee_name=employee.name, date=entry.day
                )
            value = as_amount(entry.value)
            if entry.kind == "bonus":
                if entry.unit == "points":
                    row.custom_bonus_points += value
                else:
                    row.custom_bonus_currency += value
            elif entry.unit == "points":
                row.custom_fine_points += value
            else:
                row.custom_fine_currency += value
            row.custom_entries.append(
                {
                    "id": entry.id,
                    "kind": entry.kind,
                    "unit": entry.unit,
                    "value": value,
                    "description": entry.description,
                }
            )

    def result(self) -> List[SummaryRow]:
        rows = list(self.rows.values())
        for row in rows:
            row.finalize()
        rows.sort(key=lambda row: row.employee_name.lower())
        rows.sort(key=lambda row: row.date, reverse=True)
        return rows


def _validate_range(start_day: dt.date, end_day: dt.date) -> None:
    if start_day > end_day:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Start date must not be after end date")
    if (end_day - start_day).days >= MAX_RANGE_DAYS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Date range is too large")


def build_bonus_summary(
    db: Session,
    start_day: dt.date,
    end_day: dt.date,
    *,
    now: Optional[dt.datetime] = None,
    tz: Optional[dt.tzinfo] = None,
) -> List[SummaryRow]:
    _validate_range(start_day, end_day)
    builder = _SummaryBuilder(
        db,
        start_day,
        end_day,
        ensure_utc(now) if now else utcnow(),
        tz or ZoneInfo(settings.timezone),
    )
    builder.initialize()
    builder.fold_checklists()
    builder.fold_tasks()
    builder.fold_projects()
    builder.fold_hackathons()
    builder.fold_custom()
    return builder.result()


def list_incentive_events(
    db: Session,
    employee_id: int,
    start_day: dt.date,
    end_day: dt.date,
    *,
    now: Optional[dt.datetime] = None,
    tz: Optional[dt.tzinfo] = None,
) -> List[Dict[str, Any]]:
    _validate_range(start_day, end_day)
    if db.get(User, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    ledger = collect_events(
        db,
        start_day,
        end_day,
        ensure_utc(now) if now else utcnow(),
        tz or ZoneInfo(settings.timezone),
        employee_id=employee_id,
    )
    events = sorted(ledger.events, key=lambda event: event.occurred_at, reverse=True)
    return [
        {
            "entity": event.facts.entity,
            "entity_id": event.facts.entity_id,
            "title": event.facts.title,
            "project_name": event.facts.project_name,
            "source": event.facts.source,
            "outcome": event.outcome,
            "reason": event.reason,
            "date": event.day,
            "occurred_at": event.occurred_at,
            "points": event.points,
            "currency": event.currency,
        }
        for event in events
    ]


def add_custom_adjustment(
    db: Session,
    employee_id: int,
    day: dt.date,
    *,
    kind: Optional[str] = None,
    unit: Optional[str] = None,
    value: Optional[float] = None,
    description: Optional[str] = None,
    fine_points: Optional[float] = None,
    fine_currency: Optional[float] = None,
) -> List[CustomAdjustment]:
    if db.get(User, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    entries: List[CustomAdjustment] = []
    if kind is not None and unit is not None and value is not None:
        entries.append(
            CustomAdjustment(employee_id=employee_id, day=day, kind=kind, unit=unit, value=value, description=description)
        )
    else:
        # legacy payloads carry fine amounts per unit
        if fine_points:
            entries.append(
                CustomAdjustment(
                    employee_id=employee_id, day=day, kind="fine", unit="points", value=fine_points, description=description
                )
            )
        if fine_currency:
            entries.append(
                CustomAdjustment(
                    employee_id=employee_id,
                    day=day,
                    kind="fine",
                    unit="currency",
                    value=fine_currency,
                    description=description,
                )
            )
    if not entries:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No adjustment value given")
    db.add_all(entries)
    db.commit()
    for entry in entries:
        db.refresh(entry)
    return entries
