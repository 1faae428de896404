from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import IncentiveRules, settings
from .events import collect_events
from .models import (
    AttendanceRecord,
    BonusFineRecord,
    CustomAdjustment,
    DailyTaskFine,
    DailyTaskNA,
    DailyUpdate,
    MeetingAttendance,
    Project,
    Task,
    User,
    utcnow,
)
from .periods import UTC, day_bounds, days_elapsed, ensure_utc, local_day, months_between, period_bounds
from .state import RuntimeState

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly")
MISSING_DAILY_TASK_REASON = "No task created before the daily deadline"


@dataclass
class IncentiveMetrics:
    days_in_period: int = 0
    attendance_hours: float = 0.0
    attendance_days: int = 0
    absent_days: int = 0
    approved_updates: int = 0
    loom_and_progress_updates: int = 0
    missing_daily_updates: int = 0
    missed_team_meetings: int = 0
    missed_internal_meetings: int = 0
    missed_client_meetings: int = 0
    products_count: int = 0
    approved_client_projects: int = 0
    is_project_lead: bool = False
    lead_on_completed_project: bool = False
    months_worked: int = 0
    missing_daily_tasks_fine: float = 0.0
    custom_fines: float = 0.0
    task_bonus: float = 0.0
    task_fine: float = 0.0


@dataclass
class BonusBreakdown:
    products_bonus: float = 0.0
    attendance_bonus: float = 0.0
    checklist_bonus: float = 0.0
    loyalty_bonus: float = 0.0
    completed_projects_bonus: float = 0.0
    task_bonus: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.products_bonus
            + self.attendance_bonus
            + self.checklist_bonus
            + self.loyalty_bonus
            + self.completed_projects_bonus
            + self.task_bonus
        )


@dataclass
class FineBreakdown:
    missing_daily_updates_fine: float = 0.0
    missing_team_meetings_fine: float = 0.0
    missing_internal_meetings_fine: float = 0.0
    missing_client_meetings_fine: float = 0.0
    absence_fine: float = 0.0
    missing_daily_tasks_fine: float = 0.0
    task_fine: float = 0.0
    custom_fine: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.missing_daily_updates_fine
            + self.missing_team_meetings_fine
            + self.missing_internal_meetings_fine
            + self.missing_client_meetings_fine
            + self.absence_fine
            + self.missing_daily_tasks_fine
            + self.task_fine
            + self.custom_fine
        )


@dataclass
class ManualOverride:
    manual_bonus: Optional[float] = None
    manual_fine: Optional[float] = None
    admin_notes: Optional[str] = None
    approved_by_core_team: bool = False

    @classmethod
    def from_record(cls, record: Optional[BonusFineRecord]) -> Optional["ManualOverride"]:
        if record is None:
            return None
        return cls(
            manual_bonus=record.manual_bonus,
            manual_fine=record.manual_fine,
            admin_notes=record.admin_notes,
            approved_by_core_team=bool(record.approved_by_core_team),
        )


@dataclass
class IncentiveCalculation:
    base_amount: float
    bonuses: BonusBreakdown
    fines: FineBreakdown
    calculated_fine: float
    total_bonus: float
    total_fine: float
    net_amount: float
    metrics: IncentiveMetrics
    no_fine_conditions: List[str] = field(default_factory=list)
    no_payment_conditions: List[str] = field(default_factory=list)
    is_training_period: bool = False
    is_project_lead: bool = False
    manual_override_applied: bool = False
    approved_by_core_team: bool = False
    admin_notes: Optional[str] = None
    employee_id: Optional[int] = None
    employee_name: Optional[str] = None
    period: str = "monthly"
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    details: List[str] = field(default_factory=list)


def attendance_bonus(hours: float, rules: IncentiveRules) -> float:
    for threshold in sorted(rules.attendance_tiers, reverse=True):
        if hours > threshold:
            return rules.attendance_tiers[threshold]
    return 0.0


def absence_fine(absent_days: int, rules: IncentiveRules) -> float:
    for threshold in sorted(rules.absence_tiers, reverse=True):
        if absent_days >= threshold:
            return rules.absence_tiers[threshold]
    return 0.0


def grace_fine(occurrences: int, grace: int, rate: float) -> float:
    return max(0, occurrences - grace) * rate


def compute_incentives(
    metrics: IncentiveMetrics,
    rules: IncentiveRules,
    override: Optional[ManualOverride] = None,
) -> IncentiveCalculation:
    """Net the bonus and fine categories for one employee and period."""
    checklist_ok = (
        metrics.approved_updates > 0
        and metrics.loom_and_progress_updates / metrics.approved_updates >= rules.checklist_bonus_ratio
    )
    completed_projects_bonus = 0.0
    if metrics.products_count >= 1:
        multiplier = 2 if metrics.lead_on_completed_project else 1
        completed_projects_bonus = rules.completed_projects_bonus * multiplier

    bonuses = BonusBreakdown(
        products_bonus=rules.products_bonus if metrics.products_count > rules.products_bonus_threshold else 0.0,
        attendance_bonus=attendance_bonus(metrics.attendance_hours, rules),
        checklist_bonus=rules.checklist_bonus if checklist_ok else 0.0,
        loyalty_bonus=rules.loyalty_bonus if metrics.months_worked >= rules.loyalty_months else 0.0,
        completed_projects_bonus=completed_projects_bonus,
        task_bonus=metrics.task_bonus,
    )
    fines = FineBreakdown(
        missing_daily_updates_fine=grace_fine(
            metrics.missing_daily_updates, rules.missing_daily_update_grace, rules.missing_daily_update_rate
        ),
        missing_team_meetings_fine=grace_fine(
            metrics.missed_team_meetings, rules.team_meeting_grace, rules.team_meeting_rate
        ),
        missing_internal_meetings_fine=grace_fine(
            metrics.missed_internal_meetings, rules.internal_meeting_grace, rules.internal_meeting_rate
        ),
        missing_client_meetings_fine=grace_fine(
            metrics.missed_client_meetings, rules.client_meeting_grace, rules.client_meeting_rate
        ),
        absence_fine=absence_fine(metrics.absent_days, rules),
        missing_daily_tasks_fine=metrics.missing_daily_tasks_fine,
        task_fine=metrics.task_fine,
        custom_fine=metrics.custom_fines,
    )
    calculated_fine = fines.total

    no_fine_conditions: List[str] = []
    if metrics.products_count > rules.no_fine_products_threshold:
        no_fine_conditions.append(f"Developed more than {rules.no_fine_products_threshold} products")
    if metrics.approved_client_projects > rules.no_fine_client_projects_threshold:
        no_fine_conditions.append(f"Approved client projects > {rules.no_fine_client_projects_threshold}")
    is_training = metrics.months_worked < rules.training_months

    total_fine = calculated_fine
    if no_fine_conditions:
        total_fine = 0.0
    if is_training:
        total_fine = 0.0
    if metrics.is_project_lead and total_fine > 0:
        total_fine *= 2
    total_fine = max(0.0, total_fine)

    no_payment_conditions: List[str] = []
    if metrics.attendance_hours < rules.no_payment_min_hours:
        no_payment_conditions.append(f"Attendance < {rules.no_payment_min_hours:g} hours")
    if metrics.absent_days > rules.no_payment_max_absent_days:
        no_payment_conditions.append(f"Absent > {rules.no_payment_max_absent_days} days")
    if metrics.products_count == 0:
        no_payment_conditions.append("0 products")

    total_bonus = max(0.0, bonuses.total)

    approved = False
    override_applied = False
    admin_notes = None
    if override is not None:
        approved = override.approved_by_core_team
        admin_notes = override.admin_notes
        if override.manual_bonus is not None:
            total_bonus = max(0.0, float(override.manual_bonus))
            override_applied = True
        if override.manual_fine is not None:
            total_fine = max(0.0, float(override.manual_fine))
            override_applied = True

    net_amount = rules.base_amount + total_bonus - total_fine
    if no_payment_conditions and not approved:
        net_amount = 0.0

    return IncentiveCalculation(
        base_amount=rules.base_amount,
        bonuses=bonuses,
        fines=fines,
        calculated_fine=calculated_fine,
        total_bonus=total_bonus,
        total_fine=total_fine,
        net_amount=net_amount,
        metrics=metrics,
        no_fine_conditions=no_fine_conditions,
        no_payment_conditions=no_payment_conditions,
        is_training_period=is_training,
        is_project_lead=metrics.is_project_lead,
        manual_override_applied=override_applied,
        approved_by_core_team=approved,
        admin_notes=admin_notes,
    )


def _daily_deadline(day: dt.date, state: RuntimeState, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, state.daily_task_deadline, tzinfo=tz).astimezone(UTC)


def _daily_task_skip_reason(
    db: Session,
    employee_id: int,
    project_id: int,
    day: dt.date,
    window: Tuple[dt.datetime, dt.datetime],
) -> Optional[str]:
    marked_na = (
        db.query(DailyTaskNA.id)
        .filter(DailyTaskNA.employee_id == employee_id, DailyTaskNA.project_id == project_id, DailyTaskNA.day == day)
        .first()
    )
    if marked_na:
        return "marked NA"
    already_fined = (
        db.query(DailyTaskFine.id)
        .filter(
            DailyTaskFine.employee_id == employee_id,
            DailyTaskFine.project_id == project_id,
            DailyTaskFine.day == day,
        )
        .first()
    )
    if already_fined:
        return "already fined"
    window_start, window_end = window
    created = db.query(Task.created_at).filter(Task.project_id == project_id, Task.created_by == employee_id).all()
    for (created_at,) in created:
        if created_at is not None and window_start <= ensure_utc(created_at) < window_end:
            return "task created"
    return None


def _pending_daily_task_fines(
    db: Session,
    employee_id: int,
    now: dt.datetime,
    tz: dt.tzinfo,
    state: RuntimeState,
) -> List[Tuple[Project, float]]:
    today = local_day(now, tz)
    deadline_at = _daily_deadline(today, state, tz)
    if now < deadline_at:
        return []
    window = (day_bounds(today, tz)[0], deadline_at)
    pending: List[Tuple[Project, float]] = []
    for project in db.query(Project).filter(Project.status == "in_progress").order_by(Project.id).all():
        if employee_id not in project.lead_ids:
            continue
        if _daily_task_skip_reason(db, employee_id, project.id, today, window) is None:
            pending.append((project, state.daily_task_fine_amount))
    return pending


def gather_metrics(
    db: Session,
    employee: User,
    start_day: dt.date,
    end_day: dt.date,
    now: dt.datetime,
    tz: dt.tzinfo,
    state: RuntimeState,
    rules: IncentiveRules,
) -> Tuple[IncentiveMetrics, List[str]]:
    details: List[str] = []
    metrics = IncentiveMetrics(days_in_period=days_elapsed(start_day, now, tz))
    today = local_day(now, tz)

    attendance = (
        db.query(AttendanceRecord)
        .filter(
            AttendanceRecord.employee_id == employee.id,
            AttendanceRecord.day >= start_day,
            AttendanceRecord.day <= end_day,
        )
        .all()
    )
    metrics.attendance_days = len(attendance)
    metrics.attendance_hours = sum(
        record.hours_worked if record.hours_worked else rules.default_hours_per_record for record in attendance
    )
    metrics.absent_days = max(0, metrics.days_in_period - metrics.attendance_days)

    updates = (
        db.query(DailyUpdate)
        .filter(
            DailyUpdate.employee_id == employee.id,
            DailyUpdate.admin_approved.is_(True),
            DailyUpdate.day >= start_day,
            DailyUpdate.day <= end_day,
        )
        .all()
    )
    metrics.approved_updates = len(updates)
    metrics.loom_and_progress_updates = sum(
        1 for update in updates if update.recorded_loom_videos and update.updated_daily_progress
    )
    metrics.missing_daily_updates = max(0, metrics.days_in_period - metrics.approved_updates)

    missed = (
        db.query(MeetingAttendance.meeting_type, func.count(MeetingAttendance.id))
        .filter(
            MeetingAttendance.employee_id == employee.id,
            MeetingAttendance.attended.is_(False),
            MeetingAttendance.day >= start_day,
            MeetingAttendance.day <= end_day,
        )
        .group_by(MeetingAttendance.meeting_type)
        .all()
    )
    missed_by_type = dict(missed)
    metrics.missed_team_meetings = missed_by_type.get("team", 0)
    metrics.missed_internal_meetings = missed_by_type.get("internal", 0)
    metrics.missed_client_meetings = missed_by_type.get("client", 0)

    projects = [project for project in db.query(Project).all() if project.involves(employee.id)]
    completed = [project for project in projects if project.status == "completed"]
    metrics.products_count = len(completed)
    metrics.approved_client_projects = sum(1 for project in completed if project.client_progress == 100)
    metrics.is_project_lead = any(employee.id in project.lead_ids for project in projects)
    metrics.lead_on_completed_project = any(employee.id in project.lead_ids for project in completed)

    joined = employee.joined_at or (local_day(employee.created_at, tz) if employee.created_at else None)
    metrics.months_worked = months_between(joined, today)

    recorded_fines = (
        db.query(DailyTaskFine)
        .filter(
            DailyTaskFine.employee_id == employee.id,
            DailyTaskFine.day >= start_day,
            DailyTaskFine.day <= end_day,
        )
        .all()
    )
    metrics.missing_daily_tasks_fine = sum(fine.amount for fine in recorded_fines)
    if start_day <= today <= end_day:
        for project, amount in _pending_daily_task_fines(db, employee.id, now, tz, state):
            metrics.missing_daily_tasks_fine += amount
            details.append(f"Pending fine {amount:g} for {project.name}: no task created today before the deadline")

    custom = (
        db.query(func.coalesce(func.sum(CustomAdjustment.value), 0))
        .filter(
            CustomAdjustment.employee_id == employee.id,
            CustomAdjustment.kind == "fine",
            CustomAdjustment.unit == "currency",
            CustomAdjustment.day >= start_day,
            CustomAdjustment.day <= end_day,
        )
        .scalar()
    )
    metrics.custom_fines = float(custom or 0)

    ledger = collect_events(db, start_day, end_day, now, tz, employee_id=employee.id)
    for event in ledger.events:
        if event.outcome == "bonus":
            metrics.task_bonus += event.currency
        else:
            metrics.task_fine += event.currency
            details.append(f"{event.facts.entity.title()} '{event.facts.title}' {event.reason.replace('_', ' ')}: {event.currency:g}")

    return metrics, details


def _override_record(db: Session, employee_id: int, period: str, today: dt.date) -> Optional[BonusFineRecord]:
    return (
        db.query(BonusFineRecord)
        .filter(
            BonusFineRecord.employee_id == employee_id,
            BonusFineRecord.period == period,
            BonusFineRecord.month == today.month,
            BonusFineRecord.year == today.year,
        )
        .one_or_none()
    )


def calculate(
    db: Session,
    employee_id: int,
    period: str = "monthly",
    *,
    now: Optional[dt.datetime] = None,
    state: Optional[RuntimeState] = None,
    tz: Optional[dt.tzinfo] = None,
    rules: Optional[IncentiveRules] = None,
) -> IncentiveCalculation:
    if period not in PERIODS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown period")
    employee = db.get(User, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    now = ensure_utc(now) if now else utcnow()
    tz = tz or ZoneInfo(settings.timezone)
    state = state or RuntimeState(settings)
    rules = rules or settings.incentives

    start_day, end_day = period_bounds(period, now, tz)
    metrics, details = gather_metrics(db, employee, start_day, end_day, now, tz, state, rules)
    override = ManualOverride.from_record(_override_record(db, employee.id, period, local_day(now, tz)))
    result = compute_incentives(metrics, rules, override)
    return replace(
        result,
        employee_id=employee.id,
        employee_name=employee.name,
        period=period,
        start_date=start_day,
        end_date=end_day,
        details=details,
    )


def calculate_all(
    db: Session,
    period: str = "monthly",
    *,
    now: Optional[dt.datetime] = None,
    state: Optional[RuntimeState] = None,
) -> Tuple[List[IncentiveCalculation], List[Dict[str, Any]]]:
    employees = (
        db.query(User)
        .filter(User.role == "employee", User.is_approved.is_(True))
        .order_by(User.name)
        .all()
    )
    results: List[IncentiveCalculation] = []
    errors: List[Dict[str, Any]] = []
    for employee in employees:
        try:
            results.append(calculate(db, employee.id, period, now=now, state=state))
        except Exception as exc:
            logger.exception("Incentive calculation failed for employee %s", employee.id)
            errors.append({"employee_id": employee.id, "error": str(exc)})
    return results, errors


def save_override(
    db: Session,
    employee_id: int,
    period: str,
    month: int,
    year: int,
    *,
    manual_bonus: Optional[float] = None,
    manual_fine: Optional[float] = None,
    admin_notes: Optional[str] = None,
    approved_by_core_team: Optional[bool] = None,
) -> BonusFineRecord:
    if db.get(User, employee_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    record = (
        db.query(BonusFineRecord)
        .filter(
            BonusFineRecord.employee_id == employee_id,
            BonusFineRecord.period == period,
            BonusFineRecord.month == month,
            BonusFineRecord.year == year,
        )
        .one_or_none()
    )
    if record is None:
        record = BonusFineRecord(employee_id=employee_id, period=period, month=month, year=year)
        db.add(record)
    record.manual_bonus = manual_bonus
    record.manual_fine = manual_fine
    record.admin_notes = admin_notes
    if approved_by_core_team is not None:
        record.approved_by_core_team = approved_by_core_team
    db.commit()
    db.refresh(record)
    return record


def _accumulate_monthly_fine(db: Session, employee_id: int, day: dt.date, amount: float) -> BonusFineRecord:
    record = (
        db.query(BonusFineRecord)
        .filter(
            BonusFineRecord.employee_id == employee_id,
            BonusFineRecord.period == "monthly",
            BonusFineRecord.month == day.month,
            BonusFineRecord.year == day.year,
        )
        .one_or_none()
    )
    if record is None:
        record = BonusFineRecord(
            employee_id=employee_id,
            period="monthly",
            month=day.month,
            year=day.year,
            missing_daily_tasks_fine=0.0,
        )
        db.add(record)
    record.missing_daily_tasks_fine = (record.missing_daily_tasks_fine or 0.0) + amount
    return record


@dataclass
class DailyTaskFineSummary:
    day: dt.date
    deadline: dt.datetime
    before_deadline: bool = False
    applied: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def check_daily_task_fines(
    db: Session,
    state: RuntimeState,
    *,
    now: Optional[dt.datetime] = None,
    tz: Optional[dt.tzinfo] = None,
) -> DailyTaskFineSummary:
    """Fine project leads who created no task before today's deadline."""
    now = ensure_utc(now) if now else utcnow()
    tz = tz or ZoneInfo(settings.timezone)
    today = local_day(now, tz)
    deadline_at = _daily_deadline(today, state, tz)
    summary = DailyTaskFineSummary(day=today, deadline=deadline_at)
    if now < deadline_at:
        summary.before_deadline = True
        return summary

    window = (day_bounds(today, tz)[0], deadline_at)
    amount = state.daily_task_fine_amount
    projects = db.query(Project).filter(Project.status == "in_progress").order_by(Project.id).all()
    for project in projects:
        for lead_id in project.lead_ids:
            entry = {"employee_id": lead_id, "project_id": project.id, "project_name": project.name}
            try:
                with db.begin_nested():
                    lead = db.get(User, lead_id)
                    if lead is None or lead.role != "employee":
                        summary.skipped.append({**entry, "reason": "unknown employee"})
                        continue
                    reason = _daily_task_skip_reason(db, lead_id, project.id, today, window)
                    if reason:
                        summary.skipped.append({**entry, "reason": reason})
                        continue
                    db.add(
                        DailyTaskFine(
                            employee_id=lead_id,
                            project_id=project.id,
                            day=today,
                            amount=amount,
                            reason=MISSING_DAILY_TASK_REASON,
                        )
                    )
                    _accumulate_monthly_fine(db, lead_id, today, amount)
                    db.flush()
            except Exception as exc:
                logger.exception("Daily task fine check failed for employee %s on project %s", lead_id, project.id)
                summary.errors.append({**entry, "error": str(exc)})
                continue
            summary.applied.append({**entry, "amount": amount})
    db.commit()
    logger.info(
        "Daily task fine check %s: applied=%s skipped=%s errors=%s",
        today,
        len(summary.applied),
        len(summary.skipped),
        len(summary.errors),
    )
    return summary


def mark_daily_task_na(
    db: Session,
    employee_id: int,
    project_id: int,
    day: dt.date,
    is_na: bool = True,
) -> Optional[DailyTaskNA]:
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if employee_id not in project.lead_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only lead assignees can mark NA")
    record = (
        db.query(DailyTaskNA)
        .filter(DailyTaskNA.employee_id == employee_id, DailyTaskNA.project_id == project_id, DailyTaskNA.day == day)
        .one_or_none()
    )
    if is_na:
        if record is None:
            record = DailyTaskNA(employee_id=employee_id, project_id=project_id, day=day)
            db.add(record)
        db.commit()
        db.refresh(record)
        return record
    if record is not None:
        db.delete(record)
        db.commit()
    return None
