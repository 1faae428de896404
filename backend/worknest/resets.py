from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy.orm import Query, Session, selectinload

from .config import settings
from .events import facts_from_task, resolve_deadline
from .history import HistoryArchiver
from .models import RECURRING_KINDS, Project, Task, User, utcnow
from .periods import deadline_instant, ensure_utc, local_day
from .recurrence import config_for, should_reset
from .utils import first_present, normalize_identifier

logger = logging.getLogger(__name__)

PERIODIC_KINDS = ("daily", "weekly", "monthly")
OPEN_STATUSES = ("pending", "in_progress", "overdue")

RESET = "reset"
DEADLINE_PASSED = "deadline_passed"
AUTO_COMPLETED = "auto_completed"
SKIPPED = "skipped"


@dataclass
class ResetSummary:
    scope: str
    examined: int = 0
    reset: int = 0
    deadline_passed: int = 0
    auto_completed: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        if outcome == RESET:
            self.reset += 1
        elif outcome == DEADLINE_PASSED:
            self.deadline_passed += 1
        elif outcome == AUTO_COMPLETED:
            self.auto_completed += 1
        else:
            self.skipped += 1


class ResetExecutor:
    """Archives and resets recurring tasks whose cycle has rolled over."""

    def __init__(
        self,
        db: Session,
        archiver: Optional[HistoryArchiver] = None,
        tz: Optional[dt.tzinfo] = None,
        now: Optional[dt.datetime] = None,
    ):
        self.db = db
        self.archiver = archiver or HistoryArchiver(db)
        self.tz = tz or ZoneInfo(settings.timezone)
        self.now = ensure_utc(now) if now else utcnow()

    @property
    def today(self) -> dt.date:
        return local_day(self.now, self.tz)

    def _task_query(self) -> Query:
        return (
            self.db.query(Task)
            .options(selectinload(Task.subtasks), selectinload(Task.project))
            .order_by(Task.id)
        )

    def reset_project(self, project_id: int) -> ResetSummary:
        if self.db.get(Project, project_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
        tasks = self._task_query().filter(Task.project_id == project_id, Task.kind.in_(RECURRING_KINDS)).all()
        return self._run(f"project:{project_id}", tasks)

    def reset_user(self, user_id: int) -> ResetSummary:
        identifier = normalize_identifier(user_id)
        if identifier is None or self.db.get(User, identifier) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        tasks = [
            task
            for task in self._task_query().filter(Task.kind.in_(RECURRING_KINDS)).all()
            if identifier in task.assignee_ids
        ]
        return self._run(f"user:{identifier}", tasks)

    def reset_all(self) -> ResetSummary:
        tasks = self._task_query().filter(Task.kind.in_(RECURRING_KINDS)).all()
        overdue_one_time = (
            self._task_query()
            .filter(
                Task.kind == "one-time",
                Task.status.in_(OPEN_STATUSES),
                Task.approval_status != "deadline_passed",
            )
            .all()
        )
        return self._run("all", [*tasks, *overdue_one_time])

    def _run(self, scope: str, tasks: Iterable[Task]) -> ResetSummary:
        summary = ResetSummary(scope=scope)
        for task in tasks:
            task_id = task.id
            summary.examined += 1
            try:
                with self.db.begin_nested():
                    outcome = self.process(task)
            except Exception as exc:
                logger.exception("Reset failed for task %s", task_id)
                summary.errors += 1
                summary.error_details.append({"task_id": task_id, "error": str(exc)})
                continue
            summary.record(outcome)
        self.db.commit()
        logger.info(
            "Recurring reset %s: examined=%s reset=%s deadline_passed=%s auto_completed=%s skipped=%s errors=%s",
            scope,
            summary.examined,
            summary.reset,
            summary.deadline_passed,
            summary.auto_completed,
            summary.skipped,
            summary.errors,
        )
        return summary

    def process(self, task: Task) -> str:
        if task.kind == "one-time":
            return self._expire_one_time(task)
        if task.status == "completed":
            last_completed = task.completed_at or task.ticked_at
            config = config_for(task.kind, task.recurring_pattern, task.custom_recurrence)
            check = should_reset(task.kind, last_completed, config, self.now, self.tz)
            if not check.should_reset:
                return SKIPPED
            self._archive_cycle(task)
            self._start_next_cycle(task)
            return RESET
        if task.kind in PERIODIC_KINDS and task.status in OPEN_STATUSES and task.deadline_time:
            return self._expire_missed_cycle(task)
        return SKIPPED

    def _archive_cycle(self, task: Task) -> None:
        completed_day = local_day(task.completed_at or task.ticked_at, self.tz)
        self.archiver.archive_task(task)
        self._archive_subtasks(task, first_present(task.deadline_date, completed_day))

    def _archive_subtasks(self, task: Task, fallback_day: dt.date) -> None:
        for subtask in task.subtasks:
            if subtask.is_completed:
                self.archiver.archive_subtask(subtask, task)
            else:
                deadline_day = subtask.deadline_date or fallback_day
                self.archiver.archive_subtask(
                    subtask,
                    task,
                    approval_status="deadline_passed",
                    not_ticked=True,
                    deadline_date=deadline_day,
                )

    def _expire_missed_cycle(self, task: Task) -> str:
        day = task.deadline_date or task.assigned_date
        deadline = deadline_instant(day, task.deadline_time, self.tz)
        if deadline is None or self.now <= deadline:
            return SKIPPED
        if not should_reset(task.kind, deadline, None, self.now, self.tz).should_reset:
            return SKIPPED
        self.archiver.archive_task(
            task,
            approval_status="deadline_passed",
            not_ticked=True,
            deadline_date=day,
        )
        self._archive_subtasks(task, day)
        self._start_next_cycle(task)
        return DEADLINE_PASSED

    def _expire_one_time(self, task: Task) -> str:
        if task.status not in OPEN_STATUSES or task.approval_status == "deadline_passed":
            return SKIPPED
        deadline = resolve_deadline(facts_from_task(task), self.tz)
        if deadline is None or self.now <= deadline:
            return SKIPPED
        self.archiver.archive_task(task, approval_status="deadline_passed", not_ticked=True)
        task.status = "completed"
        task.approval_status = "deadline_passed"
        self.db.flush()
        return AUTO_COMPLETED

    def _start_next_cycle(self, task: Task) -> None:
        task.clear_completion()
        if task.kind in PERIODIC_KINDS:
            task.assigned_date = self.today
            if task.deadline_time:
                task.deadline_date = self.today
        # subtasks follow the parent cycle
        for subtask in task.subtasks:
            subtask.clear_completion()
        self.db.flush()


def reset_recurring_tasks(
    db: Session,
    scope: str,
    *,
    project_id: Optional[int] = None,
    user_id: Optional[int] = None,
    now: Optional[dt.datetime] = None,
) -> ResetSummary:
    executor = ResetExecutor(db, now=now)
    if scope == "project":
        if project_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="project_id is required")
        return executor.reset_project(project_id)
    if scope == "user":
        if user_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
        return executor.reset_user(user_id)
    if scope == "all":
        return executor.reset_all()
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown reset scope")
