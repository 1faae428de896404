from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .models import Subtask, SubtaskCompletion, Task, TaskCompletion, User
from .utils import first_amount, first_present, normalize_identifier

logger = logging.getLogger(__name__)

NameLookup = Callable[[Session, int], Optional[str]]

UNKNOWN_NAME = "Unknown"
NOT_TICKED_NAME = "Not Ticked"
DEFAULT_SECTION = "No Section"


def lookup_user_name(db: Session, user_id: int) -> Optional[str]:
    user = db.get(User, user_id)
    return user.name if user else None


class HistoryArchiver:
    """Writes append-only completion snapshots of tasks and subtasks."""

    def __init__(self, db: Session, name_lookup: NameLookup = lookup_user_name):
        self.db = db
        self.name_lookup = name_lookup

    def resolve_name(self, user_id: Optional[int], placeholder: str = UNKNOWN_NAME) -> Optional[str]:
        identifier = normalize_identifier(user_id)
        if identifier is None:
            return None
        try:
            name = self.name_lookup(self.db, identifier)
        except Exception:
            logger.warning("Name lookup failed for user %s", identifier, exc_info=True)
            return placeholder
        return name or placeholder

    def _resolve_names(self, user_ids: List[int]) -> List[str]:
        return [self.resolve_name(user_id) or UNKNOWN_NAME for user_id in user_ids]

    def _completer_name(self, completed_by: Optional[int], not_ticked: bool) -> str:
        if completed_by is not None:
            return self.resolve_name(completed_by) or UNKNOWN_NAME
        return NOT_TICKED_NAME if not_ticked else UNKNOWN_NAME

    def archive_task(
        self,
        task: Task,
        *,
        approval_status: Optional[str] = None,
        not_ticked: bool = False,
        deadline_date: Optional[dt.date] = None,
    ) -> TaskCompletion:
        assignees = task.assignee_ids
        project = task.project
        record = TaskCompletion(
            task_id=task.id,
            title=task.title,
            kind=task.kind,
            project_id=task.project_id,
            project_name=project.name if project else None,
            section=task.section or DEFAULT_SECTION,
            priority=task.priority if task.priority is not None else 2,
            assigned_to=normalize_identifier(task.assigned_to),
            assigned_to_name=self.resolve_name(task.assigned_to),
            assignees=assignees,
            assignee_names=self._resolve_names(assignees),
            completed_by=normalize_identifier(task.completed_by),
            completed_by_name=self._completer_name(normalize_identifier(task.completed_by), not_ticked),
            ticked_at=task.ticked_at,
            completed_at=task.completed_at,
            assigned_date=task.assigned_date,
            assigned_time=task.assigned_time,
            due_date=task.due_date,
            due_time=task.due_time,
            deadline_date=deadline_date or task.deadline_date,
            deadline_time=task.deadline_time,
            bonus_points=first_amount(task.bonus_points),
            bonus_currency=first_amount(task.bonus_currency),
            penalty_points=first_amount(task.penalty_points),
            penalty_currency=first_amount(task.penalty_currency),
            approved_by=normalize_identifier(task.approved_by),
            approved_by_name=self.resolve_name(task.approved_by),
            approved_at=task.approved_at,
            approval_status=approval_status or task.approval_status or "pending",
            custom_field_values=task.custom_field_values,
            not_applicable=bool(task.not_applicable),
            not_ticked=not_ticked,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def archive_subtask(
        self,
        subtask: Subtask,
        parent: Task,
        *,
        approval_status: Optional[str] = None,
        not_ticked: bool = False,
        deadline_date: Optional[dt.date] = None,
    ) -> SubtaskCompletion:
        assignees = subtask.assignee_ids
        project = parent.project
        completed_by = normalize_identifier(subtask.completed_by)
        record = SubtaskCompletion(
            subtask_id=subtask.id,
            task_id=parent.id,
            subtask_title=subtask.title,
            parent_task_title=parent.title,
            kind=subtask.kind or parent.kind,
            project_id=parent.project_id,
            project_name=project.name if project else None,
            section=parent.section or DEFAULT_SECTION,
            assignee=normalize_identifier(subtask.assignee),
            assignee_name=self.resolve_name(subtask.assignee),
            assignees=assignees,
            assignee_names=self._resolve_names(assignees),
            completed_by=completed_by,
            completed_by_name=self._completer_name(completed_by, not_ticked),
            ticked_at=subtask.ticked_at,
            completed_at=subtask.completed_at,
            assigned_date=parent.assigned_date,
            assigned_time=parent.assigned_time,
            due_date=first_present(subtask.due_date, parent.due_date),
            due_time=first_present(subtask.due_time, parent.due_time),
            deadline_date=deadline_date or first_present(subtask.deadline_date, parent.deadline_date),
            deadline_time=first_present(subtask.deadline_time, parent.deadline_time),
            # parent amounts win when configured
            bonus_points=first_amount(parent.bonus_points, subtask.bonus_points),
            bonus_currency=first_amount(parent.bonus_currency, subtask.bonus_currency),
            penalty_points=first_amount(parent.penalty_points, subtask.penalty_points),
            penalty_currency=first_amount(parent.penalty_currency, subtask.penalty_currency),
            approved_at=subtask.approved_at or parent.approved_at,
            approval_status=approval_status
            or first_present(subtask.approval_status, parent.approval_status)
            or "pending",
            not_applicable=bool(subtask.not_applicable or parent.not_applicable),
            not_ticked=not_ticked,
        )
        self.db.add(record)
        self.db.flush()
        return record
