from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy.orm import Session, selectinload

from .models import RECURRING_KINDS, Subtask, SubtaskCompletion, Task, TaskCompletion
from .periods import deadline_instant, ensure_utc, local_day
from .utils import first_amount, first_present, normalize_identifier, normalize_identifier_list


@dataclass(frozen=True)
class TaskFacts:
    """Source-independent view of a task or subtask used for incentive classification."""

    entity: str
    entity_id: int
    title: str
    source: str
    kind: str
    project_id: Optional[int]
    project_name: Optional[str]
    assignee_ids: Tuple[int, ...]
    approval_status: str
    completed_at: Optional[dt.datetime]
    approved_at: Optional[dt.datetime]
    created_at: Optional[dt.datetime]
    assigned_date: Optional[dt.date] = None
    deadline_date: Optional[dt.date] = None
    deadline_time: Optional[str] = None
    due_date: Optional[dt.date] = None
    due_time: Optional[str] = None
    bonus_points: float = 0.0
    bonus_currency: float = 0.0
    penalty_points: float = 0.0
    penalty_currency: float = 0.0
    not_applicable: bool = False


@dataclass(frozen=True)
class IncentiveEvent:
    facts: TaskFacts
    outcome: str
    reason: str
    occurred_at: dt.datetime
    day: dt.date
    points: float
    currency: float

    @property
    def key(self) -> Tuple[str, int, dt.date]:
        return (self.facts.entity, self.facts.entity_id, self.day)


def _assignees(*candidates: Iterable) -> Tuple[int, ...]:
    for candidate in candidates:
        ids = normalize_identifier_list(list(candidate))
        if ids:
            return tuple(ids)
    return ()


def facts_from_task(task: Task) -> TaskFacts:
    project = task.project
    return TaskFacts(
        entity="task",
        entity_id=task.id,
        title=task.title,
        source="live",
        kind=task.kind,
        project_id=task.project_id,
        project_name=project.name if project else None,
        assignee_ids=_assignees(task.assignee_ids, [task.completed_by]),
        approval_status=task.approval_status or "pending",
        completed_at=task.ticked_at or task.completed_at,
        approved_at=task.approved_at,
        created_at=task.created_at,
        assigned_date=task.assigned_date,
        deadline_date=task.deadline_date,
        deadline_time=task.deadline_time,
        due_date=task.due_date,
        due_time=task.due_time,
        bonus_points=first_amount(task.bonus_points),
        bonus_currency=first_amount(task.bonus_currency),
        penalty_points=first_amount(task.penalty_points),
        penalty_currency=first_amount(task.penalty_currency),
        not_applicable=bool(task.not_applicable),
    )


def facts_from_subtask(subtask: Subtask, parent: Task) -> TaskFacts:
    project = parent.project
    return TaskFacts(
        entity="subtask",
        entity_id=subtask.id,
        title=subtask.title,
        source="live",
        kind=subtask.kind or parent.kind,
        project_id=parent.project_id,
        project_name=project.name if project else None,
        assignee_ids=_assignees(subtask.assignee_ids, [subtask.completed_by]),
        approval_status=first_present(subtask.approval_status, parent.approval_status) or "pending",
        completed_at=subtask.ticked_at or subtask.completed_at,
        approved_at=subtask.approved_at or parent.approved_at,
        created_at=subtask.created_at,
        assigned_date=parent.assigned_date,
        deadline_date=first_present(subtask.deadline_date, parent.deadline_date),
        deadline_time=first_present(subtask.deadline_time, parent.deadline_time),
        due_date=first_present(subtask.due_date, parent.due_date),
        due_time=first_present(subtask.due_time, parent.due_time),
        bonus_points=first_amount(parent.bonus_points, subtask.bonus_points),
        bonus_currency=first_amount(parent.bonus_currency, subtask.bonus_currency),
        penalty_points=first_amount(parent.penalty_points, subtask.penalty_points),
        penalty_currency=first_amount(parent.penalty_currency, subtask.penalty_currency),
        not_applicable=bool(subtask.not_applicable or parent.not_applicable),
    )


def facts_from_task_completion(record: TaskCompletion) -> TaskFacts:
    return TaskFacts(
        entity="task",
        entity_id=record.task_id,
        title=record.title,
        source="history",
        kind=record.kind,
        project_id=record.project_id,
        project_name=record.project_name,
        assignee_ids=_assignees([record.assigned_to, *(record.assignees or [])], [record.completed_by]),
        approval_status=record.approval_status or "pending",
        completed_at=record.ticked_at or record.completed_at,
        approved_at=record.approved_at,
        created_at=record.created_at,
        assigned_date=record.assigned_date,
        deadline_date=record.deadline_date,
        deadline_time=record.deadline_time,
        due_date=record.due_date,
        due_time=record.due_time,
        bonus_points=first_amount(record.bonus_points),
        bonus_currency=first_amount(record.bonus_currency),
        penalty_points=first_amount(record.penalty_points),
        penalty_currency=first_amount(record.penalty_currency),
        not_applicable=bool(record.not_applicable),
    )


def facts_from_subtask_completion(record: SubtaskCompletion) -> TaskFacts:
    return TaskFacts(
        entity="subtask",
        entity_id=record.subtask_id,
        title=record.subtask_title,
        source="history",
        kind=record.kind,
        project_id=record.project_id,
        project_name=record.project_name,
        assignee_ids=_assignees([record.assignee, *(record.assignees or [])], [record.completed_by]),
        approval_status=record.approval_status or "pending",
        completed_at=record.ticked_at or record.completed_at,
        approved_at=record.approved_at,
        created_at=record.created_at,
        assigned_date=record.assigned_date,
        deadline_date=record.deadline_date,
        deadline_time=record.deadline_time,
        due_date=record.due_date,
        due_time=record.due_time,
        bonus_points=first_amount(record.bonus_points),
        bonus_currency=first_amount(record.bonus_currency),
        penalty_points=first_amount(record.penalty_points),
        penalty_currency=first_amount(record.penalty_currency),
        not_applicable=bool(record.not_applicable),
    )


def resolve_deadline(facts: TaskFacts, tz: dt.tzinfo) -> Optional[dt.datetime]:
    if facts.deadline_time:
        completed_day = local_day(facts.completed_at, tz) if facts.completed_at is not None else None
        if facts.kind in RECURRING_KINDS:
            # cycles without a deadline date use the completion day
            day = facts.deadline_date or completed_day or facts.assigned_date
        else:
            day = facts.deadline_date or facts.assigned_date or completed_day
        return deadline_instant(day, facts.deadline_time, tz)
    if facts.deadline_date:
        return deadline_instant(facts.deadline_date, None, tz)
    if facts.due_date:
        return deadline_instant(facts.due_date, facts.due_time, tz)
    return None


def fine_amount(facts: TaskFacts) -> float:
    # Unset currency falls back to the points value
    return facts.penalty_currency if facts.penalty_currency > 0 else facts.penalty_points


def _event(facts: TaskFacts, outcome: str, reason: str, when: Optional[dt.datetime], tz: dt.tzinfo) -> Optional[IncentiveEvent]:
    if when is None:
        return None
    occurred_at = ensure_utc(when)
    if outcome == "bonus":
        points, currency = facts.bonus_points, facts.bonus_currency
    else:
        points, currency = facts.penalty_points, fine_amount(facts)
    return IncentiveEvent(
        facts=facts,
        outcome=outcome,
        reason=reason,
        occurred_at=occurred_at,
        day=local_day(occurred_at, tz),
        points=points,
        currency=currency,
    )


def classify(facts: TaskFacts, now: dt.datetime, tz: dt.tzinfo) -> Optional[IncentiveEvent]:
    """Classify a task as a bonus or fine event, or ``None`` when nothing is owed."""
    if facts.not_applicable:
        return None
    deadline = resolve_deadline(facts, tz)
    status = facts.approval_status

    if status == "approved":
        if facts.completed_at is not None:
            completed = ensure_utc(facts.completed_at)
            if deadline is None or completed <= deadline:
                return _event(facts, "bonus", "on_time", completed, tz)
            return _event(facts, "fine", "late", completed, tz)
        if deadline is not None and ensure_utc(now) > deadline:
            return _event(facts, "fine", "overdue", deadline, tz)
        return None

    if status == "rejected":
        return _event(facts, "fine", "rejected", facts.approved_at or facts.completed_at or facts.created_at, tz)

    if status == "deadline_passed":
        return _event(facts, "fine", "deadline_passed", deadline or facts.approved_at or facts.created_at, tz)

    return None


@dataclass
class EventLedger:
    """Collects events once per (entity, id, day) key."""

    events: List[IncentiveEvent] = field(default_factory=list)
    _seen: Set[Tuple[str, int, dt.date]] = field(default_factory=set)

    def add(self, event: IncentiveEvent) -> bool:
        if event.key in self._seen:
            return False
        self._seen.add(event.key)
        self.events.append(event)
        return True

    def by_employee(self) -> Dict[int, List[IncentiveEvent]]:
        grouped: Dict[int, List[IncentiveEvent]] = {}
        for event in self.events:
            for employee_id in event.facts.assignee_ids:
                grouped.setdefault(employee_id, []).append(event)
        return grouped


def iter_task_facts(db: Session) -> Iterator[TaskFacts]:
    """History first, then live records, so archived snapshots take precedence."""
    for record in db.query(TaskCompletion).order_by(TaskCompletion.id).all():
        yield facts_from_task_completion(record)
    for record in db.query(SubtaskCompletion).order_by(SubtaskCompletion.id).all():
        yield facts_from_subtask_completion(record)
    tasks = (
        db.query(Task)
        .options(selectinload(Task.subtasks), selectinload(Task.project))
        .order_by(Task.id)
        .all()
    )
    for task in tasks:
        yield facts_from_task(task)
        for subtask in task.subtasks:
            yield facts_from_subtask(subtask, task)


def collect_events(
    db: Session,
    start_day: dt.date,
    end_day: dt.date,
    now: dt.datetime,
    tz: dt.tzinfo,
    employee_id: Optional[int] = None,
) -> EventLedger:
    ledger = EventLedger()
    target = normalize_identifier(employee_id)
    for facts in iter_task_facts(db):
        if target is not None and target not in facts.assignee_ids:
            continue
        event = classify(facts, now, tz)
        if event is None or not start_day <= event.day <= end_day:
            continue
        ledger.add(event)
    return ledger
