from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

from .utils import normalize_identifier, normalize_identifier_list

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


TASK_KINDS = ("one-time", "daily", "weekly", "monthly", "recurring", "custom")
RECURRING_KINDS = ("daily", "weekly", "monthly", "recurring", "custom")
APPROVAL_STATUSES = ("pending", "approved", "rejected", "deadline_passed")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(200), nullable=True, unique=True)
    role = Column(String(20), nullable=False, default="employee", index=True)
    is_approved = Column(Boolean, nullable=False, default=True)
    joined_at = Column(Date, nullable=True)
    skills = Column(SQLiteJSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    status = Column(String(30), nullable=False, default="in_progress", index=True)
    lead_assignees = Column(SQLiteJSON, nullable=False, default=list)
    va_incharge = Column(Integer, nullable=True)
    update_incharge = Column(Integer, nullable=True)
    client_progress = Column(Integer, nullable=False, default=0)
    deadline = Column(Date, nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    bonus_points = Column(Float, nullable=True)
    bonus_currency = Column(Float, nullable=True)
    penalty_points = Column(Float, nullable=True)
    penalty_currency = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")

    @property
    def lead_ids(self) -> list[int]:
        return normalize_identifier_list(self.lead_assignees)

    def involves(self, user_id: int) -> bool:
        return (
            user_id in self.lead_ids
            or normalize_identifier(self.va_incharge) == user_id
            or normalize_identifier(self.update_incharge) == user_id
        )


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    section = Column(String(120), nullable=True)
    kind = Column(String(20), nullable=False, default="one-time", index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    approval_status = Column(String(20), nullable=False, default="pending")
    priority = Column(Integer, nullable=False, default=2)

    assigned_to = Column(Integer, nullable=True, index=True)
    assignees = Column(SQLiteJSON, nullable=False, default=list)

    assigned_date = Column(Date, nullable=True)
    assigned_time = Column(String(5), nullable=True)
    due_date = Column(Date, nullable=True)
    due_time = Column(String(5), nullable=True)
    deadline_date = Column(Date, nullable=True)
    deadline_time = Column(String(5), nullable=True)

    bonus_points = Column(Float, nullable=True)
    bonus_currency = Column(Float, nullable=True)
    penalty_points = Column(Float, nullable=True)
    penalty_currency = Column(Float, nullable=True)

    recurring_pattern = Column(SQLiteJSON, nullable=True)
    custom_recurrence = Column(SQLiteJSON, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Integer, nullable=True)
    ticked_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    custom_field_values = Column(SQLiteJSON, nullable=True)
    not_applicable = Column(Boolean, nullable=False, default=False)

    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    project = relationship("Project", back_populates="tasks")
    subtasks = relationship(
        "Subtask",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Subtask.order",
    )

    @property
    def assignee_ids(self) -> list[int]:
        return normalize_identifier_list([self.assigned_to, *(self.assignees or [])])

    def clear_completion(self) -> None:
        self.status = "pending"
        self.approval_status = "pending"
        self.completed_at = None
        self.completed_by = None
        self.ticked_at = None
        self.approved_by = None
        self.approved_at = None
        self.custom_field_values = None


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    kind = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    approval_status = Column(String(20), nullable=True)
    priority = Column(Integer, nullable=False, default=2)

    assignee = Column(Integer, nullable=True, index=True)
    assignees = Column(SQLiteJSON, nullable=False, default=list)

    due_date = Column(Date, nullable=True)
    due_time = Column(String(5), nullable=True)
    deadline_date = Column(Date, nullable=True)
    deadline_time = Column(String(5), nullable=True)

    bonus_points = Column(Float, nullable=True)
    bonus_currency = Column(Float, nullable=True)
    penalty_points = Column(Float, nullable=True)
    penalty_currency = Column(Float, nullable=True)

    ticked = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Integer, nullable=True)
    ticked_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    time_spent = Column(Float, nullable=True)
    not_applicable = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    task = relationship("Task", back_populates="subtasks")

    @property
    def assignee_ids(self) -> list[int]:
        return normalize_identifier_list([self.assignee, *(self.assignees or [])])

    @property
    def is_completed(self) -> bool:
        return self.status == "completed" or bool(self.ticked)

    def clear_completion(self) -> None:
        self.status = "pending"
        self.approval_status = "pending"
        self.ticked = False
        self.completed_at = None
        self.completed_by = None
        self.ticked_at = None
        self.approved_at = None
        self.time_spent = None


class TaskCompletion(Base):
    __tablename__ = "task_completions"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    kind = Column(String(20), nullable=False)
    project_id = Column(Integer, nullable=True, index=True)
    project_name = Column(String(200), nullable=True)
    section = Column(String(120), nullable=False, default="No Section")
    priority = Column(Integer, nullable=False, default=2)

    assigned_to = Column(Integer, nullable=True)
    assigned_to_name = Column(String(120), nullable=True)
    assignees = Column(SQLiteJSON, nullable=False, default=list)
    assignee_names = Column(SQLiteJSON, nullable=False, default=list)
    completed_by = Column(Integer, nullable=True, index=True)
    completed_by_name = Column(String(120), nullable=False, default="Unknown")

    ticked_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    assigned_date = Column(Date, nullable=True)
    assigned_time = Column(String(5), nullable=True)
    due_date = Column(Date, nullable=True)
    due_time = Column(String(5), nullable=True)
    deadline_date = Column(Date, nullable=True)
    deadline_time = Column(String(5), nullable=True)

    bonus_points = Column(Float, nullable=False, default=0)
    bonus_currency = Column(Float, nullable=False, default=0)
    penalty_points = Column(Float, nullable=False, default=0)
    penalty_currency = Column(Float, nullable=False, default=0)

    approved_by = Column(Integer, nullable=True)
    approved_by_name = Column(String(120), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_status = Column(String(20), nullable=False, default="pending")
    custom_field_values = Column(SQLiteJSON, nullable=True)
    not_applicable = Column(Boolean, nullable=False, default=False)
    not_ticked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SubtaskCompletion(Base):
    __tablename__ = "subtask_completions"

    id = Column(Integer, primary_key=True, index=True)
    subtask_id = Column(Integer, nullable=False, index=True)
    task_id = Column(Integer, nullable=False, index=True)
    subtask_title = Column(String(200), nullable=False)
    parent_task_title = Column(String(200), nullable=False)
    kind = Column(String(20), nullable=False)
    project_id = Column(Integer, nullable=True, index=True)
    project_name = Column(String(200), nullable=True)
    section = Column(String(120), nullable=False, default="No Section")

    assignee = Column(Integer, nullable=True)
    assignee_name = Column(String(120), nullable=True)
    assignees = Column(SQLiteJSON, nullable=False, default=list)
    assignee_names = Column(SQLiteJSON, nullable=False, default=list)
    completed_by = Column(Integer, nullable=True, index=True)
    completed_by_name = Column(String(120), nullable=False, default="Unknown")

    ticked_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    assigned_date = Column(Date, nullable=True)
    assigned_time = Column(String(5), nullable=True)
    due_date = Column(Date, nullable=True)
    due_time = Column(String(5), nullable=True)
    deadline_date = Column(Date, nullable=True)
    deadline_time = Column(String(5), nullable=True)

    bonus_points = Column(Float, nullable=False, default=0)
    bonus_currency = Column(Float, nullable=False, default=0)
    penalty_points = Column(Float, nullable=False, default=0)
    penalty_currency = Column(Float, nullable=False, default=0)

    approved_at = Column(DateTime(timezone=True), nullable=True)
    approval_status = Column(String(20), nullable=False, default="pending")
    not_applicable = Column(Boolean, nullable=False, default=False)
    not_ticked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (UniqueConstraint("employee_id", "day", name="uq_attendance_employee_day"),)

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day = Column(Date, nullable=False, index=True)
    hours_worked = Column(Float, nullable=True)


class DailyUpdate(Base):
    __tablename__ = "daily_updates"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="submitted")
    admin_approved = Column(Boolean, nullable=False, default=False)
    recorded_loom_videos = Column(Boolean, nullable=False, default=False)
    updated_daily_progress = Column(Boolean, nullable=False, default=False)
    checklist = Column(SQLiteJSON, nullable=False, default=list)
    hours_worked = Column(Float, nullable=True)
    admin_notes = Column(Text, nullable=True)


class ChecklistConfig(Base):
    __tablename__ = "checklist_configs"

    id = Column(Integer, primary_key=True)
    type = Column(String(20), nullable=False, default="global")
    skill = Column(String(120), nullable=True)
    employee_ids = Column(SQLiteJSON, nullable=False, default=list)
    items = Column(SQLiteJSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MeetingAttendance(Base):
    __tablename__ = "meeting_attendance"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    meeting_type = Column(String(20), nullable=False)
    day = Column(Date, nullable=False, index=True)
    attended = Column(Boolean, nullable=False, default=True)


class Hackathon(Base):
    __tablename__ = "hackathons"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="upcoming")
    prize_pool = Column(Float, nullable=True)
    prize_points = Column(Float, nullable=True)
    prize_currency = Column(Float, nullable=True)
    winner_id = Column(Integer, nullable=True)
    winner_declared_at = Column(DateTime(timezone=True), nullable=True)


class BonusFineRecord(Base):
    __tablename__ = "bonus_fine_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "period", "month", "year", name="uq_bonus_fine_period"),
    )

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    period = Column(String(20), nullable=False, default="monthly")
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    manual_bonus = Column(Float, nullable=True)
    manual_fine = Column(Float, nullable=True)
    admin_notes = Column(Text, nullable=True)
    approved_by_core_team = Column(Boolean, nullable=False, default=False)
    missing_daily_tasks_fine = Column(Float, nullable=False, default=0)
    last_calculated_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class DailyTaskFine(Base):
    __tablename__ = "daily_task_fines"
    __table_args__ = (
        UniqueConstraint("employee_id", "project_id", "day", name="uq_daily_task_fine"),
    )

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    reason = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class DailyTaskNA(Base):
    __tablename__ = "daily_task_na"
    __table_args__ = (
        UniqueConstraint("employee_id", "project_id", "day", name="uq_daily_task_na"),
    )

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False)
    marked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class CustomAdjustment(Base):
    __tablename__ = "custom_adjustments"

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day = Column(Date, nullable=False, index=True)
    kind = Column(String(10), nullable=False)  # bonus | fine
    unit = Column(String(10), nullable=False)  # points | currency
    value = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
