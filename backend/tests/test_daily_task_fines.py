from __future__ import annotations

import datetime as dt

import pytest
from fastapi import HTTPException

from conftest import IST, at
from worknest import models
from worknest.config import settings
from worknest.incentives import check_daily_task_fines, mark_daily_task_na
from worknest.state import RuntimeState

TODAY = dt.date(2024, 3, 15)


@pytest.fixture()
def state() -> RuntimeState:
    state = RuntimeState(settings)
    state.apply({"daily_task_deadline_hour": 10, "daily_task_deadline_minute": 0, "daily_task_fine_amount": 500})
    return state


def monthly_record(session, employee_id):
    return (
        session.query(models.BonusFineRecord)
        .filter_by(employee_id=employee_id, period="monthly", month=3, year=2024)
        .one_or_none()
    )


def test_nothing_happens_before_the_deadline(session, factory, state):
    lead = factory.user("Kiran")
    factory.project(lead_assignees=[lead.id])

    summary = check_daily_task_fines(session, state, now=at(TODAY, "09:30"), tz=IST)

    assert summary.before_deadline
    assert summary.applied == []
    assert session.query(models.DailyTaskFine).count() == 0


def test_leads_without_a_task_before_the_deadline_are_fined(session, factory, state):
    diligent = factory.user("Kiran")
    idle = factory.user("Meera")
    project = factory.project("Apollo", lead_assignees=[diligent.id, str(idle.id)])
    factory.task(project, created_by=diligent.id, created_at=at(TODAY, "09:00"))

    summary = check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)

    assert summary.day == TODAY
    assert [entry["employee_id"] for entry in summary.applied] == [idle.id]
    assert summary.skipped == [
        {"employee_id": diligent.id, "project_id": project.id, "project_name": "Apollo", "reason": "task created"}
    ]
    fine = session.query(models.DailyTaskFine).one()
    assert (fine.employee_id, fine.project_id, fine.day, fine.amount) == (idle.id, project.id, TODAY, 500)
    assert monthly_record(session, idle.id).missing_daily_tasks_fine == 500


def test_task_created_after_the_deadline_does_not_count(session, factory, state):
    lead = factory.user()
    project = factory.project(lead_assignees=[lead.id])
    factory.task(project, created_by=lead.id, created_at=at(TODAY, "10:15"))
    # yesterday's task is outside today's window
    factory.task(project, created_by=lead.id, created_at=at(TODAY - dt.timedelta(days=1), "09:00"))

    summary = check_daily_task_fines(session, state, now=at(TODAY, "11:00"), tz=IST)

    assert len(summary.applied) == 1


def test_repeated_checks_fine_once_per_day(session, factory, state):
    lead = factory.user()
    project = factory.project(lead_assignees=[lead.id])

    check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)
    again = check_daily_task_fines(session, state, now=at(TODAY, "18:00"), tz=IST)

    assert again.applied == []
    assert again.skipped[0]["reason"] == "already fined"
    assert session.query(models.DailyTaskFine).filter_by(project_id=project.id).count() == 1
    assert monthly_record(session, lead.id).missing_daily_tasks_fine == 500


def test_fines_accumulate_across_projects_and_days(session, factory, state):
    lead = factory.user()
    factory.project("Apollo", lead_assignees=[lead.id])
    factory.project("Hermes", lead_assignees=[lead.id])
    factory.project("Archived", status="completed", lead_assignees=[lead.id])

    check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)
    check_daily_task_fines(session, state, now=at(TODAY + dt.timedelta(days=1), "10:30"), tz=IST)

    assert session.query(models.DailyTaskFine).count() == 4
    assert monthly_record(session, lead.id).missing_daily_tasks_fine == 2000


def test_projects_marked_na_are_skipped(session, factory, state):
    lead = factory.user()
    project = factory.project(lead_assignees=[lead.id])
    mark_daily_task_na(session, lead.id, project.id, TODAY)

    summary = check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)

    assert summary.applied == []
    assert summary.skipped[0]["reason"] == "marked NA"
    assert monthly_record(session, lead.id) is None


def test_unknown_lead_is_skipped(session, factory, state):
    factory.project(lead_assignees=[9999])

    summary = check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)

    assert summary.skipped[0]["reason"] == "unknown employee"
    assert session.query(models.DailyTaskFine).count() == 0


def test_admin_listed_as_lead_is_not_fined(session, factory, state):
    admin = factory.user("Ravi", role="admin")
    factory.project(lead_assignees=[admin.id])

    summary = check_daily_task_fines(session, state, now=at(TODAY, "10:30"), tz=IST)

    assert summary.applied == []
    assert summary.skipped[0]["employee_id"] == admin.id
    assert session.query(models.DailyTaskFine).count() == 0
    assert monthly_record(session, admin.id) is None


def test_runtime_deadline_change_applies_immediately(session, factory, state):
    lead = factory.user()
    factory.project(lead_assignees=[lead.id])
    state.apply({"daily_task_deadline_hour": 12, "daily_task_fine_amount": 250})

    early = check_daily_task_fines(session, state, now=at(TODAY, "11:00"), tz=IST)
    late = check_daily_task_fines(session, state, now=at(TODAY, "12:30"), tz=IST)

    assert early.before_deadline
    assert late.applied[0]["amount"] == 250


def test_mark_na_requires_lead_and_can_be_undone(session, factory):
    lead = factory.user("Kiran")
    outsider = factory.user("Ravi")
    project = factory.project(lead_assignees=[lead.id])

    with pytest.raises(HTTPException) as forbidden:
        mark_daily_task_na(session, outsider.id, project.id, TODAY)
    assert forbidden.value.status_code == 403

    with pytest.raises(HTTPException) as missing:
        mark_daily_task_na(session, lead.id, 9999, TODAY)
    assert missing.value.status_code == 404

    first = mark_daily_task_na(session, lead.id, project.id, TODAY)
    second = mark_daily_task_na(session, lead.id, project.id, TODAY)
    assert first.id == second.id

    assert mark_daily_task_na(session, lead.id, project.id, TODAY, is_na=False) is None
    assert session.query(models.DailyTaskNA).count() == 0
