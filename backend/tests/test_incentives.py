from __future__ import annotations

import datetime as dt

import pytest
from fastapi import HTTPException

from conftest import IST, at
from worknest import models
from worknest.config import IncentiveRules, settings
from worknest.incentives import (
    IncentiveMetrics,
    ManualOverride,
    absence_fine,
    attendance_bonus,
    calculate,
    compute_incentives,
    save_override,
)
from worknest.resets import ResetExecutor
from worknest.state import RuntimeState

RULES = IncentiveRules()


def metrics(**overrides) -> IncentiveMetrics:
    values = dict(attendance_hours=150, products_count=1, months_worked=8)
    values.update(overrides)
    return IncentiveMetrics(**values)


@pytest.mark.parametrize(
    "absent, expected",
    [(0, 0), (1, 3000), (2, 2500), (3, 2000), (4, 2000), (5, 1500), (6, 1500), (7, 1000), (13, 1000), (14, -500), (20, -500)],
)
def test_absence_tiers(absent, expected):
    assert absence_fine(absent, RULES) == expected


@pytest.mark.parametrize("hours, expected", [(140, 0), (141, 500), (160, 500), (161, 1000), (200, 1000), (201, 2000)])
def test_attendance_tiers_are_strictly_greater(hours, expected):
    assert attendance_bonus(hours, RULES) == expected


def test_strong_month_earns_seven_thousand_in_bonuses():
    result = compute_incentives(metrics(attendance_hours=210, products_count=5), RULES)

    assert result.bonuses.products_bonus == 1000
    assert result.bonuses.attendance_bonus == 2000
    assert result.bonuses.loyalty_bonus == 2000
    assert result.bonuses.completed_projects_bonus == 2000
    assert result.total_bonus == 7000
    assert result.total_fine == 0
    assert "Developed more than 3 products" in result.no_fine_conditions
    assert result.no_payment_conditions == []
    assert result.net_amount == 12000


def test_no_fine_condition_zeroes_fines():
    result = compute_incentives(metrics(products_count=4, missing_daily_updates=10, missed_client_meetings=4), RULES)

    assert result.calculated_fine == 1400 + 900
    assert result.total_fine == 0


def test_approved_client_projects_waive_fines():
    result = compute_incentives(metrics(approved_client_projects=4, missing_daily_updates=5), RULES)

    assert result.no_fine_conditions == ["Approved client projects > 3"]
    assert result.total_fine == 0


def test_training_period_zeroes_fines():
    result = compute_incentives(metrics(months_worked=2, missing_daily_updates=10), RULES)

    assert result.is_training_period
    assert result.calculated_fine == 1400
    assert result.total_fine == 0
    assert result.bonuses.loyalty_bonus == 0


def test_project_lead_fines_are_doubled():
    result = compute_incentives(metrics(is_project_lead=True, missing_daily_updates=5), RULES)

    assert result.calculated_fine == 400
    assert result.total_fine == 800


def test_project_lead_with_no_fines_stays_at_zero():
    result = compute_incentives(metrics(is_project_lead=True), RULES)

    assert result.total_fine == 0


def test_lead_on_completed_project_doubles_project_bonus():
    result = compute_incentives(metrics(lead_on_completed_project=True), RULES)

    assert result.bonuses.completed_projects_bonus == 4000


def test_meeting_grace_allowances():
    result = compute_incentives(
        metrics(missed_team_meetings=4, missed_internal_meetings=3, missed_client_meetings=2), RULES
    )

    assert result.fines.missing_team_meetings_fine == 300
    assert result.fines.missing_internal_meetings_fine == 0
    assert result.fines.missing_client_meetings_fine == 300


def test_checklist_bonus_needs_eighty_percent_loom_and_progress():
    assert compute_incentives(metrics(approved_updates=10, loom_and_progress_updates=8), RULES).bonuses.checklist_bonus == 1000
    assert compute_incentives(metrics(approved_updates=10, loom_and_progress_updates=7), RULES).bonuses.checklist_bonus == 0
    assert compute_incentives(metrics(approved_updates=0), RULES).bonuses.checklist_bonus == 0


def test_long_absence_deduction_offsets_other_fines():
    result = compute_incentives(metrics(absent_days=14, missed_client_meetings=3), RULES)

    assert result.fines.absence_fine == -500
    assert result.calculated_fine == 100
    assert result.total_fine == 100


def test_fine_total_never_goes_negative():
    result = compute_incentives(metrics(absent_days=14), RULES)

    assert result.calculated_fine == -500
    assert result.total_fine == 0


def test_no_payment_conditions_zero_the_net_amount():
    result = compute_incentives(metrics(attendance_hours=80, absent_days=5, products_count=0), RULES)

    assert result.no_payment_conditions == ["Attendance < 100 hours", "Absent > 4 days", "0 products"]
    assert result.net_amount == 0


def test_core_team_approval_lifts_no_payment():
    override = ManualOverride(approved_by_core_team=True)
    result = compute_incentives(metrics(attendance_hours=80), RULES, override)

    assert result.no_payment_conditions == ["Attendance < 100 hours"]
    assert result.approved_by_core_team
    assert result.net_amount == result.base_amount + result.total_bonus - result.total_fine


def test_manual_override_replaces_totals_and_clamps():
    override = ManualOverride(manual_bonus=-50, manual_fine=300, admin_notes="Adjusted after review")
    result = compute_incentives(metrics(attendance_hours=170), RULES, override)

    assert result.manual_override_applied
    assert result.total_bonus == 0
    assert result.total_fine == 300
    assert result.admin_notes == "Adjusted after review"
    assert result.net_amount == 4700


NOW = at(dt.date(2024, 3, 20), "12:00")


@pytest.fixture()
def busy_month(session, factory):
    employee = factory.user("Asha", joined_at=dt.date(2023, 1, 1))
    colleague = factory.user("Kiran")
    shipped = factory.project("Apollo", status="completed", lead_assignees=[employee.id], client_progress=100)
    active = factory.project("Hermes", lead_assignees=[colleague.id])

    for offset in range(18):
        session.add(models.AttendanceRecord(employee_id=employee.id, day=dt.date(2024, 3, 1) + dt.timedelta(days=offset), hours_worked=9))
    for offset in range(17):
        session.add(
            models.DailyUpdate(
                employee_id=employee.id,
                day=dt.date(2024, 3, 1) + dt.timedelta(days=offset),
                admin_approved=True,
                recorded_loom_videos=offset < 14,
                updated_daily_progress=True,
            )
        )
    session.add_all(
        [
            models.MeetingAttendance(employee_id=employee.id, meeting_type="client", day=dt.date(2024, 3, 4), attended=False),
            models.MeetingAttendance(employee_id=employee.id, meeting_type="client", day=dt.date(2024, 3, 11), attended=False),
            models.MeetingAttendance(employee_id=employee.id, meeting_type="team", day=dt.date(2024, 3, 11), attended=True),
            models.DailyTaskFine(employee_id=employee.id, project_id=shipped.id, day=dt.date(2024, 3, 5), amount=500, reason="missing"),
            models.CustomAdjustment(employee_id=employee.id, day=dt.date(2024, 3, 5), kind="fine", unit="currency", value=150),
            models.CustomAdjustment(employee_id=employee.id, day=dt.date(2024, 3, 5), kind="fine", unit="points", value=30),
            # previous month, outside the period
            models.CustomAdjustment(employee_id=employee.id, day=dt.date(2024, 2, 25), kind="fine", unit="currency", value=900),
        ]
    )
    factory.task(
        active,
        title="Submit proposal",
        kind="one-time",
        assigned_to=employee.id,
        deadline_date=dt.date(2024, 3, 10),
        penalty_currency=50,
    )
    factory.task(
        active,
        title="Daily report",
        kind="daily",
        status="completed",
        approval_status="approved",
        assigned_to=employee.id,
        completed_by=employee.id,
        completed_at=at(dt.date(2024, 3, 19), "09:00"),
        deadline_date=dt.date(2024, 3, 19),
        deadline_time="10:00",
        bonus_currency=100,
    )
    session.flush()
    ResetExecutor(session, tz=IST, now=NOW).reset_all()
    return employee


def test_calculate_gathers_month_metrics(session, busy_month):
    result = calculate(session, busy_month.id, "monthly", now=NOW, tz=IST, state=RuntimeState(settings), rules=RULES)
    m = result.metrics

    assert (result.start_date, result.end_date) == (dt.date(2024, 3, 1), dt.date(2024, 3, 20))
    assert m.days_in_period == 20
    assert m.attendance_days == 18
    assert m.attendance_hours == 162
    assert m.absent_days == 2
    assert m.approved_updates == 17
    assert m.loom_and_progress_updates == 14
    assert m.missing_daily_updates == 3
    assert m.missed_client_meetings == 2
    assert m.missed_team_meetings == 0
    assert m.products_count == 1
    assert m.approved_client_projects == 1
    assert m.is_project_lead and m.lead_on_completed_project
    assert m.months_worked == 14
    assert m.missing_daily_tasks_fine == 500
    assert m.custom_fines == 150
    # archived and live copies of the overdue task count once
    assert m.task_fine == 50
    assert m.task_bonus == 100

    assert result.total_bonus == 1000 + 1000 + 2000 + 4000 + 100
    assert result.calculated_fine == 300 + 2500 + 500 + 50 + 150
    assert result.total_fine == 7000
    assert result.net_amount == 5000 + 8100 - 7000
    assert any("Submit proposal" in line for line in result.details)


def test_calculate_applies_saved_override(session, busy_month):
    save_override(session, busy_month.id, "monthly", 3, 2024, manual_bonus=999, admin_notes="Reviewed")

    result = calculate(session, busy_month.id, "monthly", now=NOW, tz=IST, state=RuntimeState(settings), rules=RULES)

    assert result.manual_override_applied
    assert result.total_bonus == 999
    assert result.total_fine == 7000
    assert result.admin_notes == "Reviewed"


def test_save_override_updates_the_same_record(session, factory):
    employee = factory.user()
    first = save_override(session, employee.id, "monthly", 3, 2024, manual_fine=100)
    second = save_override(session, employee.id, "monthly", 3, 2024, manual_fine=200, approved_by_core_team=True)

    assert first.id == second.id
    assert second.manual_fine == 200
    assert second.approved_by_core_team is True


def test_calculate_rejects_unknown_employee_and_period(session, factory):
    with pytest.raises(HTTPException) as missing:
        calculate(session, 9999, now=NOW, tz=IST)
    assert missing.value.status_code == 404

    employee = factory.user()
    with pytest.raises(HTTPException) as bad_period:
        calculate(session, employee.id, "yearly", now=NOW, tz=IST)
    assert bad_period.value.status_code == 400
